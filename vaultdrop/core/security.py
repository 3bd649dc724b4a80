import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Tuple

from jose import ExpiredSignatureError, JWTError, jwt

from vaultdrop.core.config import settings
from vaultdrop.core.errors import Expired, InvalidInput
from vaultdrop.core.time import utcnow

ACCESS = "access"
CLAIM = "claim"
DOWNLOAD = "download"

def _encode(claims: Dict[str, Any], expires_delta: timedelta) -> Tuple[str, datetime]:
    expire = utcnow() + expires_delta
    to_encode = {k: str(v) if isinstance(v, uuid.UUID) else v for k, v in claims.items()}
    to_encode["exp"] = expire
    to_encode["jti"] = uuid.uuid4().hex
    encoded_jwt = jwt.encode(to_encode, settings.require_secret_key(), algorithm=settings.ALGORITHM)
    return encoded_jwt, expire

def create_access_token(subject: Any, expires_delta: Optional[timedelta] = None) -> str:
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    token, _ = _encode({"sub": subject, "type": ACCESS}, expires_delta)
    return token

def create_claim_token(
    transfer_id: uuid.UUID,
    product_id: uuid.UUID,
    recipient_id: uuid.UUID,
    key_id: uuid.UUID,
) -> Tuple[str, datetime]:
    """
    Claim tokens prove the holder went through grant. They are exchanged
    for a download token and never open a chunk by themselves.
    """
    claims = {
        "sub": recipient_id,
        "transfer_id": transfer_id,
        "product_id": product_id,
        "recipient_id": recipient_id,
        "key_id": key_id,
        "type": CLAIM,
    }
    return _encode(claims, timedelta(hours=settings.CLAIM_TOKEN_TTL_HOURS))

def create_download_token(
    transfer_id: uuid.UUID,
    product_id: uuid.UUID,
    recipient_id: uuid.UUID,
) -> Tuple[str, datetime]:
    claims = {
        "sub": recipient_id,
        "transfer_id": transfer_id,
        "product_id": product_id,
        "recipient_id": recipient_id,
        "type": DOWNLOAD,
    }
    return _encode(claims, timedelta(minutes=settings.DOWNLOAD_TOKEN_TTL_MINUTES))

def decode_token(token: str, expected_type: str) -> Dict[str, Any]:
    """
    Verify signature, expiry and token type.
    Expired tokens raise Expired; anything forged or of the wrong type raises InvalidInput.
    """
    secret = settings.require_secret_key()
    try:
        payload = jwt.decode(token, secret, algorithms=[settings.ALGORITHM])
    except ExpiredSignatureError:
        raise Expired(f"{expected_type.capitalize()} token expired")
    except JWTError:
        raise InvalidInput(f"Invalid {expected_type} token")

    if payload.get("type") != expected_type:
        raise InvalidInput(f"Invalid {expected_type} token")
    return payload

def token_uuid(payload: Dict[str, Any], field: str) -> uuid.UUID:
    try:
        return uuid.UUID(str(payload.get(field)))
    except (TypeError, ValueError):
        raise InvalidInput(f"Token is missing {field}")

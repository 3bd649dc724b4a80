"""
Key envelopes.

A fresh 256-bit content key per (product, recipient) is sealed with AES-256-GCM.
The AAD binds the envelope to "<product_id>:<recipient_id>", so an envelope
cannot be replayed for another product or recipient.

Wrapping key:
  - recipient X25519 public key known: ephemeral ECDH + HKDF-SHA256  (X25519-AES-256-GCM)
  - otherwise:                          HKDF-SHA256 over SECRET_KEY   (AES-256-GCM-SEALED)

Wire format: base64(json({v, alg, product_id, recipient_id, iv, ct, epk?})).
"""
import base64
import binascii
import json
import os
from typing import Optional, Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import x25519
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from vaultdrop.core.config import settings
from vaultdrop.core.errors import InvalidInput

ENVELOPE_VERSION = 1
ALG_SEALED = "AES-256-GCM-SEALED"
ALG_X25519 = "X25519-AES-256-GCM"

_HKDF_SALT = b"vaultdrop-key-envelope-v1"

def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")

def _unb64(data: str) -> bytes:
    return base64.b64decode(data.encode("ascii"), validate=True)

def _aad(product_id, recipient_id) -> bytes:
    return f"{product_id}:{recipient_id}".encode("utf-8")

def _hkdf(material: bytes, info: bytes) -> bytes:
    return HKDF(algorithm=hashes.SHA256(), length=32, salt=_HKDF_SALT, info=info).derive(material)

def _server_wrapping_key(product_id, recipient_id) -> bytes:
    secret = settings.require_secret_key().encode("utf-8")
    return _hkdf(secret, b"sealed|" + _aad(product_id, recipient_id))

def generate_content_key() -> bytes:
    return AESGCM.generate_key(bit_length=256)

def parse_public_key(value: str) -> x25519.X25519PublicKey:
    """Recipient public keys are base64 of the raw 32 byte X25519 key."""
    try:
        raw = _unb64(value)
        if len(raw) != 32:
            raise ValueError("expected 32 bytes")
        return x25519.X25519PublicKey.from_public_bytes(raw)
    except (ValueError, binascii.Error):
        raise InvalidInput("recipient_public_key must be base64 of a raw 32 byte X25519 key")

def public_key_to_b64(public_key: x25519.X25519PublicKey) -> str:
    return _b64(public_key.public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    ))

def seal_content_key(
    content_key: bytes,
    product_id,
    recipient_id,
    recipient_public_key: Optional[str] = None,
) -> Tuple[str, str]:
    """Returns (envelope, algorithm)."""
    aad = _aad(product_id, recipient_id)
    body = {
        "v": ENVELOPE_VERSION,
        "product_id": str(product_id),
        "recipient_id": str(recipient_id),
    }

    if recipient_public_key:
        peer = parse_public_key(recipient_public_key)
        ephemeral = x25519.X25519PrivateKey.generate()
        wrapping_key = _hkdf(ephemeral.exchange(peer), b"x25519|" + aad)
        body["alg"] = ALG_X25519
        body["epk"] = public_key_to_b64(ephemeral.public_key())
    else:
        wrapping_key = _server_wrapping_key(product_id, recipient_id)
        body["alg"] = ALG_SEALED

    iv = os.urandom(12)
    body["iv"] = _b64(iv)
    body["ct"] = _b64(AESGCM(wrapping_key).encrypt(iv, content_key, aad))

    envelope = _b64(json.dumps(body, sort_keys=True).encode("utf-8"))
    return envelope, body["alg"]

def decode_envelope(envelope: str) -> dict:
    try:
        body = json.loads(_unb64(envelope))
    except (ValueError, binascii.Error):
        raise InvalidInput("Malformed key envelope")
    if not isinstance(body, dict) or body.get("v") != ENVELOPE_VERSION:
        raise InvalidInput("Unsupported key envelope version")
    return body

def open_envelope(
    envelope: str,
    product_id,
    recipient_id,
    private_key: Optional[x25519.X25519PrivateKey] = None,
) -> bytes:
    """
    Recover the content key. Sealed envelopes open with the server secret;
    X25519 envelopes need the recipient's private key.
    """
    body = decode_envelope(envelope)
    aad = _aad(product_id, recipient_id)

    if body.get("alg") == ALG_SEALED:
        wrapping_key = _server_wrapping_key(product_id, recipient_id)
    elif body.get("alg") == ALG_X25519:
        if private_key is None:
            raise InvalidInput("Recipient private key required to open this envelope")
        try:
            peer = x25519.X25519PublicKey.from_public_bytes(_unb64(body.get("epk", "")))
        except (ValueError, binascii.Error):
            raise InvalidInput("Malformed key envelope")
        wrapping_key = _hkdf(private_key.exchange(peer), b"x25519|" + aad)
    else:
        raise InvalidInput(f"Unknown envelope algorithm {body.get('alg')!r}")

    try:
        return AESGCM(wrapping_key).decrypt(_unb64(body.get("iv", "")), _unb64(body.get("ct", "")), aad)
    except (ValueError, binascii.Error):
        raise InvalidInput("Malformed key envelope")
    except InvalidTag:
        raise InvalidInput("Key envelope does not belong to this product and recipient")

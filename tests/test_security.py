import uuid
from datetime import timedelta

import pytest
from fastapi import HTTPException

from vaultdrop.core import deps, security
from vaultdrop.core.errors import Expired, InvalidInput

def test_access_token_round_trip():
    user_id = uuid.uuid4()
    payload = security.decode_token(security.create_access_token(user_id), security.ACCESS)
    assert payload["sub"] == str(user_id)
    assert security.token_uuid(payload, "sub") == user_id

def test_claim_and_download_tokens_are_not_interchangeable():
    ids = [uuid.uuid4() for _ in range(4)]
    claim, claim_expires = security.create_claim_token(*ids)
    download, _ = security.create_download_token(*ids[:3])

    claim_payload = security.decode_token(claim, security.CLAIM)
    assert claim_payload["key_id"] == str(ids[3])
    assert claim_expires > security.utcnow()

    with pytest.raises(InvalidInput):
        security.decode_token(claim, security.DOWNLOAD)
    with pytest.raises(InvalidInput):
        security.decode_token(download, security.CLAIM)
    with pytest.raises(InvalidInput):
        security.decode_token(download, security.ACCESS)

def test_tokens_carry_unique_ids():
    ids = [uuid.uuid4() for _ in range(4)]
    first, _ = security.create_claim_token(*ids)
    second, _ = security.create_claim_token(*ids)
    assert security.decode_token(first, security.CLAIM)["jti"] != security.decode_token(second, security.CLAIM)["jti"]

def test_expired_token():
    token = security.create_access_token(uuid.uuid4(), expires_delta=timedelta(seconds=-5))
    with pytest.raises(Expired):
        security.decode_token(token, security.ACCESS)

def test_forged_token():
    token = security.create_access_token(uuid.uuid4())
    with pytest.raises(InvalidInput):
        security.decode_token(token[:-4] + "AAAA", security.ACCESS)

def test_token_uuid_rejects_missing_field():
    with pytest.raises(InvalidInput):
        security.token_uuid({"sub": "not-a-uuid"}, "sub")
    with pytest.raises(InvalidInput):
        security.token_uuid({}, "product_id")

@pytest.mark.asyncio
async def test_requester_from_download_token(db):
    transfer_id, product_id, recipient_id = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()
    download, _ = security.create_download_token(transfer_id, product_id, recipient_id)

    requester = await deps.get_requester(token=download, bearer=None, db=db)
    assert requester == deps.Requester(user_id=recipient_id, via_download_token=True, token_product_id=product_id)

@pytest.mark.asyncio
async def test_requester_from_bearer(db, buyer):
    requester = await deps.get_requester(token=None, bearer=security.create_access_token(buyer.id), db=db)
    assert requester == deps.Requester(user_id=buyer.id)

    with pytest.raises(HTTPException) as exc:
        await deps.get_requester(token=None, bearer=None, db=db)
    assert exc.value.status_code == 401

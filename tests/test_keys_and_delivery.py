import hashlib
from datetime import timedelta

import pytest
from cryptography.hazmat.primitives.asymmetric import x25519

from vaultdrop.core import security
from vaultdrop.core.config import settings
from vaultdrop.core.deps import Requester
from vaultdrop.core.errors import (
    ChunkIntegrityError,
    Expired,
    InvalidChunkIndex,
    InvalidInput,
    InvalidState,
    KeyExpired,
    MissingRequiredInputs,
    NotFoundOrDenied,
)
from vaultdrop.core.time import utcnow
from vaultdrop.modules.delivery import service as delivery_service
from vaultdrop.modules.keys import envelope
from vaultdrop.modules.keys import service as key_service
from vaultdrop.modules.keys.models import ProductKey
from vaultdrop.modules.storage.blob_store import chunk_key
from vaultdrop.modules.transfers import service as transfer_service
from vaultdrop.modules.transfers.models import TransferStatus

BASE_URL = "http://test/api/v1"

@pytest.mark.asyncio
async def test_no_download_before_payment(db, store, gateway, seller, buyer, ready_product):
    product = await ready_product(seller)
    transfer = await transfer_service.create_offer(db, seller.id, product.id, buyer.id)
    requester = Requester(user_id=buyer.id)

    with pytest.raises(NotFoundOrDenied):
        await delivery_service.read_chunk(db, store, product.id, requester, 0)

    await transfer_service.create_invoice(db, gateway, buyer.id, transfer_id=transfer.id)
    with pytest.raises(NotFoundOrDenied):
        await delivery_service.read_chunk(db, store, product.id, requester, 0)
    with pytest.raises(InvalidState):
        await key_service.grant(db, buyer.id, transfer.id)

@pytest.mark.asyncio
async def test_grant_is_idempotent_with_fresh_claim_tokens(db, seller, buyer, paid_transfer):
    _, transfer = await paid_transfer(seller, buyer)

    first = await key_service.grant(db, buyer.id, transfer.id)
    second = await key_service.grant(db, buyer.id, transfer.id)

    assert first["status"] == "delivered"
    assert first["reused"] is False
    assert second["reused"] is True
    assert second["key_envelope"] == first["key_envelope"]
    assert second["key_id"] == first["key_id"]
    assert second["claim_token"] != first["claim_token"]
    assert first["algorithm"] == envelope.ALG_SEALED

@pytest.mark.asyncio
async def test_grant_only_for_recipient(db, seller, buyer, paid_transfer):
    _, transfer = await paid_transfer(seller, buyer)
    with pytest.raises(NotFoundOrDenied):
        await key_service.grant(db, seller.id, transfer.id)

@pytest.mark.asyncio
async def test_grant_seals_to_recipient_public_key(db, seller, buyer, paid_transfer):
    _, transfer = await paid_transfer(seller, buyer)
    private_key = x25519.X25519PrivateKey.generate()
    public_b64 = envelope.public_key_to_b64(private_key.public_key())

    granted = await key_service.grant(db, buyer.id, transfer.id, recipient_public_key=public_b64)
    assert granted["algorithm"] == envelope.ALG_X25519

    content_key = envelope.open_envelope(granted["key_envelope"], transfer.product_id, buyer.id, private_key)
    assert len(content_key) == 32

@pytest.mark.asyncio
async def test_grant_requires_post_payment_inputs(db, seller, buyer, ready_product, paid_transfer):
    product = await ready_product(
        seller,
        required_inputs=[{"name": "license_email", "timing": "post_payment_pre_grant"}],
    )
    _, transfer = await paid_transfer(seller, buyer, product=product)

    with pytest.raises(MissingRequiredInputs) as exc:
        await key_service.grant(db, buyer.id, transfer.id)
    assert exc.value.extra["missing_inputs"][0]["name"] == "license_email"

    await transfer_service.submit_requirements(db, buyer.id, transfer.id, {"license_email": "b@example.com"})
    granted = await key_service.grant(db, buyer.id, transfer.id)
    assert granted["status"] == "delivered"

@pytest.mark.asyncio
async def test_unpaid_grant_for_free_product(db, gateway, seller, buyer, ready_product):
    product = await ready_product(seller, price=0.0)
    transfer = await transfer_service.create_offer(db, seller.id, product.id, buyer.id)
    invoice = await transfer_service.create_invoice(db, gateway, buyer.id, transfer_id=transfer.id)
    assert invoice["checkout_url"] is None

    granted = await key_service.grant(db, buyer.id, transfer.id)
    assert granted["status"] == "delivered"

@pytest.mark.asyncio
async def test_unpaid_grant_behind_policy_flag(db, gateway, seller, buyer, ready_product, monkeypatch):
    product = await ready_product(seller, price=5.0)
    transfer = await transfer_service.create_offer(db, seller.id, product.id, buyer.id)
    await transfer_service.create_invoice(db, gateway, buyer.id, transfer_id=transfer.id)

    with pytest.raises(InvalidState):
        await key_service.grant(db, buyer.id, transfer.id)

    monkeypatch.setattr(settings, "ALLOW_UNPAID_GRANT", True)
    granted = await key_service.grant(db, buyer.id, transfer.id)
    assert granted["status"] == "delivered"

@pytest.mark.asyncio
async def test_claim_then_download(db, store, seller, buyer, paid_transfer):
    product, transfer = await paid_transfer(seller, buyer)
    granted = await key_service.grant(db, buyer.id, transfer.id)

    claimed = await key_service.claim(db, granted["claim_token"], BASE_URL)
    assert claimed["status"] == "ready_for_download"
    assert claimed["manifest"]["total_chunks"] == 3
    assert len(claimed["download_urls"]["chunks"]) == 3
    assert claimed["download_urls"]["manifest"].startswith(f"{BASE_URL}/delivery/manifest?")

    payload = security.decode_token(claimed["download_token"], security.DOWNLOAD)
    requester = Requester(
        user_id=security.token_uuid(payload, "recipient_id"),
        via_download_token=True,
        token_product_id=security.token_uuid(payload, "product_id"),
    )
    manifest = await delivery_service.get_manifest(db, product.id, requester)
    data = await delivery_service.read_chunk(db, store, product.id, requester, 2)
    assert hashlib.sha256(data).hexdigest() == manifest["chunks"][2]["hash"]

    with pytest.raises(InvalidChunkIndex):
        await delivery_service.read_chunk(db, store, product.id, requester, 3)

@pytest.mark.asyncio
async def test_download_token_is_scoped_to_its_product(db, store, seller, buyer, paid_transfer, ready_product):
    product, transfer = await paid_transfer(seller, buyer)
    other = await ready_product(seller)
    await key_service.grant(db, buyer.id, transfer.id)

    requester = Requester(user_id=buyer.id, via_download_token=True, token_product_id=product.id)
    with pytest.raises(NotFoundOrDenied):
        await delivery_service.read_chunk(db, store, other.id, requester, 0)
    with pytest.raises(NotFoundOrDenied):
        await delivery_service.get_manifest(db, product.id, Requester(user_id=buyer.id), recipient_id=seller.id)

@pytest.mark.asyncio
async def test_revocation_is_immediate(db, store, gateway, seller, buyer, paid_transfer):
    product, transfer = await paid_transfer(seller, buyer)
    granted = await key_service.grant(db, buyer.id, transfer.id)
    requester = Requester(user_id=buyer.id)
    await delivery_service.read_chunk(db, store, product.id, requester, 0)

    await transfer_service.revoke(db, gateway, seller.id, transfer.id)

    with pytest.raises(NotFoundOrDenied):
        await delivery_service.read_chunk(db, store, product.id, requester, 0)
    with pytest.raises(InvalidState):
        await key_service.claim(db, granted["claim_token"], BASE_URL)

@pytest.mark.asyncio
async def test_claim_with_expired_key(db, seller, buyer, paid_transfer):
    _, transfer = await paid_transfer(seller, buyer)
    granted = await key_service.grant(db, buyer.id, transfer.id)

    key = await db.get(ProductKey, granted["key_id"])
    key.expires_at = utcnow() - timedelta(seconds=1)
    await db.commit()

    with pytest.raises(KeyExpired):
        await key_service.claim(db, granted["claim_token"], BASE_URL)

    # Next grant re-mints the expired row in place
    regranted = await key_service.grant(db, buyer.id, transfer.id)
    assert regranted["key_id"] == granted["key_id"]
    assert regranted["reused"] is False
    assert regranted["key_envelope"] != granted["key_envelope"]

@pytest.mark.asyncio
async def test_claim_rejects_wrong_token_type(db, seller, buyer, paid_transfer):
    _, transfer = await paid_transfer(seller, buyer)
    with pytest.raises(InvalidInput):
        await key_service.claim(db, security.create_access_token(buyer.id), BASE_URL)
    with pytest.raises(InvalidInput):
        await key_service.claim(db, "not-a-jwt", BASE_URL)

    token, _ = security._encode(
        {"transfer_id": transfer.id, "type": security.CLAIM}, timedelta(seconds=-10)
    )
    with pytest.raises(Expired):
        await key_service.claim(db, token, BASE_URL)

@pytest.mark.asyncio
async def test_tampered_chunk_fails_integrity(db, store, seller, buyer, paid_transfer):
    product, transfer = await paid_transfer(seller, buyer)
    await key_service.grant(db, buyer.id, transfer.id)
    await store.set(chunk_key(product.storage_pointer, 1), b"tampered")

    with pytest.raises(ChunkIntegrityError):
        await delivery_service.read_chunk(db, store, product.id, Requester(user_id=buyer.id), 1)

@pytest.mark.asyncio
async def test_acknowledged_recipient_keeps_access(db, store, seller, buyer, paid_transfer):
    product, transfer = await paid_transfer(seller, buyer)
    await key_service.grant(db, buyer.id, transfer.id)
    await transfer_service.acknowledge(db, buyer.id, transfer.id, "cd" * 32, "z" * 64)
    assert transfer.status == TransferStatus.ACKNOWLEDGED

    assert await delivery_service.has_grant(db, product.id, buyer.id)
    data = await delivery_service.read_chunk(db, store, product.id, Requester(user_id=buyer.id), 0)
    assert len(data) == 1024

@pytest.mark.asyncio
async def test_owner_reads_without_transfer(db, store, seller, stranger, ready_product):
    product = await ready_product(seller)
    data = await delivery_service.read_chunk(db, store, product.id, Requester(user_id=seller.id), 0)
    assert len(data) == 1024

    with pytest.raises(NotFoundOrDenied):
        await delivery_service.get_manifest(db, product.id, Requester(user_id=stranger.id))

import logging
from datetime import timedelta

import pytest
from sqlalchemy import select

from vaultdrop.core.time import utcnow
from vaultdrop.modules.notifications.models import Notification
from vaultdrop.modules.uploads.models import UploadSession
from vaultdrop.modules.uploads import service as upload_service
from vaultdrop.modules.worker.runner import Worker

@pytest.mark.asyncio
async def test_notify_job_stores_notification(db, session_factory, buyer):
    worker = Worker(session_factory)
    await worker.run_job(
        "notify",
        user_id=buyer.id,
        title="Payment confirmed",
        message="You can now request access.",
        resource_type="transfer",
        resource_id="abc",
    )

    result = await db.execute(select(Notification).where(Notification.user_id == buyer.id))
    notifications = result.scalars().all()
    assert len(notifications) == 1
    assert notifications[0].title == "Payment confirmed"
    assert notifications[0].is_read is False

@pytest.mark.asyncio
async def test_unknown_job_is_logged(session_factory, caplog):
    worker = Worker(session_factory)
    with caplog.at_level(logging.WARNING, logger="vaultdrop.modules.worker.runner"):
        await worker.run_job("reindex_everything")
    assert "Unknown job: reindex_everything" in caplog.text

@pytest.mark.asyncio
async def test_queued_jobs_are_processed(db, session_factory, seller):
    worker = Worker(session_factory)
    await worker.start()
    try:
        await worker.enqueue_job("notify", user_id=seller.id, title="Offer sent", message="ok")
        await worker.queue.join()
    finally:
        await worker.stop()

    result = await db.execute(select(Notification).where(Notification.user_id == seller.id))
    assert [n.title for n in result.scalars().all()] == ["Offer sent"]

@pytest.mark.asyncio
async def test_purge_job_uses_configured_store(db, session_factory, store, seller, monkeypatch):
    from vaultdrop.modules.products.schemas import ProductCreate

    session = await upload_service.create_product_upload(
        db, seller.id,
        ProductCreate(title="Stale", content_type="application/pdf", size=10, content_hash="ab" * 32),
        chunk_size=1024,
    )
    await upload_service.upload_chunk(db, store, seller.id, session.upload_id, 0, b"0123456789")
    session.expires_at = utcnow() - timedelta(minutes=1)
    await db.commit()

    monkeypatch.setattr("vaultdrop.modules.storage.blob_store.get_blob_store", lambda: store)
    await Worker(session_factory).run_job("purge_upload_sessions")

    result = await db.execute(select(UploadSession).where(UploadSession.upload_id == session.upload_id))
    assert result.scalars().first() is None
    assert await store.list(session.storage_prefix + "/") == []

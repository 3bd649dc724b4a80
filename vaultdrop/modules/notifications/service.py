import logging
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from vaultdrop.modules.notifications import models
from vaultdrop.modules.notifications.broadcaster import broadcaster

logger = logging.getLogger(__name__)

async def create_notification(
    db: AsyncSession,
    user_id: UUID,
    title: str,
    message: str,
    resource_type: Optional[str] = None,
    resource_id: Optional[str] = None
) -> models.Notification:
    notification = models.Notification(
        user_id=user_id,
        title=title,
        message=message,
        resource_type=resource_type,
        resource_id=str(resource_id) if resource_id else None,
        is_read=False
    )
    db.add(notification)
    await db.commit()

    # Real-time push is best effort; the row above is the durable copy
    try:
        payload = {
            "id": str(notification.id),
            "title": notification.title,
            "message": notification.message,
            "resource_type": notification.resource_type,
            "resource_id": notification.resource_id,
            "created_at": notification.created_at.isoformat() if notification.created_at else None
        }
        await broadcaster.broadcast(user_id, payload)
    except Exception as e:
        logger.error(f"[Notifications] Broadcast error for {user_id}: {e}")

    return notification

async def list_my_notifications(db: AsyncSession, user_id: UUID):
    result = await db.execute(
        select(models.Notification)
        .where(models.Notification.user_id == user_id)
        .order_by(models.Notification.created_at.desc())
    )
    return result.scalars().all()

async def mark_as_read(db: AsyncSession, notification_id: UUID, user_id: UUID):
    result = await db.execute(
        select(models.Notification)
        .where(models.Notification.id == notification_id, models.Notification.user_id == user_id)
    )
    notification = result.scalars().first()
    if notification:
        notification.is_read = True
        await db.commit()
        await db.refresh(notification)
    return notification

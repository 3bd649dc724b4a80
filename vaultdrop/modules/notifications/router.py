import asyncio
import json
from typing import Any, List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from vaultdrop.core import deps
from vaultdrop.core.db import get_db
from vaultdrop.modules.auth.models import User
from vaultdrop.modules.notifications import schemas, service
from vaultdrop.modules.notifications.broadcaster import broadcaster

router = APIRouter()

@router.get("/", response_model=List[schemas.NotificationRead])
async def list_notifications(
    current_user: User = Depends(deps.get_current_active_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    """
    List current user's notifications.
    """
    return await service.list_my_notifications(db, current_user.id)

@router.post("/{id}/read", response_model=schemas.NotificationRead)
async def mark_read(
    id: UUID,
    current_user: User = Depends(deps.get_current_active_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    notification = await service.mark_as_read(db, id, current_user.id)
    if not notification:
        raise HTTPException(status_code=404, detail="Notification not found")
    return notification

@router.get("/stream")
async def stream_notifications(
    current_user: User = Depends(deps.get_current_active_user)
):
    """
    SSE endpoint for transfer events (offers, payments, grants, disputes).
    """
    async def event_generator():
        queue = await broadcaster.connect(current_user.id)
        try:
            while True:
                try:
                    # Keep-alive comment every 15s so proxies keep the stream open
                    message = await asyncio.wait_for(queue.get(), timeout=15.0)
                    yield f"data: {json.dumps(message)}\n\n"
                except asyncio.TimeoutError:
                    yield ": keep-alive\n\n"
        finally:
            await broadcaster.disconnect(current_user.id, queue)

    return StreamingResponse(event_generator(), media_type="text/event-stream")

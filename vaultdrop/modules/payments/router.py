from typing import Any

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from vaultdrop.core.db import get_db
from vaultdrop.modules.payments import service
from vaultdrop.modules.payments.gateway import PaymentGateway, get_payment_gateway

router = APIRouter()

@router.post("/webhook")
async def payment_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway)
) -> Any:
    """
    Gateway callback. The raw body is needed for signature verification.
    """
    payload = await request.body()
    signature = request.headers.get("X-Webhook-Signature") or request.headers.get("Stripe-Signature")
    event = gateway.parse_webhook(payload, signature)
    return await service.handle_payment_event(db, event)

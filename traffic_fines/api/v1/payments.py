from fastapi import APIRouter, Depends, Header, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from traffic_fines.core.database import get_session
from traffic_fines.core.security import get_current_user
from traffic_fines.models.user import User
from traffic_fines.schemas.payment import (
    PaymentConfirm,
    PaymentConfirmResponse,
    PaymentIntentCreate,
    PaymentIntentResponse,
    PaymentStats,
    Receipt,
    WebhookAck,
)
from traffic_fines.services import payment_service
from traffic_fines.services.payment_gateway import PaymentGateway, get_payment_gateway

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/create-payment-intent", response_model=PaymentIntentResponse)
async def create_payment_intent(
    payload: PaymentIntentCreate,
    session: AsyncSession = Depends(get_session),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    user: User = Depends(get_current_user),
):
    return await payment_service.create_payment_intent(session, gateway, user, payload.fine_id)


@router.post("/confirm-payment", response_model=PaymentConfirmResponse)
async def confirm_payment(
    payload: PaymentConfirm,
    session: AsyncSession = Depends(get_session),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    user: User = Depends(get_current_user),
):
    return await payment_service.confirm_payment(session, gateway, user, payload.fine_id, payload.payment_intent_id)


@router.post("/webhook", response_model=WebhookAck)
async def webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(default=None, alias="Stripe-Signature"),
    session: AsyncSession = Depends(get_session),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    """Unauthenticated; the signature over the raw body is the only credential."""
    payload = await request.body()
    event = gateway.construct_event(payload, stripe_signature)
    await payment_service.handle_gateway_event(session, event)
    return WebhookAck()


@router.get("/fine/{fine_id}/receipt", response_model=Receipt)
async def get_receipt(fine_id: int, session: AsyncSession = Depends(get_session), user: User = Depends(get_current_user)):
    return await payment_service.get_receipt(session, user, fine_id)


@router.get("/stats", response_model=PaymentStats)
async def payment_stats(
    period: str = Query("month"),
    session: AsyncSession = Depends(get_session),
    user: User = Depends(get_current_user),
):
    return await payment_service.payment_stats(session, user, period)

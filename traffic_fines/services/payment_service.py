"""Payment reconciliation between fines and the card gateway.

Both the client-driven confirmation and the gateway webhook end in
``fine_service.apply_payment``; whichever lands first applies the transition
and the other observes the paid fine and returns without writing.
"""
import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Optional
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from traffic_fines.core.exceptions import (
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    PaymentMismatchError,
    PaymentNotCompleteError,
    ValidationFailedError,
)
from traffic_fines.core.timeutils import as_utc, utcnow
from traffic_fines.models.fine import PAYABLE_STATUSES, Fine, FineNote, FineStatus, PaymentMethod, effective_status
from traffic_fines.models.user import Role, User
from traffic_fines.models.violation import TrafficViolation
from traffic_fines.services import fine_service
from traffic_fines.services.payment_gateway import (
    EVENT_PAYMENT_FAILED,
    EVENT_PAYMENT_SUCCEEDED,
    SUCCEEDED,
    GatewayEvent,
    PaymentGateway,
    to_minor_units,
)

logger = logging.getLogger(__name__)

STATS_PERIODS = ("today", "week", "month", "year")


def _ensure_owner(actor: User, fine: Fine) -> None:
    if actor.role == Role.DRIVER and fine.driver_id != actor.id:
        raise ForbiddenError("Access denied")


async def create_payment_intent(session: AsyncSession, gateway: PaymentGateway, actor: User, fine_id: int,
                                now: Optional[datetime] = None) -> Dict[str, Any]:
    fine = await fine_service.load_fine(session, fine_id)
    _ensure_owner(actor, fine)

    status = effective_status(fine, now)
    if status not in PAYABLE_STATUSES:
        raise InvalidStateError(f"Fine cannot be paid. Current status: {status.value}", status=status.value)

    violation = await session.get(TrafficViolation, fine.violation_id)
    intent = await gateway.create_payment_intent(
        amount=to_minor_units(fine.amount),
        currency=fine.currency.value,
        metadata={
            "fineId": str(fine.id),
            "fineNumber": fine.fine_id,
            "driverId": str(fine.driver_id),
            "violationCode": violation.code if violation else "",
            "licensePlate": fine.license_plate,
        },
        description=f"Traffic fine payment - {violation.name if violation else fine.fine_id}",
    )
    logger.info("Payment intent issued | fine_id=%s | intent_id=%s", fine.id, intent.id)

    return {
        "client_secret": intent.client_secret,
        "payment_intent_id": intent.id,
        "amount": fine.amount,
        "currency": fine.currency,
        "fine": {
            "id": fine.id,
            "violation_name": violation.name if violation else "",
            "license_plate": fine.license_plate,
            "due_date": fine.due_date,
        },
    }


def _confirm_response(fine: Fine, already_paid: bool) -> Dict[str, Any]:
    return {
        "id": fine.id,
        "status": fine.status,
        "paid_at": fine.paid_at,
        "transaction_id": fine.transaction_id,
        "already_paid": already_paid,
    }


async def confirm_payment(session: AsyncSession, gateway: PaymentGateway, actor: User, fine_id: int,
                          payment_intent_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    fine = await fine_service.load_fine(session, fine_id)
    _ensure_owner(actor, fine)

    if fine.status == FineStatus.PAID:
        if fine.payment_id == payment_intent_id:
            logger.info("Payment already recorded | fine_id=%s | intent_id=%s", fine.id, payment_intent_id)
            return _confirm_response(fine, already_paid=True)
        raise InvalidStateError("Fine has already been paid", status=FineStatus.PAID.value)

    status = effective_status(fine, now)
    if status not in PAYABLE_STATUSES:
        raise InvalidStateError(f"Fine cannot be paid. Current status: {status.value}", status=status.value)

    intent = await gateway.retrieve_payment_intent(payment_intent_id)
    if intent.status != SUCCEEDED:
        raise PaymentNotCompleteError(intent.status)
    if intent.metadata.get("fineId") != str(fine.id):
        raise PaymentMismatchError("Payment does not belong to this fine", fine_id=fine.id)

    fine, applied = await fine_service.apply_payment(
        session,
        fine,
        payment_id=intent.id,
        method=PaymentMethod.STRIPE,
        transaction_id=intent.charge_id,
        receipt_url=intent.receipt_url,
        note=f"Payment completed via Stripe. Payment Intent: {intent.id}",
        actor_id=actor.id,
        now=now,
    )
    if applied:
        return _confirm_response(fine, already_paid=False)

    # lost the race; only a payment with this very intent counts as success
    if fine.status == FineStatus.PAID and fine.payment_id == intent.id:
        return _confirm_response(fine, already_paid=True)
    raise InvalidStateError(f"Fine cannot be paid. Current status: {fine.status.value}", status=fine.status.value)


async def handle_gateway_event(session: AsyncSession, event: GatewayEvent, now: Optional[datetime] = None) -> None:
    """Apply a verified gateway event. Unknown event types are acknowledged and ignored."""
    if event.type == EVENT_PAYMENT_SUCCEEDED:
        await _handle_payment_succeeded(session, event, now)
    elif event.type == EVENT_PAYMENT_FAILED:
        await _handle_payment_failed(session, event, now)
    else:
        logger.info("Unhandled gateway event | event_id=%s | type=%s", event.id, event.type)


async def _fine_for_event(session: AsyncSession, event: GatewayEvent) -> Optional[Fine]:
    intent = event.data
    raw_fine_id = (intent.get("metadata") or {}).get("fineId")
    try:
        fine_pk = int(raw_fine_id)
    except (TypeError, ValueError):
        logger.warning("Gateway event without fine reference | event_id=%s | intent_id=%s", event.id, intent.get("id"))
        return None

    fine = await session.get(Fine, fine_pk)
    if not fine:
        logger.warning("Gateway event for unknown fine | event_id=%s | fine_id=%s", event.id, fine_pk)
    return fine


async def _handle_payment_succeeded(session: AsyncSession, event: GatewayEvent, now: Optional[datetime]) -> None:
    intent = event.data
    intent_id = intent.get("id")
    fine = await _fine_for_event(session, event)
    if not fine:
        return
    if fine.status == FineStatus.PAID:
        logger.info("Gateway event for paid fine ignored | fine_id=%s | intent_id=%s", fine.id, intent_id)
        return

    charge = intent.get("latest_charge")
    transaction_id = charge.get("id") if isinstance(charge, dict) else charge
    receipt_url = charge.get("receipt_url") if isinstance(charge, dict) else None

    await fine_service.apply_payment(
        session,
        fine,
        payment_id=intent_id,
        method=PaymentMethod.STRIPE,
        transaction_id=transaction_id,
        receipt_url=receipt_url,
        note=f"Payment completed via Stripe webhook. Payment Intent: {intent_id}",
        actor_id=None,
        now=now,
    )


async def _handle_payment_failed(session: AsyncSession, event: GatewayEvent, now: Optional[datetime]) -> None:
    intent = event.data
    intent_id = intent.get("id")
    error = intent.get("last_payment_error")
    reason = error.get("message") if isinstance(error, dict) else None
    logger.warning("Payment failed | event_id=%s | intent_id=%s | reason=%s", event.id, intent_id, reason)

    fine = await _fine_for_event(session, event)
    if not fine:
        return

    content = f"Payment failed via Stripe webhook. Payment Intent: {intent_id}"
    if reason:
        content = f"{content}: {reason}"
    content = content[:500]

    # redelivered events carry the same intent and message
    existing = await session.execute(
        select(FineNote.id).where(FineNote.fine_id == fine.id, FineNote.content == content).limit(1)
    )
    if existing.first() is not None:
        return

    session.add(FineNote(fine_id=fine.id, content=content, added_by=None, added_at=as_utc(now) if now else utcnow()))
    await session.commit()


async def get_receipt(session: AsyncSession, actor: User, fine_id: int) -> Dict[str, Any]:
    fine = await fine_service.load_fine(session, fine_id)
    _ensure_owner(actor, fine)
    if fine.status != FineStatus.PAID:
        raise InvalidStateError("Receipt is only available for paid fines", status=fine.status.value)

    driver = await session.get(User, fine.driver_id)
    officer = await session.get(User, fine.officer_id)
    violation = await session.get(TrafficViolation, fine.violation_id)
    if not (driver and officer and violation):
        raise NotFoundError("Receipt data is incomplete", fine_id=fine.id)

    return {
        "fine_id": fine.fine_id,
        "receipt_number": fine.receipt_number,
        "payment_date": fine.paid_at,
        "amount": fine.amount,
        "currency": fine.currency,
        "payment_method": fine.payment_method,
        "transaction_id": fine.transaction_id,
        "receipt_url": fine.receipt_url,
        "driver": {"name": driver.full_name, "license_number": driver.license_number},
        "violation": {"name": violation.name, "code": violation.code, "category": violation.category},
        "vehicle": {"license_plate": fine.license_plate, "type": fine.vehicle_type},
        "location": {"address": fine.address, "city": fine.city, "province": fine.province},
        "issued_by": {"name": officer.full_name, "badge_number": officer.badge_number},
        "issued_date": fine.created_at,
    }


def period_start(period: str, now: datetime) -> datetime:
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == "today":
        return today
    if period == "week":
        return today - timedelta(days=7)
    if period == "year":
        return today.replace(month=1, day=1)
    return today.replace(day=1)


async def payment_stats(session: AsyncSession, actor: User, period: str = "month",
                        now: Optional[datetime] = None) -> Dict[str, Any]:
    if period not in STATS_PERIODS:
        raise ValidationFailedError({"period": f"Period must be one of: {', '.join(STATS_PERIODS)}"})
    now = as_utc(now) if now else utcnow()
    start = period_start(period, now)

    rows = (await session.execute(
        select(Fine.payment_method, func.count(Fine.id), func.coalesce(func.sum(Fine.amount), 0))
        .where(Fine.status == FineStatus.PAID, Fine.paid_at >= start, *fine_service.stats_conditions(actor))
        .group_by(Fine.payment_method)
    )).all()

    methods = [
        {"method": method, "count": count, "amount": Decimal(str(amount)).quantize(fine_service.CENT)}
        for method, count, amount in rows
    ]
    total_payments = sum(m["count"] for m in methods)
    total_amount = sum((m["amount"] for m in methods), Decimal("0"))
    average = (total_amount / total_payments).quantize(fine_service.CENT) if total_payments else Decimal("0.00")

    return {
        "period": period,
        "total_payments": total_payments,
        "total_amount": total_amount,
        "average_amount": average,
        "payment_methods": methods,
    }

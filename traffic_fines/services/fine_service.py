"""Fine lifecycle: creation, status transitions, notes and role-scoped queries.

Every write to a fine's status goes through a single conditional UPDATE keyed
on the status that was read, so concurrent writers (two payment confirmations,
a webhook and a staff override, ...) converge on one applied transition.
"""
import logging
import math
import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional, Dict, Any, Tuple
from sqlalchemy import select, update, func, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from traffic_fines.core.config import settings
from traffic_fines.core.exceptions import ForbiddenError, InvalidStateError, NotFoundError, ValidationFailedError
from traffic_fines.core.timeutils import as_utc, utcnow
from traffic_fines.models.fine import (
    PAYABLE_STATUSES,
    Fine,
    FineNote,
    FineStatus,
    DisputeStatus,
    PaymentMethod,
    effective_status,
    receipt_number_for,
)
from traffic_fines.models.user import STAFF_ROLES, Role, User
from traffic_fines.models.violation import TrafficViolation, format_amount
from traffic_fines.services.violation_service import find_violation_by_id

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
# numeric(12, 2)
MAX_AMOUNT = Decimal("9999999999.99")


# --- LOOKUPS & ACCESS ---

async def load_fine(session: AsyncSession, fine_id: int) -> Fine:
    fine = await session.get(Fine, fine_id)
    if not fine:
        raise NotFoundError("Fine not found", fine_id=fine_id)
    return fine


def ensure_can_view(actor: User, fine: Fine) -> None:
    if actor.role == Role.DRIVER and fine.driver_id != actor.id:
        raise ForbiddenError("Access denied. You can only access your own fines.")


async def get_fine(session: AsyncSession, actor: User, fine_id: int) -> Fine:
    fine = await load_fine(session, fine_id)
    ensure_can_view(actor, fine)
    return fine


async def list_notes(session: AsyncSession, fine_pk: int) -> List[FineNote]:
    res = await session.execute(
        select(FineNote).where(FineNote.fine_id == fine_pk).order_by(FineNote.added_at, FineNote.id)
    )
    return res.scalars().all()


# --- CREATION ---

def check_amount(amount: Decimal) -> None:
    if not amount.is_finite() or amount < 0:
        raise ValidationFailedError({"custom_fine_amount": "Custom fine amount must be a positive number"})
    if amount > MAX_AMOUNT:
        raise ValidationFailedError({"custom_fine_amount": f"Custom fine amount cannot exceed {MAX_AMOUNT}"})
    if amount != amount.quantize(CENT):
        raise ValidationFailedError({"custom_fine_amount": "Custom fine amount cannot have more than 2 decimal places"})


async def create_fine(session: AsyncSession, actor: User, payload, now: Optional[datetime] = None) -> Fine:
    if actor.role not in STAFF_ROLES:
        raise ForbiddenError("Only police officers and admins can issue fines")

    custom_amount = payload.custom_fine_amount
    if custom_amount is not None:
        check_amount(Decimal(custom_amount))

    driver = await session.get(User, payload.driver_id)
    if not driver:
        raise NotFoundError("Driver not found", driver_id=payload.driver_id)
    violation = await find_violation_by_id(session, payload.violation_id)

    if driver.role != Role.DRIVER:
        raise InvalidStateError("Selected user is not a driver", driver_id=driver.id)
    if not driver.is_active:
        raise InvalidStateError("Selected driver account is deactivated", driver_id=driver.id)
    if not violation.is_active:
        raise InvalidStateError("Selected violation is not active", violation_id=violation.id)

    amount = custom_amount if custom_amount is not None else violation.fine_amount
    now = as_utc(now) if now else utcnow()

    location = payload.location
    vehicle = payload.vehicle_info
    evidence = None
    if payload.evidence:
        evidence = [
            {**item.model_dump(mode="json"), "uploaded_at": as_utc(item.uploaded_at or now).isoformat()}
            for item in payload.evidence
        ]

    fine = Fine(
        driver_id=driver.id,
        officer_id=actor.id,
        violation_id=violation.id,
        amount=Decimal(amount).quantize(CENT),
        # currency always follows the catalog entry
        currency=violation.currency,
        violation_message=payload.violation_message,
        latitude=location.google_location.lat,
        longitude=location.google_location.lng,
        address=location.address,
        city=location.city,
        province=location.province,
        license_plate=vehicle.license_plate,
        vehicle_type=vehicle.vehicle_type,
        vehicle_make=vehicle.make,
        vehicle_model=vehicle.model,
        vehicle_color=vehicle.color,
        tags=payload.tags or None,
        evidence=evidence,
        status=FineStatus.PENDING,
        due_date=now + timedelta(days=settings.FINE_DUE_DAYS),
        created_at=now,
        updated_at=now,
    )
    session.add(fine)
    await session.commit()
    await session.refresh(fine)

    logger.info(
        "Fine issued | fine_id=%s | driver_id=%s | officer_id=%s | violation=%s | amount=%s %s",
        fine.id, fine.driver_id, fine.officer_id, violation.code, fine.amount, fine.currency.value,
    )
    return fine


# --- TRANSITIONS ---

async def persist_overdue(session: AsyncSession, fine: Fine, now: Optional[datetime] = None) -> None:
    """Store the derived overdue state; only touches a fine that is still pending."""
    now = as_utc(now) if now else utcnow()
    await session.execute(
        update(Fine)
        .where(Fine.id == fine.id, Fine.status == FineStatus.PENDING, Fine.due_date < now)
        .values(status=FineStatus.OVERDUE, updated_at=now)
        .execution_options(synchronize_session=False)
    )


async def _write_transition(session: AsyncSession, fine: Fine, changes: Dict[str, Any], note: Optional[FineNote]) -> Fine:
    expected = fine.status
    result = await session.execute(
        update(Fine)
        .where(Fine.id == fine.id, Fine.status == expected)
        .values(**changes)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await session.rollback()
        raise InvalidStateError("Fine was modified concurrently; reload and retry", fine_id=fine.id)
    if note is not None:
        session.add(note)
    await session.commit()
    await session.refresh(fine)
    return fine


async def apply_payment(
    session: AsyncSession,
    fine: Fine,
    *,
    payment_id: str,
    method: PaymentMethod,
    transaction_id: Optional[str],
    receipt_url: Optional[str] = None,
    note: str,
    actor_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Tuple[Fine, bool]:
    """Compare-and-set a fine to paid. Returns (fine, applied).

    applied is False when another writer got there first; the fine is reloaded
    either way so the caller sees the stored payment metadata.
    """
    now = as_utc(now) if now else utcnow()
    result = await session.execute(
        update(Fine)
        .where(Fine.id == fine.id, Fine.status.in_(PAYABLE_STATUSES))
        .values(
            status=FineStatus.PAID,
            payment_id=payment_id,
            payment_method=method,
            paid_at=now,
            transaction_id=transaction_id or payment_id,
            receipt_number=receipt_number_for(fine.fine_id),
            receipt_url=receipt_url,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    applied = result.rowcount == 1
    if applied:
        session.add(FineNote(fine_id=fine.id, content=note[:500], added_by=actor_id, added_at=now))
    await session.commit()
    await session.refresh(fine)

    if applied:
        logger.info("Fine paid | fine_id=%s | payment_id=%s | method=%s", fine.id, payment_id, method.value)
    else:
        logger.info("Paid transition not applied | fine_id=%s | status=%s", fine.id, fine.status.value)
    return fine, applied


async def change_status(
    session: AsyncSession,
    actor: User,
    fine_id: int,
    target: FineStatus,
    reason: Optional[str] = None,
    payment_method: Optional[PaymentMethod] = None,
    transaction_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Fine:
    now = as_utc(now) if now else utcnow()
    fine = await load_fine(session, fine_id)
    current = effective_status(fine, now)

    if actor.role == Role.DRIVER:
        if fine.driver_id != actor.id:
            raise ForbiddenError("Access denied")
        if target != FineStatus.DISPUTED:
            raise ForbiddenError("Drivers can only dispute fines")
        if current not in PAYABLE_STATUSES:
            raise InvalidStateError(f"Fine cannot be disputed. Current status: {current.value}", status=current.value)
        if not reason or not reason.strip():
            raise ValidationFailedError({"reason": "A reason is required to dispute a fine"})
    elif actor.role == Role.POLICE_OFFICER and fine.officer_id != actor.id:
        raise ForbiddenError("Only the issuing officer or an admin can change this fine")

    if fine.status == FineStatus.PAID:
        raise InvalidStateError("Fine has already been paid", status=FineStatus.PAID.value)

    if target == FineStatus.PAID:
        return await _mark_paid_manually(session, actor, fine, reason, payment_method, transaction_id, now)

    stored = target
    if target == FineStatus.PENDING and as_utc(fine.due_date) < now:
        stored = FineStatus.OVERDUE

    changes: Dict[str, Any] = {"status": stored, "updated_at": now}
    if target == FineStatus.DISPUTED:
        changes.update(
            is_disputed=True,
            dispute_reason=reason,
            dispute_date=now,
            dispute_status=DisputeStatus.PENDING,
        )

    note = None
    if reason:
        note = FineNote(
            fine_id=fine.id,
            content=f"Status changed to {target.value}: {reason}"[:500],
            added_by=actor.id,
            added_at=now,
        )

    fine = await _write_transition(session, fine, changes, note)
    logger.info(
        "Fine status changed | fine_id=%s | from=%s | to=%s | by=%s",
        fine.id, current.value, fine.status.value, actor.id,
    )
    return fine


async def _mark_paid_manually(session, actor, fine, reason, payment_method, transaction_id, now) -> Fine:
    method = payment_method or PaymentMethod.CASH
    if method == PaymentMethod.STRIPE:
        raise ValidationFailedError({"payment_method": "Card payments are recorded through payment confirmation"})

    payment_id = f"MANUAL-{uuid.uuid4().hex[:12].upper()}"
    content = f"Status changed to paid ({method.value})"
    if reason:
        content = f"{content}: {reason}"

    fine, applied = await apply_payment(
        session,
        fine,
        payment_id=payment_id,
        method=method,
        transaction_id=transaction_id,
        note=content,
        actor_id=actor.id,
        now=now,
    )
    if not applied:
        raise InvalidStateError(f"Fine cannot be paid. Current status: {fine.status.value}", status=fine.status.value)
    return fine


# --- NOTES ---

async def add_note(session: AsyncSession, actor: User, fine_id: int, content: str, now: Optional[datetime] = None) -> FineNote:
    if actor.role not in STAFF_ROLES:
        raise ForbiddenError("Only police officers and admins can add notes")
    fine = await load_fine(session, fine_id)
    now = as_utc(now) if now else utcnow()

    note = FineNote(fine_id=fine.id, content=content, added_by=actor.id, added_at=now)
    session.add(note)
    await persist_overdue(session, fine, now)
    await session.commit()
    await session.refresh(note)
    return note


# --- QUERIES ---

def visibility_conditions(actor: User, driver_id: Optional[int] = None) -> list:
    if actor.role == Role.DRIVER:
        return [Fine.driver_id == actor.id]
    if driver_id is not None:
        return [Fine.driver_id == driver_id]
    return []


def stats_conditions(actor: User) -> list:
    if actor.role == Role.DRIVER:
        return [Fine.driver_id == actor.id]
    if actor.role == Role.POLICE_OFFICER:
        return [Fine.officer_id == actor.id]
    return []


def status_condition(status: FineStatus, now: datetime):
    if status == FineStatus.OVERDUE:
        return or_(
            Fine.status == FineStatus.OVERDUE,
            and_(Fine.status == FineStatus.PENDING, Fine.due_date < now),
        )
    if status == FineStatus.PENDING:
        return and_(Fine.status == FineStatus.PENDING, Fine.due_date >= now)
    return Fine.status == status


async def list_fines(
    session: AsyncSession,
    actor: User,
    status: Optional[FineStatus] = None,
    driver_id: Optional[int] = None,
    page: int = 1,
    limit: int = 10,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    now = as_utc(now) if now else utcnow()
    conditions = visibility_conditions(actor, driver_id)
    if status:
        conditions.append(status_condition(status, now))

    stmt = (
        select(Fine, TrafficViolation)
        .join(TrafficViolation, TrafficViolation.id == Fine.violation_id)
        .where(*conditions)
        .order_by(Fine.created_at.desc(), Fine.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    rows = (await session.execute(stmt)).all()
    total = (await session.execute(select(func.count()).select_from(Fine).where(*conditions))).scalar_one()

    return {
        "fines": [to_read_model(fine, violation=violation, now=now) for fine, violation in rows],
        "pagination": {
            "current": page,
            "pages": math.ceil(total / limit) if limit else 0,
            "total": total,
            "limit": limit,
        },
    }


async def fine_stats(session: AsyncSession, actor: User, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = as_utc(now) if now else utcnow()
    conditions = stats_conditions(actor)
    rows = (await session.execute(
        select(Fine.status, func.count(Fine.id), func.coalesce(func.sum(Fine.amount), 0))
        .where(*conditions)
        .group_by(Fine.status)
    )).all()
    # pending fines past their due date are reported as overdue
    lapsed_count, lapsed_amount = (await session.execute(
        select(func.count(Fine.id), func.coalesce(func.sum(Fine.amount), 0))
        .where(*conditions, Fine.status == FineStatus.PENDING, Fine.due_date < now)
    )).one()

    buckets: Dict[FineStatus, Dict[str, Any]] = {}

    def add(status: FineStatus, count: int, amount) -> None:
        bucket = buckets.setdefault(status, {"status": status, "count": 0, "total_amount": Decimal("0.00")})
        bucket["count"] += count
        bucket["total_amount"] += Decimal(str(amount)).quantize(CENT)

    for status, count, amount in rows:
        add(FineStatus(status), count, amount)
    if lapsed_count:
        add(FineStatus.PENDING, -lapsed_count, -Decimal(str(lapsed_amount)))
        add(FineStatus.OVERDUE, lapsed_count, lapsed_amount)
        if buckets[FineStatus.PENDING]["count"] == 0:
            del buckets[FineStatus.PENDING]

    status_stats = sorted(buckets.values(), key=lambda b: b["count"], reverse=True)
    return {
        "total_fines": sum(b["count"] for b in status_stats),
        "total_amount": sum((b["total_amount"] for b in status_stats), Decimal("0.00")),
        "overdue_fines": buckets[FineStatus.OVERDUE]["count"] if FineStatus.OVERDUE in buckets else 0,
        "status_stats": status_stats,
    }


# --- PRESENTATION ---

def days_until_due(fine: Fine, now: Optional[datetime] = None) -> Optional[int]:
    now = as_utc(now) if now else utcnow()
    if effective_status(fine, now) not in PAYABLE_STATUSES:
        return None
    return math.ceil((as_utc(fine.due_date) - now).total_seconds() / 86400)


def to_read_model(
    fine: Fine,
    notes: Optional[List[FineNote]] = None,
    violation: Optional[TrafficViolation] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    now = as_utc(now) if now else utcnow()
    status = effective_status(fine, now)
    return {
        "id": fine.id,
        "fine_id": fine.fine_id,
        "driver_id": fine.driver_id,
        "officer_id": fine.officer_id,
        "violation_id": fine.violation_id,
        "violation": {
            "id": violation.id,
            "name": violation.name,
            "code": violation.code,
            "category": violation.category,
            "severity_level": violation.severity_level,
        } if violation else None,
        "amount": fine.amount,
        "currency": fine.currency,
        "formatted_amount": format_amount(fine.amount, fine.currency),
        "violation_message": fine.violation_message,
        "location": {
            "google_location": {"lat": fine.latitude, "lng": fine.longitude},
            "address": fine.address,
            "city": fine.city,
            "province": fine.province,
        },
        "vehicle_info": {
            "license_plate": fine.license_plate,
            "vehicle_type": fine.vehicle_type,
            "make": fine.vehicle_make,
            "model": fine.vehicle_model,
            "color": fine.vehicle_color,
        },
        "tags": fine.tags or [],
        "evidence": fine.evidence or [],
        "status": status,
        "due_date": fine.due_date,
        "is_overdue": status == FineStatus.OVERDUE,
        "days_until_due": days_until_due(fine, now),
        "payment_info": {
            "payment_id": fine.payment_id,
            "payment_method": fine.payment_method,
            "paid_at": fine.paid_at,
            "transaction_id": fine.transaction_id,
            "receipt_number": fine.receipt_number,
            "receipt_url": fine.receipt_url,
        },
        "dispute_info": {
            "is_disputed": fine.is_disputed,
            "dispute_reason": fine.dispute_reason,
            "dispute_date": fine.dispute_date,
            "dispute_status": fine.dispute_status,
            "dispute_resolution": fine.dispute_resolution,
            "resolved_by": fine.resolved_by,
            "resolved_at": fine.resolved_at,
        },
        "notes": notes or [],
        "created_at": fine.created_at,
        "updated_at": fine.updated_at,
    }


async def fine_detail(session: AsyncSession, fine: Fine, now: Optional[datetime] = None) -> Dict[str, Any]:
    violation = await session.get(TrafficViolation, fine.violation_id)
    notes = await list_notes(session, fine.id)
    return to_read_model(fine, notes=notes, violation=violation, now=now)

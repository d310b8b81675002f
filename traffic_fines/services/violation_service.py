import logging
from decimal import Decimal
from typing import List, Optional, Dict, Any
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from traffic_fines.core.exceptions import InvalidStateError, NotFoundError, ValidationFailedError
from traffic_fines.core.timeutils import utcnow
from traffic_fines.models.fine import Fine
from traffic_fines.models.violation import SeverityLevel, TrafficViolation, ViolationCategory

logger = logging.getLogger(__name__)


async def find_violation_by_id(session: AsyncSession, violation_id: int) -> TrafficViolation:
    violation = await session.get(TrafficViolation, violation_id)
    if not violation:
        raise NotFoundError("Violation not found", violation_id=violation_id)
    return violation


async def get_violation_by_code(session: AsyncSession, code: str) -> Optional[TrafficViolation]:
    res = await session.execute(select(TrafficViolation).where(TrafficViolation.code == code.strip().upper()))
    return res.scalars().first()


async def list_violations(session: AsyncSession, category: Optional[ViolationCategory] = None,
                          severity: Optional[SeverityLevel] = None, active: Optional[bool] = True) -> List[TrafficViolation]:
    stmt = select(TrafficViolation)
    if category:
        stmt = stmt.where(TrafficViolation.category == category)
    if severity:
        stmt = stmt.where(TrafficViolation.severity_level == severity)
    if active is not None:
        stmt = stmt.where(TrafficViolation.is_active.is_(active))
    stmt = stmt.order_by(TrafficViolation.category, TrafficViolation.name)
    res = await session.execute(stmt)
    return res.scalars().all()


async def create_violation(session: AsyncSession, payload, created_by: Optional[int]) -> TrafficViolation:
    if await get_violation_by_code(session, payload.code):
        raise ValidationFailedError({"code": f"Violation code {payload.code} already exists"})

    violation = TrafficViolation(**payload.model_dump(), created_by=created_by)
    session.add(violation)
    await session.commit()
    await session.refresh(violation)
    logger.info("Violation created | code=%s | id=%s", violation.code, violation.id)
    return violation


async def update_violation(session: AsyncSession, violation_id: int, changes: Dict[str, Any]) -> TrafficViolation:
    violation = await find_violation_by_id(session, violation_id)
    for field, value in changes.items():
        setattr(violation, field, value)
    violation.updated_at = utcnow()
    session.add(violation)
    await session.commit()
    await session.refresh(violation)
    return violation


async def delete_violation(session: AsyncSession, violation_id: int) -> None:
    violation = await find_violation_by_id(session, violation_id)
    in_use = (await session.execute(
        select(func.count()).select_from(Fine).where(Fine.violation_id == violation_id)
    )).scalar_one()
    if in_use:
        raise InvalidStateError(
            "Violation is referenced by existing fines; deactivate it instead",
            fine_count=in_use,
        )
    await session.delete(violation)
    await session.commit()


async def violation_stats(session: AsyncSession) -> Dict[str, Any]:
    category_rows = (await session.execute(
        select(
            TrafficViolation.category,
            func.count(TrafficViolation.id),
            func.coalesce(func.sum(TrafficViolation.fine_amount), 0),
            func.coalesce(func.avg(TrafficViolation.fine_amount), 0),
        )
        .group_by(TrafficViolation.category)
        .order_by(func.count(TrafficViolation.id).desc())
    )).all()

    severity_rows = (await session.execute(
        select(TrafficViolation.severity_level, func.count(TrafficViolation.id))
        .group_by(TrafficViolation.severity_level)
    )).all()

    total = (await session.execute(select(func.count()).select_from(TrafficViolation))).scalar_one()
    active = (await session.execute(
        select(func.count()).select_from(TrafficViolation).where(TrafficViolation.is_active.is_(True))
    )).scalar_one()

    return {
        "total_violations": total,
        "active_violations": active,
        "category_stats": [
            {
                "category": category,
                "count": count,
                "total_fine_amount": Decimal(str(total_amount)),
                "avg_fine_amount": Decimal(str(avg_amount)).quantize(Decimal("0.01")),
            }
            for category, count, total_amount, avg_amount in category_rows
        ],
        "severity_stats": [{"severity_level": s, "count": c} for s, c in severity_rows],
    }

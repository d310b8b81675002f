from typing import List, Optional
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from traffic_fines.core.database import get_session
from traffic_fines.core.security import get_current_user, require_admin
from traffic_fines.models.user import User
from traffic_fines.models.violation import SeverityLevel, ViolationCategory
from traffic_fines.schemas.violation import ViolationCreate, ViolationRead, ViolationStats, ViolationUpdate
from traffic_fines.services import admin_service, violation_service

router = APIRouter(prefix="/violations", tags=["violations"])


@router.get("/", response_model=List[ViolationRead])
async def list_violations(
    category: Optional[ViolationCategory] = None,
    severity_level: Optional[SeverityLevel] = None,
    active: Optional[bool] = True,
    session: AsyncSession = Depends(get_session),
    user: User = Depends(get_current_user),
):
    # only staff may browse inactive catalog entries
    if not user.is_staff:
        active = True
    return await violation_service.list_violations(session, category, severity_level, active)


@router.get("/meta/categories", response_model=List[str])
async def list_categories(user: User = Depends(get_current_user)):
    return [c.value for c in ViolationCategory]


@router.get("/meta/severity-levels", response_model=List[str])
async def list_severity_levels(user: User = Depends(get_current_user)):
    return [s.value for s in SeverityLevel]


@router.get("/stats/overview", response_model=ViolationStats)
async def violation_stats(session: AsyncSession = Depends(get_session), admin: User = Depends(require_admin)):
    return await violation_service.violation_stats(session)


@router.get("/{violation_id}", response_model=ViolationRead)
async def get_violation(violation_id: int, session: AsyncSession = Depends(get_session),
                        user: User = Depends(get_current_user)):
    return await violation_service.find_violation_by_id(session, violation_id)


@router.post("/", response_model=ViolationRead, status_code=status.HTTP_201_CREATED)
async def create_violation(
    payload: ViolationCreate,
    session: AsyncSession = Depends(get_session),
    admin: User = Depends(require_admin),
):
    violation = await violation_service.create_violation(session, payload, created_by=admin.id)
    await admin_service.record_admin_audit(
        session,
        admin.id,
        "create_violation",
        resource_type="violation",
        resource_id=violation.id,
        details={"code": violation.code, "fine_amount": str(violation.fine_amount)},
    )
    return violation


@router.put("/{violation_id}", response_model=ViolationRead)
async def update_violation(
    violation_id: int,
    payload: ViolationUpdate,
    session: AsyncSession = Depends(get_session),
    admin: User = Depends(require_admin),
):
    changes = payload.model_dump(exclude_unset=True)
    violation = await violation_service.update_violation(session, violation_id, changes)
    await admin_service.record_admin_audit(
        session,
        admin.id,
        "update_violation",
        resource_type="violation",
        resource_id=violation.id,
        details={k: str(v) for k, v in changes.items()},
    )
    return violation


@router.delete("/{violation_id}")
async def delete_violation(
    violation_id: int,
    session: AsyncSession = Depends(get_session),
    admin: User = Depends(require_admin),
):
    await violation_service.delete_violation(session, violation_id)
    await admin_service.record_admin_audit(
        session, admin.id, "delete_violation", resource_type="violation", resource_id=violation_id
    )
    return {"ok": True, "violation_id": violation_id}

from typing import List, Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from traffic_fines.core.database import get_session
from traffic_fines.core.security import get_current_user, require_admin, require_staff
from traffic_fines.models.user import Role, User
from traffic_fines.schemas.user import ActiveUpdate, ProfileUpdate, RoleUpdate, UserCreate, UserList, UserRead, UserStats
from traffic_fines.services import admin_service, user_service

router = APIRouter(prefix="/users", tags=["users"])


@router.post("/", response_model=UserRead, status_code=status.HTTP_201_CREATED)
async def create_user(
    payload: UserCreate,
    session: AsyncSession = Depends(get_session),
    admin: User = Depends(require_admin),
):
    profile = payload.model_dump(exclude={"username", "email", "password", "role"}, exclude_none=True)
    user = await user_service.register_user(
        session, payload.username, payload.email, payload.password, payload.role, **profile
    )
    await admin_service.record_admin_audit(
        session,
        admin.id,
        "create_user",
        resource_type="user",
        resource_id=user.id,
        details={"username": user.username, "role": user.role.value},
    )
    return user


@router.get("/", response_model=UserList)
async def list_users(
    role: Optional[Role] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    session: AsyncSession = Depends(get_session),
    admin: User = Depends(require_admin),
):
    return await user_service.list_users(session, role=role, search=search, page=page, limit=limit)


@router.get("/drivers/search", response_model=List[UserRead])
async def search_drivers(
    q: str = Query(..., min_length=2),
    limit: int = Query(10, ge=1, le=50),
    session: AsyncSession = Depends(get_session),
    staff: User = Depends(require_staff),
):
    return await user_service.search_drivers(session, q, limit)


@router.get("/stats/overview", response_model=UserStats)
async def user_stats(session: AsyncSession = Depends(get_session), admin: User = Depends(require_admin)):
    return await user_service.user_stats(session)


@router.get("/{user_id}", response_model=UserRead)
async def get_user(user_id: int, session: AsyncSession = Depends(get_session), user: User = Depends(get_current_user)):
    return await user_service.get_user(session, user, user_id)


@router.put("/{user_id}", response_model=UserRead)
async def update_user(
    user_id: int,
    payload: ProfileUpdate,
    session: AsyncSession = Depends(get_session),
    user: User = Depends(get_current_user),
):
    return await user_service.update_profile(session, user, user_id, payload.model_dump(exclude_unset=True))


@router.put("/{user_id}/role", response_model=UserRead)
async def change_role(
    user_id: int,
    payload: RoleUpdate,
    session: AsyncSession = Depends(get_session),
    admin: User = Depends(require_admin),
):
    user = await user_service.change_role(session, admin, user_id, payload.role)
    await admin_service.record_admin_audit(
        session, admin.id, "change_role", resource_type="user", resource_id=user.id, details={"role": user.role.value}
    )
    return user


@router.put("/{user_id}/status", response_model=UserRead)
async def change_status(
    user_id: int,
    payload: ActiveUpdate,
    session: AsyncSession = Depends(get_session),
    admin: User = Depends(require_admin),
):
    user = await user_service.set_active(session, admin, user_id, payload.is_active)
    await admin_service.record_admin_audit(
        session,
        admin.id,
        "activate_user" if user.is_active else "deactivate_user",
        resource_type="user",
        resource_id=user.id,
    )
    return user

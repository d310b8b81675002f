import logging
import math
from typing import List, Optional, Dict, Any
from sqlalchemy import select, func, or_, case
from sqlalchemy.ext.asyncio import AsyncSession

from traffic_fines.core.exceptions import ForbiddenError, InvalidStateError, NotFoundError, ValidationFailedError
from traffic_fines.models.user import User, Role
from traffic_fines.services import auth_service

logger = logging.getLogger(__name__)


async def find_user_by_id(session: AsyncSession, user_id: int) -> User:
    user = await session.get(User, user_id)
    if not user:
        raise NotFoundError("User not found", user_id=user_id)
    return user


async def ensure_unique(session: AsyncSession, username: Optional[str] = None, email: Optional[str] = None,
                        exclude_id: Optional[int] = None) -> None:
    errors: Dict[str, str] = {}
    if username:
        existing = await auth_service.get_user_by_username(session, username.strip())
        if existing and existing.id != exclude_id:
            errors["username"] = "Username already exists"
    if email:
        existing = await auth_service.get_user_by_email(session, email.strip())
        if existing and existing.id != exclude_id:
            errors["email"] = "Email already registered"
    if errors:
        raise ValidationFailedError(errors)


async def register_user(session: AsyncSession, username: str, email: str, password: str, role: Role = Role.DRIVER, **profile) -> User:
    await ensure_unique(session, username=username, email=email)
    user = await auth_service.create_user(session, username, email, password, role, **profile)
    logger.info("User registered | user_id=%s | role=%s", user.id, user.role.value)
    return user


async def get_user(session: AsyncSession, actor: User, user_id: int) -> User:
    if actor.role == Role.DRIVER and actor.id != user_id:
        raise ForbiddenError("Access denied. You can only view your own profile.")
    return await find_user_by_id(session, user_id)


async def list_users(session: AsyncSession, role: Optional[Role] = None, search: Optional[str] = None,
                     page: int = 1, limit: int = 10) -> Dict[str, Any]:
    conditions = []
    if role:
        conditions.append(User.role == role)
    if search:
        like = f"%{search}%"
        conditions.append(or_(
            User.username.ilike(like),
            User.email.ilike(like),
            User.first_name.ilike(like),
            User.last_name.ilike(like),
        ))

    stmt = select(User).where(*conditions).order_by(User.created_at.desc(), User.id.desc())
    stmt = stmt.offset((page - 1) * limit).limit(limit)
    users = (await session.execute(stmt)).scalars().all()
    total = (await session.execute(select(func.count()).select_from(User).where(*conditions))).scalar_one()

    return {"users": users, "total": total, "page": page, "pages": math.ceil(total / limit) if limit else 0}


async def search_drivers(session: AsyncSession, q: str, limit: int = 10) -> List[User]:
    like = f"%{q}%"
    stmt = (
        select(User)
        .where(
            User.role == Role.DRIVER,
            User.is_active.is_(True),
            or_(
                User.username.ilike(like),
                User.first_name.ilike(like),
                User.last_name.ilike(like),
                User.license_number.ilike(like),
            ),
        )
        .order_by(User.username)
        .limit(limit)
    )
    return (await session.execute(stmt)).scalars().all()


async def update_profile(session: AsyncSession, actor: User, user_id: int, changes: Dict[str, Any]) -> User:
    if actor.role != Role.ADMIN and actor.id != user_id:
        raise ForbiddenError("Access denied. You can only update your own profile.")
    user = await find_user_by_id(session, user_id)

    if changes.get("email"):
        changes["email"] = changes["email"].strip().lower()
        await ensure_unique(session, email=changes["email"], exclude_id=user.id)

    for field, value in changes.items():
        setattr(user, field, value)
    session.add(user)
    await session.commit()
    await session.refresh(user)
    return user


async def change_role(session: AsyncSession, actor: User, user_id: int, role: Role) -> User:
    if actor.id == user_id:
        raise InvalidStateError("You cannot change your own role")
    user = await find_user_by_id(session, user_id)
    user.role = role
    session.add(user)
    await session.commit()
    await session.refresh(user)
    logger.info("Role changed | user_id=%s | role=%s | by=%s", user.id, role.value, actor.id)
    return user


async def set_active(session: AsyncSession, actor: User, user_id: int, is_active: bool) -> User:
    if actor.id == user_id:
        raise InvalidStateError("You cannot change your own account status")
    user = await find_user_by_id(session, user_id)
    user.is_active = is_active
    session.add(user)
    await session.commit()
    await session.refresh(user)
    logger.info("User %s | user_id=%s | by=%s", "activated" if is_active else "deactivated", user.id, actor.id)
    return user


async def user_stats(session: AsyncSession) -> Dict[str, Any]:
    stmt = select(
        User.role,
        func.count(User.id),
        func.sum(case((User.is_active.is_(True), 1), else_=0)),
    ).group_by(User.role)
    rows = (await session.execute(stmt)).all()

    role_stats = [{"role": r, "count": int(c), "active": int(a or 0)} for r, c, a in rows]
    return {
        "total_users": sum(b["count"] for b in role_stats),
        "active_users": sum(b["active"] for b in role_stats),
        "role_stats": role_stats,
    }

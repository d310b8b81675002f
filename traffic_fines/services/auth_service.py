from datetime import timedelta
from typing import Optional

import jwt
from passlib.context import CryptContext
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from traffic_fines.core.config import settings
from traffic_fines.core.timeutils import utcnow
from traffic_fines.models.user import User, Role

pwd_context = CryptContext(
    schemes=["argon2"],
    deprecated="auto",
)

JWT_ALGORITHM = settings.ALGORITHM
JWT_SECRET = settings.SECRET_KEY
ACCESS_TOKEN_EXPIRE_MINUTES = int(settings.ACCESS_TOKEN_EXPIRE_MINUTES)


def get_password_hash(password: str) -> str:
    """Hash password using argon2."""
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify password with argon2."""
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        # malformed or unknown hash
        return False


async def get_user_by_username(session: AsyncSession, username: str) -> Optional[User]:
    q = await session.execute(select(User).where(User.username == username))
    return q.scalars().first()


async def get_user_by_email(session: AsyncSession, email: str) -> Optional[User]:
    q = await session.execute(select(User).where(User.email == email.lower()))
    return q.scalars().first()


async def create_user(session: AsyncSession, username: str, email: str, password: str, role: Role = Role.DRIVER, **profile) -> User:
    user = User(
        username=username.strip(),
        email=email.strip().lower(),
        hashed_password=get_password_hash(password),
        role=role,
        **profile,
    )
    session.add(user)
    await session.commit()
    await session.refresh(user)
    return user


async def authenticate_user(session: AsyncSession, username: str, password: str) -> Optional[User]:
    user = await get_user_by_username(session, username)
    if not user:
        return None
    if not verify_password(password, user.hashed_password):
        return None
    return user


async def record_login(session: AsyncSession, user: User) -> None:
    user.last_login = utcnow()
    session.add(user)
    await session.commit()


def create_access_token(subject: str, role: str, expires_delta: Optional[timedelta] = None) -> str:
    now = utcnow()
    exp = now + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    payload = {"sub": str(subject), "exp": exp, "role": role}
    token = jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)
    return token


def decode_access_token(token: str) -> dict:
    return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])

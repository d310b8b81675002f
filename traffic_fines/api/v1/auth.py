from datetime import timedelta
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.ext.asyncio import AsyncSession

from traffic_fines.core.config import settings
from traffic_fines.core.database import get_session
from traffic_fines.core.security import get_current_user
from traffic_fines.models.user import Role, User
from traffic_fines.schemas.auth import SignupRequest, Token
from traffic_fines.schemas.user import UserRead
from traffic_fines.services import auth_service, user_service

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/signup", response_model=UserRead, status_code=status.HTTP_201_CREATED)
async def signup(payload: SignupRequest, session: AsyncSession = Depends(get_session)):
    """Self-registration always creates a driver account."""
    profile = payload.model_dump(exclude={"username", "email", "password"}, exclude_none=True)
    user = await user_service.register_user(
        session, payload.username, payload.email, payload.password, Role.DRIVER, **profile
    )
    return user


@router.post("/token", response_model=Token)
async def token(form_data: OAuth2PasswordRequestForm = Depends(), session: AsyncSession = Depends(get_session)):
    user = await auth_service.authenticate_user(session, form_data.username, form_data.password)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Incorrect username or password")
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Account is deactivated")

    await auth_service.record_login(session, user)
    access_token_expires = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    access_token = auth_service.create_access_token(
        subject=user.username, role=user.role.value, expires_delta=access_token_expires
    )
    return Token(access_token=access_token, expires_in=int(access_token_expires.total_seconds()))


@router.get("/me", response_model=UserRead)
async def me(user: User = Depends(get_current_user)):
    return user

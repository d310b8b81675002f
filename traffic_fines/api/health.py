from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from traffic_fines.core.config import settings
from traffic_fines.core.database import get_session

router = APIRouter()


class HealthResponse(BaseModel):
    status: str = "ok"
    app: str
    environment: str
    database: str


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check(session: AsyncSession = Depends(get_session)):
    """Liveness plus a trivial database round-trip."""
    await session.execute(text("SELECT 1"))
    return HealthResponse(app=settings.APP_NAME, environment=settings.ENVIRONMENT, database="ok")

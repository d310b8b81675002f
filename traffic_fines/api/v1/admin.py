from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from traffic_fines.core.database import get_session
from traffic_fines.core.security import require_admin
from traffic_fines.schemas.admin import AuditRecord
from traffic_fines.services import admin_service

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/audit", response_model=List[AuditRecord])
async def get_admin_audit(
    resource_type: Optional[str] = None,
    limit: int = Query(200, ge=1, le=1000),
    session: AsyncSession = Depends(get_session),
    user=Depends(require_admin),
):
    return await admin_service.list_admin_audit(session, limit=limit, resource_type=resource_type)

from typing import List, Optional, Dict, Any
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from traffic_fines.models.admin_audit import AdminAudit


# --- ADMIN AUDIT ---

async def record_admin_audit(session: AsyncSession, user_id: Optional[int], action: str, resource_type: Optional[str] = None,
                             resource_id: Optional[int] = None, details: Optional[Dict[str, Any]] = None) -> AdminAudit:
    audit = AdminAudit(
        user_id=user_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        details=details
    )
    session.add(audit)
    await session.commit()
    await session.refresh(audit)
    return audit


async def list_admin_audit(session: AsyncSession, limit: int = 200, resource_type: Optional[str] = None) -> List[AdminAudit]:
    stmt = select(AdminAudit).order_by(AdminAudit.created_at.desc(), AdminAudit.id.desc()).limit(limit)
    if resource_type:
        stmt = stmt.where(AdminAudit.resource_type == resource_type)
    res = await session.execute(stmt)
    return res.scalars().all()

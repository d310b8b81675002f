from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from traffic_fines.core.database import get_session
from traffic_fines.core.security import get_current_user, require_staff
from traffic_fines.models.fine import FineStatus
from traffic_fines.models.user import User
from traffic_fines.schemas.fine import FineCreate, FineList, FineRead, FineStats, FineStatusUpdate, NoteCreate, NoteRead
from traffic_fines.services import fine_service

router = APIRouter(prefix="/fines", tags=["fines"])


@router.get("/", response_model=FineList)
async def list_fines(
    status: Optional[FineStatus] = None,
    driver_id: Optional[int] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    session: AsyncSession = Depends(get_session),
    user: User = Depends(get_current_user),
):
    return await fine_service.list_fines(session, user, status=status, driver_id=driver_id, page=page, limit=limit)


@router.get("/stats/overview", response_model=FineStats)
async def fine_stats(session: AsyncSession = Depends(get_session), user: User = Depends(get_current_user)):
    return await fine_service.fine_stats(session, user)


@router.get("/{fine_id}", response_model=FineRead)
async def get_fine(fine_id: int, session: AsyncSession = Depends(get_session), user: User = Depends(get_current_user)):
    fine = await fine_service.get_fine(session, user, fine_id)
    return await fine_service.fine_detail(session, fine)


@router.post("/", response_model=FineRead, status_code=201)
async def create_fine(
    payload: FineCreate,
    session: AsyncSession = Depends(get_session),
    user: User = Depends(require_staff),
):
    fine = await fine_service.create_fine(session, user, payload)
    return await fine_service.fine_detail(session, fine)


@router.put("/{fine_id}/status", response_model=FineRead)
async def update_fine_status(
    fine_id: int,
    payload: FineStatusUpdate,
    session: AsyncSession = Depends(get_session),
    user: User = Depends(get_current_user),
):
    fine = await fine_service.change_status(
        session,
        user,
        fine_id,
        payload.status,
        reason=payload.reason,
        payment_method=payload.payment_method,
        transaction_id=payload.transaction_id,
    )
    return await fine_service.fine_detail(session, fine)


@router.post("/{fine_id}/notes", response_model=NoteRead, status_code=201)
async def add_note(
    fine_id: int,
    payload: NoteCreate,
    session: AsyncSession = Depends(get_session),
    user: User = Depends(require_staff),
):
    return await fine_service.add_note(session, user, fine_id, payload.content)

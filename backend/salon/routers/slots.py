from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..deps import get_current_actor, get_session
from ..domain.errors import DomainError
from ..infrastructure.repositories import build_repositories
from ..schemas import SlotList
from ..usecases import slots as slot_usecase
from .common import http_error

router = APIRouter(prefix="/staff", tags=["slots"], dependencies=[Depends(get_current_actor)])


@router.get("/{staff_id}/slots", response_model=SlotList)
async def list_slots(
    staff_id: int,
    booking_date: date = Query(..., alias="date", description="Local calendar date (YYYY-MM-DD)"),
    duration_minutes: int = Query(..., ge=1, le=24 * 60),
    session: AsyncSession = Depends(get_session),
) -> SlotList:
    repos = build_repositories(session)
    try:
        slots = await slot_usecase.list_available_slots(
            repos,
            staff_id=staff_id,
            booking_date=booking_date,
            duration_minutes=duration_minutes,
            buffer_minutes=get_settings().booking_buffer_minutes,
        )
    except DomainError as exc:
        raise http_error(exc) from exc
    return SlotList(staff_id=staff_id, booking_date=booking_date, duration_minutes=duration_minutes, slots=slots)

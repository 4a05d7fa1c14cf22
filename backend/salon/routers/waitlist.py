from typing import List

from fastapi import APIRouter, BackgroundTasks, Depends, Path, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..deps import get_current_actor, get_notifier, get_session
from ..domain.errors import DomainError
from ..domain.lifecycle import Actor
from ..infrastructure.repositories import build_repositories
from ..schemas import ReservationRead, WaitlistBook, WaitlistBookingRead, WaitlistCreate, WaitlistRead
from ..usecases import bookings as booking_usecase
from ..usecases import waitlist as waitlist_usecase
from ..usecases.notifications import BookingNotifier
from ..utils.audit_log import record_audit
from ..utils.hooks import PostCommitHooks
from .common import http_error

router = APIRouter(prefix="/waitlist", tags=["waitlist"])


@router.post("", response_model=WaitlistRead, status_code=status.HTTP_201_CREATED)
async def join_waitlist(
    payload: WaitlistCreate,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> WaitlistRead:
    repos = build_repositories(session)
    async with session.begin():
        try:
            entry = await waitlist_usecase.join_waitlist(
                repos,
                actor=actor,
                service_id=payload.service_id,
                staff_id=payload.staff_id,
                preferred_date=payload.preferred_date,
                preferred_start=payload.preferred_start,
                preferred_end=payload.preferred_end,
                language=actor.language or get_settings().default_language,
            )
        except DomainError as exc:
            raise http_error(exc) from exc
    return WaitlistRead.from_db(entry)


@router.get("", response_model=List[WaitlistRead])
async def list_waitlist(
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> list[WaitlistRead]:
    repos = build_repositories(session)
    entries = await waitlist_usecase.list_waitlist(repos, actor=actor)
    return [WaitlistRead.from_db(entry) for entry in entries]


@router.delete("/{entry_id}", response_model=WaitlistRead)
async def leave_waitlist(
    entry_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> WaitlistRead:
    repos = build_repositories(session)
    async with session.begin():
        try:
            entry = await waitlist_usecase.leave_waitlist(repos, actor=actor, entry_id=entry_id)
        except DomainError as exc:
            raise http_error(exc) from exc
    return WaitlistRead.from_db(entry)


@router.post("/{entry_id}/book", response_model=WaitlistBookingRead, status_code=status.HTTP_201_CREATED)
async def book_from_waitlist(
    payload: WaitlistBook,
    background_tasks: BackgroundTasks,
    entry_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
    notifier: BookingNotifier = Depends(get_notifier),
) -> WaitlistBookingRead:
    repos = build_repositories(session)
    hooks = PostCommitHooks()
    async with session.begin():
        try:
            reservation, entry = await booking_usecase.book_from_waitlist(
                repos,
                actor=actor,
                entry_id=entry_id,
                staff_id=payload.staff_id,
                booking_date=payload.booking_date,
                start_time=payload.start_time,
                items=[booking_usecase.LineRequest(item.service_id, item.duration_id) for item in payload.items],
                hooks=hooks,
                notifier=notifier,
            )
        except DomainError as exc:
            raise http_error(exc) from exc

    background_tasks.add_task(hooks.run)
    record_audit(
        action="waitlist.booked",
        initiator=actor.role.value,
        reservation_id=reservation.id,
        staff_id=reservation.staff_id,
        client_id=reservation.client_id,
        booking_date=reservation.booking_date,
        start_time=reservation.start_time,
        end_time=reservation.end_time,
        status_to=reservation.status,
        extra={"waitlist_entry_id": entry.id},
    )
    return WaitlistBookingRead(
        reservation=ReservationRead.from_db(reservation=reservation),
        waitlist=WaitlistRead.from_db(entry),
    )

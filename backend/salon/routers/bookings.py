from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Path, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..deps import get_current_actor, get_notifier, get_session
from ..domain.errors import DomainError
from ..domain.lifecycle import Actor
from ..infrastructure.repositories import build_repositories
from ..schemas import BookingCreate, PromoQuote, PromoValidate, ReservationCancel, ReservationRead
from ..usecases import bookings as booking_usecase
from ..usecases.notifications import BookingNotifier
from ..utils.audit_log import record_audit
from ..utils.hooks import PostCommitHooks
from .common import audit_status_change, http_error

router = APIRouter(prefix="", tags=["bookings"])


@router.post("/bookings", response_model=ReservationRead, status_code=status.HTTP_201_CREATED)
async def create_booking(
    payload: BookingCreate,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
    notifier: BookingNotifier = Depends(get_notifier),
) -> ReservationRead:
    repos = build_repositories(session)
    hooks = PostCommitHooks()
    async with session.begin():
        try:
            reservation = await booking_usecase.commit_booking(
                repos,
                actor=actor,
                staff_id=payload.staff_id,
                booking_date=payload.booking_date,
                start_time=payload.start_time,
                items=[booking_usecase.LineRequest(item.service_id, item.duration_id) for item in payload.items],
                promo_code=payload.promo_code,
                language=actor.language or get_settings().default_language,
                hooks=hooks,
                notifier=notifier,
            )
        except DomainError as exc:
            raise http_error(exc) from exc

    background_tasks.add_task(hooks.run)
    record_audit(
        action="reservation.created",
        initiator=actor.role.value,
        reservation_id=reservation.id,
        staff_id=reservation.staff_id,
        client_id=reservation.client_id,
        booking_date=reservation.booking_date,
        start_time=reservation.start_time,
        end_time=reservation.end_time,
        status_to=reservation.status,
        extra={"promo_code_id": reservation.promo_code_id} if reservation.promo_code_id else None,
    )
    return ReservationRead.from_db(reservation=reservation)


@router.post("/bookings/validate-promo", response_model=PromoQuote)
async def validate_promo(
    payload: PromoValidate,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> PromoQuote:
    repos = build_repositories(session)
    try:
        promo, discount = await booking_usecase.validate_promo_code(repos, code=payload.code, amount=payload.amount)
    except DomainError as exc:
        raise http_error(exc) from exc
    return PromoQuote(valid=True, code=promo.code, discount=discount, final_amount=payload.amount - discount)


@router.get("/me/bookings", response_model=List[ReservationRead])
async def list_my_bookings(
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> list[ReservationRead]:
    repos = build_repositories(session)
    rows = await booking_usecase.list_client_reservations(repos, actor=actor)
    return [ReservationRead.from_db(reservation=row) for row in rows]


@router.get("/me/bookings/{reservation_id}", response_model=ReservationRead)
async def get_my_booking(
    reservation_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> ReservationRead:
    repos = build_repositories(session)
    try:
        reservation = await booking_usecase.get_reservation(repos, actor=actor, reservation_id=reservation_id)
    except DomainError as exc:
        raise http_error(exc) from exc
    return ReservationRead.from_db(reservation=reservation)


@router.post("/me/bookings/{reservation_id}/cancel", response_model=ReservationRead)
async def cancel_my_booking(
    background_tasks: BackgroundTasks,
    reservation_id: int = Path(..., ge=1),
    payload: Optional[ReservationCancel] = None,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
    notifier: BookingNotifier = Depends(get_notifier),
) -> ReservationRead:
    repos = build_repositories(session)
    hooks = PostCommitHooks()
    async with session.begin():
        try:
            change = await booking_usecase.cancel_reservation(
                repos,
                actor=actor,
                reservation_id=reservation_id,
                reason=payload.reason if payload else None,
                hooks=hooks,
                notifier=notifier,
            )
        except DomainError as exc:
            raise http_error(exc) from exc

    background_tasks.add_task(hooks.run)
    audit_status_change(change, actor)
    return ReservationRead.from_db(reservation=change.reservation)

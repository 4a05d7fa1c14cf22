from enum import StrEnum

from fastapi import APIRouter, BackgroundTasks, Depends, Path
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..deps import get_dispatcher, get_manager_actor, get_notifier, get_session, get_staff_actor
from ..domain.errors import DomainError
from ..domain.lifecycle import Actor, TransitionKind
from ..domain.repositories import NotificationDispatcher
from ..infrastructure.repositories import build_repositories
from ..models import NotificationType
from ..schemas import JobResult, ReservationRead, ScheduleRead, ScheduleUpdate, StatusChangeRead, StatusUpdate
from ..usecases import bookings as booking_usecase
from ..usecases import notifications as notification_usecase
from ..usecases import slots as slot_usecase
from ..usecases.notifications import BookingNotifier
from ..utils.hooks import PostCommitHooks
from ..utils.time import local_now
from .common import audit_status_change, http_error

router = APIRouter(prefix="/admin", tags=["admin"])


class Job(StrEnum):
    REMINDERS_24H = "reminders-24h"
    REMINDERS_2H = "reminders-2h"
    REVIEW_REQUESTS = "review-requests"


_REMINDER_JOBS = {
    Job.REMINDERS_24H: NotificationType.REMINDER_24H,
    Job.REMINDERS_2H: NotificationType.REMINDER_2H,
}


@router.patch("/bookings/{reservation_id}/status", response_model=StatusChangeRead)
async def update_booking_status(
    payload: StatusUpdate,
    background_tasks: BackgroundTasks,
    reservation_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_staff_actor),
    notifier: BookingNotifier = Depends(get_notifier),
) -> StatusChangeRead:
    repos = build_repositories(session)
    hooks = PostCommitHooks()
    async with session.begin():
        try:
            change = await booking_usecase.change_status(
                repos,
                actor=actor,
                reservation_id=reservation_id,
                target=payload.status,
                reason=payload.reason,
                hooks=hooks,
                notifier=notifier,
            )
        except DomainError as exc:
            raise http_error(exc) from exc

    background_tasks.add_task(hooks.run)
    audit_status_change(change, actor)
    base = ReservationRead.from_db(reservation=change.reservation)
    return StatusChangeRead(
        **dict(base),
        previous_status=change.previous,
        override=change.kind == TransitionKind.OVERRIDE,
    )


@router.put("/staff/{staff_id}/schedule", response_model=ScheduleRead)
async def put_staff_schedule(
    payload: ScheduleUpdate,
    staff_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_staff_actor),
) -> ScheduleRead:
    repos = build_repositories(session)
    async with session.begin():
        try:
            schedule = await slot_usecase.set_working_hours(
                repos,
                actor=actor,
                staff_id=staff_id,
                work_date=payload.work_date,
                start_time=payload.start_time,
                end_time=payload.end_time,
                is_day_off=payload.is_day_off,
            )
        except DomainError as exc:
            raise http_error(exc) from exc
    return ScheduleRead.from_db(schedule)


@router.post("/jobs/{job}", response_model=JobResult)
async def run_job(
    job: Job,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_manager_actor),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> JobResult:
    repos = build_repositories(session)
    window = get_settings().reminder_window_minutes
    now = local_now()
    async with session.begin():
        if job in _REMINDER_JOBS:
            processed = await notification_usecase.process_reminders(
                repos,
                dispatcher,
                type=_REMINDER_JOBS[job],
                now=now,
                window_minutes=window,
            )
        else:
            processed = await notification_usecase.process_review_requests(
                repos,
                dispatcher,
                now=now,
                window_minutes=window,
            )
    return JobResult(job=job.value, processed=processed, ran_at=now)

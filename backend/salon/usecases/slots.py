from datetime import date

from ..domain.errors import InvalidTimeFormatError, NotAuthorizedError, StaffNotFoundError
from ..domain.lifecycle import Actor, ActorRole
from ..domain.repositories import Repositories
from ..domain.services import busy_intervals, slots_for_schedule
from ..models import StaffSchedule
from ..utils.time import to_offset_minutes

DEFAULT_OPEN = "09:00"
DEFAULT_CLOSE = "18:00"


async def list_available_slots(
    repos: Repositories,
    *,
    staff_id: int,
    booking_date: date,
    duration_minutes: int,
    buffer_minutes: int,
) -> list[str]:
    """Advisory listing: reads without locks and may be stale by the time the client commits."""
    staff = await repos.catalog.get_staff(staff_id)
    if staff is None or not staff.is_active:
        raise StaffNotFoundError("staff not found")

    schedule = await repos.schedules.get_working_hours(staff_id, booking_date)
    if schedule is None or schedule.is_day_off:
        return []

    reservations = await repos.reservations.list_blocking(staff_id, booking_date)
    return slots_for_schedule(
        schedule,
        duration_minutes=duration_minutes,
        buffer_minutes=buffer_minutes,
        busy=busy_intervals(reservations),
    )


async def set_working_hours(
    repos: Repositories,
    *,
    actor: Actor,
    staff_id: int,
    work_date: date,
    start_time: str | None = None,
    end_time: str | None = None,
    is_day_off: bool = False,
) -> StaffSchedule:
    if actor.role == ActorRole.CLIENT:
        raise NotAuthorizedError("clients cannot edit schedules")
    if actor.role == ActorRole.STAFF:
        own = await repos.catalog.get_staff_by_user(actor.user_id)
        if own is None or own.id != staff_id:
            raise NotAuthorizedError("staff may only edit their own schedule")

    staff = await repos.catalog.get_staff(staff_id)
    if staff is None:
        raise StaffNotFoundError("staff not found")

    start_time = start_time or DEFAULT_OPEN
    end_time = end_time or DEFAULT_CLOSE
    # Day-off records still carry parseable times.
    open_at = to_offset_minutes(start_time)
    close_at = to_offset_minutes(end_time)
    if not is_day_off and open_at >= close_at:
        raise InvalidTimeFormatError("opening time must be before closing time")

    return await repos.schedules.upsert_working_hours(
        staff_id=staff_id,
        work_date=work_date,
        start_time=start_time,
        end_time=end_time,
        is_day_off=is_day_off,
    )

from dataclasses import dataclass
from typing import Iterable, Sequence

from ..models import Reservation, StaffSchedule
from ..utils.time import intervals_overlap, to_clock_time, to_offset_minutes
from .errors import InvalidServiceDurationError
from .lifecycle import is_blocking

# Candidate start times advance in fixed steps regardless of service length.
SLOT_STEP_MINUTES = 15


@dataclass(frozen=True)
class Interval:
    start: int
    end: int

    @classmethod
    def from_clock(cls, start: str, end: str) -> "Interval":
        return cls(to_offset_minutes(start), to_offset_minutes(end))


def busy_intervals(reservations: Iterable[Reservation]) -> list[Interval]:
    """Intervals occupied by reservations in a blocking status; cancelled ones never count."""
    return [
        Interval.from_clock(reservation.start_time, reservation.end_time)
        for reservation in reservations
        if is_blocking(reservation.status)
    ]


def has_conflict(candidate_start: int, candidate_end: int, busy: Sequence[Interval]) -> bool:
    """Authoritative commit-time check: strict half-open overlap, no buffer."""
    return any(intervals_overlap(candidate_start, candidate_end, b.start, b.end) for b in busy)


def generate_slots(
    work_start: str,
    work_end: str,
    duration_minutes: int,
    buffer_minutes: int,
    busy: Sequence[Interval],
) -> list[str]:
    """
    List start times ("HH:MM") at which a service of ``duration_minutes`` fits
    inside working hours and keeps ``buffer_minutes`` clear of every busy interval.
    """
    if duration_minutes <= 0:
        raise InvalidServiceDurationError("duration must be positive")
    if buffer_minutes < 0:
        raise ValueError("buffer_minutes must not be negative")

    open_at = to_offset_minutes(work_start)
    close_at = to_offset_minutes(work_end)
    slots: list[str] = []
    start = open_at
    while start + duration_minutes <= close_at:
        end = start + duration_minutes
        if not any(start < b.end + buffer_minutes and end > b.start - buffer_minutes for b in busy):
            slots.append(to_clock_time(start))
        start += SLOT_STEP_MINUTES
    return slots


def slots_for_schedule(
    schedule: StaffSchedule | None,
    *,
    duration_minutes: int,
    buffer_minutes: int,
    busy: Sequence[Interval],
) -> list[str]:
    # No record means no working hours; never fall back to a default day.
    if schedule is None or schedule.is_day_off:
        return []
    return generate_slots(schedule.start_time, schedule.end_time, duration_minutes, buffer_minutes, busy)

import re
from datetime import date, datetime, time

from ..domain.errors import InvalidTimeFormatError

MINUTES_PER_DAY = 24 * 60

_CLOCK_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def to_offset_minutes(clock_time: str) -> int:
    """Parse an "HH:MM" wall-clock string into minutes since midnight."""
    match = _CLOCK_RE.match(clock_time) if isinstance(clock_time, str) else None
    if match is None:
        raise InvalidTimeFormatError(f"invalid time {clock_time!r}, expected HH:MM between 00:00 and 23:59")
    return int(match.group(1)) * 60 + int(match.group(2))


def to_clock_time(offset_minutes: int) -> str:
    if not 0 <= offset_minutes < MINUTES_PER_DAY:
        raise InvalidTimeFormatError(f"offset {offset_minutes} is outside a single day")
    hours, minutes = divmod(offset_minutes, 60)
    return f"{hours:02d}:{minutes:02d}"


def intervals_overlap(start_a: int, end_a: int, start_b: int, end_b: int) -> bool:
    """Half-open [start, end) overlap; intervals touching at an endpoint do not overlap."""
    return start_a < end_b and start_b < end_a


def combine(day: date, clock_time: str) -> datetime:
    """Naive local datetime for a calendar date and an "HH:MM" time."""
    hours, minutes = divmod(to_offset_minutes(clock_time), 60)
    return datetime.combine(day, time(hours, minutes))


def format_day(day: date) -> str:
    return day.strftime("%d.%m.%Y")


def local_now() -> datetime:
    """Current wall-clock time; the engine never converts between time zones."""
    return datetime.now().replace(microsecond=0)

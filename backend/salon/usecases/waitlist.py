from __future__ import annotations

import logging
from datetime import date, datetime

from ..domain.errors import (
    DuplicateWaitlistEntryError,
    InvalidServiceDurationError,
    InvalidTimeFormatError,
    InvalidTransitionError,
    NotAuthorizedError,
    ServiceNotOfferedByStaffError,
    StaffNotFoundError,
    WaitlistEntryNotFoundError,
)
from ..domain.lifecycle import Actor
from ..domain.repositories import Repositories
from ..models import WaitlistEntry, WaitlistStatus
from ..utils.hooks import PostCommitHooks
from ..utils.time import format_day, local_now, to_offset_minutes
from .notifications import BookingNotifier

logger = logging.getLogger(__name__)


async def promote_waitlist(
    repos: Repositories,
    *,
    staff_id: int,
    service_id: int,
    freed_date: date,
    freed_start: str,
    freed_end: str,
    now: datetime,
    hooks: PostCommitHooks | None = None,
    notifier: BookingNotifier | None = None,
) -> WaitlistEntry | None:
    """
    Offer a freed interval to the oldest matching active waitlist entry.
    Runs inside the cancelling transaction; at most one entry is promoted.
    """
    entry = await repos.waitlist.find_oldest_match_for_update(
        service_id=service_id,
        staff_id=staff_id,
        freed_date=freed_date,
    )
    if entry is None:
        logger.debug("no waitlist entry for service %s staff %s on %s", service_id, staff_id, freed_date)
        return None

    entry.status = WaitlistStatus.NOTIFIED
    entry.updated_at = now
    await repos.waitlist.save(entry)
    logger.info("waitlist entry %s promoted for staff %s %s %s", entry.id, staff_id, freed_date, freed_start)

    if hooks is not None and notifier is not None:
        staff = await repos.catalog.get_staff(staff_id)
        service = await repos.catalog.get_service(service_id)
        params = {
            "waitlist_entry_id": entry.id,
            "staff_id": staff_id,
            "staff_name": staff.display_name if staff else None,
            "service_name": service.name if service else None,
            "date": format_day(freed_date),
            "time": freed_start,
            "end_time": freed_end,
        }
        hooks.add("waitlist_available", notifier.waitlist_available, entry, params)
    return entry


async def join_waitlist(
    repos: Repositories,
    *,
    actor: Actor,
    service_id: int,
    staff_id: int | None,
    preferred_date: date,
    preferred_start: str | None = None,
    preferred_end: str | None = None,
    language: str,
) -> WaitlistEntry:
    if preferred_start is not None and preferred_end is not None:
        if to_offset_minutes(preferred_start) >= to_offset_minutes(preferred_end):
            raise InvalidTimeFormatError("preferred_start must be before preferred_end")
    elif preferred_start is not None:
        to_offset_minutes(preferred_start)
    elif preferred_end is not None:
        to_offset_minutes(preferred_end)

    service = await repos.catalog.get_service(service_id)
    if service is None or not service.is_active:
        raise InvalidServiceDurationError("service not found")
    if staff_id is not None:
        staff = await repos.catalog.get_staff(staff_id)
        if staff is None or not staff.is_active:
            raise StaffNotFoundError("staff not found")
        if await repos.catalog.get_offering(staff_id, service_id) is None:
            raise ServiceNotOfferedByStaffError("staff does not provide this service")

    duplicate = await repos.waitlist.find_open_duplicate(
        client_id=actor.user_id,
        service_id=service_id,
        staff_id=staff_id,
        preferred_date=preferred_date,
    )
    if duplicate is not None:
        raise DuplicateWaitlistEntryError("an active waitlist entry already exists for these criteria")

    return await repos.waitlist.create(
        client_id=actor.user_id,
        service_id=service_id,
        staff_id=staff_id,
        preferred_date=preferred_date,
        preferred_start=preferred_start,
        preferred_end=preferred_end,
        language=language,
    )


async def get_owned_entry(repos: Repositories, *, actor: Actor, entry_id: int) -> WaitlistEntry:
    entry = await repos.waitlist.get_for_update(entry_id)
    if entry is None:
        raise WaitlistEntryNotFoundError("waitlist entry not found")
    if entry.client_id != actor.user_id:
        raise NotAuthorizedError("waitlist entry belongs to another client")
    return entry


async def leave_waitlist(
    repos: Repositories,
    *,
    actor: Actor,
    entry_id: int,
    now: datetime | None = None,
) -> WaitlistEntry:
    entry = await get_owned_entry(repos, actor=actor, entry_id=entry_id)
    if entry.status == WaitlistStatus.EXPIRED:
        return entry
    if entry.status == WaitlistStatus.BOOKED:
        raise InvalidTransitionError("booked waitlist entries cannot be withdrawn")
    entry.status = WaitlistStatus.EXPIRED
    entry.updated_at = now or local_now()
    return await repos.waitlist.save(entry)


async def list_waitlist(repos: Repositories, *, actor: Actor) -> list[WaitlistEntry]:
    return await repos.waitlist.list_by_client(actor.user_id)

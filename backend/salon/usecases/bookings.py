from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Sequence

from ..domain.errors import (
    InvalidServiceDurationError,
    InvalidTransitionError,
    NotAuthorizedError,
    PromoCodeError,
    ReservationNotFoundError,
    ServiceNotOfferedByStaffError,
    SlotNoLongerAvailableError,
    SlotNotAvailableError,
    StaffNotFoundError,
)
from ..domain.lifecycle import (
    Actor,
    ActorRole,
    TransitionKind,
    check_transition,
    is_blocking,
    is_cancelled,
)
from ..domain.pricing import PricedLine, discount_for, line_price, money, next_stamp, promo_rejection
from ..domain.repositories import CatalogRepository, PromoCodeRepository, Repositories
from ..domain.services import busy_intervals, has_conflict
from ..models import NotificationType, PromoCode, Reservation, ReservationStatus, WaitlistEntry, WaitlistStatus
from ..utils.hooks import PostCommitHooks
from ..utils.time import MINUTES_PER_DAY, combine, local_now, to_clock_time, to_offset_minutes
from .notifications import BookingNotifier, booking_params
from .waitlist import get_owned_entry, promote_waitlist

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LineRequest:
    service_id: int
    duration_id: int


@dataclass(frozen=True)
class StatusChange:
    reservation: Reservation
    previous: ReservationStatus
    kind: TransitionKind
    promoted: WaitlistEntry | None = None


async def commit_booking(
    repos: Repositories,
    *,
    actor: Actor,
    staff_id: int,
    booking_date: date,
    start_time: str,
    items: Sequence[LineRequest],
    promo_code: str | None = None,
    language: str,
    now: datetime | None = None,
    hooks: PostCommitHooks | None = None,
    notifier: BookingNotifier | None = None,
    initial_status: ReservationStatus = ReservationStatus.PENDING_CONFIRMATION,
    conflict_error: type[SlotNotAvailableError] = SlotNotAvailableError,
) -> Reservation:
    """
    Create a reservation with its line items, loyalty stamp and promo redemption.

    Must run inside one database transaction. Locking the staff row first
    serialises concurrent commits for the same staff member, so the conflict
    check below always sees every reservation committed before this one.
    """
    now = now or local_now()
    start = to_offset_minutes(start_time)

    staff = await repos.catalog.get_staff_for_update(staff_id)
    if staff is None or not staff.is_active:
        raise StaffNotFoundError("staff not found")

    lines = await _price_lines(repos.catalog, staff_id=staff_id, items=items)
    end = start + sum(line.duration_minutes for line in lines)
    if end >= MINUTES_PER_DAY:
        raise InvalidServiceDurationError("booking would run past midnight")
    end_time = to_clock_time(end)

    existing = await repos.reservations.list_blocking(staff_id, booking_date, for_update=True)
    if has_conflict(start, end, busy_intervals(existing)):
        raise conflict_error("time slot is already booked")

    subtotal = money(sum((line.price for line in lines), Decimal(0)))
    promo, discount = await _apply_promo(repos.promos, promo_code, subtotal=subtotal, now=now)

    reservation = await repos.reservations.create(
        client_id=actor.user_id,
        staff_id=staff_id,
        booking_date=booking_date,
        start_time=start_time,
        end_time=end_time,
        status=initial_status,
        total_price=subtotal - discount,
        discount_amount=discount,
        promo_code_id=promo.id if promo else None,
        language=language,
        lines=lines,
    )

    settings = await repos.loyalty.get_active_settings()
    if settings is not None:
        existing_stamps = await repos.loyalty.count_stamps(actor.user_id)
        stamp = next_stamp(existing_stamps, settings.stamps_for_reward)
        await repos.loyalty.create_stamp(
            client_id=actor.user_id,
            reservation_id=reservation.id,
            stamp_number=stamp.stamp_number,
            is_reward=stamp.is_reward,
        )

    if promo is not None:
        await repos.promos.increment_uses(promo)

    logger.info(
        "reservation %s created for staff %s on %s %s-%s",
        reservation.id,
        staff_id,
        booking_date,
        start_time,
        end_time,
    )

    if hooks is not None and notifier is not None:
        params = await booking_params(repos.catalog, reservation)
        hooks.add("booking_created", notifier.notify_reservation, reservation, params)
        hooks.add("schedule_reminders", notifier.schedule_reminders, reservation, params, now)
    return reservation


async def _price_lines(
    catalog: CatalogRepository,
    *,
    staff_id: int,
    items: Sequence[LineRequest],
) -> list[PricedLine]:
    if not items:
        raise InvalidServiceDurationError("at least one service is required")

    lines: list[PricedLine] = []
    for item in items:
        duration = await catalog.get_duration(item.duration_id)
        if duration is None or not duration.is_active or duration.service_id != item.service_id:
            raise InvalidServiceDurationError("invalid service/duration combination")
        offering = await catalog.get_offering(staff_id, item.service_id)
        if offering is None:
            raise ServiceNotOfferedByStaffError("staff does not provide this service")
        lines.append(
            PricedLine(
                service_id=item.service_id,
                duration_id=item.duration_id,
                duration_minutes=duration.duration_minutes,
                price=line_price(duration.base_price, offering.price_modifier),
            )
        )
    return lines


async def _apply_promo(
    promos: PromoCodeRepository,
    code: str | None,
    *,
    subtotal: Decimal,
    now: datetime,
) -> tuple[PromoCode | None, Decimal]:
    # An unusable code never fails the booking; it just earns no discount.
    if not code:
        return None, money(0)
    promo = await promos.get_by_code_for_update(code)
    rejection = promo_rejection(promo, subtotal=subtotal, now=now)
    if promo is None or rejection is not None:
        logger.info("promo code %r not applied: %s", code, rejection)
        return None, money(0)
    return promo, discount_for(promo, subtotal)


async def validate_promo_code(
    repos: Repositories,
    *,
    code: str,
    amount: Decimal,
    now: datetime | None = None,
) -> tuple[PromoCode, Decimal]:
    """Strict preview of a promo code; raises PromoCodeError naming the failed check."""
    promo = await repos.promos.get_by_code(code)
    rejection = promo_rejection(promo, subtotal=amount, now=now or local_now())
    if promo is None or rejection is not None:
        reason = rejection.value if rejection is not None else "not_found"
        raise PromoCodeError(reason, f"promo code cannot be applied: {reason}")
    return promo, discount_for(promo, amount)


async def _authorize(catalog: CatalogRepository, actor: Actor, reservation: Reservation) -> None:
    if actor.is_manager:
        return
    if actor.role == ActorRole.CLIENT:
        if reservation.client_id != actor.user_id:
            raise NotAuthorizedError("reservation belongs to another client")
        return
    staff = await catalog.get_staff_by_user(actor.user_id)
    if staff is None or staff.id != reservation.staff_id:
        raise NotAuthorizedError("reservation is assigned to another staff member")


async def change_status(
    repos: Repositories,
    *,
    actor: Actor,
    reservation_id: int,
    target: ReservationStatus,
    reason: str | None = None,
    now: datetime | None = None,
    hooks: PostCommitHooks | None = None,
    notifier: BookingNotifier | None = None,
) -> StatusChange:
    """
    Apply a status change and report how it was classified. Moving into a cancelled status cancels pending
    reminders and offers the freed interval to the waitlist.
    """
    now = now or local_now()
    reservation = await repos.reservations.get_for_update(reservation_id)
    if reservation is None:
        raise ReservationNotFoundError("reservation not found")
    await _authorize(repos.catalog, actor, reservation)

    previous = reservation.status
    kind = check_transition(
        previous,
        target,
        actor=actor,
        starts_at=combine(reservation.booking_date, reservation.start_time),
        now=now,
    )
    if kind == TransitionKind.NOOP:
        return StatusChange(reservation, previous, kind)

    # Reopening a cancelled reservation must not double-book its interval.
    if is_cancelled(previous) and is_blocking(target) and reservation.staff_id is not None:
        await repos.catalog.get_staff_for_update(reservation.staff_id)
        others = [
            r
            for r in await repos.reservations.list_blocking(
                reservation.staff_id, reservation.booking_date, for_update=True
            )
            if r.id != reservation.id
        ]
        start = to_offset_minutes(reservation.start_time)
        end = to_offset_minutes(reservation.end_time)
        if has_conflict(start, end, busy_intervals(others)):
            raise SlotNotAvailableError("interval was booked after this reservation was cancelled")

    if kind == TransitionKind.OVERRIDE:
        logger.warning(
            "reservation %s moved %s -> %s outside the regular flow by %s %s",
            reservation.id,
            previous.value,
            target.value,
            actor.role.value,
            actor.user_id,
        )

    reservation.status = target
    if reason is not None:
        reservation.cancel_reason = reason
    reservation.updated_at = now
    await repos.reservations.save(reservation)

    if is_cancelled(target) and not is_cancelled(previous):
        await repos.notifications.cancel_pending(reservation.id)
        promoted = await _offer_to_waitlist(repos, reservation, now=now, hooks=hooks, notifier=notifier)
        return StatusChange(reservation, previous, kind, promoted)
    return StatusChange(reservation, previous, kind)


async def _offer_to_waitlist(
    repos: Repositories,
    reservation: Reservation,
    *,
    now: datetime,
    hooks: PostCommitHooks | None,
    notifier: BookingNotifier | None,
) -> WaitlistEntry | None:
    if reservation.staff_id is None:
        return None
    seen: set[int] = set()
    for item in reservation.items:
        if item.service_id in seen:
            continue
        seen.add(item.service_id)
        entry = await promote_waitlist(
            repos,
            staff_id=reservation.staff_id,
            service_id=item.service_id,
            freed_date=reservation.booking_date,
            freed_start=reservation.start_time,
            freed_end=reservation.end_time,
            now=now,
            hooks=hooks,
            notifier=notifier,
        )
        if entry is not None:
            return entry
    return None


async def cancel_reservation(
    repos: Repositories,
    *,
    actor: Actor,
    reservation_id: int,
    reason: str | None = None,
    now: datetime | None = None,
    hooks: PostCommitHooks | None = None,
    notifier: BookingNotifier | None = None,
) -> StatusChange:
    target = (
        ReservationStatus.CANCELLED_BY_CLIENT
        if actor.role == ActorRole.CLIENT
        else ReservationStatus.CANCELLED_BY_ADMIN
    )
    return await change_status(
        repos,
        actor=actor,
        reservation_id=reservation_id,
        target=target,
        reason=reason,
        now=now,
        hooks=hooks,
        notifier=notifier,
    )


async def book_from_waitlist(
    repos: Repositories,
    *,
    actor: Actor,
    entry_id: int,
    staff_id: int,
    booking_date: date,
    start_time: str,
    items: Sequence[LineRequest],
    now: datetime | None = None,
    hooks: PostCommitHooks | None = None,
    notifier: BookingNotifier | None = None,
) -> tuple[Reservation, WaitlistEntry]:
    """
    Book the slot a waitlisted client was notified about. The slot is checked
    again; if it was taken meanwhile the entry stays ``notified``.
    """
    now = now or local_now()
    entry = await get_owned_entry(repos, actor=actor, entry_id=entry_id)
    if entry.status != WaitlistStatus.NOTIFIED:
        raise InvalidTransitionError("booking is only possible after a waitlist notification")
    if all(item.service_id != entry.service_id for item in items):
        raise InvalidServiceDurationError("booking must include the waitlisted service")
    if entry.staff_id is not None and staff_id != entry.staff_id:
        raise InvalidTransitionError("booking must be with the waitlisted staff member")
    if booking_date < entry.preferred_date:
        raise InvalidTransitionError("booking date is earlier than the waitlisted date")

    reservation = await commit_booking(
        repos,
        actor=actor,
        staff_id=staff_id,
        booking_date=booking_date,
        start_time=start_time,
        items=items,
        language=entry.language,
        now=now,
        initial_status=ReservationStatus.CONFIRMED,
        conflict_error=SlotNoLongerAvailableError,
    )
    entry.status = WaitlistStatus.BOOKED
    entry.updated_at = now
    await repos.waitlist.save(entry)

    if hooks is not None and notifier is not None:
        params = await booking_params(repos.catalog, reservation)
        hooks.add("booking_confirmed", notifier.notify_reservation, reservation, params, NotificationType.BOOKING_CONFIRMED)
        hooks.add("schedule_reminders", notifier.schedule_reminders, reservation, params, now)
    return reservation, entry


async def list_client_reservations(repos: Repositories, *, actor: Actor) -> list[Reservation]:
    return await repos.reservations.list_by_client(actor.user_id)


async def get_reservation(repos: Repositories, *, actor: Actor, reservation_id: int) -> Reservation:
    reservation = await repos.reservations.get(reservation_id)
    if reservation is None:
        raise ReservationNotFoundError("reservation not found")
    await _authorize(repos.catalog, actor, reservation)
    return reservation

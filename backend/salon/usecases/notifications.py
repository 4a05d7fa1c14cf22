"""Booking notifications: post-commit delivery and the periodic reminder scans.

Delivery is best-effort. A dispatcher failure is recorded as a ``failed``
outbox row and logged; it never propagates to the booking that caused it.
"""

from __future__ import annotations

import logging
from contextlib import AbstractAsyncContextManager
from datetime import datetime, timedelta
from typing import Any, Callable

from ..domain.repositories import CatalogRepository, NotificationDispatcher, NotificationRepository, Repositories
from ..models import (
    NotificationStatus,
    NotificationType,
    Reservation,
    ReservationStatus,
    WaitlistEntry,
)
from ..utils.time import combine, format_day, local_now

logger = logging.getLogger(__name__)

OutboxFactory = Callable[[], AbstractAsyncContextManager[NotificationRepository]]

REMINDER_LEAD: dict[NotificationType, timedelta] = {
    NotificationType.REMINDER_24H: timedelta(hours=24),
    NotificationType.REMINDER_2H: timedelta(hours=2),
}
REVIEW_REQUEST_DELAY = timedelta(hours=2)
REMINDABLE_STATUSES = frozenset(
    {
        ReservationStatus.PENDING_CONFIRMATION,
        ReservationStatus.DEPOSIT_PENDING,
        ReservationStatus.DEPOSIT_PAID,
        ReservationStatus.CONFIRMED,
    }
)


async def booking_params(catalog: CatalogRepository, reservation: Reservation) -> dict[str, Any]:
    """Template parameters for a reservation. Localized names are passed through as-is."""
    staff = await catalog.get_staff(reservation.staff_id) if reservation.staff_id is not None else None
    service_names = []
    for item in reservation.items:
        service = await catalog.get_service(item.service_id)
        if service is not None:
            service_names.append(service.name)
    return {
        "reservation_id": reservation.id,
        "staff_name": staff.display_name if staff else None,
        "service_names": service_names,
        "date": format_day(reservation.booking_date),
        "time": reservation.start_time,
        "end_time": reservation.end_time,
        "total_price": str(reservation.total_price),
    }


async def _send(
    dispatcher: NotificationDispatcher,
    *,
    client_id: int,
    type: NotificationType,
    language: str,
    params: dict[str, Any],
) -> bool:
    try:
        sent = await dispatcher.send(
            client_id=client_id,
            template_type=type.value,
            language=language,
            params=params,
        )
    except Exception:
        logger.exception("dispatch of %s to client %s raised", type.value, client_id)
        return False
    if not sent:
        logger.warning("dispatch of %s to client %s failed", type.value, client_id)
    return sent


async def deliver(
    dispatcher: NotificationDispatcher,
    outbox: NotificationRepository,
    *,
    client_id: int,
    reservation_id: int | None,
    type: NotificationType,
    language: str,
    params: dict[str, Any],
    now: datetime,
) -> bool:
    sent = await _send(dispatcher, client_id=client_id, type=type, language=language, params=params)
    await outbox.record(
        client_id=client_id,
        reservation_id=reservation_id,
        type=type,
        status=NotificationStatus.SENT if sent else NotificationStatus.FAILED,
        language=language,
        payload=params,
        scheduled_at=now,
        sent_at=now if sent else None,
    )
    return sent


class BookingNotifier:
    """Post-commit notification side effects; each call runs in its own outbox transaction."""

    def __init__(self, dispatcher: NotificationDispatcher, outbox_factory: OutboxFactory) -> None:
        self.dispatcher = dispatcher
        self.outbox_factory = outbox_factory

    async def notify_reservation(
        self,
        reservation: Reservation,
        params: dict[str, Any],
        type: NotificationType = NotificationType.BOOKING_CREATED,
    ) -> bool:
        async with self.outbox_factory() as outbox:
            return await deliver(
                self.dispatcher,
                outbox,
                client_id=reservation.client_id,
                reservation_id=reservation.id,
                type=type,
                language=reservation.language,
                params=params,
                now=local_now(),
            )

    async def schedule_reminders(self, reservation: Reservation, params: dict[str, Any], now: datetime) -> int:
        """Queue the 24h and 2h reminders whose trigger time is still ahead of ``now``."""
        starts_at = combine(reservation.booking_date, reservation.start_time)
        scheduled = 0
        async with self.outbox_factory() as outbox:
            for type, lead in REMINDER_LEAD.items():
                trigger_at = starts_at - lead
                if trigger_at <= now:
                    continue
                await outbox.record(
                    client_id=reservation.client_id,
                    reservation_id=reservation.id,
                    type=type,
                    status=NotificationStatus.PENDING,
                    language=reservation.language,
                    payload=params,
                    scheduled_at=trigger_at,
                )
                scheduled += 1
        return scheduled

    async def waitlist_available(self, entry: WaitlistEntry, params: dict[str, Any]) -> bool:
        async with self.outbox_factory() as outbox:
            return await deliver(
                self.dispatcher,
                outbox,
                client_id=entry.client_id,
                reservation_id=None,
                type=NotificationType.WAITLIST_AVAILABLE,
                language=entry.language,
                params=params,
                now=local_now(),
            )


async def process_reminders(
    repos: Repositories,
    dispatcher: NotificationDispatcher,
    *,
    type: NotificationType,
    now: datetime,
    window_minutes: int,
) -> int:
    """
    Send pending reminders of ``type`` whose trigger time falls in
    ``[now - window, now)``. Consecutive runs with the same window never overlap.
    Reminders for reservations that are no longer active are cancelled instead.
    """
    if type not in REMINDER_LEAD:
        raise ValueError(f"{type.value} is not a reminder type")
    due = await repos.notifications.list_due(type, now - timedelta(minutes=window_minutes), now)
    processed = 0
    for notification in due:
        reservation = (
            await repos.reservations.get(notification.reservation_id)
            if notification.reservation_id is not None
            else None
        )
        if reservation is None or reservation.status not in REMINDABLE_STATUSES:
            notification.status = NotificationStatus.CANCELLED
            await repos.notifications.save(notification)
            continue

        sent = await _send(
            dispatcher,
            client_id=notification.client_id,
            type=type,
            language=notification.language,
            params=notification.payload,
        )
        notification.status = NotificationStatus.SENT if sent else NotificationStatus.FAILED
        notification.sent_at = now if sent else None
        await repos.notifications.save(notification)
        processed += 1

    logger.info("Processed %d %s reminders", processed, type.value)
    return processed


async def process_review_requests(
    repos: Repositories,
    dispatcher: NotificationDispatcher,
    *,
    now: datetime,
    window_minutes: int,
) -> int:
    """Ask for a review of completed appointments that ended in ``[now - 2h - window, now - 2h)``."""
    window_end = now - REVIEW_REQUEST_DELAY
    window_start = window_end - timedelta(minutes=window_minutes)
    candidates = await repos.reservations.list_by_status_between(
        [ReservationStatus.COMPLETED],
        window_start.date(),
        window_end.date(),
    )
    processed = 0
    for reservation in candidates:
        ends_at = combine(reservation.booking_date, reservation.end_time)
        if not window_start <= ends_at < window_end:
            continue
        if await repos.notifications.exists(reservation.id, NotificationType.REVIEW_REQUEST):
            continue
        params = await booking_params(repos.catalog, reservation)
        await deliver(
            dispatcher,
            repos.notifications,
            client_id=reservation.client_id,
            reservation_id=reservation.id,
            type=NotificationType.REVIEW_REQUEST,
            language=reservation.language,
            params=params,
            now=now,
        )
        processed += 1

    logger.info("Processed %d review requests", processed)
    return processed

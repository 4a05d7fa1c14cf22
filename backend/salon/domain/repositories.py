from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Protocol, Sequence

from ..models import (
    LoyaltySettings,
    LoyaltyStamp,
    Notification,
    NotificationStatus,
    NotificationType,
    PromoCode,
    Reservation,
    ReservationStatus,
    Service,
    ServiceDuration,
    Staff,
    StaffSchedule,
    StaffService,
    WaitlistEntry,
)
from .pricing import PricedLine


class ScheduleRepository(Protocol):
    async def get_working_hours(self, staff_id: int, work_date: date) -> StaffSchedule | None: ...

    async def upsert_working_hours(
        self,
        *,
        staff_id: int,
        work_date: date,
        start_time: str,
        end_time: str,
        is_day_off: bool,
    ) -> StaffSchedule: ...


class CatalogRepository(Protocol):
    async def get_staff(self, staff_id: int) -> Staff | None: ...

    async def get_staff_for_update(self, staff_id: int) -> Staff | None: ...

    async def get_staff_by_user(self, user_id: int) -> Staff | None: ...

    async def get_service(self, service_id: int) -> Service | None: ...

    async def get_duration(self, duration_id: int) -> ServiceDuration | None: ...

    async def get_offering(self, staff_id: int, service_id: int) -> StaffService | None: ...


class ReservationRepository(Protocol):
    async def list_blocking(
        self, staff_id: int, booking_date: date, *, for_update: bool = False
    ) -> list[Reservation]:
        """``for_update`` takes a locking read: rows committed after the transaction snapshot are seen."""
        ...

    async def get(self, reservation_id: int) -> Reservation | None: ...

    async def get_for_update(self, reservation_id: int) -> Reservation | None: ...

    async def create(
        self,
        *,
        client_id: int,
        staff_id: int,
        booking_date: date,
        start_time: str,
        end_time: str,
        status: ReservationStatus,
        total_price: Decimal,
        discount_amount: Decimal,
        promo_code_id: int | None,
        language: str,
        lines: Sequence[PricedLine],
    ) -> Reservation: ...

    async def save(self, reservation: Reservation) -> Reservation: ...

    async def list_by_client(self, client_id: int, limit: int = 20) -> list[Reservation]: ...

    async def list_by_status_between(
        self,
        statuses: Sequence[ReservationStatus],
        date_from: date,
        date_to: date,
    ) -> list[Reservation]: ...


class PromoCodeRepository(Protocol):
    async def get_by_code(self, code: str) -> PromoCode | None: ...

    async def get_by_code_for_update(self, code: str) -> PromoCode | None: ...

    async def increment_uses(self, promo: PromoCode) -> PromoCode: ...


class LoyaltyRepository(Protocol):
    async def get_active_settings(self) -> LoyaltySettings | None: ...

    async def count_stamps(self, client_id: int) -> int:
        """Running count of the client's non-reward stamps."""
        ...

    async def create_stamp(
        self,
        *,
        client_id: int,
        reservation_id: int,
        stamp_number: int,
        is_reward: bool,
    ) -> LoyaltyStamp: ...


class WaitlistRepository(Protocol):
    async def find_oldest_match_for_update(
        self,
        *,
        service_id: int,
        staff_id: int,
        freed_date: date,
    ) -> WaitlistEntry | None: ...

    async def get_for_update(self, entry_id: int) -> WaitlistEntry | None: ...

    async def find_open_duplicate(
        self,
        *,
        client_id: int,
        service_id: int,
        staff_id: int | None,
        preferred_date: date,
    ) -> WaitlistEntry | None: ...

    async def create(
        self,
        *,
        client_id: int,
        service_id: int,
        staff_id: int | None,
        preferred_date: date,
        preferred_start: str | None,
        preferred_end: str | None,
        language: str,
    ) -> WaitlistEntry: ...

    async def save(self, entry: WaitlistEntry) -> WaitlistEntry: ...

    async def list_by_client(self, client_id: int) -> list[WaitlistEntry]: ...


class NotificationRepository(Protocol):
    async def record(
        self,
        *,
        client_id: int,
        reservation_id: int | None,
        type: NotificationType,
        status: NotificationStatus,
        language: str,
        payload: dict[str, Any],
        scheduled_at: datetime,
        sent_at: datetime | None = None,
    ) -> Notification: ...

    async def cancel_pending(self, reservation_id: int) -> int: ...

    async def list_due(self, type: NotificationType, start: datetime, end: datetime) -> list[Notification]: ...

    async def exists(self, reservation_id: int, type: NotificationType) -> bool: ...

    async def save(self, notification: Notification) -> Notification: ...


class NotificationDispatcher(Protocol):
    async def send(
        self,
        *,
        client_id: int,
        template_type: str,
        language: str,
        params: dict[str, Any],
    ) -> bool: ...


@dataclass(frozen=True)
class Repositories:
    """Stores taking part in one unit of work (one database transaction)."""

    schedules: ScheduleRepository
    catalog: CatalogRepository
    reservations: ReservationRepository
    promos: PromoCodeRepository
    loyalty: LoyaltyRepository
    waitlist: WaitlistRepository
    notifications: NotificationRepository

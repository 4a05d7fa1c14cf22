import asyncio
from contextlib import asynccontextmanager
from datetime import date, datetime, timedelta
from decimal import Decimal
from itertools import count
from typing import Any, AsyncIterator, Callable, Optional, Sequence

import pytest
from salon.domain.lifecycle import CANCELLED_STATUSES, Actor, ActorRole
from salon.domain.pricing import PricedLine
from salon.domain.repositories import Repositories
from salon.models import (
    DiscountType,
    LoyaltySettings,
    LoyaltyStamp,
    Notification,
    NotificationStatus,
    NotificationType,
    PromoCode,
    Reservation,
    ReservationItem,
    ReservationStatus,
    Service,
    ServiceDuration,
    Staff,
    StaffSchedule,
    StaffService,
    WaitlistEntry,
    WaitlistStatus,
)
from salon.usecases.notifications import BookingNotifier

BOOK_DAY = date(2030, 6, 10)
NOW = datetime(2030, 6, 1, 12, 0)


class FakeDB:
    """Rows for the in-memory repositories below. Every await yields to the loop."""

    def __init__(self) -> None:
        self.ids = count(1000)
        self.staff: dict[int, Staff] = {}
        self.services: dict[int, Service] = {}
        self.durations: dict[int, ServiceDuration] = {}
        self.offerings: dict[tuple[int, int], StaffService] = {}
        self.schedules: dict[tuple[int, date], StaffSchedule] = {}
        self.reservations: dict[int, Reservation] = {}
        self.promos: dict[str, PromoCode] = {}
        self.loyalty_settings: Optional[LoyaltySettings] = None
        self.stamps: list[LoyaltyStamp] = []
        self.waitlist: dict[int, WaitlistEntry] = {}
        self.notifications: list[Notification] = []
        # Row locks taken by get_staff_for_update, released when a fake transaction ends.
        self.staff_locks: dict[int, asyncio.Lock] = {}

    def next_id(self) -> int:
        return next(self.ids)


class FakeScheduleRepo:
    def __init__(self, db: FakeDB) -> None:
        self.db = db

    async def get_working_hours(self, staff_id: int, work_date: date) -> StaffSchedule | None:
        await asyncio.sleep(0)
        return self.db.schedules.get((staff_id, work_date))

    async def upsert_working_hours(
        self, *, staff_id: int, work_date: date, start_time: str, end_time: str, is_day_off: bool
    ) -> StaffSchedule:
        schedule = self.db.schedules.get((staff_id, work_date))
        if schedule is None:
            schedule = StaffSchedule(id=self.db.next_id(), staff_id=staff_id, work_date=work_date)
            self.db.schedules[(staff_id, work_date)] = schedule
        schedule.start_time = start_time
        schedule.end_time = end_time
        schedule.is_day_off = is_day_off
        return schedule


class FakeCatalogRepo:
    def __init__(self, db: FakeDB) -> None:
        self.db = db
        self.locked: list[int] = []
        self._held: dict[int, asyncio.Lock] = {}

    async def get_staff(self, staff_id: int) -> Staff | None:
        await asyncio.sleep(0)
        return self.db.staff.get(staff_id)

    async def get_staff_for_update(self, staff_id: int) -> Staff | None:
        self.locked.append(staff_id)
        if staff_id not in self._held:
            lock = self.db.staff_locks.setdefault(staff_id, asyncio.Lock())
            await lock.acquire()
            self._held[staff_id] = lock
        return await self.get_staff(staff_id)

    def release_locks(self) -> None:
        for lock in self._held.values():
            lock.release()
        self._held.clear()

    async def get_staff_by_user(self, user_id: int) -> Staff | None:
        return next((s for s in self.db.staff.values() if s.user_id == user_id), None)

    async def get_service(self, service_id: int) -> Service | None:
        return self.db.services.get(service_id)

    async def get_duration(self, duration_id: int) -> ServiceDuration | None:
        await asyncio.sleep(0)
        return self.db.durations.get(duration_id)

    async def get_offering(self, staff_id: int, service_id: int) -> StaffService | None:
        return self.db.offerings.get((staff_id, service_id))


class FakeReservationRepo:
    def __init__(self, db: FakeDB) -> None:
        self.db = db
        self.locking_reads: list[tuple[int, date]] = []

    async def list_blocking(
        self, staff_id: int, booking_date: date, *, for_update: bool = False
    ) -> list[Reservation]:
        if for_update:
            self.locking_reads.append((staff_id, booking_date))
        await asyncio.sleep(0)
        rows = [
            r
            for r in self.db.reservations.values()
            if r.staff_id == staff_id and r.booking_date == booking_date and r.status not in CANCELLED_STATUSES
        ]
        return sorted(rows, key=lambda r: r.start_time)

    async def get(self, reservation_id: int) -> Reservation | None:
        return self.db.reservations.get(reservation_id)

    async def get_for_update(self, reservation_id: int) -> Reservation | None:
        return self.db.reservations.get(reservation_id)

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
    ) -> Reservation:
        await asyncio.sleep(0)
        reservation = Reservation(
            id=self.db.next_id(),
            client_id=client_id,
            staff_id=staff_id,
            booking_date=booking_date,
            start_time=start_time,
            end_time=end_time,
            status=status,
            total_price=total_price,
            discount_amount=discount_amount,
            promo_code_id=promo_code_id,
            language=language,
            created_at=NOW,
            updated_at=NOW,
            items=[
                ReservationItem(
                    id=self.db.next_id(),
                    service_id=line.service_id,
                    duration_id=line.duration_id,
                    duration_minutes=line.duration_minutes,
                    price=line.price,
                    sort_order=index,
                )
                for index, line in enumerate(lines)
            ],
        )
        self.db.reservations[reservation.id] = reservation
        return reservation

    async def save(self, reservation: Reservation) -> Reservation:
        self.db.reservations[reservation.id] = reservation
        return reservation

    async def list_by_client(self, client_id: int, limit: int = 20) -> list[Reservation]:
        rows = [r for r in self.db.reservations.values() if r.client_id == client_id]
        rows.sort(key=lambda r: (r.booking_date, r.start_time), reverse=True)
        return rows[:limit]

    async def list_by_status_between(
        self, statuses: Sequence[ReservationStatus], date_from: date, date_to: date
    ) -> list[Reservation]:
        return [
            r
            for r in self.db.reservations.values()
            if r.status in statuses and date_from <= r.booking_date <= date_to
        ]


class FakePromoRepo:
    def __init__(self, db: FakeDB) -> None:
        self.db = db

    async def get_by_code(self, code: str) -> PromoCode | None:
        return self.db.promos.get(code)

    async def get_by_code_for_update(self, code: str) -> PromoCode | None:
        return self.db.promos.get(code)

    async def increment_uses(self, promo: PromoCode) -> PromoCode:
        promo.current_uses += 1
        return promo


class FakeLoyaltyRepo:
    def __init__(self, db: FakeDB) -> None:
        self.db = db

    async def get_active_settings(self) -> LoyaltySettings | None:
        settings = self.db.loyalty_settings
        return settings if settings is not None and settings.is_active else None

    async def count_stamps(self, client_id: int) -> int:
        return sum(1 for s in self.db.stamps if s.client_id == client_id and not s.is_reward)

    async def create_stamp(
        self, *, client_id: int, reservation_id: int, stamp_number: int, is_reward: bool
    ) -> LoyaltyStamp:
        stamp = LoyaltyStamp(
            id=self.db.next_id(),
            client_id=client_id,
            reservation_id=reservation_id,
            stamp_number=stamp_number,
            is_reward=is_reward,
            created_at=NOW,
        )
        self.db.stamps.append(stamp)
        return stamp


class FakeWaitlistRepo:
    def __init__(self, db: FakeDB) -> None:
        self.db = db

    async def find_oldest_match_for_update(
        self, *, service_id: int, staff_id: int, freed_date: date
    ) -> WaitlistEntry | None:
        matches = [
            e
            for e in self.db.waitlist.values()
            if e.service_id == service_id
            and e.staff_id in (staff_id, None)
            and e.status == WaitlistStatus.ACTIVE
            and e.preferred_date <= freed_date
        ]
        matches.sort(key=lambda e: (e.created_at, e.id))
        return matches[0] if matches else None

    async def get_for_update(self, entry_id: int) -> WaitlistEntry | None:
        return self.db.waitlist.get(entry_id)

    async def find_open_duplicate(
        self, *, client_id: int, service_id: int, staff_id: int | None, preferred_date: date
    ) -> WaitlistEntry | None:
        return next(
            (
                e
                for e in self.db.waitlist.values()
                if e.client_id == client_id
                and e.service_id == service_id
                and e.staff_id == staff_id
                and e.preferred_date == preferred_date
                and e.status in (WaitlistStatus.ACTIVE, WaitlistStatus.NOTIFIED)
            ),
            None,
        )

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
    ) -> WaitlistEntry:
        entry = WaitlistEntry(
            id=self.db.next_id(),
            client_id=client_id,
            service_id=service_id,
            staff_id=staff_id,
            preferred_date=preferred_date,
            preferred_start=preferred_start,
            preferred_end=preferred_end,
            status=WaitlistStatus.ACTIVE,
            language=language,
            created_at=NOW,
            updated_at=NOW,
        )
        self.db.waitlist[entry.id] = entry
        return entry

    async def save(self, entry: WaitlistEntry) -> WaitlistEntry:
        self.db.waitlist[entry.id] = entry
        return entry

    async def list_by_client(self, client_id: int) -> list[WaitlistEntry]:
        return [e for e in self.db.waitlist.values() if e.client_id == client_id]


class FakeNotificationRepo:
    def __init__(self, db: FakeDB) -> None:
        self.db = db

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
    ) -> Notification:
        notification = Notification(
            id=self.db.next_id(),
            client_id=client_id,
            reservation_id=reservation_id,
            type=type,
            status=status,
            language=language,
            payload=payload,
            scheduled_at=scheduled_at,
            sent_at=sent_at,
        )
        self.db.notifications.append(notification)
        return notification

    async def cancel_pending(self, reservation_id: int) -> int:
        cancelled = 0
        for n in self.db.notifications:
            if n.reservation_id == reservation_id and n.status == NotificationStatus.PENDING:
                n.status = NotificationStatus.CANCELLED
                cancelled += 1
        return cancelled

    async def list_due(self, type: NotificationType, start: datetime, end: datetime) -> list[Notification]:
        return [
            n
            for n in self.db.notifications
            if n.type == type and n.status == NotificationStatus.PENDING and start <= n.scheduled_at < end
        ]

    async def exists(self, reservation_id: int, type: NotificationType) -> bool:
        return any(n.reservation_id == reservation_id and n.type == type for n in self.db.notifications)

    async def save(self, notification: Notification) -> Notification:
        return notification


class FakeDispatcher:
    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.result: bool = True
        self.error: Exception | None = None

    async def send(self, *, client_id: int, template_type: str, language: str, params: dict[str, Any]) -> bool:
        if self.error is not None:
            raise self.error
        self.sent.append(
            {"client_id": client_id, "template_type": template_type, "language": language, "params": params}
        )
        return self.result


def _seed(db: FakeDB) -> None:
    db.services[10] = Service(id=10, name={"uk": "Манікюр", "en": "Manicure"}, is_active=True)
    db.services[11] = Service(id=11, name={"uk": "Педикюр", "en": "Pedicure"}, is_active=True)
    db.durations[100] = ServiceDuration(
        id=100, service_id=10, duration_minutes=60, base_price=Decimal("500.00"), is_active=True
    )
    db.durations[101] = ServiceDuration(
        id=101, service_id=10, duration_minutes=30, base_price=Decimal("300.00"), is_active=True
    )
    db.durations[110] = ServiceDuration(
        id=110, service_id=11, duration_minutes=90, base_price=Decimal("400.00"), is_active=True
    )
    db.staff[1] = Staff(id=1, user_id=50, display_name={"uk": "Олена", "en": "Olena"}, is_active=True)
    db.staff[2] = Staff(id=2, user_id=51, display_name={"en": "Iryna"}, is_active=True)
    db.offerings[(1, 10)] = StaffService(staff_id=1, service_id=10, price_modifier=Decimal("0"))
    db.offerings[(1, 11)] = StaffService(staff_id=1, service_id=11, price_modifier=Decimal("0"))
    db.offerings[(2, 10)] = StaffService(staff_id=2, service_id=10, price_modifier=Decimal("-600"))
    db.schedules[(1, BOOK_DAY)] = StaffSchedule(
        id=1, staff_id=1, work_date=BOOK_DAY, start_time="09:00", end_time="18:00", is_day_off=False
    )


@pytest.fixture
def db() -> FakeDB:
    fake = FakeDB()
    _seed(fake)
    return fake


def build_fake_repositories(db: FakeDB, catalog: Optional[FakeCatalogRepo] = None) -> Repositories:
    return Repositories(
        schedules=FakeScheduleRepo(db),
        catalog=catalog or FakeCatalogRepo(db),
        reservations=FakeReservationRepo(db),
        promos=FakePromoRepo(db),
        loyalty=FakeLoyaltyRepo(db),
        waitlist=FakeWaitlistRepo(db),
        notifications=FakeNotificationRepo(db),
    )


@pytest.fixture
def repos(db: FakeDB) -> Repositories:
    return build_fake_repositories(db)


@pytest.fixture
def transaction(db: FakeDB) -> Callable[[], Any]:
    """Fresh repositories per call; staff row locks are held until the block exits."""

    @asynccontextmanager
    async def _transaction() -> AsyncIterator[Repositories]:
        catalog = FakeCatalogRepo(db)
        try:
            yield build_fake_repositories(db, catalog)
        finally:
            catalog.release_locks()

    return _transaction


@pytest.fixture
def dispatcher() -> FakeDispatcher:
    return FakeDispatcher()


@pytest.fixture
def notifier(db: FakeDB, dispatcher: FakeDispatcher) -> BookingNotifier:
    @asynccontextmanager
    async def outbox() -> AsyncIterator[FakeNotificationRepo]:
        yield FakeNotificationRepo(db)

    return BookingNotifier(dispatcher, outbox)


@pytest.fixture
def client_actor() -> Actor:
    return Actor(user_id=7, role=ActorRole.CLIENT, language="en")


@pytest.fixture
def staff_actor() -> Actor:
    return Actor(user_id=50, role=ActorRole.STAFF)


@pytest.fixture
def admin_actor() -> Actor:
    return Actor(user_id=1, role=ActorRole.ADMIN)


@pytest.fixture
def add_reservation(db: FakeDB) -> Callable[..., Reservation]:
    def _add(
        start_time: str,
        end_time: str,
        *,
        status: ReservationStatus = ReservationStatus.CONFIRMED,
        staff_id: int = 1,
        client_id: int = 7,
        booking_date: date = BOOK_DAY,
        service_id: int = 10,
    ) -> Reservation:
        reservation = Reservation(
            id=db.next_id(),
            client_id=client_id,
            staff_id=staff_id,
            booking_date=booking_date,
            start_time=start_time,
            end_time=end_time,
            status=status,
            total_price=Decimal("500.00"),
            discount_amount=Decimal("0.00"),
            language="en",
            created_at=NOW,
            updated_at=NOW,
            items=[
                ReservationItem(
                    id=db.next_id(),
                    service_id=service_id,
                    duration_id=100,
                    duration_minutes=60,
                    price=Decimal("500.00"),
                    sort_order=0,
                )
            ],
        )
        db.reservations[reservation.id] = reservation
        return reservation

    return _add


@pytest.fixture
def add_waitlist_entry(db: FakeDB) -> Callable[..., WaitlistEntry]:
    def _add(
        client_id: int,
        *,
        created_at: datetime = NOW,
        service_id: int = 10,
        staff_id: int | None = 1,
        preferred_date: date = BOOK_DAY,
        status: WaitlistStatus = WaitlistStatus.ACTIVE,
    ) -> WaitlistEntry:
        entry = WaitlistEntry(
            id=db.next_id(),
            client_id=client_id,
            service_id=service_id,
            staff_id=staff_id,
            preferred_date=preferred_date,
            status=status,
            language="uk",
            created_at=created_at,
            updated_at=created_at,
        )
        db.waitlist[entry.id] = entry
        return entry

    return _add


@pytest.fixture
def save20(db: FakeDB) -> PromoCode:
    promo = PromoCode(
        id=5,
        code="SAVE20",
        discount_type=DiscountType.PERCENT,
        discount_value=Decimal("20"),
        valid_from=NOW - timedelta(days=30),
        valid_until=NOW + timedelta(days=30),
        min_order_amount=Decimal("500"),
        max_uses=None,
        current_uses=0,
        is_active=True,
    )
    db.promos[promo.code] = promo
    return promo

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, List, Optional, Sequence

from sqlalchemy import Select, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.lifecycle import CANCELLED_STATUSES
from ..domain.pricing import PricedLine
from ..domain.repositories import (
    CatalogRepository,
    LoyaltyRepository,
    NotificationRepository,
    PromoCodeRepository,
    Repositories,
    ReservationRepository,
    ScheduleRepository,
    WaitlistRepository,
)
from ..models import (
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
from ..utils.time import local_now


class SqlAlchemyScheduleRepository(ScheduleRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_working_hours(self, staff_id: int, work_date: date) -> StaffSchedule | None:
        stmt = select(StaffSchedule).where(
            StaffSchedule.staff_id == staff_id,
            StaffSchedule.work_date == work_date,
        )
        return await self.session.scalar(stmt)

    async def upsert_working_hours(
        self,
        *,
        staff_id: int,
        work_date: date,
        start_time: str,
        end_time: str,
        is_day_off: bool,
    ) -> StaffSchedule:
        stmt = (
            select(StaffSchedule)
            .where(StaffSchedule.staff_id == staff_id, StaffSchedule.work_date == work_date)
            .with_for_update()
        )
        schedule = await self.session.scalar(stmt)
        if schedule is None:
            schedule = StaffSchedule(staff_id=staff_id, work_date=work_date)
            self.session.add(schedule)
        schedule.start_time = start_time
        schedule.end_time = end_time
        schedule.is_day_off = is_day_off
        await self.session.flush()
        return schedule


class SqlAlchemyCatalogRepository(CatalogRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_staff(self, staff_id: int) -> Staff | None:
        return await self.session.get(Staff, staff_id)

    async def get_staff_for_update(self, staff_id: int) -> Staff | None:
        return await self.session.scalar(select(Staff).where(Staff.id == staff_id).with_for_update())

    async def get_staff_by_user(self, user_id: int) -> Staff | None:
        return await self.session.scalar(select(Staff).where(Staff.user_id == user_id))

    async def get_service(self, service_id: int) -> Service | None:
        return await self.session.get(Service, service_id)

    async def get_duration(self, duration_id: int) -> ServiceDuration | None:
        return await self.session.get(ServiceDuration, duration_id)

    async def get_offering(self, staff_id: int, service_id: int) -> StaffService | None:
        return await self.session.get(StaffService, (staff_id, service_id))


class SqlAlchemyReservationRepository(ReservationRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def list_blocking(
        self, staff_id: int, booking_date: date, *, for_update: bool = False
    ) -> List[Reservation]:
        stmt: Select[tuple[Reservation]] = (
            select(Reservation)
            .where(
                Reservation.staff_id == staff_id,
                Reservation.booking_date == booking_date,
                Reservation.status.not_in(CANCELLED_STATUSES),
            )
            .order_by(Reservation.start_time)
        )
        if for_update:
            stmt = stmt.with_for_update()
        return list((await self.session.scalars(stmt)).all())

    async def get(self, reservation_id: int) -> Optional[Reservation]:
        return await self.session.get(Reservation, reservation_id)

    async def get_for_update(self, reservation_id: int) -> Optional[Reservation]:
        stmt = select(Reservation).where(Reservation.id == reservation_id).with_for_update()
        return await self.session.scalar(stmt)

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
        now = local_now()
        reservation = Reservation(
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
            created_at=now,
            updated_at=now,
            items=[
                ReservationItem(
                    service_id=line.service_id,
                    duration_id=line.duration_id,
                    duration_minutes=line.duration_minutes,
                    price=line.price,
                    sort_order=index,
                )
                for index, line in enumerate(lines)
            ],
        )
        self.session.add(reservation)
        await self.session.flush()
        return reservation

    async def save(self, reservation: Reservation) -> Reservation:
        self.session.add(reservation)
        await self.session.flush()
        return reservation

    async def list_by_client(self, client_id: int, limit: int = 20) -> List[Reservation]:
        stmt = (
            select(Reservation)
            .where(Reservation.client_id == client_id)
            .order_by(Reservation.booking_date.desc(), Reservation.start_time.desc())
            .limit(limit)
        )
        return list((await self.session.scalars(stmt)).all())

    async def list_by_status_between(
        self,
        statuses: Sequence[ReservationStatus],
        date_from: date,
        date_to: date,
    ) -> List[Reservation]:
        stmt = select(Reservation).where(
            Reservation.status.in_(statuses),
            Reservation.booking_date >= date_from,
            Reservation.booking_date <= date_to,
        )
        return list((await self.session.scalars(stmt)).all())


class SqlAlchemyPromoCodeRepository(PromoCodeRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_code(self, code: str) -> PromoCode | None:
        return await self.session.scalar(select(PromoCode).where(PromoCode.code == code))

    async def get_by_code_for_update(self, code: str) -> PromoCode | None:
        return await self.session.scalar(select(PromoCode).where(PromoCode.code == code).with_for_update())

    async def increment_uses(self, promo: PromoCode) -> PromoCode:
        await self.session.execute(
            update(PromoCode).where(PromoCode.id == promo.id).values(current_uses=PromoCode.current_uses + 1)
        )
        await self.session.refresh(promo, attribute_names=["current_uses"])
        return promo


class SqlAlchemyLoyaltyRepository(LoyaltyRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_active_settings(self) -> LoyaltySettings | None:
        stmt = select(LoyaltySettings).where(LoyaltySettings.is_active.is_(True)).order_by(LoyaltySettings.id)
        return await self.session.scalar(stmt)

    async def count_stamps(self, client_id: int) -> int:
        stmt = select(func.count(LoyaltyStamp.id)).where(
            LoyaltyStamp.client_id == client_id,
            LoyaltyStamp.is_reward.is_(False),
        )
        return int(await self.session.scalar(stmt) or 0)

    async def create_stamp(
        self,
        *,
        client_id: int,
        reservation_id: int,
        stamp_number: int,
        is_reward: bool,
    ) -> LoyaltyStamp:
        stamp = LoyaltyStamp(
            client_id=client_id,
            reservation_id=reservation_id,
            stamp_number=stamp_number,
            is_reward=is_reward,
            created_at=local_now(),
        )
        self.session.add(stamp)
        await self.session.flush()
        return stamp


class SqlAlchemyWaitlistRepository(WaitlistRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def find_oldest_match_for_update(
        self,
        *,
        service_id: int,
        staff_id: int,
        freed_date: date,
    ) -> WaitlistEntry | None:
        stmt = (
            select(WaitlistEntry)
            .where(
                WaitlistEntry.service_id == service_id,
                or_(WaitlistEntry.staff_id == staff_id, WaitlistEntry.staff_id.is_(None)),
                WaitlistEntry.status == WaitlistStatus.ACTIVE,
                WaitlistEntry.preferred_date <= freed_date,
            )
            .order_by(WaitlistEntry.created_at.asc(), WaitlistEntry.id.asc())
            .limit(1)
            .with_for_update()
        )
        return await self.session.scalar(stmt)

    async def get_for_update(self, entry_id: int) -> WaitlistEntry | None:
        return await self.session.scalar(select(WaitlistEntry).where(WaitlistEntry.id == entry_id).with_for_update())

    async def find_open_duplicate(
        self,
        *,
        client_id: int,
        service_id: int,
        staff_id: int | None,
        preferred_date: date,
    ) -> WaitlistEntry | None:
        staff_clause = WaitlistEntry.staff_id.is_(None) if staff_id is None else WaitlistEntry.staff_id == staff_id
        stmt = select(WaitlistEntry).where(
            WaitlistEntry.client_id == client_id,
            WaitlistEntry.service_id == service_id,
            staff_clause,
            WaitlistEntry.preferred_date == preferred_date,
            WaitlistEntry.status.in_([WaitlistStatus.ACTIVE, WaitlistStatus.NOTIFIED]),
        )
        return await self.session.scalar(stmt)

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
        now = local_now()
        entry = WaitlistEntry(
            client_id=client_id,
            service_id=service_id,
            staff_id=staff_id,
            preferred_date=preferred_date,
            preferred_start=preferred_start,
            preferred_end=preferred_end,
            status=WaitlistStatus.ACTIVE,
            language=language,
            created_at=now,
            updated_at=now,
        )
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def save(self, entry: WaitlistEntry) -> WaitlistEntry:
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def list_by_client(self, client_id: int) -> List[WaitlistEntry]:
        stmt = (
            select(WaitlistEntry)
            .where(WaitlistEntry.client_id == client_id)
            .order_by(WaitlistEntry.created_at.desc())
        )
        return list((await self.session.scalars(stmt)).all())


class SqlAlchemyNotificationRepository(NotificationRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

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
            client_id=client_id,
            reservation_id=reservation_id,
            type=type,
            status=status,
            language=language,
            payload=payload,
            scheduled_at=scheduled_at,
            sent_at=sent_at,
        )
        self.session.add(notification)
        await self.session.flush()
        return notification

    async def cancel_pending(self, reservation_id: int) -> int:
        result = await self.session.execute(
            update(Notification)
            .where(
                Notification.reservation_id == reservation_id,
                Notification.status == NotificationStatus.PENDING,
            )
            .values(status=NotificationStatus.CANCELLED)
        )
        return int(result.rowcount or 0)

    async def list_due(self, type: NotificationType, start: datetime, end: datetime) -> List[Notification]:
        stmt = (
            select(Notification)
            .where(
                Notification.type == type,
                Notification.status == NotificationStatus.PENDING,
                Notification.scheduled_at >= start,
                Notification.scheduled_at < end,
            )
            .order_by(Notification.scheduled_at.asc())
            .with_for_update(skip_locked=True)
        )
        return list((await self.session.scalars(stmt)).all())

    async def exists(self, reservation_id: int, type: NotificationType) -> bool:
        stmt = select(Notification.id).where(
            Notification.reservation_id == reservation_id,
            Notification.type == type,
        )
        return await self.session.scalar(stmt) is not None

    async def save(self, notification: Notification) -> Notification:
        self.session.add(notification)
        await self.session.flush()
        return notification


def build_repositories(session: AsyncSession) -> Repositories:
    return Repositories(
        schedules=SqlAlchemyScheduleRepository(session),
        catalog=SqlAlchemyCatalogRepository(session),
        reservations=SqlAlchemyReservationRepository(session),
        promos=SqlAlchemyPromoCodeRepository(session),
        loyalty=SqlAlchemyLoyaltyRepository(session),
        waitlist=SqlAlchemyWaitlistRepository(session),
        notifications=SqlAlchemyNotificationRepository(session),
    )

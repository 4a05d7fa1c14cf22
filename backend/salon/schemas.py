from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, field_serializer

from .models import (
    Reservation,
    ReservationItem,
    ReservationStatus,
    StaffSchedule,
    WaitlistEntry,
    WaitlistStatus,
)


class SlotList(BaseModel):
    staff_id: int
    booking_date: date
    duration_minutes: int
    slots: List[str]


class BookingItem(BaseModel):
    service_id: int
    duration_id: int


class BookingCreate(BaseModel):
    staff_id: int
    booking_date: date
    start_time: str = Field(description="Local wall-clock start, HH:MM")
    items: List[BookingItem] = Field(min_length=1)
    promo_code: Optional[str] = Field(default=None, max_length=64)


class ReservationItemRead(BaseModel):
    service_id: int
    duration_id: int
    duration_minutes: int
    price: Decimal

    @classmethod
    def from_db(cls, item: ReservationItem) -> "ReservationItemRead":
        return cls(
            service_id=item.service_id,
            duration_id=item.duration_id,
            duration_minutes=item.duration_minutes,
            price=item.price,
        )


class ReservationRead(BaseModel):
    reservation_id: int
    client_id: int
    staff_id: Optional[int]
    booking_date: date
    start_time: str
    end_time: str
    status: ReservationStatus
    total_price: Decimal
    discount_amount: Decimal
    cancel_reason: Optional[str] = None
    items: List[ReservationItemRead]

    @field_serializer("total_price", "discount_amount")
    def _ser_money(self, value: Decimal) -> str:
        return f"{value:.2f}"

    @classmethod
    def from_db(cls, *, reservation: Reservation) -> "ReservationRead":
        return cls(
            reservation_id=reservation.id,
            client_id=reservation.client_id,
            staff_id=reservation.staff_id,
            booking_date=reservation.booking_date,
            start_time=reservation.start_time,
            end_time=reservation.end_time,
            status=reservation.status,
            total_price=reservation.total_price,
            discount_amount=reservation.discount_amount,
            cancel_reason=reservation.cancel_reason,
            items=[ReservationItemRead.from_db(item) for item in reservation.items],
        )


class ReservationCancel(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class StatusUpdate(BaseModel):
    status: ReservationStatus
    reason: Optional[str] = Field(default=None, max_length=500)


class StatusChangeRead(ReservationRead):
    previous_status: ReservationStatus
    override: bool


class ScheduleUpdate(BaseModel):
    work_date: date
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    is_day_off: bool = False


class ScheduleRead(BaseModel):
    staff_id: int
    work_date: date
    start_time: str
    end_time: str
    is_day_off: bool

    @classmethod
    def from_db(cls, schedule: StaffSchedule) -> "ScheduleRead":
        return cls(
            staff_id=schedule.staff_id,
            work_date=schedule.work_date,
            start_time=schedule.start_time,
            end_time=schedule.end_time,
            is_day_off=schedule.is_day_off,
        )


class PromoValidate(BaseModel):
    code: str = Field(min_length=1, max_length=64)
    amount: Decimal = Field(ge=0)


class PromoQuote(BaseModel):
    valid: bool
    code: str
    discount: Decimal
    final_amount: Decimal

    @field_serializer("discount", "final_amount")
    def _ser_money(self, value: Decimal) -> str:
        return f"{value:.2f}"


class WaitlistCreate(BaseModel):
    service_id: int
    staff_id: Optional[int] = None
    preferred_date: date
    preferred_start: Optional[str] = None
    preferred_end: Optional[str] = None


class WaitlistRead(BaseModel):
    entry_id: int
    service_id: int
    staff_id: Optional[int]
    preferred_date: date
    preferred_start: Optional[str]
    preferred_end: Optional[str]
    status: WaitlistStatus
    created_at: datetime

    @classmethod
    def from_db(cls, entry: WaitlistEntry) -> "WaitlistRead":
        return cls(
            entry_id=entry.id,
            service_id=entry.service_id,
            staff_id=entry.staff_id,
            preferred_date=entry.preferred_date,
            preferred_start=entry.preferred_start,
            preferred_end=entry.preferred_end,
            status=entry.status,
            created_at=entry.created_at,
        )


class WaitlistBook(BaseModel):
    staff_id: int
    booking_date: date
    start_time: str
    items: List[BookingItem] = Field(min_length=1)


class WaitlistBookingRead(BaseModel):
    reservation: ReservationRead
    waitlist: WaitlistRead


class JobResult(BaseModel):
    job: str
    processed: int
    ran_at: datetime


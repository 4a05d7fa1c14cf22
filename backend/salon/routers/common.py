from fastapi import HTTPException, status

from ..domain.errors import (
    DomainError,
    DuplicateWaitlistEntryError,
    NotAuthorizedError,
    PromoCodeError,
    ReservationNotFoundError,
    SlotNoLongerAvailableError,
    SlotNotAvailableError,
    StaffNotFoundError,
    WaitlistEntryNotFoundError,
)
from ..domain.lifecycle import Actor, TransitionKind
from ..usecases.bookings import StatusChange
from ..utils.audit_log import record_audit

_STATUS_BY_ERROR: list[tuple[type[DomainError], int]] = [
    (SlotNotAvailableError, status.HTTP_409_CONFLICT),
    (DuplicateWaitlistEntryError, status.HTTP_409_CONFLICT),
    (ReservationNotFoundError, status.HTTP_404_NOT_FOUND),
    (WaitlistEntryNotFoundError, status.HTTP_404_NOT_FOUND),
    (StaffNotFoundError, status.HTTP_404_NOT_FOUND),
    (NotAuthorizedError, status.HTTP_403_FORBIDDEN),
]


def http_error(exc: DomainError) -> HTTPException:
    """Translate a domain error; anything not listed is a 400."""
    if isinstance(exc, PromoCodeError):
        return HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"reason": exc.reason, "message": str(exc)},
        )
    if isinstance(exc, SlotNoLongerAvailableError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail="slot no longer available")
    for error_cls, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_cls):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


def audit_status_change(change: StatusChange, actor: Actor) -> None:
    if change.kind == TransitionKind.NOOP:
        return
    reservation = change.reservation
    record_audit(
        action="reservation.status_changed",
        initiator=actor.role.value,
        reservation_id=reservation.id,
        staff_id=reservation.staff_id,
        client_id=reservation.client_id,
        booking_date=reservation.booking_date,
        start_time=reservation.start_time,
        end_time=reservation.end_time,
        status_from=change.previous,
        status_to=reservation.status,
        override=change.kind == TransitionKind.OVERRIDE,
    )
    if change.promoted is not None:
        record_audit(
            action="waitlist.promoted",
            initiator="system",
            reservation_id=reservation.id,
            staff_id=reservation.staff_id,
            client_id=change.promoted.client_id,
            booking_date=reservation.booking_date,
            start_time=reservation.start_time,
            end_time=reservation.end_time,
            extra={"waitlist_entry_id": change.promoted.id},
        )

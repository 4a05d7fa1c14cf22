class DomainError(Exception):
    """Base class for booking engine errors."""


class InvalidTimeFormatError(DomainError, ValueError):
    pass


class StaffNotFoundError(DomainError):
    pass


class InvalidServiceDurationError(DomainError):
    pass


class ServiceNotOfferedByStaffError(DomainError):
    pass


class SlotNotAvailableError(DomainError):
    """Requested interval overlaps a blocking reservation at commit time."""


class SlotNoLongerAvailableError(SlotNotAvailableError):
    """Slot offered to a waitlisted client was taken before they booked it."""


class InvalidTransitionError(DomainError):
    pass


class NotAuthorizedError(DomainError):
    pass


class ReservationNotFoundError(DomainError):
    pass


class WaitlistEntryNotFoundError(DomainError):
    pass


class DuplicateWaitlistEntryError(DomainError):
    pass


class PromoCodeError(DomainError):
    def __init__(self, reason: str, message: str) -> None:
        super().__init__(message)
        self.reason = reason

"""Reservation status lifecycle.

The transition table describes the normal forward flow of a reservation.
Clients are held to a narrow subset of it (they may only cancel, and only
early in the flow). Staff and administrators may set any status, with two
guards: ``no_show`` needs an appointment that was actually confirmed or
started, and neither ``completed`` nor ``no_show`` may be set before the
appointment has begun.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

from ..models import ReservationStatus
from .errors import InvalidTransitionError

S = ReservationStatus


class ActorRole(StrEnum):
    CLIENT = "client"
    STAFF = "staff"
    ADMIN = "admin"
    OWNER = "owner"


@dataclass(frozen=True)
class Actor:
    user_id: int
    role: ActorRole
    language: str | None = None

    @property
    def is_manager(self) -> bool:
        return self.role in (ActorRole.ADMIN, ActorRole.OWNER)


CANCELLED_STATUSES: frozenset[ReservationStatus] = frozenset({S.CANCELLED_BY_CLIENT, S.CANCELLED_BY_ADMIN})
TERMINAL_STATUSES: frozenset[ReservationStatus] = CANCELLED_STATUSES | {S.COMPLETED, S.NO_SHOW}
BLOCKING_STATUSES: frozenset[ReservationStatus] = frozenset(S) - CANCELLED_STATUSES

CLIENT_CANCELLABLE: frozenset[ReservationStatus] = frozenset({S.PENDING_CONFIRMATION, S.CONFIRMED, S.DEPOSIT_PENDING})
NO_SHOW_FROM: frozenset[ReservationStatus] = frozenset({S.CONFIRMED, S.IN_PROGRESS})
REQUIRES_STARTED: frozenset[ReservationStatus] = frozenset({S.COMPLETED, S.NO_SHOW})

_FORWARD: dict[ReservationStatus, frozenset[ReservationStatus]] = {
    S.PENDING_CONFIRMATION: frozenset({S.CONFIRMED, S.DEPOSIT_PENDING}),
    S.DEPOSIT_PENDING: frozenset({S.DEPOSIT_PAID}),
    S.DEPOSIT_PAID: frozenset({S.CONFIRMED}),
    S.CONFIRMED: frozenset({S.IN_PROGRESS, S.NO_SHOW}),
    S.IN_PROGRESS: frozenset({S.COMPLETED, S.NO_SHOW}),
}

ALLOWED_TRANSITIONS: dict[ReservationStatus, frozenset[ReservationStatus]] = {
    status: (_FORWARD.get(status, frozenset()) | CANCELLED_STATUSES) if status not in TERMINAL_STATUSES else frozenset()
    for status in S
}


def is_blocking(status: ReservationStatus) -> bool:
    return status in BLOCKING_STATUSES


def is_cancelled(status: ReservationStatus) -> bool:
    return status in CANCELLED_STATUSES


class TransitionKind(StrEnum):
    NOOP = "noop"
    REGULAR = "regular"
    OVERRIDE = "override"


def check_transition(
    current: ReservationStatus,
    target: ReservationStatus,
    *,
    actor: Actor,
    starts_at: datetime,
    now: datetime,
) -> TransitionKind:
    """
    Validate a status change requested by ``actor``.

    Returns NOOP when the reservation already holds ``target``, REGULAR when the
    change follows ALLOWED_TRANSITIONS, and OVERRIDE when a staff member or
    administrator steps outside it. Raises InvalidTransitionError otherwise.
    """
    if current == target:
        return TransitionKind.NOOP

    if actor.role == ActorRole.CLIENT:
        if target != S.CANCELLED_BY_CLIENT:
            raise InvalidTransitionError(f"clients may only cancel, not set {target.value}")
        if current not in CLIENT_CANCELLABLE:
            raise InvalidTransitionError(f"reservation in {current.value} cannot be cancelled by the client")
        return TransitionKind.REGULAR

    if target == S.NO_SHOW and current not in NO_SHOW_FROM:
        raise InvalidTransitionError(f"no_show requires a confirmed or started appointment, not {current.value}")
    if target in REQUIRES_STARTED and starts_at > now:
        raise InvalidTransitionError(f"cannot mark a future appointment as {target.value}")
    if target in ALLOWED_TRANSITIONS[current]:
        return TransitionKind.REGULAR
    return TransitionKind.OVERRIDE

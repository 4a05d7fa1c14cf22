from __future__ import annotations

import json
import logging
from datetime import date, datetime, timezone
from typing import Any, Literal, Optional

from .request_id import get_request_id

AuditAction = Literal[
    "reservation.created",
    "reservation.status_changed",
    "waitlist.promoted",
    "waitlist.booked",
]
AuditInitiator = Literal["client", "staff", "admin", "owner", "system"]

_audit_logger = logging.getLogger("audit")
_audit_logger.setLevel(logging.INFO)
if not _audit_logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))
    _audit_logger.addHandler(handler)
_audit_logger.propagate = False


def _enum_to_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    if hasattr(value, "value"):
        return str(value.value)
    return str(value)


def emit_audit_log(
    *,
    action: AuditAction,
    initiator: AuditInitiator,
    reservation_id: Optional[int],
    staff_id: Optional[int],
    client_id: Optional[int],
    booking_date: Optional[date] = None,
    start_time: Optional[str] = None,
    end_time: Optional[str] = None,
    status_from: Optional[str] = None,
    status_to: Optional[str] = None,
    override: Optional[bool] = None,
    message: Optional[str] = None,
    extra: Optional[dict[str, Any]] = None,
) -> None:
    """Emit structured JSON audit log. Raises RuntimeError if logging fails."""
    payload: dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "level": "info",
        "action": action,
        "initiator": _enum_to_str(initiator),
        "request_id": get_request_id(),
        "reservation_id": reservation_id,
        "staff_id": staff_id,
        "client_id": client_id,
        "booking_date": booking_date.isoformat() if booking_date is not None else None,
        "start_time": start_time,
        "end_time": end_time,
        "status_from": _enum_to_str(status_from),
        "status_to": _enum_to_str(status_to),
        "override": override,
    }
    if message is not None:
        payload["message"] = message
    if extra:
        payload.update(extra)

    # Drop None values to keep the log compact.
    compact_payload = {k: v for k, v in payload.items() if v is not None}
    try:
        _audit_logger.info(json.dumps(compact_payload, ensure_ascii=True, default=str))
    except Exception as exc:
        raise RuntimeError("failed to emit audit log") from exc


def record_audit(**kwargs: Any) -> bool:
    """Like emit_audit_log, but a failure is logged and reported as False."""
    try:
        emit_audit_log(**kwargs)
    except RuntimeError:
        logging.getLogger(__name__).exception("audit log failed for %s", kwargs.get("action"))
        return False
    return True

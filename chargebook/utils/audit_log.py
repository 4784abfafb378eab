from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Literal, Optional

from .request_id import get_request_id

AuditAction = Literal[
    "booking.created",
    "booking.approved",
    "booking.cancelled",
    "booking.completed",
    "booking.rescheduled",
    "station.deactivated",
    "station.activated",
    "station.deleted",
]

logger = logging.getLogger(__name__)

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
    initiator: Optional[str],
    booking_id: Optional[int] = None,
    station_id: Optional[int] = None,
    owner_id: Optional[int] = None,
    principal_id: Optional[int] = None,
    status_from: Optional[str] = None,
    status_to: Optional[str] = None,
    version: Optional[int] = None,
    message: Optional[str] = None,
    extra: Optional[dict[str, Any]] = None,
) -> bool:
    """
    Emit a structured JSON lifecycle event to the audit sink.

    Delivery is best effort: a failing sink is reported on the module logger and
    the call returns False, it never fails the operation that produced the event.
    """
    payload: dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "level": "info",
        "action": action,
        "initiator": _enum_to_str(initiator),
        "request_id": get_request_id(),
        "booking_id": booking_id,
        "station_id": station_id,
        "owner_id": owner_id,
        "principal_id": principal_id,
        "status_from": _enum_to_str(status_from),
        "status_to": _enum_to_str(status_to),
        "version": version,
    }
    if message is not None:
        payload["message"] = message
    if extra:
        payload.update(extra)

    # Drop None values to keep the log compact.
    compact_payload = {k: v for k, v in payload.items() if v is not None}
    try:
        _audit_logger.info(json.dumps(compact_payload, ensure_ascii=True, default=str))
    except Exception:
        logger.exception("failed to emit audit log for %s", action)
        return False
    return True

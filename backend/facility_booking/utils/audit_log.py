from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Literal, Optional

from .request_id import get_request_id

AuditAction = Literal[
    "reservation.created",
    "reservation.updated",
    "reservation.approved",
    "reservation.rejected",
    "reservation.cancelled",
    "reservation.completed",
    "reservation.no_show",
    "reservation.deleted",
]
AuditInitiator = Literal["user", "staff", "system"]

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
    initiator: AuditInitiator,
    reservation_id: int,
    facility_id: Optional[int],
    stable_id: Optional[str],
    actor_id: Optional[str],
    horse_count: Optional[int],
    status_from: Optional[str],
    status_to: Optional[str],
    version: Optional[int],
    message: Optional[str] = None,
    extra: Optional[dict[str, Any]] = None,
) -> None:
    """Emit structured JSON audit log. Raises RuntimeError if logging fails."""
    payload: dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "level": "info",
        "entity": "facility_reservation",
        "action": action,
        "initiator": initiator,
        "request_id": get_request_id(),
        "reservation_id": reservation_id,
        "facility_id": facility_id,
        "stable_id": stable_id,
        "actor_id": actor_id,
        "horse_count": horse_count,
        "status_from": _enum_to_str(status_from),
        "status_to": _enum_to_str(status_to),
        "version": version,
    }
    if message is not None:
        payload["message"] = message
    if extra:
        payload.update(extra)

    compact_payload = {k: v for k, v in payload.items() if v is not None}
    try:
        _audit_logger.info(json.dumps(compact_payload, ensure_ascii=True, default=str))
    except Exception as exc:
        raise RuntimeError("failed to emit audit log") from exc


def record_audit_event(**fields: Any) -> None:
    """Fire-and-forget wrapper: an audit failure never fails the reservation write."""
    try:
        emit_audit_log(**fields)
    except RuntimeError:
        logger.exception("audit log failed for reservation %s", fields.get("reservation_id"))

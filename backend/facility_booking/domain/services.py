import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional, Sequence
from zoneinfo import ZoneInfo

from ..models import ReservationStatus
from .errors import HorsesRequiredError, InvalidTransitionError, TooManyHorsesError, ValidationError

_ALLOWED_TRANSITIONS: dict[ReservationStatus, frozenset[ReservationStatus]] = {
    ReservationStatus.PENDING: frozenset(
        {ReservationStatus.CONFIRMED, ReservationStatus.REJECTED, ReservationStatus.CANCELLED}
    ),
    ReservationStatus.CONFIRMED: frozenset(
        {ReservationStatus.CANCELLED, ReservationStatus.COMPLETED, ReservationStatus.NO_SHOW}
    ),
    ReservationStatus.CANCELLED: frozenset(),
    ReservationStatus.REJECTED: frozenset(),
    ReservationStatus.COMPLETED: frozenset(),
    ReservationStatus.NO_SHOW: frozenset(),
}

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f<>]")


def ensure_transition(current: ReservationStatus, target: ReservationStatus) -> bool:
    """
    Validate a status change. Returns False when target equals current (a no-op
    the caller should not write), True when the change is allowed. Raises
    InvalidTransitionError otherwise.
    """
    if target == current:
        return False
    if target not in _ALLOWED_TRANSITIONS.get(current, frozenset()):
        raise InvalidTransitionError(f"Invalid status transition from {current} to {target}")
    return True


def normalize_horses(
    horse_ids: Optional[Sequence[str]],
    horse_names: Optional[Sequence[str]] = None,
    *,
    horse_id: Optional[str] = None,
    horse_name: Optional[str] = None,
) -> tuple[list[str], list[str]]:
    """Accept either the list form or the legacy single-horse form."""
    if horse_ids:
        return list(dict.fromkeys(horse_ids)), list(horse_names or [])
    if horse_id:
        return [horse_id], [horse_name] if horse_name else []
    return [], []


def validate_horse_count(horse_ids: Sequence[str], max_horses: int) -> int:
    if not horse_ids:
        raise HorsesRequiredError()
    if len(horse_ids) > max_horses:
        raise TooManyHorsesError(max_horses)
    return len(horse_ids)


@dataclass(frozen=True)
class LocalTimeRange:
    day: date
    start: str
    end: str


def local_time_range(start_time: datetime, end_time: datetime, tz: ZoneInfo) -> LocalTimeRange:
    """Project an absolute [start, end) onto the facility-local date and HH:MM bounds."""
    if start_time.tzinfo is None or end_time.tzinfo is None:
        raise ValidationError("startTime/endTime must have timezone")
    if end_time <= start_time:
        raise ValidationError("endTime must be after startTime")
    local_start = start_time.astimezone(tz)
    local_end = end_time.astimezone(tz)
    if local_start.date() != local_end.date():
        raise ValidationError("Reservations may not span midnight")
    return LocalTimeRange(
        day=local_start.date(),
        start=local_start.strftime("%H:%M"),
        end=local_end.strftime("%H:%M"),
    )


def sanitize_user_input(value: Optional[str], max_length: int) -> Optional[str]:
    if value is None:
        return None
    cleaned = _CONTROL_CHARS.sub("", value).strip()
    return cleaned[:max_length] or None

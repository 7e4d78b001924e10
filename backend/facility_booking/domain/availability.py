"""Facility opening schedules.

A schedule is stored on the facility as a camelCase JSON document::

    {
        "weeklySchedule": {
            "defaultTimeBlocks": [{"from": "08:00", "to": "20:00"}],
            "days": {"saturday": {"available": true, "timeBlocks": [...]}},
        },
        "exceptions": [{"date": "2026-12-24", "type": "closed", "timeBlocks": []}],
    }

Everything here is pure: no I/O, no clock, no timezone conversion. Callers pass
facility-local dates and HH:MM strings.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from datetime import date
from enum import StrEnum
from typing import Any, Iterable, Mapping, Optional, Sequence

DAYS_OF_WEEK: tuple[str, ...] = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)

MAX_EXCEPTIONS = 365

_TIME_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def parse_time(value: str) -> int:
    """Return minutes since midnight for an HH:MM string."""
    match = _TIME_RE.match(value or "")
    if match is None:
        raise ValueError(f"invalid time: {value!r}")
    return int(match.group(1)) * 60 + int(match.group(2))


@dataclass(frozen=True)
class TimeBlock:
    start: str
    end: str

    @classmethod
    def from_document(cls, data: Mapping[str, Any]) -> "TimeBlock":
        return cls(start=str(data["from"]), end=str(data["to"]))

    def to_document(self) -> dict[str, str]:
        return {"from": self.start, "to": self.end}

    def contains(self, start: str, end: str) -> bool:
        return parse_time(self.start) <= parse_time(start) and parse_time(end) <= parse_time(self.end)


class ExceptionType(StrEnum):
    CLOSED = "closed"
    MODIFIED = "modified"


@dataclass(frozen=True)
class DaySchedule:
    available: bool = True
    # None means "use the default blocks"; an empty tuple is a real value.
    time_blocks: Optional[tuple[TimeBlock, ...]] = None


@dataclass(frozen=True)
class ScheduleException:
    date: date
    type: ExceptionType
    time_blocks: tuple[TimeBlock, ...] = ()
    reason: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[str] = None

    @property
    def blocks(self) -> tuple[TimeBlock, ...]:
        if self.type == ExceptionType.CLOSED:
            return ()
        return self.time_blocks


@dataclass(frozen=True)
class AvailabilitySchedule:
    default_time_blocks: tuple[TimeBlock, ...]
    days: Mapping[str, DaySchedule] = field(default_factory=dict)
    exceptions: tuple[ScheduleException, ...] = ()

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "AvailabilitySchedule":
        weekly = doc.get("weeklySchedule") or {}
        days: dict[str, DaySchedule] = {}
        for name, day_doc in (weekly.get("days") or {}).items():
            raw_blocks = day_doc.get("timeBlocks")
            days[name] = DaySchedule(
                available=bool(day_doc.get("available", True)),
                time_blocks=None if raw_blocks is None else _blocks(raw_blocks),
            )
        exceptions = tuple(
            ScheduleException(
                date=date.fromisoformat(exc["date"]),
                type=ExceptionType(exc.get("type", ExceptionType.MODIFIED)),
                time_blocks=_blocks(exc.get("timeBlocks") or []),
                reason=exc.get("reason"),
                created_by=exc.get("createdBy"),
                created_at=exc.get("createdAt"),
            )
            for exc in doc.get("exceptions") or []
        )
        return cls(
            default_time_blocks=_blocks(weekly.get("defaultTimeBlocks") or []),
            days=days,
            exceptions=exceptions,
        )

    def to_document(self) -> dict[str, Any]:
        return {
            "weeklySchedule": {
                "defaultTimeBlocks": [b.to_document() for b in self.default_time_blocks],
                "days": {
                    name: {
                        "available": day.available,
                        "timeBlocks": None
                        if day.time_blocks is None
                        else [b.to_document() for b in day.time_blocks],
                    }
                    for name, day in self.days.items()
                },
            },
            "exceptions": [
                {
                    "date": exc.date.isoformat(),
                    "type": exc.type.value,
                    "timeBlocks": [b.to_document() for b in exc.blocks],
                    "reason": exc.reason,
                    "createdBy": exc.created_by,
                    "createdAt": exc.created_at,
                }
                for exc in self.exceptions
            ],
        }

    def exception_for(self, day: date) -> Optional[ScheduleException]:
        for exc in self.exceptions:
            if exc.date == day:
                return exc
        return None

    def with_exception(self, exception: ScheduleException) -> "AvailabilitySchedule":
        return replace(self, exceptions=self.exceptions + (exception,))

    def without_exception(self, day: date) -> "AvailabilitySchedule":
        return replace(self, exceptions=tuple(exc for exc in self.exceptions if exc.date != day))

    def weekly_blocks(self, day: date) -> list[TimeBlock]:
        day_schedule = self.days.get(DAYS_OF_WEEK[day.weekday()])
        if day_schedule is None:
            return list(self.default_time_blocks)
        if not day_schedule.available:
            return []
        if day_schedule.time_blocks is None:
            return list(self.default_time_blocks)
        return list(day_schedule.time_blocks)


def _blocks(raw: Iterable[Mapping[str, Any]]) -> tuple[TimeBlock, ...]:
    return tuple(TimeBlock.from_document(item) for item in raw)


def create_default_schedule() -> AvailabilitySchedule:
    """Open every day 08:00-20:00. Used when a facility has no schedule stored."""
    return AvailabilitySchedule(default_time_blocks=(TimeBlock("08:00", "20:00"),))


def schedule_for(doc: Optional[Mapping[str, Any]]) -> AvailabilitySchedule:
    if not doc:
        return create_default_schedule()
    return AvailabilitySchedule.from_document(doc)


def resolve_effective_blocks(schedule: AvailabilitySchedule, day: date) -> list[TimeBlock]:
    """
    Open blocks for one facility-local date.

    A date exception wins outright, including a closure (empty list). Only when
    no exception exists for the date does the weekly pattern apply.
    """
    exception = schedule.exception_for(day)
    if exception is not None:
        return list(exception.blocks)
    return schedule.weekly_blocks(day)


class AvailabilityCheck(StrEnum):
    OPEN = "open"
    CLOSED = "closed"
    OUTSIDE_HOURS = "outside_hours"


def is_time_range_available(blocks: Sequence[TimeBlock], start: str, end: str) -> bool:
    """True iff [start, end) lies inside a single block. Adjacent blocks are not merged."""
    return any(block.contains(start, end) for block in blocks)


def check_time_range(blocks: Sequence[TimeBlock], start: str, end: str) -> AvailabilityCheck:
    if not blocks:
        return AvailabilityCheck.CLOSED
    if is_time_range_available(blocks, start, end):
        return AvailabilityCheck.OPEN
    return AvailabilityCheck.OUTSIDE_HOURS


def validate_time_blocks(raw: Any, label: str) -> list[str]:
    if not isinstance(raw, list):
        return [f"{label}: timeBlocks must be a list"]
    errors: list[str] = []
    previous_end: Optional[int] = None
    for index, item in enumerate(raw):
        where = f"{label}[{index}]"
        if not isinstance(item, Mapping) or "from" not in item or "to" not in item:
            errors.append(f"{where}: block requires 'from' and 'to'")
            continue
        try:
            start = parse_time(str(item["from"]))
            end = parse_time(str(item["to"]))
        except ValueError:
            errors.append(f"{where}: times must be HH:MM")
            continue
        if start >= end:
            errors.append(f"{where}: 'from' must be before 'to'")
            continue
        if previous_end is not None and start < previous_end:
            errors.append(f"{where}: blocks must be ordered and must not overlap")
        previous_end = end
    return errors


def validate_schedule(doc: Any) -> list[str]:
    """Return human readable problems with a schedule document (empty when valid)."""
    if not isinstance(doc, Mapping):
        return ["availabilitySchedule must be an object"]
    errors: list[str] = []
    weekly = doc.get("weeklySchedule")
    if not isinstance(weekly, Mapping):
        return ["weeklySchedule is required"]

    errors.extend(validate_time_blocks(weekly.get("defaultTimeBlocks", []), "defaultTimeBlocks"))

    days = weekly.get("days") or {}
    if not isinstance(days, Mapping):
        errors.append("weeklySchedule.days must be an object")
        days = {}
    for name, day_doc in days.items():
        if name not in DAYS_OF_WEEK:
            errors.append(f"days.{name}: unknown day of week")
            continue
        if not isinstance(day_doc, Mapping):
            errors.append(f"days.{name}: must be an object")
            continue
        if day_doc.get("timeBlocks") is not None:
            errors.extend(validate_time_blocks(day_doc["timeBlocks"], f"days.{name}"))

    exceptions = doc.get("exceptions") or []
    if not isinstance(exceptions, list):
        return errors + ["exceptions must be a list"]
    if len(exceptions) > MAX_EXCEPTIONS:
        errors.append(f"Maximum of {MAX_EXCEPTIONS} exceptions allowed")
    seen: set[str] = set()
    for index, exc in enumerate(exceptions):
        where = f"exceptions[{index}]"
        if not isinstance(exc, Mapping):
            errors.append(f"{where}: must be an object")
            continue
        raw_date = str(exc.get("date", ""))
        try:
            date.fromisoformat(raw_date)
        except ValueError:
            errors.append(f"{where}: date must be YYYY-MM-DD")
            continue
        if raw_date in seen:
            errors.append(f"{where}: duplicate exception for {raw_date}")
        seen.add(raw_date)
        if exc.get("type") not in {t.value for t in ExceptionType}:
            errors.append(f"{where}: type must be 'closed' or 'modified'")
            continue
        if exc["type"] == ExceptionType.MODIFIED:
            errors.extend(validate_time_blocks(exc.get("timeBlocks", []), where))
    return errors

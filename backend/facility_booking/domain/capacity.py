from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional, Protocol

from ..models import ReservationStatus

# Only these statuses contend for capacity. completed is historical.
ACTIVE_STATUSES: frozenset[ReservationStatus] = frozenset(
    {ReservationStatus.PENDING, ReservationStatus.CONFIRMED}
)


class Occupancy(Protocol):
    id: int
    status: ReservationStatus
    start_time: datetime
    end_time: datetime

    @property
    def horse_count(self) -> int: ...


@dataclass(frozen=True)
class CapacityCandidate:
    start_time: datetime
    end_time: datetime
    horse_count: int


@dataclass(frozen=True)
class CapacityResult:
    valid: bool
    message: Optional[str] = None
    max_concurrent: int = 0
    max_concurrent_time: Optional[datetime] = None
    conflict_window: Optional[tuple[datetime, datetime]] = None


@dataclass(frozen=True)
class PeakOccupancy:
    horses: int
    at: Optional[datetime]
    window: Optional[tuple[datetime, datetime]]


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Half-open overlap. Touching endpoints do not overlap."""
    return a_start < b_end and b_start < a_end


def find_overlapping(
    start: datetime,
    end: datetime,
    reservations: Iterable[Occupancy],
    *,
    exclude_reservation_id: Optional[int] = None,
) -> list[Occupancy]:
    return [
        r
        for r in reservations
        if r.status in ACTIVE_STATUSES
        and (exclude_reservation_id is None or r.id != exclude_reservation_id)
        and overlaps(r.start_time, r.end_time, start, end)
    ]


def peak_occupancy(candidate: CapacityCandidate, overlapping: Iterable[Occupancy]) -> PeakOccupancy:
    """
    Sweep interval endpoints inside the candidate's interval and return the
    highest simultaneous horse count, including the candidate itself.

    All events sharing an instant are applied before the level is read, so a
    reservation ending at 10:30 and another starting at 10:30 never stack.
    """
    events: list[tuple[datetime, int]] = []
    for start, end, horses in [
        (candidate.start_time, candidate.end_time, candidate.horse_count),
        *((r.start_time, r.end_time, r.horse_count) for r in overlapping),
    ]:
        start = max(start, candidate.start_time)
        end = min(end, candidate.end_time)
        if start >= end:
            continue
        events.append((start, horses))
        events.append((end, -horses))
    events.sort(key=lambda event: event[0])

    level = 0
    peak = PeakOccupancy(horses=0, at=None, window=None)
    for index, (when, delta) in enumerate(events):
        level += delta
        if index + 1 < len(events) and events[index + 1][0] == when:
            continue
        if level > peak.horses:
            until = events[index + 1][0] if index + 1 < len(events) else candidate.end_time
            peak = PeakOccupancy(horses=level, at=when, window=(when, until))
    return peak


def validate_capacity(
    candidate: CapacityCandidate,
    reservations: Iterable[Occupancy],
    max_concurrent: int,
    *,
    exclude_reservation_id: Optional[int] = None,
) -> CapacityResult:
    """
    Pure admission decision for concurrent horse capacity.

    `reservations` may contain anything for the facility; inactive, excluded and
    non-overlapping entries are ignored here.
    """
    if candidate.horse_count > max_concurrent:
        return CapacityResult(
            valid=False,
            message=(
                f"Reservation exceeds facility capacity: {candidate.horse_count} horses requested, "
                f"maximum {max_concurrent} allowed"
            ),
            max_concurrent=candidate.horse_count,
            max_concurrent_time=candidate.start_time,
            conflict_window=(candidate.start_time, candidate.end_time),
        )

    overlapping = find_overlapping(
        candidate.start_time,
        candidate.end_time,
        reservations,
        exclude_reservation_id=exclude_reservation_id,
    )
    peak = peak_occupancy(candidate, overlapping)
    if peak.horses > max_concurrent:
        return CapacityResult(
            valid=False,
            message=(
                f"Facility capacity exceeded: {peak.horses} horses would be present at the same time, "
                f"maximum {max_concurrent} allowed"
            ),
            max_concurrent=peak.horses,
            max_concurrent_time=peak.at,
            conflict_window=peak.window,
        )
    return CapacityResult(
        valid=True,
        max_concurrent=peak.horses,
        max_concurrent_time=peak.at,
    )

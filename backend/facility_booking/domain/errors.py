from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Optional, Sequence

if TYPE_CHECKING:
    from .availability import TimeBlock


class ErrorKind(StrEnum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    FORBIDDEN = "FORBIDDEN"
    AVAILABILITY_CONFLICT = "AVAILABILITY_CONFLICT"
    CAPACITY_EXCEEDED = "CAPACITY_EXCEEDED"
    HORSES_REQUIRED = "HORSES_REQUIRED"
    TOO_MANY_HORSES = "TOO_MANY_HORSES"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    VERSION_CONFLICT = "VERSION_CONFLICT"
    CONFLICT = "CONFLICT"
    INFRASTRUCTURE_ERROR = "INFRASTRUCTURE_ERROR"


class ReservationDomainError(Exception):
    """Base for errors callers branch on by `kind`."""

    kind: ErrorKind = ErrorKind.VALIDATION_ERROR

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def payload(self) -> dict[str, Any]:
        """Extra fields rendered next to `error` and `message` in responses."""
        return {}


class ValidationError(ReservationDomainError):
    kind = ErrorKind.VALIDATION_ERROR

    def __init__(self, message: str, details: Optional[Sequence[str]] = None) -> None:
        super().__init__(message)
        self.details = list(details or [])

    def payload(self) -> dict[str, Any]:
        return {"details": self.details} if self.details else {}


class NotFoundError(ReservationDomainError):
    kind = ErrorKind.NOT_FOUND


class FacilityNotFoundError(NotFoundError):
    def __init__(self, message: str = "Facility not found") -> None:
        super().__init__(message)


class ReservationNotFoundError(NotFoundError):
    def __init__(self, message: str = "Reservation not found") -> None:
        super().__init__(message)


class ScheduleExceptionNotFoundError(NotFoundError):
    def __init__(self, message: str = "No exception found for this date") -> None:
        super().__init__(message)


class ForbiddenError(ReservationDomainError):
    kind = ErrorKind.FORBIDDEN


class AvailabilityConflictError(ReservationDomainError):
    kind = ErrorKind.AVAILABILITY_CONFLICT

    def __init__(self, message: str, *, effective_blocks: Sequence["TimeBlock"], closed: bool) -> None:
        super().__init__(message)
        self.effective_blocks = list(effective_blocks)
        self.closed = closed

    def payload(self) -> dict[str, Any]:
        return {
            "closed": self.closed,
            "effectiveBlocks": [block.to_document() for block in self.effective_blocks],
        }


class CapacityExceededError(ReservationDomainError):
    kind = ErrorKind.CAPACITY_EXCEEDED

    def __init__(
        self,
        message: str,
        *,
        max_concurrent: Optional[int] = None,
        max_concurrent_time: Optional[datetime] = None,
        conflict_window: Optional[tuple[datetime, datetime]] = None,
    ) -> None:
        super().__init__(message)
        self.max_concurrent = max_concurrent
        self.max_concurrent_time = max_concurrent_time
        self.conflict_window = conflict_window

    def payload(self) -> dict[str, Any]:
        data: dict[str, Any] = {"maxConcurrent": self.max_concurrent}
        if self.max_concurrent_time is not None:
            data["maxConcurrentTime"] = self.max_concurrent_time.isoformat()
        if self.conflict_window is not None:
            data["conflictWindow"] = {
                "from": self.conflict_window[0].isoformat(),
                "to": self.conflict_window[1].isoformat(),
            }
        return data


class HorsesRequiredError(ReservationDomainError):
    kind = ErrorKind.HORSES_REQUIRED

    def __init__(self, message: str = "At least one horse must be selected for the reservation") -> None:
        super().__init__(message)


class TooManyHorsesError(ReservationDomainError):
    kind = ErrorKind.TOO_MANY_HORSES

    def __init__(self, max_horses: int) -> None:
        super().__init__(
            f"Too many horses selected. Maximum {max_horses} horses allowed per reservation."
        )
        self.max_horses = max_horses

    def payload(self) -> dict[str, Any]:
        return {"maxHorsesPerReservation": self.max_horses}


class InvalidTransitionError(ReservationDomainError):
    kind = ErrorKind.INVALID_TRANSITION


class VersionConflictError(ReservationDomainError):
    kind = ErrorKind.VERSION_CONFLICT


class ConflictError(ReservationDomainError):
    """The request clashes with the current state of a facility."""

    kind = ErrorKind.CONFLICT


class InfrastructureError(ReservationDomainError):
    kind = ErrorKind.INFRASTRUCTURE_ERROR

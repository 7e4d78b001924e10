from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Optional, Sequence

from ..domain.access import AccessPolicy, Actor
from ..domain.availability import (
    MAX_EXCEPTIONS,
    AvailabilitySchedule,
    ExceptionType,
    ScheduleException,
    TimeBlock,
    create_default_schedule,
    resolve_effective_blocks,
    schedule_for,
    validate_schedule,
    validate_time_blocks,
)
from ..domain.errors import (
    ConflictError,
    FacilityNotFoundError,
    ForbiddenError,
    ScheduleExceptionNotFoundError,
    ValidationError,
)
from ..domain.repositories import FacilityRepository, ReservationRepository
from ..domain.services import sanitize_user_input
from ..models import Facility, FacilityStatus, FacilityType

REASON_MAX_LENGTH = 500


@dataclass(frozen=True)
class FacilityChanges:
    name: Optional[str] = None
    type: Optional[FacilityType] = None
    description: Optional[str] = None
    status: Optional[FacilityStatus] = None
    max_horses_per_reservation: Optional[int] = None
    min_time_slot_duration: Optional[int] = None
    max_hours_per_reservation: Optional[int] = None
    availability_schedule: Optional[dict[str, Any]] = None


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _check_schedule(doc: Any) -> None:
    errors = validate_schedule(doc)
    if errors:
        raise ValidationError("Invalid availability schedule", details=errors)


async def _managed_facility_for_update(
    facility_repo: FacilityRepository,
    access: AccessPolicy,
    actor: Actor,
    facility_id: int,
    action: str,
) -> Facility:
    facility = await facility_repo.get_for_update(facility_id)
    if facility is None:
        raise FacilityNotFoundError()
    if not await access.has_stable_management_access(facility.stable_id, actor):
        raise ForbiddenError(f"You do not have permission to {action}")
    return facility


async def _save(facility_repo: FacilityRepository, facility: Facility, actor: Actor) -> Facility:
    facility.updated_at = _utc_now().replace(tzinfo=None)
    facility.last_modified_by = actor.id
    return await facility_repo.save(facility)


async def create_facility(
    facility_repo: FacilityRepository,
    access: AccessPolicy,
    *,
    actor: Actor,
    stable_id: str,
    name: str,
    type: FacilityType,
    description: Optional[str] = None,
    status: FacilityStatus = FacilityStatus.ACTIVE,
    max_horses_per_reservation: int = 1,
    min_time_slot_duration: int = 30,
    max_hours_per_reservation: Optional[int] = None,
    availability_schedule: Optional[dict[str, Any]] = None,
) -> Facility:
    if not await access.has_stable_management_access(stable_id, actor):
        raise ForbiddenError("You do not have permission to create facilities for this stable")
    if max_horses_per_reservation < 1:
        raise ValidationError("maxHorsesPerReservation must be >= 1")

    schedule_doc = availability_schedule or create_default_schedule().to_document()
    _check_schedule(schedule_doc)

    return await facility_repo.create(
        stable_id=stable_id,
        name=name.strip(),
        type=type,
        description=description,
        status=status,
        max_horses_per_reservation=max_horses_per_reservation,
        min_time_slot_duration=min_time_slot_duration,
        max_hours_per_reservation=max_hours_per_reservation,
        availability_schedule=schedule_doc,
        created_by=actor.id,
        last_modified_by=actor.id,
    )


async def get_facility(
    facility_repo: FacilityRepository,
    access: AccessPolicy,
    *,
    actor: Actor,
    facility_id: int,
) -> tuple[Facility, AvailabilitySchedule]:
    """Return the facility and its schedule (the default one when none is stored)."""
    facility = await facility_repo.get(facility_id)
    if facility is None:
        raise FacilityNotFoundError()
    if not await access.has_stable_access(facility.stable_id, actor):
        raise ForbiddenError("You do not have access to this stable")
    return facility, schedule_for(facility.availability_schedule)


async def list_facilities(
    facility_repo: FacilityRepository,
    access: AccessPolicy,
    *,
    actor: Actor,
    stable_id: str,
    status: Optional[FacilityStatus] = None,
    reservable_only: bool = False,
) -> list[Facility]:
    if not await access.has_stable_access(stable_id, actor):
        raise ForbiddenError("You do not have access to this stable")
    statuses: Optional[set[FacilityStatus]] = None
    if status is not None:
        statuses = {status}
    if reservable_only:
        statuses = (statuses or {FacilityStatus.ACTIVE}) & {FacilityStatus.ACTIVE}
    return await facility_repo.list_by_stable(stable_id, statuses)


async def update_facility(
    facility_repo: FacilityRepository,
    access: AccessPolicy,
    *,
    actor: Actor,
    facility_id: int,
    changes: FacilityChanges,
) -> Facility:
    """
    Apply configuration changes under the facility row lock.

    Existing reservations are not re-validated against a new schedule or
    capacity; only future admissions see the change.
    """
    facility = await _managed_facility_for_update(
        facility_repo, access, actor, facility_id, "update this facility"
    )
    if changes.max_horses_per_reservation is not None and changes.max_horses_per_reservation < 1:
        raise ValidationError("maxHorsesPerReservation must be >= 1")
    if changes.availability_schedule is not None:
        _check_schedule(changes.availability_schedule)
        facility.availability_schedule = changes.availability_schedule

    if changes.name is not None:
        facility.name = changes.name.strip()
    if changes.type is not None:
        facility.type = changes.type
    if changes.description is not None:
        facility.description = changes.description
    if changes.status is not None:
        facility.status = changes.status
    if changes.max_horses_per_reservation is not None:
        facility.max_horses_per_reservation = changes.max_horses_per_reservation
    if changes.min_time_slot_duration is not None:
        facility.min_time_slot_duration = changes.min_time_slot_duration
    if changes.max_hours_per_reservation is not None:
        facility.max_hours_per_reservation = changes.max_hours_per_reservation
    return await _save(facility_repo, facility, actor)


async def delete_facility(
    facility_repo: FacilityRepository,
    res_repo: ReservationRepository,
    access: AccessPolicy,
    *,
    actor: Actor,
    facility_id: int,
) -> Facility:
    """Hard delete. Refused while any reservation still points at the facility."""
    facility = await _managed_facility_for_update(
        facility_repo, access, actor, facility_id, "delete this facility"
    )
    if await res_repo.list_by_facility(facility.id):
        raise ConflictError("Facility has reservations; set its status to inactive instead")
    await facility_repo.delete(facility)
    return facility


async def add_schedule_exception(
    facility_repo: FacilityRepository,
    access: AccessPolicy,
    *,
    actor: Actor,
    facility_id: int,
    day: date,
    type: ExceptionType,
    time_blocks: Sequence[dict[str, Any]] = (),
    reason: Optional[str] = None,
) -> ScheduleException:
    """
    Close or reshape one date. The exception outranks the weekly pattern for
    that date, so it must run under the facility row lock like admissions do.
    """
    if type == ExceptionType.MODIFIED:
        if not time_blocks:
            raise ValidationError("Modified exceptions require at least one time block")
        errors = validate_time_blocks(list(time_blocks), "timeBlocks")
        if errors:
            raise ValidationError("Invalid time blocks", details=errors)
    if reason is not None and len(reason) > REASON_MAX_LENGTH:
        raise ValidationError(f"Reason must be {REASON_MAX_LENGTH} characters or fewer")

    facility = await _managed_facility_for_update(
        facility_repo, access, actor, facility_id, "manage schedule exceptions"
    )
    schedule = schedule_for(facility.availability_schedule)
    if schedule.exception_for(day) is not None:
        raise ConflictError("An exception already exists for this date")
    if len(schedule.exceptions) >= MAX_EXCEPTIONS:
        raise ValidationError(f"Maximum of {MAX_EXCEPTIONS} exceptions allowed")

    exception = ScheduleException(
        date=day,
        type=type,
        time_blocks=()
        if type == ExceptionType.CLOSED
        else tuple(TimeBlock.from_document(block) for block in time_blocks),
        reason=sanitize_user_input(reason, REASON_MAX_LENGTH),
        created_by=actor.id,
        created_at=_utc_now().isoformat(),
    )
    facility.availability_schedule = schedule.with_exception(exception).to_document()
    await _save(facility_repo, facility, actor)
    return exception


async def remove_schedule_exception(
    facility_repo: FacilityRepository,
    access: AccessPolicy,
    *,
    actor: Actor,
    facility_id: int,
    day: date,
) -> Facility:
    facility = await _managed_facility_for_update(
        facility_repo, access, actor, facility_id, "manage schedule exceptions"
    )
    schedule = schedule_for(facility.availability_schedule)
    if schedule.exception_for(day) is None:
        raise ScheduleExceptionNotFoundError()
    facility.availability_schedule = schedule.without_exception(day).to_document()
    return await _save(facility_repo, facility, actor)


async def get_available_slots(
    facility_repo: FacilityRepository,
    access: AccessPolicy,
    *,
    actor: Actor,
    facility_id: int,
    day: date,
) -> list[TimeBlock]:
    _, schedule = await get_facility(facility_repo, access, actor=actor, facility_id=facility_id)
    return resolve_effective_blocks(schedule, day)

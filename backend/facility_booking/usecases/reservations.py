import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Sequence
from zoneinfo import ZoneInfo

from ..domain.access import AccessPolicy, Actor
from ..domain.availability import AvailabilityCheck, check_time_range, resolve_effective_blocks, schedule_for
from ..domain.capacity import ACTIVE_STATUSES, CapacityCandidate, CapacityResult, validate_capacity
from ..domain.errors import (
    AvailabilityConflictError,
    CapacityExceededError,
    FacilityNotFoundError,
    ForbiddenError,
    HorsesRequiredError,
    ReservationNotFoundError,
    VersionConflictError,
)
from ..domain.repositories import FacilityRepository, ReservationRepository
from ..domain.services import (
    ensure_transition,
    local_time_range,
    sanitize_user_input,
    validate_horse_count,
)
from ..models import Facility, FacilityStatus, Reservation, ReservationStatus
from ..utils.time import to_utc_naive, utc_naive_to_aware

logger = logging.getLogger(__name__)

PURPOSE_MAX_LENGTH = 200
NOTES_MAX_LENGTH = 500


@dataclass(frozen=True)
class ReservationChanges:
    facility_id: Optional[int] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    horse_ids: Optional[Sequence[str]] = None
    horse_names: Sequence[str] = field(default_factory=tuple)
    clears_horses: bool = False
    purpose: Optional[str] = None
    notes: Optional[str] = None
    status: Optional[ReservationStatus] = None
    admin_override: bool = False


async def validate_facility_capacity(
    res_repo: ReservationRepository,
    facility_id: int,
    candidate: CapacityCandidate,
    max_concurrent: int,
    exclude_reservation_id: Optional[int] = None,
) -> CapacityResult:
    """Load the active reservations overlapping `candidate` and decide admission."""
    existing = await res_repo.list_overlapping(
        facility_id,
        candidate.start_time,
        candidate.end_time,
        statuses=ACTIVE_STATUSES,
        exclude_reservation_id=exclude_reservation_id,
        lock=True,
    )
    return validate_capacity(
        candidate,
        existing,
        max_concurrent,
        exclude_reservation_id=exclude_reservation_id,
    )


async def _admit(
    facility: Facility,
    res_repo: ReservationRepository,
    access: AccessPolicy,
    *,
    actor: Actor,
    start_time: datetime,
    end_time: datetime,
    horse_ids: Sequence[str],
    admin_override: bool,
    tz: ZoneInfo,
    exclude_reservation_id: Optional[int] = None,
) -> None:
    """Availability, horse count and capacity checks shared by create and update."""
    if facility.status != FacilityStatus.ACTIVE:
        raise AvailabilityConflictError(
            f"Facility is {facility.status} and cannot be booked",
            effective_blocks=[],
            closed=True,
        )

    time_range = local_time_range(start_time, end_time, tz)
    blocks = resolve_effective_blocks(schedule_for(facility.availability_schedule), time_range.day)
    availability = check_time_range(blocks, time_range.start, time_range.end)
    if availability != AvailabilityCheck.OPEN:
        if not admin_override:
            message = (
                "Facility is closed on this date"
                if availability == AvailabilityCheck.CLOSED
                else "Requested time is outside facility availability. Use adminOverride to bypass."
            )
            raise AvailabilityConflictError(
                message,
                effective_blocks=blocks,
                closed=availability == AvailabilityCheck.CLOSED,
            )
        if not await access.has_stable_management_access(facility.stable_id, actor):
            raise ForbiddenError("Only stable owners or admins can override availability")
        logger.info(
            "availability override by %s on facility %s for %s %s-%s",
            actor.id,
            facility.id,
            time_range.day,
            time_range.start,
            time_range.end,
        )

    horse_count = validate_horse_count(horse_ids, facility.max_horses_per_reservation)
    candidate = CapacityCandidate(
        start_time=to_utc_naive(start_time),
        end_time=to_utc_naive(end_time),
        horse_count=horse_count,
    )
    result = await validate_facility_capacity(
        res_repo,
        facility.id,
        candidate,
        facility.max_horses_per_reservation,
        exclude_reservation_id=exclude_reservation_id,
    )
    if not result.valid:
        window = result.conflict_window
        raise CapacityExceededError(
            result.message or "Facility capacity exceeded",
            max_concurrent=result.max_concurrent,
            max_concurrent_time=utc_naive_to_aware(result.max_concurrent_time)
            if result.max_concurrent_time
            else None,
            conflict_window=(utc_naive_to_aware(window[0]), utc_naive_to_aware(window[1])) if window else None,
        )


async def create_reservation(
    facility_repo: FacilityRepository,
    res_repo: ReservationRepository,
    access: AccessPolicy,
    *,
    actor: Actor,
    facility_id: int,
    start_time: datetime,
    end_time: datetime,
    horse_ids: Sequence[str],
    horse_names: Sequence[str] = (),
    purpose: Optional[str] = None,
    notes: Optional[str] = None,
    stable_name: Optional[str] = None,
    admin_override: bool = False,
    tz: ZoneInfo,
) -> Reservation:
    """
    Admit and persist a new pending reservation.

    Must run inside a transaction: the facility row is locked first so that
    every other admission for this facility waits until this one commits.
    """
    if not horse_ids:
        raise HorsesRequiredError()

    facility = await facility_repo.get_for_update(facility_id)
    if facility is None:
        raise FacilityNotFoundError()
    if not await access.has_stable_access(facility.stable_id, actor):
        raise ForbiddenError("You do not have permission to create reservations for this facility")

    await _admit(
        facility,
        res_repo,
        access,
        actor=actor,
        start_time=start_time,
        end_time=end_time,
        horse_ids=horse_ids,
        admin_override=admin_override,
        tz=tz,
    )

    return await res_repo.create(
        facility_id=facility.id,
        stable_id=facility.stable_id,
        user_id=actor.id,
        horse_ids=list(horse_ids),
        horse_names=list(horse_names),
        start_time=to_utc_naive(start_time),
        end_time=to_utc_naive(end_time),
        status=ReservationStatus.PENDING,
        purpose=sanitize_user_input(purpose, PURPOSE_MAX_LENGTH),
        notes=sanitize_user_input(notes, NOTES_MAX_LENGTH),
        facility_name=facility.name,
        facility_type=str(facility.type),
        stable_name=stable_name,
        user_email=actor.email,
        user_full_name=actor.display_name,
        created_by=actor.id,
        last_modified_by=actor.id,
    )


async def _lock_facilities(
    facility_repo: FacilityRepository,
    current_id: int,
    target_id: int,
) -> Facility | None:
    # Fixed lock order when a reservation moves between facilities.
    locked: dict[int, Facility | None] = {}
    for facility_id in sorted({current_id, target_id}):
        locked[facility_id] = await facility_repo.get_for_update(facility_id)
    return locked[target_id]


async def update_reservation(
    facility_repo: FacilityRepository,
    res_repo: ReservationRepository,
    access: AccessPolicy,
    *,
    actor: Actor,
    reservation_id: int,
    changes: ReservationChanges,
    expected_version: Optional[int] = None,
    tz: ZoneInfo,
) -> tuple[Reservation, ReservationStatus]:
    """
    Apply changes to a reservation, re-running admission against the new values.

    Runs inside one transaction: the reservation and the target facility are
    locked, capacity is recomputed from a fresh read that excludes the
    reservation itself, then the write happens. Returns the saved reservation and
    the status it had before the change.
    """
    reservation = await res_repo.get_for_update(reservation_id)
    if reservation is None:
        raise ReservationNotFoundError()
    previous_status = reservation.status
    target_facility_id = changes.facility_id or reservation.facility_id
    facility = await _lock_facilities(facility_repo, reservation.facility_id, target_facility_id)
    if facility is None:
        raise FacilityNotFoundError()

    if reservation.user_id != actor.id and not await access.has_stable_access(reservation.stable_id, actor):
        raise ForbiddenError("You do not have permission to modify this reservation")
    if facility.stable_id != reservation.stable_id and not await access.has_stable_access(
        facility.stable_id, actor
    ):
        raise ForbiddenError("You do not have permission to create reservations for this facility")
    if expected_version is not None and reservation.version != expected_version:
        raise VersionConflictError("Reservation was modified by another request")

    if changes.clears_horses:
        raise HorsesRequiredError()
    horses_changed = changes.horse_ids is not None
    horse_ids = list(changes.horse_ids) if changes.horse_ids is not None else list(reservation.horse_ids)

    start_time = changes.start_time or utc_naive_to_aware(reservation.start_time)
    end_time = changes.end_time or utc_naive_to_aware(reservation.end_time)
    if changes.start_time is not None or changes.end_time is not None:
        # Stored times stay well-formed whatever the resulting status.
        local_time_range(start_time, end_time, tz)

    status_changed = False
    if changes.status is not None:
        if changes.status != ReservationStatus.CANCELLED and not await access.has_stable_management_access(
            reservation.stable_id, actor
        ):
            raise ForbiddenError("You do not have permission to change the status of this reservation")
        status_changed = ensure_transition(reservation.status, changes.status)
    target_status = changes.status or reservation.status

    admission_changed = (
        horses_changed
        or facility.id != reservation.facility_id
        or changes.start_time is not None
        or changes.end_time is not None
    )
    if admission_changed and target_status in ACTIVE_STATUSES:
        await _admit(
            facility,
            res_repo,
            access,
            actor=actor,
            start_time=start_time,
            end_time=end_time,
            horse_ids=horse_ids,
            admin_override=changes.admin_override,
            tz=tz,
            exclude_reservation_id=reservation.id,
        )
    elif horses_changed:
        validate_horse_count(horse_ids, facility.max_horses_per_reservation)

    if facility.id != reservation.facility_id:
        reservation.facility_id = facility.id
        reservation.stable_id = facility.stable_id
        reservation.facility_name = facility.name
        reservation.facility_type = str(facility.type)
    if changes.start_time is not None:
        reservation.start_time = to_utc_naive(start_time)
    if changes.end_time is not None:
        reservation.end_time = to_utc_naive(end_time)
    if horses_changed:
        reservation.horse_ids = horse_ids
        reservation.horse_names = list(changes.horse_names)
    if changes.purpose is not None:
        reservation.purpose = sanitize_user_input(changes.purpose, PURPOSE_MAX_LENGTH)
    if changes.notes is not None:
        reservation.notes = sanitize_user_input(changes.notes, NOTES_MAX_LENGTH)
    if status_changed:
        reservation.status = target_status

    _touch(reservation, actor)
    return await res_repo.save(reservation), previous_status


async def transition_reservation(
    res_repo: ReservationRepository,
    access: AccessPolicy,
    *,
    actor: Actor,
    reservation_id: int,
    target: ReservationStatus,
    review_notes: Optional[str] = None,
    expected_version: Optional[int] = None,
) -> tuple[Reservation, ReservationStatus, bool]:
    """
    Move a reservation to `target`. Returns (reservation, previous status, changed).

    Repeating a transition the reservation already went through is a no-op
    that reports success without writing.
    """
    reservation = await res_repo.get_for_update(reservation_id)
    if reservation is None:
        raise ReservationNotFoundError()

    if target == ReservationStatus.CANCELLED:
        allowed = reservation.user_id == actor.id or await access.has_stable_access(reservation.stable_id, actor)
    else:
        allowed = await access.has_stable_management_access(reservation.stable_id, actor)
    if not allowed:
        raise ForbiddenError(f"You do not have permission to change this reservation to {target}")

    previous = reservation.status
    if not ensure_transition(previous, target):
        return reservation, previous, False
    if expected_version is not None and reservation.version != expected_version:
        raise VersionConflictError("Reservation was modified by another request")

    reservation.status = target
    if review_notes is not None:
        reservation.review_notes = sanitize_user_input(review_notes, NOTES_MAX_LENGTH)
    _touch(reservation, actor)
    updated = await res_repo.save(reservation)
    return updated, previous, True


async def approve_reservation(
    res_repo: ReservationRepository,
    access: AccessPolicy,
    *,
    actor: Actor,
    reservation_id: int,
    review_notes: Optional[str] = None,
) -> tuple[Reservation, ReservationStatus, bool]:
    return await transition_reservation(
        res_repo,
        access,
        actor=actor,
        reservation_id=reservation_id,
        target=ReservationStatus.CONFIRMED,
        review_notes=review_notes,
    )


async def reject_reservation(
    res_repo: ReservationRepository,
    access: AccessPolicy,
    *,
    actor: Actor,
    reservation_id: int,
    review_notes: Optional[str] = None,
) -> tuple[Reservation, ReservationStatus, bool]:
    return await transition_reservation(
        res_repo,
        access,
        actor=actor,
        reservation_id=reservation_id,
        target=ReservationStatus.REJECTED,
        review_notes=review_notes,
    )


async def cancel_reservation(
    res_repo: ReservationRepository,
    access: AccessPolicy,
    *,
    actor: Actor,
    reservation_id: int,
    expected_version: Optional[int] = None,
) -> tuple[Reservation, ReservationStatus, bool]:
    return await transition_reservation(
        res_repo,
        access,
        actor=actor,
        reservation_id=reservation_id,
        target=ReservationStatus.CANCELLED,
        expected_version=expected_version,
    )


async def delete_reservation(
    res_repo: ReservationRepository,
    access: AccessPolicy,
    *,
    actor: Actor,
    reservation_id: int,
) -> Reservation:
    """Hard delete. Administrative only; no capacity or transition rules apply."""
    reservation = await res_repo.get_for_update(reservation_id)
    if reservation is None:
        raise ReservationNotFoundError()
    if not await access.has_stable_management_access(reservation.stable_id, actor):
        raise ForbiddenError("You do not have permission to delete this reservation")
    await res_repo.delete(reservation)
    return reservation


def _touch(reservation: Reservation, actor: Actor) -> None:
    reservation.version += 1
    reservation.updated_at = datetime.now(timezone.utc).replace(tzinfo=None)
    reservation.last_modified_by = actor.id

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import Settings, get_settings
from ..deps import get_current_actor, get_session
from ..domain.access import Actor
from ..domain.availability import ScheduleException
from ..domain.errors import ReservationDomainError
from ..infrastructure.access import SqlAlchemyAccessPolicy
from ..infrastructure.repositories import SqlAlchemyFacilityRepository, SqlAlchemyReservationRepository
from ..models import Facility, FacilityStatus
from ..schemas import (
    ActionResult,
    AvailableSlotsRead,
    FacilityCreate,
    FacilityList,
    FacilityRead,
    FacilityUpdate,
    ScheduleExceptionCreate,
    ScheduleExceptionRead,
    ScheduleExceptionResult,
    TimeBlockRead,
)
from ..usecases import facilities as facility_usecase
from .errors import in_transaction, to_http_exception

router = APIRouter(
    prefix="/api/v1/facilities",
    tags=["facilities"],
    dependencies=[Depends(get_current_actor)],
)


def _read(facility: Facility) -> FacilityRead:
    return FacilityRead.from_db(facility=facility, schedule=facility.availability_schedule or {})


@router.post("", response_model=FacilityRead, status_code=status.HTTP_201_CREATED)
async def create_facility(
    payload: FacilityCreate,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
    settings: Settings = Depends(get_settings),
) -> FacilityRead:
    facility_repo = SqlAlchemyFacilityRepository(session)
    access = SqlAlchemyAccessPolicy(session)

    async def operation() -> Facility:
        return await facility_usecase.create_facility(
            facility_repo,
            access,
            actor=actor,
            stable_id=payload.stable_id,
            name=payload.name,
            type=payload.type,
            description=payload.description,
            status=payload.status,
            max_horses_per_reservation=payload.max_horses_per_reservation,
            min_time_slot_duration=payload.min_time_slot_duration,
            max_hours_per_reservation=payload.max_hours_per_reservation,
            availability_schedule=payload.availability_schedule,
        )

    return _read(await in_transaction(session, settings, operation))


@router.get("", response_model=FacilityList)
async def list_facilities(
    stable_id: str = Query(..., alias="stableId", min_length=1),
    facility_status: Optional[FacilityStatus] = Query(default=None, alias="status"),
    reservable_only: bool = Query(default=False, alias="reservableOnly"),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> FacilityList:
    try:
        rows = await facility_usecase.list_facilities(
            SqlAlchemyFacilityRepository(session),
            SqlAlchemyAccessPolicy(session),
            actor=actor,
            stable_id=stable_id,
            status=facility_status,
            reservable_only=reservable_only,
        )
    except ReservationDomainError as exc:
        raise to_http_exception(exc) from exc
    return FacilityList(facilities=[_read(facility) for facility in rows])


@router.get("/{facility_id}", response_model=FacilityRead)
async def get_facility(
    facility_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> FacilityRead:
    try:
        facility, schedule = await facility_usecase.get_facility(
            SqlAlchemyFacilityRepository(session),
            SqlAlchemyAccessPolicy(session),
            actor=actor,
            facility_id=facility_id,
        )
    except ReservationDomainError as exc:
        raise to_http_exception(exc) from exc
    return FacilityRead.from_db(facility=facility, schedule=schedule.to_document())


@router.patch("/{facility_id}", response_model=FacilityRead)
async def update_facility(
    payload: FacilityUpdate,
    facility_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
    settings: Settings = Depends(get_settings),
) -> FacilityRead:
    facility_repo = SqlAlchemyFacilityRepository(session)
    access = SqlAlchemyAccessPolicy(session)
    changes = facility_usecase.FacilityChanges(**payload.model_dump(exclude_unset=True))

    async def operation() -> Facility:
        return await facility_usecase.update_facility(
            facility_repo, access, actor=actor, facility_id=facility_id, changes=changes
        )

    return _read(await in_transaction(session, settings, operation))


@router.delete("/{facility_id}", response_model=ActionResult)
async def delete_facility(
    facility_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
    settings: Settings = Depends(get_settings),
) -> ActionResult:
    facility_repo = SqlAlchemyFacilityRepository(session)
    res_repo = SqlAlchemyReservationRepository(session)
    access = SqlAlchemyAccessPolicy(session)

    async def operation() -> Facility:
        return await facility_usecase.delete_facility(
            facility_repo, res_repo, access, actor=actor, facility_id=facility_id
        )

    await in_transaction(session, settings, operation)
    return ActionResult(id=facility_id)


@router.post("/{facility_id}/exceptions", response_model=ScheduleExceptionResult)
async def add_schedule_exception(
    payload: ScheduleExceptionCreate,
    facility_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
    settings: Settings = Depends(get_settings),
) -> ScheduleExceptionResult:
    facility_repo = SqlAlchemyFacilityRepository(session)
    access = SqlAlchemyAccessPolicy(session)

    async def operation() -> ScheduleException:
        return await facility_usecase.add_schedule_exception(
            facility_repo,
            access,
            actor=actor,
            facility_id=facility_id,
            day=payload.day,
            type=payload.type,
            time_blocks=payload.time_blocks,
            reason=payload.reason,
        )

    exception = await in_transaction(session, settings, operation)
    return ScheduleExceptionResult(exception=ScheduleExceptionRead.from_domain(exception))


@router.delete("/{facility_id}/exceptions/{day}", response_model=ActionResult)
async def remove_schedule_exception(
    facility_id: int = Path(..., ge=1),
    day: date = Path(..., description="Facility-local date (YYYY-MM-DD)"),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
    settings: Settings = Depends(get_settings),
) -> ActionResult:
    facility_repo = SqlAlchemyFacilityRepository(session)
    access = SqlAlchemyAccessPolicy(session)

    async def operation() -> Facility:
        return await facility_usecase.remove_schedule_exception(
            facility_repo, access, actor=actor, facility_id=facility_id, day=day
        )

    await in_transaction(session, settings, operation)
    return ActionResult(id=facility_id)


@router.get("/{facility_id}/available-slots", response_model=AvailableSlotsRead)
async def get_available_slots(
    facility_id: int = Path(..., ge=1),
    day: date = Query(..., alias="date", description="Facility-local date (YYYY-MM-DD)"),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> AvailableSlotsRead:
    try:
        blocks = await facility_usecase.get_available_slots(
            SqlAlchemyFacilityRepository(session),
            SqlAlchemyAccessPolicy(session),
            actor=actor,
            facility_id=facility_id,
            day=day,
        )
    except ReservationDomainError as exc:
        raise to_http_exception(exc) from exc
    return AvailableSlotsRead(
        day=day,
        closed=not blocks,
        time_blocks=[TimeBlockRead.from_block(block) for block in blocks],
    )

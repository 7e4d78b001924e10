from datetime import date
from typing import Any, Awaitable, Callable, Optional
from zoneinfo import ZoneInfo

from fastapi import APIRouter, Body, Depends, Header, HTTPException, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import Settings, get_settings
from ..deps import get_current_actor, get_session
from ..domain.access import Actor
from ..domain.errors import ReservationDomainError
from ..domain.services import normalize_horses
from ..infrastructure.access import SqlAlchemyAccessPolicy
from ..infrastructure.repositories import SqlAlchemyFacilityRepository, SqlAlchemyReservationRepository
from ..models import Reservation, ReservationStatus
from ..schemas import (
    ActionResult,
    AnalyticsMetrics,
    AnalyticsRead,
    ConflictCheckRequest,
    ConflictCheckResponse,
    DateRange,
    FacilityUtilization,
    ReservationCancel,
    ReservationCreate,
    ReservationList,
    ReservationRead,
    ReservationReview,
    ReservationUpdate,
    TopUser,
)
from ..usecases import queries as query_usecase
from ..usecases import reservations as reservation_usecase
from ..utils.audit_log import AuditAction, record_audit_event
from ..utils.time import local_day_bounds_utc, utc_naive_to_aware
from .errors import in_transaction, to_http_exception

router = APIRouter(
    prefix="/api/v1/facility-reservations",
    tags=["facility-reservations"],
    dependencies=[Depends(get_current_actor)],
)


def _extract_version(if_match: Optional[str], payload: Any) -> Optional[int]:
    """Expected version from If-Match (preferred) or the request body; None when neither is sent."""
    if if_match:
        raw = if_match.strip()
        if raw.startswith("W/"):
            raw = raw[2:]
        raw = raw.strip('"')
        try:
            version = int(raw)
        except ValueError as exc:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={"error": "VALIDATION_ERROR", "message": "invalid If-Match header"},
            ) from exc
    elif payload is not None and getattr(payload, "version", None) is not None:
        version = payload.version
    else:
        return None

    if version < 1:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "VALIDATION_ERROR", "message": "version must be >= 1"},
        )
    return version


def _audit(
    action: AuditAction,
    reservation: Reservation,
    actor: Actor,
    *,
    status_from: Optional[ReservationStatus] = None,
    message: Optional[str] = None,
    extra: Optional[dict[str, Any]] = None,
) -> None:
    record_audit_event(
        action=action,
        initiator="user" if reservation.user_id == actor.id else "staff",
        reservation_id=reservation.id,
        facility_id=reservation.facility_id,
        stable_id=reservation.stable_id,
        actor_id=actor.id,
        horse_count=reservation.horse_count,
        status_from=status_from,
        status_to=reservation.status,
        version=reservation.version,
        message=message,
        extra=extra,
    )


@router.post("", response_model=ReservationRead, status_code=status.HTTP_201_CREATED)
async def create_reservation(
    payload: ReservationCreate,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
    settings: Settings = Depends(get_settings),
) -> ReservationRead:
    facility_repo = SqlAlchemyFacilityRepository(session)
    res_repo = SqlAlchemyReservationRepository(session)
    access = SqlAlchemyAccessPolicy(session)
    horse_ids, horse_names = normalize_horses(
        payload.horse_ids,
        payload.horse_names,
        horse_id=payload.horse_id,
        horse_name=payload.horse_name,
    )

    async def operation() -> Reservation:
        return await reservation_usecase.create_reservation(
            facility_repo,
            res_repo,
            access,
            actor=actor,
            facility_id=payload.facility_id,
            start_time=payload.start_time,
            end_time=payload.end_time,
            horse_ids=horse_ids,
            horse_names=horse_names,
            purpose=payload.purpose,
            notes=payload.notes,
            stable_name=payload.stable_name,
            admin_override=payload.admin_override,
            tz=ZoneInfo(settings.facility_timezone),
        )

    reservation = await in_transaction(session, settings, operation)
    _audit(
        "reservation.created",
        reservation,
        actor,
        extra={"admin_override": True} if payload.admin_override else None,
    )
    return ReservationRead.from_db(reservation=reservation)


@router.get("", response_model=ReservationList)
async def list_reservations(
    facility_id: Optional[int] = Query(default=None, alias="facilityId"),
    user_id: Optional[str] = Query(default=None, alias="userId"),
    stable_id: Optional[str] = Query(default=None, alias="stableId"),
    start_date: Optional[date] = Query(default=None, alias="startDate"),
    end_date: Optional[date] = Query(default=None, alias="endDate"),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
    settings: Settings = Depends(get_settings),
) -> ReservationList:
    try:
        rows = await query_usecase.list_reservations(
            SqlAlchemyReservationRepository(session),
            SqlAlchemyFacilityRepository(session),
            SqlAlchemyAccessPolicy(session),
            actor=actor,
            facility_id=facility_id,
            user_id=user_id,
            stable_id=stable_id,
            start_date=start_date,
            end_date=end_date,
            tz=ZoneInfo(settings.facility_timezone),
        )
    except ReservationDomainError as exc:
        raise to_http_exception(exc) from exc
    return ReservationList(reservations=[ReservationRead.from_db(reservation=r) for r in rows])


@router.get("/analytics", response_model=AnalyticsRead)
async def get_analytics(
    stable_id: str = Query(..., alias="stableId", min_length=1),
    start_date: Optional[date] = Query(default=None, alias="startDate"),
    end_date: Optional[date] = Query(default=None, alias="endDate"),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
    settings: Settings = Depends(get_settings),
) -> AnalyticsRead:
    tz = ZoneInfo(settings.facility_timezone)
    start = utc_naive_to_aware(local_day_bounds_utc(start_date, tz)[0]) if start_date else None
    end = utc_naive_to_aware(local_day_bounds_utc(end_date, tz)[1]) if end_date else None
    try:
        result = await query_usecase.get_analytics(
            SqlAlchemyReservationRepository(session),
            SqlAlchemyAccessPolicy(session),
            actor=actor,
            stable_id=stable_id,
            start=start,
            end=end,
            max_range_days=settings.analytics_max_range_days,
            tz=tz,
        )
    except ReservationDomainError as exc:
        raise to_http_exception(exc) from exc

    return AnalyticsRead(
        metrics=AnalyticsMetrics(
            total_bookings=result.total_bookings,
            confirmed_bookings=result.confirmed_bookings,
            completed_bookings=result.completed_bookings,
            cancelled_bookings=result.cancelled_bookings,
            no_shows=result.no_shows,
            average_duration=result.average_duration,
            no_show_rate=result.no_show_rate,
            peak_hour=result.peak_hour,
        ),
        facility_utilization=[
            FacilityUtilization(
                facility_id=u.facility_id,
                facility_name=u.facility_name,
                bookings=u.bookings,
                booked_hours=u.booked_hours,
            )
            for u in result.facility_utilization
        ],
        top_users=[
            TopUser(
                user_id=u.user_id,
                user_email=u.user_email,
                user_name=u.user_name,
                booking_count=u.booking_count,
            )
            for u in result.top_users
        ],
        date_range=DateRange(start_date=result.start, end_date=result.end),
    )


@router.post("/check-conflicts", response_model=ConflictCheckResponse)
async def check_conflicts(
    payload: ConflictCheckRequest,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> ConflictCheckResponse:
    try:
        rows = await query_usecase.check_conflicts(
            SqlAlchemyReservationRepository(session),
            SqlAlchemyFacilityRepository(session),
            SqlAlchemyAccessPolicy(session),
            actor=actor,
            facility_id=payload.facility_id,
            start_time=payload.start_time,
            end_time=payload.end_time,
            exclude_reservation_id=payload.exclude_reservation_id,
        )
    except ReservationDomainError as exc:
        raise to_http_exception(exc) from exc
    conflicts = [ReservationRead.from_db(reservation=r) for r in rows]
    return ConflictCheckResponse(conflicts=conflicts, has_conflicts=bool(conflicts))


@router.get("/{reservation_id}", response_model=ReservationRead)
async def get_reservation(
    reservation_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> ReservationRead:
    try:
        reservation = await query_usecase.get_reservation(
            SqlAlchemyReservationRepository(session),
            SqlAlchemyAccessPolicy(session),
            actor=actor,
            reservation_id=reservation_id,
        )
    except ReservationDomainError as exc:
        raise to_http_exception(exc) from exc
    return ReservationRead.from_db(reservation=reservation)


@router.patch("/{reservation_id}", response_model=ReservationRead)
async def update_reservation(
    payload: ReservationUpdate,
    reservation_id: int = Path(..., ge=1),
    if_match: Optional[str] = Header(default=None, alias="If-Match"),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
    settings: Settings = Depends(get_settings),
) -> ReservationRead:
    expected_version = _extract_version(if_match, payload)
    facility_repo = SqlAlchemyFacilityRepository(session)
    res_repo = SqlAlchemyReservationRepository(session)
    access = SqlAlchemyAccessPolicy(session)

    horses_sent = payload.horse_ids is not None or payload.horse_id is not None
    horse_ids, horse_names = normalize_horses(
        payload.horse_ids,
        payload.horse_names,
        horse_id=payload.horse_id,
        horse_name=payload.horse_name,
    )
    changes = reservation_usecase.ReservationChanges(
        facility_id=payload.facility_id,
        start_time=payload.start_time,
        end_time=payload.end_time,
        horse_ids=horse_ids if horses_sent else None,
        horse_names=horse_names,
        clears_horses=payload.clears_horses or (horses_sent and not horse_ids),
        purpose=payload.purpose,
        notes=payload.notes,
        status=payload.status,
        admin_override=payload.admin_override,
    )

    async def operation() -> tuple[Reservation, ReservationStatus]:
        return await reservation_usecase.update_reservation(
            facility_repo,
            res_repo,
            access,
            actor=actor,
            reservation_id=reservation_id,
            changes=changes,
            expected_version=expected_version,
            tz=ZoneInfo(settings.facility_timezone),
        )

    reservation, previous_status = await in_transaction(session, settings, operation)
    _audit(
        "reservation.updated",
        reservation,
        actor,
        status_from=previous_status,
        extra={"fields": sorted(payload.model_fields_set - {"version"})},
    )
    return ReservationRead.from_db(reservation=reservation)


async def _change_status(
    session: AsyncSession,
    settings: Settings,
    actor: Actor,
    action: AuditAction,
    operation: Callable[[SqlAlchemyReservationRepository, SqlAlchemyAccessPolicy], Awaitable[tuple[Reservation, ReservationStatus, bool]]],
) -> ActionResult:
    res_repo = SqlAlchemyReservationRepository(session)
    access = SqlAlchemyAccessPolicy(session)
    reservation, previous, changed = await in_transaction(session, settings, lambda: operation(res_repo, access))
    if changed:
        _audit(action, reservation, actor, status_from=previous)
    return ActionResult(id=reservation.id)


@router.post("/{reservation_id}/approve", response_model=ActionResult)
async def approve_reservation(
    reservation_id: int = Path(..., ge=1),
    payload: Optional[ReservationReview] = Body(default=None),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
    settings: Settings = Depends(get_settings),
) -> ActionResult:
    review_notes = payload.review_notes if payload else None
    return await _change_status(
        session,
        settings,
        actor,
        "reservation.approved",
        lambda res_repo, access: reservation_usecase.approve_reservation(
            res_repo, access, actor=actor, reservation_id=reservation_id, review_notes=review_notes
        ),
    )


@router.post("/{reservation_id}/reject", response_model=ActionResult)
async def reject_reservation(
    reservation_id: int = Path(..., ge=1),
    payload: Optional[ReservationReview] = Body(default=None),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
    settings: Settings = Depends(get_settings),
) -> ActionResult:
    review_notes = payload.review_notes if payload else None
    return await _change_status(
        session,
        settings,
        actor,
        "reservation.rejected",
        lambda res_repo, access: reservation_usecase.reject_reservation(
            res_repo, access, actor=actor, reservation_id=reservation_id, review_notes=review_notes
        ),
    )


@router.post("/{reservation_id}/cancel", response_model=ActionResult)
async def cancel_reservation(
    reservation_id: int = Path(..., ge=1),
    payload: Optional[ReservationCancel] = Body(default=None),
    if_match: Optional[str] = Header(default=None, alias="If-Match"),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
    settings: Settings = Depends(get_settings),
) -> ActionResult:
    expected_version = _extract_version(if_match, payload)
    return await _change_status(
        session,
        settings,
        actor,
        "reservation.cancelled",
        lambda res_repo, access: reservation_usecase.cancel_reservation(
            res_repo, access, actor=actor, reservation_id=reservation_id, expected_version=expected_version
        ),
    )


@router.post("/{reservation_id}/complete", response_model=ActionResult)
async def complete_reservation(
    reservation_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
    settings: Settings = Depends(get_settings),
) -> ActionResult:
    return await _change_status(
        session,
        settings,
        actor,
        "reservation.completed",
        lambda res_repo, access: reservation_usecase.transition_reservation(
            res_repo, access, actor=actor, reservation_id=reservation_id, target=ReservationStatus.COMPLETED
        ),
    )


@router.post("/{reservation_id}/no-show", response_model=ActionResult)
async def mark_no_show(
    reservation_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
    settings: Settings = Depends(get_settings),
) -> ActionResult:
    return await _change_status(
        session,
        settings,
        actor,
        "reservation.no_show",
        lambda res_repo, access: reservation_usecase.transition_reservation(
            res_repo, access, actor=actor, reservation_id=reservation_id, target=ReservationStatus.NO_SHOW
        ),
    )


@router.delete("/{reservation_id}", response_model=ActionResult)
async def delete_reservation(
    reservation_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
    settings: Settings = Depends(get_settings),
) -> ActionResult:
    res_repo = SqlAlchemyReservationRepository(session)
    access = SqlAlchemyAccessPolicy(session)

    async def operation() -> Reservation:
        return await reservation_usecase.delete_reservation(
            res_repo, access, actor=actor, reservation_id=reservation_id
        )

    reservation = await in_transaction(session, settings, operation)
    _audit("reservation.deleted", reservation, actor, status_from=reservation.status)
    return ActionResult(id=reservation_id)

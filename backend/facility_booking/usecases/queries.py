from collections import Counter
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from ..domain.access import AccessPolicy, Actor
from ..domain.capacity import ACTIVE_STATUSES
from ..domain.errors import FacilityNotFoundError, ForbiddenError, ReservationNotFoundError, ValidationError
from ..domain.repositories import FacilityRepository, ReservationRepository
from ..models import Reservation, ReservationStatus
from ..utils.time import local_day_bounds_utc, to_utc_naive, utc_naive_to_local

ANALYTICS_DEFAULT_DAYS = 30
TOP_USERS_LIMIT = 10


async def get_reservation(
    res_repo: ReservationRepository,
    access: AccessPolicy,
    *,
    actor: Actor,
    reservation_id: int,
) -> Reservation:
    reservation = await res_repo.get(reservation_id)
    if reservation is None:
        raise ReservationNotFoundError()
    if reservation.user_id != actor.id and not await access.has_stable_access(reservation.stable_id, actor):
        raise ForbiddenError("You do not have permission to view this reservation")
    return reservation


async def list_reservations(
    res_repo: ReservationRepository,
    facility_repo: FacilityRepository,
    access: AccessPolicy,
    *,
    actor: Actor,
    facility_id: Optional[int] = None,
    user_id: Optional[str] = None,
    stable_id: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    tz: ZoneInfo,
) -> list[Reservation]:
    """List by exactly one of facility, user or stable. Date bounds filter start_time."""
    selectors = [value for value in (facility_id, user_id, stable_id) if value is not None]
    if len(selectors) != 1:
        raise ValidationError("Exactly one of facilityId, userId or stableId is required")

    start = local_day_bounds_utc(start_date, tz)[0] if start_date else None
    end = local_day_bounds_utc(end_date, tz)[1] if end_date else None

    if facility_id is not None:
        facility = await facility_repo.get(facility_id)
        if facility is None:
            raise FacilityNotFoundError()
        if not await access.has_stable_access(facility.stable_id, actor):
            raise ForbiddenError("You do not have permission to view reservations for this facility")
        return await res_repo.list_by_facility(facility_id, start, end)

    if stable_id is not None:
        if not await access.has_stable_access(stable_id, actor):
            raise ForbiddenError("You do not have permission to view reservations for this stable")
        return await res_repo.list_by_stable(stable_id, start, end)

    if user_id is None:
        raise ValidationError("Exactly one of facilityId, userId or stableId is required")
    if user_id != actor.id and not actor.is_system_admin:
        raise ForbiddenError("You can only list your own reservations")
    return await res_repo.list_by_user(user_id, start, end)


async def check_conflicts(
    res_repo: ReservationRepository,
    facility_repo: FacilityRepository,
    access: AccessPolicy,
    *,
    actor: Actor,
    facility_id: int,
    start_time: datetime,
    end_time: datetime,
    exclude_reservation_id: Optional[int] = None,
) -> list[Reservation]:
    """Active reservations overlapping [start_time, end_time). Read-only."""
    if start_time.tzinfo is None or end_time.tzinfo is None:
        raise ValidationError("startTime/endTime must have timezone")
    if end_time <= start_time:
        raise ValidationError("endTime must be after startTime")
    facility = await facility_repo.get(facility_id)
    if facility is None:
        raise FacilityNotFoundError()
    if not await access.has_stable_access(facility.stable_id, actor):
        raise ForbiddenError("You do not have permission to view reservations for this facility")
    return await res_repo.list_overlapping(
        facility_id,
        to_utc_naive(start_time),
        to_utc_naive(end_time),
        statuses=ACTIVE_STATUSES,
        exclude_reservation_id=exclude_reservation_id,
    )


@dataclass(frozen=True)
class FacilityUsage:
    facility_id: int
    facility_name: Optional[str]
    bookings: int
    booked_hours: float


@dataclass(frozen=True)
class UserUsage:
    user_id: str
    user_email: Optional[str]
    user_name: Optional[str]
    booking_count: int


@dataclass(frozen=True)
class Analytics:
    total_bookings: int
    confirmed_bookings: int
    completed_bookings: int
    cancelled_bookings: int
    no_shows: int
    average_duration: int
    no_show_rate: float
    peak_hour: Optional[int]
    facility_utilization: list[FacilityUsage]
    top_users: list[UserUsage]
    start: datetime
    end: datetime


def resolve_analytics_window(
    start: Optional[datetime],
    end: Optional[datetime],
    *,
    max_range_days: int,
    now: Optional[datetime] = None,
) -> tuple[datetime, datetime]:
    """Default to the last 30 days; reject inverted or oversized windows."""
    now = now or datetime.now(timezone.utc)
    end = end or now
    start = start or end - timedelta(days=ANALYTICS_DEFAULT_DAYS)
    if start.tzinfo is None:
        start = start.replace(tzinfo=timezone.utc)
    if end.tzinfo is None:
        end = end.replace(tzinfo=timezone.utc)
    if start > end:
        raise ValidationError("startDate must be before endDate")
    if end - start > timedelta(days=max_range_days):
        raise ValidationError(f"Date range cannot exceed {max_range_days} days")
    return start, end


def summarize_reservations(
    reservations: list[Reservation],
    *,
    tz: ZoneInfo,
    start: datetime,
    end: datetime,
) -> Analytics:
    statuses = Counter(r.status for r in reservations)
    completed = statuses[ReservationStatus.COMPLETED]
    no_shows = statuses[ReservationStatus.NO_SHOW]

    minutes = [(r.end_time - r.start_time).total_seconds() / 60 for r in reservations]
    average_duration = round(sum(minutes) / len(minutes)) if minutes else 0
    completable = completed + no_shows
    no_show_rate = round(no_shows / completable * 100, 1) if completable else 0.0

    hours = Counter(utc_naive_to_local(r.start_time, tz).hour for r in reservations)
    peak_hour = hours.most_common(1)[0][0] if hours else None

    usage: dict[int, FacilityUsage] = {}
    for r in reservations:
        current = usage.get(r.facility_id) or FacilityUsage(r.facility_id, r.facility_name, 0, 0.0)
        usage[r.facility_id] = FacilityUsage(
            facility_id=current.facility_id,
            facility_name=current.facility_name,
            bookings=current.bookings + 1,
            booked_hours=current.booked_hours + (r.end_time - r.start_time).total_seconds() / 3600,
        )

    users: dict[str, UserUsage] = {}
    for r in reservations:
        current_user = users.get(r.user_id) or UserUsage(r.user_id, r.user_email, r.user_full_name, 0)
        users[r.user_id] = UserUsage(
            user_id=current_user.user_id,
            user_email=current_user.user_email,
            user_name=current_user.user_name,
            booking_count=current_user.booking_count + 1,
        )
    top_users = sorted(users.values(), key=lambda u: u.booking_count, reverse=True)[:TOP_USERS_LIMIT]

    return Analytics(
        total_bookings=len(reservations),
        confirmed_bookings=statuses[ReservationStatus.CONFIRMED],
        completed_bookings=completed,
        cancelled_bookings=statuses[ReservationStatus.CANCELLED],
        no_shows=no_shows,
        average_duration=average_duration,
        no_show_rate=no_show_rate,
        peak_hour=peak_hour,
        facility_utilization=[
            FacilityUsage(u.facility_id, u.facility_name, u.bookings, round(u.booked_hours, 1))
            for u in usage.values()
        ],
        top_users=top_users,
        start=start,
        end=end,
    )


async def get_analytics(
    res_repo: ReservationRepository,
    access: AccessPolicy,
    *,
    actor: Actor,
    stable_id: str,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    max_range_days: int,
    tz: ZoneInfo,
) -> Analytics:
    start, end = resolve_analytics_window(start, end, max_range_days=max_range_days)
    if not await access.has_stable_management_access(stable_id, actor):
        raise ForbiddenError("You do not have permission to view analytics for this stable")
    reservations = await res_repo.list_by_stable(stable_id, to_utc_naive(start), to_utc_naive(end))
    return summarize_reservations(reservations, tz=tz, start=start, end=end)

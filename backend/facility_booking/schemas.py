from datetime import date, datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer
from pydantic.alias_generators import to_camel

from .domain.availability import ExceptionType, ScheduleException, TimeBlock
from .models import Facility, FacilityStatus, FacilityType, Reservation, ReservationStatus
from .utils.time import utc_naive_to_aware


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TimeBlockRead(CamelModel):
    start: str = Field(alias="from")
    end: str = Field(alias="to")

    @classmethod
    def from_block(cls, block: TimeBlock) -> "TimeBlockRead":
        return cls(start=block.start, end=block.end)


class ReservationCreate(CamelModel):
    facility_id: int
    start_time: datetime
    end_time: datetime
    horse_ids: List[str] = Field(default_factory=list)
    horse_names: List[str] = Field(default_factory=list)
    # Legacy single-horse form, normalised to horse_ids.
    horse_id: Optional[str] = None
    horse_name: Optional[str] = None
    purpose: Optional[str] = None
    notes: Optional[str] = None
    stable_name: Optional[str] = None
    admin_override: bool = False


class ReservationUpdate(CamelModel):
    facility_id: Optional[int] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    horse_ids: Optional[List[str]] = None
    horse_names: Optional[List[str]] = None
    horse_id: Optional[str] = None
    horse_name: Optional[str] = None
    purpose: Optional[str] = None
    notes: Optional[str] = None
    status: Optional[ReservationStatus] = None
    admin_override: bool = False
    version: Optional[int] = Field(default=None, ge=1)

    @property
    def clears_horses(self) -> bool:
        """True when the client explicitly sent null for the horses."""
        return ("horse_ids" in self.model_fields_set and self.horse_ids is None) or (
            "horse_id" in self.model_fields_set and self.horse_id is None and not self.horse_ids
        )


class ReservationReview(CamelModel):
    review_notes: Optional[str] = None


class ReservationCancel(CamelModel):
    version: Optional[int] = Field(default=None, ge=1)


class ConflictCheckRequest(CamelModel):
    facility_id: int
    start_time: datetime
    end_time: datetime
    exclude_reservation_id: Optional[int] = None


class ReservationRead(CamelModel):
    id: int
    facility_id: int
    stable_id: str
    user_id: str
    horse_ids: List[str]
    horse_names: List[str]
    start_time: datetime
    end_time: datetime
    status: ReservationStatus
    purpose: Optional[str]
    notes: Optional[str]
    review_notes: Optional[str]
    version: int
    facility_name: Optional[str]
    facility_type: Optional[str]
    stable_name: Optional[str]
    user_email: Optional[str]
    user_full_name: Optional[str]
    created_at: datetime
    updated_at: datetime
    created_by: str
    last_modified_by: str

    @field_serializer("start_time", "end_time", "created_at", "updated_at")
    def _ser_datetime(self, dt: datetime) -> str:
        return dt.isoformat()

    @classmethod
    def from_db(cls, *, reservation: Reservation) -> "ReservationRead":
        return cls(
            id=reservation.id,
            facility_id=reservation.facility_id,
            stable_id=reservation.stable_id,
            user_id=reservation.user_id,
            horse_ids=list(reservation.horse_ids or []),
            horse_names=list(reservation.horse_names or []),
            start_time=utc_naive_to_aware(reservation.start_time),
            end_time=utc_naive_to_aware(reservation.end_time),
            status=reservation.status,
            purpose=reservation.purpose,
            notes=reservation.notes,
            review_notes=reservation.review_notes,
            version=reservation.version,
            facility_name=reservation.facility_name,
            facility_type=reservation.facility_type,
            stable_name=reservation.stable_name,
            user_email=reservation.user_email,
            user_full_name=reservation.user_full_name,
            created_at=utc_naive_to_aware(reservation.created_at),
            updated_at=utc_naive_to_aware(reservation.updated_at),
            created_by=reservation.created_by,
            last_modified_by=reservation.last_modified_by,
        )


class ReservationList(CamelModel):
    reservations: List[ReservationRead]


class ConflictCheckResponse(CamelModel):
    conflicts: List[ReservationRead]
    has_conflicts: bool


class ActionResult(CamelModel):
    success: bool = True
    id: int


class AnalyticsMetrics(CamelModel):
    total_bookings: int
    confirmed_bookings: int
    completed_bookings: int
    cancelled_bookings: int
    no_shows: int
    average_duration: int
    no_show_rate: float
    peak_hour: Optional[int]


class FacilityUtilization(CamelModel):
    facility_id: int
    facility_name: Optional[str]
    bookings: int
    booked_hours: float


class TopUser(CamelModel):
    user_id: str
    user_email: Optional[str]
    user_name: Optional[str]
    booking_count: int


class DateRange(CamelModel):
    start_date: datetime
    end_date: datetime


class AnalyticsRead(CamelModel):
    metrics: AnalyticsMetrics
    facility_utilization: List[FacilityUtilization]
    top_users: List[TopUser]
    date_range: DateRange


class FacilityCreate(CamelModel):
    stable_id: str
    name: str = Field(min_length=1, max_length=255)
    type: FacilityType
    description: Optional[str] = None
    status: FacilityStatus = FacilityStatus.ACTIVE
    max_horses_per_reservation: int = Field(default=1, ge=1)
    min_time_slot_duration: int = Field(default=30, ge=1)
    max_hours_per_reservation: Optional[int] = Field(default=None, ge=1)
    availability_schedule: Optional[dict[str, Any]] = None


class FacilityRead(CamelModel):
    id: int
    stable_id: str
    name: str
    type: FacilityType
    description: Optional[str]
    status: FacilityStatus
    max_horses_per_reservation: int
    min_time_slot_duration: int
    max_hours_per_reservation: Optional[int]
    availability_schedule: dict[str, Any]

    @classmethod
    def from_db(cls, *, facility: Facility, schedule: dict[str, Any]) -> "FacilityRead":
        return cls(
            id=facility.id,
            stable_id=facility.stable_id,
            name=facility.name,
            type=facility.type,
            description=facility.description,
            status=facility.status,
            max_horses_per_reservation=facility.max_horses_per_reservation,
            min_time_slot_duration=facility.min_time_slot_duration,
            max_hours_per_reservation=facility.max_hours_per_reservation,
            availability_schedule=schedule,
        )


class AvailableSlotsRead(CamelModel):
    day: date = Field(alias="date")
    closed: bool
    time_blocks: List[TimeBlockRead]


class FacilityUpdate(CamelModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    type: Optional[FacilityType] = None
    description: Optional[str] = None
    status: Optional[FacilityStatus] = None
    max_horses_per_reservation: Optional[int] = Field(default=None, ge=1)
    min_time_slot_duration: Optional[int] = Field(default=None, ge=1)
    max_hours_per_reservation: Optional[int] = Field(default=None, ge=1)
    availability_schedule: Optional[dict[str, Any]] = None


class FacilityList(CamelModel):
    facilities: List[FacilityRead]


class ScheduleExceptionCreate(CamelModel):
    day: date = Field(alias="date")
    type: ExceptionType
    time_blocks: List[dict[str, Any]] = Field(default_factory=list)
    reason: Optional[str] = None


class ScheduleExceptionRead(CamelModel):
    day: date = Field(alias="date")
    type: ExceptionType
    time_blocks: List[TimeBlockRead]
    reason: Optional[str]
    created_by: Optional[str]
    created_at: Optional[str]

    @classmethod
    def from_domain(cls, exception: ScheduleException) -> "ScheduleExceptionRead":
        return cls(
            day=exception.date,
            type=exception.type,
            time_blocks=[TimeBlockRead.from_block(block) for block in exception.blocks],
            reason=exception.reason,
            created_by=exception.created_by,
            created_at=exception.created_at,
        )


class ScheduleExceptionResult(CamelModel):
    success: bool = True
    exception: ScheduleExceptionRead

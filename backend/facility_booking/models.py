from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any, Optional

from sqlalchemy import JSON, CheckConstraint, Enum, ForeignKey, Index
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql.sqltypes import BigInteger, DateTime, Integer, String, Text


class Base(DeclarativeBase):
    pass


class FacilityType(StrEnum):
    TRANSPORT = "transport"
    WATER_TREADMILL = "water_treadmill"
    INDOOR_ARENA = "indoor_arena"
    OUTDOOR_ARENA = "outdoor_arena"
    GALLOPING_TRACK = "galloping_track"
    LUNGING_RING = "lunging_ring"
    PADDOCK = "paddock"
    SOLARIUM = "solarium"
    JUMPING_YARD = "jumping_yard"
    TREADMILL = "treadmill"
    VIBRATION_PLATE = "vibration_plate"
    PASTURE = "pasture"
    WALKER = "walker"
    OTHER = "other"


class FacilityStatus(StrEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    MAINTENANCE = "maintenance"


class ReservationStatus(StrEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"
    COMPLETED = "completed"
    NO_SHOW = "no_show"


class MemberStatus(StrEnum):
    ACTIVE = "active"
    INVITED = "invited"
    INACTIVE = "inactive"


def _enum_column(enum_cls: type[StrEnum]) -> Enum:
    return Enum(
        enum_cls,
        values_callable=lambda cls: [e.value for e in cls],
        native_enum=False,
    )


class Stable(Base):
    __tablename__ = "stables"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    owner_id: Mapped[str] = mapped_column(String(128), nullable=False)
    organization_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    facilities: Mapped[list["Facility"]] = relationship(back_populates="stable")


class OrganizationMember(Base):
    __tablename__ = "organization_members"
    __table_args__ = (Index("idx_members_user", "user_id"),)

    # "{user_id}_{organization_id}"
    id: Mapped[str] = mapped_column(String(200), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    organization_id: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[MemberStatus] = mapped_column(
        _enum_column(MemberStatus), nullable=False, default=MemberStatus.ACTIVE
    )
    role: Mapped[str] = mapped_column(String(50), nullable=False, default="member")
    stable_access: Mapped[str] = mapped_column(String(20), nullable=False, default="all")
    assigned_stable_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)


class Facility(Base):
    __tablename__ = "facilities"
    __table_args__ = (
        CheckConstraint("max_horses_per_reservation >= 1", name="chk_facilities_max_horses"),
        Index("idx_facilities_stable", "stable_id"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    stable_id: Mapped[str] = mapped_column(ForeignKey("stables.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[FacilityType] = mapped_column(_enum_column(FacilityType), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[FacilityStatus] = mapped_column(
        _enum_column(FacilityStatus), nullable=False, default=FacilityStatus.ACTIVE
    )
    max_horses_per_reservation: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    min_time_slot_duration: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
    max_hours_per_reservation: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    # Stored in the camelCase document shape; parsed by domain.availability.
    availability_schedule: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    created_by: Mapped[str] = mapped_column(String(128), nullable=False)
    last_modified_by: Mapped[str] = mapped_column(String(128), nullable=False)

    stable: Mapped["Stable"] = relationship(back_populates="facilities")
    reservations: Mapped[list["Reservation"]] = relationship(back_populates="facility")


class Reservation(Base):
    __tablename__ = "facility_reservations"
    __table_args__ = (
        CheckConstraint("start_time < end_time", name="chk_res_time"),
        Index("idx_res_facility_start", "facility_id", "start_time"),
        Index("idx_res_stable_start", "stable_id", "start_time"),
        Index("idx_res_user", "user_id"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    facility_id: Mapped[int] = mapped_column(ForeignKey("facilities.id"), nullable=False)
    stable_id: Mapped[str] = mapped_column(String(64), nullable=False)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    horse_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False)
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    status: Mapped[ReservationStatus] = mapped_column(
        _enum_column(ReservationStatus),
        nullable=False,
        default=ReservationStatus.PENDING,
    )
    purpose: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    review_notes: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # Display snapshots taken at write time. Admission logic never reads these.
    facility_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    facility_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    stable_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    user_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    user_full_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    horse_names: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    created_by: Mapped[str] = mapped_column(String(128), nullable=False)
    last_modified_by: Mapped[str] = mapped_column(String(128), nullable=False)

    facility: Mapped["Facility"] = relationship(back_populates="reservations")

    @property
    def horse_count(self) -> int:
        return len(self.horse_ids or [])

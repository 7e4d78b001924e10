from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Optional, Protocol

from ..models import Facility, FacilityStatus, Reservation, ReservationStatus


class FacilityRepository(Protocol):
    async def get(self, facility_id: int) -> Facility | None: ...

    async def get_for_update(self, facility_id: int) -> Facility | None: ...

    async def list_by_stable(
        self,
        stable_id: str,
        statuses: Optional[Iterable[FacilityStatus]] = None,
    ) -> list[Facility]: ...

    async def create(self, **fields: Any) -> Facility: ...

    async def save(self, facility: Facility) -> Facility: ...

    async def delete(self, facility: Facility) -> None: ...


class ReservationRepository(Protocol):
    async def get(self, reservation_id: int) -> Reservation | None: ...

    async def get_for_update(self, reservation_id: int) -> Reservation | None: ...

    async def list_overlapping(
        self,
        facility_id: int,
        start: datetime,
        end: datetime,
        *,
        statuses: Iterable[ReservationStatus],
        exclude_reservation_id: Optional[int] = None,
        lock: bool = False,
    ) -> list[Reservation]: ...

    async def list_by_facility(
        self,
        facility_id: int,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> list[Reservation]: ...

    async def list_by_user(
        self,
        user_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> list[Reservation]: ...

    async def list_by_stable(
        self,
        stable_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> list[Reservation]: ...

    async def create(self, **fields: Any) -> Reservation: ...

    async def save(self, reservation: Reservation) -> Reservation: ...

    async def delete(self, reservation: Reservation) -> None: ...

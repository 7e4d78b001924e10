from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Iterable, List, Optional

from sqlalchemy import Select, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.repositories import FacilityRepository, ReservationRepository
from ..models import Facility, FacilityStatus, Reservation, ReservationStatus


def _utc_now_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class SqlAlchemyFacilityRepository(FacilityRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, facility_id: int) -> Facility | None:
        return await self.session.get(Facility, facility_id)

    async def get_for_update(self, facility_id: int) -> Facility | None:
        # Row lock on the facility serialises every admission decision for it.
        result = await self.session.scalar(
            select(Facility)
            .where(Facility.id == facility_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result if isinstance(result, Facility) else None

    async def list_by_stable(
        self,
        stable_id: str,
        statuses: Optional[Iterable[FacilityStatus]] = None,
    ) -> List[Facility]:
        stmt: Select[tuple[Facility]] = select(Facility).where(Facility.stable_id == stable_id)
        if statuses is not None:
            stmt = stmt.where(Facility.status.in_(list(statuses)))
        rows = await self.session.scalars(stmt.order_by(Facility.name, Facility.id))
        return list(rows.all())

    async def create(self, **fields: Any) -> Facility:
        now = _utc_now_naive()
        facility = Facility(created_at=now, updated_at=now, **fields)
        self.session.add(facility)
        await self.session.flush()
        return facility

    async def save(self, facility: Facility) -> Facility:
        self.session.add(facility)
        await self.session.flush()
        return facility

    async def delete(self, facility: Facility) -> None:
        await self.session.delete(facility)
        await self.session.flush()


class SqlAlchemyReservationRepository(ReservationRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, reservation_id: int) -> Reservation | None:
        return await self.session.get(Reservation, reservation_id)

    async def get_for_update(self, reservation_id: int) -> Reservation | None:
        result = await self.session.scalar(
            select(Reservation)
            .where(Reservation.id == reservation_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result if isinstance(result, Reservation) else None

    async def list_overlapping(
        self,
        facility_id: int,
        start: datetime,
        end: datetime,
        *,
        statuses: Iterable[ReservationStatus],
        exclude_reservation_id: Optional[int] = None,
        lock: bool = False,
    ) -> List[Reservation]:
        stmt: Select[tuple[Reservation]] = select(Reservation).where(
            Reservation.facility_id == facility_id,
            Reservation.status.in_(list(statuses)),
            Reservation.start_time < end,
            Reservation.end_time > start,
        )
        if exclude_reservation_id is not None:
            stmt = stmt.where(Reservation.id != exclude_reservation_id)
        stmt = stmt.order_by(Reservation.start_time)
        if lock:
            # Shared locking read for admission: sees rows committed after this transaction's snapshot.
            stmt = stmt.with_for_update(read=True).execution_options(populate_existing=True)
        rows = await self.session.scalars(stmt)
        return list(rows.all())

    async def list_by_facility(
        self,
        facility_id: int,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[Reservation]:
        return await self._list(Reservation.facility_id == facility_id, start, end)

    async def list_by_user(
        self,
        user_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[Reservation]:
        return await self._list(Reservation.user_id == user_id, start, end)

    async def list_by_stable(
        self,
        stable_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[Reservation]:
        return await self._list(Reservation.stable_id == stable_id, start, end)

    async def _list(self, criterion: Any, start: Optional[datetime], end: Optional[datetime]) -> List[Reservation]:
        stmt: Select[tuple[Reservation]] = select(Reservation).where(criterion)
        if start is not None:
            stmt = stmt.where(Reservation.start_time >= start)
        if end is not None:
            stmt = stmt.where(Reservation.start_time <= end)
        rows = await self.session.scalars(stmt.order_by(Reservation.start_time))
        return list(rows.all())

    async def create(self, **fields: Any) -> Reservation:
        now = _utc_now_naive()
        reservation = Reservation(version=1, created_at=now, updated_at=now, **fields)
        self.session.add(reservation)
        await self.session.flush()
        return reservation

    async def save(self, reservation: Reservation) -> Reservation:
        self.session.add(reservation)
        await self.session.flush()
        return reservation

    async def delete(self, reservation: Reservation) -> None:
        await self.session.delete(reservation)
        await self.session.flush()

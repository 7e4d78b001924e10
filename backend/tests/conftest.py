import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import date, datetime, time, timezone
from typing import Any, AsyncIterator, Callable, Iterable, Optional
from zoneinfo import ZoneInfo

import pytest
from facility_booking.domain.access import Actor
from facility_booking.domain.capacity import overlaps
from facility_booking.models import Facility, FacilityStatus, FacilityType, Reservation, ReservationStatus
from facility_booking.utils.time import to_utc_naive

TZ = ZoneInfo("Europe/Stockholm")
MONDAY = date(2026, 3, 2)


def _now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class InMemoryStore:
    """Shared state behind the fake repositories. One store, many sessions."""

    def __init__(self) -> None:
        self.facilities: dict[int, Facility] = {}
        self.reservations: dict[int, Reservation] = {}
        self.locks: defaultdict[int, asyncio.Lock] = defaultdict(asyncio.Lock)
        self.saves = 0
        self.overlap_reads: list[bool] = []
        self._next_id = 100

    def next_id(self) -> int:
        self._next_id += 1
        return self._next_id

    def add_facility(self, **overrides: Any) -> Facility:
        now = _now()
        fields: dict[str, Any] = {
            "id": 1,
            "stable_id": "stable-1",
            "name": "Indoor arena",
            "type": FacilityType.INDOOR_ARENA,
            "description": None,
            "status": FacilityStatus.ACTIVE,
            "max_horses_per_reservation": 2,
            "min_time_slot_duration": 30,
            "max_hours_per_reservation": None,
            "availability_schedule": None,
            "created_at": now,
            "updated_at": now,
            "created_by": "owner",
            "last_modified_by": "owner",
        }
        fields.update(overrides)
        facility = Facility(**fields)
        self.facilities[facility.id] = facility
        return facility

    def add_reservation(self, start: datetime, end: datetime, **overrides: Any) -> Reservation:
        now = _now()
        fields: dict[str, Any] = {
            "id": self.next_id(),
            "facility_id": 1,
            "stable_id": "stable-1",
            "user_id": "user-2",
            "horse_ids": ["h-existing"],
            "horse_names": [],
            "start_time": to_utc_naive(start),
            "end_time": to_utc_naive(end),
            "status": ReservationStatus.CONFIRMED,
            "version": 1,
            "created_at": now,
            "updated_at": now,
            "created_by": "user-2",
            "last_modified_by": "user-2",
        }
        fields.update(overrides)
        reservation = Reservation(**fields)
        self.reservations[reservation.id] = reservation
        return reservation


class FakeSession:
    """Stands in for AsyncSession.begin(): releases row locks when the transaction ends."""

    def __init__(self) -> None:
        self.held: list[asyncio.Lock] = []
        self.transactions = 0

    @asynccontextmanager
    async def begin(self) -> AsyncIterator["FakeSession"]:
        self.transactions += 1
        try:
            yield self
        finally:
            for lock in reversed(self.held):
                lock.release()
            self.held.clear()


class FakeFacilityRepo:
    def __init__(self, store: InMemoryStore, session: Optional[FakeSession] = None) -> None:
        self.store = store
        self.session = session

    async def get(self, facility_id: int) -> Facility | None:
        return self.store.facilities.get(facility_id)

    async def get_for_update(self, facility_id: int) -> Facility | None:
        if self.session is not None:
            lock = self.store.locks[facility_id]
            await lock.acquire()
            self.session.held.append(lock)
        return self.store.facilities.get(facility_id)

    async def create(self, **fields: Any) -> Facility:
        now = _now()
        facility = Facility(id=self.store.next_id(), created_at=now, updated_at=now, **fields)
        self.store.facilities[facility.id] = facility
        return facility

    async def list_by_stable(
        self, stable_id: str, statuses: Optional[Iterable[FacilityStatus]] = None
    ) -> list[Facility]:
        wanted = None if statuses is None else set(statuses)
        rows = [
            f
            for f in self.store.facilities.values()
            if f.stable_id == stable_id and (wanted is None or f.status in wanted)
        ]
        return sorted(rows, key=lambda f: (f.name, f.id))

    async def save(self, facility: Facility) -> Facility:
        self.store.facilities[facility.id] = facility
        return facility

    async def delete(self, facility: Facility) -> None:
        self.store.facilities.pop(facility.id, None)


class FakeReservationRepo:
    def __init__(self, store: InMemoryStore) -> None:
        self.store = store

    async def get(self, reservation_id: int) -> Reservation | None:
        return self.store.reservations.get(reservation_id)

    async def get_for_update(self, reservation_id: int) -> Reservation | None:
        return self.store.reservations.get(reservation_id)

    async def list_overlapping(
        self,
        facility_id: int,
        start: datetime,
        end: datetime,
        *,
        statuses: Iterable[ReservationStatus],
        exclude_reservation_id: Optional[int] = None,
        lock: bool = False,
    ) -> list[Reservation]:
        self.store.overlap_reads.append(lock)
        # Yield so concurrent callers interleave between the read and the write.
        await asyncio.sleep(0)
        wanted = set(statuses)
        return [
            r
            for r in self.store.reservations.values()
            if r.facility_id == facility_id
            and r.status in wanted
            and r.id != exclude_reservation_id
            and overlaps(r.start_time, r.end_time, start, end)
        ]

    async def list_by_facility(
        self, facility_id: int, start: Optional[datetime] = None, end: Optional[datetime] = None
    ) -> list[Reservation]:
        return self._filter(lambda r: r.facility_id == facility_id, start, end)

    async def list_by_user(
        self, user_id: str, start: Optional[datetime] = None, end: Optional[datetime] = None
    ) -> list[Reservation]:
        return self._filter(lambda r: r.user_id == user_id, start, end)

    async def list_by_stable(
        self, stable_id: str, start: Optional[datetime] = None, end: Optional[datetime] = None
    ) -> list[Reservation]:
        return self._filter(lambda r: r.stable_id == stable_id, start, end)

    def _filter(
        self,
        predicate: Callable[[Reservation], bool],
        start: Optional[datetime],
        end: Optional[datetime],
    ) -> list[Reservation]:
        rows = [
            r
            for r in self.store.reservations.values()
            if predicate(r)
            and (start is None or r.start_time >= start)
            and (end is None or r.start_time <= end)
        ]
        return sorted(rows, key=lambda r: r.start_time)

    async def create(self, **fields: Any) -> Reservation:
        await asyncio.sleep(0)
        now = _now()
        reservation = Reservation(id=self.store.next_id(), version=1, created_at=now, updated_at=now, **fields)
        self.store.reservations[reservation.id] = reservation
        return reservation

    async def save(self, reservation: Reservation) -> Reservation:
        self.store.saves += 1
        self.store.reservations[reservation.id] = reservation
        return reservation

    async def delete(self, reservation: Reservation) -> None:
        self.store.reservations.pop(reservation.id, None)


class FakeAccess:
    """members: stable access only. managers: stable access plus management."""

    def __init__(
        self,
        members: Optional[dict[str, set[str]]] = None,
        managers: Optional[dict[str, set[str]]] = None,
    ) -> None:
        self.members = members or {}
        self.managers = managers or {}

    async def has_stable_access(self, stable_id: str, actor: Actor) -> bool:
        return stable_id in self.members.get(actor.id, set()) or await self.has_stable_management_access(
            stable_id, actor
        )

    async def has_stable_management_access(self, stable_id: str, actor: Actor) -> bool:
        return actor.is_system_admin or stable_id in self.managers.get(actor.id, set())


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def new_request(store: InMemoryStore) -> Callable[[], tuple[FakeSession, FakeFacilityRepo, FakeReservationRepo]]:
    """Per-request session and repositories whose facility reads take row locks."""

    def _new_request() -> tuple[FakeSession, FakeFacilityRepo, FakeReservationRepo]:
        session = FakeSession()
        return session, FakeFacilityRepo(store, session), FakeReservationRepo(store)

    return _new_request


@pytest.fixture
def facility_repo(store: InMemoryStore) -> FakeFacilityRepo:
    return FakeFacilityRepo(store)


@pytest.fixture
def res_repo(store: InMemoryStore) -> FakeReservationRepo:
    return FakeReservationRepo(store)


@pytest.fixture
def access() -> FakeAccess:
    return FakeAccess(
        members={"user-1": {"stable-1"}, "user-2": {"stable-1"}},
        managers={"manager-1": {"stable-1"}},
    )


@pytest.fixture
def user() -> Actor:
    return Actor(id="user-1", email="rider@example.com", display_name="Rider One")


@pytest.fixture
def manager() -> Actor:
    return Actor(id="manager-1", email="manager@example.com", display_name="Stable Manager")


@pytest.fixture
def tz() -> ZoneInfo:
    return TZ


@pytest.fixture
def at() -> Callable[..., datetime]:
    """Facility-local aware datetime on a Monday, e.g. at(10, 30)."""

    def _at(hour: int, minute: int = 0, day: date = MONDAY) -> datetime:
        return datetime.combine(day, time(hour, minute), tzinfo=TZ)

    return _at

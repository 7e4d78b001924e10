from datetime import date
from typing import cast

import pytest
from facility_booking.config import Settings
from facility_booking.domain.access import Actor
from facility_booking.domain.availability import ExceptionType, ScheduleException, TimeBlock
from facility_booking.domain.errors import ConflictError, FacilityNotFoundError, ScheduleExceptionNotFoundError
from facility_booking.routers import facilities as router
from facility_booking.schemas import ScheduleExceptionCreate
from fastapi import HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

SETTINGS = Settings(auth_secret="testsecret")
ACTOR = Actor(id="user-1")


@pytest.fixture(autouse=True)
def _no_database(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(router, "SqlAlchemyFacilityRepository", lambda s: s)
    monkeypatch.setattr(router, "SqlAlchemyAccessPolicy", lambda s: s)


@pytest.mark.asyncio
async def test_available_slots_response(monkeypatch: pytest.MonkeyPatch) -> None:
    async def fake_slots(*args: object, **kwargs: object) -> list[TimeBlock]:
        return [TimeBlock("08:00", "12:00"), TimeBlock("13:00", "18:00")]

    monkeypatch.setattr(router.facility_usecase, "get_available_slots", fake_slots)

    result = await router.get_available_slots(
        facility_id=1, day=date(2026, 3, 2), session=cast(AsyncSession, object()), actor=ACTOR
    )
    body = result.model_dump(by_alias=True, mode="json")
    assert body == {
        "date": "2026-03-02",
        "closed": False,
        "timeBlocks": [{"from": "08:00", "to": "12:00"}, {"from": "13:00", "to": "18:00"}],
    }


@pytest.mark.asyncio
async def test_closed_day_has_no_blocks(monkeypatch: pytest.MonkeyPatch) -> None:
    async def fake_slots(*args: object, **kwargs: object) -> list[TimeBlock]:
        return []

    monkeypatch.setattr(router.facility_usecase, "get_available_slots", fake_slots)

    result = await router.get_available_slots(
        facility_id=1, day=date(2026, 12, 24), session=cast(AsyncSession, object()), actor=ACTOR
    )
    assert result.closed is True
    assert result.time_blocks == []


@pytest.mark.asyncio
async def test_missing_facility_maps_to_404(monkeypatch: pytest.MonkeyPatch) -> None:
    async def fake_get(*args: object, **kwargs: object) -> None:
        raise FacilityNotFoundError()

    monkeypatch.setattr(router.facility_usecase, "get_facility", fake_get)

    with pytest.raises(HTTPException) as excinfo:
        await router.get_facility(facility_id=9, session=cast(AsyncSession, object()), actor=ACTOR)
    assert excinfo.value.status_code == 404
    assert excinfo.value.detail == {"error": "NOT_FOUND", "message": "Facility not found"}


class DummySession:
    async def __aenter__(self) -> "DummySession":
        return self

    async def __aexit__(self, exc_type: object, exc: object, tb: object) -> bool:
        return False

    def begin(self) -> "DummySession":
        return self


@pytest.mark.asyncio
async def test_duplicate_exception_maps_to_409(monkeypatch: pytest.MonkeyPatch) -> None:
    async def fake_add(*args: object, **kwargs: object) -> None:
        raise ConflictError("An exception already exists for this date")

    monkeypatch.setattr(router.facility_usecase, "add_schedule_exception", fake_add)
    payload = ScheduleExceptionCreate.model_validate({"date": "2026-03-03", "type": "closed"})

    with pytest.raises(HTTPException) as excinfo:
        await router.add_schedule_exception(
            payload, facility_id=1, session=cast(AsyncSession, DummySession()), actor=ACTOR, settings=SETTINGS
        )
    assert excinfo.value.status_code == 409
    assert excinfo.value.detail == {"error": "CONFLICT", "message": "An exception already exists for this date"}


@pytest.mark.asyncio
async def test_added_exception_response(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: dict[str, object] = {}

    async def fake_add(*args: object, **kwargs: object) -> ScheduleException:
        seen.update(kwargs)
        return ScheduleException(
            date=date(2026, 3, 3),
            type=ExceptionType.MODIFIED,
            time_blocks=(TimeBlock("10:00", "12:00"),),
            created_by="manager-1",
        )

    monkeypatch.setattr(router.facility_usecase, "add_schedule_exception", fake_add)
    payload = ScheduleExceptionCreate.model_validate(
        {"date": "2026-03-03", "type": "modified", "timeBlocks": [{"from": "10:00", "to": "12:00"}]}
    )

    result = await router.add_schedule_exception(
        payload, facility_id=1, session=cast(AsyncSession, DummySession()), actor=ACTOR, settings=SETTINGS
    )
    body = result.model_dump(by_alias=True, mode="json")
    assert seen["day"] == date(2026, 3, 3)
    assert body["success"] is True
    assert body["exception"]["date"] == "2026-03-03"
    assert body["exception"]["timeBlocks"] == [{"from": "10:00", "to": "12:00"}]


@pytest.mark.asyncio
async def test_missing_exception_maps_to_404(monkeypatch: pytest.MonkeyPatch) -> None:
    async def fake_remove(*args: object, **kwargs: object) -> None:
        raise ScheduleExceptionNotFoundError()

    monkeypatch.setattr(router.facility_usecase, "remove_schedule_exception", fake_remove)

    with pytest.raises(HTTPException) as excinfo:
        await router.remove_schedule_exception(
            facility_id=1,
            day=date(2026, 3, 3),
            session=cast(AsyncSession, DummySession()),
            actor=ACTOR,
            settings=SETTINGS,
        )
    assert excinfo.value.status_code == 404
    assert excinfo.value.detail == {"error": "NOT_FOUND", "message": "No exception found for this date"}

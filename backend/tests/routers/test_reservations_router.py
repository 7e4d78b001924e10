from datetime import datetime, timezone
from typing import Any, AsyncIterator, cast

import pytest
from facility_booking.config import Settings, get_settings
from facility_booking.deps import get_session
from facility_booking.domain.access import Actor
from facility_booking.domain.errors import CapacityExceededError, ValidationError
from facility_booking.main import app
from facility_booking.models import Reservation, ReservationStatus
from facility_booking.routers import reservations as router
from facility_booking.schemas import ReservationCancel, ReservationCreate, ReservationUpdate
from facility_booking.utils import audit_log
from facility_booking.utils.auth import create_access_token
from fastapi import HTTPException
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession

SETTINGS = Settings(auth_secret="testsecret")
ACTOR = Actor(id="user-1", email="rider@example.com")


class DummySession:
    async def __aenter__(self) -> "DummySession":
        return self

    async def __aexit__(self, exc_type: object, exc: object, tb: object) -> bool:
        return False

    def begin(self) -> "DummySession":
        return self


def _reservation(status: ReservationStatus = ReservationStatus.PENDING, version: int = 1) -> Reservation:
    now = datetime(2026, 3, 1, 12, 0)
    return Reservation(
        id=100,
        facility_id=1,
        stable_id="stable-1",
        user_id="user-1",
        horse_ids=["h1"],
        horse_names=[],
        start_time=datetime(2026, 3, 2, 9, 0),
        end_time=datetime(2026, 3, 2, 10, 0),
        status=status,
        version=version,
        created_at=now,
        updated_at=now,
        created_by="user-1",
        last_modified_by="user-1",
    )


@pytest.fixture
def audit_calls(monkeypatch: pytest.MonkeyPatch) -> list[dict[str, Any]]:
    calls: list[dict[str, Any]] = []
    monkeypatch.setattr(router, "SqlAlchemyFacilityRepository", lambda s: s)
    monkeypatch.setattr(router, "SqlAlchemyReservationRepository", lambda s: s)
    monkeypatch.setattr(router, "SqlAlchemyAccessPolicy", lambda s: s)
    monkeypatch.setattr(router, "record_audit_event", lambda **kwargs: calls.append(kwargs))
    return calls


@pytest.mark.asyncio
async def test_create_normalises_legacy_horse_and_emits_audit(
    monkeypatch: pytest.MonkeyPatch, audit_calls: list[dict[str, Any]]
) -> None:
    received: dict[str, Any] = {}

    async def fake_create(*args: object, **kwargs: Any) -> Reservation:
        received.update(kwargs)
        return _reservation()

    monkeypatch.setattr(router.reservation_usecase, "create_reservation", fake_create)

    payload = ReservationCreate.model_validate(
        {
            "facilityId": 1,
            "startTime": "2026-03-02T10:00:00+01:00",
            "endTime": "2026-03-02T11:00:00+01:00",
            "horseId": "h1",
            "horseName": "Ace",
        }
    )
    result = await router.create_reservation(
        payload=payload, session=cast(AsyncSession, DummySession()), actor=ACTOR, settings=SETTINGS
    )

    assert received["horse_ids"] == ["h1"]
    assert received["horse_names"] == ["Ace"]
    assert result.id == 100
    assert result.start_time == datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
    assert len(audit_calls) == 1
    assert audit_calls[0]["action"] == "reservation.created"
    assert audit_calls[0]["initiator"] == "user"
    assert audit_calls[0]["horse_count"] == 1


@pytest.mark.asyncio
async def test_capacity_error_maps_to_409_without_audit(
    monkeypatch: pytest.MonkeyPatch, audit_calls: list[dict[str, Any]]
) -> None:
    async def fake_create(*args: object, **kwargs: object) -> Reservation:
        raise CapacityExceededError("Facility capacity exceeded", max_concurrent=3)

    monkeypatch.setattr(router.reservation_usecase, "create_reservation", fake_create)

    payload = ReservationCreate(
        facility_id=1,
        start_time=datetime(2026, 3, 2, 9, tzinfo=timezone.utc),
        end_time=datetime(2026, 3, 2, 10, tzinfo=timezone.utc),
        horse_ids=["h1"],
    )
    with pytest.raises(HTTPException) as excinfo:
        await router.create_reservation(
            payload=payload, session=cast(AsyncSession, DummySession()), actor=ACTOR, settings=SETTINGS
        )
    assert excinfo.value.status_code == 409
    assert excinfo.value.detail == {
        "error": "CAPACITY_EXCEEDED",
        "message": "Facility capacity exceeded",
        "maxConcurrent": 3,
    }
    assert audit_calls == []


@pytest.mark.asyncio
async def test_update_uses_if_match_and_passes_changes(
    monkeypatch: pytest.MonkeyPatch, audit_calls: list[dict[str, Any]]
) -> None:
    received: dict[str, Any] = {}

    async def fake_update(*args: object, **kwargs: Any) -> tuple[Reservation, ReservationStatus]:
        received.update(kwargs)
        return _reservation(version=5), ReservationStatus.PENDING

    monkeypatch.setattr(router.reservation_usecase, "update_reservation", fake_update)

    payload = ReservationUpdate(notes="Bring boots", version=2)
    result = await router.update_reservation(
        payload=payload,
        reservation_id=100,
        if_match='"4"',
        session=cast(AsyncSession, DummySession()),
        actor=ACTOR,
        settings=SETTINGS,
    )

    assert received["expected_version"] == 4
    assert received["changes"].notes == "Bring boots"
    assert received["changes"].horse_ids is None
    assert received["changes"].clears_horses is False
    assert result.version == 5
    assert audit_calls[0]["action"] == "reservation.updated"
    assert audit_calls[0]["extra"] == {"fields": ["notes"]}


@pytest.mark.asyncio
async def test_repeat_cancel_succeeds_without_audit(
    monkeypatch: pytest.MonkeyPatch, audit_calls: list[dict[str, Any]]
) -> None:
    async def fake_cancel(*args: object, **kwargs: object) -> tuple[Reservation, ReservationStatus, bool]:
        return _reservation(ReservationStatus.CANCELLED), ReservationStatus.CANCELLED, False

    monkeypatch.setattr(router.reservation_usecase, "cancel_reservation", fake_cancel)

    result = await router.cancel_reservation(
        reservation_id=100,
        payload=ReservationCancel(version=1),
        if_match=None,
        session=cast(AsyncSession, DummySession()),
        actor=ACTOR,
        settings=SETTINGS,
    )
    assert result.success is True
    assert result.id == 100
    assert audit_calls == []


@pytest.mark.asyncio
async def test_audit_failure_does_not_fail_cancel(monkeypatch: pytest.MonkeyPatch) -> None:
    async def fake_cancel(*args: object, **kwargs: object) -> tuple[Reservation, ReservationStatus, bool]:
        return _reservation(ReservationStatus.CANCELLED, version=2), ReservationStatus.PENDING, True

    def failing_emit(**kwargs: Any) -> None:
        raise RuntimeError("fail log")

    monkeypatch.setattr(router, "SqlAlchemyReservationRepository", lambda s: s)
    monkeypatch.setattr(router, "SqlAlchemyAccessPolicy", lambda s: s)
    monkeypatch.setattr(router.reservation_usecase, "cancel_reservation", fake_cancel)
    monkeypatch.setattr(audit_log, "emit_audit_log", failing_emit)

    result = await router.cancel_reservation(
        reservation_id=100,
        payload=None,
        if_match='"1"',
        session=cast(AsyncSession, DummySession()),
        actor=ACTOR,
        settings=SETTINGS,
    )
    assert result.success is True


@pytest.mark.asyncio
async def test_analytics_range_error_maps_to_400(
    monkeypatch: pytest.MonkeyPatch, audit_calls: list[dict[str, Any]]
) -> None:
    async def fake_analytics(*args: object, **kwargs: object) -> None:
        raise ValidationError("Date range cannot exceed 365 days")

    monkeypatch.setattr(router.query_usecase, "get_analytics", fake_analytics)

    with pytest.raises(HTTPException) as excinfo:
        await router.get_analytics(
            stable_id="stable-1",
            start_date=None,
            end_date=None,
            session=cast(AsyncSession, DummySession()),
            actor=ACTOR,
            settings=SETTINGS,
        )
    assert excinfo.value.status_code == 400
    assert excinfo.value.detail["error"] == "VALIDATION_ERROR"


def test_malformed_body_is_a_400_validation_error() -> None:
    async def override_get_session() -> AsyncIterator[DummySession]:
        yield DummySession()

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_settings] = lambda: SETTINGS
    try:
        client = TestClient(app)
        token = create_access_token(user_id="user-1", secret="testsecret")
        res = client.post(
            "/api/v1/facility-reservations",
            json={"facilityId": "not-a-number"},
            headers={"Authorization": f"Bearer {token}", "X-Request-ID": "req-1"},
        )
    finally:
        app.dependency_overrides.clear()

    assert res.status_code == 400
    assert res.json()["detail"]["error"] == "VALIDATION_ERROR"
    assert res.headers["X-Request-ID"] == "req-1"

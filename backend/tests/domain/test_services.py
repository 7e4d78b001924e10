from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

import pytest
from facility_booking.domain.errors import (
    HorsesRequiredError,
    InvalidTransitionError,
    TooManyHorsesError,
    ValidationError,
)
from facility_booking.domain.services import (
    ensure_transition,
    local_time_range,
    normalize_horses,
    sanitize_user_input,
    validate_horse_count,
)
from facility_booking.models import ReservationStatus as S

TZ = ZoneInfo("Europe/Stockholm")


@pytest.mark.parametrize(
    "current,target",
    [
        (S.PENDING, S.CONFIRMED),
        (S.PENDING, S.REJECTED),
        (S.PENDING, S.CANCELLED),
        (S.CONFIRMED, S.CANCELLED),
        (S.CONFIRMED, S.COMPLETED),
        (S.CONFIRMED, S.NO_SHOW),
    ],
)
def test_allowed_transitions(current: S, target: S) -> None:
    assert ensure_transition(current, target) is True


@pytest.mark.parametrize(
    "current,target",
    [
        (S.PENDING, S.COMPLETED),
        (S.CONFIRMED, S.PENDING),
        (S.CANCELLED, S.CONFIRMED),
        (S.REJECTED, S.PENDING),
        (S.COMPLETED, S.NO_SHOW),
    ],
)
def test_rejected_transitions(current: S, target: S) -> None:
    with pytest.raises(InvalidTransitionError):
        ensure_transition(current, target)


def test_same_status_is_noop() -> None:
    assert ensure_transition(S.CANCELLED, S.CANCELLED) is False
    assert ensure_transition(S.CONFIRMED, S.CONFIRMED) is False


def test_normalize_horses_prefers_list_and_dedupes() -> None:
    ids, names = normalize_horses(["h1", "h2", "h1"], ["Ace", "Bee"], horse_id="legacy")
    assert ids == ["h1", "h2"]
    assert names == ["Ace", "Bee"]


def test_normalize_horses_accepts_legacy_single_horse() -> None:
    assert normalize_horses(None, horse_id="h9", horse_name="Nine") == (["h9"], ["Nine"])
    assert normalize_horses([], None) == ([], [])


def test_validate_horse_count() -> None:
    assert validate_horse_count(["h1", "h2"], 2) == 2
    with pytest.raises(HorsesRequiredError):
        validate_horse_count([], 2)
    with pytest.raises(TooManyHorsesError) as excinfo:
        validate_horse_count(["h1", "h2", "h3"], 2)
    assert excinfo.value.payload() == {"maxHorsesPerReservation": 2}


def test_local_time_range_projects_to_facility_zone() -> None:
    # 09:00Z on a March Monday is 10:00 in Stockholm (UTC+1).
    start = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
    end = datetime(2026, 3, 2, 10, 30, tzinfo=timezone.utc)
    result = local_time_range(start, end, TZ)
    assert result.day == date(2026, 3, 2)
    assert (result.start, result.end) == ("10:00", "11:30")


def test_local_time_range_rejects_bad_ranges() -> None:
    with pytest.raises(ValidationError):
        local_time_range(datetime(2026, 3, 2, 9), datetime(2026, 3, 2, 10), TZ)
    with pytest.raises(ValidationError):
        local_time_range(
            datetime(2026, 3, 2, 10, tzinfo=TZ),
            datetime(2026, 3, 2, 10, tzinfo=TZ),
            TZ,
        )
    with pytest.raises(ValidationError):
        local_time_range(
            datetime(2026, 3, 2, 23, tzinfo=TZ),
            datetime(2026, 3, 3, 1, tzinfo=TZ),
            TZ,
        )


def test_sanitize_user_input() -> None:
    assert sanitize_user_input("  hello <b>world</b>\x07 ", 200) == "hello bworld/b"
    assert sanitize_user_input("x" * 600, 500) == "x" * 500
    assert sanitize_user_input("   ", 10) is None
    assert sanitize_user_input(None, 10) is None

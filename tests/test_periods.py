from datetime import datetime
from types import SimpleNamespace
from zoneinfo import ZoneInfo

import pytest

import periods
from errors import ValidationError
from periods import one_year_before, resolve_period

# a Wednesday
NOW = datetime(2024, 1, 17, 15, 45, 12)


def test_all_has_no_lower_bound() -> None:
    assert resolve_period(None, now=NOW).start is None
    assert resolve_period("all", now=NOW).start is None
    assert resolve_period("", now=NOW).slug == "all"


def test_period_starts() -> None:
    assert resolve_period("today", now=NOW).start == datetime(2024, 1, 17)
    assert resolve_period("week", now=NOW).start == datetime(2024, 1, 14)
    assert resolve_period("month", now=NOW).start == datetime(2024, 1, 1)
    assert resolve_period("year", now=NOW).start == datetime(2024, 1, 1)


def test_week_starting_on_sunday_is_that_day() -> None:
    sunday = datetime(2024, 1, 21, 8, 0)
    assert resolve_period("week", now=sunday).start == datetime(2024, 1, 21)


def test_unknown_period_is_rejected() -> None:
    with pytest.raises(ValidationError):
        resolve_period("fortnight", now=NOW)


def test_one_year_before_handles_leap_day() -> None:
    assert one_year_before(datetime(2024, 2, 29, 9)) == datetime(2023, 2, 28, 9)
    assert one_year_before(NOW) == datetime(2023, 1, 17, 15, 45, 12)


def test_boundaries_are_local_midnights_in_utc() -> None:
    tokyo = ZoneInfo("Asia/Tokyo")
    # 03:00 on Feb 1st in Tokyo is still Jan 31st in UTC
    now = datetime(2024, 2, 1, 3, 0)

    assert resolve_period("today", now=now, tz=tokyo).start == datetime(
        2024, 1, 31, 15, 0
    )
    assert resolve_period("month", now=now, tz=tokyo).start == datetime(
        2024, 1, 31, 15, 0
    )
    assert resolve_period("year", now=now, tz=tokyo).start == datetime(
        2023, 12, 31, 15, 0
    )

    new_york = ZoneInfo("America/New_York")
    assert resolve_period("today", now=now, tz=new_york).start == datetime(
        2024, 2, 1, 5, 0
    )


def test_configured_timezone_is_used_by_default(monkeypatch) -> None:
    monkeypatch.setattr(
        periods, "get_settings", lambda: SimpleNamespace(timezone="Asia/Tokyo")
    )

    period = resolve_period("month", now=datetime(2024, 2, 1, 3, 0))

    assert period.start == datetime(2024, 1, 31, 15, 0)

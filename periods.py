from dataclasses import dataclass
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings
from errors import ValidationError

STATS_PERIODS = ("today", "week", "month", "year", "all")


@dataclass(frozen=True)
class Period:
    slug: str
    # naive UTC, the same frame transaction dates are stored in
    start: Optional[datetime]


def local_zone() -> ZoneInfo:
    return ZoneInfo(get_settings().timezone)


def current_time(tz: Optional[tzinfo] = None) -> datetime:
    """Wall clock in the configured timezone, as a naive datetime."""
    tz = tz or local_zone()
    return datetime.now(tz).replace(tzinfo=None)


def to_utc(local: datetime, tz: tzinfo) -> datetime:
    return local.replace(tzinfo=tz).astimezone(timezone.utc).replace(tzinfo=None)


def resolve_period(
    period: Optional[str],
    *,
    now: Optional[datetime] = None,
    tz: Optional[tzinfo] = None,
) -> Period:
    """Map a period slug to its start.

    ``now`` is local wall-clock time in ``tz`` (the configured timezone by
    default); boundaries are local midnights, returned converted to UTC.
    """
    tz = tz or local_zone()
    now = now or current_time(tz)
    if not period or period == "all":
        return Period("all", None)

    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == "today":
        start = midnight
    elif period == "week":
        # weeks start on Sunday
        days_since_sunday = (midnight.weekday() + 1) % 7
        start = midnight - timedelta(days=days_since_sunday)
    elif period == "month":
        start = midnight.replace(day=1)
    elif period == "year":
        start = midnight.replace(month=1, day=1)
    else:
        raise ValidationError(
            f"Invalid period '{period}'. Expected one of: {', '.join(STATS_PERIODS)}"
        )
    return Period(period, to_utc(start, tz))


def one_year_before(now: datetime) -> datetime:
    try:
        return now.replace(year=now.year - 1)
    except ValueError:
        # Feb 29th
        return now.replace(year=now.year - 1, day=28)

"""
Date helpers shared by the analysis core.

All timestamps inside the core are timezone-aware. Naive values are taken
to be UTC, which is how the reading store writes them.
"""

from datetime import date, datetime, time, timezone, tzinfo
from typing import Optional, Union

from dateutil import tz

from ferment_analyzer.utils.constants import DEFAULT_TIMEZONE

SECONDS_PER_DAY = 86400


def ensure_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def resolve_timezone(name: Optional[Union[str, tzinfo]]) -> tzinfo:
    """
    Resolve a timezone name (e.g. "America/Chicago") to a tzinfo.

    Unknown names fall back to UTC rather than failing the caller.
    """
    if isinstance(name, tzinfo):
        return name
    zone = tz.gettz(name or DEFAULT_TIMEZONE)
    return zone if zone is not None else timezone.utc


def days_between(start: datetime, end: Optional[datetime] = None) -> int:
    """Whole days elapsed from ``start`` to ``end`` (default: now), floored."""
    end = ensure_utc(end) if end is not None else utcnow()
    elapsed = (end - ensure_utc(start)).total_seconds()
    return int(elapsed // SECONDS_PER_DAY)


def local_date(value: datetime, zone: tzinfo) -> date:
    """Calendar date of ``value`` in ``zone``."""
    return ensure_utc(value).astimezone(zone).date()


def end_of_local_date(day: date, zone: tzinfo) -> datetime:
    """23:59:59 on ``day`` in ``zone``, expressed in UTC."""
    local_end = datetime.combine(day, time(23, 59, 59)).replace(tzinfo=zone)
    return local_end.astimezone(timezone.utc)


def start_of_local_date(day: date, zone: tzinfo) -> datetime:
    local_start = datetime.combine(day, time(0, 0, 0)).replace(tzinfo=zone)
    return local_start.astimezone(timezone.utc)


def local_today(zone: tzinfo, now: Optional[datetime] = None) -> date:
    return local_date(now or utcnow(), zone)


def format_hour(hour: int) -> str:
    """12-hour clock label: 0 -> "12am", 13 -> "1pm"."""
    if hour == 0:
        return "12am"
    if hour < 12:
        return f"{hour}am"
    if hour == 12:
        return "12pm"
    return f"{hour - 12}pm"


def hour_label(start: datetime, zone: tzinfo) -> str:
    """Label for the clock hour beginning at ``start``, e.g. "11pm – 12am"."""
    local_start = ensure_utc(start).astimezone(zone)
    return f"{format_hour(local_start.hour)} – {format_hour((local_start.hour + 1) % 24)}"


def local_hour_start(value: datetime, zone: tzinfo) -> datetime:
    """
    Start of the local clock hour containing ``value``, in UTC.

    Zones with half-hour offsets (Asia/Kolkata) get their own hour edges,
    and the repeated hour on a DST fall-back stays two distinct buckets.
    """
    local = ensure_utc(value).astimezone(zone)
    start = local.replace(minute=0, second=0, microsecond=0)
    return start.astimezone(timezone.utc)

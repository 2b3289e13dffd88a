"""
Calendar-day helpers.

Usage counters are keyed by calendar day in one fixed reference time zone,
and all counters reset at the following local midnight of that zone.
"""

from datetime import datetime, time, timedelta, timezone, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

DAY_KEY_FORMAT = "%Y-%m-%d"


def resolve_timezone(name: str) -> tzinfo:
    """Resolve an IANA time zone name.

    Raises:
        ValueError: If the zone is unknown
    """
    if name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError(f"Unknown time zone: {name}")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_aware(moment: datetime) -> datetime:
    # Naive timestamps are read as UTC
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def day_key(moment: Optional[datetime] = None, tz: tzinfo = timezone.utc) -> str:
    """Day key (YYYY-MM-DD) of a moment, as seen in the reference zone."""
    moment = as_aware(moment or utc_now())
    return moment.astimezone(tz).strftime(DAY_KEY_FORMAT)


def next_reset(moment: Optional[datetime] = None, tz: tzinfo = timezone.utc) -> datetime:
    """Midnight of the calendar day following ``moment`` in the reference zone."""
    local = as_aware(moment or utc_now()).astimezone(tz)
    return datetime.combine(local.date() + timedelta(days=1), time.min, tzinfo=tz)

#file: aqi_backend/utils.py

from datetime import datetime
import pytz


def utc_now() -> datetime:
    """Get current time as a timezone-aware UTC datetime."""
    return datetime.now(pytz.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return pytz.utc.localize(value)
    return value.astimezone(pytz.utc)


def to_flux_time(value: datetime) -> str:
    """Format a datetime as an RFC3339 literal accepted by Flux range()."""
    return ensure_utc(value).strftime("%Y-%m-%dT%H:%M:%SZ")

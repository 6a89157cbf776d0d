"""
Date/time helpers shared by ingestion and analysis.
"""
from datetime import date, datetime, timedelta, timezone
from typing import Optional

TIMEFRAME_WINDOWS = {
    "day": timedelta(hours=24),
    "week": timedelta(days=7),
    "month": timedelta(days=30),
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def week_of(moment: Optional[datetime] = None) -> str:
    """Return the Monday (YYYY-MM-DD) of the week containing `moment`.

    >>> week_of(datetime(2024, 5, 16, tzinfo=timezone.utc))
    '2024-05-13'
    """
    moment = ensure_aware(moment or utcnow())
    monday: date = moment.date() - timedelta(days=moment.weekday())
    return monday.isoformat()


def timeframe_cutoff(timeframe: str, now: Optional[datetime] = None) -> datetime:
    """Start of the look-back window; unknown timeframes use the week window."""
    window = TIMEFRAME_WINDOWS.get(timeframe, TIMEFRAME_WINDOWS["week"])
    return ensure_aware(now or utcnow()) - window

"""Time utilities (fund timezone)."""

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

from app.config import settings

FUND_TZ = ZoneInfo(settings.TIMEZONE)


def now_utc_naive() -> datetime:
    """
    Current time in UTC, returned as naive datetime for DB storage.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def today_local() -> date:
    """Current calendar date in the fund timezone."""
    return datetime.now(FUND_TZ).date()


def to_iso_db(dt: datetime) -> str:
    """
    Convert a DB timestamp to an ISO string with offset.

    DB timestamps in this app are stored as naive UTC.
    """
    return dt.replace(tzinfo=timezone.utc).isoformat()

"""
NAV Trading Calendar
Which dates get a NAV run, and when the next run is due
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterable, Optional, Set

import pytz

logger = logging.getLogger(__name__)

# Upper bound on the next-run search
_MAX_LOOKAHEAD_DAYS = 366


def parse_cutoff(value: str) -> time:
    """'HH:MM' -> time"""
    try:
        hours, minutes = value.strip().split(":")
        return time(int(hours), int(minutes))
    except (AttributeError, ValueError) as exc:
        raise ValueError(f"Invalid cutoff time {value!r}, expected HH:MM") from exc


@dataclass(frozen=True)
class ScheduledRun:
    nav_date: date
    scheduled_time: datetime     # timezone-aware, in the calendar timezone
    status: str = "SCHEDULED"


class TradingCalendar:
    def __init__(
        self,
        cutoff_time: time = time(15, 0),
        timezone: str = "Europe/Stockholm",
        run_on_weekdays: bool = True,
        run_on_weekends: bool = False,
        holidays: Optional[Iterable[date]] = None,
    ):
        self.cutoff_time = cutoff_time
        self.timezone = pytz.timezone(timezone)
        self.run_on_weekdays = run_on_weekdays
        self.run_on_weekends = run_on_weekends
        self.holidays: Set[date] = set(holidays or [])

    @classmethod
    def from_settings(cls, settings) -> "TradingCalendar":
        return cls(
            cutoff_time=parse_cutoff(settings.NAV_CUTOFF_TIME),
            timezone=settings.TIMEZONE,
            run_on_weekdays=settings.NAV_RUN_ON_WEEKDAYS,
            run_on_weekends=settings.NAV_RUN_ON_WEEKENDS,
            holidays=[date.fromisoformat(d) for d in settings.NAV_HOLIDAYS],
        )

    def should_run(self, d: date) -> bool:
        if d in self.holidays:
            return False
        is_weekend = d.weekday() >= 5
        if is_weekend:
            return self.run_on_weekends
        return self.run_on_weekdays

    def now(self) -> datetime:
        return datetime.now(self.timezone)

    def next_scheduled_run(self, now: Optional[datetime] = None) -> Optional[ScheduledRun]:
        """
        Next (date, cutoff) at or after `now`; today qualifies until its cutoff passes.
        Returns None when no day within a year qualifies.
        """
        local_now = self._localize(now) if now is not None else self.now()
        candidate = local_now.date()
        if local_now.time() > self.cutoff_time:
            candidate += timedelta(days=1)

        for _ in range(_MAX_LOOKAHEAD_DAYS):
            if self.should_run(candidate):
                scheduled = self.timezone.localize(datetime.combine(candidate, self.cutoff_time))
                return ScheduledRun(nav_date=candidate, scheduled_time=scheduled)
            candidate += timedelta(days=1)

        logger.warning("NAV_CALENDAR_EMPTY | no run day within %s days of %s", _MAX_LOOKAHEAD_DAYS, local_now.date())
        return None

    def _localize(self, dt: datetime) -> datetime:
        if dt.tzinfo is None:
            return self.timezone.localize(dt)
        return dt.astimezone(self.timezone)

from datetime import date, datetime, time

import pytest
import pytz

from app.infrastructure.calendar.trading_calendar import TradingCalendar, parse_cutoff

STOCKHOLM = pytz.timezone("Europe/Stockholm")


def local(*args) -> datetime:
    return STOCKHOLM.localize(datetime(*args))


@pytest.fixture
def calendar():
    return TradingCalendar(cutoff_time=time(15, 0), holidays=[date(2026, 12, 24), date(2026, 12, 25)])


def test_parse_cutoff():
    assert parse_cutoff("15:00") == time(15, 0)
    assert parse_cutoff(" 09:30 ") == time(9, 30)
    with pytest.raises(ValueError):
        parse_cutoff("3pm")
    with pytest.raises(ValueError):
        parse_cutoff("25:00")


def test_should_run_weekdays_only(calendar):
    assert calendar.should_run(date(2026, 10, 16))       # Friday
    assert not calendar.should_run(date(2026, 10, 17))   # Saturday
    assert not calendar.should_run(date(2026, 12, 24))   # holiday


def test_weekend_runs_can_be_enabled():
    calendar = TradingCalendar(run_on_weekends=True)
    assert calendar.should_run(date(2026, 10, 17))


def test_next_run_is_today_before_cutoff(calendar):
    scheduled = calendar.next_scheduled_run(local(2026, 10, 16, 9, 0))

    assert scheduled.nav_date == date(2026, 10, 16)
    assert scheduled.scheduled_time == local(2026, 10, 16, 15, 0)
    assert scheduled.status == "SCHEDULED"


def test_next_run_skips_weekend_after_cutoff(calendar):
    scheduled = calendar.next_scheduled_run(local(2026, 10, 16, 16, 0))

    assert scheduled.nav_date == date(2026, 10, 19)


def test_next_run_skips_holidays(calendar):
    scheduled = calendar.next_scheduled_run(local(2026, 12, 23, 18, 0))

    assert scheduled.nav_date == date(2026, 12, 28)


def test_naive_now_is_read_in_calendar_timezone(calendar):
    scheduled = calendar.next_scheduled_run(datetime(2026, 10, 16, 14, 59))

    assert scheduled.nav_date == date(2026, 10, 16)


def test_aware_now_is_converted(calendar):
    # 13:30 UTC is 15:30 in Stockholm (CEST)
    scheduled = calendar.next_scheduled_run(pytz.utc.localize(datetime(2026, 10, 16, 13, 30)))

    assert scheduled.nav_date == date(2026, 10, 19)


def test_no_run_days_returns_none():
    calendar = TradingCalendar(run_on_weekdays=False, run_on_weekends=False)

    assert calendar.next_scheduled_run(local(2026, 10, 16, 9, 0)) is None

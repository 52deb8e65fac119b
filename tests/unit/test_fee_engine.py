"""
Unit Tests for the fee engine

✅ Daily and periodic accruals per day-count basis
✅ High-water mark and hurdle-rate performance fees
✅ Fee entries built from a FundConfig
"""

from datetime import date, timedelta
from decimal import Decimal

from app.domain.models import (
    AccrualPolicy,
    DayCountConvention,
    FundConfig,
    LiabilityType,
    PerformanceFeeType,
    ShareClassConfig,
)
from app.domain.services import fee_engine


def make_config(**overrides) -> FundConfig:
    data = dict(
        fund_id="NORDIC-EQ",
        name="Nordic Equity Fund",
        currency="SEK",
        management_fee_rate=Decimal("0.0365"),
        share_classes=[
            ShareClassConfig("A"),
            ShareClassConfig("I", management_fee_rate=Decimal("0.00365")),
        ],
    )
    data.update(overrides)
    return FundConfig(**data)


# ============================================================
# Accrual math
# ============================================================

def test_daily_fee_rate_by_basis():
    assert fee_engine.daily_fee_rate(Decimal("0.0365")) == Decimal("0.0001")
    assert fee_engine.daily_fee_rate(Decimal("0.036"), DayCountConvention.ACT_360) == Decimal("0.0001")


def test_daily_fee():
    assert fee_engine.daily_fee(Decimal("1000000"), Decimal("0.0365")) == Decimal("100")


def test_accrued_fee_for_days_and_period():
    assert fee_engine.accrued_fee_for_days(Decimal("1000000"), Decimal("0.0365"), 10) == Decimal("1000")
    assert fee_engine.accrued_fee_for_period(
        Decimal("1000000"), Decimal("0.0365"), date(2026, 1, 1), date(2026, 1, 11)
    ) == Decimal("1000")


def test_accrual_period_daily_is_month_to_date():
    assert fee_engine.accrual_period(date(2026, 2, 10), "DAILY") == (date(2026, 2, 1), date(2026, 2, 10), 10)


def test_accrual_period_monthly_is_whole_month():
    assert fee_engine.accrual_period(date(2026, 2, 10), "MONTHLY") == (date(2026, 2, 1), date(2026, 2, 28), 28)


# ============================================================
# Performance fees
# ============================================================

def test_high_water_mark_fee():
    assert fee_engine.high_water_mark_fee(
        Decimal("110"), Decimal("100"), Decimal("0.2"), Decimal("1000")
    ) == Decimal("2000")
    assert fee_engine.high_water_mark_fee(
        Decimal("95"), Decimal("100"), Decimal("0.2"), Decimal("1000")
    ) == Decimal("0")


def test_hurdle_rate_fee():
    fee = fee_engine.hurdle_rate_fee(
        nav_per_share=Decimal("110"),
        previous_nav_per_share=Decimal("100"),
        hurdle_rate=Decimal("0.0365"),
        rate=Decimal("0.2"),
        shares_outstanding=Decimal("1000"),
        days=365,
    )
    assert fee == Decimal("1270")


def test_hurdle_rate_fee_below_threshold():
    fee = fee_engine.hurdle_rate_fee(
        Decimal("101"), Decimal("100"), Decimal("0.0365"), Decimal("0.2"), Decimal("1000"), 365,
    )
    assert fee == Decimal("0")


def test_performance_fee_without_inputs_is_zero():
    nav = Decimal("120")
    shares = Decimal("1000")
    assert fee_engine.performance_fee(None, nav, Decimal("0.2"), shares) == Decimal("0")
    assert fee_engine.performance_fee(
        PerformanceFeeType.HIGH_WATER_MARK, nav, Decimal("0.2"), shares
    ) == Decimal("0")
    assert fee_engine.performance_fee(
        PerformanceFeeType.HURDLE_RATE, nav, Decimal("0.2"), shares, hurdle_rate=Decimal("0.05")
    ) == Decimal("0")
    assert fee_engine.performance_fee(
        PerformanceFeeType.HIGH_WATER_MARK, nav, Decimal("0.2"), Decimal("0"), high_water_mark=Decimal("100")
    ) == Decimal("0")


# ============================================================
# Fee entries from configuration
# ============================================================

def test_build_accrued_fees_uses_share_class_rate():
    aum = Decimal("3650000")
    nav_date = date(2026, 1, 10)

    fees_a = fee_engine.build_accrued_fees(make_config(), "A", aum, nav_date)
    fees_i = fee_engine.build_accrued_fees(make_config(), "I", aum, nav_date)

    assert [f.fee_type for f in fees_a] == [LiabilityType.MANAGEMENT_FEE]
    assert fees_a[0].accrued_amount == Decimal("3650")
    assert fees_a[0].period_start == date(2026, 1, 1)
    assert fees_a[0].period_end == nav_date
    assert fees_i[0].accrued_amount == Decimal("365")


def test_build_accrued_fees_skips_zero_rates_and_adds_depositary_and_admin():
    config = make_config(depositary_fee_rate=Decimal("0.00365"), admin_fee_rate=Decimal("0"))

    fees = fee_engine.build_accrued_fees(config, "A", Decimal("3650000"), date(2026, 1, 10))

    assert [f.fee_type for f in fees] == [LiabilityType.MANAGEMENT_FEE, LiabilityType.DEPOSITARY_FEE]
    assert fees[1].accrued_amount == Decimal("365")


def test_build_accrued_fees_monthly_act_360():
    config = make_config(
        management_fee_rate=Decimal("0.036"),
        accrual_policy=AccrualPolicy(fee_accrual_basis="MONTHLY", fee_day_count=DayCountConvention.ACT_360),
    )

    fees = fee_engine.build_accrued_fees(config, "A", Decimal("1000000"), date(2026, 4, 2))

    assert fees[0].period_end == date(2026, 4, 30)
    assert fees[0].accrued_amount == Decimal("3000")


def test_build_performance_fee_above_high_water_mark():
    config = make_config(
        performance_fee_rate=Decimal("0.2"),
        performance_fee_type=PerformanceFeeType.HIGH_WATER_MARK,
        high_water_mark=Decimal("100"),
    )
    nav_date = date(2026, 10, 16)

    fee = fee_engine.build_performance_fee(config, "A", Decimal("110"), Decimal("1000"), nav_date)

    assert fee is not None
    assert fee.fee_type == LiabilityType.PERFORMANCE_FEE
    assert fee.accrued_amount == Decimal("2000")
    assert fee.period_start == nav_date - timedelta(days=1)
    assert fee.base_amount == Decimal("110000")


def test_build_performance_fee_below_high_water_mark_is_none():
    config = make_config(
        performance_fee_rate=Decimal("0.2"),
        performance_fee_type=PerformanceFeeType.HIGH_WATER_MARK,
        high_water_mark=Decimal("100"),
    )

    assert fee_engine.build_performance_fee(config, "A", Decimal("99"), Decimal("1000"), date(2026, 10, 16)) is None

"""
FEE ENGINE
Accrual math consumed by the NAV calculator and orchestration

RESPONSIBILITIES:
- Daily and periodic fee accrual (AUM x annual rate x days / year basis)
- Performance fee with high-water mark or hurdle rate
- Build AccruedFee entries for a fund/share class from its FundConfig

RULES:
- Pure functions, no I/O
- Decimal arithmetic only
"""

import calendar
from datetime import date, timedelta
from decimal import Decimal
from typing import List, Optional

from app.domain.models import (
    AccruedFee,
    DayCountConvention,
    FundConfig,
    LiabilityType,
    PerformanceFeeType,
)
from app.domain.services.day_count import day_count

ZERO = Decimal("0")


def _year_basis(convention: DayCountConvention) -> Decimal:
    return Decimal("360") if DayCountConvention(convention) == DayCountConvention.ACT_360 else Decimal("365")


def daily_fee_rate(annual_rate: Decimal, convention: DayCountConvention = DayCountConvention.ACT_365) -> Decimal:
    """annual / 365, or annual / 360 under ACT/360"""
    return annual_rate / _year_basis(convention)


def daily_fee(aum: Decimal, annual_rate: Decimal,
              convention: DayCountConvention = DayCountConvention.ACT_365) -> Decimal:
    return aum * daily_fee_rate(annual_rate, convention)


def accrued_fee_for_days(
    aum: Decimal,
    annual_rate: Decimal,
    days: int,
    convention: DayCountConvention = DayCountConvention.ACT_365,
) -> Decimal:
    """AUM x daily rate x N"""
    return aum * daily_fee_rate(annual_rate, convention) * Decimal(days)


def accrued_fee_for_period(
    aum: Decimal,
    annual_rate: Decimal,
    start: date,
    end: date,
    convention: DayCountConvention = DayCountConvention.ACT_365,
) -> Decimal:
    days = day_count(start, end, convention)
    return accrued_fee_for_days(aum, annual_rate, days, convention)


def high_water_mark_fee(
    nav_per_share: Decimal,
    high_water_mark: Decimal,
    rate: Decimal,
    shares_outstanding: Decimal,
) -> Decimal:
    """max(0, NAV/share - HWM) x rate x shares"""
    excess = nav_per_share - high_water_mark
    if excess <= ZERO:
        return ZERO
    return excess * rate * shares_outstanding


def hurdle_rate_fee(
    nav_per_share: Decimal,
    previous_nav_per_share: Decimal,
    hurdle_rate: Decimal,
    rate: Decimal,
    shares_outstanding: Decimal,
    days: int,
) -> Decimal:
    """max(0, NAV/share - prev x (1 + hurdle x days/365)) x rate x shares"""
    threshold = previous_nav_per_share * (Decimal("1") + hurdle_rate * Decimal(days) / Decimal("365"))
    excess = nav_per_share - threshold
    if excess <= ZERO:
        return ZERO
    return excess * rate * shares_outstanding


def performance_fee(
    fee_type: Optional[PerformanceFeeType],
    nav_per_share: Decimal,
    rate: Optional[Decimal],
    shares_outstanding: Decimal,
    high_water_mark: Optional[Decimal] = None,
    previous_nav_per_share: Optional[Decimal] = None,
    hurdle_rate: Optional[Decimal] = None,
    days: int = 1,
) -> Decimal:
    """
    Dispatch to the configured policy. The two policies are mutually
    exclusive; a missing policy input yields zero.
    """
    if fee_type is None or not rate or shares_outstanding <= ZERO:
        return ZERO
    if fee_type == PerformanceFeeType.HIGH_WATER_MARK:
        if high_water_mark is None:
            return ZERO
        return high_water_mark_fee(nav_per_share, high_water_mark, rate, shares_outstanding)
    if previous_nav_per_share is None or hurdle_rate is None:
        return ZERO
    return hurdle_rate_fee(
        nav_per_share, previous_nav_per_share, hurdle_rate, rate, shares_outstanding, days
    )


def accrual_period(valuation_date: date, basis: str) -> tuple:
    """
    (period_start, period_end, days) for a fee accrual.

    DAILY accrues month-to-date inclusive of the valuation date.
    MONTHLY accrues the whole calendar month on every valuation date.
    """
    month_start = valuation_date.replace(day=1)
    if basis == "MONTHLY":
        last_day = calendar.monthrange(valuation_date.year, valuation_date.month)[1]
        month_end = valuation_date.replace(day=last_day)
        return month_start, month_end, last_day
    return month_start, valuation_date, (valuation_date - month_start).days + 1


def build_accrued_fees(
    config: FundConfig,
    share_class_id: str,
    aum: Decimal,
    valuation_date: date,
) -> List[AccruedFee]:
    """Management, depositary and admin fee accruals from current AUM."""
    convention = config.accrual_policy.fee_day_count
    start, end, days = accrual_period(valuation_date, config.accrual_policy.fee_accrual_basis)

    fees: List[AccruedFee] = []
    rates = (
        (LiabilityType.MANAGEMENT_FEE, config.management_fee_for(share_class_id)),
        (LiabilityType.DEPOSITARY_FEE, config.depositary_fee_rate),
        (LiabilityType.ADMIN_FEE, config.admin_fee_rate),
    )
    for fee_type, rate in rates:
        if rate is None or rate <= ZERO:
            continue
        fees.append(
            AccruedFee(
                fee_type=fee_type,
                period_start=start,
                period_end=end,
                annual_rate=rate,
                base_amount=aum,
                accrued_amount=accrued_fee_for_days(aum, rate, days, convention),
                currency=config.currency,
            )
        )
    return fees


def build_performance_fee(
    config: FundConfig,
    share_class_id: str,
    estimated_nav_per_share: Decimal,
    shares_outstanding: Decimal,
    valuation_date: date,
    previous_nav_per_share: Optional[Decimal] = None,
    previous_nav_date: Optional[date] = None,
) -> Optional[AccruedFee]:
    """Performance fee accrual for the share class, None when nothing accrues."""
    rate = config.performance_fee_for(share_class_id)
    days = (valuation_date - previous_nav_date).days if previous_nav_date else 1
    amount = performance_fee(
        config.performance_fee_type,
        estimated_nav_per_share,
        rate,
        shares_outstanding,
        high_water_mark=config.high_water_mark,
        previous_nav_per_share=previous_nav_per_share,
        hurdle_rate=config.hurdle_rate,
        days=max(days, 1),
    )
    if amount <= ZERO:
        return None
    return AccruedFee(
        fee_type=LiabilityType.PERFORMANCE_FEE,
        period_start=previous_nav_date or valuation_date - timedelta(days=1),
        period_end=valuation_date,
        annual_rate=rate,
        base_amount=estimated_nav_per_share * shares_outstanding,
        accrued_amount=amount,
        currency=config.currency,
    )

"""
NAV MATH
Supplementary fund-accounting formulas (dealing, share classes, reporting)

All functions are pure and operate on Decimal.
"""

from dataclasses import dataclass
from decimal import ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from app.domain.models import DayCountConvention, NAVResult
from app.domain.services.day_count import day_count
from app.domain.services.fx_converter import FXRateTable

ZERO = Decimal("0")
ONE = Decimal("1")
HUNDRED = Decimal("100")

_ROUNDING = {
    "ROUND": ROUND_HALF_UP,
    "FLOOR": ROUND_FLOOR,
    "CEIL": ROUND_CEILING,
}


# ============================================================
# Core NAV formulas
# ============================================================

def net_asset_value(gross_assets: Decimal, total_liabilities: Decimal) -> Decimal:
    return gross_assets - total_liabilities


def nav_per_share(net_assets: Decimal, shares_outstanding: Decimal) -> Decimal:
    if shares_outstanding <= ZERO:
        return ZERO
    return net_assets / shares_outstanding


def nav_change(current: Decimal, previous: Decimal) -> Tuple[Decimal, Decimal]:
    """(absolute change, percent change); percent is 0 without a positive previous"""
    change = current - previous
    percent = change / previous * HUNDRED if previous > ZERO else ZERO
    return change, percent


@dataclass(frozen=True)
class MovementCheck:
    status: str          # OK | WARNING | ERROR
    change_percent: Decimal
    message: str


def check_nav_movement(
    current: Decimal,
    previous: Decimal,
    warning_threshold: Decimal = Decimal("5"),
    error_threshold: Decimal = Decimal("10"),
) -> MovementCheck:
    _, percent = nav_change(current, previous)
    magnitude = abs(percent)
    if magnitude > error_threshold:
        return MovementCheck(
            "ERROR", percent,
            f"NAV changed {percent:.2f}%, above the {error_threshold}% limit",
        )
    if magnitude > warning_threshold:
        return MovementCheck(
            "WARNING", percent,
            f"NAV changed {percent:.2f}%, above the {warning_threshold}% warning threshold",
        )
    return MovementCheck("OK", percent, f"NAV changed {percent:.2f}%")


def within_tolerance(value: Decimal, reference: Decimal, tolerance_pct: Decimal) -> bool:
    """|value - reference| / |reference| x 100 <= tolerance; exact match required for a zero reference"""
    if reference == ZERO:
        return value == ZERO
    return abs(value - reference) / abs(reference) * HUNDRED <= tolerance_pct


def validate_nav_consistency(
    gross_assets: Decimal,
    total_liabilities: Decimal,
    net_assets: Decimal,
    shares_outstanding: Decimal,
    per_share: Decimal,
) -> List[str]:
    """Arithmetic consistency of a computed NAV; empty list when consistent."""
    errors: List[str] = []
    expected_nav = gross_assets - total_liabilities
    if abs(net_assets - expected_nav) > Decimal("0.01"):
        errors.append(f"NAV mismatch: {net_assets} != {expected_nav}")
    if shares_outstanding > ZERO:
        expected_per_share = net_assets / shares_outstanding
        if abs(per_share - expected_per_share) > Decimal("0.0001"):
            errors.append(f"NAV per share mismatch: {per_share} != {expected_per_share}")
    if gross_assets < ZERO:
        errors.append("Gross assets cannot be negative")
    if total_liabilities < ZERO:
        errors.append("Total liabilities cannot be negative")
    if shares_outstanding < ZERO:
        errors.append("Shares outstanding cannot be negative")
    return errors


# ============================================================
# Rounding
# ============================================================

def round_nav_per_share(value: Decimal, decimals: int = 2, method: str = "ROUND") -> Decimal:
    if method not in _ROUNDING:
        raise ValueError(f"Unknown rounding method: {method}")
    return value.quantize(Decimal(1).scaleb(-decimals), rounding=_ROUNDING[method])


def round_shares(shares: Decimal, decimals: int = 4) -> Decimal:
    """Shares are always rounded down"""
    return shares.quantize(Decimal(1).scaleb(-decimals), rounding=ROUND_FLOOR)


# ============================================================
# Dealing
# ============================================================

@dataclass(frozen=True)
class SubscriptionResult:
    shares: Decimal
    fee_amount: Decimal
    net_amount: Decimal


@dataclass(frozen=True)
class RedemptionResult:
    gross_amount: Decimal
    fee_amount: Decimal
    net_amount: Decimal


def subscription_shares(amount: Decimal, per_share: Decimal, entry_fee: Decimal = ZERO) -> SubscriptionResult:
    fee_amount = amount * entry_fee
    net_amount = amount - fee_amount
    shares = net_amount / per_share if per_share > ZERO else ZERO
    return SubscriptionResult(shares=shares, fee_amount=fee_amount, net_amount=net_amount)


def redemption_amount(shares: Decimal, per_share: Decimal, exit_fee: Decimal = ZERO) -> RedemptionResult:
    gross = shares * per_share
    fee_amount = gross * exit_fee
    return RedemptionResult(gross_amount=gross, fee_amount=fee_amount, net_amount=gross - fee_amount)


def dilution_levy(
    flow_amount: Decimal,
    bid_ask_spread: Decimal,
    transaction_costs: Decimal,
    is_subscription: bool,
) -> Decimal:
    """flow x (spread / 2 + costs); negative for redemptions"""
    levy = flow_amount * (bid_ask_spread / Decimal("2") + transaction_costs)
    return levy if is_subscription else -levy


# ============================================================
# Share classes
# ============================================================

def hedged_share_class_nav(
    base_nav_per_share: Decimal,
    annual_hedging_cost: Decimal,
    days: int,
    hedge_ratio: Decimal = ONE,
) -> Decimal:
    period_cost = annual_hedging_cost / Decimal("365") * hedge_ratio * Decimal(days)
    return base_nav_per_share * (ONE - period_cost)


def allocate_fee_to_share_class(total_fee: Decimal, class_aum: Decimal, fund_aum: Decimal) -> Decimal:
    if fund_aum <= ZERO:
        return ZERO
    return total_fee * class_aum / fund_aum


# ============================================================
# Income accruals
# ============================================================

def bond_accrued_interest(
    nominal: Decimal,
    coupon_rate: Decimal,
    last_coupon,
    as_of,
    convention: DayCountConvention = DayCountConvention.ACT_365,
) -> Decimal:
    """nominal x coupon x days / (360 under ACT/360 and 30/360, else 365)"""
    days = day_count(last_coupon, as_of, convention)
    convention = DayCountConvention(convention)
    basis = Decimal("360") if convention in (DayCountConvention.ACT_360, DayCountConvention.THIRTY_360) else Decimal("365")
    return nominal * coupon_rate * Decimal(days) / basis


def accrued_dividend(shares: Decimal, dividend_per_share: Decimal, past_ex_date: bool) -> Decimal:
    """Dividends accrue from the ex-date"""
    return shares * dividend_per_share if past_ex_date else ZERO


# ============================================================
# Exposure and reporting
# ============================================================

@dataclass(frozen=True)
class CurrencyExposure:
    currency: str
    local_value: Decimal
    fund_currency_value: Decimal
    percentage: Decimal


def currency_exposure(
    positions: Iterable[Tuple[str, Decimal]],
    cash: Iterable[Tuple[str, Decimal]],
    fund_currency: str,
    fx: FXRateTable,
) -> List[CurrencyExposure]:
    """
    Exposure per currency from (currency, amount) pairs.

    Raises ValueError when an amount cannot be converted.
    """
    local: Dict[str, Decimal] = {}
    converted: Dict[str, Decimal] = {}
    for currency, amount in list(positions) + list(cash):
        value = fx.convert(amount, currency, fund_currency)
        if value is None:
            raise ValueError(f"No FX rate found for {currency}/{fund_currency}")
        local[currency] = local.get(currency, ZERO) + amount
        converted[currency] = converted.get(currency, ZERO) + value

    total = sum(converted.values(), ZERO)
    return [
        CurrencyExposure(
            currency=ccy,
            local_value=local[ccy],
            fund_currency_value=converted[ccy],
            percentage=converted[ccy] / total * HUNDRED if total > ZERO else ZERO,
        )
        for ccy in sorted(converted)
    ]


def nav_report_data(result: NAVResult, previous_nav_per_share: Optional[Decimal] = None) -> Dict[str, Any]:
    """Report view of a result: asset categories with their share of gross assets"""
    assets = result.breakdown.assets
    categories = (
        ("Equities", assets.equities),
        ("Fixed income", assets.fixed_income),
        ("Funds", assets.funds),
        ("Derivatives", assets.derivatives),
        ("Cash", assets.cash),
        ("Receivables", assets.receivables),
        ("Other", assets.other),
    )
    gross = result.gross_assets
    previous = previous_nav_per_share if previous_nav_per_share is not None else result.previous_nav_per_share
    change, percent = nav_change(result.nav_per_share, previous) if previous else (ZERO, ZERO)
    liabilities = result.breakdown.liabilities
    return {
        "fund_id": result.fund_id,
        "share_class_id": result.share_class_id,
        "nav_date": result.nav_date,
        "currency": result.fund_currency,
        "gross_assets": gross,
        "total_liabilities": result.total_liabilities,
        "net_asset_value": result.net_asset_value,
        "shares_outstanding": result.shares_outstanding,
        "nav_per_share": round_nav_per_share(result.nav_per_share, 4),
        "previous_nav_per_share": previous,
        "nav_change": change,
        "nav_change_percent": percent,
        "status": result.status.value,
        "asset_breakdown": [
            {
                "category": name,
                "value": value,
                "percentage": value / gross * HUNDRED if gross > ZERO else ZERO,
            }
            for name, value in categories
            if value != ZERO
        ],
        "liability_breakdown": [
            {"category": "Fees", "value": liabilities.fees},
            {"category": "Tax", "value": liabilities.tax},
            {"category": "Pending purchases", "value": liabilities.pending_purchases},
            {"category": "Pending redemptions", "value": liabilities.pending_redemptions},
            {"category": "Other", "value": liabilities.other},
        ],
    }

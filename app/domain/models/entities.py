"""
Domain Models - Entities
Pure domain objects with no infrastructure dependencies
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Optional, Tuple


class AssetClass(str, Enum):
    """Asset class tag of a position"""
    EQUITIES = "EQUITIES"
    FIXED_INCOME = "FIXED_INCOME"
    FUNDS = "FUNDS"
    DERIVATIVES = "DERIVATIVES"
    CASH = "CASH"
    OTHER = "OTHER"


class SecurityType(str, Enum):
    """Instrument type as reported by the registry"""
    EQUITY = "EQUITY"
    ETF = "ETF"
    BOND = "BOND"
    MONEY_MARKET = "MONEY_MARKET"
    FUND = "FUND"
    DERIVATIVE = "DERIVATIVE"
    FX_FORWARD = "FX_FORWARD"
    OPTION = "OPTION"
    FUTURE = "FUTURE"
    WARRANT = "WARRANT"
    CERTIFICATE = "CERTIFICATE"
    CASH = "CASH"
    OTHER = "OTHER"


_SECURITY_TYPE_TO_ASSET_CLASS = {
    SecurityType.EQUITY: AssetClass.EQUITIES,
    SecurityType.ETF: AssetClass.EQUITIES,
    SecurityType.BOND: AssetClass.FIXED_INCOME,
    SecurityType.MONEY_MARKET: AssetClass.FIXED_INCOME,
    SecurityType.FUND: AssetClass.FUNDS,
    SecurityType.DERIVATIVE: AssetClass.DERIVATIVES,
    SecurityType.FX_FORWARD: AssetClass.DERIVATIVES,
    SecurityType.OPTION: AssetClass.DERIVATIVES,
    SecurityType.FUTURE: AssetClass.DERIVATIVES,
    SecurityType.WARRANT: AssetClass.DERIVATIVES,
    SecurityType.CERTIFICATE: AssetClass.DERIVATIVES,
    SecurityType.CASH: AssetClass.CASH,
}


def asset_class_for(security_type: str) -> AssetClass:
    """Map a registry security type onto an asset class tag"""
    try:
        return _SECURITY_TYPE_TO_ASSET_CLASS.get(SecurityType(security_type), AssetClass.OTHER)
    except ValueError:
        return AssetClass.OTHER


class ReceivableType(str, Enum):
    DIVIDEND = "DIVIDEND"
    INTEREST = "INTEREST"
    SUBSCRIPTION = "SUBSCRIPTION"
    SALE_PROCEEDS = "SALE_PROCEEDS"
    TAX_RECLAIM = "TAX_RECLAIM"
    OTHER = "OTHER"


class LiabilityType(str, Enum):
    MANAGEMENT_FEE = "MANAGEMENT_FEE"
    PERFORMANCE_FEE = "PERFORMANCE_FEE"
    DEPOSITARY_FEE = "DEPOSITARY_FEE"
    ADMIN_FEE = "ADMIN_FEE"
    AUDIT_FEE = "AUDIT_FEE"
    TAX = "TAX"
    PENDING_PURCHASE = "PENDING_PURCHASE"
    OTHER = "OTHER"


class DayCountConvention(str, Enum):
    """Day-count conventions for accrual math"""
    ACT_360 = "ACT_360"
    ACT_365 = "ACT_365"
    THIRTY_360 = "30_360"
    ACT_ACT = "ACT_ACT"


class PerformanceFeeType(str, Enum):
    HIGH_WATER_MARK = "HIGH_WATER_MARK"
    HURDLE_RATE = "HURDLE_RATE"


class Severity(str, Enum):
    ERROR = "ERROR"
    WARNING = "WARNING"


class CalculationStatus(str, Enum):
    """Overall result status, ERRORS > WARNINGS > VALID"""
    VALID = "VALID"
    WARNINGS = "WARNINGS"
    ERRORS = "ERRORS"


class NAVRecordStatus(str, Enum):
    PRELIMINARY = "PRELIMINARY"
    APPROVED = "APPROVED"
    PUBLISHED = "PUBLISHED"
    CORRECTED = "CORRECTED"


class ApprovalStatus(str, Enum):
    PENDING_FIRST = "PENDING_FIRST"
    PENDING_SECOND = "PENDING_SECOND"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class NAVRunStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    AWAITING_APPROVAL = "AWAITING_APPROVAL"
    FAILED = "FAILED"


class TransitionResult(str, Enum):
    """Outcome of a compare-and-swap status update"""
    APPLIED = "APPLIED"
    CONFLICT = "CONFLICT"


@dataclass(frozen=True)
class FundKey:
    """Composite key of one NAV series"""
    fund_id: str
    share_class_id: str

    def __str__(self) -> str:
        return f"{self.fund_id}/{self.share_class_id}"


# ============================================================
# Snapshot inputs
# ============================================================

@dataclass(frozen=True)
class PositionValuation:
    """A valued holding. market_value is in price_currency."""
    instrument_id: str
    isin: str
    name: str
    quantity: Decimal
    price: Optional[Decimal]
    price_currency: str
    price_date: Optional[date]
    price_source: str
    market_value: Decimal
    asset_class: AssetClass
    security_type: str = SecurityType.OTHER.value
    # As reported by the registry; the calculator recomputes from snapshot rates
    market_value_fund_currency: Optional[Decimal] = None
    accrued_interest: Optional[Decimal] = None
    accrued_dividend: Optional[Decimal] = None


@dataclass(frozen=True)
class CashBalance:
    account_id: str
    currency: str
    balance: Decimal
    value_date: date
    account_name: str = ""
    balance_fund_currency: Optional[Decimal] = None


@dataclass(frozen=True)
class Receivable:
    receivable_id: str
    type: ReceivableType
    amount: Decimal
    currency: str
    description: str = ""
    amount_fund_currency: Optional[Decimal] = None


@dataclass(frozen=True)
class Liability:
    liability_id: str
    type: LiabilityType
    amount: Decimal
    currency: str
    description: str = ""
    amount_fund_currency: Optional[Decimal] = None


@dataclass(frozen=True)
class AccruedFee:
    fee_type: LiabilityType
    period_start: date
    period_end: date
    annual_rate: Decimal
    base_amount: Decimal
    accrued_amount: Decimal
    currency: str


@dataclass(frozen=True)
class PendingRedemption:
    order_id: str
    shareholder_id: str
    shares: Decimal
    estimated_amount: Decimal
    value_date: date


@dataclass(frozen=True)
class FXRate:
    """base/quote rate: 1 unit of base = rate units of quote"""
    base_currency: str
    quote_currency: str
    rate: Decimal
    rate_date: date
    source: str

    def inverse(self) -> "FXRate":
        return FXRate(
            base_currency=self.quote_currency,
            quote_currency=self.base_currency,
            rate=Decimal("1") / self.rate,
            rate_date=self.rate_date,
            source=self.source,
        )


@dataclass(frozen=True)
class FundSnapshot:
    """Fully assembled calculator input, built fresh per run"""
    fund_id: str
    share_class_id: str
    valuation_date: date
    fund_currency: str
    shares_outstanding: Decimal
    management_fee_rate: Decimal = Decimal("0")
    performance_fee_rate: Optional[Decimal] = None
    high_water_mark: Optional[Decimal] = None
    positions: Tuple[PositionValuation, ...] = field(default_factory=tuple)
    cash_balances: Tuple[CashBalance, ...] = field(default_factory=tuple)
    receivables: Tuple[Receivable, ...] = field(default_factory=tuple)
    liabilities: Tuple[Liability, ...] = field(default_factory=tuple)
    accrued_fees: Tuple[AccruedFee, ...] = field(default_factory=tuple)
    pending_redemptions: Tuple[PendingRedemption, ...] = field(default_factory=tuple)
    fx_rates: Tuple[FXRate, ...] = field(default_factory=tuple)

    @property
    def key(self) -> FundKey:
        return FundKey(self.fund_id, self.share_class_id)

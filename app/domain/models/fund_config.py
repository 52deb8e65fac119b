"""
Fund configuration - static fee, pricing and accrual policy per fund
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

from app.domain.models.entities import DayCountConvention, PerformanceFeeType


@dataclass(frozen=True)
class PricingPolicy:
    equity_price_type: str = "CLOSE"       # CLOSE | BID | MID
    bond_price_type: str = "BID"           # CLOSE | BID | MID
    derivative_price_type: str = "MARK_TO_MARKET"
    fx_rate_time: str = "CLOSE"            # CLOSE | SPECIFIC_TIME
    fx_rate_source: str = "ECB"


@dataclass(frozen=True)
class AccrualPolicy:
    fee_accrual_basis: str = "DAILY"       # DAILY | MONTHLY
    dividend_accrual_policy: str = "EX_DATE"
    interest_day_count: DayCountConvention = DayCountConvention.ACT_365
    fee_day_count: DayCountConvention = DayCountConvention.ACT_365


@dataclass(frozen=True)
class ShareClassConfig:
    share_class_id: str
    name: str = ""
    currency: Optional[str] = None
    isin: Optional[str] = None
    hedged: bool = False
    active: bool = True
    management_fee_rate: Optional[Decimal] = None
    performance_fee_rate: Optional[Decimal] = None
    distribution_policy: str = "ACC"


@dataclass(frozen=True)
class FundConfig:
    """Read-only to the calculator; maintained by administrators"""
    fund_id: str
    name: str
    currency: str
    management_fee_rate: Decimal
    depositary_fee_rate: Decimal = Decimal("0")
    admin_fee_rate: Decimal = Decimal("0")
    performance_fee_rate: Optional[Decimal] = None
    performance_fee_type: Optional[PerformanceFeeType] = None
    hurdle_rate: Optional[Decimal] = None
    high_water_mark: Optional[Decimal] = None
    fund_type: str = "UCITS"
    active: bool = True
    pricing_policy: PricingPolicy = field(default_factory=PricingPolicy)
    accrual_policy: AccrualPolicy = field(default_factory=AccrualPolicy)
    share_classes: List[ShareClassConfig] = field(default_factory=list)

    def __post_init__(self):
        if not self.fund_id:
            raise ValueError("Fund id cannot be empty")
        if self.performance_fee_type == PerformanceFeeType.HURDLE_RATE and self.hurdle_rate is None:
            raise ValueError(f"Fund {self.fund_id}: hurdle-rate performance fee requires hurdle_rate")

    def share_class(self, share_class_id: str) -> Optional[ShareClassConfig]:
        for sc in self.share_classes:
            if sc.share_class_id == share_class_id:
                return sc
        return None

    def management_fee_for(self, share_class_id: str) -> Decimal:
        sc = self.share_class(share_class_id)
        if sc is not None and sc.management_fee_rate is not None:
            return sc.management_fee_rate
        return self.management_fee_rate

    def performance_fee_for(self, share_class_id: str) -> Optional[Decimal]:
        sc = self.share_class(share_class_id)
        if sc is not None and sc.performance_fee_rate is not None:
            return sc.performance_fee_rate
        return self.performance_fee_rate

    def as_dict(self) -> Dict[str, Any]:
        def dec(v: Optional[Decimal]) -> Optional[str]:
            return str(v) if v is not None else None

        return {
            "fund_id": self.fund_id,
            "name": self.name,
            "currency": self.currency,
            "fund_type": self.fund_type,
            "active": self.active,
            "management_fee_rate": dec(self.management_fee_rate),
            "depositary_fee_rate": dec(self.depositary_fee_rate),
            "admin_fee_rate": dec(self.admin_fee_rate),
            "performance_fee_rate": dec(self.performance_fee_rate),
            "performance_fee_type": self.performance_fee_type.value if self.performance_fee_type else None,
            "hurdle_rate": dec(self.hurdle_rate),
            "high_water_mark": dec(self.high_water_mark),
            "pricing_policy": {
                "equity_price_type": self.pricing_policy.equity_price_type,
                "bond_price_type": self.pricing_policy.bond_price_type,
                "derivative_price_type": self.pricing_policy.derivative_price_type,
                "fx_rate_time": self.pricing_policy.fx_rate_time,
                "fx_rate_source": self.pricing_policy.fx_rate_source,
            },
            "accrual_policy": {
                "fee_accrual_basis": self.accrual_policy.fee_accrual_basis,
                "dividend_accrual_policy": self.accrual_policy.dividend_accrual_policy,
                "interest_day_count": self.accrual_policy.interest_day_count.value,
                "fee_day_count": self.accrual_policy.fee_day_count.value,
            },
            "share_classes": [
                {
                    "share_class_id": sc.share_class_id,
                    "name": sc.name,
                    "currency": sc.currency,
                    "isin": sc.isin,
                    "hedged": sc.hedged,
                    "active": sc.active,
                    "management_fee_rate": dec(sc.management_fee_rate),
                    "performance_fee_rate": dec(sc.performance_fee_rate),
                    "distribution_policy": sc.distribution_policy,
                }
                for sc in self.share_classes
            ],
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "FundConfig":
        def dec(v: Any) -> Optional[Decimal]:
            return Decimal(str(v)) if v is not None else None

        pricing = data.get("pricing_policy") or {}
        accrual = data.get("accrual_policy") or {}
        perf_type = data.get("performance_fee_type")
        return FundConfig(
            fund_id=data["fund_id"],
            name=data.get("name", data["fund_id"]),
            currency=data["currency"],
            fund_type=data.get("fund_type", "UCITS"),
            active=data.get("active", True),
            management_fee_rate=dec(data.get("management_fee_rate", "0")),
            depositary_fee_rate=dec(data.get("depositary_fee_rate", "0")),
            admin_fee_rate=dec(data.get("admin_fee_rate", "0")),
            performance_fee_rate=dec(data.get("performance_fee_rate")),
            performance_fee_type=PerformanceFeeType(perf_type) if perf_type else None,
            hurdle_rate=dec(data.get("hurdle_rate")),
            high_water_mark=dec(data.get("high_water_mark")),
            pricing_policy=PricingPolicy(**pricing),
            accrual_policy=AccrualPolicy(
                fee_accrual_basis=accrual.get("fee_accrual_basis", "DAILY"),
                dividend_accrual_policy=accrual.get("dividend_accrual_policy", "EX_DATE"),
                interest_day_count=DayCountConvention(accrual.get("interest_day_count", "ACT_365")),
                fee_day_count=DayCountConvention(accrual.get("fee_day_count", "ACT_365")),
            ),
            share_classes=[
                ShareClassConfig(
                    share_class_id=sc["share_class_id"],
                    name=sc.get("name", ""),
                    currency=sc.get("currency"),
                    isin=sc.get("isin"),
                    hedged=sc.get("hedged", False),
                    active=sc.get("active", True),
                    management_fee_rate=dec(sc.get("management_fee_rate")),
                    performance_fee_rate=dec(sc.get("performance_fee_rate")),
                    distribution_policy=sc.get("distribution_policy", "ACC"),
                )
                for sc in data.get("share_classes", [])
            ],
        )

"""
Fund/position registry, pricing and FX provider protocols for type hints.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional, Protocol, Tuple

from app.domain.models import FXRate, Liability, Receivable


@dataclass(frozen=True)
class RegistryShareClass:
    share_class_id: str
    name: str = ""
    currency: Optional[str] = None
    isin: Optional[str] = None
    active: bool = True
    hedged: bool = False
    management_fee_rate: Optional[Decimal] = None
    performance_fee_rate: Optional[Decimal] = None
    distribution_policy: str = "ACC"


@dataclass(frozen=True)
class RegistryFund:
    fund_id: str
    name: str
    currency: str
    active: bool = True
    fund_type: str = "UCITS"
    share_classes: Tuple[RegistryShareClass, ...] = field(default_factory=tuple)

    def share_class(self, share_class_id: str) -> Optional[RegistryShareClass]:
        for sc in self.share_classes:
            if sc.share_class_id == share_class_id:
                return sc
        return None


@dataclass(frozen=True)
class RegistryPosition:
    instrument_id: str
    isin: str
    name: str
    security_type: str
    quantity: Decimal
    price: Optional[Decimal]
    price_currency: str
    price_date: Optional[date]
    price_source: str
    market_value: Decimal
    market_value_fund_currency: Optional[Decimal] = None
    accrued_interest: Optional[Decimal] = None
    accrued_dividend: Optional[Decimal] = None


@dataclass(frozen=True)
class RegistryCashAccount:
    account_id: str
    currency: str
    balance: Decimal
    value_date: date
    account_name: str = ""
    balance_fund_currency: Optional[Decimal] = None


@dataclass(frozen=True)
class RegistryHolding:
    shareholder_id: str
    share_class_id: str
    shares: Decimal


@dataclass(frozen=True)
class RegistryOrder:
    order_id: str
    shareholder_id: str
    share_class_id: str
    order_type: str        # SUBSCRIPTION | REDEMPTION
    status: str            # PENDING | SETTLED | CANCELLED
    shares: Optional[Decimal]
    amount: Optional[Decimal]
    value_date: date


@dataclass(frozen=True)
class ReferenceNAV:
    """NAV recorded externally (e.g. by the fund administrator)"""
    fund_id: str
    share_class_id: str
    nav_date: date
    nav_per_share: Decimal
    net_asset_value: Decimal
    source: str
    calculated_at: Optional[datetime] = None


@dataclass(frozen=True)
class PriceQuote:
    isin: str
    price: Decimal
    currency: str
    price_date: date
    source: str


class FundRegistry(Protocol):
    async def list_funds(self) -> List[RegistryFund]:
        ...

    async def get_fund(self, fund_id: str) -> Optional[RegistryFund]:
        ...

    async def get_positions(self, fund_id: str, as_of: date) -> List[RegistryPosition]:
        ...

    async def get_cash_accounts(self, fund_id: str, as_of: date) -> List[RegistryCashAccount]:
        ...

    async def get_receivables(self, fund_id: str, as_of: date) -> List[Receivable]:
        ...

    async def get_liabilities(self, fund_id: str, as_of: date) -> List[Liability]:
        ...

    async def get_holdings(self, fund_id: str, share_class_id: str, as_of: date) -> List[RegistryHolding]:
        ...

    async def get_pending_orders(self, fund_id: str, as_of: date) -> List[RegistryOrder]:
        ...

    async def get_reference_nav(self, fund_id: str, share_class_id: str, nav_date: date) -> Optional[ReferenceNAV]:
        ...

    async def upsert_nav(
        self,
        fund_id: str,
        share_class_id: str,
        nav_date: date,
        nav_per_share: Decimal,
        net_asset_value: Decimal,
    ) -> None:
        ...


class PricingProvider(Protocol):
    async def get_price(self, isin: str, as_of: date) -> Optional[PriceQuote]:
        ...


class FXProvider(Protocol):
    async def get_rate(self, base_currency: str, quote_currency: str, as_of: date) -> Optional[FXRate]:
        ...

from datetime import date
from decimal import Decimal
from typing import AsyncGenerator, Dict, List, Optional, Tuple

import pytest
from fastapi import FastAPI
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.api.errors import register_exception_handlers
from app.api.routes import approvals, funds, health, nav
from app.config import settings
from app.core.container import build_container
from app.domain.models import FXRate, Liability, Receivable
from app.infrastructure.db import models  # noqa: F401
from app.infrastructure.db.database import Base, get_db
from app.infrastructure.registry.types import (
    PriceQuote,
    ReferenceNAV,
    RegistryCashAccount,
    RegistryFund,
    RegistryHolding,
    RegistryOrder,
    RegistryPosition,
    RegistryShareClass,
)
from app.services.nav_service import NAVService

NAV_DATE = date(2026, 10, 16)


# ============================================================
# In-memory collaborators
# ============================================================

class FakeRegistry:
    """Fund registry backed by dicts; failures are injected per fund"""

    def __init__(self, default_price_date: date = NAV_DATE):
        self.default_price_date = default_price_date
        self.funds: Dict[str, RegistryFund] = {}
        self.positions: Dict[str, List[RegistryPosition]] = {}
        self.cash: Dict[str, List[RegistryCashAccount]] = {}
        self.receivables: Dict[str, List[Receivable]] = {}
        self.liabilities: Dict[str, List[Liability]] = {}
        self.holdings: Dict[Tuple[str, str], List[RegistryHolding]] = {}
        self.orders: Dict[str, List[RegistryOrder]] = {}
        self.references: Dict[Tuple[str, str, date], ReferenceNAV] = {}
        self.position_failures: Dict[str, Exception] = {}
        self.list_failure: Optional[Exception] = None
        self.upserts: List[Tuple[str, str, date, Decimal, Decimal]] = []

    # -- setup helpers --

    def add_fund(self, fund_id: str, currency: str = "SEK", share_classes=("A",), active: bool = True):
        self.funds[fund_id] = RegistryFund(
            fund_id=fund_id,
            name=f"{fund_id} Fund",
            currency=currency,
            active=active,
            share_classes=tuple(
                sc if isinstance(sc, RegistryShareClass) else RegistryShareClass(share_class_id=sc)
                for sc in share_classes
            ),
        )

    def add_position(
        self,
        fund_id: str,
        isin: str,
        market_value,
        currency: str = "SEK",
        security_type: str = "EQUITY",
        quantity=None,
        price=None,
        price_date: Optional[date] = None,
        accrued_interest=None,
    ):
        market_value = Decimal(str(market_value))
        quantity = Decimal(str(quantity)) if quantity is not None else Decimal("100")
        price = Decimal(str(price)) if price is not None else market_value / quantity
        self.positions.setdefault(fund_id, []).append(
            RegistryPosition(
                instrument_id=isin,
                isin=isin,
                name=f"Instrument {isin}",
                security_type=security_type,
                quantity=quantity,
                price=price,
                price_currency=currency,
                price_date=price_date or self.default_price_date,
                price_source="TEST",
                market_value=market_value,
                accrued_interest=accrued_interest,
            )
        )

    def add_cash(self, fund_id: str, balance, currency: str = "SEK"):
        accounts = self.cash.setdefault(fund_id, [])
        accounts.append(
            RegistryCashAccount(
                account_id=f"{fund_id}-CASH-{len(accounts) + 1}",
                currency=currency,
                balance=Decimal(str(balance)),
                value_date=self.default_price_date,
            )
        )

    def set_holdings(self, fund_id: str, share_class_id: str, shares):
        self.holdings[(fund_id, share_class_id)] = [
            RegistryHolding(shareholder_id="SH-1", share_class_id=share_class_id, shares=Decimal(str(shares)))
        ]

    def add_order(
        self,
        fund_id: str,
        order_id: str,
        share_class_id: str = "A",
        order_type: str = "REDEMPTION",
        status: str = "PENDING",
        shares=None,
        amount=None,
    ):
        self.orders.setdefault(fund_id, []).append(
            RegistryOrder(
                order_id=order_id,
                shareholder_id="SH-1",
                share_class_id=share_class_id,
                order_type=order_type,
                status=status,
                shares=Decimal(str(shares)) if shares is not None else None,
                amount=Decimal(str(amount)) if amount is not None else None,
                value_date=self.default_price_date,
            )
        )

    def set_reference(self, fund_id: str, share_class_id: str, nav_date: date, nav_per_share, net_asset_value):
        self.references[(fund_id, share_class_id, nav_date)] = ReferenceNAV(
            fund_id=fund_id,
            share_class_id=share_class_id,
            nav_date=nav_date,
            nav_per_share=Decimal(str(nav_per_share)),
            net_asset_value=Decimal(str(net_asset_value)),
            source="ADMINISTRATOR",
        )

    # -- FundRegistry --

    async def list_funds(self):
        if self.list_failure is not None:
            raise self.list_failure
        return list(self.funds.values())

    async def get_fund(self, fund_id):
        return self.funds.get(fund_id)

    async def get_positions(self, fund_id, as_of):
        if fund_id in self.position_failures:
            raise self.position_failures[fund_id]
        return list(self.positions.get(fund_id, []))

    async def get_cash_accounts(self, fund_id, as_of):
        return list(self.cash.get(fund_id, []))

    async def get_receivables(self, fund_id, as_of):
        return list(self.receivables.get(fund_id, []))

    async def get_liabilities(self, fund_id, as_of):
        return list(self.liabilities.get(fund_id, []))

    async def get_holdings(self, fund_id, share_class_id, as_of):
        return list(self.holdings.get((fund_id, share_class_id), []))

    async def get_pending_orders(self, fund_id, as_of):
        return list(self.orders.get(fund_id, []))

    async def get_reference_nav(self, fund_id, share_class_id, nav_date):
        return self.references.get((fund_id, share_class_id, nav_date))

    async def upsert_nav(self, fund_id, share_class_id, nav_date, nav_per_share, net_asset_value):
        self.upserts.append((fund_id, share_class_id, nav_date, nav_per_share, net_asset_value))


class FakeFXProvider:
    def __init__(self):
        self.rates: Dict[Tuple[str, str], Decimal] = {}

    def set_rate(self, base: str, quote: str, rate):
        self.rates[(base, quote)] = Decimal(str(rate))

    async def get_rate(self, base_currency, quote_currency, as_of):
        rate = self.rates.get((base_currency, quote_currency))
        if rate is None:
            return None
        return FXRate(base_currency, quote_currency, rate, as_of, "TEST")


class FakePricingProvider:
    def __init__(self):
        self.quotes: Dict[str, PriceQuote] = {}
        self.requests: List[str] = []

    def set_price(self, isin: str, price, currency: str = "SEK", price_date: date = NAV_DATE):
        self.quotes[isin] = PriceQuote(isin, Decimal(str(price)), currency, price_date, "VENDOR")

    async def get_price(self, isin, as_of):
        self.requests.append(isin)
        return self.quotes.get(isin)


class RecordingNotifier:
    def __init__(self):
        self.reports = []
        self.events = []

    async def send_daily_report(self, run):
        self.reports.append(run)

    async def notify_approval(self, event, approval, actor_name=None):
        self.events.append((event, approval.approval_id, actor_name))


# ============================================================
# Database
# ============================================================

@pytest.fixture()
async def db_engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        future=True,
        echo=False
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture()
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session
        # cleanup
        await session.rollback()
        for table in reversed(Base.metadata.sorted_tables):
            await session.execute(table.delete())
        await session.commit()


# ============================================================
# Collaborators and services
# ============================================================

@pytest.fixture()
def nav_date() -> date:
    return NAV_DATE


@pytest.fixture()
def registry() -> FakeRegistry:
    return FakeRegistry()


@pytest.fixture()
def fx_provider() -> FakeFXProvider:
    return FakeFXProvider()


@pytest.fixture()
def pricing_provider() -> FakePricingProvider:
    return FakePricingProvider()


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def nav_service(session_factory, registry, fx_provider) -> NAVService:
    """Fee-free defaults so expected NAVs are plain sums"""
    return NAVService(
        session_factory=session_factory,
        registry=registry,
        fx_provider=fx_provider,
        default_management_fee_rate=Decimal("0"),
        default_depositary_fee_rate=Decimal("0"),
        default_admin_fee_rate=Decimal("0"),
    )


@pytest.fixture()
def container(session_factory, registry, fx_provider, pricing_provider, notifier):
    return build_container(
        settings,
        session_factory,
        registry=registry,
        fx_provider=fx_provider,
        pricing_provider=pricing_provider,
        notifier=notifier,
    )


@pytest.fixture()
async def app(db_session, container) -> FastAPI:
    app = FastAPI()
    register_exception_handlers(app)
    app.include_router(health.router, tags=["Health"])
    app.include_router(nav.router, prefix="/api/v1/nav", tags=["NAV"])
    app.include_router(approvals.router, prefix="/api/v1/approvals", tags=["Approvals"])
    app.include_router(funds.router, prefix="/api/v1/funds", tags=["Fund Configuration"])

    async def override_get_db():
        try:
            yield db_session
            await db_session.commit()
        except Exception:
            await db_session.rollback()
            raise

    app.dependency_overrides[get_db] = override_get_db
    app.state.container = container

    return app


@pytest.fixture()
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

"""
SERVICE - NAV ORCHESTRATION

RESPONSIBILITIES:
- Assemble a FundSnapshot from the registry, pricing and FX providers
- Run the calculator and persist the result as a NAV record
- Batch all active fund/share classes into one NAVRun
- Verify a calculated NAV against the registry's reference NAV

RULES:
- One session (and transaction) per fund/share-class calculation
- Provider and persistence failures propagate from calculate_nav
- A batch isolates per fund/share-class failures into NAVRun.errors
"""

import logging
import uuid
from dataclasses import replace
from datetime import date
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Set, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.exceptions import FundNotFoundError, NAVRunNotFoundError, ShareClassNotFoundError
from app.domain.models import (
    CashBalance,
    FundConfig,
    FundKey,
    FundSnapshot,
    FXRate,
    NAVComparison,
    NAVRecord,
    NAVRecordChange,
    NAVResult,
    NAVRun,
    NAVRunStatus,
    PendingRedemption,
    PositionValuation,
    Severity,
    ShareClassConfig,
    ValidationIssue,
    asset_class_for,
)
from app.domain.services import fee_engine
from app.domain.services.fx_converter import CROSS_CURRENCIES, FXRateTable
from app.domain.services.nav_calculator import NAVCalculator
from app.domain.services.nav_math import nav_change
from app.infrastructure.db.repositories.fund_config_repository import FundConfigRepository
from app.infrastructure.db.repositories.nav_record_repository import NAVRecordRepository
from app.infrastructure.db.repositories.nav_run_repository import NAVRunRepository
from app.infrastructure.registry.types import (
    FundRegistry,
    FXProvider,
    PricingProvider,
    RegistryCashAccount,
    RegistryFund,
    RegistryOrder,
    RegistryPosition,
)
from app.utils.time import now_utc_naive

logger = logging.getLogger(__name__)

NAV_DEVIATION = "NAV_DEVIATION"
ZERO = Decimal("0")


class NAVService:
    """
    NAV orchestration over injected collaborators.

    session_factory: async_sessionmaker (or any callable returning an AsyncSession context)
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        registry: FundRegistry,
        fx_provider: FXProvider,
        pricing_provider: Optional[PricingProvider] = None,
        calculator: Optional[NAVCalculator] = None,
        default_management_fee_rate: Decimal = Decimal("0.015"),
        default_depositary_fee_rate: Decimal = Decimal("0.0005"),
        default_admin_fee_rate: Decimal = Decimal("0.001"),
        fallback_shares_outstanding: Decimal = ZERO,
        verify_tolerance_pct: Decimal = Decimal("0.01"),
    ):
        self.session_factory = session_factory
        self.registry = registry
        self.fx_provider = fx_provider
        self.pricing_provider = pricing_provider
        self.calculator = calculator or NAVCalculator()
        self.default_management_fee_rate = default_management_fee_rate
        self.default_depositary_fee_rate = default_depositary_fee_rate
        self.default_admin_fee_rate = default_admin_fee_rate
        self.fallback_shares_outstanding = fallback_shares_outstanding
        self.verify_tolerance_pct = verify_tolerance_pct

    # ============================================================
    # Single calculation
    # ============================================================

    async def calculate_nav(
        self,
        fund_id: str,
        share_class_id: str,
        nav_date: date,
        persist: bool = True,
    ) -> NAVResult:
        """Calculate one fund/share-class NAV; persisted as a NAV record unless persist=False"""
        logger.info("NAV_CALCULATION_STARTED | fund=%s/%s | nav_date=%s", fund_id, share_class_id, nav_date)

        async with self.session_factory() as session:
            records = NAVRecordRepository(session)
            key = FundKey(fund_id, share_class_id)

            fund = await self.registry.get_fund(fund_id)
            if fund is None:
                raise FundNotFoundError(fund_id)
            if fund.share_class(share_class_id) is None:
                raise ShareClassNotFoundError(fund_id, share_class_id)

            config = await self._fund_config(session, fund)
            previous = await records.get_latest_before(key, nav_date)
            snapshot = await self.build_snapshot(fund, config, share_class_id, nav_date, previous)

            result = self.calculator.calculate_with_comparison(
                snapshot,
                previous.nav_per_share if previous else None,
                calculated_at=now_utc_naive(),
            )

            reference = await self.registry.get_reference_nav(fund_id, share_class_id, nav_date)
            if reference is not None:
                diff, diff_pct = nav_change(result.nav_per_share, reference.nav_per_share)
                if abs(diff_pct) > self.verify_tolerance_pct:
                    result = replace(result, warnings=result.warnings + (
                        ValidationIssue(
                            code=NAV_DEVIATION,
                            severity=Severity.WARNING,
                            message=(
                                f"NAV per share deviates {diff_pct:.4f}% from "
                                f"{reference.source} reference {reference.nav_per_share}"
                            ),
                            field_name="nav_per_share",
                            details={
                                "calculated": result.nav_per_share,
                                "reference": reference.nav_per_share,
                                "difference": diff,
                                "source": reference.source,
                            },
                        ),
                    ))

            if persist:
                await records.save_result(result)
                await session.commit()

        logger.info(
            "NAV_CALCULATED | fund=%s | nav_date=%s | nav_per_share=%s | status=%s | persisted=%s",
            key, nav_date, result.nav_per_share, result.status.value, persist,
        )
        return result

    # ============================================================
    # Batch
    # ============================================================

    async def run_daily_nav(
        self,
        nav_date: date,
        triggered_by: str = "MANUAL",
        attempt: int = 1,
    ) -> NAVRun:
        """
        Calculate every active share class of every active fund.

        One fund/share-class failure is recorded and the batch continues.
        """
        run = NAVRun(
            run_id=str(uuid.uuid4()),
            nav_date=nav_date,
            started_at=now_utc_naive(),
            status=NAVRunStatus.IN_PROGRESS,
            triggered_by=triggered_by,
            attempt=attempt,
        )
        async with self.session_factory() as session:
            await NAVRunRepository(session).create(run)
            await session.commit()

        logger.info(
            "NAV_RUN_STARTED | run_id=%s | nav_date=%s | triggered_by=%s | attempt=%s",
            run.run_id, nav_date, triggered_by, attempt,
        )

        try:
            funds = await self.registry.list_funds()
            pairs: List[Tuple[RegistryFund, str]] = [
                (fund, sc.share_class_id)
                for fund in funds if fund.active
                for sc in fund.share_classes if sc.active
            ]
            run.total_funds = len(pairs)

            for fund, share_class_id in pairs:
                key = FundKey(fund.fund_id, share_class_id)
                try:
                    result = await self.calculate_nav(fund.fund_id, share_class_id, nav_date)
                    run.add_result(result)
                except Exception as exc:
                    logger.exception("NAV_FUND_FAILED | run_id=%s | fund=%s | error=%s", run.run_id, key, exc)
                    run.add_error(key, str(exc))

            run.status = NAVRunStatus.FAILED if run.failed_funds > 0 else NAVRunStatus.AWAITING_APPROVAL
        except Exception as exc:
            logger.exception("NAV_RUN_FATAL | run_id=%s | error=%s", run.run_id, exc)
            run.status = NAVRunStatus.FAILED
            run.errors.append(f"Fatal error: {exc}")

        run.completed_at = now_utc_naive()
        await self.save_run(run)

        logger.info(
            "NAV_RUN_COMPLETED | run_id=%s | status=%s | completed=%s/%s | failed=%s | duration_ms=%s",
            run.run_id, run.status.value, run.completed_funds, run.total_funds,
            run.failed_funds, run.duration_ms,
        )
        return run

    async def save_run(self, run: NAVRun) -> None:
        async with self.session_factory() as session:
            await NAVRunRepository(session).save(run)
            await session.commit()

    # ============================================================
    # Verification
    # ============================================================

    async def verify_nav(
        self,
        fund_id: str,
        share_class_id: str,
        nav_date: date,
        tolerance_pct: Optional[Decimal] = None,
    ) -> NAVComparison:
        """Recalculate (without persisting) and diff against the registry reference"""
        tolerance = self.verify_tolerance_pct if tolerance_pct is None else tolerance_pct
        calculated = await self.calculate_nav(fund_id, share_class_id, nav_date, persist=False)
        reference = await self.registry.get_reference_nav(fund_id, share_class_id, nav_date)

        if reference is None:
            logger.warning("NAV_VERIFY_NO_REFERENCE | fund=%s/%s | nav_date=%s", fund_id, share_class_id, nav_date)
            return NAVComparison(
                fund_id=fund_id,
                share_class_id=share_class_id,
                nav_date=nav_date,
                calculated=calculated,
                reference_source=None,
                reference_nav_per_share=None,
                reference_net_asset_value=None,
                nav_per_share_difference=None,
                nav_per_share_difference_percent=None,
                net_asset_value_difference=None,
                net_asset_value_difference_percent=None,
                within_tolerance=False,
                tolerance_percent=tolerance,
            )

        nav_diff, nav_diff_pct = nav_change(calculated.nav_per_share, reference.nav_per_share)
        total_diff, total_diff_pct = nav_change(calculated.net_asset_value, reference.net_asset_value)
        within = abs(nav_diff_pct) <= tolerance

        logger.info(
            "NAV_VERIFIED | fund=%s/%s | nav_date=%s | diff_pct=%s | within_tolerance=%s",
            fund_id, share_class_id, nav_date, nav_diff_pct, within,
        )
        return NAVComparison(
            fund_id=fund_id,
            share_class_id=share_class_id,
            nav_date=nav_date,
            calculated=calculated,
            reference_source=reference.source,
            reference_nav_per_share=reference.nav_per_share,
            reference_net_asset_value=reference.net_asset_value,
            nav_per_share_difference=nav_diff,
            nav_per_share_difference_percent=nav_diff_pct,
            net_asset_value_difference=total_diff,
            net_asset_value_difference_percent=total_diff_pct,
            within_tolerance=within,
            tolerance_percent=tolerance,
        )

    # ============================================================
    # Queries
    # ============================================================

    async def get_record(self, key: FundKey, nav_date: date) -> Optional[NAVRecord]:
        async with self.session_factory() as session:
            return await NAVRecordRepository(session).get(key, nav_date)

    async def list_records(
        self,
        key: FundKey,
        start: Optional[date] = None,
        end: Optional[date] = None,
        limit: int = 100,
    ) -> List[NAVRecord]:
        async with self.session_factory() as session:
            return await NAVRecordRepository(session).list_for_fund(key, start, end, limit)

    async def get_record_history(self, key: FundKey, nav_date: date) -> List[NAVRecordChange]:
        async with self.session_factory() as session:
            return await NAVRecordRepository(session).history(key, nav_date)

    async def get_run(self, run_id: str) -> NAVRun:
        async with self.session_factory() as session:
            run = await NAVRunRepository(session).get(run_id)
        if run is None:
            raise NAVRunNotFoundError(f"NAV run not found: {run_id}")
        return run

    async def get_latest_run(self, nav_date: date) -> Optional[NAVRun]:
        async with self.session_factory() as session:
            return await NAVRunRepository(session).get_latest_for_date(nav_date)

    async def list_runs(self, limit: int = 20) -> List[NAVRun]:
        async with self.session_factory() as session:
            return await NAVRunRepository(session).list_recent(limit)

    # ============================================================
    # Snapshot assembly
    # ============================================================

    async def build_snapshot(
        self,
        fund: RegistryFund,
        config: FundConfig,
        share_class_id: str,
        nav_date: date,
        previous: Optional[NAVRecord] = None,
    ) -> FundSnapshot:
        fund_ccy = fund.currency.upper()

        raw_positions = await self.registry.get_positions(fund.fund_id, nav_date)
        raw_positions = [await self._refresh_price(p, nav_date) for p in raw_positions]
        cash_accounts = await self.registry.get_cash_accounts(fund.fund_id, nav_date)
        receivables = await self.registry.get_receivables(fund.fund_id, nav_date)
        liabilities = await self.registry.get_liabilities(fund.fund_id, nav_date)
        orders = await self.registry.get_pending_orders(fund.fund_id, nav_date)

        currencies: Set[str] = set()
        currencies.update(p.price_currency.upper() for p in raw_positions)
        currencies.update(c.currency.upper() for c in cash_accounts)
        currencies.update(r.currency.upper() for r in receivables)
        currencies.update(l.currency.upper() for l in liabilities)
        currencies.discard(fund_ccy)
        fx_rates = await self._resolve_fx_rates(sorted(currencies), fund_ccy, nav_date)
        table = FXRateTable(fx_rates)

        positions = tuple(self._to_valuation(p, table, fund_ccy) for p in raw_positions)
        cash = tuple(self._to_cash_balance(c, table, fund_ccy) for c in cash_accounts)

        shares = await self._shares_outstanding(fund.fund_id, share_class_id, nav_date, previous)
        redemptions = tuple(self._pending_redemptions(orders, share_class_id, previous))

        aum = sum(
            (p.market_value_fund_currency or p.market_value for p in positions), ZERO
        ) + sum((c.balance_fund_currency or c.balance for c in cash), ZERO)
        accrued_fees = fee_engine.build_accrued_fees(config, share_class_id, aum, nav_date)

        snapshot = FundSnapshot(
            fund_id=fund.fund_id,
            share_class_id=share_class_id,
            valuation_date=nav_date,
            fund_currency=fund_ccy,
            shares_outstanding=shares,
            management_fee_rate=config.management_fee_for(share_class_id),
            performance_fee_rate=config.performance_fee_for(share_class_id),
            high_water_mark=config.high_water_mark,
            positions=positions,
            cash_balances=cash,
            receivables=tuple(receivables),
            liabilities=tuple(liabilities),
            accrued_fees=tuple(accrued_fees),
            pending_redemptions=redemptions,
            fx_rates=tuple(fx_rates),
        )

        if config.performance_fee_type is None or shares <= ZERO:
            return snapshot

        # Performance fee is measured on NAV/share before the fee itself
        estimate = self.calculator.calculate(snapshot, log_fallbacks=False)
        perf_fee = fee_engine.build_performance_fee(
            config,
            share_class_id,
            estimate.nav_per_share,
            shares,
            nav_date,
            previous_nav_per_share=previous.nav_per_share if previous else None,
            previous_nav_date=previous.nav_date if previous else None,
        )
        if perf_fee is None:
            return snapshot
        return replace(snapshot, accrued_fees=snapshot.accrued_fees + (perf_fee,))

    async def _fund_config(self, session: AsyncSession, fund: RegistryFund) -> FundConfig:
        stored = await FundConfigRepository(session).get(fund.fund_id)
        if stored is not None:
            return stored

        first_fee = next(
            (sc.management_fee_rate for sc in fund.share_classes if sc.management_fee_rate is not None),
            None,
        )
        return FundConfig(
            fund_id=fund.fund_id,
            name=fund.name,
            currency=fund.currency,
            fund_type=fund.fund_type,
            management_fee_rate=first_fee if first_fee is not None else self.default_management_fee_rate,
            depositary_fee_rate=self.default_depositary_fee_rate,
            admin_fee_rate=self.default_admin_fee_rate,
            share_classes=[
                ShareClassConfig(
                    share_class_id=sc.share_class_id,
                    name=sc.name,
                    currency=sc.currency,
                    isin=sc.isin,
                    hedged=sc.hedged,
                    active=sc.active,
                    management_fee_rate=sc.management_fee_rate,
                    performance_fee_rate=sc.performance_fee_rate,
                    distribution_policy=sc.distribution_policy,
                )
                for sc in fund.share_classes
            ],
        )

    def _is_stale(self, position: RegistryPosition, nav_date: date) -> bool:
        if position.price is None or position.price <= ZERO or position.price_date is None:
            return True
        return (nav_date - position.price_date).days > self.calculator.thresholds.stale_price_days

    async def _refresh_price(self, position: RegistryPosition, nav_date: date) -> RegistryPosition:
        if self.pricing_provider is None or not position.isin or not self._is_stale(position, nav_date):
            return position

        quote = await self.pricing_provider.get_price(position.isin, nav_date)
        if quote is None or quote.price <= ZERO:
            return position

        logger.info(
            "PRICE_REFRESHED | isin=%s | old=%s@%s | new=%s@%s | source=%s",
            position.isin, position.price, position.price_date, quote.price, quote.price_date, quote.source,
        )
        return replace(
            position,
            price=quote.price,
            price_currency=quote.currency,
            price_date=quote.price_date,
            price_source=quote.source,
            market_value=position.quantity * quote.price,
            market_value_fund_currency=None,
        )

    async def _resolve_fx_rates(self, currencies: List[str], fund_ccy: str, nav_date: date) -> List[FXRate]:
        """Direct ccy/fund rate, else both legs of a USD or EUR cross"""
        fetched: Dict[Tuple[str, str], Optional[FXRate]] = {}

        async def fetch(base: str, quote: str) -> Optional[FXRate]:
            if (base, quote) not in fetched:
                fetched[(base, quote)] = await self.fx_provider.get_rate(base, quote, nav_date)
            return fetched[(base, quote)]

        rates: List[FXRate] = []
        for ccy in currencies:
            direct = await fetch(ccy, fund_ccy)
            if direct is not None:
                rates.append(direct)
                continue

            legs = None
            for via in CROSS_CURRENCIES:
                if via in (ccy, fund_ccy):
                    continue
                first = await fetch(ccy, via)
                second = await fetch(via, fund_ccy) if first is not None else None
                if first is not None and second is not None:
                    legs = (first, second)
                    break

            if legs is None:
                logger.warning("FX_RATE_UNAVAILABLE | pair=%s/%s | nav_date=%s", ccy, fund_ccy, nav_date)
                continue
            logger.info(
                "FX_CROSS_RATE | pair=%s/%s | via=%s | nav_date=%s",
                ccy, fund_ccy, legs[0].quote_currency, nav_date,
            )
            rates.extend(leg for leg in legs if leg not in rates)
        return rates

    @staticmethod
    def _to_valuation(p: RegistryPosition, table: FXRateTable, fund_ccy: str) -> PositionValuation:
        return PositionValuation(
            instrument_id=p.instrument_id,
            isin=p.isin,
            name=p.name,
            quantity=p.quantity,
            price=p.price,
            price_currency=p.price_currency,
            price_date=p.price_date,
            price_source=p.price_source,
            market_value=p.market_value,
            asset_class=asset_class_for(p.security_type),
            security_type=p.security_type,
            market_value_fund_currency=table.convert(p.market_value, p.price_currency, fund_ccy),
            accrued_interest=p.accrued_interest,
            accrued_dividend=p.accrued_dividend,
        )

    @staticmethod
    def _to_cash_balance(c: RegistryCashAccount, table: FXRateTable, fund_ccy: str) -> CashBalance:
        return CashBalance(
            account_id=c.account_id,
            account_name=c.account_name,
            currency=c.currency,
            balance=c.balance,
            value_date=c.value_date,
            balance_fund_currency=table.convert(c.balance, c.currency, fund_ccy),
        )

    async def _shares_outstanding(
        self,
        fund_id: str,
        share_class_id: str,
        nav_date: date,
        previous: Optional[NAVRecord],
    ) -> Decimal:
        """Latest persisted record, else summed holdings, else the configured fallback"""
        if previous is not None and previous.shares_outstanding > ZERO:
            return previous.shares_outstanding

        holdings = await self.registry.get_holdings(fund_id, share_class_id, nav_date)
        total = sum((h.shares for h in holdings), ZERO)
        if total > ZERO:
            return total

        logger.warning(
            "SHARES_OUTSTANDING_FALLBACK | fund=%s/%s | nav_date=%s | fallback=%s",
            fund_id, share_class_id, nav_date, self.fallback_shares_outstanding,
        )
        return self.fallback_shares_outstanding

    @staticmethod
    def _pending_redemptions(
        orders: List[RegistryOrder],
        share_class_id: str,
        previous: Optional[NAVRecord],
    ):
        for order in orders:
            if order.order_type != "REDEMPTION" or order.status != "PENDING":
                continue
            if order.share_class_id and order.share_class_id != share_class_id:
                continue
            shares = order.shares or ZERO
            if order.amount is not None:
                estimated = order.amount
            elif previous is not None:
                estimated = shares * previous.nav_per_share
            else:
                estimated = ZERO
            yield PendingRedemption(
                order_id=order.order_id,
                shareholder_id=order.shareholder_id,
                shares=shares,
                estimated_amount=estimated,
                value_date=order.value_date,
            )

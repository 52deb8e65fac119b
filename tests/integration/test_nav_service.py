"""
NAV orchestration against an in-memory registry and a real database.

✅ Snapshot assembly (shares, redemptions, prices, FX, fees)
✅ Batch isolation of per-fund failures
✅ Verification against the reference NAV
"""

from datetime import date, timedelta
from decimal import Decimal

import pytest

from app.domain.exceptions import FundNotFoundError, NAVRunNotFoundError, ShareClassNotFoundError
from app.domain.models import (
    CalculationStatus,
    FundConfig,
    FundKey,
    NAVRecordStatus,
    NAVRunStatus,
    PerformanceFeeType,
)
from app.infrastructure.db.repositories.fund_config_repository import FundConfigRepository
from app.services.nav_service import NAV_DEVIATION, NAVService

KEY = FundKey("F1", "A")


def codes(issues):
    return [issue.code for issue in issues]


def seed_basic_fund(registry, fund_id: str = "F1"):
    registry.add_fund(fund_id)
    registry.add_position(fund_id, "SE0000000101", 1_000_000)
    registry.add_cash(fund_id, 500_000)
    registry.set_holdings(fund_id, "A", 10_000)


async def store_config(session_factory, config: FundConfig) -> None:
    async with session_factory() as session:
        await FundConfigRepository(session).upsert(config)
        await session.commit()


# ============================================================
# Single calculation
# ============================================================

@pytest.mark.asyncio
@pytest.mark.integration
async def test_basic_nav_is_persisted_as_preliminary(nav_service, registry, nav_date):
    seed_basic_fund(registry)

    result = await nav_service.calculate_nav("F1", "A", nav_date)

    assert result.gross_assets == Decimal("1500000")
    assert result.net_asset_value == Decimal("1500000")
    assert result.nav_per_share == Decimal("150")
    assert result.status == CalculationStatus.VALID

    record = await nav_service.get_record(KEY, nav_date)
    assert record.status == NAVRecordStatus.PRELIMINARY
    assert record.nav_per_share == Decimal("150")


@pytest.mark.asyncio
@pytest.mark.integration
async def test_unknown_fund_and_share_class(nav_service, registry, nav_date):
    registry.add_fund("F1")

    with pytest.raises(FundNotFoundError):
        await nav_service.calculate_nav("NOPE", "A", nav_date)
    with pytest.raises(ShareClassNotFoundError):
        await nav_service.calculate_nav("F1", "Z", nav_date)


@pytest.mark.asyncio
@pytest.mark.integration
async def test_calculation_without_persist(nav_service, registry, nav_date):
    seed_basic_fund(registry)

    await nav_service.calculate_nav("F1", "A", nav_date, persist=False)

    assert await nav_service.get_record(KEY, nav_date) is None


@pytest.mark.asyncio
@pytest.mark.integration
async def test_recalculation_keeps_history(nav_service, registry, nav_date):
    seed_basic_fund(registry)
    await nav_service.calculate_nav("F1", "A", nav_date)
    registry.add_cash("F1", 100_000)

    await nav_service.calculate_nav("F1", "A", nav_date)

    records = await nav_service.list_records(KEY)
    history = await nav_service.get_record_history(KEY, nav_date)
    assert len(records) == 1
    assert records[0].nav_per_share == Decimal("160")
    assert records[0].version == 2
    assert [h.nav_per_share for h in history] == [Decimal("150")]


# ============================================================
# Shares outstanding
# ============================================================

@pytest.mark.asyncio
@pytest.mark.integration
async def test_shares_come_from_previous_record(nav_service, registry, nav_date):
    seed_basic_fund(registry)
    await nav_service.calculate_nav("F1", "A", nav_date - timedelta(days=1))
    registry.set_holdings("F1", "A", 5_000)

    result = await nav_service.calculate_nav("F1", "A", nav_date)

    assert result.shares_outstanding == Decimal("10000")
    assert result.previous_nav_per_share == Decimal("150")


@pytest.mark.asyncio
@pytest.mark.integration
async def test_missing_shares_fall_back_and_error(nav_service, registry, nav_date):
    registry.add_fund("F1")
    registry.add_cash("F1", 500_000)

    result = await nav_service.calculate_nav("F1", "A", nav_date)

    assert result.shares_outstanding == Decimal("0")
    assert result.nav_per_share == Decimal("0")
    assert result.status == CalculationStatus.ERRORS
    assert "INVALID_SHARES" in codes(result.errors)


# ============================================================
# Pending redemptions
# ============================================================

@pytest.mark.asyncio
@pytest.mark.integration
async def test_redemption_with_amount_is_a_liability(nav_service, registry, nav_date):
    seed_basic_fund(registry)
    registry.add_order("F1", "R1", amount=50_000)
    registry.add_order("F1", "R2", share_class_id="I", amount=70_000)
    registry.add_order("F1", "S1", order_type="SUBSCRIPTION", amount=90_000)
    registry.add_order("F1", "R3", status="SETTLED", amount=10_000)

    result = await nav_service.calculate_nav("F1", "A", nav_date)

    assert result.total_liabilities == Decimal("50000")
    assert result.nav_per_share == Decimal("145")


@pytest.mark.asyncio
@pytest.mark.integration
async def test_redemption_in_shares_uses_previous_nav(nav_service, registry, nav_date):
    seed_basic_fund(registry)
    await nav_service.calculate_nav("F1", "A", nav_date - timedelta(days=1))
    registry.add_order("F1", "R1", shares=100)

    result = await nav_service.calculate_nav("F1", "A", nav_date)

    assert result.total_liabilities == Decimal("15000")
    assert result.nav_per_share == Decimal("148.5")


# ============================================================
# Prices and FX
# ============================================================

@pytest.mark.asyncio
@pytest.mark.integration
async def test_stale_price_is_refreshed(session_factory, registry, fx_provider, pricing_provider, nav_date):
    registry.add_fund("F1")
    registry.add_position("F1", "SE0000000101", 1_000_000, quantity=100, price_date=nav_date - timedelta(days=5))
    registry.add_position("F1", "SE0000000202", 200_000, quantity=100)
    registry.set_holdings("F1", "A", 10_000)
    pricing_provider.set_price("SE0000000101", 11_000)
    service = NAVService(
        session_factory=session_factory,
        registry=registry,
        fx_provider=fx_provider,
        pricing_provider=pricing_provider,
        default_management_fee_rate=Decimal("0"),
        default_depositary_fee_rate=Decimal("0"),
        default_admin_fee_rate=Decimal("0"),
    )

    result = await service.calculate_nav("F1", "A", nav_date)

    assert pricing_provider.requests == ["SE0000000101"]
    assert result.gross_assets == Decimal("1300000")
    assert "STALE_PRICES" not in codes(result.warnings)


@pytest.mark.asyncio
@pytest.mark.integration
async def test_stale_price_without_provider_is_a_warning(nav_service, registry, nav_date):
    registry.add_fund("F1")
    registry.add_position("F1", "SE0000000101", 1_000_000, price_date=nav_date - timedelta(days=5))
    registry.set_holdings("F1", "A", 10_000)

    result = await nav_service.calculate_nav("F1", "A", nav_date)

    assert result.status == CalculationStatus.WARNINGS
    assert "STALE_PRICES" in codes(result.warnings)


@pytest.mark.asyncio
@pytest.mark.integration
async def test_foreign_positions_are_converted(nav_service, registry, fx_provider, nav_date):
    seed_basic_fund(registry)
    registry.add_position("F1", "US0000000101", 10_000, currency="USD")
    fx_provider.set_rate("USD", "SEK", 10)

    result = await nav_service.calculate_nav("F1", "A", nav_date)

    assert result.gross_assets == Decimal("1600000")
    assert result.status == CalculationStatus.VALID


@pytest.mark.asyncio
@pytest.mark.integration
async def test_missing_fx_rate_is_a_warning(nav_service, registry, nav_date):
    seed_basic_fund(registry)
    registry.add_cash("F1", 1_000, currency="JPY")

    result = await nav_service.calculate_nav("F1", "A", nav_date)

    assert codes(result.warnings) == ["MISSING_FX_RATE"]


@pytest.mark.asyncio
@pytest.mark.integration
async def test_missing_direct_rate_uses_usd_cross(nav_service, registry, fx_provider, nav_date):
    registry.add_fund("F1")
    registry.add_position("F1", "NO0000000101", 1_000, currency="NOK")
    registry.set_holdings("F1", "A", 10)
    fx_provider.set_rate("NOK", "USD", "0.1")
    fx_provider.set_rate("USD", "SEK", 10)

    result = await nav_service.calculate_nav("F1", "A", nav_date)

    assert result.gross_assets == Decimal("1000")
    assert result.warnings == ()


@pytest.mark.asyncio
@pytest.mark.integration
async def test_cross_falls_back_to_eur_legs(nav_service, registry, fx_provider, nav_date):
    registry.add_fund("F1")
    registry.add_cash("F1", 2_000, currency="DKK")
    registry.set_holdings("F1", "A", 10)
    fx_provider.set_rate("DKK", "USD", "0.15")
    fx_provider.set_rate("DKK", "EUR", "0.134")
    fx_provider.set_rate("EUR", "SEK", "11")

    result = await nav_service.calculate_nav("F1", "A", nav_date)

    assert result.gross_assets == Decimal("2948.000")
    assert "MISSING_FX_RATE" not in codes(result.warnings)


# ============================================================
# Fees from stored configuration
# ============================================================

@pytest.mark.asyncio
@pytest.mark.integration
async def test_management_fee_from_stored_config(nav_service, session_factory, registry):
    nav_date = date(2026, 1, 10)
    registry.add_fund("F1")
    registry.add_cash("F1", 3_650_000)
    registry.set_holdings("F1", "A", 10_000)
    await store_config(session_factory, FundConfig(
        fund_id="F1", name="Fund One", currency="SEK", management_fee_rate=Decimal("0.0365"),
    ))

    result = await nav_service.calculate_nav("F1", "A", nav_date)

    assert result.total_liabilities == Decimal("3650")
    assert result.net_asset_value == Decimal("3646350")


@pytest.mark.asyncio
@pytest.mark.integration
async def test_performance_fee_above_high_water_mark(nav_service, session_factory, registry, nav_date):
    seed_basic_fund(registry)
    await store_config(session_factory, FundConfig(
        fund_id="F1",
        name="Fund One",
        currency="SEK",
        management_fee_rate=Decimal("0"),
        performance_fee_rate=Decimal("0.2"),
        performance_fee_type=PerformanceFeeType.HIGH_WATER_MARK,
        high_water_mark=Decimal("100"),
    ))

    result = await nav_service.calculate_nav("F1", "A", nav_date)

    assert result.total_liabilities == Decimal("100000")
    assert result.nav_per_share == Decimal("140")


@pytest.mark.asyncio
@pytest.mark.integration
async def test_performance_fee_above_hurdle_since_previous_nav(nav_service, session_factory, registry, nav_date):
    seed_basic_fund(registry)
    await store_config(session_factory, FundConfig(
        fund_id="F1",
        name="Fund One",
        currency="SEK",
        management_fee_rate=Decimal("0"),
        performance_fee_rate=Decimal("0.2"),
        performance_fee_type=PerformanceFeeType.HURDLE_RATE,
        hurdle_rate=Decimal("0.1"),
    ))
    first = await nav_service.calculate_nav("F1", "A", nav_date - timedelta(days=73))
    assert first.nav_per_share == Decimal("150")
    registry.add_cash("F1", 60_000)

    result = await nav_service.calculate_nav("F1", "A", nav_date)

    # hurdle 150 x (1 + 0.1 x 73/365) = 153; fee (156 - 153) x 0.2 x 10,000
    assert result.breakdown.liabilities.performance_fee == Decimal("6000")
    assert result.total_liabilities == Decimal("6000")
    assert result.nav_per_share == Decimal("155.4")


@pytest.mark.asyncio
@pytest.mark.integration
async def test_no_hurdle_fee_without_previous_nav(nav_service, session_factory, registry, nav_date):
    seed_basic_fund(registry)
    await store_config(session_factory, FundConfig(
        fund_id="F1",
        name="Fund One",
        currency="SEK",
        management_fee_rate=Decimal("0"),
        performance_fee_rate=Decimal("0.2"),
        performance_fee_type=PerformanceFeeType.HURDLE_RATE,
        hurdle_rate=Decimal("0.1"),
    ))

    result = await nav_service.calculate_nav("F1", "A", nav_date)

    assert result.breakdown.liabilities.performance_fee == Decimal("0")
    assert result.nav_per_share == Decimal("150")


# ============================================================
# Movement and reference checks
# ============================================================

@pytest.mark.asyncio
@pytest.mark.integration
async def test_large_movement_is_an_error(nav_service, registry, nav_date):
    seed_basic_fund(registry)
    await nav_service.calculate_nav("F1", "A", nav_date - timedelta(days=1))
    registry.add_cash("F1", 300_000)

    result = await nav_service.calculate_nav("F1", "A", nav_date)

    assert result.nav_change_percent == Decimal("20")
    assert "NAV_MOVEMENT_LIMIT" in codes(result.errors)


@pytest.mark.asyncio
@pytest.mark.integration
async def test_reference_deviation_is_a_warning(nav_service, registry, nav_date):
    seed_basic_fund(registry)
    registry.set_reference("F1", "A", nav_date, 140, 1_400_000)

    result = await nav_service.calculate_nav("F1", "A", nav_date)

    assert codes(result.warnings) == [NAV_DEVIATION]
    assert (await nav_service.get_record(KEY, nav_date)).calculation_status == CalculationStatus.WARNINGS


@pytest.mark.asyncio
@pytest.mark.integration
async def test_verify_within_tolerance(nav_service, registry, nav_date):
    seed_basic_fund(registry)
    registry.set_reference("F1", "A", nav_date, "150.01", 1_500_100)

    comparison = await nav_service.verify_nav("F1", "A", nav_date)

    assert comparison.within_tolerance
    assert comparison.reference_source == "ADMINISTRATOR"
    assert comparison.nav_per_share_difference == Decimal("-0.01")
    assert await nav_service.get_record(KEY, nav_date) is None


@pytest.mark.asyncio
@pytest.mark.integration
async def test_verify_outside_tolerance(nav_service, registry, nav_date):
    seed_basic_fund(registry)
    registry.set_reference("F1", "A", nav_date, 149, 1_490_000)

    comparison = await nav_service.verify_nav("F1", "A", nav_date)
    relaxed = await nav_service.verify_nav("F1", "A", nav_date, tolerance_pct=Decimal("1"))

    assert not comparison.within_tolerance
    assert comparison.net_asset_value_difference == Decimal("10000")
    assert relaxed.within_tolerance


@pytest.mark.asyncio
@pytest.mark.integration
async def test_verify_without_reference(nav_service, registry, nav_date):
    seed_basic_fund(registry)

    comparison = await nav_service.verify_nav("F1", "A", nav_date)

    assert comparison.reference_nav_per_share is None
    assert comparison.within_tolerance is False


# ============================================================
# Batch runs
# ============================================================

@pytest.mark.asyncio
@pytest.mark.integration
async def test_batch_isolates_failing_fund(nav_service, registry, nav_date):
    seed_basic_fund(registry, "F1")
    seed_basic_fund(registry, "F2")
    registry.add_fund("F3", active=False)
    registry.position_failures["F2"] = RuntimeError("positions unavailable")

    run = await nav_service.run_daily_nav(nav_date)

    assert run.status == NAVRunStatus.FAILED
    assert run.total_funds == 2
    assert run.completed_funds == 1
    assert run.failed_funds == 1
    assert run.errors == ["F2/A: positions unavailable"]
    assert await nav_service.get_record(KEY, nav_date) is not None

    stored = await nav_service.get_latest_run(nav_date)
    assert stored.run_id == run.run_id
    assert stored.status == NAVRunStatus.FAILED
    assert stored.completed_at is not None


@pytest.mark.asyncio
@pytest.mark.integration
async def test_batch_awaits_approval_when_all_succeed(nav_service, registry, nav_date):
    seed_basic_fund(registry, "F1")
    registry.add_fund("F2", share_classes=("A", "I"))
    registry.add_cash("F2", 100_000)
    registry.set_holdings("F2", "A", 1_000)
    registry.set_holdings("F2", "I", 500)

    run = await nav_service.run_daily_nav(nav_date, triggered_by="SCHEDULER")

    assert run.status == NAVRunStatus.AWAITING_APPROVAL
    assert [str(line.key) for line in run.summary] == ["F1/A", "F2/A", "F2/I"]
    assert (await nav_service.get_run(run.run_id)).triggered_by == "SCHEDULER"
    assert len(await nav_service.list_runs()) == 1


@pytest.mark.asyncio
@pytest.mark.integration
async def test_fatal_registry_failure(nav_service, registry, nav_date):
    registry.list_failure = RuntimeError("registry down")

    run = await nav_service.run_daily_nav(nav_date)

    assert run.status == NAVRunStatus.FAILED
    assert run.errors == ["Fatal error: registry down"]


@pytest.mark.asyncio
@pytest.mark.integration
async def test_unknown_run(nav_service):
    with pytest.raises(NAVRunNotFoundError):
        await nav_service.get_run("missing")

"""
NAV CALCULATOR
Pure valuation of one fund/share-class snapshot

RESPONSIBILITIES:
- Aggregate assets by class, liabilities by type, accruals (informational)
- NAV = gross assets - total liabilities, NAV/share = NAV / shares
- Attach validation errors and warnings
- Record every step in the audit trail

RULES:
❌ No I/O, no clock reads
❌ Never raises for business-data problems (returns errors/warnings)
✅ Decimal arithmetic, no rounding
✅ Deterministic: same snapshot -> same result
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Set

from app.domain.exceptions import InvalidSnapshotError
from app.domain.models import (
    AccrualBreakdown,
    AssetBreakdown,
    AssetClass,
    CalculationStep,
    FundSnapshot,
    LiabilityBreakdown,
    LiabilityType,
    NAVBreakdown,
    NAVResult,
    ReceivableType,
    Severity,
    ValidationIssue,
)
from app.domain.services.fx_converter import FXRateTable
from app.domain.services.nav_math import validate_nav_consistency

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
HUNDRED = Decimal("100")

# Validation codes
NEGATIVE_NAV = "NEGATIVE_NAV"
INVALID_SHARES = "INVALID_SHARES"
MISSING_PRICES = "MISSING_PRICES"
STALE_PRICES = "STALE_PRICES"
MISSING_FX_RATE = "MISSING_FX_RATE"
LARGE_NAV_MOVEMENT = "LARGE_NAV_MOVEMENT"
NAV_MOVEMENT_LIMIT = "NAV_MOVEMENT_LIMIT"
INCONSISTENT_NAV = "INCONSISTENT_NAV"

_ASSET_FIELD = {
    AssetClass.EQUITIES: "equities",
    AssetClass.FIXED_INCOME: "fixed_income",
    AssetClass.FUNDS: "funds",
    AssetClass.DERIVATIVES: "derivatives",
    AssetClass.CASH: "cash",
    AssetClass.OTHER: "other",
}

_LIABILITY_FIELD = {
    LiabilityType.MANAGEMENT_FEE: "management_fee",
    LiabilityType.PERFORMANCE_FEE: "performance_fee",
    LiabilityType.DEPOSITARY_FEE: "depositary_fee",
    LiabilityType.ADMIN_FEE: "admin_fee",
    LiabilityType.AUDIT_FEE: "audit_fee",
    LiabilityType.TAX: "tax",
    LiabilityType.PENDING_PURCHASE: "pending_purchases",
    LiabilityType.OTHER: "other",
}


@dataclass(frozen=True)
class ValidationThresholds:
    """Policy limits for warnings and errors"""
    warning_change_pct: Decimal = Decimal("5")
    error_change_pct: Decimal = Decimal("10")
    stale_price_days: int = 2


class _Conversion:
    """Per-calculation converter that records unresolved currencies once"""

    def __init__(self, snapshot: FundSnapshot, log_fallbacks: bool = True):
        self.log_fallbacks = log_fallbacks
        self.fund_currency = snapshot.fund_currency.upper()
        self.table = FXRateTable(snapshot.fx_rates)
        self.missing: List[str] = []
        self._seen: Set[str] = set()
        self._fund = str(snapshot.key)

    def __call__(self, amount: Decimal, currency: str) -> Decimal:
        converted = self.table.convert(amount, currency, self.fund_currency)
        if converted is not None:
            return converted
        ccy = currency.upper()
        if ccy not in self._seen:
            self._seen.add(ccy)
            self.missing.append(ccy)
            if self.log_fallbacks:
                logger.warning(
                    "NAV_FX_FALLBACK | fund=%s | from=%s | to=%s | using unconverted amount",
                    self._fund, ccy, self.fund_currency,
                )
        return amount


class NAVCalculator:
    """
    Stateless calculator; safe to share between concurrent runs.
    """

    def __init__(self, thresholds: Optional[ValidationThresholds] = None):
        self.thresholds = thresholds or ValidationThresholds()

    # ============================================================
    # Public API
    # ============================================================

    def calculate(
        self,
        snapshot: FundSnapshot,
        calculated_at: Optional[datetime] = None,
        log_fallbacks: bool = True,
    ) -> NAVResult:
        """log_fallbacks=False for intermediate passes whose result is not kept"""
        self._check_snapshot(snapshot)
        convert = _Conversion(snapshot, log_fallbacks=log_fallbacks)
        trail: List[CalculationStep] = []

        assets = self._aggregate_assets(snapshot, convert, trail)
        gross_assets = assets.total
        trail.append(CalculationStep(
            step="GROSS_ASSETS",
            description="Positions + cash + receivables",
            inputs={
                "positions": assets.positions,
                "cash": assets.cash,
                "receivables": assets.receivables,
            },
            output=gross_assets,
            formula="positions + cash + receivables",
        ))

        liabilities = self._aggregate_liabilities(snapshot, convert, trail)
        total_liabilities = liabilities.total
        trail.append(CalculationStep(
            step="TOTAL_LIABILITIES",
            description="Fees + tax + pending purchases + pending redemptions + other",
            inputs={
                "fees": liabilities.fees,
                "tax": liabilities.tax,
                "pending_purchases": liabilities.pending_purchases,
                "pending_redemptions": liabilities.pending_redemptions,
                "other": liabilities.other,
            },
            output=total_liabilities,
            formula="sum(liabilities by type)",
        ))

        accruals = self._aggregate_accruals(snapshot, convert, trail)

        net_asset_value = gross_assets - total_liabilities
        trail.append(CalculationStep(
            step="NET_ASSET_VALUE",
            description="Gross assets minus total liabilities",
            inputs={"gross_assets": gross_assets, "total_liabilities": total_liabilities},
            output=net_asset_value,
            formula="gross_assets - total_liabilities",
        ))

        shares = snapshot.shares_outstanding
        nav_per_share = net_asset_value / shares if shares > ZERO else ZERO
        trail.append(CalculationStep(
            step="NAV_PER_SHARE",
            description="Net asset value per outstanding share",
            inputs={"net_asset_value": net_asset_value, "shares_outstanding": shares},
            output=nav_per_share,
            formula="net_asset_value / shares_outstanding (0 if shares <= 0)",
        ))

        errors, warnings = self._validate(
            snapshot, gross_assets, total_liabilities, net_asset_value, nav_per_share, convert
        )

        return NAVResult(
            fund_id=snapshot.fund_id,
            share_class_id=snapshot.share_class_id,
            nav_date=snapshot.valuation_date,
            fund_currency=convert.fund_currency,
            gross_assets=gross_assets,
            total_liabilities=total_liabilities,
            net_asset_value=net_asset_value,
            shares_outstanding=shares,
            nav_per_share=nav_per_share,
            breakdown=NAVBreakdown(assets=assets, liabilities=liabilities, accruals=accruals),
            errors=tuple(errors),
            warnings=tuple(warnings),
            audit_trail=tuple(trail),
            calculated_at=calculated_at,
        )

    def calculate_with_comparison(
        self,
        snapshot: FundSnapshot,
        previous_nav_per_share: Optional[Decimal],
        calculated_at: Optional[datetime] = None,
    ) -> NAVResult:
        """
        Calculate and diff against the previous NAV/share.

        |change %| > warning threshold -> LARGE_NAV_MOVEMENT warning
        |change %| > error threshold   -> NAV_MOVEMENT_LIMIT error
        """
        result = self.calculate(snapshot, calculated_at=calculated_at)
        if previous_nav_per_share is None or previous_nav_per_share <= ZERO:
            return replace(result, previous_nav_per_share=previous_nav_per_share)

        change = result.nav_per_share - previous_nav_per_share
        change_pct = change / previous_nav_per_share * HUNDRED
        magnitude = abs(change_pct)

        errors = list(result.errors)
        warnings = list(result.warnings)
        details = {
            "previous_nav_per_share": previous_nav_per_share,
            "nav_per_share": result.nav_per_share,
            "change_percent": change_pct,
        }
        if magnitude > self.thresholds.error_change_pct:
            errors.append(ValidationIssue(
                code=NAV_MOVEMENT_LIMIT,
                severity=Severity.ERROR,
                message=(
                    f"NAV per share moved {change_pct:.2f}%, above the "
                    f"{self.thresholds.error_change_pct}% limit"
                ),
                field_name="nav_per_share",
                details=details,
            ))
        elif magnitude > self.thresholds.warning_change_pct:
            warnings.append(ValidationIssue(
                code=LARGE_NAV_MOVEMENT,
                severity=Severity.WARNING,
                message=(
                    f"NAV per share moved {change_pct:.2f}%, above the "
                    f"{self.thresholds.warning_change_pct}% warning threshold"
                ),
                field_name="nav_per_share",
                details=details,
            ))

        return replace(
            result,
            previous_nav_per_share=previous_nav_per_share,
            nav_change=change,
            nav_change_percent=change_pct,
            errors=tuple(errors),
            warnings=tuple(warnings),
        )

    # ============================================================
    # Aggregation
    # ============================================================

    @staticmethod
    def _check_snapshot(snapshot: FundSnapshot) -> None:
        if not snapshot.fund_id or not snapshot.share_class_id:
            raise InvalidSnapshotError("Snapshot requires fund_id and share_class_id")
        if not snapshot.fund_currency:
            raise InvalidSnapshotError(f"Snapshot {snapshot.key} has no fund currency")
        if snapshot.valuation_date is None:
            raise InvalidSnapshotError(f"Snapshot {snapshot.key} has no valuation date")
        if snapshot.shares_outstanding is None:
            raise InvalidSnapshotError(f"Snapshot {snapshot.key} has no shares outstanding")

    @staticmethod
    def _aggregate_assets(
        snapshot: FundSnapshot,
        convert: _Conversion,
        trail: List[CalculationStep],
    ) -> AssetBreakdown:
        buckets: Dict[str, Decimal] = {name: ZERO for name in _ASSET_FIELD.values()}

        for position in snapshot.positions:
            value = convert(position.market_value, position.price_currency)
            buckets[_ASSET_FIELD.get(position.asset_class, "other")] += value

        position_total = sum(
            (v for k, v in buckets.items() if k != "cash"), ZERO
        )
        trail.append(CalculationStep(
            step="POSITION_VALUATION",
            description=f"{len(snapshot.positions)} positions valued in {convert.fund_currency}",
            inputs={k: v for k, v in buckets.items() if k != "cash"},
            output=position_total,
            formula="sum(market_value x fx_rate) by asset class",
        ))

        cash_positions = buckets["cash"]
        cash_accounts = sum(
            (convert(c.balance, c.currency) for c in snapshot.cash_balances), ZERO
        )
        cash_total = cash_positions + cash_accounts
        trail.append(CalculationStep(
            step="CASH_BALANCES",
            description=f"{len(snapshot.cash_balances)} cash accounts in {convert.fund_currency}",
            inputs={"cash_accounts": cash_accounts, "cash_positions": cash_positions},
            output=cash_total,
            formula="sum(balance x fx_rate)",
        ))

        receivables = sum(
            (convert(r.amount, r.currency) for r in snapshot.receivables), ZERO
        )
        trail.append(CalculationStep(
            step="RECEIVABLES",
            description=f"{len(snapshot.receivables)} receivables",
            inputs={"count": Decimal(len(snapshot.receivables))},
            output=receivables,
            formula="sum(amount x fx_rate)",
        ))

        return AssetBreakdown(
            equities=buckets["equities"],
            fixed_income=buckets["fixed_income"],
            funds=buckets["funds"],
            derivatives=buckets["derivatives"],
            cash=cash_total,
            receivables=receivables,
            other=buckets["other"],
        )

    @staticmethod
    def _aggregate_liabilities(
        snapshot: FundSnapshot,
        convert: _Conversion,
        trail: List[CalculationStep],
    ) -> LiabilityBreakdown:
        buckets: Dict[str, Decimal] = {name: ZERO for name in _LIABILITY_FIELD.values()}

        for fee in snapshot.accrued_fees:
            buckets[_LIABILITY_FIELD.get(fee.fee_type, "other")] += convert(fee.accrued_amount, fee.currency)
        for liability in snapshot.liabilities:
            buckets[_LIABILITY_FIELD.get(liability.type, "other")] += convert(
                liability.amount, liability.currency
            )

        fees = (
            buckets["management_fee"] + buckets["performance_fee"] + buckets["depositary_fee"]
            + buckets["admin_fee"] + buckets["audit_fee"]
        )
        trail.append(CalculationStep(
            step="FEES",
            description="Accrued fees and fee payables",
            inputs={
                "management_fee": buckets["management_fee"],
                "performance_fee": buckets["performance_fee"],
                "depositary_fee": buckets["depositary_fee"],
                "admin_fee": buckets["admin_fee"],
                "audit_fee": buckets["audit_fee"],
            },
            output=fees,
            formula="sum(accrued fees + fee liabilities)",
        ))

        redemptions = sum((r.estimated_amount for r in snapshot.pending_redemptions), ZERO)
        trail.append(CalculationStep(
            step="PENDING_REDEMPTIONS",
            description=f"{len(snapshot.pending_redemptions)} pending redemption orders",
            inputs={"shares": sum((r.shares for r in snapshot.pending_redemptions), ZERO)},
            output=redemptions,
            formula="sum(estimated_amount)",
        ))

        return LiabilityBreakdown(
            management_fee=buckets["management_fee"],
            performance_fee=buckets["performance_fee"],
            depositary_fee=buckets["depositary_fee"],
            admin_fee=buckets["admin_fee"],
            audit_fee=buckets["audit_fee"],
            tax=buckets["tax"],
            pending_purchases=buckets["pending_purchases"],
            pending_redemptions=redemptions,
            other=buckets["other"],
        )

    @staticmethod
    def _aggregate_accruals(
        snapshot: FundSnapshot,
        convert: _Conversion,
        trail: List[CalculationStep],
    ) -> AccrualBreakdown:
        interest = ZERO
        dividends = ZERO
        income = ZERO

        for position in snapshot.positions:
            if position.accrued_interest:
                interest += convert(position.accrued_interest, position.price_currency)
            if position.accrued_dividend:
                dividends += convert(position.accrued_dividend, position.price_currency)

        for receivable in snapshot.receivables:
            amount = convert(receivable.amount, receivable.currency)
            if receivable.type == ReceivableType.INTEREST:
                interest += amount
            elif receivable.type == ReceivableType.DIVIDEND:
                dividends += amount
            else:
                income += amount

        expenses = sum(
            (convert(f.accrued_amount, f.currency) for f in snapshot.accrued_fees), ZERO
        )
        accruals = AccrualBreakdown(
            accrued_income=income,
            dividends_receivable=dividends,
            interest_receivable=interest,
            accrued_expenses=expenses,
        )
        trail.append(CalculationStep(
            step="ACCRUALS",
            description="Accrual subtotals (informational, already in assets/liabilities)",
            inputs={
                "accrued_income": income,
                "dividends_receivable": dividends,
                "interest_receivable": interest,
                "accrued_expenses": expenses,
            },
            output=accruals.total,
            formula="income + dividends + interest - expenses",
        ))
        return accruals

    # ============================================================
    # Validation
    # ============================================================

    def _validate(
        self,
        snapshot: FundSnapshot,
        gross_assets: Decimal,
        total_liabilities: Decimal,
        net_asset_value: Decimal,
        nav_per_share: Decimal,
        convert: _Conversion,
    ):
        errors: List[ValidationIssue] = []
        warnings: List[ValidationIssue] = []

        # Negative share counts are reported as INVALID_SHARES below
        problems = validate_nav_consistency(
            gross_assets,
            total_liabilities,
            net_asset_value,
            max(snapshot.shares_outstanding, ZERO),
            nav_per_share,
        )
        if problems:
            errors.append(ValidationIssue(
                code=INCONSISTENT_NAV,
                severity=Severity.ERROR,
                message="; ".join(problems),
                field_name="net_asset_value",
                details={
                    "gross_assets": gross_assets,
                    "total_liabilities": total_liabilities,
                    "net_asset_value": net_asset_value,
                },
            ))

        if net_asset_value < ZERO:
            errors.append(ValidationIssue(
                code=NEGATIVE_NAV,
                severity=Severity.ERROR,
                message=f"Net asset value is negative: {net_asset_value}",
                field_name="net_asset_value",
                details={"net_asset_value": net_asset_value},
            ))

        if snapshot.shares_outstanding <= ZERO:
            errors.append(ValidationIssue(
                code=INVALID_SHARES,
                severity=Severity.ERROR,
                message=f"Shares outstanding must be positive: {snapshot.shares_outstanding}",
                field_name="shares_outstanding",
                details={"shares_outstanding": snapshot.shares_outstanding},
            ))

        missing = [p.isin or p.instrument_id for p in snapshot.positions
                   if p.price is None or p.price <= ZERO]
        if missing:
            warnings.append(ValidationIssue(
                code=MISSING_PRICES,
                severity=Severity.WARNING,
                message=f"{len(missing)} positions have no valid price: {', '.join(missing)}",
                field_name="positions",
                details={"instruments": missing},
            ))

        stale = []
        for p in snapshot.positions:
            if p.price_date is None:
                stale.append(p.isin or p.instrument_id)
            elif (snapshot.valuation_date - p.price_date).days > self.thresholds.stale_price_days:
                stale.append(p.isin or p.instrument_id)
        if stale:
            warnings.append(ValidationIssue(
                code=STALE_PRICES,
                severity=Severity.WARNING,
                message=(
                    f"{len(stale)} positions priced more than "
                    f"{self.thresholds.stale_price_days} days before {snapshot.valuation_date}"
                ),
                field_name="positions",
                details={"instruments": stale},
            ))

        for currency in convert.missing:
            warnings.append(ValidationIssue(
                code=MISSING_FX_RATE,
                severity=Severity.WARNING,
                message=(
                    f"No FX rate {currency}/{convert.fund_currency}; "
                    f"unconverted amounts included"
                ),
                field_name="fx_rates",
                details={"from_currency": currency, "to_currency": convert.fund_currency},
            ))

        return errors, warnings

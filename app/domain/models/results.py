"""
Domain Models - Calculation results and workflow records
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from app.domain.models.entities import (
    ApprovalStatus,
    CalculationStatus,
    FundKey,
    NAVRecordStatus,
    NAVRunStatus,
    Severity,
)


def _plain(value: Any) -> Any:
    """Convert a value into JSON-safe primitives (Decimals become strings)."""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if hasattr(value, "value") and isinstance(getattr(value, "value"), str):
        return value.value
    return value


@dataclass(frozen=True)
class ValidationIssue:
    code: str
    severity: Severity
    message: str
    field_name: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "severity": self.severity.value,
            "message": self.message,
            "field": self.field_name,
            "details": _plain(self.details),
        }


@dataclass(frozen=True)
class CalculationStep:
    """One named step of the audit trail"""
    step: str
    description: str
    inputs: Dict[str, Decimal]
    output: Decimal
    formula: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "step": self.step,
            "description": self.description,
            "formula": self.formula,
            "inputs": _plain(self.inputs),
            "output": str(self.output),
        }


@dataclass(frozen=True)
class AssetBreakdown:
    equities: Decimal = Decimal("0")
    fixed_income: Decimal = Decimal("0")
    funds: Decimal = Decimal("0")
    derivatives: Decimal = Decimal("0")
    cash: Decimal = Decimal("0")
    receivables: Decimal = Decimal("0")
    other: Decimal = Decimal("0")

    @property
    def positions(self) -> Decimal:
        return self.equities + self.fixed_income + self.funds + self.derivatives + self.other

    @property
    def total(self) -> Decimal:
        return self.positions + self.cash + self.receivables


@dataclass(frozen=True)
class LiabilityBreakdown:
    management_fee: Decimal = Decimal("0")
    performance_fee: Decimal = Decimal("0")
    depositary_fee: Decimal = Decimal("0")
    admin_fee: Decimal = Decimal("0")
    audit_fee: Decimal = Decimal("0")
    tax: Decimal = Decimal("0")
    pending_purchases: Decimal = Decimal("0")
    pending_redemptions: Decimal = Decimal("0")
    other: Decimal = Decimal("0")

    @property
    def fees(self) -> Decimal:
        return (
            self.management_fee + self.performance_fee + self.depositary_fee
            + self.admin_fee + self.audit_fee
        )

    @property
    def total(self) -> Decimal:
        return self.fees + self.tax + self.pending_purchases + self.pending_redemptions + self.other


@dataclass(frozen=True)
class AccrualBreakdown:
    """Informational; already reflected in receivables and accrued fees"""
    accrued_income: Decimal = Decimal("0")
    dividends_receivable: Decimal = Decimal("0")
    interest_receivable: Decimal = Decimal("0")
    accrued_expenses: Decimal = Decimal("0")

    @property
    def total(self) -> Decimal:
        return (
            self.accrued_income + self.dividends_receivable + self.interest_receivable
            - self.accrued_expenses
        )


def _breakdown_dict(part: Any, names: Tuple[str, ...]) -> Dict[str, str]:
    data = {name: str(getattr(part, name)) for name in names}
    data["total"] = str(part.total)
    return data


@dataclass(frozen=True)
class NAVBreakdown:
    assets: AssetBreakdown
    liabilities: LiabilityBreakdown
    accruals: AccrualBreakdown

    def as_dict(self) -> Dict[str, Dict[str, str]]:
        return {
            "assets": _breakdown_dict(self.assets, (
                "equities", "fixed_income", "funds", "derivatives", "cash", "receivables", "other",
            )),
            "liabilities": _breakdown_dict(self.liabilities, (
                "management_fee", "performance_fee", "depositary_fee", "admin_fee", "audit_fee",
                "tax", "pending_purchases", "pending_redemptions", "other",
            )),
            "accruals": _breakdown_dict(self.accruals, (
                "accrued_income", "dividends_receivable", "interest_receivable", "accrued_expenses",
            )),
        }


@dataclass(frozen=True)
class NAVResult:
    """Calculation output, one per fund/share-class run"""
    fund_id: str
    share_class_id: str
    nav_date: date
    fund_currency: str
    gross_assets: Decimal
    total_liabilities: Decimal
    net_asset_value: Decimal
    shares_outstanding: Decimal
    nav_per_share: Decimal
    breakdown: NAVBreakdown
    errors: Tuple[ValidationIssue, ...]
    warnings: Tuple[ValidationIssue, ...]
    audit_trail: Tuple[CalculationStep, ...]
    previous_nav_per_share: Optional[Decimal] = None
    nav_change: Decimal = Decimal("0")
    nav_change_percent: Decimal = Decimal("0")
    calculated_at: Optional[datetime] = None

    @property
    def key(self) -> FundKey:
        return FundKey(self.fund_id, self.share_class_id)

    @property
    def status(self) -> CalculationStatus:
        if self.errors:
            return CalculationStatus.ERRORS
        if self.warnings:
            return CalculationStatus.WARNINGS
        return CalculationStatus.VALID

    def has_code(self, code: str) -> bool:
        return any(issue.code == code for issue in self.errors + self.warnings)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "fund_id": self.fund_id,
            "share_class_id": self.share_class_id,
            "nav_date": self.nav_date.isoformat(),
            "fund_currency": self.fund_currency,
            "gross_assets": str(self.gross_assets),
            "total_liabilities": str(self.total_liabilities),
            "net_asset_value": str(self.net_asset_value),
            "shares_outstanding": str(self.shares_outstanding),
            "nav_per_share": str(self.nav_per_share),
            "previous_nav_per_share": _plain(self.previous_nav_per_share),
            "nav_change": str(self.nav_change),
            "nav_change_percent": str(self.nav_change_percent),
            "status": self.status.value,
            "breakdown": self.breakdown.as_dict(),
            "errors": [e.as_dict() for e in self.errors],
            "warnings": [w.as_dict() for w in self.warnings],
            "audit_trail": [s.as_dict() for s in self.audit_trail],
            "calculated_at": _plain(self.calculated_at),
        }


@dataclass(frozen=True)
class NAVComparison:
    """Recomputed NAV diffed against an externally recorded reference"""
    fund_id: str
    share_class_id: str
    nav_date: date
    calculated: NAVResult
    reference_source: Optional[str]
    reference_nav_per_share: Optional[Decimal]
    reference_net_asset_value: Optional[Decimal]
    nav_per_share_difference: Optional[Decimal]
    nav_per_share_difference_percent: Optional[Decimal]
    net_asset_value_difference: Optional[Decimal]
    net_asset_value_difference_percent: Optional[Decimal]
    within_tolerance: bool
    tolerance_percent: Decimal


@dataclass(frozen=True)
class NAVRecord:
    """Persisted NAV, one per (fund, share class, date)"""
    id: int
    fund_id: str
    share_class_id: str
    nav_date: date
    nav_per_share: Decimal
    net_asset_value: Decimal
    gross_assets: Decimal
    total_liabilities: Decimal
    shares_outstanding: Decimal
    nav_change: Decimal
    nav_change_percent: Decimal
    calculation_status: CalculationStatus
    status: NAVRecordStatus
    breakdown: Dict[str, Any]
    validation: Dict[str, Any]
    calculated_at: datetime
    approval_id: Optional[str] = None
    approved_by: Tuple[str, ...] = ()
    approved_at: Optional[datetime] = None
    version: int = 1

    @property
    def key(self) -> FundKey:
        return FundKey(self.fund_id, self.share_class_id)


@dataclass(frozen=True)
class NAVRecordChange:
    """History entry holding the values a NAV record had before a change"""
    record_id: int
    version: int
    previous_status: NAVRecordStatus
    new_status: NAVRecordStatus
    nav_per_share: Decimal
    net_asset_value: Decimal
    snapshot: Dict[str, Any]
    changed_at: datetime
    reason: Optional[str] = None
    changed_by: Optional[str] = None


@dataclass(frozen=True)
class ApprovalStamp:
    """Actor identity, time and optional note of one workflow step"""
    actor_id: str
    actor_name: str
    at: datetime
    comment: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "actor_id": self.actor_id,
            "actor_name": self.actor_name,
            "at": self.at.isoformat(),
            "comment": self.comment,
        }

    @staticmethod
    def from_dict(data: Optional[Dict[str, Any]]) -> Optional["ApprovalStamp"]:
        if not data:
            return None
        return ApprovalStamp(
            actor_id=data["actor_id"],
            actor_name=data.get("actor_name", ""),
            at=datetime.fromisoformat(data["at"]),
            comment=data.get("comment"),
        )


@dataclass(frozen=True)
class NAVSummaryLine:
    """Compact per fund/share-class line for approvals, runs and reports"""
    fund_id: str
    share_class_id: str
    nav_per_share: Decimal
    nav_change_percent: Decimal
    status: CalculationStatus
    net_asset_value: Decimal = Decimal("0")

    @property
    def key(self) -> FundKey:
        return FundKey(self.fund_id, self.share_class_id)

    @staticmethod
    def from_result(result: "NAVResult") -> "NAVSummaryLine":
        return NAVSummaryLine(
            fund_id=result.fund_id,
            share_class_id=result.share_class_id,
            nav_per_share=result.nav_per_share,
            nav_change_percent=result.nav_change_percent,
            status=result.status,
            net_asset_value=result.net_asset_value,
        )

    def as_dict(self) -> Dict[str, Any]:
        return {
            "fund_id": self.fund_id,
            "share_class_id": self.share_class_id,
            "nav_per_share": str(self.nav_per_share),
            "nav_change_percent": str(self.nav_change_percent),
            "status": self.status.value,
            "net_asset_value": str(self.net_asset_value),
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "NAVSummaryLine":
        return NAVSummaryLine(
            fund_id=data["fund_id"],
            share_class_id=data["share_class_id"],
            nav_per_share=Decimal(data["nav_per_share"]),
            nav_change_percent=Decimal(data.get("nav_change_percent", "0")),
            status=CalculationStatus(data["status"]),
            net_asset_value=Decimal(data.get("net_asset_value", "0")),
        )


@dataclass(frozen=True)
class NAVApproval:
    approval_id: str
    run_id: str
    nav_date: date
    status: ApprovalStatus
    covered: Tuple[FundKey, ...]
    summary: Tuple[NAVSummaryLine, ...]
    created_at: datetime
    updated_at: datetime
    first_approval: Optional[ApprovalStamp] = None
    second_approval: Optional[ApprovalStamp] = None
    rejection: Optional[ApprovalStamp] = None
    published: Optional[ApprovalStamp] = None


@dataclass
class FundRunResult:
    key: FundKey
    result: NAVResult


@dataclass
class NAVRun:
    """One batch execution over all active fund/share-classes"""
    run_id: str
    nav_date: date
    started_at: datetime
    status: NAVRunStatus = NAVRunStatus.PENDING
    completed_at: Optional[datetime] = None
    total_funds: int = 0
    completed_funds: int = 0
    failed_funds: int = 0
    results: List[FundRunResult] = field(default_factory=list)
    summary: List[NAVSummaryLine] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    triggered_by: str = "MANUAL"
    attempt: int = 1
    auto_approve_eligible: Optional[bool] = None
    approval_id: Optional[str] = None

    def add_result(self, result: NAVResult) -> None:
        self.results.append(FundRunResult(key=result.key, result=result))
        self.summary.append(NAVSummaryLine.from_result(result))
        self.completed_funds += 1

    def add_error(self, key: FundKey, message: str) -> None:
        self.errors.append(f"{key}: {message}")
        self.failed_funds += 1

    def result_for(self, key: FundKey) -> Optional[NAVResult]:
        for item in self.results:
            if item.key == key:
                return item.result
        return None

    @property
    def duration_ms(self) -> Optional[int]:
        if self.completed_at is None:
            return None
        return int((self.completed_at - self.started_at).total_seconds() * 1000)

"""
Domain Models Package
Export all domain entities
"""

from .entities import (
    # Enums
    ApprovalStatus,
    AssetClass,
    CalculationStatus,
    DayCountConvention,
    LiabilityType,
    NAVRecordStatus,
    NAVRunStatus,
    PerformanceFeeType,
    ReceivableType,
    SecurityType,
    Severity,
    TransitionResult,

    # Snapshot inputs
    AccruedFee,
    CashBalance,
    FundKey,
    FundSnapshot,
    FXRate,
    Liability,
    PendingRedemption,
    PositionValuation,
    Receivable,
    asset_class_for,
)
from .fund_config import AccrualPolicy, FundConfig, PricingPolicy, ShareClassConfig
from .results import (
    AccrualBreakdown,
    ApprovalStamp,
    AssetBreakdown,
    CalculationStep,
    FundRunResult,
    LiabilityBreakdown,
    NAVApproval,
    NAVBreakdown,
    NAVComparison,
    NAVRecord,
    NAVRecordChange,
    NAVResult,
    NAVRun,
    NAVSummaryLine,
    ValidationIssue,
)

__all__ = [
    # Enums
    "ApprovalStatus",
    "AssetClass",
    "CalculationStatus",
    "DayCountConvention",
    "LiabilityType",
    "NAVRecordStatus",
    "NAVRunStatus",
    "PerformanceFeeType",
    "ReceivableType",
    "SecurityType",
    "Severity",
    "TransitionResult",

    # Snapshot inputs
    "AccruedFee",
    "CashBalance",
    "FundKey",
    "FundSnapshot",
    "FXRate",
    "Liability",
    "PendingRedemption",
    "PositionValuation",
    "Receivable",
    "asset_class_for",

    # Configuration
    "AccrualPolicy",
    "FundConfig",
    "PricingPolicy",
    "ShareClassConfig",

    # Results and records
    "AccrualBreakdown",
    "ApprovalStamp",
    "AssetBreakdown",
    "CalculationStep",
    "FundRunResult",
    "LiabilityBreakdown",
    "NAVApproval",
    "NAVBreakdown",
    "NAVComparison",
    "NAVRecord",
    "NAVRecordChange",
    "NAVResult",
    "NAVRun",
    "NAVSummaryLine",
    "ValidationIssue",
]

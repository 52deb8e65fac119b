"""
Response shaping for domain objects.
Money and rates are returned as strings to keep Decimal precision.
"""

from typing import Any, Dict, Optional

from app.domain.models import ApprovalStamp, NAVApproval, NAVComparison, NAVRecord, NAVRecordChange, NAVRun
from app.utils.time import to_iso_db


def _iso(dt) -> Optional[str]:
    return to_iso_db(dt) if dt is not None else None


def _str(value) -> Optional[str]:
    return str(value) if value is not None else None


def record_to_dict(record: NAVRecord) -> Dict[str, Any]:
    return {
        "id": record.id,
        "fund_id": record.fund_id,
        "share_class_id": record.share_class_id,
        "nav_date": record.nav_date.isoformat(),
        "status": record.status.value,
        "calculation_status": record.calculation_status.value,
        "nav_per_share": str(record.nav_per_share),
        "net_asset_value": str(record.net_asset_value),
        "gross_assets": str(record.gross_assets),
        "total_liabilities": str(record.total_liabilities),
        "shares_outstanding": str(record.shares_outstanding),
        "nav_change": str(record.nav_change),
        "nav_change_percent": str(record.nav_change_percent),
        "breakdown": record.breakdown,
        "validation": record.validation,
        "calculated_at": _iso(record.calculated_at),
        "approval_id": record.approval_id,
        "approved_by": list(record.approved_by),
        "approved_at": _iso(record.approved_at),
        "version": record.version,
    }


def change_to_dict(change: NAVRecordChange) -> Dict[str, Any]:
    return {
        "version": change.version,
        "previous_status": change.previous_status.value,
        "new_status": change.new_status.value,
        "nav_per_share": str(change.nav_per_share),
        "net_asset_value": str(change.net_asset_value),
        "reason": change.reason,
        "changed_by": change.changed_by,
        "changed_at": _iso(change.changed_at),
        "snapshot": change.snapshot,
    }


def run_to_dict(run: NAVRun) -> Dict[str, Any]:
    return {
        "run_id": run.run_id,
        "nav_date": run.nav_date.isoformat(),
        "status": run.status.value,
        "started_at": _iso(run.started_at),
        "completed_at": _iso(run.completed_at),
        "duration_ms": run.duration_ms,
        "total_funds": run.total_funds,
        "completed_funds": run.completed_funds,
        "failed_funds": run.failed_funds,
        "summary": [line.as_dict() for line in run.summary],
        "errors": list(run.errors),
        "triggered_by": run.triggered_by,
        "attempt": run.attempt,
        "auto_approve_eligible": run.auto_approve_eligible,
        "approval_id": run.approval_id,
    }


def _stamp(stamp: Optional[ApprovalStamp]) -> Optional[Dict[str, Any]]:
    if stamp is None:
        return None
    return {
        "actor_id": stamp.actor_id,
        "actor_name": stamp.actor_name,
        "at": _iso(stamp.at),
        "comment": stamp.comment,
    }


def approval_to_dict(approval: NAVApproval) -> Dict[str, Any]:
    return {
        "approval_id": approval.approval_id,
        "run_id": approval.run_id,
        "nav_date": approval.nav_date.isoformat(),
        "status": approval.status.value,
        "covered": [{"fund_id": k.fund_id, "share_class_id": k.share_class_id} for k in approval.covered],
        "summary": [line.as_dict() for line in approval.summary],
        "first_approval": _stamp(approval.first_approval),
        "second_approval": _stamp(approval.second_approval),
        "rejection": _stamp(approval.rejection),
        "published": _stamp(approval.published),
        "created_at": _iso(approval.created_at),
        "updated_at": _iso(approval.updated_at),
    }


def comparison_to_dict(comparison: NAVComparison) -> Dict[str, Any]:
    return {
        "fund_id": comparison.fund_id,
        "share_class_id": comparison.share_class_id,
        "nav_date": comparison.nav_date.isoformat(),
        "calculated_nav_per_share": str(comparison.calculated.nav_per_share),
        "calculated_net_asset_value": str(comparison.calculated.net_asset_value),
        "calculation_status": comparison.calculated.status.value,
        "reference_source": comparison.reference_source,
        "reference_nav_per_share": _str(comparison.reference_nav_per_share),
        "reference_net_asset_value": _str(comparison.reference_net_asset_value),
        "nav_per_share_difference": _str(comparison.nav_per_share_difference),
        "nav_per_share_difference_percent": _str(comparison.nav_per_share_difference_percent),
        "net_asset_value_difference": _str(comparison.net_asset_value_difference),
        "net_asset_value_difference_percent": _str(comparison.net_asset_value_difference_percent),
        "within_tolerance": comparison.within_tolerance,
        "tolerance_percent": str(comparison.tolerance_percent),
    }

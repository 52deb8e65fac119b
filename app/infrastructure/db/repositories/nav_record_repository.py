"""
NAV Record Repository
One row per (fund, share class, date); every change appends history

Status changes go through update_if_status (compare-and-swap on
status and version).
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import and_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.exceptions import NAVRecordConflictError
from app.domain.models import (
    CalculationStatus,
    FundKey,
    NAVRecord,
    NAVRecordChange,
    NAVRecordStatus,
    NAVResult,
    TransitionResult,
)
from app.infrastructure.db.models import NAVRecordHistoryModel, NAVRecordModel
from app.utils.time import now_utc_naive

logger = logging.getLogger(__name__)

# current status -> statuses it may move to
ALLOWED_TRANSITIONS = {
    NAVRecordStatus.PRELIMINARY: {NAVRecordStatus.PRELIMINARY, NAVRecordStatus.APPROVED},
    NAVRecordStatus.APPROVED: {NAVRecordStatus.PUBLISHED, NAVRecordStatus.CORRECTED},
    NAVRecordStatus.PUBLISHED: {NAVRecordStatus.CORRECTED},
    NAVRecordStatus.CORRECTED: {NAVRecordStatus.CORRECTED, NAVRecordStatus.APPROVED},
}

# Status a record moves to when it is recomputed
RECOMPUTE_STATUS = {
    NAVRecordStatus.PRELIMINARY: NAVRecordStatus.PRELIMINARY,
    NAVRecordStatus.APPROVED: NAVRecordStatus.CORRECTED,
    NAVRecordStatus.PUBLISHED: NAVRecordStatus.CORRECTED,
    NAVRecordStatus.CORRECTED: NAVRecordStatus.CORRECTED,
}


def can_transition(current: NAVRecordStatus, next_status: NAVRecordStatus) -> bool:
    return next_status in ALLOWED_TRANSITIONS.get(current, set())


def result_values(result: NAVResult) -> Dict[str, Any]:
    """Column values for a calculation result"""
    return {
        "nav_per_share": result.nav_per_share,
        "net_asset_value": result.net_asset_value,
        "gross_assets": result.gross_assets,
        "total_liabilities": result.total_liabilities,
        "shares_outstanding": result.shares_outstanding,
        "nav_change": result.nav_change,
        "nav_change_percent": result.nav_change_percent,
        "calculation_status": result.status,
        "breakdown": result.breakdown.as_dict(),
        "validation": {
            "errors": [e.as_dict() for e in result.errors],
            "warnings": [w.as_dict() for w in result.warnings],
            "audit_trail": [s.as_dict() for s in result.audit_trail],
            "previous_nav_per_share": (
                str(result.previous_nav_per_share)
                if result.previous_nav_per_share is not None else None
            ),
            "fund_currency": result.fund_currency,
        },
        "calculated_at": result.calculated_at or now_utc_naive(),
    }


class NAVRecordRepository:
    """Repository for NAV records and their history"""

    def __init__(self, session: AsyncSession):
        self.session = session

    # ------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------

    async def _load(self, key: FundKey, nav_date: date) -> Optional[NAVRecordModel]:
        result = await self.session.execute(
            select(NAVRecordModel)
            .where(
                and_(
                    NAVRecordModel.fund_id == key.fund_id,
                    NAVRecordModel.share_class_id == key.share_class_id,
                    NAVRecordModel.nav_date == nav_date,
                )
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get(self, key: FundKey, nav_date: date) -> Optional[NAVRecord]:
        return self._to_domain(await self._load(key, nav_date))

    async def get_latest_before(self, key: FundKey, nav_date: date) -> Optional[NAVRecord]:
        """Most recent record strictly before nav_date"""
        result = await self.session.execute(
            select(NAVRecordModel)
            .where(
                and_(
                    NAVRecordModel.fund_id == key.fund_id,
                    NAVRecordModel.share_class_id == key.share_class_id,
                    NAVRecordModel.nav_date < nav_date,
                )
            )
            .order_by(NAVRecordModel.nav_date.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return self._to_domain(result.scalar_one_or_none())

    async def list_for_date(self, nav_date: date) -> List[NAVRecord]:
        result = await self.session.execute(
            select(NAVRecordModel)
            .where(NAVRecordModel.nav_date == nav_date)
            .order_by(NAVRecordModel.fund_id, NAVRecordModel.share_class_id)
            .execution_options(populate_existing=True)
        )
        return [self._to_domain(m) for m in result.scalars().all()]

    async def list_for_fund(
        self,
        key: FundKey,
        start: Optional[date] = None,
        end: Optional[date] = None,
        limit: int = 100,
    ) -> List[NAVRecord]:
        query = select(NAVRecordModel).where(
            and_(
                NAVRecordModel.fund_id == key.fund_id,
                NAVRecordModel.share_class_id == key.share_class_id,
            )
        )
        if start is not None:
            query = query.where(NAVRecordModel.nav_date >= start)
        if end is not None:
            query = query.where(NAVRecordModel.nav_date <= end)
        result = await self.session.execute(
            query.order_by(NAVRecordModel.nav_date.desc())
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return [self._to_domain(m) for m in result.scalars().all()]

    async def history(self, key: FundKey, nav_date: date) -> List[NAVRecordChange]:
        """All history entries of a record, oldest first"""
        result = await self.session.execute(
            select(NAVRecordHistoryModel)
            .where(
                and_(
                    NAVRecordHistoryModel.fund_id == key.fund_id,
                    NAVRecordHistoryModel.share_class_id == key.share_class_id,
                    NAVRecordHistoryModel.nav_date == nav_date,
                )
            )
            .order_by(NAVRecordHistoryModel.id)
        )
        return [self._history_to_domain(m) for m in result.scalars().all()]

    # ------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------

    async def save_result(self, result: NAVResult, changed_by: Optional[str] = None) -> NAVRecord:
        """
        Persist a calculation result.

        New key -> PRELIMINARY. Existing record -> recomputed in place
        (PRELIMINARY stays PRELIMINARY, APPROVED/PUBLISHED become CORRECTED),
        with the previous values appended to history.
        """
        key = result.key
        existing = await self._load(key, result.nav_date)
        values = result_values(result)

        if existing is None:
            model = NAVRecordModel(
                fund_id=key.fund_id,
                share_class_id=key.share_class_id,
                nav_date=result.nav_date,
                status=NAVRecordStatus.PRELIMINARY,
                approved_by=[],
                version=1,
                **values,
            )
            self.session.add(model)
            try:
                await self.session.flush()
            except IntegrityError as exc:
                logger.warning(
                    "NAV_RECORD_INSERT_CONFLICT | fund=%s | nav_date=%s", key, result.nav_date
                )
                raise NAVRecordConflictError(
                    f"NAV record {key} {result.nav_date} was created concurrently"
                ) from exc
            return self._to_domain(model)

        current = NAVRecordStatus(existing.status)
        next_status = RECOMPUTE_STATUS[current]
        if current != NAVRecordStatus.PRELIMINARY:
            values.update(approval_id=None, approved_by=[], approved_at=None)

        outcome = await self.update_if_status(
            key,
            result.nav_date,
            expected=current,
            next_status=next_status,
            changed_by=changed_by,
            reason="RECOMPUTED",
            expected_version=existing.version,
            **values,
        )
        if outcome == TransitionResult.CONFLICT:
            raise NAVRecordConflictError(
                f"NAV record {key} {result.nav_date} changed during recompute"
            )
        if current != NAVRecordStatus.PRELIMINARY:
            logger.warning(
                "NAV_RECORD_CORRECTED | fund=%s | nav_date=%s | from=%s",
                key, result.nav_date, current.value,
            )
        return await self.get(key, result.nav_date)

    async def update_if_status(
        self,
        key: FundKey,
        nav_date: date,
        expected: NAVRecordStatus,
        next_status: NAVRecordStatus,
        changed_by: Optional[str] = None,
        reason: Optional[str] = None,
        expected_version: Optional[int] = None,
        **values: Any,
    ) -> TransitionResult:
        """
        Compare-and-swap: apply next_status (and values) only while the
        stored status is still `expected`.
        """
        if not can_transition(expected, next_status):
            raise ValueError(f"NAV record transition {expected.value} -> {next_status.value} not allowed")

        existing = await self._load(key, nav_date)
        if existing is None or NAVRecordStatus(existing.status) != expected:
            return TransitionResult.CONFLICT
        version = existing.version if expected_version is None else expected_version

        previous = self._snapshot(existing)
        statement = (
            update(NAVRecordModel)
            .where(
                and_(
                    NAVRecordModel.id == existing.id,
                    NAVRecordModel.status == expected,
                    NAVRecordModel.version == version,
                )
            )
            .values(status=next_status, version=version + 1, updated_at=now_utc_naive(), **values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(statement)
        if result.rowcount != 1:
            logger.info(
                "NAV_RECORD_CAS_CONFLICT | fund=%s | nav_date=%s | expected=%s",
                key, nav_date, expected.value,
            )
            return TransitionResult.CONFLICT

        self.session.add(
            NAVRecordHistoryModel(
                nav_record_id=existing.id,
                fund_id=key.fund_id,
                share_class_id=key.share_class_id,
                nav_date=nav_date,
                version=version,
                previous_status=expected,
                new_status=next_status,
                nav_per_share=previous["nav_per_share"],
                net_asset_value=previous["net_asset_value"],
                snapshot=previous["snapshot"],
                reason=reason,
                changed_by=changed_by,
                changed_at=now_utc_naive(),
            )
        )
        await self.session.flush()
        return TransitionResult.APPLIED

    async def transition_many(
        self,
        keys: Iterable[FundKey],
        nav_date: date,
        next_status: NAVRecordStatus,
        changed_by: Optional[str] = None,
        reason: Optional[str] = None,
        **values: Any,
    ) -> List[Tuple[FundKey, TransitionResult]]:
        """Move each record from its current status to next_status"""
        outcomes = []
        for key in keys:
            existing = await self._load(key, nav_date)
            if existing is None or not can_transition(NAVRecordStatus(existing.status), next_status):
                outcomes.append((key, TransitionResult.CONFLICT))
                continue
            outcome = await self.update_if_status(
                key,
                nav_date,
                expected=NAVRecordStatus(existing.status),
                next_status=next_status,
                changed_by=changed_by,
                reason=reason,
                **values,
            )
            outcomes.append((key, outcome))
        return outcomes

    # ------------------------------------------------------------
    # Mapping
    # ------------------------------------------------------------

    @staticmethod
    def _snapshot(model: NAVRecordModel) -> Dict[str, Any]:
        return {
            "nav_per_share": model.nav_per_share,
            "net_asset_value": model.net_asset_value,
            "snapshot": {
                "nav_per_share": str(model.nav_per_share),
                "net_asset_value": str(model.net_asset_value),
                "gross_assets": str(model.gross_assets),
                "total_liabilities": str(model.total_liabilities),
                "shares_outstanding": str(model.shares_outstanding),
                "calculation_status": CalculationStatus(model.calculation_status).value,
                "breakdown": model.breakdown,
                "validation": model.validation,
                "approval_id": model.approval_id,
                "approved_by": list(model.approved_by or []),
                "calculated_at": model.calculated_at.isoformat() if model.calculated_at else None,
            },
        }

    @staticmethod
    def _to_domain(model: Optional[NAVRecordModel]) -> Optional[NAVRecord]:
        """Convert database model to domain entity"""
        if model is None:
            return None

        return NAVRecord(
            id=model.id,
            fund_id=model.fund_id,
            share_class_id=model.share_class_id,
            nav_date=model.nav_date,
            nav_per_share=Decimal(model.nav_per_share),
            net_asset_value=Decimal(model.net_asset_value),
            gross_assets=Decimal(model.gross_assets),
            total_liabilities=Decimal(model.total_liabilities),
            shares_outstanding=Decimal(model.shares_outstanding),
            nav_change=Decimal(model.nav_change or 0),
            nav_change_percent=Decimal(model.nav_change_percent or 0),
            calculation_status=CalculationStatus(model.calculation_status),
            status=NAVRecordStatus(model.status),
            breakdown=model.breakdown or {},
            validation=model.validation or {},
            calculated_at=model.calculated_at,
            approval_id=model.approval_id,
            approved_by=tuple(model.approved_by or ()),
            approved_at=model.approved_at,
            version=model.version,
        )

    @staticmethod
    def _history_to_domain(model: NAVRecordHistoryModel) -> NAVRecordChange:
        return NAVRecordChange(
            record_id=model.nav_record_id,
            version=model.version,
            previous_status=NAVRecordStatus(model.previous_status),
            new_status=NAVRecordStatus(model.new_status),
            nav_per_share=Decimal(model.nav_per_share),
            net_asset_value=Decimal(model.net_asset_value),
            snapshot=model.snapshot or {},
            changed_at=model.changed_at,
            reason=model.reason,
            changed_by=model.changed_by,
        )

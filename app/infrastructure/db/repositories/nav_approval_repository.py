"""
NAV Approval Repository
Approval records with compare-and-swap state transitions
"""

import logging
from datetime import date
from typing import List, Optional

from sqlalchemy import and_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.models import (
    ApprovalStamp,
    ApprovalStatus,
    FundKey,
    NAVApproval,
    NAVSummaryLine,
    TransitionResult,
)
from app.infrastructure.db.models import NAVApprovalModel
from app.utils.time import now_utc_naive

logger = logging.getLogger(__name__)

_STAMP_COLUMNS = ("first_approval", "second_approval", "rejection", "published")


class NAVApprovalRepository:
    """Repository for NAVApproval data access"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, approval: NAVApproval) -> NAVApproval:
        model = NAVApprovalModel(
            approval_id=approval.approval_id,
            run_id=approval.run_id,
            nav_date=approval.nav_date,
            status=approval.status,
            covered=[[k.fund_id, k.share_class_id] for k in approval.covered],
            summary=[line.as_dict() for line in approval.summary],
            created_at=approval.created_at,
            updated_at=approval.updated_at,
        )
        self.session.add(model)
        await self.session.flush()
        return self._to_domain(model)

    async def get(self, approval_id: str) -> Optional[NAVApproval]:
        result = await self.session.execute(
            select(NAVApprovalModel)
            .where(NAVApprovalModel.approval_id == approval_id)
            .execution_options(populate_existing=True)
        )
        return self._to_domain(result.scalar_one_or_none())

    async def get_for_run(self, run_id: str) -> Optional[NAVApproval]:
        result = await self.session.execute(
            select(NAVApprovalModel)
            .where(NAVApprovalModel.run_id == run_id)
            .order_by(NAVApprovalModel.created_at.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return self._to_domain(result.scalar_one_or_none())

    async def list_pending(self) -> List[NAVApproval]:
        result = await self.session.execute(
            select(NAVApprovalModel)
            .where(
                NAVApprovalModel.status.in_(
                    [ApprovalStatus.PENDING_FIRST, ApprovalStatus.PENDING_SECOND]
                )
            )
            .order_by(NAVApprovalModel.nav_date.desc(), NAVApprovalModel.created_at.desc())
            .execution_options(populate_existing=True)
        )
        return [self._to_domain(m) for m in result.scalars().all()]

    async def list_for_date(self, nav_date: date) -> List[NAVApproval]:
        result = await self.session.execute(
            select(NAVApprovalModel)
            .where(NAVApprovalModel.nav_date == nav_date)
            .order_by(NAVApprovalModel.created_at)
            .execution_options(populate_existing=True)
        )
        return [self._to_domain(m) for m in result.scalars().all()]

    async def update_if_status(
        self,
        approval_id: str,
        expected: ApprovalStatus,
        next_status: ApprovalStatus,
        **stamps: Optional[ApprovalStamp],
    ) -> TransitionResult:
        """
        Compare-and-swap on status.

        stamps: first_approval / second_approval / rejection / published
        """
        values: dict = {"status": next_status, "updated_at": now_utc_naive()}
        for name, stamp in stamps.items():
            if name not in _STAMP_COLUMNS:
                raise ValueError(f"Unknown approval stamp: {name}")
            values[name] = stamp.as_dict() if stamp is not None else None

        result = await self.session.execute(
            update(NAVApprovalModel)
            .where(
                and_(
                    NAVApprovalModel.approval_id == approval_id,
                    NAVApprovalModel.status == expected,
                )
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.info(
                "NAV_APPROVAL_CAS_CONFLICT | approval_id=%s | expected=%s | next=%s",
                approval_id, expected.value, next_status.value,
            )
            return TransitionResult.CONFLICT
        await self.session.flush()
        return TransitionResult.APPLIED

    async def set_published(self, approval_id: str, stamp: ApprovalStamp) -> TransitionResult:
        """Stamp an APPROVED approval as published, once"""
        result = await self.session.execute(
            update(NAVApprovalModel)
            .where(
                and_(
                    NAVApprovalModel.approval_id == approval_id,
                    NAVApprovalModel.status == ApprovalStatus.APPROVED,
                    NAVApprovalModel.published.is_(None),
                )
            )
            .values(published=stamp.as_dict(), updated_at=now_utc_naive())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return TransitionResult.CONFLICT
        await self.session.flush()
        return TransitionResult.APPLIED

    @staticmethod
    def _to_domain(model: Optional[NAVApprovalModel]) -> Optional[NAVApproval]:
        """Convert database model to domain entity"""
        if model is None:
            return None

        stamps: dict = {name: ApprovalStamp.from_dict(getattr(model, name)) for name in _STAMP_COLUMNS}
        return NAVApproval(
            approval_id=model.approval_id,
            run_id=model.run_id,
            nav_date=model.nav_date,
            status=ApprovalStatus(model.status),
            covered=tuple(FundKey(f, s) for f, s in (model.covered or [])),
            summary=tuple(NAVSummaryLine.from_dict(d) for d in (model.summary or [])),
            created_at=model.created_at,
            updated_at=model.updated_at,
            **stamps,
        )
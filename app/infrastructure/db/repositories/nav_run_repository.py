"""
NAV Run Repository
Batch-run records, retained for audit and retry
"""

from datetime import date
from typing import List, Optional

from sqlalchemy import and_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.models import NAVRun, NAVRunStatus, NAVSummaryLine, TransitionResult
from app.infrastructure.db.models import NAVRunModel


class NAVRunRepository:
    """Repository for NAVRun data access"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, run: NAVRun) -> NAVRun:
        model = NAVRunModel(
            run_id=run.run_id,
            nav_date=run.nav_date,
            status=run.status,
            started_at=run.started_at,
            total_funds=run.total_funds,
            triggered_by=run.triggered_by,
            attempt=run.attempt,
            summary=[],
            errors=[],
        )
        self.session.add(model)
        await self.session.flush()
        return self._to_domain(model)

    async def save(self, run: NAVRun) -> None:
        """Write counters, summary, errors and status of an in-memory run"""
        await self.session.execute(
            update(NAVRunModel)
            .where(NAVRunModel.run_id == run.run_id)
            .values(
                status=run.status,
                completed_at=run.completed_at,
                total_funds=run.total_funds,
                completed_funds=run.completed_funds,
                failed_funds=run.failed_funds,
                summary=[line.as_dict() for line in run.summary],
                errors=list(run.errors),
                auto_approve_eligible=run.auto_approve_eligible,
                approval_id=run.approval_id,
            )
            .execution_options(synchronize_session=False)
        )
        await self.session.flush()

    async def update_if_status(
        self,
        run_id: str,
        expected: NAVRunStatus,
        next_status: NAVRunStatus,
    ) -> TransitionResult:
        result = await self.session.execute(
            update(NAVRunModel)
            .where(and_(NAVRunModel.run_id == run_id, NAVRunModel.status == expected))
            .values(status=next_status)
            .execution_options(synchronize_session=False)
        )
        return TransitionResult.APPLIED if result.rowcount == 1 else TransitionResult.CONFLICT

    async def get(self, run_id: str) -> Optional[NAVRun]:
        result = await self.session.execute(
            select(NAVRunModel)
            .where(NAVRunModel.run_id == run_id)
            .execution_options(populate_existing=True)
        )
        return self._to_domain(result.scalar_one_or_none())

    async def get_latest_for_date(self, nav_date: date) -> Optional[NAVRun]:
        result = await self.session.execute(
            select(NAVRunModel)
            .where(NAVRunModel.nav_date == nav_date)
            .order_by(NAVRunModel.started_at.desc(), NAVRunModel.attempt.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return self._to_domain(result.scalar_one_or_none())

    async def list_recent(self, limit: int = 20) -> List[NAVRun]:
        result = await self.session.execute(
            select(NAVRunModel)
            .order_by(NAVRunModel.started_at.desc())
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return [self._to_domain(m) for m in result.scalars().all()]

    @staticmethod
    def _to_domain(model: Optional[NAVRunModel]) -> Optional[NAVRun]:
        """Convert database model to domain entity (per-fund results are not stored)"""
        if model is None:
            return None

        return NAVRun(
            run_id=model.run_id,
            nav_date=model.nav_date,
            started_at=model.started_at,
            status=NAVRunStatus(model.status),
            completed_at=model.completed_at,
            total_funds=model.total_funds,
            completed_funds=model.completed_funds,
            failed_funds=model.failed_funds,
            summary=[NAVSummaryLine.from_dict(d) for d in (model.summary or [])],
            errors=list(model.errors or []),
            triggered_by=model.triggered_by,
            attempt=model.attempt,
            auto_approve_eligible=model.auto_approve_eligible,
            approval_id=model.approval_id,
        )

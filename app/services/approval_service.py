"""
SERVICE - NAV APPROVAL (FOUR-EYES)

RESPONSIBILITIES:
- Create one approval per batch run with at least one result
- First / second approval and rejection via compare-and-swap
- Move covered NAV records to APPROVED, then PUBLISHED
- Push published NAVs to the fund registry

RULES:
- ❌ A NAV with ERRORS cannot be approved
- ❌ No step executes twice (conditional write on status)
- ✅ Same-actor second approval is logged; refused only when configured
"""

import logging
import uuid
from typing import Callable, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.exceptions import (
    ApprovalBlockedError,
    ApprovalNotFoundError,
    ApprovalTransitionError,
)
from app.domain.models import (
    ApprovalStamp,
    ApprovalStatus,
    CalculationStatus,
    NAVApproval,
    NAVRecordStatus,
    NAVRun,
    TransitionResult,
)
from app.domain.services import approval_workflow as workflow
from app.domain.services.approval_workflow import ApprovalAction, ApprovalEvent
from app.infrastructure.db.repositories.nav_approval_repository import NAVApprovalRepository
from app.infrastructure.db.repositories.nav_record_repository import NAVRecordRepository
from app.infrastructure.registry.types import FundRegistry
from app.services.notification_service import NAVNotifier
from app.utils.time import now_utc_naive

logger = logging.getLogger(__name__)


class ApprovalService:
    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        registry: FundRegistry,
        notifier: Optional[NAVNotifier] = None,
        require_distinct_approvers: bool = False,
        auto_publish: bool = False,
    ):
        self.session_factory = session_factory
        self.registry = registry
        self.notifier = notifier
        self.require_distinct_approvers = require_distinct_approvers
        self.auto_publish = auto_publish

    # ============================================================
    # Queries
    # ============================================================

    async def get(self, approval_id: str) -> NAVApproval:
        async with self.session_factory() as session:
            approval = await NAVApprovalRepository(session).get(approval_id)
        if approval is None:
            raise ApprovalNotFoundError(approval_id)
        return approval

    async def list_pending(self) -> List[NAVApproval]:
        async with self.session_factory() as session:
            return await NAVApprovalRepository(session).list_pending()

    # ============================================================
    # Workflow
    # ============================================================

    async def create_approval(self, run: NAVRun) -> Optional[NAVApproval]:
        """PENDING_FIRST approval covering every NAV the run produced"""
        if not run.summary:
            logger.info("NAV_APPROVAL_SKIPPED | run_id=%s | reason=no results", run.run_id)
            return None

        now = now_utc_naive()
        approval = NAVApproval(
            approval_id=str(uuid.uuid4()),
            run_id=run.run_id,
            nav_date=run.nav_date,
            status=ApprovalStatus.PENDING_FIRST,
            covered=tuple(line.key for line in run.summary),
            summary=tuple(run.summary),
            created_at=now,
            updated_at=now,
        )
        async with self.session_factory() as session:
            approval = await NAVApprovalRepository(session).create(approval)
            await session.commit()

        logger.info(
            "NAV_APPROVAL_CREATED | approval_id=%s | run_id=%s | nav_date=%s | covered=%s",
            approval.approval_id, run.run_id, run.nav_date, len(approval.covered),
        )
        await self._notify(ApprovalEvent.CREATED, approval)
        return approval

    async def approve(
        self,
        approval_id: str,
        actor_id: str,
        actor_name: str,
        comment: Optional[str] = None,
        expected_status: Optional[ApprovalStatus] = None,
    ) -> NAVApproval:
        """
        First or second approval, depending on the state the caller expects
        (defaults to the currently stored state).
        """
        async with self.session_factory() as session:
            approvals = NAVApprovalRepository(session)
            approval = await approvals.get(approval_id)
            if approval is None:
                raise ApprovalNotFoundError(approval_id)

            current = expected_status or approval.status
            next_state = workflow.next_status(current, ApprovalAction.APPROVE)

            await self._ensure_approvable(session, approval)
            if current == ApprovalStatus.PENDING_SECOND:
                self._check_second_approver(approval, actor_id)

            stamp = ApprovalStamp(actor_id=actor_id, actor_name=actor_name, at=now_utc_naive(), comment=comment)
            outcome = await approvals.update_if_status(
                approval_id,
                current,
                next_state,
                **{workflow.stamp_field(current, ApprovalAction.APPROVE): stamp},
            )
            if outcome == TransitionResult.CONFLICT:
                raise ApprovalTransitionError(
                    f"Approval {approval_id} is no longer {current.value}"
                )

            if next_state == ApprovalStatus.APPROVED:
                first = approval.first_approval
                approvers = [first.actor_id, actor_id] if first else [actor_id]
                await self._move_records(
                    session,
                    approval,
                    NAVRecordStatus.APPROVED,
                    actor_id,
                    approval_id=approval_id,
                    approved_by=approvers,
                    approved_at=stamp.at,
                )

            await session.commit()
            approval = await approvals.get(approval_id)

        logger.info(
            "NAV_APPROVAL_TRANSITION | approval_id=%s | %s -> %s | actor=%s",
            approval_id, current.value, next_state.value, actor_id,
        )
        await self._notify(workflow.event_for(next_state), approval, actor_name)

        if next_state == ApprovalStatus.APPROVED and self.auto_publish:
            approval = await self.publish(approval_id, actor_id, actor_name)
        return approval

    async def reject(
        self,
        approval_id: str,
        actor_id: str,
        actor_name: str,
        comment: Optional[str] = None,
    ) -> NAVApproval:
        """Terminal; the covered records stay PRELIMINARY for recomputation"""
        async with self.session_factory() as session:
            approvals = NAVApprovalRepository(session)
            approval = await approvals.get(approval_id)
            if approval is None:
                raise ApprovalNotFoundError(approval_id)

            current = approval.status
            next_state = workflow.next_status(current, ApprovalAction.REJECT)
            stamp = ApprovalStamp(actor_id=actor_id, actor_name=actor_name, at=now_utc_naive(), comment=comment)
            outcome = await approvals.update_if_status(approval_id, current, next_state, rejection=stamp)
            if outcome == TransitionResult.CONFLICT:
                raise ApprovalTransitionError(
                    f"Approval {approval_id} is no longer {current.value}"
                )
            await session.commit()
            approval = await approvals.get(approval_id)

        logger.warning(
            "NAV_APPROVAL_REJECTED | approval_id=%s | actor=%s | comment=%s",
            approval_id, actor_id, comment,
        )
        await self._notify(ApprovalEvent.REJECTED, approval, actor_name)
        return approval

    async def publish(self, approval_id: str, actor_id: str, actor_name: str) -> NAVApproval:
        """APPROVED -> records PUBLISHED and pushed to the registry, once"""
        async with self.session_factory() as session:
            approvals = NAVApprovalRepository(session)
            records = NAVRecordRepository(session)
            approval = await approvals.get(approval_id)
            if approval is None:
                raise ApprovalNotFoundError(approval_id)
            if approval.status != ApprovalStatus.APPROVED:
                raise ApprovalTransitionError(
                    f"Cannot publish an approval in state {approval.status.value}"
                )

            stamp = ApprovalStamp(actor_id=actor_id, actor_name=actor_name, at=now_utc_naive())
            if await approvals.set_published(approval_id, stamp) == TransitionResult.CONFLICT:
                raise ApprovalTransitionError(f"Approval {approval_id} is already published")

            await self._move_records(session, approval, NAVRecordStatus.PUBLISHED, actor_id)

            # Registry upserts are idempotent; a failure rolls back and publish can be retried
            for key in approval.covered:
                record = await records.get(key, approval.nav_date)
                await self.registry.upsert_nav(
                    key.fund_id,
                    key.share_class_id,
                    approval.nav_date,
                    record.nav_per_share,
                    record.net_asset_value,
                )

            await session.commit()
            approval = await approvals.get(approval_id)

        logger.info("NAV_PUBLISHED | approval_id=%s | nav_date=%s | actor=%s", approval_id, approval.nav_date, actor_id)
        await self._notify(ApprovalEvent.PUBLISHED, approval, actor_name)
        return approval

    # ============================================================
    # Helpers
    # ============================================================

    async def _ensure_approvable(self, session: AsyncSession, approval: NAVApproval) -> None:
        records = NAVRecordRepository(session)
        blocked = []
        for key in approval.covered:
            record = await records.get(key, approval.nav_date)
            if record is not None and record.calculation_status == CalculationStatus.ERRORS:
                blocked.append(str(key))
        if blocked:
            raise ApprovalBlockedError(
                f"Approval {approval.approval_id} covers NAVs with errors: {', '.join(blocked)}"
            )

    def _check_second_approver(self, approval: NAVApproval, actor_id: str) -> None:
        first = approval.first_approval
        if first is None or first.actor_id != actor_id:
            return
        if self.require_distinct_approvers:
            raise ApprovalTransitionError(
                f"Approval {approval.approval_id}: second approval must come from a different actor"
            )
        logger.warning(
            "NAV_APPROVAL_SAME_ACTOR | approval_id=%s | actor=%s",
            approval.approval_id, actor_id,
        )

    @staticmethod
    async def _move_records(
        session: AsyncSession,
        approval: NAVApproval,
        next_status: NAVRecordStatus,
        actor_id: str,
        **values,
    ) -> None:
        """All covered records move, or the caller's transaction is abandoned"""
        outcomes = await NAVRecordRepository(session).transition_many(
            approval.covered,
            approval.nav_date,
            next_status,
            changed_by=actor_id,
            reason=f"APPROVAL {approval.approval_id}",
            **values,
        )
        conflicts = [str(key) for key, outcome in outcomes if outcome == TransitionResult.CONFLICT]
        if conflicts:
            logger.warning(
                "NAV_RECORD_NOT_MOVED | approval_id=%s | funds=%s | target=%s",
                approval.approval_id, ",".join(conflicts), next_status.value,
            )
            raise ApprovalTransitionError(
                f"Approval {approval.approval_id}: covered records changed, "
                f"cannot move to {next_status.value}: {', '.join(conflicts)}"
            )

    async def _notify(self, event: ApprovalEvent, approval: NAVApproval, actor_name: Optional[str] = None) -> None:
        if self.notifier is None:
            return
        try:
            await self.notifier.notify_approval(event, approval, actor_name)
        except Exception as exc:
            logger.error("NAV_APPROVAL_NOTICE_FAILED | approval_id=%s | error=%s", approval.approval_id, exc)

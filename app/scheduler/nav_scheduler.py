"""
NAV SCHEDULER

Daily cron at the cutoff time (fund timezone). On trading days:
- run the batch through NAVService
- open an approval for whatever NAVs were produced
- evaluate the auto-approval threshold (informational only)
- send the daily report
- schedule a delayed retry when the run FAILED

No calculation logic here.
"""

import logging
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger

from app.domain.exceptions import InvalidRunStateError, NAVRunNotFoundError
from app.domain.models import CalculationStatus, NAVRun, NAVRunStatus
from app.infrastructure.calendar.trading_calendar import ScheduledRun, TradingCalendar
from app.services.approval_service import ApprovalService
from app.services.nav_service import NAVService
from app.services.notification_service import NAVNotifier

logger = logging.getLogger(__name__)

DAILY_JOB_ID = "nav_daily_run"


class NAVScheduler:
    def __init__(
        self,
        nav_service: NAVService,
        approval_service: ApprovalService,
        calendar: TradingCalendar,
        notifier: Optional[NAVNotifier] = None,
        retry_on_failure: bool = True,
        max_retries: int = 3,
        retry_delay_minutes: int = 15,
        auto_approve: bool = False,
        auto_approve_threshold: Decimal = Decimal("1.0"),
        scheduler: Optional[AsyncIOScheduler] = None,
    ):
        self.nav_service = nav_service
        self.approval_service = approval_service
        self.calendar = calendar
        self.notifier = notifier
        self.retry_on_failure = retry_on_failure
        self.max_retries = max_retries
        self.retry_delay_minutes = retry_delay_minutes
        self.auto_approve = auto_approve
        self.auto_approve_threshold = auto_approve_threshold
        self.scheduler = scheduler or AsyncIOScheduler(timezone=calendar.timezone)

    # ------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------

    def start(self) -> None:
        cutoff = self.calendar.cutoff_time
        self.scheduler.add_job(
            self.daily_job,
            trigger=CronTrigger(hour=cutoff.hour, minute=cutoff.minute, timezone=self.calendar.timezone),
            id=DAILY_JOB_ID,
            replace_existing=True,
        )
        self.scheduler.start()
        logger.info("✅ NAV scheduler started | cutoff=%s | tz=%s", cutoff.strftime("%H:%M"), self.calendar.timezone)

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("🛑 NAV scheduler shut down")

    def next_scheduled_run(self, now: Optional[datetime] = None) -> Optional[ScheduledRun]:
        return self.calendar.next_scheduled_run(now)

    # ------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------

    async def daily_job(self) -> None:
        today = self.calendar.now().date()
        if not self.calendar.should_run(today):
            logger.info("⏭️  NAV run skipped - %s is not a NAV day", today)
            return
        try:
            await self.execute_scheduled_run(today, triggered_by="SCHEDULER")
        except Exception:
            logger.exception("❌ Scheduled NAV run crashed | nav_date=%s", today)

    async def execute_scheduled_run(
        self,
        nav_date: date,
        triggered_by: str = "SCHEDULER",
        attempt: int = 1,
    ) -> NAVRun:
        logger.info("🔄 NAV run starting | nav_date=%s | attempt=%s", nav_date, attempt)
        run = await self.nav_service.run_daily_nav(nav_date, triggered_by=triggered_by, attempt=attempt)

        if run.summary:
            approval = await self.approval_service.create_approval(run)
            run.approval_id = approval.approval_id if approval else None

        self._evaluate_auto_approve(run)
        await self.nav_service.save_run(run)

        if self.notifier is not None:
            try:
                await self.notifier.send_daily_report(run)
            except Exception as exc:
                logger.error("NAV_REPORT_FAILED | run_id=%s | error=%s", run.run_id, exc)

        if run.status == NAVRunStatus.FAILED:
            self._maybe_schedule_retry(run)
        return run

    async def retry_failed_run(self, nav_date: date) -> NAVRun:
        """Manual retry of the latest run for a date; it must have FAILED"""
        latest = await self.nav_service.get_latest_run(nav_date)
        if latest is None:
            raise NAVRunNotFoundError(f"No NAV run for {nav_date.isoformat()}")
        if latest.status != NAVRunStatus.FAILED:
            raise InvalidRunStateError(
                f"Latest NAV run for {nav_date.isoformat()} is {latest.status.value}, not FAILED"
            )
        logger.info("🔁 Retrying NAV run %s for %s", latest.run_id, nav_date)
        return await self.execute_scheduled_run(nav_date, triggered_by="RETRY", attempt=latest.attempt + 1)

    # ------------------------------------------------------------
    # Policy
    # ------------------------------------------------------------

    def _evaluate_auto_approve(self, run: NAVRun) -> None:
        """Flag only; approvals are never transitioned automatically"""
        if not self.auto_approve or not run.summary:
            run.auto_approve_eligible = None
            return

        max_change = max(abs(line.nav_change_percent) for line in run.summary)
        has_errors = any(line.status == CalculationStatus.ERRORS for line in run.summary)
        run.auto_approve_eligible = max_change <= self.auto_approve_threshold and not has_errors
        logger.info(
            "NAV_AUTO_APPROVE_EVALUATED | run_id=%s | max_change_pct=%s | threshold=%s | eligible=%s",
            run.run_id, max_change, self.auto_approve_threshold, run.auto_approve_eligible,
        )

    def _maybe_schedule_retry(self, run: NAVRun) -> Optional[datetime]:
        if not self.retry_on_failure or run.attempt > self.max_retries:
            logger.warning(
                "NAV_RUN_NOT_RETRIED | run_id=%s | attempt=%s | max_retries=%s",
                run.run_id, run.attempt, self.max_retries,
            )
            return None
        if not self.scheduler.running:
            logger.info("NAV retry not scheduled (scheduler not running) | run_id=%s", run.run_id)
            return None

        run_at = self.calendar.now() + timedelta(minutes=self.retry_delay_minutes)
        self.scheduler.add_job(
            self.execute_scheduled_run,
            trigger=DateTrigger(run_date=run_at),
            kwargs={"nav_date": run.nav_date, "triggered_by": "AUTO_RETRY", "attempt": run.attempt + 1},
            id=f"nav_retry_{run.nav_date.isoformat()}",
            replace_existing=True,
        )
        logger.info(
            "NAV_RETRY_SCHEDULED | nav_date=%s | attempt=%s | run_at=%s",
            run.nav_date, run.attempt + 1, run_at.isoformat(),
        )
        return run_at

"""
NOTIFICATION SERVICE

Daily NAV report and approval-workflow notices.
Telegram (httpx) and, when SMTP is configured, e-mail.

No DB access. Delivery failures are logged and never raised.
"""

import asyncio
import logging
import smtplib
from decimal import Decimal
from email.message import EmailMessage
from typing import List, Optional

import httpx

from app.domain.models import CalculationStatus, NAVApproval, NAVRun, NAVSummaryLine
from app.domain.services.approval_workflow import ApprovalEvent

logger = logging.getLogger(__name__)

_STATUS_ICON = {
    CalculationStatus.VALID: "✅",
    CalculationStatus.WARNINGS: "⚠️",
    CalculationStatus.ERRORS: "❌",
}


def _pct(value: Decimal) -> str:
    return f"{value:+.2f}%"


def _summary_lines(lines: List[NAVSummaryLine]) -> List[str]:
    return [
        f"{_STATUS_ICON.get(line.status, '')} {line.fund_id}/{line.share_class_id}: "
        f"{line.nav_per_share:.4f} ({_pct(line.nav_change_percent)}) "
        f"NAV {line.net_asset_value:,.2f} [{line.status.value}]"
        for line in lines
    ]


def render_daily_report(run: NAVRun) -> str:
    header = f"NAV Report {run.nav_date.isoformat()} - {run.status.value}"
    body = [
        header,
        "",
        f"Funds: {run.completed_funds}/{run.total_funds} calculated, {run.failed_funds} failed",
    ]
    if run.summary:
        body.append("")
        body.extend(_summary_lines(run.summary))
        total = sum((line.net_asset_value for line in run.summary), Decimal("0"))
        body.append("")
        body.append(f"Total net assets: {total:,.2f}")
    if run.errors:
        body.append("")
        body.append("Errors:")
        body.extend(f"• {err}" for err in run.errors)
    if run.auto_approve_eligible:
        body.append("")
        body.append("All NAV movements are within the auto-approval threshold (informational).")
    return "\n".join(body)


def render_approval_event(event: ApprovalEvent, approval: NAVApproval, actor_name: Optional[str] = None) -> str:
    titles = {
        ApprovalEvent.CREATED: "NAV approval requested",
        ApprovalEvent.FIRST_APPROVED: "NAV first approval given",
        ApprovalEvent.APPROVED: "NAV approved",
        ApprovalEvent.REJECTED: "NAV rejected",
        ApprovalEvent.PUBLISHED: "NAV published",
    }
    body = [
        f"{titles[event]} - {approval.nav_date.isoformat()}",
        f"Approval: {approval.approval_id} ({approval.status.value})",
    ]
    if actor_name:
        body.append(f"By: {actor_name}")
    stamp = approval.rejection if event == ApprovalEvent.REJECTED else None
    if stamp is not None and stamp.comment:
        body.append(f"Reason: {stamp.comment}")
    if approval.summary:
        body.append("")
        body.extend(_summary_lines(list(approval.summary)))
    return "\n".join(body)


class NAVNotifier:
    def __init__(
        self,
        recipients: Optional[List[str]] = None,
        telegram_token: Optional[str] = None,
        telegram_chat_id: Optional[str] = None,
        smtp_host: Optional[str] = None,
        smtp_port: int = 587,
        smtp_user: Optional[str] = None,
        smtp_password: Optional[str] = None,
        sender: str = "nav@localhost",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.recipients = list(recipients or [])
        self.telegram_token = telegram_token
        self.telegram_chat_id = telegram_chat_id
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.sender = sender
        self._transport = transport

    async def send_daily_report(self, run: NAVRun) -> None:
        subject = f"NAV Report {run.nav_date.isoformat()} ({run.status.value})"
        await self._deliver(subject, render_daily_report(run))

    async def notify_approval(
        self,
        event: ApprovalEvent,
        approval: NAVApproval,
        actor_name: Optional[str] = None,
    ) -> None:
        logger.info(
            "NAV_APPROVAL_NOTICE | event=%s | approval_id=%s | status=%s",
            event.value, approval.approval_id, approval.status.value,
        )
        subject = f"NAV approval {event.value} {approval.nav_date.isoformat()}"
        await self._deliver(subject, render_approval_event(event, approval, actor_name))

    async def _deliver(self, subject: str, text: str) -> None:
        await self._send_telegram(text)
        if self.smtp_host and self.recipients:
            try:
                await asyncio.to_thread(self._send_email, subject, text)
            except Exception as exc:
                logger.error("NAV_EMAIL_FAILED | subject=%s | error=%s", subject, exc)

    async def _send_telegram(self, text: str) -> bool:
        if not self.telegram_token or not self.telegram_chat_id:
            logger.info("Telegram notice skipped (missing TELEGRAM_BOT_TOKEN or TELEGRAM_CHAT_ID)")
            return False

        url = f"https://api.telegram.org/bot{self.telegram_token}/sendMessage"
        try:
            async with httpx.AsyncClient(timeout=15.0, transport=self._transport) as client:
                resp = await client.post(url, json={"chat_id": self.telegram_chat_id, "text": text})
                resp.raise_for_status()
            return True
        except Exception as exc:
            logger.error(f"Telegram notice failed: {exc}")
            return False

    def _send_email(self, subject: str, text: str) -> None:
        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = self.sender
        message["To"] = ", ".join(self.recipients)
        message.set_content(text)

        with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=15) as smtp:
            smtp.starttls()
            if self.smtp_user:
                smtp.login(self.smtp_user, self.smtp_password or "")
            smtp.send_message(message)
        logger.info("NAV_EMAIL_SENT | subject=%s | recipients=%s", subject, len(self.recipients))

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from uuid import UUID

import httpx
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.auth import SessionUser, require_role
from app.core.config import settings
from app.db.session import get_db
from app.models.accounting import AccountingDashboardCache
from app.schemas.notification import (
    AccountingNotificationRequest,
    AccountingNotificationResponse,
    NotificationCheckResponse,
    NotificationItem,
)
from app.services.accounting_dashboard import get_dashboard
from app.services.invoicing import send_accounting_notification

router = APIRouter(prefix="/notifications", tags=["notifications"])
logger = logging.getLogger(__name__)

can_notify = require_role("admin", "accounting")


def _fmt(items: list[NotificationItem]) -> str:
    if not items:
        return "No active alerts."
    return "\n".join(f"- [{i.level.upper()}] {i.title}: {i.message}" for i in items)


def _configured_recipients() -> list[str]:
    raw = settings.accounting_notification_recipients or ""
    return [r.strip() for r in raw.split(",") if r.strip()]


def dashboard_alerts(cache: AccountingDashboardCache | None) -> list[NotificationItem]:
    if cache is None:
        return [
            NotificationItem(
                level="info",
                title="Dashboard not calculated",
                message="Refresh the accounting dashboard to evaluate alerts.",
            )
        ]
    items: list[NotificationItem] = []
    if cache.overdue_receivables > 0:
        level = "critical" if cache.overdue_90_plus > 0 else "warning"
        items.append(
            NotificationItem(
                level=level,
                title="Overdue receivables",
                message=(
                    f"{cache.overdue_receivables:,.2f} {cache.currency} overdue "
                    f"({cache.overdue_90_plus:,.2f} more than 90 days)"
                ),
            )
        )
    if cache.overdue_payables > 0:
        items.append(
            NotificationItem(
                level="warning",
                title="Overdue payables",
                message=f"{cache.overdue_payables:,.2f} {cache.currency} owed to suppliers is overdue",
            )
        )
    if cache.missing_invoices_count:
        items.append(
            NotificationItem(
                level="warning",
                title="Missing supplier invoices",
                message=f"{cache.missing_invoices_count} expected supplier invoices are missing",
            )
        )
    if cache.pending_approval_count:
        items.append(
            NotificationItem(
                level="info",
                title="Pending approvals",
                message=f"{cache.pending_approval_count} supplier invoices wait for approval",
            )
        )
    return items


async def _send_slack(text: str) -> bool:
    if not settings.slack_webhook_url:
        return False
    async with httpx.AsyncClient(timeout=15) as c:
        r = await c.post(settings.slack_webhook_url, json={"text": text})
        return r.status_code < 300


def _send_email(subject: str, text: str, recipients: list[str]) -> bool:
    if not all([settings.smtp_host, settings.smtp_user, settings.smtp_password]) or not recipients:
        return False
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = settings.smtp_user
    msg["To"] = ", ".join(recipients)
    msg.set_content(text)
    with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=15) as s:
        s.starttls()
        s.login(settings.smtp_user, settings.smtp_password)
        s.send_message(msg)
    return True


async def _deliver(subject: str, text: str, recipients: list[str]) -> list[str]:
    delivered: list[str] = []
    try:
        if await _send_slack(text):
            delivered.append("slack")
    except httpx.HTTPError:
        logger.exception("notification_delivery_failed channel=slack")
    try:
        if _send_email(subject, text, recipients):
            delivered.append("email")
    except (smtplib.SMTPException, OSError):
        logger.exception("notification_delivery_failed channel=email")
    return delivered


@router.post("/check", response_model=NotificationCheckResponse)
async def check_notifications(
    deliver: bool = True,
    db: Session = Depends(get_db),
    _=Depends(can_notify),
) -> NotificationCheckResponse:
    items = dashboard_alerts(get_dashboard(db))
    delivered: list[str] = []
    if deliver and items:
        text = "Accounting alerts\n" + _fmt(items)
        delivered = await _deliver("YourOBC accounting alerts", text, _configured_recipients())
    return NotificationCheckResponse(items=items, delivered=delivered)


@router.post("/invoice-auto-gen/{log_id}", response_model=AccountingNotificationResponse)
async def notify_accounting(
    log_id: UUID,
    payload: AccountingNotificationRequest | None = None,
    db: Session = Depends(get_db),
    current: SessionUser = Depends(can_notify),
) -> AccountingNotificationResponse:
    recipients = (payload.recipients if payload and payload.recipients else None) or _configured_recipients()
    # The log is committed before anything is delivered.
    entry = send_accounting_notification(db, current, log_id, recipients)
    db.commit()
    text = (
        f"Invoice {entry.invoice_number} was generated automatically after proof of delivery "
        f"on {entry.pod_received_date:%Y-%m-%d}. Please review and send it to the customer."
    )
    delivered = await _deliver(f"New invoice {entry.invoice_number}", text, recipients)
    return AccountingNotificationResponse(
        log_id=str(entry.id),
        invoice_number=entry.invoice_number,
        recipients=list(entry.notification_recipients),
        delivered=delivered,
    )

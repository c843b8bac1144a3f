"""
Accounting dashboard: receivables, payables, aging and forecast figures,
recomputed from every invoice on each refresh and cached per UTC day.

All figures are in the base currency (EUR). An invoice's EUR value uses the
rate recorded on it at issuance, never a fresh lookup.
"""
from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.auth import SessionUser
from app.core.config import settings
from app.core.errors import NotAuthenticatedError, NotFoundError, ValidationError
from app.models.accounting import AccountingDashboardCache, IncomingInvoiceTracking
from app.models.customer import Customer, Shipment
from app.models.invoice import Invoice
from app.services.audit import record_audit
from app.services.exchange_rates import DEFAULT_OTHER_SOURCE_RATE, round_money
from app.utils.dates import as_utc, utc_day, utcnow, whole_days_between

logger = logging.getLogger(__name__)

OPEN_EXCLUDED = ("paid", "cancelled")
DUE_STATUSES = ("sent", "overdue")
TRACKING_STATUSES = ("expected", "missing", "received", "approved", "paid", "disputed", "cancelled")

AGING_BUCKETS = ("overdue_1_to_30", "overdue_31_to_60", "overdue_61_to_90", "overdue_90_plus")


@dataclass
class DashboardMetrics:
    total_receivables: float = 0
    overdue_receivables: float = 0
    total_payables: float = 0
    overdue_payables: float = 0
    expected_payments_next_30_days: float = 0
    expected_expenses_next_30_days: float = 0
    forecast_inflow_90_days: float = 0
    forecast_outflow_90_days: float = 0
    overdue_1_to_30: float = 0
    overdue_31_to_60: float = 0
    overdue_61_to_90: float = 0
    overdue_90_plus: float = 0
    # Not aggregated yet.
    dunning_level1_count: int = 0
    dunning_level2_count: int = 0
    dunning_level3_count: int = 0
    suspended_customers_count: int = 0
    missing_invoices_count: int = 0
    missing_invoices_value: float = 0
    pending_approval_count: int = 0
    pending_approval_value: float = 0

    def rounded(self) -> dict:
        data = asdict(self)
        return {k: (round_money(v) if isinstance(v, float) else v) for k, v in data.items()}


@dataclass
class CustomerReceivable:
    customer_id: uuid.UUID | None
    company_name: str | None
    total: float = 0
    invoice_count: int = 0
    oldest_days_overdue: int = 0
    overdue_amount: float = 0
    invoice_numbers: list[str] = field(default_factory=list)


def eur_value(invoice: Invoice) -> float:
    if invoice.currency == "EUR":
        return invoice.total_amount
    return invoice.total_amount * (invoice.exchange_rate or DEFAULT_OTHER_SOURCE_RATE)


def aging_bucket(days_overdue: int) -> str:
    """Upper bounds are inclusive: 30 -> 1-30, 31 -> 31-60."""
    if days_overdue <= 30:
        return "overdue_1_to_30"
    if days_overdue <= 60:
        return "overdue_31_to_60"
    if days_overdue <= 90:
        return "overdue_61_to_90"
    return "overdue_90_plus"


def _due_within(invoice: Invoice, start: datetime, end: datetime) -> bool:
    return invoice.status in DUE_STATUSES and start <= as_utc(invoice.due_date) <= end


def compute_dashboard_metrics(
    invoices: Iterable[Invoice],
    tracking: Iterable[IncomingInvoiceTracking],
    now: datetime,
) -> DashboardMetrics:
    now = as_utc(now)
    expected_end = now + timedelta(days=settings.dashboard_expected_days)
    forecast_end = now + timedelta(days=settings.dashboard_forecast_days)
    m = DashboardMetrics()

    for invoice in invoices:
        value = eur_value(invoice)
        is_open = invoice.status not in OPEN_EXCLUDED
        if invoice.type == "outgoing":
            if is_open:
                m.total_receivables += value
            if invoice.status == "overdue":
                m.overdue_receivables += value
                days = whole_days_between(now, invoice.due_date)
                bucket = aging_bucket(days)
                setattr(m, bucket, getattr(m, bucket) + value)
            if _due_within(invoice, now, expected_end):
                m.expected_payments_next_30_days += value
            if _due_within(invoice, now, forecast_end):
                m.forecast_inflow_90_days += value
        elif invoice.type == "incoming":
            if is_open:
                m.total_payables += value
            if invoice.status == "overdue":
                m.overdue_payables += value
            if _due_within(invoice, now, expected_end):
                m.expected_expenses_next_30_days += value
            if _due_within(invoice, now, forecast_end):
                m.forecast_outflow_90_days += value

    for row in tracking:
        if row.status == "missing":
            m.missing_invoices_count += 1
        elif row.status == "received":
            m.pending_approval_count += 1
    return m


def refresh_dashboard_cache(
    db: Session,
    actor_id: str | None = None,
    now: datetime | None = None,
) -> dict:
    """Recompute every figure and upsert today's cache row. Returns `{cache_id, action}`."""
    now = as_utc(now) if now else utcnow()
    invoices = db.execute(select(Invoice).where(Invoice.deleted_at.is_(None))).scalars().all()
    tracking = db.execute(select(IncomingInvoiceTracking)).scalars().all()
    values = compute_dashboard_metrics(invoices, tracking, now).rounded()

    day = utc_day(now)
    cache = db.execute(
        select(AccountingDashboardCache).where(AccountingDashboardCache.cache_date == day)
    ).scalars().first()
    action = "updated" if cache else "created"
    if cache is None:
        cache = AccountingDashboardCache(cache_date=day, created_by=actor_id or "system")
        db.add(cache)
    for key, value in values.items():
        setattr(cache, key, value)
    cache.currency = settings.base_currency
    cache.calculated_at = now
    cache.valid_until = now + timedelta(hours=settings.dashboard_cache_hours)
    cache.updated_by = actor_id or "system"
    db.flush()

    record_audit(
        db,
        f"accounting_dashboard.{action}",
        "accounting_dashboard_cache",
        cache.id,
        day.isoformat(),
        f"Dashboard cache for {day.isoformat()} {action} from {len(invoices)} invoices",
        actor_id or "system",
        {"invoices": len(invoices)},
        at=now,
    )
    logger.info(
        "dashboard_cache_%s day=%s invoices=%s receivables=%s payables=%s",
        action,
        day,
        len(invoices),
        values["total_receivables"],
        values["total_payables"],
    )
    return {"cache_id": cache.id, "action": action}


def get_dashboard(db: Session, now: datetime | None = None) -> AccountingDashboardCache | None:
    return db.execute(
        select(AccountingDashboardCache).where(AccountingDashboardCache.cache_date == utc_day(now))
    ).scalars().first()


def is_stale(cache: AccountingDashboardCache, now: datetime | None = None) -> bool:
    return as_utc(cache.valid_until) <= (as_utc(now) if now else utcnow())


def receivables_by_customer(db: Session, limit: int = 10, now: datetime | None = None) -> list[CustomerReceivable]:
    now = as_utc(now) if now else utcnow()
    invoices = db.execute(
        select(Invoice).where(
            Invoice.type == "outgoing",
            Invoice.status.notin_(OPEN_EXCLUDED),
            Invoice.deleted_at.is_(None),
        )
    ).scalars().all()

    grouped: dict[uuid.UUID | None, CustomerReceivable] = {}
    for invoice in invoices:
        entry = grouped.get(invoice.customer_id)
        if entry is None:
            entry = CustomerReceivable(customer_id=invoice.customer_id, company_name=None)
            grouped[invoice.customer_id] = entry
        value = eur_value(invoice)
        entry.total += value
        entry.invoice_count += 1
        entry.invoice_numbers.append(invoice.invoice_number)
        days = whole_days_between(now, invoice.due_date)
        if days > entry.oldest_days_overdue:
            entry.oldest_days_overdue = days
        if invoice.status == "overdue":
            entry.overdue_amount += value

    customer_ids = [cid for cid in grouped if cid is not None]
    if customer_ids:
        names = dict(
            db.execute(select(Customer.id, Customer.company_name).where(Customer.id.in_(customer_ids))).all()
        )
        for cid, entry in grouped.items():
            entry.company_name = names.get(cid)

    rows = sorted(grouped.values(), key=lambda e: e.total, reverse=True)[:limit]
    for entry in rows:
        entry.total = round_money(entry.total)
        entry.overdue_amount = round_money(entry.overdue_amount)
    return rows


def list_incoming_tracking(
    db: Session,
    status: str | None = None,
    limit: int = 200,
) -> list[IncomingInvoiceTracking]:
    stmt = select(IncomingInvoiceTracking)
    if status:
        stmt = stmt.where(IncomingInvoiceTracking.status == status)
    stmt = stmt.order_by(IncomingInvoiceTracking.expected_date.asc()).limit(limit)
    return list(db.execute(stmt).scalars().all())


def create_expected_invoice(
    db: Session,
    actor: SessionUser | None,
    *,
    partner_name: str,
    expected_date: datetime,
    shipment_id: uuid.UUID | None = None,
    expected_amount: float | None = None,
    expected_currency: str | None = None,
    internal_notes: str | None = None,
) -> IncomingInvoiceTracking:
    if actor is None:
        raise NotAuthenticatedError("Not authenticated")
    if shipment_id is not None and db.get(Shipment, shipment_id) is None:
        raise NotFoundError("Shipment not found")
    name = (partner_name or "").strip()
    if not name:
        raise ValidationError("Partner name is required")

    row = IncomingInvoiceTracking(
        shipment_id=shipment_id,
        partner_name=name,
        status="expected",
        expected_date=expected_date,
        expected_amount=expected_amount,
        expected_currency=(expected_currency or "").upper() or None,
        internal_notes=internal_notes,
        created_by=actor.user_id,
    )
    db.add(row)
    db.flush()
    record_audit(
        db,
        "incoming_invoice.expected",
        "incoming_invoice_tracking",
        row.id,
        name,
        f"Expecting supplier invoice from {name}",
        actor.user_id,
    )
    logger.info("incoming_invoice_expected id=%s partner=%s", row.id, name)
    return row


def update_tracking_status(
    db: Session,
    actor: SessionUser | None,
    tracking_id: uuid.UUID,
    status: str,
    *,
    invoice_id: uuid.UUID | None = None,
    payment_reference: str | None = None,
    dispute_reason: str | None = None,
    notes: str | None = None,
    now: datetime | None = None,
) -> IncomingInvoiceTracking:
    if actor is None:
        raise NotAuthenticatedError("Not authenticated")
    if status not in TRACKING_STATUSES:
        raise ValidationError(f"Unknown tracking status: {status}")
    row = db.get(IncomingInvoiceTracking, tracking_id)
    if row is None:
        raise NotFoundError("Incoming invoice tracking not found")
    if invoice_id is not None and db.get(Invoice, invoice_id) is None:
        raise NotFoundError("Invoice not found")
    if status == "disputed" and not (dispute_reason or "").strip():
        raise ValidationError("Dispute reason is required")

    now = now or utcnow()
    previous = row.status
    row.status = status
    if invoice_id is not None:
        row.invoice_id = invoice_id
    if status == "received":
        row.received_date = now
    elif status == "approved":
        row.approved_by = actor.user_id
        row.approved_date = now
    elif status == "paid":
        row.paid_date = now
        row.payment_reference = payment_reference
    elif status == "disputed":
        row.dispute_reason = dispute_reason.strip()
        row.dispute_date = now
    if notes:
        row.internal_notes = notes
    record_audit(
        db,
        "incoming_invoice.status_changed",
        "incoming_invoice_tracking",
        row.id,
        row.partner_name,
        f"Supplier invoice from {row.partner_name} {previous} -> {status}",
        actor.user_id,
        {"from": previous, "to": status},
        at=now,
    )
    db.flush()
    logger.info("incoming_invoice_status id=%s from=%s to=%s", row.id, previous, status)
    return row

"""
Invoice lifecycle: manual and proof-of-delivery creation, status changes,
payments, collection attempts and soft deletion.

Functions here add and flush rows in the caller's session and never commit.
The router commits once the whole mutation succeeded; any exception rolls the
request back, including the invoice number that was drawn from the counter.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from app.core.auth import SessionUser
from app.core.config import settings
from app.core.errors import InvalidStateError, NotAuthenticatedError, NotFoundError, ValidationError
from app.models.accounting import InvoiceAutoGenLog
from app.models.customer import Customer, Shipment
from app.models.invoice import Invoice
from app.models.invoice_item import InvoiceCollectionAttempt, InvoiceLineItem
from app.schemas.invoice import IncomingInvoiceCreate, InvoiceCreate, PaymentCreate
from app.services.accounting_dashboard import update_tracking_status
from app.services.audit import record_audit
from app.services.exchange_rates import convert_amount, resolve_rate, round_money, validate_currency
from app.services.invoice_numbering import next_invoice_number
from app.utils.dates import as_utc, utcnow

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"

ALLOWED_TRANSITIONS: dict[str, tuple[str, ...]] = {
    "draft": ("sent", "cancelled"),
    "sent": ("paid", "overdue", "cancelled"),
    "overdue": ("paid", "cancelled"),
    "paid": (),
    "cancelled": (),
}
CLOSED_STATUSES = ("paid", "cancelled")
DUPLICATE_INVOICE_REASON = "Invoice already exists"


@dataclass
class AutoInvoiceResult:
    success: bool
    reason: str | None = None
    invoice_id: uuid.UUID | None = None
    invoice_number: str | None = None


def _require_actor(actor: SessionUser | None) -> SessionUser:
    if actor is None:
        raise NotAuthenticatedError("Not authenticated")
    return actor


def _invoice_query():
    return select(Invoice).options(
        selectinload(Invoice.line_items),
        selectinload(Invoice.collection_attempts),
    )


def get_invoice(db: Session, invoice_id: uuid.UUID) -> Invoice:
    row = db.execute(
        _invoice_query().where(Invoice.id == invoice_id, Invoice.deleted_at.is_(None))
    ).scalars().first()
    if not row:
        raise NotFoundError("Invoice not found")
    return row


def list_invoices(
    db: Session,
    *,
    status: str | None = None,
    invoice_type: str | None = None,
    customer_id: uuid.UUID | None = None,
    limit: int = 200,
) -> list[Invoice]:
    stmt = _invoice_query().where(Invoice.deleted_at.is_(None))
    if status:
        stmt = stmt.where(Invoice.status == status)
    if invoice_type:
        stmt = stmt.where(Invoice.type == invoice_type)
    if customer_id:
        stmt = stmt.where(Invoice.customer_id == customer_id)
    stmt = stmt.order_by(Invoice.issue_date.desc(), Invoice.invoice_number.desc()).limit(limit)
    return list(db.execute(stmt).scalars().all())


def _lock_shipment(db: Session, shipment_id: uuid.UUID) -> Shipment | None:
    """Row lock held until commit; serializes invoice creation per shipment."""
    return db.execute(select(Shipment).where(Shipment.id == shipment_id).with_for_update()).scalars().first()


def _outgoing_invoice_id(db: Session, shipment_id: uuid.UUID) -> uuid.UUID | None:
    return db.execute(
        select(Invoice.id).where(Invoice.shipment_id == shipment_id, Invoice.type == "outgoing").limit(1)
    ).scalars().first()


def base_currency_rate(db: Session, currency: str, as_of: datetime) -> float:
    """Invoice-currency -> base-currency rate stored on the invoice at issuance."""
    if currency == settings.base_currency:
        return 1.0
    return resolve_rate(db, currency, settings.base_currency, as_of).rate


def create_outgoing_invoice(
    db: Session,
    actor: SessionUser | None,
    payload: InvoiceCreate,
    now: datetime | None = None,
) -> Invoice:
    actor = _require_actor(actor)
    now = now or utcnow()
    currency = validate_currency(payload.currency)

    if db.get(Customer, payload.customer_id) is None:
        raise NotFoundError("Customer not found")
    if payload.shipment_id is not None:
        shipment = _lock_shipment(db, payload.shipment_id)
        if shipment is None:
            raise NotFoundError("Shipment not found")
        if _outgoing_invoice_id(db, shipment.id) is not None:
            raise InvalidStateError(f"Shipment {shipment.shipment_number} already has an outgoing invoice")

    line_items: list[InvoiceLineItem] = []
    subtotal = 0.0
    for position, raw in enumerate(payload.line_items):
        item_currency = validate_currency(raw.currency)
        line_total = raw.total if raw.total is not None else round_money(raw.quantity * raw.unit_price)
        item = InvoiceLineItem(
            position=position,
            description=raw.description.strip(),
            quantity=raw.quantity,
            unit_price_amount=raw.unit_price,
            unit_price_currency=item_currency,
            total_amount=line_total,
            currency=item_currency,
        )
        if item_currency != currency:
            converted = convert_amount(db, line_total, item_currency, currency, now)
            item.total_amount = converted.converted_amount
            item.currency = currency
            item.exchange_rate = converted.exchange_rate
            item.original_amount = line_total
            item.original_currency = item_currency
        subtotal += item.total_amount
        line_items.append(item)

    subtotal = round_money(subtotal)
    tax_amount = round_money(subtotal * payload.tax_rate / 100) if payload.tax_rate is not None else None
    total = round_money(subtotal + (tax_amount or 0))

    invoice = Invoice(
        invoice_number=next_invoice_number(db, actor.user_id, now),
        type="outgoing",
        status="draft",
        shipment_id=payload.shipment_id,
        customer_id=payload.customer_id,
        issue_date=now,
        due_date=now + timedelta(days=payload.payment_terms),
        description=payload.description.strip(),
        currency=currency,
        exchange_rate=base_currency_rate(db, currency, now),
        subtotal_amount=subtotal,
        tax_rate=payload.tax_rate,
        tax_amount=tax_amount,
        total_amount=total,
        payment_terms=payload.payment_terms,
        notes=payload.notes,
        tags=list(payload.tags or []),
        created_by=actor.user_id,
        line_items=line_items,
        collection_attempts=[],
    )
    db.add(invoice)
    try:
        db.flush()
    except IntegrityError as exc:
        # uq_invoices_outgoing_shipment: another request invoiced the shipment first
        raise InvalidStateError("Shipment already has an outgoing invoice") from exc
    record_audit(
        db,
        "invoice.created",
        "invoice",
        invoice.id,
        invoice.invoice_number,
        f"Created outgoing invoice {invoice.invoice_number} for {total:.2f} {currency}",
        actor.user_id,
        {"total": total, "currency": currency},
        at=now,
    )
    logger.info("invoice_created number=%s total=%s currency=%s", invoice.invoice_number, total, currency)
    return invoice


def auto_create_invoice_after_pod(
    db: Session,
    shipment_id: uuid.UUID,
    now: datetime | None = None,
) -> AutoInvoiceResult:
    """
    Create the outgoing invoice for a delivered shipment.

    Safe to call repeatedly: when the shipment already has an outgoing invoice
    nothing is written and the result carries `success=False`.
    """
    now = now or utcnow()
    shipment = _lock_shipment(db, shipment_id)
    if shipment is None:
        raise NotFoundError("Shipment not found")

    if _outgoing_invoice_id(db, shipment_id) is not None:
        logger.info("pod_invoice_skipped shipment=%s reason=exists", shipment.shipment_number)
        return AutoInvoiceResult(success=False, reason=DUPLICATE_INVOICE_REASON)

    if shipment.customer_id is None:
        raise NotFoundError("Shipment has no customer")
    customer = db.get(Customer, shipment.customer_id)
    if customer is None:
        raise NotFoundError("Customer not found")

    subtotal = round_money(shipment.agreed_price_amount)
    currency = shipment.agreed_price_currency
    exchange_rate = shipment.agreed_price_exchange_rate or 1.0
    tax_rate = settings.pod_invoice_tax_rate
    tax_amount = round_money(subtotal * tax_rate / 100)
    total = round_money(subtotal + tax_amount)
    payment_terms = customer.payment_terms or settings.default_payment_terms_days

    invoice_number = next_invoice_number(db, SYSTEM_ACTOR, now)
    invoice = Invoice(
        invoice_number=invoice_number,
        type="outgoing",
        status="draft",
        shipment_id=shipment.id,
        customer_id=customer.id,
        issue_date=now,
        due_date=now + timedelta(days=payment_terms),
        description=f"Invoice for shipment {shipment.shipment_number}",
        currency=currency,
        exchange_rate=exchange_rate,
        subtotal_amount=subtotal,
        tax_rate=tax_rate,
        tax_amount=tax_amount,
        total_amount=total,
        payment_terms=payment_terms,
        tags=[],
        created_by=SYSTEM_ACTOR,
        line_items=[
            InvoiceLineItem(
                position=0,
                description=(
                    f"Shipment {shipment.shipment_number} - "
                    f"{shipment.origin_city or ''} to {shipment.destination_city or ''}"
                ),
                quantity=1,
                unit_price_amount=subtotal,
                unit_price_currency=currency,
                total_amount=subtotal,
                currency=currency,
                exchange_rate=exchange_rate,
            )
        ],
        collection_attempts=[],
    )
    try:
        with db.begin_nested():
            db.add(invoice)
    except IntegrityError:
        # Lost the race to another trigger that committed between our check and insert.
        logger.info("pod_invoice_skipped shipment=%s reason=exists_on_insert", shipment.shipment_number)
        return AutoInvoiceResult(success=False, reason=DUPLICATE_INVOICE_REASON)

    db.add(
        InvoiceAutoGenLog(
            shipment_id=shipment.id,
            invoice_id=invoice.id,
            invoice_number=invoice_number,
            generated_date=now,
            pod_received_date=shipment.completed_at or now,
            notification_sent=False,
            notification_recipients=[],
            status="generated",
            created_by=SYSTEM_ACTOR,
        )
    )
    record_audit(
        db,
        "invoice.auto_generated",
        "invoice",
        invoice.id,
        invoice_number,
        f"Generated invoice {invoice_number} after proof of delivery for shipment {shipment.shipment_number}",
        SYSTEM_ACTOR,
        {"shipment_id": str(shipment.id), "total": total, "currency": currency},
        at=now,
    )
    db.flush()
    logger.info(
        "pod_invoice_created number=%s shipment=%s total=%s currency=%s",
        invoice_number,
        shipment.shipment_number,
        total,
        currency,
    )
    return AutoInvoiceResult(success=True, invoice_id=invoice.id, invoice_number=invoice_number)


def _incoming_reference(now: datetime) -> str:
    # Supplier numbers are not unique across partners, so incoming invoices get their own key.
    return f"IN-{now:%y%m}-{uuid.uuid4().hex[:8].upper()}"


def create_incoming_invoice(
    db: Session,
    actor: SessionUser | None,
    payload: IncomingInvoiceCreate,
    now: datetime | None = None,
) -> Invoice:
    """
    Book a supplier invoice as a payable.

    It starts as `sent` (issued to us and awaiting payment), so it counts in
    payables and forecasts and the overdue sweep picks it up. With
    `tracking_id` the matching expected-invoice row is marked received.
    """
    actor = _require_actor(actor)
    now = now or utcnow()
    currency = validate_currency(payload.currency)
    partner_name = payload.partner_name.strip()
    external_number = payload.external_invoice_number.strip()
    if not partner_name or not external_number:
        raise ValidationError("Partner name and supplier invoice number are required")
    if payload.shipment_id is not None and db.get(Shipment, payload.shipment_id) is None:
        raise NotFoundError("Shipment not found")

    duplicate = db.execute(
        select(Invoice.id).where(
            Invoice.type == "incoming",
            Invoice.partner_name == partner_name,
            Invoice.external_invoice_number == external_number,
            Invoice.deleted_at.is_(None),
        ).limit(1)
    ).scalars().first()
    if duplicate is not None:
        raise InvalidStateError(f"Invoice {external_number} from {partner_name} is already booked")

    issue_date = payload.issue_date or now
    due_date = payload.due_date or issue_date + timedelta(days=payload.payment_terms)
    subtotal = round_money(payload.subtotal)
    tax_amount = round_money(subtotal * payload.tax_rate / 100) if payload.tax_rate is not None else None
    total = round_money(subtotal + (tax_amount or 0))
    description = (payload.description or "").strip() or f"Supplier invoice {external_number} from {partner_name}"

    invoice = Invoice(
        invoice_number=_incoming_reference(now),
        type="incoming",
        status="sent",
        shipment_id=payload.shipment_id,
        partner_name=partner_name,
        external_invoice_number=external_number,
        issue_date=issue_date,
        due_date=due_date,
        description=description,
        currency=currency,
        exchange_rate=base_currency_rate(db, currency, issue_date),
        subtotal_amount=subtotal,
        tax_rate=payload.tax_rate,
        tax_amount=tax_amount,
        total_amount=total,
        payment_terms=payload.payment_terms,
        notes=payload.notes,
        tags=list(payload.tags or []),
        created_by=actor.user_id,
        line_items=[
            InvoiceLineItem(
                position=0,
                description=description,
                quantity=1,
                unit_price_amount=subtotal,
                unit_price_currency=currency,
                total_amount=subtotal,
                currency=currency,
            )
        ],
        collection_attempts=[],
    )
    db.add(invoice)
    db.flush()
    record_audit(
        db,
        "invoice.incoming_recorded",
        "invoice",
        invoice.id,
        invoice.invoice_number,
        f"Booked supplier invoice {external_number} from {partner_name} for {total:.2f} {currency}",
        actor.user_id,
        {"partner": partner_name, "external_number": external_number, "total": total, "currency": currency},
        at=now,
    )
    if payload.tracking_id is not None:
        update_tracking_status(db, actor, payload.tracking_id, "received", invoice_id=invoice.id, now=now)
    logger.info(
        "incoming_invoice_recorded number=%s partner=%s total=%s currency=%s",
        invoice.invoice_number,
        partner_name,
        total,
        currency,
    )
    return invoice


def get_auto_gen_log(db: Session, log_id: uuid.UUID) -> InvoiceAutoGenLog:
    row = db.get(InvoiceAutoGenLog, log_id)
    if not row:
        raise NotFoundError("Invoice generation log not found")
    return row


def list_auto_gen_logs(db: Session, *, pending_only: bool = False, limit: int = 100) -> list[InvoiceAutoGenLog]:
    stmt = select(InvoiceAutoGenLog)
    if pending_only:
        stmt = stmt.where(InvoiceAutoGenLog.notification_sent.is_(False))
    stmt = stmt.order_by(InvoiceAutoGenLog.generated_date.desc()).limit(limit)
    return list(db.execute(stmt).scalars().all())


def send_accounting_notification(
    db: Session,
    actor: SessionUser | None,
    log_id: uuid.UUID,
    recipients: list[str],
    now: datetime | None = None,
) -> InvoiceAutoGenLog:
    actor = _require_actor(actor)
    now = now or utcnow()
    entry = get_auto_gen_log(db, log_id)
    entry.notification_sent = True
    entry.notification_sent_date = now
    entry.notification_recipients = list(recipients)
    entry.status = "notification_sent"
    record_audit(
        db,
        "invoice.notification_sent",
        "invoice",
        entry.invoice_id,
        entry.invoice_number,
        f"Accounting notified about invoice {entry.invoice_number}",
        actor.user_id,
        {"recipients": list(recipients)},
        at=now,
    )
    db.flush()
    logger.info("accounting_notification_sent invoice=%s recipients=%s", entry.invoice_number, len(recipients))
    return entry


def update_invoice_status(
    db: Session,
    actor: SessionUser | None,
    invoice_id: uuid.UUID,
    status: str,
    reason: str | None = None,
    now: datetime | None = None,
) -> Invoice:
    actor = _require_actor(actor)
    now = now or utcnow()
    invoice = get_invoice(db, invoice_id)
    current = invoice.status
    if status not in ALLOWED_TRANSITIONS:
        raise ValidationError(f"Unknown invoice status: {status}")
    if status not in ALLOWED_TRANSITIONS.get(current, ()):
        raise InvalidStateError(f"Cannot change invoice status from {current} to {status}")

    invoice.status = status
    invoice.updated_by = actor.user_id
    if current == "draft" and status == "sent":
        invoice.sent_at = now
    record_audit(
        db,
        "invoice.status_changed",
        "invoice",
        invoice.id,
        invoice.invoice_number,
        f"Invoice {invoice.invoice_number} status {current} -> {status}" + (f": {reason}" if reason else ""),
        actor.user_id,
        {"from": current, "to": status, "reason": reason},
        at=now,
    )
    db.flush()
    logger.info("invoice_status_changed number=%s from=%s to=%s", invoice.invoice_number, current, status)
    return invoice


def process_payment(
    db: Session,
    actor: SessionUser | None,
    invoice_id: uuid.UUID,
    payment: PaymentCreate,
    now: datetime | None = None,
) -> Invoice:
    actor = _require_actor(actor)
    now = now or utcnow()
    invoice = get_invoice(db, invoice_id)
    if invoice.status == "paid":
        raise InvalidStateError("Invoice is already marked as paid")
    if invoice.status == "cancelled":
        raise InvalidStateError("Cannot process payment for cancelled invoice")
    if payment.currency.upper() != invoice.currency:
        raise ValidationError("Payment currency must match invoice currency")

    previous = invoice.status
    invoice.status = "paid"
    invoice.payment_date = payment.payment_date or now
    invoice.payment_method = payment.method
    invoice.paid_amount = round_money(payment.amount)
    invoice.payment_reference = payment.reference
    invoice.updated_by = actor.user_id
    record_audit(
        db,
        "invoice.paid",
        "invoice",
        invoice.id,
        invoice.invoice_number,
        f"Payment of {invoice.paid_amount:.2f} {invoice.currency} recorded for invoice {invoice.invoice_number}",
        actor.user_id,
        {"from": previous, "method": payment.method, "reference": payment.reference},
        at=now,
    )
    db.flush()
    logger.info(
        "invoice_paid number=%s amount=%s currency=%s",
        invoice.invoice_number,
        invoice.paid_amount,
        invoice.currency,
    )
    return invoice


def add_collection_attempt(
    db: Session,
    actor: SessionUser | None,
    invoice_id: uuid.UUID,
    method: str,
    result: str,
    notes: str | None = None,
    now: datetime | None = None,
) -> Invoice:
    actor = _require_actor(actor)
    now = now or utcnow()
    invoice = get_invoice(db, invoice_id)
    if invoice.status in CLOSED_STATUSES:
        raise InvalidStateError(f"Cannot add collection attempt to {invoice.status} invoice")
    result = (result or "").strip()
    if not result:
        raise ValidationError("Collection attempt result is required")
    if len(invoice.collection_attempts) >= settings.max_collection_attempts:
        raise ValidationError(f"Maximum {settings.max_collection_attempts} collection attempts allowed")

    invoice.collection_attempts.append(
        InvoiceCollectionAttempt(
            position=len(invoice.collection_attempts),
            method=method,
            result=result,
            notes=notes,
            attempted_at=now,
            created_by=actor.user_id,
        )
    )
    invoice.updated_by = actor.user_id
    record_audit(
        db,
        "invoice.collection_attempt",
        "invoice",
        invoice.id,
        invoice.invoice_number,
        f"Collection attempt via {method} on invoice {invoice.invoice_number}: {result}",
        actor.user_id,
        {"method": method},
        at=now,
    )
    db.flush()
    logger.info("collection_attempt_added number=%s method=%s", invoice.invoice_number, method)
    return invoice


def delete_invoice(
    db: Session,
    actor: SessionUser | None,
    invoice_id: uuid.UUID,
    now: datetime | None = None,
) -> Invoice:
    actor = _require_actor(actor)
    now = now or utcnow()
    invoice = get_invoice(db, invoice_id)
    if invoice.status != "draft":
        raise InvalidStateError("Only draft invoices can be deleted")
    invoice.deleted_at = now
    invoice.deleted_by = actor.user_id
    record_audit(
        db,
        "invoice.deleted",
        "invoice",
        invoice.id,
        invoice.invoice_number,
        f"Deleted draft invoice {invoice.invoice_number}",
        actor.user_id,
        at=now,
    )
    db.flush()
    logger.info("invoice_deleted number=%s", invoice.invoice_number)
    return invoice


def mark_overdue_invoices(db: Session, now: datetime | None = None) -> int:
    """Flip `sent` invoices whose due date has passed to `overdue`. Returns the count."""
    now = as_utc(now) if now else utcnow()
    rows = db.execute(
        select(Invoice).where(Invoice.status == "sent", Invoice.deleted_at.is_(None))
    ).scalars().all()
    changed = 0
    for invoice in rows:
        if as_utc(invoice.due_date) < now:
            invoice.status = "overdue"
            invoice.updated_by = SYSTEM_ACTOR
            record_audit(
                db,
                "invoice.status_changed",
                "invoice",
                invoice.id,
                invoice.invoice_number,
                f"Invoice {invoice.invoice_number} status sent -> overdue: past due date",
                SYSTEM_ACTOR,
                {"from": "sent", "to": "overdue"},
                at=now,
            )
            changed += 1
    if changed:
        db.flush()
        logger.info("invoices_marked_overdue count=%s", changed)
    return changed

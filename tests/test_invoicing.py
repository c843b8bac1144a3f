from __future__ import annotations

import unittest
import uuid
from datetime import date, timedelta
from unittest import mock

from sqlalchemy import select

from tests.support import (
    ACCOUNTANT,
    MARCH_2025,
    add_customer,
    add_rate,
    add_shipment,
    new_session,
    reset_database,
)

from app.core.errors import InvalidStateError, NotAuthenticatedError, NotFoundError, ValidationError
from app.models.accounting import InvoiceAutoGenLog
from app.models.audit_log import AuditLog
from app.models.invoice import Invoice
from app.schemas.invoice import IncomingInvoiceCreate, InvoiceCreate, LineItemCreate, PaymentCreate
from app.services.accounting_dashboard import create_expected_invoice, get_dashboard, refresh_dashboard_cache
from app.services.invoicing import (
    add_collection_attempt,
    auto_create_invoice_after_pod,
    create_incoming_invoice,
    create_outgoing_invoice,
    delete_invoice,
    get_invoice,
    list_invoices,
    mark_overdue_invoices,
    process_payment,
    send_accounting_notification,
    update_invoice_status,
)


def invoice_payload(customer_id, **overrides) -> InvoiceCreate:
    data = {
        "customer_id": customer_id,
        "description": "Courier Frankfurt - Chicago",
        "line_items": [
            LineItemCreate(description="Hand carry", quantity=2, unit_price=47.75, currency="EUR"),
        ],
        "currency": "EUR",
        "tax_rate": 19,
        "payment_terms": 30,
    }
    data.update(overrides)
    return InvoiceCreate(**data)


class CreateInvoiceTests(unittest.TestCase):
    def setUp(self):
        reset_database()
        self.db = new_session()
        self.customer = add_customer(self.db)

    def tearDown(self):
        self.db.close()

    def test_manual_invoice_totals(self):
        invoice = create_outgoing_invoice(self.db, ACCOUNTANT, invoice_payload(self.customer.id), MARCH_2025)
        self.assertEqual(invoice.invoice_number, "25030013")
        self.assertEqual(invoice.status, "draft")
        self.assertEqual(invoice.type, "outgoing")
        self.assertEqual(invoice.subtotal_amount, 95.5)
        self.assertEqual(invoice.tax_amount, 18.15)
        self.assertEqual(invoice.total_amount, 113.65)
        self.assertEqual(invoice.exchange_rate, 1.0)
        self.assertEqual(invoice.due_date, MARCH_2025 + timedelta(days=30))
        self.assertEqual(invoice.created_by, ACCOUNTANT.user_id)
        self.assertEqual(len(invoice.line_items), 1)
        self.assertEqual(invoice.line_items[0].total_amount, 95.5)

    def test_without_tax_rate_tax_is_empty(self):
        invoice = create_outgoing_invoice(
            self.db, ACCOUNTANT, invoice_payload(self.customer.id, tax_rate=None), MARCH_2025
        )
        self.assertIsNone(invoice.tax_amount)
        self.assertEqual(invoice.total_amount, 95.5)

    def test_zero_tax_rate_is_kept(self):
        invoice = create_outgoing_invoice(
            self.db, ACCOUNTANT, invoice_payload(self.customer.id, tax_rate=0), MARCH_2025
        )
        self.assertEqual(invoice.tax_amount, 0.0)
        self.assertEqual(invoice.total_amount, 95.5)

    def test_foreign_line_items_are_converted(self):
        add_rate(self.db, "USD", "EUR", 0.9, date(2025, 3, 14))
        payload = invoice_payload(
            self.customer.id,
            tax_rate=None,
            line_items=[
                LineItemCreate(description="Hotel", quantity=1, unit_price=100, currency="USD"),
                LineItemCreate(description="Courier fee", quantity=1, unit_price=50, currency="EUR"),
            ],
        )
        invoice = create_outgoing_invoice(self.db, ACCOUNTANT, payload, MARCH_2025)
        hotel = invoice.line_items[0]
        self.assertEqual(hotel.total_amount, 90.0)
        self.assertEqual(hotel.currency, "EUR")
        self.assertEqual(hotel.original_amount, 100)
        self.assertEqual(hotel.original_currency, "USD")
        self.assertEqual(hotel.exchange_rate, 0.9)
        self.assertEqual(invoice.subtotal_amount, 140.0)

    def test_usd_invoice_records_rate_to_eur(self):
        invoice = create_outgoing_invoice(
            self.db,
            ACCOUNTANT,
            invoice_payload(
                self.customer.id,
                currency="USD",
                line_items=[LineItemCreate(description="Hand carry", quantity=1, unit_price=200, currency="USD")],
            ),
            MARCH_2025,
        )
        self.assertEqual(invoice.currency, "USD")
        self.assertEqual(invoice.exchange_rate, 0.91)

    def test_numbers_advance(self):
        first = create_outgoing_invoice(self.db, ACCOUNTANT, invoice_payload(self.customer.id), MARCH_2025)
        second = create_outgoing_invoice(self.db, ACCOUNTANT, invoice_payload(self.customer.id), MARCH_2025)
        self.assertEqual((first.invoice_number, second.invoice_number), ("25030013", "25030026"))

    def test_requires_actor(self):
        with self.assertRaises(NotAuthenticatedError):
            create_outgoing_invoice(self.db, None, invoice_payload(self.customer.id), MARCH_2025)

    def test_unknown_customer(self):
        with self.assertRaises(NotFoundError):
            create_outgoing_invoice(self.db, ACCOUNTANT, invoice_payload(uuid.uuid4()), MARCH_2025)

    def test_unsupported_currency(self):
        with self.assertRaises(ValidationError):
            create_outgoing_invoice(
                self.db, ACCOUNTANT, invoice_payload(self.customer.id, currency="GBP"), MARCH_2025
            )

    def test_creation_is_audited(self):
        invoice = create_outgoing_invoice(self.db, ACCOUNTANT, invoice_payload(self.customer.id), MARCH_2025)
        self.db.flush()
        entry = self.db.execute(select(AuditLog).where(AuditLog.action == "invoice.created")).scalars().one()
        self.assertEqual(entry.entity_id, str(invoice.id))
        self.assertEqual(entry.actor_id, ACCOUNTANT.user_id)


class ProofOfDeliveryInvoiceTests(unittest.TestCase):
    def setUp(self):
        reset_database()
        self.db = new_session()
        self.customer = add_customer(self.db, payment_terms=14)

    def tearDown(self):
        self.db.close()

    def test_creates_invoice_with_default_tax(self):
        shipment = add_shipment(self.db, self.customer, amount=1000.0, completed_at=MARCH_2025)
        result = auto_create_invoice_after_pod(self.db, shipment.id, MARCH_2025)
        self.assertTrue(result.success)
        self.assertEqual(result.invoice_number, "25030013")

        invoice = get_invoice(self.db, result.invoice_id)
        self.assertEqual(invoice.subtotal_amount, 1000.0)
        self.assertEqual(invoice.tax_rate, 19)
        self.assertEqual(invoice.tax_amount, 190.0)
        self.assertEqual(invoice.total_amount, 1190.0)
        self.assertEqual(invoice.payment_terms, 14)
        self.assertEqual(invoice.created_by, "system")
        self.assertEqual(invoice.shipment_id, shipment.id)
        self.assertIn("OBC-2025-0042", invoice.line_items[0].description)

        log = self.db.execute(select(InvoiceAutoGenLog)).scalars().one()
        self.assertEqual(log.invoice_id, invoice.id)
        self.assertFalse(log.notification_sent)
        self.assertEqual(log.status, "generated")

    def test_amounts_are_rounded(self):
        shipment = add_shipment(self.db, self.customer, amount=95.5, currency="USD", exchange_rate=0.92)
        result = auto_create_invoice_after_pod(self.db, shipment.id, MARCH_2025)
        invoice = get_invoice(self.db, result.invoice_id)
        self.assertEqual(invoice.tax_amount, 18.15)
        self.assertEqual(invoice.total_amount, 113.65)
        self.assertEqual(invoice.currency, "USD")
        self.assertEqual(invoice.exchange_rate, 0.92)

    def test_second_call_is_a_no_op(self):
        shipment = add_shipment(self.db, self.customer)
        first = auto_create_invoice_after_pod(self.db, shipment.id, MARCH_2025)
        second = auto_create_invoice_after_pod(self.db, shipment.id, MARCH_2025)
        self.assertTrue(first.success)
        self.assertFalse(second.success)
        self.assertEqual(second.reason, "Invoice already exists")
        self.assertEqual(len(list_invoices(self.db)), 1)

    def test_second_session_sees_committed_invoice(self):
        shipment = add_shipment(self.db, self.customer)
        self.db.commit()
        first = auto_create_invoice_after_pod(self.db, shipment.id, MARCH_2025)
        self.db.commit()

        other = new_session()
        try:
            second = auto_create_invoice_after_pod(other, shipment.id, MARCH_2025)
            self.assertFalse(second.success)
            self.assertEqual(second.reason, "Invoice already exists")
            other.rollback()
        finally:
            other.close()
        self.assertTrue(first.success)
        self.assertEqual(len(self.db.execute(select(Invoice)).scalars().all()), 1)

    def test_insert_conflict_is_reported_as_duplicate(self):
        shipment = add_shipment(self.db, self.customer)
        self.assertTrue(auto_create_invoice_after_pod(self.db, shipment.id, MARCH_2025).success)
        # the existence check misses the first invoice, so the unique index has to stop the insert
        with mock.patch("app.services.invoicing._outgoing_invoice_id", return_value=None):
            result = auto_create_invoice_after_pod(self.db, shipment.id, MARCH_2025)
        self.assertFalse(result.success)
        self.assertEqual(result.reason, "Invoice already exists")
        self.assertEqual(len(self.db.execute(select(Invoice)).scalars().all()), 1)
        self.assertEqual(len(self.db.execute(select(InvoiceAutoGenLog)).scalars().all()), 1)

    def test_manual_invoice_for_invoiced_shipment_is_rejected(self):
        shipment = add_shipment(self.db, self.customer)
        auto_create_invoice_after_pod(self.db, shipment.id, MARCH_2025)
        with self.assertRaises(InvalidStateError):
            create_outgoing_invoice(
                self.db, ACCOUNTANT, invoice_payload(self.customer.id, shipment_id=shipment.id), MARCH_2025
            )

    def test_manual_insert_conflict_is_invalid_state(self):
        shipment = add_shipment(self.db, self.customer)
        auto_create_invoice_after_pod(self.db, shipment.id, MARCH_2025)
        with mock.patch("app.services.invoicing._outgoing_invoice_id", return_value=None):
            with self.assertRaises(InvalidStateError):
                create_outgoing_invoice(
                    self.db, ACCOUNTANT, invoice_payload(self.customer.id, shipment_id=shipment.id), MARCH_2025
                )

    def test_default_payment_terms(self):
        customer = add_customer(self.db, name="No Terms Ltd", payment_terms=None)
        shipment = add_shipment(self.db, customer, number="OBC-2025-0043")
        result = auto_create_invoice_after_pod(self.db, shipment.id, MARCH_2025)
        self.assertEqual(get_invoice(self.db, result.invoice_id).payment_terms, 30)

    def test_unknown_shipment(self):
        with self.assertRaises(NotFoundError):
            auto_create_invoice_after_pod(self.db, uuid.uuid4(), MARCH_2025)

    def test_shipment_without_customer(self):
        shipment = add_shipment(self.db, None)
        with self.assertRaises(NotFoundError):
            auto_create_invoice_after_pod(self.db, shipment.id, MARCH_2025)

    def test_notification_marks_log(self):
        shipment = add_shipment(self.db, self.customer)
        auto_create_invoice_after_pod(self.db, shipment.id, MARCH_2025)
        log = self.db.execute(select(InvoiceAutoGenLog)).scalars().one()
        updated = send_accounting_notification(
            self.db, ACCOUNTANT, log.id, ["finance@yourobc.example"], MARCH_2025
        )
        self.assertTrue(updated.notification_sent)
        self.assertEqual(updated.notification_recipients, ["finance@yourobc.example"])
        self.assertEqual(updated.status, "notification_sent")


def incoming_payload(**overrides) -> IncomingInvoiceCreate:
    data = {
        "partner_name": "Lufthansa Cargo",
        "external_invoice_number": "LH-88231",
        "currency": "USD",
        "subtotal": 100,
        "payment_terms": 20,
    }
    data.update(overrides)
    return IncomingInvoiceCreate(**data)


class IncomingInvoiceTests(unittest.TestCase):
    def setUp(self):
        reset_database()
        self.db = new_session()

    def tearDown(self):
        self.db.close()

    def test_records_supplier_invoice(self):
        invoice = create_incoming_invoice(self.db, ACCOUNTANT, incoming_payload(tax_rate=19), MARCH_2025)
        self.assertEqual(invoice.type, "incoming")
        self.assertEqual(invoice.status, "sent")
        self.assertTrue(invoice.invoice_number.startswith("IN-2503-"))
        self.assertEqual(invoice.partner_name, "Lufthansa Cargo")
        self.assertEqual(invoice.external_invoice_number, "LH-88231")
        self.assertEqual(invoice.currency, "USD")
        self.assertEqual(invoice.exchange_rate, 0.91)
        self.assertEqual(invoice.tax_amount, 19.0)
        self.assertEqual(invoice.total_amount, 119.0)
        self.assertEqual(invoice.due_date, MARCH_2025 + timedelta(days=20))
        self.assertIsNone(invoice.customer_id)

    def test_stored_rate_is_used(self):
        add_rate(self.db, "USD", "EUR", 0.87, date(2025, 3, 14))
        invoice = create_incoming_invoice(self.db, ACCOUNTANT, incoming_payload(), MARCH_2025)
        self.assertEqual(invoice.exchange_rate, 0.87)
        self.assertIsNone(invoice.tax_amount)
        self.assertEqual(invoice.total_amount, 100.0)

    def test_does_not_consume_outgoing_numbers(self):
        create_incoming_invoice(self.db, ACCOUNTANT, incoming_payload(), MARCH_2025)
        customer = add_customer(self.db)
        invoice = create_outgoing_invoice(self.db, ACCOUNTANT, invoice_payload(customer.id), MARCH_2025)
        self.assertEqual(invoice.invoice_number, "25030013")

    def test_is_audited(self):
        invoice = create_incoming_invoice(self.db, ACCOUNTANT, incoming_payload(), MARCH_2025)
        entry = self.db.execute(
            select(AuditLog).where(AuditLog.action == "invoice.incoming_recorded")
        ).scalars().one()
        self.assertEqual(entry.entity_id, str(invoice.id))
        self.assertEqual(entry.actor_id, ACCOUNTANT.user_id)

    def test_same_supplier_number_twice(self):
        create_incoming_invoice(self.db, ACCOUNTANT, incoming_payload(), MARCH_2025)
        with self.assertRaises(InvalidStateError):
            create_incoming_invoice(self.db, ACCOUNTANT, incoming_payload(), MARCH_2025)
        other = create_incoming_invoice(self.db, ACCOUNTANT, incoming_payload(partner_name="Emirates SkyCargo"))
        self.assertEqual(other.external_invoice_number, "LH-88231")

    def test_blank_partner(self):
        with self.assertRaises(ValidationError):
            create_incoming_invoice(self.db, ACCOUNTANT, incoming_payload(partner_name="   "), MARCH_2025)

    def test_requires_actor(self):
        with self.assertRaises(NotAuthenticatedError):
            create_incoming_invoice(self.db, None, incoming_payload(), MARCH_2025)

    def test_unknown_shipment(self):
        with self.assertRaises(NotFoundError):
            create_incoming_invoice(self.db, ACCOUNTANT, incoming_payload(shipment_id=uuid.uuid4()), MARCH_2025)

    def test_marks_tracking_row_received(self):
        tracking = create_expected_invoice(
            self.db, ACCOUNTANT, partner_name="Lufthansa Cargo", expected_date=MARCH_2025
        )
        invoice = create_incoming_invoice(
            self.db, ACCOUNTANT, incoming_payload(tracking_id=tracking.id), MARCH_2025
        )
        self.assertEqual(tracking.status, "received")
        self.assertEqual(tracking.invoice_id, invoice.id)
        self.assertEqual(tracking.received_date, MARCH_2025)

    def test_counts_as_payable(self):
        create_incoming_invoice(self.db, ACCOUNTANT, incoming_payload(), MARCH_2025)
        refresh_dashboard_cache(self.db, actor_id=ACCOUNTANT.user_id, now=MARCH_2025)
        cache = get_dashboard(self.db, MARCH_2025)
        self.assertEqual(cache.total_payables, 91.0)
        self.assertEqual(cache.expected_expenses_next_30_days, 91.0)
        self.assertEqual(cache.total_receivables, 0)


class InvoiceLifecycleTests(unittest.TestCase):
    def setUp(self):
        reset_database()
        self.db = new_session()
        customer = add_customer(self.db)
        self.invoice = create_outgoing_invoice(self.db, ACCOUNTANT, invoice_payload(customer.id), MARCH_2025)

    def tearDown(self):
        self.db.close()

    def test_draft_to_sent_sets_sent_at(self):
        invoice = update_invoice_status(self.db, ACCOUNTANT, self.invoice.id, "sent", now=MARCH_2025)
        self.assertEqual(invoice.status, "sent")
        self.assertEqual(invoice.sent_at, MARCH_2025)

    def test_illegal_transition(self):
        with self.assertRaises(InvalidStateError):
            update_invoice_status(self.db, ACCOUNTANT, self.invoice.id, "paid")

    def test_closed_invoices_stay_closed(self):
        update_invoice_status(self.db, ACCOUNTANT, self.invoice.id, "cancelled")
        with self.assertRaises(InvalidStateError):
            update_invoice_status(self.db, ACCOUNTANT, self.invoice.id, "sent")

    def test_payment(self):
        update_invoice_status(self.db, ACCOUNTANT, self.invoice.id, "sent")
        invoice = process_payment(
            self.db,
            ACCOUNTANT,
            self.invoice.id,
            PaymentCreate(amount=113.65, currency="eur", method="bank_transfer", reference="SEPA-1"),
            now=MARCH_2025,
        )
        self.assertEqual(invoice.status, "paid")
        self.assertEqual(invoice.paid_amount, 113.65)
        self.assertEqual(invoice.payment_date, MARCH_2025)
        self.assertEqual(invoice.payment_reference, "SEPA-1")

        with self.assertRaises(InvalidStateError):
            process_payment(
                self.db,
                ACCOUNTANT,
                self.invoice.id,
                PaymentCreate(amount=1, currency="EUR", method="cash"),
            )

    def test_payment_currency_must_match(self):
        with self.assertRaises(ValidationError):
            process_payment(
                self.db,
                ACCOUNTANT,
                self.invoice.id,
                PaymentCreate(amount=113.65, currency="USD", method="wire_transfer"),
            )

    def test_payment_on_cancelled_invoice(self):
        update_invoice_status(self.db, ACCOUNTANT, self.invoice.id, "cancelled")
        with self.assertRaises(InvalidStateError):
            process_payment(
                self.db,
                ACCOUNTANT,
                self.invoice.id,
                PaymentCreate(amount=113.65, currency="EUR", method="cash"),
            )

    def test_collection_attempts(self):
        update_invoice_status(self.db, ACCOUNTANT, self.invoice.id, "sent")
        add_collection_attempt(self.db, ACCOUNTANT, self.invoice.id, "email", "Reminder sent", now=MARCH_2025)
        invoice = add_collection_attempt(self.db, ACCOUNTANT, self.invoice.id, "phone", "Promised payment")
        self.assertEqual([a.method for a in invoice.collection_attempts], ["email", "phone"])
        self.assertEqual([a.position for a in invoice.collection_attempts], [0, 1])

    def test_collection_attempt_needs_result(self):
        with self.assertRaises(ValidationError):
            add_collection_attempt(self.db, ACCOUNTANT, self.invoice.id, "email", "   ")

    def test_collection_attempt_limit(self):
        for i in range(10):
            add_collection_attempt(self.db, ACCOUNTANT, self.invoice.id, "email", f"Reminder {i}")
        with self.assertRaises(ValidationError):
            add_collection_attempt(self.db, ACCOUNTANT, self.invoice.id, "letter", "One too many")

    def test_no_collection_on_paid_invoice(self):
        process_payment(
            self.db, ACCOUNTANT, self.invoice.id, PaymentCreate(amount=113.65, currency="EUR", method="cash")
        )
        with self.assertRaises(InvalidStateError):
            add_collection_attempt(self.db, ACCOUNTANT, self.invoice.id, "email", "Reminder")

    def test_delete_draft_hides_invoice(self):
        delete_invoice(self.db, ACCOUNTANT, self.invoice.id, now=MARCH_2025)
        with self.assertRaises(NotFoundError):
            get_invoice(self.db, self.invoice.id)
        self.assertEqual(list_invoices(self.db), [])
        row = self.db.get(Invoice, self.invoice.id)
        self.assertEqual(row.deleted_by, ACCOUNTANT.user_id)

    def test_only_drafts_can_be_deleted(self):
        update_invoice_status(self.db, ACCOUNTANT, self.invoice.id, "sent")
        with self.assertRaises(InvalidStateError):
            delete_invoice(self.db, ACCOUNTANT, self.invoice.id)

    def test_mark_overdue(self):
        update_invoice_status(self.db, ACCOUNTANT, self.invoice.id, "sent")
        self.assertEqual(mark_overdue_invoices(self.db, MARCH_2025 + timedelta(days=29)), 0)
        self.assertEqual(mark_overdue_invoices(self.db, MARCH_2025 + timedelta(days=31)), 1)
        self.assertEqual(get_invoice(self.db, self.invoice.id).status, "overdue")


if __name__ == "__main__":
    unittest.main()

from __future__ import annotations

import unittest
from datetime import date, datetime, timedelta, timezone

from tests.support import ADMIN, MARCH_2025, new_session, reset_database

from app.core.errors import ValidationError
from app.models.audit_log import AuditLog
from app.services.invoice_numbering import (
    current_counter,
    format_invoice_number,
    invoices_issued,
    is_valid_invoice_number,
    next_invoice_number,
    parse_invoice_number,
    preview_next_invoice_number,
    reset_invoice_numbering,
)


class InvoiceNumberFormatTests(unittest.TestCase):
    def test_format_pads_year_month_and_sequence(self):
        self.assertEqual(format_invoice_number(2025, 3, 13), "25030013")
        self.assertEqual(format_invoice_number(2031, 11, 1300), "31111300")

    def test_validity(self):
        self.assertTrue(is_valid_invoice_number("25030013"))
        self.assertTrue(is_valid_invoice_number("25120026"))
        self.assertFalse(is_valid_invoice_number("25130013"))  # month 13
        self.assertFalse(is_valid_invoice_number("25000013"))  # month 0
        self.assertFalse(is_valid_invoice_number("25030014"))  # not a multiple of 13
        self.assertFalse(is_valid_invoice_number("25030000"))
        self.assertFalse(is_valid_invoice_number("2503001"))
        self.assertFalse(is_valid_invoice_number("2503A013"))

    def test_validity_with_custom_increment(self):
        self.assertTrue(is_valid_invoice_number("25030005", increment=5))
        self.assertFalse(is_valid_invoice_number("25030013", increment=5))

    def test_parse(self):
        parsed = parse_invoice_number("25030026", today=date(2025, 6, 1))
        self.assertEqual(parsed.year, 25)
        self.assertEqual(parsed.month, 3)
        self.assertEqual(parsed.sequence, 26)
        self.assertEqual(parsed.full_year, 2025)

    def test_parse_rejects_invalid(self):
        with self.assertRaises(ValidationError):
            parse_invoice_number("25130013")


class InvoiceCounterTests(unittest.TestCase):
    def setUp(self):
        reset_database()
        self.db = new_session()

    def tearDown(self):
        self.db.close()

    def test_first_number_of_month_and_preview(self):
        self.assertIsNone(current_counter(self.db, MARCH_2025))
        self.assertEqual(preview_next_invoice_number(self.db, MARCH_2025), "25030013")

        self.assertEqual(next_invoice_number(self.db, "u1", MARCH_2025), "25030013")
        self.assertEqual(preview_next_invoice_number(self.db, MARCH_2025), "25030026")
        # preview does not consume
        self.assertEqual(preview_next_invoice_number(self.db, MARCH_2025), "25030026")
        self.assertEqual(next_invoice_number(self.db, "u1", MARCH_2025), "25030026")

        counter = current_counter(self.db, MARCH_2025)
        self.assertEqual(counter.last_number, 26)
        self.assertEqual(invoices_issued(counter), 2)

    def test_months_have_independent_counters(self):
        april = datetime(2025, 4, 1, 0, 0, tzinfo=timezone.utc)
        self.assertEqual(next_invoice_number(self.db, "u1", MARCH_2025), "25030013")
        self.assertEqual(next_invoice_number(self.db, "u1", april), "25040013")
        self.assertEqual(next_invoice_number(self.db, "u1", MARCH_2025), "25030026")

    def test_month_follows_utc(self):
        # 23:30 on March 31st in UTC-5 is already April in UTC.
        late = datetime(2025, 3, 31, 23, 30, tzinfo=timezone(timedelta(hours=-5)))
        self.assertEqual(next_invoice_number(self.db, "u1", late), "25040013")

    def test_issued_numbers_are_unique_and_valid(self):
        numbers = [next_invoice_number(self.db, "u1", MARCH_2025) for _ in range(20)]
        self.assertEqual(len(set(numbers)), 20)
        self.assertTrue(all(is_valid_invoice_number(n) for n in numbers))
        self.assertEqual(numbers[-1], "25030260")

    def test_reset_sets_counter_and_audits(self):
        next_invoice_number(self.db, "u1", MARCH_2025)
        counter = reset_invoice_numbering(self.db, 2025, 3, 130, ADMIN.user_id)
        self.assertEqual(counter.last_number, 130)
        self.assertEqual(next_invoice_number(self.db, "u1", MARCH_2025), "25030143")

        actions = [a.action for a in self.db.query(AuditLog).all()]
        self.assertIn("invoice_numbering.reset", actions)

    def test_reset_creates_missing_counter(self):
        counter = reset_invoice_numbering(self.db, 2026, 1, 0, ADMIN.user_id)
        self.assertEqual(counter.last_number, 0)
        self.assertEqual(counter.increment_by, 13)

    def test_reset_rejects_bad_values(self):
        with self.assertRaises(ValidationError):
            reset_invoice_numbering(self.db, 2025, 13, 0, ADMIN.user_id)
        with self.assertRaises(ValidationError):
            reset_invoice_numbering(self.db, 2025, 3, -13, ADMIN.user_id)
        with self.assertRaises(ValidationError):
            reset_invoice_numbering(self.db, 2025, 3, 14, ADMIN.user_id)
        self.assertIsNone(current_counter(self.db, MARCH_2025))

    def test_last_number_of_month(self):
        reset_invoice_numbering(self.db, 2025, 3, 9984, ADMIN.user_id)
        self.assertEqual(next_invoice_number(self.db, "u1", MARCH_2025), "25039997")

    def test_month_runs_out_of_numbers(self):
        reset_invoice_numbering(self.db, 2025, 3, 9997, ADMIN.user_id)
        with self.assertRaises(ValidationError):
            next_invoice_number(self.db, "u1", MARCH_2025)
        self.assertEqual(current_counter(self.db, MARCH_2025).last_number, 9997)

    def test_reset_beyond_four_digits(self):
        with self.assertRaises(ValidationError):
            reset_invoice_numbering(self.db, 2025, 3, 10010, ADMIN.user_id)


if __name__ == "__main__":
    unittest.main()

"""
Monthly invoice numbers: YY + MM + 4-digit sequence, e.g. 25030013.

There is one counter row per (year, month). The sequence advances by the
counter's `increment_by` (13), so the first number of a month ends in 0013 and
the number of invoices issued is `last_number // increment_by`.

`next_invoice_number` locks the counter row (SELECT ... FOR UPDATE) and only
flushes the increment; the lock is released when the caller's transaction
commits or rolls back, so two requests in the same month cannot compute the
same sequence.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import ValidationError
from app.models.invoice_numbering import InvoiceNumbering
from app.services.audit import record_audit
from app.utils.dates import as_utc, utcnow

logger = logging.getLogger(__name__)

NUMBER_LENGTH = 8
SEQUENCE_WIDTH = 4
MAX_SEQUENCE = 10**SEQUENCE_WIDTH - 1


@dataclass
class ParsedInvoiceNumber:
    year: int  # two digits, as printed
    month: int
    sequence: int
    full_year: int


def format_invoice_number(year: int, month: int, sequence: int) -> str:
    return f"{year % 100:02d}{month:02d}{sequence:0{SEQUENCE_WIDTH}d}"


def is_valid_invoice_number(number: str, increment: int | None = None) -> bool:
    step = increment or settings.invoice_number_increment
    if not isinstance(number, str) or len(number) != NUMBER_LENGTH or not number.isdigit():
        return False
    month = int(number[2:4])
    sequence = int(number[4:8])
    return 1 <= month <= 12 and sequence > 0 and sequence % step == 0


def parse_invoice_number(number: str, today: date | None = None) -> ParsedInvoiceNumber:
    """Split a number into its parts; the year is assumed to be in the current century."""
    if not is_valid_invoice_number(number):
        raise ValidationError(f"Invalid invoice number: {number}")
    today = today or utcnow().date()
    year = int(number[0:2])
    return ParsedInvoiceNumber(
        year=year,
        month=int(number[2:4]),
        sequence=int(number[4:8]),
        full_year=(today.year // 100) * 100 + year,
    )


def invoices_issued(counter: InvoiceNumbering | None) -> int:
    if counter is None or not counter.increment_by:
        return 0
    return counter.last_number // counter.increment_by


def _period(now: datetime | None) -> tuple[int, int]:
    current = as_utc(now) if now else utcnow()
    return current.year, current.month


def get_counter(db: Session, year: int, month: int, *, lock: bool = False) -> InvoiceNumbering | None:
    stmt = select(InvoiceNumbering).where(InvoiceNumbering.year == year, InvoiceNumbering.month == month)
    if lock:
        stmt = stmt.with_for_update()
    return db.execute(stmt).scalars().first()


def _get_or_create_locked(db: Session, year: int, month: int, actor_id: str) -> InvoiceNumbering:
    counter = get_counter(db, year, month, lock=True)
    if counter:
        return counter

    try:
        with db.begin_nested():
            db.add(
                InvoiceNumbering(
                    year=year,
                    month=month,
                    last_number=0,
                    increment_by=settings.invoice_number_increment,
                    format=settings.invoice_number_format,
                    created_by=actor_id,
                )
            )
        logger.info("invoice_counter_created year=%s month=%s", year, month)
    except IntegrityError:
        # Another transaction created the month's counter first; use theirs.
        logger.info("invoice_counter_create_race year=%s month=%s", year, month)

    counter = get_counter(db, year, month, lock=True)
    if counter is None:
        raise RuntimeError(f"invoice counter for {year}-{month:02d} missing after create")
    return counter


def next_invoice_number(db: Session, actor_id: str | None = None, now: datetime | None = None) -> str:
    """Consume and return the next number for the current UTC month.

    The sequence has four digits, so a month holds at most 9999 // increment
    numbers (769 with the default step of 13); past that this raises.
    """
    year, month = _period(now)
    counter = _get_or_create_locked(db, year, month, actor_id or "system")
    if counter.last_number + counter.increment_by > MAX_SEQUENCE:
        logger.error("invoice_counter_exhausted year=%s month=%s last=%s", year, month, counter.last_number)
        raise ValidationError(f"Invoice numbers for {year}-{month:02d} are exhausted")
    counter.last_number += counter.increment_by
    if actor_id:
        counter.updated_by = actor_id
    db.flush()
    number = format_invoice_number(year, month, counter.last_number)
    logger.info("invoice_number_issued number=%s", number)
    return number


def preview_next_invoice_number(db: Session, now: datetime | None = None) -> str:
    """What `next_invoice_number` would return right now; reads only, takes no lock."""
    year, month = _period(now)
    counter = get_counter(db, year, month)
    if counter is None:
        return format_invoice_number(year, month, settings.invoice_number_increment)
    return format_invoice_number(year, month, counter.last_number + counter.increment_by)


def current_counter(db: Session, now: datetime | None = None) -> InvoiceNumbering | None:
    year, month = _period(now)
    return get_counter(db, year, month)


def reset_invoice_numbering(
    db: Session,
    year: int,
    month: int,
    new_last_number: int,
    actor_id: str,
) -> InvoiceNumbering:
    if not 1 <= month <= 12:
        raise ValidationError("Month must be between 1 and 12")
    if new_last_number < 0:
        raise ValidationError("Counter value cannot be negative")
    if new_last_number > MAX_SEQUENCE:
        raise ValidationError(f"Counter value cannot exceed {MAX_SEQUENCE}")

    existing = get_counter(db, year, month, lock=True)
    step = existing.increment_by if existing else settings.invoice_number_increment
    if new_last_number % step != 0:
        raise ValidationError(f"Counter value must be a multiple of {step}")

    counter = existing or _get_or_create_locked(db, year, month, actor_id)
    previous = counter.last_number
    counter.last_number = new_last_number
    counter.updated_by = actor_id
    record_audit(
        db,
        "invoice_numbering.reset",
        "invoice_numbering",
        counter.id,
        f"{year}-{month:02d}",
        f"Invoice counter {year}-{month:02d} reset from {previous} to {new_last_number}",
        actor_id,
        {"previous": previous, "new": new_last_number},
    )
    db.flush()
    logger.warning(
        "invoice_counter_reset year=%s month=%s previous=%s new=%s actor=%s",
        year,
        month,
        previous,
        new_last_number,
        actor_id,
    )
    return counter

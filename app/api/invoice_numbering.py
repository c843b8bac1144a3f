from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.auth import SessionUser, get_current_user, require_admin, require_role
from app.core.config import settings
from app.db.session import get_db
from app.schemas.numbering import CounterRead, CounterReset, InvoiceNumberResponse, InvoiceNumberValidation
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
from app.utils.dates import utcnow

router = APIRouter(prefix="/invoice-numbering", tags=["invoice-numbering"])


def _counter_read(counter) -> CounterRead:
    return CounterRead(
        year=counter.year,
        month=counter.month,
        last_number=counter.last_number,
        increment_by=counter.increment_by,
        format=counter.format,
        invoices_issued=invoices_issued(counter),
        next_invoice_number=format_invoice_number(
            counter.year, counter.month, counter.last_number + counter.increment_by
        ),
    )


@router.post("/next", response_model=InvoiceNumberResponse)
def issue_next_number(
    db: Session = Depends(get_db),
    current: SessionUser = Depends(require_role("admin", "accounting")),
) -> InvoiceNumberResponse:
    number = next_invoice_number(db, current.user_id)
    db.commit()
    return InvoiceNumberResponse(invoice_number=number)


@router.get("/preview", response_model=InvoiceNumberResponse)
def preview_next_number(db: Session = Depends(get_db), _=Depends(get_current_user)) -> InvoiceNumberResponse:
    return InvoiceNumberResponse(invoice_number=preview_next_invoice_number(db))


@router.get("/validate/{number}", response_model=InvoiceNumberValidation)
def validate_number(number: str, _=Depends(get_current_user)) -> InvoiceNumberValidation:
    if not is_valid_invoice_number(number):
        return InvoiceNumberValidation(invoice_number=number, valid=False)
    parsed = parse_invoice_number(number)
    return InvoiceNumberValidation(
        invoice_number=number,
        valid=True,
        year=parsed.year,
        month=parsed.month,
        sequence=parsed.sequence,
        full_year=parsed.full_year,
    )


@router.get("/current", response_model=CounterRead)
def get_current_counter(db: Session = Depends(get_db), _=Depends(get_current_user)) -> CounterRead:
    counter = current_counter(db)
    if counter is None:
        now = utcnow()
        return CounterRead(
            year=now.year,
            month=now.month,
            last_number=0,
            increment_by=settings.invoice_number_increment,
            format=settings.invoice_number_format,
            invoices_issued=0,
            next_invoice_number=preview_next_invoice_number(db, now),
        )
    return _counter_read(counter)


@router.put("/reset", response_model=CounterRead)
def reset_counter(
    payload: CounterReset,
    db: Session = Depends(get_db),
    current: SessionUser = Depends(require_admin),
) -> CounterRead:
    counter = reset_invoice_numbering(db, payload.year, payload.month, payload.last_number, current.user_id)
    db.commit()
    return _counter_read(counter)

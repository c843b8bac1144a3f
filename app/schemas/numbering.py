from __future__ import annotations

from pydantic import BaseModel, Field


class InvoiceNumberResponse(BaseModel):
    invoice_number: str


class InvoiceNumberValidation(BaseModel):
    invoice_number: str
    valid: bool
    year: int | None = None
    month: int | None = None
    sequence: int | None = None
    full_year: int | None = None


class CounterRead(BaseModel):
    year: int
    month: int
    last_number: int
    increment_by: int
    format: str
    invoices_issued: int
    next_invoice_number: str


class CounterReset(BaseModel):
    year: int = Field(..., ge=2000, le=2099)
    month: int = Field(..., ge=1, le=12)
    last_number: int

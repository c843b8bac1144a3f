from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field

InvoiceStatus = Literal["draft", "sent", "paid", "overdue", "cancelled"]
CollectionMethod = Literal["email", "phone", "letter", "legal_notice"]
PaymentMethod = Literal["bank_transfer", "credit_card", "cash", "check", "paypal", "wire_transfer", "other"]


class LineItemCreate(BaseModel):
    description: str = Field(..., min_length=1)
    quantity: float = Field(default=1, gt=0)
    unit_price: float = Field(..., ge=0)
    currency: str = Field(..., min_length=3, max_length=3)
    total: float | None = Field(default=None, ge=0, description="Defaults to quantity * unit_price")


class LineItemRead(BaseModel):
    id: UUID
    position: int
    description: str
    quantity: float
    unit_price_amount: float
    unit_price_currency: str
    total_amount: float
    currency: str
    exchange_rate: float | None = None
    original_amount: float | None = None
    original_currency: str | None = None

    model_config = {"from_attributes": True}


class CollectionAttemptCreate(BaseModel):
    method: CollectionMethod
    result: str = Field(..., min_length=1)
    notes: str | None = None


class CollectionAttemptRead(BaseModel):
    id: UUID
    position: int
    method: str
    result: str
    notes: str | None = None
    attempted_at: datetime
    created_by: str

    model_config = {"from_attributes": True}


class InvoiceCreate(BaseModel):
    customer_id: UUID
    shipment_id: UUID | None = None
    description: str = Field(..., min_length=1)
    line_items: list[LineItemCreate] = Field(..., min_length=1)
    currency: str = Field(..., min_length=3, max_length=3)
    tax_rate: float | None = Field(default=None, ge=0, le=100)
    payment_terms: int = Field(..., ge=0, le=365, description="Days until due")
    notes: str | None = None
    tags: list[str] = Field(default_factory=list)


class IncomingInvoiceCreate(BaseModel):
    partner_name: str = Field(..., min_length=1, max_length=256)
    external_invoice_number: str = Field(..., min_length=1, max_length=64)
    shipment_id: UUID | None = None
    tracking_id: UUID | None = Field(default=None, description="Expected-invoice row to mark as received")
    description: str | None = None
    currency: str = Field(..., min_length=3, max_length=3)
    subtotal: float = Field(..., ge=0)
    tax_rate: float | None = Field(default=None, ge=0, le=100)
    issue_date: datetime | None = None
    due_date: datetime | None = None
    payment_terms: int = Field(default=30, ge=0, le=365)
    notes: str | None = None
    tags: list[str] = Field(default_factory=list)


class InvoiceStatusUpdate(BaseModel):
    status: InvoiceStatus
    reason: str | None = None


class PaymentCreate(BaseModel):
    amount: float = Field(..., gt=0)
    currency: str = Field(..., min_length=3, max_length=3)
    method: PaymentMethod
    payment_date: datetime | None = None
    reference: str | None = None


class InvoiceRead(BaseModel):
    id: UUID
    invoice_number: str
    type: str
    status: str
    shipment_id: UUID | None = None
    customer_id: UUID | None = None
    partner_name: str | None = None
    external_invoice_number: str | None = None
    issue_date: datetime
    due_date: datetime
    description: str | None = None
    currency: str
    exchange_rate: float
    subtotal_amount: float
    tax_rate: float | None = None
    tax_amount: float | None = None
    total_amount: float
    payment_terms: int
    notes: str | None = None
    tags: list[str] = Field(default_factory=list)
    sent_at: datetime | None = None
    payment_date: datetime | None = None
    payment_method: str | None = None
    paid_amount: float | None = None
    payment_reference: str | None = None
    created_by: str
    line_items: list[LineItemRead] = Field(default_factory=list)
    collection_attempts: list[CollectionAttemptRead] = Field(default_factory=list)
    pdf_url: str | None = None

    model_config = {"from_attributes": True}


class AutoInvoiceResponse(BaseModel):
    success: bool
    reason: str | None = None
    invoice_id: UUID | None = None
    invoice_number: str | None = None


class AutoGenLogRead(BaseModel):
    id: UUID
    shipment_id: UUID
    invoice_id: UUID
    invoice_number: str
    generated_date: datetime
    pod_received_date: datetime
    notification_sent: bool
    notification_sent_date: datetime | None = None
    notification_recipients: list[str] = Field(default_factory=list)
    status: str

    model_config = {"from_attributes": True}

from __future__ import annotations

from datetime import date, datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field

TrackingStatus = Literal["expected", "missing", "received", "approved", "paid", "disputed", "cancelled"]


class DashboardRefreshResponse(BaseModel):
    cache_id: UUID
    action: Literal["created", "updated"]


class DashboardRead(BaseModel):
    id: UUID
    cache_date: date
    currency: str
    total_receivables: float
    overdue_receivables: float
    total_payables: float
    overdue_payables: float
    expected_payments_next_30_days: float
    expected_expenses_next_30_days: float
    forecast_inflow_90_days: float
    forecast_outflow_90_days: float
    overdue_1_to_30: float
    overdue_31_to_60: float
    overdue_61_to_90: float
    overdue_90_plus: float
    dunning_level1_count: int
    dunning_level2_count: int
    dunning_level3_count: int
    suspended_customers_count: int
    missing_invoices_count: int
    missing_invoices_value: float
    pending_approval_count: int
    pending_approval_value: float
    calculated_at: datetime
    valid_until: datetime
    stale: bool = False

    model_config = {"from_attributes": True}


class CustomerReceivableRead(BaseModel):
    customer_id: UUID | None = None
    company_name: str | None = None
    total: float
    invoice_count: int
    oldest_days_overdue: int
    overdue_amount: float
    invoice_numbers: list[str] = Field(default_factory=list)

    model_config = {"from_attributes": True}


class ExpectedInvoiceCreate(BaseModel):
    partner_name: str = Field(..., min_length=1, max_length=256)
    expected_date: datetime
    shipment_id: UUID | None = None
    expected_amount: float | None = Field(default=None, ge=0)
    expected_currency: str | None = Field(default=None, min_length=3, max_length=3)
    internal_notes: str | None = None


class TrackingStatusUpdate(BaseModel):
    status: TrackingStatus
    invoice_id: UUID | None = None
    payment_reference: str | None = None
    dispute_reason: str | None = None
    notes: str | None = None


class IncomingInvoiceTrackingRead(BaseModel):
    id: UUID
    shipment_id: UUID | None = None
    partner_name: str
    status: str
    expected_date: datetime
    expected_amount: float | None = None
    expected_currency: str | None = None
    invoice_id: UUID | None = None
    received_date: datetime | None = None
    approved_by: str | None = None
    approved_date: datetime | None = None
    paid_date: datetime | None = None
    payment_reference: str | None = None
    dispute_reason: str | None = None
    internal_notes: str | None = None

    model_config = {"from_attributes": True}

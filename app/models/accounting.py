from __future__ import annotations

import uuid
from datetime import date, datetime

from sqlalchemy import JSON, Boolean, Date, DateTime, Float, ForeignKey, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base


class AccountingDashboardCache(Base):
    """
    Denormalized daily snapshot of receivables, payables, aging and forecast
    figures. All amounts are in `currency` (the base currency). One row per UTC
    day; recalculation overwrites the row.
    """

    __tablename__ = "accounting_dashboard_cache"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    cache_date: Mapped[date] = mapped_column(Date, unique=True, index=True)
    currency: Mapped[str] = mapped_column(String(3), default="EUR")

    total_receivables: Mapped[float] = mapped_column(Float, default=0)
    overdue_receivables: Mapped[float] = mapped_column(Float, default=0)
    total_payables: Mapped[float] = mapped_column(Float, default=0)
    overdue_payables: Mapped[float] = mapped_column(Float, default=0)

    expected_payments_next_30_days: Mapped[float] = mapped_column(Float, default=0)
    expected_expenses_next_30_days: Mapped[float] = mapped_column(Float, default=0)
    forecast_inflow_90_days: Mapped[float] = mapped_column(Float, default=0)
    forecast_outflow_90_days: Mapped[float] = mapped_column(Float, default=0)

    overdue_1_to_30: Mapped[float] = mapped_column(Float, default=0)
    overdue_31_to_60: Mapped[float] = mapped_column(Float, default=0)
    overdue_61_to_90: Mapped[float] = mapped_column(Float, default=0)
    overdue_90_plus: Mapped[float] = mapped_column(Float, default=0)

    # Not aggregated yet; always 0.
    dunning_level1_count: Mapped[int] = mapped_column(Integer, default=0)
    dunning_level2_count: Mapped[int] = mapped_column(Integer, default=0)
    dunning_level3_count: Mapped[int] = mapped_column(Integer, default=0)
    suspended_customers_count: Mapped[int] = mapped_column(Integer, default=0)

    missing_invoices_count: Mapped[int] = mapped_column(Integer, default=0)
    missing_invoices_value: Mapped[float] = mapped_column(Float, default=0)
    pending_approval_count: Mapped[int] = mapped_column(Integer, default=0)
    pending_approval_value: Mapped[float] = mapped_column(Float, default=0)

    calculated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    valid_until: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    created_by: Mapped[str] = mapped_column(String(64), default="system")
    updated_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class InvoiceAutoGenLog(Base):
    """Record of an invoice generated on proof of delivery; drives the accounting notification."""

    __tablename__ = "invoice_auto_gen_log"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    shipment_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("shipments.id"), index=True)
    invoice_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("invoices.id"), index=True)
    invoice_number: Mapped[str] = mapped_column(String(32))
    generated_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    pod_received_date: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    notification_sent: Mapped[bool] = mapped_column(Boolean, default=False)
    notification_sent_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    notification_recipients: Mapped[list[str]] = mapped_column(JSON, default=list)
    status: Mapped[str] = mapped_column(String(32), default="generated", index=True)
    created_by: Mapped[str] = mapped_column(String(64), default="system")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    invoice: Mapped["Invoice"] = relationship("Invoice")


class IncomingInvoiceTracking(Base):
    """Supplier invoice we expect for a shipment; tracked from expected to paid."""

    __tablename__ = "incoming_invoice_tracking"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    shipment_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("shipments.id"), nullable=True, index=True
    )
    partner_name: Mapped[str] = mapped_column(String(256))
    status: Mapped[str] = mapped_column(String(16), default="expected", index=True)
    expected_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    expected_amount: Mapped[float | None] = mapped_column(Float, nullable=True)
    expected_currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    invoice_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("invoices.id"), nullable=True
    )
    received_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    approved_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    paid_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    payment_reference: Mapped[str | None] = mapped_column(String(128), nullable=True)
    dispute_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    dispute_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    internal_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[str] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

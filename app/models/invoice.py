from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import JSON, DateTime, Float, ForeignKey, Index, Integer, String, Text, func, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base


class Invoice(Base):
    """
    Outgoing (customer-facing) or incoming (supplier-facing) invoice.

    Subtotal, tax and total share `currency` and `exchange_rate`; the rate is
    the invoice-currency -> base-currency quote recorded at issuance.
    `tax_amount` is NULL when no tax rate was configured.

    A shipment has at most one outgoing invoice; the partial unique index
    enforces it even when two proof-of-delivery triggers race.
    """

    __tablename__ = "invoices"
    __table_args__ = (
        Index(
            "uq_invoices_outgoing_shipment",
            "shipment_id",
            unique=True,
            postgresql_where=text("type = 'outgoing'"),
            sqlite_where=text("type = 'outgoing'"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    invoice_number: Mapped[str] = mapped_column(String(32), unique=True, index=True)
    type: Mapped[str] = mapped_column(String(16), index=True)  # outgoing | incoming
    status: Mapped[str] = mapped_column(String(16), index=True, default="draft")  # draft | sent | paid | overdue | cancelled
    shipment_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("shipments.id"), nullable=True, index=True
    )
    customer_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("customers.id"), nullable=True, index=True
    )
    # supplier side of incoming invoices
    partner_name: Mapped[str | None] = mapped_column(String(256), nullable=True)
    external_invoice_number: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    issue_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    due_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    currency: Mapped[str] = mapped_column(String(3), default="EUR")
    exchange_rate: Mapped[float] = mapped_column(Float, default=1.0)
    subtotal_amount: Mapped[float] = mapped_column(Float, default=0)
    tax_rate: Mapped[float | None] = mapped_column(Float, nullable=True)
    tax_amount: Mapped[float | None] = mapped_column(Float, nullable=True)
    total_amount: Mapped[float] = mapped_column(Float, default=0)
    payment_terms: Mapped[int] = mapped_column(Integer, default=30)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    tags: Mapped[list[str]] = mapped_column(JSON, default=list)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # Payment
    payment_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    payment_method: Mapped[str | None] = mapped_column(String(32), nullable=True)
    paid_amount: Mapped[float | None] = mapped_column(Float, nullable=True)
    payment_reference: Mapped[str | None] = mapped_column(String(128), nullable=True)
    # Audit / soft delete
    created_by: Mapped[str] = mapped_column(String(64))
    updated_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    deleted_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    line_items: Mapped[list["InvoiceLineItem"]] = relationship(
        "InvoiceLineItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceLineItem.position",
    )
    collection_attempts: Mapped[list["InvoiceCollectionAttempt"]] = relationship(
        "InvoiceCollectionAttempt",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceCollectionAttempt.position",
    )

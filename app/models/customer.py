"""Customers and shipments as seen by accounting: only the fields invoicing reads."""
from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, Integer, String, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base


class Customer(Base):
    """A company we invoice. `payment_terms` is the number of days until an invoice is due."""

    __tablename__ = "customers"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    company_name: Mapped[str] = mapped_column(String(256), index=True)
    email: Mapped[str | None] = mapped_column(String(256), nullable=True)
    payment_terms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    shipments: Mapped[list["Shipment"]] = relationship("Shipment", back_populates="customer")


class Shipment(Base):
    """
    An OBC/NFO shipment. The agreed price is what the customer pays; completion
    (proof of delivery) triggers the automatic outgoing invoice.
    """

    __tablename__ = "shipments"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    shipment_number: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    customer_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("customers.id"), nullable=True, index=True
    )
    origin_city: Mapped[str | None] = mapped_column(String(128), nullable=True)
    destination_city: Mapped[str | None] = mapped_column(String(128), nullable=True)
    agreed_price_amount: Mapped[float] = mapped_column(Float, default=0)
    agreed_price_currency: Mapped[str] = mapped_column(String(3), default="EUR")
    agreed_price_exchange_rate: Mapped[float | None] = mapped_column(Float, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    customer: Mapped["Customer | None"] = relationship("Customer", back_populates="shipments")

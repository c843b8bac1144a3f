from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, Integer, String, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class InvoiceNumbering(Base):
    """
    Monthly invoice counter. `last_number` is always a non-negative multiple of
    `increment_by`; the next issued sequence is `last_number + increment_by`.
    """

    __tablename__ = "invoice_numbering"
    __table_args__ = (UniqueConstraint("year", "month", name="uq_invoice_numbering_year_month"),)

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    year: Mapped[int] = mapped_column(Integer)
    month: Mapped[int] = mapped_column(Integer)
    last_number: Mapped[int] = mapped_column(Integer, default=0)
    increment_by: Mapped[int] = mapped_column(Integer, default=13)
    format: Mapped[str] = mapped_column(String(16), default="YYMM####")
    created_by: Mapped[str] = mapped_column(String(64), default="system")
    updated_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

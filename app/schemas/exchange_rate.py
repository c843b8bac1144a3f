from __future__ import annotations

from datetime import date, datetime
from uuid import UUID

from pydantic import BaseModel, Field


class ExchangeRateCreate(BaseModel):
    from_currency: str = Field(..., min_length=3, max_length=3)
    to_currency: str = Field(..., min_length=3, max_length=3)
    rate: float = Field(..., gt=0)
    rate_date: date
    source: str | None = Field(default=None, max_length=64)


class ExchangeRateRead(ExchangeRateCreate):
    id: UUID
    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class RateQuoteRead(BaseModel):
    from_currency: str
    to_currency: str
    rate: float
    rate_date: date
    source: str
    degraded: bool


class ConvertRequest(BaseModel):
    amount: float
    from_currency: str = Field(..., min_length=3, max_length=3)
    to_currency: str = Field(..., min_length=3, max_length=3)
    as_of: datetime | None = None


class ConversionRead(BaseModel):
    original_amount: float
    converted_amount: float
    currency: str
    exchange_rate: float
    original_currency: str | None = None
    source: str
    rate_date: date

    model_config = {"from_attributes": True}

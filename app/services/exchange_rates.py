"""
Exchange rate resolution and currency conversion.

`resolve_rate` never fails for a missing quote: it walks a fixed chain of
exact-day, inverse, historical and hardcoded tiers and reports which one
answered in `RateQuote.source`. Callers that need a precise figure must check
that tag rather than rely on an exception.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.errors import NotFoundError, ValidationError
from app.models.exchange_rate import ExchangeRate
from app.services.audit import record_audit
from app.utils.dates import utc_day

logger = logging.getLogger(__name__)

SUPPORTED_CURRENCIES = ("EUR", "USD")

# Placeholder quotes used when nothing is stored for a pair. EUR->USD and
# USD->EUR are not reciprocal; keep them as they are until finance confirms.
DEFAULT_EUR_SOURCE_RATE = 1.1
DEFAULT_OTHER_SOURCE_RATE = 0.91

SOURCE_NO_CONVERSION = "no_conversion"
SOURCE_DEFAULT = "default_fallback"
SOURCE_DATABASE = "database"

_CENT = Decimal("0.01")


@dataclass
class RateQuote:
    rate: float
    date: date
    source: str

    @property
    def is_degraded(self) -> bool:
        """True when the quote did not come from a same-day stored rate."""
        return self.source == SOURCE_DEFAULT or "historical" in self.source


@dataclass
class Conversion:
    original_amount: float
    converted_amount: float
    currency: str
    exchange_rate: float
    original_currency: str | None
    source: str
    rate_date: date


def round_money(value: float) -> float:
    """Round to cents, halves away from zero (18.145 -> 18.15)."""
    return float(Decimal(repr(float(value))).quantize(_CENT, rounding=ROUND_HALF_UP))


def default_rate(from_currency: str, to_currency: str) -> float:
    return DEFAULT_EUR_SOURCE_RATE if from_currency == "EUR" else DEFAULT_OTHER_SOURCE_RATE


def _label(row: ExchangeRate, suffix: str | None = None) -> str:
    base = row.source or SOURCE_DATABASE
    return f"{base} ({suffix})" if suffix else base


def _active_pair(from_currency: str, to_currency: str):
    return select(ExchangeRate).where(
        ExchangeRate.from_currency == from_currency,
        ExchangeRate.to_currency == to_currency,
        ExchangeRate.is_active.is_(True),
    )


def _same_day(db: Session, from_currency: str, to_currency: str, day: date) -> ExchangeRate | None:
    stmt = _active_pair(from_currency, to_currency).where(ExchangeRate.rate_date == day)
    return db.execute(stmt.order_by(ExchangeRate.created_at.desc()).limit(1)).scalars().first()


def _latest(db: Session, from_currency: str, to_currency: str) -> ExchangeRate | None:
    stmt = _active_pair(from_currency, to_currency).order_by(
        ExchangeRate.rate_date.desc(), ExchangeRate.created_at.desc()
    )
    return db.execute(stmt.limit(1)).scalars().first()


def resolve_rate(
    db: Session,
    from_currency: str,
    to_currency: str,
    as_of: datetime | None = None,
) -> RateQuote:
    """
    Rate for converting 1 unit of `from_currency` into `to_currency` on the UTC
    day of `as_of` (default today).

    Tiers, first hit wins: same-day direct, same-day inverse, latest direct,
    latest inverse, hardcoded default.
    """
    day = utc_day(as_of)
    if from_currency == to_currency:
        return RateQuote(rate=1.0, date=day, source=SOURCE_NO_CONVERSION)

    row = _same_day(db, from_currency, to_currency, day)
    if row:
        return RateQuote(rate=row.rate, date=row.rate_date, source=_label(row))

    row = _same_day(db, to_currency, from_currency, day)
    if row:
        return RateQuote(rate=1 / row.rate, date=row.rate_date, source=_label(row, "inverse"))

    row = _latest(db, from_currency, to_currency)
    if row:
        logger.info(
            "exchange_rate_degraded tier=historical pair=%s/%s day=%s rate_date=%s",
            from_currency,
            to_currency,
            day,
            row.rate_date,
        )
        return RateQuote(rate=row.rate, date=row.rate_date, source=_label(row, "historical"))

    row = _latest(db, to_currency, from_currency)
    if row:
        logger.info(
            "exchange_rate_degraded tier=inverse_historical pair=%s/%s day=%s rate_date=%s",
            from_currency,
            to_currency,
            day,
            row.rate_date,
        )
        return RateQuote(rate=1 / row.rate, date=row.rate_date, source=_label(row, "inverse, historical"))

    rate = default_rate(from_currency, to_currency)
    logger.warning(
        "exchange_rate_degraded tier=default pair=%s/%s day=%s rate=%s",
        from_currency,
        to_currency,
        day,
        rate,
    )
    return RateQuote(rate=rate, date=day, source=SOURCE_DEFAULT)


def convert_amount(
    db: Session,
    amount: float,
    from_currency: str,
    to_currency: str,
    as_of: datetime | None = None,
) -> Conversion:
    if from_currency == to_currency:
        return Conversion(
            original_amount=amount,
            converted_amount=amount,
            currency=to_currency,
            exchange_rate=1.0,
            original_currency=None,
            source=SOURCE_NO_CONVERSION,
            rate_date=utc_day(as_of),
        )
    quote = resolve_rate(db, from_currency, to_currency, as_of)
    return Conversion(
        original_amount=amount,
        converted_amount=round_money(amount * quote.rate),
        currency=to_currency,
        exchange_rate=quote.rate,
        original_currency=from_currency,
        source=quote.source,
        rate_date=quote.date,
    )


def validate_currency(code: str) -> str:
    value = (code or "").strip().upper()
    if value not in SUPPORTED_CURRENCIES:
        raise ValidationError(f"Unsupported currency: {code}")
    return value


def record_exchange_rate(
    db: Session,
    *,
    from_currency: str,
    to_currency: str,
    rate: float,
    rate_date: date,
    source: str | None,
    actor_id: str,
) -> ExchangeRate:
    from_code = validate_currency(from_currency)
    to_code = validate_currency(to_currency)
    if from_code == to_code:
        raise ValidationError("Exchange rate currencies must differ")
    if rate is None or rate <= 0:
        raise ValidationError("Exchange rate must be greater than zero")

    row = ExchangeRate(
        from_currency=from_code,
        to_currency=to_code,
        rate=float(rate),
        rate_date=rate_date,
        source=(source or "").strip() or None,
        is_active=True,
        created_by=actor_id,
    )
    db.add(row)
    db.flush()
    record_audit(
        db,
        "exchange_rate.created",
        "exchange_rate",
        row.id,
        f"{from_code}/{to_code} {rate_date.isoformat()}",
        f"Recorded {from_code}->{to_code} rate {rate} for {rate_date.isoformat()}",
        actor_id,
        {"rate": row.rate, "source": row.source},
    )
    logger.info("exchange_rate_created pair=%s/%s date=%s rate=%s", from_code, to_code, rate_date, rate)
    return row


def deactivate_exchange_rate(db: Session, rate_id: uuid.UUID, actor_id: str) -> ExchangeRate:
    row = db.get(ExchangeRate, rate_id)
    if not row:
        raise NotFoundError("Exchange rate not found")
    if row.is_active:
        row.is_active = False
        record_audit(
            db,
            "exchange_rate.deactivated",
            "exchange_rate",
            row.id,
            f"{row.from_currency}/{row.to_currency} {row.rate_date.isoformat()}",
            f"Deactivated {row.from_currency}->{row.to_currency} rate of {row.rate_date.isoformat()}",
            actor_id,
        )
        db.flush()
        logger.info("exchange_rate_deactivated id=%s", row.id)
    return row


def list_exchange_rates(
    db: Session,
    *,
    from_currency: str | None = None,
    to_currency: str | None = None,
    include_inactive: bool = False,
    limit: int = 100,
) -> list[ExchangeRate]:
    stmt = select(ExchangeRate)
    if from_currency:
        stmt = stmt.where(ExchangeRate.from_currency == from_currency.upper())
    if to_currency:
        stmt = stmt.where(ExchangeRate.to_currency == to_currency.upper())
    if not include_inactive:
        stmt = stmt.where(ExchangeRate.is_active.is_(True))
    stmt = stmt.order_by(ExchangeRate.rate_date.desc(), ExchangeRate.created_at.desc()).limit(limit)
    return list(db.execute(stmt).scalars().all())

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.auth import SessionUser, get_current_user, require_role
from app.db.session import get_db
from app.schemas.exchange_rate import (
    ConversionRead,
    ConvertRequest,
    ExchangeRateCreate,
    ExchangeRateRead,
    RateQuoteRead,
)
from app.services.exchange_rates import (
    convert_amount,
    deactivate_exchange_rate,
    list_exchange_rates,
    record_exchange_rate,
    resolve_rate,
    validate_currency,
)

router = APIRouter(prefix="/exchange-rates", tags=["exchange-rates"])


@router.get("", response_model=list[ExchangeRateRead])
def list_rates(
    from_currency: str | None = None,
    to_currency: str | None = None,
    include_inactive: bool = False,
    limit: int = Query(default=100, ge=1, le=1000),
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
) -> list[ExchangeRateRead]:
    rows = list_exchange_rates(
        db,
        from_currency=from_currency,
        to_currency=to_currency,
        include_inactive=include_inactive,
        limit=limit,
    )
    return [ExchangeRateRead.model_validate(r) for r in rows]


@router.post("", response_model=ExchangeRateRead, status_code=201)
def create_rate(
    payload: ExchangeRateCreate,
    db: Session = Depends(get_db),
    current: SessionUser = Depends(require_role("admin", "accounting")),
) -> ExchangeRateRead:
    row = record_exchange_rate(
        db,
        from_currency=payload.from_currency,
        to_currency=payload.to_currency,
        rate=payload.rate,
        rate_date=payload.rate_date,
        source=payload.source,
        actor_id=current.user_id,
    )
    db.commit()
    db.refresh(row)
    return ExchangeRateRead.model_validate(row)


@router.delete("/{rate_id}", response_model=ExchangeRateRead)
def deactivate_rate(
    rate_id: UUID,
    db: Session = Depends(get_db),
    current: SessionUser = Depends(require_role("admin", "accounting")),
) -> ExchangeRateRead:
    row = deactivate_exchange_rate(db, rate_id, current.user_id)
    db.commit()
    return ExchangeRateRead.model_validate(row)


@router.get("/resolve", response_model=RateQuoteRead)
def resolve(
    from_currency: str,
    to_currency: str,
    as_of: datetime | None = None,
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
) -> RateQuoteRead:
    from_code = validate_currency(from_currency)
    to_code = validate_currency(to_currency)
    quote = resolve_rate(db, from_code, to_code, as_of)
    return RateQuoteRead(
        from_currency=from_code,
        to_currency=to_code,
        rate=quote.rate,
        rate_date=quote.date,
        source=quote.source,
        degraded=quote.is_degraded,
    )


@router.post("/convert", response_model=ConversionRead)
def convert(
    payload: ConvertRequest,
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
) -> ConversionRead:
    conversion = convert_amount(
        db,
        payload.amount,
        validate_currency(payload.from_currency),
        validate_currency(payload.to_currency),
        payload.as_of,
    )
    return ConversionRead.model_validate(conversion)

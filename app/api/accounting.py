from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.core.auth import SessionUser, get_current_user, require_role
from app.db.session import get_db
from app.schemas.accounting import (
    CustomerReceivableRead,
    DashboardRead,
    DashboardRefreshResponse,
    ExpectedInvoiceCreate,
    IncomingInvoiceTrackingRead,
    TrackingStatus,
    TrackingStatusUpdate,
)
from app.services.accounting_dashboard import (
    create_expected_invoice,
    get_dashboard,
    is_stale,
    list_incoming_tracking,
    receivables_by_customer,
    refresh_dashboard_cache,
    update_tracking_status,
)
from app.services.invoicing import mark_overdue_invoices

router = APIRouter(prefix="/accounting", tags=["accounting"])

can_manage = require_role("admin", "accounting")


@router.post("/dashboard/refresh", response_model=DashboardRefreshResponse)
def refresh_dashboard(
    db: Session = Depends(get_db),
    current: SessionUser = Depends(can_manage),
) -> DashboardRefreshResponse:
    mark_overdue_invoices(db)
    result = refresh_dashboard_cache(db, actor_id=current.user_id)
    db.commit()
    return DashboardRefreshResponse(**result)


@router.get("/dashboard", response_model=DashboardRead)
def dashboard(db: Session = Depends(get_db), _=Depends(get_current_user)) -> DashboardRead:
    cache = get_dashboard(db)
    if cache is None:
        raise HTTPException(status_code=404, detail="Dashboard has not been calculated today")
    data = DashboardRead.model_validate(cache)
    data.stale = is_stale(cache)
    return data


@router.get("/receivables-by-customer", response_model=list[CustomerReceivableRead])
def receivables(
    limit: int = Query(default=10, ge=1, le=100),
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
) -> list[CustomerReceivableRead]:
    return [CustomerReceivableRead.model_validate(r) for r in receivables_by_customer(db, limit=limit)]


@router.get("/incoming-invoices", response_model=list[IncomingInvoiceTrackingRead])
def list_incoming(
    status: TrackingStatus | None = None,
    limit: int = Query(default=200, ge=1, le=1000),
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
) -> list[IncomingInvoiceTrackingRead]:
    return [IncomingInvoiceTrackingRead.model_validate(r) for r in list_incoming_tracking(db, status, limit)]


@router.post("/incoming-invoices", response_model=IncomingInvoiceTrackingRead, status_code=201)
def expect_incoming(
    payload: ExpectedInvoiceCreate,
    db: Session = Depends(get_db),
    current: SessionUser = Depends(can_manage),
) -> IncomingInvoiceTrackingRead:
    row = create_expected_invoice(
        db,
        current,
        partner_name=payload.partner_name,
        expected_date=payload.expected_date,
        shipment_id=payload.shipment_id,
        expected_amount=payload.expected_amount,
        expected_currency=payload.expected_currency,
        internal_notes=payload.internal_notes,
    )
    db.commit()
    return IncomingInvoiceTrackingRead.model_validate(row)


@router.patch("/incoming-invoices/{tracking_id}", response_model=IncomingInvoiceTrackingRead)
def change_incoming_status(
    tracking_id: UUID,
    payload: TrackingStatusUpdate,
    db: Session = Depends(get_db),
    current: SessionUser = Depends(can_manage),
) -> IncomingInvoiceTrackingRead:
    row = update_tracking_status(
        db,
        current,
        tracking_id,
        payload.status,
        invoice_id=payload.invoice_id,
        payment_reference=payload.payment_reference,
        dispute_reason=payload.dispute_reason,
        notes=payload.notes,
    )
    db.commit()
    return IncomingInvoiceTrackingRead.model_validate(row)

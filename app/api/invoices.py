from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from sqlalchemy.orm import Session

from app.core.auth import SessionUser, get_current_user, require_role
from app.db.session import get_db
from app.models.customer import Customer, Shipment
from app.models.invoice import Invoice
from app.schemas.invoice import (
    AutoGenLogRead,
    AutoInvoiceResponse,
    CollectionAttemptCreate,
    IncomingInvoiceCreate,
    InvoiceCreate,
    InvoiceRead,
    InvoiceStatus,
    InvoiceStatusUpdate,
    PaymentCreate,
)
from app.services.invoice_pdf import render_invoice_pdf
from app.services.invoicing import (
    add_collection_attempt,
    auto_create_invoice_after_pod,
    create_incoming_invoice,
    create_outgoing_invoice,
    delete_invoice,
    get_invoice,
    list_auto_gen_logs,
    list_invoices,
    process_payment,
    update_invoice_status,
)

router = APIRouter(prefix="/invoices", tags=["invoices"])

can_bill = require_role("admin", "accounting")


def _to_read(row: Invoice) -> InvoiceRead:
    data = InvoiceRead.model_validate(row)
    data.pdf_url = f"/invoices/{row.id}/pdf"
    return data


@router.get("", response_model=list[InvoiceRead])
def list_all(
    status: InvoiceStatus | None = None,
    invoice_type: str | None = Query(default=None, alias="type", pattern="^(outgoing|incoming)$"),
    customer_id: UUID | None = None,
    limit: int = Query(default=200, ge=1, le=1000),
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
) -> list[InvoiceRead]:
    rows = list_invoices(db, status=status, invoice_type=invoice_type, customer_id=customer_id, limit=limit)
    return [_to_read(r) for r in rows]


@router.get("/auto-gen-log", response_model=list[AutoGenLogRead])
def auto_gen_log(
    pending_only: bool = False,
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
) -> list[AutoGenLogRead]:
    return [AutoGenLogRead.model_validate(r) for r in list_auto_gen_logs(db, pending_only=pending_only, limit=limit)]


@router.get("/{invoice_id}", response_model=InvoiceRead)
def get_one(invoice_id: UUID, db: Session = Depends(get_db), _=Depends(get_current_user)) -> InvoiceRead:
    return _to_read(get_invoice(db, invoice_id))


@router.post("", response_model=InvoiceRead, status_code=201)
def create(
    payload: InvoiceCreate,
    db: Session = Depends(get_db),
    current: SessionUser = Depends(can_bill),
) -> InvoiceRead:
    invoice = create_outgoing_invoice(db, current, payload)
    db.commit()
    return _to_read(get_invoice(db, invoice.id))


@router.post("/incoming", response_model=InvoiceRead, status_code=201)
def create_incoming(
    payload: IncomingInvoiceCreate,
    db: Session = Depends(get_db),
    current: SessionUser = Depends(can_bill),
) -> InvoiceRead:
    invoice = create_incoming_invoice(db, current, payload)
    db.commit()
    return _to_read(get_invoice(db, invoice.id))


@router.post("/from-shipment/{shipment_id}", response_model=AutoInvoiceResponse)
def create_from_shipment(
    shipment_id: UUID,
    db: Session = Depends(get_db),
    _=Depends(can_bill),
) -> AutoInvoiceResponse:
    result = auto_create_invoice_after_pod(db, shipment_id)
    if result.success:
        db.commit()
    return AutoInvoiceResponse(
        success=result.success,
        reason=result.reason,
        invoice_id=result.invoice_id,
        invoice_number=result.invoice_number,
    )


@router.post("/{invoice_id}/status", response_model=InvoiceRead)
def change_status(
    invoice_id: UUID,
    payload: InvoiceStatusUpdate,
    db: Session = Depends(get_db),
    current: SessionUser = Depends(can_bill),
) -> InvoiceRead:
    invoice = update_invoice_status(db, current, invoice_id, payload.status, payload.reason)
    db.commit()
    return _to_read(invoice)


@router.post("/{invoice_id}/payments", response_model=InvoiceRead)
def record_payment(
    invoice_id: UUID,
    payload: PaymentCreate,
    db: Session = Depends(get_db),
    current: SessionUser = Depends(can_bill),
) -> InvoiceRead:
    invoice = process_payment(db, current, invoice_id, payload)
    db.commit()
    return _to_read(invoice)


@router.post("/{invoice_id}/collection-attempts", response_model=InvoiceRead)
def record_collection_attempt(
    invoice_id: UUID,
    payload: CollectionAttemptCreate,
    db: Session = Depends(get_db),
    current: SessionUser = Depends(can_bill),
) -> InvoiceRead:
    invoice = add_collection_attempt(db, current, invoice_id, payload.method, payload.result, payload.notes)
    db.commit()
    return _to_read(invoice)


@router.delete("/{invoice_id}")
def delete(
    invoice_id: UUID,
    db: Session = Depends(get_db),
    current: SessionUser = Depends(can_bill),
) -> dict:
    delete_invoice(db, current, invoice_id)
    db.commit()
    return {"ok": True}


@router.get("/{invoice_id}/pdf")
def invoice_pdf(invoice_id: UUID, db: Session = Depends(get_db), _=Depends(get_current_user)) -> Response:
    inv = get_invoice(db, invoice_id)
    customer = db.get(Customer, inv.customer_id) if inv.customer_id else None
    shipment = db.get(Shipment, inv.shipment_id) if inv.shipment_id else None
    headers = {"Content-Disposition": f'inline; filename="invoice-{inv.invoice_number}.pdf"'}
    return Response(content=render_invoice_pdf(inv, customer, shipment), media_type="application/pdf", headers=headers)

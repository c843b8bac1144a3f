from __future__ import annotations

import csv
import io

from fastapi import APIRouter, Depends
from fastapi.responses import Response
from openpyxl import Workbook
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.auth import require_role
from app.db.session import get_db
from app.models.customer import Customer
from app.models.invoice import Invoice
from app.services.accounting_dashboard import eur_value, receivables_by_customer
from app.services.exchange_rates import round_money
from app.utils.dates import utc_day

router = APIRouter(prefix="/exports", tags=["exports"])

can_export = require_role("admin", "accounting")

INVOICE_COLUMNS = [
    "invoice_number",
    "type",
    "status",
    "party",
    "issue_date",
    "due_date",
    "currency",
    "subtotal",
    "tax",
    "total",
    "exchange_rate",
    "total_eur",
]
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _invoice_rows(db: Session) -> list[list]:
    rows = db.execute(
        select(Invoice, Customer.company_name)
        .outerjoin(Customer, Customer.id == Invoice.customer_id)
        .where(Invoice.deleted_at.is_(None))
        .order_by(Invoice.issue_date.asc(), Invoice.invoice_number.asc())
    ).all()
    out: list[list] = []
    for inv, company_name in rows:
        out.append([
            inv.invoice_number,
            inv.type,
            inv.status,
            company_name or inv.partner_name or "",
            inv.issue_date.date().isoformat(),
            inv.due_date.date().isoformat(),
            inv.currency,
            inv.subtotal_amount,
            inv.tax_amount if inv.tax_amount is not None else "",
            inv.total_amount,
            inv.exchange_rate,
            round_money(eur_value(inv)),
        ])
    return out


def _xlsx_response(wb: Workbook, filename: str) -> Response:
    bio = io.BytesIO()
    wb.save(bio)
    headers = {"Content-Disposition": f'attachment; filename="{filename}"'}
    return Response(content=bio.getvalue(), media_type=XLSX_MEDIA_TYPE, headers=headers)


@router.get("/invoices.csv")
def export_invoices_csv(db: Session = Depends(get_db), _=Depends(can_export)) -> Response:
    out = io.StringIO()
    w = csv.writer(out)
    w.writerow(INVOICE_COLUMNS)
    for r in _invoice_rows(db):
        w.writerow(r)
    headers = {"Content-Disposition": f'attachment; filename="invoices-{utc_day().isoformat()}.csv"'}
    return Response(content=out.getvalue().encode("utf-8"), media_type="text/csv", headers=headers)


@router.get("/invoices.xlsx")
def export_invoices_xlsx(db: Session = Depends(get_db), _=Depends(can_export)) -> Response:
    wb = Workbook()
    ws = wb.active
    ws.title = "Invoices"
    ws.append(INVOICE_COLUMNS)
    for r in _invoice_rows(db):
        ws.append(r)
    return _xlsx_response(wb, f"invoices-{utc_day().isoformat()}.xlsx")


@router.get("/receivables.xlsx")
def export_receivables_xlsx(db: Session = Depends(get_db), _=Depends(can_export)) -> Response:
    wb = Workbook()
    ws = wb.active
    ws.title = "Receivables"
    ws.append(["customer", "open_invoices", "total_eur", "overdue_eur", "oldest_days_overdue", "invoice_numbers"])
    for entry in receivables_by_customer(db, limit=1000):
        ws.append([
            entry.company_name or "",
            entry.invoice_count,
            entry.total,
            entry.overdue_amount,
            entry.oldest_days_overdue,
            ", ".join(entry.invoice_numbers),
        ])
    return _xlsx_response(wb, f"receivables-{utc_day().isoformat()}.xlsx")

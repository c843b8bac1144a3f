from __future__ import annotations

import io

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.pdfgen import canvas

from app.core.config import settings
from app.models.customer import Customer, Shipment
from app.models.invoice import Invoice
from app.services.accounting_dashboard import eur_value
from app.services.exchange_rates import round_money

MAX_VISIBLE_LINES = 14
ROW_H = 6.5 * mm

INK = colors.HexColor("#111827")
MUTED = colors.HexColor("#6b7280")
RULE = colors.HexColor("#d1d5db")


def _money(amount: float | None, currency: str) -> str:
    return f"{float(amount or 0):,.2f} {currency}"


def _day(value) -> str:
    return value.date().isoformat() if value else "-"


def _block(c: canvas.Canvas, x: float, y: float, title: str, rows: list[tuple[str, str]], label_w: float) -> float:
    """Titled label/value column; returns the y below the last row."""
    c.setFillColor(MUTED)
    c.setFont("Helvetica-Bold", 8.5)
    c.drawString(x, y, title.upper())
    y -= ROW_H
    for label, value in rows:
        c.setFillColor(MUTED)
        c.setFont("Helvetica", 9)
        c.drawString(x, y, label)
        c.setFillColor(INK)
        c.drawString(x + label_w, y, value[:48])
        y -= ROW_H
    return y


def _rule(c: canvas.Canvas, y: float, left: float, right: float) -> None:
    c.setStrokeColor(RULE)
    c.setLineWidth(0.6)
    c.line(left, y, right, y)


def _party_rows(inv: Invoice, customer: Customer | None) -> tuple[str, list[tuple[str, str]]]:
    if inv.type == "incoming":
        return "Supplier", [
            ("Partner", inv.partner_name or "-"),
            ("Their number", inv.external_invoice_number or "-"),
        ]
    if customer is None:
        return "Bill to", [("Customer", "-")]
    return "Bill to", [("Customer", customer.company_name), ("Email", customer.email or "-")]


def _reference_rows(inv: Invoice, shipment: Shipment | None) -> list[tuple[str, str]]:
    rows = [
        ("Issued", _day(inv.issue_date)),
        ("Due", f"{_day(inv.due_date)} ({inv.payment_terms} days)"),
        ("Currency", inv.currency),
    ]
    if inv.currency != settings.base_currency:
        rows.append((f"Rate to {settings.base_currency}", f"{inv.exchange_rate or 0:.4f}"))
        rows.append(
            (
                f"Total in {settings.base_currency}",
                _money(round_money(eur_value(inv)), settings.base_currency),
            )
        )
    if shipment is not None:
        route = f"{shipment.origin_city or '?'} - {shipment.destination_city or '?'}"
        rows.append(("Shipment", shipment.shipment_number))
        rows.append(("Route", route))
    return rows


def render_invoice_pdf(inv: Invoice, customer: Customer | None, shipment: Shipment | None = None) -> bytes:
    """A4 invoice: title line, party and reference columns, line items, totals."""
    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=A4)
    page_w, page_h = A4
    left = 18 * mm
    right = page_w - 18 * mm
    mid = page_w / 2

    y = page_h - 22 * mm
    c.setFillColor(INK)
    c.setFont("Helvetica-Bold", 16)
    title = "Supplier invoice" if inv.type == "incoming" else "Invoice"
    c.drawString(left, y, f"{title} {inv.invoice_number}")
    c.setFont("Helvetica", 9)
    c.setFillColor(MUTED)
    c.drawRightString(right, y, f"{inv.status.upper()} | YourOBC Courier Services")
    y -= 4 * mm
    _rule(c, y, left, right)

    party_title, party_rows = _party_rows(inv, customer)
    y_top = y - 8 * mm
    y_party = _block(c, left, y_top, party_title, party_rows, 26 * mm)
    y_ref = _block(c, mid, y_top, "Reference", _reference_rows(inv, shipment), 30 * mm)
    y = min(y_party, y_ref) - 4 * mm
    if inv.description:
        c.setFillColor(INK)
        c.setFont("Helvetica-Oblique", 9)
        c.drawString(left, y, inv.description[:110])
        y -= ROW_H

    # Items
    qty_x = left + 112 * mm
    unit_x = left + 145 * mm
    _rule(c, y, left, right)
    y -= 5 * mm
    c.setFillColor(MUTED)
    c.setFont("Helvetica-Bold", 8.5)
    for text_, x in (("QTY", qty_x), ("UNIT", unit_x), ("AMOUNT", right)):
        c.drawRightString(x, y, text_)
    c.drawString(left, y, "DESCRIPTION")
    y -= 2 * mm
    _rule(c, y, left, right)
    y -= 5 * mm

    items = list(inv.line_items or [])
    c.setFillColor(INK)
    c.setFont("Helvetica", 9)
    for row in items[:MAX_VISIBLE_LINES]:
        label = row.description or "Item"
        if row.original_currency:
            label = f"{label} (orig. {_money(row.original_amount, row.original_currency)})"
        c.drawString(left, y, label[:70])
        c.drawRightString(qty_x, y, f"{float(row.quantity):g}")
        c.drawRightString(unit_x, y, _money(row.unit_price_amount, row.unit_price_currency))
        c.drawRightString(right, y, _money(row.total_amount, row.currency))
        y -= ROW_H
    hidden = len(items) - MAX_VISIBLE_LINES
    if hidden > 0:
        c.setFillColor(MUTED)
        c.drawString(left, y, f"... {hidden} more lines")
        y -= ROW_H

    # Totals
    _rule(c, y + 2 * mm, unit_x - 30 * mm, right)
    y -= 3 * mm
    tax_label = f"Tax {inv.tax_rate:g}%" if inv.tax_rate is not None else "Tax"
    tax_value = _money(inv.tax_amount, inv.currency) if inv.tax_amount is not None else "-"
    for label, value in (("Subtotal", _money(inv.subtotal_amount, inv.currency)), (tax_label, tax_value)):
        c.setFillColor(MUTED)
        c.setFont("Helvetica", 9)
        c.drawString(unit_x - 30 * mm, y, label)
        c.setFillColor(INK)
        c.drawRightString(right, y, value)
        y -= ROW_H
    c.setFont("Helvetica-Bold", 11)
    c.drawString(unit_x - 30 * mm, y, "Total")
    c.drawRightString(right, y, _money(inv.total_amount, inv.currency))

    if inv.notes:
        c.setFillColor(MUTED)
        c.setFont("Helvetica", 8.5)
        c.drawString(left, 24 * mm, f"Notes: {inv.notes[:100]}")
    c.setFont("Helvetica", 7.5)
    c.setFillColor(MUTED)
    c.drawString(left, 14 * mm, f"Invoice ID {inv.id}")
    c.showPage()
    c.save()
    return buf.getvalue()

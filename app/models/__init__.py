from app.models.accounting import AccountingDashboardCache, IncomingInvoiceTracking, InvoiceAutoGenLog
from app.models.audit_log import AuditLog
from app.models.customer import Customer, Shipment
from app.models.exchange_rate import ExchangeRate
from app.models.invoice import Invoice
from app.models.invoice_item import InvoiceCollectionAttempt, InvoiceLineItem
from app.models.invoice_numbering import InvoiceNumbering
from app.models.user import User

__all__ = [
    "AccountingDashboardCache",
    "AuditLog",
    "Customer",
    "ExchangeRate",
    "IncomingInvoiceTracking",
    "Invoice",
    "InvoiceAutoGenLog",
    "InvoiceCollectionAttempt",
    "InvoiceLineItem",
    "InvoiceNumbering",
    "Shipment",
    "User",
]

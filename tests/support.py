"""
In-memory SQLite database shared by the service and API tests.

Import this module before anything under `app` so settings pick up the
SQLite URL instead of the PostgreSQL default.
"""
from __future__ import annotations

import os

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("AUTH_SECRET", "test-secret")

import uuid  # noqa: E402
from datetime import date, datetime, timedelta, timezone  # noqa: E402

from sqlalchemy import create_engine, event  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

import app.models  # noqa: E402,F401
from app.core.auth import SessionUser  # noqa: E402
from app.db.base import Base  # noqa: E402
from app.models.customer import Customer, Shipment  # noqa: E402
from app.models.exchange_rate import ExchangeRate  # noqa: E402
from app.models.invoice import Invoice  # noqa: E402

engine = create_engine(
    "sqlite+pysqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


# pysqlite defers BEGIN on its own, which breaks SAVEPOINT; let SQLAlchemy emit it.
@event.listens_for(engine, "connect")
def _disable_pysqlite_transactions(dbapi_connection, connection_record):
    dbapi_connection.isolation_level = None


@event.listens_for(engine, "begin")
def _emit_begin(conn):
    conn.exec_driver_sql("BEGIN")


TestingSession = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

ACCOUNTANT = SessionUser(user_id="user-accounting", username="accountant", role="accounting")
ADMIN = SessionUser(user_id="user-admin", username="admin", role="admin")
STAFF = SessionUser(user_id="user-staff", username="staff", role="staff")

MARCH_2025 = datetime(2025, 3, 14, 10, 30, tzinfo=timezone.utc)


def reset_database() -> None:
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)


def new_session() -> Session:
    return TestingSession()


def add_customer(db: Session, name: str = "Acme Logistics GmbH", payment_terms: int | None = 14) -> Customer:
    customer = Customer(company_name=name, email="ap@acme.example", payment_terms=payment_terms)
    db.add(customer)
    db.flush()
    return customer


def add_shipment(
    db: Session,
    customer: Customer | None,
    number: str = "OBC-2025-0042",
    amount: float = 1000.0,
    currency: str = "EUR",
    exchange_rate: float | None = None,
    completed_at: datetime | None = None,
) -> Shipment:
    shipment = Shipment(
        shipment_number=number,
        customer_id=customer.id if customer else None,
        origin_city="Frankfurt",
        destination_city="Chicago",
        agreed_price_amount=amount,
        agreed_price_currency=currency,
        agreed_price_exchange_rate=exchange_rate,
        completed_at=completed_at,
    )
    db.add(shipment)
    db.flush()
    return shipment


def add_rate(
    db: Session,
    from_currency: str,
    to_currency: str,
    rate: float,
    rate_date: date,
    source: str | None = None,
    is_active: bool = True,
) -> ExchangeRate:
    row = ExchangeRate(
        from_currency=from_currency,
        to_currency=to_currency,
        rate=rate,
        rate_date=rate_date,
        source=source,
        is_active=is_active,
    )
    db.add(row)
    db.flush()
    return row


def add_invoice(
    db: Session,
    *,
    number: str,
    type: str = "outgoing",
    status: str = "sent",
    total: float = 100.0,
    currency: str = "EUR",
    exchange_rate: float = 1.0,
    due_date: datetime,
    customer: Customer | None = None,
) -> Invoice:
    invoice = Invoice(
        id=uuid.uuid4(),
        invoice_number=number,
        type=type,
        status=status,
        customer_id=customer.id if customer else None,
        issue_date=due_date - timedelta(days=30),
        due_date=due_date,
        currency=currency,
        exchange_rate=exchange_rate,
        subtotal_amount=total,
        total_amount=total,
        payment_terms=30,
        tags=[],
        created_by="test",
    )
    db.add(invoice)
    db.flush()
    return invoice

import os

# Settings are read at import time; point them at SQLite before anything imports rentflow.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SEND_EMAILS", "false")

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from rentflow.db.session import Base
from rentflow.models.audit_log import AuditLog  # noqa: F401
from rentflow.models.booking import Booking, BookingItem, BookingStatus
from rentflow.models.company_discount import CompanyDiscount
from rentflow.models.machine import ItemType, Machine
from rentflow.models.processed_payment_event import ProcessedPaymentEvent  # noqa: F401
from rentflow.services.stripe_gateway import StripeGateway


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False)


@pytest.fixture()
def db(session_factory) -> Session:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def machine_factory(db):
    def _make(**kw) -> Machine:
        m = Machine(
            id=kw.pop("id", str(uuid.uuid4())),
            code=kw.pop("code", f"M-{uuid.uuid4().hex[:8]}"),
            name=kw.pop("name", "Mini excavator"),
            item_type=kw.pop("item_type", ItemType.PRIMARY),
            charge_model=kw.pop("charge_model", "PER_BOOKING"),
            time_unit=kw.pop("time_unit", "DAY"),
            daily_rate_cents=kw.pop("daily_rate_cents", 9900),
            deposit_cents=kw.pop("deposit_cents", 15000),
            delivery_charge_cents=kw.pop("delivery_charge_cents", 6500),
            pickup_charge_cents=kw.pop("pickup_charge_cents", 6500),
            min_days=kw.pop("min_days", 1),
            active=kw.pop("active", True),
            **kw,
        )
        db.add(m)
        db.commit()
        return m

    return _make


@pytest.fixture()
def machine(machine_factory) -> Machine:
    return machine_factory()


@pytest.fixture()
def booking_factory(db):
    def _make(machine: Machine, start, end, status=BookingStatus.PENDING, **kw) -> Booking:
        if status == BookingStatus.PENDING:
            kw.setdefault("hold_expires_at", datetime.now(timezone.utc) + timedelta(minutes=35))
        b = Booking(
            id=kw.pop("id", str(uuid.uuid4())),
            booking_ref=kw.pop("booking_ref", f"RF-{uuid.uuid4().hex[:6].upper()}"),
            machine_id=machine.id,
            start_date=start,
            end_date=end,
            customer_name=kw.pop("customer_name", "Ana Costa"),
            customer_email=kw.pop("customer_email", "ana@example.com"),
            status=status,
            paid=status == BookingStatus.CONFIRMED,
            quoted_total_cents=kw.pop("quoted_total_cents", 36900),
            **kw,
        )
        db.add(b)
        db.add(BookingItem(
            id=str(uuid.uuid4()),
            booking_id=b.id,
            machine_id=machine.id,
            position=0,
            is_primary=True,
            name=machine.name,
            item_type=machine.item_type,
            quantity=1,
            charge_model=machine.charge_model,
            time_unit=machine.time_unit,
            unit_price_cents=machine.daily_rate_cents,
            line_total_cents=b.quoted_total_cents,
        ))
        db.commit()
        return b

    return _make


@pytest.fixture()
def company_discount(db) -> CompanyDiscount:
    row = CompanyDiscount(
        id=str(uuid.uuid4()),
        nif="500000000",
        company_name="Obras Norte Lda",
        discount_percentage=Decimal("10"),
        active=True,
    )
    db.add(row)
    db.commit()
    return row


@pytest.fixture()
def gateway():
    gw = MagicMock(spec=StripeGateway)
    gw.retrieve_checkout_session.return_value = None
    gw.retrieve_charge.return_value = None
    gw.latest_card_payment_method.return_value = None
    return gw


@pytest.fixture()
def sent_emails(monkeypatch):
    """Capture outgoing mail instead of talking to SMTP/SendGrid."""
    from rentflow.services import notification_service

    outbox = []

    def _send(to_email, subject, body, reply_to=None):
        outbox.append({"to": to_email, "subject": subject, "body": body, "reply_to": reply_to})

    monkeypatch.setattr(notification_service, "send_email", _send)
    return outbox

from datetime import date
from unittest.mock import MagicMock

import pytest
import requests

from rentflow.core.config import settings
from rentflow.models.booking import BookingStatus
from rentflow.services import invoice_service
from rentflow.services.invoice_service import (
    InvoicingClient,
    InvoicingConfig,
    InvoicingError,
    IssuedInvoice,
    get_invoicing_client,
    issue_invoice_for_booking,
)
from rentflow.services.notification_service import build_notification_view

START, END = date(2025, 9, 1), date(2025, 9, 3)


class FakeInvoicingClient:
    def __init__(self):
        self.cfg = InvoicingConfig(api_url="https://invoicing.test/api", api_key="k", provider="vendus")
        self.issued = []

    def issue(self, view, payment_intent_id, billing):
        self.issued.append((view.booking_id, payment_intent_id, billing))
        return IssuedInvoice(provider_id="doc_1", number="FT 2025/1", pdf_url="https://invoicing.test/ft-1.pdf")


@pytest.fixture()
def paid_booking(machine, booking_factory):
    return booking_factory(machine, START, END, status=BookingStatus.CONFIRMED, stripe_payment_intent_id="pi_1",
                           billing_is_business=True, billing_company_name="Obras Norte Lda", billing_tax_id="500000000")


def test_issue_once_then_mail(db, paid_booking, sent_emails):
    client = FakeInvoicingClient()

    result = issue_invoice_for_booking(db, paid_booking.id, client=client)

    assert result == {"ok": True, "invoice_number": "FT 2025/1", "email_sent": True}
    assert client.issued == [(paid_booking.id, "pi_1", {"company_name": "Obras Norte Lda", "tax_id": "500000000"})]
    db.refresh(paid_booking)
    assert paid_booking.invoice_provider == "vendus"
    assert paid_booking.invoice_number == "FT 2025/1"
    assert len(sent_emails) == 1

    again = issue_invoice_for_booking(db, paid_booking.id, client=client)
    assert again["reason"] == "already_issued"
    assert len(client.issued) == 1


def test_skips(db, machine, booking_factory):
    pending = booking_factory(machine, START, END)
    confirmed = booking_factory(machine, date(2025, 10, 1), date(2025, 10, 1), status=BookingStatus.CONFIRMED)

    assert issue_invoice_for_booking(db, "missing", client=FakeInvoicingClient())["reason"] == "not_found"
    assert issue_invoice_for_booking(db, pending.id, client=FakeInvoicingClient())["reason"] == "not_confirmed"
    assert issue_invoice_for_booking(db, confirmed.id, client=None)["reason"] == "invoicing_disabled"


def test_client_posts_with_idempotency_key(db, paid_booking, monkeypatch):
    response = MagicMock(status_code=201)
    response.json.return_value = {"id": 42, "number": "FT 2025/2", "pdf_url": None}
    post = MagicMock(return_value=response)
    monkeypatch.setattr(invoice_service.requests, "post", post)
    client = InvoicingClient(InvoicingConfig(api_url="https://invoicing.test/api/", api_key="secret"))

    invoice = client.issue(build_notification_view(db, paid_booking), "pi_1", {})

    assert invoice == IssuedInvoice(provider_id="42", number="FT 2025/2", pdf_url=None)
    args, kwargs = post.call_args
    assert args[0] == "https://invoicing.test/api/documents"
    assert kwargs["headers"]["Idempotency-Key"] == f"booking-{paid_booking.id}-invoice"
    assert kwargs["headers"]["Authorization"] == "Bearer secret"
    assert kwargs["json"]["lines"][0]["line_total_cents"] == 36900


def test_client_errors_raise_for_retry(db, paid_booking, monkeypatch):
    client = InvoicingClient(InvoicingConfig(api_url="https://invoicing.test/api", api_key="secret"))
    view = build_notification_view(db, paid_booking)

    monkeypatch.setattr(invoice_service.requests, "post", MagicMock(return_value=MagicMock(status_code=503, text="busy")))
    with pytest.raises(InvoicingError):
        client.issue(view, "pi_1", {})

    monkeypatch.setattr(invoice_service.requests, "post", MagicMock(side_effect=requests.ConnectionError("refused")))
    with pytest.raises(InvoicingError):
        client.issue(view, "pi_1", {})


def test_client_configuration(monkeypatch):
    monkeypatch.setattr(settings, "INVOICING_ENABLED", False)
    assert get_invoicing_client() is None

    monkeypatch.setattr(settings, "INVOICING_ENABLED", True)
    monkeypatch.setattr(settings, "INVOICING_API_URL", "")
    with pytest.raises(InvoicingError):
        get_invoicing_client()

    monkeypatch.setattr(settings, "INVOICING_API_URL", "https://invoicing.test/api")
    monkeypatch.setattr(settings, "INVOICING_API_KEY", "secret")
    assert isinstance(get_invoicing_client(), InvoicingClient)

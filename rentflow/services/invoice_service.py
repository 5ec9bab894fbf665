import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import requests
from sqlalchemy import update
from sqlalchemy.orm import Session

from rentflow.core.config import settings
from rentflow.models.booking import Booking, BookingStatus
from rentflow.services.notification_service import BookingNotificationView, build_notification_view, send_invoice_ready

logger = logging.getLogger(__name__)


@dataclass
class InvoicingConfig:
    api_url: str
    api_key: str
    provider: str = "vendus"
    timeout: int = 20


class InvoicingError(RuntimeError):
    pass


@dataclass(frozen=True)
class IssuedInvoice:
    provider_id: str
    number: str
    pdf_url: Optional[str]


class InvoicingClient:
    """HTTP client for the invoicing provider. One document per booking, keyed by booking id."""

    def __init__(self, cfg: InvoicingConfig):
        self.cfg = cfg

    def _payload(self, view: BookingNotificationView, payment_intent_id: Optional[str], billing: dict) -> dict:
        return {
            "external_reference": view.booking_id,
            "payment_reference": payment_intent_id,
            "currency": settings.CURRENCY.upper(),
            "customer": {
                "name": billing.get("company_name") or view.customer_name,
                "email": view.customer_email,
                "fiscal_id": billing.get("tax_id"),
            },
            "service_period": {"from": view.start_date.isoformat(), "to": view.end_date.isoformat()},
            "lines": [
                {
                    "description": f"{i.name} ({view.rental_days} days)" if i.is_primary else i.name,
                    "quantity": i.quantity,
                    "line_total_cents": i.line_total_cents,
                }
                for i in view.line_items
            ],
            "discount_percentage": view.discount_percentage,
            "subtotal_cents": view.subtotal_cents,
            "tax_cents": view.tax_cents,
            "total_cents": view.total_cents,
        }

    def issue(self, view: BookingNotificationView, payment_intent_id: Optional[str], billing: dict) -> IssuedInvoice:
        try:
            r = requests.post(
                f"{self.cfg.api_url.rstrip('/')}/documents",
                json=self._payload(view, payment_intent_id, billing),
                headers={
                    "Authorization": f"Bearer {self.cfg.api_key}",
                    # provider returns the existing document for a repeated key
                    "Idempotency-Key": f"booking-{view.booking_id}-invoice",
                },
                timeout=self.cfg.timeout,
            )
        except requests.RequestException as e:
            raise InvoicingError(f"Invoicing request failed: {e}") from e
        if r.status_code >= 400:
            raise InvoicingError(f"Invoicing error {r.status_code}: {r.text}")
        data = r.json()
        return IssuedInvoice(provider_id=str(data["id"]), number=data["number"], pdf_url=data.get("pdf_url"))


def get_invoicing_client() -> Optional[InvoicingClient]:
    if not settings.INVOICING_ENABLED:
        return None
    if not (settings.INVOICING_API_URL and settings.INVOICING_API_KEY):
        raise InvoicingError("Invoicing is enabled but INVOICING_API_URL / INVOICING_API_KEY are missing")
    return InvoicingClient(InvoicingConfig(
        api_url=settings.INVOICING_API_URL,
        api_key=settings.INVOICING_API_KEY,
        provider=settings.INVOICING_PROVIDER,
        timeout=settings.HTTP_TIMEOUT_SECONDS,
    ))


def issue_invoice_for_booking(db: Session, booking_id: str, client: Optional[InvoicingClient] = None) -> dict:
    """
    Issue the invoice for a confirmed booking, then mail it.

    First writer wins on invoice_number. Provider errors propagate so the
    Celery task can retry.
    """
    booking = db.get(Booking, booking_id)
    if booking is None:
        logger.error("issue_invoice: booking %s not found", booking_id)
        return {"skipped": True, "reason": "not_found"}
    if booking.status != BookingStatus.CONFIRMED:
        return {"skipped": True, "reason": "not_confirmed"}
    if booking.invoice_number:
        return {"skipped": True, "reason": "already_issued", "invoice_number": booking.invoice_number}
    if client is None:
        return {"skipped": True, "reason": "invoicing_disabled"}

    view = build_notification_view(db, booking)
    billing = {"company_name": booking.billing_company_name, "tax_id": booking.billing_tax_id} if booking.billing_is_business else {}
    invoice = client.issue(view, booking.stripe_payment_intent_id, billing)

    res = db.execute(
        update(Booking)
        .where(Booking.id == booking_id, Booking.invoice_number.is_(None))
        .values(
            invoice_provider=client.cfg.provider,
            invoice_provider_id=invoice.provider_id,
            invoice_number=invoice.number,
            invoice_pdf_url=invoice.pdf_url,
            invoice_issued_at=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session=False)
    )
    db.commit()
    if res.rowcount != 1:
        logger.info("Invoice for booking %s was stored by a concurrent run; keeping the first", booking_id)
        return {"skipped": True, "reason": "already_issued"}

    logger.info("Issued invoice %s for booking %s", invoice.number, booking_id)
    db.expire(booking)
    sent = send_invoice_ready(db, booking_id)
    return {"ok": True, "invoice_number": invoice.number, "email_sent": sent}

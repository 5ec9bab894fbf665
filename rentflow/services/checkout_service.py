import logging
from datetime import timezone
from typing import Optional

from sqlalchemy.orm import Session

from rentflow.core.config import settings
from rentflow.core.exceptions import PaymentGatewayError
from rentflow.models.booking import Booking, CheckoutFlow
from rentflow.models.machine import Machine
from rentflow.services.booking_service import Quote
from rentflow.services.booking_state import cancel_pending_booking
from rentflow.services.date_ranges import rental_days_inclusive
from rentflow.services.pricing_service import to_cents
from rentflow.services.stripe_gateway import StripeGateway

logger = logging.getLogger(__name__)


def build_full_checkout_params(booking: Booking, machine: Machine, quote: Optional[Quote] = None) -> dict:
    """Checkout Session params for paying the whole rental upfront (pre-tax amount, VAT via tax rate)."""
    start, end = booking.start_date.isoformat(), booking.end_date.isoformat()
    days = rental_days_inclusive(booking.start_date, booking.end_date)
    metadata = {
        "booking_id": booking.id,
        "machine_id": machine.id,
        "start_date": start,
        "end_date": end,
        "flow": CheckoutFlow.FULL_UPFRONT.value,
    }
    if quote is not None and quote.breakdown.discount > 0:
        metadata["discount_percentage"] = str(quote.discount_percentage)
        metadata["original_subtotal_cents"] = str(to_cents(quote.breakdown.pre_discount_total))
        metadata["discounted_subtotal_cents"] = str(to_cents(quote.breakdown.total))

    line_item = {
        "price_data": {
            "unit_amount": booking.quoted_total_cents,
            "currency": settings.CURRENCY,
            "tax_behavior": "exclusive",
            "product_data": {
                "name": f"Rental: {machine.name}",
                "description": f"{start} to {end} ({days} day{'s' if days != 1 else ''})",
            },
        },
        "quantity": 1,
    }
    if settings.STRIPE_TAX_RATE_ID:
        line_item["tax_rates"] = [settings.STRIPE_TAX_RATE_ID]

    return {
        "mode": "payment",
        "locale": "en",
        "customer_creation": "always",
        "customer_email": booking.customer_email,
        "billing_address_collection": "auto",
        "client_reference_id": booking.id,
        "metadata": metadata,
        # mirrored so payment_intent.* events resolve the booking too
        "payment_intent_data": {
            "metadata": metadata,
            # keep the card for the off-session balance hold
            "setup_future_usage": "off_session",
        },
        "line_items": [line_item],
        "expires_at": _checkout_expiry(booking),
        "success_url": f"{settings.APP_URL}/booking/success?session_id={{CHECKOUT_SESSION_ID}}&booking_id={booking.id}",
        "cancel_url": f"{settings.APP_URL}/machine/{machine.id}?checkout=cancelled",
    }


def _checkout_expiry(booking: Booking) -> int:
    exp = booking.hold_expires_at
    if exp.tzinfo is None:
        exp = exp.replace(tzinfo=timezone.utc)
    return int(exp.timestamp())


def create_checkout_for_booking(db: Session, gateway: StripeGateway, booking: Booking, quote: Optional[Quote] = None) -> str:
    """
    Open the Checkout Session for a fresh PENDING booking and return its URL.

    If Stripe refuses, the booking is cancelled so its dates are released
    immediately instead of waiting for the hold to lapse.
    """
    machine = db.get(Machine, booking.machine_id)
    params = build_full_checkout_params(booking, machine, quote)
    try:
        session = gateway.create_checkout_session(params, idempotency_key=f"booking-{booking.id}-checkout")
    except PaymentGatewayError:
        cancel_pending_booking(db, booking.id, reason="checkout_failed")
        db.commit()
        raise

    booking.stripe_checkout_session_id = session["id"]
    db.commit()
    if not session.get("url"):
        raise PaymentGatewayError("Stripe did not return a checkout URL", details={"session_id": session["id"]})
    return session["url"]

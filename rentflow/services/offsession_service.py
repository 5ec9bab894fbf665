"""
Balance authorization after a confirmed booking.

Tries a silent manual-capture hold on the card saved at checkout. When
Stripe needs the customer (authentication_required, a decline, no saved
card, any unexpected status) it opens a card-verification Checkout bound
to the same customer and returns its URL instead.
"""
import logging
from dataclasses import dataclass
from typing import Optional, Union

from sqlalchemy import update
from sqlalchemy.orm import Session

from rentflow.core.config import settings
from rentflow.core.exceptions import PaymentGatewayError
from rentflow.models.booking import Booking, BookingStatus, CheckoutFlow
from rentflow.models.machine import Machine
from rentflow.services.audit_service import log_audit
from rentflow.services.date_ranges import rental_days_inclusive
from rentflow.services.stripe_gateway import CardAuthorizationError, StripeGateway

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Skipped:
    reason: str  # already_authorized | no_remaining | missing_identity


@dataclass(frozen=True)
class Capturable:
    payment_intent_id: str
    amount_cents: int


@dataclass(frozen=True)
class RequiresAction:
    checkout_url: str


@dataclass(frozen=True)
class Failed:
    message: str
    code: str = "error"  # not_found | not_confirmed | error


OffSessionResult = Union[Skipped, Capturable, RequiresAction, Failed]


def remaining_balance_cents(booking: Booking, machine: Machine) -> int:
    return max(0, (booking.quoted_total_cents or 0) - (machine.deposit_cents or 0))


def _identity_from_checkout(gateway: StripeGateway, checkout_session_id: Optional[str]) -> tuple[Optional[str], Optional[str]]:
    if not checkout_session_id:
        return None, None
    session = gateway.retrieve_checkout_session(checkout_session_id)
    if not session:
        return None, None
    return session["customer"], session["payment_method"]


def build_balance_auth_checkout_params(booking: Booking, machine: Machine, amount_cents: int, customer_id: Optional[str]) -> dict:
    days = rental_days_inclusive(booking.start_date, booking.end_date)
    metadata = {
        "booking_id": booking.id,
        "machine_id": machine.id,
        "flow": CheckoutFlow.BALANCE_AUTHORIZATION.value,
        "start_date": booking.start_date.isoformat(),
        "end_date": booking.end_date.isoformat(),
        "days": str(days),
    }
    # Stripe accepts either customer or customer_email, not both.
    identity = {"customer": customer_id} if customer_id else {
        "customer_email": booking.customer_email,
        "customer_creation": "always",
    }
    amount_eur = f"{amount_cents / 100:.2f}"
    return {
        "mode": "payment",
        **identity,
        "client_reference_id": booking.id,
        "metadata": metadata,
        "payment_intent_data": {
            "capture_method": "manual",
            "receipt_email": booking.customer_email,
            "metadata": metadata,
            "description": f"Card verification (no charge today) for booking {booking.booking_ref}",
        },
        "payment_method_types": ["card"],
        "line_items": [{
            "price_data": {
                "unit_amount": amount_cents,
                "currency": settings.CURRENCY,
                "product_data": {
                    "name": f"Card verification: balance authorization for {machine.name} (no charge today)",
                    "description": f"{metadata['start_date']} to {metadata['end_date']} ({days} days)",
                },
            },
            "quantity": 1,
        }],
        "custom_text": {"submit": {"message": (
            f"Verification only, no additional charge today. We place a temporary hold of up to "
            f"EUR {amount_eur}, captured only after your rental."
        )}},
        "success_url": f"{settings.APP_URL}/booking/success?booking_id={booking.id}&session_id={{CHECKOUT_SESSION_ID}}&auth=1",
        "cancel_url": f"{settings.APP_URL}/machine/{machine.id}?auth_cancelled=1&booking_id={booking.id}",
    }


def _fallback(gateway: StripeGateway, booking: Booking, machine: Machine, amount_cents: int, customer_id: Optional[str], why: str) -> OffSessionResult:
    logger.info("Balance authorization for booking %s needs the customer (%s); opening verification checkout", booking.id, why)
    params = build_balance_auth_checkout_params(booking, machine, amount_cents, customer_id)
    # customer vs customer_email changes the params, so each identity gets its own key
    identity_key = customer_id or "email"
    try:
        session = gateway.create_checkout_session(
            params, idempotency_key=f"booking-{booking.id}-balance-auth-fallback-{identity_key}")
    except PaymentGatewayError as e:
        logger.error("Fallback verification checkout failed for booking %s: %s", booking.id, e.message)
        return Failed("Failed to create fallback Checkout.")
    if not session.get("url"):
        return Failed("Failed to create fallback Checkout.")
    return RequiresAction(checkout_url=session["url"])


def _persist_authorization(db: Session, booking_id: str, payment_intent_id: str, amount_cents: int) -> None:
    res = db.execute(
        update(Booking)
        .where(Booking.id == booking_id, Booking.authorized_payment_intent_id.is_(None))
        .values(authorized_payment_intent_id=payment_intent_id, authorized_amount_cents=amount_cents)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount == 1:
        log_audit(db, "system", "booking.balance_authorized", "booking", booking_id,
                  {"payment_intent": payment_intent_id, "amount_cents": amount_cents})
    db.commit()


def attempt_offsession_authorization(db: Session, gateway: StripeGateway, booking_id: str,
                                     checkout_session_id: Optional[str] = None) -> OffSessionResult:
    booking = db.get(Booking, booking_id)
    if booking is None:
        return Failed("Booking not found.", "not_found")
    if booking.status != BookingStatus.CONFIRMED:
        return Failed(f"Booking is {booking.status}, not CONFIRMED.", "not_confirmed")
    if booking.authorized_payment_intent_id:
        return Skipped("already_authorized")

    machine = db.get(Machine, booking.machine_id)
    amount_cents = remaining_balance_cents(booking, machine)
    if amount_cents <= 0:
        return Skipped("no_remaining")

    try:
        customer_id, payment_method_id = _identity_from_checkout(
            gateway, checkout_session_id or booking.stripe_checkout_session_id)
    except PaymentGatewayError as e:
        logger.warning("Could not read checkout identity for booking %s: %s", booking.id, e.message)
        customer_id, payment_method_id = None, None
    customer_id = customer_id or booking.stripe_customer_id

    if customer_id and not payment_method_id:
        try:
            payment_method_id = gateway.latest_card_payment_method(customer_id)
        except PaymentGatewayError as e:
            logger.warning("paymentMethods.list failed for booking %s: %s", booking.id, e.message)

    if not customer_id and not booking.customer_email:
        return Skipped("missing_identity")
    if not customer_id or not payment_method_id:
        return _fallback(gateway, booking, machine, amount_cents, customer_id, "missing_customer_or_pm")

    try:
        intent = gateway.create_offsession_authorization(
            amount_cents=amount_cents,
            customer_id=customer_id,
            payment_method_id=payment_method_id,
            metadata={
                "booking_id": booking.id,
                "machine_id": machine.id,
                "flow": CheckoutFlow.BALANCE_AUTHORIZATION.value,
            },
            idempotency_key=f"booking-{booking.id}-balance-auth-{payment_method_id}",
        )
    except CardAuthorizationError as e:
        return _fallback(gateway, booking, machine, amount_cents, customer_id, e.error_code or e.decline_code or "card_error")
    except PaymentGatewayError as e:
        return _fallback(gateway, booking, machine, amount_cents, customer_id, e.message)

    if intent["status"] == "requires_capture":
        capturable = intent["amount_capturable"] or amount_cents
        _persist_authorization(db, booking.id, intent["id"], capturable)
        logger.info("Booking %s balance authorized: %s for %d cents", booking.id, intent["id"], capturable)
        return Capturable(payment_intent_id=intent["id"], amount_cents=capturable)

    return _fallback(gateway, booking, machine, amount_cents, customer_id, f"status={intent['status']}")

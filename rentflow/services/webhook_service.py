"""
Stripe webhook processing.

One call per delivery. The dedup row (ProcessedPaymentEvent) and the state
change commit together or not at all: a failure after the dedup insert
rolls both back and raises TransientProcessingError, so Stripe redelivers
and the retry finds no dedup row.

Gateway lookups happen before the transaction is opened.
"""
import logging
from dataclasses import replace
from typing import Any, Mapping, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from rentflow.core.exceptions import PaymentGatewayError, TransientProcessingError
from rentflow.models.booking import Booking, BookingStatus, CheckoutFlow
from rentflow.services.audit_service import log_audit
from rentflow.services.booking_state import Settlement, TransitionOutcome, cancel_pending_booking, confirm_booking
from rentflow.services.dispute_service import sync_dispute_event
from rentflow.services.payment_event_log import claim_event
from rentflow.services.payment_events import (
    CheckoutSessionFacts,
    DisputeFacts,
    PaymentIntentFacts,
    ProcessResult,
    RefundFacts,
    UnhandledEvent,
    parse_event,
)
from rentflow.services.refund_service import sync_refund_event
from rentflow.services.stripe_gateway import StripeGateway

logger = logging.getLogger(__name__)

# jobs queued after a booking becomes CONFIRMED
CONFIRMATION_FOLLOW_UPS = [
    "issue_invoice",
    "send_customer_confirmation",
    "send_internal_confirmation",
    "sync_calendar",
]

_CANCEL_REASONS = {
    "checkout.session.expired": "checkout_expired",
    "checkout.session.async_payment_failed": "async_payment_failed",
    "payment_intent.payment_failed": "payment_failed",
}


def _with_payment_intent(gateway: Optional[StripeGateway], facts: CheckoutSessionFacts) -> CheckoutSessionFacts:
    """Async-payment events sometimes arrive without the PaymentIntent id; fetch the session to fill it."""
    will_settle = facts.is_settled or facts.event_type == "checkout.session.async_payment_succeeded"
    if facts.payment_intent_id or gateway is None or not will_settle or not facts.flow.settles_booking:
        return facts
    try:
        session = gateway.retrieve_checkout_session(facts.session_id)
    except PaymentGatewayError as e:
        raise TransientProcessingError(f"Could not retrieve checkout session {facts.session_id}: {e.message}",
                                       event_id=facts.event_id) from e
    if not session:
        return facts
    return replace(facts, payment_intent_id=session["payment_intent"], customer_id=facts.customer_id or session["customer"])


def _resolve_booking(db: Session, facts: CheckoutSessionFacts | PaymentIntentFacts) -> Optional[Booking]:
    if facts.booking_id:
        return db.get(Booking, facts.booking_id)
    pi_id = getattr(facts, "payment_intent_id", None)
    if pi_id:
        return db.query(Booking).filter(Booking.stripe_payment_intent_id == pi_id).first()
    return None


def _settlement_from_checkout(f: CheckoutSessionFacts) -> Settlement:
    return Settlement(
        payment_intent_id=f.payment_intent_id,
        customer_id=f.customer_id,
        subtotal_cents=f.amount_subtotal,
        tax_cents=f.amount_tax,
        total_cents=f.amount_total,
        discount_percentage=f.discount_percentage,
        original_subtotal_cents=f.original_subtotal_cents,
        discounted_subtotal_cents=f.discounted_subtotal_cents,
    )


def _settlement_from_intent(f: PaymentIntentFacts) -> Settlement:
    return Settlement(payment_intent_id=f.payment_intent_id, customer_id=f.customer_id, total_cents=f.amount_received)


def _record_authorization(db: Session, booking_id: str, f: PaymentIntentFacts) -> bool:
    res = db.execute(
        update(Booking)
        .where(
            Booking.id == booking_id,
            Booking.status == BookingStatus.CONFIRMED,
            Booking.authorized_payment_intent_id.is_(None),
        )
        .values(authorized_payment_intent_id=f.payment_intent_id, authorized_amount_cents=f.amount_capturable)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount == 1:
        log_audit(db, "stripe_webhook", "booking.balance_authorized", "booking", booking_id,
                  {"payment_intent": f.payment_intent_id, "amount_cents": f.amount_capturable})
    return res.rowcount == 1


def _dispatch(db: Session, booking_id: str, facts: CheckoutSessionFacts | PaymentIntentFacts) -> ProcessResult:
    """Apply one fresh event. Returns the result; does not commit."""
    etype = facts.event_type
    result = ProcessResult("observed", facts.event_id, etype, booking_id=booking_id)

    if facts.flow is CheckoutFlow.BALANCE_AUTHORIZATION:
        # Balance holds never move the booking's status.
        if etype == "payment_intent.amount_capturable_updated" and _record_authorization(db, booking_id, facts):
            result.outcome = "processed"
        return result

    if etype in ("checkout.session.completed", "checkout.session.async_payment_succeeded"):
        if etype == "checkout.session.completed" and not facts.is_settled:
            logger.info("Checkout %s completed with payment_status=%s; waiting for async settlement",
                        facts.session_id, facts.payment_status)
            return result
        transition = confirm_booking(db, booking_id, _settlement_from_checkout(facts))
    elif etype == "payment_intent.succeeded":
        transition = confirm_booking(db, booking_id, _settlement_from_intent(facts))
    elif etype in _CANCEL_REASONS:
        transition = cancel_pending_booking(db, booking_id, reason=_CANCEL_REASONS[etype], actor="stripe_webhook")
    else:
        return result

    if transition.applied:
        result.outcome = "processed"
        if transition.status == BookingStatus.CONFIRMED:
            result.follow_ups = list(CONFIRMATION_FOLLOW_UPS)
    elif transition.outcome is TransitionOutcome.ALREADY_APPLIED:
        result.outcome = "observed"
    return result


def _process_booking_event(db: Session, gateway: Optional[StripeGateway], facts: CheckoutSessionFacts | PaymentIntentFacts) -> ProcessResult:
    if isinstance(facts, CheckoutSessionFacts):
        facts = _with_payment_intent(gateway, facts)

    booking = _resolve_booking(db, facts)
    if booking is None:
        logger.error(
            "Stripe event %s (%s) references no known booking: booking_id=%s payment_intent=%s",
            facts.event_id, facts.event_type, facts.booking_id, getattr(facts, "payment_intent_id", None),
        )
        db.rollback()
        return ProcessResult("unresolvable", facts.event_id, facts.event_type, booking_id=facts.booking_id)
    booking_id = booking.id

    if not claim_event(db, facts.event_id, facts.event_type, booking_id):
        return ProcessResult("duplicate", facts.event_id, facts.event_type, booking_id=booking_id)

    result = _dispatch(db, booking_id, facts)
    db.commit()
    return result


def process_payment_event(db: Session, raw_event: Mapping[str, Any], gateway: Optional[StripeGateway] = None) -> ProcessResult:
    """
    Handle one verified Stripe event.

    Returns a ProcessResult for every acknowledged outcome (including
    duplicates and unresolvable references). Raises TransientProcessingError
    when nothing was committed and the delivery should be retried.
    """
    facts = parse_event(raw_event)
    if isinstance(facts, UnhandledEvent):
        logger.debug("Ignoring Stripe event %s of type %s", facts.event_id, facts.event_type)
        return ProcessResult("ignored", facts.event_id, facts.event_type)

    try:
        if isinstance(facts, DisputeFacts):
            result = sync_dispute_event(db, gateway, facts)
        elif isinstance(facts, RefundFacts):
            result = sync_refund_event(db, gateway, facts)
        else:
            result = _process_booking_event(db, gateway, facts)
    except TransientProcessingError:
        db.rollback()
        raise
    except Exception as e:
        db.rollback()
        logger.exception("Stripe event %s (%s) failed; rolled back for redelivery", facts.event_id, facts.event_type)
        raise TransientProcessingError(f"Could not apply {facts.event_type}", event_id=facts.event_id) from e

    logger.info("Stripe event %s (%s): %s booking=%s", result.event_id, result.event_type, result.outcome, result.booking_id)
    return result

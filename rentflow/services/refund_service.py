import logging
from typing import Optional

from sqlalchemy.orm import Session

from rentflow.core.exceptions import PaymentGatewayError, TransientProcessingError
from rentflow.models.booking import RefundStatus
from rentflow.services.audit_service import log_audit
from rentflow.services.dispute_service import find_booking_by_payment_intent
from rentflow.services.payment_event_log import claim_event
from rentflow.services.payment_events import ProcessResult, RefundFacts
from rentflow.services.stripe_gateway import StripeGateway

logger = logging.getLogger(__name__)


def refund_status_for(amount: Optional[int], amount_refunded: int) -> str:
    if amount_refunded <= 0:
        return RefundStatus.NONE
    if amount is not None and amount_refunded >= amount:
        return RefundStatus.FULL
    return RefundStatus.PARTIAL


def _charge_view(gateway: Optional[StripeGateway], facts: RefundFacts) -> Optional[dict]:
    if facts.event_type == "charge.refunded":
        return {
            "id": facts.charge_id,
            "payment_intent": facts.payment_intent_id,
            "amount": facts.amount,
            "amount_refunded": facts.amount_refunded or 0,
            "refund_ids": list(facts.refund_ids),
        }
    # charge.refund.updated only carries the refund; totals come from the charge
    if not facts.charge_id or gateway is None:
        return None
    try:
        charge = gateway.retrieve_charge(facts.charge_id)
    except PaymentGatewayError as e:
        raise TransientProcessingError(f"Could not retrieve charge {facts.charge_id}: {e.message}", event_id=facts.event_id) from e
    if charge is not None:
        charge["refund_ids"] = list(dict.fromkeys(charge["refund_ids"] + list(facts.refund_ids)))
    return charge


def sync_refund_event(db: Session, gateway: Optional[StripeGateway], facts: RefundFacts) -> ProcessResult:
    charge = _charge_view(gateway, facts)
    pi_id = (charge or {}).get("payment_intent") or facts.payment_intent_id

    booking = find_booking_by_payment_intent(db, pi_id)
    if not claim_event(db, facts.event_id, facts.event_type, booking.id if booking else None):
        return ProcessResult("duplicate", facts.event_id, facts.event_type)

    if booking is None or charge is None:
        logger.error("Refund event %s has no matching booking: charge=%s payment_intent=%s",
                     facts.event_id, facts.charge_id, pi_id)
        db.commit()
        return ProcessResult("unresolvable", facts.event_id, facts.event_type)

    # Stripe's amount_refunded is cumulative, so the latest value wins.
    booking.refunded_amount_cents = max(booking.refunded_amount_cents or 0, charge["amount_refunded"] or 0)
    booking.refund_status = refund_status_for(charge["amount"], booking.refunded_amount_cents)
    booking.refund_ids = list(dict.fromkeys(list(booking.refund_ids or []) + charge["refund_ids"]))
    if not booking.stripe_charge_id and charge.get("id"):
        booking.stripe_charge_id = charge["id"]

    log_audit(db, "stripe_webhook", facts.event_type, "booking", booking.id, {
        "refund_status": booking.refund_status,
        "refunded_amount_cents": booking.refunded_amount_cents,
    })
    db.commit()
    return ProcessResult("processed", facts.event_id, facts.event_type, booking_id=booking.id)

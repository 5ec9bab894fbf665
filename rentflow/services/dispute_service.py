import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from rentflow.core.exceptions import PaymentGatewayError, TransientProcessingError
from rentflow.models.booking import Booking, DisputeStatus
from rentflow.services.audit_service import log_audit
from rentflow.services.payment_event_log import claim_event
from rentflow.services.payment_events import DisputeFacts, ProcessResult
from rentflow.services.stripe_gateway import StripeGateway

logger = logging.getLogger(__name__)

_WON_STATUSES = {"won", "warning_closed"}
_TERMINAL = {DisputeStatus.WON, DisputeStatus.LOST}


def closing_outcome(stripe_status: Optional[str]) -> str:
    """lost, charge_refunded and anything unexpected count as LOST."""
    return DisputeStatus.WON if stripe_status in _WON_STATUSES else DisputeStatus.LOST


def resolve_payment_intent(gateway: Optional[StripeGateway], charge_id: Optional[str], known: Optional[str], event_id: str) -> Optional[str]:
    """PaymentIntent behind a charge. Gateway outages are transient; a missing charge is not."""
    if known:
        return known
    if not charge_id or gateway is None:
        return None
    try:
        charge = gateway.retrieve_charge(charge_id)
    except PaymentGatewayError as e:
        raise TransientProcessingError(f"Could not retrieve charge {charge_id}: {e.message}", event_id=event_id) from e
    return charge["payment_intent"] if charge else None


def find_booking_by_payment_intent(db: Session, payment_intent_id: Optional[str]) -> Optional[Booking]:
    if not payment_intent_id:
        return None
    return db.execute(
        select(Booking)
        .where(or_(
            Booking.stripe_payment_intent_id == payment_intent_id,
            Booking.authorized_payment_intent_id == payment_intent_id,
        ))
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalars().first()


def _apply(b: Booking, facts: DisputeFacts, charge_id: Optional[str]) -> dict:
    if not b.dispute_id:
        b.dispute_id = facts.dispute_id
    if not b.dispute_reason and facts.reason:
        b.dispute_reason = facts.reason
    if not b.stripe_charge_id and charge_id:
        b.stripe_charge_id = charge_id

    if facts.event_type == "charge.dispute.created":
        # a late "created" must not reopen a dispute that already closed
        if b.dispute_status not in _TERMINAL:
            b.dispute_status = DisputeStatus.OPEN
    else:
        b.dispute_status = closing_outcome(facts.status)
        b.dispute_closed_at = datetime.fromtimestamp(facts.event_created, tz=timezone.utc)
    return {"dispute_id": facts.dispute_id, "dispute_status": b.dispute_status, "stripe_status": facts.status}


def sync_dispute_event(db: Session, gateway: Optional[StripeGateway], facts: DisputeFacts) -> ProcessResult:
    pi_id = resolve_payment_intent(gateway, facts.charge_id, facts.payment_intent_id, facts.event_id)

    booking = find_booking_by_payment_intent(db, pi_id)
    if not claim_event(db, facts.event_id, facts.event_type, booking.id if booking else None):
        return ProcessResult("duplicate", facts.event_id, facts.event_type)

    if booking is None:
        logger.error(
            "Dispute %s (%s) has no matching booking: charge=%s payment_intent=%s",
            facts.dispute_id, facts.event_type, facts.charge_id, pi_id,
        )
        db.commit()
        return ProcessResult("unresolvable", facts.event_id, facts.event_type)

    details = _apply(booking, facts, facts.charge_id)
    log_audit(db, "stripe_webhook", facts.event_type, "booking", booking.id, details)
    db.commit()
    logger.info("Booking %s dispute %s -> %s", booking.id, facts.dispute_id, booking.dispute_status)
    return ProcessResult("processed", facts.event_id, facts.event_type, booking_id=booking.id)

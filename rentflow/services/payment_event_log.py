import logging
import uuid
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from rentflow.models.processed_payment_event import ProcessedPaymentEvent

logger = logging.getLogger(__name__)


def claim_event(db: Session, event_id: str, event_type: str, booking_id: Optional[str]) -> bool:
    """
    Insert the dedup row and flush it inside the caller's open transaction.

    False means another delivery already recorded this event id; the
    transaction has been rolled back and the caller must stop.
    """
    db.add(ProcessedPaymentEvent(
        id=str(uuid.uuid4()),
        event_id=event_id,
        event_type=event_type,
        booking_id=booking_id,
    ))
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        logger.info("Stripe event %s (%s) already processed; skipping", event_id, event_type)
        return False
    return True

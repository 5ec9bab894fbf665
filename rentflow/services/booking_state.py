"""
Booking lifecycle: PENDING -> CONFIRMED | CANCELLED.

Transitions run inside the caller's transaction on a row loaded FOR UPDATE
and never commit. Re-applying a transition is a no-op reported as
ALREADY_APPLIED.
"""
import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from rentflow.core.config import settings
from rentflow.models.booking import Booking, BookingStatus
from rentflow.services.audit_service import log_audit

logger = logging.getLogger(__name__)


class TransitionOutcome(str, enum.Enum):
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    NOT_FOUND = "not_found"
    REJECTED = "rejected"  # booking is in the other terminal state


@dataclass(frozen=True)
class TransitionResult:
    outcome: TransitionOutcome
    booking_id: str
    status: Optional[str] = None

    @property
    def applied(self) -> bool:
        return self.outcome is TransitionOutcome.APPLIED


@dataclass(frozen=True)
class Settlement:
    """Money facts carried by the event that settles a booking."""
    payment_intent_id: Optional[str]
    customer_id: Optional[str] = None
    subtotal_cents: Optional[int] = None
    tax_cents: Optional[int] = None
    total_cents: Optional[int] = None
    discount_percentage: Optional[Decimal] = None
    original_subtotal_cents: Optional[int] = None
    discounted_subtotal_cents: Optional[int] = None


# booking column <- Settlement attribute; written only while the column is still null
_SNAPSHOT_FIELDS = {
    "settled_subtotal_cents": "subtotal_cents",
    "settled_tax_cents": "tax_cents",
    "settled_total_cents": "total_cents",
    "discount_percentage": "discount_percentage",
    "original_subtotal_cents": "original_subtotal_cents",
    "discounted_subtotal_cents": "discounted_subtotal_cents",
    "stripe_customer_id": "customer_id",
}


def _lock_booking(db: Session, booking_id: str) -> Optional[Booking]:
    return db.execute(
        select(Booking)
        .where(Booking.id == booking_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()


def confirm_booking(db: Session, booking_id: str, settlement: Settlement, actor: str = "stripe_webhook") -> TransitionResult:
    b = _lock_booking(db, booking_id)
    if b is None:
        logger.error("confirm_booking: booking %s not found", booking_id)
        return TransitionResult(TransitionOutcome.NOT_FOUND, booking_id)

    if b.status == BookingStatus.CONFIRMED:
        if settlement.payment_intent_id and b.stripe_payment_intent_id and settlement.payment_intent_id != b.stripe_payment_intent_id:
            logger.warning(
                "Booking %s already confirmed with %s; ignoring settlement from %s",
                b.id, b.stripe_payment_intent_id, settlement.payment_intent_id,
            )
        return TransitionResult(TransitionOutcome.ALREADY_APPLIED, b.id, b.status)

    if b.status == BookingStatus.CANCELLED:
        # Money moved for dates that were already released. Needs a manual refund.
        logger.error(
            "Settlement for CANCELLED booking %s (payment_intent=%s, reason=%s); refund required",
            b.id, settlement.payment_intent_id, b.cancel_reason,
        )
        log_audit(db, actor, "booking.settled_after_cancel", "booking", b.id, {"payment_intent": settlement.payment_intent_id})
        return TransitionResult(TransitionOutcome.REJECTED, b.id, b.status)

    b.status = BookingStatus.CONFIRMED
    b.paid = True
    b.hold_expires_at = None
    if not b.stripe_payment_intent_id:
        b.stripe_payment_intent_id = settlement.payment_intent_id
    for column, attr in _SNAPSHOT_FIELDS.items():
        value = getattr(settlement, attr)
        if value is not None and getattr(b, column) is None:
            setattr(b, column, value)

    log_audit(db, actor, "booking.confirmed", "booking", b.id, {
        "payment_intent": b.stripe_payment_intent_id,
        "total_cents": b.settled_total_cents,
    })
    return TransitionResult(TransitionOutcome.APPLIED, b.id, b.status)


def cancel_pending_booking(db: Session, booking_id: str, reason: str, actor: str = "system") -> TransitionResult:
    b = _lock_booking(db, booking_id)
    if b is None:
        logger.error("cancel_pending_booking: booking %s not found", booking_id)
        return TransitionResult(TransitionOutcome.NOT_FOUND, booking_id)
    if b.status == BookingStatus.CANCELLED:
        return TransitionResult(TransitionOutcome.ALREADY_APPLIED, b.id, b.status)
    if b.status != BookingStatus.PENDING:
        logger.info("Not cancelling booking %s: status is %s (reason=%s)", b.id, b.status, reason)
        return TransitionResult(TransitionOutcome.REJECTED, b.id, b.status)

    b.status = BookingStatus.CANCELLED
    b.hold_expires_at = None
    b.cancel_reason = reason
    log_audit(db, actor, "booking.cancelled", "booking", b.id, {"reason": reason})
    return TransitionResult(TransitionOutcome.APPLIED, b.id, b.status)


def expire_holds(db: Session, now: datetime | None = None) -> int:
    """Cancel every PENDING booking whose hold ended more than the grace window ago. Caller commits."""
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(minutes=settings.HOLD_EXPIRY_GRACE_MINUTES)
    res = db.execute(
        update(Booking)
        .where(
            Booking.status == BookingStatus.PENDING,
            Booking.hold_expires_at.is_not(None),
            Booking.hold_expires_at < cutoff,
        )
        .values(status=BookingStatus.CANCELLED, hold_expires_at=None, cancel_reason="hold_expired", updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount:
        logger.info("Expired %d pending booking hold(s)", res.rowcount)
    return res.rowcount or 0

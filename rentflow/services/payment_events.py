"""
Typed view of Stripe webhook events.

``parse_event`` turns the verified JSON body into one of the frozen fact
classes below. Nothing past this module reads the raw payload.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Optional, Union

from rentflow.models.booking import CheckoutFlow

logger = logging.getLogger(__name__)

CHECKOUT_EVENT_TYPES = {
    "checkout.session.completed",
    "checkout.session.async_payment_succeeded",
    "checkout.session.async_payment_failed",
    "checkout.session.expired",
}
PAYMENT_INTENT_EVENT_TYPES = {
    "payment_intent.succeeded",
    "payment_intent.payment_failed",
    "payment_intent.amount_capturable_updated",
}
DISPUTE_EVENT_TYPES = {"charge.dispute.created", "charge.dispute.closed"}
REFUND_EVENT_TYPES = {"charge.refunded", "charge.refund.updated"}

# checkout.session.payment_status values that mean money has moved
SETTLED_PAYMENT_STATUSES = {"paid", "no_payment_required"}


@dataclass(frozen=True)
class CheckoutSessionFacts:
    event_id: str
    event_type: str
    session_id: str
    booking_id: Optional[str]
    flow: CheckoutFlow
    payment_status: Optional[str]
    payment_intent_id: Optional[str]
    customer_id: Optional[str]
    amount_subtotal: Optional[int]
    amount_tax: Optional[int]
    amount_total: Optional[int]
    discount_percentage: Optional[Decimal] = None
    original_subtotal_cents: Optional[int] = None
    discounted_subtotal_cents: Optional[int] = None

    @property
    def is_settled(self) -> bool:
        return self.payment_status in SETTLED_PAYMENT_STATUSES


@dataclass(frozen=True)
class PaymentIntentFacts:
    event_id: str
    event_type: str
    payment_intent_id: str
    booking_id: Optional[str]
    flow: CheckoutFlow
    status: Optional[str]
    customer_id: Optional[str]
    amount_received: Optional[int]
    amount_capturable: Optional[int]


@dataclass(frozen=True)
class DisputeFacts:
    event_id: str
    event_type: str
    dispute_id: str
    charge_id: Optional[str]
    payment_intent_id: Optional[str]
    status: Optional[str]
    reason: Optional[str]
    event_created: int


@dataclass(frozen=True)
class RefundFacts:
    event_id: str
    event_type: str
    charge_id: Optional[str]
    payment_intent_id: Optional[str]
    # only charge.refunded carries the charge totals; refund.updated needs a charge fetch
    amount: Optional[int] = None
    amount_refunded: Optional[int] = None
    refund_ids: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class UnhandledEvent:
    event_id: str
    event_type: str


PaymentEvent = Union[CheckoutSessionFacts, PaymentIntentFacts, DisputeFacts, RefundFacts, UnhandledEvent]


@dataclass
class ProcessResult:
    """What the webhook route reports back and what it must enqueue after commit."""
    outcome: str  # processed | duplicate | ignored | observed | unresolvable
    event_id: str
    event_type: str
    booking_id: Optional[str] = None
    follow_ups: list[str] = field(default_factory=list)


_FLOW_TOKENS = {f.value: f for f in CheckoutFlow}
_FLOW_TOKENS["deposit"] = CheckoutFlow.LEGACY_DEPOSIT


def parse_flow(metadata: Mapping[str, Any]) -> CheckoutFlow:
    token = metadata.get("flow")
    if not token:
        return CheckoutFlow.LEGACY_DEPOSIT
    flow = _FLOW_TOKENS.get(token)
    if flow is None:
        logger.warning("Unknown checkout flow marker %r; treating as legacy deposit", token)
        return CheckoutFlow.LEGACY_DEPOSIT
    return flow


def _id_of(value: Any) -> Optional[str]:
    """Stripe sends either an id string or an expanded object for references."""
    if value is None or isinstance(value, str):
        return value or None
    if isinstance(value, Mapping):
        return value.get("id")
    return None


def _int_or_none(value: Any) -> Optional[int]:
    try:
        return int(value) if value not in (None, "") else None
    except (TypeError, ValueError):
        return None


def _decimal_or_none(value: Any) -> Optional[Decimal]:
    if value in (None, ""):
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


def _booking_id_from(obj: Mapping[str, Any]) -> Optional[str]:
    metadata = obj.get("metadata") or {}
    return metadata.get("booking_id") or metadata.get("bookingId") or obj.get("client_reference_id") or None


def _parse_checkout(event_id: str, event_type: str, obj: Mapping[str, Any]) -> CheckoutSessionFacts:
    metadata = obj.get("metadata") or {}
    total_details = obj.get("total_details") or {}
    return CheckoutSessionFacts(
        event_id=event_id,
        event_type=event_type,
        session_id=obj.get("id"),
        booking_id=_booking_id_from(obj),
        flow=parse_flow(metadata),
        payment_status=obj.get("payment_status"),
        payment_intent_id=_id_of(obj.get("payment_intent")),
        customer_id=_id_of(obj.get("customer")),
        amount_subtotal=_int_or_none(obj.get("amount_subtotal")),
        amount_tax=_int_or_none(total_details.get("amount_tax")),
        amount_total=_int_or_none(obj.get("amount_total")),
        discount_percentage=_decimal_or_none(metadata.get("discount_percentage")),
        original_subtotal_cents=_int_or_none(metadata.get("original_subtotal_cents")),
        discounted_subtotal_cents=_int_or_none(metadata.get("discounted_subtotal_cents")),
    )


def _parse_payment_intent(event_id: str, event_type: str, obj: Mapping[str, Any]) -> PaymentIntentFacts:
    return PaymentIntentFacts(
        event_id=event_id,
        event_type=event_type,
        payment_intent_id=obj.get("id"),
        booking_id=_booking_id_from(obj),
        flow=parse_flow(obj.get("metadata") or {}),
        status=obj.get("status"),
        customer_id=_id_of(obj.get("customer")),
        amount_received=_int_or_none(obj.get("amount_received")),
        amount_capturable=_int_or_none(obj.get("amount_capturable")),
    )


def _parse_dispute(event_id: str, event_type: str, obj: Mapping[str, Any], created: int) -> DisputeFacts:
    return DisputeFacts(
        event_id=event_id,
        event_type=event_type,
        dispute_id=obj.get("id"),
        charge_id=_id_of(obj.get("charge")),
        payment_intent_id=_id_of(obj.get("payment_intent")),
        status=obj.get("status"),
        reason=obj.get("reason") or None,
        event_created=created,
    )


def _parse_refund(event_id: str, event_type: str, obj: Mapping[str, Any]) -> RefundFacts:
    if event_type == "charge.refunded":
        refunds = (obj.get("refunds") or {}).get("data") or []
        return RefundFacts(
            event_id=event_id,
            event_type=event_type,
            charge_id=obj.get("id"),
            payment_intent_id=_id_of(obj.get("payment_intent")),
            amount=_int_or_none(obj.get("amount")),
            amount_refunded=_int_or_none(obj.get("amount_refunded")),
            refund_ids=tuple(r["id"] for r in refunds if r.get("id")),
        )
    # charge.refund.updated: the object is the refund itself
    return RefundFacts(
        event_id=event_id,
        event_type=event_type,
        charge_id=_id_of(obj.get("charge")),
        payment_intent_id=_id_of(obj.get("payment_intent")),
        refund_ids=(obj["id"],) if obj.get("id") else (),
    )


def parse_event(raw: Mapping[str, Any]) -> PaymentEvent:
    event_id = raw.get("id")
    event_type = raw.get("type") or ""
    if not event_id:
        raise ValueError("Stripe event without id")
    obj = (raw.get("data") or {}).get("object") or {}

    if event_type in CHECKOUT_EVENT_TYPES:
        return _parse_checkout(event_id, event_type, obj)
    if event_type in PAYMENT_INTENT_EVENT_TYPES:
        return _parse_payment_intent(event_id, event_type, obj)
    if event_type in DISPUTE_EVENT_TYPES:
        return _parse_dispute(event_id, event_type, obj, int(raw.get("created") or 0))
    if event_type in REFUND_EVENT_TYPES:
        return _parse_refund(event_id, event_type, obj)
    return UnhandledEvent(event_id=event_id, event_type=event_type)

from decimal import Decimal

import pytest

from rentflow.models.booking import CheckoutFlow
from rentflow.services.payment_events import (
    CheckoutSessionFacts,
    DisputeFacts,
    PaymentIntentFacts,
    RefundFacts,
    UnhandledEvent,
    parse_event,
    parse_flow,
)


@pytest.mark.parametrize("metadata,expected", [
    ({}, CheckoutFlow.LEGACY_DEPOSIT),
    ({"flow": ""}, CheckoutFlow.LEGACY_DEPOSIT),
    ({"flow": "deposit"}, CheckoutFlow.LEGACY_DEPOSIT),
    ({"flow": "legacy_deposit"}, CheckoutFlow.LEGACY_DEPOSIT),
    ({"flow": "full_upfront"}, CheckoutFlow.FULL_UPFRONT),
    ({"flow": "balance_authorize"}, CheckoutFlow.BALANCE_AUTHORIZATION),
    ({"flow": "mystery"}, CheckoutFlow.LEGACY_DEPOSIT),
])
def test_parse_flow(metadata, expected):
    assert parse_flow(metadata) is expected


def test_only_balance_authorization_does_not_settle():
    assert CheckoutFlow.FULL_UPFRONT.settles_booking
    assert CheckoutFlow.LEGACY_DEPOSIT.settles_booking
    assert not CheckoutFlow.BALANCE_AUTHORIZATION.settles_booking


def test_checkout_session_facts():
    facts = parse_event({
        "id": "evt_1",
        "type": "checkout.session.completed",
        "data": {"object": {
            "id": "cs_1",
            "client_reference_id": "b-ref",
            "metadata": {"flow": "full_upfront", "discount_percentage": "10", "original_subtotal_cents": "41000"},
            "payment_status": "no_payment_required",
            "payment_intent": {"id": "pi_1", "object": "payment_intent"},
            "customer": "cus_1",
            "amount_total": 0,
        }},
    })
    assert isinstance(facts, CheckoutSessionFacts)
    assert facts.booking_id == "b-ref"
    assert facts.payment_intent_id == "pi_1"
    assert facts.is_settled
    assert facts.amount_total == 0
    assert facts.discount_percentage == Decimal("10")
    assert facts.original_subtotal_cents == 41000
    assert facts.amount_tax is None


def test_metadata_booking_id_wins_over_client_reference():
    facts = parse_event({
        "id": "evt_1",
        "type": "checkout.session.expired",
        "data": {"object": {"id": "cs_1", "client_reference_id": "other", "metadata": {"bookingId": "b-1"}}},
    })
    assert facts.booking_id == "b-1"
    assert not facts.is_settled


def test_payment_intent_facts():
    facts = parse_event({
        "id": "evt_2",
        "type": "payment_intent.amount_capturable_updated",
        "data": {"object": {"id": "pi_2", "metadata": {"booking_id": "b-1", "flow": "balance_authorize"},
                            "status": "requires_capture", "amount_capturable": "21900"}},
    })
    assert isinstance(facts, PaymentIntentFacts)
    assert facts.flow is CheckoutFlow.BALANCE_AUTHORIZATION
    assert facts.amount_capturable == 21900


def test_dispute_and_refund_facts():
    dispute = parse_event({
        "id": "evt_3", "type": "charge.dispute.closed", "created": 1700000000,
        "data": {"object": {"id": "dp_1", "charge": "ch_1", "status": "won", "reason": "fraudulent"}},
    })
    assert isinstance(dispute, DisputeFacts)
    assert (dispute.charge_id, dispute.payment_intent_id, dispute.event_created) == ("ch_1", None, 1700000000)

    refund = parse_event({
        "id": "evt_4", "type": "charge.refunded",
        "data": {"object": {"id": "ch_1", "payment_intent": "pi_1", "amount": 1000, "amount_refunded": 400,
                            "refunds": {"data": [{"id": "re_1"}, {"id": "re_2"}]}}},
    })
    assert isinstance(refund, RefundFacts)
    assert refund.refund_ids == ("re_1", "re_2")

    updated = parse_event({
        "id": "evt_5", "type": "charge.refund.updated",
        "data": {"object": {"id": "re_3", "charge": "ch_1"}},
    })
    assert (updated.charge_id, updated.refund_ids, updated.amount) == ("ch_1", ("re_3",), None)


def test_unknown_type_is_unhandled():
    assert isinstance(parse_event({"id": "evt_6", "type": "invoice.paid"}), UnhandledEvent)

from datetime import date

import pytest

from rentflow.core.exceptions import PaymentGatewayError
from rentflow.models.booking import BookingStatus
from rentflow.services.offsession_service import (
    Capturable,
    Failed,
    RequiresAction,
    Skipped,
    attempt_offsession_authorization,
    remaining_balance_cents,
)
from rentflow.services.stripe_gateway import CardAuthorizationError

START, END = date(2025, 9, 1), date(2025, 9, 3)
FALLBACK_URL = "https://checkout.stripe.test/c/pay/cs_fallback"


@pytest.fixture()
def confirmed(machine, booking_factory):
    # 369.00 quoted, 150.00 deposit on the machine
    return booking_factory(machine, START, END, status=BookingStatus.CONFIRMED,
                           stripe_checkout_session_id="cs_1", stripe_payment_intent_id="pi_1")


@pytest.fixture()
def saved_card(gateway):
    gateway.retrieve_checkout_session.return_value = {
        "id": "cs_1", "customer": "cus_1", "payment_intent": "pi_1", "payment_method": "pm_1", "payment_status": "paid",
    }
    gateway.create_checkout_session.return_value = {"id": "cs_fallback", "url": FALLBACK_URL, "customer": "cus_1"}
    return gateway


def test_remaining_balance(machine, confirmed):
    assert remaining_balance_cents(confirmed, machine) == 36900 - 15000


def test_silent_authorization(db, confirmed, saved_card):
    saved_card.create_offsession_authorization.return_value = {
        "id": "pi_auth", "status": "requires_capture", "amount_capturable": 21900,
    }

    result = attempt_offsession_authorization(db, saved_card, confirmed.id)

    assert result == Capturable(payment_intent_id="pi_auth", amount_cents=21900)
    kwargs = saved_card.create_offsession_authorization.call_args.kwargs
    assert kwargs["amount_cents"] == 21900
    assert (kwargs["customer_id"], kwargs["payment_method_id"]) == ("cus_1", "pm_1")
    assert kwargs["idempotency_key"] == f"booking-{confirmed.id}-balance-auth-pm_1"
    assert kwargs["metadata"]["flow"] == "balance_authorize"
    db.refresh(confirmed)
    assert confirmed.authorized_payment_intent_id == "pi_auth"
    assert confirmed.status == BookingStatus.CONFIRMED


def test_already_authorized_is_skipped(db, machine, booking_factory, gateway):
    b = booking_factory(machine, START, END, status=BookingStatus.CONFIRMED, authorized_payment_intent_id="pi_auth")
    assert attempt_offsession_authorization(db, gateway, b.id) == Skipped("already_authorized")
    gateway.create_offsession_authorization.assert_not_called()


def test_nothing_left_to_authorize(db, machine_factory, booking_factory, gateway):
    m = machine_factory(deposit_cents=50000)
    b = booking_factory(m, START, END, status=BookingStatus.CONFIRMED)
    assert attempt_offsession_authorization(db, gateway, b.id) == Skipped("no_remaining")


def test_unknown_or_unconfirmed_booking(db, machine, booking_factory, gateway):
    pending = booking_factory(machine, START, END)
    assert attempt_offsession_authorization(db, gateway, "missing").code == "not_found"
    assert attempt_offsession_authorization(db, gateway, pending.id).code == "not_confirmed"


def test_authentication_required_falls_back_to_checkout(db, confirmed, saved_card):
    saved_card.create_offsession_authorization.side_effect = CardAuthorizationError(
        "This payment requires authentication", error_code="authentication_required")

    result = attempt_offsession_authorization(db, saved_card, confirmed.id)

    assert result == RequiresAction(checkout_url=FALLBACK_URL)
    params = saved_card.create_checkout_session.call_args.args[0]
    assert params["customer"] == "cus_1"
    assert "customer_email" not in params
    assert params["payment_intent_data"]["capture_method"] == "manual"
    assert params["metadata"]["flow"] == "balance_authorize"
    assert params["payment_method_types"] == ["card"]
    assert params["line_items"][0]["price_data"]["unit_amount"] == 21900
    assert params["success_url"].endswith("&auth=1")
    assert saved_card.create_checkout_session.call_args.kwargs["idempotency_key"] == f"booking-{confirmed.id}-balance-auth-fallback-cus_1"
    db.refresh(confirmed)
    assert confirmed.authorized_payment_intent_id is None


def test_unexpected_intent_status_falls_back(db, confirmed, saved_card):
    saved_card.create_offsession_authorization.return_value = {"id": "pi_x", "status": "requires_action", "amount_capturable": 0}
    assert isinstance(attempt_offsession_authorization(db, saved_card, confirmed.id), RequiresAction)


def test_gateway_error_falls_back(db, confirmed, saved_card):
    saved_card.create_offsession_authorization.side_effect = PaymentGatewayError("Stripe unavailable")
    assert isinstance(attempt_offsession_authorization(db, saved_card, confirmed.id), RequiresAction)


def test_latest_saved_card_is_used_when_session_has_none(db, confirmed, saved_card):
    saved_card.retrieve_checkout_session.return_value = {
        "id": "cs_1", "customer": "cus_1", "payment_intent": "pi_1", "payment_method": None, "payment_status": "paid",
    }
    saved_card.latest_card_payment_method.return_value = "pm_latest"
    saved_card.create_offsession_authorization.return_value = {"id": "pi_auth", "status": "requires_capture", "amount_capturable": 21900}

    attempt_offsession_authorization(db, saved_card, confirmed.id)

    saved_card.latest_card_payment_method.assert_called_once_with("cus_1")
    assert saved_card.create_offsession_authorization.call_args.kwargs["payment_method_id"] == "pm_latest"
    assert saved_card.create_offsession_authorization.call_args.kwargs["idempotency_key"] == f"booking-{confirmed.id}-balance-auth-pm_latest"


def test_no_customer_uses_email_checkout(db, confirmed, gateway):
    gateway.create_checkout_session.return_value = {"id": "cs_f", "url": FALLBACK_URL, "customer": None}

    result = attempt_offsession_authorization(db, gateway, confirmed.id)

    assert result == RequiresAction(checkout_url=FALLBACK_URL)
    params = gateway.create_checkout_session.call_args.args[0]
    assert params["customer_email"] == "ana@example.com"
    assert params["customer_creation"] == "always"
    assert "customer" not in params
    gateway.create_offsession_authorization.assert_not_called()


def test_no_identity_at_all_is_skipped(db, machine, booking_factory, gateway):
    b = booking_factory(machine, START, END, status=BookingStatus.CONFIRMED, customer_email="")
    assert attempt_offsession_authorization(db, gateway, b.id) == Skipped("missing_identity")


def test_fallback_checkout_failure(db, confirmed, saved_card):
    saved_card.create_offsession_authorization.side_effect = CardAuthorizationError("declined", decline_code="insufficient_funds")
    saved_card.create_checkout_session.side_effect = PaymentGatewayError("Stripe unavailable")

    result = attempt_offsession_authorization(db, saved_card, confirmed.id)

    assert isinstance(result, Failed)
    assert result.code == "error"


def test_fallback_key_follows_customer_identity(db, confirmed, gateway):
    gateway.create_checkout_session.return_value = {"id": "cs_f", "url": FALLBACK_URL, "customer": None}
    attempt_offsession_authorization(db, gateway, confirmed.id)
    email_key = gateway.create_checkout_session.call_args.kwargs["idempotency_key"]

    # a retry after Stripe attached a customer sends different params
    confirmed.stripe_customer_id = "cus_new"
    db.commit()
    attempt_offsession_authorization(db, gateway, confirmed.id)
    customer_key = gateway.create_checkout_session.call_args.kwargs["idempotency_key"]

    assert email_key == f"booking-{confirmed.id}-balance-auth-fallback-email"
    assert customer_key == f"booking-{confirmed.id}-balance-auth-fallback-cus_new"

import logging
from dataclasses import dataclass
from typing import Any, Optional

import stripe

from rentflow.core.config import settings
from rentflow.core.exceptions import PaymentGatewayError

logger = logging.getLogger(__name__)


@dataclass
class StripeGatewayConfig:
    secret_key: str
    currency: str = "eur"
    timeout: int = 20
    max_network_retries: int = 2


class CardAuthorizationError(PaymentGatewayError):
    """Stripe refused an off-session confirmation (decline, authentication_required, ...)."""

    def __init__(self, message: str, decline_code: Optional[str] = None, error_code: Optional[str] = None) -> None:
        super().__init__(message, details={"decline_code": decline_code, "error_code": error_code})
        self.decline_code = decline_code
        self.error_code = error_code


def _stripe_error(action: str, exc: stripe.StripeError) -> PaymentGatewayError:
    return PaymentGatewayError(
        f"Stripe {action} failed: {exc.user_message or str(exc)}",
        details={"code": getattr(exc, "code", None), "http_status": getattr(exc, "http_status", None)},
    )


class StripeGateway:
    """
    Thin wrapper over the Stripe SDK.

    Every call carries a timeout (SDK http client) and errors surface as
    PaymentGatewayError so services never import stripe exception types.
    """

    def __init__(self, cfg: StripeGatewayConfig):
        self.cfg = cfg
        stripe.api_key = cfg.secret_key
        stripe.max_network_retries = cfg.max_network_retries
        stripe.default_http_client = stripe.RequestsClient(timeout=cfg.timeout)

    # checkout

    def create_checkout_session(self, params: dict[str, Any], idempotency_key: Optional[str] = None) -> dict:
        try:
            session = stripe.checkout.Session.create(**params, idempotency_key=idempotency_key)
        except stripe.StripeError as e:
            logger.warning("Stripe checkout.Session.create failed: %s", e)
            raise _stripe_error("checkout session create", e) from e
        return {"id": session.id, "url": session.url, "customer": getattr(session, "customer", None)}

    def retrieve_checkout_session(self, session_id: str) -> Optional[dict]:
        """Session with its PaymentIntent expanded, flattened to the fields we use."""
        try:
            session = stripe.checkout.Session.retrieve(session_id, expand=["payment_intent"])
        except stripe.InvalidRequestError as e:
            if getattr(e, "code", None) == "resource_missing":
                return None
            raise _stripe_error("checkout session retrieve", e) from e
        except stripe.StripeError as e:
            raise _stripe_error("checkout session retrieve", e) from e

        pi = session.payment_intent
        pi_id = pi if isinstance(pi, str) or pi is None else pi.id
        payment_method = None
        if pi is not None and not isinstance(pi, str):
            pm = pi.payment_method
            payment_method = pm if isinstance(pm, str) or pm is None else pm.id
        customer = session.customer
        return {
            "id": session.id,
            "customer": customer if isinstance(customer, str) or customer is None else customer.id,
            "payment_intent": pi_id,
            "payment_method": payment_method,
            "payment_status": session.payment_status,
        }

    # payment intents

    def create_offsession_authorization(
        self,
        *,
        amount_cents: int,
        customer_id: str,
        payment_method_id: str,
        metadata: dict[str, str],
        idempotency_key: str,
    ) -> dict:
        try:
            pi = stripe.PaymentIntent.create(
                amount=amount_cents,
                currency=self.cfg.currency,
                customer=customer_id,
                payment_method=payment_method_id,
                capture_method="manual",
                confirm=True,
                off_session=True,
                metadata=metadata,
                idempotency_key=idempotency_key,
            )
        except stripe.CardError as e:
            err = getattr(e, "error", None)
            raise CardAuthorizationError(
                e.user_message or str(e),
                decline_code=getattr(err, "decline_code", None) or getattr(e, "decline_code", None),
                error_code=getattr(e, "code", None),
            ) from e
        except stripe.StripeError as e:
            raise _stripe_error("off-session authorization", e) from e
        return {"id": pi.id, "status": pi.status, "amount_capturable": pi.amount_capturable}

    def latest_card_payment_method(self, customer_id: str) -> Optional[str]:
        try:
            methods = stripe.PaymentMethod.list(customer=customer_id, type="card", limit=1)
        except stripe.StripeError as e:
            raise _stripe_error("payment method list", e) from e
        return methods.data[0].id if methods.data else None

    # charges

    def retrieve_charge(self, charge_id: str) -> Optional[dict]:
        """None when Stripe has no such charge; raises PaymentGatewayError on transport/API failures."""
        try:
            charge = stripe.Charge.retrieve(charge_id, expand=["refunds"])
        except stripe.InvalidRequestError as e:
            if getattr(e, "code", None) == "resource_missing":
                return None
            raise _stripe_error("charge retrieve", e) from e
        except stripe.StripeError as e:
            raise _stripe_error("charge retrieve", e) from e

        pi = charge.payment_intent
        refunds = getattr(charge, "refunds", None)
        return {
            "id": charge.id,
            "payment_intent": pi if isinstance(pi, str) or pi is None else pi.id,
            "amount": charge.amount,
            "amount_refunded": charge.amount_refunded,
            "refund_ids": [r.id for r in refunds.data] if refunds is not None else [],
        }


def get_gateway() -> StripeGateway:
    if not settings.STRIPE_SECRET_KEY:
        raise PaymentGatewayError("Stripe is not configured (missing STRIPE_SECRET_KEY)")
    return StripeGateway(StripeGatewayConfig(
        secret_key=settings.STRIPE_SECRET_KEY,
        currency=settings.CURRENCY,
        timeout=settings.STRIPE_TIMEOUT_SECONDS,
        max_network_retries=settings.STRIPE_MAX_NETWORK_RETRIES,
    ))

from typing import Optional

from fastapi import HTTPException

from rentflow.core.config import settings
from rentflow.core.exceptions import PaymentGatewayError
from rentflow.services.stripe_gateway import StripeGateway, get_gateway


def get_stripe_gateway() -> StripeGateway:
    try:
        return get_gateway()
    except PaymentGatewayError as e:
        raise HTTPException(status_code=500, detail=e.message)


def get_optional_stripe_gateway() -> Optional[StripeGateway]:
    """Webhook processing works without API access; only PI/charge lookups need it."""
    if not settings.STRIPE_SECRET_KEY:
        return None
    return get_gateway()

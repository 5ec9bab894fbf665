from __future__ import annotations
import asyncio
import json
import logging
from typing import Optional

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from rentflow.api.deps import get_optional_stripe_gateway, get_stripe_gateway
from rentflow.core.config import settings
from rentflow.core.exceptions import TransientProcessingError
from rentflow.db.session import get_db
from rentflow.schemas.payments import BalanceAuthorizationOut, BalanceAuthorizationRequest, WebhookAck
from rentflow.services.followup_service import enqueue_follow_ups
from rentflow.services.offsession_service import Capturable, RequiresAction, Skipped, attempt_offsession_authorization
from rentflow.services.stripe_gateway import StripeGateway
from rentflow.services.webhook_service import process_payment_event

logger = logging.getLogger(__name__)

router = APIRouter(tags=["payments"])


def _apply_event(db: Session, payload: dict, gateway: Optional[StripeGateway]):
    """Blocking part of a delivery: row locks, gateway lookups and the broker publish."""
    result = process_payment_event(db, payload, gateway)
    enqueue_follow_ups(result.booking_id, result.follow_ups)
    return result


@router.post("/webhooks/stripe", response_model=WebhookAck)
async def stripe_webhook(req: Request, db: Session = Depends(get_db), gateway: Optional[StripeGateway] = Depends(get_optional_stripe_gateway)):
    body = await req.body()
    if not settings.STRIPE_WEBHOOK_SECRET:
        logger.error("Stripe webhook received but STRIPE_WEBHOOK_SECRET is not set")
        raise HTTPException(status_code=500, detail="Webhook secret not configured")
    signature = req.headers.get("stripe-signature")
    if not signature:
        raise HTTPException(status_code=400, detail="Missing Stripe-Signature header")
    try:
        stripe.Webhook.construct_event(body, signature, settings.STRIPE_WEBHOOK_SECRET)
    except (ValueError, stripe.SignatureVerificationError):
        logger.warning("Rejected Stripe webhook with invalid signature")
        raise HTTPException(status_code=400, detail="Invalid webhook signature")

    # The verified body is parsed as plain JSON; the SDK object is not threaded further.
    payload = json.loads(body.decode("utf-8"))
    try:
        result = await asyncio.to_thread(_apply_event, db, payload, gateway)
    except TransientProcessingError as e:
        raise e.to_http_exception()
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return WebhookAck(outcome=result.outcome, eventId=result.event_id)


@router.post("/public/bookings/{booking_id}/balance-authorization", response_model=BalanceAuthorizationOut)
def balance_authorization(
    booking_id: str,
    body: BalanceAuthorizationRequest,
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_stripe_gateway),
):
    result = attempt_offsession_authorization(db, gateway, booking_id, body.checkoutSessionId)
    if isinstance(result, Skipped):
        return BalanceAuthorizationOut(kind="skipped", reason=result.reason)
    if isinstance(result, Capturable):
        return BalanceAuthorizationOut(kind="capturable", paymentIntentId=result.payment_intent_id, amountCents=result.amount_cents)
    if isinstance(result, RequiresAction):
        return BalanceAuthorizationOut(kind="requires_action", checkoutUrl=result.checkout_url)
    if result.code == "not_found":
        raise HTTPException(status_code=404, detail=result.message)
    if result.code == "not_confirmed":
        raise HTTPException(status_code=409, detail=result.message)
    return BalanceAuthorizationOut(kind="error", message=result.message)

from pydantic import BaseModel
from typing import Optional


class BalanceAuthorizationRequest(BaseModel):
    checkoutSessionId: Optional[str] = None


class BalanceAuthorizationOut(BaseModel):
    kind: str  # skipped | capturable | requires_action | error
    reason: Optional[str] = None
    paymentIntentId: Optional[str] = None
    amountCents: Optional[int] = None
    checkoutUrl: Optional[str] = None
    message: Optional[str] = None


class WebhookAck(BaseModel):
    ok: bool = True
    outcome: str
    eventId: Optional[str] = None

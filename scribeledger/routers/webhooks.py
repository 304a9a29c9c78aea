"""
Stripe webhook endpoint.

The body is read raw: the signature is computed over the exact bytes Stripe
sent, so it must not be parsed before verification.
"""

from fastapi import APIRouter, Depends, Header, Request
from pydantic import BaseModel

from scribeledger.billing.webhooks import SubscriptionReconciler
from scribeledger.dependencies import get_reconciler

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


class WebhookAck(BaseModel):
    received: bool = True


@router.post("/stripe", response_model=WebhookAck)
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(None, alias="Stripe-Signature"),
    reconciler: SubscriptionReconciler = Depends(get_reconciler),
) -> WebhookAck:
    """
    Receive a Stripe event.

    Returns:
        200 {"received": true} once the event is applied (or acknowledged)

    Raises:
        400: Missing or invalid signature
        500: Missing webhook secret or processing failure (Stripe retries)
    """
    payload = await request.body()
    await reconciler.handle_webhook_event(payload, stripe_signature)
    return WebhookAck()

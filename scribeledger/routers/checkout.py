"""
Stripe Checkout endpoints.

A paid plan is bought through a hosted Checkout session; the subscription
itself is recorded later, from the webhook events Stripe sends for it.
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from scribeledger.auth import AuthenticatedUser, get_authenticated_user
from scribeledger.billing.checkout import SubscriptionCheckoutFactory
from scribeledger.dependencies import get_checkout_factory

router = APIRouter(prefix="/stripe", tags=["Checkout"])


class CheckoutSessionRequest(BaseModel):
    tier: str = Field(..., description="pro or team")
    interval: str = Field(..., description="month or year")


class CheckoutSessionResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    session_id: str
    url: str | None


@router.post("/checkout-session", response_model=CheckoutSessionResponse)
async def create_checkout_session(
    body: CheckoutSessionRequest,
    user: AuthenticatedUser = Depends(get_authenticated_user),
    factory: SubscriptionCheckoutFactory = Depends(get_checkout_factory),
) -> CheckoutSessionResponse:
    """
    Start a subscription checkout for the caller.

    Raises:
        400: Unknown tier or interval
        500: Price not configured or Stripe failure
    """
    checkout = await factory.create_subscription_checkout(
        user_id=user.user_id,
        clerk_id=user.external_id,
        tier=body.tier,
        interval=body.interval,
    )

    return CheckoutSessionResponse(session_id=checkout.session_id, url=checkout.url)

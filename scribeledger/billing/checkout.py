"""
Subscription checkout.

Starts a Stripe Checkout session for a paid tier. Nothing is written to the
store here: the subscription row is created by the webhook reconciler from
the customer.subscription.* events, attributed through the metadata copied
onto the subscription.
"""

from pydantic import BaseModel

from scribeledger.billing.stripe_service import StripeService
from scribeledger.config import StripeConfig
from scribeledger.errors import ConfigurationError, ValidationError
from scribeledger.models.subscription import BillingInterval, SubscriptionTier
from scribeledger.observability.logging import get_logger

logger = get_logger(__name__)

PAID_TIERS = frozenset({SubscriptionTier.PRO, SubscriptionTier.TEAM})


class SubscriptionCheckout(BaseModel):
    session_id: str
    url: str | None


class SubscriptionCheckoutFactory:
    """Build Checkout sessions with attribution metadata."""

    def __init__(self, stripe_service: StripeService, config: StripeConfig):
        self.stripe_service = stripe_service
        self.config = config

    async def create_subscription_checkout(
        self, user_id: str, clerk_id: str, tier: str, interval: str
    ) -> SubscriptionCheckout:
        """
        Create a Checkout session for a paid tier.

        Args:
            user_id: Internal user id (owner of the resulting subscription)
            clerk_id: External identity id, kept for support lookups
            tier: pro or team
            interval: month or year

        Raises:
            ValidationError: Unknown tier or interval
            ConfigurationError: No price configured for the pair, or Stripe not configured
            CheckoutSessionError: Stripe call failed
        """
        try:
            plan = SubscriptionTier(tier)
            cadence = BillingInterval(interval)
        except ValueError as e:
            raise ValidationError("Invalid tier or interval") from e

        if plan not in PAID_TIERS:
            raise ValidationError("Invalid tier or interval")

        price_id = self.config.price_for(plan, cadence)
        if not price_id:
            logger.error(
                "Price id not configured", tier=plan.value, interval=cadence.value
            )
            raise ConfigurationError("Price ID not configured")

        session = await self.stripe_service.create_checkout_session(
            price_id=price_id,
            metadata={
                "userId": user_id,
                "clerkId": clerk_id,
                "tier": plan.value,
                "interval": cadence.value,
            },
            success_url=self.config.checkout_success_url,
            cancel_url=self.config.checkout_cancel_url,
            client_reference_id=user_id,
        )

        logger.info(
            "Subscription checkout created",
            user_id=user_id,
            tier=plan.value,
            interval=cadence.value,
            checkout_session_id=session["id"],
        )

        return SubscriptionCheckout(session_id=session["id"], url=session["url"])

"""
Credit purchase intents.

Creates a Stripe payment intent for a catalog credit pack. No ledger state
changes here: credits are granted by the webhook reconciler once Stripe
reports the payment as succeeded, using the metadata set on the intent.
"""

from pydantic import BaseModel

from scribeledger.billing.catalog import price_for_credits
from scribeledger.billing.stripe_service import StripeService
from scribeledger.config import StripeConfig
from scribeledger.observability.logging import get_logger

logger = get_logger(__name__)

CREDIT_PURCHASE_TYPE = "credit_purchase"


class CreditPurchaseIntent(BaseModel):
    payment_intent_id: str
    client_secret: str
    amount: int
    credits: int


class PaymentIntentFactory:
    """Build credit purchase intents with attribution metadata."""

    def __init__(self, stripe_service: StripeService, config: StripeConfig):
        self.stripe_service = stripe_service
        self.config = config

    async def create_credit_purchase_intent(
        self, user_id: str, clerk_id: str, credits_requested: int
    ) -> CreditPurchaseIntent:
        """
        Create a payment intent for a credit pack.

        Args:
            user_id: Internal user id (credited on success)
            clerk_id: External identity id, kept for support lookups
            credits_requested: Pack size, must be in the catalog

        Raises:
            ValidationError: Pack size not in the catalog
            ConfigurationError: Stripe not configured
            PaymentProviderError: Stripe call failed
        """
        amount = price_for_credits(credits_requested)

        intent = await self.stripe_service.create_payment_intent(
            amount=amount,
            currency=self.config.currency,
            metadata={
                "userId": user_id,
                "clerkId": clerk_id,
                "credits": str(credits_requested),
                "type": CREDIT_PURCHASE_TYPE,
            },
            description=f"Purchase {credits_requested} minutes of transcription credits",
        )

        logger.info(
            "Credit purchase intent created",
            user_id=user_id,
            credits=credits_requested,
            amount=amount,
            payment_intent_id=intent["id"],
        )

        return CreditPurchaseIntent(
            payment_intent_id=intent["id"],
            client_secret=intent["client_secret"],
            amount=amount,
            credits=credits_requested,
        )

"""
Stripe integration service.

Thin wrapper over the Stripe SDK used by the purchase flow and the webhook
reconciler:
- Payment intent creation
- Subscription checkout sessions
- Webhook signature verification

The API key is passed per call, so several configured services can coexist
in one process (tests, multiple apps).
"""

import json
import logging
from typing import Any

import stripe

from scribeledger.config import StripeConfig
from scribeledger.errors import (
    CheckoutSessionError,
    ConfigurationError,
    PaymentProviderError,
    SignatureError,
)

logger = logging.getLogger(__name__)


class StripeService:
    """
    Stripe integration service.

    Handles:
    - Payment intents for one-off credit purchases
    - Checkout sessions for subscriptions
    - Signed webhook payload verification
    """

    def __init__(self, config: StripeConfig):
        """
        Initialize Stripe service.

        Args:
            config: Stripe configuration
        """
        self.config = config

        if config.is_configured:
            logger.info("Stripe service initialized")
        else:
            logger.warning("Stripe API key not configured - credit purchases disabled")

    @property
    def is_enabled(self) -> bool:
        """Check if Stripe is properly configured."""
        return self.config.is_configured

    async def create_payment_intent(
        self,
        amount: int,
        currency: str,
        metadata: dict[str, str],
        description: str,
    ) -> dict[str, Any]:
        """
        Create a payment intent.

        Args:
            amount: Amount in the smallest currency unit (cents)
            currency: ISO currency code
            metadata: Metadata echoed back on the payment_intent.succeeded event
            description: Payment description shown to the customer

        Returns:
            dict: ``id`` and ``client_secret`` of the created intent

        Raises:
            ConfigurationError: Stripe API key not configured
            PaymentProviderError: Stripe rejected the request
        """
        if not self.is_enabled:
            raise ConfigurationError("Stripe not configured")

        try:
            intent = stripe.PaymentIntent.create(
                api_key=self.config.api_key,
                amount=amount,
                currency=currency,
                metadata=metadata,
                description=description,
                automatic_payment_methods={"enabled": True},
            )
        except stripe.StripeError as e:
            logger.error(
                "Failed to create Stripe payment intent",
                extra={"amount": amount, "error": str(e)},
            )
            raise PaymentProviderError(f"Failed to create payment intent: {e}") from e

        logger.info(
            "Created Stripe payment intent",
            extra={"payment_intent_id": intent["id"], "amount": amount},
        )
        return {"id": intent["id"], "client_secret": intent["client_secret"]}

    async def create_checkout_session(
        self,
        price_id: str,
        metadata: dict[str, str],
        success_url: str,
        cancel_url: str,
        client_reference_id: str | None = None,
    ) -> dict[str, Any]:
        """
        Create a hosted Checkout session for a recurring subscription.

        The metadata is set on the session and copied onto the subscription,
        so customer.subscription.* events can be attributed to the user.

        Args:
            price_id: Recurring price to subscribe to
            metadata: Attribution metadata (userId, clerkId, tier, interval)
            success_url: Redirect after a completed checkout
            cancel_url: Redirect when the customer backs out
            client_reference_id: Internal user id, echoed on the session

        Returns:
            dict: ``id`` and ``url`` of the created session

        Raises:
            ConfigurationError: Stripe API key not configured
            CheckoutSessionError: Stripe rejected the request
        """
        if not self.is_enabled:
            raise ConfigurationError("Stripe not configured")

        try:
            session = stripe.checkout.Session.create(
                api_key=self.config.api_key,
                mode="subscription",
                line_items=[{"price": price_id, "quantity": 1}],
                success_url=success_url,
                cancel_url=cancel_url,
                client_reference_id=client_reference_id,
                metadata=metadata,
                subscription_data={"metadata": metadata},
            )
        except stripe.StripeError as e:
            logger.error(
                "Failed to create Stripe checkout session",
                extra={"price_id": price_id, "error": str(e)},
            )
            raise CheckoutSessionError(f"Failed to create checkout session: {e}") from e

        logger.info(
            "Created Stripe checkout session",
            extra={"checkout_session_id": session["id"], "price_id": price_id},
        )
        return {"id": session["id"], "url": session["url"]}

    def verify_and_parse_event(self, payload: bytes, signature: str | None) -> dict[str, Any]:
        """
        Verify a webhook signature over the raw body, then parse it.

        Args:
            payload: Raw request body, exactly as received
            signature: Stripe-Signature header value

        Returns:
            dict: Parsed event

        Raises:
            ConfigurationError: Webhook secret not configured
            SignatureError: Missing or invalid signature, or unparseable payload
        """
        if not self.config.webhook_secret:
            raise ConfigurationError("Webhook configuration error")

        if not signature:
            raise SignatureError("Missing stripe-signature header")

        try:
            stripe.WebhookSignature.verify_header(
                payload.decode("utf-8"),
                signature,
                self.config.webhook_secret,
                self.config.webhook_tolerance_seconds,
            )
        except stripe.SignatureVerificationError as e:
            raise SignatureError("Invalid signature") from e
        except UnicodeDecodeError as e:
            raise SignatureError("Invalid payload") from e

        try:
            event = json.loads(payload)
        except ValueError as e:
            raise SignatureError("Invalid payload") from e

        if not isinstance(event, dict) or "type" not in event:
            raise SignatureError("Invalid payload")

        return event

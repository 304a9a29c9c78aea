"""
Stripe webhook event handlers.

Applies Stripe events to local billing state:
- customer.subscription.created / updated: upsert subscription by user
- customer.subscription.deleted: record canceled, keep the row
- payment_intent.succeeded (credit purchases): grant credits once per payment

Stripe delivers at least once, possibly duplicated and out of order. Every
handler is safe to replay: upserts are last-write-wins on provider fields
(a canceled subscription stays canceled) and credit grants are keyed by the
payment intent id.
"""

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel

from scribeledger.billing.ledger import CreditLedger
from scribeledger.billing.payment_intents import CREDIT_PURCHASE_TYPE
from scribeledger.billing.stripe_service import StripeService
from scribeledger.config import StripeConfig
from scribeledger.errors import (
    BillingError,
    MalformedEventError,
    SubscriptionConflictError,
    SubscriptionNotFoundError,
    WebhookProcessingError,
)
from scribeledger.models.subscription import (
    FreeSubscription,
    SubscriptionSnapshot,
    SubscriptionStatus,
    SubscriptionTier,
)
from scribeledger.observability.logging import get_logger
from scribeledger.observability.metrics import track_webhook_event
from scribeledger.storage.database import BillingDatabase

logger = get_logger(__name__)

WebhookStatus = Literal["processed", "skipped", "ignored"]


class WebhookResult(BaseModel):
    """Outcome of a processed webhook delivery."""

    event_id: str | None = None
    event_type: str
    status: WebhookStatus
    message: str | None = None


def _timestamp(value: Any) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=UTC)


def _first_item(subscription: dict[str, Any]) -> dict[str, Any]:
    items = (subscription.get("items") or {}).get("data") or []
    return items[0] if items else {}


def _customer_id(value: Any) -> str | None:
    # Expanded events carry the customer object instead of its id
    if isinstance(value, dict):
        return value.get("id")
    return value


def _parse_credits(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


class SubscriptionReconciler:
    """
    Handle Stripe webhook events.

    Verifies the delivery, routes it by event type and updates subscription
    and credit state accordingly.
    """

    def __init__(
        self,
        config: StripeConfig,
        db: BillingDatabase,
        ledger: CreditLedger,
        stripe_service: StripeService,
    ):
        """
        Initialize webhook handler.

        Args:
            config: Stripe configuration (price id -> tier mapping)
            db: Billing database
            ledger: Credit ledger used for purchase grants
            stripe_service: Stripe service (signature verification)
        """
        self.config = config
        self.db = db
        self.ledger = ledger
        self.stripe_service = stripe_service

    async def handle_webhook_event(
        self, raw_body: bytes, signature_header: str | None
    ) -> WebhookResult:
        """
        Process Stripe webhook event.

        Args:
            raw_body: Raw webhook payload, unmodified
            signature_header: Stripe-Signature header

        Returns:
            WebhookResult

        Raises:
            ConfigurationError: Webhook secret not configured
            SignatureError: Signature missing or invalid
            WebhookProcessingError: Event could not be applied (Stripe retries)
        """
        event = self.stripe_service.verify_and_parse_event(raw_body, signature_header)

        event_type = event["type"]
        event_id = event.get("id")
        event_data = (event.get("data") or {}).get("object") or {}

        logger.info("Processing Stripe webhook event", event_type=event_type, event_id=event_id)

        handlers = {
            "customer.subscription.created": self._handle_subscription_upsert,
            "customer.subscription.updated": self._handle_subscription_upsert,
            "customer.subscription.deleted": self._handle_subscription_deleted,
            "payment_intent.succeeded": self._handle_payment_intent_succeeded,
        }

        handler = handlers.get(event_type)
        if handler is None:
            logger.info("Unhandled webhook event type", event_type=event_type)
            track_webhook_event(event_type, "ignored")
            return WebhookResult(event_id=event_id, event_type=event_type, status="ignored")

        try:
            status, message = await handler(event_data)
        except WebhookProcessingError:
            track_webhook_event(event_type, "failed")
            logger.error(
                "Webhook event processing failed",
                event_type=event_type,
                event_id=event_id,
                exc_info=True,
            )
            raise
        except Exception as e:
            track_webhook_event(event_type, "failed")
            logger.error(
                "Webhook event processing failed",
                event_type=event_type,
                event_id=event_id,
                exc_info=True,
            )
            raise WebhookProcessingError(f"Event processing failed: {e}") from e

        track_webhook_event(event_type, status)
        logger.info(
            "Webhook event processed",
            event_type=event_type,
            event_id=event_id,
            status=status,
            result=message,
        )
        return WebhookResult(
            event_id=event_id, event_type=event_type, status=status, message=message
        )

    def _resolve_tier(self, subscription: dict[str, Any]) -> SubscriptionTier:
        """metadata.tier wins when it names a tier; otherwise map the price id."""
        metadata = subscription.get("metadata") or {}
        override = metadata.get("tier")
        if override:
            try:
                return SubscriptionTier(override)
            except ValueError:
                logger.warning("Ignoring unknown tier in subscription metadata", tier=override)

        price_id = (_first_item(subscription).get("price") or {}).get("id")
        return self.config.tier_for_price(price_id)

    def _snapshot(
        self, subscription: dict[str, Any], user_id: str, status: SubscriptionStatus
    ) -> SubscriptionSnapshot:
        # Newer API versions moved the period bounds onto subscription items
        item = _first_item(subscription)
        period_start = subscription.get("current_period_start") or item.get(
            "current_period_start"
        )
        period_end = subscription.get("current_period_end") or item.get("current_period_end")

        return SubscriptionSnapshot(
            user_id=user_id,
            tier=self._resolve_tier(subscription),
            status=status,
            stripe_subscription_id=subscription["id"],
            stripe_customer_id=_customer_id(subscription.get("customer")),
            current_period_start=_timestamp(period_start),
            current_period_end=_timestamp(period_end),
            cancel_at_period_end=bool(subscription.get("cancel_at_period_end")),
        )

    async def _apply_snapshot(
        self, snapshot: SubscriptionSnapshot
    ) -> tuple[WebhookStatus, str]:
        try:
            record = await self.db.upsert_subscription(snapshot)
        except SubscriptionConflictError:
            # Retrying cannot resolve a subscription attributed to two users
            logger.error(
                "Subscription already stored for another user, skipping",
                stripe_subscription_id=snapshot.stripe_subscription_id,
                user_id=snapshot.user_id,
            )
            return "skipped", "Subscription belongs to another user"

        return "processed", (
            f"Subscription {snapshot.stripe_subscription_id} synced "
            f"({record.tier.value}, {record.status.value})"
        )

    async def _handle_subscription_upsert(
        self, subscription: dict[str, Any]
    ) -> tuple[WebhookStatus, str]:
        """Handle customer.subscription.created and customer.subscription.updated."""
        metadata = subscription.get("metadata") or {}
        user_id = metadata.get("userId")

        if not user_id:
            logger.warning(
                "No userId in subscription metadata, skipping",
                stripe_subscription_id=subscription.get("id"),
            )
            return "skipped", "No userId in subscription metadata"

        snapshot = self._snapshot(subscription, user_id, SubscriptionStatus(subscription["status"]))
        return await self._apply_snapshot(snapshot)

    async def _handle_subscription_deleted(
        self, subscription: dict[str, Any]
    ) -> tuple[WebhookStatus, str]:
        """
        Handle customer.subscription.deleted.

        With attribution metadata the full canceled state is upserted, so a
        deletion delivered before its ``created`` event still leaves a
        canceled row behind. Otherwise the matching row is marked canceled.
        """
        stripe_subscription_id = subscription["id"]
        user_id = (subscription.get("metadata") or {}).get("userId")

        if user_id:
            current = await self.db.get_subscription_for_user(user_id)
            # A user's newer subscription is never replaced by an older one's deletion
            if (
                isinstance(current, FreeSubscription)
                or current.stripe_subscription_id == stripe_subscription_id
            ):
                snapshot = self._snapshot(subscription, user_id, SubscriptionStatus.CANCELED)
                return await self._apply_snapshot(snapshot)

        matched = await self.db.mark_subscription_canceled(stripe_subscription_id)

        if not matched:
            logger.warning(
                "Canceled subscription not found locally",
                stripe_subscription_id=stripe_subscription_id,
            )
            return "processed", f"Subscription {stripe_subscription_id} not found"

        return "processed", f"Subscription {stripe_subscription_id} canceled"

    async def _handle_payment_intent_succeeded(
        self, payment_intent: dict[str, Any]
    ) -> tuple[WebhookStatus, str]:
        """Handle payment_intent.succeeded; only credit purchases change state."""
        metadata = payment_intent.get("metadata") or {}
        if metadata.get("type") != CREDIT_PURCHASE_TYPE:
            return "processed", "Not a credit purchase"

        user_id = metadata.get("userId")
        credits = _parse_credits(metadata.get("credits"))

        if not user_id or credits <= 0:
            raise MalformedEventError("Missing userId or credits in payment intent metadata")

        subscription = await self.db.get_subscription_for_user(user_id)
        if isinstance(subscription, FreeSubscription):
            # Raise so that Stripe retries once the subscription row exists
            raise SubscriptionNotFoundError(
                f"No subscription for user {user_id} - cannot grant credits"
            )

        payment_intent_id = payment_intent["id"]
        amount = payment_intent.get("amount_received") or payment_intent.get("amount") or 0

        try:
            result = await self.ledger.add_credits(
                subscription.id,
                credits,
                external_payment_id=payment_intent_id,
                amount_paid_cents=amount,
                description=f"Purchased {credits} credits for ${amount / 100:.2f}",
            )
        except BillingError as e:
            raise WebhookProcessingError(f"Failed to add credits: {e}") from e

        if not result.applied:
            return "processed", f"Payment {payment_intent_id} already applied"

        return "processed", (
            f"Added {credits} credits to user {user_id} via payment {payment_intent_id}"
        )

"""
Quota evaluation.

Read-only policy decision: may this user start an operation needing
``required_minutes``? Included tier minutes come first, any positive credit
balance unlocks overflow, BYOK users without a subscription are unmetered.
"""

from pydantic import BaseModel

from scribeledger.config import QuotaConfig
from scribeledger.errors import ValidationError
from scribeledger.models.subscription import FreeSubscription
from scribeledger.observability.logging import get_logger
from scribeledger.observability.metrics import track_quota_decision
from scribeledger.storage.database import BillingDatabase

logger = get_logger(__name__)

QUOTA_EXCEEDED = "Quota exceeded"


class QuotaDecision(BaseModel):
    """Outcome of a quota check."""

    allowed: bool
    minutes_required: int
    minutes_remaining: int | None = None
    reason: str | None = None
    is_byok: bool = False
    using_credits: bool = False
    credits_remaining: int | None = None


class QuotaEvaluator:
    """
    Decide whether a request is allowed.

    Store failures propagate: an allow/deny is never assumed.
    """

    def __init__(self, db: BillingDatabase, config: QuotaConfig):
        self.db = db
        self.config = config

    async def check_quota(
        self, user_id: str, required_minutes: int, allow_byok: bool = False
    ) -> QuotaDecision:
        """
        Check quota for an operation.

        Args:
            user_id: Internal user id
            required_minutes: Minutes the operation will consume
            allow_byok: Caller will use the user's own upstream key

        Returns:
            QuotaDecision

        Raises:
            ValidationError: Negative required_minutes
            StorageError: Subscription lookup failed
        """
        if required_minutes < 0:
            raise ValidationError("required_minutes must be >= 0")

        subscription = await self.db.get_subscription_for_user(user_id)

        if isinstance(subscription, FreeSubscription) and allow_byok:
            track_quota_decision("byok")
            return QuotaDecision(
                allowed=True, minutes_required=required_minutes, is_byok=True
            )

        included = self.config.minutes_for_tier(subscription.tier)
        remaining = max(0, included - subscription.minutes_used)

        if remaining >= required_minutes:
            track_quota_decision("included")
            return QuotaDecision(
                allowed=True,
                minutes_remaining=remaining,
                minutes_required=required_minutes,
            )

        if subscription.credits_balance > 0:
            # Deduction amount is not decided here; any positive balance unlocks.
            track_quota_decision("credits")
            return QuotaDecision(
                allowed=True,
                minutes_remaining=remaining,
                minutes_required=required_minutes,
                using_credits=True,
                credits_remaining=subscription.credits_balance,
            )

        track_quota_decision("denied")
        logger.info(
            "Quota exceeded",
            user_id=user_id,
            tier=subscription.tier.value,
            minutes_remaining=remaining,
            minutes_required=required_minutes,
        )
        return QuotaDecision(
            allowed=False,
            reason=QUOTA_EXCEEDED,
            minutes_remaining=remaining,
            minutes_required=required_minutes,
        )

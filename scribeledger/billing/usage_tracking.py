"""
Usage tracking and metering.

Records consumed minutes against a user's subscription. Best-effort: a
failure to record usage is logged and counted, never raised to the caller.

Minutes are billed per started minute: ceil(duration_seconds / 60).
"""

import math
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from scribeledger.config import QuotaConfig
from scribeledger.models.subscription import SubscriptionRecord, SubscriptionTier
from scribeledger.models.usage import OperationType, UsageEvent, UsageSummary, billing_period_for
from scribeledger.observability.logging import get_logger
from scribeledger.observability.metrics import track_usage_failure, track_usage_minutes
from scribeledger.storage.database import BillingDatabase

logger = get_logger(__name__)


def minutes_for_duration(duration_seconds: float) -> int:
    """
    Billable minutes for a duration.

    61s -> 2, 60s -> 1, 0.5s -> 1, 0s -> 0.
    """
    if duration_seconds <= 0:
        return 0
    return max(1, math.ceil(duration_seconds / 60))


class UsageRecorder:
    """
    Persist usage events and increment minutes_used.

    Users without a subscription row are unmetered (free tier / BYOK).
    """

    def __init__(self, db: BillingDatabase, quota_config: QuotaConfig | None = None):
        """
        Initialize usage recorder.

        Args:
            db: Billing database
            quota_config: Tier limits, used by get_usage_summary
        """
        self.db = db
        self.quota_config = quota_config or QuotaConfig()

    async def track_usage(
        self,
        user_id: str,
        operation_type: OperationType | str,
        duration_seconds: float,
        session_id: str | None = None,
    ) -> UsageEvent | None:
        """
        Record usage for a user. Never raises.

        Args:
            user_id: Internal user id
            operation_type: transcription, summarization (or summary) or chat
            duration_seconds: Duration of the processed audio / operation
            session_id: Optional session the usage belongs to

        Returns:
            The inserted UsageEvent, or None when nothing was recorded or an
            unexpected error occurred. If the event row was written but the
            minutes_used increment failed, the event is still returned: the row
            exists and counts towards get_usage_summary.
        """
        try:
            return await self._record(user_id, operation_type, duration_seconds, session_id)
        except Exception:
            track_usage_failure("unexpected")
            logger.error(
                "Usage tracking failed",
                user_id=user_id,
                operation_type=str(operation_type),
                exc_info=True,
            )
            return None

    async def _record(
        self,
        user_id: str,
        operation_type: OperationType | str,
        duration_seconds: float,
        session_id: str | None,
    ) -> UsageEvent | None:
        minutes = minutes_for_duration(duration_seconds)
        if minutes == 0:
            logger.debug(
                "Skipping usage with non-positive duration",
                user_id=user_id,
                duration_seconds=duration_seconds,
            )
            return None

        try:
            operation = OperationType(operation_type)
        except ValueError:
            track_usage_failure("invalid")
            logger.error(
                "Unknown operation type, usage not recorded",
                user_id=user_id,
                operation_type=str(operation_type),
            )
            return None

        try:
            subscription = await self.db.get_subscription_for_user(user_id)
        except Exception:
            track_usage_failure("lookup")
            logger.error("Failed to resolve subscription for usage", user_id=user_id, exc_info=True)
            return None

        if not isinstance(subscription, SubscriptionRecord):
            return None

        now = datetime.now(UTC)
        event = UsageEvent(
            id=str(uuid.uuid4()),
            user_id=user_id,
            operation_type=operation,
            duration_seconds=duration_seconds,
            minutes_consumed=minutes,
            billing_period=billing_period_for(now),
            session_id=session_id,
            created_at=now,
        )

        try:
            await self.db.insert_usage_event(event)
        except Exception:
            track_usage_failure("insert")
            logger.error(
                "Failed to insert usage event",
                user_id=user_id,
                operation_type=operation.value,
                minutes=minutes,
                exc_info=True,
            )
            return None

        try:
            minutes_used = await self.db.increment_minutes_used(subscription.id, minutes)
        except Exception:
            track_usage_failure("increment")
            logger.error(
                "Failed to increment minutes_used",
                user_id=user_id,
                subscription_id=subscription.id,
                minutes=minutes,
                exc_info=True,
            )
            return event

        track_usage_minutes(operation.value, minutes)
        logger.info(
            "Usage tracked",
            user_id=user_id,
            subscription_id=subscription.id,
            operation_type=operation.value,
            minutes=minutes,
            minutes_used=minutes_used,
        )
        return event

    @asynccontextmanager
    async def track_after(
        self,
        user_id: str,
        operation_type: OperationType | str,
        duration_seconds: float,
        session_id: str | None = None,
    ) -> AsyncIterator[None]:
        """
        Record usage once the wrapped block completes.

        Nothing is recorded if the block raises.

        Usage:
            async with recorder.track_after(user_id, OperationType.TRANSCRIPTION, 95.0):
                await transcribe(...)
        """
        yield
        await self.track_usage(user_id, operation_type, duration_seconds, session_id)

    async def get_usage_summary(self, user_id: str) -> UsageSummary:
        """
        Usage for the current billing period.

        The paid tier counts only while the subscription is active or
        trialing; otherwise the free allowance applies.

        Raises:
            StorageError: If the store cannot be read
        """
        billing_period = billing_period_for(datetime.now(UTC))

        subscription = await self.db.get_subscription_for_user(user_id)
        tier = (
            subscription.tier if subscription.is_in_good_standing() else SubscriptionTier.FREE
        )
        limit = self.quota_config.minutes_for_tier(tier)

        total_minutes, event_count = await self.db.sum_usage_for_period(user_id, billing_period)

        return UsageSummary(
            total_minutes=total_minutes,
            event_count=event_count,
            billing_period=billing_period,
            tier=tier.value,
            limit=limit,
            remaining_minutes=max(0, limit - total_minutes),
            is_over_limit=total_minutes >= limit,
        )

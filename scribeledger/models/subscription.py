"""
Subscription data models.

A user either has a persisted ``SubscriptionRecord`` or no row at all. The
latter is modeled as ``FreeSubscription``, a value that is never written to
the store. Callers receive ``Subscription`` (the union) and branch on
``is_persisted``.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field


class SubscriptionTier(str, Enum):
    """Subscription plan defining included monthly minutes."""

    FREE = "free"  # 60 min/month
    PRO = "pro"  # 500 min/month
    TEAM = "team"  # 2000 min/month


class BillingInterval(str, Enum):
    """Billing cadence of a paid plan."""

    MONTH = "month"
    YEAR = "year"


class SubscriptionStatus(str, Enum):
    """Stripe subscription status."""

    ACTIVE = "active"
    CANCELED = "canceled"
    PAST_DUE = "past_due"
    TRIALING = "trialing"
    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"
    UNPAID = "unpaid"
    PAUSED = "paused"


class SubscriptionRecord(BaseModel):
    """Durable per-user subscription state."""

    kind: Literal["persisted"] = "persisted"

    id: str
    user_id: str
    tier: SubscriptionTier = Field(default=SubscriptionTier.FREE)
    status: SubscriptionStatus = Field(default=SubscriptionStatus.ACTIVE)

    current_period_start: datetime | None = Field(default=None)
    current_period_end: datetime | None = Field(default=None)
    cancel_at_period_end: bool = Field(default=False)

    minutes_used: int = Field(default=0, ge=0)
    credits_balance: int = Field(default=0, ge=0)

    stripe_subscription_id: str | None = Field(default=None)
    stripe_customer_id: str | None = Field(default=None)

    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_persisted(self) -> bool:
        return True

    def is_in_good_standing(self) -> bool:
        """Active or trialing subscriptions count towards their paid tier."""
        return self.status in (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING)


class FreeSubscription(BaseModel):
    """
    Free tier for a user with no subscription row.

    Unmetered when the caller brings their own upstream key (BYOK).
    """

    kind: Literal["free"] = "free"

    user_id: str
    tier: SubscriptionTier = Field(default=SubscriptionTier.FREE)
    status: SubscriptionStatus = Field(default=SubscriptionStatus.ACTIVE)
    cancel_at_period_end: bool = Field(default=False)
    minutes_used: int = Field(default=0)
    credits_balance: int = Field(default=0)

    @property
    def is_persisted(self) -> bool:
        return False

    def is_in_good_standing(self) -> bool:
        return True


Subscription = FreeSubscription | SubscriptionRecord


class SubscriptionSnapshot(BaseModel):
    """
    Full current state of a subscription as reported by the provider.

    Input to the upsert keyed by ``user_id``. Counters are not part of the
    snapshot and are never overwritten by it.
    """

    user_id: str
    tier: SubscriptionTier
    status: SubscriptionStatus
    stripe_subscription_id: str
    stripe_customer_id: str | None = Field(default=None)
    current_period_start: datetime | None = Field(default=None)
    current_period_end: datetime | None = Field(default=None)
    cancel_at_period_end: bool = Field(default=False)

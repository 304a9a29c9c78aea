"""
Data models for subscriptions, usage events and the credit ledger.
"""

from scribeledger.models.subscription import (
    FreeSubscription,
    Subscription,
    SubscriptionRecord,
    SubscriptionSnapshot,
    SubscriptionStatus,
    SubscriptionTier,
)
from scribeledger.models.usage import (
    CreditTransaction,
    OperationType,
    TransactionType,
    UsageEvent,
    UsageSummary,
    billing_period_for,
)

__all__ = [
    "FreeSubscription",
    "Subscription",
    "SubscriptionRecord",
    "SubscriptionSnapshot",
    "SubscriptionStatus",
    "SubscriptionTier",
    "CreditTransaction",
    "OperationType",
    "TransactionType",
    "UsageEvent",
    "UsageSummary",
    "billing_period_for",
]

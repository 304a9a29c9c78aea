"""
Billing, metering and credits.

Components:
- Quota evaluation (included minutes, credits overflow, BYOK)
- Usage tracking (per-minute metering)
- Credit ledger (atomic, idempotent grants)
- Credit purchase intents and subscription checkout
- Stripe webhook reconciliation
"""

from scribeledger.billing.checkout import SubscriptionCheckoutFactory
from scribeledger.billing.ledger import CreditLedger
from scribeledger.billing.payment_intents import PaymentIntentFactory
from scribeledger.billing.quota import QuotaDecision, QuotaEvaluator
from scribeledger.billing.stripe_service import StripeService
from scribeledger.billing.usage_tracking import UsageRecorder
from scribeledger.billing.webhooks import SubscriptionReconciler

__all__ = [
    "CreditLedger",
    "PaymentIntentFactory",
    "QuotaDecision",
    "QuotaEvaluator",
    "StripeService",
    "SubscriptionCheckoutFactory",
    "SubscriptionReconciler",
    "UsageRecorder",
]

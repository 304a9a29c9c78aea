"""
API routers for the billing service.

Routers:
- checkout: Subscription checkout sessions
- credits: Credit balance and pack purchases
- subscriptions: Current subscription view
- usage: Quota checks and current period usage
- webhooks: Stripe event intake
"""

from scribeledger.routers.checkout import router as checkout_router
from scribeledger.routers.credits import router as credits_router
from scribeledger.routers.subscriptions import router as subscriptions_router
from scribeledger.routers.usage import router as usage_router
from scribeledger.routers.webhooks import router as webhooks_router

__all__ = [
    "checkout_router",
    "credits_router",
    "subscriptions_router",
    "usage_router",
    "webhooks_router",
]

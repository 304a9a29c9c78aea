"""
Subscription endpoints.
"""

from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from scribeledger.auth import AuthenticatedUser, get_authenticated_user
from scribeledger.dependencies import get_billing_db
from scribeledger.models.subscription import SubscriptionRecord
from scribeledger.storage.database import BillingDatabase

router = APIRouter(prefix="/subscriptions", tags=["Subscriptions"])


class SubscriptionResponse(BaseModel):
    """Subscription view; ``id`` is null for users on the implicit free tier."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str | None
    tier: str
    status: str
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    cancel_at_period_end: bool
    minutes_used: int
    credits_balance: int


@router.get("/current", response_model=SubscriptionResponse)
async def get_current_subscription(
    user: AuthenticatedUser = Depends(get_authenticated_user),
    db: BillingDatabase = Depends(get_billing_db),
) -> SubscriptionResponse:
    """Get the caller's subscription, or the free tier view when none exists."""
    subscription = await db.get_subscription_for_user(user.user_id)

    if isinstance(subscription, SubscriptionRecord):
        return SubscriptionResponse(
            id=subscription.id,
            tier=subscription.tier.value,
            status=subscription.status.value,
            current_period_start=subscription.current_period_start,
            current_period_end=subscription.current_period_end,
            cancel_at_period_end=subscription.cancel_at_period_end,
            minutes_used=subscription.minutes_used,
            credits_balance=subscription.credits_balance,
        )

    return SubscriptionResponse(
        id=None,
        tier=subscription.tier.value,
        status=subscription.status.value,
        cancel_at_period_end=False,
        minutes_used=0,
        credits_balance=0,
    )

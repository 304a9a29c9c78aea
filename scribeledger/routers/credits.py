"""
Credit balance and purchase endpoints.

Security:
- Caller identity from the upstream gateway
- Purchases rate limited per user
- Credits are never granted here; only the Stripe webhook grants them
"""

from datetime import datetime

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from scribeledger.auth import AuthenticatedUser, get_authenticated_user
from scribeledger.billing.ledger import CreditLedger
from scribeledger.billing.payment_intents import PaymentIntentFactory
from scribeledger.dependencies import get_credit_ledger, get_payment_intent_factory
from scribeledger.rate_limits import (
    bind_rate_limits,
    limiter,
    purchase_rate_limit,
    rate_limits_disabled,
)

router = APIRouter(prefix="/credits", tags=["Credits"])


# Response models
class CreditHistoryEntry(BaseModel):
    id: str
    type: str
    amount: int
    description: str | None
    created_at: datetime


class CreditBalanceResponse(BaseModel):
    """Credit balance with optional recent history (newest first)."""

    credits: int
    history: list[CreditHistoryEntry]


class PurchaseRequest(BaseModel):
    credits: int = Field(..., description="Pack size: 50, 175, 400 or 750")


class PurchaseResponse(BaseModel):
    """Client secret for completing the payment in the browser."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    payment_intent_id: str
    client_secret: str
    amount: int
    credits: int


@router.get("/balance", response_model=CreditBalanceResponse)
async def get_credit_balance(
    include_history: bool = False,
    user: AuthenticatedUser = Depends(get_authenticated_user),
    ledger: CreditLedger = Depends(get_credit_ledger),
) -> CreditBalanceResponse:
    """
    Get credit balance for the caller.

    Users without a subscription get a zero balance and no history.
    """
    balance = await ledger.get_balance(user.user_id, include_history=include_history)

    return CreditBalanceResponse(
        credits=balance.credits,
        history=[
            CreditHistoryEntry(
                id=tx.id,
                type=tx.transaction_type.value,
                amount=tx.amount,
                description=tx.description,
                created_at=tx.created_at,
            )
            for tx in balance.history
        ],
    )


@router.post(
    "/purchase", response_model=PurchaseResponse, dependencies=[Depends(bind_rate_limits)]
)
@limiter.limit(purchase_rate_limit, exempt_when=rate_limits_disabled)
async def purchase_credits(
    request: Request,  # Required by slowapi
    body: PurchaseRequest,
    user: AuthenticatedUser = Depends(get_authenticated_user),
    factory: PaymentIntentFactory = Depends(get_payment_intent_factory),
) -> PurchaseResponse:
    """
    Start a credit pack purchase.

    Raises:
        400: Pack size not in the catalog
        429: Purchase rate limit exceeded
        500: Stripe failure
    """
    intent = await factory.create_credit_purchase_intent(
        user_id=user.user_id,
        clerk_id=user.external_id,
        credits_requested=body.credits,
    )

    return PurchaseResponse(
        payment_intent_id=intent.payment_intent_id,
        client_secret=intent.client_secret,
        amount=intent.amount,
        credits=intent.credits,
    )

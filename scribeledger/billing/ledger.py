"""
Credit ledger.

Every balance change is one store transaction that writes the signed ledger
row and moves credits_balance together, so the signed sum of a
subscription's ledger always equals its balance.

Purchases are idempotent on the external payment id: applying the same
Stripe payment twice grants credits once.
"""

from pydantic import BaseModel

from scribeledger.errors import ValidationError
from scribeledger.models.subscription import FreeSubscription
from scribeledger.models.usage import CreditTransaction, TransactionType
from scribeledger.observability.logging import get_logger
from scribeledger.observability.metrics import track_credit_grant
from scribeledger.storage.database import BillingDatabase

logger = get_logger(__name__)

HISTORY_LIMIT = 10


class LedgerEntryResult(BaseModel):
    """Result of a ledger mutation."""

    applied: bool
    balance: int
    transaction: CreditTransaction | None = None


class CreditBalance(BaseModel):
    """Current balance plus optional recent history."""

    credits: int
    history: list[CreditTransaction] = []


class CreditLedger:
    """
    Atomic credit balance mutation with an append-only audit trail.
    """

    def __init__(self, db: BillingDatabase):
        self.db = db

    async def add_credits(
        self,
        subscription_id: str,
        credits: int,
        external_payment_id: str,
        amount_paid_cents: int | None = None,
        description: str | None = None,
    ) -> LedgerEntryResult:
        """
        Grant purchased credits.

        Args:
            subscription_id: Owning subscription
            credits: Credits to add (positive)
            external_payment_id: Stripe payment intent id (idempotency key)
            amount_paid_cents: Amount charged
            description: Ledger description

        Returns:
            LedgerEntryResult (applied=False when the payment was already granted)

        Raises:
            ValidationError: Non-positive credits or missing payment id
            SubscriptionNotFoundError: Subscription does not exist (retryable)
            StorageError: Transaction failed; nothing was applied
        """
        if credits <= 0:
            raise ValidationError("credits must be positive")
        if not external_payment_id:
            raise ValidationError("external_payment_id is required for purchases")

        transaction, balance = await self.db.apply_credit_transaction(
            subscription_id,
            credits,
            TransactionType.PURCHASE,
            external_payment_id=external_payment_id,
            amount_paid_cents=amount_paid_cents,
            description=description,
        )
        applied = transaction is not None
        track_credit_grant(credits, applied)

        if applied:
            logger.info(
                "Credits granted",
                subscription_id=subscription_id,
                credits=credits,
                external_payment_id=external_payment_id,
                balance=balance,
            )
        else:
            logger.info(
                "Credit grant already applied, skipping",
                subscription_id=subscription_id,
                external_payment_id=external_payment_id,
                balance=balance,
            )

        return LedgerEntryResult(applied=applied, balance=balance, transaction=transaction)

    async def deduct_credits(
        self, subscription_id: str, credits: int, description: str | None = None
    ) -> LedgerEntryResult:
        """
        Consume credits as a negative ``usage`` entry.

        Raises:
            ValidationError: Non-positive credits
            InsufficientCreditsError: Balance lower than ``credits``
            SubscriptionNotFoundError: Subscription does not exist
        """
        if credits <= 0:
            raise ValidationError("credits must be positive")

        transaction, balance = await self.db.apply_credit_transaction(
            subscription_id,
            -credits,
            TransactionType.USAGE,
            description=description,
        )
        logger.info(
            "Credits deducted",
            subscription_id=subscription_id,
            credits=credits,
            balance=balance,
        )
        return LedgerEntryResult(applied=True, balance=balance, transaction=transaction)

    async def get_balance(self, user_id: str, include_history: bool = False) -> CreditBalance:
        """
        Credit balance for a user; zero with no history when no subscription exists.
        """
        subscription = await self.db.get_subscription_for_user(user_id)
        if isinstance(subscription, FreeSubscription):
            return CreditBalance(credits=0)

        history: list[CreditTransaction] = []
        if include_history:
            history = await self.db.list_credit_transactions(user_id, limit=HISTORY_LIMIT)

        return CreditBalance(credits=subscription.credits_balance, history=history)

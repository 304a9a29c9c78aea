"""
Usage and credit ledger data models.
"""

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, Field


class OperationType(str, Enum):
    """Metered operations."""

    TRANSCRIPTION = "transcription"
    SUMMARIZATION = "summarization"
    CHAT = "chat"

    @classmethod
    def _missing_(cls, value: object) -> "OperationType | None":
        # Accepted alias for summarization
        if value == "summary":
            return cls.SUMMARIZATION
        return None


class TransactionType(str, Enum):
    """Credit ledger entry types."""

    PURCHASE = "purchase"
    USAGE = "usage"
    REFUND = "refund"


class UsageEvent(BaseModel):
    """
    One recorded consumption. Immutable once inserted.
    """

    model_config = {"frozen": True}

    id: str
    user_id: str
    operation_type: OperationType
    duration_seconds: float = Field(..., gt=0)
    minutes_consumed: int = Field(..., gt=0)
    billing_period: str = Field(..., description="First day of the UTC month, YYYY-MM-01")
    session_id: str | None = Field(default=None)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class CreditTransaction(BaseModel):
    """
    Append-only credit ledger entry.

    The signed amounts of a subscription's entries sum to its credits_balance.
    """

    model_config = {"frozen": True}

    id: str
    subscription_id: str
    user_id: str
    transaction_type: TransactionType
    amount: int
    balance_after: int = Field(..., ge=0)
    external_payment_id: str | None = Field(default=None)
    amount_paid_cents: int | None = Field(default=None, ge=0)
    description: str | None = Field(default=None)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class UsageSummary(BaseModel):
    """Usage totals for the current billing period."""

    total_minutes: int
    event_count: int
    billing_period: str
    tier: str
    limit: int
    remaining_minutes: int
    is_over_limit: bool


def billing_period_for(moment: datetime) -> str:
    """Billing period key (first day of the UTC month) for a timestamp."""
    moment = moment.astimezone(UTC)
    return f"{moment.year:04d}-{moment.month:02d}-01"

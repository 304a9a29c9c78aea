"""
Tests for the credit ledger and its storage guarantees.

Invariant checked throughout: the signed sum of a subscription's ledger
equals its credits_balance.
"""

import asyncio
import sqlite3
import threading

import pytest

from scribeledger.errors import (
    InsufficientCreditsError,
    SubscriptionConflictError,
    SubscriptionNotFoundError,
    ValidationError,
)
from scribeledger.models.subscription import (
    FreeSubscription,
    SubscriptionSnapshot,
    SubscriptionStatus,
    SubscriptionTier,
)
from scribeledger.models.usage import TransactionType


async def assert_ledger_reconciles(db, subscription_id: str) -> None:
    subscription = await db.get_subscription(subscription_id)
    assert await db.sum_credit_transactions(subscription_id) == subscription.credits_balance


class TestAddCredits:
    """Purchase grants."""

    @pytest.mark.asyncio
    async def test_grant_updates_balance_and_writes_row(self, ledger, seed_subscription, db):
        sub = await seed_subscription("user_1")

        result = await ledger.add_credits(
            sub.id,
            175,
            external_payment_id="pi_1",
            amount_paid_cents=1500,
            description="Purchased 175 credits for $15.00",
        )

        assert result.applied is True
        assert result.balance == 175
        assert result.transaction.transaction_type == TransactionType.PURCHASE
        assert result.transaction.amount == 175
        assert result.transaction.balance_after == 175
        assert result.transaction.amount_paid_cents == 1500
        assert result.transaction.user_id == "user_1"
        await assert_ledger_reconciles(db, sub.id)

    @pytest.mark.asyncio
    async def test_same_payment_id_is_applied_once(self, ledger, seed_subscription, db):
        sub = await seed_subscription("user_1")

        first = await ledger.add_credits(sub.id, 400, external_payment_id="pi_dup")
        second = await ledger.add_credits(sub.id, 400, external_payment_id="pi_dup")

        assert first.applied is True
        assert second.applied is False
        assert second.balance == 400
        assert second.transaction is None

        after = await db.get_subscription(sub.id)
        assert after.credits_balance == 400
        assert len(await db.list_credit_transactions("user_1")) == 1
        await assert_ledger_reconciles(db, sub.id)

    @pytest.mark.asyncio
    async def test_distinct_payments_accumulate(self, ledger, seed_subscription, db):
        sub = await seed_subscription("user_1")

        await ledger.add_credits(sub.id, 50, external_payment_id="pi_a")
        result = await ledger.add_credits(sub.id, 175, external_payment_id="pi_b")

        assert result.balance == 225
        await assert_ledger_reconciles(db, sub.id)

    @pytest.mark.asyncio
    async def test_unknown_subscription_raises_retryable_error(self, ledger):
        with pytest.raises(SubscriptionNotFoundError):
            await ledger.add_credits("missing", 50, external_payment_id="pi_x")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("credits", [0, -5])
    async def test_non_positive_credits_rejected(self, ledger, seed_subscription, credits):
        sub = await seed_subscription("user_1")

        with pytest.raises(ValidationError):
            await ledger.add_credits(sub.id, credits, external_payment_id="pi_x")

    @pytest.mark.asyncio
    async def test_missing_payment_id_rejected(self, ledger, seed_subscription):
        sub = await seed_subscription("user_1")

        with pytest.raises(ValidationError):
            await ledger.add_credits(sub.id, 50, external_payment_id="")

    @pytest.mark.asyncio
    async def test_concurrent_duplicate_grants_apply_once(self, ledger, seed_subscription, db):
        sub = await seed_subscription("user_1")
        results = []

        def grant():
            results.append(
                asyncio.run(ledger.add_credits(sub.id, 750, external_payment_id="pi_race"))
            )

        threads = [threading.Thread(target=grant) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sum(1 for result in results if result.applied) == 1
        after = await db.get_subscription(sub.id)
        assert after.credits_balance == 750
        await assert_ledger_reconciles(db, sub.id)


class TestDeductCredits:
    """Usage deductions."""

    @pytest.mark.asyncio
    async def test_deduction_writes_negative_usage_row(self, ledger, seed_subscription, db):
        sub = await seed_subscription("user_1", credits_balance=100)

        result = await ledger.deduct_credits(sub.id, 30, description="Overflow minutes")

        assert result.balance == 70
        assert result.transaction.transaction_type == TransactionType.USAGE
        assert result.transaction.amount == -30
        assert result.transaction.balance_after == 70
        await assert_ledger_reconciles(db, sub.id)

    @pytest.mark.asyncio
    async def test_deduction_cannot_go_negative(self, ledger, seed_subscription, db):
        sub = await seed_subscription("user_1", credits_balance=10)

        with pytest.raises(InsufficientCreditsError):
            await ledger.deduct_credits(sub.id, 11)

        after = await db.get_subscription(sub.id)
        assert after.credits_balance == 10
        await assert_ledger_reconciles(db, sub.id)

    @pytest.mark.asyncio
    async def test_insufficient_credits_is_a_validation_error(self, ledger, seed_subscription):
        sub = await seed_subscription("user_1")

        with pytest.raises(ValidationError):
            await ledger.deduct_credits(sub.id, 1)


class TestGetBalance:
    """Balance and history reads."""

    @pytest.mark.asyncio
    async def test_no_subscription_has_zero_balance(self, ledger):
        balance = await ledger.get_balance("nobody", include_history=True)

        assert balance.credits == 0
        assert balance.history == []

    @pytest.mark.asyncio
    async def test_history_only_when_requested(self, ledger, seed_subscription):
        sub = await seed_subscription("user_1")
        await ledger.add_credits(sub.id, 50, external_payment_id="pi_1")

        without = await ledger.get_balance("user_1")
        with_history = await ledger.get_balance("user_1", include_history=True)

        assert without.credits == 50
        assert without.history == []
        assert len(with_history.history) == 1

    @pytest.mark.asyncio
    async def test_history_is_newest_first_and_capped(self, ledger, seed_subscription):
        sub = await seed_subscription("user_1")
        for index in range(12):
            await ledger.add_credits(sub.id, 50, external_payment_id=f"pi_{index}")

        balance = await ledger.get_balance("user_1", include_history=True)

        assert balance.credits == 600
        assert len(balance.history) == 10
        assert [tx.external_payment_id for tx in balance.history[:2]] == ["pi_11", "pi_10"]


class TestStorageGuarantees:
    """Constraints enforced by the schema itself."""

    @pytest.mark.asyncio
    async def test_unique_index_rejects_duplicate_payment_rows(self, seed_subscription, db):
        sub = await seed_subscription("user_1")
        await db.apply_credit_transaction(
            sub.id, 50, TransactionType.PURCHASE, external_payment_id="pi_unique"
        )

        conn = sqlite3.connect(str(db.db_path))
        try:
            with pytest.raises(sqlite3.IntegrityError):
                conn.execute(
                    """
                    INSERT INTO credit_transactions (
                        id, subscription_id, user_id, transaction_type, amount,
                        balance_after, external_payment_id, created_at
                    ) VALUES ('tx_dup', ?, 'user_1', 'purchase', 50, 100, 'pi_unique', 'now')
                    """,
                    (sub.id,),
                )
        finally:
            conn.close()

    @pytest.mark.asyncio
    async def test_rows_without_payment_id_are_not_constrained(self, seed_subscription, db):
        sub = await seed_subscription("user_1", credits_balance=100)

        await db.apply_credit_transaction(sub.id, -10, TransactionType.USAGE)
        await db.apply_credit_transaction(sub.id, -10, TransactionType.USAGE)

        after = await db.get_subscription(sub.id)
        assert after.credits_balance == 80
        await assert_ledger_reconciles(db, sub.id)

    @pytest.mark.asyncio
    async def test_concurrent_increments_are_not_lost(self, seed_subscription, db):
        sub = await seed_subscription("user_1")

        def increment():
            for _ in range(25):
                asyncio.run(db.increment_minutes_used(sub.id, 2))

        threads = [threading.Thread(target=increment) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        after = await db.get_subscription(sub.id)
        assert after.minutes_used == 4 * 25 * 2

    @pytest.mark.asyncio
    async def test_reset_minutes_used(self, seed_subscription, db):
        sub = await seed_subscription("user_1", minutes_used=321)

        assert await db.reset_minutes_used(sub.id) is True

        after = await db.get_subscription(sub.id)
        assert after.minutes_used == 0
        assert after.credits_balance == 0

    @pytest.mark.asyncio
    async def test_subscription_id_cannot_move_between_users(self, seed_subscription, db):
        await seed_subscription("user_1", stripe_subscription_id="sub_shared")

        with pytest.raises(SubscriptionConflictError):
            await db.upsert_subscription(
                SubscriptionSnapshot(
                    user_id="user_2",
                    tier=SubscriptionTier.PRO,
                    status=SubscriptionStatus.ACTIVE,
                    stripe_subscription_id="sub_shared",
                )
            )

        assert isinstance(await db.get_subscription_for_user("user_2"), FreeSubscription)

    @pytest.mark.asyncio
    async def test_canceled_subscription_is_not_reactivated(self, seed_subscription, db):
        sub = await seed_subscription(
            "user_1", status=SubscriptionStatus.CANCELED, stripe_subscription_id="sub_done"
        )

        record = await db.upsert_subscription(
            SubscriptionSnapshot(
                user_id="user_1",
                tier=SubscriptionTier.TEAM,
                status=SubscriptionStatus.ACTIVE,
                stripe_subscription_id="sub_done",
            )
        )

        assert record.id == sub.id
        assert record.status == SubscriptionStatus.CANCELED
        assert record.tier == SubscriptionTier.PRO

"""
Tests for usage metering.

Usage tracking is best-effort: store failures are logged and swallowed.
"""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, patch

import pytest

from scribeledger.billing.usage_tracking import UsageRecorder, minutes_for_duration
from scribeledger.config import QuotaConfig
from scribeledger.errors import StorageError
from scribeledger.models.subscription import (
    FreeSubscription,
    SubscriptionRecord,
    SubscriptionStatus,
    SubscriptionTier,
)
from scribeledger.models.usage import OperationType, billing_period_for


@pytest.fixture
def recorder(db) -> UsageRecorder:
    return UsageRecorder(db, QuotaConfig())


class TestMinutesForDuration:
    """Per-started-minute rounding."""

    @pytest.mark.parametrize(
        ("seconds", "minutes"),
        [(0.5, 1), (1, 1), (59.9, 1), (60, 1), (61, 2), (120, 2), (300, 5), (3601, 61)],
    )
    def test_rounds_up_to_whole_minutes(self, seconds, minutes):
        assert minutes_for_duration(seconds) == minutes

    @pytest.mark.parametrize("seconds", [0, -1, -60.5])
    def test_non_positive_duration_is_zero(self, seconds):
        assert minutes_for_duration(seconds) == 0


def test_billing_period_is_first_of_utc_month():
    assert billing_period_for(datetime(2026, 3, 31, 23, 59, tzinfo=UTC)) == "2026-03-01"
    assert billing_period_for(datetime(2026, 12, 1, 0, 0, tzinfo=UTC)) == "2026-12-01"


@pytest.mark.asyncio
async def test_track_usage_records_event_and_increments(recorder, seed_subscription, db):
    sub = await seed_subscription("user_1", minutes_used=10)

    event = await recorder.track_usage("user_1", OperationType.TRANSCRIPTION, 61, session_id="s1")

    assert event is not None
    assert event.minutes_consumed == 2
    assert event.session_id == "s1"
    assert event.billing_period == billing_period_for(datetime.now(UTC))

    after = await db.get_subscription(sub.id)
    assert after.minutes_used == 12

    total, count = await db.sum_usage_for_period("user_1", event.billing_period)
    assert (total, count) == (2, 1)


@pytest.mark.asyncio
async def test_sequential_tracking_accumulates(recorder, seed_subscription, db):
    sub = await seed_subscription("user_1")

    for seconds in (60, 61, 300):
        await recorder.track_usage("user_1", OperationType.SUMMARIZATION, seconds)

    after = await db.get_subscription(sub.id)
    assert after.minutes_used == 1 + 2 + 5


@pytest.mark.asyncio
async def test_no_subscription_is_a_no_op():
    db = AsyncMock()
    db.get_subscription_for_user.return_value = FreeSubscription(user_id="free_user")
    recorder = UsageRecorder(db)

    result = await recorder.track_usage("free_user", OperationType.CHAT, 120)

    assert result is None
    db.insert_usage_event.assert_not_awaited()
    db.increment_minutes_used.assert_not_awaited()


@pytest.mark.asyncio
async def test_no_subscription_writes_nothing_to_store(recorder, db):
    result = await recorder.track_usage("free_user", OperationType.TRANSCRIPTION, 120)

    assert result is None
    total, count = await db.sum_usage_for_period("free_user", billing_period_for(datetime.now(UTC)))
    assert (total, count) == (0, 0)


@pytest.mark.asyncio
async def test_zero_duration_records_nothing():
    db = AsyncMock()
    recorder = UsageRecorder(db)

    result = await recorder.track_usage("user_1", OperationType.TRANSCRIPTION, 0)

    assert result is None
    db.get_subscription_for_user.assert_not_awaited()


def _record(**overrides) -> SubscriptionRecord:
    values = {"id": "sub_1", "user_id": "user_1", "tier": SubscriptionTier.PRO}
    values.update(overrides)
    return SubscriptionRecord(**values)


@pytest.mark.asyncio
async def test_lookup_failure_is_swallowed():
    db = AsyncMock()
    db.get_subscription_for_user.side_effect = StorageError("disk I/O error")
    recorder = UsageRecorder(db)

    result = await recorder.track_usage("user_1", OperationType.TRANSCRIPTION, 60)

    assert result is None
    db.insert_usage_event.assert_not_awaited()


@pytest.mark.asyncio
async def test_insert_failure_skips_increment():
    db = AsyncMock()
    db.get_subscription_for_user.return_value = _record()
    db.insert_usage_event.side_effect = StorageError("constraint failed")
    recorder = UsageRecorder(db)

    result = await recorder.track_usage("user_1", OperationType.TRANSCRIPTION, 60)

    assert result is None
    db.increment_minutes_used.assert_not_awaited()


@pytest.mark.asyncio
async def test_increment_failure_is_swallowed():
    db = AsyncMock()
    db.get_subscription_for_user.return_value = _record()
    db.increment_minutes_used.side_effect = StorageError("database is locked")
    recorder = UsageRecorder(db)

    result = await recorder.track_usage("user_1", OperationType.TRANSCRIPTION, 90)

    assert result is not None
    assert result.minutes_consumed == 2
    db.increment_minutes_used.assert_awaited_once_with("sub_1", 2)


class TestTrackAfter:
    """Usage recorded only when the wrapped operation succeeds."""

    @pytest.mark.asyncio
    async def test_records_after_successful_block(self, recorder, seed_subscription, db):
        sub = await seed_subscription("user_1")

        async with recorder.track_after("user_1", OperationType.TRANSCRIPTION, 150):
            pass

        after = await db.get_subscription(sub.id)
        assert after.minutes_used == 3

    @pytest.mark.asyncio
    async def test_nothing_recorded_when_block_raises(self, recorder, seed_subscription, db):
        sub = await seed_subscription("user_1")

        with pytest.raises(RuntimeError):
            async with recorder.track_after("user_1", OperationType.TRANSCRIPTION, 150):
                raise RuntimeError("provider failed")

        after = await db.get_subscription(sub.id)
        assert after.minutes_used == 0


class TestUsageSummary:
    """Current billing period totals."""

    @pytest.mark.asyncio
    async def test_summary_for_active_pro(self, recorder, seed_subscription):
        await seed_subscription("user_1", tier=SubscriptionTier.PRO)
        await recorder.track_usage("user_1", OperationType.TRANSCRIPTION, 600)
        await recorder.track_usage("user_1", OperationType.CHAT, 30)

        summary = await recorder.get_usage_summary("user_1")

        assert summary.total_minutes == 11
        assert summary.event_count == 2
        assert summary.tier == "pro"
        assert summary.limit == 500
        assert summary.remaining_minutes == 489
        assert summary.is_over_limit is False
        assert summary.billing_period == billing_period_for(datetime.now(UTC))

    @pytest.mark.asyncio
    async def test_inactive_subscription_falls_back_to_free_limit(
        self, recorder, seed_subscription
    ):
        await seed_subscription(
            "user_1", tier=SubscriptionTier.TEAM, status=SubscriptionStatus.PAST_DUE
        )

        summary = await recorder.get_usage_summary("user_1")

        assert summary.tier == "free"
        assert summary.limit == 60

    @pytest.mark.asyncio
    async def test_trialing_counts_as_paid_tier(self, recorder, seed_subscription):
        await seed_subscription(
            "user_1", tier=SubscriptionTier.TEAM, status=SubscriptionStatus.TRIALING
        )

        summary = await recorder.get_usage_summary("user_1")

        assert summary.tier == "team"
        assert summary.limit == 2000

    @pytest.mark.asyncio
    async def test_over_limit_at_allowance(self, db, seed_subscription):
        await seed_subscription("user_1", tier=SubscriptionTier.PRO)
        recorder = UsageRecorder(db, QuotaConfig(pro_minutes=5))
        await recorder.track_usage("user_1", OperationType.TRANSCRIPTION, 300)

        summary = await recorder.get_usage_summary("user_1")

        assert summary.remaining_minutes == 0
        assert summary.is_over_limit is True

    @pytest.mark.asyncio
    async def test_user_without_subscription(self, recorder):
        summary = await recorder.get_usage_summary("nobody")

        assert summary.total_minutes == 0
        assert summary.event_count == 0
        assert summary.tier == "free"
        assert summary.remaining_minutes == 60


class TestOperationTypeInput:
    """Operation types arrive as enum members or plain strings."""

    @pytest.mark.asyncio
    async def test_plain_string_operation_type(self, recorder, seed_subscription, db):
        sub = await seed_subscription("user_1")

        event = await recorder.track_usage("user_1", "transcription", 125)

        assert event is not None
        assert event.operation_type == OperationType.TRANSCRIPTION
        after = await db.get_subscription(sub.id)
        assert after.minutes_used == 3

    @pytest.mark.asyncio
    async def test_summary_alias(self, recorder, seed_subscription):
        await seed_subscription("user_1")

        event = await recorder.track_usage("user_1", "summary", 30)

        assert event.operation_type == OperationType.SUMMARIZATION

    @pytest.mark.asyncio
    async def test_unknown_operation_type_is_swallowed(self, recorder, seed_subscription, db):
        sub = await seed_subscription("user_1")

        event = await recorder.track_usage("user_1", "translation", 60)

        assert event is None
        after = await db.get_subscription(sub.id)
        assert after.minutes_used == 0
        total, count = await db.sum_usage_for_period("user_1", billing_period_for(datetime.now(UTC)))
        assert (total, count) == (0, 0)

    @pytest.mark.asyncio
    async def test_track_after_with_unknown_type_does_not_raise(self, recorder, seed_subscription):
        await seed_subscription("user_1")

        async with recorder.track_after("user_1", "translation", 60):
            pass

    @pytest.mark.asyncio
    async def test_unexpected_error_is_swallowed(self):
        db = AsyncMock()
        db.get_subscription_for_user.return_value = _record()
        db.insert_usage_event.return_value = None
        db.increment_minutes_used.return_value = 1
        recorder = UsageRecorder(db)

        with patch(
            "scribeledger.billing.usage_tracking.track_usage_minutes",
            side_effect=RuntimeError("metrics registry broken"),
        ):
            result = await recorder.track_usage("user_1", OperationType.CHAT, 30)

        assert result is None

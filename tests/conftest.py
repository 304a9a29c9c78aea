"""
Pytest configuration and fixtures.

Provides shared fixtures for:
- Test settings (Stripe keys, price ids, temp database path)
- A real SQLite billing database in tmp_path
- Subscription seeding
- FastAPI test client wired through create_app
"""

from collections.abc import Callable
from typing import Any

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from stripe_fixtures import PRICE_PRO_MONTHLY, PRICE_TEAM_MONTHLY, WEBHOOK_SECRET

from scribeledger.billing.ledger import CreditLedger
from scribeledger.billing.stripe_service import StripeService
from scribeledger.config import (
    LoggingConfig,
    QuotaConfig,
    RateLimitConfig,
    Settings,
    StorageConfig,
    StripeConfig,
)
from scribeledger.main import create_app
from scribeledger.models.subscription import (
    SubscriptionRecord,
    SubscriptionSnapshot,
    SubscriptionStatus,
    SubscriptionTier,
)
from scribeledger.models.usage import TransactionType
from scribeledger.rate_limits import limiter
from scribeledger.storage.database import BillingDatabase


@pytest.fixture
def stripe_config() -> StripeConfig:
    return StripeConfig(
        api_key="sk_test_12345",
        webhook_secret=WEBHOOK_SECRET,
        price_pro_monthly=PRICE_PRO_MONTHLY,
        price_team_monthly=PRICE_TEAM_MONTHLY,
    )


@pytest.fixture
def test_settings(tmp_path, stripe_config) -> Settings:
    """Create test settings with a temp database and test Stripe keys."""
    return Settings(
        stripe=stripe_config,
        quota=QuotaConfig(),
        storage=StorageConfig(db_path=str(tmp_path / "billing.db")),
        rate_limit=RateLimitConfig(enabled=True, purchase_limit="10/minute"),
        logging=LoggingConfig(json_output=False, level="WARNING"),
    )


@pytest_asyncio.fixture
async def db(test_settings) -> BillingDatabase:
    database = BillingDatabase(db_path=test_settings.storage.db_path)
    await database.initialize()
    yield database
    database.close()


@pytest.fixture
def ledger(db) -> CreditLedger:
    return CreditLedger(db)


@pytest.fixture
def stripe_service(stripe_config) -> StripeService:
    return StripeService(stripe_config)


@pytest.fixture(autouse=True)
def reset_rate_limits():
    """The limiter is process-wide; start every test with empty windows."""
    limiter.reset()
    yield
    limiter.reset()


@pytest.fixture
def seed_subscription(db) -> Callable[..., Any]:
    """
    Create a subscription row and bring its counters to the given values.

    Usage:
        sub = await seed_subscription("user_1", tier=SubscriptionTier.PRO, minutes_used=100)
    """

    async def _seed(
        user_id: str,
        tier: SubscriptionTier = SubscriptionTier.PRO,
        status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
        minutes_used: int = 0,
        credits_balance: int = 0,
        stripe_subscription_id: str | None = None,
    ) -> SubscriptionRecord:
        record = await db.upsert_subscription(
            SubscriptionSnapshot(
                user_id=user_id,
                tier=tier,
                status=status,
                stripe_subscription_id=stripe_subscription_id or f"sub_{user_id}",
                stripe_customer_id=f"cus_{user_id}",
            )
        )
        if minutes_used:
            await db.increment_minutes_used(record.id, minutes_used)
        if credits_balance:
            await db.apply_credit_transaction(
                record.id,
                credits_balance,
                TransactionType.PURCHASE,
                external_payment_id=f"pi_seed_{user_id}",
                description="Seed credits",
            )
        return await db.get_subscription(record.id)

    return _seed


@pytest.fixture
def app(test_settings, db, stripe_service):
    return create_app(settings=test_settings, db=db, stripe_service=stripe_service)


@pytest.fixture
def client(app) -> TestClient:
    with TestClient(app) as test_client:
        yield test_client

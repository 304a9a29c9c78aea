"""
Subscription, usage and credit ledger storage using SQLite.

Atomicity:
- minutes_used and credits_balance are only ever changed by single
  server-side UPDATE statements (no read-modify-write in Python)
- a credit grant and its ledger row are written in one transaction
- credit_transactions.external_payment_id is UNIQUE when present, which
  makes repeated grants for the same payment a no-op

Performance features:
- Indexes on user_id, stripe_subscription_id, billing_period
- WAL mode for concurrent readers
"""

import sqlite3
import threading
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path

from scribeledger.errors import (
    InsufficientCreditsError,
    StorageError,
    SubscriptionConflictError,
    SubscriptionNotFoundError,
)
from scribeledger.models.subscription import (
    FreeSubscription,
    Subscription,
    SubscriptionRecord,
    SubscriptionSnapshot,
    SubscriptionStatus,
    SubscriptionTier,
)
from scribeledger.models.usage import CreditTransaction, TransactionType, UsageEvent
from scribeledger.observability.logging import get_logger

logger = get_logger(__name__)


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _format_ts(value: datetime | None) -> str | None:
    return value.astimezone(UTC).isoformat() if value else None


class _DuplicatePayment(Exception):
    """Unique index rejected a second ledger row for the same payment id."""


class BillingDatabase:
    """
    Billing storage.

    One shared connection per process, guarded by a lock. Transactions are
    explicit (``BEGIN IMMEDIATE``) so concurrent writers from other
    processes are serialized by SQLite itself.
    """

    def __init__(self, db_path: str = "./data/billing.db"):
        """
        Initialize billing database.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()
        self._initialized = False

    async def initialize(self) -> None:
        """
        Initialize database schema.

        Idempotent - safe to call multiple times.
        """
        if self._initialized:
            return

        logger.info("Initializing billing database", db_path=str(self.db_path))

        with self._transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS subscriptions (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL UNIQUE,
                    tier TEXT NOT NULL DEFAULT 'free',
                    status TEXT NOT NULL DEFAULT 'active',
                    stripe_customer_id TEXT,
                    stripe_subscription_id TEXT UNIQUE,
                    current_period_start TEXT,
                    current_period_end TEXT,
                    cancel_at_period_end INTEGER NOT NULL DEFAULT 0,
                    minutes_used INTEGER NOT NULL DEFAULT 0,
                    credits_balance INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,

                    CHECK (tier IN ('free', 'pro', 'team')),
                    CHECK (status IN ('active', 'canceled', 'past_due', 'trialing',
                                      'incomplete', 'incomplete_expired', 'unpaid', 'paused')),
                    CHECK (minutes_used >= 0),
                    CHECK (credits_balance >= 0),
                    CHECK (cancel_at_period_end IN (0, 1))
                )
                """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS usage_events (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    session_id TEXT,
                    operation_type TEXT NOT NULL,
                    duration_seconds REAL NOT NULL,
                    minutes_consumed INTEGER NOT NULL,
                    billing_period TEXT NOT NULL,
                    created_at TEXT NOT NULL,

                    CHECK (operation_type IN ('transcription', 'summarization', 'chat')),
                    CHECK (minutes_consumed > 0)
                )
                """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS credit_transactions (
                    id TEXT PRIMARY KEY,
                    subscription_id TEXT NOT NULL,
                    user_id TEXT NOT NULL,
                    transaction_type TEXT NOT NULL,
                    amount INTEGER NOT NULL,
                    balance_after INTEGER NOT NULL,
                    external_payment_id TEXT,
                    amount_paid_cents INTEGER,
                    description TEXT,
                    created_at TEXT NOT NULL,

                    FOREIGN KEY (subscription_id) REFERENCES subscriptions(id),
                    CHECK (transaction_type IN ('purchase', 'usage', 'refund')),
                    CHECK (balance_after >= 0),
                    CHECK (amount_paid_cents IS NULL OR amount_paid_cents >= 0)
                )
                """
            )

            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_subscriptions_stripe_customer "
                "ON subscriptions(stripe_customer_id)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_usage_events_user_period "
                "ON usage_events(user_id, billing_period)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_credit_transactions_user "
                "ON credit_transactions(user_id, created_at)"
            )
            conn.execute(
                "CREATE UNIQUE INDEX IF NOT EXISTS idx_credit_transactions_payment "
                "ON credit_transactions(external_payment_id) "
                "WHERE external_payment_id IS NOT NULL"
            )

        self._initialized = True
        logger.info("Billing database initialized")

    def _get_connection(self) -> sqlite3.Connection:
        """Get database connection (creates if needed)."""
        if self._conn is None:
            self._conn = sqlite3.connect(
                str(self.db_path), check_same_thread=False, isolation_level=None
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
            self._conn.execute("PRAGMA journal_mode = WAL")
        return self._conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block inside BEGIN IMMEDIATE ... COMMIT, rolling back on error."""
        with self._lock:
            try:
                conn = self._get_connection()
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise StorageError(f"Failed to open transaction: {e}") from e

            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            try:
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                conn.execute("ROLLBACK")
                raise StorageError(f"Commit failed: {e}") from e

    @contextmanager
    def _reading(self) -> Iterator[sqlite3.Connection]:
        """Read outside an explicit transaction, mapping driver errors."""
        with self._lock:
            try:
                yield self._get_connection()
            except sqlite3.Error as e:
                raise StorageError(f"Read failed: {e}") from e

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_subscription(row: sqlite3.Row) -> SubscriptionRecord:
        return SubscriptionRecord(
            id=row["id"],
            user_id=row["user_id"],
            tier=SubscriptionTier(row["tier"]),
            status=SubscriptionStatus(row["status"]),
            current_period_start=_parse_ts(row["current_period_start"]),
            current_period_end=_parse_ts(row["current_period_end"]),
            cancel_at_period_end=bool(row["cancel_at_period_end"]),
            minutes_used=row["minutes_used"],
            credits_balance=row["credits_balance"],
            stripe_subscription_id=row["stripe_subscription_id"],
            stripe_customer_id=row["stripe_customer_id"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    async def get_subscription_for_user(self, user_id: str) -> Subscription:
        """
        Resolve a user's subscription.

        Returns:
            SubscriptionRecord, or FreeSubscription when the user has no row
        """
        with self._reading() as conn:
            row = conn.execute(
                "SELECT * FROM subscriptions WHERE user_id = ?", (user_id,)
            ).fetchone()

        if not row:
            return FreeSubscription(user_id=user_id)
        return self._row_to_subscription(row)

    async def get_subscription(self, subscription_id: str) -> SubscriptionRecord | None:
        """Get subscription by internal id."""
        with self._reading() as conn:
            row = conn.execute(
                "SELECT * FROM subscriptions WHERE id = ?", (subscription_id,)
            ).fetchone()
        return self._row_to_subscription(row) if row else None

    async def upsert_subscription(self, snapshot: SubscriptionSnapshot) -> SubscriptionRecord:
        """
        Insert or update the subscription for ``snapshot.user_id``.

        Last write wins for provider-owned fields, with one exception: a
        provider subscription that is stored as canceled is never moved back
        to another status (Stripe cancellation is terminal), so a late
        ``created``/``updated`` event cannot resurrect it. minutes_used and
        credits_balance are left untouched on update.

        Raises:
            SubscriptionConflictError: The provider subscription id is stored
                for a different user
            StorageError: Write failed
        """
        now = datetime.now(UTC).isoformat()

        with self._transaction() as conn:
            try:
                owner = conn.execute(
                    "SELECT user_id FROM subscriptions WHERE stripe_subscription_id = ?",
                    (snapshot.stripe_subscription_id,),
                ).fetchone()
                if owner and owner["user_id"] != snapshot.user_id:
                    raise SubscriptionConflictError(
                        f"Subscription {snapshot.stripe_subscription_id} belongs to another user"
                    )

                conn.execute(
                    """
                    INSERT INTO subscriptions (
                        id, user_id, tier, status, stripe_customer_id,
                        stripe_subscription_id, current_period_start,
                        current_period_end, cancel_at_period_end,
                        created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(user_id) DO UPDATE SET
                        tier = excluded.tier,
                        status = excluded.status,
                        stripe_customer_id = excluded.stripe_customer_id,
                        stripe_subscription_id = excluded.stripe_subscription_id,
                        current_period_start = excluded.current_period_start,
                        current_period_end = excluded.current_period_end,
                        cancel_at_period_end = excluded.cancel_at_period_end,
                        updated_at = excluded.updated_at
                    WHERE NOT (
                        subscriptions.status = 'canceled'
                        AND subscriptions.stripe_subscription_id = excluded.stripe_subscription_id
                        AND excluded.status != 'canceled'
                    )
                    """,
                    (
                        str(uuid.uuid4()),
                        snapshot.user_id,
                        snapshot.tier.value,
                        snapshot.status.value,
                        snapshot.stripe_customer_id,
                        snapshot.stripe_subscription_id,
                        _format_ts(snapshot.current_period_start),
                        _format_ts(snapshot.current_period_end),
                        1 if snapshot.cancel_at_period_end else 0,
                        now,
                        now,
                    ),
                )
                row = conn.execute(
                    "SELECT * FROM subscriptions WHERE user_id = ?", (snapshot.user_id,)
                ).fetchone()
            except sqlite3.Error as e:
                raise StorageError(f"Failed to upsert subscription: {e}") from e

        return self._row_to_subscription(row)

    async def mark_subscription_canceled(self, stripe_subscription_id: str) -> bool:
        """
        Set status=canceled for a provider subscription. The row is retained.

        Returns:
            bool: True if a row matched
        """
        now = datetime.now(UTC).isoformat()

        with self._transaction() as conn:
            try:
                cursor = conn.execute(
                    """
                    UPDATE subscriptions
                    SET status = 'canceled',
                        updated_at = ?
                    WHERE stripe_subscription_id = ?
                    """,
                    (now, stripe_subscription_id),
                )
            except sqlite3.Error as e:
                raise StorageError(f"Failed to cancel subscription: {e}") from e

        return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Usage
    # ------------------------------------------------------------------

    async def insert_usage_event(self, event: UsageEvent) -> None:
        """Append a usage event. There is no update or delete counterpart."""
        with self._transaction() as conn:
            try:
                conn.execute(
                    """
                    INSERT INTO usage_events (
                        id, user_id, session_id, operation_type, duration_seconds,
                        minutes_consumed, billing_period, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        event.id,
                        event.user_id,
                        event.session_id,
                        event.operation_type.value,
                        event.duration_seconds,
                        event.minutes_consumed,
                        event.billing_period,
                        _format_ts(event.created_at),
                    ),
                )
            except sqlite3.Error as e:
                raise StorageError(f"Failed to insert usage event: {e}") from e

    async def increment_minutes_used(self, subscription_id: str, minutes: int) -> int | None:
        """
        Atomically add minutes to a subscription.

        Returns:
            New minutes_used, or None if the subscription does not exist

        Single UPDATE statement; concurrent increments never lose updates.
        """
        now = datetime.now(UTC).isoformat()

        with self._transaction() as conn:
            try:
                cursor = conn.execute(
                    """
                    UPDATE subscriptions
                    SET minutes_used = minutes_used + ?,
                        updated_at = ?
                    WHERE id = ?
                    """,
                    (minutes, now, subscription_id),
                )
                if cursor.rowcount == 0:
                    return None
                row = conn.execute(
                    "SELECT minutes_used FROM subscriptions WHERE id = ?", (subscription_id,)
                ).fetchone()
            except sqlite3.Error as e:
                raise StorageError(f"Failed to increment minutes_used: {e}") from e

        return row["minutes_used"]

    async def reset_minutes_used(self, subscription_id: str) -> bool:
        """
        Reset minutes_used (called on billing period rollover).

        Returns:
            bool: True if successful
        """
        now = datetime.now(UTC).isoformat()

        with self._transaction() as conn:
            try:
                cursor = conn.execute(
                    "UPDATE subscriptions SET minutes_used = 0, updated_at = ? WHERE id = ?",
                    (now, subscription_id),
                )
            except sqlite3.Error as e:
                raise StorageError(f"Failed to reset minutes_used: {e}") from e

        return cursor.rowcount > 0

    async def sum_usage_for_period(self, user_id: str, billing_period: str) -> tuple[int, int]:
        """
        Total minutes and event count for a user in a billing period.

        Returns:
            tuple: (total_minutes, event_count)
        """
        with self._reading() as conn:
            row = conn.execute(
                """
                SELECT COALESCE(SUM(minutes_consumed), 0) AS total, COUNT(*) AS events
                FROM usage_events
                WHERE user_id = ? AND billing_period = ?
                """,
                (user_id, billing_period),
            ).fetchone()
        return int(row["total"]), int(row["events"])

    # ------------------------------------------------------------------
    # Credit ledger
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_transaction(row: sqlite3.Row) -> CreditTransaction:
        return CreditTransaction(
            id=row["id"],
            subscription_id=row["subscription_id"],
            user_id=row["user_id"],
            transaction_type=TransactionType(row["transaction_type"]),
            amount=row["amount"],
            balance_after=row["balance_after"],
            external_payment_id=row["external_payment_id"],
            amount_paid_cents=row["amount_paid_cents"],
            description=row["description"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    async def apply_credit_transaction(
        self,
        subscription_id: str,
        amount: int,
        transaction_type: TransactionType,
        external_payment_id: str | None = None,
        amount_paid_cents: int | None = None,
        description: str | None = None,
    ) -> tuple[CreditTransaction | None, int]:
        """
        Change a credit balance and append the matching ledger row atomically.

        Args:
            subscription_id: Owning subscription
            amount: Signed credit delta
            transaction_type: Ledger entry type
            external_payment_id: Idempotency key (unique when present)
            amount_paid_cents: Amount charged for a purchase
            description: Human-readable description

        Returns:
            tuple: (new transaction or None if the payment id was already applied,
                    balance after the call)

        Raises:
            SubscriptionNotFoundError: No subscription with this id
            InsufficientCreditsError: Balance would become negative
            StorageError: Any other database failure
        """
        now = datetime.now(UTC).isoformat()

        try:
            return await self._apply_credit_transaction(
                now,
                subscription_id,
                amount,
                transaction_type,
                external_payment_id,
                amount_paid_cents,
                description,
            )
        except _DuplicatePayment:
            # Lost a race against another writer for the same payment id
            subscription = await self.get_subscription(subscription_id)
            balance = subscription.credits_balance if subscription else 0
            return None, balance

    async def _apply_credit_transaction(
        self,
        now: str,
        subscription_id: str,
        amount: int,
        transaction_type: TransactionType,
        external_payment_id: str | None,
        amount_paid_cents: int | None,
        description: str | None,
    ) -> tuple[CreditTransaction | None, int]:
        with self._transaction() as conn:
            try:
                sub = conn.execute(
                    "SELECT user_id, credits_balance FROM subscriptions WHERE id = ?",
                    (subscription_id,),
                ).fetchone()
                if not sub:
                    raise SubscriptionNotFoundError(
                        f"Subscription {subscription_id} not found - cannot apply credits"
                    )

                if external_payment_id is not None:
                    existing = conn.execute(
                        "SELECT id FROM credit_transactions WHERE external_payment_id = ?",
                        (external_payment_id,),
                    ).fetchone()
                    if existing:
                        return None, sub["credits_balance"]

                new_balance = sub["credits_balance"] + amount
                if new_balance < 0:
                    raise InsufficientCreditsError(
                        f"Insufficient credits: balance {sub['credits_balance']}, "
                        f"requested {-amount}"
                    )

                conn.execute(
                    """
                    UPDATE subscriptions
                    SET credits_balance = credits_balance + ?,
                        updated_at = ?
                    WHERE id = ?
                    """,
                    (amount, now, subscription_id),
                )

                transaction = CreditTransaction(
                    id=str(uuid.uuid4()),
                    subscription_id=subscription_id,
                    user_id=sub["user_id"],
                    transaction_type=transaction_type,
                    amount=amount,
                    balance_after=new_balance,
                    external_payment_id=external_payment_id,
                    amount_paid_cents=amount_paid_cents,
                    description=description,
                    created_at=datetime.fromisoformat(now),
                )
                conn.execute(
                    """
                    INSERT INTO credit_transactions (
                        id, subscription_id, user_id, transaction_type, amount,
                        balance_after, external_payment_id, amount_paid_cents,
                        description, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        transaction.id,
                        transaction.subscription_id,
                        transaction.user_id,
                        transaction.transaction_type.value,
                        transaction.amount,
                        transaction.balance_after,
                        transaction.external_payment_id,
                        transaction.amount_paid_cents,
                        transaction.description,
                        now,
                    ),
                )
            except sqlite3.IntegrityError as e:
                if external_payment_id is not None and "external_payment_id" in str(e):
                    raise _DuplicatePayment() from e
                raise StorageError(f"Failed to apply credit transaction: {e}") from e
            except sqlite3.Error as e:
                raise StorageError(f"Failed to apply credit transaction: {e}") from e

        return transaction, new_balance

    async def list_credit_transactions(
        self, user_id: str, limit: int = 10
    ) -> list[CreditTransaction]:
        """Most recent ledger entries for a user, newest first."""
        with self._reading() as conn:
            rows = conn.execute(
                """
                SELECT * FROM credit_transactions
                WHERE user_id = ?
                ORDER BY created_at DESC, rowid DESC
                LIMIT ?
                """,
                (user_id, limit),
            ).fetchall()
        return [self._row_to_transaction(row) for row in rows]

    async def sum_credit_transactions(self, subscription_id: str) -> int:
        """Signed sum of all ledger entries for a subscription."""
        with self._reading() as conn:
            row = conn.execute(
                "SELECT COALESCE(SUM(amount), 0) AS total FROM credit_transactions "
                "WHERE subscription_id = ?",
                (subscription_id,),
            ).fetchone()
        return int(row["total"])

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None

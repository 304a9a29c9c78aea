"""
Storage layer for subscriptions, usage events and the credit ledger.

Uses SQLite (embedded). All counter mutations are single server-side
statements; ledger writes are transactional.
"""

from scribeledger.storage.database import BillingDatabase

__all__ = ["BillingDatabase"]

"""
Scribeledger - usage metering and credit billing for AI transcription.

Decides whether a request may run, records the minutes it consumed, keeps
an append-only credit ledger and reconciles local state with Stripe.

Key Features:
    - Tiered monthly minute allowances (free, pro, team)
    - Prepaid credit packs purchased through Stripe
    - Idempotent webhook reconciliation
    - Best-effort usage metering that never fails the metered request

Example:
    >>> from scribeledger import create_app
    >>> app = create_app()
"""

from scribeledger.config import get_settings
from scribeledger.main import create_app

__all__ = ["create_app", "get_settings"]

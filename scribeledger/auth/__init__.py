"""
Request identity and FastAPI auth dependencies.
"""

from scribeledger.auth.dependencies import get_authenticated_user
from scribeledger.auth.identity import (
    AuthenticatedUser,
    IdentityResolver,
    TrustedHeaderIdentityResolver,
)

__all__ = [
    "AuthenticatedUser",
    "IdentityResolver",
    "TrustedHeaderIdentityResolver",
    "get_authenticated_user",
]

"""
FastAPI dependencies for request identity.

The resolved user is attached to request.state (rate limiting keys on it)
and to the logging context.
"""

from fastapi import Request

from scribeledger.auth.identity import AuthenticatedUser, IdentityResolver
from scribeledger.observability.logging import get_logger, set_user_id

logger = get_logger(__name__)


def get_identity_resolver(request: Request) -> IdentityResolver:
    return request.app.state.identity_resolver


async def get_authenticated_user(request: Request) -> AuthenticatedUser:
    """
    Resolve the caller of the request.

    Raises:
        AuthenticationError: No identity could be resolved (401)
    """
    resolver = get_identity_resolver(request)
    user = await resolver.resolve(request)

    request.state.authenticated_user = user
    set_user_id(user.user_id)
    return user

"""
Per-user rate limiting for billing endpoints.

Uses slowapi with in-memory storage. Authenticated requests are limited per
user id; anything else falls back to the client address.

The limiter is shared by every app in the process, but the limits are not:
each request reads them from its own app's settings. slowapi hands the limit
provider no request, so ``bind_rate_limits`` (a route dependency) stores the
app's purchase limit in a context variable first.

Usage:
    @router.post("/purchase", dependencies=[Depends(bind_rate_limits)])
    @limiter.limit(purchase_rate_limit, exempt_when=rate_limits_disabled)
    async def purchase_credits(request: Request, ...):
        ...
"""

from contextvars import ContextVar

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from scribeledger.config import RateLimitConfig

_purchase_limit_var: ContextVar[str] = ContextVar(
    "purchase_limit", default=RateLimitConfig().purchase_limit
)


def get_user_id_for_rate_limit(request: Request) -> str:
    """
    Extract user_id for rate limiting.

    Route dependencies run before the limit check, so the authenticated user
    is already on request.state for protected endpoints.
    """
    user = getattr(request.state, "authenticated_user", None)
    if user is not None:
        return user.user_id
    return get_remote_address(request)


limiter = Limiter(key_func=get_user_id_for_rate_limit)


def _rate_limit_config(request: Request) -> RateLimitConfig:
    settings = getattr(request.app.state, "settings", None)
    if settings is None:
        return RateLimitConfig()
    return settings.rate_limit


async def bind_rate_limits(request: Request) -> None:
    """Bind the serving app's limits for the limit providers below."""
    _purchase_limit_var.set(_rate_limit_config(request).purchase_limit)


def rate_limits_disabled(request: Request) -> bool:
    return not _rate_limit_config(request).enabled


def purchase_rate_limit() -> str:
    """Limit string for credit purchases (slowapi calls this per request)."""
    return _purchase_limit_var.get()

"""
Request identity.

Authentication happens upstream (the gateway validates the session and
forwards the resolved ids). This module only turns a request into an
AuthenticatedUser; the resolver is injectable so deployments can swap in
their own scheme.
"""

from typing import Protocol

from fastapi import Request
from pydantic import BaseModel

from scribeledger.config import AuthConfig
from scribeledger.errors import AuthenticationError


class AuthenticatedUser(BaseModel):
    """Caller identity for a request."""

    user_id: str
    external_id: str


class IdentityResolver(Protocol):
    """Resolve the caller of a request or raise AuthenticationError."""

    async def resolve(self, request: Request) -> AuthenticatedUser: ...


class TrustedHeaderIdentityResolver:
    """
    Read identity from headers set by the authenticating gateway.

    Only safe behind a gateway that strips these headers from client input.
    """

    def __init__(self, config: AuthConfig):
        self.config = config

    async def resolve(self, request: Request) -> AuthenticatedUser:
        user_id = (request.headers.get(self.config.user_id_header) or "").strip()
        if not user_id:
            raise AuthenticationError("Missing user identity header")

        # External id defaults to the internal id for gateways that only forward one
        external_id = (request.headers.get(self.config.external_id_header) or "").strip()
        return AuthenticatedUser(user_id=user_id, external_id=external_id or user_id)

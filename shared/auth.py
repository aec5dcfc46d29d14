"""
Local credential verification shared by the gateway and the backends.

Tokens are HS256 JWTs signed with the platform secret. Every service verifies
them on its own; there is no session store and no call to another service.
"""

import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, FrozenSet, Iterable, Mapping, Optional

import jwt
from fastapi import Request

from shared.errors import AuthenticationError, InvalidTokenError
from shared.logging import get_logger, set_user_context

BEARER_PREFIX = "Bearer "


@dataclass(frozen=True)
class Identity:
    """Caller identity derived from a verified token."""
    id: str
    email: str
    roles: FrozenSet[str] = field(default_factory=frozenset)

    @property
    def is_admin(self) -> bool:
        return "admin" in self.roles


class TokenService:
    """Issue and verify signed bearer tokens."""

    def __init__(self, secret: str, algorithm: str = "HS256", ttl_seconds: int = 24 * 60 * 60):
        self.secret = secret
        self.algorithm = algorithm
        self.ttl_seconds = ttl_seconds
        self.logger = get_logger("auth.token_service")

    def issue_token(self, user_id: str, email: str, roles: Iterable[str],
                    now: Optional[float] = None) -> str:
        """Sign a token for a user."""
        issued_at = int(now if now is not None else time.time())
        claims = {
            "id": user_id,
            "email": email,
            "roles": list(roles),
            "iat": issued_at,
            "exp": issued_at + self.ttl_seconds,
        }
        return jwt.encode(claims, self.secret, algorithm=self.algorithm)

    def verify_token(self, token: str) -> Identity:
        """Verify a token and return the identity it carries."""
        try:
            claims = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                options={"require": ["exp", "id"]},
            )
        except jwt.PyJWTError as e:
            self.logger.warning("Token verification failed", error=str(e))
            raise InvalidTokenError(details={"token_error": str(e)}) from e

        roles = claims.get("roles") or []
        if not isinstance(claims["id"], str) or not isinstance(roles, list):
            raise InvalidTokenError(details={"token_error": "malformed claims"})

        return Identity(
            id=claims["id"],
            email=str(claims.get("email", "")),
            roles=frozenset(str(role) for role in roles),
        )


def extract_bearer_token(headers: Mapping[str, str]) -> str:
    """Pull the token out of an ``Authorization: Bearer`` header."""
    auth_header = headers.get("authorization") or headers.get("Authorization")
    if not auth_header or not auth_header.startswith(BEARER_PREFIX):
        raise AuthenticationError()
    return auth_header[len(BEARER_PREFIX):]


def authenticate_headers(headers: Mapping[str, str], token_service: TokenService) -> Identity:
    """Verify the bearer credential in ``headers``."""
    identity = token_service.verify_token(extract_bearer_token(headers))
    set_user_context(identity.id)
    return identity


def identity_dependency(token_service: TokenService) -> Callable[[Request], Awaitable[Identity]]:
    """FastAPI dependency that requires a valid bearer token."""

    async def _require_identity(request: Request) -> Identity:
        identity = authenticate_headers(request.headers, token_service)
        request.state.identity = identity
        return identity

    return _require_identity

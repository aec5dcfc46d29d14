"""
Authentication middleware for Gateway.
"""

from fastapi import Request

from shared.auth import Identity, TokenService, authenticate_headers
from shared.errors import AuthenticationError, InvalidTokenError
from shared.logging import get_logger


class AuthMiddleware:
    """Verify bearer credentials on protected gateway routes.

    Verification is local (signature + expiry); the gateway does not ask the
    users service. The original header is still forwarded untouched so each
    backend can verify it again on its own.
    """

    def __init__(self, token_service: TokenService):
        self.token_service = token_service
        self.logger = get_logger("gateway.auth_middleware")

    async def authenticate_request(self, request: Request) -> Identity:
        """Authenticate incoming request with its bearer token."""
        request_id = getattr(request.state, "request_id", None)
        try:
            identity = authenticate_headers(request.headers, self.token_service)
        except AuthenticationError:
            self.logger.warning("Missing bearer token", path=request.url.path, request_id=request_id)
            raise
        except InvalidTokenError as e:
            self.logger.error("Token verification failed", error=str(e.details), request_id=request_id)
            raise

        request.state.identity = identity
        self.logger.debug("Request authenticated", user_id=identity.id, roles=sorted(identity.roles))
        return identity

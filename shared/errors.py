"""
Shared error handling for the Orderly platform.
"""

from typing import Dict, Any, Optional

from shared.envelope import Err


class PlatformException(Exception):
    """Base exception for Orderly services."""

    status_code = 500

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None,
                 status_code: Optional[int] = None, headers: Optional[Dict[str, str]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        self.headers = headers
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def to_envelope(self) -> Err:
        """Convert to an error envelope."""
        return Err(self.code, self.message)

    def to_response(self) -> Dict[str, Any]:
        """Convert to a serialized error envelope."""
        return self.to_envelope().to_dict()


class ValidationError(PlatformException):
    """Validation-related errors."""

    status_code = 400

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class AuthenticationError(PlatformException):
    """Missing or malformed credentials."""

    status_code = 401

    def __init__(self, message: str = "No token provided", details: Optional[Dict[str, Any]] = None):
        super().__init__("UNAUTHORIZED", message, details)


class InvalidTokenError(PlatformException):
    """A bearer token that failed verification."""

    status_code = 401

    def __init__(self, message: str = "Invalid or expired token", details: Optional[Dict[str, Any]] = None):
        super().__init__("INVALID_TOKEN", message, details)


class InvalidCredentialsError(PlatformException):
    """Wrong email/password pair on login."""

    status_code = 401

    def __init__(self, message: str = "Invalid email or password", details: Optional[Dict[str, Any]] = None):
        super().__init__("INVALID_CREDENTIALS", message, details)


class AuthorizationError(PlatformException):
    """Authorization-related errors."""

    status_code = 403

    def __init__(self, message: str = "Access denied", details: Optional[Dict[str, Any]] = None):
        super().__init__("FORBIDDEN", message, details)


class NotFoundError(PlatformException):
    """A requested entity does not exist."""

    status_code = 404

    def __init__(self, code: str = "NOT_FOUND", message: str = "Not found", details: Optional[Dict[str, Any]] = None):
        super().__init__(code, message, details)


class ConflictError(PlatformException):
    """A write collides with existing state."""

    status_code = 409

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(code, message, details)


class RateLimitError(PlatformException):
    """Rate limiting errors."""

    status_code = 429

    def __init__(self, message: str = "Too many requests, please try again later.",
                 retry_after: Optional[int] = None, details: Optional[Dict[str, Any]] = None):
        headers = {"Retry-After": str(retry_after)} if retry_after is not None else None
        super().__init__("RATE_LIMIT_EXCEEDED", message, details, headers=headers)


class ServiceUnavailableError(PlatformException):
    """A downstream dependency cannot serve the request."""

    status_code = 503

    def __init__(self, message: str = "Service temporarily unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("SERVICE_UNAVAILABLE", message, details)


class BackendUnavailableError(Exception):
    """Transport-level failure talking to a backend (5xx, undecodable body)."""

    def __init__(self, service: str, message: str, status_code: Optional[int] = None):
        self.service = service
        self.status_code = status_code
        super().__init__(f"{service}: {message}")

"""
Request forwarding from the gateway to a backend circuit breaker.
"""

import json
from typing import Dict, Optional, Tuple

from fastapi import Request

from shared.circuit_breaker import CircuitBreaker
from shared.envelope import Envelope, Err, Ok
from shared.errors import ValidationError
from shared.logging import get_logger
from service_gateway.app.adapters.backend_client import METHODS_WITHOUT_BODY, ForwardSpec

REQUEST_ID_HEADER = "X-Request-ID"
AUTHORIZATION_HEADER = "Authorization"

# Backend error code -> HTTP status. Codes missing here map to 500.
ERROR_STATUS_CODES: Dict[str, int] = {
    "VALIDATION_ERROR": 400,
    "UNAUTHORIZED": 401,
    "INVALID_TOKEN": 401,
    "INVALID_CREDENTIALS": 401,
    "FORBIDDEN": 403,
    "USER_NOT_FOUND": 404,
    "ORDER_NOT_FOUND": 404,
    "NOT_FOUND": 404,
    "USER_EXISTS": 409,
    "EMAIL_EXISTS": 409,
    "RATE_LIMIT_EXCEEDED": 429,
    "SERVICE_UNAVAILABLE": 503,
}
DEFAULT_ERROR_STATUS = 500


def status_for(envelope: Envelope) -> int:
    """HTTP status for an envelope coming back from a backend."""
    if isinstance(envelope, Ok):
        return 200
    if isinstance(envelope, Err):
        return ERROR_STATUS_CODES.get(envelope.code, DEFAULT_ERROR_STATUS)
    raise TypeError(f"not an envelope: {envelope!r}")


def trace_headers(request_id: str, authorization: Optional[str]) -> Dict[str, str]:
    """Headers the gateway passes to a backend."""
    headers = {REQUEST_ID_HEADER: request_id}
    if authorization:
        headers[AUTHORIZATION_HEADER] = authorization
    return headers


async def build_forward_spec(request: Request, backend_path: str, request_id: str) -> ForwardSpec:
    """Describe the backend call for an inbound request."""
    method = request.method.upper()
    body = None
    if method not in METHODS_WITHOUT_BODY:
        raw = await request.body()
        if raw:
            try:
                body = json.loads(raw)
            except ValueError as e:
                raise ValidationError("Request body must be valid JSON") from e

    return ForwardSpec(
        method=method,
        path=backend_path,
        headers=trace_headers(request_id, request.headers.get(AUTHORIZATION_HEADER)),
        body=body,
        query_params=list(request.query_params.multi_items()),
    )


class RequestForwarder:
    """Relay one inbound request to one backend and map the result."""

    def __init__(self):
        self.logger = get_logger("gateway.forwarder")

    async def forward(self, breaker: CircuitBreaker, backend_path: str,
                      request: Request) -> Tuple[int, Envelope]:
        request_id = getattr(request.state, "request_id", None) or request.headers.get(REQUEST_ID_HEADER, "")
        spec = await build_forward_spec(request, backend_path, request_id)

        envelope = await breaker.invoke(spec)
        status_code = status_for(envelope)

        if isinstance(envelope, Err):
            self.logger.info(
                "Backend returned error envelope",
                backend=breaker.name,
                path=backend_path,
                code=envelope.code,
                status_code=status_code,
            )
        return status_code, envelope

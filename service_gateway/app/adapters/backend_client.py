"""
HTTP client for the users and orders backends.

The gateway never calls a backend directly; it hands a ``ForwardSpec`` to the
backend's circuit breaker, which in turn calls ``BackendClient.send``.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx

from shared.envelope import Envelope, Err, Ok, parse_envelope
from shared.errors import BackendUnavailableError, ServiceUnavailableError
from shared.logging import get_logger
from shared.metrics import MetricsCollector

METHODS_WITHOUT_BODY = frozenset({"GET", "HEAD"})


@dataclass
class ForwardSpec:
    """One proxied backend call."""
    method: str
    path: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: Any = None
    query_params: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def has_body(self) -> bool:
        return self.method.upper() not in METHODS_WITHOUT_BODY and self.body is not None


class BackendClient:
    """Client for one backend service speaking the envelope protocol."""

    def __init__(self, name: str, base_url: str, timeout: float = 5.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None,
                 metrics: Optional[MetricsCollector] = None):
        self.name = name
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport
        self.metrics = metrics
        self.logger = get_logger(f"gateway.{name}_client")

    async def send(self, spec: ForwardSpec) -> Envelope:
        """Issue the call and decode the envelope.

        4xx responses are returned as envelopes; 5xx responses and bodies that
        are not envelopes raise ``BackendUnavailableError``. ``httpx`` errors
        propagate untouched.
        """
        self.logger.info("Forwarding request", method=spec.method, path=spec.path)

        request_kwargs: Dict[str, Any] = {"headers": spec.headers}
        if spec.query_params:
            request_kwargs["params"] = spec.query_params
        if spec.has_body:
            request_kwargs["json"] = spec.body

        try:
            async with httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout,
                                         transport=self.transport) as client:
                response = await client.request(spec.method, spec.path, **request_kwargs)
        except httpx.HTTPError as e:
            self._record("transport_error")
            self.logger.error("Backend transport error", error=str(e), path=spec.path)
            raise

        if response.status_code >= 500:
            self._record("server_error")
            raise BackendUnavailableError(self.name, f"HTTP {response.status_code}", response.status_code)

        try:
            envelope = parse_envelope(response.json())
        except ValueError as e:
            self._record("invalid_payload")
            raise BackendUnavailableError(self.name, f"invalid envelope: {e}", response.status_code) from e

        self._record("ok" if isinstance(envelope, Ok) else "error_envelope")
        return envelope

    def _record(self, outcome: str) -> None:
        if self.metrics is not None:
            self.metrics.record_backend_call(self.name, outcome)


def service_unavailable_fallback(display_name: str,
                                 metrics: Optional[MetricsCollector] = None,
                                 backend: Optional[str] = None) -> Callable[..., Err]:
    """Build the fixed fallback envelope for a backend's breaker."""
    logger = get_logger("gateway.fallback")
    message = f"{display_name} service temporarily unavailable"

    def _fallback(*args, **kwargs) -> Err:
        logger.warning("Serving circuit breaker fallback", backend=backend or display_name.lower())
        if metrics is not None and backend is not None:
            metrics.record_backend_call(backend, "fallback")
        return ServiceUnavailableError(message).to_envelope()

    return _fallback

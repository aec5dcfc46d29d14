"""
Unit tests for request forwarding and the backend client.
"""

import json

import httpx
import pytest
from starlette.requests import Request

from shared.circuit_breaker import CircuitBreaker, CircuitBreakerState
from shared.envelope import Err, Ok
from shared.errors import BackendUnavailableError, ValidationError
from shared.test_helpers import RecordingTransport, envelope_response
from service_gateway.app.adapters.backend_client import (
    BackendClient,
    ForwardSpec,
    service_unavailable_fallback,
)
from service_gateway.app.domain.forwarder import (
    RequestForwarder,
    build_forward_spec,
    status_for,
    trace_headers,
)


def make_request(method="GET", path="/v1/orders", query=b"", body=b"", headers=None):
    """Build a Starlette request without a running app."""
    raw_headers = [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()]
    scope = {
        "type": "http",
        "method": method,
        "path": path,
        "query_string": query,
        "headers": raw_headers,
        "client": ("127.0.0.1", 5000),
        "server": ("gateway", 8000),
        "scheme": "http",
        "state": {"request_id": "req-1"},
    }

    async def receive():
        return {"type": "http.request", "body": body, "more_body": False}

    return Request(scope, receive)


class TestStatusMapping:
    """Test cases for the envelope to status table."""

    @pytest.mark.parametrize("code,status", [
        ("VALIDATION_ERROR", 400),
        ("UNAUTHORIZED", 401),
        ("INVALID_TOKEN", 401),
        ("INVALID_CREDENTIALS", 401),
        ("FORBIDDEN", 403),
        ("USER_NOT_FOUND", 404),
        ("ORDER_NOT_FOUND", 404),
        ("USER_EXISTS", 409),
        ("EMAIL_EXISTS", 409),
        ("RATE_LIMIT_EXCEEDED", 429),
        ("SERVICE_UNAVAILABLE", 503),
        ("SOMETHING_ELSE", 500),
    ])
    def test_error_codes(self, code, status):
        assert status_for(Err(code, "message")) == status

    def test_success_is_200(self):
        assert status_for(Ok({"id": "1"})) == 200

    def test_trace_headers(self):
        assert trace_headers("req-1", None) == {"X-Request-ID": "req-1"}
        assert trace_headers("req-1", "Bearer t") == {"X-Request-ID": "req-1", "Authorization": "Bearer t"}


class TestBuildForwardSpec:
    """Test cases for build_forward_spec."""

    @pytest.mark.asyncio
    async def test_get_keeps_query_and_drops_body(self):
        request = make_request(query=b"status=created&page=2", headers={"Authorization": "Bearer abc"})

        spec = await build_forward_spec(request, "/v1/orders", "req-1")

        assert spec.method == "GET"
        assert spec.body is None
        assert spec.query_params == [("status", "created"), ("page", "2")]
        assert spec.headers == {"X-Request-ID": "req-1", "Authorization": "Bearer abc"}

    @pytest.mark.asyncio
    async def test_post_parses_json_body(self):
        payload = {"items": [{"productId": "p1"}]}
        request = make_request("POST", body=json.dumps(payload).encode())

        spec = await build_forward_spec(request, "/v1/orders", "req-1")

        assert spec.body == payload
        assert spec.has_body

    @pytest.mark.asyncio
    async def test_invalid_json_is_validation_error(self):
        request = make_request("POST", body=b"{not json")

        with pytest.raises(ValidationError):
            await build_forward_spec(request, "/v1/orders", "req-1")


class TestBackendClient:
    """Test cases for BackendClient."""

    @pytest.mark.asyncio
    async def test_send_returns_success_envelope(self):
        transport = RecordingTransport(lambda request: envelope_response(201, {"id": "o1"}))
        client = BackendClient("orders", "http://orders.test", transport=transport)

        envelope = await client.send(ForwardSpec(
            "POST", "/v1/orders", {"X-Request-ID": "req-1"}, body={"items": []},
        ))

        assert envelope == Ok({"id": "o1"})
        sent = transport.requests[0]
        assert sent.url.path == "/v1/orders"
        assert sent.headers["X-Request-ID"] == "req-1"
        assert json.loads(sent.content) == {"items": []}

    @pytest.mark.asyncio
    async def test_client_error_envelope_is_returned(self):
        transport = RecordingTransport(
            lambda request: envelope_response(404, error={"code": "USER_NOT_FOUND", "message": "User not found"})
        )
        client = BackendClient("users", "http://users.test", transport=transport)

        envelope = await client.send(ForwardSpec("GET", "/v1/users/u1"))

        assert envelope == Err("USER_NOT_FOUND", "User not found")

    @pytest.mark.asyncio
    async def test_server_error_raises(self):
        transport = RecordingTransport(lambda request: httpx.Response(502, text="bad gateway"))
        client = BackendClient("users", "http://users.test", transport=transport)

        with pytest.raises(BackendUnavailableError) as exc_info:
            await client.send(ForwardSpec("GET", "/v1/users/u1"))
        assert exc_info.value.status_code == 502

    @pytest.mark.asyncio
    async def test_malformed_body_raises(self):
        transport = RecordingTransport(lambda request: httpx.Response(200, json={"hello": "world"}))
        client = BackendClient("users", "http://users.test", transport=transport)

        with pytest.raises(BackendUnavailableError):
            await client.send(ForwardSpec("GET", "/v1/users/u1"))

    @pytest.mark.asyncio
    async def test_transport_error_propagates(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = BackendClient("users", "http://users.test", transport=httpx.MockTransport(refuse))

        with pytest.raises(httpx.ConnectError):
            await client.send(ForwardSpec("GET", "/v1/users/u1"))


class TestRequestForwarder:
    """Test cases for RequestForwarder."""

    @pytest.fixture
    def forwarder(self):
        return RequestForwarder()

    @pytest.mark.asyncio
    async def test_forward_success_maps_to_200(self, forwarder):
        transport = RecordingTransport(lambda request: envelope_response(201, {"id": "o1"}))
        client = BackendClient("orders", "http://orders.test", transport=transport)
        breaker = CircuitBreaker("orders", client.send, fallback=service_unavailable_fallback("Orders"))

        status, envelope = await forwarder.forward(
            breaker, "/v1/orders", make_request("POST", body=b'{"items": []}')
        )

        assert status == 200
        assert envelope == Ok({"id": "o1"})
        assert len(transport.requests) == 1

    @pytest.mark.asyncio
    async def test_forward_error_envelope_maps_status(self, forwarder):
        transport = RecordingTransport(
            lambda request: envelope_response(403, error={"code": "FORBIDDEN", "message": "Access denied"})
        )
        client = BackendClient("orders", "http://orders.test", transport=transport)
        breaker = CircuitBreaker("orders", client.send, fallback=service_unavailable_fallback("Orders"))

        status, envelope = await forwarder.forward(breaker, "/v1/orders/o1", make_request(path="/v1/orders/o1"))

        assert status == 403
        assert envelope.code == "FORBIDDEN"
        assert breaker.state == CircuitBreakerState.CLOSED

    @pytest.mark.asyncio
    async def test_forward_backend_down_serves_fallback(self, forwarder):
        transport = RecordingTransport(lambda request: httpx.Response(500))
        client = BackendClient("users", "http://users.test", transport=transport)
        breaker = CircuitBreaker("users", client.send, fallback=service_unavailable_fallback("Users"))

        status, envelope = await forwarder.forward(breaker, "/v1/users/profile", make_request(path="/v1/users/profile"))

        assert status == 503
        assert envelope == Err("SERVICE_UNAVAILABLE", "Users service temporarily unavailable")
        assert breaker.get_state()["stats"]["failureCount"] == 1

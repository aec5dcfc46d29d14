"""
Unit tests for the user details aggregator.
"""

from typing import List

import pytest

from shared.auth import Identity
from shared.circuit_breaker import CircuitBreaker
from shared.envelope import Err, Ok
from service_gateway.app.adapters.backend_client import ForwardSpec, service_unavailable_fallback
from service_gateway.app.domain.aggregator import UserDetailsAggregator, summarize_orders

USER = {"id": "u1", "email": "john.doe@example.com", "name": "John Doe", "roles": ["user"]}


class StubBackend:
    """Records specs and answers with a scripted result."""

    def __init__(self, result):
        self.result = result
        self.specs: List[ForwardSpec] = []

    async def __call__(self, spec: ForwardSpec):
        self.specs.append(spec)
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


def make_aggregator(users_result, orders_result):
    users = StubBackend(users_result)
    orders = StubBackend(orders_result)
    aggregator = UserDetailsAggregator(
        CircuitBreaker("users", users, fallback=service_unavailable_fallback("Users")),
        CircuitBreaker("orders", orders, fallback=service_unavailable_fallback("Orders")),
    )
    return aggregator, users, orders


class TestUserDetailsAggregator:
    """Test cases for UserDetailsAggregator."""

    @pytest.fixture
    def owner(self):
        return Identity(id="u1", email="john.doe@example.com", roles=frozenset({"user"}))

    @pytest.mark.asyncio
    async def test_merges_user_and_orders(self, owner):
        orders = {
            "orders": [{"id": "o1", "status": "created"}, {"id": "o2", "status": "created"},
                       {"id": "o3", "status": "completed"}],
            "pagination": {"page": 1, "limit": 10, "total": 3, "totalPages": 1},
        }
        aggregator, users_backend, orders_backend = make_aggregator(Ok(USER), Ok(orders))

        status, body = await aggregator.aggregate("u1", owner, "req-1", "Bearer token")

        assert status == 200
        assert body["success"] is True
        assert body["data"]["user"] == USER
        assert body["data"]["orders"] == orders["orders"]
        assert body["data"]["ordersSummary"] == {"total": 3, "byStatus": {"created": 2, "completed": 1}}

        users_spec = users_backend.specs[0]
        orders_spec = orders_backend.specs[0]
        assert users_spec.path == "/v1/users/u1"
        assert orders_spec.path == "/v1/orders"
        assert orders_spec.query_params == [("userId", "u1")]
        for spec in (users_spec, orders_spec):
            assert spec.headers == {"X-Request-ID": "req-1", "Authorization": "Bearer token"}

    @pytest.mark.asyncio
    async def test_missing_user_is_404(self, owner):
        aggregator, _, _ = make_aggregator(
            Err("USER_NOT_FOUND", "User not found"),
            Ok({"orders": [], "pagination": {"total": 0}}),
        )

        status, body = await aggregator.aggregate("u1", owner, "req-1", None)

        assert status == 404
        assert body == {"success": False, "error": {"code": "USER_NOT_FOUND", "message": "User not found"}}

    @pytest.mark.asyncio
    async def test_users_backend_down_is_404(self, owner):
        aggregator, _, _ = make_aggregator(ConnectionError("down"), Ok({"orders": []}))

        status, body = await aggregator.aggregate("u1", owner, "req-1", None)

        assert status == 404
        assert body["error"]["code"] == "USER_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_orders_failure_degrades_to_empty(self, owner):
        aggregator, _, _ = make_aggregator(Ok(USER), ConnectionError("down"))

        status, body = await aggregator.aggregate("u1", owner, "req-1", None)

        assert status == 200
        assert body["data"]["orders"] == []
        assert body["data"]["ordersSummary"] == {"total": 0, "byStatus": {}}

    @pytest.mark.asyncio
    async def test_orders_error_envelope_degrades_to_empty(self, owner):
        aggregator, _, _ = make_aggregator(Ok(USER), Err("FORBIDDEN", "Access denied"))

        status, body = await aggregator.aggregate("u1", owner, "req-1", None)

        assert status == 200
        assert body["data"]["orders"] == []

    @pytest.mark.asyncio
    async def test_other_users_details_forbidden(self, owner):
        aggregator, users_backend, orders_backend = make_aggregator(Ok(USER), Ok({"orders": []}))

        status, body = await aggregator.aggregate("u2", owner, "req-1", None)

        assert status == 403
        assert body["error"]["code"] == "FORBIDDEN"
        assert users_backend.specs == []
        assert orders_backend.specs == []

    @pytest.mark.asyncio
    async def test_admin_may_read_other_users(self):
        admin = Identity(id="admin-1", email="admin@example.com", roles=frozenset({"admin"}))
        aggregator, _, orders_backend = make_aggregator(Ok(USER), Ok({"orders": [], "pagination": {"total": 0}}))

        status, _ = await aggregator.aggregate("u1", admin, "req-1", None)

        assert status == 200
        assert orders_backend.specs[0].query_params == [("userId", "u1")]

    @pytest.mark.asyncio
    async def test_unexpected_error_is_500(self, owner):
        aggregator, _, _ = make_aggregator(Ok(USER), Ok({"orders": "not-a-list"}))

        status, body = await aggregator.aggregate("u1", owner, "req-1", None)

        assert status == 500
        assert body["error"] == {"code": "INTERNAL_ERROR", "message": "Internal server error"}

    @pytest.mark.asyncio
    async def test_user_id_is_path_quoted(self):
        admin = Identity(id="admin-1", email="admin@example.com", roles=frozenset({"admin"}))
        aggregator, users_backend, _ = make_aggregator(Ok(USER), Ok({"orders": []}))

        await aggregator.aggregate("a/b", admin, "req-1", None)

        assert users_backend.specs[0].path == "/v1/users/a%2Fb"


def test_summarize_orders_handles_missing_status():
    assert summarize_orders([{"status": "created"}, {}]) == {"created": 1, "unknown": 1}

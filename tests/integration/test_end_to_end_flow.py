"""
End-to-end integration tests: gateway in front of real users/orders apps.
"""

from typing import Dict

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from shared.test_helpers import auth_headers, build_test_config
from service_gateway.app.main import GatewayService
from service_orders.app.main import OrdersService
from service_users.app.main import UsersService


class HostRoutingTransport(httpx.AsyncBaseTransport):
    """Dispatch backend calls to in-process ASGI apps by host name."""

    def __init__(self, apps: Dict[str, FastAPI]):
        self.transports = {host: httpx.ASGITransport(app=app) for host, app in apps.items()}
        self.calls = []

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        return await self.transports[request.url.host].handle_async_request(request)


class TestEndToEndFlow:
    """End-to-end integration tests for complete system flow."""

    @pytest.fixture
    def users_app(self):
        return UsersService(config=build_test_config("users", 8001)).app

    @pytest.fixture
    def orders_app(self):
        return OrdersService(config=build_test_config("orders", 8002)).app

    @pytest.fixture
    def transport(self, users_app, orders_app):
        return HostRoutingTransport({"users.test": users_app, "orders.test": orders_app})

    @pytest.fixture
    def gateway(self, transport):
        return TestClient(GatewayService(config=build_test_config(), transport=transport).app)

    def register_and_login(self, gateway, email="john.doe@example.com", roles=None):
        payload = {"email": email, "password": "secret123", "name": "John Doe"}
        if roles:
            payload["roles"] = roles
        registered = gateway.post("/v1/users/register", json=payload)
        assert registered.status_code == 200, registered.text

        login = gateway.post("/v1/users/login", json={"email": email, "password": "secret123"})
        assert login.status_code == 200, login.text
        data = login.json()["data"]
        return data["user"], data["token"]

    def test_order_lifecycle(self, gateway, transport):
        user, token = self.register_and_login(gateway)
        headers = auth_headers(token)

        created = gateway.post(
            "/v1/orders",
            json={"items": [{"productId": "p1", "productName": "Widget", "quantity": 2, "price": 100}]},
            headers={**headers, "X-Request-ID": "e2e-1"},
        )

        assert created.status_code == 200
        assert created.headers["X-Request-ID"] == "e2e-1"
        order = created.json()["data"]
        assert order["totalAmount"] == 200
        assert order["status"] == "created"
        assert order["userId"] == user["id"]
        assert transport.calls[-1].headers["X-Request-ID"] == "e2e-1"

        listed = gateway.get("/v1/orders", headers=headers).json()["data"]
        assert [o["id"] for o in listed["orders"]] == [order["id"]]

        cancelled = gateway.delete(f"/v1/orders/{order['id']}", headers=headers)
        assert cancelled.status_code == 200
        assert cancelled.json()["data"]["order"]["status"] == "cancelled"

        details = gateway.get(f"/v1/users/{user['id']}/details", headers=headers)
        assert details.status_code == 200
        data = details.json()["data"]
        assert data["user"]["email"] == "john.doe@example.com"
        assert data["ordersSummary"] == {"total": 1, "byStatus": {"cancelled": 1}}

    def test_backend_and_gateway_status_codes_differ(self, gateway, orders_app):
        _, token = self.register_and_login(gateway)
        payload = {"items": [{"productId": "p1", "productName": "Widget", "quantity": 1, "price": 5}]}

        direct = TestClient(orders_app).post("/v1/orders", json=payload, headers=auth_headers(token))
        proxied = gateway.post("/v1/orders", json=payload, headers=auth_headers(token))

        assert direct.status_code == 201
        assert proxied.status_code == 200

    def test_backend_errors_map_through_gateway(self, gateway):
        self.register_and_login(gateway)

        duplicate = gateway.post(
            "/v1/users/register",
            json={"email": "john.doe@example.com", "password": "secret123", "name": "John Doe"},
        )
        bad_login = gateway.post("/v1/users/login", json={"email": "john.doe@example.com", "password": "nope"})

        assert duplicate.status_code == 409
        assert duplicate.json()["error"]["code"] == "USER_EXISTS"
        assert bad_login.status_code == 401
        assert bad_login.json()["error"]["code"] == "INVALID_CREDENTIALS"

    def test_foreign_order_is_forbidden(self, gateway):
        _, owner_token = self.register_and_login(gateway)
        _, other_token = self.register_and_login(gateway, email="jane.smith@example.com")
        order = gateway.post(
            "/v1/orders",
            json={"items": [{"productId": "p1", "productName": "Widget", "quantity": 1, "price": 5}]},
            headers=auth_headers(owner_token),
        ).json()["data"]

        response = gateway.get(f"/v1/orders/{order['id']}", headers=auth_headers(other_token))

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "FORBIDDEN"

    def test_admin_sees_other_users_details(self, gateway):
        user, token = self.register_and_login(gateway)
        gateway.post(
            "/v1/orders",
            json={"items": [{"productId": "p1", "productName": "Widget", "quantity": 1, "price": 5}]},
            headers=auth_headers(token),
        )
        _, admin_token = self.register_and_login(gateway, email="admin@example.com", roles=["admin"])

        response = gateway.get(f"/v1/users/{user['id']}/details", headers=auth_headers(admin_token))

        assert response.status_code == 200
        assert response.json()["data"]["ordersSummary"]["byStatus"] == {"created": 1}

    def test_admin_lists_users_through_gateway(self, gateway):
        self.register_and_login(gateway)
        _, admin_token = self.register_and_login(gateway, email="admin@example.com", roles=["admin"])

        response = gateway.get("/v1/users?limit=1", headers=auth_headers(admin_token))

        assert response.status_code == 200
        assert response.json()["data"]["pagination"]["total"] == 2
        assert response.json()["data"]["pagination"]["totalPages"] == 2

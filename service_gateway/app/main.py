"""
API Gateway service for the Orderly platform.
"""

import time
from typing import Any, Callable, Dict, Optional
from urllib.parse import quote

import httpx
import psutil
from fastapi import Depends, Request, Response

from shared.auth import Identity, TokenService
from shared.base_service import BaseService, utc_now_iso
from shared.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerManager,
    CircuitBreakerOptions,
    StateTransition,
)
from shared.config import ServiceConfig, get_config
from service_gateway.app.adapters.backend_client import BackendClient, service_unavailable_fallback
from service_gateway.app.domain.aggregator import UserDetailsAggregator
from service_gateway.app.domain.auth_middleware import AuthMiddleware
from service_gateway.app.domain.forwarder import RequestForwarder
from service_gateway.app.ratelimit.fixed_window import (
    FixedWindowRateLimiter,
    MemoryWindowStore,
    PathRateLimitMiddleware,
    RateLimitMiddleware,
    RedisWindowStore,
)


def _segment(value: str) -> str:
    return quote(value, safe="")


class GatewayService(BaseService):
    """API Gateway service implementation."""

    display_name = "API Gateway"

    def __init__(self, config: Optional[ServiceConfig] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None,
                 clock: Callable[[], float] = time.time):
        self._clock = clock
        super().__init__("gateway", 8000, config)
        self.token_service = TokenService(
            self.config.jwt_secret,
            algorithm=self.config.jwt_algorithm,
            ttl_seconds=self.config.token_ttl_seconds,
        )
        self.auth_middleware = AuthMiddleware(self.token_service)

        breaker_options = CircuitBreakerOptions(
            timeout=self.config.breaker_timeout_seconds,
            error_threshold_percentage=self.config.breaker_error_threshold_percentage,
            reset_timeout=self.config.breaker_reset_timeout_seconds,
            rolling_window=self.config.breaker_rolling_window_seconds,
            rolling_buckets=self.config.breaker_rolling_buckets,
            volume_threshold=self.config.breaker_volume_threshold,
        )
        self.circuit_breakers = CircuitBreakerManager()
        self.users_client = BackendClient(
            "users", self.config.users_service_url,
            timeout=self.config.breaker_timeout_seconds, transport=transport, metrics=self.metrics,
        )
        self.orders_client = BackendClient(
            "orders", self.config.orders_service_url,
            timeout=self.config.breaker_timeout_seconds, transport=transport, metrics=self.metrics,
        )
        self.users_breaker = self._create_breaker(self.users_client, "Users", breaker_options, clock)
        self.orders_breaker = self._create_breaker(self.orders_client, "Orders", breaker_options, clock)

        self.forwarder = RequestForwarder()
        self.aggregator = UserDetailsAggregator(self.users_breaker, self.orders_breaker)

        @self.app.on_event("shutdown")
        async def _shutdown():
            await self.rate_limiter.store.close()
            await self.auth_rate_limiter.store.close()

        self._setup_status_routes()
        self._setup_user_routes()
        self._setup_order_routes()
        self._setup_aggregation_routes()

        # Expose service instance via app state for introspection/testing
        self.app.state.gateway_service = self

    def _setup_middleware(self):
        """Set up middleware, with the general limit inside the request context."""
        self.rate_limiter = FixedWindowRateLimiter(
            "general",
            self.config.rate_limit_max_requests,
            self.config.rate_limit_window_seconds,
            store=self._create_rate_limit_store(self._clock),
        )
        self.auth_rate_limiter = FixedWindowRateLimiter(
            "auth",
            self.config.auth_rate_limit_max_requests,
            self.config.rate_limit_window_seconds,
            store=self._create_rate_limit_store(self._clock),
            message="Too many authentication attempts, please try again later.",
        )
        self.rate_limit_middleware = RateLimitMiddleware(
            self.rate_limiter, self.metrics, self.config.trust_forwarded_for
        )
        self.auth_rate_limit_middleware = RateLimitMiddleware(
            self.auth_rate_limiter, self.metrics, self.config.trust_forwarded_for
        )

        # Added first so it runs innermost, after the request id is bound.
        self.app.add_middleware(PathRateLimitMiddleware, rate_limit=self.rate_limit_middleware, path_prefix="/v1")
        super()._setup_middleware()

    def _create_breaker(self, client: BackendClient, display_name: str,
                        options: CircuitBreakerOptions, clock: Callable[[], float]) -> CircuitBreaker:
        breaker = CircuitBreaker(
            client.name,
            client.send,
            fallback=service_unavailable_fallback(display_name, self.metrics, client.name),
            options=options,
            clock=clock,
        )
        breaker.add_listener(self._on_breaker_transition)
        return self.circuit_breakers.register(breaker)

    def _create_rate_limit_store(self, clock: Callable[[], float]):
        if self.config.rate_limit_redis_url:
            return RedisWindowStore(self.config.rate_limit_redis_url)
        return MemoryWindowStore(clock)

    def _on_breaker_transition(self, transition: StateTransition) -> None:
        self.metrics.record_breaker_state(transition.name, transition.current.value)

    # Dependencies

    async def _apply_auth_rate_limit(self, request: Request) -> None:
        await self.auth_rate_limit_middleware.check_request(request)

    async def _require_identity(self, request: Request) -> Identity:
        return await self.auth_middleware.authenticate_request(request)

    async def _forward(self, breaker: CircuitBreaker, backend_path: str,
                       request: Request, response: Response) -> Dict[str, Any]:
        status_code, envelope = await self.forwarder.forward(breaker, backend_path, request)
        response.status_code = status_code
        return envelope.to_dict()

    def _circuit_status(self, breaker: CircuitBreaker) -> Dict[str, Any]:
        state = breaker.get_state()
        return {"state": state["state"], "stats": state["stats"], "lastOpenedAt": state["lastOpenedAt"]}

    async def _health_details(self) -> Dict[str, Any]:
        details = await super()._health_details()
        details["circuits"] = {
            "users": self._circuit_status(self.users_breaker),
            "orders": self._circuit_status(self.orders_breaker),
        }
        return details

    def _setup_status_routes(self):
        """Set up gateway status routes."""

        @self.app.get("/status")
        async def status():
            """Detailed gateway and backend status."""
            memory = psutil.Process().memory_info()
            return {
                "success": True,
                "data": {
                    "gateway": {
                        "status": "OK",
                        "uptime": self._get_uptime(),
                        "memory": {"rss": memory.rss, "vms": memory.vms},
                        "timestamp": utc_now_iso(),
                    },
                    "services": {
                        name: {
                            "circuitState": state["state"],
                            "stats": state["stats"],
                            "lastOpenedAt": state["lastOpenedAt"],
                        }
                        for name, state in self.circuit_breakers.get_all_states().items()
                    },
                },
            }

    def _setup_user_routes(self):
        """Set up routes forwarded to the users service."""
        auth_limited = [Depends(self._apply_auth_rate_limit)]
        protected = [Depends(self._require_identity)]

        @self.app.post("/v1/users/register", dependencies=auth_limited)
        async def register(request: Request, response: Response):
            return await self._forward(self.users_breaker, "/v1/users/register", request, response)

        @self.app.post("/v1/users/login", dependencies=auth_limited)
        async def login(request: Request, response: Response):
            return await self._forward(self.users_breaker, "/v1/users/login", request, response)

        @self.app.get("/v1/users/profile", dependencies=protected)
        async def get_profile(request: Request, response: Response):
            return await self._forward(self.users_breaker, "/v1/users/profile", request, response)

        @self.app.put("/v1/users/profile", dependencies=protected)
        async def update_profile(request: Request, response: Response):
            return await self._forward(self.users_breaker, "/v1/users/profile", request, response)

        @self.app.get("/v1/users", dependencies=protected)
        async def list_users(request: Request, response: Response):
            return await self._forward(self.users_breaker, "/v1/users", request, response)

        @self.app.get("/v1/users/{user_id}", dependencies=protected)
        async def get_user(user_id: str, request: Request, response: Response):
            return await self._forward(self.users_breaker, f"/v1/users/{_segment(user_id)}", request, response)

    def _setup_order_routes(self):
        """Set up routes forwarded to the orders service."""
        protected = [Depends(self._require_identity)]

        @self.app.post("/v1/orders", dependencies=protected)
        async def create_order(request: Request, response: Response):
            return await self._forward(self.orders_breaker, "/v1/orders", request, response)

        @self.app.get("/v1/orders", dependencies=protected)
        async def list_orders(request: Request, response: Response):
            return await self._forward(self.orders_breaker, "/v1/orders", request, response)

        @self.app.get("/v1/orders/{order_id}", dependencies=protected)
        async def get_order(order_id: str, request: Request, response: Response):
            return await self._forward(self.orders_breaker, f"/v1/orders/{_segment(order_id)}", request, response)

        @self.app.put("/v1/orders/{order_id}", dependencies=protected)
        async def update_order(order_id: str, request: Request, response: Response):
            return await self._forward(self.orders_breaker, f"/v1/orders/{_segment(order_id)}", request, response)

        @self.app.delete("/v1/orders/{order_id}", dependencies=protected)
        async def cancel_order(order_id: str, request: Request, response: Response):
            return await self._forward(self.orders_breaker, f"/v1/orders/{_segment(order_id)}", request, response)

    def _setup_aggregation_routes(self):
        """Set up routes that combine both backends."""

        @self.app.get("/v1/users/{user_id}/details")
        async def get_user_details(user_id: str, request: Request, response: Response,
                                   identity: Identity = Depends(self._require_identity)):
            """User profile together with their orders."""
            status_code, body = await self.aggregator.aggregate(
                user_id,
                identity,
                request_id=request.state.request_id,
                authorization=request.headers.get("Authorization"),
            )
            response.status_code = status_code
            return body


def create_app(config: Optional[ServiceConfig] = None,
               transport: Optional[httpx.AsyncBaseTransport] = None):
    """Create FastAPI application."""
    service = GatewayService(config=config, transport=transport)
    return service.app


def main():
    service = GatewayService(config=get_config("gateway", 8000))
    service.run()


if __name__ == "__main__":
    main()

"""
Composite "user with orders" query across both backends.
"""

import asyncio
from collections import Counter
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

from shared.auth import Identity
from shared.circuit_breaker import CircuitBreaker
from shared.envelope import Ok, err, ok
from shared.logging import get_logger
from service_gateway.app.adapters.backend_client import ForwardSpec
from service_gateway.app.domain.forwarder import trace_headers


def empty_orders() -> Dict[str, Any]:
    return {"orders": [], "pagination": {"total": 0}}


def summarize_orders(orders: List[Dict[str, Any]]) -> Dict[str, int]:
    """Count orders per status."""
    return dict(Counter(str(order.get("status", "unknown")) for order in orders))


class UserDetailsAggregator:
    """Fetch a user and their orders concurrently and merge the results."""

    def __init__(self, users_breaker: CircuitBreaker, orders_breaker: CircuitBreaker):
        self.users_breaker = users_breaker
        self.orders_breaker = orders_breaker
        self.logger = get_logger("gateway.aggregator")

    async def aggregate(self, user_id: str, identity: Identity, request_id: str,
                        authorization: Optional[str]) -> Tuple[int, Dict[str, Any]]:
        if identity.id != user_id and not identity.is_admin:
            self.logger.warning("Aggregate access denied", user_id=user_id, caller=identity.id)
            return 403, err("FORBIDDEN", "Access denied")

        try:
            return await self._aggregate(user_id, request_id, authorization)
        except Exception as e:
            self.logger.error("Error fetching user details", error=str(e), user_id=user_id, exc_info=True)
            return 500, err("INTERNAL_ERROR", "Internal server error")

    async def _aggregate(self, user_id: str, request_id: str,
                         authorization: Optional[str]) -> Tuple[int, Dict[str, Any]]:
        self.logger.info("Fetching user details with orders", user_id=user_id)
        headers = trace_headers(request_id, authorization)

        # Both calls settle before anything is decided; neither cancels the other.
        user_result, orders_result = await asyncio.gather(
            self.users_breaker.invoke(ForwardSpec("GET", f"/v1/users/{quote(user_id, safe='')}", dict(headers))),
            self.orders_breaker.invoke(
                ForwardSpec("GET", "/v1/orders", dict(headers), query_params=[("userId", user_id)])
            ),
            return_exceptions=True,
        )

        if not isinstance(user_result, Ok):
            return 404, err("USER_NOT_FOUND", "User not found")

        orders_data = empty_orders()
        if isinstance(orders_result, Ok) and isinstance(orders_result.data, dict):
            orders_data = orders_result.data
        else:
            self.logger.warning("Orders lookup failed, degrading to empty orders", user_id=user_id)

        orders = orders_data.get("orders") or []
        pagination = orders_data.get("pagination") or {}

        self.logger.info("User details retrieved", user_id=user_id, orders_count=len(orders))

        return 200, ok({
            "user": user_result.data,
            "orders": orders,
            "ordersSummary": {
                "total": pagination.get("total") or 0,
                "byStatus": summarize_orders(orders),
            },
        })

"""
Orders service for the Orderly platform.
"""

import math
import uuid
from typing import Any, Dict, Optional

from fastapi import Depends, Query

from shared.auth import Identity, TokenService, identity_dependency
from shared.base_service import BaseService, utc_now_iso
from shared.config import ServiceConfig, get_config
from shared.envelope import ok
from shared.errors import AuthorizationError, NotFoundError
from shared.storage import InMemoryRepository, Repository
from service_orders.app.models import CreateOrderRequest, OrderStatus, UpdateOrderRequest


class OrdersService(BaseService):
    """Orders service implementation."""

    display_name = "Orders Service"

    def __init__(self, config: Optional[ServiceConfig] = None,
                 repository: Optional[Repository] = None):
        super().__init__("orders", 8002, config)
        self.repository = repository if repository is not None else InMemoryRepository()
        self.token_service = TokenService(
            self.config.jwt_secret,
            algorithm=self.config.jwt_algorithm,
            ttl_seconds=self.config.token_ttl_seconds,
        )
        self.require_identity = identity_dependency(self.token_service)

        self._setup_order_routes()
        self.app.state.orders_service = self

    async def _load_owned_order(self, order_id: str, identity: Identity) -> Dict[str, Any]:
        """Fetch an order the caller may act on."""
        order = await self.repository.get(order_id)
        if order is None:
            self.logger.warning("Order not found", order_id=order_id, user_id=identity.id)
            raise NotFoundError("ORDER_NOT_FOUND", "Order not found")

        if order["userId"] != identity.id and not identity.is_admin:
            self.logger.warning("Order access denied", order_id=order_id, user_id=identity.id)
            raise AuthorizationError()
        return order

    async def create_order(self, identity: Identity, payload: CreateOrderRequest) -> Dict[str, Any]:
        now = utc_now_iso()
        order = {
            "id": str(uuid.uuid4()),
            "userId": identity.id,
            "items": [item.model_dump() for item in payload.items],
            "totalAmount": payload.total_amount(),
            "status": "created",
            "createdAt": now,
            "updatedAt": now,
        }
        await self.repository.put(order)

        self.logger.info(
            "Order created successfully",
            order_id=order["id"],
            user_id=identity.id,
            total_amount=order["totalAmount"],
        )
        self.metrics.record_business_event("order_created")
        return order

    async def list_orders(self, identity: Identity, page: int, limit: int,
                          status: Optional[str], user_id: Optional[str]) -> Dict[str, Any]:
        """Paginated orders of the caller, or of ``user_id`` for admins."""
        owner = identity.id
        if user_id and user_id != identity.id:
            if identity.is_admin:
                owner = user_id
            else:
                self.logger.info("Ignoring foreign userId filter", user_id=identity.id, requested=user_id)

        orders = [order for order in await self.repository.list() if order["userId"] == owner]
        if status:
            orders = [order for order in orders if order["status"] == status]

        start = (page - 1) * limit
        self.logger.info("Orders list retrieved", user_id=owner, page=page, limit=limit, total=len(orders))
        return {
            "orders": orders[start:start + limit],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": len(orders),
                "totalPages": math.ceil(len(orders) / limit),
            },
        }

    async def set_status(self, order: Dict[str, Any], status: str) -> Dict[str, Any]:
        order["status"] = status
        order["updatedAt"] = utc_now_iso()
        await self.repository.put(order)
        self.metrics.record_business_event(f"order_{status}")
        return order

    def _setup_order_routes(self):
        """Set up order routes."""

        @self.app.get("/orders/health")
        async def orders_health():
            """Service-prefixed health check."""
            return ok(await self._health_details())

        @self.app.post("/v1/orders", status_code=201)
        async def create_order(payload: CreateOrderRequest,
                               identity: Identity = Depends(self.require_identity)):
            return ok(await self.create_order(identity, payload))

        @self.app.get("/v1/orders")
        async def list_orders(
            identity: Identity = Depends(self.require_identity),
            page: int = Query(1, ge=1),
            limit: int = Query(10, ge=1, le=100),
            status: Optional[OrderStatus] = Query(None),
            user_id: Optional[str] = Query(None, alias="userId"),
        ):
            return ok(await self.list_orders(identity, page, limit, status, user_id))

        @self.app.get("/v1/orders/{order_id}")
        async def get_order(order_id: str, identity: Identity = Depends(self.require_identity)):
            order = await self._load_owned_order(order_id, identity)
            self.logger.info("Order retrieved", order_id=order_id, user_id=identity.id)
            return ok(order)

        @self.app.put("/v1/orders/{order_id}")
        async def update_order(order_id: str, payload: UpdateOrderRequest,
                               identity: Identity = Depends(self.require_identity)):
            order = await self._load_owned_order(order_id, identity)
            order = await self.set_status(order, payload.status)
            self.logger.info("Order status updated", order_id=order_id, new_status=payload.status)
            return ok(order)

        @self.app.delete("/v1/orders/{order_id}")
        async def cancel_order(order_id: str, identity: Identity = Depends(self.require_identity)):
            order = await self._load_owned_order(order_id, identity)
            order = await self.set_status(order, "cancelled")
            self.logger.info("Order cancelled", order_id=order_id, user_id=identity.id)
            return ok({"message": "Order cancelled successfully", "order": order})


def create_app(config: Optional[ServiceConfig] = None, repository: Optional[Repository] = None):
    """Create FastAPI application."""
    service = OrdersService(config=config, repository=repository)
    return service.app


def main():
    service = OrdersService(config=get_config("orders", 8002))
    service.run()


if __name__ == "__main__":
    main()

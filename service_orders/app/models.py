"""
Request models for the Orders Service.
"""

from typing import List, Literal

from pydantic import BaseModel, ConfigDict, Field

OrderStatus = Literal["created", "in_progress", "completed", "cancelled"]


class OrderItem(BaseModel):
    """Single order line."""
    productId: str
    productName: str
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0)

    @property
    def subtotal(self) -> float:
        return self.quantity * self.price


class CreateOrderRequest(BaseModel):
    """Request model for order creation."""
    model_config = ConfigDict(extra="forbid")

    items: List[OrderItem] = Field(..., min_length=1)

    def total_amount(self) -> float:
        return sum(item.subtotal for item in self.items)


class UpdateOrderRequest(BaseModel):
    """Request model for status changes."""
    model_config = ConfigDict(extra="forbid")

    status: OrderStatus

"""
Output models for API responses using Pydantic.
"""

from typing import Annotated, List

from pydantic import Field

from ecommerce.models.base import CamelModel
from ecommerce.models.order import Order, OrderBilling, OrderProduct, OrderShipping


class OrderResponse(CamelModel):
    """Order as returned by the orders API."""

    email: str
    id: str
    created_at: Annotated[int, Field(description='Creation time in epoch milliseconds')]
    products: List[OrderProduct]
    billing: OrderBilling
    shipping: OrderShipping

    @classmethod
    def from_order(cls, order: Order) -> 'OrderResponse':
        return cls(
            email=order.email,
            id=order.id,
            created_at=order.created_at,
            products=order.products,
            billing=order.billing,
            shipping=order.shipping,
        )

    def to_body(self) -> dict:
        return self.model_dump(mode='json', by_alias=True)

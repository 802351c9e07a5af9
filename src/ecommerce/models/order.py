"""
Order domain model.

An order is keyed by customer email (partition) and a random order id
(sort). Product prices are snapshotted when the order is created so later
catalog changes never alter a stored order.
"""

from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Dict, List

from pydantic import Field

from ecommerce.models.base import CamelModel, Price


class PaymentType(str, Enum):
    CASH = 'CASH'
    DEBIT_CARD = 'DEBIT_CARD'
    CREDIT_CARD = 'CREDIT_CARD'


class ShippingType(str, Enum):
    ECONOMIC = 'ECONOMIC'
    URGENT = 'URGENT'


class CarrierType(str, Enum):
    CORREIOS = 'CORREIOS'
    FEDEX = 'FEDEX'


class OrderProduct(CamelModel):
    """Product snapshot captured at order time."""

    code: Annotated[str, Field(min_length=1, description='Product code')]
    price: Annotated[Price, Field(ge=0, description='Unit price when the order was placed')]


class OrderBilling(CamelModel):
    payment: PaymentType
    total_price: Annotated[Price, Field(ge=0, description='Sum of the product snapshot prices')]


class OrderShipping(CamelModel):
    type: ShippingType
    carrier: CarrierType


class Order(CamelModel):
    """Core Order domain model."""

    email: Annotated[str, Field(min_length=3, description='Customer email, the partition key')]
    id: Annotated[str, Field(min_length=1, description='Order identifier, the sort key')]
    created_at: Annotated[int, Field(ge=0, description='Creation time in epoch milliseconds')]
    products: List[OrderProduct]
    billing: OrderBilling
    shipping: OrderShipping

    @property
    def product_codes(self) -> List[str]:
        return [product.code for product in self.products]

    def to_item(self) -> Dict[str, Any]:
        """Convert to a DynamoDB item."""
        return {
            'pk': self.email,
            'sk': self.id,
            'createdAt': self.created_at,
            'products': [{'code': p.code, 'price': p.price} for p in self.products],
            'billing': {
                'payment': self.billing.payment.value,
                'totalPrice': self.billing.total_price,
            },
            'shipping': {
                'type': self.shipping.type.value,
                'carrier': self.shipping.carrier.value,
            },
        }

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> 'Order':
        """Create an Order from a DynamoDB item."""
        return cls(
            email=item['pk'],
            id=item['sk'],
            created_at=int(item['createdAt']),
            products=[OrderProduct(code=p['code'], price=Decimal(str(p['price']))) for p in item.get('products', [])],
            billing=OrderBilling.model_validate(item['billing']),
            shipping=OrderShipping.model_validate(item['shipping']),
        )

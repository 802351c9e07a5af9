"""
Input models for API requests using Pydantic.
"""

from typing import Annotated, List

from pydantic import Field, field_validator

from ecommerce.models.base import CamelModel
from ecommerce.models.order import OrderShipping, PaymentType


class CreateOrderRequest(CamelModel):
    """Request body for POST /orders."""

    email: Annotated[str, Field(
        min_length=3,
        max_length=254,
        pattern=r'^[^@\s]+@[^@\s]+\.[^@\s]+$',
        description='Customer email address',
        examples=['alice@example.com']
    )]

    product_ids: Annotated[List[str], Field(
        min_length=1,
        description='Catalog product identifiers, in order; duplicates allowed',
        examples=[['P1', 'P2']]
    )]

    payment: PaymentType

    shipping: OrderShipping

    @field_validator('product_ids')
    @classmethod
    def validate_product_ids(cls, v: List[str]) -> List[str]:
        if any(not product_id.strip() for product_id in v):
            raise ValueError('product ids must not be blank')
        return v

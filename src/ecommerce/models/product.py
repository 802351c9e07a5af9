"""Catalog product as stored in the products table."""

from typing import Annotated, Any, Dict, Optional

from pydantic import ConfigDict, Field

from ecommerce.models.base import CamelModel, Price


class Product(CamelModel):
    """Catalog entry. Only `id`, `code` and `price` matter to the order pipeline."""

    model_config = ConfigDict(extra='ignore')

    id: Annotated[str, Field(min_length=1)]
    code: Annotated[str, Field(min_length=1)]
    price: Annotated[Price, Field(ge=0)]
    product_name: Optional[str] = None
    model: Optional[str] = None
    product_url: Optional[str] = None

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> 'Product':
        return cls.model_validate(item)

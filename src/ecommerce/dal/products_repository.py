"""
Read-only view of the product catalog used to validate and price orders.
"""

from typing import Dict, List, Optional

from ecommerce.dal.dynamodb_handler import DynamoDBHandler
from ecommerce.handlers.utils.errors import ErrorContext
from ecommerce.models.product import Product


class ProductsRepository:

    def __init__(self, table_handler: DynamoDBHandler):
        self.dal = table_handler

    def resolve_products(
        self,
        product_ids: List[str],
        context: Optional[ErrorContext] = None,
    ) -> List[Optional[Product]]:
        """
        Look up catalog entries for a list of product ids.

        Args:
            product_ids: Ids in request order; duplicates allowed

        Returns:
            One entry per requested id, in the same order; None where the id is not in the catalog
        """
        unique_ids = list(dict.fromkeys(product_ids))
        items = self.dal.batch_get_items([{'id': product_id} for product_id in unique_ids], context=context)

        by_id: Dict[str, Product] = {}
        for item in items:
            product = Product.from_item(item)
            by_id[product.id] = product

        return [by_id.get(product_id) for product_id in product_ids]

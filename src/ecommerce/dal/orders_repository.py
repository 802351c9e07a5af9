"""
Orders repository.

Orders are keyed by customer email (pk) and order id (sk). Writes are
last-writer-wins; deletes are guarded by an existence check so a missing
order surfaces as "not found" instead of a silent no-op.
"""

from typing import List, Optional

from boto3.dynamodb.conditions import Attr, Key

from ecommerce.dal.dynamodb_handler import ConditionalCheckFailedError, DynamoDBHandler
from ecommerce.handlers.utils.errors import ErrorContext
from ecommerce.models.order import Order


class OrdersRepository:

    def __init__(self, table_handler: DynamoDBHandler):
        self.dal = table_handler

    def create_order(self, order: Order, context: Optional[ErrorContext] = None) -> Order:
        self.dal.put_item(order.to_item(), context=context)
        return order

    def get_order(self, email: str, order_id: str) -> Optional[Order]:
        item = self.dal.get_item({'pk': email, 'sk': order_id})
        return Order.from_item(item) if item else None

    def get_orders_by_email(self, email: str) -> List[Order]:
        return [Order.from_item(item) for item in self.dal.query_all(Key('pk').eq(email))]

    def get_all_orders(self) -> List[Order]:
        return [Order.from_item(item) for item in self.dal.scan_all()]

    def delete_order(self, email: str, order_id: str, context: Optional[ErrorContext] = None) -> Optional[Order]:
        """
        Delete an order if it exists.

        Returns:
            The deleted order, or None when no order is stored under the key
        """
        try:
            item = self.dal.delete_item(
                {'pk': email, 'sk': order_id},
                condition_expression=Attr('pk').exists(),
                condition_description='order exists',
                context=context,
            )
        except ConditionalCheckFailedError:
            return None
        return Order.from_item(item) if item else None

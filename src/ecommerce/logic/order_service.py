"""
Business Logic Layer for Order Management.

Creating or deleting an order emits a lifecycle envelope through the event
publisher. On create, the order write and the CREATED publish are issued
concurrently and are not atomic: either one can succeed without the other.
Both outcomes are returned so callers can see a failed publish, and an event
whose order failed to persist is logged as an orphan.
"""

import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, List, Optional, Protocol
from uuid import uuid4

from ecommerce.dal.orders_repository import OrdersRepository
from ecommerce.dal.products_repository import ProductsRepository
from ecommerce.events.envelope import OrderEvent, OrderEventType, encode_order_event
from ecommerce.events.publisher import PublishResult
from ecommerce.handlers.utils.errors import (
    ErrorContext,
    ResourceNotFoundError,
    ValidationError,
)
from ecommerce.handlers.utils.observability import logger
from ecommerce.models.input import CreateOrderRequest
from ecommerce.models.order import Order, OrderBilling, OrderProduct

PRODUCT_NOT_FOUND_MESSAGE = 'some product was not found'


class OrderValidationError(ValidationError):
    """Raised when an order request cannot be fulfilled as asked."""


class OrderNotFoundError(ResourceNotFoundError):
    """Raised when an order is not found."""

    def __init__(self, email: str, order_id: str, context: Optional[ErrorContext] = None):
        super().__init__(
            resource_type="Order",
            resource_id=order_id,
            context=context,
        )
        self.email = email


class EventSink(Protocol):
    """Anything that can publish an envelope with its routing type."""

    def publish(self, message: str, event_type: str) -> PublishResult: ...


@dataclass(frozen=True)
class OrderCreation:
    """Outcome of create_order: the stored order and what happened to its CREATED event."""

    order: Order
    publish_result: PublishResult

    @property
    def event_published(self) -> bool:
        return self.publish_result.success


@dataclass(frozen=True)
class OrderDeletion:
    order: Order
    publish_result: PublishResult

    @property
    def event_published(self) -> bool:
        return self.publish_result.success


def _epoch_millis() -> int:
    return time.time_ns() // 1_000_000


class OrderService:
    """Business logic service for order management."""

    def __init__(
        self,
        orders_repository: OrdersRepository,
        products_repository: ProductsRepository,
        event_publisher: EventSink,
        clock: Callable[[], int] = _epoch_millis,
        id_factory: Callable[[], str] = lambda: str(uuid4()),
    ):
        """
        Initialize order service.

        Args:
            orders_repository: Order store
            products_repository: Catalog used to validate and price orders
            event_publisher: Destination of lifecycle envelopes
            clock: Epoch-millisecond clock for ``createdAt``
            id_factory: Order id generator
        """
        self.orders = orders_repository
        self.products = products_repository
        self.publisher = event_publisher
        self.clock = clock
        self.id_factory = id_factory

    def create_order(self, request: CreateOrderRequest, context: ErrorContext) -> OrderCreation:
        """
        Create an order and publish its CREATED event.

        Every requested product must exist; otherwise nothing is written and
        nothing is published.

        Args:
            request: Validated create request
            context: Carries the triggering request id, copied into the event

        Returns:
            OrderCreation with the persisted order and the publish outcome

        Raises:
            OrderValidationError: If any product id does not resolve
            DALError: If the order write failed
        """
        resolved = self.products.resolve_products(request.product_ids, context=context)
        missing = [pid for pid, product in zip(request.product_ids, resolved) if product is None]
        if missing:
            logger.info("Order rejected, unknown products", email=request.email, missing_product_ids=missing)
            raise OrderValidationError(
                PRODUCT_NOT_FOUND_MESSAGE,
                field_errors=[{'field': 'productIds', 'message': f'not found: {pid}'} for pid in missing],
                context=context,
            )

        products = [OrderProduct(code=product.code, price=product.price) for product in resolved]
        order = Order(
            email=request.email,
            id=self.id_factory(),
            created_at=self.clock(),
            products=products,
            billing=OrderBilling(
                payment=request.payment,
                total_price=sum((p.price for p in products), Decimal('0')),
            ),
            shipping=request.shipping,
        )

        envelope = encode_order_event(OrderEventType.CREATED, OrderEvent.from_order(order, context.request_id))

        with ThreadPoolExecutor(max_workers=2) as executor:
            write_future = executor.submit(self.orders.create_order, order, context)
            publish_future = executor.submit(self.publisher.publish, envelope, OrderEventType.CREATED.value)
            publish_result = publish_future.result()
            write_error = write_future.exception()

        if write_error is not None:
            if publish_result.success:
                logger.error(
                    "Order event published for an order that was not stored",
                    order_id=order.id,
                    message_id=publish_result.message_id,
                    request_id=context.request_id,
                )
            raise write_error

        if not publish_result.success:
            logger.error(
                "Order stored without its CREATED event",
                order_id=order.id,
                request_id=context.request_id,
                error=publish_result.error_message,
            )

        logger.info(
            "Order created",
            order_id=order.id,
            email=order.email,
            total_price=str(order.billing.total_price),
            event_published=publish_result.success,
        )
        return OrderCreation(order=order, publish_result=publish_result)

    def delete_order(self, email: str, order_id: str, context: ErrorContext) -> OrderDeletion:
        """
        Delete an order, then publish a DELETED event carrying its snapshot.

        Raises:
            OrderNotFoundError: If no order exists under (email, order_id); nothing is published
        """
        deleted = self.orders.delete_order(email, order_id, context=context)
        if deleted is None:
            raise OrderNotFoundError(email, order_id, context=context)

        envelope = encode_order_event(OrderEventType.DELETED, OrderEvent.from_order(deleted, context.request_id))
        publish_result = self.publisher.publish(envelope, OrderEventType.DELETED.value)
        if not publish_result.success:
            logger.error(
                "Order deleted without its DELETED event",
                order_id=order_id,
                request_id=context.request_id,
                error=publish_result.error_message,
            )

        logger.info("Order deleted", order_id=order_id, email=email, event_published=publish_result.success)
        return OrderDeletion(order=deleted, publish_result=publish_result)

    def get_order(self, email: str, order_id: str, context: Optional[ErrorContext] = None) -> Order:
        """
        Raises:
            OrderNotFoundError: If the order does not exist
        """
        order = self.orders.get_order(email, order_id)
        if order is None:
            raise OrderNotFoundError(email, order_id, context=context)
        return order

    def get_orders_by_email(self, email: str) -> List[Order]:
        return self.orders.get_orders_by_email(email)

    def get_all_orders(self) -> List[Order]:
        return self.orders.get_all_orders()

"""
Event envelope codec and lifecycle event schemas.

An envelope is the unit the publisher routes: a JSON object carrying the
event type and an opaque, already serialized payload::

    {"eventType": "CREATED", "data": "{\"orderId\": ...}"}

The event type is duplicated as the ``eventType`` message attribute at publish
time so subscriptions filter without parsing ``data``. Lifecycle payloads are
decoded once at the boundary into one of the tagged event classes below and
are passed around typed from then on.
"""

import json
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Tuple, Type, Union

from pydantic import Field
from pydantic import ValidationError as PydanticValidationError

from ecommerce.handlers.utils.errors import EventDecodeError
from ecommerce.models.base import CamelModel, Price
from ecommerce.models.order import Order

EVENT_TYPE_ATTRIBUTE = 'eventType'


class OrderEventType(str, Enum):
    """Order lifecycle event types."""
    CREATED = 'CREATED'
    DELETED = 'DELETED'


class ProductEventType(str, Enum):
    """Product lifecycle event types."""
    CREATED = 'PRODUCT_CREATED'
    UPDATED = 'PRODUCT_UPDATED'
    DELETED = 'PRODUCT_DELETED'


def encode_envelope(event_type: str, payload: Union[str, bytes]) -> str:
    """
    Wrap a serialized payload in an envelope.

    Args:
        event_type: Routing type, e.g. ``CREATED``
        payload: Opaque serialized payload; bytes must be UTF-8

    Returns:
        JSON envelope string
    """
    if isinstance(event_type, Enum):
        event_type = event_type.value
    if not event_type:
        raise EventDecodeError('event type must not be empty')
    if isinstance(payload, bytes):
        try:
            payload = payload.decode('utf-8')
        except UnicodeDecodeError as e:
            raise EventDecodeError(f'payload is not valid UTF-8: {e}') from e

    return json.dumps({EVENT_TYPE_ATTRIBUTE: event_type, 'data': payload})


def decode_envelope(message: Union[str, bytes]) -> Tuple[str, str]:
    """
    Unwrap an envelope without looking inside the payload.

    Returns:
        ``(event_type, payload)`` exactly as they were encoded

    Raises:
        EventDecodeError: If the message is not a well formed envelope
    """
    try:
        envelope = json.loads(message)
    except (TypeError, ValueError) as e:
        raise EventDecodeError(f'envelope is not valid JSON: {e}') from e

    if not isinstance(envelope, dict):
        raise EventDecodeError('envelope must be a JSON object')

    event_type = envelope.get(EVENT_TYPE_ATTRIBUTE)
    data = envelope.get('data')
    if not isinstance(event_type, str) or not event_type:
        raise EventDecodeError('envelope has no eventType')
    if not isinstance(data, str):
        raise EventDecodeError('envelope data must be a string')

    return event_type, data


class EventBilling(CamelModel):
    payment: str
    total_price: Price


class EventShipping(CamelModel):
    type: str
    carrier: str


class OrderEvent(CamelModel):
    """Payload of an order lifecycle envelope."""

    order_id: Annotated[str, Field(min_length=1)]
    email: Annotated[str, Field(min_length=1)]
    billing: EventBilling
    shipping: EventShipping
    product_codes: List[str]
    request_id: str

    @classmethod
    def from_order(cls, order: Order, request_id: str) -> 'OrderEvent':
        return cls(
            order_id=order.id,
            email=order.email,
            billing=EventBilling(payment=order.billing.payment.value, total_price=order.billing.total_price),
            shipping=EventShipping(type=order.shipping.type.value, carrier=order.shipping.carrier.value),
            product_codes=order.product_codes,
            request_id=request_id,
        )


class ProductEvent(CamelModel):
    """Product lifecycle event, delivered by direct invocation."""

    request_id: str
    event_type: ProductEventType
    product_id: Annotated[str, Field(min_length=1)]
    product_code: Annotated[str, Field(min_length=1)]
    product_price: Price
    email: Annotated[str, Field(min_length=1)]


class OrderCreated(CamelModel):
    event_type: Literal[OrderEventType.CREATED] = OrderEventType.CREATED
    event: OrderEvent


class OrderDeleted(CamelModel):
    event_type: Literal[OrderEventType.DELETED] = OrderEventType.DELETED
    event: OrderEvent


class ProductCreated(CamelModel):
    event_type: Literal[ProductEventType.CREATED] = ProductEventType.CREATED
    event: ProductEvent


class ProductUpdated(CamelModel):
    event_type: Literal[ProductEventType.UPDATED] = ProductEventType.UPDATED
    event: ProductEvent


class ProductDeleted(CamelModel):
    event_type: Literal[ProductEventType.DELETED] = ProductEventType.DELETED
    event: ProductEvent


OrderLifecycleEvent = Union[OrderCreated, OrderDeleted]
ProductLifecycleEvent = Union[ProductCreated, ProductUpdated, ProductDeleted]

ORDER_EVENT_REGISTRY: Dict[str, Type[CamelModel]] = {
    OrderEventType.CREATED.value: OrderCreated,
    OrderEventType.DELETED.value: OrderDeleted,
}

PRODUCT_EVENT_REGISTRY: Dict[str, Type[CamelModel]] = {
    ProductEventType.CREATED.value: ProductCreated,
    ProductEventType.UPDATED.value: ProductUpdated,
    ProductEventType.DELETED.value: ProductDeleted,
}


def encode_order_event(event_type: OrderEventType, event: OrderEvent) -> str:
    """Serialize an order event and wrap it in an envelope."""
    return encode_envelope(event_type.value, event.model_dump_json(by_alias=True))


def decode_order_event(message: Union[str, bytes]) -> OrderLifecycleEvent:
    """
    Decode an envelope into a typed order lifecycle event.

    Raises:
        EventDecodeError: If the envelope, its type or its payload is invalid
    """
    event_type, data = decode_envelope(message)

    event_class = ORDER_EVENT_REGISTRY.get(event_type)
    if event_class is None:
        raise EventDecodeError(f'unknown order event type: {event_type}')

    try:
        return event_class(event=OrderEvent.model_validate_json(data))
    except PydanticValidationError as e:
        raise EventDecodeError(
            f'invalid {event_type} order event payload',
            field_errors=_field_errors(e),
        ) from e


def decode_product_event(payload: Dict[str, Any]) -> ProductLifecycleEvent:
    """
    Decode a directly invoked product event into its typed variant.

    Raises:
        EventDecodeError: If the payload or its event type is invalid
    """
    event_type = payload.get('eventType') if isinstance(payload, dict) else None
    event_class = PRODUCT_EVENT_REGISTRY.get(event_type)
    if event_class is None:
        raise EventDecodeError(f'unknown product event type: {event_type}')

    try:
        return event_class(event=ProductEvent.model_validate(payload))
    except PydanticValidationError as e:
        raise EventDecodeError(
            f'invalid {event_type} product event payload',
            field_errors=_field_errors(e),
        ) from e


def _field_errors(error: PydanticValidationError) -> List[Dict[str, str]]:
    return [
        {'field': '.'.join(str(loc) for loc in err['loc']), 'message': err['msg']}
        for err in error.errors()
    ]

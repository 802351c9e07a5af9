"""
Audit repository for order and product lifecycle events.

Records are append-only and short lived. Keys::

    pk = #order_<orderId> | #product_<productCode>
    sk = <eventType>#<createdAt epoch millis, 13 digits>

so one query with a ``begins_with`` on the sort key returns every event of
one type for one entity, oldest first. The ``emailIndex`` GSI (hash ``email``,
range ``sk``) serves the per-customer lookups.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from boto3.dynamodb.conditions import Attr, Key

from ecommerce.dal.dynamodb_handler import DynamoDBHandler
from ecommerce.handlers.utils.observability import logger

EMAIL_INDEX_NAME = 'emailIndex'

# Records expire five minutes after the event was recorded
AUDIT_RETENTION_SECONDS = 5 * 60

SORT_KEY_SEPARATOR = '#'
TIMESTAMP_DIGITS = 13


class AuditNamespace(str, Enum):
    """Partition key prefix per entity kind."""
    ORDER = '#order_'
    PRODUCT = '#product_'


def audit_ttl(created_at_ms: int) -> int:
    """Epoch-seconds expiry for a record created at ``created_at_ms``."""
    return created_at_ms // 1000 + AUDIT_RETENTION_SECONDS


def build_sort_key(event_type: str, created_at_ms: int) -> str:
    """
    Build the ``<eventType>#<millis>`` sort key.

    Millis are zero padded so that, for one event type, lexical order of the
    sort key is chronological order.

    Raises:
        ValueError: On an empty event type, one containing the separator, or a negative timestamp
    """
    if not event_type:
        raise ValueError('event type must not be empty')
    if SORT_KEY_SEPARATOR in event_type:
        raise ValueError(f'event type must not contain {SORT_KEY_SEPARATOR!r}: {event_type}')
    if created_at_ms < 0:
        raise ValueError(f'timestamp must not be negative: {created_at_ms}')
    if len(str(created_at_ms)) > TIMESTAMP_DIGITS:
        raise ValueError(f'timestamp does not fit in {TIMESTAMP_DIGITS} digits: {created_at_ms}')
    return f'{event_type}{SORT_KEY_SEPARATOR}{created_at_ms:0{TIMESTAMP_DIGITS}d}'


def sort_key_prefix(event_type: str) -> str:
    """Prefix that matches every sort key of one event type and nothing else."""
    return f'{event_type}{SORT_KEY_SEPARATOR}'


@dataclass(frozen=True)
class AuditKey:
    """Composite primary key of an audit record."""

    pk: str
    sk: str

    @classmethod
    def for_order(cls, order_id: str, event_type: str, created_at_ms: int) -> 'AuditKey':
        if not order_id:
            raise ValueError('order id must not be empty')
        return cls(pk=f'{AuditNamespace.ORDER.value}{order_id}', sk=build_sort_key(event_type, created_at_ms))

    @classmethod
    def for_product(cls, product_code: str, event_type: str, created_at_ms: int) -> 'AuditKey':
        if not product_code:
            raise ValueError('product code must not be empty')
        return cls(pk=f'{AuditNamespace.PRODUCT.value}{product_code}', sk=build_sort_key(event_type, created_at_ms))

    def as_dict(self) -> Dict[str, str]:
        return {'pk': self.pk, 'sk': self.sk}


@dataclass(frozen=True)
class OrderEventInfo:
    order_id: str
    product_codes: tuple
    message_id: str

    def to_item(self) -> Dict[str, Any]:
        return {
            'orderId': self.order_id,
            'productCodes': list(self.product_codes),
            'messageId': self.message_id,
        }


@dataclass(frozen=True)
class ProductEventInfo:
    product_id: str
    price: Decimal

    def to_item(self) -> Dict[str, Any]:
        return {'productId': self.product_id, 'price': self.price}


@dataclass(frozen=True)
class AuditRecord:
    """Immutable persisted form of one delivered lifecycle event."""

    key: AuditKey
    ttl: int
    email: str
    request_id: str
    event_type: str
    created_at: int
    info: Union[OrderEventInfo, ProductEventInfo]

    @property
    def pk(self) -> str:
        return self.key.pk

    @property
    def sk(self) -> str:
        return self.key.sk

    def to_item(self) -> Dict[str, Any]:
        return {
            **self.key.as_dict(),
            'ttl': self.ttl,
            'email': self.email,
            'requestId': self.request_id,
            'eventType': self.event_type,
            'createdAt': self.created_at,
            'info': self.info.to_item(),
        }

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> 'AuditRecord':
        info = item.get('info', {})
        if item['pk'].startswith(AuditNamespace.PRODUCT.value):
            record_info = ProductEventInfo(product_id=info['productId'], price=Decimal(str(info['price'])))
        else:
            record_info = OrderEventInfo(
                order_id=info['orderId'],
                product_codes=tuple(info.get('productCodes', [])),
                message_id=info.get('messageId', ''),
            )
        return cls(
            key=AuditKey(pk=item['pk'], sk=item['sk']),
            ttl=int(item['ttl']),
            email=item['email'],
            request_id=item.get('requestId', ''),
            event_type=item['eventType'],
            created_at=int(item['createdAt']),
            info=record_info,
        )


class AuditRepository:
    """Append-only store of lifecycle events."""

    def __init__(self, table_handler: DynamoDBHandler):
        self.dal = table_handler

    def put_event(self, record: AuditRecord) -> AuditRecord:
        """Insert one record. There is no update path and no dedup."""
        self.dal.put_item(record.to_item())
        logger.info(
            "Audit record stored",
            pk=record.pk,
            sk=record.sk,
            event_type=record.event_type,
            request_id=record.request_id,
        )
        return record

    def get_order_events(self, order_id: str, event_type: Optional[str] = None) -> List[AuditRecord]:
        """Events of one order, optionally restricted to one event type, oldest first per type."""
        return self._query_entity(f'{AuditNamespace.ORDER.value}{order_id}', event_type)

    def get_product_events(self, product_code: str, event_type: Optional[str] = None) -> List[AuditRecord]:
        return self._query_entity(f'{AuditNamespace.PRODUCT.value}{product_code}', event_type)

    def get_events_by_email(
        self,
        email: str,
        namespace: AuditNamespace = AuditNamespace.ORDER,
    ) -> List[AuditRecord]:
        """Every event of one customer within the order or product namespace."""
        items = self.dal.query_all(
            Key('email').eq(email),
            index_name=EMAIL_INDEX_NAME,
            filter_expression=Attr('pk').begins_with(namespace.value),
        )
        return [AuditRecord.from_item(item) for item in items]

    def get_events_by_email_and_event_type(self, email: str, event_type: str) -> List[AuditRecord]:
        """Every event of one type for one customer."""
        items = self.dal.query_all(
            Key('email').eq(email) & Key('sk').begins_with(sort_key_prefix(event_type)),
            index_name=EMAIL_INDEX_NAME,
        )
        return [AuditRecord.from_item(item) for item in items]

    def _query_entity(self, pk: str, event_type: Optional[str]) -> List[AuditRecord]:
        key_condition = Key('pk').eq(pk)
        if event_type:
            key_condition = key_condition & Key('sk').begins_with(sort_key_prefix(event_type))
        return [AuditRecord.from_item(item) for item in self.dal.query_all(key_condition)]

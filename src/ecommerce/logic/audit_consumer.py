"""
Audit consumer.

Writes one audit record per delivered lifecycle event. Delivery is
at-least-once and nothing is deduplicated: a redelivered envelope produces a
second record that differs only in its timestamp. Failures propagate so the
transport can redeliver.
"""

import time
from typing import Any, Callable, Dict

from ecommerce.dal.audit_repository import (
    AuditKey,
    AuditRecord,
    AuditRepository,
    OrderEventInfo,
    ProductEventInfo,
    audit_ttl,
)
from ecommerce.events.envelope import decode_order_event, decode_product_event
from ecommerce.handlers.utils.observability import logger


def _epoch_millis() -> int:
    return time.time_ns() // 1_000_000


class AuditConsumer:
    """Writes audit records for order and product lifecycle events."""

    def __init__(self, audit_repository: AuditRepository, clock: Callable[[], int] = _epoch_millis):
        self.repository = audit_repository
        self.clock = clock

    def record_order_event(self, message: str, message_id: str) -> AuditRecord:
        """
        Persist an order envelope delivered by the topic.

        Args:
            message: Envelope as published
            message_id: Delivery id assigned by the topic

        Raises:
            EventDecodeError: If the envelope or its payload is malformed
            DALError: If the insert fails
        """
        lifecycle_event = decode_order_event(message)
        event = lifecycle_event.event
        event_type = lifecycle_event.event_type.value
        created_at = self.clock()

        logger.info("Recording order event", order_id=event.order_id, event_type=event_type, message_id=message_id)

        record = AuditRecord(
            key=AuditKey.for_order(event.order_id, event_type, created_at),
            ttl=audit_ttl(created_at),
            email=event.email,
            request_id=event.request_id,
            event_type=event_type,
            created_at=created_at,
            info=OrderEventInfo(
                order_id=event.order_id,
                product_codes=tuple(event.product_codes),
                message_id=message_id,
            ),
        )
        return self.repository.put_event(record)

    def record_product_event(self, payload: Dict[str, Any]) -> AuditRecord:
        """Persist a directly invoked product lifecycle event."""
        lifecycle_event = decode_product_event(payload)
        event = lifecycle_event.event
        event_type = lifecycle_event.event_type.value
        created_at = self.clock()

        record = AuditRecord(
            key=AuditKey.for_product(event.product_code, event_type, created_at),
            ttl=audit_ttl(created_at),
            email=event.email,
            request_id=event.request_id,
            event_type=event_type,
            created_at=created_at,
            info=ProductEventInfo(product_id=event.product_id, price=event.product_price),
        )
        return self.repository.put_event(record)

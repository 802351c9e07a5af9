"""
Subscription declarations for the order events topic.

A subscription names its delivery mode and, optionally, the set of event
types it accepts. Filtering looks only at the ``eventType`` message attribute
set at publish time, never at the message body.
"""

from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, Iterable, List, Mapping, Optional, Union

from ecommerce.events.envelope import EVENT_TYPE_ATTRIBUTE, OrderEventType


class DeliveryMode(str, Enum):
    DIRECT = 'DIRECT'  # handler invoked once per message
    BUFFERED = 'BUFFERED'  # message lands in a durable queue drained in batches


@dataclass(frozen=True)
class Subscription:
    """A subscriber's delivery mode and event type allow-list (None accepts everything)."""

    name: str
    mode: DeliveryMode
    event_types: Optional[FrozenSet[str]] = None

    @classmethod
    def filtered(
        cls,
        name: str,
        mode: DeliveryMode,
        event_types: Iterable[Union[str, Enum]],
    ) -> 'Subscription':
        types = frozenset(t.value if isinstance(t, Enum) else str(t) for t in event_types)
        if not types:
            raise ValueError(f'subscription {name} needs at least one event type')
        return cls(name=name, mode=mode, event_types=types)

    def accepts(self, attributes: Mapping[str, str]) -> bool:
        """True if a message with these attributes must be delivered to this subscriber."""
        if self.event_types is None:
            return True
        return attributes.get(EVENT_TYPE_ATTRIBUTE) in self.event_types

    def filter_policy(self) -> Optional[dict]:
        """SNS filter policy equivalent of the allow-list."""
        if self.event_types is None:
            return None
        allowed: List[str] = sorted(self.event_types)
        return {EVENT_TYPE_ATTRIBUTE: allowed}


ORDER_AUDIT_SUBSCRIPTION = Subscription.filtered(
    'order-events-audit', DeliveryMode.DIRECT, [OrderEventType.CREATED, OrderEventType.DELETED],
)

ORDER_EMAIL_SUBSCRIPTION = Subscription.filtered(
    'order-emails', DeliveryMode.BUFFERED, [OrderEventType.CREATED],
)

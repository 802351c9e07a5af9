"""
In-process event broker.

LocalEventBroker reproduces the topic semantics of the deployed pipeline for
local runs and tests: one publish fans out to every subscription whose
filter accepts the message's ``eventType`` attribute. Direct subscribers are
invoked synchronously with a bounded number of attempts; buffered
subscribers get a copy in their DeliveryQueue, which hands messages out in
batches and dead-letters a message once it has been received
``max_receive_count`` times without being acknowledged.
"""

import json
import threading
import time
from collections import deque
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple
from uuid import uuid4

from ecommerce.events.envelope import EVENT_TYPE_ATTRIBUTE
from ecommerce.events.publisher import PublishResult
from ecommerce.events.subscription import DeliveryMode, Subscription
from ecommerce.handlers.utils.observability import logger

DEFAULT_MAX_RECEIVE_COUNT = 3


@dataclass
class BrokerMessage:
    """One subscriber's copy of a published message."""

    message_id: str
    body: str
    attributes: Dict[str, str]
    receive_count: int = 0
    published_at: float = field(default_factory=time.time)

    def to_sns_record(self) -> Dict[str, Any]:
        """Shape of one record of a Lambda SNS event."""
        return {
            'EventSource': 'aws:sns',
            'Sns': {
                'Type': 'Notification',
                'MessageId': self.message_id,
                'Message': self.body,
                'MessageAttributes': {
                    name: {'Type': 'String', 'Value': value} for name, value in self.attributes.items()
                },
            },
        }

    def to_sqs_record(self) -> Dict[str, Any]:
        """Shape of one record of a Lambda SQS event fed by an SNS subscription."""
        notification = self.to_sns_record()['Sns']
        return {
            'messageId': self.message_id,
            'body': json.dumps(notification),
            'attributes': {'ApproximateReceiveCount': str(self.receive_count)},
            'eventSource': 'aws:sqs',
        }


@dataclass
class FailedDelivery:
    subscription: str
    message_id: str
    attempts: int
    error: str


class DeliveryQueue:
    """Durable-inbox stand-in with receive counts and a dead-letter queue."""

    def __init__(
        self,
        name: str,
        max_receive_count: int = DEFAULT_MAX_RECEIVE_COUNT,
        dead_letter_queue: Optional['DeliveryQueue'] = None,
    ):
        if max_receive_count < 1:
            raise ValueError('max_receive_count must be at least 1')
        self.name = name
        self.max_receive_count = max_receive_count
        self.dead_letter_queue = dead_letter_queue
        self._ready: Deque[BrokerMessage] = deque()
        self._in_flight: Dict[str, BrokerMessage] = {}
        self._condition = threading.Condition()

    def __len__(self) -> int:
        with self._condition:
            return len(self._ready)

    @property
    def in_flight_count(self) -> int:
        with self._condition:
            return len(self._in_flight)

    def enqueue(self, message: BrokerMessage) -> None:
        with self._condition:
            self._ready.append(message)
            self._condition.notify_all()

    def receive(self, max_messages: int = 10, wait_seconds: float = 0.0) -> List[BrokerMessage]:
        """
        Take up to ``max_messages`` messages.

        Waits until a full batch is available or ``wait_seconds`` elapse,
        whichever comes first, then returns whatever is ready (possibly none).
        Returned messages stay in flight until acked or released.
        """
        deadline = time.monotonic() + wait_seconds
        with self._condition:
            while len(self._ready) < max_messages:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                self._condition.wait(remaining)

            batch = []
            while self._ready and len(batch) < max_messages:
                message = self._ready.popleft()
                message.receive_count += 1
                self._in_flight[message.message_id] = message
                batch.append(message)
            return batch

    def ack(self, message_id: str) -> None:
        """Processing succeeded; drop the message for good."""
        with self._condition:
            self._in_flight.pop(message_id, None)

    def release(self, message_id: str) -> bool:
        """
        Processing failed; make the message available again.

        Returns:
            True if the message will be redelivered, False if it was dead-lettered
        """
        with self._condition:
            message = self._in_flight.pop(message_id, None)
            if message is None:
                return False
            if message.receive_count < self.max_receive_count:
                self._ready.append(message)
                self._condition.notify_all()
                return True

        logger.error(
            "Message moved to dead-letter queue",
            queue=self.name,
            message_id=message_id,
            receive_count=message.receive_count,
            dead_letter_queue=self.dead_letter_queue.name if self.dead_letter_queue else None,
        )
        if self.dead_letter_queue is not None:
            self.dead_letter_queue.enqueue(replace(message, receive_count=0))
        return False


def consume_batch(
    queue: DeliveryQueue,
    handler: Callable[[List[BrokerMessage]], None],
    batch_size: int = 5,
    max_batching_window_seconds: float = 60.0,
) -> Optional[bool]:
    """
    Receive one batch and hand it to ``handler`` as a unit.

    The batch is acked only if the handler returns; if it raises, every
    message of the batch is released for redelivery and the exception
    propagates.

    Returns:
        None when no message arrived within the window, True when the batch was processed
    """
    batch = queue.receive(max_messages=batch_size, wait_seconds=max_batching_window_seconds)
    if not batch:
        return None

    try:
        handler(batch)
    except Exception:
        for message in batch:
            queue.release(message.message_id)
        raise

    for message in batch:
        queue.ack(message.message_id)
    return True


class LocalEventBroker:
    """Topic with filtered direct and buffered subscriptions, all in memory."""

    def __init__(self, max_direct_attempts: int = 3):
        self.max_direct_attempts = max_direct_attempts
        self._direct: List[Tuple[Subscription, Callable[[BrokerMessage], None]]] = []
        self._buffered: List[Tuple[Subscription, DeliveryQueue]] = []
        self._lock = threading.Lock()
        self.failed_deliveries: List[FailedDelivery] = []

    def subscribe_direct(self, subscription: Subscription, handler: Callable[[BrokerMessage], None]) -> None:
        if subscription.mode is not DeliveryMode.DIRECT:
            raise ValueError(f'{subscription.name} is not a direct subscription')
        with self._lock:
            self._direct.append((subscription, handler))

    def subscribe_queue(self, subscription: Subscription, queue: DeliveryQueue) -> None:
        if subscription.mode is not DeliveryMode.BUFFERED:
            raise ValueError(f'{subscription.name} is not a buffered subscription')
        with self._lock:
            self._buffered.append((subscription, queue))

    def publish(self, message: str, event_type: str) -> PublishResult:
        """
        Fan one envelope out to every matching subscription.

        Buffered subscribers only get the message enqueued; direct subscribers
        run before this returns. A direct subscriber failure never fails the
        publish: it is retried and then recorded in ``failed_deliveries``.
        """
        started = time.perf_counter()
        message_id = str(uuid4())
        attributes = {EVENT_TYPE_ATTRIBUTE: event_type}

        with self._lock:
            buffered = list(self._buffered)
            direct = list(self._direct)

        for subscription, queue in buffered:
            if subscription.accepts(attributes):
                queue.enqueue(BrokerMessage(message_id=message_id, body=message, attributes=dict(attributes)))

        for subscription, handler in direct:
            if subscription.accepts(attributes):
                self._deliver_direct(
                    subscription,
                    handler,
                    BrokerMessage(message_id=message_id, body=message, attributes=dict(attributes)),
                )

        return PublishResult(
            success=True,
            event_type=event_type,
            message_id=message_id,
            duration_ms=(time.perf_counter() - started) * 1000,
        )

    def _deliver_direct(
        self,
        subscription: Subscription,
        handler: Callable[[BrokerMessage], None],
        message: BrokerMessage,
    ) -> None:
        last_error: Optional[Exception] = None
        for attempt in range(1, self.max_direct_attempts + 1):
            message.receive_count = attempt
            try:
                handler(message)
                return
            except Exception as e:
                last_error = e
                logger.warning(
                    "Direct delivery attempt failed",
                    subscription=subscription.name,
                    message_id=message.message_id,
                    attempt=attempt,
                    error=str(e),
                )

        logger.error(
            "Direct delivery failed",
            subscription=subscription.name,
            message_id=message.message_id,
            attempts=self.max_direct_attempts,
        )
        with self._lock:
            self.failed_deliveries.append(FailedDelivery(
                subscription=subscription.name,
                message_id=message.message_id,
                attempts=self.max_direct_attempts,
                error=str(last_error),
            ))

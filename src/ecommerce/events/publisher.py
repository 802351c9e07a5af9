"""
SNS publisher for lifecycle envelopes.

The publisher attaches the event type as the ``eventType`` message attribute
so SNS subscription filter policies route without reading the body. Publish
is fire-and-forget relative to the request that triggered it: failures are
retried a bounded number of times and then reported in the returned
PublishResult, never raised.
"""

import json
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ecommerce.events.envelope import EVENT_TYPE_ATTRIBUTE
from ecommerce.events.subscription import DeliveryMode, Subscription
from ecommerce.handlers.utils.errors import TransientDeliveryError
from ecommerce.handlers.utils.observability import logger

# Client errors that will fail the same way on every attempt
NON_RETRYABLE_ERROR_CODES = frozenset({
    'InvalidParameter',
    'InvalidParameterValue',
    'NotFound',
    'AuthorizationError',
    'ValidationException',
})

SUBSCRIPTION_PROTOCOLS = {
    DeliveryMode.DIRECT: 'lambda',
    DeliveryMode.BUFFERED: 'sqs',
}


@dataclass
class PublishResult:
    """Result of one publish."""

    success: bool
    event_type: str
    message_id: Optional[str] = None
    error_message: Optional[str] = None
    retry_count: int = 0
    duration_ms: float = 0.0


def message_attributes(event_type: str) -> Dict[str, Dict[str, str]]:
    """SNS message attributes carrying the routing type."""
    return {EVENT_TYPE_ATTRIBUTE: {'DataType': 'String', 'StringValue': event_type}}


class EventPublisher:
    """Publishes envelopes to one SNS topic."""

    def __init__(
        self,
        topic_arn: str,
        sns_client: Optional[Any] = None,
        max_retries: int = 3,
        retry_backoff: float = 0.1,
    ):
        """
        Initialize the publisher.

        Args:
            topic_arn: Target SNS topic
            sns_client: boto3 SNS client, created when omitted
            max_retries: Retries after the first failed attempt
            retry_backoff: Base delay in seconds for exponential backoff
        """
        self.topic_arn = topic_arn
        self.sns = sns_client or boto3.client('sns')
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff

    def publish(self, message: str, event_type: str) -> PublishResult:
        """
        Publish one envelope with its routing attribute.

        Args:
            message: Encoded envelope
            event_type: Value of the ``eventType`` attribute

        Returns:
            PublishResult; ``success`` is False when every attempt failed
        """
        started = time.perf_counter()
        try:
            message_id, attempts = self._publish_with_retry(message, event_type)
        except TransientDeliveryError as e:
            duration_ms = (time.perf_counter() - started) * 1000
            logger.error(
                "Event publish failed",
                topic_arn=self.topic_arn,
                event_type=event_type,
                error=e.message,
                error_id=e.error_id,
            )
            return PublishResult(
                success=False,
                event_type=event_type,
                error_message=e.message,
                retry_count=e.attempts - 1,
                duration_ms=duration_ms,
            )

        duration_ms = (time.perf_counter() - started) * 1000
        logger.info(
            "Event published",
            topic_arn=self.topic_arn,
            event_type=event_type,
            message_id=message_id,
            duration_ms=round(duration_ms, 2),
        )
        return PublishResult(
            success=True,
            event_type=event_type,
            message_id=message_id,
            retry_count=attempts - 1,
            duration_ms=duration_ms,
        )

    def _publish_with_retry(self, message: str, event_type: str):
        """Publish with exponential backoff; returns ``(message_id, attempts)``."""
        last_exception: Optional[Exception] = None
        attempts = 0

        for attempt in range(self.max_retries + 1):
            try:
                response = self.sns.publish(
                    TopicArn=self.topic_arn,
                    Message=message,
                    MessageAttributes=message_attributes(event_type),
                )
                if attempt > 0:
                    logger.info("Event published after retry", attempt=attempt + 1)
                return response['MessageId'], attempt + 1

            except (ClientError, BotoCoreError) as e:
                last_exception = e
                attempts = attempt + 1
                error_code = getattr(e, 'response', {}).get('Error', {}).get('Code', 'Unknown')

                logger.warning(
                    "Event publish attempt failed",
                    attempt=attempt + 1,
                    error_code=error_code,
                    error=str(e),
                )

                if error_code in NON_RETRYABLE_ERROR_CODES:
                    break

                if attempt < self.max_retries:
                    time.sleep(self.retry_backoff * (2 ** attempt))

        raise TransientDeliveryError(
            message=f"Failed to publish {event_type} event after {attempts} attempts: {last_exception}",
            service_name="SNS",
            attempts=attempts,
        ) from last_exception

    def subscribe(self, subscription: Subscription, endpoint: str, protocol: Optional[str] = None) -> str:
        """
        Subscribe an endpoint to the topic with the subscription's filter policy.

        Args:
            subscription: Declared filter and delivery mode
            endpoint: Lambda function ARN (direct) or SQS queue ARN (buffered)
            protocol: Overrides the protocol derived from the delivery mode

        Returns:
            Subscription ARN
        """
        attributes = {}
        filter_policy = subscription.filter_policy()
        if filter_policy:
            attributes['FilterPolicy'] = json.dumps(filter_policy)

        response = self.sns.subscribe(
            TopicArn=self.topic_arn,
            Protocol=protocol or SUBSCRIPTION_PROTOCOLS[subscription.mode],
            Endpoint=endpoint,
            Attributes=attributes,
            ReturnSubscriptionArn=True,
        )
        logger.info(
            "Subscription created",
            subscription=subscription.name,
            endpoint=endpoint,
            filter_policy=filter_policy,
        )
        return response['SubscriptionArn']

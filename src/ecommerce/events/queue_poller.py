"""
SQS batch poller.

Reproduces what the Lambda SQS event source does for the email path: gather
up to ``batch_size`` messages, waiting at most ``max_batching_window_seconds``
for the batch to fill, invoke the handler with a Lambda-shaped SQS event, then
delete the whole batch on success or make it visible again on failure. The
queue's redrive policy (``maxReceiveCount``) decides when a message that keeps
failing is moved to the dead-letter queue.

A message stays hidden for ``visibility_timeout`` seconds after each receive.
The timeout must outlast the batching window plus the handler run, otherwise
a held message reappears and is received again before its batch is settled.
"""

import math
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ecommerce.handlers.utils.errors import TransientDeliveryError
from ecommerce.handlers.utils.observability import logger

# SQS limits
MAX_MESSAGES_PER_RECEIVE = 10
MAX_LONG_POLL_SECONDS = 20


@dataclass
class PollResult:
    """Outcome of one poll cycle."""

    received: int
    succeeded: bool
    message_ids: List[str] = field(default_factory=list)
    error: Optional[str] = None


def to_lambda_record(message: Dict[str, Any], queue_arn: Optional[str] = None) -> Dict[str, Any]:
    """Convert an SQS ReceiveMessage entry into a Lambda SQS event record."""
    return {
        'messageId': message['MessageId'],
        'receiptHandle': message['ReceiptHandle'],
        'body': message['Body'],
        'attributes': message.get('Attributes', {}),
        'messageAttributes': message.get('MessageAttributes', {}),
        'md5OfBody': message.get('MD5OfBody'),
        'eventSource': 'aws:sqs',
        'eventSourceARN': queue_arn,
    }


class SqsBatchPoller:
    """Drains one SQS queue in time-boxed batches."""

    def __init__(
        self,
        queue_url: str,
        handler: Callable[[Dict[str, Any], Any], Any],
        batch_size: int = 5,
        max_batching_window_seconds: float = 60,
        visibility_timeout: int = 90,
        handler_timeout_seconds: float = 5,
        sqs_client: Optional[Any] = None,
        lambda_context: Optional[Any] = None,
    ):
        """
        Initialize the poller.

        Args:
            queue_url: Queue to drain
            handler: Lambda handler taking ``(event, context)``
            batch_size: Maximum messages per handler invocation
            max_batching_window_seconds: Maximum time spent filling one batch
            visibility_timeout: Seconds a received message stays hidden while processed
            handler_timeout_seconds: Longest expected handler run for one batch
            sqs_client: boto3 SQS client, created when omitted
            lambda_context: Context object passed to the handler

        Raises:
            ValueError: If the batch size is not positive or the visibility
                timeout does not outlast the window plus the handler run
        """
        if batch_size < 1:
            raise ValueError('batch_size must be at least 1')
        if visibility_timeout <= max_batching_window_seconds + handler_timeout_seconds:
            raise ValueError(
                'visibility_timeout must exceed max_batching_window_seconds + handler_timeout_seconds'
            )
        self.queue_url = queue_url
        self.handler = handler
        self.batch_size = batch_size
        self.max_batching_window_seconds = max_batching_window_seconds
        self.visibility_timeout = visibility_timeout
        self.handler_timeout_seconds = handler_timeout_seconds
        self.sqs = sqs_client or boto3.client('sqs')
        self.lambda_context = lambda_context
        self._queue_arn: Optional[str] = None

    @property
    def queue_arn(self) -> str:
        if self._queue_arn is None:
            response = self.sqs.get_queue_attributes(QueueUrl=self.queue_url, AttributeNames=['QueueArn'])
            self._queue_arn = response['Attributes']['QueueArn']
        return self._queue_arn

    def receive_batch(self) -> List[Dict[str, Any]]:
        """
        Receive until the batch is full or the batching window has elapsed.

        A message received twice is kept once, with its latest receipt handle.
        """
        deadline = time.monotonic() + self.max_batching_window_seconds
        messages: Dict[str, Dict[str, Any]] = {}

        while len(messages) < self.batch_size:
            remaining = deadline - time.monotonic()
            wait_seconds = max(0, min(MAX_LONG_POLL_SECONDS, math.ceil(remaining)))
            try:
                response = self.sqs.receive_message(
                    QueueUrl=self.queue_url,
                    MaxNumberOfMessages=min(MAX_MESSAGES_PER_RECEIVE, self.batch_size - len(messages)),
                    WaitTimeSeconds=wait_seconds,
                    VisibilityTimeout=self.visibility_timeout,
                    AttributeNames=['All'],
                    MessageAttributeNames=['All'],
                )
            except (ClientError, BotoCoreError) as e:
                raise TransientDeliveryError(
                    message=f"Failed to receive from {self.queue_url}: {e}",
                    service_name="SQS",
                ) from e

            for message in response.get('Messages', []):
                if message['MessageId'] in messages:
                    logger.warning("Message received twice in one batch", message_id=message['MessageId'])
                messages[message['MessageId']] = message
            if time.monotonic() >= deadline:
                break

        return list(messages.values())

    def poll_once(self) -> PollResult:
        """
        Run one receive/process/settle cycle.

        Handler exceptions are not raised: the batch is made visible again and
        the failure is reported in the result, as the Lambda event source does.
        """
        messages = self.receive_batch()
        if not messages:
            return PollResult(received=0, succeeded=True)

        message_ids = [m['MessageId'] for m in messages]
        event = {'Records': [to_lambda_record(m, self.queue_arn) for m in messages]}
        self._hold(messages)

        try:
            self.handler(event, self.lambda_context)
        except Exception as e:
            logger.warning(
                "Batch processing failed, returning messages to the queue",
                queue_url=self.queue_url,
                message_ids=message_ids,
                error=str(e),
            )
            self._release(messages)
            return PollResult(received=len(messages), succeeded=False, message_ids=message_ids, error=str(e))

        self._delete(messages)
        logger.info("Batch processed", queue_url=self.queue_url, batch_size=len(messages))
        return PollResult(received=len(messages), succeeded=True, message_ids=message_ids)

    def _delete(self, messages: List[Dict[str, Any]]) -> None:
        entries = [{'Id': str(i), 'ReceiptHandle': m['ReceiptHandle']} for i, m in enumerate(messages)]
        response = self.sqs.delete_message_batch(QueueUrl=self.queue_url, Entries=entries)
        if response.get('Failed'):
            # undeleted messages come back after the visibility timeout and are processed again
            logger.warning("Some processed messages were not deleted", failed=response['Failed'])

    def _hold(self, messages: List[Dict[str, Any]]) -> None:
        # restart the visibility timeout of messages received early in the window
        self._change_visibility(messages, self.visibility_timeout)

    def _release(self, messages: List[Dict[str, Any]]) -> None:
        self._change_visibility(messages, 0)

    def _change_visibility(self, messages: List[Dict[str, Any]], timeout: int) -> None:
        entries = [
            {'Id': str(i), 'ReceiptHandle': m['ReceiptHandle'], 'VisibilityTimeout': timeout}
            for i, m in enumerate(messages)
        ]
        response = self.sqs.change_message_visibility_batch(QueueUrl=self.queue_url, Entries=entries)
        if response.get('Failed'):
            logger.warning("Visibility change failed for some messages", failed=response['Failed'])

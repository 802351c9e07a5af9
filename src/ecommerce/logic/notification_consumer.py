"""
Notification consumer for the buffered email path.

Each SQS record carries the SNS notification whose ``Message`` is an order
envelope. One email is sent per CREATED event, all concurrently. The batch
succeeds only if every email was sent; otherwise NotificationBatchError is
raised after all sends finished, so the queue redelivers the whole batch and
eventually dead-letters it.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, List, Optional, Protocol, Tuple

import boto3
from aws_lambda_powertools.utilities.data_classes import SQSRecord
from aws_lambda_powertools.utilities.data_classes.sns_event import SNSMessage
from botocore.exceptions import BotoCoreError, ClientError

from ecommerce.events.envelope import OrderCreated, OrderEvent, decode_order_event
from ecommerce.handlers.utils.errors import EventDecodeError, NotificationBatchError, TransientDeliveryError
from ecommerce.handlers.utils.observability import logger

ORDER_EMAIL_SUBJECT = 'We got your order'


class EmailSender(Protocol):

    def send(self, to_address: str, subject: str, body: str) -> str:
        """Send one email and return the provider's message id."""
        ...


class SesEmailSender:
    """EmailSender backed by SES SendEmail."""

    def __init__(self, source_address: str, ses_client: Optional[Any] = None):
        self.source_address = source_address
        self.ses = ses_client or boto3.client('ses')

    def send(self, to_address: str, subject: str, body: str) -> str:
        try:
            response = self.ses.send_email(
                Source=self.source_address,
                Destination={'ToAddresses': [to_address]},
                Message={
                    'Subject': {'Charset': 'UTF-8', 'Data': subject},
                    'Body': {'Text': {'Charset': 'UTF-8', 'Data': body}},
                },
                ReplyToAddresses=[self.source_address],
            )
        except (ClientError, BotoCoreError) as e:
            raise TransientDeliveryError(
                message=f"SES send to {to_address} failed: {e}",
                service_name="SES",
            ) from e
        return response['MessageId']


@dataclass(frozen=True)
class BatchOutcome:
    sent: int
    skipped: int


def render_order_email(event: OrderEvent) -> Tuple[str, str]:
    """Subject and body of the order confirmation email."""
    return ORDER_EMAIL_SUBJECT, f'We got your order {event.order_id} and the price {event.billing.total_price}'


def extract_envelope(record: SQSRecord) -> str:
    """
    Envelope carried by one SQS record.

    The body is normally the SNS notification JSON; a raw envelope (raw
    message delivery) is accepted as is.
    """
    try:
        parsed = record.json_body
    except (TypeError, ValueError) as e:
        raise EventDecodeError(f"SQS record {record.message_id} body is not JSON") from e

    if isinstance(parsed, dict) and "Message" in parsed and "eventType" not in parsed:
        return SNSMessage(parsed).message
    return record.body


class NotificationConsumer:
    """Sends the order confirmation emails of one SQS batch, all or nothing."""

    def __init__(self, email_sender: EmailSender, max_concurrency: int = 5):
        self.sender = email_sender
        self.max_concurrency = max_concurrency

    def process_batch(self, records: List[SQSRecord]) -> BatchOutcome:
        """
        Send one email per CREATED order event in the batch.

        Raises:
            NotificationBatchError: If any record could not be decoded or any send failed
        """
        failed: List[str] = []
        to_send: List[Tuple[str, OrderEvent]] = []
        skipped = 0

        for record in records:
            message_id = record.message_id
            try:
                lifecycle_event = decode_order_event(extract_envelope(record))
            except EventDecodeError as e:
                logger.error("Undecodable notification message", message_id=message_id, error=e.message)
                failed.append(message_id)
                continue

            if not isinstance(lifecycle_event, OrderCreated):
                logger.warning(
                    "Skipping event that does not trigger an email",
                    message_id=message_id,
                    event_type=lifecycle_event.event_type.value,
                )
                skipped += 1
                continue
            to_send.append((message_id, lifecycle_event.event))

        if to_send:
            with ThreadPoolExecutor(max_workers=min(self.max_concurrency, len(to_send))) as executor:
                futures = [
                    (message_id, event, executor.submit(self._send, event))
                    for message_id, event in to_send
                ]
                for message_id, event, future in futures:
                    error = future.exception()
                    if error is not None:
                        logger.error(
                            "Order email failed",
                            message_id=message_id,
                            order_id=event.order_id,
                            error=str(error),
                        )
                        failed.append(message_id)

        if failed:
            raise NotificationBatchError(failed_message_ids=failed, total=len(records))

        logger.info("Order emails sent", sent=len(to_send), skipped=skipped)
        return BatchOutcome(sent=len(to_send), skipped=skipped)

    def _send(self, event: OrderEvent) -> str:
        subject, body = render_order_email(event)
        return self.sender.send(event.email, subject, body)

"""
Unit tests for the order email consumer.
"""

import json
from unittest.mock import Mock

import pytest
from aws_lambda_powertools.utilities.data_classes import SQSRecord
from botocore.exceptions import ClientError

from ecommerce.events.envelope import OrderEvent, OrderEventType, encode_order_event
from ecommerce.handlers.utils.errors import EventDecodeError, NotificationBatchError, TransientDeliveryError
from ecommerce.logic.notification_consumer import (
    ORDER_EMAIL_SUBJECT,
    NotificationConsumer,
    SesEmailSender,
    extract_envelope,
    render_order_email,
)


def _event(order_id: str, email: str = "alice@example.com") -> OrderEvent:
    return OrderEvent.model_validate({
        "orderId": order_id,
        "email": email,
        "billing": {"payment": "CREDIT_CARD", "totalPrice": "35.50"},
        "shipping": {"type": "URGENT", "carrier": "FEDEX"},
        "productCodes": ["P1", "P2"],
        "requestId": "req-1",
    })


def _record(message_id: str, envelope: str) -> SQSRecord:
    """SQS record whose body is the SNS notification wrapping the envelope."""
    return SQSRecord({
        "messageId": message_id,
        "body": json.dumps({"Type": "Notification", "MessageId": f"sns-{message_id}", "Message": envelope}),
        "eventSource": "aws:sqs",
    })


def _created(message_id: str, order_id: str, email: str = "alice@example.com") -> SQSRecord:
    return _record(message_id, encode_order_event(OrderEventType.CREATED, _event(order_id, email)))


class TestRendering:

    def test_email_mentions_order_and_total(self):
        subject, body = render_order_email(_event("order-1"))

        assert subject == ORDER_EMAIL_SUBJECT == "We got your order"
        assert body == "We got your order order-1 and the price 35.50"


class TestExtractEnvelope:

    def test_unwraps_sns_notification(self):
        envelope = encode_order_event(OrderEventType.CREATED, _event("order-1"))

        assert extract_envelope(_record("m1", envelope)) == envelope

    def test_raw_envelope_is_returned_as_is(self):
        envelope = encode_order_event(OrderEventType.CREATED, _event("order-1"))

        assert extract_envelope(SQSRecord({"messageId": "m1", "body": envelope})) == envelope

    @pytest.mark.parametrize("body", ["not json", None])
    def test_non_json_body_rejected(self, body):
        with pytest.raises(EventDecodeError):
            extract_envelope(SQSRecord({"messageId": "m1", "body": body}))


class TestNotificationConsumer:
    """Batch semantics: all succeed or the batch fails."""

    def test_sends_one_email_per_created_event(self):
        sender = Mock()
        sender.send.return_value = "ses-id"
        consumer = NotificationConsumer(sender)

        outcome = consumer.process_batch([
            _created("m1", "order-1", "alice@example.com"),
            _created("m2", "order-2", "bob@example.com"),
        ])

        assert outcome.sent == 2
        assert outcome.skipped == 0
        recipients = sorted(call.args[0] for call in sender.send.call_args_list)
        assert recipients == ["alice@example.com", "bob@example.com"]
        assert all(call.args[1] == ORDER_EMAIL_SUBJECT for call in sender.send.call_args_list)

    def test_partial_failure_fails_whole_batch(self):
        sender = Mock()

        def send(to_address, subject, body):
            if "order-2" in body:
                raise TransientDeliveryError("SES throttled", service_name="SES")
            return "ses-id"

        sender.send.side_effect = send
        consumer = NotificationConsumer(sender)

        with pytest.raises(NotificationBatchError) as exc_info:
            consumer.process_batch([
                _created("m1", "order-1"),
                _created("m2", "order-2"),
                _created("m3", "order-3"),
            ])

        assert exc_info.value.failed_message_ids == ["m2"]
        assert exc_info.value.total == 3
        # every send was attempted before the batch failed
        assert sender.send.call_count == 3

    def test_deleted_events_are_skipped(self):
        sender = Mock()
        consumer = NotificationConsumer(sender)
        deleted = _record("m1", encode_order_event(OrderEventType.DELETED, _event("order-1")))

        outcome = consumer.process_batch([deleted])

        assert outcome.sent == 0
        assert outcome.skipped == 1
        sender.send.assert_not_called()

    def test_undecodable_record_fails_batch(self):
        sender = Mock()
        consumer = NotificationConsumer(sender)

        with pytest.raises(NotificationBatchError) as exc_info:
            consumer.process_batch([_created("m1", "order-1"), _record("m2", "garbage")])

        assert exc_info.value.failed_message_ids == ["m2"]
        sender.send.assert_called_once()

    def test_empty_batch(self):
        outcome = NotificationConsumer(Mock()).process_batch([])

        assert outcome.sent == 0
        assert outcome.skipped == 0


class TestSesEmailSender:

    def test_sends_text_email(self):
        ses = Mock()
        ses.send_email.return_value = {"MessageId": "ses-1"}
        sender = SesEmailSender("orders@example.com", ses_client=ses)

        assert sender.send("alice@example.com", "Subject", "Body") == "ses-1"

        kwargs = ses.send_email.call_args.kwargs
        assert kwargs["Source"] == "orders@example.com"
        assert kwargs["Destination"] == {"ToAddresses": ["alice@example.com"]}
        assert kwargs["Message"]["Body"]["Text"]["Data"] == "Body"
        assert kwargs["ReplyToAddresses"] == ["orders@example.com"]

    def test_client_error_becomes_transient_delivery_error(self, client_error):
        ses = Mock()
        ses.send_email.side_effect = client_error("Throttling", operation="SendEmail")
        sender = SesEmailSender("orders@example.com", ses_client=ses)

        with pytest.raises(TransientDeliveryError) as exc_info:
            sender.send("alice@example.com", "Subject", "Body")

        assert exc_info.value.service_name == "SES"
        assert isinstance(exc_info.value.__cause__, ClientError)

"""
Unit tests for the envelope codec and lifecycle event decoding.
"""

import json
from decimal import Decimal

import pytest

from ecommerce.events.envelope import (
    EVENT_TYPE_ATTRIBUTE,
    OrderCreated,
    OrderDeleted,
    OrderEvent,
    OrderEventType,
    ProductDeleted,
    ProductEventType,
    ProductUpdated,
    decode_envelope,
    decode_order_event,
    decode_product_event,
    encode_envelope,
    encode_order_event,
)
from ecommerce.handlers.utils.errors import EventDecodeError, ValidationError


@pytest.fixture
def order_event() -> OrderEvent:
    return OrderEvent.model_validate({
        "orderId": "order-1",
        "email": "alice@example.com",
        "billing": {"payment": "CREDIT_CARD", "totalPrice": 35.5},
        "shipping": {"type": "URGENT", "carrier": "FEDEX"},
        "productCodes": ["P1", "P2"],
        "requestId": "req-1",
    })


class TestEnvelopeCodec:
    """Envelope encode/decode."""

    @pytest.mark.parametrize("payload", [
        "",
        "plain text",
        '{"orderId": "1", "nested": {"a": [1, 2]}}',
        "unicode: ção ✓",
        'quotes " and \\ backslashes',
    ])
    def test_round_trip_is_exact(self, payload):
        """decode(encode(t, p)) returns exactly (t, p)."""
        assert decode_envelope(encode_envelope("CREATED", payload)) == ("CREATED", payload)

    def test_bytes_payload_round_trips_as_text(self):
        """UTF-8 bytes payloads are carried as the same text."""
        message = encode_envelope("DELETED", "ção".encode("utf-8"))

        assert decode_envelope(message) == ("DELETED", "ção")

    def test_decode_accepts_bytes_message(self):
        message = encode_envelope("CREATED", "x").encode("utf-8")

        assert decode_envelope(message) == ("CREATED", "x")

    def test_enum_event_type_is_written_as_its_value(self):
        message = encode_envelope(OrderEventType.CREATED, "{}")

        assert json.loads(message) == {"eventType": "CREATED", "data": "{}"}

    def test_wire_shape(self):
        """Payload is stored as a string, not as nested JSON."""
        envelope = json.loads(encode_envelope("CREATED", '{"a": 1}'))

        assert envelope == {EVENT_TYPE_ATTRIBUTE: "CREATED", "data": '{"a": 1}'}

    def test_codec_does_not_inspect_payload(self):
        """An arbitrary payload with an unknown event type still round-trips."""
        assert decode_envelope(encode_envelope("SOMETHING_ELSE", "<xml/>")) == ("SOMETHING_ELSE", "<xml/>")

    def test_empty_event_type_rejected(self):
        with pytest.raises(EventDecodeError):
            encode_envelope("", "x")

    def test_invalid_utf8_bytes_rejected(self):
        with pytest.raises(EventDecodeError):
            encode_envelope("CREATED", b"\xff\xfe")

    @pytest.mark.parametrize("message", [
        "not json",
        "[]",
        '"CREATED"',
        '{"data": "x"}',
        '{"eventType": "", "data": "x"}',
        '{"eventType": "CREATED"}',
        '{"eventType": "CREATED", "data": {"orderId": "1"}}',
    ])
    def test_malformed_envelope_raises(self, message):
        with pytest.raises(EventDecodeError):
            decode_envelope(message)

    def test_decode_error_is_a_validation_error(self):
        with pytest.raises(ValidationError):
            decode_envelope("not json")


class TestOrderEventDecoding:
    """Tagged order lifecycle events."""

    def test_created_event_decodes_to_order_created(self, order_event):
        decoded = decode_order_event(encode_order_event(OrderEventType.CREATED, order_event))

        assert isinstance(decoded, OrderCreated)
        assert decoded.event_type is OrderEventType.CREATED
        assert decoded.event == order_event

    def test_deleted_event_decodes_to_order_deleted(self, order_event):
        decoded = decode_order_event(encode_order_event(OrderEventType.DELETED, order_event))

        assert isinstance(decoded, OrderDeleted)
        assert decoded.event.order_id == "order-1"

    def test_payload_uses_camel_case_and_numeric_price(self, order_event):
        _, data = decode_envelope(encode_order_event(OrderEventType.CREATED, order_event))
        payload = json.loads(data)

        assert payload["orderId"] == "order-1"
        assert payload["productCodes"] == ["P1", "P2"]
        assert payload["requestId"] == "req-1"
        assert payload["billing"] == {"payment": "CREDIT_CARD", "totalPrice": 35.5}
        assert payload["shipping"] == {"type": "URGENT", "carrier": "FEDEX"}

    def test_total_price_decoded_as_decimal(self, order_event):
        decoded = decode_order_event(encode_order_event(OrderEventType.CREATED, order_event))

        assert decoded.event.billing.total_price == Decimal("35.5")

    def test_unknown_order_event_type_rejected(self, order_event):
        message = encode_envelope("SHIPPED", order_event.model_dump_json(by_alias=True))

        with pytest.raises(EventDecodeError, match="unknown order event type"):
            decode_order_event(message)

    def test_invalid_payload_reports_field_errors(self):
        message = encode_envelope("CREATED", json.dumps({"orderId": "1"}))

        with pytest.raises(EventDecodeError) as exc_info:
            decode_order_event(message)

        fields = {error["field"] for error in exc_info.value.field_errors}
        assert "email" in fields


class TestProductEventDecoding:

    def _payload(self, event_type: str) -> dict:
        return {
            "requestId": "req-9",
            "eventType": event_type,
            "productId": "product-1",
            "productCode": "COD1",
            "productPrice": 12.5,
            "email": "admin@example.com",
        }

    def test_updated_event(self):
        decoded = decode_product_event(self._payload("PRODUCT_UPDATED"))

        assert isinstance(decoded, ProductUpdated)
        assert decoded.event.product_code == "COD1"
        assert decoded.event.product_price == Decimal("12.5")

    def test_deleted_event(self):
        decoded = decode_product_event(self._payload(ProductEventType.DELETED.value))

        assert isinstance(decoded, ProductDeleted)

    def test_order_event_type_is_not_a_product_event(self):
        with pytest.raises(EventDecodeError):
            decode_product_event(self._payload("CREATED"))

    def test_missing_fields_rejected(self):
        with pytest.raises(EventDecodeError):
            decode_product_event({"eventType": "PRODUCT_CREATED"})

"""
Pytest configuration and shared fixtures for the order events pipeline.

Provides the test environment, moto-backed AWS resources (tables, topic,
queues, SES identity), the Lambda context, API Gateway event factories and
the metrics flushed by the handlers.
"""

import json
import os
from decimal import Decimal
from typing import Any, Callable, Dict, Optional
from unittest.mock import Mock

import boto3
import pytest
from moto import mock_aws

REGION = "us-east-1"
ORDERS_TABLE = "test-orders-table"
PRODUCTS_TABLE = "test-products-table"
EVENTS_TABLE = "test-events-table"
TOPIC_NAME = "test-order-events"
TOPIC_ARN = f"arn:aws:sns:{REGION}:123456789012:{TOPIC_NAME}"
SENDER_EMAIL = "orders@example.com"


# Set before the handlers import the shared Logger, Tracer and Metrics
os.environ.update({
    "AWS_DEFAULT_REGION": REGION,
    "AWS_REGION": REGION,
    "AWS_ACCESS_KEY_ID": "test",
    "AWS_SECRET_ACCESS_KEY": "test",
    "AWS_SECURITY_TOKEN": "test",
    "AWS_SESSION_TOKEN": "test",
    "ENVIRONMENT": "test",
    "LOG_LEVEL": "DEBUG",
    "POWERTOOLS_SERVICE_NAME": "test-order-events-pipeline",
    "POWERTOOLS_METRICS_NAMESPACE": "OrderEventsPipeline",
    "POWERTOOLS_METRICS_DISABLED": "false",
    "POWERTOOLS_TRACE_DISABLED": "true",
    "ORDERS_TABLE_NAME": ORDERS_TABLE,
    "PRODUCTS_TABLE_NAME": PRODUCTS_TABLE,
    "EVENTS_TABLE_NAME": EVENTS_TABLE,
    "ORDER_EVENTS_TOPIC_ARN": TOPIC_ARN,
    "PUBLISH_MAX_RETRIES": "1",
    "SENDER_EMAIL_ADDRESS": SENDER_EMAIL,
})


@pytest.fixture(autouse=True)
def reset_singletons():
    """Drop handler dependencies and unflushed metrics between tests."""
    from ecommerce.handlers import order_email_handler, order_events_handler, orders_handler, product_events_handler
    from ecommerce.handlers.utils.observability import metrics

    def reset():
        metrics.clear_metrics()
        orders_handler._order_service = None
        order_events_handler._audit_consumer = None
        product_events_handler._audit_consumer = None
        order_email_handler._notification_consumer = None

    reset()
    yield
    reset()


# Metrics
@pytest.fixture
def emitted_metrics(capsys) -> Callable[[], Dict[str, Any]]:
    """Read the EMF blobs printed since the last call as {metric name: value}."""

    def read() -> Dict[str, Any]:
        values: Dict[str, Any] = {}
        for line in capsys.readouterr().out.splitlines():
            try:
                blob = json.loads(line)
            except ValueError:
                continue
            if not isinstance(blob, dict) or "_aws" not in blob:
                continue
            for directive in blob["_aws"]["CloudWatchMetrics"]:
                for metric in directive["Metrics"]:
                    values[metric["Name"]] = blob[metric["Name"]]
        return values

    return read


# AWS fixtures
@pytest.fixture
def aws():
    """Mock every AWS service for the duration of the test."""
    with mock_aws():
        yield


@pytest.fixture
def dynamodb(aws):
    return boto3.resource("dynamodb", region_name=REGION)


@pytest.fixture
def orders_table(dynamodb):
    """Orders table keyed by customer email and order id."""
    table = dynamodb.create_table(
        TableName=ORDERS_TABLE,
        KeySchema=[
            {"AttributeName": "pk", "KeyType": "HASH"},
            {"AttributeName": "sk", "KeyType": "RANGE"},
        ],
        AttributeDefinitions=[
            {"AttributeName": "pk", "AttributeType": "S"},
            {"AttributeName": "sk", "AttributeType": "S"},
        ],
        BillingMode="PAY_PER_REQUEST",
    )
    table.wait_until_exists()
    return table


@pytest.fixture
def products_table(dynamodb):
    """Products table seeded with P1 (10.00) and P2 (25.50)."""
    table = dynamodb.create_table(
        TableName=PRODUCTS_TABLE,
        KeySchema=[{"AttributeName": "id", "KeyType": "HASH"}],
        AttributeDefinitions=[{"AttributeName": "id", "AttributeType": "S"}],
        BillingMode="PAY_PER_REQUEST",
    )
    table.wait_until_exists()
    table.put_item(Item={"id": "P1", "code": "P1", "price": Decimal("10.00"), "productName": "Keyboard", "model": "K1"})
    table.put_item(Item={"id": "P2", "code": "P2", "price": Decimal("25.50"), "productName": "Mouse", "model": "M2"})
    return table


@pytest.fixture
def events_table(dynamodb):
    """Audit table with the email index and TTL enabled."""
    table = dynamodb.create_table(
        TableName=EVENTS_TABLE,
        KeySchema=[
            {"AttributeName": "pk", "KeyType": "HASH"},
            {"AttributeName": "sk", "KeyType": "RANGE"},
        ],
        AttributeDefinitions=[
            {"AttributeName": "pk", "AttributeType": "S"},
            {"AttributeName": "sk", "AttributeType": "S"},
            {"AttributeName": "email", "AttributeType": "S"},
        ],
        GlobalSecondaryIndexes=[
            {
                "IndexName": "emailIndex",
                "KeySchema": [
                    {"AttributeName": "email", "KeyType": "HASH"},
                    {"AttributeName": "sk", "KeyType": "RANGE"},
                ],
                "Projection": {"ProjectionType": "ALL"},
            }
        ],
        BillingMode="PAY_PER_REQUEST",
    )
    table.wait_until_exists()
    boto3.client("dynamodb", region_name=REGION).update_time_to_live(
        TableName=EVENTS_TABLE,
        TimeToLiveSpecification={"Enabled": True, "AttributeName": "ttl"},
    )
    return table


@pytest.fixture
def sns_client(aws):
    return boto3.client("sns", region_name=REGION)


@pytest.fixture
def sqs_client(aws):
    return boto3.client("sqs", region_name=REGION)


@pytest.fixture
def order_events_topic(sns_client) -> str:
    return sns_client.create_topic(Name=TOPIC_NAME)["TopicArn"]


@pytest.fixture
def make_queue(sqs_client) -> Callable[..., Dict[str, str]]:
    """Create an SQS queue, optionally with a dead-letter queue and redrive policy."""

    def create(name: str, dead_letter_queue_arn: Optional[str] = None, max_receive_count: int = 3) -> Dict[str, str]:
        attributes = {}
        if dead_letter_queue_arn:
            attributes["RedrivePolicy"] = json.dumps({
                "deadLetterTargetArn": dead_letter_queue_arn,
                "maxReceiveCount": str(max_receive_count),
            })
        url = sqs_client.create_queue(QueueName=name, Attributes=attributes)["QueueUrl"]
        arn = sqs_client.get_queue_attributes(QueueUrl=url, AttributeNames=["QueueArn"])["Attributes"]["QueueArn"]
        return {"url": url, "arn": arn}

    return create


@pytest.fixture
def ses_client(aws):
    client = boto3.client("ses", region_name=REGION)
    client.verify_email_identity(EmailAddress=SENDER_EMAIL)
    return client


@pytest.fixture
def lambda_context():
    """Create a mock Lambda context for testing."""
    context = Mock()
    context.function_name = "test-lambda-function"
    context.function_version = "1"
    context.invoked_function_arn = "arn:aws:lambda:us-east-1:123456789012:function:test-lambda-function"
    context.memory_limit_in_mb = "128"
    context.get_remaining_time_in_millis = lambda: 5000
    context.aws_request_id = "test-request-id-123"
    return context


@pytest.fixture
def api_gateway_event() -> Callable[..., Dict[str, Any]]:
    """Factory for API Gateway REST events on /orders."""

    def build(
        method: str,
        body: Optional[Any] = None,
        query: Optional[Dict[str, str]] = None,
        resource: str = "/orders",
        request_id: str = "api-request-id-123",
    ) -> Dict[str, Any]:
        return {
            "resource": resource,
            "path": resource,
            "httpMethod": method,
            "headers": {"Content-Type": "application/json"},
            "queryStringParameters": query,
            "pathParameters": None,
            "body": body if body is None or isinstance(body, str) else json.dumps(body),
            "requestContext": {
                "requestId": request_id,
                "stage": "test",
                "httpMethod": method,
                "resourcePath": resource,
            },
            "isBase64Encoded": False,
        }

    return build


@pytest.fixture
def create_order_body() -> Dict[str, Any]:
    return {
        "email": "alice@example.com",
        "productIds": ["P1", "P2"],
        "payment": "CREDIT_CARD",
        "shipping": {"type": "URGENT", "carrier": "FEDEX"},
    }


# Failure injection
@pytest.fixture
def client_error():
    """Factory for botocore ClientErrors."""
    from botocore.exceptions import ClientError

    def create_error(error_code: str, message: str = "Test error", operation: str = "TestOperation"):
        return ClientError(
            error_response={"Error": {"Code": error_code, "Message": message}},
            operation_name=operation,
        )

    return create_error


# Markers
def pytest_configure(config):
    """Register the unit and integration markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")


def pytest_collection_modifyitems(config, items):
    """Mark each test by its directory."""
    for item in items:
        path = str(item.fspath)
        if f"{os.sep}unit{os.sep}" in path:
            item.add_marker(pytest.mark.unit)
        elif f"{os.sep}integration{os.sep}" in path:
            item.add_marker(pytest.mark.integration)

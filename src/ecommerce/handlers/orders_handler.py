"""
Orders Handler - Lambda function for the orders REST API.

Routes on ``/orders``:

* GET: all orders, ``?email=`` for one customer, ``?email=&orderId=`` for one order
* POST: create an order (201), publishing its CREATED event
* DELETE ``?email=&orderId=``: delete an order (200), publishing its DELETED event

Any other method or path is a 400. Service errors become structured error bodies.
"""

import json
from typing import Any, Dict, Optional

import boto3
from aws_lambda_powertools.event_handler import Response
from aws_lambda_powertools.event_handler.exceptions import NotFoundError
from aws_lambda_powertools.logging import correlation_paths
from aws_lambda_powertools.metrics import MetricUnit
from aws_lambda_powertools.utilities.typing import LambdaContext
from aws_lambda_env_modeler import get_environment_variables
from pydantic import ValidationError

from ecommerce.dal.dynamodb_handler import DynamoDBHandler
from ecommerce.dal.orders_repository import OrdersRepository
from ecommerce.dal.products_repository import ProductsRepository
from ecommerce.events.publisher import EventPublisher, PublishResult
from ecommerce.handlers.models.env_vars import OrdersHandlerEnvVars
from ecommerce.handlers.utils.errors import (
    BaseServiceError,
    ErrorContext,
    UnexpectedError,
    ValidationError as ServiceValidationError,
    create_api_response,
    create_error_context,
    error_response,
)
from ecommerce.handlers.utils.observability import logger, metrics, tracer
from ecommerce.handlers.utils.rest_api_resolver import ORDERS_PATH, app
from ecommerce.logic.order_service import OrderService
from ecommerce.models.input import CreateOrderRequest
from ecommerce.models.output import OrderResponse

# Built on first use and kept for the life of the execution environment
_order_service: Optional[OrderService] = None


def get_order_service() -> OrderService:
    global _order_service

    if _order_service is None:
        env_vars = get_environment_variables(model=OrdersHandlerEnvVars)
        dynamodb = boto3.resource('dynamodb', region_name=env_vars.AWS_REGION)
        _order_service = OrderService(
            orders_repository=OrdersRepository(
                DynamoDBHandler(env_vars.ORDERS_TABLE_NAME, dynamodb_resource=dynamodb)
            ),
            products_repository=ProductsRepository(
                DynamoDBHandler(env_vars.PRODUCTS_TABLE_NAME, dynamodb_resource=dynamodb)
            ),
            event_publisher=EventPublisher(
                topic_arn=env_vars.ORDER_EVENTS_TOPIC_ARN,
                sns_client=boto3.client('sns', region_name=env_vars.AWS_REGION),
                max_retries=env_vars.PUBLISH_MAX_RETRIES,
            ),
        )
    return _order_service


def handle_service_errors(func):
    """Decorator to handle service errors and convert to HTTP responses."""

    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except BaseServiceError as e:
            return error_response(e)

        except ValidationError as e:
            # Pydantic request validation
            logger.info("Request validation failed", error_count=e.error_count())
            field_errors = [
                {"field": ".".join(str(loc) for loc in error["loc"]), "message": error["msg"]}
                for error in e.errors()
            ]
            return error_response(ServiceValidationError("Request validation failed", field_errors=field_errors))

        except Exception as e:
            logger.exception("Unexpected error in handler", error=str(e), function_name=func.__name__)
            metrics.add_metric(name="UnexpectedError", unit=MetricUnit.Count, value=1)
            return error_response(UnexpectedError("An unexpected error occurred"))

    return wrapper


def _error_context(operation: str, resource_id: Optional[str] = None) -> ErrorContext:
    request_context = app.current_event.request_context
    return create_error_context(
        request_id=request_context.request_id or 'unknown',
        operation=operation,
        resource_id=resource_id,
    )


def _query_params() -> Dict[str, str]:
    return app.current_event.query_string_parameters or {}


def _record_publish(result: PublishResult) -> None:
    if not result.success:
        metrics.add_metric(name="OrderEventPublishFailed", unit=MetricUnit.Count, value=1)


@app.get(ORDERS_PATH)
@tracer.capture_method
@handle_service_errors
def get_orders() -> Response:
    params = _query_params()
    email = params.get('email')
    order_id = params.get('orderId')
    service = get_order_service()

    if email and order_id:
        tracer.put_annotation("order_id", order_id)
        order = service.get_order(email, order_id, context=_error_context('get_order', order_id))
        return create_api_response(200, OrderResponse.from_order(order).to_body())

    orders = service.get_orders_by_email(email) if email else service.get_all_orders()
    return create_api_response(200, [OrderResponse.from_order(order).to_body() for order in orders])


@app.post(ORDERS_PATH)
@tracer.capture_method
@handle_service_errors
def create_order() -> Response:
    try:
        body = json.loads(app.current_event.body or '')
    except ValueError:
        raise ServiceValidationError("Request body must be valid JSON")

    request = CreateOrderRequest.model_validate(body)
    creation = get_order_service().create_order(request, _error_context('create_order'))
    order = creation.order

    tracer.put_annotation("order_id", order.id)
    metrics.add_metric(name="OrderCreated", unit=MetricUnit.Count, value=1)
    _record_publish(creation.publish_result)

    return create_api_response(
        201,
        OrderResponse.from_order(order).to_body(),
        headers={"Location": f"{ORDERS_PATH}?email={order.email}&orderId={order.id}"},
    )


@app.delete(ORDERS_PATH)
@tracer.capture_method
@handle_service_errors
def delete_order() -> Response:
    params = _query_params()
    email = params.get('email')
    order_id = params.get('orderId')
    if not email or not order_id:
        raise ServiceValidationError("email and orderId are required")

    tracer.put_annotation("order_id", order_id)
    deletion = get_order_service().delete_order(email, order_id, _error_context('delete_order', order_id))
    metrics.add_metric(name="OrderDeleted", unit=MetricUnit.Count, value=1)
    _record_publish(deletion.publish_result)

    return create_api_response(200, OrderResponse.from_order(deletion.order).to_body())


@app.not_found
def unsupported_request(exc: NotFoundError) -> Response:
    logger.info(
        "Unsupported request",
        http_method=app.current_event.http_method,
        path=app.current_event.path,
    )
    return error_response(ServiceValidationError("Bad request"))


@tracer.capture_lambda_handler
@logger.inject_lambda_context(correlation_id_path=correlation_paths.API_GATEWAY_REST)
@metrics.log_metrics(capture_cold_start_metric=True)
def lambda_handler(event: Dict[str, Any], context: LambdaContext) -> Dict[str, Any]:
    """
    Main Lambda handler function.

    Args:
        event: API Gateway REST event
        context: Lambda context object

    Returns:
        API Gateway response
    """
    tracer.put_annotation("environment", get_environment_variables(model=OrdersHandlerEnvVars).ENVIRONMENT)
    return app.resolve(event, context)

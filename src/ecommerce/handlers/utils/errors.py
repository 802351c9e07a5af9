"""
Error taxonomy and API error responses for the order pipeline.

Each subclass declares its error code, HTTP status, severity and category as
class attributes; instances only carry what happened and where. The orders
API turns these into JSON error bodies, the event handlers log them and
re-raise so SNS or SQS delivers the message again.
"""

import json
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from aws_lambda_powertools.event_handler import Response, content_types
from pydantic import BaseModel, Field

from ecommerce.handlers.utils.observability import logger


class ErrorSeverity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class ErrorCategory(str, Enum):
    """Layer or dependency an error originates from."""
    VALIDATION = "VALIDATION"
    BUSINESS_LOGIC = "BUSINESS_LOGIC"
    EXTERNAL_SERVICE = "EXTERNAL_SERVICE"
    INFRASTRUCTURE = "INFRASTRUCTURE"
    DELIVERY = "DELIVERY"


class ErrorContext(BaseModel):
    """The request and operation an error belongs to."""

    request_id: str = Field(description="API Gateway request id or Lambda request id")
    operation: str = Field(description="Service or table operation, e.g. create_order or PutItem")
    resource_id: Optional[str] = Field(default=None, description="Order id, product code or table key")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    additional_data: Dict[str, Any] = Field(default_factory=dict)


class BaseServiceError(Exception):
    """Root of the taxonomy; also used as-is for unexpected failures."""

    error_code = "INTERNAL_SERVER_ERROR"
    http_status = 500
    severity = ErrorSeverity.MEDIUM
    category = ErrorCategory.BUSINESS_LOGIC
    default_user_message = "An error occurred while processing your request."

    def __init__(
        self,
        message: str,
        context: Optional[ErrorContext] = None,
        user_message: Optional[str] = None,
        retry_after: Optional[int] = None,
        error_code: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.context = context
        self.user_message = user_message or self.default_user_message
        self.retry_after = retry_after
        if error_code:
            self.error_code = error_code
        self.error_id = str(uuid.uuid4())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_id": self.error_id,
            "error_code": self.error_code,
            "message": self.message,
            "user_message": self.user_message,
            "severity": self.severity.value,
            "category": self.category.value,
            "http_status": self.http_status,
            "retry_after": self.retry_after,
            "context": self.context.model_dump(mode="json") if self.context else None,
        }


class ValidationError(BaseServiceError):
    """Request, query string or event payload is not acceptable.

    The message doubles as the user message, e.g. "some product was not found".
    """

    error_code = "VALIDATION_ERROR"
    http_status = 400
    severity = ErrorSeverity.LOW
    category = ErrorCategory.VALIDATION

    def __init__(
        self,
        message: str,
        field_errors: Optional[List[Dict[str, str]]] = None,
        context: Optional[ErrorContext] = None,
        user_message: Optional[str] = None,
    ):
        super().__init__(message, context=context, user_message=user_message or message)
        self.field_errors = field_errors or []


class EventDecodeError(ValidationError):
    """Envelope or lifecycle payload that cannot be decoded."""


class ResourceNotFoundError(BaseServiceError):
    error_code = "RESOURCE_NOT_FOUND"
    http_status = 404
    severity = ErrorSeverity.LOW

    def __init__(self, resource_type: str, resource_id: str, context: Optional[ErrorContext] = None):
        super().__init__(
            f"{resource_type} '{resource_id}' does not exist",
            context=context,
            user_message=f"{resource_type} not found",
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class ExternalServiceError(BaseServiceError):
    """An AWS dependency call failed (DynamoDB, SNS, SQS or SES)."""

    error_code = "EXTERNAL_SERVICE_ERROR"
    http_status = 502
    severity = ErrorSeverity.HIGH
    category = ErrorCategory.EXTERNAL_SERVICE
    default_user_message = "A required service is temporarily unavailable. Please try again later."

    def __init__(
        self,
        message: str,
        service_name: str,
        context: Optional[ErrorContext] = None,
        retry_after: Optional[int] = None,
    ):
        super().__init__(message, context=context, retry_after=retry_after)
        self.service_name = service_name


class TransientDeliveryError(ExternalServiceError):
    """Publish, receive or send failed; the message can be delivered again later."""

    error_code = "TRANSIENT_DELIVERY_ERROR"
    category = ErrorCategory.DELIVERY

    def __init__(
        self,
        message: str,
        service_name: str,
        context: Optional[ErrorContext] = None,
        attempts: int = 1,
    ):
        super().__init__(message, service_name, context=context)
        self.attempts = attempts


class NotificationBatchError(BaseServiceError):
    """Some emails of an SQS batch were not sent; the whole batch is retried."""

    error_code = "NOTIFICATION_BATCH_FAILED"
    severity = ErrorSeverity.HIGH
    category = ErrorCategory.DELIVERY

    def __init__(self, failed_message_ids: List[str], total: int):
        super().__init__(f"{len(failed_message_ids)} of {total} notifications failed")
        self.failed_message_ids = failed_message_ids
        self.total = total


class UnexpectedError(BaseServiceError):
    """Wraps an exception outside the taxonomy so the API still answers with JSON."""

    severity = ErrorSeverity.CRITICAL
    category = ErrorCategory.INFRASTRUCTURE


def create_error_context(
    request_id: str,
    operation: str,
    resource_id: Optional[str] = None,
    **additional_data: Any,
) -> ErrorContext:
    return ErrorContext(
        request_id=request_id,
        operation=operation,
        resource_id=resource_id,
        additional_data=additional_data,
    )


def log_service_error(error: BaseServiceError) -> None:
    log = logger.warning if error.http_status < 500 else logger.error
    log(
        "Service error occurred",
        error_id=error.error_id,
        error_code=error.error_code,
        error_severity=error.severity.value,
        error_category=error.category.value,
        error_message=error.message,
        context=error.context.model_dump(mode="json") if error.context else None,
    )


def format_error_response(error: BaseServiceError) -> Dict[str, Any]:
    """JSON body returned by the orders API for a failed request."""
    body: Dict[str, Any] = {
        "code": error.error_code,
        "message": error.user_message,
        "error_id": error.error_id,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if isinstance(error, ValidationError) and error.field_errors:
        body["field_errors"] = error.field_errors

    response: Dict[str, Any] = {"error": body}
    if error.retry_after:
        response["retry_after"] = error.retry_after
    return response


def get_http_status_code(error: BaseServiceError) -> int:
    return error.http_status


def create_api_response(
    status_code: int,
    body: Any,
    headers: Optional[Dict[str, str]] = None,
) -> Response:
    """JSON response for a route of the orders resolver; CORS headers are added by the resolver."""
    return Response(
        status_code=status_code,
        content_type=content_types.APPLICATION_JSON,
        body=body if isinstance(body, str) else json.dumps(body, default=str),
        headers={"X-Request-ID": str(uuid.uuid4()), **(headers or {})},
    )


def error_response(error: BaseServiceError) -> Response:
    """Log ``error`` and turn it into the API response for its status."""
    log_service_error(error)
    return create_api_response(
        status_code=get_http_status_code(error),
        body=format_error_response(error),
        headers={"Retry-After": str(error.retry_after)} if error.retry_after else None,
    )

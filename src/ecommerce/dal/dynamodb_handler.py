"""
Data Access Layer (DAL) for DynamoDB operations.

DynamoDBHandler wraps one table. Every table call goes through
``_dal_operation``, which converts botocore failures into DALError subclasses,
so repositories never see ClientError.
"""

import functools
import time
from typing import Any, Callable, Dict, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ecommerce.handlers.utils.errors import (
    BaseServiceError,
    ErrorCategory,
    ErrorContext,
    ErrorSeverity,
    ExternalServiceError,
)
from ecommerce.handlers.utils.observability import logger

# BatchGetItem hard limit per request
BATCH_GET_MAX_KEYS = 100

THROTTLED_RETRY_AFTER_SECONDS = 30

THROTTLING_CODES = frozenset({
    'ProvisionedThroughputExceededException',
    'ThrottlingException',
    'RequestLimitExceeded',
})


class DALError(BaseServiceError):
    """A table operation failed."""

    error_code = "DAL_ERROR"
    severity = ErrorSeverity.HIGH
    category = ErrorCategory.INFRASTRUCTURE
    default_user_message = "A database error occurred. Please try again later."

    def __init__(
        self,
        message: str,
        operation: str,
        table_name: str,
        error_code: Optional[str] = None,
        context: Optional[ErrorContext] = None,
        retry_after: Optional[int] = None,
    ):
        super().__init__(message, context=context, retry_after=retry_after, error_code=error_code)
        self.operation = operation
        self.table_name = table_name


class ConditionalCheckFailedError(DALError):
    """A guarded write found the item in another state, e.g. deleting an order that is gone."""

    error_code = "CONDITIONAL_CHECK_FAILED"
    http_status = 409
    severity = ErrorSeverity.MEDIUM
    default_user_message = "The resource was modified or does not exist."

    def __init__(self, table_name: str, operation: str, condition: str, context: Optional[ErrorContext] = None):
        super().__init__(f"Conditional check failed: {condition}", operation, table_name, context=context)
        self.condition = condition


class DatabaseUnavailableError(ExternalServiceError):
    """DynamoDB could not be reached at all."""

    error_code = "DATABASE_CONNECTION_ERROR"
    http_status = 503


def _client_error_to_dal_error(
    error: ClientError,
    table_name: str,
    operation: str,
    context: Optional[ErrorContext],
    condition: Optional[str],
) -> DALError:
    code = error.response['Error']['Code']

    if code == 'ConditionalCheckFailedException':
        return ConditionalCheckFailedError(
            table_name, operation, condition or 'item condition check failed', context=context
        )
    if code == 'ResourceNotFoundException':
        return DALError(
            f"Table {table_name} does not exist", operation, table_name,
            error_code="TABLE_NOT_FOUND", context=context,
        )
    if code in THROTTLING_CODES:
        return DALError(
            f"{operation} on {table_name} was throttled", operation, table_name,
            error_code="THROTTLING_ERROR", context=context, retry_after=THROTTLED_RETRY_AFTER_SECONDS,
        )
    return DALError(
        f"{operation} on {table_name} failed: {error.response['Error'].get('Message', code)}",
        operation, table_name, error_code=f"DYNAMODB_{code}", context=context,
    )


def _dal_operation(operation: str) -> Callable:
    """Decorate a handler method that issues the DynamoDB ``operation``."""

    def decorator(func):
        @functools.wraps(func)
        def wrapper(self, *args, **kwargs):
            context = kwargs.get('context')
            started = time.perf_counter()
            try:
                result = func(self, *args, **kwargs)
            except ClientError as e:
                error = _client_error_to_dal_error(
                    e, self.table_name, operation, context, kwargs.get('condition_description')
                )
                # a failed condition is an answer, not an outage
                log = logger.info if isinstance(error, ConditionalCheckFailedError) else logger.error
                log("DynamoDB request rejected", table_name=self.table_name, operation=operation,
                    error_code=error.error_code)
                raise error from e
            except BotoCoreError as e:
                logger.error("DynamoDB unreachable", table_name=self.table_name, operation=operation, error=str(e))
                raise DatabaseUnavailableError(
                    f"{operation} on {self.table_name} could not reach DynamoDB: {e}",
                    service_name="DynamoDB",
                    context=context,
                ) from e

            logger.debug(
                "DynamoDB request completed",
                table_name=self.table_name,
                operation=operation,
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
            )
            return result

        return wrapper
    return decorator


def _page(response: Dict[str, Any]) -> Dict[str, Any]:
    page = {'items': response.get('Items', []), 'count': response.get('Count', 0)}
    if 'LastEvaluatedKey' in response:
        page['last_evaluated_key'] = response['LastEvaluatedKey']
    return page


class DynamoDBHandler:
    """One DynamoDB table: item reads and writes, paginated queries and batch gets."""

    def __init__(
        self,
        table_name: str,
        region_name: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        dynamodb_resource: Optional[Any] = None,
        max_batch_get_attempts: int = 5,
        retry_backoff_base: float = 0.05,
    ):
        """
        Args:
            table_name: Orders, products or events table
            region_name: AWS region, taken from the environment when omitted
            endpoint_url: Alternative endpoint such as DynamoDB Local
            dynamodb_resource: boto3 resource to share between handlers
            max_batch_get_attempts: How often keys reported as unprocessed are requested again
            retry_backoff_base: Seconds before the first re-request, doubled each time
        """
        self.table_name = table_name
        self.max_batch_get_attempts = max_batch_get_attempts
        self.retry_backoff_base = retry_backoff_base

        if dynamodb_resource is None:
            dynamodb_resource = boto3.resource('dynamodb', region_name=region_name, endpoint_url=endpoint_url)
        self.dynamodb = dynamodb_resource
        self.table = self.dynamodb.Table(table_name)

    @_dal_operation("GetItem")
    def get_item(self, key: Dict[str, Any], context: Optional[ErrorContext] = None) -> Optional[Dict[str, Any]]:
        return self.table.get_item(Key=key).get('Item')

    @_dal_operation("PutItem")
    def put_item(
        self,
        item: Dict[str, Any],
        condition_expression: Optional[Any] = None,
        condition_description: Optional[str] = None,
        context: Optional[ErrorContext] = None,
    ) -> Dict[str, Any]:
        """Store ``item``; unconditional puts overwrite whatever is under the key."""
        request: Dict[str, Any] = {'Item': item}
        if condition_expression is not None:
            request['ConditionExpression'] = condition_expression
        self.table.put_item(**request)
        return item

    @_dal_operation("DeleteItem")
    def delete_item(
        self,
        key: Dict[str, Any],
        condition_expression: Optional[Any] = None,
        condition_description: Optional[str] = None,
        context: Optional[ErrorContext] = None,
    ) -> Optional[Dict[str, Any]]:
        """
        Delete the item under ``key``.

        Returns:
            The attributes the item had, or None if the key was empty

        Raises:
            ConditionalCheckFailedError: ``condition_expression`` did not hold
        """
        request: Dict[str, Any] = {'Key': key, 'ReturnValues': 'ALL_OLD'}
        if condition_expression is not None:
            request['ConditionExpression'] = condition_expression
        return self.table.delete_item(**request).get('Attributes')

    @_dal_operation("Query")
    def query_items(
        self,
        key_condition: Any,
        filter_expression: Optional[Any] = None,
        index_name: Optional[str] = None,
        exclusive_start_key: Optional[Dict[str, Any]] = None,
        context: Optional[ErrorContext] = None,
    ) -> Dict[str, Any]:
        """One page of a query, in sort key order."""
        request: Dict[str, Any] = {'KeyConditionExpression': key_condition}
        if filter_expression is not None:
            request['FilterExpression'] = filter_expression
        if index_name:
            request['IndexName'] = index_name
        if exclusive_start_key:
            request['ExclusiveStartKey'] = exclusive_start_key
        return _page(self.table.query(**request))

    @_dal_operation("Scan")
    def scan_items(
        self,
        exclusive_start_key: Optional[Dict[str, Any]] = None,
        context: Optional[ErrorContext] = None,
    ) -> Dict[str, Any]:
        request: Dict[str, Any] = {}
        if exclusive_start_key:
            request['ExclusiveStartKey'] = exclusive_start_key
        return _page(self.table.scan(**request))

    def query_all(self, key_condition: Any, **kwargs: Any) -> List[Dict[str, Any]]:
        return self._read_all(functools.partial(self.query_items, key_condition, **kwargs))

    def scan_all(self, **kwargs: Any) -> List[Dict[str, Any]]:
        return self._read_all(functools.partial(self.scan_items, **kwargs))

    @staticmethod
    def _read_all(read_page: Callable[..., Dict[str, Any]]) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        start_key = None
        while True:
            page = read_page(exclusive_start_key=start_key)
            items.extend(page['items'])
            start_key = page.get('last_evaluated_key')
            if not start_key:
                return items

    @_dal_operation("BatchGetItem")
    def batch_get_items(
        self,
        keys: List[Dict[str, Any]],
        context: Optional[ErrorContext] = None,
    ) -> List[Dict[str, Any]]:
        """
        Fetch many items, requesting unprocessed keys again with backoff.

        Args:
            keys: Distinct primary keys

        Returns:
            Found items in no particular order; absent keys are left out

        Raises:
            DALError: Keys were still unprocessed after the last attempt
        """
        items: List[Dict[str, Any]] = []

        for start in range(0, len(keys), BATCH_GET_MAX_KEYS):
            pending = {self.table_name: {'Keys': keys[start:start + BATCH_GET_MAX_KEYS]}}

            for attempt in range(self.max_batch_get_attempts):
                response = self.dynamodb.batch_get_item(RequestItems=pending)
                items.extend(response.get('Responses', {}).get(self.table_name, []))

                pending = response.get('UnprocessedKeys') or {}
                if not pending:
                    break
                time.sleep(self.retry_backoff_base * (2 ** attempt))
            else:
                raise DALError(
                    f"BatchGetItem on {self.table_name} left keys unprocessed",
                    "BatchGetItem",
                    self.table_name,
                    error_code="THROTTLING_ERROR",
                    context=context,
                    retry_after=THROTTLED_RETRY_AFTER_SECONDS,
                )

        logger.debug("Batch get completed", table_name=self.table_name, requested=len(keys), found=len(items))
        return items

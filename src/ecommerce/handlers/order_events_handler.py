"""
Order Events Handler - SNS subscriber that writes the order audit trail.

Invoked directly by the order events topic. Records are handled one at a
time; any failure is raised so SNS retries the delivery.
"""

from typing import Optional, Tuple

from aws_lambda_env_modeler import get_environment_variables
from aws_lambda_powertools.metrics import MetricUnit
from aws_lambda_powertools.utilities.data_classes import SNSEvent, event_source
from aws_lambda_powertools.utilities.data_classes.sns_event import SNSEventRecord
from aws_lambda_powertools.utilities.typing import LambdaContext

from ecommerce.dal.audit_repository import AuditRepository
from ecommerce.dal.dynamodb_handler import DynamoDBHandler
from ecommerce.handlers.models.env_vars import AuditHandlerEnvVars
from ecommerce.handlers.utils.errors import BaseServiceError, EventDecodeError, log_service_error
from ecommerce.handlers.utils.observability import logger, metrics, tracer
from ecommerce.logic.audit_consumer import AuditConsumer

_audit_consumer: Optional[AuditConsumer] = None


def get_audit_consumer() -> AuditConsumer:
    global _audit_consumer

    if _audit_consumer is None:
        env_vars = get_environment_variables(model=AuditHandlerEnvVars)
        table = DynamoDBHandler(env_vars.EVENTS_TABLE_NAME, region_name=env_vars.AWS_REGION)
        _audit_consumer = AuditConsumer(AuditRepository(table))
    return _audit_consumer


def _notification(record: SNSEventRecord) -> Tuple[str, str]:
    """Message id and message of one SNS record."""
    try:
        return record.sns.message_id, record.sns.message
    except KeyError as e:
        raise EventDecodeError(f"SNS record is missing {e}") from e


@tracer.capture_lambda_handler
@logger.inject_lambda_context
@metrics.log_metrics(capture_cold_start_metric=True)
@event_source(data_class=SNSEvent)
def lambda_handler(event: SNSEvent, context: LambdaContext) -> None:
    consumer = get_audit_consumer()
    recorded = 0

    try:
        for record in event.records:
            try:
                message_id, message = _notification(record)
                logger.info("Order event received", message_id=message_id)
                consumer.record_order_event(message, message_id)
            except BaseServiceError as e:
                log_service_error(e)
                raise
            recorded += 1
    finally:
        metrics.add_metric(name="OrderAuditRecordWritten", unit=MetricUnit.Count, value=recorded)

    logger.info("Order events recorded", count=recorded)

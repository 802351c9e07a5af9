"""
Product Events Handler - records product lifecycle events in the audit trail.

Invoked directly (not through the topic) with a single product event.
"""

from typing import Any, Dict, Optional

from aws_lambda_env_modeler import get_environment_variables
from aws_lambda_powertools.metrics import MetricUnit
from aws_lambda_powertools.utilities.typing import LambdaContext

from ecommerce.dal.audit_repository import AuditRepository
from ecommerce.dal.dynamodb_handler import DynamoDBHandler
from ecommerce.handlers.models.env_vars import AuditHandlerEnvVars
from ecommerce.handlers.utils.errors import BaseServiceError, log_service_error
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


@tracer.capture_lambda_handler
@logger.inject_lambda_context
@metrics.log_metrics(capture_cold_start_metric=True)
def lambda_handler(event: Dict[str, Any], context: LambdaContext) -> Dict[str, Any]:
    logger.info("Product event received")
    try:
        get_audit_consumer().record_product_event(event)
    except BaseServiceError as e:
        log_service_error(e)
        raise

    metrics.add_metric(name="ProductAuditRecordWritten", unit=MetricUnit.Count, value=1)
    return {'productEventCreated': True, 'message': 'OK'}

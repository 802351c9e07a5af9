"""
Order Email Handler - drains the buffered order emails queue.

Receives SQS batches of SNS notifications filtered to CREATED events and
sends one confirmation email per order. A failed batch is raised as a whole
so SQS redelivers it; after three receives the queue's redrive policy moves
the messages to the dead-letter queue.
"""

from typing import Dict, Optional

import boto3
from aws_lambda_env_modeler import get_environment_variables
from aws_lambda_powertools.metrics import MetricUnit
from aws_lambda_powertools.utilities.data_classes import SQSEvent, event_source
from aws_lambda_powertools.utilities.typing import LambdaContext

from ecommerce.handlers.models.env_vars import OrderEmailHandlerEnvVars
from ecommerce.handlers.utils.errors import BaseServiceError, NotificationBatchError, log_service_error
from ecommerce.handlers.utils.observability import logger, metrics, tracer
from ecommerce.logic.notification_consumer import NotificationConsumer, SesEmailSender

_notification_consumer: Optional[NotificationConsumer] = None


def get_notification_consumer() -> NotificationConsumer:
    global _notification_consumer

    if _notification_consumer is None:
        env_vars = get_environment_variables(model=OrderEmailHandlerEnvVars)
        sender = SesEmailSender(
            source_address=env_vars.SENDER_EMAIL_ADDRESS,
            ses_client=boto3.client('ses', region_name=env_vars.AWS_REGION),
        )
        _notification_consumer = NotificationConsumer(sender, max_concurrency=env_vars.MAX_CONCURRENT_EMAILS)
    return _notification_consumer


@tracer.capture_lambda_handler
@logger.inject_lambda_context
@metrics.log_metrics(capture_cold_start_metric=True)
@event_source(data_class=SQSEvent)
def lambda_handler(event: SQSEvent, context: LambdaContext) -> Dict[str, int]:
    records = list(event.records)
    logger.info("Order email batch received", batch_size=len(records))

    try:
        outcome = get_notification_consumer().process_batch(records)
    except NotificationBatchError as e:
        log_service_error(e)
        metrics.add_metric(name="OrderEmailBatchFailed", unit=MetricUnit.Count, value=1)
        metrics.add_metric(name="OrderEmailFailed", unit=MetricUnit.Count, value=len(e.failed_message_ids))
        raise
    except BaseServiceError as e:
        log_service_error(e)
        raise

    metrics.add_metric(name="OrderEmailSent", unit=MetricUnit.Count, value=outcome.sent)
    return {'sent': outcome.sent, 'skipped': outcome.skipped}

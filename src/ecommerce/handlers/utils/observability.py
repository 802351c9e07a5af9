"""
Centralized observability utilities for the pipeline's Lambda handlers.

One Logger, Tracer and Metrics instance shared by every layer, configured by
the standard Powertools environment variables.
"""

from aws_lambda_powertools.logging import Logger
from aws_lambda_powertools.metrics import Metrics
from aws_lambda_powertools.tracing import Tracer

# CloudWatch namespace for order, audit and email counters
METRICS_NAMESPACE = 'OrderEventsPipeline'

# JSON output; service name from "POWERTOOLS_SERVICE_NAME", level from "LOG_LEVEL"
logger: Logger = Logger()

# Disabled by setting POWERTOOLS_TRACE_DISABLED to "true" or outside Lambda
tracer: Tracer = Tracer()

# Service dimension from "POWERTOOLS_SERVICE_NAME"
metrics: Metrics = Metrics(namespace=METRICS_NAMESPACE)

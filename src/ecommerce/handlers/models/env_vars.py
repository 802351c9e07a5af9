"""
Environment variable models for type-safe configuration.

Each Lambda handler validates its environment through one pydantic model,
loaded with aws-lambda-env-modeler's ``get_environment_variables``. Logger,
tracer and metrics settings are read by Powertools itself.
"""

from typing import Annotated

from pydantic import BaseModel, Field


class HandlerEnvVars(BaseModel):
    """Environment variables shared by every handler."""

    AWS_REGION: Annotated[str, Field(
        description='AWS region for service deployment'
    )] = 'us-east-1'

    # Annotated on every trace
    ENVIRONMENT: Annotated[str, Field(
        description='Deployment environment name',
        pattern=r'^(dev|test|staging|prod)$'
    )] = 'dev'


class OrdersHandlerEnvVars(HandlerEnvVars):
    """Environment variables for the orders REST handler."""

    ORDERS_TABLE_NAME: Annotated[str, Field(
        description='DynamoDB table holding orders keyed by email and order id',
        min_length=1
    )]

    PRODUCTS_TABLE_NAME: Annotated[str, Field(
        description='DynamoDB table holding the product catalog',
        min_length=1
    )]

    ORDER_EVENTS_TOPIC_ARN: Annotated[str, Field(
        description='SNS topic that receives order lifecycle envelopes',
        min_length=1
    )]

    PUBLISH_MAX_RETRIES: Annotated[int, Field(
        description='Retries for a failed publish before it is reported as failed',
        ge=0,
        le=10
    )] = 3


class AuditHandlerEnvVars(HandlerEnvVars):
    """Environment variables for the order and product audit handlers."""

    EVENTS_TABLE_NAME: Annotated[str, Field(
        description='DynamoDB table holding audit records',
        min_length=1
    )]


class OrderEmailHandlerEnvVars(HandlerEnvVars):
    """Environment variables for the order email handler."""

    SENDER_EMAIL_ADDRESS: Annotated[str, Field(
        description='Verified SES identity used as the email source',
        min_length=3
    )]

    MAX_CONCURRENT_EMAILS: Annotated[int, Field(
        description='Upper bound on concurrent SES calls for one batch',
        ge=1,
        le=10
    )] = 5

"""
API Gateway REST resolver for the orders API.
"""

from aws_lambda_powertools.event_handler import APIGatewayRestResolver, CORSConfig

ORDERS_PATH = '/orders'

cors_config = CORSConfig(
    allow_origin='*',
    max_age=600,
    allow_headers=['Content-Type', 'X-Amz-Date', 'Authorization', 'X-Api-Key'],
)

app = APIGatewayRestResolver(cors=cors_config)

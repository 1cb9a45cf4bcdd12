import os

import boto3
from botocore.config import Config

QUOTES_TABLE_NAME = os.environ.get('QUOTES_TABLE_NAME', 'quotes_v0')
TOPIC_QUOTES_TABLE_NAME = os.environ.get('TOPIC_QUOTES_TABLE_NAME', 'topic_quotes_v0')

AWS_REGION = os.environ.get('AWS_REGION', 'us-east-1')
# Set to http://localhost:8000 to use DynamoDB Local
DYNAMODB_ENDPOINT_URL = os.environ.get('DYNAMODB_ENDPOINT_URL') or None
DYNAMODB_TIMEOUT = int(os.environ.get('DYNAMODB_TIMEOUT', '5'))
DYNAMODB_MAX_ATTEMPTS = int(os.environ.get('DYNAMODB_MAX_ATTEMPTS', '3'))

QUOTE_TTL_DAYS = int(os.environ.get('QUOTE_TTL_DAYS', '365'))

LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')


def get_dynamodb_resource(region_name=None, endpoint_url=None):
    """Build a DynamoDB resource with bounded timeouts and retries"""
    config = Config(
        connect_timeout=DYNAMODB_TIMEOUT,
        read_timeout=DYNAMODB_TIMEOUT,
        retries={'max_attempts': DYNAMODB_MAX_ATTEMPTS, 'mode': 'standard'},
    )

    return boto3.resource(
        'dynamodb',
        region_name=region_name or AWS_REGION,
        endpoint_url=endpoint_url or DYNAMODB_ENDPOINT_URL,
        config=config,
    )

"""
DynamoDB resource factory for thousand-words.

Uses boto3. Credentials fall back to the default AWS credential chain
when not configured explicitly; an endpoint override targets DynamoDB
Local or LocalStack.
"""

from __future__ import annotations

import boto3
from botocore.config import Config
from loguru import logger


def create_dynamodb_resource(
    region: str,
    endpoint: str | None = None,
    access_key_id: str | None = None,
    secret_access_key: str | None = None,
):
    """
    Build a boto3 DynamoDB service resource.

    Args:
        region: AWS region name.
        endpoint: Optional endpoint URL override.
        access_key_id: Optional explicit access key.
        secret_access_key: Optional explicit secret key.

    Returns:
        A ``boto3.resources.base.ServiceResource`` for DynamoDB.
    """
    session = boto3.session.Session(
        aws_access_key_id=access_key_id,
        aws_secret_access_key=secret_access_key,
        region_name=region,
    )
    # The storage core performs no retries of its own; keep the SDK's minimal
    config = Config(retries={"max_attempts": 2, "mode": "standard"}, connect_timeout=5, read_timeout=10)
    resource = session.resource("dynamodb", endpoint_url=endpoint, config=config)
    logger.info(f"Created DynamoDB resource (region={region}, endpoint={endpoint or 'aws'})")
    return resource

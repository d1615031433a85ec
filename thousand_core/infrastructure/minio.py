"""
MinIO client factory for thousand-words.

The MinIO SDK speaks the S3 API, so the same client serves AWS S3,
MinIO, R2 and other S3-compatible endpoints. Each content store owns the
client and HTTP pool it is given; there is no shared process-wide
instance.
"""

from __future__ import annotations

import urllib3
from loguru import logger
from minio import Minio


def create_http_pool(timeout: float = 10.0, retries: int = 2) -> urllib3.PoolManager:
    """
    Build the HTTP connection pool backing a MinIO client.

    Owning the pool lets the content store release its sockets on shutdown.
    """
    return urllib3.PoolManager(
        timeout=urllib3.Timeout(connect=timeout, read=timeout),
        retries=urllib3.Retry(total=retries, backoff_factor=0.2, status_forcelist=[500, 502, 503, 504]),
        maxsize=10,
    )


def create_minio_client(
    endpoint: str,
    access_key: str | None = None,
    secret_key: str | None = None,
    secure: bool = True,
    region: str | None = None,
    http_client: urllib3.PoolManager | None = None,
) -> Minio:
    """
    Build a MinIO client for an S3-compatible endpoint.

    Args:
        endpoint: Host[:port] of the service, without scheme.
        access_key: Access key; anonymous access when omitted.
        secret_key: Secret key.
        secure: Use HTTPS.
        region: Optional bucket region.
        http_client: Optional urllib3 pool to send requests through.

    Returns:
        Minio: A new client instance.
    """
    try:
        client = Minio(
            endpoint=endpoint,
            access_key=access_key,
            secret_key=secret_key,
            secure=secure,
            region=region,
            http_client=http_client,
        )
        logger.info(f"Created MinIO client for '{endpoint}'")
    except Exception as e:
        logger.error(f"Failed to create MinIO client for '{endpoint}': {e}")
        raise

    return client

"""
Unified configuration for thousand-words services.

This module provides a single Settings class that consolidates the
environment variables used to select and connect the story index and
content store backends.
"""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

# Determine project root for .env file loading (allows running from any CWD)
PROJECT_ROOT = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """
    Unified settings for thousand-words.

    Environment variables are loaded from .env file and can be overridden
    by actual environment variables. Only presence is checked here; the
    backend selector decides which values are required.
    """

    # Service identification
    SERVICE_NAME: str = "thousand-words"
    LOG_LEVEL: str = "INFO"

    # Backend selection
    INDEX_BACKEND: str = "sqlite"  # sqlite | postgres | dynamodb
    CONTENT_BACKEND: str = "local"  # s3 | local

    # SQLite
    SQLITE_PATH: str = "data/stories.db"

    # PostgreSQL
    POSTGRES_DSN: str = ""
    POSTGRES_TABLE: str = "stories"
    POSTGRES_POOL_MIN_SIZE: int = 1
    POSTGRES_POOL_MAX_SIZE: int = 10
    POSTGRES_CONNECT_TIMEOUT: float = 10.0

    # DynamoDB
    DYNAMODB_TABLE: str = ""
    DYNAMODB_REGION: str = "us-east-1"
    DYNAMODB_ENDPOINT: str | None = None
    AWS_ACCESS_KEY_ID: str | None = None
    AWS_SECRET_ACCESS_KEY: str | None = None

    # S3 / MinIO object storage
    S3_BUCKET: str = ""
    S3_ENDPOINT: str = "s3.amazonaws.com"
    S3_REGION: str | None = None
    S3_ACCESS_KEY: str | None = None
    S3_SECRET_KEY: str | None = None
    S3_SECURE: bool = True
    S3_PREFIX: str = ""

    # Local filesystem storage
    LOCAL_STORAGE_PATH: str = "data/stories"

    # Word-count contract
    MIN_WORD_COUNT: int = 950
    MAX_WORD_COUNT: int = 1000
    EXCERPT_LENGTH: int = 200

    model_config = SettingsConfigDict(
        env_file=PROJECT_ROOT / ".env",
        extra="ignore"
    )


# Global settings instance
settings = Settings()  # type: ignore

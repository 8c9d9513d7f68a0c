"""Application settings and configuration management.

This module provides Pydantic-based settings management that loads
configuration from environment variables or a .env file. Settings include
the DynamoDB table holding feature and metadata records, the S3 bucket and
key prefix used for oversized feature payloads, AWS client options, blob
write concurrency, CORS origins, and the log level.

Example:
    Settings can be accessed via the cached get_settings() function:
        >>> from featurestore.core.config import get_settings
        >>> settings = get_settings()
        >>> print(settings.table)

    Environment variables can override defaults:
        >>> FEATURESTORE_TABLE=features-prod
        >>> FEATURESTORE_BUCKET=my-feature-bucket
        >>> FEATURESTORE_PREFIX=datasets
        >>> FEATURESTORE_BLOB_CONCURRENCY=64
"""

import functools

import pydantic
import pydantic_settings


class Settings(pydantic_settings.BaseSettings):
    """Runtime configuration pulled from environment variables or defaults.

    All settings can be overridden via ``FEATURESTORE_``-prefixed environment
    variables or a .env file. ``bucket`` and ``prefix`` must be non-empty,
    since every spilled feature payload is addressed by both.

    Attributes:
        table: DynamoDB table name holding feature and metadata records.
        bucket: S3 bucket for feature payloads too large to store inline.
        prefix: S3 key prefix under which spilled payloads are written.
        region: AWS region for both clients (None uses the AWS default chain).
        endpoint_url: Optional endpoint override (DynamoDB Local, MinIO).
        request_timeout_s: Connect/read timeout for AWS requests.
        max_inline_bytes: Encoded payloads of this size or larger are
            written to S3 instead of inline in the record.
        blob_concurrency: Maximum number of S3 writes in flight per batch.
        allow_origins: List of allowed CORS origins (["*"] allows all).
        log_level: Minimum level emitted by the structured logger.

    Example:
        Create settings with custom values:
            >>> settings = Settings(
            ...     table="features-test",
            ...     bucket="test-bucket",
            ...     prefix="test",
            ...     max_inline_bytes=1024,
            ... )

        Or use environment variables:
            >>> export FEATURESTORE_BUCKET=my-feature-bucket
            >>> export FEATURESTORE_MAX_INLINE_BYTES=20480
            >>> settings = Settings()  # Loads from environment
    """

    table: str = "features"
    bucket: str = pydantic.Field(default="featurestore", min_length=1)
    prefix: str = pydantic.Field(default="features", min_length=1)
    region: str | None = None
    endpoint_url: str | None = None
    request_timeout_s: float = 10.0
    max_inline_bytes: int = pydantic.Field(default=10 * 1024, gt=0)
    blob_concurrency: int = pydantic.Field(default=150, ge=1)
    allow_origins: list[str] = ["*"]
    log_level: str = "INFO"

    model_config = pydantic_settings.SettingsConfigDict(
        env_prefix="FEATURESTORE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @pydantic.field_validator("prefix")
    @classmethod
    def _strip_prefix(cls, value: str) -> str:
        """Normalize the S3 prefix so keys never contain doubled slashes."""
        stripped = value.strip("/")
        if not stripped:
            raise ValueError("No s3 prefix set")
        return stripped


@functools.lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Settings are loaded from environment variables or .env file and cached
    for the lifetime of the application. Subsequent calls return the same
    cached instance.

    Returns:
        Settings instance with all configuration values populated.

    Example:
        The settings are cached, so multiple calls return the same instance:
            >>> settings1 = get_settings()
            >>> settings2 = get_settings()
            >>> assert settings1 is settings2  # Same instance
    """
    return Settings()

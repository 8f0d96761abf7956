"""
Configuration for the person service.

All settings come from environment variables (or a .env file) with the same
name. TABLE_NAME is the only required setting; everything else has a default
suitable for local development.

Configuration priority (highest to lowest):
1. Environment variables (CLI or shell)
2. .env file
3. Defaults
"""

import logging
from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    Application configuration with environment variable support.

    Example:
        TABLE_NAME=persons uvicorn app.api.main:create_app --factory
        TABLE_NAME=persons RELAY_BATCH_SIZE=10 python run_api.py
    """

    # ============================================================
    # Record Store
    # ============================================================

    # Logical table name of the record store (required)
    TABLE_NAME: str = Field(..., min_length=1)

    # Base directory for the write-ahead log (DATA_DIR/<TABLE_NAME>/wal)
    DATA_DIR: str = "./data"

    # If False, the table lives only in memory and is lost on restart
    PERSISTENCE_ENABLED: bool = True

    # fsync after every WAL append. Turn off only for tests/benchmarks.
    WAL_SYNC_ON_WRITE: bool = True

    # Rotate WAL files after this many bytes
    WAL_MAX_FILE_SIZE: int = 64 * 1024 * 1024

    # Bounded wait for the store's write lock before StoreUnavailable
    STORE_LOCK_TIMEOUT_SECONDS: float = 5.0

    # ============================================================
    # Change Capture
    # ============================================================

    STREAM_SHARD_COUNT: int = Field(default=4, ge=1, le=64)

    # Entries older than this are trimmed (24h, like a DynamoDB stream)
    STREAM_RETENTION_SECONDS: int = Field(default=86400, ge=1)

    # Where the poller starts reading when it has no checkpoint
    STREAM_START_POSITION: Literal["LATEST", "TRIM_HORIZON"] = "LATEST"

    # ============================================================
    # Event Relay / Poller
    # ============================================================

    EVENT_BUS_NAME: str = "DDBStreamCustomEventBus"

    RELAY_BATCH_SIZE: int = Field(default=100, ge=1, le=1000)
    RELAY_POLL_INTERVAL_SECONDS: float = Field(default=1.0, gt=0)

    # Whole-batch attempts per poll cycle before giving up until the next cycle
    RELAY_MAX_BATCH_ATTEMPTS: int = Field(default=3, ge=1)

    # Bound on a single publish call to the router
    RELAY_PUBLISH_TIMEOUT_SECONDS: float = Field(default=5.0, gt=0)

    # ============================================================
    # Event Router / Delivery
    # ============================================================

    # Per-subscription delivery queue capacity
    ROUTER_QUEUE_SIZE: int = Field(default=10000, ge=1)
    ROUTER_ENQUEUE_TIMEOUT_SECONDS: float = Field(default=1.0, gt=0)

    DELIVERY_MAX_ATTEMPTS: int = Field(default=3, ge=1, le=20)
    DELIVERY_BACKOFF_MIN_SECONDS: float = Field(default=0.5, ge=0)
    DELIVERY_BACKOFF_MAX_SECONDS: float = Field(default=30.0, ge=0)

    # Upper bound on one consumer invocation
    CONSUMER_TIMEOUT_SECONDS: float = Field(default=10.0, gt=0)

    # ============================================================
    # Consumers
    # ============================================================

    # Processed event ids remembered per consumer for duplicate suppression
    IDEMPOTENCY_CACHE_SIZE: int = Field(default=10000, ge=1)

    # Append audit records as JSON lines here (None = in-memory only)
    AUDIT_LOG_PATH: Optional[str] = None

    # Notifier posts events here when set; otherwise it only logs
    NOTIFY_WEBHOOK_URL: Optional[str] = None
    NOTIFY_WEBHOOK_SECRET: Optional[str] = None

    # ============================================================
    # Server
    # ============================================================

    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Comma-separated list of allowed origins
    CORS_ORIGINS: str = "*"

    # ============================================================
    # Logging
    # ============================================================

    LOG_LEVEL: str = "INFO"

    # Use JSON structured logging (better for log aggregators)
    LOG_JSON_FORMAT: bool = False

    # ============================================================
    # Development/Debug
    # ============================================================

    DEBUG: bool = False

    # Enable API documentation endpoints (/docs, /redoc)
    ENABLE_DOCS: bool = True

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    @property
    def cors_origins(self) -> list:
        """Parsed list of CORS origins."""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]


@lru_cache()
def get_settings() -> Settings:
    """
    Build the process-wide settings once.

    Settings are never mutated after this call. Components receive the
    values they need through their constructors rather than importing this.
    """
    return Settings()


def log_config_summary(settings: Settings) -> None:
    """
    Log the effective configuration at startup.

    This helps operators verify their configuration is correct.
    """
    logger.info("=" * 60)
    logger.info("Person Service - Configuration Summary")
    logger.info("=" * 60)
    logger.info(f"Table: {settings.TABLE_NAME}")
    if settings.PERSISTENCE_ENABLED:
        logger.info(f"Data directory: {settings.DATA_DIR} (fsync: {settings.WAL_SYNC_ON_WRITE})")
    else:
        logger.info("Persistence: DISABLED (in-memory table)")
    logger.info(
        f"Stream: {settings.STREAM_SHARD_COUNT} shards, "
        f"retention {settings.STREAM_RETENTION_SECONDS}s, "
        f"start at {settings.STREAM_START_POSITION}"
    )
    logger.info(
        f"Relay: batch {settings.RELAY_BATCH_SIZE}, "
        f"poll every {settings.RELAY_POLL_INTERVAL_SECONDS}s, "
        f"{settings.RELAY_MAX_BATCH_ATTEMPTS} attempts/batch"
    )
    logger.info(f"Event bus: {settings.EVENT_BUS_NAME}")
    logger.info(
        f"Delivery: {settings.DELIVERY_MAX_ATTEMPTS} attempts, "
        f"timeout {settings.CONSUMER_TIMEOUT_SECONDS}s"
    )
    logger.info(f"Audit log: {settings.AUDIT_LOG_PATH or 'in-memory'}")
    logger.info(f"Notifier webhook: {'configured' if settings.NOTIFY_WEBHOOK_URL else 'log only'}")
    logger.info(f"Logging: {settings.LOG_LEVEL} ({'JSON' if settings.LOG_JSON_FORMAT else 'TEXT'})")
    logger.info("=" * 60)

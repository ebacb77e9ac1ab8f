"""
Configuration management for SwitchDB.

All configuration is done via environment variables - no config files.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Production deployments MUST choose a durable backend explicitly
    - Secrets are never logged or exposed in error messages

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Document all new settings in the class docstrings
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


class BackendKind(Enum):
    """Supported key-value backends."""

    MEMORY = "memory"
    SQLITE = "sqlite"
    DYNAMODB = "dynamodb"


def _optional_float(value: str | None) -> float | None:
    if value is None or value.strip().lower() in ("", "none", "0"):
        return None
    return float(value)


@dataclass(frozen=True)
class DynamoDBConfig:
    """AWS DynamoDB backend configuration.

    Attributes:
        table_name: Table with a composite key (pk HASH, sk RANGE)
        region: AWS region
        endpoint_url: Custom endpoint URL (for DynamoDB Local)
        access_key_id: AWS access key ID (optional, uses AWS credential chain)
        secret_access_key: AWS secret access key (optional)
        request_timeout_seconds: Timeout for a single DynamoDB request
    """

    table_name: str = "ToggleStateTable"
    region: str = "us-east-1"
    endpoint_url: str | None = None
    access_key_id: str | None = None
    secret_access_key: str | None = None
    request_timeout_seconds: float = 10.0

    @classmethod
    def from_env(cls) -> DynamoDBConfig:
        """Load configuration from environment variables."""
        return cls(
            table_name=os.getenv("DYNAMODB_TABLE", "ToggleStateTable"),
            region=os.getenv("AWS_REGION", os.getenv("AWS_DEFAULT_REGION", "us-east-1")),
            endpoint_url=os.getenv("DYNAMODB_ENDPOINT_URL"),
            access_key_id=os.getenv("AWS_ACCESS_KEY_ID"),
            secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY"),
            request_timeout_seconds=float(os.getenv("DYNAMODB_REQUEST_TIMEOUT", "10")),
        )


@dataclass(frozen=True)
class SqliteConfig:
    """SQLite backend configuration.

    Attributes:
        path: Database file
        wal_mode: SQLite WAL journal mode enabled
        busy_timeout_ms: How long a writer waits for the database lock
    """

    path: str = "/var/lib/switchdb/switches.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000

    @classmethod
    def from_env(cls) -> SqliteConfig:
        """Load configuration from environment variables."""
        return cls(
            path=os.getenv("SQLITE_PATH", "/var/lib/switchdb/switches.db"),
            wal_mode=os.getenv("SQLITE_WAL_MODE", "true").lower() == "true",
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
        )


@dataclass(frozen=True)
class RetryConfig:
    """Creation-race retry configuration.

    Attributes:
        max_attempts: Save attempts before giving up with ConflictError
        base_delay_ms: Backoff before the second attempt
        max_delay_ms: Upper bound for a single backoff sleep
    """

    max_attempts: int = 8
    base_delay_ms: int = 10
    max_delay_ms: int = 500

    @classmethod
    def from_env(cls) -> RetryConfig:
        """Load configuration from environment variables."""
        return cls(
            max_attempts=int(os.getenv("SWITCHDB_RETRY_MAX_ATTEMPTS", "8")),
            base_delay_ms=int(os.getenv("SWITCHDB_RETRY_BASE_DELAY_MS", "10")),
            max_delay_ms=int(os.getenv("SWITCHDB_RETRY_MAX_DELAY_MS", "500")),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class StoreConfig:
    """Complete configuration.

    Attributes:
        backend: Which key-value backend to use
        dynamodb: DynamoDB configuration (if backend is DYNAMODB)
        sqlite: SQLite configuration (if backend is SQLITE)
        retry: Creation-race retry configuration
        request_timeout_seconds: Default deadline for a whole store call
            (None for no deadline)
        observability: Logging configuration
    """

    backend: BackendKind = BackendKind.MEMORY
    dynamodb: DynamoDBConfig = field(default_factory=DynamoDBConfig)
    sqlite: SqliteConfig = field(default_factory=SqliteConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    request_timeout_seconds: float | None = None
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> StoreConfig:
        """Load complete configuration from environment variables.

        Raises:
            ValueError: If configuration is missing or invalid.
        """
        backend_str = os.getenv("SWITCHDB_BACKEND", "memory").lower()
        try:
            backend = BackendKind(backend_str)
        except ValueError:
            raise ValueError(
                f"Invalid SWITCHDB_BACKEND '{backend_str}'. Must be one of: memory, sqlite, dynamodb"
            )

        config = cls(
            backend=backend,
            dynamodb=DynamoDBConfig.from_env(),
            sqlite=SqliteConfig.from_env(),
            retry=RetryConfig.from_env(),
            request_timeout_seconds=_optional_float(os.getenv("SWITCHDB_REQUEST_TIMEOUT")),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.backend == BackendKind.DYNAMODB:
            if not self.dynamodb.table_name:
                raise ValueError("DYNAMODB_TABLE is required when SWITCHDB_BACKEND=dynamodb")
            if self.dynamodb.request_timeout_seconds <= 0:
                raise ValueError("DYNAMODB_REQUEST_TIMEOUT must be positive")
        elif self.backend == BackendKind.SQLITE:
            if not self.sqlite.path:
                raise ValueError("SQLITE_PATH is required when SWITCHDB_BACKEND=sqlite")

        if self.retry.max_attempts < 1:
            raise ValueError("SWITCHDB_RETRY_MAX_ATTEMPTS must be at least 1")
        if self.retry.base_delay_ms < 0 or self.retry.max_delay_ms < self.retry.base_delay_ms:
            raise ValueError("Retry delays must satisfy 0 <= base_delay_ms <= max_delay_ms")
        if self.request_timeout_seconds is not None and self.request_timeout_seconds <= 0:
            raise ValueError("SWITCHDB_REQUEST_TIMEOUT must be positive")

        if self.backend == BackendKind.MEMORY:
            logger.warning("Using in-memory backend: switch state is lost on exit")

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "SwitchDB configuration loaded",
            extra={
                "backend": self.backend.value,
                "dynamodb_table": self.dynamodb.table_name
                if self.backend == BackendKind.DYNAMODB
                else None,
                "dynamodb_endpoint": self.dynamodb.endpoint_url
                if self.backend == BackendKind.DYNAMODB
                else None,
                "sqlite_path": self.sqlite.path if self.backend == BackendKind.SQLITE else None,
                "retry_max_attempts": self.retry.max_attempts,
                "request_timeout_seconds": self.request_timeout_seconds,
                "log_level": self.observability.log_level,
            },
        )

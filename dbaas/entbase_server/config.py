"""
Configuration management for EntBase Server.

All configuration is done via environment variables - no config files inside containers.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Secrets are never logged or exposed in error messages

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Deprecate settings by logging warnings but continuing to support them
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from sdk.entbase_sdk.config import ClientOptions

logger = logging.getLogger(__name__)

LOG_FORMATS = ("json", "text")


@dataclass(frozen=True)
class StorageConfig:
    """SQLite storage configuration.

    Attributes:
        db_path: SQLite database file
        wal_mode: Enable SQLite WAL mode
        busy_timeout_ms: SQLite busy timeout
        cache_size_pages: SQLite cache size (negative = KB)
    """

    db_path: str = "/var/lib/entbase/entbase.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000
    cache_size_pages: int = -64000

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        return cls(
            db_path=os.getenv("ENTBASE_DB_PATH", "/var/lib/entbase/entbase.db"),
            wal_mode=os.getenv("SQLITE_WAL_MODE", "true").lower() == "true",
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
            cache_size_pages=int(os.getenv("SQLITE_CACHE_SIZE", "-64000")),
        )


@dataclass(frozen=True)
class HttpConfig:
    """HTTP listener configuration.

    Attributes:
        host: Bind host
        port: Bind port
    """

    host: str = "0.0.0.0"
    port: int = 8080

    @classmethod
    def from_env(cls) -> HttpConfig:
        """Load configuration from environment variables."""
        return cls(
            host=os.getenv("HTTP_HOST", "0.0.0.0"),
            port=int(os.getenv("HTTP_PORT", "8080")),
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
class ServerConfig:
    """Complete server configuration.

    Attributes:
        storage: SQLite storage configuration
        http: HTTP listener configuration
        client: Schema cache options for every tenant client
        observability: Logging configuration
    """

    storage: StorageConfig = field(default_factory=StorageConfig)
    http: HttpConfig = field(default_factory=HttpConfig)
    client: ClientOptions = field(default_factory=ClientOptions)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Returns:
            ServerConfig with all sections populated from environment.

        Raises:
            ValueError: If configuration is invalid.
        """
        config = cls(
            storage=StorageConfig.from_env(),
            http=HttpConfig.from_env(),
            client=ClientOptions.from_env(),
            observability=ObservabilityConfig.from_env(),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if not self.storage.db_path:
            raise ValueError("ENTBASE_DB_PATH must not be empty")
        if not 0 < self.http.port < 65536:
            raise ValueError(f"HTTP_PORT out of range: {self.http.port}")
        if self.observability.log_format not in LOG_FORMATS:
            raise ValueError(
                f"Invalid LOG_FORMAT '{self.observability.log_format}'. Must be one of: json, text"
            )
        self.client.validate()

        if not Path(self.storage.db_path).parent.exists():
            logger.warning(
                f"Data directory does not exist: {Path(self.storage.db_path).parent}. "
                "It will be created on first write."
            )

    def log_config(self) -> None:
        """Log configuration."""
        logger.info(
            "Server configuration loaded",
            extra={
                "db_path": self.storage.db_path,
                "wal_mode": self.storage.wal_mode,
                "http_bind": f"{self.http.host}:{self.http.port}",
                "cache_enabled": self.client.enable_cache,
                "cache_ttl_ms": self.client.cache_ttl_ms,
                "log_level": self.observability.log_level,
            },
        )

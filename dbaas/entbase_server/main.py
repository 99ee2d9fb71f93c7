"""
EntBase Server - Main entry point.

This module starts the EntBase HTTP gateway:
- SQLite entity store
- FastAPI app served by uvicorn

Usage:
    python -m dbaas.entbase_server.main

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - Logging is configured before any component starts
    - The store schema is created on startup if missing
"""

from __future__ import annotations

import logging
import sys

import json_log_formatter
import uvicorn

from .api import create_app
from .config import ServerConfig
from .storage import SqliteEntityStore

logger = logging.getLogger(__name__)


def setup_logging(config: ServerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Server configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def build_store(config: ServerConfig) -> SqliteEntityStore:
    """Create the entity store from configuration."""
    return SqliteEntityStore(
        config.storage.db_path,
        wal_mode=config.storage.wal_mode,
        busy_timeout_ms=config.storage.busy_timeout_ms,
        cache_size_pages=config.storage.cache_size_pages,
    )


def main() -> None:
    """Main entry point."""
    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)
    config.log_config()

    app = create_app(build_store(config), client_options=config.client)
    uvicorn.run(
        app,
        host=config.http.host,
        port=config.http.port,
        log_config=None,
    )


if __name__ == "__main__":
    main()

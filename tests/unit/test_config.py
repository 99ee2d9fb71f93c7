"""
Unit tests for configuration loading.

Tests cover:
- Client options from environment
- Server configuration validation
- Gateway settings prefix
"""

import pytest

from dbaas.entbase_server.api.settings import Settings
from dbaas.entbase_server.config import (
    HttpConfig,
    ObservabilityConfig,
    ServerConfig,
    StorageConfig,
)
from sdk.entbase_sdk.config import DEFAULT_CACHE_TTL_MS, ClientConfig, ClientOptions


class TestClientOptions:
    """Tests for ClientOptions."""

    def test_defaults(self):
        options = ClientOptions()
        assert options.enable_cache is True
        assert options.cache_ttl_ms == DEFAULT_CACHE_TTL_MS == 300_000

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("ENTBASE_CACHE_ENABLED", "false")
        monkeypatch.setenv("ENTBASE_CACHE_TTL_MS", "1000")
        options = ClientOptions.from_env()
        assert options == ClientOptions(enable_cache=False, cache_ttl_ms=1000)

    def test_non_positive_ttl(self, monkeypatch):
        monkeypatch.setenv("ENTBASE_CACHE_TTL_MS", "0")
        with pytest.raises(ValueError, match="cache_ttl_ms"):
            ClientOptions.from_env()

    def test_client_config_is_hashable(self):
        """Equal configs hash equal so they can key a registry."""
        a = ClientConfig("acme", ClientOptions(cache_ttl_ms=10))
        b = ClientConfig("acme", ClientOptions(cache_ttl_ms=10))
        assert a == b
        assert hash(a) == hash(b)


class TestServerConfig:
    """Tests for ServerConfig."""

    def test_from_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("ENTBASE_DB_PATH", str(tmp_path / "e.db"))
        monkeypatch.setenv("HTTP_PORT", "9090")
        monkeypatch.setenv("LOG_FORMAT", "text")
        monkeypatch.setenv("SQLITE_WAL_MODE", "false")

        config = ServerConfig.from_env()

        assert config.storage.db_path == str(tmp_path / "e.db")
        assert config.storage.wal_mode is False
        assert config.http.port == 9090
        assert config.observability.log_format == "text"

    def test_invalid_log_format(self, tmp_path):
        config = ServerConfig(
            storage=StorageConfig(db_path=str(tmp_path / "e.db")),
            observability=ObservabilityConfig(log_format="xml"),
        )
        with pytest.raises(ValueError, match="LOG_FORMAT"):
            config.validate()

    def test_invalid_port(self, tmp_path):
        config = ServerConfig(
            storage=StorageConfig(db_path=str(tmp_path / "e.db")),
            http=HttpConfig(port=0),
        )
        with pytest.raises(ValueError, match="HTTP_PORT"):
            config.validate()

    def test_empty_db_path(self):
        with pytest.raises(ValueError, match="ENTBASE_DB_PATH"):
            ServerConfig(storage=StorageConfig(db_path="")).validate()

    def test_client_options_validated(self, tmp_path):
        config = ServerConfig(
            storage=StorageConfig(db_path=str(tmp_path / "e.db")),
            client=ClientOptions(cache_ttl_ms=-1),
        )
        with pytest.raises(ValueError, match="cache_ttl_ms"):
            config.validate()


class TestGatewaySettings:
    """Tests for gateway Settings."""

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("ENTBASE_GATEWAY_DEFAULT_TENANT_ID", "acme")
        monkeypatch.setenv("ENTBASE_GATEWAY_MAX_PAGE_SIZE", "50")
        settings = Settings()
        assert settings.default_tenant_id == "acme"
        assert settings.max_page_size == 50

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("ENTBASE_GATEWAY_DEFAULT_TENANT_ID", raising=False)
        settings = Settings()
        assert settings.default_tenant_id is None
        assert settings.default_page_size == 20

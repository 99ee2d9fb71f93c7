"""
Unit tests for the schema cache.

Tests cover:
- Store read counts with caching enabled and disabled
- TTL expiry and explicit clear
- Failed loads
- Field ordering by display_index
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from sdk.entbase_sdk.cache import SchemaCache
from sdk.entbase_sdk.config import ClientOptions
from sdk.entbase_sdk.errors import NotFoundError
from sdk.entbase_sdk.store import StoreError


def schema_row(schema_id="contacts", fields=None):
    """Helper to build a store schema row."""
    return {
        "id": schema_id,
        "name": schema_id.title(),
        "tenant_id": "tenant_1",
        "fields": fields
        if fields is not None
        else [{"id": "f_name", "schema_id": schema_id, "name": "name", "db_type": "varchar"}],
    }


class FakeClock:
    """Manually advanced millisecond clock."""

    def __init__(self):
        self.now = 1_000.0

    def __call__(self):
        return self.now


class TestSchemaCache:
    """Tests for SchemaCache."""

    @pytest.fixture
    def store(self):
        """Store returning one schema."""
        store = MagicMock()
        store.fetch_schema = AsyncMock(return_value=schema_row())
        return store

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.mark.asyncio
    async def test_enabled_reads_once_within_ttl(self, store, clock):
        """Two gets within TTL cost one store read."""
        cache = SchemaCache(store, ClientOptions(enable_cache=True), clock=clock)

        first = await cache.get("contacts")
        second = await cache.get("contacts")

        assert store.fetch_schema.await_count == 1
        assert first is second

    @pytest.mark.asyncio
    async def test_disabled_reads_every_time(self, store, clock):
        """With caching off each get reads the store and nothing is kept."""
        cache = SchemaCache(store, ClientOptions(enable_cache=False), clock=clock)

        await cache.get("contacts")
        await cache.get("contacts")

        assert store.fetch_schema.await_count == 2
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_clear_forces_reload(self, store, clock):
        """clear() empties the cache."""
        cache = SchemaCache(store, ClientOptions(), clock=clock)

        await cache.get("contacts")
        cache.clear()
        await cache.get("contacts")

        assert store.fetch_schema.await_count == 2

    @pytest.mark.asyncio
    async def test_ttl_expiry(self, store, clock):
        """Entries expire once now reaches expires_at."""
        cache = SchemaCache(store, ClientOptions(cache_ttl_ms=5_000), clock=clock)

        await cache.get("contacts")
        clock.now += 4_999
        await cache.get("contacts")
        assert store.fetch_schema.await_count == 1

        clock.now += 1
        await cache.get("contacts")
        assert store.fetch_schema.await_count == 2

    @pytest.mark.asyncio
    async def test_invalidate_one(self, store, clock):
        """invalidate() evicts a single schema."""
        cache = SchemaCache(store, ClientOptions(), clock=clock)

        await cache.get("contacts")
        cache.invalidate("contacts")
        await cache.get("contacts")

        assert store.fetch_schema.await_count == 2

    @pytest.mark.asyncio
    async def test_missing_schema_raises_not_found(self, clock):
        """A missing row is a not-found error."""
        store = MagicMock()
        store.fetch_schema = AsyncMock(return_value=None)
        cache = SchemaCache(store, ClientOptions(), clock=clock)

        with pytest.raises(NotFoundError) as exc_info:
            await cache.get("ghost")

        assert exc_info.value.resource_id == "ghost"
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_store_error_raises_not_found_and_is_not_cached(self, clock):
        """A failed read is not cached; the next call retries."""
        store = MagicMock()
        store.fetch_schema = AsyncMock(
            side_effect=[StoreError("boom"), schema_row()]
        )
        cache = SchemaCache(store, ClientOptions(), clock=clock)

        with pytest.raises(NotFoundError):
            await cache.get("contacts")

        schema = await cache.get("contacts")
        assert schema.id == "contacts"
        assert store.fetch_schema.await_count == 2

    @pytest.mark.asyncio
    async def test_malformed_row_raises_not_found(self, clock):
        """Unknown field types never yield a partial schema."""
        store = MagicMock()
        store.fetch_schema = AsyncMock(
            return_value=schema_row(
                fields=[{"id": "f1", "schema_id": "contacts", "name": "x", "db_type": "geometry"}]
            )
        )
        cache = SchemaCache(store, ClientOptions(), clock=clock)

        with pytest.raises(NotFoundError):
            await cache.get("contacts")

    @pytest.mark.asyncio
    async def test_fields_sorted_by_display_index(self, clock):
        """Missing index sorts last, ties keep fetch order."""
        fields = [
            {"id": "a", "schema_id": "s", "name": "a", "db_type": "varchar", "display_index": 2},
            {"id": "b", "schema_id": "s", "name": "b", "db_type": "varchar"},
            {"id": "c", "schema_id": "s", "name": "c", "db_type": "varchar", "display_index": 0},
            {"id": "d", "schema_id": "s", "name": "d", "db_type": "varchar", "display_index": 2},
        ]
        store = MagicMock()
        store.fetch_schema = AsyncMock(return_value=schema_row("s", fields))
        cache = SchemaCache(store, ClientOptions(), clock=clock)

        schema = await cache.get("s")

        assert [f.name for f in schema.fields] == ["c", "a", "d", "b"]

    @pytest.mark.asyncio
    async def test_cached_schema_is_immutable(self, store, clock):
        """Readers cannot mutate the shared snapshot."""
        cache = SchemaCache(store, ClientOptions(), clock=clock)
        schema = await cache.get("contacts")

        with pytest.raises(AttributeError):
            schema.name = "changed"
        assert isinstance(schema.fields, tuple)

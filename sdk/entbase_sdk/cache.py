"""
In-memory schema cache for EntBase SDK.

Schemas are loaded from the store with one joined read (definition plus
fields), converted to frozen EntitySchema values and kept until their TTL
runs out.

Invariants:
    - A hit (now < expires_at) performs zero store reads
    - A failed load raises NotFoundError and leaves the cache untouched
    - With caching disabled every call reads the store and nothing is stored
    - Cached values are immutable; concurrent misses may both load and the
      last write wins

How to change safely:
    - Keep eviction whole-schema; no partial field invalidation
    - The clock is injectable so TTL behavior is testable without sleeping
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from .config import ClientOptions
from .errors import NotFoundError
from .schema import EntitySchema
from .store import EntityStore, StoreError

logger = logging.getLogger(__name__)


def _monotonic_ms() -> float:
    return time.monotonic() * 1000.0


@dataclass(frozen=True)
class CachedSchema:
    """A cached schema and its expiry on the cache clock (ms)."""

    schema: EntitySchema
    expires_at: float


class SchemaCache:
    """TTL cache of entity schemas keyed by schema id.

    Example:
        >>> cache = SchemaCache(store, ClientOptions(cache_ttl_ms=60_000))
        >>> schema = await cache.get("contacts")
        >>> cache.clear()
    """

    def __init__(
        self,
        store: EntityStore,
        options: Optional[ClientOptions] = None,
        clock: Callable[[], float] = _monotonic_ms,
    ) -> None:
        self._store = store
        self._options = options or ClientOptions()
        self._clock = clock
        self._entries: Dict[str, CachedSchema] = {}

    @property
    def enabled(self) -> bool:
        return self._options.enable_cache

    def __len__(self) -> int:
        return len(self._entries)

    async def get(self, schema_id: str) -> EntitySchema:
        """Return the schema, loading it on miss or expiry.

        Raises:
            NotFoundError: If the schema does not exist or cannot be read
        """
        if self.enabled:
            entry = self._entries.get(schema_id)
            if entry is not None and self._clock() < entry.expires_at:
                logger.debug("Schema cache hit", extra={"schema_id": schema_id})
                return entry.schema

        schema = await self._load(schema_id)

        if self.enabled:
            self._entries[schema_id] = CachedSchema(
                schema=schema,
                expires_at=self._clock() + self._options.cache_ttl_ms,
            )
            logger.debug("Schema cached", extra={"schema_id": schema_id})
        return schema

    async def _load(self, schema_id: str) -> EntitySchema:
        try:
            row = await self._store.fetch_schema(schema_id)
        except StoreError as e:
            logger.warning(
                "Schema load failed",
                extra={"schema_id": schema_id, "store_code": e.code, "error": e.message},
            )
            raise NotFoundError("Entity definition", schema_id) from e

        if row is None:
            raise NotFoundError("Entity definition", schema_id)

        try:
            return EntitySchema.from_row(row)
        except (KeyError, ValueError) as e:
            logger.warning(
                "Schema row is malformed",
                extra={"schema_id": schema_id, "error": str(e)},
            )
            raise NotFoundError("Entity definition", schema_id) from e

    def invalidate(self, schema_id: str) -> None:
        """Evict one schema."""
        self._entries.pop(schema_id, None)

    def clear(self) -> None:
        """Evict all schemas."""
        self._entries.clear()
        logger.debug("Schema cache cleared")

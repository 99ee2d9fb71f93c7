"""
Store protocol consumed by the EntBase SDK.

This module defines the EntityStore protocol that every storage adapter must
implement, along with the raw StoreError and the InstanceQuery value type.
The SDK never talks to a database directly; the facade and the resolvers go
through these methods only.

Rows crossing this boundary are plain dictionaries keyed by storage column
names:
    instance row:  id, slug, schema_id, tenant_id, data, created_by,
                   created_at, updated_at
    edge row:      id, source_instance_id, target_instance_id, field_id,
                   relation_type, created_at
    related row:   source_instance_id, field_id, target_instance_id,
                   target_slug, target_schema_id, target_tenant_id,
                   target_data, target_created_at, target_updated_at
    file row:      id, instance_id, field_id, file_path, file_size,
                   file_type, storage_bucket, created_at, updated_at
    schema row:    entity definition columns plus "fields" (field rows)

Invariants:
    - Batched methods answer many ids in a single round trip
    - Instance reads and writes are scoped by tenant_id and schema_id
    - Relation target reads and edge inserts only see the given tenant
    - Failures raise StoreError carrying a store-specific code

How to change safely:
    - Protocol changes require updating all adapters
    - Keep batched signatures batched (no per-id variants)
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass, field
from typing import (
    Any,
    Collection,
    Dict,
    List,
    Mapping,
    Optional,
    Protocol,
    Sequence,
    Tuple,
    runtime_checkable,
)

Row = Dict[str, Any]


class StoreError(Exception):
    """Raw failure reported by a storage adapter.

    Attributes:
        code: Store-specific code (SQLSTATE / PostgREST style)
        message: Human-readable message
        details: Extra context from the adapter
    """

    def __init__(
        self,
        message: str,
        code: str = "STORE_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}


@dataclass(frozen=True)
class InstanceQuery:
    """Filtered, sorted and ranged instance listing.

    Attributes:
        tenant_id: Tenant scope
        schema_id: Entity definition scope
        ids: Optional restriction to these instance ids
        equals: Data field -> acceptable values (OR within a field,
            AND across fields)
        sort_by: Identity column or data field name
        descending: Sort direction
        offset: Rows to skip
        limit: Page size
    """

    tenant_id: str
    schema_id: str
    ids: Optional[frozenset] = None
    equals: Mapping[str, Tuple[str, ...]] = field(default_factory=dict)
    sort_by: str = "created_at"
    descending: bool = True
    offset: int = 0
    limit: int = 20


@runtime_checkable
class EntityStore(Protocol):
    """Protocol for relational storage adapters.

    Example:
        >>> store = SqliteEntityStore("/tmp/entbase.db")
        >>> await store.initialize()
        >>> client = EntityClient(store, "tenant_1")
    """

    @abstractmethod
    async def fetch_schema(self, schema_id: str) -> Optional[Row]:
        """Load one entity definition joined with its field rows."""
        ...

    @abstractmethod
    async def list_schemas(self, tenant_id: str) -> List[Row]:
        """Load every entity definition of a tenant with field rows, by name."""
        ...

    @abstractmethod
    async def get_instance(self, tenant_id: str, schema_id: str, instance_id: str) -> Optional[Row]:
        """Fetch one instance row by id within tenant and schema."""
        ...

    @abstractmethod
    async def get_instances(self, tenant_id: str, instance_ids: Collection[str]) -> List[Row]:
        """Fetch many instance rows of the tenant by id in one call; others are omitted."""
        ...

    @abstractmethod
    async def query_instances(self, query: InstanceQuery) -> Tuple[List[Row], int]:
        """Run a filtered listing.

        Returns:
            Tuple of (page rows, exact total count)
        """
        ...

    @abstractmethod
    async def search_instances(
        self,
        schema_id: str,
        tenant_id: str,
        term: str,
        fields: Sequence[str],
        limit: int,
        offset: int,
    ) -> Tuple[List[Row], int]:
        """Server-side free-text search returning rows plus total count."""
        ...

    @abstractmethod
    async def slug_exists(self, slug: str, schema_id: str) -> bool:
        """Whether an instance of the schema already uses this slug."""
        ...

    @abstractmethod
    async def insert_instance(self, row: Row) -> Row:
        """Insert an instance row and return the stored row."""
        ...

    @abstractmethod
    async def update_instance_data(
        self,
        tenant_id: str,
        schema_id: str,
        instance_id: str,
        data: Dict[str, Any],
        updated_at: str,
    ) -> Optional[Row]:
        """Replace the data blob and timestamp; returns the stored row."""
        ...

    @abstractmethod
    async def delete_instance(self, tenant_id: str, schema_id: str, instance_id: str) -> None:
        """Delete an instance row (edges and files cascade in the store)."""
        ...

    @abstractmethod
    async def get_edges(self, source_ids: Collection[str], field_ids: Collection[str]) -> List[Row]:
        """Edges leaving any of the sources through any of the fields."""
        ...

    @abstractmethod
    async def get_related_instances(
        self, tenant_id: str, source_ids: Collection[str], field_ids: Collection[str]
    ) -> List[Row]:
        """Edges joined with their target rows in the tenant, in one round trip."""
        ...

    @abstractmethod
    async def find_edges_any(self, pairs: Sequence[Tuple[str, str]]) -> List[Row]:
        """Edges matching (field_id = A AND target = X) OR (...) OR ..."""
        ...

    @abstractmethod
    async def find_edges_for_field(self, field_id: str, target_ids: Collection[str]) -> List[Row]:
        """Edges of one field whose target is in target_ids."""
        ...

    @abstractmethod
    async def insert_edges(self, tenant_id: str, edges: Sequence[Row]) -> None:
        """Insert edge rows.

        Raises:
            StoreError: Code 23503 if a target is not an instance of the tenant
        """
        ...

    @abstractmethod
    async def delete_edges(self, source_id: str, field_ids: Collection[str]) -> None:
        """Delete all edges of the source through the given fields."""
        ...

    @abstractmethod
    async def get_attachments(
        self, instance_ids: Collection[str], field_ids: Collection[str]
    ) -> List[Row]:
        """File rows owned by the instances through the fields, oldest first."""
        ...

    @abstractmethod
    async def current_actor(self) -> Optional[str]:
        """Id of the acting user, or None when anonymous."""
        ...

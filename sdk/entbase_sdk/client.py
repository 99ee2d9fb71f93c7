"""
EntBase client for Python SDK.

This module provides the instance access facade:
- EntityClient: CRUD over instances of runtime-described entity types
- QueryParams / InstancePage / Pagination: listing contract
- ClientRegistry: one client per ClientConfig

Example:
    >>> client = EntityClient(store, "tenant_1")
    >>> acme = await client.create_instance("companies", {"data": {"name": "Acme"}})
    >>> acme["slug"]
    'acme'
    >>> page = await client.list_instances("contacts", QueryParams(filters={"company": [acme["id"]]}))

Every operation moves through: schema loaded -> relations and attachments
resolved -> flattened -> returned. Any store failure ends the operation with
an error from the SDK taxonomy.

Invariants:
    - Instance reads and writes are scoped by tenant and schema
    - Relation targets are read and linked only within the tenant
    - Raw StoreErrors are classified once, here; SDK errors pass through
    - Listing issues a constant number of store reads per page
    - Only actor lookup (create) and target refresh (update) are best-effort
    - Writes spanning instance and edge tables are not transactional
"""

from __future__ import annotations

import logging
import math
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .attachments import AttachmentResolver, apply_attachments
from .cache import SchemaCache
from .config import ClientConfig, ClientOptions
from .errors import (
    NotFoundError,
    ResolutionError,
    UnknownError,
    ValidationError,
    classify_store_error,
)
from .outcome import Outcome
from .relations import RelationResolver, split_filters
from .schema import EntityInstance, EntitySchema, FlatRecord
from .slug import allocate_unique_slug
from .store import EntityStore, InstanceQuery, Row, StoreError
from .transform import InstancePayload, flatten_instance, instance_from_row, split_payload
from .validate import require_name, validate_data

logger = logging.getLogger(__name__)

SORT_ORDERS = ("asc", "desc")

Payload = Union[InstancePayload, Mapping[str, Any]]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class QueryParams:
    """Listing parameters.

    Attributes:
        page: 1-based page number
        limit: Page size
        search: Free text; trimmed, blank means no search
        filters: Field name -> acceptable values; relation fields are
            detected from the schema
        relation_filter_modes: Relation field name -> "any" | "all"; other values mean "any"
        sort_by: Identity column or data field
        sort_order: "asc" or "desc"
        relations_as_ids: Return relation ids instead of nested records
    """

    page: int = 1
    limit: int = 20
    search: Optional[str] = None
    filters: Dict[str, List[str]] = field(default_factory=dict)
    relation_filter_modes: Dict[str, str] = field(default_factory=dict)
    sort_by: str = "created_at"
    sort_order: str = "desc"
    relations_as_ids: bool = False

    @property
    def search_term(self) -> Optional[str]:
        if self.search is None:
            return None
        term = self.search.strip()
        return term or None

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    def validate(self) -> None:
        """Check paging and sort values.

        Raises:
            ValidationError: If page or limit is below 1 or sort_order is unknown
        """
        if self.page < 1:
            raise ValidationError("page", "must be at least 1")
        if self.limit < 1:
            raise ValidationError("limit", "must be at least 1")
        if self.sort_order not in SORT_ORDERS:
            raise ValidationError("sort_order", f"must be one of {list(SORT_ORDERS)}")


@dataclass(frozen=True)
class Pagination:
    """Page metadata for a listing."""

    page: int
    limit: int
    total: int
    total_pages: int
    has_previous_page: bool
    has_next_page: bool

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> Pagination:
        total_pages = math.ceil(total / limit) if limit else 0
        return cls(
            page=page,
            limit=limit,
            total=total,
            total_pages=total_pages,
            has_previous_page=page > 1,
            has_next_page=page < total_pages,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "page": self.page,
            "limit": self.limit,
            "total": self.total,
            "total_pages": self.total_pages,
            "has_previous_page": self.has_previous_page,
            "has_next_page": self.has_next_page,
        }


@dataclass
class InstancePage:
    """One page of flat records."""

    data: List[FlatRecord]
    pagination: Pagination

    @classmethod
    def empty(cls, page: int, limit: int) -> InstancePage:
        """Page with no rows and no neighbours."""
        pagination = Pagination(
            page=page,
            limit=limit,
            total=0,
            total_pages=0,
            has_previous_page=False,
            has_next_page=False,
        )
        return cls(data=[], pagination=pagination)

    def to_dict(self) -> Dict[str, Any]:
        return {"data": self.data, "pagination": self.pagination.to_dict()}


class EntityClient:
    """Instance access facade for one tenant.

    The client owns a schema cache and the relation and attachment
    resolvers. It holds no per-request state and can be shared.

    Attributes:
        tenant_id: Tenant every call is scoped to
        options: Cache options fixed at construction
    """

    def __init__(
        self,
        store: EntityStore,
        tenant_id: str,
        options: Optional[ClientOptions] = None,
        cache: Optional[SchemaCache] = None,
    ) -> None:
        self.tenant_id = tenant_id
        self.options = options or ClientOptions()
        self._store = store
        self._cache = cache or SchemaCache(store, self.options)
        self._relations = RelationResolver(store, self._cache, tenant_id)
        self._attachments = AttachmentResolver(store)

    # ------------------------------------------------------------------
    # Schemas
    # ------------------------------------------------------------------

    async def get_schema(self, schema_id: str) -> EntitySchema:
        """Entity type with ordered fields, through the cache.

        Raises:
            NotFoundError: If the schema does not exist
        """
        return await self._cache.get(schema_id)

    async def list_schemas(self) -> List[EntitySchema]:
        """All entity types of the tenant ordered by name (uncached)."""
        try:
            rows = await self._store.list_schemas(self.tenant_id)
        except StoreError as e:
            raise classify_store_error(e) from e
        return [EntitySchema.from_row(r) for r in rows]

    def clear_cache(self) -> None:
        """Drop every cached schema."""
        self._cache.clear()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_instance(
        self, schema_id: str, instance_id: str, relations_as_ids: bool = False
    ) -> FlatRecord:
        """Fetch one instance as a flat record.

        Args:
            schema_id: Entity type the instance must belong to
            instance_id: Instance id
            relations_as_ids: Relation values as id lists

        Returns:
            Flat record with relations and attachment ids resolved

        Raises:
            NotFoundError: If missing in this tenant or owned by another schema
            ResolutionError: If relations or attachments cannot be read
        """
        schema = await self._cache.get(schema_id)
        try:
            row = await self._store.get_instance(self.tenant_id, schema_id, instance_id)
        except StoreError as e:
            raise classify_store_error(e, instance_id) from e

        if row is None:
            raise NotFoundError("Entity instance", instance_id)
        instance = instance_from_row(row)
        if instance.schema_id != schema_id:
            raise NotFoundError("Entity instance", instance_id)

        relations = await self._relations.resolve_one(schema, instance.id)
        attachments = await self._attachments.resolve(schema.fields, [instance.id])
        apply_attachments(instance.data, schema.file_fields, attachments.get(instance.id, {}))
        return flatten_instance(instance, schema.fields, relations, relations_as_ids)

    async def list_instances(
        self, schema_id: str, params: Optional[QueryParams] = None
    ) -> InstancePage:
        """List instances with filtering, search, sorting and paging.

        Raises:
            NotFoundError: If the schema does not exist
            ValidationError: If params are invalid
            ResolutionError: If relation filtering, search or resolution fails
        """
        params = params or QueryParams()
        params.validate()
        schema = await self._cache.get(schema_id)

        ordinary, relation_filters = split_filters(schema, params.filters)
        allowed = await self._relations.compute_allowed_ids(
            relation_filters, params.relation_filter_modes
        )
        if allowed is not None and not allowed:
            logger.debug(
                "Relation filters matched nothing",
                extra={"schema_id": schema_id, "tenant_id": self.tenant_id},
            )
            return InstancePage.empty(params.page, params.limit)

        term = params.search_term
        if term:
            rows, total = await self._search(schema, term, params)
        else:
            query = InstanceQuery(
                tenant_id=self.tenant_id,
                schema_id=schema_id,
                ids=frozenset(allowed) if allowed is not None else None,
                equals=ordinary,
                sort_by=params.sort_by,
                descending=params.sort_order == "desc",
                offset=params.offset,
                limit=params.limit,
            )
            try:
                rows, total = await self._store.query_instances(query)
            except StoreError as e:
                raise classify_store_error(e) from e

        instances = [instance_from_row(r) for r in rows]
        ids = [i.id for i in instances]
        related = await self._relations.resolve_many(schema, ids, params.relations_as_ids)
        attachments = await self._attachments.resolve(schema.fields, ids)

        data = []
        for instance in instances:
            apply_attachments(instance.data, schema.file_fields, attachments.get(instance.id, {}))
            data.append(
                flatten_instance(
                    instance, schema.fields, related.get(instance.id), params.relations_as_ids
                )
            )
        return InstancePage(data=data, pagination=Pagination.build(params.page, params.limit, total))

    async def _search(
        self, schema: EntitySchema, term: str, params: QueryParams
    ) -> Tuple[List[Row], int]:
        try:
            return await self._store.search_instances(
                schema.id,
                self.tenant_id,
                term,
                schema.search_field_names,
                params.limit,
                params.offset,
            )
        except StoreError as e:
            raise ResolutionError("search", f"Search failed: {e.message}", cause=e) from e

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_instance(self, schema_id: str, payload: Payload) -> FlatRecord:
        """Create an instance with a unique slug and its relation edges.

        Args:
            schema_id: Entity type
            payload: InstancePayload or {"data": {...}, "relations": {...}}

        Returns:
            The stored instance, read back with relations and attachments

        Raises:
            ValidationError: If data has no usable 'name' or a bad value type
            DuplicateEntryError: If the store rejects the row as a duplicate
        """
        body = split_payload(payload)
        schema = await self._cache.get(schema_id)

        actor = await Outcome.capture(self._store.current_actor())
        actor.log_failure(logger, "Could not resolve acting user", {"schema_id": schema_id})
        created_by = actor.value_or(None)

        name = require_name(body.data)
        validate_data(schema, body.data)

        try:
            slug = await allocate_unique_slug(name, schema_id, self._store.slug_exists)
            now = _now()
            stored = await self._store.insert_instance(
                {
                    "id": str(uuid.uuid4()),
                    "slug": slug,
                    "schema_id": schema_id,
                    "tenant_id": self.tenant_id,
                    "data": body.data,
                    "created_by": created_by,
                    "created_at": now,
                    "updated_at": now,
                }
            )
        except StoreError as e:
            raise classify_store_error(e) from e

        instance_id = str(stored["id"])
        logger.info(
            "Instance created",
            extra={"schema_id": schema_id, "instance_id": instance_id, "slug": slug},
        )

        if body.relations:
            edges, _ = self._build_edges(schema, instance_id, body, now)
            await self._write_edges(instance_id, edges, ())

        return await self.get_instance(schema_id, instance_id)

    async def update_instance(
        self, schema_id: str, instance_id: str, payload: Payload
    ) -> FlatRecord:
        """Shallow-merge data and replace edges of the touched relation fields.

        The response is built from the updated row. Relation targets named in
        the payload are loaded in one read; if that read fails the record is
        returned without them.

        Raises:
            NotFoundError: If the instance is not in this tenant and schema
            ValidationError: If a data value has the wrong type
        """
        body = split_payload(payload)
        try:
            existing = await self._store.get_instance(self.tenant_id, schema_id, instance_id)
        except StoreError as e:
            raise classify_store_error(e, instance_id) from e
        if existing is None:
            raise NotFoundError("Entity instance", instance_id)

        schema = await self._cache.get(schema_id)
        current = instance_from_row(existing)
        validate_data(schema, body.data)
        merged = {**current.data, **body.data}

        now = _now()
        try:
            stored = await self._store.update_instance_data(
                self.tenant_id, schema_id, instance_id, merged, now
            )
        except StoreError as e:
            raise classify_store_error(e, instance_id) from e
        if stored is None:
            raise NotFoundError("Entity instance", instance_id)

        relations: Optional[Dict[str, List[EntityInstance]]] = None
        if body.relations is not None:
            edges, touched = self._build_edges(schema, instance_id, body, now)
            await self._write_edges(instance_id, edges, touched)
            relations = await self._load_targets(schema, instance_id, body)

        logger.info(
            "Instance updated",
            extra={"schema_id": schema_id, "instance_id": instance_id},
        )
        return flatten_instance(instance_from_row(stored), schema.fields, relations)

    async def delete_instance(self, schema_id: str, instance_id: str) -> None:
        """Delete an instance; its edges and attachments cascade in the store.

        Raises:
            NotFoundError: If the instance is not in this tenant and schema
        """
        try:
            existing = await self._store.get_instance(self.tenant_id, schema_id, instance_id)
            if existing is None:
                raise NotFoundError("Entity instance", instance_id)
            await self._store.delete_instance(self.tenant_id, schema_id, instance_id)
        except StoreError as e:
            raise classify_store_error(e, instance_id) from e
        logger.info(
            "Instance deleted",
            extra={"schema_id": schema_id, "instance_id": instance_id},
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _build_edges(
        self, schema: EntitySchema, instance_id: str, body: InstancePayload, now: str
    ) -> Tuple[List[Row], List[str]]:
        """Edge rows for the payload's known relation fields.

        Returns:
            Tuple of (edge rows, ids of the relation fields named in the payload)
        """
        edges: List[Row] = []
        touched: List[str] = []
        for name, target_ids in body.target_ids().items():
            field_spec = schema.get_field(name)
            if field_spec is None or not field_spec.is_relation:
                logger.warning(
                    "Skipping unknown relation field",
                    extra={"schema_id": schema.id, "field": name, "instance_id": instance_id},
                )
                continue
            touched.append(field_spec.id)
            for target_id in target_ids:
                edges.append(
                    {
                        "id": str(uuid.uuid4()),
                        "source_instance_id": instance_id,
                        "target_instance_id": target_id,
                        "field_id": field_spec.id,
                        "relation_type": field_spec.cardinality.value,
                        "created_at": now,
                    }
                )
        return edges, touched

    async def _write_edges(
        self, instance_id: str, edges: Sequence[Row], replace_field_ids: Sequence[str]
    ) -> None:
        try:
            if replace_field_ids:
                await self._store.delete_edges(instance_id, replace_field_ids)
            if edges:
                await self._store.insert_edges(self.tenant_id, edges)
        except StoreError as e:
            error = classify_store_error(e, instance_id)
            if isinstance(error, UnknownError):
                raise ResolutionError(
                    "write_relations", f"Failed to write relations: {e.message}", instance_id, cause=e
                ) from e
            raise error from e
        logger.debug(
            "Relations written",
            extra={"instance_id": instance_id, "edges": len(edges), "replaced": len(replace_field_ids)},
        )

    async def _load_targets(
        self, schema: EntitySchema, instance_id: str, body: InstancePayload
    ) -> Optional[Dict[str, List[EntityInstance]]]:
        """Targets named in the payload, in payload order; None if the read fails."""
        wanted: Dict[str, List[str]] = {}
        for name, target_ids in body.target_ids().items():
            field_spec = schema.get_field(name)
            if field_spec is not None and field_spec.is_relation:
                wanted[name] = target_ids

        all_ids = list(dict.fromkeys(t for ids in wanted.values() for t in ids))
        if not all_ids:
            return {name: [] for name in wanted}

        outcome = await Outcome.capture(self._store.get_instances(self.tenant_id, all_ids))
        outcome.log_failure(
            logger,
            "Could not load relation targets for update response",
            {"schema_id": schema.id, "instance_id": instance_id},
        )
        if not outcome.ok:
            return None

        targets = {str(r["id"]): instance_from_row(r) for r in outcome.value or []}
        return {
            name: [targets[t] for t in ids if t in targets] for name, ids in wanted.items()
        }


class ClientRegistry:
    """One EntityClient per ClientConfig.

    Built once by the application and passed by reference; there is no
    module-level instance.

    Example:
        >>> registry = ClientRegistry(store)
        >>> client = registry.get(ClientConfig("tenant_1"))
        >>> client is registry.get(ClientConfig("tenant_1"))
        True
    """

    def __init__(self, store: EntityStore) -> None:
        self._store = store
        self._clients: Dict[ClientConfig, EntityClient] = {}
        self._lock = threading.Lock()

    def get(self, config: ClientConfig) -> EntityClient:
        """Return the client for config, creating it on first use."""
        with self._lock:
            client = self._clients.get(config)
            if client is None:
                config.options.validate()
                client = EntityClient(self._store, config.tenant_id, config.options)
                self._clients[config] = client
            return client

    def __len__(self) -> int:
        return len(self._clients)

    def clear(self) -> None:
        """Forget all clients (their caches go with them)."""
        with self._lock:
            self._clients.clear()

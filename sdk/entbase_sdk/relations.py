"""
Relation resolution and relation filtering for EntBase SDK.

This module answers three questions with batched store reads:
- Which instances does one instance point to, per relation field?
- Same for a whole page of instances, in a single combined read
- Which instances satisfy a set of relation filters (any / all)?

Invariants:
    - Reads are batched by id set; never one read per instance or target
    - Each distinct target schema is loaded once per resolve_many call
    - Store failures surface as ResolutionError, never as partial results
    - Every requested relation field is present in the result, possibly
      with an empty list

How to change safely:
    - Keep the store call count per method constant in the number of ids
    - Relation direction is source -> target only; no reverse edges
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from .cache import SchemaCache
from .errors import NotFoundError, ResolutionError
from .schema import EntityInstance, EntitySchema, FieldSpec, FlatRecord, RelationEdge
from .store import EntityStore, StoreError
from .transform import flatten_instance

logger = logging.getLogger(__name__)


class FilterMode(Enum):
    """How a relation filter's target ids combine."""

    ANY = "any"
    ALL = "all"

    @classmethod
    def from_str(cls, value: str) -> FilterMode:
        """Parse a mode name; anything other than "all" means ANY."""
        if value == cls.ALL.value:
            return cls.ALL
        if value != cls.ANY.value:
            logger.warning("Unknown relation filter mode, using any", extra={"mode": value})
        return cls.ANY


@dataclass(frozen=True)
class RelationFilter:
    """Acceptable targets for one relation field."""

    field_name: str
    field_id: str
    target_ids: Tuple[str, ...]


def split_filters(
    schema: EntitySchema, filters: Mapping[str, Sequence[str]]
) -> Tuple[Dict[str, Tuple[str, ...]], List[RelationFilter]]:
    """Partition caller filters into data-equality and relation filters.

    Fields are classified by the schema; unknown names are data filters.
    Filters with no values are dropped.

    Returns:
        Tuple of (data field -> values, relation filters)
    """
    ordinary: Dict[str, Tuple[str, ...]] = {}
    relation: List[RelationFilter] = []
    for name, values in filters.items():
        if isinstance(values, str):
            values = [values]
        values = tuple(str(v) for v in values if v is not None and v != "")
        if not values:
            continue
        field_spec = schema.get_field(name)
        if field_spec is not None and field_spec.is_relation:
            relation.append(RelationFilter(name, field_spec.id, values))
        else:
            ordinary[name] = values
    return ordinary, relation


def _distinct(values: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(values))


class RelationResolver:
    """Batched relation reads.

    Example:
        >>> resolver = RelationResolver(store, cache, "tenant_1")
        >>> related = await resolver.resolve_one(schema, "inst_1")
        >>> related["company"][0].data["name"]
        'Acme'
    """

    def __init__(self, store: EntityStore, cache: SchemaCache, tenant_id: str) -> None:
        self._store = store
        self._tenant_id = tenant_id
        self._cache = cache

    async def resolve_one(
        self, schema: EntitySchema, instance_id: str
    ) -> Dict[str, List[EntityInstance]]:
        """Targets of one instance per relation field, in edge order.

        Raises:
            ResolutionError: If reading edges or targets fails
        """
        fields = schema.relation_fields
        if not fields:
            return {}

        by_id = {f.id: f for f in fields}
        result: Dict[str, List[EntityInstance]] = {f.name: [] for f in fields}

        try:
            edges = [
                RelationEdge.from_row(e)
                for e in await self._store.get_edges([instance_id], list(by_id))
            ]
            target_ids = _distinct(e.target_instance_id for e in edges)
            rows = (
                await self._store.get_instances(self._tenant_id, target_ids) if target_ids else []
            )
        except StoreError as e:
            raise ResolutionError(
                "load_relations", f"Failed to load relations: {e.message}", instance_id, cause=e
            ) from e

        targets = {str(r["id"]): EntityInstance.from_row(r) for r in rows}
        for edge in edges:
            field_spec = by_id.get(edge.field_id)
            target = targets.get(edge.target_instance_id)
            if field_spec is None or target is None:
                continue
            result[field_spec.name].append(target)
        return result

    async def resolve_many(
        self,
        schema: EntitySchema,
        instance_ids: Sequence[str],
        relations_as_ids: bool = False,
        only_display_in_table: bool = True,
    ) -> Dict[str, Dict[str, List[FlatRecord]]]:
        """Flattened targets per instance per relation field.

        Args:
            schema: Schema of the source instances
            instance_ids: Page of source instance ids
            relations_as_ids: Caller only needs ids; target schemas are not loaded
            only_display_in_table: Restrict to fields shown as list columns

        Raises:
            ResolutionError: If the combined read or a target schema load fails
        """
        fields: Sequence[FieldSpec] = schema.relation_fields
        if only_display_in_table:
            fields = [f for f in fields if f.display_in_table]
        if not fields or not instance_ids:
            return {}

        by_id = {f.id: f for f in fields}
        try:
            rows = await self._store.get_related_instances(
                self._tenant_id, list(instance_ids), list(by_id)
            )
        except StoreError as e:
            raise ResolutionError(
                "load_related_instances", f"Failed to load related instances: {e.message}", cause=e
            ) from e

        targets: Dict[str, EntityInstance] = {}
        for row in rows:
            target_id = str(row["target_instance_id"])
            if target_id not in targets:
                targets[target_id] = EntityInstance.from_row(
                    {
                        "id": target_id,
                        "slug": row["target_slug"],
                        "schema_id": row["target_schema_id"],
                        "tenant_id": row["target_tenant_id"],
                        "data": row.get("target_data"),
                        "created_at": row.get("target_created_at"),
                        "updated_at": row.get("target_updated_at"),
                    }
                )

        target_fields: Dict[str, Sequence[FieldSpec]] = {}
        if not relations_as_ids:
            for schema_id in _distinct(t.schema_id for t in targets.values()):
                try:
                    target_fields[schema_id] = (await self._cache.get(schema_id)).fields
                except NotFoundError as e:
                    raise ResolutionError(
                        "load_target_schema", f"Target schema {schema_id} could not be loaded", cause=e
                    ) from e

        records = {
            target_id: flatten_instance(target, target_fields.get(target.schema_id, ()))
            for target_id, target in targets.items()
        }

        result: Dict[str, Dict[str, List[FlatRecord]]] = {
            instance_id: {f.name: [] for f in fields} for instance_id in instance_ids
        }
        for row in rows:
            per_source = result.get(str(row["source_instance_id"]))
            field_spec = by_id.get(str(row["field_id"]))
            if per_source is None or field_spec is None:
                continue
            per_source[field_spec.name].append(records[str(row["target_instance_id"])])

        logger.debug(
            "Resolved relations for page",
            extra={
                "schema_id": schema.id,
                "instances": len(instance_ids),
                "targets": len(targets),
                "target_schemas": len(target_fields),
            },
        )
        return result

    async def compute_allowed_ids(
        self,
        filters: Sequence[RelationFilter],
        modes: Optional[Mapping[str, str]] = None,
    ) -> Optional[Set[str]]:
        """Source ids satisfying every relation filter.

        any-mode filters are answered by one OR read and unioned; each
        all-mode filter keeps sources linked to every listed target, and
        keep-sets are intersected. The any-set and the all-set are then
        intersected.

        Returns:
            Allowed ids, or None when there are no filters

        Raises:
            ResolutionError: If an edge read fails
        """
        if not filters:
            return None

        modes = modes or {}
        any_filters: List[RelationFilter] = []
        all_filters: List[RelationFilter] = []
        for f in filters:
            mode = FilterMode.from_str(modes.get(f.field_name, FilterMode.ANY.value))
            (all_filters if mode is FilterMode.ALL else any_filters).append(f)

        any_ids: Optional[Set[str]] = None
        all_ids: Optional[Set[str]] = None

        try:
            if any_filters:
                pairs = [(f.field_id, t) for f in any_filters for t in f.target_ids]
                edges = await self._store.find_edges_any(pairs)
                any_ids = {str(e["source_instance_id"]) for e in edges}

            for f in all_filters:
                edges = await self._store.find_edges_for_field(f.field_id, f.target_ids)
                linked: Dict[str, Set[str]] = {}
                for e in edges:
                    linked.setdefault(str(e["source_instance_id"]), set()).add(
                        str(e["target_instance_id"])
                    )
                required = set(f.target_ids)
                keep = {source for source, found in linked.items() if required <= found}
                all_ids = keep if all_ids is None else all_ids & keep
        except StoreError as e:
            raise ResolutionError(
                "filter_relations", f"Failed to apply relation filters: {e.message}", cause=e
            ) from e

        if any_ids is not None and all_ids is not None:
            return any_ids & all_ids
        return any_ids if any_ids is not None else all_ids

"""
Conversion between storage shape and flat records.

Reads turn an instance row (identity columns plus a JSON data blob) and its
resolved relations into one flat dictionary. Writes arrive already split into
a data blob and a relations map; nothing here guesses which flat keys are
relations.

Invariants:
    - Identity keys come first: id, slug, schema_id, tenant_id,
      created_at, updated_at
    - No "relations" key ever appears in a flat record
    - Single-cardinality relations collapse to the first target or None
    - Output depends only on the inputs (no randomness, no clock)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from .errors import ValidationError
from .schema import EntityInstance, FieldSpec, FlatRecord

IDENTITY_KEYS = ("id", "slug", "schema_id", "tenant_id", "created_at", "updated_at")

RelatedTarget = Union[EntityInstance, FlatRecord]
RelationMap = Mapping[str, Sequence[RelatedTarget]]


def instance_from_row(row: Mapping[str, Any]) -> EntityInstance:
    """Storage row to EntityInstance; JSON text data is decoded."""
    return EntityInstance.from_row(row)


def _target_id(target: RelatedTarget) -> str:
    if isinstance(target, EntityInstance):
        return target.id
    return target["id"]


def _as_record(target: RelatedTarget) -> FlatRecord:
    if isinstance(target, EntityInstance):
        return flatten_instance(target, ())
    return target


def flatten_instance(
    instance: EntityInstance,
    fields: Sequence[FieldSpec],
    relations: Optional[RelationMap] = None,
    relations_as_ids: bool = False,
) -> FlatRecord:
    """Build the flat record for an instance.

    Args:
        instance: Stored instance
        fields: Fields of the instance's schema (cardinality lookup)
        relations: Resolved targets per relation field name
        relations_as_ids: Emit target id lists instead of nested records

    Returns:
        Identity keys, then data keys, then relation values
    """
    record: FlatRecord = {
        "id": instance.id,
        "slug": instance.slug,
        "schema_id": instance.schema_id,
        "tenant_id": instance.tenant_id,
        "created_at": instance.created_at,
        "updated_at": instance.updated_at,
    }
    record.update(instance.data)

    if not relations:
        return record

    cardinalities = {f.name: f.cardinality for f in fields}
    for field_name, targets in relations.items():
        if relations_as_ids:
            record[field_name] = [_target_id(t) for t in targets]
            continue
        cardinality = cardinalities.get(field_name)
        if cardinality is not None and cardinality.is_single:
            record[field_name] = _as_record(targets[0]) if targets else None
        else:
            record[field_name] = [_as_record(t) for t in targets]
    return record


def normalize_target_ids(value: Any) -> List[str]:
    """Coerce a single id or a list of ids into a list, dropping empty ids."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value if v]
    return [str(value)] if value else []


@dataclass
class InstancePayload:
    """A write payload: data blob plus relations by field name.

    Attributes:
        data: Values stored in the instance data blob
        relations: Field name -> target id or list of target ids
    """

    data: Dict[str, Any] = field(default_factory=dict)
    relations: Optional[Dict[str, Any]] = None

    def target_ids(self) -> Dict[str, List[str]]:
        """Relations with normalized id lists."""
        return {name: normalize_target_ids(v) for name, v in (self.relations or {}).items()}


def split_payload(payload: Union[InstancePayload, Mapping[str, Any]]) -> InstancePayload:
    """Accept an InstancePayload or a {"data": ..., "relations": ...} mapping.

    Raises:
        ValidationError: If data or relations is not an object
    """
    if isinstance(payload, InstancePayload):
        return payload
    data = payload.get("data") or {}
    relations = payload.get("relations")
    if not isinstance(data, Mapping):
        raise ValidationError("data", "must be an object")
    if relations is not None and not isinstance(relations, Mapping):
        raise ValidationError("relations", "must be an object")
    return InstancePayload(
        data=dict(data),
        relations=dict(relations) if relations is not None else None,
    )

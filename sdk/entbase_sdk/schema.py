"""
Schema and instance types for EntBase SDK.

This module defines the runtime-described data model:
- FieldKind: Closed set of semantic field types with one behavior table
- Cardinality: Relation cardinality tags
- FieldSpec: One field of an entity type
- EntitySchema: Entity type with its ordered fields
- EntityInstance, RelationEdge, Attachment: Store-backed records

Invariants:
    - Fields are ordered by display_index; missing index sorts last
      (DEFAULT_DISPLAY_INDEX), ties keep fetch order
    - A field is a relation field iff its kind is a relation kind and it
      carries a target schema id
    - Storage strings are parsed into FieldKind in exactly one place
      (FieldKind.from_storage)
    - Schemas are frozen; readers never share mutable state

How to change safely:
    - New kinds need a KIND_TRAITS entry and a from_storage mapping
    - Keep from_row tolerant of missing optional columns
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

DEFAULT_DISPLAY_INDEX = 999

FlatRecord = Dict[str, Any]


class Cardinality(Enum):
    """Relation cardinality as stored in the field's db_type."""

    MANY_TO_MANY = "manyToMany"
    MANY_TO_ONE = "manyToOne"
    ONE_TO_MANY = "oneToMany"
    ONE_TO_ONE = "oneToOne"

    @property
    def is_single(self) -> bool:
        """Whether the source holds at most one target."""
        return self in (Cardinality.MANY_TO_ONE, Cardinality.ONE_TO_ONE)


class FieldKind(Enum):
    """Semantic field types.

    Behavior per kind lives in KIND_TRAITS, not in branches at call sites.
    """

    TEXT = "text"
    NUMBER = "number"
    BOOLEAN = "boolean"
    TIMESTAMP = "timestamp"
    SINGLE_RELATION = "single-relation"
    MULTI_RELATION = "multi-relation"
    FILE_LIST = "file-list"

    @classmethod
    def from_str(cls, value: str) -> FieldKind:
        """Convert the semantic name to FieldKind.

        Raises:
            ValueError: If value is not a valid field kind
        """
        for kind in cls:
            if kind.value == value:
                return kind
        valid = [k.value for k in cls]
        raise ValueError(f"Invalid field kind '{value}'. Valid kinds: {valid}")

    @classmethod
    def from_storage(cls, db_type: str, ui_type: Optional[str] = None) -> FieldKind:
        """Parse storage strings into a FieldKind.

        Args:
            db_type: Column type tag (varchar, float, manyToOne, files, ...)
            ui_type: Presentation type; "files" and "images" mark file lists

        Returns:
            The matching FieldKind

        Raises:
            ValueError: If db_type is not recognized
        """
        if ui_type in FILE_UI_TYPES:
            return cls.FILE_LIST
        kind = _DB_TYPE_KINDS.get(db_type)
        if kind is None:
            raise ValueError(f"Unknown field db_type '{db_type}'")
        return kind


FILE_UI_TYPES = frozenset({"files", "images"})
# Scalar-kind fields whose value is a list of scalars
LIST_UI_TYPES = frozenset({"multipleSelect", "array"})

_DB_TYPE_KINDS: Dict[str, FieldKind] = {
    "varchar": FieldKind.TEXT,
    "text": FieldKind.TEXT,
    "float": FieldKind.NUMBER,
    "integer": FieldKind.NUMBER,
    "numeric": FieldKind.NUMBER,
    "boolean": FieldKind.BOOLEAN,
    "timestamptz": FieldKind.TIMESTAMP,
    "timestamp": FieldKind.TIMESTAMP,
    "date": FieldKind.TIMESTAMP,
    Cardinality.MANY_TO_ONE.value: FieldKind.SINGLE_RELATION,
    Cardinality.ONE_TO_ONE.value: FieldKind.SINGLE_RELATION,
    Cardinality.ONE_TO_MANY.value: FieldKind.MULTI_RELATION,
    Cardinality.MANY_TO_MANY.value: FieldKind.MULTI_RELATION,
    "files": FieldKind.FILE_LIST,
}


def _is_text(value: Any) -> bool:
    return isinstance(value, str)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_boolean(value: Any) -> bool:
    return isinstance(value, bool)


def _is_timestamp(value: Any) -> bool:
    # ISO-8601 string or unix milliseconds
    return isinstance(value, str) or (isinstance(value, int) and not isinstance(value, bool))


@dataclass(frozen=True)
class KindTraits:
    """Per-kind facts.

    Attributes:
        is_relation: Values live in the edge table
        is_file_list: Values are attachment ids
        validator: Accepts a non-null scalar value, None when not validated
    """

    is_relation: bool
    is_file_list: bool
    validator: Optional[Callable[[Any], bool]]


KIND_TRAITS: Dict[FieldKind, KindTraits] = {
    FieldKind.TEXT: KindTraits(False, False, _is_text),
    FieldKind.NUMBER: KindTraits(False, False, _is_number),
    FieldKind.BOOLEAN: KindTraits(False, False, _is_boolean),
    FieldKind.TIMESTAMP: KindTraits(False, False, _is_timestamp),
    FieldKind.SINGLE_RELATION: KindTraits(True, False, None),
    FieldKind.MULTI_RELATION: KindTraits(True, False, None),
    FieldKind.FILE_LIST: KindTraits(False, True, None),
}


def _parse_json(value: Any, default: Any) -> Any:
    if value is None:
        return default
    if isinstance(value, (str, bytes)):
        return json.loads(value) if value else default
    return value


@dataclass(frozen=True)
class FieldSpec:
    """Definition of a single field within an entity type.

    Attributes:
        id: Field identifier
        schema_id: Owning entity type
        name: Data key (unique within the schema)
        kind: Semantic type
        cardinality: Relation cardinality, None for non-relation kinds
        ui_type: Presentation type as stored
        label: Display label
        required: Required flag (informational)
        searchable: Candidate for free-text search
        filterable_in_list: Offered as a list filter
        display_in_table: Shown as a list column; drives list resolution
        display_index: Display order, None sorts last
        target_schema_id: Target entity type for relation fields
        storage_bucket: Bucket for file-list fields
        max_files: Attachment limit for file-list fields
    """

    id: str
    schema_id: str
    name: str
    kind: FieldKind
    cardinality: Optional[Cardinality] = None
    ui_type: Optional[str] = None
    label: Optional[str] = None
    required: bool = False
    searchable: bool = False
    filterable_in_list: bool = False
    display_in_table: bool = False
    display_index: Optional[int] = None
    target_schema_id: Optional[str] = None
    storage_bucket: Optional[str] = None
    max_files: Optional[int] = None

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("field name must not be empty")
        if KIND_TRAITS[self.kind].is_relation and self.cardinality is None:
            raise ValueError(f"relation field '{self.name}' needs a cardinality")

    @property
    def traits(self) -> KindTraits:
        return KIND_TRAITS[self.kind]

    @property
    def is_relation(self) -> bool:
        """Relation kind with a target schema."""
        return self.traits.is_relation and self.target_schema_id is not None

    @property
    def is_file_list(self) -> bool:
        return self.traits.is_file_list

    def accepts(self, value: Any) -> bool:
        """Whether a non-null value has this field's type.

        List ui types take a list whose items each have the kind's type.
        """
        validator = self.traits.validator
        if validator is None:
            return True
        if self.ui_type in LIST_UI_TYPES and isinstance(value, list):
            return all(validator(item) for item in value)
        return validator(value)

    @property
    def sort_key(self) -> int:
        return DEFAULT_DISPLAY_INDEX if self.display_index is None else self.display_index

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> FieldSpec:
        """Build from a storage field row."""
        db_type = row["db_type"]
        ui_type = row.get("type")
        kind = FieldKind.from_storage(db_type, ui_type)
        cardinality = Cardinality(db_type) if KIND_TRAITS[kind].is_relation else None
        return cls(
            id=str(row["id"]),
            schema_id=str(row["schema_id"]),
            name=row["name"],
            kind=kind,
            cardinality=cardinality,
            ui_type=ui_type,
            label=row.get("label"),
            required=bool(row.get("required")),
            searchable=bool(row.get("searchable")),
            filterable_in_list=bool(row.get("filterable_in_list")),
            display_in_table=bool(row.get("display_in_table")),
            display_index=row.get("display_index"),
            target_schema_id=row.get("related_schema_id"),
            storage_bucket=row.get("storage_bucket"),
            max_files=row.get("max_files"),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "schema_id": self.schema_id,
            "name": self.name,
            "kind": self.kind.value,
            "cardinality": self.cardinality.value if self.cardinality else None,
            "ui_type": self.ui_type,
            "label": self.label,
            "required": self.required,
            "searchable": self.searchable,
            "filterable_in_list": self.filterable_in_list,
            "display_in_table": self.display_in_table,
            "display_index": self.display_index,
            "target_schema_id": self.target_schema_id,
            "storage_bucket": self.storage_bucket,
            "max_files": self.max_files,
        }


def sort_fields(fields: List[FieldSpec]) -> Tuple[FieldSpec, ...]:
    """Order by display_index; sorted() is stable so ties keep fetch order."""
    return tuple(sorted(fields, key=lambda f: f.sort_key))


@dataclass(frozen=True)
class EntitySchema:
    """Entity type definition with its ordered fields.

    Example:
        >>> schema = EntitySchema.from_row(store_row)
        >>> [f.name for f in schema.relation_fields]
        ['company']
    """

    id: str
    name: str
    tenant_id: str
    slug: Optional[str] = None
    table_name: Optional[str] = None
    description: Optional[str] = None
    create_permission: Optional[str] = None
    read_permission: Optional[str] = None
    update_permission: Optional[str] = None
    delete_permission: Optional[str] = None
    enable_pagination: bool = True
    page_size: int = 20
    enable_filters: bool = True
    max_file_size_mb: Optional[int] = None
    max_files_count: Optional[int] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    fields: Tuple[FieldSpec, ...] = ()

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> EntitySchema:
        """Build from a storage schema row carrying a "fields" list."""
        fields = [FieldSpec.from_row(f) for f in row.get("fields") or ()]
        return cls(
            id=str(row["id"]),
            name=row["name"],
            tenant_id=str(row["tenant_id"]),
            slug=row.get("slug"),
            table_name=row.get("table_name"),
            description=row.get("description"),
            create_permission=row.get("create_permission"),
            read_permission=row.get("read_permission"),
            update_permission=row.get("update_permission"),
            delete_permission=row.get("delete_permission"),
            enable_pagination=bool(row.get("enable_pagination", True)),
            page_size=row.get("page_size") or 20,
            enable_filters=bool(row.get("enable_filters", True)),
            max_file_size_mb=row.get("max_file_size_mb"),
            max_files_count=row.get("max_files_count"),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
            fields=sort_fields(fields),
        )

    def get_field(self, name: str) -> Optional[FieldSpec]:
        for f in self.fields:
            if f.name == name:
                return f
        return None

    @property
    def relation_fields(self) -> Tuple[FieldSpec, ...]:
        return tuple(f for f in self.fields if f.is_relation)

    @property
    def file_fields(self) -> Tuple[FieldSpec, ...]:
        return tuple(f for f in self.fields if f.is_file_list)

    @property
    def search_field_names(self) -> List[str]:
        """Searchable field names, or ["name"] when none are marked."""
        names = [f.name for f in self.fields if f.searchable]
        return names or ["name"]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "tenant_id": self.tenant_id,
            "table_name": self.table_name,
            "description": self.description,
            "create_permission": self.create_permission,
            "read_permission": self.read_permission,
            "update_permission": self.update_permission,
            "delete_permission": self.delete_permission,
            "enable_pagination": self.enable_pagination,
            "page_size": self.page_size,
            "enable_filters": self.enable_filters,
            "max_file_size_mb": self.max_file_size_mb,
            "max_files_count": self.max_files_count,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "fields": [f.to_dict() for f in self.fields],
        }


@dataclass
class EntityInstance:
    """One stored instance of an entity type."""

    id: str
    slug: str
    schema_id: str
    tenant_id: str
    data: Dict[str, Any] = field(default_factory=dict)
    created_by: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> EntityInstance:
        return cls(
            id=str(row["id"]),
            slug=row["slug"],
            schema_id=str(row["schema_id"]),
            tenant_id=str(row["tenant_id"]),
            data=dict(_parse_json(row.get("data"), {})),
            created_by=row.get("created_by"),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )


@dataclass(frozen=True)
class RelationEdge:
    """Directed edge source -> target owned by a relation field."""

    id: str
    source_instance_id: str
    target_instance_id: str
    field_id: str
    relation_type: str
    created_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> RelationEdge:
        return cls(
            id=str(row["id"]),
            source_instance_id=str(row["source_instance_id"]),
            target_instance_id=str(row["target_instance_id"]),
            field_id=str(row["field_id"]),
            relation_type=row["relation_type"],
            created_at=row.get("created_at"),
        )


@dataclass(frozen=True)
class Attachment:
    """File attached to an instance, optionally through a field."""

    id: str
    instance_id: str
    file_path: str
    field_id: Optional[str] = None
    file_size: Optional[int] = None
    file_type: Optional[str] = None
    storage_bucket: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> Attachment:
        return cls(
            id=str(row["id"]),
            instance_id=str(row["instance_id"]),
            file_path=row["file_path"],
            field_id=row.get("field_id"),
            file_size=row.get("file_size"),
            file_type=row.get("file_type"),
            storage_bucket=row.get("storage_bucket"),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

"""
EntBase Python SDK - Data access for runtime-described entity types.

This SDK reads and writes instances of user-defined entity types stored as
(id, slug, JSON data) rows plus relation edges and file attachments:
- Schema cache with TTL
- Unique slug allocation
- Batched relation and attachment resolution
- AND/OR relation filtering in listings
- EntityClient facade returning flat records

Example:
    >>> from entbase_sdk import EntityClient, QueryParams
    >>>
    >>> client = EntityClient(store, "tenant_1")
    >>> company = await client.create_instance("companies", {"data": {"name": "Acme"}})
    >>> contact = await client.create_instance(
    ...     "contacts",
    ...     {"data": {"name": "Ada"}, "relations": {"company": company["id"]}},
    ... )
    >>> page = await client.list_instances("contacts", QueryParams(search="ada"))

Invariants:
    - Every call is scoped to one tenant
    - Store errors surface as EntBaseError subclasses

Version: 1.0.0
"""

__version__ = "1.0.0"

from .attachments import AttachmentResolver, apply_attachments
from .cache import SchemaCache
from .client import ClientRegistry, EntityClient, InstancePage, Pagination, QueryParams
from .config import ClientConfig, ClientOptions
from .errors import (
    DuplicateEntryError,
    EntBaseError,
    ForeignKeyViolationError,
    NotFoundError,
    PermissionDeniedError,
    ResolutionError,
    UnknownError,
    ValidationError,
    classify_store_error,
)
from .outcome import Outcome
from .relations import FilterMode, RelationFilter, RelationResolver
from .schema import (
    KIND_TRAITS,
    Attachment,
    Cardinality,
    EntityInstance,
    EntitySchema,
    FieldKind,
    FieldSpec,
    RelationEdge,
)
from .slug import allocate_unique_slug, generate_slug
from .store import EntityStore, InstanceQuery, StoreError
from .transform import InstancePayload, flatten_instance, instance_from_row, split_payload

__all__ = [
    # Version
    "__version__",
    # Schema types
    "EntitySchema",
    "FieldSpec",
    "FieldKind",
    "Cardinality",
    "KIND_TRAITS",
    "EntityInstance",
    "RelationEdge",
    "Attachment",
    # Store
    "EntityStore",
    "InstanceQuery",
    "StoreError",
    # Components
    "SchemaCache",
    "RelationResolver",
    "RelationFilter",
    "FilterMode",
    "AttachmentResolver",
    "apply_attachments",
    "generate_slug",
    "allocate_unique_slug",
    "flatten_instance",
    "instance_from_row",
    "split_payload",
    "InstancePayload",
    "Outcome",
    # Client
    "EntityClient",
    "ClientRegistry",
    "ClientConfig",
    "ClientOptions",
    "QueryParams",
    "InstancePage",
    "Pagination",
    # Errors
    "EntBaseError",
    "NotFoundError",
    "PermissionDeniedError",
    "ValidationError",
    "DuplicateEntryError",
    "ForeignKeyViolationError",
    "ResolutionError",
    "UnknownError",
    "classify_store_error",
]

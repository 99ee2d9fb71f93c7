"""
SQLite entity store for EntBase.

This module implements the EntityStore protocol on a single SQLite file:
- Entity definitions and their fields
- Entity instances (identity columns plus a JSON data blob)
- Directed relation edges between instances
- File attachment rows

Invariants:
    - Foreign keys are enforced; deleting an instance cascades to its edges
      (both directions) and its attachments
    - (schema_id, slug) is unique
    - Id sets are bound as one JSON array parameter (json_each), so any
      number of ids costs one statement
    - sqlite3 errors leave this module as StoreError with Postgres-style codes

How to change safely:
    - Schema migrations must be backward compatible
    - Keep every protocol method a single call from the SDK's point of view
    - Use transactions for multi-statement writes

Table schema:
    entity_definition:
        - id TEXT PRIMARY KEY
        - tenant_id TEXT
        - name, slug, table_name, description TEXT
        - create/read/update/delete_permission TEXT
        - enable_pagination, page_size, enable_filters INTEGER
        - max_file_size_mb, max_files_count INTEGER
        - created_at, updated_at TEXT (ISO-8601)

    field:
        - id TEXT PRIMARY KEY
        - schema_id TEXT -> entity_definition(id) ON DELETE CASCADE
        - name, db_type, type, label TEXT
        - required, searchable, filterable_in_list, display_in_table INTEGER
        - display_index INTEGER NULL
        - related_schema_id TEXT NULL, storage_bucket TEXT NULL, max_files INTEGER NULL
        - UNIQUE (schema_id, name)

    entity_instance:
        - id TEXT PRIMARY KEY
        - slug TEXT, schema_id TEXT, tenant_id TEXT
        - data TEXT (JSON)
        - created_by TEXT NULL, created_at TEXT, updated_at TEXT
        - UNIQUE (schema_id, slug)

    entity_relation:
        - id TEXT PRIMARY KEY
        - source_instance_id, target_instance_id TEXT -> entity_instance(id) ON DELETE CASCADE
        - field_id TEXT -> field(id) ON DELETE CASCADE
        - relation_type TEXT, created_at TEXT

    entity_file:
        - id TEXT PRIMARY KEY
        - instance_id TEXT -> entity_instance(id) ON DELETE CASCADE
        - field_id TEXT NULL -> field(id) ON DELETE SET NULL
        - file_path TEXT, file_size INTEGER, file_type TEXT, storage_bucket TEXT
        - created_at, updated_at TEXT
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Collection, Optional, Sequence

from sdk.entbase_sdk.errors import FOREIGN_KEY_VIOLATION, UNIQUE_VIOLATION
from sdk.entbase_sdk.schema import KIND_TRAITS, FieldKind
from sdk.entbase_sdk.store import InstanceQuery, Row, StoreError

logger = logging.getLogger(__name__)

_current_actor: ContextVar[Optional[str]] = ContextVar("entbase_current_actor", default=None)

IDENTITY_COLUMNS = frozenset({"id", "slug", "created_by", "created_at", "updated_at"})

# Text rendering of a data value, matching Postgres `data->>'key'`
_DATA_TEXT = (
    "CASE json_type(data, ?) "
    "WHEN 'true' THEN 'true' WHEN 'false' THEN 'false' "
    "ELSE CAST(json_extract(data, ?) AS TEXT) END"
)


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _json_path(key: str) -> str:
    escaped = key.replace("\\", "\\\\").replace('"', '\\"')
    return f'$."{escaped}"'


def _id_list(ids: Collection[str]) -> str:
    return json.dumps([str(i) for i in ids])


def _instance_row(row: sqlite3.Row) -> Row:
    result = dict(row)
    result["data"] = json.loads(result["data"]) if result.get("data") else {}
    return result


def _related_row(row: sqlite3.Row) -> Row:
    result = dict(row)
    result["target_data"] = json.loads(result["target_data"]) if result.get("target_data") else {}
    return result


@contextmanager
def actor_scope(actor: Optional[str]) -> Iterator[None]:
    """Make `actor` the acting user for store calls in this context."""
    token = _current_actor.set(actor)
    try:
        yield
    finally:
        _current_actor.reset(token)


def translate_sqlite_error(error: sqlite3.Error) -> StoreError:
    """Map a sqlite3 error onto a StoreError code."""
    message = str(error)
    if isinstance(error, sqlite3.IntegrityError):
        if "UNIQUE" in message:
            return StoreError(message, code=UNIQUE_VIOLATION)
        if "FOREIGN KEY" in message:
            return StoreError(message, code=FOREIGN_KEY_VIOLATION)
    return StoreError(message, code="STORE_ERROR", details={"sqlite_error": type(error).__name__})


class SqliteEntityStore:
    """EntityStore backed by one SQLite database file.

    Each call opens its own connection, so the store can be shared between
    clients and tenants.

    Example:
        >>> store = SqliteEntityStore("/var/lib/entbase/entbase.db")
        >>> await store.initialize()
        >>> schema_id = await store.create_schema("tenant_1", "Companies")
        >>> await store.add_field(schema_id, "name", "varchar", searchable=True)
    """

    SCHEMA_VERSION = 1

    def __init__(
        self,
        db_path: str,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
        cache_size_pages: int = -64000,
    ) -> None:
        """Initialize the store.

        Args:
            db_path: SQLite database file
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
            cache_size_pages: SQLite cache size (negative = KB)
        """
        self.db_path = Path(db_path)
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self.cache_size_pages = cache_size_pages

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Open a configured connection.

        Raises:
            StoreError: For any sqlite3 error raised while the connection is in use
        """
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(
            str(self.db_path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
        )
        conn.row_factory = sqlite3.Row
        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            conn.execute(f"PRAGMA cache_size = {self.cache_size_pages}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            conn.execute("PRAGMA foreign_keys = ON")
            yield conn
        except sqlite3.Error as e:
            raise translate_sqlite_error(e) from e
        finally:
            conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        """Create database schema."""
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS entity_definition (
                id TEXT PRIMARY KEY,
                tenant_id TEXT NOT NULL,
                name TEXT NOT NULL,
                slug TEXT,
                table_name TEXT,
                description TEXT,
                create_permission TEXT,
                read_permission TEXT,
                update_permission TEXT,
                delete_permission TEXT,
                enable_pagination INTEGER NOT NULL DEFAULT 1,
                page_size INTEGER NOT NULL DEFAULT 20,
                enable_filters INTEGER NOT NULL DEFAULT 1,
                max_file_size_mb INTEGER,
                max_files_count INTEGER,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_definition_tenant
                ON entity_definition(tenant_id, name);

            CREATE TABLE IF NOT EXISTS field (
                id TEXT PRIMARY KEY,
                schema_id TEXT NOT NULL REFERENCES entity_definition(id) ON DELETE CASCADE,
                name TEXT NOT NULL,
                db_type TEXT NOT NULL,
                type TEXT,
                label TEXT,
                required INTEGER NOT NULL DEFAULT 0,
                searchable INTEGER NOT NULL DEFAULT 0,
                filterable_in_list INTEGER NOT NULL DEFAULT 0,
                display_in_table INTEGER NOT NULL DEFAULT 0,
                display_index INTEGER,
                related_schema_id TEXT,
                storage_bucket TEXT,
                max_files INTEGER,
                UNIQUE (schema_id, name)
            );

            CREATE TABLE IF NOT EXISTS entity_instance (
                id TEXT PRIMARY KEY,
                slug TEXT NOT NULL,
                schema_id TEXT NOT NULL REFERENCES entity_definition(id) ON DELETE CASCADE,
                tenant_id TEXT NOT NULL,
                data TEXT NOT NULL DEFAULT '{}',
                created_by TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                UNIQUE (schema_id, slug)
            );

            CREATE INDEX IF NOT EXISTS idx_instance_scope
                ON entity_instance(tenant_id, schema_id, created_at DESC);

            CREATE TABLE IF NOT EXISTS entity_relation (
                id TEXT PRIMARY KEY,
                source_instance_id TEXT NOT NULL
                    REFERENCES entity_instance(id) ON DELETE CASCADE,
                target_instance_id TEXT NOT NULL
                    REFERENCES entity_instance(id) ON DELETE CASCADE,
                field_id TEXT NOT NULL REFERENCES field(id) ON DELETE CASCADE,
                relation_type TEXT NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_relation_source
                ON entity_relation(source_instance_id, field_id);
            CREATE INDEX IF NOT EXISTS idx_relation_target
                ON entity_relation(field_id, target_instance_id);

            CREATE TABLE IF NOT EXISTS entity_file (
                id TEXT PRIMARY KEY,
                instance_id TEXT NOT NULL REFERENCES entity_instance(id) ON DELETE CASCADE,
                field_id TEXT REFERENCES field(id) ON DELETE SET NULL,
                file_path TEXT NOT NULL,
                file_size INTEGER,
                file_type TEXT,
                storage_bucket TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_file_instance
                ON entity_file(instance_id, field_id);

            INSERT OR IGNORE INTO schema_version (version, applied_at)
            VALUES (1, datetime('now'));
        """)

    async def initialize(self) -> None:
        """Create tables if they do not exist."""
        with self._get_connection() as conn:
            self._create_schema(conn)
        logger.info("Initialized entity store", extra={"db_path": str(self.db_path)})

    # ------------------------------------------------------------------
    # Schemas
    # ------------------------------------------------------------------

    async def fetch_schema(self, schema_id: str) -> Optional[Row]:
        """Load one entity definition with its fields in fetch order."""
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM entity_definition WHERE id = ?", (schema_id,)
            ).fetchone()
            if not row:
                return None
            schema = dict(row)
            schema["fields"] = [
                dict(f)
                for f in conn.execute(
                    "SELECT * FROM field WHERE schema_id = ? ORDER BY rowid", (schema_id,)
                )
            ]
            return schema

    async def list_schemas(self, tenant_id: str) -> list[Row]:
        """Load every entity definition of a tenant, ordered by name."""
        with self._get_connection() as conn:
            schemas = [
                dict(r)
                for r in conn.execute(
                    "SELECT * FROM entity_definition WHERE tenant_id = ? ORDER BY name, rowid",
                    (tenant_id,),
                )
            ]
            by_id = {s["id"]: s for s in schemas}
            for s in schemas:
                s["fields"] = []
            cursor = conn.execute(
                """
                SELECT f.* FROM field f
                JOIN entity_definition d ON d.id = f.schema_id
                WHERE d.tenant_id = ?
                ORDER BY f.rowid
                """,
                (tenant_id,),
            )
            for f in cursor:
                by_id[f["schema_id"]]["fields"].append(dict(f))
            return schemas

    async def create_schema(
        self,
        tenant_id: str,
        name: str,
        schema_id: Optional[str] = None,
        slug: Optional[str] = None,
        table_name: Optional[str] = None,
        description: Optional[str] = None,
        page_size: int = 20,
        enable_pagination: bool = True,
        enable_filters: bool = True,
        max_file_size_mb: Optional[int] = None,
        max_files_count: Optional[int] = None,
        permissions: Optional[dict[str, str]] = None,
    ) -> str:
        """Create an entity definition.

        Returns:
            The schema id

        Raises:
            StoreError: If the id is already used (code 23505)
        """
        schema_id = schema_id or str(uuid.uuid4())
        permissions = permissions or {}
        now = _utc_now()
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO entity_definition (
                    id, tenant_id, name, slug, table_name, description,
                    create_permission, read_permission, update_permission, delete_permission,
                    enable_pagination, page_size, enable_filters,
                    max_file_size_mb, max_files_count, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    schema_id,
                    tenant_id,
                    name,
                    slug,
                    table_name,
                    description,
                    permissions.get("create"),
                    permissions.get("read"),
                    permissions.get("update"),
                    permissions.get("delete"),
                    int(enable_pagination),
                    page_size,
                    int(enable_filters),
                    max_file_size_mb,
                    max_files_count,
                    now,
                    now,
                ),
            )
        logger.debug("Created entity definition", extra={"schema_id": schema_id, "tenant_id": tenant_id})
        return schema_id

    async def add_field(
        self,
        schema_id: str,
        name: str,
        db_type: str,
        ui_type: Optional[str] = None,
        field_id: Optional[str] = None,
        label: Optional[str] = None,
        required: bool = False,
        searchable: bool = False,
        filterable_in_list: bool = False,
        display_in_table: bool = False,
        display_index: Optional[int] = None,
        related_schema_id: Optional[str] = None,
        storage_bucket: Optional[str] = None,
        max_files: Optional[int] = None,
    ) -> str:
        """Add a field to an entity definition.

        Returns:
            The field id

        Raises:
            ValueError: If db_type is unknown or a relation field has no target
            StoreError: If the name is taken or the schema does not exist
        """
        kind = FieldKind.from_storage(db_type, ui_type)
        if KIND_TRAITS[kind].is_relation and not related_schema_id:
            raise ValueError(f"Relation field '{name}' needs related_schema_id")

        field_id = field_id or str(uuid.uuid4())
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO field (
                    id, schema_id, name, db_type, type, label, required, searchable,
                    filterable_in_list, display_in_table, display_index,
                    related_schema_id, storage_bucket, max_files
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    field_id,
                    schema_id,
                    name,
                    db_type,
                    ui_type,
                    label or name,
                    int(required),
                    int(searchable),
                    int(filterable_in_list),
                    int(display_in_table),
                    display_index,
                    related_schema_id,
                    storage_bucket,
                    max_files,
                ),
            )
        logger.debug(
            "Added field",
            extra={"schema_id": schema_id, "field": name, "db_type": db_type},
        )
        return field_id

    # ------------------------------------------------------------------
    # Instances
    # ------------------------------------------------------------------

    async def get_instance(self, tenant_id: str, schema_id: str, instance_id: str) -> Optional[Row]:
        with self._get_connection() as conn:
            row = conn.execute(
                """
                SELECT * FROM entity_instance
                WHERE id = ? AND schema_id = ? AND tenant_id = ?
                """,
                (instance_id, schema_id, tenant_id),
            ).fetchone()
            return _instance_row(row) if row else None

    async def get_instances(self, tenant_id: str, instance_ids: Collection[str]) -> list[Row]:
        if not instance_ids:
            return []
        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                SELECT * FROM entity_instance
                WHERE tenant_id = ? AND id IN (SELECT value FROM json_each(?))
                """,
                (tenant_id, _id_list(instance_ids)),
            )
            return [_instance_row(r) for r in cursor]

    async def query_instances(self, query: InstanceQuery) -> tuple[list[Row], int]:
        """Filtered, sorted page plus the exact match count."""
        where = ["tenant_id = ?", "schema_id = ?"]
        params: list[Any] = [query.tenant_id, query.schema_id]

        if query.ids is not None:
            where.append("id IN (SELECT value FROM json_each(?))")
            params.append(_id_list(query.ids))

        for key, values in query.equals.items():
            path = _json_path(key)
            where.append(f"({_DATA_TEXT}) IN (SELECT value FROM json_each(?))")
            params.extend([path, path, json.dumps(list(values))])

        where_sql = " AND ".join(where)
        direction = "DESC" if query.descending else "ASC"
        if query.sort_by in IDENTITY_COLUMNS:
            order_sql = f"{query.sort_by} {direction}, rowid {direction}"
            order_params: list[Any] = []
        else:
            order_sql = f"json_extract(data, ?) {direction}, rowid {direction}"
            order_params = [_json_path(query.sort_by)]

        with self._get_connection() as conn:
            total = conn.execute(
                f"SELECT COUNT(*) FROM entity_instance WHERE {where_sql}", params
            ).fetchone()[0]
            cursor = conn.execute(
                f"""
                SELECT * FROM entity_instance
                WHERE {where_sql}
                ORDER BY {order_sql}
                LIMIT ? OFFSET ?
                """,
                [*params, *order_params, query.limit, query.offset],
            )
            return [_instance_row(r) for r in cursor], total

    async def search_instances(
        self,
        schema_id: str,
        tenant_id: str,
        term: str,
        fields: Sequence[str],
        limit: int,
        offset: int,
    ) -> tuple[list[Row], int]:
        """Case-insensitive substring match over the given data fields."""
        if not fields:
            return [], 0
        matches = []
        params: list[Any] = [tenant_id, schema_id]
        for name in fields:
            path = _json_path(name)
            matches.append(f"instr(lower({_DATA_TEXT}), lower(?)) > 0")
            params.extend([path, path, term])
        where_sql = f"tenant_id = ? AND schema_id = ? AND ({' OR '.join(matches)})"

        with self._get_connection() as conn:
            total = conn.execute(
                f"SELECT COUNT(*) FROM entity_instance WHERE {where_sql}", params
            ).fetchone()[0]
            cursor = conn.execute(
                f"""
                SELECT * FROM entity_instance
                WHERE {where_sql}
                ORDER BY created_at DESC, rowid DESC
                LIMIT ? OFFSET ?
                """,
                [*params, limit, offset],
            )
            return [_instance_row(r) for r in cursor], total

    async def slug_exists(self, slug: str, schema_id: str) -> bool:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT 1 FROM entity_instance WHERE schema_id = ? AND slug = ? LIMIT 1",
                (schema_id, slug),
            ).fetchone()
            return row is not None

    async def insert_instance(self, row: Row) -> Row:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO entity_instance (
                    id, slug, schema_id, tenant_id, data, created_by, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    row["id"],
                    row["slug"],
                    row["schema_id"],
                    row["tenant_id"],
                    json.dumps(row.get("data") or {}),
                    row.get("created_by"),
                    row["created_at"],
                    row["updated_at"],
                ),
            )
            stored = conn.execute(
                "SELECT * FROM entity_instance WHERE id = ?", (row["id"],)
            ).fetchone()
        logger.debug(
            "Inserted instance",
            extra={"instance_id": row["id"], "schema_id": row["schema_id"]},
        )
        return _instance_row(stored)

    async def update_instance_data(
        self,
        tenant_id: str,
        schema_id: str,
        instance_id: str,
        data: dict[str, Any],
        updated_at: str,
    ) -> Optional[Row]:
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE entity_instance SET data = ?, updated_at = ?
                WHERE id = ? AND schema_id = ? AND tenant_id = ?
                """,
                (json.dumps(data), updated_at, instance_id, schema_id, tenant_id),
            )
            if cursor.rowcount == 0:
                return None
            stored = conn.execute(
                "SELECT * FROM entity_instance WHERE id = ?", (instance_id,)
            ).fetchone()
        return _instance_row(stored)

    async def delete_instance(self, tenant_id: str, schema_id: str, instance_id: str) -> None:
        with self._transaction() as conn:
            conn.execute(
                "DELETE FROM entity_instance WHERE id = ? AND schema_id = ? AND tenant_id = ?",
                (instance_id, schema_id, tenant_id),
            )
        logger.debug("Deleted instance", extra={"instance_id": instance_id, "schema_id": schema_id})

    # ------------------------------------------------------------------
    # Relations
    # ------------------------------------------------------------------

    async def get_edges(self, source_ids: Collection[str], field_ids: Collection[str]) -> list[Row]:
        if not source_ids or not field_ids:
            return []
        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                SELECT * FROM entity_relation
                WHERE source_instance_id IN (SELECT value FROM json_each(?))
                  AND field_id IN (SELECT value FROM json_each(?))
                ORDER BY created_at, rowid
                """,
                (_id_list(source_ids), _id_list(field_ids)),
            )
            return [dict(r) for r in cursor]

    async def get_related_instances(
        self, tenant_id: str, source_ids: Collection[str], field_ids: Collection[str]
    ) -> list[Row]:
        """Edges joined with their target rows in one statement.

        Targets outside the tenant are not returned.
        """
        if not source_ids or not field_ids:
            return []
        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                SELECT
                    r.source_instance_id AS source_instance_id,
                    r.field_id AS field_id,
                    r.target_instance_id AS target_instance_id,
                    t.slug AS target_slug,
                    t.schema_id AS target_schema_id,
                    t.tenant_id AS target_tenant_id,
                    t.data AS target_data,
                    t.created_at AS target_created_at,
                    t.updated_at AS target_updated_at
                FROM entity_relation r
                JOIN entity_instance t ON t.id = r.target_instance_id
                WHERE t.tenant_id = ?
                  AND r.source_instance_id IN (SELECT value FROM json_each(?))
                  AND r.field_id IN (SELECT value FROM json_each(?))
                ORDER BY r.created_at, r.rowid
                """,
                (tenant_id, _id_list(source_ids), _id_list(field_ids)),
            )
            return [_related_row(r) for r in cursor]

    async def find_edges_any(self, pairs: Sequence[tuple[str, str]]) -> list[Row]:
        if not pairs:
            return []
        clauses = " OR ".join("(field_id = ? AND target_instance_id = ?)" for _ in pairs)
        params = [value for pair in pairs for value in pair]
        with self._get_connection() as conn:
            cursor = conn.execute(f"SELECT * FROM entity_relation WHERE {clauses}", params)
            return [dict(r) for r in cursor]

    async def find_edges_for_field(self, field_id: str, target_ids: Collection[str]) -> list[Row]:
        if not target_ids:
            return []
        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                SELECT * FROM entity_relation
                WHERE field_id = ?
                  AND target_instance_id IN (SELECT value FROM json_each(?))
                """,
                (field_id, _id_list(target_ids)),
            )
            return [dict(r) for r in cursor]

    async def insert_edges(self, tenant_id: str, edges: Sequence[Row]) -> None:
        """Insert edge rows whose targets all belong to the tenant.

        Raises:
            StoreError: Code 23503 if any target is missing or in another tenant
        """
        if not edges:
            return
        target_ids = {str(e["target_instance_id"]) for e in edges}
        with self._transaction() as conn:
            found = {
                r["id"]
                for r in conn.execute(
                    """
                    SELECT id FROM entity_instance
                    WHERE tenant_id = ? AND id IN (SELECT value FROM json_each(?))
                    """,
                    (tenant_id, _id_list(target_ids)),
                )
            }
            missing = sorted(target_ids - found)
            if missing:
                logger.warning(
                    "Rejected edges to targets outside the tenant",
                    extra={"tenant_id": tenant_id, "target_ids": missing},
                )
                raise StoreError(
                    "Relation target not found in tenant",
                    code=FOREIGN_KEY_VIOLATION,
                    details={"target_ids": missing},
                )
            conn.executemany(
                """
                INSERT INTO entity_relation (
                    id, source_instance_id, target_instance_id, field_id, relation_type, created_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        e.get("id") or str(uuid.uuid4()),
                        e["source_instance_id"],
                        e["target_instance_id"],
                        e["field_id"],
                        e["relation_type"],
                        e.get("created_at") or _utc_now(),
                    )
                    for e in edges
                ],
            )
        logger.debug("Inserted edges", extra={"count": len(edges)})

    async def delete_edges(self, source_id: str, field_ids: Collection[str]) -> None:
        if not field_ids:
            return
        with self._transaction() as conn:
            conn.execute(
                """
                DELETE FROM entity_relation
                WHERE source_instance_id = ?
                  AND field_id IN (SELECT value FROM json_each(?))
                """,
                (source_id, _id_list(field_ids)),
            )

    # ------------------------------------------------------------------
    # Attachments
    # ------------------------------------------------------------------

    async def get_attachments(
        self, instance_ids: Collection[str], field_ids: Collection[str]
    ) -> list[Row]:
        if not instance_ids or not field_ids:
            return []
        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                SELECT * FROM entity_file
                WHERE instance_id IN (SELECT value FROM json_each(?))
                  AND field_id IN (SELECT value FROM json_each(?))
                ORDER BY created_at, rowid
                """,
                (_id_list(instance_ids), _id_list(field_ids)),
            )
            return [dict(r) for r in cursor]

    async def add_attachment(
        self,
        instance_id: str,
        file_path: str,
        field_id: Optional[str] = None,
        file_size: Optional[int] = None,
        file_type: Optional[str] = None,
        storage_bucket: Optional[str] = None,
        attachment_id: Optional[str] = None,
    ) -> str:
        """Record an uploaded file against an instance.

        Returns:
            The attachment id
        """
        attachment_id = attachment_id or str(uuid.uuid4())
        now = _utc_now()
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO entity_file (
                    id, instance_id, field_id, file_path, file_size, file_type,
                    storage_bucket, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    attachment_id,
                    instance_id,
                    field_id,
                    file_path,
                    file_size,
                    file_type,
                    storage_bucket,
                    now,
                    now,
                ),
            )
        return attachment_id

    # ------------------------------------------------------------------
    # Misc
    # ------------------------------------------------------------------

    async def current_actor(self) -> Optional[str]:
        """Acting user set through actor_scope(), or None."""
        return _current_actor.get()

    async def get_stats(self) -> dict[str, int]:
        """Row counts per table."""
        with self._get_connection() as conn:
            stats = {}
            for table in ("entity_definition", "field", "entity_instance", "entity_relation", "entity_file"):
                stats[table] = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
            return stats

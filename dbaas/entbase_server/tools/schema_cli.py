"""
Schema CLI tool for EntBase.

This tool seeds and inspects entity type definitions:
- load: Create entity types and fields from a YAML document
- dump: Print a tenant's entity types as JSON
- validate: Check a YAML document without touching the store

Usage:
    entbase-schema load schemas.yaml --db /var/lib/entbase/entbase.db
    entbase-schema dump --tenant acme
    entbase-schema validate schemas.yaml

Document format:
    tenant_id: acme
    schemas:
      - id: companies
        name: Companies
        fields:
          - {name: name, db_type: varchar, searchable: true, display_index: 0}
      - id: contacts
        name: Contacts
        fields:
          - {name: name, db_type: varchar}
          - {name: company, db_type: manyToOne, related_schema: companies,
             display_in_table: true}

Invariants:
    - Documents are validated completely before anything is written
    - dump output is deterministic (sorted JSON)
    - Problems cause a non-zero exit code
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

import yaml

from sdk.entbase_sdk.schema import KIND_TRAITS, EntitySchema, FieldKind

from ..config import StorageConfig
from ..storage import SqliteEntityStore

logger = logging.getLogger(__name__)

FIELD_FLAGS = ("required", "searchable", "filterable_in_list", "display_in_table")


class SchemaDocumentError(ValueError):
    """Schema document is malformed."""

    pass


def parse_document(text: str) -> dict[str, Any]:
    """Parse and validate a YAML schema document.

    Args:
        text: YAML source

    Returns:
        The parsed document

    Raises:
        SchemaDocumentError: If the document is not valid
    """
    try:
        doc = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise SchemaDocumentError(f"Invalid YAML: {e}") from e

    if not isinstance(doc, dict):
        raise SchemaDocumentError("Document must be a mapping")
    if not doc.get("tenant_id"):
        raise SchemaDocumentError("'tenant_id' is required")
    schemas = doc.get("schemas")
    if not isinstance(schemas, list) or not schemas:
        raise SchemaDocumentError("'schemas' must be a non-empty list")

    known_ids = {s.get("id") for s in schemas if isinstance(s, dict) and s.get("id")}
    for i, schema in enumerate(schemas):
        where = f"schemas[{i}]"
        if not isinstance(schema, dict) or not schema.get("name"):
            raise SchemaDocumentError(f"{where}: 'name' is required")
        names = set()
        for j, f in enumerate(schema.get("fields") or []):
            fwhere = f"{where}.fields[{j}]"
            if not isinstance(f, dict) or not f.get("name") or not f.get("db_type"):
                raise SchemaDocumentError(f"{fwhere}: 'name' and 'db_type' are required")
            if f["name"] in names:
                raise SchemaDocumentError(f"{fwhere}: duplicate field '{f['name']}'")
            names.add(f["name"])
            try:
                kind = FieldKind.from_storage(f["db_type"], f.get("type"))
            except ValueError as e:
                raise SchemaDocumentError(f"{fwhere}: {e}") from e
            if KIND_TRAITS[kind].is_relation:
                target = f.get("related_schema")
                if not target:
                    raise SchemaDocumentError(f"{fwhere}: relation needs 'related_schema'")
                if target not in known_ids:
                    logger.warning(
                        "Relation target not defined in this document",
                        extra={"field": f["name"], "related_schema": target},
                    )
    return doc


class SchemaCLI:
    """CLI tool for entity type management.

    Example:
        >>> cli = SchemaCLI(store)
        >>> created = await cli.load(parse_document(text))
        >>> print(await cli.dump("acme"))
    """

    def __init__(self, store: SqliteEntityStore) -> None:
        self.store = store

    async def load(self, doc: dict[str, Any]) -> list[str]:
        """Create every entity type and field of a parsed document.

        Returns:
            Ids of the created entity types, in document order
        """
        await self.store.initialize()
        tenant_id = str(doc["tenant_id"])
        created = []
        for schema in doc["schemas"]:
            schema_id = await self.store.create_schema(
                tenant_id,
                schema["name"],
                schema_id=schema.get("id"),
                slug=schema.get("slug"),
                table_name=schema.get("table_name"),
                description=schema.get("description"),
                page_size=schema.get("page_size", 20),
                permissions=schema.get("permissions"),
            )
            for index, f in enumerate(schema.get("fields") or []):
                await self.store.add_field(
                    schema_id,
                    f["name"],
                    f["db_type"],
                    ui_type=f.get("type"),
                    field_id=f.get("id"),
                    label=f.get("label"),
                    display_index=f.get("display_index", index),
                    related_schema_id=f.get("related_schema"),
                    storage_bucket=f.get("storage_bucket"),
                    max_files=f.get("max_files"),
                    **{flag: bool(f.get(flag, False)) for flag in FIELD_FLAGS},
                )
            created.append(schema_id)
            logger.info(
                "Loaded entity type",
                extra={"schema_id": schema_id, "tenant_id": tenant_id},
            )
        return created

    async def dump(self, tenant_id: str) -> str:
        """Export a tenant's entity types as JSON."""
        rows = await self.store.list_schemas(tenant_id)
        schemas = [EntitySchema.from_row(r).to_dict() for r in rows]
        return json.dumps({"tenant_id": tenant_id, "schemas": schemas}, indent=2, sort_keys=True)


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for schema tool."""
    parser = argparse.ArgumentParser(description="EntBase schema management tool")
    parser.add_argument("--db", help="SQLite database file (default: ENTBASE_DB_PATH)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    load_parser = subparsers.add_parser("load", help="Create entity types from YAML")
    load_parser.add_argument("file", help="YAML schema document")

    dump_parser = subparsers.add_parser("dump", help="Print entity types as JSON")
    dump_parser.add_argument("--tenant", "-t", required=True, help="Tenant ID")
    dump_parser.add_argument("--output", "-o", help="Output file (default: stdout)")

    validate_parser = subparsers.add_parser("validate", help="Validate a YAML document")
    validate_parser.add_argument("file", help="YAML schema document")

    args = parser.parse_args(argv)

    if args.command in ("load", "validate"):
        with open(args.file) as f:
            text = f.read()
        try:
            doc = parse_document(text)
        except SchemaDocumentError as e:
            print(f"Schema document is invalid: {e}", file=sys.stderr)
            sys.exit(1)
        if args.command == "validate":
            print("Schema document is valid")
            sys.exit(0)

    db_path = args.db or StorageConfig.from_env().db_path
    cli = SchemaCLI(SqliteEntityStore(db_path))

    if args.command == "load":
        created = asyncio.run(cli.load(doc))
        print(f"Loaded {len(created)} entity type(s): {', '.join(created)}")

    elif args.command == "dump":
        output = asyncio.run(cli.dump(args.tenant))
        if args.output:
            with open(args.output, "w") as f:
                f.write(output)
            print(f"Schemas exported to {args.output}", file=sys.stderr)
        else:
            print(output)


if __name__ == "__main__":
    main()

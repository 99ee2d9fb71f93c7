"""
Unit tests for relation resolution and relation filters.

Tests cover:
- Store call counts for single and page resolution
- One schema load per distinct target schema
- any / all filter semantics
- Error wrapping
"""

import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from sdk.entbase_sdk.cache import SchemaCache
from sdk.entbase_sdk.config import ClientOptions
from sdk.entbase_sdk.errors import ResolutionError
from sdk.entbase_sdk.relations import (
    FilterMode,
    RelationFilter,
    RelationResolver,
    split_filters,
)
from sdk.entbase_sdk.schema import EntitySchema
from sdk.entbase_sdk.store import StoreError


def schema_row(schema_id, fields):
    return {"id": schema_id, "name": schema_id.title(), "tenant_id": "acme", "fields": fields}


def field_row(schema_id, name, db_type="varchar", **extra):
    row = {"id": f"{schema_id}.{name}", "schema_id": schema_id, "name": name, "db_type": db_type}
    row.update(extra)
    return row


SCHEMAS = {
    "contacts": schema_row(
        "contacts",
        [
            field_row("contacts", "name"),
            field_row(
                "contacts", "company", "manyToOne", related_schema_id="companies", display_in_table=True
            ),
            field_row("contacts", "tags", "manyToMany", related_schema_id="tags", display_in_table=True),
            field_row("contacts", "notes", "oneToMany", related_schema_id="notes"),
        ],
    ),
    "companies": schema_row("companies", [field_row("companies", "name")]),
    "tags": schema_row("tags", [field_row("tags", "label")]),
}


def instance_row(instance_id, schema_id, name):
    return {
        "id": instance_id,
        "slug": name.lower(),
        "schema_id": schema_id,
        "tenant_id": "acme",
        "data": {"name": name},
    }


def edge_row(source_id, field_id, target_id):
    return {
        "id": f"{source_id}-{target_id}",
        "source_instance_id": source_id,
        "field_id": field_id,
        "target_instance_id": target_id,
        "relation_type": "many",
    }


def related_row(source_id, field_id, target_id, schema_id, name):
    return {
        "source_instance_id": source_id,
        "field_id": field_id,
        "target_instance_id": target_id,
        "target_slug": name.lower(),
        "target_schema_id": schema_id,
        "target_tenant_id": "acme",
        "target_data": {"name": name},
        "target_created_at": None,
        "target_updated_at": None,
    }


@pytest.fixture
def store():
    store = MagicMock()
    store.fetch_schema = AsyncMock(side_effect=lambda schema_id: SCHEMAS.get(schema_id))
    store.get_edges = AsyncMock(return_value=[])
    store.get_instances = AsyncMock(return_value=[])
    store.get_related_instances = AsyncMock(return_value=[])
    store.find_edges_any = AsyncMock(return_value=[])
    store.find_edges_for_field = AsyncMock(return_value=[])
    return store


@pytest.fixture
def resolver(store):
    return RelationResolver(store, SchemaCache(store, ClientOptions()), "acme")


@pytest.fixture
def contacts():
    return EntitySchema.from_row(SCHEMAS["contacts"])


class TestSplitFilters:
    """Tests for split_filters."""

    def test_partitions_by_field_kind(self, contacts):
        """Relation fields become relation filters, everything else equality."""
        ordinary, relation = split_filters(
            contacts, {"company": ["co1"], "name": "Jane", "city": ["Paris"]}
        )
        assert ordinary == {"name": ("Jane",), "city": ("Paris",)}
        assert relation == [RelationFilter("company", "contacts.company", ("co1",))]

    def test_drops_empty_values(self, contacts):
        ordinary, relation = split_filters(contacts, {"company": [], "name": ["", None]})
        assert ordinary == {}
        assert relation == []


class TestFilterMode:
    def test_parse(self):
        assert FilterMode.from_str("all") is FilterMode.ALL
        assert FilterMode.from_str("any") is FilterMode.ANY

    def test_unknown_mode_means_any(self, caplog):
        """Values other than all fall back to any with a warning."""
        with caplog.at_level(logging.WARNING):
            assert FilterMode.from_str("some") is FilterMode.ANY
            assert FilterMode.from_str("") is FilterMode.ANY
        assert "Unknown relation filter mode" in caplog.text


class TestResolveOne:
    """Tests for RelationResolver.resolve_one."""

    @pytest.mark.asyncio
    async def test_batched_reads(self, resolver, store, contacts):
        """One edge read and one target read, grouped by field in edge order."""
        store.get_edges.return_value = [
            edge_row("c1", "contacts.company", "co1"),
            edge_row("c1", "contacts.tags", "t2"),
            edge_row("c1", "contacts.tags", "t1"),
        ]
        store.get_instances.return_value = [
            instance_row("t1", "tags", "Hot"),
            instance_row("co1", "companies", "Acme"),
            instance_row("t2", "tags", "Cold"),
        ]

        result = await resolver.resolve_one(contacts, "c1")

        assert store.get_edges.await_count == 1
        assert store.get_instances.await_count == 1
        assert store.get_instances.await_args.args == ("acme", ["co1", "t2", "t1"])
        assert [t.id for t in result["company"]] == ["co1"]
        assert [t.id for t in result["tags"]] == ["t2", "t1"]
        assert result["notes"] == []

    @pytest.mark.asyncio
    async def test_no_edges_skips_target_read(self, resolver, store, contacts):
        result = await resolver.resolve_one(contacts, "c1")
        store.get_instances.assert_not_awaited()
        assert result == {"company": [], "tags": [], "notes": []}

    @pytest.mark.asyncio
    async def test_missing_target_is_skipped(self, resolver, store, contacts):
        """Edges to unreadable targets are dropped."""
        store.get_edges.return_value = [
            edge_row("c1", "contacts.company", "gone")
        ]
        result = await resolver.resolve_one(contacts, "c1")
        assert result["company"] == []

    @pytest.mark.asyncio
    async def test_store_failure(self, resolver, store, contacts):
        """Failures name the operation and instance."""
        store.get_edges.side_effect = StoreError("boom")
        with pytest.raises(ResolutionError) as exc_info:
            await resolver.resolve_one(contacts, "c1")
        assert exc_info.value.operation == "load_relations"
        assert exc_info.value.instance_id == "c1"


class TestResolveMany:
    """Tests for RelationResolver.resolve_many."""

    @pytest.mark.asyncio
    async def test_single_read_for_page(self, resolver, store, contacts):
        """One combined read, one schema load per distinct target schema."""
        store.get_related_instances.return_value = [
            related_row("c1", "contacts.company", "co1", "companies", "Acme"),
            related_row("c2", "contacts.company", "co1", "companies", "Acme"),
            related_row("c1", "contacts.tags", "t1", "tags", "Hot"),
            related_row("c3", "contacts.company", "co2", "companies", "Globex"),
        ]

        result = await resolver.resolve_many(contacts, ["c1", "c2", "c3"])

        assert store.get_related_instances.await_count == 1
        args = store.get_related_instances.await_args.args
        assert args[0] == "acme"
        assert args[1] == ["c1", "c2", "c3"]
        assert set(args[2]) == {"contacts.company", "contacts.tags"}
        loaded = [c.args[0] for c in store.fetch_schema.await_args_list]
        assert sorted(loaded) == ["companies", "tags"]

        assert result["c1"]["company"][0]["name"] == "Acme"
        assert result["c1"]["tags"][0]["slug"] == "hot"
        assert result["c2"]["tags"] == []
        assert result["c3"]["company"][0]["id"] == "co2"
        assert "notes" not in result["c1"]

    @pytest.mark.asyncio
    async def test_relations_as_ids_loads_no_schemas(self, resolver, store, contacts):
        store.get_related_instances.return_value = [
            related_row("c1", "contacts.company", "co1", "companies", "Acme"),
        ]
        result = await resolver.resolve_many(contacts, ["c1"], relations_as_ids=True)
        store.fetch_schema.assert_not_awaited()
        assert result["c1"]["company"][0]["id"] == "co1"

    @pytest.mark.asyncio
    async def test_all_relation_fields(self, resolver, store, contacts):
        """Without the display filter every relation field is resolved."""
        result = await resolver.resolve_many(contacts, ["c1"], only_display_in_table=False)
        assert set(result["c1"]) == {"company", "tags", "notes"}

    @pytest.mark.asyncio
    async def test_empty_page(self, resolver, store, contacts):
        assert await resolver.resolve_many(contacts, []) == {}
        store.get_related_instances.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_target_schema_failure(self, resolver, store, contacts):
        """An unloadable target schema fails the whole call."""
        store.get_related_instances.return_value = [
            related_row("c1", "contacts.company", "x1", "vanished", "X"),
        ]
        with pytest.raises(ResolutionError) as exc_info:
            await resolver.resolve_many(contacts, ["c1"])
        assert exc_info.value.operation == "load_target_schema"

    @pytest.mark.asyncio
    async def test_read_failure(self, resolver, store, contacts):
        store.get_related_instances.side_effect = StoreError("boom")
        with pytest.raises(ResolutionError) as exc_info:
            await resolver.resolve_many(contacts, ["c1"])
        assert exc_info.value.operation == "load_related_instances"


def edge(source, target):
    return {"source_instance_id": source, "target_instance_id": target}


class TestComputeAllowedIds:
    """Tests for RelationResolver.compute_allowed_ids.

    Instance X links to A and B, Y links to A, Z links to B.
    """

    TAGS = RelationFilter("tags", "contacts.tags", ("A", "B"))

    @pytest.mark.asyncio
    async def test_no_filters(self, resolver):
        assert await resolver.compute_allowed_ids([]) is None

    @pytest.mark.asyncio
    async def test_any_mode(self, resolver, store):
        """any keeps sources linked to at least one target, in one read."""
        store.find_edges_any.return_value = [edge("X", "A"), edge("X", "B"), edge("Y", "A"), edge("Z", "B")]

        allowed = await resolver.compute_allowed_ids([self.TAGS])

        assert allowed == {"X", "Y", "Z"}
        store.find_edges_any.assert_awaited_once_with(
            [("contacts.tags", "A"), ("contacts.tags", "B")]
        )

    @pytest.mark.asyncio
    async def test_all_mode(self, resolver, store):
        """all keeps only sources linked to every target."""
        store.find_edges_for_field.return_value = [
            edge("X", "A"),
            edge("X", "B"),
            edge("Y", "A"),
            edge("Z", "B"),
        ]

        allowed = await resolver.compute_allowed_ids([self.TAGS], {"tags": "all"})

        assert allowed == {"X"}
        store.find_edges_any.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_all_with_no_match_is_empty(self, resolver, store):
        store.find_edges_for_field.return_value = [edge("Y", "A")]
        assert await resolver.compute_allowed_ids([self.TAGS], {"tags": "all"}) == set()

    @pytest.mark.asyncio
    async def test_any_and_all_intersect(self, resolver, store):
        """Mixed modes intersect the any-set with the all-set."""
        company = RelationFilter("company", "contacts.company", ("co1",))
        store.find_edges_any.return_value = [edge("X", "co1"), edge("Z", "co1")]
        store.find_edges_for_field.return_value = [edge("X", "A"), edge("X", "B"), edge("Y", "B")]

        allowed = await resolver.compute_allowed_ids([company, self.TAGS], {"tags": "all"})

        assert allowed == {"X"}

    @pytest.mark.asyncio
    async def test_unknown_mode_filters_as_any(self, resolver, store):
        store.find_edges_any.return_value = [edge("X", "A"), edge("Z", "B")]

        allowed = await resolver.compute_allowed_ids([self.TAGS], {"tags": "most"})

        assert allowed == {"X", "Z"}
        store.find_edges_for_field.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_store_failure(self, resolver, store):
        store.find_edges_any.side_effect = StoreError("boom")
        with pytest.raises(ResolutionError) as exc_info:
            await resolver.compute_allowed_ids([self.TAGS])
        assert exc_info.value.operation == "filter_relations"

"""
Unit tests for the flatten transform and write payloads.

Tests cover:
- Key order and absence of a "relations" key
- Cardinality collapse
- relations_as_ids
- Target id normalization and payload splitting
"""

import pytest

from sdk.entbase_sdk.errors import ValidationError
from sdk.entbase_sdk.schema import EntityInstance, FieldSpec
from sdk.entbase_sdk.transform import (
    IDENTITY_KEYS,
    InstancePayload,
    flatten_instance,
    normalize_target_ids,
    split_payload,
)


def relation_field(name, db_type):
    return FieldSpec.from_row(
        {
            "id": f"f_{name}",
            "schema_id": "contacts",
            "name": name,
            "db_type": db_type,
            "related_schema_id": "companies",
        }
    )


@pytest.fixture
def instance():
    return EntityInstance(
        id="c1",
        slug="jane",
        schema_id="contacts",
        tenant_id="acme",
        data={"name": "Jane", "email": "jane@acme.test"},
        created_by="u1",
        created_at="2024-01-01T00:00:00+00:00",
        updated_at="2024-01-02T00:00:00+00:00",
    )


@pytest.fixture
def companies():
    return [
        EntityInstance(id="co1", slug="acme", schema_id="companies", tenant_id="acme", data={"name": "Acme"}),
        EntityInstance(id="co2", slug="globex", schema_id="companies", tenant_id="acme", data={"name": "Globex"}),
    ]


class TestFlattenInstance:
    """Tests for flatten_instance."""

    def test_identity_keys_first(self, instance):
        """Identity keys lead, data follows, created_by is not exposed."""
        record = flatten_instance(instance, ())
        assert list(record)[: len(IDENTITY_KEYS)] == list(IDENTITY_KEYS)
        assert record["name"] == "Jane"
        assert "created_by" not in record
        assert "relations" not in record

    def test_single_cardinality_takes_first(self, instance, companies):
        """manyToOne collapses to the first target record."""
        fields = [relation_field("company", "manyToOne")]
        record = flatten_instance(instance, fields, {"company": companies})
        assert record["company"]["id"] == "co1"
        assert record["company"]["name"] == "Acme"
        assert "relations" not in record

    def test_single_cardinality_empty_is_none(self, instance):
        fields = [relation_field("company", "oneToOne")]
        assert flatten_instance(instance, fields, {"company": []})["company"] is None

    def test_multi_cardinality_keeps_list(self, instance, companies):
        fields = [relation_field("partners", "manyToMany")]
        record = flatten_instance(instance, fields, {"partners": companies})
        assert [c["slug"] for c in record["partners"]] == ["acme", "globex"]

    def test_unknown_field_is_list(self, instance, companies):
        """Relations with no matching field stay lists."""
        record = flatten_instance(instance, (), {"other": companies[:1]})
        assert isinstance(record["other"], list)

    def test_relations_as_ids(self, instance, companies):
        """Ids only, regardless of cardinality."""
        fields = [relation_field("company", "manyToOne")]
        record = flatten_instance(instance, fields, {"company": companies}, relations_as_ids=True)
        assert record["company"] == ["co1", "co2"]

    def test_flat_record_targets_pass_through(self, instance):
        """Already flattened targets are used as they are."""
        fields = [relation_field("company", "manyToOne")]
        target = {"id": "co1", "name": "Acme"}
        record = flatten_instance(instance, fields, {"company": [target]})
        assert record["company"] is target

    def test_deterministic(self, instance, companies):
        fields = [relation_field("company", "manyToOne")]
        first = flatten_instance(instance, fields, {"company": companies})
        second = flatten_instance(instance, fields, {"company": companies})
        assert first == second
        assert list(first) == list(second)


class TestPayload:
    """Tests for write payload helpers."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            (None, []),
            ("", []),
            ("co1", ["co1"]),
            (["co1", "", None, "co2"], ["co1", "co2"]),
            (("co1",), ["co1"]),
        ],
    )
    def test_normalize_target_ids(self, value, expected):
        assert normalize_target_ids(value) == expected

    def test_split_mapping(self):
        """Mappings become InstancePayload."""
        payload = split_payload({"data": {"name": "Acme"}, "relations": {"company": "co1"}})
        assert payload.data == {"name": "Acme"}
        assert payload.target_ids() == {"company": ["co1"]}

    def test_split_without_relations(self):
        """Absent relations stay None so updates leave edges alone."""
        payload = split_payload({"data": {"name": "Acme"}})
        assert payload.relations is None
        assert payload.target_ids() == {}

    def test_split_passes_payload_through(self):
        payload = InstancePayload(data={"name": "x"})
        assert split_payload(payload) is payload

    @pytest.mark.parametrize(
        "raw,field_name",
        [({"data": ["x"]}, "data"), ({"data": {}, "relations": ["co1"]}, "relations")],
    )
    def test_split_rejects_non_objects(self, raw, field_name):
        with pytest.raises(ValidationError) as exc_info:
            split_payload(raw)
        assert exc_info.value.field_name == field_name

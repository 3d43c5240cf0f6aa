"""
Unit tests for registry core types.

Tests cover:
- SchemaFormat and CompatibilityMode parsing
- FieldDescriptor defaults and serialization
- FieldModel invariants
- SchemaRecord validation
- Content hashing
"""

import pytest

from registry.schemahub_server.schema.types import (
    MAX_SCHEMA_ID,
    CompatibilityMode,
    FieldDescriptor,
    FieldModel,
    SchemaDraft,
    SchemaFormat,
    SchemaGroup,
    SchemaRecord,
    content_hash,
    field,
)


class TestSchemaFormat:
    """Tests for SchemaFormat."""

    def test_from_str_is_case_insensitive(self):
        """Format names parse regardless of case."""
        assert SchemaFormat.from_str("avro") is SchemaFormat.AVRO
        assert SchemaFormat.from_str("Json") is SchemaFormat.JSON

    def test_unknown_format_is_opaque(self):
        """Unknown or missing formats are stored opaquely."""
        assert SchemaFormat.from_str("thrift") is SchemaFormat.OPAQUE
        assert SchemaFormat.from_str(None) is SchemaFormat.OPAQUE
        assert SchemaFormat.from_str("") is SchemaFormat.OPAQUE


class TestCompatibilityMode:
    """Tests for CompatibilityMode."""

    def test_directions(self):
        """Each mode checks the documented directions."""
        assert CompatibilityMode.BACKWARD.checks_backward
        assert not CompatibilityMode.BACKWARD.checks_forward
        assert CompatibilityMode.FORWARD.checks_forward
        assert not CompatibilityMode.FORWARD.checks_backward
        assert CompatibilityMode.FULL.checks_backward and CompatibilityMode.FULL.checks_forward
        assert not CompatibilityMode.NONE.checks_backward
        assert not CompatibilityMode.NONE.checks_forward

    def test_transitive_flag(self):
        """Only *_TRANSITIVE modes are transitive."""
        transitive = {m for m in CompatibilityMode if m.is_transitive}
        assert transitive == {
            CompatibilityMode.BACKWARD_TRANSITIVE,
            CompatibilityMode.FORWARD_TRANSITIVE,
            CompatibilityMode.FULL_TRANSITIVE,
        }

    def test_from_str(self):
        """Mode names parse case-insensitively."""
        assert CompatibilityMode.from_str("full_transitive") is CompatibilityMode.FULL_TRANSITIVE

    def test_from_str_invalid(self):
        """Invalid mode names raise ValueError listing valid modes."""
        with pytest.raises(ValueError, match="Valid modes"):
            CompatibilityMode.from_str("SIDEWAYS")


class TestFieldDescriptor:
    """Tests for FieldDescriptor and the field() helper."""

    def test_field_without_default(self):
        """field() without default leaves has_default False."""
        f = field("order_id", "string")
        assert not f.has_default
        assert not f.tolerates_absence

    def test_none_default_counts_as_default(self):
        """An explicit None default is still a default."""
        f = field("note", "string", optional=True, default=None)
        assert f.has_default
        assert f.default_value is None

    def test_optional_tolerates_absence(self):
        """Optional fields tolerate absence even without a default."""
        assert field("note", "string", optional=True).tolerates_absence

    def test_dict_preserves_default_presence(self):
        """to_dict/from_dict keeps has_default, including None defaults."""
        f = field("currency", "string", optional=True, default=None)
        restored = FieldDescriptor.from_dict(f.to_dict())
        assert restored == f

        plain = FieldDescriptor.from_dict(field("id", "long").to_dict())
        assert not plain.has_default

    def test_empty_name_rejected(self):
        """Field names cannot be empty."""
        with pytest.raises(ValueError):
            FieldDescriptor(name="", type="string")


class TestFieldModel:
    """Tests for FieldModel."""

    def test_duplicate_names_rejected(self):
        """A model cannot carry two fields with the same name."""
        with pytest.raises(ValueError, match="Duplicate"):
            FieldModel(SchemaFormat.AVRO, (field("a", "int"), field("a", "long")))

    def test_lookup_by_name(self):
        """Fields are addressable by name."""
        model = FieldModel(SchemaFormat.AVRO, (field("a", "int"), field("b", "string")))
        assert model.get_field("b").type == "string"
        assert model.get_field("c") is None
        assert set(model.by_name()) == {"a", "b"}

    def test_opaque(self):
        """The opaque model has no fields."""
        model = FieldModel.opaque()
        assert model.is_opaque
        assert model.fields == ()


class TestContentHash:
    """Tests for content_hash()."""

    def test_deterministic(self):
        """Same format and bytes give the same hash."""
        assert content_hash(SchemaFormat.AVRO, b"x") == content_hash(SchemaFormat.AVRO, b"x")

    def test_format_is_part_of_identity(self):
        """Identical bytes under different formats hash differently."""
        assert content_hash(SchemaFormat.AVRO, b"{}") != content_hash(SchemaFormat.JSON, b"{}")

    def test_hex_digest(self):
        """The hash is a 64-character hex digest."""
        digest = content_hash(SchemaFormat.OPAQUE, b"")
        assert len(digest) == 64
        int(digest, 16)


class TestSchemaRecord:
    """Tests for SchemaRecord."""

    def _record(self, **overrides):
        values = dict(
            id=1,
            subject="orders",
            version=1,
            content_hash="h",
            format=SchemaFormat.AVRO,
            raw_definition=b"\x00\xff raw",
            fields=(field("id", "long"),),
            registered_at=1700000000000,
        )
        values.update(overrides)
        return SchemaRecord(**values)

    def test_id_range(self):
        """IDs must be positive and fit in 32 bits."""
        self._record(id=MAX_SCHEMA_ID)
        with pytest.raises(ValueError):
            self._record(id=0)
        with pytest.raises(ValueError):
            self._record(id=MAX_SCHEMA_ID + 1)

    def test_version_positive(self):
        """Versions start at 1."""
        with pytest.raises(ValueError):
            self._record(version=0)

    def test_dict_round_trip_keeps_raw_bytes(self):
        """Binary raw definitions survive serialization."""
        record = self._record()
        assert SchemaRecord.from_dict(record.to_dict()) == record

    def test_draft_to_record(self):
        """A draft becomes a record with the assigned id and version."""
        draft = SchemaDraft("orders", "h", SchemaFormat.JSON, b"{}", ())
        record = draft.to_record(7, 3, 123)
        assert (record.id, record.version, record.registered_at) == (7, 3, 123)
        assert record.field_model.format is SchemaFormat.JSON


class TestSchemaGroup:
    """Tests for SchemaGroup."""

    def test_to_dict_sorts_subjects(self):
        """Group members serialize in sorted order."""
        group = SchemaGroup("billing", frozenset({"payments", "invoices"}))
        assert group.to_dict() == {"name": "billing", "subjects": ["invoices", "payments"]}

"""
tests/test_schema_engine.py

Coverage:
- cell classification priority
- incremental SchemaBuilder accumulation, required fields and enum detection
- builder state resumption across batches
- schema comparison: breaking vs safe changes and approval rules
- rename suggestions for removed/added field pairs
"""

from __future__ import annotations

import unittest

from app.domain.schema_types import (
    ArrayField,
    NumberField,
    ObjectField,
    SchemaDepthExceededError,
    StringField,
    is_widening,
    schema_from_dict,
)
from app.services.schema_comparison import ChangeType, compare_schemas, name_similarity
from app.services.schema_inference import SchemaBuilder, classify_value

ROWS = [
    {"title": "Jazz Night", "capacity": "10", "kind": "music"},
    {"title": "Art Walk", "capacity": "20", "kind": "music", "extra": "x"},
    {"title": "Book Fair", "capacity": "2.5", "kind": "art"},
]


def _schema(properties: dict, required: list[str] | None = None) -> ObjectField:
    return schema_from_dict({"type": "object", "properties": properties, "required": required or []})


class TestClassifyValue(unittest.TestCase):
    def test_string_priority(self) -> None:
        self.assertEqual(classify_value("yes"), "boolean")
        self.assertEqual(classify_value("42"), "integer")
        self.assertEqual(classify_value("4.2"), "number")
        self.assertEqual(classify_value("2026-10-01"), "date")
        self.assertEqual(classify_value("2026-10-01T20:00:00"), "datetime")
        self.assertEqual(classify_value("2026-13-45"), "string")
        self.assertEqual(classify_value("Jazz"), "string")

    def test_native_values(self) -> None:
        self.assertEqual(classify_value(None), "null")
        self.assertEqual(classify_value("   "), "null")
        self.assertEqual(classify_value(True), "boolean")
        self.assertEqual(classify_value(3), "integer")
        self.assertEqual(classify_value(float("nan")), "null")
        self.assertEqual(classify_value({"a": 1}), "object")
        self.assertEqual(classify_value([1]), "array")


class TestSchemaBuilder(unittest.TestCase):
    def test_builds_typed_schema_with_required_and_enum(self) -> None:
        builder = SchemaBuilder(enum_threshold=5)
        self.assertEqual(builder.observe_rows(ROWS), 3)
        schema = builder.build_schema()

        self.assertEqual(schema.required, ("title", "capacity", "kind"))
        self.assertEqual(schema.properties["title"], StringField())
        self.assertEqual(schema.properties["capacity"], NumberField(integer=False))
        self.assertEqual(schema.properties["kind"], StringField(enum=("art", "music")))
        self.assertEqual(schema.properties["extra"], StringField())

    def test_percentage_enum_mode(self) -> None:
        builder = SchemaBuilder(enum_threshold=50, enum_mode="percentage")
        builder.observe_rows(ROWS)
        self.assertIsNone(builder.build_schema().properties["kind"].enum)

    def test_state_round_trip_resumes_accumulation(self) -> None:
        first = SchemaBuilder(enum_threshold=5)
        first.observe_rows(ROWS[:2])
        resumed = SchemaBuilder(enum_threshold=5, state=first.to_state())
        resumed.observe_rows(ROWS[2:])

        single_pass = SchemaBuilder(enum_threshold=5)
        single_pass.observe_rows(ROWS)

        self.assertEqual(resumed.rows_seen, 3)
        self.assertEqual(resumed.build_schema(), single_pass.build_schema())
        self.assertEqual(first.rows_seen, 2)

    def test_field_metadata(self) -> None:
        builder = SchemaBuilder(enum_threshold=5)
        builder.observe_rows(ROWS)
        metadata = builder.field_metadata()
        self.assertEqual(metadata["extra"]["occurrences"], 1)
        self.assertAlmostEqual(metadata["extra"]["occurrence_percent"], 33.33)
        self.assertEqual(metadata["capacity"]["numeric"], {"min": 2.5, "max": 20.0})
        self.assertTrue(metadata["kind"]["is_enum_candidate"])

    def test_nested_objects_and_arrays(self) -> None:
        builder = SchemaBuilder()
        builder.observe_rows([{"meta": {"city": "Berlin"}, "tags": ["a", "b"]}])
        schema = builder.build_schema()
        meta = schema.properties["meta"]
        self.assertIsInstance(meta, ObjectField)
        self.assertEqual(meta.required, ("city",))
        self.assertEqual(schema.properties["tags"], ArrayField(items=StringField()))

    def test_depth_limit(self) -> None:
        builder = SchemaBuilder(max_depth=1)
        with self.assertRaises(SchemaDepthExceededError):
            builder.observe_rows([{"a": {"b": {"c": 1}}}])

    def test_stored_dict_round_trip(self) -> None:
        builder = SchemaBuilder(enum_threshold=5)
        builder.observe_rows(ROWS)
        schema = builder.build_schema()
        self.assertEqual(schema_from_dict(schema.to_dict()), schema)


class TestWidening(unittest.TestCase):
    def test_widening_rules(self) -> None:
        self.assertTrue(is_widening(NumberField(integer=True), NumberField(integer=False)))
        self.assertFalse(is_widening(NumberField(integer=False), NumberField(integer=True)))
        self.assertTrue(is_widening(NumberField(integer=True), StringField()))
        self.assertFalse(is_widening(StringField(), NumberField(integer=True)))


class TestCompareSchemas(unittest.TestCase):
    def setUp(self) -> None:
        self.published = _schema(
            {
                "title": {"type": "string"},
                "venue": {"type": "string"},
                "capacity": {"type": "integer"},
                "kind": {"type": "string", "enum": ["art", "music"]},
            },
            required=["title"],
        )

    def test_first_version_is_all_new_fields(self) -> None:
        comparison = compare_schemas(None, self.published)
        self.assertTrue(comparison.is_first_version)
        self.assertFalse(comparison.is_breaking)
        self.assertFalse(comparison.requires_approval)
        self.assertTrue(comparison.can_auto_approve)
        self.assertEqual(len(comparison.paths_of(ChangeType.NEW_FIELD)), 4)

    def test_identical_schema_has_no_changes(self) -> None:
        comparison = compare_schemas(self.published, self.published)
        self.assertFalse(comparison.has_changes)
        self.assertEqual(comparison.summary, "No schema changes detected")

    def test_removed_field_is_breaking(self) -> None:
        detected = _schema(
            {
                "title": {"type": "string"},
                "capacity": {"type": "integer"},
                "kind": {"type": "string", "enum": ["art", "music"]},
            },
            required=["title"],
        )
        comparison = compare_schemas(self.published, detected)
        self.assertEqual(comparison.paths_of(ChangeType.REMOVED_FIELD), ["venue"])
        self.assertTrue(comparison.is_breaking)
        self.assertTrue(comparison.requires_approval)
        self.assertIn("Breaking Changes:", comparison.summary)

    def test_new_field_and_widening_are_safe(self) -> None:
        detected = _schema(
            {
                "title": {"type": "string"},
                "venue": {"type": "string"},
                "capacity": {"type": "number"},
                "kind": {"type": "string", "enum": ["art", "music", "film"]},
                "price": {"type": "number"},
            },
            required=["title"],
        )
        comparison = compare_schemas(self.published, detected)
        types = sorted(change.type for change in comparison.changes)
        self.assertEqual(types, [ChangeType.ENUM_CHANGE, ChangeType.NEW_FIELD, ChangeType.TYPE_CHANGE])
        self.assertFalse(comparison.is_breaking)
        self.assertFalse(comparison.requires_approval)
        self.assertTrue(comparison.can_auto_approve)

    def test_new_required_field_is_breaking(self) -> None:
        detected = _schema(
            {
                "title": {"type": "string"},
                "venue": {"type": "string"},
                "capacity": {"type": "integer"},
                "kind": {"type": "string", "enum": ["art", "music"]},
                "category": {"type": "string"},
            },
            required=["title", "category"],
        )
        comparison = compare_schemas(self.published, detected, schema_config={"auto_grow": True})
        (change,) = comparison.changes
        self.assertEqual((change.type, change.path), (ChangeType.NEW_FIELD, "category"))
        self.assertTrue(change.breaking)
        self.assertFalse(change.auto_approvable)
        self.assertTrue(comparison.is_breaking)
        self.assertTrue(comparison.requires_approval)
        self.assertFalse(comparison.can_auto_approve)

    def test_field_becoming_required_is_breaking(self) -> None:
        detected = _schema(
            {
                "title": {"type": "string"},
                "venue": {"type": "string"},
                "capacity": {"type": "integer"},
                "kind": {"type": "string", "enum": ["art", "music"]},
            },
            required=["title", "kind"],
        )
        comparison = compare_schemas(self.published, detected)
        (change,) = comparison.changes
        self.assertEqual((change.type, change.path), (ChangeType.REQUIRED_CHANGE, "kind"))
        self.assertTrue(change.breaking)
        self.assertTrue(comparison.requires_approval)

    def test_field_becoming_optional_is_safe(self) -> None:
        detected = _schema(
            {
                "title": {"type": "string"},
                "venue": {"type": "string"},
                "capacity": {"type": "integer"},
                "kind": {"type": "string", "enum": ["art", "music"]},
            },
        )
        comparison = compare_schemas(self.published, detected)
        self.assertEqual(comparison.paths_of(ChangeType.REQUIRED_CHANGE), ["title"])
        self.assertFalse(comparison.is_breaking)
        self.assertFalse(comparison.requires_approval)
        self.assertTrue(comparison.can_auto_approve)

    def test_narrowing_type_and_removed_enum_value_are_breaking(self) -> None:
        detected = _schema(
            {
                "title": {"type": "integer"},
                "venue": {"type": "string"},
                "capacity": {"type": "integer"},
                "kind": {"type": "string", "enum": ["music"]},
            },
            required=["title"],
        )
        comparison = compare_schemas(self.published, detected)
        breaking = {change.path for change in comparison.changes if change.breaking}
        self.assertEqual(breaking, {"title", "kind"})

    def test_config_forces_approval(self) -> None:
        detected = _schema(
            {
                "title": {"type": "string"},
                "venue": {"type": "string"},
                "capacity": {"type": "integer"},
                "kind": {"type": "string", "enum": ["art", "music"]},
                "price": {"type": "number"},
            },
            required=["title"],
        )
        for config in (
            {"locked": True},
            {"auto_grow": False},
            {"auto_approve_non_breaking": False},
        ):
            comparison = compare_schemas(self.published, detected, schema_config=config)
            self.assertFalse(comparison.is_breaking, config)
            self.assertTrue(comparison.requires_approval, config)
            self.assertFalse(comparison.can_auto_approve, config)


class TestRenameSuggestions(unittest.TestCase):
    def test_similar_names_are_paired(self) -> None:
        published = _schema({"venue_name": {"type": "string"}, "capacity": {"type": "string"}})
        detected = _schema({"VenueName": {"type": "string"}, "organizer": {"type": "string"}})
        comparison = compare_schemas(published, detected)
        suggestions = [suggestion.to_dict() for suggestion in comparison.transform_suggestions]
        self.assertEqual(len(suggestions), 1)
        self.assertEqual((suggestions[0]["from"], suggestions[0]["to"]), ("venue_name", "VenueName"))
        self.assertEqual(suggestions[0]["confidence"], 1.0)

    def test_name_similarity(self) -> None:
        self.assertEqual(name_similarity("meta.Start-Date", "start_date"), 1.0)
        self.assertEqual(name_similarity("", "x"), 0.0)
        self.assertLess(name_similarity("capacity", "organizer"), 0.5)

"""
tests/test_id_generation.py

Coverage:
- auto ids hash the whole row and are namespaced by dataset
- external ids with sanitization and auto fallback
- computed ids over configured fields
- hybrid preference order
"""

from __future__ import annotations

import unittest

from app.services.id_generation import (
    IdGenerator,
    InvalidSourceIdError,
    extract_field_value,
    sanitize_source_id,
)
from db.models.dataset import IdStrategyType


class TestAutoIds(unittest.TestCase):
    def test_identical_rows_share_an_id(self) -> None:
        generator = IdGenerator(dataset_id="ds-1", id_strategy=None)
        first = generator.generate({"title": "Jazz Night", "date": "2026-10-01"})
        second = generator.generate({"date": "2026-10-01", "title": "Jazz Night"})
        self.assertEqual(first.unique_id, second.unique_id)
        self.assertTrue(first.unique_id.startswith("ds-1:auto:"))
        self.assertEqual(first.strategy, IdStrategyType.AUTO)

    def test_datasets_do_not_collide(self) -> None:
        row = {"title": "Jazz Night"}
        a = IdGenerator(dataset_id="ds-1", id_strategy={"type": "auto"}).generate(row)
        b = IdGenerator(dataset_id="ds-2", id_strategy={"type": "auto"}).generate(row)
        self.assertNotEqual(a.unique_id, b.unique_id)

    def test_unknown_strategy_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            IdGenerator(dataset_id="ds-1", id_strategy={"type": "uuid4"})


class TestExternalIds(unittest.TestCase):
    def setUp(self) -> None:
        self.generator = IdGenerator(
            dataset_id="ds-1",
            id_strategy={"type": "external", "external_id_path": "meta.id"},
        )

    def test_uses_nested_source_id(self) -> None:
        result = self.generator.generate({"meta": {"id": " EV-42 "}})
        self.assertEqual(result.unique_id, "ds-1:ext:EV-42")
        self.assertEqual(result.source_id, "EV-42")
        self.assertFalse(result.missing_id)

    def test_missing_source_id_falls_back_to_auto(self) -> None:
        result = self.generator.generate({"title": "no id"})
        self.assertTrue(result.missing_id)
        self.assertIn(":auto:", result.unique_id)
        self.assertIsNone(result.error)

    def test_unsafe_source_id_is_reported(self) -> None:
        result = self.generator.generate({"meta": {"id": "drop table;"}})
        self.assertTrue(result.missing_id)
        self.assertIn("Invalid ID format", result.error)


class TestComputedAndHybridIds(unittest.TestCase):
    def test_computed_ignores_unrelated_fields(self) -> None:
        generator = IdGenerator(
            dataset_id="ds-1",
            id_strategy={"type": "computed", "computed_fields": ["title", {"field_path": "date"}]},
        )
        a = generator.generate({"title": "Art Walk", "date": "2026-10-02", "notes": "x"})
        b = generator.generate({"title": "Art Walk", "date": "2026-10-02", "notes": "y"})
        self.assertEqual(a.unique_id, b.unique_id)
        self.assertRegex(a.unique_id, r"^ds-1:comp:[0-9a-f]{16}$")

    def test_computed_with_missing_field_falls_back(self) -> None:
        generator = IdGenerator(
            dataset_id="ds-1",
            id_strategy={"type": "computed", "computed_fields": ["title", "date"]},
        )
        result = generator.generate({"title": "Art Walk"})
        self.assertTrue(result.missing_id)
        self.assertIn("date", result.error)

    def test_hybrid_prefers_external_then_computed(self) -> None:
        generator = IdGenerator(
            dataset_id="ds-1",
            id_strategy={"type": "hybrid", "external_id_path": "id", "computed_fields": ["title"]},
        )
        self.assertEqual(generator.generate({"id": "A1", "title": "x"}).unique_id, "ds-1:ext:A1")
        computed = generator.generate({"title": "x"})
        self.assertIn(":comp:", computed.unique_id)
        self.assertEqual(computed.strategy, IdStrategyType.HYBRID)


class TestHelpers(unittest.TestCase):
    def test_extract_field_value(self) -> None:
        row = {"a": {"b": {"c": 3}}, "flat": "v"}
        self.assertEqual(extract_field_value(row, "a.b.c"), 3)
        self.assertEqual(extract_field_value(row, "flat"), "v")
        self.assertIsNone(extract_field_value(row, "a.x.c"))
        self.assertIsNone(extract_field_value(row, "flat.deeper"))
        self.assertIsNone(extract_field_value(row, None))

    def test_sanitize_source_id(self) -> None:
        self.assertEqual(sanitize_source_id(123), "123")
        with self.assertRaises(InvalidSourceIdError):
            sanitize_source_id("   ")
        with self.assertRaises(InvalidSourceIdError):
            sanitize_source_id("x" * 256)
        with self.assertRaises(InvalidSourceIdError):
            sanitize_source_id("a/b")

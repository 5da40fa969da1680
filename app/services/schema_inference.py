"""
app/services/schema_inference.py

Incremental field statistics and schema inference over row batches.

The builder state is a plain JSON document so detect-schema batches can
persist it on the import job between invocations.
"""

from __future__ import annotations

import copy
import json
import logging
import math
import re
from datetime import date, datetime
from typing import Any, Iterable, Mapping

from app.domain.schema_types import (
    DEFAULT_MAX_DEPTH,
    ArrayField,
    BooleanField,
    DateField,
    FieldSchema,
    NullField,
    NumberField,
    ObjectField,
    SchemaDepthExceededError,
    StringField,
)
from app.domain.value_parsing import parse_iso_datetime

logger = logging.getLogger(__name__)

MAX_UNIQUE_SAMPLES = 100
MAX_TRACKED_VALUES = 1000

_BOOLEAN_STRINGS = {"true": True, "false": False, "yes": True, "no": False}
_INTEGER_PATTERN = re.compile(r"^-?(?:0|[1-9]\d*)$")
_NUMBER_PATTERN = re.compile(r"^-?(?:(?:0|[1-9]\d*)(?:\.\d+)?|\.\d+)(?:[eE][+-]?\d+)?$")
_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_DATETIME_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}")


# ---------------------------------------------------------------------------
# Value classification
# ---------------------------------------------------------------------------


def classify_value(value: Any) -> str:
    """
    Return the inferred type name of one cell.

    Priority for strings: boolean, integer, number, date, datetime, string.
    """

    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "integer"
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            return "null"
        return "number"
    if isinstance(value, Mapping):
        return "object"
    if isinstance(value, (list, tuple)):
        return "array"
    if isinstance(value, datetime):
        return "datetime"
    if isinstance(value, date):
        return "date"

    text = str(value).strip()
    if not text:
        return "null"
    if text.lower() in _BOOLEAN_STRINGS:
        return "boolean"
    if _INTEGER_PATTERN.match(text):
        return "integer"
    if _NUMBER_PATTERN.match(text):
        return "number"
    if _DATE_PATTERN.match(text) and parse_iso_datetime(text) is not None:
        return "date"
    if _DATETIME_PATTERN.match(text) and parse_iso_datetime(text) is not None:
        return "datetime"
    return "string"


def numeric_value(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str) and _NUMBER_PATTERN.match(value.strip()):
        return float(value.strip())
    return None


def _sample_value(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return str(value)


def _value_key(value: Any) -> str:
    return json.dumps(_sample_value(value), ensure_ascii=False)


def _empty_stats(path: str, depth: int) -> dict[str, Any]:
    return {
        "path": path,
        "depth": depth,
        "occurrences": 0,
        "null_count": 0,
        "type_distribution": {},
        "unique_samples": [],
        "value_counts": {},
        "value_counts_overflow": False,
        "numeric": None,
        "formats": {},
    }


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------


class SchemaBuilder:
    """
    Accumulates per-path statistics across batches and builds a typed schema.
    """

    def __init__(
        self,
        *,
        max_depth: int = DEFAULT_MAX_DEPTH,
        enum_threshold: int = 50,
        enum_mode: str = "count",
        state: Mapping[str, Any] | None = None,
    ) -> None:
        self._max_depth = max_depth
        self._enum_threshold = enum_threshold
        self._enum_mode = enum_mode
        # Deep copy: the loaded state is an ORM JSON value and must not be mutated in place.
        state = copy.deepcopy(dict(state or {}))
        self._rows_seen: int = int(state.get("rows_seen", 0))
        self._fields: dict[str, dict[str, Any]] = state.get("fields") or {}
        self._children: dict[str, list[str]] = state.get("children") or {}

    @property
    def rows_seen(self) -> int:
        return self._rows_seen

    def to_state(self) -> dict[str, Any]:
        return copy.deepcopy(
            {"rows_seen": self._rows_seen, "fields": self._fields, "children": self._children}
        )

    def observe_rows(self, rows: Iterable[Mapping[str, Any]]) -> int:
        count = 0
        for row in rows:
            self._observe_object(row, parent="", depth=0)
            self._rows_seen += 1
            count += 1
        return count

    # -- accumulation -------------------------------------------------------

    def _register_child(self, parent: str, name: str) -> None:
        names = self._children.setdefault(parent, [])
        if name not in names:
            names.append(name)

    def _observe_object(self, payload: Mapping[str, Any], *, parent: str, depth: int) -> None:
        for name, value in payload.items():
            key = str(name)
            path = f"{parent}.{key}" if parent else key
            self._register_child(parent, key)
            self._observe_value(path, value, depth=depth)

    def _observe_value(self, path: str, value: Any, *, depth: int) -> None:
        if depth > self._max_depth:
            raise SchemaDepthExceededError(path, self._max_depth)

        stats = self._fields.get(path)
        if stats is None:
            stats = _empty_stats(path, depth)
            self._fields[path] = stats

        value_type = classify_value(value)
        stats["occurrences"] += 1
        distribution = stats["type_distribution"]
        distribution[value_type] = distribution.get(value_type, 0) + 1

        if value_type == "null":
            stats["null_count"] += 1
            return

        if value_type == "object":
            self._observe_object(value, parent=path, depth=depth + 1)
            return
        if value_type == "array":
            items_path = f"{path}[]"
            self._register_child(path, "[]")
            for item in value:
                self._observe_value(items_path, item, depth=depth + 1)
            return

        self._track_scalar(stats, value, value_type)

    def _track_scalar(self, stats: dict[str, Any], value: Any, value_type: str) -> None:
        sample = _sample_value(value.strip() if isinstance(value, str) else value)
        samples = stats["unique_samples"]
        if len(samples) < MAX_UNIQUE_SAMPLES and sample not in samples:
            samples.append(sample)

        counts = stats["value_counts"]
        key = _value_key(sample)
        if key in counts:
            counts[key] += 1
        elif len(counts) < MAX_TRACKED_VALUES:
            counts[key] = 1
        else:
            stats["value_counts_overflow"] = True

        if value_type in {"integer", "number"}:
            number = numeric_value(value)
            if number is not None:
                current = stats["numeric"]
                if current is None:
                    stats["numeric"] = {"min": number, "max": number}
                else:
                    stats["numeric"] = {
                        "min": min(current["min"], number),
                        "max": max(current["max"], number),
                    }
        elif value_type in {"date", "datetime"}:
            formats = stats["formats"]
            formats[value_type] = formats.get(value_type, 0) + 1

    # -- queries ------------------------------------------------------------

    def field_statistics(self) -> dict[str, dict[str, Any]]:
        return copy.deepcopy(self._fields)

    def is_enum_candidate(self, stats: Mapping[str, Any]) -> bool:
        present = stats["occurrences"] - stats["null_count"]
        distinct = len(stats["value_counts"])
        if present <= 0 or distinct == 0 or stats.get("value_counts_overflow"):
            return False
        # Every value distinct means no categorical signal.
        if distinct >= present:
            return False
        if self._enum_mode == "percentage":
            return distinct / present <= self._enum_threshold / 100
        return distinct <= self._enum_threshold

    def enum_values(self, stats: Mapping[str, Any]) -> tuple[Any, ...]:
        return tuple(json.loads(key) for key in sorted(stats["value_counts"]))

    def field_metadata(self) -> dict[str, dict[str, Any]]:
        """
        Compact per-field statistics stored with schema versions.
        """

        metadata: dict[str, dict[str, Any]] = {}
        for path, stats in self._fields.items():
            occurrences = stats["occurrences"]
            metadata[path] = {
                "occurrences": occurrences,
                "occurrence_percent": round(occurrences / self._rows_seen * 100, 2) if self._rows_seen else 0.0,
                "null_count": stats["null_count"],
                "unique_values": len(stats["value_counts"]),
                "type_distribution": dict(stats["type_distribution"]),
                "numeric": stats["numeric"],
                "formats": dict(stats["formats"]),
                "is_enum_candidate": self.is_enum_candidate(stats),
            }
        return metadata

    def build_schema(self) -> ObjectField:
        return self._build_object(parent="", parent_present=self._rows_seen)

    def _build_object(self, *, parent: str, parent_present: int) -> ObjectField:
        properties: dict[str, FieldSchema] = {}
        required: list[str] = []
        for name in self._children.get(parent, []):
            if name == "[]":
                continue
            path = f"{parent}.{name}" if parent else name
            stats = self._fields.get(path)
            if stats is None:
                continue
            properties[name] = self._build_field(path, stats)
            present = stats["occurrences"] - stats["null_count"]
            if parent_present > 0 and present >= parent_present:
                required.append(name)
        return ObjectField(properties=properties, required=tuple(required))

    def _build_field(self, path: str, stats: Mapping[str, Any]) -> FieldSchema:
        types = {name for name, count in stats["type_distribution"].items() if count and name != "null"}
        if not types:
            return NullField()
        if types == {"object"}:
            return self._build_object(parent=path, parent_present=stats["type_distribution"]["object"])
        if types == {"array"}:
            items_stats = self._fields.get(f"{path}[]")
            return ArrayField(items=self._build_field(f"{path}[]", items_stats) if items_stats else None)
        if types == {"boolean"}:
            return BooleanField()
        if types <= {"integer", "number"}:
            enum = None
            if self.is_enum_candidate(stats):
                numbers = sorted({numeric_value(value) for value in self.enum_values(stats)} - {None})
                enum = tuple(int(number) if types == {"integer"} else number for number in numbers)
            return NumberField(integer=types == {"integer"}, enum=enum)
        if types <= {"date", "datetime"}:
            return DateField(has_time="datetime" in types)

        enum = self.enum_values(stats) if self.is_enum_candidate(stats) else None
        if enum is not None:
            enum = tuple(str(value) for value in enum)
        return StringField(enum=enum)

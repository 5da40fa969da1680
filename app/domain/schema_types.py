"""
app/domain/schema_types.py

Typed field-schema variants for inferred dataset schemas.

A schema is an ObjectField tree. Each variant serializes to a small
JSON-schema-like dict so versions can be stored as plain JSON documents.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Union

DEFAULT_MAX_DEPTH = 5


class SchemaDepthExceededError(ValueError):
    """
    Raised when nested objects/arrays go deeper than the configured limit.
    """

    def __init__(self, path: str, max_depth: int) -> None:
        self.path = path
        self.max_depth = max_depth
        super().__init__(f"Schema nesting deeper than {max_depth} levels at {path!r}")


@dataclass(frozen=True)
class NullField:
    type_name: ClassVar[str] = "null"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type_name}


@dataclass(frozen=True)
class StringField:
    type_name: ClassVar[str] = "string"
    enum: tuple[Any, ...] | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": self.type_name}
        if self.enum is not None:
            payload["enum"] = list(self.enum)
        return payload


@dataclass(frozen=True)
class NumberField:
    integer: bool = False
    enum: tuple[Any, ...] | None = None

    @property
    def type_name(self) -> str:
        return "integer" if self.integer else "number"

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": self.type_name}
        if self.enum is not None:
            payload["enum"] = list(self.enum)
        return payload


@dataclass(frozen=True)
class BooleanField:
    type_name: ClassVar[str] = "boolean"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type_name}


@dataclass(frozen=True)
class DateField:
    type_name: ClassVar[str] = "date"
    has_time: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type_name, "format": "date-time" if self.has_time else "date"}


@dataclass(frozen=True)
class ArrayField:
    type_name: ClassVar[str] = "array"
    items: FieldSchema | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": self.type_name}
        if self.items is not None:
            payload["items"] = self.items.to_dict()
        return payload


@dataclass(frozen=True)
class ObjectField:
    type_name: ClassVar[str] = "object"
    properties: dict[str, FieldSchema] = field(default_factory=dict)
    required: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type_name,
            "properties": {name: field_schema.to_dict() for name, field_schema in self.properties.items()},
            "required": list(self.required),
        }


FieldSchema = Union[NullField, StringField, NumberField, BooleanField, DateField, ArrayField, ObjectField]


def field_from_dict(payload: dict[str, Any], *, path: str = "", depth: int = 0, max_depth: int = DEFAULT_MAX_DEPTH) -> FieldSchema:
    """
    Rebuild a typed field from its stored dict form.
    """

    if depth > max_depth:
        raise SchemaDepthExceededError(path or "$", max_depth)

    type_name = payload.get("type")
    enum_values = payload.get("enum")
    enum = tuple(enum_values) if isinstance(enum_values, list) else None

    if type_name == "string":
        return StringField(enum=enum)
    if type_name in {"integer", "number"}:
        return NumberField(integer=type_name == "integer", enum=enum)
    if type_name == "boolean":
        return BooleanField()
    if type_name == "date":
        return DateField(has_time=payload.get("format") == "date-time")
    if type_name == "array":
        items = payload.get("items")
        return ArrayField(
            items=field_from_dict(items, path=f"{path}[]", depth=depth + 1, max_depth=max_depth)
            if isinstance(items, dict)
            else None
        )
    if type_name == "object":
        properties = payload.get("properties") or {}
        return ObjectField(
            properties={
                name: field_from_dict(
                    field_schema,
                    path=f"{path}.{name}" if path else name,
                    depth=depth + 1,
                    max_depth=max_depth,
                )
                for name, field_schema in properties.items()
            },
            required=tuple(payload.get("required") or ()),
        )
    return NullField()


def schema_from_dict(payload: dict[str, Any] | None, *, max_depth: int = DEFAULT_MAX_DEPTH) -> ObjectField:
    if not payload:
        return ObjectField()
    parsed = field_from_dict(payload, max_depth=max_depth)
    if not isinstance(parsed, ObjectField):
        raise ValueError("Dataset schema root must be an object")
    return parsed


def flatten_fields(schema: ObjectField, *, prefix: str = "") -> dict[str, tuple[FieldSchema, bool]]:
    """
    Flatten an object tree to `path -> (field, required)`.

    Nested object properties are addressed with dotted paths; the object
    itself is also listed so a removed parent shows up as one change.
    """

    flat: dict[str, tuple[FieldSchema, bool]] = {}
    required = set(schema.required)
    for name, field_schema in schema.properties.items():
        path = f"{prefix}.{name}" if prefix else name
        flat[path] = (field_schema, name in required)
        if isinstance(field_schema, ObjectField):
            flat.update(flatten_fields(field_schema, prefix=path))
    return flat


def type_label(field_schema: FieldSchema) -> str:
    return field_schema.type_name


def is_widening(old: FieldSchema, new: FieldSchema) -> bool:
    """
    True when values valid under `old` remain valid under `new`.
    """

    if isinstance(old, NullField):
        return True
    if isinstance(new, StringField) and new.enum is None:
        return True
    if isinstance(old, NumberField) and isinstance(new, NumberField):
        return old.integer or not new.integer
    if isinstance(old, DateField) and isinstance(new, DateField):
        return new.has_time or not old.has_time
    return False

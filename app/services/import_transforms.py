"""
app/services/import_transforms.py

Dataset-level transform rules applied to rows before schema detection and
event creation.
"""

from __future__ import annotations

import copy
import logging
from typing import Any, Iterable, Mapping, Sequence

from app.domain.value_parsing import parse_timestamp

logger = logging.getLogger(__name__)

TRANSFORM_TYPES = ("rename", "date_parse", "string_op", "concatenate", "split", "type_cast")

_MISSING = object()


class TransformError(ValueError):
    """
    Raised when a cast with the `reject` strategy cannot convert a value.
    """


# ---------------------------------------------------------------------------
# Path helpers
# ---------------------------------------------------------------------------


def get_by_path(data: Mapping[str, Any], path: str) -> Any:
    current: Any = data
    for part in path.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return _MISSING
        current = current[part]
    return current


def set_by_path(data: dict[str, Any], path: str, value: Any) -> None:
    parts = path.split(".")
    current = data
    for part in parts[:-1]:
        child = current.get(part)
        if not isinstance(child, dict):
            child = {}
            current[part] = child
        current = child
    current[parts[-1]] = value


def delete_by_path(data: dict[str, Any], path: str) -> None:
    parts = path.split(".")
    current: Any = data
    for part in parts[:-1]:
        current = current.get(part) if isinstance(current, dict) else None
        if current is None:
            return
    if isinstance(current, dict):
        current.pop(parts[-1], None)


# ---------------------------------------------------------------------------
# Individual transforms
# ---------------------------------------------------------------------------


def _rename(data: dict[str, Any], rule: Mapping[str, Any]) -> None:
    value = get_by_path(data, rule["from"])
    if value is _MISSING:
        return
    delete_by_path(data, rule["from"])
    set_by_path(data, rule["to"], value)


def _date_parse(data: dict[str, Any], rule: Mapping[str, Any]) -> None:
    value = get_by_path(data, rule["from"])
    if not isinstance(value, str):
        return
    parsed = parse_timestamp(value)
    if parsed is None:
        return
    output_format = rule.get("output_format") or "%Y-%m-%d"
    set_by_path(data, rule.get("to") or rule["from"], parsed.strftime(output_format))


def _string_op(data: dict[str, Any], rule: Mapping[str, Any]) -> None:
    value = get_by_path(data, rule["from"])
    if not isinstance(value, str):
        return
    operation = rule.get("operation")
    if operation == "uppercase":
        result = value.upper()
    elif operation == "lowercase":
        result = value.lower()
    elif operation == "trim":
        result = value.strip()
    elif operation == "replace" and rule.get("pattern") is not None:
        result = value.replace(str(rule["pattern"]), str(rule.get("replacement") or ""))
    else:
        result = value
    set_by_path(data, rule["from"], result)


def _concatenate(data: dict[str, Any], rule: Mapping[str, Any]) -> None:
    values = []
    for path in rule.get("from_fields") or ():
        value = get_by_path(data, path)
        if value is not _MISSING and value is not None:
            values.append(str(value))
    if values:
        set_by_path(data, rule["to"], str(rule.get("separator", " ")).join(values))


def _split(data: dict[str, Any], rule: Mapping[str, Any]) -> None:
    value = get_by_path(data, rule["from"])
    if not isinstance(value, str):
        return
    parts = value.split(rule.get("delimiter") or ",")
    for target, part in zip(rule.get("to_fields") or (), parts):
        if target:
            set_by_path(data, target, part.strip())


def _actual_type(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    return "string"


def _parse_value(value: Any, to_type: str) -> Any:
    if to_type == "number":
        try:
            number = float(str(value).strip())
        except ValueError as exc:
            raise TransformError(f"Cannot parse {value!r} as number") from exc
        return int(number) if number.is_integer() and "." not in str(value) else number
    if to_type == "boolean":
        lowered = str(value).strip().lower()
        if lowered in {"true", "1", "yes"}:
            return True
        if lowered in {"false", "0", "no"}:
            return False
        raise TransformError(f"Cannot parse {value!r} as boolean")
    if to_type == "date":
        parsed = parse_timestamp(value)
        if parsed is None:
            raise TransformError(f"Cannot parse {value!r} as date")
        return parsed.isoformat()
    if to_type == "string":
        return str(value)
    raise TransformError(f"Cannot parse to type {to_type!r}")


def _cast_value(value: Any, to_type: str) -> Any:
    if to_type == "string":
        return str(value)
    if to_type == "number":
        return float(value)
    if to_type == "boolean":
        return bool(value)
    raise TransformError(f"Cannot cast to type {to_type!r}")


def _type_cast(data: dict[str, Any], rule: Mapping[str, Any]) -> None:
    value = get_by_path(data, rule["from"])
    if value is _MISSING or value is None:
        return
    from_type = rule.get("from_type")
    if from_type and _actual_type(value) != from_type:
        return

    strategy = rule.get("strategy") or "parse"
    to_type = str(rule.get("to_type") or "string")
    if strategy == "reject":
        raise TransformError(f"Type mismatch on {rule['from']!r}: expected {to_type}, got {_actual_type(value)}")
    try:
        converted = _cast_value(value, to_type) if strategy == "cast" else _parse_value(value, to_type)
    except (TransformError, TypeError, ValueError) as exc:
        logger.warning("Type cast transform skipped field=%s error=%s", rule["from"], exc)
        return
    set_by_path(data, rule["from"], converted)


_HANDLERS = {
    "rename": _rename,
    "date_parse": _date_parse,
    "string_op": _string_op,
    "concatenate": _concatenate,
    "split": _split,
    "type_cast": _type_cast,
}


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def active_transforms(transforms: Sequence[Mapping[str, Any]] | None) -> list[Mapping[str, Any]]:
    return [rule for rule in transforms or () if rule.get("active") and rule.get("type") in _HANDLERS]


def apply_transforms(
    row: Mapping[str, Any],
    transforms: Sequence[Mapping[str, Any]] | None,
) -> dict[str, Any]:
    """
    Return a transformed copy of `row`.

    Rules run in order; inactive rules and unknown types are ignored.
    """

    result = copy.deepcopy(dict(row))
    for rule in active_transforms(transforms):
        _HANDLERS[str(rule["type"])](result, rule)
    return result


def apply_transforms_to_rows(
    rows: Iterable[Mapping[str, Any]],
    transforms: Sequence[Mapping[str, Any]] | None,
) -> list[dict[str, Any]]:
    rules = active_transforms(transforms)
    if not rules:
        return [dict(row) for row in rows]
    return [apply_transforms(row, rules) for row in rows]

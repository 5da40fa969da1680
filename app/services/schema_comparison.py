"""
app/services/schema_comparison.py

Diff an inferred schema against a dataset's published schema and classify
each change as safe or breaking.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from difflib import SequenceMatcher
from typing import Any, Mapping

from app.domain.schema_types import (
    DateField,
    FieldSchema,
    ObjectField,
    flatten_fields,
    is_widening,
)
from app.mappers.field_mapping_detector import normalize_header

SUGGESTION_THRESHOLD = 0.7
NAME_WEIGHT = 0.6
TYPE_WEIGHT = 0.4


class ChangeType:
    NEW_FIELD = "new_field"
    REMOVED_FIELD = "removed_field"
    TYPE_CHANGE = "type_change"
    ENUM_CHANGE = "enum_change"
    REQUIRED_CHANGE = "required_change"


class Severity:
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class SchemaChange:
    type: str
    path: str
    severity: str
    auto_approvable: bool
    breaking: bool
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "path": self.path,
            "severity": self.severity,
            "auto_approvable": self.auto_approvable,
            "breaking": self.breaking,
            "details": dict(self.details),
        }


@dataclass(frozen=True)
class TransformSuggestion:
    from_path: str
    to_path: str
    confidence: float
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "rename",
            "from": self.from_path,
            "to": self.to_path,
            "confidence": round(self.confidence, 4),
            "reason": self.reason,
        }


@dataclass(frozen=True)
class SchemaComparison:
    changes: tuple[SchemaChange, ...]
    is_breaking: bool
    requires_approval: bool
    can_auto_approve: bool
    is_first_version: bool
    summary: str
    transform_suggestions: tuple[TransformSuggestion, ...] = ()

    @property
    def has_changes(self) -> bool:
        return bool(self.changes)

    def paths_of(self, change_type: str) -> list[str]:
        return [change.path for change in self.changes if change.type == change_type]

    def to_dict(self) -> dict[str, Any]:
        return {
            "changes": [change.to_dict() for change in self.changes],
            "is_breaking": self.is_breaking,
            "requires_approval": self.requires_approval,
            "can_auto_approve": self.can_auto_approve,
            "is_first_version": self.is_first_version,
            "summary": self.summary,
            "new_fields": self.paths_of(ChangeType.NEW_FIELD),
            "removed_fields": self.paths_of(ChangeType.REMOVED_FIELD),
            "type_changes": [
                change.to_dict() for change in self.changes if change.type == ChangeType.TYPE_CHANGE
            ],
            "enum_changes": [
                change.to_dict() for change in self.changes if change.type == ChangeType.ENUM_CHANGE
            ],
            "transform_suggestions": [suggestion.to_dict() for suggestion in self.transform_suggestions],
        }


def type_signature(field_schema: FieldSchema) -> str:
    if isinstance(field_schema, DateField):
        return "date-time" if field_schema.has_time else "date"
    return field_schema.type_name


def _is_under(path: str, parents: set[str]) -> bool:
    return any(path.startswith(f"{parent}.") for parent in parents)


def _enum_diff(old: FieldSchema, new: FieldSchema) -> tuple[list[Any], list[Any]] | None:
    old_enum = getattr(old, "enum", None)
    new_enum = getattr(new, "enum", None)
    if old_enum is None or new_enum is None:
        return None
    added = [value for value in new_enum if value not in old_enum]
    removed = [value for value in old_enum if value not in new_enum]
    if not added and not removed:
        return None
    return added, removed


def compare_schemas(
    published: ObjectField | None,
    detected: ObjectField,
    *,
    schema_config: Mapping[str, Any] | None = None,
) -> SchemaComparison:
    """
    Classify every difference between `published` and `detected`.

    With no published schema every detected field is reported as a new
    field; the first version is never breaking on its own.
    """

    config = dict(schema_config or {})
    locked = bool(config.get("locked", False))
    auto_grow = bool(config.get("auto_grow", True))
    auto_approve_non_breaking = bool(config.get("auto_approve_non_breaking", True))

    is_first_version = published is None
    old_fields = flatten_fields(published) if published is not None else {}
    new_fields = flatten_fields(detected)
    changes: list[SchemaChange] = []

    removed_parents: set[str] = set()
    for path, (old_spec, old_required) in old_fields.items():
        if path in new_fields or _is_under(path, removed_parents):
            continue
        removed_parents.add(path)
        changes.append(
            SchemaChange(
                type=ChangeType.REMOVED_FIELD,
                path=path,
                severity=Severity.ERROR,
                auto_approvable=False,
                breaking=True,
                details={
                    "description": f"Field '{path}' was removed",
                    "old_type": type_signature(old_spec),
                    "was_required": old_required,
                },
            )
        )

    added_parents: set[str] = set()
    for path, (new_spec, new_required) in new_fields.items():
        if path in old_fields or _is_under(path, added_parents):
            continue
        added_parents.add(path)
        required_addition = new_required and not is_first_version
        changes.append(
            SchemaChange(
                type=ChangeType.NEW_FIELD,
                path=path,
                severity=Severity.ERROR if required_addition else Severity.INFO,
                auto_approvable=not required_addition,
                breaking=required_addition,
                details={
                    "description": f"Field '{path}' was added{' (required)' if new_required else ''}",
                    "new_type": type_signature(new_spec),
                    "required": new_required,
                },
            )
        )

    for path, (old_spec, old_required) in old_fields.items():
        if path not in new_fields:
            continue
        new_spec, new_required = new_fields[path]
        old_type = type_signature(old_spec)
        new_type = type_signature(new_spec)

        if old_type != new_type:
            widening = is_widening(old_spec, new_spec)
            changes.append(
                SchemaChange(
                    type=ChangeType.TYPE_CHANGE,
                    path=path,
                    severity=Severity.WARNING if widening else Severity.ERROR,
                    auto_approvable=widening,
                    breaking=not widening,
                    details={
                        "description": f"Field '{path}' type changed from {old_type} to {new_type}",
                        "old_type": old_type,
                        "new_type": new_type,
                        "widening": widening,
                    },
                )
            )
            continue

        enum_diff = _enum_diff(old_spec, new_spec)
        if enum_diff is not None:
            added, removed = enum_diff
            changes.append(
                SchemaChange(
                    type=ChangeType.ENUM_CHANGE,
                    path=path,
                    severity=Severity.WARNING if removed else Severity.INFO,
                    auto_approvable=not removed,
                    breaking=bool(removed),
                    details={
                        "description": f"Enum values changed for '{path}'",
                        "added": added,
                        "removed": removed,
                    },
                )
            )

        if old_required != new_required:
            changes.append(
                SchemaChange(
                    type=ChangeType.REQUIRED_CHANGE,
                    path=path,
                    severity=Severity.ERROR if new_required else Severity.INFO,
                    auto_approvable=not new_required,
                    breaking=new_required,
                    details={
                        "description": f"Field '{path}' became {'required' if new_required else 'optional'}",
                        "required": new_required,
                    },
                )
            )

    is_breaking = any(change.breaking for change in changes)
    requires_approval = (
        is_breaking
        or locked
        or not auto_approve_non_breaking
        or (bool(changes) and not auto_grow)
    )
    can_auto_approve = bool(changes) and not requires_approval and all(
        change.auto_approvable for change in changes
    )
    suggestions = suggest_transforms(changes, old_fields=old_fields, new_fields=new_fields)
    return SchemaComparison(
        changes=tuple(changes),
        is_breaking=is_breaking,
        requires_approval=requires_approval,
        can_auto_approve=can_auto_approve,
        is_first_version=is_first_version,
        summary=summarize_changes(changes, is_breaking=is_breaking, requires_approval=requires_approval),
        transform_suggestions=tuple(suggestions),
    )


def summarize_changes(changes: list[SchemaChange], *, is_breaking: bool, requires_approval: bool) -> str:
    if not changes:
        return "No schema changes detected"

    lines = [
        "Schema Changes Summary:",
        f"- Total changes: {len(changes)}",
        f"- Breaking changes: {'Yes' if is_breaking else 'No'}",
        f"- Requires approval: {'Yes' if requires_approval else 'No'}",
    ]
    breaking = [change for change in changes if change.breaking]
    if breaking:
        lines.append("")
        lines.append("Breaking Changes:")
        lines.extend(f"  - {change.details.get('description', change.path)}" for change in breaking)
    safe = [change for change in changes if not change.breaking]
    if safe:
        lines.append("")
        lines.append("Non-Breaking Changes:")
        lines.extend(f"  - {change.details.get('description', change.path)}" for change in safe)
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Rename suggestions
# ---------------------------------------------------------------------------


def name_similarity(left: str, right: str) -> float:
    a = normalize_header(left.rsplit(".", 1)[-1])
    b = normalize_header(right.rsplit(".", 1)[-1])
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0
    return SequenceMatcher(None, a, b).ratio()


def _types_compatible(old_spec: FieldSchema, new_spec: FieldSchema) -> bool:
    return type_signature(old_spec) == type_signature(new_spec) or is_widening(old_spec, new_spec)


def suggest_transforms(
    changes: list[SchemaChange],
    *,
    old_fields: Mapping[str, tuple[FieldSchema, bool]],
    new_fields: Mapping[str, tuple[FieldSchema, bool]],
    threshold: float = SUGGESTION_THRESHOLD,
) -> list[TransformSuggestion]:
    """
    Pair removed fields with similarly named new fields as candidate renames.
    """

    removed = [change.path for change in changes if change.type == ChangeType.REMOVED_FIELD]
    added = [change.path for change in changes if change.type == ChangeType.NEW_FIELD]
    suggestions: list[TransformSuggestion] = []
    claimed: set[str] = set()

    for removed_path in removed:
        old_spec = old_fields[removed_path][0]
        best: TransformSuggestion | None = None
        for added_path in added:
            if added_path in claimed:
                continue
            new_spec = new_fields[added_path][0]
            if not _types_compatible(old_spec, new_spec):
                continue
            similarity = name_similarity(removed_path, added_path)
            type_match = 1.0 if type_signature(old_spec) == type_signature(new_spec) else 0.5
            score = NAME_WEIGHT * similarity + TYPE_WEIGHT * type_match
            if score < threshold:
                continue
            if best is None or score > best.confidence:
                best = TransformSuggestion(
                    from_path=removed_path,
                    to_path=added_path,
                    confidence=score,
                    reason=f"name similarity {similarity:.2f}, type {type_signature(new_spec)}",
                )
        if best is not None:
            claimed.add(best.to_path)
            suggestions.append(best)

    suggestions.sort(key=lambda item: item.confidence, reverse=True)
    return suggestions

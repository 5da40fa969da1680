"""
app/services/id_generation.py

Row identity keys derived from a dataset's ID strategy.

Keys are namespaced by dataset id so equal rows in different datasets never
collide:

    external  -> "<dataset>:ext:<source id>"
    computed  -> "<dataset>:comp:<16 hex chars>"
    auto      -> "<dataset>:auto:<sha256 of the canonical row>"
    hybrid    -> external when the id column is present, else computed
"""

from __future__ import annotations

import hashlib
import json
import re
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from db.models.dataset import IdStrategyType

_SOURCE_ID_PATTERN = re.compile(r"^[\w\-.:]+$")
_MAX_SOURCE_ID_LENGTH = 255


class InvalidSourceIdError(ValueError):
    """
    Raised when an external id is empty, too long, or contains unsafe characters.
    """


@dataclass(frozen=True)
class GeneratedId:
    unique_id: str
    strategy: str
    source_id: str | None = None
    missing_id: bool = False
    error: str | None = None


def canonical_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def extract_field_value(data: Mapping[str, Any], path: str | None) -> Any:
    """
    Resolve a dotted path inside a row. Returns None when any segment is missing.
    """

    if not path:
        return None
    current: Any = data
    for part in path.split("."):
        if not isinstance(current, Mapping):
            return None
        current = current.get(part)
        if current is None:
            return None
    return current


def sanitize_source_id(value: Any) -> str:
    text = str(value).strip()
    if not text or len(text) > _MAX_SOURCE_ID_LENGTH:
        raise InvalidSourceIdError(
            f"Invalid ID length: {len(text)} (must be 1-{_MAX_SOURCE_ID_LENGTH} characters)"
        )
    if not _SOURCE_ID_PATTERN.match(text):
        raise InvalidSourceIdError(f"Invalid ID format: {text!r}")
    return text


def _computed_fields(strategy: Mapping[str, Any]) -> list[str]:
    fields: Sequence[Any] = strategy.get("computed_fields") or ()
    paths: list[str] = []
    for item in fields:
        if isinstance(item, str):
            paths.append(item)
        elif isinstance(item, Mapping) and item.get("field_path"):
            paths.append(str(item["field_path"]))
    return paths


class IdGenerator:
    """
    Computes identity keys for one dataset.
    """

    def __init__(self, *, dataset_id: Any, id_strategy: Mapping[str, Any] | None) -> None:
        self._dataset_id = str(dataset_id)
        self._strategy = dict(id_strategy or {})
        strategy_type = self._strategy.get("type") or IdStrategyType.AUTO
        if strategy_type not in IdStrategyType.ALL:
            raise ValueError(f"Unknown ID strategy: {strategy_type!r}")
        self._type = strategy_type

    @property
    def strategy_type(self) -> str:
        return self._type

    def generate(self, row: Mapping[str, Any]) -> GeneratedId:
        if self._type == IdStrategyType.EXTERNAL:
            return self._external_or_auto(row)
        if self._type == IdStrategyType.COMPUTED:
            return self._computed_or_auto(row)
        if self._type == IdStrategyType.HYBRID:
            try:
                external = self._try_external(row)
            except InvalidSourceIdError:
                external = None
            if external is not None:
                return external
            return self._computed_or_auto(row, strategy=IdStrategyType.HYBRID)
        return self.auto_id(row)

    def auto_id(self, row: Mapping[str, Any], *, strategy: str = IdStrategyType.AUTO) -> GeneratedId:
        digest = hashlib.sha256(canonical_json(row).encode("utf-8")).hexdigest()
        return GeneratedId(unique_id=f"{self._dataset_id}:auto:{digest}", strategy=strategy)

    def _try_external(self, row: Mapping[str, Any]) -> GeneratedId | None:
        raw = extract_field_value(row, self._strategy.get("external_id_path"))
        if raw is None or raw == "":
            return None
        source_id = sanitize_source_id(raw)
        return GeneratedId(
            unique_id=f"{self._dataset_id}:ext:{source_id}",
            strategy=IdStrategyType.EXTERNAL,
            source_id=source_id,
        )

    def _external_or_auto(self, row: Mapping[str, Any]) -> GeneratedId:
        try:
            generated = self._try_external(row)
        except InvalidSourceIdError as exc:
            fallback = self.auto_id(row, strategy=IdStrategyType.EXTERNAL)
            return GeneratedId(
                unique_id=fallback.unique_id,
                strategy=IdStrategyType.EXTERNAL,
                missing_id=True,
                error=str(exc),
            )
        if generated is not None:
            return generated
        fallback = self.auto_id(row, strategy=IdStrategyType.EXTERNAL)
        return GeneratedId(unique_id=fallback.unique_id, strategy=IdStrategyType.EXTERNAL, missing_id=True)

    def _computed_or_auto(self, row: Mapping[str, Any], *, strategy: str = IdStrategyType.COMPUTED) -> GeneratedId:
        paths = _computed_fields(self._strategy)
        values: list[tuple[str, Any]] = []
        missing: list[str] = []
        for path in paths:
            value = extract_field_value(row, path)
            if value is None:
                missing.append(path)
            else:
                values.append((path, value))

        if not paths or missing:
            fallback = self.auto_id(row, strategy=strategy)
            return GeneratedId(
                unique_id=fallback.unique_id,
                strategy=strategy,
                missing_id=True,
                error=f"Missing fields for computed ID: {', '.join(missing) or 'none configured'}",
            )

        hash_input = "|".join(f"{path}:{canonical_json(value)}" for path, value in sorted(values))
        digest = hashlib.sha256(f"{self._dataset_id}:{hash_input}".encode("utf-8")).hexdigest()[:16]
        return GeneratedId(unique_id=f"{self._dataset_id}:comp:{digest}", strategy=strategy)

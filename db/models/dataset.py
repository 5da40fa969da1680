"""
db/models/dataset.py

Dataset model is a named, language-tagged logical table of events inside a catalog.

A dataset outlives any single import: files whose detected name matches an
existing dataset name reuse it, keeping its language and schema settings.
"""

import uuid
from typing import TYPE_CHECKING, Any

from sqlalchemy import ForeignKey, Index, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from db.base import Base, JSONDocument, TimestampMixin

if TYPE_CHECKING:
    from db.models.catalog import Catalog


DEFAULT_LANGUAGE = "eng"


class DuplicateStrategy:
    """How an external duplicate is written at event-materialization time."""

    SKIP = "skip"
    UPDATE = "update"
    VERSION = "version"

    ALL = (SKIP, UPDATE, VERSION)


class IdStrategyType:
    AUTO = "auto"
    EXTERNAL = "external"
    COMPUTED = "computed"
    HYBRID = "hybrid"

    ALL = (AUTO, EXTERNAL, COMPUTED, HYBRID)


def default_schema_config() -> dict[str, Any]:
    return {"locked": False, "auto_grow": True, "auto_approve_non_breaking": True}


def default_deduplication_config() -> dict[str, Any]:
    return {"enabled": True, "strategy": DuplicateStrategy.SKIP}


def default_id_strategy() -> dict[str, Any]:
    return {"type": IdStrategyType.AUTO, "duplicate_strategy": DuplicateStrategy.SKIP}


class Dataset(Base, TimestampMixin):
    """
    Logical table of events.

    schema_config holds the approval policy (locked / auto_grow /
    auto_approve_non_breaking). id_strategy selects how row identity keys
    are computed and how external duplicates are resolved.
    """

    __tablename__ = "datasets"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    catalog_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("catalogs.id", ondelete="CASCADE"),
        nullable=False,
    )

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Exact-match key used to reuse datasets across imports",
    )

    language: Mapped[str] = mapped_column(
        String(3),
        nullable=False,
        default=DEFAULT_LANGUAGE,
        comment="ISO-639-3 code driving field mapping detection",
    )

    schema_config: Mapped[dict[str, Any]] = mapped_column(
        JSONDocument,
        nullable=False,
        default=default_schema_config,
    )

    deduplication_config: Mapped[dict[str, Any]] = mapped_column(
        JSONDocument,
        nullable=False,
        default=default_deduplication_config,
    )

    id_strategy: Mapped[dict[str, Any]] = mapped_column(
        JSONDocument,
        nullable=False,
        default=default_id_strategy,
        comment="type (auto/external/computed/hybrid), external_id_path, computed_fields, duplicate_strategy",
    )

    field_mapping_overrides: Mapped[dict[str, Any] | None] = mapped_column(
        JSONDocument,
        nullable=True,
        comment="Semantic field -> source column, wins over detection",
    )

    import_transforms: Mapped[list[dict[str, Any]] | None] = mapped_column(
        JSONDocument,
        nullable=True,
        comment="Ordered transform rules; only active ones are applied",
    )

    processing_options: Mapped[dict[str, Any] | None] = mapped_column(
        JSONDocument,
        nullable=True,
        comment="Per-dataset pipeline options such as recovery_stages",
    )

    current_schema_version_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        nullable=True,
        comment="Currently published DatasetSchemaVersion",
    )

    # ── Relationships ──────────────────────────────────────────────────────────

    catalog: Mapped["Catalog"] = relationship(
        "Catalog",
        back_populates="datasets",
    )

    # ── Indexes ────────────────────────────────────────────────────────────────

    __table_args__ = (
        UniqueConstraint("catalog_id", "name", name="uq_datasets_catalog_name"),
        Index("ix_datasets_catalog_id", "catalog_id"),
    )

    @property
    def duplicate_strategy(self) -> str:
        strategy = (self.id_strategy or {}).get("duplicate_strategy")
        if strategy in DuplicateStrategy.ALL:
            return strategy
        return (self.deduplication_config or {}).get("strategy", DuplicateStrategy.SKIP)

    def __repr__(self) -> str:
        return (
            f"<Dataset id={self.id} name={self.name!r} "
            f"catalog_id={self.catalog_id} language={self.language!r}>"
        )

"""
db/models/import_job.py

Import job model is the per-sheet pipeline execution unit.
"""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import ForeignKey, Index, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, JSONDocument, TimestampMixin


class ImportStage:
    DATASET_DETECTION = "dataset-detection"
    ANALYZE_DUPLICATES = "analyze-duplicates"
    DETECT_SCHEMA = "detect-schema"
    VALIDATE_SCHEMA = "validate-schema"
    AWAIT_APPROVAL = "await-approval"
    CREATE_SCHEMA_VERSION = "create-schema-version"
    GEOCODE_BATCH = "geocode-batch"
    CREATE_EVENTS = "create-events"
    COMPLETED = "completed"
    FAILED = "failed"

    TERMINAL = (COMPLETED, FAILED)


class ImportJob(Base, TimestampMixin):
    __tablename__ = "import_jobs"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    import_file_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("import_files.id", ondelete="CASCADE"),
        nullable=False,
    )
    dataset_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("datasets.id", ondelete="CASCADE"),
        nullable=False,
    )
    sheet_index: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    sheet_name: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    stage: Mapped[str] = mapped_column(
        String(40),
        nullable=False,
        default=ImportStage.ANALYZE_DUPLICATES,
    )
    last_successful_stage: Mapped[str | None] = mapped_column(
        String(40),
        nullable=True,
    )
    progress: Mapped[dict[str, Any] | None] = mapped_column(
        JSONDocument,
        nullable=True,
        comment="total_rows, processed_rows, per-stage timing, estimated_completion",
    )
    duplicates: Mapped[dict[str, Any] | None] = mapped_column(
        JSONDocument,
        nullable=True,
    )
    detected_schema: Mapped[dict[str, Any] | None] = mapped_column(
        "schema",
        JSONDocument,
        nullable=True,
    )
    schema_builder_state: Mapped[dict[str, Any] | None] = mapped_column(
        JSONDocument,
        nullable=True,
        comment="Field statistics accumulated across detect-schema batches",
    )
    detected_field_mappings: Mapped[dict[str, Any] | None] = mapped_column(
        JSONDocument,
        nullable=True,
    )
    schema_validation: Mapped[dict[str, Any] | None] = mapped_column(
        JSONDocument,
        nullable=True,
        comment="approved, is_breaking, requires_approval, changes, transform_suggestions",
    )
    dataset_schema_version_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        nullable=True,
    )
    geocoding_results: Mapped[dict[str, Any] | None] = mapped_column(
        JSONDocument,
        nullable=True,
    )
    results: Mapped[dict[str, Any] | None] = mapped_column(
        JSONDocument,
        nullable=True,
    )
    error_log: Mapped[dict[str, Any] | None] = mapped_column(
        JSONDocument,
        nullable=True,
    )
    retry_attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    __table_args__ = (
        Index("ix_import_jobs_import_file_id", "import_file_id"),
        Index("ix_import_jobs_dataset_id", "dataset_id"),
        Index("ix_import_jobs_stage", "stage"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.stage in ImportStage.TERMINAL

    def __repr__(self) -> str:
        return f"<ImportJob id={self.id} sheet={self.sheet_index} stage={self.stage!r}>"

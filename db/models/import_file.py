"""
db/models/import_file.py

Import file model is one uploaded or fetched artifact that may hold several sheets.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import BigInteger, ForeignKey, Index, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, JSONDocument, TimestampMixin, UTCDateTime


class ImportFileStatus:
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    TERMINAL = (COMPLETED, FAILED)


class ImportFile(Base, TimestampMixin):
    __tablename__ = "import_files"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    catalog_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("catalogs.id", ondelete="SET NULL"),
        nullable=True,
    )
    scheduled_import_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("scheduled_imports.id", ondelete="SET NULL"),
        nullable=True,
    )
    file_name: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
        comment="Sanitized stored file name",
    )
    original_name: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
        comment="Declared name used for dataset name matching",
    )
    storage_path: Mapped[str] = mapped_column(
        String(1000),
        nullable=False,
    )
    mime_type: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        comment="Declared content type",
    )
    detected_type: Mapped[str | None] = mapped_column(
        String(20),
        nullable=True,
        comment="csv, xlsx or xls",
    )
    file_size_bytes: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )
    checksum: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        comment="sha256 of the stored bytes",
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ImportFileStatus.PENDING,
    )
    datasets_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    datasets_processed: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    sheet_metadata: Mapped[list[dict[str, Any]] | None] = mapped_column(
        JSONDocument,
        nullable=True,
    )
    job_summary: Mapped[dict[str, Any] | None] = mapped_column(
        JSONDocument,
        nullable=True,
        comment="Child job counts by outcome",
    )
    run_metadata: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata",
        JSONDocument,
        nullable=True,
        comment="url_fetch, scheduled_execution and dataset_mapping provenance",
    )
    error_log: Mapped[dict[str, Any] | None] = mapped_column(
        JSONDocument,
        nullable=True,
    )
    processing_started_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
    )

    __table_args__ = (
        Index("ix_import_files_status", "status"),
        Index("ix_import_files_catalog_id", "catalog_id"),
        Index("ix_import_files_schedule_checksum", "scheduled_import_id", "checksum"),
    )

    def __repr__(self) -> str:
        return f"<ImportFile id={self.id} name={self.original_name!r} status={self.status!r}>"

"""
db/models/dataset_schema_version.py

Immutable, versioned snapshot of a dataset's inferred structure.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, JSONDocument, TimestampMixin, UTCDateTime


class SchemaVersionStatus:
    DRAFT = "draft"
    PUBLISHED = "published"
    SUPERSEDED = "superseded"
    REJECTED = "rejected"


class DatasetSchemaVersion(Base, TimestampMixin):
    __tablename__ = "dataset_schema_versions"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    dataset_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("datasets.id", ondelete="CASCADE"),
        nullable=False,
    )
    version_number: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=SchemaVersionStatus.DRAFT,
        comment="draft (pending approval), published (current), superseded, rejected",
    )
    schema: Mapped[dict[str, Any]] = mapped_column(
        JSONDocument,
        nullable=False,
        comment="Serialized field-type tree",
    )
    field_metadata: Mapped[dict[str, Any] | None] = mapped_column(
        JSONDocument,
        nullable=True,
        comment="Per-field occurrence statistics",
    )
    schema_summary: Mapped[dict[str, Any] | None] = mapped_column(
        JSONDocument,
        nullable=True,
        comment="new_fields, removed_fields, type_changes, enum_changes",
    )
    import_job_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        nullable=True,
    )
    auto_approved: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )
    approved_by: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    approved_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
    )
    approval_notes: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    __table_args__ = (
        UniqueConstraint("dataset_id", "version_number", name="uq_schema_versions_dataset_version"),
        Index("ix_schema_versions_dataset_status", "dataset_id", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<DatasetSchemaVersion dataset_id={self.dataset_id} "
            f"version={self.version_number} status={self.status!r}>"
        )

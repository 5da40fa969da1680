"""
db/models/event.py

Materialized event record produced by the create-events stage.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import Float, ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, JSONDocument, TimestampMixin, UTCDateTime


class CoordinateSource:
    IMPORT = "import"
    GEOCODED = "geocoded"
    NONE = "none"


class Event(Base, TimestampMixin):
    __tablename__ = "events"

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
    import_job_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("import_jobs.id", ondelete="SET NULL"),
        nullable=True,
    )
    unique_id: Mapped[str] = mapped_column(
        String(300),
        nullable=False,
        comment="Identity key derived from the dataset id strategy",
    )
    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
    )
    source_row: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
    )
    data: Mapped[dict[str, Any]] = mapped_column(
        JSONDocument,
        nullable=False,
    )
    title: Mapped[str | None] = mapped_column(
        String(1000),
        nullable=True,
    )
    description: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    location_name: Mapped[str | None] = mapped_column(
        String(500),
        nullable=True,
    )
    event_timestamp: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
    )
    latitude: Mapped[float | None] = mapped_column(
        Float,
        nullable=True,
    )
    longitude: Mapped[float | None] = mapped_column(
        Float,
        nullable=True,
    )
    coordinate_source: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=CoordinateSource.NONE,
    )
    validation_status: Mapped[str | None] = mapped_column(
        String(30),
        nullable=True,
        comment="valid, swapped, suspicious_zero, invalid",
    )
    geocoded_address: Mapped[str | None] = mapped_column(
        String(500),
        nullable=True,
    )

    __table_args__ = (
        Index("ix_events_dataset_unique_id", "dataset_id", "unique_id"),
        Index("ix_events_import_job_id", "import_job_id"),
        Index("ix_events_event_timestamp", "event_timestamp"),
    )

    def __repr__(self) -> str:
        return f"<Event id={self.id} dataset_id={self.dataset_id} unique_id={self.unique_id!r}>"

"""
db/models/scheduled_import.py

Recurring remote-fetch definition feeding the import pipeline.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, Float, ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, JSONDocument, TimestampMixin, UTCDateTime


class ScheduleType:
    FREQUENCY = "frequency"
    CRON = "cron"


class ScheduleFrequency:
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"

    ALL = (HOURLY, DAILY, WEEKLY, MONTHLY)


class ScheduleRunStatus:
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


class AuthType:
    NONE = "none"
    API_KEY = "api-key"
    BEARER = "bearer"
    BASIC = "basic"


class ScheduledImport(Base, TimestampMixin):
    __tablename__ = "scheduled_imports"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    catalog_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("catalogs.id", ondelete="SET NULL"),
        nullable=True,
    )
    source_url: Mapped[str] = mapped_column(
        String(2000),
        nullable=False,
    )
    enabled: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
    )
    auth_config: Mapped[dict[str, Any] | None] = mapped_column(
        JSONDocument,
        nullable=True,
        comment="type, api_key, api_key_header, bearer_token, username, password, custom_headers",
    )
    schedule_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ScheduleType.FREQUENCY,
    )
    frequency: Mapped[str | None] = mapped_column(
        String(20),
        nullable=True,
    )
    cron_expression: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
    )
    timezone: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        default="UTC",
    )
    import_name_template: Mapped[str | None] = mapped_column(
        String(500),
        nullable=True,
    )
    dataset_mapping: Mapped[dict[str, Any] | None] = mapped_column(
        JSONDocument,
        nullable=True,
    )
    max_retries: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=3,
    )
    retry_delay_seconds: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        default=1.0,
    )
    exponential_backoff: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
    )
    timeout_seconds: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        default=30.0,
    )
    max_file_size_mb: Mapped[float | None] = mapped_column(
        Float,
        nullable=True,
    )
    expected_content_type: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
    )
    skip_duplicate_checking: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )
    last_run: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
    )
    next_run: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
    )
    last_status: Mapped[str | None] = mapped_column(
        String(20),
        nullable=True,
        comment="running doubles as a best-effort trigger lock",
    )
    last_error: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    current_retries: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    statistics: Mapped[dict[str, Any] | None] = mapped_column(
        JSONDocument,
        nullable=True,
    )
    execution_history: Mapped[list[dict[str, Any]] | None] = mapped_column(
        JSONDocument,
        nullable=True,
    )

    __table_args__ = (
        Index("ix_scheduled_imports_enabled_next_run", "enabled", "next_run"),
    )

    def __repr__(self) -> str:
        return (
            f"<ScheduledImport id={self.id} name={self.name!r} "
            f"last_status={self.last_status!r} next_run={self.next_run}>"
        )

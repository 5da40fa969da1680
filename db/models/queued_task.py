"""
db/models/queued_task.py

Durable task queue entry used to dispatch pipeline stage handlers.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, JSONDocument, TimestampMixin, UTCDateTime, utcnow


class QueuedTaskStatus:
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    INCOMPLETE = (QUEUED, RUNNING)


class QueuedTask(Base, TimestampMixin):
    __tablename__ = "queued_tasks"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    task_name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )
    input_payload: Mapped[dict[str, Any]] = mapped_column(
        JSONDocument,
        nullable=False,
    )
    idempotency_key: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        comment="Only one incomplete task may exist per key",
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=QueuedTaskStatus.QUEUED,
    )
    attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    run_after: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=utcnow,
    )
    started_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
    )
    output: Mapped[dict[str, Any] | None] = mapped_column(
        JSONDocument,
        nullable=True,
    )
    error_message: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    __table_args__ = (
        Index("ix_queued_tasks_status_run_after", "status", "run_after"),
        Index("ix_queued_tasks_idempotency_key_status", "idempotency_key", "status"),
        Index("ix_queued_tasks_task_name", "task_name"),
    )

    def __repr__(self) -> str:
        return f"<QueuedTask id={self.id} task={self.task_name!r} status={self.status!r}>"

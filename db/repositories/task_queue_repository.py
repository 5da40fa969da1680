"""
Repository for durable queued tasks.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Select, select, update
from sqlalchemy.orm import Session

from db.models.queued_task import QueuedTask, QueuedTaskStatus


class TaskQueueRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def create_task(
        self,
        *,
        task_name: str,
        input_payload: dict[str, Any],
        idempotency_key: str | None = None,
        run_after: datetime | None = None,
    ) -> QueuedTask:
        task = QueuedTask(
            task_name=task_name,
            input_payload=input_payload,
            idempotency_key=idempotency_key,
            status=QueuedTaskStatus.QUEUED,
            run_after=run_after or datetime.now(timezone.utc),
        )
        self._session.add(task)
        self._session.flush()
        return task

    def get(self, task_id: uuid.UUID) -> QueuedTask | None:
        return self._session.get(QueuedTask, task_id)

    def find_incomplete(self, *, idempotency_key: str) -> QueuedTask | None:
        stmt = select(QueuedTask).where(
            QueuedTask.idempotency_key == idempotency_key,
            QueuedTask.status.in_(QueuedTaskStatus.INCOMPLETE),
        )
        return self._session.scalars(stmt).first()

    def list_incomplete(self, *, key_prefix: str | None = None, task_name: str | None = None) -> list[QueuedTask]:
        stmt: Select[tuple[QueuedTask]] = select(QueuedTask).where(
            QueuedTask.status.in_(QueuedTaskStatus.INCOMPLETE)
        )
        if key_prefix:
            stmt = stmt.where(QueuedTask.idempotency_key.startswith(key_prefix))
        if task_name:
            stmt = stmt.where(QueuedTask.task_name == task_name)
        return list(self._session.scalars(stmt.order_by(QueuedTask.created_at.asc())).all())

    def list_due_ids(self, *, now: datetime, limit: int) -> list[uuid.UUID]:
        stmt = (
            select(QueuedTask.id)
            .where(
                QueuedTask.status == QueuedTaskStatus.QUEUED,
                QueuedTask.run_after <= now,
            )
            .order_by(QueuedTask.run_after.asc(), QueuedTask.created_at.asc())
            .limit(max(1, limit))
        )
        return list(self._session.scalars(stmt).all())

    def claim(self, task_id: uuid.UUID) -> bool:
        """
        Atomically move one task from queued to running.
        """

        stmt = (
            update(QueuedTask)
            .where(QueuedTask.id == task_id, QueuedTask.status == QueuedTaskStatus.QUEUED)
            .values(
                status=QueuedTaskStatus.RUNNING,
                started_at=datetime.now(timezone.utc),
                attempts=QueuedTask.attempts + 1,
            )
            .execution_options(synchronize_session=False)
        )
        return int(self._session.execute(stmt).rowcount or 0) == 1

    def mark_completed(self, task: QueuedTask, *, output: dict[str, Any] | None) -> QueuedTask:
        task.status = QueuedTaskStatus.COMPLETED
        task.output = output
        task.completed_at = datetime.now(timezone.utc)
        task.error_message = None
        return task

    def mark_failed(self, task: QueuedTask, *, error_message: str) -> QueuedTask:
        task.status = QueuedTaskStatus.FAILED
        task.error_message = error_message
        task.completed_at = datetime.now(timezone.utc)
        return task

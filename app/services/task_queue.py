"""
app/services/task_queue.py

Durable task queue over the queued_tasks table.

Handlers are registered by task name and invoked as handler(db, payload).
Each claimed task runs in its own session; the handler's writes and the
task's completion are committed together.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any

from sqlalchemy.orm import Session, sessionmaker

from app.config import get_scheduler_settings
from db.models.queued_task import QueuedTask
from db.repositories.task_queue_repository import TaskQueueRepository

logger = logging.getLogger(__name__)

TaskHandler = Callable[[Session, dict[str, Any]], "dict[str, Any] | None"]


class UnknownTaskError(RuntimeError):
    """
    Raised when a queued task has no registered handler.
    """


@dataclass
class TaskRunSummary:
    claimed: int = 0
    completed: int = 0
    failed: int = 0
    skipped: int = 0
    task_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "claimed": self.claimed,
            "completed": self.completed,
            "failed": self.failed,
            "skipped": self.skipped,
            "task_ids": list(self.task_ids),
        }


class TaskQueue:
    def __init__(self, *, session_factory: sessionmaker[Session] | None = None) -> None:
        if session_factory is None:
            from db.session import SessionLocal

            self._session_factory = SessionLocal
        else:
            self._session_factory = session_factory
        self._handlers: dict[str, TaskHandler] = {}

    # ------------------------------------------------------------------
    # Registration / enqueue
    # ------------------------------------------------------------------

    def register(self, task_name: str, handler: TaskHandler) -> None:
        self._handlers[task_name] = handler

    def is_registered(self, task_name: str) -> bool:
        return task_name in self._handlers

    def enqueue(
        self,
        db: Session,
        task_name: str,
        input_payload: dict[str, Any],
        *,
        idempotency_key: str | None = None,
        run_after: datetime | None = None,
    ) -> QueuedTask:
        """
        Add a task in the caller's transaction.

        With an idempotency key, an incomplete task holding the same key is
        returned instead of creating a second one.
        """

        repository = TaskQueueRepository(db)
        if idempotency_key:
            existing = repository.find_incomplete(idempotency_key=idempotency_key)
            if existing is not None:
                logger.debug(
                    "Task already pending task=%s key=%s id=%s",
                    task_name,
                    idempotency_key,
                    existing.id,
                )
                return existing

        task = repository.create_task(
            task_name=task_name,
            input_payload=dict(input_payload),
            idempotency_key=idempotency_key,
            run_after=run_after,
        )
        logger.info("Task enqueued task=%s key=%s id=%s", task_name, idempotency_key, task.id)
        return task

    def pending(self, db: Session, *, key_prefix: str | None = None, task_name: str | None = None) -> list[QueuedTask]:
        return TaskQueueRepository(db).list_incomplete(key_prefix=key_prefix, task_name=task_name)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def run_due(self, *, limit: int | None = None, now: datetime | None = None) -> TaskRunSummary:
        """
        Claim and run due queued tasks one at a time.
        """

        batch_limit = limit or get_scheduler_settings().task_queue_batch_limit
        summary = TaskRunSummary()
        with self._session_factory() as db:
            due_ids = TaskQueueRepository(db).list_due_ids(
                now=now or datetime.now(timezone.utc),
                limit=batch_limit,
            )

        for task_id in due_ids:
            outcome = self._run_one(task_id)
            if outcome == "skipped":
                summary.skipped += 1
                continue
            summary.claimed += 1
            summary.task_ids.append(str(task_id))
            if outcome == "completed":
                summary.completed += 1
            else:
                summary.failed += 1
        return summary

    def run_until_idle(self, *, max_rounds: int = 100, limit: int | None = None) -> TaskRunSummary:
        """
        Keep running due tasks until none remain, including tasks enqueued
        by the handlers themselves.
        """

        total = TaskRunSummary()
        for _ in range(max_rounds):
            summary = self.run_due(limit=limit)
            total.claimed += summary.claimed
            total.completed += summary.completed
            total.failed += summary.failed
            total.skipped += summary.skipped
            total.task_ids.extend(summary.task_ids)
            if summary.claimed == 0:
                break
        return total

    def _run_one(self, task_id: uuid.UUID) -> str:
        with self._session_factory() as db:
            repository = TaskQueueRepository(db)
            if not repository.claim(task_id):
                db.rollback()
                return "skipped"
            db.commit()

            task = repository.get(task_id)
            if task is None:
                return "skipped"
            task_name = task.task_name
            payload = dict(task.input_payload or {})

            try:
                handler = self._handlers.get(task_name)
                if handler is None:
                    raise UnknownTaskError(f"No handler registered for task {task_name!r}")
                output = handler(db, payload)
                task = repository.get(task_id)
                if task is None:
                    raise RuntimeError(f"Queued task disappeared: {task_id}")
                repository.mark_completed(task, output=output)
                db.commit()
                logger.info("Task completed task=%s id=%s", task_name, task_id)
                return "completed"
            except Exception as exc:
                self._mark_task_failed(db=db, task_id=task_id, task_name=task_name, exc=exc)
                return "failed"

    def _mark_task_failed(self, *, db: Session, task_id: uuid.UUID, task_name: str, exc: Exception) -> None:
        error_message = f"{type(exc).__name__}: {exc}"
        logger.exception("Task failed task=%s id=%s error=%s", task_name, task_id, error_message)
        try:
            db.rollback()
            repository = TaskQueueRepository(db)
            task = repository.get(task_id)
            if task is None:
                logger.error("Unable to mark task as failed because it was not found id=%s", task_id)
                return
            repository.mark_failed(task, error_message=error_message[:2000])
            db.commit()
        except Exception:
            db.rollback()
            logger.exception("Failed to persist failed task state id=%s", task_id)


@lru_cache(maxsize=1)
def get_task_queue() -> TaskQueue:
    return TaskQueue()

"""
Repository for scheduled imports, including the trigger compare-and-set.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import Select, or_, select, update
from sqlalchemy.orm import Session

from db.models.scheduled_import import ScheduledImport, ScheduleRunStatus
from db.repositories.errors import ScheduledImportNotFoundError


class ScheduledImportRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def create(self, **fields: Any) -> ScheduledImport:
        schedule = ScheduledImport(**fields)
        self._session.add(schedule)
        self._session.flush()
        return schedule

    def get(self, schedule_id: uuid.UUID) -> ScheduledImport | None:
        return self._session.get(ScheduledImport, schedule_id)

    def require(self, schedule_id: uuid.UUID) -> ScheduledImport:
        schedule = self.get(schedule_id)
        if schedule is None:
            raise ScheduledImportNotFoundError(f"Scheduled import not found: {schedule_id}")
        return schedule

    def list_enabled(self, *, limit: int = 1000) -> list[ScheduledImport]:
        stmt: Select[tuple[ScheduledImport]] = (
            select(ScheduledImport)
            .where(ScheduledImport.enabled.is_(True))
            .order_by(ScheduledImport.next_run.asc(), ScheduledImport.created_at.asc())
            .limit(max(1, limit))
        )
        return list(self._session.scalars(stmt).all())

    def list_all(self, *, limit: int = 100) -> list[ScheduledImport]:
        stmt = select(ScheduledImport).order_by(ScheduledImport.created_at.desc()).limit(max(1, limit))
        return list(self._session.scalars(stmt).all())

    def try_mark_running(
        self,
        *,
        schedule_id: uuid.UUID,
        now: datetime,
        next_run: datetime | None,
        stale_before: datetime | None = None,
    ) -> bool:
        """
        Claim a schedule for one trigger.

        Single conditional UPDATE: succeeds only when the schedule is not
        already marked running, or its running mark started before
        `stale_before`. Returns True when this caller claimed it.
        """

        claimable = [
            ScheduledImport.last_status.is_(None),
            ScheduledImport.last_status != ScheduleRunStatus.RUNNING,
        ]
        if stale_before is not None:
            claimable.append(ScheduledImport.last_run < stale_before)
        stmt = (
            update(ScheduledImport)
            .where(ScheduledImport.id == schedule_id, or_(*claimable))
            .values(
                last_status=ScheduleRunStatus.RUNNING,
                last_run=now,
                next_run=next_run,
                current_retries=0,
                last_error=None,
            )
            .execution_options(synchronize_session=False)
        )
        result = self._session.execute(stmt)
        claimed = int(result.rowcount or 0) == 1
        if claimed:
            schedule = self._session.get(ScheduledImport, schedule_id)
            if schedule is not None:
                self._session.refresh(schedule)
        return claimed

    def record_result(
        self,
        schedule: ScheduledImport,
        *,
        status: str,
        error: str | None,
        statistics: dict[str, Any],
        execution_history: list[dict[str, Any]],
    ) -> ScheduledImport:
        schedule.last_status = status
        schedule.last_error = error
        schedule.statistics = statistics
        schedule.execution_history = execution_history
        return schedule

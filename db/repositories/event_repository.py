"""
Repository for materialized events.
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from db.models.event import Event


class EventRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def find_existing_ids(
        self,
        *,
        dataset_id: uuid.UUID,
        unique_ids: Sequence[str],
        chunk_size: int = 1000,
    ) -> dict[str, uuid.UUID]:
        """
        Map stored unique ids to the id of their latest event, queried in chunks.
        """

        found: dict[str, tuple[int, uuid.UUID]] = {}
        distinct_ids = list(dict.fromkeys(unique_ids))
        for start in range(0, len(distinct_ids), chunk_size):
            chunk = distinct_ids[start : start + chunk_size]
            stmt = select(Event.unique_id, Event.version, Event.id).where(
                Event.dataset_id == dataset_id,
                Event.unique_id.in_(chunk),
            )
            for unique_id, version, event_id in self._session.execute(stmt).all():
                current = found.get(unique_id)
                if current is None or version > current[0]:
                    found[unique_id] = (version, event_id)
        return {unique_id: event_id for unique_id, (_, event_id) in found.items()}

    def get(self, event_id: uuid.UUID) -> Event | None:
        return self._session.get(Event, event_id)

    def latest_version(self, *, dataset_id: uuid.UUID, unique_id: str) -> int:
        stmt = select(func.max(Event.version)).where(
            Event.dataset_id == dataset_id,
            Event.unique_id == unique_id,
        )
        return int(self._session.scalar(stmt) or 0)

    def add(self, event: Event) -> Event:
        self._session.add(event)
        return event

    def count_for_dataset(self, dataset_id: uuid.UUID) -> int:
        stmt = select(func.count(Event.id)).where(Event.dataset_id == dataset_id)
        return int(self._session.scalar(stmt) or 0)

    def count_for_job(self, import_job_id: uuid.UUID) -> int:
        stmt = select(func.count(Event.id)).where(Event.import_job_id == import_job_id)
        return int(self._session.scalar(stmt) or 0)

    def source_rows_for_job(self, *, import_job_id: uuid.UUID, start: int, stop: int) -> set[int]:
        """
        Source rows of a job that already produced an event in [start, stop).
        """

        stmt = select(Event.source_row).where(
            Event.import_job_id == import_job_id,
            Event.source_row >= start,
            Event.source_row < stop,
        )
        return {int(row) for row in self._session.scalars(stmt) if row is not None}

"""
Repository for per-row identity keys written by duplicate analysis.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from db.models.import_row_key import ImportRowKey


class RowKeyRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def first_occurrences(
        self,
        *,
        import_job_id: uuid.UUID,
        unique_ids: Sequence[str],
        chunk_size: int = 1000,
    ) -> dict[str, int]:
        """
        Map each already-recorded unique id to the first row that produced it.
        """

        found: dict[str, int] = {}
        distinct_ids = list(dict.fromkeys(unique_ids))
        for start in range(0, len(distinct_ids), chunk_size):
            chunk = distinct_ids[start : start + chunk_size]
            stmt = (
                select(ImportRowKey.unique_id, func.min(ImportRowKey.row_number))
                .where(
                    ImportRowKey.import_job_id == import_job_id,
                    ImportRowKey.unique_id.in_(chunk),
                )
                .group_by(ImportRowKey.unique_id)
            )
            for unique_id, row_number in self._session.execute(stmt).all():
                found[unique_id] = int(row_number)
        return found

    def add_many(self, keys: Iterable[ImportRowKey]) -> None:
        self._session.add_all(list(keys))
        self._session.flush()

    def rows_in_range(self, *, import_job_id: uuid.UUID, start: int, stop: int) -> dict[int, ImportRowKey]:
        stmt = select(ImportRowKey).where(
            ImportRowKey.import_job_id == import_job_id,
            ImportRowKey.row_number >= start,
            ImportRowKey.row_number < stop,
        )
        return {key.row_number: key for key in self._session.scalars(stmt)}

    def clear_from(self, *, import_job_id: uuid.UUID, start_row: int = 0) -> int:
        stmt = delete(ImportRowKey).where(
            ImportRowKey.import_job_id == import_job_id,
            ImportRowKey.row_number >= start_row,
        )
        result = self._session.execute(stmt)
        return int(result.rowcount or 0)

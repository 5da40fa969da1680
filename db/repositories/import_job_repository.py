"""
Repository for import job persistence and stage lookups.

Stage writes are validated by the orchestrator before they reach this layer.
"""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session

from db.models.import_job import ImportJob, ImportStage
from db.repositories.errors import ImportJobNotFoundError


class ImportJobRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def create_job(
        self,
        *,
        import_file_id: uuid.UUID,
        dataset_id: uuid.UUID,
        sheet_index: int,
        sheet_name: str | None,
        total_rows: int,
        stage: str = ImportStage.ANALYZE_DUPLICATES,
    ) -> ImportJob:
        job = ImportJob(
            import_file_id=import_file_id,
            dataset_id=dataset_id,
            sheet_index=sheet_index,
            sheet_name=sheet_name,
            stage=stage,
            progress={
                "total_rows": total_rows,
                "processed_rows": 0,
                "current_stage": stage,
                "stages": {},
                "estimated_completion": None,
            },
        )
        self._session.add(job)
        self._session.flush()
        return job

    def get(self, job_id: uuid.UUID) -> ImportJob | None:
        return self._session.get(ImportJob, job_id)

    def require(self, job_id: uuid.UUID) -> ImportJob:
        job = self.get(job_id)
        if job is None:
            raise ImportJobNotFoundError(f"Import job not found: {job_id}")
        return job

    def lock(self, job_id: uuid.UUID) -> ImportJob:
        """
        Load the job row with a row lock where the backend supports it.
        """

        stmt = select(ImportJob).where(ImportJob.id == job_id).with_for_update()
        job = self._session.scalars(stmt).first()
        if job is None:
            raise ImportJobNotFoundError(f"Import job not found: {job_id}")
        return job

    def list_for_file(self, import_file_id: uuid.UUID) -> list[ImportJob]:
        stmt: Select[tuple[ImportJob]] = (
            select(ImportJob)
            .where(ImportJob.import_file_id == import_file_id)
            .order_by(ImportJob.sheet_index.asc())
        )
        return list(self._session.scalars(stmt).all())

    def count_by_stage(self, import_file_id: uuid.UUID) -> dict[str, int]:
        stmt = (
            select(ImportJob.stage, func.count(ImportJob.id))
            .where(ImportJob.import_file_id == import_file_id)
            .group_by(ImportJob.stage)
        )
        return {stage: int(count) for stage, count in self._session.execute(stmt).all()}

    def list_jobs(
        self,
        *,
        limit: int = 100,
        stage: str | None = None,
        dataset_id: uuid.UUID | None = None,
    ) -> list[ImportJob]:
        stmt: Select[tuple[ImportJob]] = select(ImportJob)
        if stage:
            stmt = stmt.where(ImportJob.stage == stage)
        if dataset_id is not None:
            stmt = stmt.where(ImportJob.dataset_id == dataset_id)
        stmt = stmt.order_by(ImportJob.created_at.desc()).limit(max(1, limit))
        return list(self._session.scalars(stmt).all())

    def update_fields(self, job: ImportJob, **fields: Any) -> ImportJob:
        for name, value in fields.items():
            if not hasattr(ImportJob, name):
                raise AttributeError(f"ImportJob has no field {name!r}")
            setattr(job, name, value)
        return job

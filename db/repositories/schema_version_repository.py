"""
Repository for dataset schema versions.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from db.models.dataset_schema_version import DatasetSchemaVersion, SchemaVersionStatus


class SchemaVersionRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, version_id: uuid.UUID) -> DatasetSchemaVersion | None:
        return self._session.get(DatasetSchemaVersion, version_id)

    def get_next_version_number(self, dataset_id: uuid.UUID) -> int:
        stmt = select(func.max(DatasetSchemaVersion.version_number)).where(
            DatasetSchemaVersion.dataset_id == dataset_id
        )
        current = self._session.scalar(stmt)
        return int(current or 0) + 1

    def get_published(self, dataset_id: uuid.UUID) -> DatasetSchemaVersion | None:
        stmt = (
            select(DatasetSchemaVersion)
            .where(
                DatasetSchemaVersion.dataset_id == dataset_id,
                DatasetSchemaVersion.status == SchemaVersionStatus.PUBLISHED,
            )
            .order_by(DatasetSchemaVersion.version_number.desc())
        )
        return self._session.scalars(stmt).first()

    def list_versions(self, dataset_id: uuid.UUID) -> list[DatasetSchemaVersion]:
        stmt = (
            select(DatasetSchemaVersion)
            .where(DatasetSchemaVersion.dataset_id == dataset_id)
            .order_by(DatasetSchemaVersion.version_number.asc())
        )
        return list(self._session.scalars(stmt).all())

    def create_version(
        self,
        *,
        dataset_id: uuid.UUID,
        schema: dict[str, Any],
        status: str,
        field_metadata: dict[str, Any] | None = None,
        schema_summary: dict[str, Any] | None = None,
        import_job_id: uuid.UUID | None = None,
        auto_approved: bool = False,
        approved_by: str | None = None,
        approval_notes: str | None = None,
    ) -> DatasetSchemaVersion:
        version = DatasetSchemaVersion(
            dataset_id=dataset_id,
            version_number=self.get_next_version_number(dataset_id),
            status=status,
            schema=schema,
            field_metadata=field_metadata,
            schema_summary=schema_summary,
            import_job_id=import_job_id,
            auto_approved=auto_approved,
            approved_by=approved_by,
            approval_notes=approval_notes,
            approved_at=datetime.now(timezone.utc) if status == SchemaVersionStatus.PUBLISHED else None,
        )
        self._session.add(version)
        self._session.flush()
        return version

    def supersede_published(self, dataset_id: uuid.UUID, *, keep_id: uuid.UUID) -> int:
        stmt = select(DatasetSchemaVersion).where(
            DatasetSchemaVersion.dataset_id == dataset_id,
            DatasetSchemaVersion.status == SchemaVersionStatus.PUBLISHED,
            DatasetSchemaVersion.id != keep_id,
        )
        superseded = 0
        for version in self._session.scalars(stmt):
            version.status = SchemaVersionStatus.SUPERSEDED
            superseded += 1
        return superseded

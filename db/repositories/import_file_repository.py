"""
Repository for import file persistence and status roll-up writes.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Select, select
from sqlalchemy.orm import Session

from db.models.import_file import ImportFile, ImportFileStatus
from db.repositories.errors import ImportFileNotFoundError
from db.repositories.types import StoredFileMetadata


class ImportFileRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def create_file(
        self,
        *,
        stored_file: StoredFileMetadata,
        original_name: str,
        catalog_id: uuid.UUID | None = None,
        scheduled_import_id: uuid.UUID | None = None,
        detected_type: str | None = None,
        run_metadata: dict[str, Any] | None = None,
    ) -> ImportFile:
        import_file = ImportFile(
            catalog_id=catalog_id,
            scheduled_import_id=scheduled_import_id,
            file_name=stored_file.file_name,
            original_name=original_name,
            storage_path=stored_file.storage_path,
            mime_type=stored_file.mime_type,
            detected_type=detected_type,
            file_size_bytes=stored_file.file_size_bytes,
            checksum=stored_file.checksum,
            status=ImportFileStatus.PENDING,
            run_metadata=run_metadata,
        )
        self._session.add(import_file)
        self._session.flush()
        return import_file

    def get(self, import_file_id: uuid.UUID) -> ImportFile | None:
        return self._session.get(ImportFile, import_file_id)

    def require(self, import_file_id: uuid.UUID) -> ImportFile:
        import_file = self.get(import_file_id)
        if import_file is None:
            raise ImportFileNotFoundError(f"Import file not found: {import_file_id}")
        return import_file

    def list_files(
        self,
        *,
        limit: int = 100,
        status: str | None = None,
        catalog_id: uuid.UUID | None = None,
    ) -> list[ImportFile]:
        stmt: Select[tuple[ImportFile]] = select(ImportFile)
        if status:
            stmt = stmt.where(ImportFile.status == status)
        if catalog_id is not None:
            stmt = stmt.where(ImportFile.catalog_id == catalog_id)
        stmt = stmt.order_by(ImportFile.created_at.desc()).limit(max(1, limit))
        return list(self._session.scalars(stmt).all())

    def find_completed_by_checksum(
        self,
        *,
        checksum: str,
        scheduled_import_id: uuid.UUID | None = None,
        catalog_id: uuid.UUID | None = None,
    ) -> ImportFile | None:
        stmt = select(ImportFile).where(
            ImportFile.checksum == checksum,
            ImportFile.status == ImportFileStatus.COMPLETED,
        )
        if scheduled_import_id is not None:
            stmt = stmt.where(ImportFile.scheduled_import_id == scheduled_import_id)
        if catalog_id is not None:
            stmt = stmt.where(ImportFile.catalog_id == catalog_id)
        stmt = stmt.order_by(ImportFile.created_at.desc())
        return self._session.scalars(stmt).first()

    def mark_processing(self, import_file: ImportFile) -> ImportFile:
        import_file.status = ImportFileStatus.PROCESSING
        if import_file.processing_started_at is None:
            import_file.processing_started_at = datetime.now(timezone.utc)
        return import_file

    def mark_failed(self, import_file: ImportFile, *, error_log: dict[str, Any]) -> ImportFile:
        import_file.status = ImportFileStatus.FAILED
        import_file.error_log = error_log
        import_file.completed_at = datetime.now(timezone.utc)
        return import_file

    def apply_rollup(
        self,
        import_file: ImportFile,
        *,
        status: str,
        datasets_processed: int,
        job_summary: dict[str, Any],
    ) -> ImportFile:
        import_file.status = status
        import_file.datasets_processed = datasets_processed
        import_file.job_summary = job_summary
        if status in ImportFileStatus.TERMINAL and import_file.completed_at is None:
            import_file.completed_at = datetime.now(timezone.utc)
        return import_file

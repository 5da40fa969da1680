"""
app/services/file_intake_service.py

Entry point for new import files: validate, store, persist the file record
and hand it to the stage orchestrator.

On a database failure the stored bytes are deleted again, so no orphaned
files remain in storage.
"""

from __future__ import annotations

import logging
from functools import lru_cache

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.config import PipelineSettings, get_pipeline_settings
from app.services.feature_flags import FeatureFlag, FeatureFlagService, get_feature_flag_service
from app.services.stage_orchestrator import StageOrchestrator, get_stage_orchestrator
from db.models.import_file import ImportFile
from db.repositories.catalog_repository import CatalogRepository
from db.repositories.errors import FileStorageError, ImportPersistenceError
from db.repositories.import_file_repository import ImportFileRepository
from db.repositories.types import FileIntakeInput
from db.repositories.validators import validate_intake_payload

logger = logging.getLogger(__name__)


class FileIntakeService:
    def __init__(
        self,
        *,
        session_factory: sessionmaker[Session] | None = None,
        orchestrator: StageOrchestrator | None = None,
        settings: PipelineSettings | None = None,
        feature_flags: FeatureFlagService | None = None,
    ) -> None:
        if session_factory is None:
            from db.session import SessionLocal

            self._session_factory = SessionLocal
        else:
            self._session_factory = session_factory
        self._orchestrator = orchestrator or get_stage_orchestrator()
        self._settings = settings or get_pipeline_settings()
        self._feature_flags = feature_flags or get_feature_flag_service()

    def intake(self, payload: FileIntakeInput, *, detected_type: str | None = None) -> ImportFile:
        """
        Store one file and queue it for processing in a new transaction.
        """

        with self._session_factory() as session:
            import_file = self.intake_in_session(session, payload, detected_type=detected_type)
            try:
                session.commit()
            except SQLAlchemyError as exc:
                session.rollback()
                self._delete_stored_file_quietly(import_file.storage_path)
                raise ImportPersistenceError("Failed to persist import file metadata.") from exc
        return import_file

    def intake_in_session(
        self,
        db: Session,
        payload: FileIntakeInput,
        *,
        detected_type: str | None = None,
    ) -> ImportFile:
        """
        Store one file and queue it within the caller's transaction.
        """

        self._feature_flags.require(FeatureFlag.IMPORT_CREATION)
        validate_intake_payload(payload, max_size_bytes=self._settings.max_upload_bytes)
        if payload.catalog_id is not None:
            CatalogRepository(db).ensure_exists(payload.catalog_id)

        stored = self._orchestrator.storage.save(
            catalog_id=payload.catalog_id,
            file_name=payload.file_name,
            content=payload.content,
            content_type=payload.content_type,
        )

        try:
            import_file = ImportFileRepository(db).create_file(
                stored_file=stored,
                original_name=payload.original_name or stored.file_name,
                catalog_id=payload.catalog_id,
                scheduled_import_id=payload.scheduled_import_id,
                detected_type=detected_type,
                run_metadata=payload.run_metadata,
            )
            self._orchestrator.submit(db, import_file)
        except SQLAlchemyError as exc:
            self._delete_stored_file_quietly(stored.storage_path)
            raise ImportPersistenceError("Failed to persist import file metadata.") from exc
        except Exception:
            self._delete_stored_file_quietly(stored.storage_path)
            raise

        logger.info(
            "Import file accepted import_file=%s name=%s size=%s checksum=%s",
            import_file.id,
            import_file.original_name,
            import_file.file_size_bytes,
            import_file.checksum,
        )
        return import_file

    def _delete_stored_file_quietly(self, storage_path: str) -> None:
        try:
            self._orchestrator.storage.delete(storage_path=storage_path)
        except FileStorageError:
            logger.warning("Failed to remove stored file after intake error path=%s", storage_path)


@lru_cache(maxsize=1)
def get_file_intake_service() -> FileIntakeService:
    return FileIntakeService()

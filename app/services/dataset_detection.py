"""
app/services/dataset_detection.py

First pipeline stage: split an import file into sheets, resolve the target
dataset for each sheet and create one import job per sheet.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Mapping

from sqlalchemy.orm import Session

from app.config import PipelineSettings, get_pipeline_settings
from app.services.feature_flags import FeatureFlag, FeatureFlagService, get_feature_flag_service
from app.services.file_parsing import FileParseError, SheetInfo
from app.services.stage_context import open_reader
from db.models.dataset import Dataset
from db.models.import_file import ImportFile
from db.models.import_job import ImportJob
from db.repositories.catalog_repository import CatalogRepository
from db.repositories.dataset_repository import DatasetRepository
from db.repositories.errors import FileStorageError
from db.repositories.import_file_repository import ImportFileRepository
from db.repositories.import_job_repository import ImportJobRepository
from db.repositories.storage import FileStorageBackend

logger = logging.getLogger(__name__)

DEFAULT_CATALOG_NAME = "Default Catalog"


class DatasetDetectionError(RuntimeError):
    """
    Raised when a file has no usable sheets or a sheet cannot be mapped.
    """


def _parse_uuid(value: Any) -> uuid.UUID | None:
    if value is None:
        return None
    if isinstance(value, uuid.UUID):
        return value
    if isinstance(value, Mapping):
        value = value.get("id")
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        return None


class DatasetDetectionService:
    def __init__(
        self,
        *,
        storage: FileStorageBackend,
        settings: PipelineSettings | None = None,
        feature_flags: FeatureFlagService | None = None,
    ) -> None:
        self._storage = storage
        self._settings = settings or get_pipeline_settings()
        self._feature_flags = feature_flags

    @property
    def feature_flags(self) -> FeatureFlagService:
        if self._feature_flags is None:
            self._feature_flags = get_feature_flag_service()
        return self._feature_flags

    def detect(self, db: Session, import_file: ImportFile) -> list[ImportJob]:
        """
        Create one import job per sheet. The caller commits.
        """

        try:
            reader = open_reader(import_file, self._storage)
            sheets = [sheet for sheet in reader.list_sheets() if sheet.headers or sheet.row_count]
        except (FileNotFoundError, FileStorageError) as exc:
            raise DatasetDetectionError(f"Cannot access file {import_file.storage_path}") from exc
        except FileParseError as exc:
            raise DatasetDetectionError(str(exc)) from exc

        if not sheets:
            raise DatasetDetectionError("No valid sheets found in file")
        empty = [sheet.name for sheet in sheets if sheet.row_count == 0]
        if empty:
            raise DatasetDetectionError(f"No data rows found in sheet(s): {', '.join(empty)}")

        import_file.detected_type = reader.file_type
        import_file.datasets_count = len(sheets)
        import_file.sheet_metadata = [
            {"name": sheet.name, "index": sheet.index, "row_count": sheet.row_count, "headers": list(sheet.headers)}
            for sheet in sheets
        ]
        ImportFileRepository(db).mark_processing(import_file)

        mapping = dict((import_file.run_metadata or {}).get("dataset_mapping") or {})
        single_sheet = len(sheets) == 1
        jobs: list[ImportJob] = []
        job_repository = ImportJobRepository(db)
        for sheet in sheets:
            dataset = self._resolve_dataset(
                db,
                import_file=import_file,
                sheet=sheet,
                single_sheet=single_sheet,
                mapping=mapping,
            )
            if dataset is None:
                continue
            jobs.append(
                job_repository.create_job(
                    import_file_id=import_file.id,
                    dataset_id=dataset.id,
                    sheet_index=sheet.index,
                    sheet_name=sheet.name,
                    total_rows=sheet.row_count,
                )
            )

        if not jobs:
            raise DatasetDetectionError("No sheets were mapped to a dataset")

        # Unmapped sheets are skipped; the rollup counts only created jobs.
        import_file.datasets_count = len(jobs)
        logger.info(
            "Datasets detected import_file=%s sheets=%s jobs=%s",
            import_file.id,
            len(sheets),
            len(jobs),
        )
        return jobs

    # ------------------------------------------------------------------
    # Dataset resolution
    # ------------------------------------------------------------------

    def _resolve_dataset(
        self,
        db: Session,
        *,
        import_file: ImportFile,
        sheet: SheetInfo,
        single_sheet: bool,
        mapping: Mapping[str, Any],
    ) -> Dataset | None:
        mode = mapping.get("mode")
        repository = DatasetRepository(db)

        if mode == "single" and mapping.get("dataset_id"):
            dataset_id = _parse_uuid(mapping["dataset_id"])
            dataset = repository.get(dataset_id) if dataset_id else None
            if dataset is None:
                raise DatasetDetectionError(f"Configured dataset not found: {mapping['dataset_id']}")
            return dataset

        if mode == "multiple":
            entry = self._find_sheet_mapping(mapping.get("sheet_mappings") or [], sheet)
            if entry is None:
                logger.info("No mapping found for sheet, skipping sheet=%s", sheet.name)
                return None
            dataset_id = _parse_uuid(entry.get("dataset_id"))
            dataset = repository.get(dataset_id) if dataset_id else None
            if dataset is None:
                if entry.get("skip_if_missing"):
                    logger.warning("Mapped dataset missing, skipping sheet=%s", sheet.name)
                    return None
                raise DatasetDetectionError(f"Configured dataset not found for sheet {sheet.name}")
            return dataset

        catalog_id = self._resolve_catalog_id(db, import_file)
        name = import_file.original_name if single_sheet else sheet.name
        existing = repository.find_by_exact_name(catalog_id=catalog_id, name=name)
        if existing is not None:
            logger.info("Reusing dataset id=%s name=%s language=%s", existing.id, existing.name, existing.language)
            return existing

        self.feature_flags.require(FeatureFlag.DATASET_CREATION)
        dataset = repository.create(
            catalog_id=catalog_id,
            name=name,
            language=self._settings.default_language,
        )
        logger.info("Created dataset id=%s name=%s catalog=%s", dataset.id, name, catalog_id)
        return dataset

    @staticmethod
    def _find_sheet_mapping(entries: list[Mapping[str, Any]], sheet: SheetInfo) -> Mapping[str, Any] | None:
        for entry in entries:
            identifier = str(entry.get("sheet_identifier", ""))
            if identifier == sheet.name or identifier == str(sheet.index):
                return entry
        return None

    @staticmethod
    def _resolve_catalog_id(db: Session, import_file: ImportFile) -> uuid.UUID:
        repository = CatalogRepository(db)
        if import_file.catalog_id is not None:
            return repository.ensure_exists(import_file.catalog_id).id

        catalog = repository.get_by_name(DEFAULT_CATALOG_NAME)
        if catalog is None:
            catalog = repository.create(name=DEFAULT_CATALOG_NAME, description="Catalog for imports without one")
        import_file.catalog_id = catalog.id
        return catalog.id

"""
Repository layer exports.
"""

from db.repositories.catalog_repository import CatalogRepository
from db.repositories.dataset_repository import DatasetRepository
from db.repositories.errors import (
    CatalogNotFoundError,
    DatasetNotFoundError,
    FileStorageError,
    ImportFileNotFoundError,
    ImportJobNotFoundError,
    ImportPersistenceError,
    ImportRepositoryError,
    ScheduledImportNotFoundError,
    UploadValidationError,
)
from db.repositories.event_repository import EventRepository
from db.repositories.geocoding_provider_repository import GeocodingProviderRepository
from db.repositories.import_file_repository import ImportFileRepository
from db.repositories.import_job_repository import ImportJobRepository
from db.repositories.location_cache_repository import LocationCacheRepository
from db.repositories.row_key_repository import RowKeyRepository
from db.repositories.scheduled_import_repository import ScheduledImportRepository
from db.repositories.schema_version_repository import SchemaVersionRepository
from db.repositories.setting_repository import SettingRepository
from db.repositories.storage import FileStorageBackend, LocalFileStorage, compute_checksum
from db.repositories.task_queue_repository import TaskQueueRepository
from db.repositories.types import FileIntakeInput, StoredFileMetadata

__all__ = [
    "CatalogRepository",
    "DatasetRepository",
    "EventRepository",
    "GeocodingProviderRepository",
    "ImportFileRepository",
    "ImportJobRepository",
    "LocationCacheRepository",
    "RowKeyRepository",
    "ScheduledImportRepository",
    "SchemaVersionRepository",
    "SettingRepository",
    "TaskQueueRepository",
    "FileIntakeInput",
    "StoredFileMetadata",
    "FileStorageBackend",
    "LocalFileStorage",
    "compute_checksum",
    "ImportRepositoryError",
    "UploadValidationError",
    "FileStorageError",
    "CatalogNotFoundError",
    "DatasetNotFoundError",
    "ImportFileNotFoundError",
    "ImportJobNotFoundError",
    "ImportPersistenceError",
    "ScheduledImportNotFoundError",
]

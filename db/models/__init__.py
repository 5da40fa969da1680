"""
Model package exports.

Import all SQLAlchemy models here so metadata registration and Alembic
autogeneration work without extra imports.
"""

from db.models.app_setting import AppSetting
from db.models.catalog import Catalog
from db.models.dataset import Dataset
from db.models.dataset_schema_version import DatasetSchemaVersion
from db.models.event import Event
from db.models.geocoding_provider import GeocodingProvider
from db.models.import_file import ImportFile
from db.models.import_job import ImportJob
from db.models.import_row_key import ImportRowKey
from db.models.location_cache_entry import LocationCacheEntry
from db.models.queued_task import QueuedTask
from db.models.scheduled_import import ScheduledImport

__all__ = [
    "AppSetting",
    "Catalog",
    "Dataset",
    "DatasetSchemaVersion",
    "Event",
    "GeocodingProvider",
    "ImportFile",
    "ImportJob",
    "ImportRowKey",
    "LocationCacheEntry",
    "QueuedTask",
    "ScheduledImport",
]

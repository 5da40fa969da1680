"""
Repository-layer exceptions for import persistence and storage flows.
"""

from __future__ import annotations


class ImportRepositoryError(Exception):
    """Base exception for import repository failures."""


class UploadValidationError(ImportRepositoryError):
    """Raised when an intake payload fails validation."""


class FileStorageError(ImportRepositoryError):
    """Raised when storing, reading or deleting a stored file fails."""


class CatalogNotFoundError(ImportRepositoryError):
    """Raised when a referenced catalog does not exist."""


class DatasetNotFoundError(ImportRepositoryError):
    """Raised when a referenced dataset does not exist."""


class ImportFileNotFoundError(ImportRepositoryError):
    """Raised when a referenced import file does not exist."""


class ImportJobNotFoundError(ImportRepositoryError):
    """Raised when a referenced import job does not exist."""


class ScheduledImportNotFoundError(ImportRepositoryError):
    """Raised when a referenced scheduled import does not exist."""


class ImportPersistenceError(ImportRepositoryError):
    """Raised when import file metadata persistence fails."""

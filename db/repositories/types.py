"""
Typed DTOs used by intake and storage flows.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class FileIntakeInput:
    """
    Raw bytes plus declared name and MIME type for one incoming file.
    """

    file_name: str
    content: bytes
    catalog_id: uuid.UUID | None = None
    content_type: str | None = None
    original_name: str | None = None
    scheduled_import_id: uuid.UUID | None = None
    run_metadata: dict[str, Any] | None = None


@dataclass(frozen=True)
class StoredFileMetadata:
    """
    Metadata produced by the storage backend after saving a file.
    """

    file_name: str
    storage_path: str
    mime_type: str | None
    file_size_bytes: int
    checksum: str
    stored_at: datetime

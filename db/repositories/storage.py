"""
db/repositories/storage.py

Byte storage for import files.

Files land under `<root>/<catalog>/<yyyy>/<mm>/<random>_<name>`; the relative
path is what the import_files row keeps, so the root can move between hosts.
"""

from __future__ import annotations

import hashlib
import uuid
from datetime import datetime, timezone
from mimetypes import guess_type
from pathlib import Path
from typing import Protocol

from db.repositories.errors import FileStorageError
from db.repositories.types import StoredFileMetadata

_UNSCOPED_DIR = "_unscoped"


class FileStorageBackend(Protocol):
    def save(
        self,
        *,
        catalog_id: uuid.UUID | None,
        file_name: str,
        content: bytes,
        content_type: str | None = None,
    ) -> StoredFileMetadata:
        ...

    def resolve(self, *, storage_path: str) -> Path:
        ...

    def delete(self, *, storage_path: str) -> None:
        ...


def compute_checksum(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


def build_storage_path(*, catalog_id: uuid.UUID | None, file_name: str, stored_at: datetime) -> Path:
    """
    Relative location for a new file. Directory parts of `file_name` are dropped.
    """

    base_name = Path(file_name).name.strip()
    if not base_name:
        raise FileStorageError(f"Invalid file name: {file_name!r}")
    scope = str(catalog_id) if catalog_id else _UNSCOPED_DIR
    return Path(scope, f"{stored_at:%Y}", f"{stored_at:%m}", f"{uuid.uuid4().hex}_{base_name}")


class LocalFileStorage:
    def __init__(self, root_dir: str | Path = "data/imports") -> None:
        self._root_dir = Path(root_dir)

    def save(
        self,
        *,
        catalog_id: uuid.UUID | None,
        file_name: str,
        content: bytes,
        content_type: str | None = None,
    ) -> StoredFileMetadata:
        stored_at = datetime.now(timezone.utc)
        relative_path = build_storage_path(catalog_id=catalog_id, file_name=file_name, stored_at=stored_at)
        target = self._root_dir / relative_path
        partial = target.parent / f".{target.name}.partial"
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            partial.write_bytes(content)
            partial.replace(target)
        except OSError as exc:
            partial.unlink(missing_ok=True)
            raise FileStorageError(f"Failed to store import file {relative_path.name}") from exc

        return StoredFileMetadata(
            file_name=relative_path.name.split("_", 1)[1],
            storage_path=relative_path.as_posix(),
            mime_type=content_type or guess_type(relative_path.name)[0],
            file_size_bytes=len(content),
            checksum=compute_checksum(content),
            stored_at=stored_at,
        )

    def resolve(self, *, storage_path: str) -> Path:
        target = self._root_dir / storage_path
        if not target.is_file():
            raise FileStorageError(f"Stored file not found: {storage_path}")
        return target

    def delete(self, *, storage_path: str) -> None:
        try:
            (self._root_dir / storage_path).unlink(missing_ok=True)
        except OSError as exc:
            raise FileStorageError(f"Failed to delete stored file: {storage_path}") from exc

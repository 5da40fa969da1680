"""
Validation helpers for file intake flows.
"""

from __future__ import annotations

from pathlib import Path

from db.repositories.errors import UploadValidationError
from db.repositories.types import FileIntakeInput

ALLOWED_EXTENSIONS = {".csv", ".xls", ".xlsx"}
ALLOWED_CONTENT_TYPES = {
    "text/csv",
    "text/plain",
    "application/csv",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/octet-stream",
}


def _base_content_type(content_type: str) -> str:
    return content_type.split(";", 1)[0].strip().lower()


def validate_intake_payload(payload: FileIntakeInput, *, max_size_bytes: int) -> None:
    """
    Validate an intake payload before storage and DB persistence.

    A file is accepted when either its extension or its declared content
    type identifies a delimited text or spreadsheet format.
    """

    if not payload.file_name or not payload.file_name.strip():
        raise UploadValidationError("file_name is required.")

    extension = Path(payload.file_name).suffix.lower()
    content_type = _base_content_type(payload.content_type) if payload.content_type else None
    known_extension = extension in ALLOWED_EXTENSIONS
    known_content_type = content_type in ALLOWED_CONTENT_TYPES if content_type else False

    if not known_extension and not known_content_type:
        raise UploadValidationError(
            f"Unsupported file type '{extension or payload.content_type}'. "
            f"Allowed extensions: {sorted(ALLOWED_EXTENSIONS)}."
        )

    if not payload.content:
        raise UploadValidationError("Uploaded file content is empty.")

    if len(payload.content) > max_size_bytes:
        raise UploadValidationError("Uploaded file exceeds configured size limit.")

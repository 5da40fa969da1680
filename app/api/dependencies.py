"""
app/api/dependencies.py

Shared FastAPI dependencies for request validation.
"""

from __future__ import annotations

from fastapi import File, HTTPException, UploadFile, status

from db.repositories.validators import ALLOWED_CONTENT_TYPES, ALLOWED_EXTENSIONS


def get_import_upload(file: UploadFile = File(...)) -> UploadFile:
    """
    Validate that the uploaded file is CSV or Excel by extension or MIME type.
    """

    filename = (file.filename or "").strip().lower()
    content_type = (file.content_type or "").split(";", 1)[0].strip().lower()

    has_known_extension = any(filename.endswith(extension) for extension in ALLOWED_EXTENSIONS)
    has_known_content_type = content_type in ALLOWED_CONTENT_TYPES and content_type != "application/octet-stream"

    if not has_known_extension and not has_known_content_type:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Only CSV, XLS and XLSX files are allowed.",
        )

    return file

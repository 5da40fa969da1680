"""
Schemas for import file, import job and schema approval endpoints.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field


class ImportFileAcceptedResponse(BaseModel):
    import_file_id: UUID
    status: str
    original_name: str
    file_size_bytes: int
    checksum: str | None = None
    created_at: datetime


class ImportJobSummary(BaseModel):
    job_id: UUID
    dataset_id: UUID
    sheet_name: str | None = None
    stage: str
    progress: dict[str, Any] | None = None


class ImportFileStatusResponse(BaseModel):
    import_file_id: UUID
    status: str
    original_name: str
    detected_type: str | None = None
    datasets_count: int
    datasets_processed: int
    job_summary: dict[str, Any] | None = None
    sheet_metadata: list[dict[str, Any]] | None = None
    error_log: dict[str, Any] | None = None
    created_at: datetime
    completed_at: datetime | None = None
    jobs: list[ImportJobSummary] = Field(default_factory=list)


class ImportJobStatusResponse(BaseModel):
    job_id: UUID
    import_file_id: UUID
    dataset_id: UUID
    sheet_name: str | None = None
    stage: str
    last_successful_stage: str | None = None
    progress: dict[str, Any] | None = None
    duplicates_summary: dict[str, Any] | None = None
    detected_field_mappings: dict[str, Any] | None = None
    schema_validation: dict[str, Any] | None = None
    geocoding_summary: dict[str, Any] | None = None
    results: dict[str, Any] | None = None
    error_log: dict[str, Any] | None = None
    retry_attempts: int = 0
    created_at: datetime
    updated_at: datetime


class SchemaApprovalRequest(BaseModel):
    approved_by: str = Field(min_length=1, max_length=255)
    notes: str | None = Field(default=None, max_length=2000)


class SchemaRejectionRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=2000)

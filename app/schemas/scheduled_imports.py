"""
Schemas for scheduled import endpoints.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, Field, HttpUrl


class ScheduledImportCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    source_url: HttpUrl
    catalog_id: UUID | None = None
    enabled: bool = True
    auth_config: dict[str, Any] | None = None
    schedule_type: Literal["frequency", "cron"] = "frequency"
    frequency: Literal["hourly", "daily", "weekly", "monthly"] | None = "daily"
    cron_expression: str | None = None
    timezone: str = "UTC"
    import_name_template: str | None = None
    dataset_mapping: dict[str, Any] | None = None
    max_retries: int = Field(default=3, ge=0, le=10)
    retry_delay_seconds: float = Field(default=1.0, ge=0, le=3600)
    exponential_backoff: bool = True
    timeout_seconds: float = Field(default=30.0, gt=0, le=3600)
    max_file_size_mb: float | None = Field(default=None, gt=0)
    expected_content_type: str | None = None
    skip_duplicate_checking: bool = False


class ScheduledImportResponse(BaseModel):
    schedule_id: UUID
    name: str
    source_url: str
    enabled: bool
    schedule_type: str
    frequency: str | None = None
    cron_expression: str | None = None
    timezone: str
    last_run: datetime | None = None
    next_run: datetime | None = None
    last_status: str | None = None
    last_error: str | None = None
    statistics: dict[str, Any] | None = None
    execution_history: list[dict[str, Any]] | None = None


class ScheduledImportListResponse(BaseModel):
    schedules: list[ScheduledImportResponse] = Field(default_factory=list)


class ScheduleRunResponse(BaseModel):
    schedule_id: UUID
    triggered: bool
    detail: str

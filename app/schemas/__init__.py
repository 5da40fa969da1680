"""
app/schemas package marker.
"""

from app.schemas.imports import (
    ImportFileAcceptedResponse,
    ImportFileStatusResponse,
    ImportJobStatusResponse,
    ImportJobSummary,
    SchemaApprovalRequest,
    SchemaRejectionRequest,
)
from app.schemas.scheduled_imports import (
    ScheduledImportCreateRequest,
    ScheduledImportListResponse,
    ScheduledImportResponse,
    ScheduleRunResponse,
)

__all__ = [
    "ImportFileAcceptedResponse",
    "ImportFileStatusResponse",
    "ImportJobStatusResponse",
    "ImportJobSummary",
    "ScheduledImportCreateRequest",
    "ScheduledImportListResponse",
    "ScheduledImportResponse",
    "ScheduleRunResponse",
    "SchemaApprovalRequest",
    "SchemaRejectionRequest",
]

"""
app/api/routers/imports.py

Import file upload, status and schema approval endpoints.
"""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Form, HTTPException, UploadFile, status
from sqlalchemy.orm import Session

from app.api.dependencies import get_import_upload
from app.config import get_pipeline_settings
from app.domain.stages import StageTransitionError
from app.schemas.imports import (
    ImportFileAcceptedResponse,
    ImportFileStatusResponse,
    ImportJobStatusResponse,
    ImportJobSummary,
    SchemaApprovalRequest,
    SchemaRejectionRequest,
)
from app.services.feature_flags import FeatureDisabledError
from app.services.file_intake_service import FileIntakeService, get_file_intake_service
from app.services.stage_orchestrator import (
    JobStateError,
    StageOrchestrator,
    get_stage_orchestrator,
)
from db.models.import_job import ImportJob
from db.repositories.errors import (
    CatalogNotFoundError,
    FileStorageError,
    ImportJobNotFoundError,
    ImportPersistenceError,
    UploadValidationError,
)
from db.repositories.import_file_repository import ImportFileRepository
from db.repositories.import_job_repository import ImportJobRepository
from db.repositories.types import FileIntakeInput
from db.session import get_db

router = APIRouter(prefix="/imports", tags=["imports"])


@router.post(
    "/files",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=ImportFileAcceptedResponse,
)
def upload_import_file(
    file: UploadFile = Depends(get_import_upload),
    catalog_id: UUID | None = Form(default=None),
    intake_service: FileIntakeService = Depends(get_file_intake_service),
) -> ImportFileAcceptedResponse:
    """
    Store one CSV or Excel file and queue it for the import pipeline.
    """

    max_bytes = get_pipeline_settings().max_upload_bytes
    try:
        content = file.file.read(max_bytes + 1)
    finally:
        file.file.close()
    if len(content) > max_bytes:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"Uploaded file exceeds the limit of {max_bytes} bytes.",
        )

    try:
        import_file = intake_service.intake(
            FileIntakeInput(
                file_name=file.filename or "upload.csv",
                content=content,
                catalog_id=catalog_id,
                content_type=file.content_type,
                original_name=file.filename,
            )
        )
    except FeatureDisabledError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    except UploadValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except CatalogNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except (FileStorageError, ImportPersistenceError) as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Unable to store the import file.",
        ) from exc

    return ImportFileAcceptedResponse(
        import_file_id=import_file.id,
        status=import_file.status,
        original_name=import_file.original_name,
        file_size_bytes=import_file.file_size_bytes,
        checksum=import_file.checksum,
        created_at=import_file.created_at,
    )


@router.get("/files/{import_file_id}", response_model=ImportFileStatusResponse)
def get_import_file(import_file_id: UUID, db: Session = Depends(get_db)) -> ImportFileStatusResponse:
    import_file = ImportFileRepository(db).get(import_file_id)
    if import_file is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Import file not found: {import_file_id}",
        )

    jobs = ImportJobRepository(db).list_for_file(import_file_id)
    return ImportFileStatusResponse(
        import_file_id=import_file.id,
        status=import_file.status,
        original_name=import_file.original_name,
        detected_type=import_file.detected_type,
        datasets_count=import_file.datasets_count,
        datasets_processed=import_file.datasets_processed,
        job_summary=import_file.job_summary,
        sheet_metadata=import_file.sheet_metadata,
        error_log=import_file.error_log,
        created_at=import_file.created_at,
        completed_at=import_file.completed_at,
        jobs=[
            ImportJobSummary(
                job_id=job.id,
                dataset_id=job.dataset_id,
                sheet_name=job.sheet_name,
                stage=job.stage,
                progress=job.progress,
            )
            for job in jobs
        ],
    )


@router.get("/jobs/{job_id}", response_model=ImportJobStatusResponse)
def get_import_job(job_id: UUID, db: Session = Depends(get_db)) -> ImportJobStatusResponse:
    job = ImportJobRepository(db).get(job_id)
    if job is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Import job not found: {job_id}",
        )
    return _to_job_response(job)


@router.post("/jobs/{job_id}/approve-schema", response_model=ImportJobStatusResponse)
def approve_schema(
    job_id: UUID,
    request: SchemaApprovalRequest,
    db: Session = Depends(get_db),
    orchestrator: StageOrchestrator = Depends(get_stage_orchestrator),
) -> ImportJobStatusResponse:
    try:
        job = orchestrator.approve_schema(
            db=db,
            job_id=job_id,
            approved_by=request.approved_by,
            notes=request.notes,
        )
    except ImportJobNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except (JobStateError, StageTransitionError) as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return _to_job_response(job)


@router.post("/jobs/{job_id}/reject-schema", response_model=ImportJobStatusResponse)
def reject_schema(
    job_id: UUID,
    request: SchemaRejectionRequest,
    db: Session = Depends(get_db),
    orchestrator: StageOrchestrator = Depends(get_stage_orchestrator),
) -> ImportJobStatusResponse:
    try:
        job = orchestrator.reject_schema(db=db, job_id=job_id, reason=request.reason)
    except ImportJobNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except (JobStateError, StageTransitionError) as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return _to_job_response(job)


@router.post("/jobs/{job_id}/retry", response_model=ImportJobStatusResponse)
def retry_import_job(
    job_id: UUID,
    db: Session = Depends(get_db),
    orchestrator: StageOrchestrator = Depends(get_stage_orchestrator),
) -> ImportJobStatusResponse:
    try:
        job = orchestrator.retry_failed_job(db=db, job_id=job_id)
    except ImportJobNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except (JobStateError, StageTransitionError) as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return _to_job_response(job)


def _to_job_response(job: ImportJob) -> ImportJobStatusResponse:
    return ImportJobStatusResponse(
        job_id=job.id,
        import_file_id=job.import_file_id,
        dataset_id=job.dataset_id,
        sheet_name=job.sheet_name,
        stage=job.stage,
        last_successful_stage=job.last_successful_stage,
        progress=job.progress,
        duplicates_summary=(job.duplicates or {}).get("summary"),
        detected_field_mappings=job.detected_field_mappings,
        schema_validation=job.schema_validation,
        geocoding_summary=(job.geocoding_results or {}).get("summary"),
        results=job.results,
        error_log=job.error_log,
        retry_attempts=job.retry_attempts,
        created_at=job.created_at,
        updated_at=job.updated_at,
    )

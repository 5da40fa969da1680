"""
app/api/routers/scheduled_imports.py

Scheduled import definition and manual trigger endpoints.
"""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.schemas.scheduled_imports import (
    ScheduledImportCreateRequest,
    ScheduledImportListResponse,
    ScheduledImportResponse,
    ScheduleRunResponse,
)
from app.services.feature_flags import FeatureDisabledError
from app.services.scheduled_imports import (
    ScheduleConfigurationError,
    ScheduledImportManager,
    get_scheduled_import_manager,
)
from db.models.scheduled_import import ScheduledImport
from db.repositories.errors import ScheduledImportNotFoundError
from db.repositories.scheduled_import_repository import ScheduledImportRepository
from db.session import get_db

router = APIRouter(prefix="/scheduled-imports", tags=["scheduled-imports"])


@router.post("", status_code=status.HTTP_201_CREATED, response_model=ScheduledImportResponse)
def create_scheduled_import(
    request: ScheduledImportCreateRequest,
    db: Session = Depends(get_db),
    manager: ScheduledImportManager = Depends(get_scheduled_import_manager),
) -> ScheduledImportResponse:
    fields = request.model_dump()
    fields["source_url"] = str(request.source_url)
    if request.schedule_type == "cron":
        fields["frequency"] = None
    try:
        schedule = manager.create_schedule(db=db, **fields)
    except ScheduleConfigurationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return _to_response(schedule)


@router.get("", response_model=ScheduledImportListResponse)
def list_scheduled_imports(
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
) -> ScheduledImportListResponse:
    schedules = ScheduledImportRepository(db).list_all(limit=limit)
    return ScheduledImportListResponse(schedules=[_to_response(schedule) for schedule in schedules])


@router.post("/{schedule_id}/run", status_code=status.HTTP_202_ACCEPTED, response_model=ScheduleRunResponse)
def run_scheduled_import(
    schedule_id: UUID,
    db: Session = Depends(get_db),
    manager: ScheduledImportManager = Depends(get_scheduled_import_manager),
) -> ScheduleRunResponse:
    try:
        triggered = manager.run_now(db=db, schedule_id=schedule_id)
    except ScheduledImportNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except FeatureDisabledError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    except ScheduleConfigurationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    if not triggered:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Scheduled import {schedule_id} is already running.",
        )
    return ScheduleRunResponse(schedule_id=schedule_id, triggered=True, detail="Import queued.")


def _to_response(schedule: ScheduledImport) -> ScheduledImportResponse:
    return ScheduledImportResponse(
        schedule_id=schedule.id,
        name=schedule.name,
        source_url=schedule.source_url,
        enabled=schedule.enabled,
        schedule_type=schedule.schedule_type,
        frequency=schedule.frequency,
        cron_expression=schedule.cron_expression,
        timezone=schedule.timezone,
        last_run=schedule.last_run,
        next_run=schedule.next_run,
        last_status=schedule.last_status,
        last_error=schedule.last_error,
        statistics=schedule.statistics,
        execution_history=schedule.execution_history,
    )

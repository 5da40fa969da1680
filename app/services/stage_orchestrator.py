"""
app/services/stage_orchestrator.py

Drives import jobs through the pipeline stage graph.

Every stage runs as a queued task for one (job, stage, batch). A handler
returns a StageOutcome that the orchestrator turns into the next task:
another batch of the same stage, the successor stage, or nothing when the
job halts for approval. Exceptions from handlers never escape: the job is
marked FAILED with an error log and the parent file status is re-evaluated.
"""

from __future__ import annotations

import copy
import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any

from sqlalchemy.orm import Session, sessionmaker

from app.config import PipelineSettings, get_pipeline_settings, get_storage_settings
from app.domain.stages import (
    DEFAULT_RECOVERY_STAGES,
    StageTransitionError,
    stage_after,
    validate_transition,
)
from app.services.dataset_detection import DatasetDetectionService
from app.services.duplicate_analysis import DuplicateAnalysisService
from app.services.event_materializer import EventMaterializer
from app.services.feature_flags import FeatureFlagService
from app.services.geocoding_service import BatchGeocoder
from app.services.schema_detection import SchemaDetectionService
from app.services.schema_versioning import SchemaVersioningService
from app.services.stage_context import StageContext, StageOutcome
from app.services.task_queue import TaskQueue, get_task_queue
from db.models.import_file import ImportFile, ImportFileStatus
from db.models.import_job import ImportJob, ImportStage
from db.repositories.dataset_repository import DatasetRepository
from db.repositories.import_file_repository import ImportFileRepository
from db.repositories.import_job_repository import ImportJobRepository
from db.repositories.storage import FileStorageBackend, LocalFileStorage

logger = logging.getLogger(__name__)

StageHandler = Callable[[StageContext], StageOutcome]

MAX_ERROR_LENGTH = 2000

# Stages that wait for an external action instead of a queued task.
_UNQUEUED_STAGES = (ImportStage.AWAIT_APPROVAL, ImportStage.COMPLETED, ImportStage.FAILED)


class ErrorCategory:
    PERMANENT = "permanent"
    USER_ACTION_REQUIRED = "user_action_required"
    RECOVERABLE = "recoverable"


class JobStateError(RuntimeError):
    """
    Raised when a manual action does not fit the job's current stage.
    """


class RetryNotAllowedError(JobStateError):
    def __init__(self, message: str, *, category: str | None = None) -> None:
        self.category = category
        super().__init__(message)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_time(value: Any) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def classify_error(message: str | None) -> str:
    text = (message or "").lower()
    if "not found" in text or "no such file" in text:
        return ErrorCategory.PERMANENT
    if "quota" in text or "schema" in text or "approval" in text:
        return ErrorCategory.USER_ACTION_REQUIRED
    return ErrorCategory.RECOVERABLE


def stage_task_key(job_id: uuid.UUID, stage: str, batch_number: int = 0) -> str:
    if batch_number:
        return f"{job_id}:{stage}:{batch_number}"
    return f"{job_id}:{stage}"


class StageOrchestrator:
    def __init__(
        self,
        *,
        session_factory: sessionmaker[Session] | None = None,
        task_queue: TaskQueue | None = None,
        storage: FileStorageBackend | None = None,
        settings: PipelineSettings | None = None,
        feature_flags: FeatureFlagService | None = None,
        handlers: dict[str, StageHandler] | None = None,
        detection_service: DatasetDetectionService | None = None,
    ) -> None:
        if session_factory is None:
            from db.session import SessionLocal

            self._session_factory = SessionLocal
        else:
            self._session_factory = session_factory

        self._task_queue = task_queue or get_task_queue()
        self._storage = storage or LocalFileStorage(get_storage_settings().upload_root_dir)
        self._settings = settings or get_pipeline_settings()
        self._versioning = SchemaVersioningService()
        self._detection = detection_service or DatasetDetectionService(
            storage=self._storage,
            settings=self._settings,
            feature_flags=feature_flags,
        )
        self._handlers: dict[str, StageHandler] = {
            ImportStage.ANALYZE_DUPLICATES: DuplicateAnalysisService().run_batch,
            ImportStage.DETECT_SCHEMA: SchemaDetectionService().run_batch,
            ImportStage.VALIDATE_SCHEMA: self._versioning.validate,
            ImportStage.CREATE_SCHEMA_VERSION: self._versioning.create_version,
            ImportStage.GEOCODE_BATCH: BatchGeocoder().run_batch,
            ImportStage.CREATE_EVENTS: EventMaterializer(feature_flags=feature_flags).run_batch,
        }
        self._handlers.update(handlers or {})

    @property
    def task_queue(self) -> TaskQueue:
        return self._task_queue

    @property
    def storage(self) -> FileStorageBackend:
        return self._storage

    def register_with(self, task_queue: TaskQueue | None = None) -> TaskQueue:
        queue = task_queue or self._task_queue
        queue.register(ImportStage.DATASET_DETECTION, self._run_detection_task)
        for stage in self._handlers:
            queue.register(stage, self._stage_task_handler(stage))
        return queue

    # ------------------------------------------------------------------
    # Submission and task dispatch
    # ------------------------------------------------------------------

    def submit(self, db: Session, import_file: ImportFile) -> None:
        """
        Queue dataset detection for a new file. The caller commits.
        """

        ImportFileRepository(db).mark_processing(import_file)
        self._task_queue.enqueue(
            db,
            ImportStage.DATASET_DETECTION,
            {"import_file_id": str(import_file.id)},
            idempotency_key=f"file:{import_file.id}:{ImportStage.DATASET_DETECTION}",
        )
        logger.info("Import file submitted import_file=%s name=%s", import_file.id, import_file.original_name)

    def enqueue_stage(self, db: Session, job: ImportJob, stage: str, *, batch_number: int = 0) -> None:
        self._task_queue.enqueue(
            db,
            stage,
            {"import_job_id": str(job.id), "batch_number": batch_number},
            idempotency_key=stage_task_key(job.id, stage, batch_number),
        )

    def _stage_task_handler(self, stage: str) -> Callable[[Session, dict[str, Any]], dict[str, Any]]:
        def handler(db: Session, payload: dict[str, Any]) -> dict[str, Any]:
            return self.run_stage(
                db,
                uuid.UUID(str(payload["import_job_id"])),
                stage=stage,
                batch_number=int(payload.get("batch_number") or 0),
            )

        return handler

    def _run_detection_task(self, db: Session, payload: dict[str, Any]) -> dict[str, Any]:
        return self.run_dataset_detection(db, uuid.UUID(str(payload["import_file_id"])))

    # ------------------------------------------------------------------
    # Stage execution
    # ------------------------------------------------------------------

    def run_dataset_detection(self, db: Session, import_file_id: uuid.UUID) -> dict[str, Any]:
        files = ImportFileRepository(db)
        import_file = files.require(import_file_id)
        if import_file.status in ImportFileStatus.TERMINAL:
            return {"status": "skipped", "reason": "file_terminal"}
        if ImportJobRepository(db).list_for_file(import_file_id):
            return {"status": "skipped", "reason": "jobs_exist"}

        try:
            jobs = self._detection.detect(db, import_file)
            for job in jobs:
                self._start_stage(job, ImportStage.ANALYZE_DUPLICATES)
                job.last_successful_stage = ImportStage.DATASET_DETECTION
                self.enqueue_stage(db, job, ImportStage.ANALYZE_DUPLICATES)
            self.refresh_file_status(db, import_file_id)
        except Exception as exc:
            self._mark_file_failed(db, import_file_id=import_file_id, exc=exc)
            return {"status": "failed", "error": str(exc)[:MAX_ERROR_LENGTH]}

        return {"status": "completed", "jobs": [str(job.id) for job in jobs]}

    def run_stage(self, db: Session, job_id: uuid.UUID, *, stage: str, batch_number: int = 0) -> dict[str, Any]:
        """
        Run one batch of `stage` for a job and schedule whatever follows.
        """

        job = ImportJobRepository(db).lock(job_id)
        if job.stage != stage:
            logger.info("Stage task ignored job=%s task_stage=%s current_stage=%s", job_id, stage, job.stage)
            return {"status": "skipped", "reason": "stage_mismatch", "current_stage": job.stage}

        expected_batch = int(self._stage_progress(job, stage).get("next_batch") or 0)
        if batch_number != expected_batch:
            logger.info(
                "Stale batch task ignored job=%s stage=%s batch=%s expected=%s",
                job_id,
                stage,
                batch_number,
                expected_batch,
            )
            return {"status": "skipped", "reason": "stale_batch", "expected_batch": expected_batch}

        handler = self._handlers.get(stage)
        try:
            if handler is None:
                raise StageTransitionError(stage, stage, f"No handler for stage {stage!r}")
            ctx = StageContext(
                db=db,
                job=job,
                dataset=DatasetRepository(db).require(job.dataset_id),
                import_file=ImportFileRepository(db).require(job.import_file_id),
                batch_number=batch_number,
                settings=self._settings,
                storage=self._storage,
            )
            outcome = handler(ctx)
            self._apply_outcome(db, job, stage=stage, batch_number=batch_number, outcome=outcome)
        except Exception as exc:
            self._mark_job_failed(db, job_id=job_id, stage=stage, exc=exc)
            return {"status": "failed", "stage": stage, "error": str(exc)[:MAX_ERROR_LENGTH]}

        return {
            "status": "completed",
            "stage": stage,
            "batch_number": batch_number,
            "rows_processed": outcome.rows_processed,
            "next_stage": job.stage if job.stage != stage else None,
            **outcome.output,
        }

    def _apply_outcome(
        self,
        db: Session,
        job: ImportJob,
        *,
        stage: str,
        batch_number: int,
        outcome: StageOutcome,
    ) -> None:
        self._record_batch(job, stage, rows_processed=outcome.rows_processed, finished=not outcome.more_batches)
        if outcome.more_batches:
            self.continue_batch(db, job, stage, batch_number + 1)
            return
        if outcome.next_stage:
            self.advance(db, job, outcome.next_stage)
            return
        logger.info("Job halted job=%s stage=%s", job.id, stage)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def advance(self, db: Session, job: ImportJob, next_stage: str) -> bool:
        """
        Move a job to `next_stage` and queue its first batch.

        Returns False when the job is already in `next_stage`.
        """

        previous = job.stage
        if not validate_transition(previous, next_stage, recovery_stages=self._recovery_stages(db, job)):
            return False

        if previous != ImportStage.FAILED and next_stage != ImportStage.FAILED:
            job.last_successful_stage = previous
        job.stage = next_stage
        self._start_stage(job, next_stage)
        if next_stage not in _UNQUEUED_STAGES:
            self.enqueue_stage(db, job, next_stage)

        logger.info("Stage transition job=%s from=%s to=%s", job.id, previous, next_stage)
        if next_stage in ImportStage.TERMINAL:
            self.refresh_file_status(db, job.import_file_id)
        return True

    def continue_batch(self, db: Session, job: ImportJob, stage: str, batch_number: int) -> None:
        progress = copy.deepcopy(job.progress or {})
        stages = progress.setdefault("stages", {})
        stage_progress = stages.setdefault(stage, {})
        stage_progress["next_batch"] = batch_number
        job.progress = progress
        self.enqueue_stage(db, job, stage, batch_number=batch_number)

    # ------------------------------------------------------------------
    # Manual actions
    # ------------------------------------------------------------------

    def approve_schema(
        self,
        *,
        db: Session,
        job_id: uuid.UUID,
        approved_by: str,
        notes: str | None = None,
    ) -> ImportJob:
        job = ImportJobRepository(db).lock(job_id)
        if job.stage != ImportStage.AWAIT_APPROVAL:
            raise JobStateError(f"Import job {job_id} is not awaiting schema approval (stage={job.stage})")
        self._versioning.record_approval(job, approved_by=approved_by, notes=notes)
        self.advance(db, job, ImportStage.CREATE_SCHEMA_VERSION)
        db.commit()
        logger.info("Schema approved job=%s approved_by=%s", job_id, approved_by)
        return job

    def reject_schema(self, *, db: Session, job_id: uuid.UUID, reason: str | None = None) -> ImportJob:
        job = ImportJobRepository(db).lock(job_id)
        if job.stage != ImportStage.AWAIT_APPROVAL:
            raise JobStateError(f"Import job {job_id} is not awaiting schema approval (stage={job.stage})")
        self._versioning.reject_draft(db, job, reason=reason)
        job.error_log = self._error_log(
            stage=ImportStage.AWAIT_APPROVAL,
            message=f"Schema rejected: {reason or 'no reason given'}",
            error_type="SchemaRejected",
        )
        self.advance(db, job, ImportStage.FAILED)
        db.commit()
        logger.warning("Schema rejected job=%s reason=%s", job_id, reason)
        return job

    def retry_failed_job(self, *, db: Session, job_id: uuid.UUID) -> ImportJob:
        """
        Re-enter a failed job after its last successful stage.
        """

        job = ImportJobRepository(db).lock(job_id)
        if job.stage != ImportStage.FAILED:
            raise RetryNotAllowedError(f"Import job {job_id} is not failed (stage={job.stage})")

        message = (job.error_log or {}).get("message")
        category = classify_error(message)
        if category != ErrorCategory.RECOVERABLE:
            raise RetryNotAllowedError(
                f"Import job {job_id} failed with a non-retryable error ({category}): {message}",
                category=category,
            )
        if job.retry_attempts >= self._settings.max_task_attempts:
            raise RetryNotAllowedError(
                f"Import job {job_id} reached the retry limit ({self._settings.max_task_attempts})",
                category=category,
            )

        resume_stage = stage_after(job.last_successful_stage)
        recovery_stages = self._recovery_stages(db, job)
        if resume_stage not in recovery_stages:
            raise RetryNotAllowedError(
                f"Stage {resume_stage!r} is not a recovery stage for import job {job_id}",
                category=category,
            )

        resume_batch = int(self._stage_progress(job, resume_stage).get("next_batch") or 0)
        previous_error = job.error_log
        job.retry_attempts += 1
        job.stage = resume_stage
        job.error_log = None
        progress = copy.deepcopy(job.progress or {})
        progress["current_stage"] = resume_stage
        progress.setdefault("stages", {}).setdefault(resume_stage, {})["next_batch"] = resume_batch
        progress.setdefault("retries", []).append(
            {"attempt": job.retry_attempts, "resumed_at": resume_stage, "batch": resume_batch, "error": previous_error}
        )
        job.progress = progress
        self.enqueue_stage(db, job, resume_stage, batch_number=resume_batch)
        self.refresh_file_status(db, job.import_file_id)
        db.commit()
        logger.info(
            "Retrying failed job job=%s stage=%s batch=%s attempt=%s",
            job_id,
            resume_stage,
            resume_batch,
            job.retry_attempts,
        )
        return job

    # ------------------------------------------------------------------
    # File status roll-up
    # ------------------------------------------------------------------

    def refresh_file_status(self, db: Session, import_file_id: uuid.UUID) -> ImportFile:
        files = ImportFileRepository(db)
        import_file = files.require(import_file_id)
        db.flush()
        by_stage = ImportJobRepository(db).count_by_stage(import_file_id)
        total = sum(by_stage.values())
        completed = by_stage.get(ImportStage.COMPLETED, 0)
        failed = by_stage.get(ImportStage.FAILED, 0)
        terminal = completed + failed

        if total and terminal == total:
            status = ImportFileStatus.FAILED if failed else ImportFileStatus.COMPLETED
        else:
            status = ImportFileStatus.PROCESSING
        if status == ImportFileStatus.PROCESSING:
            import_file.completed_at = None

        files.apply_rollup(
            import_file,
            status=status,
            datasets_processed=terminal,
            job_summary={
                "total": total,
                "completed": completed,
                "failed": failed,
                "in_progress": total - terminal,
                "by_stage": by_stage,
            },
        )
        logger.info(
            "File status refreshed import_file=%s status=%s completed=%s failed=%s total=%s",
            import_file_id,
            status,
            completed,
            failed,
            total,
        )
        return import_file

    # ------------------------------------------------------------------
    # Progress bookkeeping
    # ------------------------------------------------------------------

    @staticmethod
    def _stage_progress(job: ImportJob, stage: str) -> dict[str, Any]:
        return dict(((job.progress or {}).get("stages") or {}).get(stage) or {})

    @staticmethod
    def _start_stage(job: ImportJob, stage: str) -> None:
        progress = copy.deepcopy(job.progress or {})
        progress["current_stage"] = stage
        progress["processed_rows"] = progress.get("total_rows", 0) if stage == ImportStage.COMPLETED else 0
        progress["estimated_completion"] = None
        if stage not in ImportStage.TERMINAL and stage != ImportStage.AWAIT_APPROVAL:
            progress.setdefault("stages", {})[stage] = {
                "started_at": _now().isoformat(),
                "completed_at": None,
                "rows_processed": 0,
                "batches": 0,
                "next_batch": 0,
            }
        job.progress = progress

    @staticmethod
    def _record_batch(job: ImportJob, stage: str, *, rows_processed: int, finished: bool) -> None:
        now = _now()
        progress = copy.deepcopy(job.progress or {})
        stage_progress = progress.setdefault("stages", {}).setdefault(stage, {})
        stage_progress.setdefault("started_at", now.isoformat())
        stage_progress["rows_processed"] = int(stage_progress.get("rows_processed") or 0) + rows_processed
        stage_progress["batches"] = int(stage_progress.get("batches") or 0) + 1
        if finished:
            stage_progress["completed_at"] = now.isoformat()

        total_rows = int(progress.get("total_rows") or 0)
        processed = min(stage_progress["rows_processed"], total_rows) if total_rows else stage_progress["rows_processed"]
        progress["processed_rows"] = processed
        progress["estimated_completion"] = None
        started_at = _parse_time(stage_progress.get("started_at"))
        if not finished and started_at is not None and 0 < processed < total_rows:
            per_row = (now - started_at) / processed
            progress["estimated_completion"] = (now + per_row * (total_rows - processed)).isoformat()
        job.progress = progress

    @staticmethod
    def _recovery_stages(db: Session, job: ImportJob) -> frozenset[str]:
        dataset = DatasetRepository(db).get(job.dataset_id)
        configured = ((dataset.processing_options or {}) if dataset else {}).get("recovery_stages")
        if configured:
            return frozenset(str(stage) for stage in configured)
        return DEFAULT_RECOVERY_STAGES

    # ------------------------------------------------------------------
    # Failure handling
    # ------------------------------------------------------------------

    @staticmethod
    def _error_log(*, stage: str, message: str, error_type: str) -> dict[str, Any]:
        return {
            "stage": stage,
            "message": message[:MAX_ERROR_LENGTH],
            "error_type": error_type,
            "timestamp": _now().isoformat(),
        }

    def _mark_job_failed(self, db: Session, *, job_id: uuid.UUID, stage: str, exc: Exception) -> None:
        error_message = f"{type(exc).__name__}: {exc}"
        logger.exception("Stage failed job=%s stage=%s error=%s", job_id, stage, error_message)
        try:
            db.rollback()
            job = ImportJobRepository(db).get(job_id)
            if job is None:
                logger.error("Unable to mark import job as failed because it was not found job=%s", job_id)
                return
            job.error_log = self._error_log(stage=stage, message=str(exc), error_type=type(exc).__name__)
            if job.stage not in ImportStage.TERMINAL:
                job.stage = ImportStage.FAILED
                self._start_stage(job, ImportStage.FAILED)
            self.refresh_file_status(db, job.import_file_id)
            db.commit()
        except Exception:
            db.rollback()
            logger.exception("Failed to persist failed import job state job=%s", job_id)

    def _mark_file_failed(self, db: Session, *, import_file_id: uuid.UUID, exc: Exception) -> None:
        logger.exception("Dataset detection failed import_file=%s error=%s", import_file_id, exc)
        try:
            db.rollback()
            import_file = ImportFileRepository(db).get(import_file_id)
            if import_file is None:
                logger.error("Unable to mark import file as failed because it was not found id=%s", import_file_id)
                return
            ImportFileRepository(db).mark_failed(
                import_file,
                error_log=self._error_log(
                    stage=ImportStage.DATASET_DETECTION,
                    message=str(exc),
                    error_type=type(exc).__name__,
                ),
            )
            db.commit()
        except Exception:
            db.rollback()
            logger.exception("Failed to persist failed import file state id=%s", import_file_id)


@lru_cache(maxsize=1)
def get_stage_orchestrator() -> StageOrchestrator:
    orchestrator = StageOrchestrator()
    orchestrator.register_with()
    return orchestrator

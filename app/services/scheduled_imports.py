"""
app/services/scheduled_imports.py

Scheduled import manager: due-schedule scan, trigger lock, and the url-fetch
task that turns a remote file into an import file.

Trigger concurrency
-------------------
A trigger first claims the schedule with a single conditional UPDATE
(`last_status <> 'running'`). Two managers scanning at the same moment can
both see a schedule as due, but only one claim succeeds, so one url-fetch
task is queued per due window. A running mark older than
STALE_RUNNING_AFTER is treated as abandoned and may be claimed again.

Schedule times (UTC)
--------------------
  hourly  -> next full hour
  daily   -> next midnight
  weekly  -> next Sunday midnight
  monthly -> first day of next month, midnight
  cron    -> next fire time of the crontab in the schedule's timezone
"""

from __future__ import annotations

import logging
import time
import uuid
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Any, Mapping
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.orm import Session, sessionmaker

from app.services.feature_flags import FeatureFlag, FeatureFlagService, get_feature_flag_service
from app.services.file_intake_service import FileIntakeService, get_file_intake_service
from app.services.task_queue import TaskQueue, get_task_queue
from app.services.url_fetch_service import FetchRequest, UrlFetchError, UrlFetchService
from db.models.scheduled_import import (
    ScheduledImport,
    ScheduleFrequency,
    ScheduleRunStatus,
    ScheduleType,
)
from db.repositories.import_file_repository import ImportFileRepository
from db.repositories.scheduled_import_repository import ScheduledImportRepository
from db.repositories.types import FileIntakeInput

logger = logging.getLogger(__name__)

URL_FETCH_TASK = "url-fetch"
MAX_HISTORY_ENTRIES = 10
STALE_RUNNING_AFTER = timedelta(hours=1)
DEFAULT_NAME_TEMPLATE = "{{name}}"


class ScheduleConfigurationError(ValueError):
    """
    Raised for an unknown frequency, invalid cron expression or timezone.
    """


# ---------------------------------------------------------------------------
# Schedule arithmetic
# ---------------------------------------------------------------------------


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def next_frequency_run(frequency: str, *, after: datetime) -> datetime:
    after = _as_utc(after)
    midnight = after.replace(hour=0, minute=0, second=0, microsecond=0)
    if frequency == ScheduleFrequency.HOURLY:
        return after.replace(minute=0, second=0, microsecond=0) + timedelta(hours=1)
    if frequency == ScheduleFrequency.DAILY:
        return midnight + timedelta(days=1)
    if frequency == ScheduleFrequency.WEEKLY:
        # weekday(): Monday=0 ... Sunday=6
        days_ahead = (6 - after.weekday()) % 7 or 7
        return midnight + timedelta(days=days_ahead)
    if frequency == ScheduleFrequency.MONTHLY:
        if after.month == 12:
            return midnight.replace(year=after.year + 1, month=1, day=1)
        return midnight.replace(month=after.month + 1, day=1)
    raise ScheduleConfigurationError(f"Unknown schedule frequency: {frequency!r}")


def _zone(name: str | None) -> ZoneInfo:
    try:
        return ZoneInfo(name or "UTC")
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ScheduleConfigurationError(f"Unknown timezone: {name!r}") from exc


def next_cron_run(cron_expression: str, *, timezone_name: str | None, after: datetime) -> datetime:
    zone = _zone(timezone_name)
    try:
        trigger = CronTrigger.from_crontab(cron_expression, timezone=zone)
    except ValueError as exc:
        raise ScheduleConfigurationError(f"Invalid cron expression {cron_expression!r}: {exc}") from exc
    fire_time = trigger.get_next_fire_time(None, _as_utc(after).astimezone(zone) + timedelta(seconds=1))
    if fire_time is None:
        raise ScheduleConfigurationError(f"Cron expression {cron_expression!r} never fires")
    return fire_time.astimezone(timezone.utc)


def compute_next_run(
    *,
    schedule_type: str,
    frequency: str | None,
    cron_expression: str | None,
    timezone_name: str | None,
    after: datetime,
) -> datetime:
    if schedule_type == ScheduleType.CRON:
        if not cron_expression:
            raise ScheduleConfigurationError("Cron schedules require a cron expression")
        return next_cron_run(cron_expression, timezone_name=timezone_name, after=after)
    if schedule_type == ScheduleType.FREQUENCY:
        if frequency not in ScheduleFrequency.ALL:
            raise ScheduleConfigurationError(f"Unknown schedule frequency: {frequency!r}")
        return next_frequency_run(frequency, after=after)
    raise ScheduleConfigurationError(f"Unknown schedule type: {schedule_type!r}")


def next_run_for(schedule: ScheduledImport, *, after: datetime) -> datetime:
    return compute_next_run(
        schedule_type=schedule.schedule_type,
        frequency=schedule.frequency,
        cron_expression=schedule.cron_expression,
        timezone_name=schedule.timezone,
        after=after,
    )


def is_due(schedule: ScheduledImport, *, now: datetime) -> bool:
    if not schedule.enabled:
        return False
    now = _as_utc(now)
    if schedule.next_run is not None:
        return _as_utc(schedule.next_run) <= now
    if schedule.last_run is None:
        return True
    return next_run_for(schedule, after=schedule.last_run) <= now


# ---------------------------------------------------------------------------
# Run bookkeeping
# ---------------------------------------------------------------------------


def render_import_name(template: str | None, *, schedule_name: str, url: str, now: datetime) -> str:
    text = template or DEFAULT_NAME_TEMPLATE
    replacements = {
        "{{name}}": schedule_name,
        "{{date}}": now.strftime("%Y-%m-%d"),
        "{{time}}": now.strftime("%H:%M:%S"),
        "{{url}}": url,
    }
    for token, value in replacements.items():
        text = text.replace(token, value)
    return text.strip() or schedule_name


def append_history(
    history: list[dict[str, Any]] | None,
    entry: Mapping[str, Any],
    *,
    limit: int = MAX_HISTORY_ENTRIES,
) -> list[dict[str, Any]]:
    """
    Newest-first execution history capped at `limit` entries.
    """

    return [dict(entry), *[dict(item) for item in (history or [])]][:limit]


def update_statistics(statistics: Mapping[str, Any] | None, *, success: bool, duration_ms: int) -> dict[str, Any]:
    stats = {
        "total_runs": 0,
        "successful_runs": 0,
        "failed_runs": 0,
        "average_duration_ms": 0,
        **dict(statistics or {}),
    }
    previous_runs = int(stats["total_runs"])
    stats["total_runs"] = previous_runs + 1
    if success:
        stats["successful_runs"] = int(stats["successful_runs"]) + 1
    else:
        stats["failed_runs"] = int(stats["failed_runs"]) + 1
    average = float(stats["average_duration_ms"] or 0)
    stats["average_duration_ms"] = round((average * previous_runs + duration_ms) / stats["total_runs"])
    return stats


# ---------------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------------


class ScheduledImportManager:
    def __init__(
        self,
        *,
        session_factory: sessionmaker[Session] | None = None,
        task_queue: TaskQueue | None = None,
        fetch_service: UrlFetchService | None = None,
        intake_service: FileIntakeService | None = None,
        feature_flags: FeatureFlagService | None = None,
    ) -> None:
        if session_factory is None:
            from db.session import SessionLocal

            self._session_factory = SessionLocal
        else:
            self._session_factory = session_factory
        self._task_queue = task_queue or get_task_queue()
        self._fetch_service = fetch_service or UrlFetchService()
        self._intake_service = intake_service
        self._feature_flags = feature_flags or get_feature_flag_service()

    @property
    def intake_service(self) -> FileIntakeService:
        if self._intake_service is None:
            self._intake_service = get_file_intake_service()
        return self._intake_service

    def register_with(self, task_queue: TaskQueue | None = None) -> TaskQueue:
        queue = task_queue or self._task_queue
        queue.register(URL_FETCH_TASK, self.execute)
        return queue

    # ------------------------------------------------------------------
    # Schedule definitions
    # ------------------------------------------------------------------

    def create_schedule(self, *, db: Session, now: datetime | None = None, **fields: Any) -> ScheduledImport:
        """
        Validate timing fields, compute the first next_run and persist.
        """

        now = _as_utc(now or datetime.now(timezone.utc))
        next_run = compute_next_run(
            schedule_type=fields.get("schedule_type") or ScheduleType.FREQUENCY,
            frequency=fields.get("frequency"),
            cron_expression=fields.get("cron_expression"),
            timezone_name=fields.get("timezone"),
            after=now,
        )
        schedule = ScheduledImportRepository(db).create(**fields, next_run=next_run)
        db.commit()
        logger.info("Scheduled import created id=%s name=%s next_run=%s", schedule.id, schedule.name, next_run)
        return schedule

    # ------------------------------------------------------------------
    # Triggering
    # ------------------------------------------------------------------

    def run_due_schedules(self, *, now: datetime | None = None) -> dict[str, Any]:
        """
        Trigger every enabled schedule that is due.
        """

        summary: dict[str, Any] = {"checked": 0, "triggered": 0, "skipped": 0, "errors": 0}
        if not self._feature_flags.is_enabled(FeatureFlag.SCHEDULED_JOB_EXECUTION):
            logger.info("Schedule manager skipped reason=scheduled_job_execution_disabled")
            summary["disabled"] = True
            return summary
        if not self._feature_flags.is_enabled(FeatureFlag.SCHEDULED_IMPORTS):
            logger.info("Schedule manager skipped reason=scheduled_imports_disabled")
            summary["disabled"] = True
            return summary

        now = _as_utc(now or datetime.now(timezone.utc))
        with self._session_factory() as db:
            schedules = ScheduledImportRepository(db).list_enabled()
            for schedule in schedules:
                summary["checked"] += 1
                try:
                    if not is_due(schedule, now=now):
                        continue
                    if self.trigger(db, schedule, now=now):
                        summary["triggered"] += 1
                    else:
                        summary["skipped"] += 1
                except ScheduleConfigurationError as exc:
                    summary["errors"] += 1
                    logger.warning("Schedule has invalid timing id=%s error=%s", schedule.id, exc)
        logger.info(
            "Schedule manager run checked=%s triggered=%s skipped=%s errors=%s",
            summary["checked"],
            summary["triggered"],
            summary["skipped"],
            summary["errors"],
        )
        return summary

    def trigger(self, db: Session, schedule: ScheduledImport, *, now: datetime, manual: bool = False) -> bool:
        """
        Claim the schedule and queue one url-fetch task. Commits.
        """

        schedule_id = schedule.id
        repository = ScheduledImportRepository(db)
        next_run = next_run_for(schedule, after=now)
        claimed = repository.try_mark_running(
            schedule_id=schedule_id,
            now=now,
            next_run=next_run,
            stale_before=now - STALE_RUNNING_AFTER,
        )
        if not claimed:
            db.rollback()
            logger.info("Schedule already running, trigger skipped id=%s", schedule_id)
            return False

        try:
            self._task_queue.enqueue(
                db,
                URL_FETCH_TASK,
                {"scheduled_import_id": str(schedule_id), "executed_at": now.isoformat(), "manual": manual},
                idempotency_key=f"schedule:{schedule_id}:{now.isoformat()}",
            )
            db.commit()
        except Exception as exc:
            logger.exception("Failed to queue scheduled import id=%s", schedule_id)
            try:
                db.rollback()
                current = repository.get(schedule_id)
                if current is not None:
                    current.last_status = ScheduleRunStatus.FAILED
                    current.last_error = f"Failed to queue import: {exc}"[:2000]
                    db.commit()
            except Exception:
                db.rollback()
                logger.exception("Failed to persist schedule trigger failure id=%s", schedule_id)
            return False

        logger.info("Schedule triggered id=%s manual=%s next_run=%s", schedule_id, manual, next_run)
        return True

    def run_now(self, *, db: Session, schedule_id: uuid.UUID, now: datetime | None = None) -> bool:
        self._feature_flags.require(FeatureFlag.SCHEDULED_IMPORTS)
        schedule = ScheduledImportRepository(db).require(schedule_id)
        return self.trigger(db, schedule, now=_as_utc(now or datetime.now(timezone.utc)), manual=True)

    # ------------------------------------------------------------------
    # url-fetch task
    # ------------------------------------------------------------------

    def execute(self, db: Session, payload: dict[str, Any]) -> dict[str, Any]:
        schedule_id = uuid.UUID(str(payload["scheduled_import_id"]))
        executed_at = payload.get("executed_at") or datetime.now(timezone.utc).isoformat()
        started = time.monotonic()
        repository = ScheduledImportRepository(db)
        schedule = repository.require(schedule_id)

        try:
            fetched = self._fetch_service.fetch(
                FetchRequest(
                    url=schedule.source_url,
                    auth_config=schedule.auth_config,
                    timeout_seconds=schedule.timeout_seconds,
                    max_file_size_mb=schedule.max_file_size_mb,
                    expected_content_type=schedule.expected_content_type,
                    max_retries=schedule.max_retries,
                    retry_delay_seconds=schedule.retry_delay_seconds,
                    exponential_backoff=schedule.exponential_backoff,
                )
            )

            duplicate = None
            if not schedule.skip_duplicate_checking and self._feature_flags.is_enabled(FeatureFlag.URL_FETCH_CACHING):
                duplicate = ImportFileRepository(db).find_completed_by_checksum(
                    checksum=fetched.content_hash,
                    scheduled_import_id=schedule.id,
                )

            if duplicate is not None:
                import_file_id = None
                logger.info(
                    "Scheduled fetch unchanged, no import created id=%s duplicate_of=%s",
                    schedule_id,
                    duplicate.id,
                )
            else:
                now = datetime.now(timezone.utc)
                import_file = self.intake_service.intake_in_session(
                    db,
                    FileIntakeInput(
                        file_name=fetched.file_name,
                        content=fetched.content,
                        catalog_id=schedule.catalog_id,
                        content_type=fetched.content_type,
                        original_name=render_import_name(
                            schedule.import_name_template,
                            schedule_name=schedule.name,
                            url=schedule.source_url,
                            now=now,
                        ),
                        scheduled_import_id=schedule.id,
                        run_metadata={
                            "url_fetch": fetched.metadata(),
                            "scheduled_execution": {
                                "scheduled_import_id": str(schedule.id),
                                "executed_at": executed_at,
                            },
                            "dataset_mapping": dict(schedule.dataset_mapping or {}),
                        },
                    ),
                    detected_type=fetched.file_type,
                )
                import_file_id = import_file.id

            duration_ms = int((time.monotonic() - started) * 1000)
            entry = {
                "executed_at": executed_at,
                "status": ScheduleRunStatus.SUCCESS,
                "duration_ms": duration_ms,
                "import_file_id": str(import_file_id) if import_file_id else None,
                "error": None,
            }
            if duplicate is not None:
                entry["duplicate_of"] = str(duplicate.id)
            schedule.current_retries = max(0, fetched.attempts - 1)
            repository.record_result(
                schedule,
                status=ScheduleRunStatus.SUCCESS,
                error=None,
                statistics=update_statistics(schedule.statistics, success=True, duration_ms=duration_ms),
                execution_history=append_history(schedule.execution_history, entry),
            )
        except Exception as exc:
            self._mark_run_failed(db, schedule_id=schedule_id, executed_at=executed_at, started=started, exc=exc)
            return {"status": ScheduleRunStatus.FAILED, "error": str(exc)[:2000]}

        return {
            "status": ScheduleRunStatus.SUCCESS,
            "import_file_id": entry["import_file_id"],
            "duplicate_of": entry.get("duplicate_of"),
            "duration_ms": duration_ms,
        }

    def _mark_run_failed(
        self,
        db: Session,
        *,
        schedule_id: uuid.UUID,
        executed_at: str,
        started: float,
        exc: Exception,
    ) -> None:
        error_message = f"{type(exc).__name__}: {exc}"[:2000]
        logger.exception("Scheduled import failed id=%s error=%s", schedule_id, error_message)
        try:
            db.rollback()
            repository = ScheduledImportRepository(db)
            schedule = repository.get(schedule_id)
            if schedule is None:
                logger.error("Unable to record failed run because schedule was not found id=%s", schedule_id)
                return
            duration_ms = int((time.monotonic() - started) * 1000)
            if isinstance(exc, UrlFetchError) and exc.attempts:
                schedule.current_retries = max(0, exc.attempts - 1)
            repository.record_result(
                schedule,
                status=ScheduleRunStatus.FAILED,
                error=error_message,
                statistics=update_statistics(schedule.statistics, success=False, duration_ms=duration_ms),
                execution_history=append_history(
                    schedule.execution_history,
                    {
                        "executed_at": executed_at,
                        "status": ScheduleRunStatus.FAILED,
                        "duration_ms": duration_ms,
                        "import_file_id": None,
                        "error": error_message,
                    },
                ),
            )
            db.commit()
        except Exception:
            db.rollback()
            logger.exception("Failed to persist scheduled import failure id=%s", schedule_id)


@lru_cache(maxsize=1)
def get_scheduled_import_manager() -> ScheduledImportManager:
    manager = ScheduledImportManager()
    manager.register_with()
    return manager

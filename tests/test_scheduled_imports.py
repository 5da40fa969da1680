"""
tests/test_scheduled_imports.py

Coverage:
- frequency and cron next-run arithmetic
- due checks, name templates, history and statistics helpers
- the running-status claim that serializes triggers, including stale claims
- url-fetch execution end to end, unchanged-content skips and fetch failures
- feature flags gating the schedule manager
"""

from __future__ import annotations

import unittest
import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from app.services.feature_flags import FeatureDisabledError, FeatureFlag
from app.services.scheduled_imports import (
    URL_FETCH_TASK,
    ScheduleConfigurationError,
    ScheduledImportManager,
    append_history,
    compute_next_run,
    is_due,
    next_cron_run,
    next_frequency_run,
    render_import_name,
    update_statistics,
)
from db.models.import_file import ImportFile, ImportFileStatus
from db.models.scheduled_import import ScheduledImport, ScheduleRunStatus
from db.repositories.event_repository import EventRepository
from db.repositories.import_job_repository import ImportJobRepository

# 2026-10-18 is a Sunday.
SUNDAY = datetime(2026, 10, 18, 10, 15, tzinfo=timezone.utc)
FEED_URL = "https://data.example.com/feeds/events.csv"
FEED_BODY = (
    "title,date,location\n"
    "Jazz Night,2026-10-01,Berlin Alexanderplatz\n"
    "Art Walk,2026-10-02,Hamburg Hafen\n"
)


class TestScheduleArithmetic(unittest.TestCase):
    def test_frequencies(self) -> None:
        self.assertEqual(next_frequency_run("hourly", after=SUNDAY), datetime(2026, 10, 18, 11, tzinfo=timezone.utc))
        self.assertEqual(next_frequency_run("daily", after=SUNDAY), datetime(2026, 10, 19, tzinfo=timezone.utc))
        self.assertEqual(next_frequency_run("monthly", after=SUNDAY), datetime(2026, 11, 1, tzinfo=timezone.utc))
        self.assertEqual(
            next_frequency_run("monthly", after=datetime(2026, 12, 31, 23, tzinfo=timezone.utc)),
            datetime(2027, 1, 1, tzinfo=timezone.utc),
        )

    def test_weekly_runs_on_the_next_sunday(self) -> None:
        wednesday = datetime(2026, 10, 14, 8, tzinfo=timezone.utc)
        self.assertEqual(next_frequency_run("weekly", after=wednesday), datetime(2026, 10, 18, tzinfo=timezone.utc))
        self.assertEqual(next_frequency_run("weekly", after=SUNDAY), datetime(2026, 10, 25, tzinfo=timezone.utc))

    def test_naive_datetimes_are_utc(self) -> None:
        self.assertEqual(
            next_frequency_run("daily", after=datetime(2026, 10, 18, 23, 59)),
            datetime(2026, 10, 19, tzinfo=timezone.utc),
        )

    def test_cron_in_schedule_timezone(self) -> None:
        # 09:30 in Berlin is 07:30 UTC while summer time is in effect.
        after = datetime(2026, 10, 18, 7, 0, tzinfo=timezone.utc)
        self.assertEqual(
            next_cron_run("30 9 * * *", timezone_name="Europe/Berlin", after=after),
            datetime(2026, 10, 18, 7, 30, tzinfo=timezone.utc),
        )

    def test_cron_fires_strictly_after(self) -> None:
        after = datetime(2026, 10, 18, 7, 30, tzinfo=timezone.utc)
        self.assertEqual(
            next_cron_run("30 9 * * *", timezone_name="Europe/Berlin", after=after),
            datetime(2026, 10, 19, 7, 30, tzinfo=timezone.utc),
        )

    def test_invalid_configuration(self) -> None:
        with self.assertRaises(ScheduleConfigurationError):
            next_cron_run("not a cron", timezone_name="UTC", after=SUNDAY)
        with self.assertRaises(ScheduleConfigurationError):
            next_cron_run("0 * * * *", timezone_name="Mars/Olympus", after=SUNDAY)
        with self.assertRaises(ScheduleConfigurationError):
            compute_next_run(
                schedule_type="frequency", frequency="fortnightly", cron_expression=None, timezone_name=None, after=SUNDAY
            )
        with self.assertRaises(ScheduleConfigurationError):
            compute_next_run(schedule_type="cron", frequency=None, cron_expression=None, timezone_name=None, after=SUNDAY)


class TestIsDue(unittest.TestCase):
    def _schedule(self, **fields) -> ScheduledImport:
        defaults = {"enabled": True, "schedule_type": "frequency", "frequency": "daily", "timezone": "UTC"}
        return ScheduledImport(**{**defaults, **fields})

    def test_next_run_drives_due_check(self) -> None:
        self.assertTrue(is_due(self._schedule(next_run=SUNDAY), now=SUNDAY))
        self.assertFalse(is_due(self._schedule(next_run=SUNDAY + timedelta(seconds=1)), now=SUNDAY))

    def test_disabled_is_never_due(self) -> None:
        self.assertFalse(is_due(self._schedule(enabled=False, next_run=SUNDAY), now=SUNDAY))

    def test_falls_back_to_last_run(self) -> None:
        self.assertTrue(is_due(self._schedule(), now=SUNDAY))
        self.assertFalse(is_due(self._schedule(last_run=SUNDAY - timedelta(hours=1)), now=SUNDAY))
        self.assertTrue(is_due(self._schedule(last_run=SUNDAY - timedelta(days=1)), now=SUNDAY))


class TestRunBookkeeping(unittest.TestCase):
    def test_render_import_name(self) -> None:
        name = render_import_name("{{name}} {{date}} {{time}}", schedule_name="Feed", url=FEED_URL, now=SUNDAY)
        self.assertEqual(name, "Feed 2026-10-18 10:15:00")
        self.assertEqual(render_import_name(None, schedule_name="Feed", url=FEED_URL, now=SUNDAY), "Feed")
        self.assertEqual(render_import_name("  ", schedule_name="Feed", url=FEED_URL, now=SUNDAY), "Feed")
        self.assertEqual(render_import_name("{{url}}", schedule_name="Feed", url=FEED_URL, now=SUNDAY), FEED_URL)

    def test_history_is_newest_first_and_capped(self) -> None:
        history: list[dict] = []
        for number in range(12):
            history = append_history(history, {"run": number})
        self.assertEqual(len(history), 10)
        self.assertEqual(history[0], {"run": 11})
        self.assertEqual(history[-1], {"run": 2})

    def test_statistics_running_average(self) -> None:
        stats = update_statistics(None, success=True, duration_ms=100)
        stats = update_statistics(stats, success=False, duration_ms=300)
        self.assertEqual(
            stats,
            {"total_runs": 2, "successful_runs": 1, "failed_runs": 1, "average_duration_ms": 200},
        )


# ---------------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------------


def _create(manager: ScheduledImportManager, pipeline, **fields) -> uuid.UUID:
    values = {
        "name": "City feed",
        "source_url": FEED_URL,
        "frequency": "daily",
        "import_name_template": "{{name}} {{date}}",
        **fields,
    }
    with pipeline.session_factory() as db:
        return manager.create_schedule(db=db, now=SUNDAY, **values).id


def _schedule(pipeline, schedule_id: uuid.UUID) -> ScheduledImport:
    with pipeline.session_factory() as db:
        schedule = db.get(ScheduledImport, schedule_id)
        assert schedule is not None
        return schedule


class TestTriggerClaim:
    def test_create_computes_first_run(self, manager, pipeline) -> None:
        schedule = _schedule(pipeline, _create(manager, pipeline))
        assert schedule.next_run == datetime(2026, 10, 19, tzinfo=timezone.utc)
        assert schedule.last_status is None

    def test_create_rejects_bad_cron(self, manager, pipeline) -> None:
        with pytest.raises(ScheduleConfigurationError):
            _create(manager, pipeline, schedule_type="cron", cron_expression="every day")

    def test_due_schedule_is_triggered_once(self, manager, pipeline) -> None:
        schedule_id = _create(manager, pipeline)
        due_at = datetime(2026, 10, 19, 0, 0, 5, tzinfo=timezone.utc)

        assert manager.run_due_schedules(now=SUNDAY)["triggered"] == 0
        first = manager.run_due_schedules(now=due_at)
        second = manager.run_due_schedules(now=due_at)

        assert (first["checked"], first["triggered"]) == (1, 1)
        assert second["triggered"] == 0
        schedule = _schedule(pipeline, schedule_id)
        assert schedule.last_status == ScheduleRunStatus.RUNNING
        assert schedule.last_run == due_at
        assert schedule.next_run == datetime(2026, 10, 20, tzinfo=timezone.utc)
        with pipeline.session_factory() as db:
            assert len(pipeline.task_queue.pending(db, task_name=URL_FETCH_TASK)) == 1

    def test_running_claim_blocks_until_stale(self, manager, pipeline) -> None:
        schedule_id = _create(manager, pipeline)
        with pipeline.session_factory() as db:
            schedule = db.get(ScheduledImport, schedule_id)
            assert manager.trigger(db, schedule, now=SUNDAY) is True
            assert manager.trigger(db, schedule, now=SUNDAY + timedelta(minutes=30)) is False
            assert manager.trigger(db, schedule, now=SUNDAY + timedelta(hours=2)) is True
            assert len(pipeline.task_queue.pending(db, task_name=URL_FETCH_TASK)) == 2


class TestUrlFetchExecution:
    def test_fetch_creates_an_import_that_runs_to_completion(self, manager, pipeline, http_session) -> None:
        http_session.add(200, FEED_BODY, headers={"Content-Type": "text/csv"})
        schedule_id = _create(manager, pipeline, auth_config={"type": "api-key", "api_key": "k"})
        with pipeline.session_factory() as db:
            assert manager.run_now(db=db, schedule_id=schedule_id) is True
        pipeline.drain()

        schedule = _schedule(pipeline, schedule_id)
        assert schedule.last_status == ScheduleRunStatus.SUCCESS
        assert schedule.last_error is None
        assert schedule.statistics["successful_runs"] == 1
        entry = schedule.execution_history[0]
        assert entry["status"] == ScheduleRunStatus.SUCCESS
        assert http_session.requests[0]["headers"]["X-API-Key"] == "k"

        with pipeline.session_factory() as db:
            import_file = db.get(ImportFile, uuid.UUID(entry["import_file_id"]))
            assert import_file.scheduled_import_id == schedule_id
            assert import_file.status == ImportFileStatus.COMPLETED
            assert import_file.detected_type == "csv"
            assert import_file.original_name.startswith("City feed ")
            assert import_file.run_metadata["url_fetch"]["source_url"] == FEED_URL
            assert import_file.run_metadata["scheduled_execution"]["scheduled_import_id"] == str(schedule_id)

            jobs = ImportJobRepository(db).list_for_file(import_file.id)
            assert len(jobs) == 1
            assert EventRepository(db).count_for_job(jobs[0].id) == 2

    def test_unchanged_content_is_not_imported_again(self, manager, pipeline, http_session) -> None:
        http_session.add(200, FEED_BODY, headers={"Content-Type": "text/csv"})
        http_session.add(200, FEED_BODY, headers={"Content-Type": "text/csv"})
        schedule_id = _create(manager, pipeline)

        with pipeline.session_factory() as db:
            manager.run_now(db=db, schedule_id=schedule_id)
        pipeline.drain()
        with pipeline.session_factory() as db:
            manager.run_now(db=db, schedule_id=schedule_id)
        pipeline.drain()

        schedule = _schedule(pipeline, schedule_id)
        latest, first = schedule.execution_history[0], schedule.execution_history[1]
        assert latest["import_file_id"] is None
        assert latest["duplicate_of"] == first["import_file_id"]
        assert schedule.statistics["total_runs"] == 2
        with pipeline.session_factory() as db:
            assert len(db.scalars(select(ImportFile)).all()) == 1

    def test_duplicate_check_can_be_skipped(self, manager, pipeline, http_session) -> None:
        http_session.add(200, FEED_BODY, headers={"Content-Type": "text/csv"})
        http_session.add(200, FEED_BODY, headers={"Content-Type": "text/csv"})
        schedule_id = _create(manager, pipeline, skip_duplicate_checking=True)

        for _ in range(2):
            with pipeline.session_factory() as db:
                manager.run_now(db=db, schedule_id=schedule_id)
            pipeline.drain()

        with pipeline.session_factory() as db:
            assert len(db.scalars(select(ImportFile)).all()) == 2

    def test_fetch_failure_is_recorded_on_the_schedule(self, manager, pipeline, http_session) -> None:
        for _ in range(2):
            http_session.add(404)
        schedule_id = _create(manager, pipeline, max_retries=1)
        with pipeline.session_factory() as db:
            manager.run_now(db=db, schedule_id=schedule_id)
        pipeline.drain()

        schedule = _schedule(pipeline, schedule_id)
        assert schedule.last_status == ScheduleRunStatus.FAILED
        assert schedule.last_error.startswith("UrlFetchError")
        assert schedule.statistics["failed_runs"] == 1
        assert schedule.current_retries == 1
        assert len(http_session.requests) == 2
        assert schedule.execution_history[0]["import_file_id"] is None
        with pipeline.session_factory() as db:
            assert db.scalars(select(ImportFile)).first() is None

    def test_retried_fetch_records_retry_count(self, manager, pipeline, http_session) -> None:
        http_session.add(502)
        http_session.add(200, FEED_BODY, headers={"Content-Type": "text/csv"})
        schedule_id = _create(manager, pipeline, max_retries=2, retry_delay_seconds=0)
        with pipeline.session_factory() as db:
            manager.run_now(db=db, schedule_id=schedule_id)
        pipeline.drain()

        schedule = _schedule(pipeline, schedule_id)
        assert schedule.last_status == ScheduleRunStatus.SUCCESS
        assert schedule.current_retries == 1
        assert len(http_session.requests) == 2


class TestScheduleFeatureFlags:
    def test_execution_flag_pauses_the_manager(self, manager, pipeline) -> None:
        _create(manager, pipeline)
        with pipeline.session_factory() as db:
            pipeline.feature_flags.update_flags(db, {FeatureFlag.SCHEDULED_JOB_EXECUTION: False})
            db.commit()
        summary = manager.run_due_schedules(now=SUNDAY + timedelta(days=2))
        assert summary["disabled"] is True
        assert summary["triggered"] == 0

    def test_run_now_requires_scheduled_imports(self, manager, pipeline) -> None:
        schedule_id = _create(manager, pipeline)
        with pipeline.session_factory() as db:
            pipeline.feature_flags.update_flags(db, {FeatureFlag.SCHEDULED_IMPORTS: False})
            db.commit()
            with pytest.raises(FeatureDisabledError):
                manager.run_now(db=db, schedule_id=schedule_id)

"""
tests/test_import_pipeline.py

End-to-end flows through intake, the task queue and every stage handler.

Coverage:
- a fresh CSV import creates its dataset, schema version, cache entries and events
- re-importing the same file skips external duplicates and reuses the geocoding cache
- locked datasets wait for schema approval; approve and reject paths
- failed geocoding is retryable from the last successful stage
- a failure after schema approval resumes at version publishing
- a re-run geocoding batch replaces its own counters
- a new optional column auto-publishes the next schema version
- a workbook with one failing sheet rolls up to a failed file
- feature flags block intake, dataset creation and event creation
- explicit dataset mapping and intake validation errors
"""

from __future__ import annotations

import io
import uuid

import pandas as pd
import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.config import GeocodingSettings
from app.services.feature_flags import FeatureDisabledError, FeatureFlag
from app.services.geocoding_service import BatchGeocoder, ProviderChain
from app.services.stage_context import StageContext
from app.services.stage_orchestrator import ErrorCategory, JobStateError, RetryNotAllowedError
from db.models.dataset_schema_version import SchemaVersionStatus
from db.models.event import CoordinateSource, Event
from db.models.import_file import ImportFile, ImportFileStatus
from db.models.import_job import ImportJob, ImportStage
from db.repositories.catalog_repository import CatalogRepository
from db.repositories.dataset_repository import DatasetRepository
from db.repositories.errors import CatalogNotFoundError, UploadValidationError
from db.repositories.event_repository import EventRepository
from db.repositories.import_job_repository import ImportJobRepository
from db.repositories.location_cache_repository import LocationCacheRepository
from db.repositories.schema_version_repository import SchemaVersionRepository
from db.repositories.types import FileIntakeInput

EVENTS_CSV = (
    "title,date,location\n"
    "Jazz Night,2026-10-01,Berlin Alexanderplatz\n"
    "Art Walk,2026-10-02,Hamburg Hafen\n"
    "Book Fair,2026-10-03,berlin  alexanderplatz\n"
)

TWO_ROW_CSV = (
    "title,date,location\n"
    "Jazz Night,2026-10-01,Berlin Alexanderplatz\n"
    "Art Walk,2026-10-02,Hamburg Hafen\n"
)

PRICED_CSV = (
    "title,date,location,price\n"
    "Jazz Night,2026-10-01,Berlin Alexanderplatz,12\n"
    "Art Walk,2026-10-02,Hamburg Hafen,\n"
    "Food Market,2026-10-04,Munich Viktualienmarkt,8\n"
)

XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _file(db: Session, file_id: str) -> ImportFile:
    import_file = db.get(ImportFile, uuid.UUID(file_id))
    assert import_file is not None
    return import_file


def _only_job(db: Session, file_id: str) -> ImportJob:
    jobs = ImportJobRepository(db).list_for_file(uuid.UUID(file_id))
    assert len(jobs) == 1
    return jobs[0]


def _events(db: Session, job_id: uuid.UUID) -> list[Event]:
    stmt = select(Event).where(Event.import_job_id == job_id).order_by(Event.source_row)
    return list(db.scalars(stmt).all())


def _locked_dataset(session_factory, name: str = "Concerts") -> tuple[uuid.UUID, uuid.UUID]:
    with session_factory() as db:
        catalog = CatalogRepository(db).create(name="Venues")
        dataset = DatasetRepository(db).create(
            catalog_id=catalog.id,
            name=name,
            schema_config={"locked": True, "auto_grow": True, "auto_approve_non_breaking": True},
        )
        db.commit()
        return catalog.id, dataset.id


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------


class TestFreshImport:
    def test_csv_flows_through_every_stage(self, pipeline) -> None:
        file_id = pipeline.upload_csv(EVENTS_CSV)
        pipeline.drain()

        with pipeline.session_factory() as db:
            import_file = _file(db, file_id)
            assert import_file.status == ImportFileStatus.COMPLETED
            assert import_file.detected_type == "csv"
            assert import_file.job_summary["completed"] == 1

            job = _only_job(db, file_id)
            assert job.stage == ImportStage.COMPLETED
            assert job.last_successful_stage == ImportStage.CREATE_EVENTS
            assert job.progress["total_rows"] == 3
            assert job.progress["stages"][ImportStage.GEOCODE_BATCH]["batches"] == 2

            mappings = job.detected_field_mappings["mappings"]
            assert mappings["title"] == "title"
            assert mappings["timestamp"] == "date"
            assert mappings["location"] == "location"

            assert job.duplicates["summary"]["unique_rows"] == 3
            assert job.duplicates["summary"]["external_duplicates"] == 0

            summary = job.geocoding_results["summary"]
            assert summary["provider_calls"] == 2
            assert summary["cache_hits"] == 1
            assert summary["rows_geocoded"] == 3
            assert summary["addresses_resolved"] == 2

            assert job.results["total_events"] == 3
            assert job.results["geocoded"] == 3
            events = _events(db, job.id)
            assert [event.title for event in events] == ["Jazz Night", "Art Walk", "Book Fair"]
            assert all(event.coordinate_source == CoordinateSource.GEOCODED for event in events)
            assert events[0].latitude == events[2].latitude
            assert events[0].event_timestamp is not None

            dataset = DatasetRepository(db).require(job.dataset_id)
            assert dataset.name == "events.csv"
            versions = SchemaVersionRepository(db).list_versions(dataset.id)
            assert [(v.version_number, v.status) for v in versions] == [(1, SchemaVersionStatus.PUBLISHED)]
            assert versions[0].auto_approved is True
            assert dataset.current_schema_version_id == versions[0].id
            assert job.dataset_schema_version_id == versions[0].id

            assert LocationCacheRepository(db).count() == 2

        assert pipeline.geocoder.calls == ["Berlin Alexanderplatz", "Hamburg Hafen"]

    def test_reimport_skips_duplicates_and_reuses_cache(self, pipeline) -> None:
        first_id = pipeline.upload_csv(EVENTS_CSV)
        pipeline.drain()
        second_id = pipeline.upload_csv(EVENTS_CSV)
        pipeline.drain()

        with pipeline.session_factory() as db:
            first_job = _only_job(db, first_id)
            second_job = _only_job(db, second_id)
            assert second_job.dataset_id == first_job.dataset_id
            assert second_job.stage == ImportStage.COMPLETED
            assert _file(db, second_id).status == ImportFileStatus.COMPLETED

            duplicates = second_job.duplicates["summary"]
            assert duplicates["external_duplicates"] == 3
            assert duplicates["unique_rows"] == 0

            assert second_job.results["total_events"] == 0
            assert second_job.results["duplicates_skipped"] == 3
            assert EventRepository(db).count_for_dataset(first_job.dataset_id) == 3
            assert EventRepository(db).count_for_job(second_job.id) == 0

            assert second_job.geocoding_results["summary"]["provider_calls"] == 0
            assert second_job.geocoding_results["summary"]["cache_hits"] == 3

            # Unchanged schema reuses the published version.
            assert second_job.schema_validation["changes"] == []
            assert len(SchemaVersionRepository(db).list_versions(first_job.dataset_id)) == 1

            cache = LocationCacheRepository(db)
            assert cache.count() == 2
            assert cache.get("berlin alexanderplatz").hit_count == 4
            assert cache.get("hamburg hafen").hit_count == 2

            assert cache.purge(max_hit_count=2) == 1
            assert cache.get("hamburg hafen") is None
            assert cache.count() == 1

        assert len(pipeline.geocoder.calls) == 2


# ---------------------------------------------------------------------------
# Schema approval
# ---------------------------------------------------------------------------


class TestSchemaApproval:
    def test_locked_dataset_waits_then_completes_after_approval(self, pipeline) -> None:
        catalog_id, dataset_id = _locked_dataset(pipeline.session_factory)
        file_id = pipeline.upload_csv(EVENTS_CSV, original_name="Concerts", catalog_id=catalog_id)
        pipeline.drain()

        with pipeline.session_factory() as db:
            job = _only_job(db, file_id)
            assert job.dataset_id == dataset_id
            assert job.stage == ImportStage.AWAIT_APPROVAL
            assert job.schema_validation["requires_approval"] is True
            assert _file(db, file_id).status == ImportFileStatus.PROCESSING
            drafts = SchemaVersionRepository(db).list_versions(dataset_id)
            assert [v.status for v in drafts] == [SchemaVersionStatus.DRAFT]
            job_id = job.id

        with pipeline.session_factory() as db:
            pipeline.orchestrator.approve_schema(db=db, job_id=job_id, approved_by="ops@example.com", notes="looks fine")
        pipeline.drain()

        with pipeline.session_factory() as db:
            job = db.get(ImportJob, job_id)
            assert job.stage == ImportStage.COMPLETED
            assert EventRepository(db).count_for_job(job_id) == 3
            version = SchemaVersionRepository(db).get_published(dataset_id)
            assert version is not None
            assert version.version_number == 1
            assert version.approved_by == "ops@example.com"
            assert version.approval_notes == "looks fine"
            assert version.auto_approved is False
            assert _file(db, file_id).status == ImportFileStatus.COMPLETED

            with pytest.raises(JobStateError):
                pipeline.orchestrator.approve_schema(db=db, job_id=job_id, approved_by="ops@example.com")

    def test_rejection_fails_the_job_and_is_not_retryable(self, pipeline) -> None:
        catalog_id, dataset_id = _locked_dataset(pipeline.session_factory)
        file_id = pipeline.upload_csv(EVENTS_CSV, original_name="Concerts", catalog_id=catalog_id)
        pipeline.drain()

        with pipeline.session_factory() as db:
            job_id = _only_job(db, file_id).id
            pipeline.orchestrator.reject_schema(db=db, job_id=job_id, reason="unexpected columns")

        with pipeline.session_factory() as db:
            job = db.get(ImportJob, job_id)
            assert job.stage == ImportStage.FAILED
            assert job.error_log["error_type"] == "SchemaRejected"
            versions = SchemaVersionRepository(db).list_versions(dataset_id)
            assert [v.status for v in versions] == [SchemaVersionStatus.REJECTED]
            assert _file(db, file_id).status == ImportFileStatus.FAILED

            with pytest.raises(RetryNotAllowedError) as excinfo:
                pipeline.orchestrator.retry_failed_job(db=db, job_id=job_id)
            assert excinfo.value.category == ErrorCategory.USER_ACTION_REQUIRED
        assert pipeline.geocoder.calls == []

    def test_failure_after_approval_resumes_at_version_publishing(self, pipeline, monkeypatch) -> None:
        catalog_id, dataset_id = _locked_dataset(pipeline.session_factory)
        file_id = pipeline.upload_csv(TWO_ROW_CSV, original_name="Concerts", catalog_id=catalog_id)
        pipeline.drain()
        with pipeline.session_factory() as db:
            job_id = _only_job(db, file_id).id

        def connection_lost(ctx):
            raise ConnectionError("server closed the connection unexpectedly")

        monkeypatch.setitem(pipeline.orchestrator._handlers, ImportStage.CREATE_SCHEMA_VERSION, connection_lost)
        with pipeline.session_factory() as db:
            pipeline.orchestrator.approve_schema(db=db, job_id=job_id, approved_by="ops@example.com")
        pipeline.drain()

        with pipeline.session_factory() as db:
            job = db.get(ImportJob, job_id)
            assert job.stage == ImportStage.FAILED
            assert job.last_successful_stage == ImportStage.AWAIT_APPROVAL
            assert job.error_log["stage"] == ImportStage.CREATE_SCHEMA_VERSION
            assert SchemaVersionRepository(db).get_published(dataset_id) is None

        monkeypatch.undo()
        with pipeline.session_factory() as db:
            retried = pipeline.orchestrator.retry_failed_job(db=db, job_id=job_id)
            assert retried.stage == ImportStage.CREATE_SCHEMA_VERSION
        pipeline.drain()

        with pipeline.session_factory() as db:
            job = db.get(ImportJob, job_id)
            assert job.stage == ImportStage.COMPLETED
            assert job.progress["retries"][0]["resumed_at"] == ImportStage.CREATE_SCHEMA_VERSION
            versions = SchemaVersionRepository(db).list_versions(dataset_id)
            assert [(v.version_number, v.status) for v in versions] == [(1, SchemaVersionStatus.PUBLISHED)]
            assert versions[0].approved_by == "ops@example.com"
            assert DatasetRepository(db).require(dataset_id).current_schema_version_id == versions[0].id
            assert job.dataset_schema_version_id == versions[0].id
            assert EventRepository(db).count_for_job(job_id) == 2


# ---------------------------------------------------------------------------
# Failure and retry
# ---------------------------------------------------------------------------


class TestFailureAndRetry:
    def test_geocoding_failure_is_retried_from_geocoding(self, pipeline) -> None:
        pipeline.geocoder.fail = True
        file_id = pipeline.upload_csv(TWO_ROW_CSV)
        pipeline.drain()

        with pipeline.session_factory() as db:
            job = _only_job(db, file_id)
            assert job.stage == ImportStage.FAILED
            assert job.last_successful_stage == ImportStage.CREATE_SCHEMA_VERSION
            assert job.error_log["error_type"] == "GeocodingStageError"
            assert job.error_log["stage"] == ImportStage.GEOCODE_BATCH
            assert _file(db, file_id).status == ImportFileStatus.FAILED
            assert EventRepository(db).count_for_job(job.id) == 0
            job_id = job.id

        pipeline.geocoder.fail = False
        with pipeline.session_factory() as db:
            retried = pipeline.orchestrator.retry_failed_job(db=db, job_id=job_id)
            assert retried.stage == ImportStage.GEOCODE_BATCH
            assert retried.retry_attempts == 1
            assert _file(db, file_id).status == ImportFileStatus.PROCESSING
        pipeline.drain()

        with pipeline.session_factory() as db:
            job = db.get(ImportJob, job_id)
            assert job.stage == ImportStage.COMPLETED
            assert job.error_log is None
            assert job.progress["retries"][0]["resumed_at"] == ImportStage.GEOCODE_BATCH
            assert EventRepository(db).count_for_job(job_id) == 2
            assert job.results["geocoded"] == 2
            assert _file(db, file_id).status == ImportFileStatus.COMPLETED

            with pytest.raises(RetryNotAllowedError):
                pipeline.orchestrator.retry_failed_job(db=db, job_id=job_id)

    def test_retry_limit(self, pipeline, pipeline_settings) -> None:
        pipeline.geocoder.fail = True
        file_id = pipeline.upload_csv(TWO_ROW_CSV)
        pipeline.drain()

        with pipeline.session_factory() as db:
            job = _only_job(db, file_id)
            job.retry_attempts = pipeline_settings.max_task_attempts
            db.commit()
            with pytest.raises(RetryNotAllowedError) as excinfo:
                pipeline.orchestrator.retry_failed_job(db=db, job_id=job.id)
            assert excinfo.value.category == ErrorCategory.RECOVERABLE

    def test_rerunning_a_geocoding_batch_is_counted_once(self, pipeline) -> None:
        file_id = pipeline.upload_csv(EVENTS_CSV)
        pipeline.drain()

        with pipeline.session_factory() as db:
            job = _only_job(db, file_id)
            before = dict(job.geocoding_results["summary"])
            ctx = StageContext(
                db=db,
                job=job,
                dataset=DatasetRepository(db).require(job.dataset_id),
                import_file=_file(db, file_id),
                batch_number=1,
                settings=pipeline.settings,
                storage=pipeline.storage,
            )
            geocoding = BatchGeocoder(
                settings=GeocodingSettings(enabled=True),
                provider_chain=ProviderChain([pipeline.geocoder]),
            )
            geocoding.run_batch(ctx)
            geocoding.run_batch(ctx)

            assert job.geocoding_results["summary"] == before
            assert sorted(job.geocoding_results["batches"]) == ["0", "1"]
            assert job.geocoding_results["batches"]["1"]["rows_total"] == 1
            assert job.geocoding_results["batches"]["1"]["cache_hits"] == 1
        assert len(pipeline.geocoder.calls) == 2


# ---------------------------------------------------------------------------
# Schema evolution
# ---------------------------------------------------------------------------


class TestSchemaEvolution:
    def test_new_optional_column_publishes_next_version(self, pipeline) -> None:
        first_id = pipeline.upload_csv(TWO_ROW_CSV)
        pipeline.drain()
        second_id = pipeline.upload_csv(PRICED_CSV)
        pipeline.drain()

        with pipeline.session_factory() as db:
            first_job = _only_job(db, first_id)
            job = _only_job(db, second_id)
            assert job.dataset_id == first_job.dataset_id
            assert job.stage == ImportStage.COMPLETED

            validation = job.schema_validation
            assert [(change["type"], change["path"]) for change in validation["changes"]] == [("new_field", "price")]
            assert validation["changes"][0]["breaking"] is False
            assert validation["requires_approval"] is False
            assert validation["auto_approved"] is True
            assert ImportStage.CREATE_SCHEMA_VERSION in job.progress["stages"]
            assert ImportStage.AWAIT_APPROVAL not in job.progress["stages"]

            versions = SchemaVersionRepository(db).list_versions(job.dataset_id)
            assert [(v.version_number, v.status) for v in versions] == [
                (1, SchemaVersionStatus.SUPERSEDED),
                (2, SchemaVersionStatus.PUBLISHED),
            ]
            latest = versions[1]
            assert latest.auto_approved is True
            assert "price" in latest.schema["properties"]
            assert "price" not in latest.schema["required"]
            assert DatasetRepository(db).require(job.dataset_id).current_schema_version_id == latest.id
            assert job.dataset_schema_version_id == latest.id
            assert first_job.dataset_schema_version_id == versions[0].id


# ---------------------------------------------------------------------------
# Workbooks
# ---------------------------------------------------------------------------


def _workbook(sheets: dict[str, pd.DataFrame]) -> bytes:
    buffer = io.BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        for name, frame in sheets.items():
            frame.to_excel(writer, sheet_name=name, index=False)
    return buffer.getvalue()


class TestWorkbookImport:
    def test_one_failing_sheet_fails_the_file_but_keeps_the_other(self, pipeline) -> None:
        content = _workbook(
            {
                "Concerts": pd.DataFrame(
                    {
                        "title": ["Jazz Night", "Art Walk"],
                        "date": ["2026-10-01", "2026-10-02"],
                        "location": ["Berlin Alexanderplatz", "Hamburg Hafen"],
                    }
                ),
                "Fairs": pd.DataFrame(
                    {
                        "title": ["Book Fair", "Toy Fair"],
                        "date": ["2026-11-01", "2026-11-02"],
                        "location": ["Atlantis Harbour", "Nowhere Lane"],
                    }
                ),
            }
        )
        pipeline.geocoder.fail_addresses = {"Atlantis Harbour", "Nowhere Lane"}
        import_file = pipeline.intake.intake(
            FileIntakeInput(file_name="events.xlsx", content=content, content_type=XLSX_MIME)
        )
        pipeline.drain()

        with pipeline.session_factory() as db:
            stored = _file(db, str(import_file.id))
            assert stored.detected_type == "xlsx"
            assert stored.datasets_count == 2
            assert stored.status == ImportFileStatus.FAILED
            assert stored.datasets_processed == 2
            summary = stored.job_summary
            assert (summary["total"], summary["completed"], summary["failed"]) == (2, 1, 1)

            jobs = {job.sheet_name: job for job in ImportJobRepository(db).list_for_file(stored.id)}
            assert set(jobs) == {"Concerts", "Fairs"}
            concerts, fairs = jobs["Concerts"], jobs["Fairs"]
            assert concerts.stage == ImportStage.COMPLETED
            assert EventRepository(db).count_for_job(concerts.id) == 2
            assert fairs.stage == ImportStage.FAILED
            assert fairs.error_log["error_type"] == "GeocodingStageError"
            assert EventRepository(db).count_for_job(fairs.id) == 0
            assert DatasetRepository(db).require(concerts.dataset_id).name == "Concerts"
            assert DatasetRepository(db).require(fairs.dataset_id).name == "Fairs"


# ---------------------------------------------------------------------------
# Feature flags
# ---------------------------------------------------------------------------


class TestFeatureFlags:
    def _set(self, pipeline, **flags: bool) -> None:
        with pipeline.session_factory() as db:
            pipeline.feature_flags.update_flags(db, flags)
            db.commit()

    def test_import_creation_disabled_blocks_intake(self, pipeline) -> None:
        self._set(pipeline, **{FeatureFlag.IMPORT_CREATION: False})
        with pytest.raises(FeatureDisabledError) as excinfo:
            pipeline.upload_csv(EVENTS_CSV)
        assert excinfo.value.flag == FeatureFlag.IMPORT_CREATION
        with pipeline.session_factory() as db:
            assert db.scalars(select(ImportFile)).first() is None

    def test_dataset_creation_disabled_fails_the_file(self, pipeline) -> None:
        self._set(pipeline, **{FeatureFlag.DATASET_CREATION: False})
        file_id = pipeline.upload_csv(EVENTS_CSV)
        pipeline.drain()

        with pipeline.session_factory() as db:
            import_file = _file(db, file_id)
            assert import_file.status == ImportFileStatus.FAILED
            assert import_file.error_log["error_type"] == "FeatureDisabledError"
            assert ImportJobRepository(db).list_for_file(import_file.id) == []

    def test_event_creation_disabled_then_retried(self, pipeline) -> None:
        self._set(pipeline, **{FeatureFlag.EVENT_CREATION: False})
        file_id = pipeline.upload_csv(TWO_ROW_CSV)
        pipeline.drain()

        with pipeline.session_factory() as db:
            job = _only_job(db, file_id)
            assert job.stage == ImportStage.FAILED
            assert job.error_log["stage"] == ImportStage.CREATE_EVENTS
            job_id = job.id

        self._set(pipeline, **{FeatureFlag.EVENT_CREATION: True})
        with pipeline.session_factory() as db:
            retried = pipeline.orchestrator.retry_failed_job(db=db, job_id=job_id)
            assert retried.stage == ImportStage.CREATE_EVENTS
        pipeline.drain()

        with pipeline.session_factory() as db:
            assert db.get(ImportJob, job_id).stage == ImportStage.COMPLETED
            assert EventRepository(db).count_for_job(job_id) == 2
        assert len(pipeline.geocoder.calls) == 2


# ---------------------------------------------------------------------------
# Dataset mapping and intake validation
# ---------------------------------------------------------------------------


class TestDatasetMapping:
    def test_single_mode_targets_configured_dataset(self, pipeline) -> None:
        _, dataset_id = _locked_dataset(pipeline.session_factory, name="Somewhere Else")
        with pipeline.session_factory() as db:
            dataset = DatasetRepository(db).require(dataset_id)
            dataset.schema_config = {"locked": False, "auto_grow": True, "auto_approve_non_breaking": True}
            db.commit()

        file_id = pipeline.upload_csv(
            TWO_ROW_CSV,
            run_metadata={"dataset_mapping": {"mode": "single", "dataset_id": str(dataset_id)}},
        )
        pipeline.drain()

        with pipeline.session_factory() as db:
            job = _only_job(db, file_id)
            assert job.dataset_id == dataset_id
            assert job.stage == ImportStage.COMPLETED

    def test_missing_configured_dataset_fails_the_file(self, pipeline) -> None:
        file_id = pipeline.upload_csv(
            TWO_ROW_CSV,
            run_metadata={"dataset_mapping": {"mode": "single", "dataset_id": str(uuid.uuid4())}},
        )
        pipeline.drain()

        with pipeline.session_factory() as db:
            import_file = _file(db, file_id)
            assert import_file.status == ImportFileStatus.FAILED
            assert import_file.error_log["error_type"] == "DatasetDetectionError"

    def test_header_only_file_fails_detection(self, pipeline) -> None:
        file_id = pipeline.upload_csv("title,date,location\n")
        pipeline.drain()

        with pipeline.session_factory() as db:
            import_file = _file(db, file_id)
            assert import_file.status == ImportFileStatus.FAILED
            assert "No data rows" in import_file.error_log["message"]


class TestIntakeValidation:
    def test_unsupported_file_type(self, pipeline) -> None:
        with pytest.raises(UploadValidationError):
            pipeline.intake.intake(
                FileIntakeInput(file_name="slides.pdf", content=b"%PDF", content_type="application/pdf")
            )

    def test_empty_content(self, pipeline) -> None:
        with pytest.raises(UploadValidationError):
            pipeline.intake.intake(FileIntakeInput(file_name="events.csv", content=b"", content_type="text/csv"))

    def test_unknown_catalog(self, pipeline, tmp_path) -> None:
        with pytest.raises(CatalogNotFoundError):
            pipeline.upload_csv(EVENTS_CSV, catalog_id=uuid.uuid4())
        assert not (tmp_path / "imports").exists()

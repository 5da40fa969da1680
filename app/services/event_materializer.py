"""
app/services/event_materializer.py

create-events stage: turn validated, geocoded rows into Event records.

Internal duplicates are always skipped. External duplicates follow the
dataset's duplicate strategy: skip, update the stored event in place, or
write a new version of it.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Mapping

from app.domain.geocoding import ValidationStatus, normalize_address
from app.domain.value_parsing import parse_timestamp
from app.mappers.field_mapping_detector import FieldMappingResolution
from app.services.feature_flags import FeatureFlag, FeatureFlagService, get_feature_flag_service
from app.services.geocoding_service import row_address, row_coordinates
from app.services.id_generation import IdGenerator, extract_field_value
from app.services.stage_context import StageContext, StageOutcome
from db.models.dataset import DuplicateStrategy
from db.models.event import CoordinateSource, Event
from db.models.import_job import ImportStage
from db.repositories.event_repository import EventRepository
from db.repositories.row_key_repository import RowKeyRepository

logger = logging.getLogger(__name__)

MAX_ERROR_DETAILS = 1000
_TITLE_MAX = 1000
_LOCATION_NAME_MAX = 500


def empty_results() -> dict[str, Any]:
    return {
        "total_events": 0,
        "duplicates_skipped": 0,
        "events_updated": 0,
        "geocoded": 0,
        "errors": [],
    }


def _text(value: Any, limit: int | None = None) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    return text[:limit] if limit else text


class EventMaterializer:
    def __init__(self, *, feature_flags: FeatureFlagService | None = None) -> None:
        self._feature_flags = feature_flags

    @property
    def feature_flags(self) -> FeatureFlagService:
        if self._feature_flags is None:
            self._feature_flags = get_feature_flag_service()
        return self._feature_flags

    def run_batch(self, ctx: StageContext) -> StageOutcome:
        self.feature_flags.require(FeatureFlag.EVENT_CREATION)

        job = ctx.job
        dataset = ctx.dataset
        strategy = dataset.duplicate_strategy
        mappings = FieldMappingResolution.from_dict(job.detected_field_mappings)
        geocoded = dict((job.geocoding_results or {}).get("results") or {})
        results = dict(job.results or {}) if ctx.batch_number else empty_results()
        errors = list(results.get("errors") or [])

        rows = ctx.read_batch()
        start = ctx.batch_start
        stop = start + len(rows)
        keys = RowKeyRepository(ctx.db).rows_in_range(import_job_id=job.id, start=start, stop=stop)
        events = EventRepository(ctx.db)
        # A re-run batch must not write its rows twice.
        already_written = events.source_rows_for_job(import_job_id=job.id, start=start, stop=stop)
        generator = IdGenerator(dataset_id=dataset.id, id_strategy=dataset.id_strategy)

        for offset, row in enumerate(rows):
            row_number = start + offset
            if row_number in already_written:
                continue
            key = keys.get(row_number)
            if key is not None and key.is_internal_duplicate:
                results["duplicates_skipped"] += 1
                continue

            try:
                fields = self._event_fields(row, mappings=mappings, geocoded=geocoded)
            except (TypeError, ValueError) as exc:
                logger.warning("Event row rejected job=%s row=%s error=%s", job.id, row_number, exc)
                if len(errors) < MAX_ERROR_DETAILS:
                    errors.append({"row_number": row_number, "error": str(exc)[:500]})
                continue

            unique_id = key.unique_id if key is not None else generator.generate(row).unique_id
            existing_id = key.existing_event_id if key is not None else None
            if existing_id is not None:
                if strategy == DuplicateStrategy.SKIP:
                    results["duplicates_skipped"] += 1
                    continue
                if strategy == DuplicateStrategy.UPDATE:
                    existing = events.get(existing_id)
                    if existing is not None:
                        self._apply_fields(existing, fields)
                        existing.import_job_id = job.id
                        existing.source_row = row_number
                        results["events_updated"] += 1
                        if fields["coordinate_source"] == CoordinateSource.GEOCODED:
                            results["geocoded"] += 1
                        continue

            version = 1
            if existing_id is not None and strategy == DuplicateStrategy.VERSION:
                version = events.latest_version(dataset_id=dataset.id, unique_id=unique_id) + 1

            event = Event(
                id=uuid.uuid4(),
                dataset_id=dataset.id,
                import_job_id=job.id,
                unique_id=unique_id,
                version=version,
                source_row=row_number,
            )
            self._apply_fields(event, fields)
            events.add(event)
            results["total_events"] += 1
            if fields["coordinate_source"] == CoordinateSource.GEOCODED:
                results["geocoded"] += 1

        ctx.db.flush()
        results["errors"] = errors
        job.results = results
        logger.info(
            "Event batch materialized job=%s batch=%s rows=%s created=%s updated=%s skipped=%s strategy=%s",
            job.id,
            ctx.batch_number,
            len(rows),
            results["total_events"],
            results["events_updated"],
            results["duplicates_skipped"],
            strategy,
        )

        if ctx.has_more_after(len(rows)):
            return StageOutcome.next_batch(rows_processed=len(rows))
        return StageOutcome.advance(ImportStage.COMPLETED, rows_processed=len(rows), total_events=results["total_events"])

    @staticmethod
    def _event_fields(
        row: Mapping[str, Any],
        *,
        mappings: FieldMappingResolution,
        geocoded: Mapping[str, Mapping[str, Any]],
    ) -> dict[str, Any]:
        timestamp_value = extract_field_value(row, mappings.path_for("timestamp"))
        fields: dict[str, Any] = {
            "data": dict(row),
            "title": _text(extract_field_value(row, mappings.path_for("title")), _TITLE_MAX),
            "description": _text(extract_field_value(row, mappings.path_for("description"))),
            "location_name": _text(extract_field_value(row, mappings.path_for("location_name")), _LOCATION_NAME_MAX),
            "event_timestamp": parse_timestamp(timestamp_value) if timestamp_value not in (None, "") else None,
            "latitude": None,
            "longitude": None,
            "coordinate_source": CoordinateSource.NONE,
            "validation_status": None,
            "geocoded_address": None,
        }

        provided = row_coordinates(row, mappings)
        if provided is not None and provided.usable:
            fields.update(
                latitude=provided.latitude,
                longitude=provided.longitude,
                coordinate_source=CoordinateSource.IMPORT,
                validation_status=provided.status,
            )
            return fields
        if provided is not None:
            fields["validation_status"] = ValidationStatus.INVALID

        hit = geocoded.get(normalize_address(row_address(row, mappings)))
        if hit:
            fields.update(
                latitude=hit.get("latitude"),
                longitude=hit.get("longitude"),
                coordinate_source=CoordinateSource.GEOCODED,
                validation_status=ValidationStatus.VALID,
                geocoded_address=_text(hit.get("formatted_address"), _LOCATION_NAME_MAX),
            )
        return fields

    @staticmethod
    def _apply_fields(event: Event, fields: Mapping[str, Any]) -> None:
        for name, value in fields.items():
            setattr(event, name, value)

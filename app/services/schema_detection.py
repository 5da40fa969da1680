"""
app/services/schema_detection.py

detect-schema stage: accumulate field statistics over a bounded row sample,
then write the inferred schema and detected field mappings to the job.
"""

from __future__ import annotations

import logging

from app.mappers.field_mapping_detector import FieldMappingDetector
from app.services.schema_inference import SchemaBuilder
from app.services.stage_context import StageContext, StageOutcome
from db.models.import_job import ImportStage

logger = logging.getLogger(__name__)


class SchemaDetectionService:
    def __init__(self, *, detector: FieldMappingDetector | None = None) -> None:
        self._detector = detector or FieldMappingDetector()

    def builder_for(self, ctx: StageContext) -> SchemaBuilder:
        settings = ctx.settings
        return SchemaBuilder(
            max_depth=settings.schema_max_depth,
            enum_threshold=settings.enum_threshold,
            enum_mode=settings.enum_mode,
            state=ctx.job.schema_builder_state if ctx.batch_number else None,
        )

    def run_batch(self, ctx: StageContext) -> StageOutcome:
        job = ctx.job
        builder = self.builder_for(ctx)
        remaining_sample = max(0, ctx.settings.schema_sample_size - builder.rows_seen)
        rows = ctx.read_batch(limit=min(ctx.batch_size, remaining_sample)) if remaining_sample else []

        builder.observe_rows(rows)
        job.schema_builder_state = builder.to_state()

        sample_full = builder.rows_seen >= ctx.settings.schema_sample_size
        if not sample_full and ctx.has_more_after(len(rows)):
            return StageOutcome.next_batch(rows_processed=len(rows))

        schema = builder.build_schema()
        mappings = self._detector.detect(
            builder.field_statistics(),
            language=ctx.dataset.language,
            overrides=ctx.dataset.field_mapping_overrides,
        )
        job.detected_schema = schema.to_dict()
        job.detected_field_mappings = mappings.to_dict()
        logger.info(
            "Schema detected job=%s rows_sampled=%s fields=%s mappings=%s",
            job.id,
            builder.rows_seen,
            len(schema.properties),
            {name: match.path for name, match in mappings.matches.items()},
        )
        return StageOutcome.advance(
            ImportStage.VALIDATE_SCHEMA,
            rows_processed=len(rows),
            rows_sampled=builder.rows_seen,
        )

"""
app/services/duplicate_analysis.py

analyze-duplicates stage: compute each row's identity key and classify it
as unique, an internal duplicate (seen earlier in this file) or an external
duplicate (already stored as an event for the dataset).

Keys are persisted per row in import_row_keys so classification is stable
across batches. Resolution of duplicates happens at event creation.
"""

from __future__ import annotations

import logging
from typing import Any

from app.services.id_generation import IdGenerator
from app.services.stage_context import StageContext, StageOutcome
from db.models.import_job import ImportStage
from db.models.import_row_key import ImportRowKey
from db.repositories.event_repository import EventRepository
from db.repositories.row_key_repository import RowKeyRepository

logger = logging.getLogger(__name__)

# Detail lists stored on the job are capped; summary counts are exact.
MAX_DUPLICATE_DETAILS = 1000


def empty_duplicates(strategy: str) -> dict[str, Any]:
    return {
        "strategy": strategy,
        "internal": [],
        "external": [],
        "summary": {
            "total_rows": 0,
            "unique_rows": 0,
            "internal_duplicates": 0,
            "external_duplicates": 0,
            "missing_ids": 0,
        },
    }


class DuplicateAnalysisService:
    def run_batch(self, ctx: StageContext) -> StageOutcome:
        dataset = ctx.dataset
        job = ctx.job
        generator = IdGenerator(dataset_id=dataset.id, id_strategy=dataset.id_strategy)
        if ctx.batch_number and job.duplicates:
            state = dict(job.duplicates)
        else:
            state = empty_duplicates(generator.strategy_type)
        summary = dict(state["summary"])
        internal = list(state["internal"])
        external = list(state["external"])

        if not (dataset.deduplication_config or {}).get("enabled", True):
            summary.update(
                total_rows=ctx.total_rows,
                unique_rows=ctx.total_rows,
                internal_duplicates=0,
                external_duplicates=0,
            )
            job.duplicates = {**state, "summary": summary, "skipped": True}
            logger.info("Duplicate analysis skipped job=%s reason=deduplication_disabled", job.id)
            return StageOutcome.advance(ImportStage.DETECT_SCHEMA, rows_processed=ctx.total_rows)

        rows = ctx.read_batch()
        row_keys = RowKeyRepository(ctx.db)
        # A re-run batch replaces its own keys.
        row_keys.clear_from(import_job_id=job.id, start_row=ctx.batch_start)

        generated = []
        for offset, row in enumerate(rows):
            result = generator.generate(row)
            generated.append((ctx.batch_start + offset, result))
            if result.missing_id:
                summary["missing_ids"] = summary.get("missing_ids", 0) + 1

        unique_ids = [result.unique_id for _, result in generated]
        chunk_size = ctx.settings.duplicate_query_chunk_size
        earlier = row_keys.first_occurrences(import_job_id=job.id, unique_ids=unique_ids, chunk_size=chunk_size)
        stored = EventRepository(ctx.db).find_existing_ids(
            dataset_id=dataset.id,
            unique_ids=unique_ids,
            chunk_size=chunk_size,
        )

        seen_in_batch: dict[str, int] = {}
        keys: list[ImportRowKey] = []
        for row_number, result in generated:
            unique_id = result.unique_id
            first_row = earlier.get(unique_id, seen_in_batch.get(unique_id))
            existing_event_id = stored.get(unique_id)
            key = ImportRowKey(
                import_job_id=job.id,
                row_number=row_number,
                unique_id=unique_id,
                is_internal_duplicate=first_row is not None,
                existing_event_id=existing_event_id if first_row is None else None,
            )
            keys.append(key)

            if first_row is not None:
                summary["internal_duplicates"] += 1
                if len(internal) < MAX_DUPLICATE_DETAILS:
                    internal.append({"row_number": row_number, "unique_id": unique_id, "first_occurrence": first_row})
                continue

            seen_in_batch[unique_id] = row_number
            if existing_event_id is not None:
                summary["external_duplicates"] += 1
                if len(external) < MAX_DUPLICATE_DETAILS:
                    external.append(
                        {"row_number": row_number, "unique_id": unique_id, "existing_event_id": str(existing_event_id)}
                    )
            else:
                summary["unique_rows"] += 1

        row_keys.add_many(keys)
        summary["total_rows"] += len(rows)
        job.duplicates = {
            "strategy": generator.strategy_type,
            "internal": internal,
            "external": external,
            "summary": summary,
        }

        logger.info(
            "Duplicate batch analyzed job=%s batch=%s rows=%s internal=%s external=%s",
            job.id,
            ctx.batch_number,
            len(rows),
            summary["internal_duplicates"],
            summary["external_duplicates"],
        )
        if ctx.has_more_after(len(rows)):
            return StageOutcome.next_batch(rows_processed=len(rows))
        return StageOutcome.advance(ImportStage.DETECT_SCHEMA, rows_processed=len(rows), summary=summary)

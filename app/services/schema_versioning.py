"""
app/services/schema_versioning.py

validate-schema and create-schema-version stages, plus the approval
bookkeeping on dataset schema versions.

Versions are immutable snapshots. Changes that need approval are stored as
drafts; publishing a version supersedes the dataset's previous published
version and moves the dataset's current pointer in the same transaction.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.orm import Session

from app.domain.schema_types import schema_from_dict
from app.services.schema_comparison import compare_schemas
from app.services.schema_inference import SchemaBuilder
from app.services.stage_context import StageContext, StageOutcome
from db.models.dataset import Dataset
from db.models.dataset_schema_version import DatasetSchemaVersion, SchemaVersionStatus
from db.models.import_job import ImportJob, ImportStage
from db.repositories.dataset_repository import DatasetRepository
from db.repositories.schema_version_repository import SchemaVersionRepository

logger = logging.getLogger(__name__)

SYSTEM_APPROVER = "system"


class SchemaApprovalError(RuntimeError):
    """
    Raised when a schema version is created or approved out of order.
    """


def schema_summary(validation: dict[str, Any]) -> dict[str, Any]:
    return {
        "new_fields": list(validation.get("new_fields") or []),
        "removed_fields": list(validation.get("removed_fields") or []),
        "type_changes": list(validation.get("type_changes") or []),
        "enum_changes": list(validation.get("enum_changes") or []),
        "is_breaking": bool(validation.get("is_breaking")),
    }


class SchemaVersioningService:
    # ------------------------------------------------------------------
    # validate-schema
    # ------------------------------------------------------------------

    def validate(self, ctx: StageContext) -> StageOutcome:
        job = ctx.job
        dataset = ctx.dataset
        repository = SchemaVersionRepository(ctx.db)
        max_depth = ctx.settings.schema_max_depth

        published = repository.get_published(dataset.id)
        detected = schema_from_dict(job.detected_schema, max_depth=max_depth)
        comparison = compare_schemas(
            schema_from_dict(published.schema, max_depth=max_depth) if published else None,
            detected,
            schema_config=dataset.schema_config,
        )
        validation: dict[str, Any] = {
            **comparison.to_dict(),
            "published_version_id": str(published.id) if published else None,
            "draft_version_id": None,
            "approved": False,
            "auto_approved": False,
            "validated_at": datetime.now(timezone.utc).isoformat(),
        }

        if not comparison.has_changes and published is not None:
            validation.update(approved=True, auto_approved=True)
            job.schema_validation = validation
            job.dataset_schema_version_id = published.id
            logger.info("Schema unchanged job=%s version=%s", job.id, published.version_number)
            return StageOutcome.advance(ImportStage.GEOCODE_BATCH, changes=0)

        if comparison.requires_approval:
            draft = repository.create_version(
                dataset_id=dataset.id,
                schema=job.detected_schema or {},
                status=SchemaVersionStatus.DRAFT,
                field_metadata=self._field_metadata(ctx),
                schema_summary=schema_summary(validation),
                import_job_id=job.id,
            )
            validation["draft_version_id"] = str(draft.id)
            job.schema_validation = validation
            logger.warning(
                "Schema requires approval job=%s dataset=%s breaking=%s draft_version=%s",
                job.id,
                dataset.id,
                comparison.is_breaking,
                draft.version_number,
            )
            return StageOutcome.advance(
                ImportStage.AWAIT_APPROVAL,
                changes=len(comparison.changes),
                is_breaking=comparison.is_breaking,
            )

        validation.update(approved=True, auto_approved=True)
        job.schema_validation = validation
        logger.info("Schema changes auto-approved job=%s changes=%s", job.id, len(comparison.changes))
        return StageOutcome.advance(ImportStage.CREATE_SCHEMA_VERSION, changes=len(comparison.changes))

    # ------------------------------------------------------------------
    # create-schema-version
    # ------------------------------------------------------------------

    def create_version(self, ctx: StageContext) -> StageOutcome:
        job = ctx.job
        validation = dict(job.schema_validation or {})
        if not validation.get("approved"):
            raise SchemaApprovalError(f"Schema for import job {job.id} has not been approved")

        repository = SchemaVersionRepository(ctx.db)
        draft = self._draft_for(repository, validation)
        if draft is not None:
            version = draft
            version.approved_by = validation.get("approved_by") or version.approved_by
            version.approval_notes = validation.get("approval_notes")
            version.auto_approved = bool(validation.get("auto_approved"))
        else:
            version = repository.create_version(
                dataset_id=ctx.dataset.id,
                schema=job.detected_schema or {},
                status=SchemaVersionStatus.DRAFT,
                field_metadata=self._field_metadata(ctx),
                schema_summary=schema_summary(validation),
                import_job_id=job.id,
                auto_approved=bool(validation.get("auto_approved")),
                approved_by=validation.get("approved_by") or SYSTEM_APPROVER,
                approval_notes=validation.get("approval_notes"),
            )

        self.publish(ctx.db, dataset=ctx.dataset, version=version)
        job.dataset_schema_version_id = version.id
        return StageOutcome.advance(ImportStage.GEOCODE_BATCH, version_number=version.version_number)

    def publish(self, db: Session, *, dataset: Dataset, version: DatasetSchemaVersion) -> DatasetSchemaVersion:
        version.status = SchemaVersionStatus.PUBLISHED
        version.approved_at = datetime.now(timezone.utc)
        superseded = SchemaVersionRepository(db).supersede_published(dataset.id, keep_id=version.id)
        DatasetRepository(db).set_current_schema_version(dataset=dataset, version_id=version.id)
        logger.info(
            "Schema version published dataset=%s version=%s auto_approved=%s superseded=%s",
            dataset.id,
            version.version_number,
            version.auto_approved,
            superseded,
        )
        return version

    # ------------------------------------------------------------------
    # approval bookkeeping
    # ------------------------------------------------------------------

    def record_approval(self, job: ImportJob, *, approved_by: str, notes: str | None) -> dict[str, Any]:
        validation = dict(job.schema_validation or {})
        validation.update(
            approved=True,
            auto_approved=False,
            approved_by=approved_by,
            approval_notes=notes,
            approved_at=datetime.now(timezone.utc).isoformat(),
        )
        job.schema_validation = validation
        return validation

    def reject_draft(self, db: Session, job: ImportJob, *, reason: str | None) -> None:
        validation = dict(job.schema_validation or {})
        draft = self._draft_for(SchemaVersionRepository(db), validation)
        if draft is not None:
            draft.status = SchemaVersionStatus.REJECTED
            draft.approval_notes = reason
        validation.update(approved=False, rejected=True, rejection_reason=reason)
        job.schema_validation = validation

    @staticmethod
    def _draft_for(repository: SchemaVersionRepository, validation: dict[str, Any]) -> DatasetSchemaVersion | None:
        draft_id = validation.get("draft_version_id")
        if not draft_id:
            return None
        version = repository.get(uuid.UUID(str(draft_id)))
        if version is None or version.status != SchemaVersionStatus.DRAFT:
            return None
        return version

    @staticmethod
    def _field_metadata(ctx: StageContext) -> dict[str, Any]:
        builder = SchemaBuilder(
            max_depth=ctx.settings.schema_max_depth,
            enum_threshold=ctx.settings.enum_threshold,
            enum_mode=ctx.settings.enum_mode,
            state=ctx.job.schema_builder_state,
        )
        return builder.field_metadata()

"""create scheduled import, import file, job, row key, event and task queue tables

Revision ID: 20261001_0002
Revises: 20261001_0001
Create Date: 2026-10-01 09:30:00
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "20261001_0002"
down_revision = "20261001_0001"
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "scheduled_imports",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("catalog_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("source_url", sa.String(length=2000), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("auth_config", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("schedule_type", sa.String(length=20), nullable=False, server_default="frequency"),
        sa.Column("frequency", sa.String(length=20), nullable=True),
        sa.Column("cron_expression", sa.String(length=100), nullable=True),
        sa.Column("timezone", sa.String(length=64), nullable=False, server_default="UTC"),
        sa.Column("import_name_template", sa.String(length=500), nullable=True),
        sa.Column("dataset_mapping", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("max_retries", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("retry_delay_seconds", sa.Float(), nullable=False, server_default="1.0"),
        sa.Column("exponential_backoff", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("timeout_seconds", sa.Float(), nullable=False, server_default="30.0"),
        sa.Column("max_file_size_mb", sa.Float(), nullable=True),
        sa.Column("expected_content_type", sa.String(length=100), nullable=True),
        sa.Column("skip_duplicate_checking", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("last_run", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_run", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_status", sa.String(length=20), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("current_retries", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("statistics", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("execution_history", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["catalog_id"], ["catalogs.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_scheduled_imports_enabled_next_run",
        "scheduled_imports",
        ["enabled", "next_run"],
        unique=False,
    )

    op.create_table(
        "import_files",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("catalog_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("scheduled_import_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("file_name", sa.String(length=500), nullable=False),
        sa.Column("original_name", sa.String(length=500), nullable=False),
        sa.Column("storage_path", sa.String(length=1000), nullable=False),
        sa.Column("mime_type", sa.String(length=255), nullable=True),
        sa.Column("detected_type", sa.String(length=20), nullable=True),
        sa.Column("file_size_bytes", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("checksum", sa.String(length=64), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("datasets_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("datasets_processed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("sheet_metadata", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("job_summary", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("metadata", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("error_log", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("processing_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["catalog_id"], ["catalogs.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["scheduled_import_id"], ["scheduled_imports.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_import_files_status", "import_files", ["status"], unique=False)
    op.create_index("ix_import_files_catalog_id", "import_files", ["catalog_id"], unique=False)
    op.create_index(
        "ix_import_files_schedule_checksum",
        "import_files",
        ["scheduled_import_id", "checksum"],
        unique=False,
    )

    op.create_table(
        "import_jobs",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("import_file_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("dataset_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("sheet_index", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("sheet_name", sa.String(length=255), nullable=True),
        sa.Column("stage", sa.String(length=40), nullable=False),
        sa.Column("last_successful_stage", sa.String(length=40), nullable=True),
        sa.Column("progress", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("duplicates", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("schema", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("schema_builder_state", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("detected_field_mappings", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("schema_validation", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("dataset_schema_version_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("geocoding_results", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("results", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("error_log", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("retry_attempts", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.ForeignKeyConstraint(["import_file_id"], ["import_files.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["dataset_id"], ["datasets.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_import_jobs_import_file_id", "import_jobs", ["import_file_id"], unique=False)
    op.create_index("ix_import_jobs_dataset_id", "import_jobs", ["dataset_id"], unique=False)
    op.create_index("ix_import_jobs_stage", "import_jobs", ["stage"], unique=False)

    op.create_table(
        "import_row_keys",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("import_job_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("row_number", sa.Integer(), nullable=False),
        sa.Column("unique_id", sa.String(length=300), nullable=False),
        sa.Column("is_internal_duplicate", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("existing_event_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.ForeignKeyConstraint(["import_job_id"], ["import_jobs.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("import_job_id", "row_number", name="uq_import_row_keys_job_row"),
    )
    op.create_index(
        "ix_import_row_keys_job_unique_id",
        "import_row_keys",
        ["import_job_id", "unique_id"],
        unique=False,
    )

    op.create_table(
        "events",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("dataset_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("import_job_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("unique_id", sa.String(length=300), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("source_row", sa.Integer(), nullable=True),
        sa.Column("data", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("title", sa.String(length=1000), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("location_name", sa.String(length=500), nullable=True),
        sa.Column("event_timestamp", sa.DateTime(timezone=True), nullable=True),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("coordinate_source", sa.String(length=20), nullable=False, server_default="none"),
        sa.Column("validation_status", sa.String(length=30), nullable=True),
        sa.Column("geocoded_address", sa.String(length=500), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["dataset_id"], ["datasets.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["import_job_id"], ["import_jobs.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_events_dataset_unique_id", "events", ["dataset_id", "unique_id"], unique=False)
    op.create_index("ix_events_import_job_id", "events", ["import_job_id"], unique=False)
    op.create_index("ix_events_event_timestamp", "events", ["event_timestamp"], unique=False)

    op.create_table(
        "queued_tasks",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("task_name", sa.String(length=100), nullable=False),
        sa.Column("input_payload", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("idempotency_key", sa.String(length=255), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="queued"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("run_after", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("output", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_queued_tasks_status_run_after",
        "queued_tasks",
        ["status", "run_after"],
        unique=False,
    )
    op.create_index(
        "ix_queued_tasks_idempotency_key_status",
        "queued_tasks",
        ["idempotency_key", "status"],
        unique=False,
    )
    op.create_index("ix_queued_tasks_task_name", "queued_tasks", ["task_name"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_queued_tasks_task_name", table_name="queued_tasks")
    op.drop_index("ix_queued_tasks_idempotency_key_status", table_name="queued_tasks")
    op.drop_index("ix_queued_tasks_status_run_after", table_name="queued_tasks")
    op.drop_table("queued_tasks")
    op.drop_index("ix_events_event_timestamp", table_name="events")
    op.drop_index("ix_events_import_job_id", table_name="events")
    op.drop_index("ix_events_dataset_unique_id", table_name="events")
    op.drop_table("events")
    op.drop_index("ix_import_row_keys_job_unique_id", table_name="import_row_keys")
    op.drop_table("import_row_keys")
    op.drop_index("ix_import_jobs_stage", table_name="import_jobs")
    op.drop_index("ix_import_jobs_dataset_id", table_name="import_jobs")
    op.drop_index("ix_import_jobs_import_file_id", table_name="import_jobs")
    op.drop_table("import_jobs")
    op.drop_index("ix_import_files_schedule_checksum", table_name="import_files")
    op.drop_index("ix_import_files_catalog_id", table_name="import_files")
    op.drop_index("ix_import_files_status", table_name="import_files")
    op.drop_table("import_files")
    op.drop_index("ix_scheduled_imports_enabled_next_run", table_name="scheduled_imports")
    op.drop_table("scheduled_imports")

"""create catalog, dataset, schema version, settings and geocoding tables

Revision ID: 20261001_0001
Revises:
Create Date: 2026-10-01 09:00:00
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "20261001_0001"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "catalogs",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column(
            "is_public",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("false"),
            comment="Public catalogs are readable without ownership",
        ),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )
    op.create_index("ix_catalogs_is_public", "catalogs", ["is_public"], unique=False)

    op.create_table(
        "datasets",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("catalog_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("language", sa.String(length=3), nullable=False, server_default="eng"),
        sa.Column("schema_config", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("deduplication_config", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("id_strategy", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("field_mapping_overrides", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("import_transforms", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("processing_options", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("current_schema_version_id", postgresql.UUID(as_uuid=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["catalog_id"], ["catalogs.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("catalog_id", "name", name="uq_datasets_catalog_name"),
    )
    op.create_index("ix_datasets_catalog_id", "datasets", ["catalog_id"], unique=False)

    op.create_table(
        "dataset_schema_versions",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("dataset_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("version_number", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="draft"),
        sa.Column("schema", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("field_metadata", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("schema_summary", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("import_job_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("auto_approved", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("approved_by", sa.String(length=255), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approval_notes", sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["dataset_id"], ["datasets.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("dataset_id", "version_number", name="uq_schema_versions_dataset_version"),
    )
    op.create_index(
        "ix_schema_versions_dataset_status",
        "dataset_schema_versions",
        ["dataset_id", "status"],
        unique=False,
    )

    op.create_table(
        "app_settings",
        sa.Column("key", sa.String(length=100), nullable=False),
        sa.Column("value", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("key"),
    )

    op.create_table(
        "geocoding_providers",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("provider_type", sa.String(length=30), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="100"),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("rate_limit_per_second", sa.Float(), nullable=False, server_default="1.0"),
        sa.Column("config", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )
    op.create_index(
        "ix_geocoding_providers_enabled_priority",
        "geocoding_providers",
        ["enabled", "priority"],
        unique=False,
    )

    op.create_table(
        "location_cache",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("normalized_address", sa.String(length=500), nullable=False),
        sa.Column("original_address", sa.String(length=1000), nullable=False),
        sa.Column("latitude", sa.Float(), nullable=False),
        sa.Column("longitude", sa.Float(), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=True),
        sa.Column("provider", sa.String(length=100), nullable=True),
        sa.Column("formatted_address", sa.String(length=1000), nullable=True),
        sa.Column("components", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("hit_count", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("normalized_address"),
    )


def downgrade() -> None:
    op.drop_table("location_cache")
    op.drop_index("ix_geocoding_providers_enabled_priority", table_name="geocoding_providers")
    op.drop_table("geocoding_providers")
    op.drop_table("app_settings")
    op.drop_index("ix_schema_versions_dataset_status", table_name="dataset_schema_versions")
    op.drop_table("dataset_schema_versions")
    op.drop_index("ix_datasets_catalog_id", table_name="datasets")
    op.drop_table("datasets")
    op.drop_index("ix_catalogs_is_public", table_name="catalogs")
    op.drop_table("catalogs")

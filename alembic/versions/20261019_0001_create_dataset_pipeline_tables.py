"""create dataset pipeline tables

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 09:00:00
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def _identity_pk() -> sa.Column:
    return sa.Column("id", sa.BigInteger(), sa.Identity(always=False), nullable=False)


def upgrade() -> None:
    op.create_table(
        "datasets",
        _identity_pk(),
        sa.Column("name", sa.String(length=255), nullable=False, comment="Human-readable label for this dataset"),
        sa.Column("owner_id", sa.BigInteger(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_datasets"),
    )
    op.create_index("ix_datasets_owner_id", "datasets", ["owner_id"], unique=False)

    op.create_table(
        "dataset_batches",
        _identity_pk(),
        sa.Column("dataset_id", sa.BigInteger(), nullable=False),
        sa.Column("source_filename", sa.String(length=255), nullable=False),
        sa.Column(
            "total_rows",
            sa.BigInteger(),
            nullable=False,
            comment="Row count observed by the column sniffer",
        ),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(
            ["dataset_id"],
            ["datasets.id"],
            name="fk_dataset_batches_dataset_id_datasets",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_dataset_batches"),
    )
    op.create_index("ix_dataset_batches_dataset_id", "dataset_batches", ["dataset_id"], unique=False)
    op.create_index("ix_dataset_batches_dataset_status", "dataset_batches", ["dataset_id", "status"], unique=False)

    op.create_table(
        "dataset_columns",
        _identity_pk(),
        sa.Column("batch_id", sa.BigInteger(), nullable=False),
        sa.Column("source_name", sa.String(length=255), nullable=False),
        sa.Column(
            "data_type",
            sa.String(length=16),
            nullable=False,
            comment="Advisory sniffed type: number, date, email, text",
        ),
        sa.Column("sample_value", sa.Text(), nullable=True, comment="Diagnostic only; never read by aggregation"),
        *_timestamps(),
        sa.ForeignKeyConstraint(
            ["batch_id"],
            ["dataset_batches.id"],
            name="fk_dataset_columns_batch_id_dataset_batches",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_dataset_columns"),
        sa.UniqueConstraint("batch_id", "source_name", name="uq_dataset_columns_batch_source"),
    )

    op.create_table(
        "dataset_mappings",
        _identity_pk(),
        sa.Column("batch_id", sa.BigInteger(), nullable=False),
        sa.Column("source_column", sa.String(length=255), nullable=False),
        sa.Column("system_field", sa.String(length=32), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(
            ["batch_id"],
            ["dataset_batches.id"],
            name="fk_dataset_mappings_batch_id_dataset_batches",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_dataset_mappings"),
        sa.UniqueConstraint("batch_id", "source_column", name="uq_dataset_mappings_batch_source"),
        sa.UniqueConstraint("batch_id", "system_field", name="uq_dataset_mappings_batch_field"),
    )

    op.create_table(
        "dataset_rows",
        _identity_pk(),
        sa.Column("batch_id", sa.BigInteger(), nullable=False),
        sa.Column(
            "row_document",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            comment="Header-keyed cell values; empty cells are stored as null",
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(
            ["batch_id"],
            ["dataset_batches.id"],
            name="fk_dataset_rows_batch_id_dataset_batches",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_dataset_rows"),
    )
    op.create_index("ix_dataset_rows_batch_id", "dataset_rows", ["batch_id"], unique=False)

    op.create_table(
        "materialized_metrics_by_batch",
        _identity_pk(),
        sa.Column("dataset_id", sa.BigInteger(), nullable=False),
        sa.Column("batch_id", sa.BigInteger(), nullable=False),
        sa.Column("metric_key", sa.String(length=64), nullable=False),
        sa.Column("bucket", sa.String(length=255), server_default="", nullable=False),
        sa.Column("period", sa.Date(), nullable=True),
        sa.Column("sum_value", sa.Numeric(precision=38, scale=6), nullable=False),
        sa.Column("count_value", sa.BigInteger(), nullable=False),
        sa.Column(
            "distinct_keys",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=True,
            comment="Member identities for DistinctCount metrics",
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(
            ["dataset_id"],
            ["datasets.id"],
            name="fk_materialized_metrics_by_batch_dataset_id_datasets",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["batch_id"],
            ["dataset_batches.id"],
            name="fk_materialized_metrics_by_batch_batch_id_dataset_batches",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_materialized_metrics_by_batch"),
    )
    op.create_index(
        "ix_materialized_metrics_by_batch_dataset_metric",
        "materialized_metrics_by_batch",
        ["dataset_id", "metric_key"],
        unique=False,
    )
    op.create_index(
        "ix_materialized_metrics_by_batch_dataset_batch",
        "materialized_metrics_by_batch",
        ["dataset_id", "batch_id"],
        unique=False,
    )

    op.create_table(
        "materialized_metrics",
        _identity_pk(),
        sa.Column("dataset_id", sa.BigInteger(), nullable=False),
        sa.Column("metric_key", sa.String(length=64), nullable=False),
        sa.Column("bucket", sa.String(length=255), server_default="", nullable=False),
        sa.Column("period", sa.Date(), nullable=True),
        sa.Column("value", sa.Numeric(precision=38, scale=6), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(
            ["dataset_id"],
            ["datasets.id"],
            name="fk_materialized_metrics_dataset_id_datasets",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_materialized_metrics"),
        sa.UniqueConstraint(
            "dataset_id",
            "metric_key",
            "bucket",
            "period",
            name="uq_materialized_metrics_slice",
            postgresql_nulls_not_distinct=True,
        ),
    )
    op.create_index(
        "ix_materialized_metrics_dataset_metric",
        "materialized_metrics",
        ["dataset_id", "metric_key"],
        unique=False,
    )

    op.create_table(
        "materialization_jobs",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("job_type", sa.String(length=50), nullable=False, comment="recompute_batch, recompute_dataset"),
        sa.Column(
            "dataset_id",
            sa.BigInteger(),
            nullable=False,
            comment="Not a foreign key: job history outlives deleted datasets",
        ),
        sa.Column("batch_id", sa.BigInteger(), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("max_attempts", sa.Integer(), nullable=False),
        sa.Column("request_payload", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("result_payload", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_materialization_jobs"),
    )
    op.create_index("ix_materialization_jobs_status", "materialization_jobs", ["status"], unique=False)
    op.create_index("ix_materialization_jobs_dataset_id", "materialization_jobs", ["dataset_id"], unique=False)
    op.create_index("ix_materialization_jobs_created_at", "materialization_jobs", ["created_at"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_materialization_jobs_created_at", table_name="materialization_jobs")
    op.drop_index("ix_materialization_jobs_dataset_id", table_name="materialization_jobs")
    op.drop_index("ix_materialization_jobs_status", table_name="materialization_jobs")
    op.drop_table("materialization_jobs")

    op.drop_index("ix_materialized_metrics_dataset_metric", table_name="materialized_metrics")
    op.drop_table("materialized_metrics")

    op.drop_index("ix_materialized_metrics_by_batch_dataset_batch", table_name="materialized_metrics_by_batch")
    op.drop_index("ix_materialized_metrics_by_batch_dataset_metric", table_name="materialized_metrics_by_batch")
    op.drop_table("materialized_metrics_by_batch")

    op.drop_index("ix_dataset_rows_batch_id", table_name="dataset_rows")
    op.drop_table("dataset_rows")
    op.drop_table("dataset_mappings")
    op.drop_table("dataset_columns")

    op.drop_index("ix_dataset_batches_dataset_status", table_name="dataset_batches")
    op.drop_index("ix_dataset_batches_dataset_id", table_name="dataset_batches")
    op.drop_table("dataset_batches")

    op.drop_index("ix_datasets_owner_id", table_name="datasets")
    op.drop_table("datasets")

"""
db/models/materialized_metric.py

Materialized metric tables.

``materialized_metrics_by_batch`` holds intermediate per-batch slices and is
fully replaced whenever its batch is reprocessed. ``materialized_metrics``
holds the dataset-wide folded values that read paths consume.

``bucket`` is ``""`` for whole-dataset values and ``period`` is the first day
of a month for time-sliced metrics, NULL otherwise.
"""

from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import BigInteger, Date, DateTime, ForeignKey, Index, Numeric, String, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, CreatedAtMixin, IdentityPKMixin

FINAL_SLICE_CONSTRAINT = "uq_materialized_metrics_slice"


class MaterializedMetricByBatch(Base, IdentityPKMixin, CreatedAtMixin):
    __tablename__ = "materialized_metrics_by_batch"

    dataset_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("datasets.id", ondelete="CASCADE"),
        nullable=False,
    )

    batch_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("dataset_batches.id", ondelete="CASCADE"),
        nullable=False,
    )

    metric_key: Mapped[str] = mapped_column(String(64), nullable=False)

    bucket: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        default="",
        server_default="",
    )

    period: Mapped[date | None] = mapped_column(Date, nullable=True)

    sum_value: Mapped[Decimal] = mapped_column(
        Numeric(38, 6),
        nullable=False,
        default=Decimal("0"),
    )

    count_value: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )

    distinct_keys: Mapped[list[str] | None] = mapped_column(
        JSONB,
        nullable=True,
        comment="Member identities for DistinctCount metrics",
    )

    __table_args__ = (
        Index("ix_materialized_metrics_by_batch_dataset_metric", "dataset_id", "metric_key"),
        Index("ix_materialized_metrics_by_batch_dataset_batch", "dataset_id", "batch_id"),
    )


class MaterializedMetric(Base, IdentityPKMixin):
    __tablename__ = "materialized_metrics"

    dataset_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("datasets.id", ondelete="CASCADE"),
        nullable=False,
    )

    metric_key: Mapped[str] = mapped_column(String(64), nullable=False)

    bucket: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        default="",
        server_default="",
    )

    period: Mapped[date | None] = mapped_column(Date, nullable=True)

    value: Mapped[Decimal] = mapped_column(Numeric(38, 6), nullable=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        UniqueConstraint(
            "dataset_id",
            "metric_key",
            "bucket",
            "period",
            name=FINAL_SLICE_CONSTRAINT,
            postgresql_nulls_not_distinct=True,
        ),
        Index("ix_materialized_metrics_dataset_metric", "dataset_id", "metric_key"),
    )

"""
db/repositories/metric_repository.py

Persistence for by-batch and final materialized metrics.

All methods are transaction-safe. The caller controls commit/rollback;
this repository never commits on its own.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import date
from decimal import Decimal

from sqlalchemy import delete, func, insert, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.orm import Session

from db.models.materialized_metric import (
    FINAL_SLICE_CONSTRAINT,
    MaterializedMetric,
    MaterializedMetricByBatch,
)
from metrics.batch_aggregates import BatchAggregate
from metrics.catalog import MetricKey
from metrics.folding import FinalMetricValue

_DEFAULT_BATCH_SIZE = 500


class MetricRepository:
    """
    Repository for the two materialized metric tables.

    Final-table upsert semantics: a slice whose ``(dataset_id, metric_key,
    bucket, period)`` already exists has its ``value`` replaced in place.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # By-batch aggregates
    # ------------------------------------------------------------------

    def clear_batch_aggregates(self, dataset_id: int, batch_id: int) -> set[str]:
        """
        Delete every by-batch slice of one batch.

        Returns
        -------
        set[str]
            Metric keys that had slices, so their final values can be re-folded
            even when the batch no longer contributes to them.
        """
        stmt = (
            delete(MaterializedMetricByBatch)
            .where(
                MaterializedMetricByBatch.dataset_id == dataset_id,
                MaterializedMetricByBatch.batch_id == batch_id,
            )
            .returning(MaterializedMetricByBatch.metric_key)
        )
        return set(self._session.scalars(stmt).all())

    def clear_dataset_aggregates(self, dataset_id: int) -> set[str]:
        stmt = (
            delete(MaterializedMetricByBatch)
            .where(MaterializedMetricByBatch.dataset_id == dataset_id)
            .returning(MaterializedMetricByBatch.metric_key)
        )
        return set(self._session.scalars(stmt).all())

    def insert_batch_aggregates(
        self,
        dataset_id: int,
        batch_id: int,
        aggregates: Sequence[BatchAggregate],
        *,
        batch_size: int = _DEFAULT_BATCH_SIZE,
    ) -> int:
        if not aggregates:
            return 0

        size = max(1, batch_size)
        for start in range(0, len(aggregates), size):
            chunk = aggregates[start : start + size]
            self._session.execute(
                insert(MaterializedMetricByBatch),
                [
                    {
                        "dataset_id": dataset_id,
                        "batch_id": batch_id,
                        "metric_key": MetricKey(aggregate.metric_key).value,
                        "bucket": aggregate.bucket,
                        "period": aggregate.period,
                        "sum_value": aggregate.sum_value,
                        "count_value": aggregate.count_value,
                        "distinct_keys": list(aggregate.distinct_keys) or None,
                    }
                    for aggregate in chunk
                ],
            )
        return len(aggregates)

    def load_batch_aggregates(self, dataset_id: int, metric_keys: Iterable[str]) -> list[BatchAggregate]:
        """
        Load by-batch slices of every batch of the dataset for ``metric_keys``.
        """

        keys = sorted({MetricKey(key).value for key in metric_keys})
        if not keys:
            return []

        stmt = select(
            MaterializedMetricByBatch.metric_key,
            MaterializedMetricByBatch.bucket,
            MaterializedMetricByBatch.period,
            MaterializedMetricByBatch.sum_value,
            MaterializedMetricByBatch.count_value,
            MaterializedMetricByBatch.distinct_keys,
        ).where(
            MaterializedMetricByBatch.dataset_id == dataset_id,
            MaterializedMetricByBatch.metric_key.in_(keys),
        )
        return [
            BatchAggregate(
                metric_key=MetricKey(row.metric_key),
                bucket=row.bucket,
                period=row.period,
                sum_value=Decimal(row.sum_value),
                count_value=int(row.count_value),
                distinct_keys=tuple(row.distinct_keys or ()),
            )
            for row in self._session.execute(stmt)
        ]

    # ------------------------------------------------------------------
    # Final aggregates
    # ------------------------------------------------------------------

    def replace_final_metrics(
        self,
        dataset_id: int,
        metric_keys: Iterable[str],
        values: Sequence[FinalMetricValue],
        *,
        batch_size: int = _DEFAULT_BATCH_SIZE,
    ) -> int:
        """
        Upsert folded values and drop slices of ``metric_keys`` that no
        longer have any contributing batch.

        Returns
        -------
        int
            Number of final slices written.
        """
        keys = sorted({MetricKey(key).value for key in metric_keys})
        if not keys:
            return 0

        keep = {value.slice_key for value in values}
        existing = self._session.execute(
            select(
                MaterializedMetric.id,
                MaterializedMetric.metric_key,
                MaterializedMetric.bucket,
                MaterializedMetric.period,
            ).where(
                MaterializedMetric.dataset_id == dataset_id,
                MaterializedMetric.metric_key.in_(keys),
            )
        ).all()
        stale_ids = [row.id for row in existing if (row.metric_key, row.bucket, row.period) not in keep]
        if stale_ids:
            self._session.execute(delete(MaterializedMetric).where(MaterializedMetric.id.in_(stale_ids)))

        size = max(1, batch_size)
        for start in range(0, len(values), size):
            chunk = values[start : start + size]
            stmt = pg_insert(MaterializedMetric).values(
                [
                    {
                        "dataset_id": dataset_id,
                        "metric_key": value.metric_key.value,
                        "bucket": value.bucket,
                        "period": value.period,
                        "value": value.value,
                    }
                    for value in chunk
                ]
            )
            stmt = stmt.on_conflict_do_update(
                constraint=FINAL_SLICE_CONSTRAINT,
                set_={"value": stmt.excluded.value, "updated_at": func.now()},
            )
            self._session.execute(stmt)
        return len(values)

    def get_final_metrics(
        self,
        dataset_id: int,
        metric_keys: Iterable[str],
        *,
        since: date | None = None,
    ) -> list[FinalMetricValue]:
        """
        Read final slices for ``metric_keys``; ``since`` filters time-sliced
        rows to periods on or after it and leaves period-less rows untouched.
        """

        keys = sorted({MetricKey(key).value for key in metric_keys})
        if not keys:
            return []

        stmt = select(
            MaterializedMetric.metric_key,
            MaterializedMetric.bucket,
            MaterializedMetric.period,
            MaterializedMetric.value,
        ).where(
            MaterializedMetric.dataset_id == dataset_id,
            MaterializedMetric.metric_key.in_(keys),
        )
        if since is not None:
            stmt = stmt.where((MaterializedMetric.period.is_(None)) | (MaterializedMetric.period >= since))
        stmt = stmt.order_by(MaterializedMetric.metric_key, MaterializedMetric.bucket, MaterializedMetric.period)

        return [
            FinalMetricValue(
                metric_key=MetricKey(row.metric_key),
                bucket=row.bucket,
                period=row.period,
                value=Decimal(row.value),
            )
            for row in self._session.execute(stmt)
        ]

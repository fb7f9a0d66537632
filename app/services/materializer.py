"""
app/services/materializer.py

Metrics materializer: rebuilds by-batch aggregates and dataset-wide final
aggregates after a mapping change or a batch deletion.

Steps for ``RecomputeBatch(dataset_id, batch_id)``, all in one transaction:

  1. Claim the batch (Mapped/Failed → Processing). A batch in any other
     state is skipped, so duplicate deliveries of the same job are no-ops.
  2. Clear every existing by-batch slice of the batch.
  3. Recompute by-batch slices from the batch's rows and current mapping.
  4. Re-fold final values for every metric touched by steps 2-3 across
     *all* batches of the dataset; slices with no remaining contributor
     are deleted.
  5. Mark the batch Succeeded.
  6. Commit, then invalidate the dataset's metric cache namespace.

``RecomputeDataset(dataset_id)`` clears all by-batch slices of the dataset,
rebuilds them from every Succeeded batch, re-folds every materialized
metric and invalidates the cache. No batch status changes.

Failure contract
----------------
Any exception rolls the whole transaction back, leaving the batch in its
last committed state (normally Mapped). Connection-level storage failures are
re-raised as ``TransientInfrastructureError``; the queue retries every
failure except validation and not-found errors. Cache invalidation runs
after commit and never raises.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session

from app.caching.invalidation import InvalidationResult, invalidate_dataset_metrics
from app.caching.keys import CacheKeyBuilder
from app.caching.store import CacheStore
from app.errors import TransientInfrastructureError
from app.scheduler.payloads import MaterializationPayload, RecomputeBatch, RecomputeDataset
from db.models.dataset_batch import BatchStatus
from db.repositories.dataset_repository import DatasetRepository
from db.repositories.metric_repository import MetricRepository
from metrics.batch_aggregates import BatchAggregate, compute_batch_aggregates
from metrics.catalog import MATERIALIZED_METRIC_KEYS, SystemField
from metrics.folding import fold_aggregates

logger = logging.getLogger(__name__)

_TRANSIENT_STORAGE_ERRORS = (OperationalError, InterfaceError, PoolTimeoutError)


@dataclass(frozen=True)
class MaterializationResult:
    """
    Outcome of one materialization run.
    """

    dataset_id: int
    batch_id: int | None
    skipped: bool = False
    skip_reason: str | None = None
    metric_keys: tuple[str, ...] = ()
    batches_processed: int = 0
    batch_aggregates_written: int = 0
    final_values_written: int = 0
    cache_invalidation: InvalidationResult | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "dataset_id": self.dataset_id,
            "batch_id": self.batch_id,
            "skipped": self.skipped,
            "skip_reason": self.skip_reason,
            "metric_keys": list(self.metric_keys),
            "batches_processed": self.batches_processed,
            "batch_aggregates_written": self.batch_aggregates_written,
            "final_values_written": self.final_values_written,
            "cache_invalidation": self.cache_invalidation.to_dict() if self.cache_invalidation else None,
        }


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


class MetricsMaterializer:
    def __init__(
        self,
        *,
        cache: CacheStore,
        key_builder: CacheKeyBuilder,
        session_factory: Callable[[], Session] | None = None,
        row_chunk_size: int = 1000,
        dataset_repository_factory: Callable[[Any], DatasetRepository] = DatasetRepository,
        metric_repository_factory: Callable[[Any], MetricRepository] = MetricRepository,
        today: Callable[[], date] = _utc_today,
    ) -> None:
        if session_factory is None:
            from db.session import SessionLocal

            self._session_factory: Callable[[], Session] = SessionLocal
        else:
            self._session_factory = session_factory

        self._cache = cache
        self._keys = key_builder
        self._row_chunk_size = max(1, row_chunk_size)
        self._dataset_repository_factory = dataset_repository_factory
        self._metric_repository_factory = metric_repository_factory
        self._today = today

    def run(self, payload: MaterializationPayload) -> MaterializationResult:
        try:
            match payload:
                case RecomputeBatch(dataset_id=dataset_id, batch_id=batch_id):
                    result = self._recompute_batch(dataset_id, batch_id)
                case RecomputeDataset(dataset_id=dataset_id):
                    result = self._recompute_dataset(dataset_id)
                case _:
                    raise TypeError(f"Unsupported materialization payload: {payload!r}")
        except _TRANSIENT_STORAGE_ERRORS as exc:
            raise TransientInfrastructureError(
                f"Storage unavailable while materializing {payload!r}: {exc}"
            ) from exc

        if result.skipped:
            logger.info(
                "Materialization skipped dataset_id=%s batch_id=%s reason=%s",
                result.dataset_id,
                result.batch_id,
                result.skip_reason,
            )
            return result

        invalidation = invalidate_dataset_metrics(self._cache, self._keys, result.dataset_id)
        logger.info(
            "Materialization committed dataset_id=%s batch_id=%s metrics=%d final_values=%d",
            result.dataset_id,
            result.batch_id,
            len(result.metric_keys),
            result.final_values_written,
        )
        return replace(result, cache_invalidation=invalidation)

    def mark_failed(self, payload: MaterializationPayload, error_message: str) -> bool:
        """
        Record an exhausted batch job on the batch itself. Only a batch that
        is still Mapped is flipped, so a newer mapping submission is never
        overwritten.
        """

        if not isinstance(payload, RecomputeBatch):
            return False
        with self._session_factory() as db:
            with db.begin():
                return self._dataset_repository_factory(db).set_batch_status(
                    payload.batch_id,
                    BatchStatus.FAILED,
                    error_message=error_message[:2000],
                    expected_statuses=(BatchStatus.MAPPED,),
                )

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def _recompute_batch(self, dataset_id: int, batch_id: int) -> MaterializationResult:
        with self._session_factory() as db:
            datasets = self._dataset_repository_factory(db)
            metric_store = self._metric_repository_factory(db)
            with db.begin():
                batch = datasets.get_batch(batch_id)
                if batch is None or batch.dataset_id != dataset_id:
                    return MaterializationResult(dataset_id, batch_id, skipped=True, skip_reason="batch_not_found")
                if not datasets.claim_batch_for_processing(batch_id):
                    return MaterializationResult(
                        dataset_id,
                        batch_id,
                        skipped=True,
                        skip_reason=f"batch_status_{str(batch.status).lower()}",
                    )

                cleared = metric_store.clear_batch_aggregates(dataset_id, batch_id)
                aggregates = self._compute_batch(datasets, batch_id)
                written = metric_store.insert_batch_aggregates(dataset_id, batch_id, aggregates)

                touched = set(cleared) | {aggregate.metric_key.value for aggregate in aggregates}
                final_written = self._refold(metric_store, dataset_id, touched)
                datasets.set_batch_status(batch_id, BatchStatus.SUCCEEDED)

        return MaterializationResult(
            dataset_id=dataset_id,
            batch_id=batch_id,
            metric_keys=tuple(sorted(touched)),
            batches_processed=1,
            batch_aggregates_written=written,
            final_values_written=final_written,
        )

    def _recompute_dataset(self, dataset_id: int) -> MaterializationResult:
        with self._session_factory() as db:
            datasets = self._dataset_repository_factory(db)
            metric_store = self._metric_repository_factory(db)
            with db.begin():
                if datasets.get_dataset(dataset_id) is None:
                    return MaterializationResult(dataset_id, None, skipped=True, skip_reason="dataset_not_found")

                metric_store.clear_dataset_aggregates(dataset_id)
                batch_ids = datasets.list_batch_ids(dataset_id, statuses=(BatchStatus.SUCCEEDED,))
                written = 0
                for batch_id in batch_ids:
                    aggregates = self._compute_batch(datasets, batch_id)
                    written += metric_store.insert_batch_aggregates(dataset_id, batch_id, aggregates)

                touched = {key.value for key in MATERIALIZED_METRIC_KEYS}
                final_written = self._refold(metric_store, dataset_id, touched)

        return MaterializationResult(
            dataset_id=dataset_id,
            batch_id=None,
            metric_keys=tuple(sorted(touched)),
            batches_processed=len(batch_ids),
            batch_aggregates_written=written,
            final_values_written=final_written,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _compute_batch(self, datasets: DatasetRepository, batch_id: int) -> list[BatchAggregate]:
        mapping: dict[SystemField, str] = {}
        for raw_field, source_column in datasets.get_mappings(batch_id).items():
            system_field = SystemField.parse(raw_field)
            if system_field is None:
                logger.warning("Ignoring unknown stored system field %r batch_id=%s", raw_field, batch_id)
                continue
            mapping[system_field] = source_column

        documents = datasets.iter_row_documents(batch_id, chunk_size=self._row_chunk_size)
        return compute_batch_aggregates(mapping, documents, today=self._today())

    def _refold(self, metric_store: MetricRepository, dataset_id: int, touched: set[str]) -> int:
        if not touched:
            return 0
        values = fold_aggregates(metric_store.load_batch_aggregates(dataset_id, touched))
        return metric_store.replace_final_metrics(dataset_id, touched, values)

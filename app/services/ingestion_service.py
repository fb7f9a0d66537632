"""
Ingestion service: datasets, CSV uploads, column mappings and batch deletion.

Every multi-step write runs inside one ``with db.begin():`` block. Background
materialization is enqueued only after that block has committed, so a worker
never reads a mapping that a rollback later undoes.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, BinaryIO

from sqlalchemy.orm import Session

from app.caching.invalidation import InvalidationResult, invalidate_dataset_metrics
from app.caching.keys import CacheKeyBuilder
from app.caching.store import CacheStore
from app.config import IngestionSettings
from app.errors import InputValidationError, NotFoundError, QuotaExceededError
from app.ingestion.column_sniffer import ColumnSniffer
from app.ingestion.csv_reader import CSVDocumentReader
from app.ingestion.row_loader import BulkRowLoader, CancellationSignal
from app.scheduler.payloads import RecomputeBatch, RecomputeDataset
from app.scheduler.queue import JobEnqueuer
from app.validators.mapping_validator import MappingEntry, MappingValidator
from db.models.dataset import Dataset
from db.models.dataset_batch import BatchStatus
from db.repositories.dataset_repository import DatasetRepository
from db.repositories.types import BatchHistoryRecord, ColumnDescriptor, ColumnWithMapping
from metrics.catalog import SYSTEM_FIELD_TYPES

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UploadResult:
    batch_id: int
    dataset_id: int
    source_filename: str
    status: str
    total_rows: int
    inserted_rows: int
    columns: tuple[ColumnDescriptor, ...] = field(default_factory=tuple)

    @property
    def row_count_mismatch(self) -> bool:
        return self.total_rows != self.inserted_rows


@dataclass(frozen=True)
class MappingResult:
    batch_id: int
    dataset_id: int
    status: str
    mapped: dict[str, str]
    removed: tuple[str, ...]
    job_id: uuid.UUID


@dataclass(frozen=True)
class BatchDeletionResult:
    batch_id: int
    dataset_id: int
    job_id: uuid.UUID


@dataclass(frozen=True)
class DatasetDeletionResult:
    dataset_id: int
    cache_invalidation: InvalidationResult


@dataclass(frozen=True)
class ColumnMappingInfo:
    batch_id: int
    dataset_id: int
    status: str
    system_fields: tuple[tuple[str, str], ...]
    columns: tuple[ColumnWithMapping, ...]


class IngestionService:
    def __init__(
        self,
        *,
        enqueuer: JobEnqueuer,
        cache: CacheStore,
        key_builder: CacheKeyBuilder,
        settings: IngestionSettings | None = None,
        validator: MappingValidator | None = None,
        dataset_repository_factory: Callable[[Any], DatasetRepository] = DatasetRepository,
    ) -> None:
        self._enqueuer = enqueuer
        self._cache = cache
        self._keys = key_builder
        self._settings = settings or IngestionSettings()
        self._sniffer = ColumnSniffer(sample_limit=self._settings.sniff_sample_limit)
        self._loader = BulkRowLoader(chunk_size=self._settings.row_chunk_size)
        self._validator = validator or MappingValidator()
        self._dataset_repository_factory = dataset_repository_factory

    # ------------------------------------------------------------------
    # Datasets
    # ------------------------------------------------------------------

    def create_dataset(self, *, db: Session, owner_id: int, name: str) -> Dataset:
        cleaned = " ".join((name or "").split())
        if not cleaned:
            raise InputValidationError("Dataset name must not be empty.")
        if len(cleaned) > 255:
            raise InputValidationError("Dataset name must be at most 255 characters.")

        repository = self._dataset_repository_factory(db)
        with db.begin():
            existing = repository.count_datasets_for_owner(owner_id)
            if existing >= self._settings.max_datasets_per_owner:
                raise QuotaExceededError(
                    f"Dataset limit reached: an owner may have at most "
                    f"{self._settings.max_datasets_per_owner} datasets."
                )
            dataset = repository.create_dataset(owner_id=owner_id, name=cleaned)

        logger.info("Dataset created dataset_id=%s owner_id=%s", dataset.id, owner_id)
        return dataset

    def list_datasets(self, *, db: Session, owner_id: int) -> list[Dataset]:
        return self._dataset_repository_factory(db).list_datasets(owner_id)

    def delete_dataset(self, *, db: Session, owner_id: int, dataset_id: int) -> DatasetDeletionResult:
        repository = self._dataset_repository_factory(db)
        with db.begin():
            if not repository.delete_dataset(dataset_id, owner_id=owner_id):
                raise NotFoundError(f"Dataset {dataset_id} was not found.")

        logger.info("Dataset deleted dataset_id=%s owner_id=%s", dataset_id, owner_id)
        invalidation = invalidate_dataset_metrics(self._cache, self._keys, dataset_id)
        return DatasetDeletionResult(dataset_id=dataset_id, cache_invalidation=invalidation)

    # ------------------------------------------------------------------
    # Uploads
    # ------------------------------------------------------------------

    def upload_csv(
        self,
        *,
        db: Session,
        owner_id: int,
        dataset_id: int,
        file_name: str,
        stream: BinaryIO,
        cancel: CancellationSignal | None = None,
    ) -> UploadResult:
        """
        Sniff and load one CSV upload as a new ``Pending`` batch.

        The batch, its columns and every row are written in a single
        transaction: a parse error, quota breach or cancellation leaves
        nothing behind.
        """

        source_filename = Path(file_name or "").name.strip()
        if not source_filename.lower().endswith(".csv"):
            raise InputValidationError("Only .csv files are supported.")

        max_name = self._settings.max_column_name_length
        sniffed = self._sniffer.sniff_stream(stream, max_column_name_length=max_name)
        if not sniffed.columns:
            raise InputValidationError("CSV file has no columns.")
        if sniffed.total_rows == 0:
            raise InputValidationError("CSV file has no data rows.")

        repository = self._dataset_repository_factory(db)
        with db.begin():
            if repository.get_dataset(dataset_id, owner_id=owner_id) is None:
                raise NotFoundError(f"Dataset {dataset_id} was not found.")
            if repository.count_batches(dataset_id) >= self._settings.max_batches_per_dataset:
                raise QuotaExceededError(
                    f"Upload limit reached: a dataset may hold at most "
                    f"{self._settings.max_batches_per_dataset} uploads."
                )

            batch = repository.create_batch(
                dataset_id=dataset_id,
                source_filename=source_filename[:255],
                total_rows=sniffed.total_rows,
            )
            batch_id = batch.id
            repository.upsert_columns(batch_id, sniffed.columns)

            with CSVDocumentReader(stream, max_column_name_length=max_name) as reader:
                inserted = self._loader.load(repository, batch_id, reader.documents(), cancel=cancel)

        result = UploadResult(
            batch_id=batch_id,
            dataset_id=dataset_id,
            source_filename=source_filename,
            status=BatchStatus.PENDING,
            total_rows=sniffed.total_rows,
            inserted_rows=inserted,
            columns=sniffed.columns,
        )
        if result.row_count_mismatch:
            logger.warning(
                "Row count mismatch batch_id=%s sniffed=%d inserted=%d",
                batch_id,
                sniffed.total_rows,
                inserted,
            )
        logger.info(
            "Upload stored batch_id=%s dataset_id=%s rows=%d columns=%d",
            batch_id,
            dataset_id,
            inserted,
            len(sniffed.columns),
        )
        return result

    def get_upload_history(
        self,
        *,
        db: Session,
        owner_id: int,
        dataset_id: int | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[BatchHistoryRecord]:
        return self._dataset_repository_factory(db).get_upload_history(
            owner_id,
            dataset_id=dataset_id,
            limit=max(1, min(limit, 100)),
            offset=max(0, offset),
        )

    def delete_batch(self, *, db: Session, owner_id: int, batch_id: int) -> BatchDeletionResult:
        """
        Delete a batch (columns, mappings, rows and by-batch aggregates
        cascade) and enqueue a whole-dataset recompute after commit.
        """

        repository = self._dataset_repository_factory(db)
        with db.begin():
            dataset_id = repository.delete_batch(batch_id, owner_id=owner_id)
            if dataset_id is None:
                raise NotFoundError(f"Upload batch {batch_id} was not found.")

        job_id = self._enqueuer.enqueue(RecomputeDataset(dataset_id=dataset_id))
        logger.info("Batch deleted batch_id=%s dataset_id=%s job_id=%s", batch_id, dataset_id, job_id)
        return BatchDeletionResult(batch_id=batch_id, dataset_id=dataset_id, job_id=job_id)

    # ------------------------------------------------------------------
    # Mappings
    # ------------------------------------------------------------------

    def get_column_mapping_info(self, *, db: Session, owner_id: int, batch_id: int) -> ColumnMappingInfo:
        repository = self._dataset_repository_factory(db)
        batch = repository.get_batch(batch_id, owner_id=owner_id)
        if batch is None:
            raise NotFoundError(f"Upload batch {batch_id} was not found.")

        return ColumnMappingInfo(
            batch_id=batch.id,
            dataset_id=batch.dataset_id,
            status=batch.status,
            system_fields=tuple((system_field.value, data_type.value) for system_field, data_type in SYSTEM_FIELD_TYPES.items()),
            columns=tuple(repository.get_columns_with_mappings(batch.id)),
        )

    def upsert_mappings(
        self,
        *,
        db: Session,
        batch_id: int,
        entries: list[MappingEntry],
        owner_id: int | None = None,
    ) -> MappingResult:
        """
        Validate and apply a mapping submission, flip the batch to Mapped and
        enqueue its materialization once the transaction has committed.
        """

        repository = self._dataset_repository_factory(db)
        with db.begin():
            batch = repository.get_batch(batch_id, owner_id=owner_id)
            if batch is None:
                raise NotFoundError(f"Upload batch {batch_id} was not found.")
            dataset_id = batch.dataset_id

            plan = self._validator.validate(
                entries=entries,
                available_columns=repository.get_source_columns(batch_id),
            )
            upserts = {source: system_field.value for source, system_field in plan.upserts.items()}
            repository.apply_mappings(batch_id, upserts=upserts, removals=plan.removals)
            repository.set_batch_status(batch_id, BatchStatus.MAPPED)

        logger.info(
            "Mapping committed batch_id=%s mapped=%d removed=%d",
            batch_id,
            len(upserts),
            len(plan.removals),
        )
        try:
            job_id = self._enqueuer.enqueue(RecomputeBatch(dataset_id=dataset_id, batch_id=batch_id))
        except Exception:
            logger.exception(
                "Mapping for batch_id=%s is committed but its materialization could not be queued; "
                "re-submit the mapping to retry",
                batch_id,
            )
            raise

        return MappingResult(
            batch_id=batch_id,
            dataset_id=dataset_id,
            status=BatchStatus.MAPPED,
            mapped=upserts,
            removed=plan.removals,
            job_id=job_id,
        )


@lru_cache(maxsize=1)
def get_ingestion_service() -> IngestionService:
    """
    Return the process-wide ingestion service.
    """

    from app.caching.store import get_cache_store
    from app.config import get_cache_settings, get_ingestion_settings
    from app.scheduler.queue import get_materialization_queue

    return IngestionService(
        enqueuer=get_materialization_queue(),
        cache=get_cache_store(),
        key_builder=CacheKeyBuilder(get_cache_settings().key_prefix),
        settings=get_ingestion_settings(),
    )

"""
Dataset repository: datasets, upload batches, columns, mappings and raw rows.

The caller controls commit/rollback; this repository never commits on its own.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterator, Mapping, Sequence
from typing import Any

from sqlalchemy import Select, delete, func, insert, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.orm import Session

from db.models.dataset import Dataset
from db.models.dataset_batch import BatchStatus, DatasetBatch
from db.models.dataset_column import DatasetColumn
from db.models.dataset_mapping import DatasetMapping
from db.models.dataset_row import DatasetRow
from db.repositories.types import BatchHistoryRecord, ColumnDescriptor, ColumnWithMapping

_COLUMN_UPSERT_CONSTRAINT = "uq_dataset_columns_batch_source"
_MAPPING_UPSERT_CONSTRAINT = "uq_dataset_mappings_batch_source"


class DatasetRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Datasets
    # ------------------------------------------------------------------

    def count_datasets_for_owner(self, owner_id: int) -> int:
        stmt = select(func.count()).select_from(Dataset).where(Dataset.owner_id == owner_id)
        return int(self._session.scalar(stmt) or 0)

    def create_dataset(self, *, owner_id: int, name: str) -> Dataset:
        dataset = Dataset(owner_id=owner_id, name=name)
        self._session.add(dataset)
        self._session.flush()
        return dataset

    def get_dataset(self, dataset_id: int, *, owner_id: int | None = None) -> Dataset | None:
        stmt: Select[tuple[Dataset]] = select(Dataset).where(Dataset.id == dataset_id)
        if owner_id is not None:
            stmt = stmt.where(Dataset.owner_id == owner_id)
        return self._session.scalars(stmt).one_or_none()

    def list_datasets(self, owner_id: int) -> list[Dataset]:
        stmt = select(Dataset).where(Dataset.owner_id == owner_id).order_by(Dataset.id)
        return list(self._session.scalars(stmt).all())

    def delete_dataset(self, dataset_id: int, *, owner_id: int) -> bool:
        """
        Delete an owner's dataset. Batches, columns, mappings, rows and
        materialized metrics are removed by ON DELETE CASCADE.
        """

        stmt = (
            delete(Dataset)
            .where(Dataset.id == dataset_id, Dataset.owner_id == owner_id)
            .returning(Dataset.id)
        )
        return self._session.execute(stmt).scalar_one_or_none() is not None

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    def count_batches(self, dataset_id: int) -> int:
        stmt = select(func.count()).select_from(DatasetBatch).where(DatasetBatch.dataset_id == dataset_id)
        return int(self._session.scalar(stmt) or 0)

    def create_batch(self, *, dataset_id: int, source_filename: str, total_rows: int) -> DatasetBatch:
        batch = DatasetBatch(
            dataset_id=dataset_id,
            source_filename=source_filename,
            total_rows=total_rows,
            status=BatchStatus.PENDING,
        )
        self._session.add(batch)
        self._session.flush()
        return batch

    def get_batch(self, batch_id: int, *, owner_id: int | None = None) -> DatasetBatch | None:
        stmt: Select[tuple[DatasetBatch]] = select(DatasetBatch).where(DatasetBatch.id == batch_id)
        if owner_id is not None:
            stmt = stmt.join(Dataset, Dataset.id == DatasetBatch.dataset_id).where(Dataset.owner_id == owner_id)
        return self._session.scalars(stmt).one_or_none()

    def list_batch_ids(self, dataset_id: int, *, statuses: Sequence[str] | None = None) -> list[int]:
        stmt = select(DatasetBatch.id).where(DatasetBatch.dataset_id == dataset_id)
        if statuses:
            stmt = stmt.where(DatasetBatch.status.in_(list(statuses)))
        return list(self._session.scalars(stmt.order_by(DatasetBatch.id)).all())

    def set_batch_status(
        self,
        batch_id: int,
        status: str,
        *,
        error_message: str | None = None,
        expected_statuses: Sequence[str] | None = None,
    ) -> bool:
        """
        Set a batch's status; with ``expected_statuses`` only when the current
        status is one of them. Returns False when no row was updated.
        """

        stmt = update(DatasetBatch).where(DatasetBatch.id == batch_id)
        if expected_statuses:
            stmt = stmt.where(DatasetBatch.status.in_(list(expected_statuses)))
        stmt = stmt.values(status=status, error_message=error_message, updated_at=func.now()).returning(
            DatasetBatch.id
        )
        return self._session.execute(stmt).scalar_one_or_none() is not None

    def claim_batch_for_processing(self, batch_id: int) -> bool:
        """
        Move a batch from Mapped (or Failed, for a re-run) to Processing.

        Returns False when the batch is in any other state. A concurrent
        claim blocks on the row lock until the first transaction ends and then
        re-evaluates the status predicate, so at most one run proceeds.
        """

        stmt = (
            update(DatasetBatch)
            .where(DatasetBatch.id == batch_id, DatasetBatch.status.in_(BatchStatus.CLAIMABLE))
            .values(status=BatchStatus.PROCESSING, error_message=None, updated_at=func.now())
            .returning(DatasetBatch.id)
        )
        return self._session.execute(stmt).scalar_one_or_none() is not None

    def delete_batch(self, batch_id: int, *, owner_id: int) -> int | None:
        """
        Delete an owner's batch and return its dataset id, or None if not found.
        """

        owned = (
            select(DatasetBatch.id)
            .join(Dataset, Dataset.id == DatasetBatch.dataset_id)
            .where(DatasetBatch.id == batch_id, Dataset.owner_id == owner_id)
        )
        stmt = (
            delete(DatasetBatch)
            .where(DatasetBatch.id.in_(owned))
            .returning(DatasetBatch.dataset_id)
        )
        return self._session.execute(stmt).scalar_one_or_none()

    # ------------------------------------------------------------------
    # Columns
    # ------------------------------------------------------------------

    def upsert_columns(self, batch_id: int, columns: Sequence[ColumnDescriptor]) -> int:
        if not columns:
            return 0

        stmt = pg_insert(DatasetColumn).values(
            [
                {
                    "batch_id": batch_id,
                    "source_name": column.source_name,
                    "data_type": column.data_type,
                    "sample_value": column.sample_value,
                }
                for column in columns
            ]
        )
        stmt = stmt.on_conflict_do_update(
            constraint=_COLUMN_UPSERT_CONSTRAINT,
            set_={
                "data_type": stmt.excluded.data_type,
                "sample_value": stmt.excluded.sample_value,
                "updated_at": func.now(),
            },
        )
        self._session.execute(stmt)
        return len(columns)

    def get_source_columns(self, batch_id: int) -> list[str]:
        stmt = (
            select(DatasetColumn.source_name)
            .where(DatasetColumn.batch_id == batch_id)
            .order_by(DatasetColumn.id)
        )
        return list(self._session.scalars(stmt).all())

    def get_columns_with_mappings(self, batch_id: int) -> list[ColumnWithMapping]:
        return self._columns_with_mappings([batch_id]).get(batch_id, [])

    # ------------------------------------------------------------------
    # Mappings
    # ------------------------------------------------------------------

    def get_mappings(self, batch_id: int) -> dict[str, str]:
        """
        Return the batch's mapping as ``{system_field: source_column}``.
        """

        stmt = select(DatasetMapping.system_field, DatasetMapping.source_column).where(
            DatasetMapping.batch_id == batch_id
        )
        return {row.system_field: row.source_column for row in self._session.execute(stmt)}

    def apply_mappings(
        self,
        batch_id: int,
        *,
        upserts: Mapping[str, str],
        removals: Sequence[str],
    ) -> None:
        """
        Apply a validated mapping submission.

        ``upserts`` maps source column to system field; ``removals`` lists
        source columns whose mapping is deleted. Existing rows whose system
        field is claimed by a different submitted column, or whose column is
        re-pointed to another field, are deleted first so field swaps never
        trip the per-batch uniqueness constraints. Columns absent from the
        submission are left unchanged.
        """

        existing = {
            row.source_column: row.system_field
            for row in self._session.execute(
                select(DatasetMapping.source_column, DatasetMapping.system_field).where(
                    DatasetMapping.batch_id == batch_id
                )
            )
        }
        claimed_fields = set(upserts.values())
        stale_sources = set(removals)
        for source_column, system_field in existing.items():
            if source_column in upserts and upserts[source_column] != system_field:
                stale_sources.add(source_column)
            elif source_column not in upserts and system_field in claimed_fields:
                stale_sources.add(source_column)

        if stale_sources:
            self._session.execute(
                delete(DatasetMapping).where(
                    DatasetMapping.batch_id == batch_id,
                    DatasetMapping.source_column.in_(sorted(stale_sources)),
                )
            )

        if not upserts:
            return

        stmt = pg_insert(DatasetMapping).values(
            [
                {"batch_id": batch_id, "source_column": source_column, "system_field": system_field}
                for source_column, system_field in upserts.items()
            ]
        )
        stmt = stmt.on_conflict_do_update(
            constraint=_MAPPING_UPSERT_CONSTRAINT,
            set_={"system_field": stmt.excluded.system_field, "updated_at": func.now()},
        )
        self._session.execute(stmt)

    # ------------------------------------------------------------------
    # Rows
    # ------------------------------------------------------------------

    def insert_rows(self, batch_id: int, documents: Sequence[dict[str, Any]]) -> int:
        """
        Insert one chunk of row documents in a single batched statement.
        """

        if not documents:
            return 0
        self._session.execute(
            insert(DatasetRow),
            [{"batch_id": batch_id, "row_document": document} for document in documents],
        )
        return len(documents)

    def iter_row_documents(self, batch_id: int, *, chunk_size: int = 1000) -> Iterator[dict[str, Any]]:
        stmt = (
            select(DatasetRow.row_document)
            .where(DatasetRow.batch_id == batch_id)
            .order_by(DatasetRow.id)
            .execution_options(yield_per=max(1, chunk_size))
        )
        yield from self._session.scalars(stmt)

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def get_upload_history(
        self,
        owner_id: int,
        *,
        dataset_id: int | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[BatchHistoryRecord]:
        stmt = (
            select(DatasetBatch, Dataset.name)
            .join(Dataset, Dataset.id == DatasetBatch.dataset_id)
            .where(Dataset.owner_id == owner_id)
        )
        if dataset_id is not None:
            stmt = stmt.where(DatasetBatch.dataset_id == dataset_id)
        stmt = stmt.order_by(DatasetBatch.created_at.desc(), DatasetBatch.id.desc())
        stmt = stmt.limit(max(1, limit)).offset(max(0, offset))

        rows = self._session.execute(stmt).all()
        columns = self._columns_with_mappings([batch.id for batch, _ in rows])
        return [
            BatchHistoryRecord(
                batch_id=batch.id,
                dataset_id=batch.dataset_id,
                dataset_name=dataset_name,
                source_filename=batch.source_filename,
                total_rows=batch.total_rows,
                status=batch.status,
                error_message=batch.error_message,
                created_at=batch.created_at,
                updated_at=batch.updated_at,
                columns=tuple(columns.get(batch.id, [])),
            )
            for batch, dataset_name in rows
        ]

    def _columns_with_mappings(self, batch_ids: Sequence[int]) -> dict[int, list[ColumnWithMapping]]:
        if not batch_ids:
            return {}

        stmt = (
            select(
                DatasetColumn.batch_id,
                DatasetColumn.source_name,
                DatasetColumn.data_type,
                DatasetColumn.sample_value,
                DatasetMapping.system_field,
            )
            .outerjoin(
                DatasetMapping,
                (DatasetMapping.batch_id == DatasetColumn.batch_id)
                & (DatasetMapping.source_column == DatasetColumn.source_name),
            )
            .where(DatasetColumn.batch_id.in_(list(batch_ids)))
            .order_by(DatasetColumn.batch_id, DatasetColumn.id)
        )
        grouped: dict[int, list[ColumnWithMapping]] = defaultdict(list)
        for row in self._session.execute(stmt):
            grouped[row.batch_id].append(
                ColumnWithMapping(
                    source_name=row.source_name,
                    data_type=row.data_type,
                    sample_value=row.sample_value,
                    system_field=row.system_field,
                )
            )
        return grouped

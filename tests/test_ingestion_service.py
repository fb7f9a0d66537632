"""
tests/test_ingestion_service.py

IngestionService against the in-memory store: dataset quotas, atomic
uploads, mapping submission and batch deletion ordering.
"""

from __future__ import annotations

import io

import pytest

from app.errors import (
    IngestionCancelledError,
    InputValidationError,
    MappingValidationError,
    NotFoundError,
    QuotaExceededError,
)
from app.scheduler.payloads import RecomputeBatch, RecomputeDataset
from app.validators.mapping_validator import MappingEntry
from db.models.dataset_batch import BatchStatus

OWNER = 10
OTHER_OWNER = 20

ORDERS_CSV = (
    "Customer ID,Amount,Order Date,Region\n"
    "C1,100,2026-09-03,North\n"
    "C2,50,2026-10-01,South\n"
    "C1,25,2026-10-05,North\n"
)


def _stream(text: str = ORDERS_CSV) -> io.BytesIO:
    return io.BytesIO(text.encode("utf-8"))


@pytest.fixture()
def dataset(ingestion, db):
    return ingestion.create_dataset(db=db, owner_id=OWNER, name="  Q3   orders ")


@pytest.fixture()
def upload(ingestion, db, dataset):
    return ingestion.upload_csv(
        db=db, owner_id=OWNER, dataset_id=dataset.id, file_name="orders.csv", stream=_stream()
    )


class TestDatasets:
    def test_create_normalizes_name(self, dataset) -> None:
        assert dataset.name == "Q3 orders"
        assert dataset.owner_id == OWNER

    def test_blank_name_is_rejected(self, ingestion, db) -> None:
        with pytest.raises(InputValidationError):
            ingestion.create_dataset(db=db, owner_id=OWNER, name="   ")

    def test_owner_quota_is_enforced(self, ingestion, db, store) -> None:
        ingestion.create_dataset(db=db, owner_id=OWNER, name="one")
        ingestion.create_dataset(db=db, owner_id=OWNER, name="two")

        with pytest.raises(QuotaExceededError):
            ingestion.create_dataset(db=db, owner_id=OWNER, name="three")

        assert len(store.state.datasets) == 2
        ingestion.create_dataset(db=db, owner_id=OTHER_OWNER, name="other tenant")

    def test_list_is_scoped_to_owner(self, ingestion, db, dataset) -> None:
        ingestion.create_dataset(db=db, owner_id=OTHER_OWNER, name="theirs")
        assert [item.id for item in ingestion.list_datasets(db=db, owner_id=OWNER)] == [dataset.id]

    def test_delete_dataset_cascades_and_invalidates_cache(self, ingestion, db, store, cache, keys, upload) -> None:
        cache.set(keys.metric(upload.dataset_id, "kpi-summary"), "{}", 60)

        result = ingestion.delete_dataset(db=db, owner_id=OWNER, dataset_id=upload.dataset_id)

        assert result.cache_invalidation.deleted == 1
        assert store.state.batches == {}
        assert store.state.rows == {}
        assert cache.values == {}

    def test_delete_dataset_of_another_owner_is_not_found(self, ingestion, db, dataset) -> None:
        with pytest.raises(NotFoundError):
            ingestion.delete_dataset(db=db, owner_id=OTHER_OWNER, dataset_id=dataset.id)


class TestUploads:
    def test_upload_creates_pending_batch_with_columns_and_rows(self, store, upload) -> None:
        assert upload.status == BatchStatus.PENDING
        assert upload.total_rows == upload.inserted_rows == 3
        assert not upload.row_count_mismatch
        assert [column.source_name for column in upload.columns] == ["Customer ID", "Amount", "Order Date", "Region"]

        batch = store.state.batches[upload.batch_id]
        assert batch.status == BatchStatus.PENDING
        assert batch.source_filename == "orders.csv"
        assert store.state.rows[upload.batch_id][0] == {
            "Customer ID": "C1",
            "Amount": "100",
            "Order Date": "2026-09-03",
            "Region": "North",
        }
        # chunk_size=2 in the fixture settings
        assert [event for event in store.events if event.startswith("insert_rows")] == [
            "insert_rows:2",
            "insert_rows:1",
        ]

    def test_non_csv_file_is_rejected(self, ingestion, db, dataset) -> None:
        with pytest.raises(InputValidationError):
            ingestion.upload_csv(
                db=db, owner_id=OWNER, dataset_id=dataset.id, file_name="orders.xlsx", stream=_stream()
            )

    def test_header_only_file_is_rejected(self, ingestion, db, store, dataset) -> None:
        with pytest.raises(InputValidationError):
            ingestion.upload_csv(
                db=db, owner_id=OWNER, dataset_id=dataset.id, file_name="empty.csv", stream=_stream("a,b\n")
            )
        assert store.state.batches == {}

    def test_upload_to_foreign_dataset_is_not_found(self, ingestion, db, dataset) -> None:
        with pytest.raises(NotFoundError):
            ingestion.upload_csv(
                db=db, owner_id=OTHER_OWNER, dataset_id=dataset.id, file_name="x.csv", stream=_stream()
            )

    def test_batch_quota_is_enforced(self, ingestion, db, store, dataset) -> None:
        for _ in range(5):
            ingestion.upload_csv(db=db, owner_id=OWNER, dataset_id=dataset.id, file_name="x.csv", stream=_stream())

        with pytest.raises(QuotaExceededError):
            ingestion.upload_csv(db=db, owner_id=OWNER, dataset_id=dataset.id, file_name="x.csv", stream=_stream())
        assert len(store.state.batches) == 5

    def test_storage_failure_mid_load_leaves_nothing_behind(self, ingestion, db, store, dataset) -> None:
        store.failures["insert_rows"] = RuntimeError("disk full")

        with pytest.raises(RuntimeError):
            ingestion.upload_csv(db=db, owner_id=OWNER, dataset_id=dataset.id, file_name="x.csv", stream=_stream())

        assert store.state.batches == {}
        assert store.state.columns == {}
        assert store.state.rows == {}
        assert store.events[-1] == "rollback"

    def test_cancellation_rolls_back_partial_rows(self, ingestion, db, store, dataset) -> None:
        class CancelAfterFirstChunk:
            def is_set(self) -> bool:
                return bool(store.state.rows)

        with pytest.raises(IngestionCancelledError):
            ingestion.upload_csv(
                db=db,
                owner_id=OWNER,
                dataset_id=dataset.id,
                file_name="x.csv",
                stream=_stream(),
                cancel=CancelAfterFirstChunk(),
            )

        assert "insert_rows:2" in store.events
        assert store.state.rows == {}
        assert store.state.batches == {}

    def test_history_lists_batches_with_mappings_newest_first(self, ingestion, db, dataset, upload) -> None:
        second = ingestion.upload_csv(
            db=db, owner_id=OWNER, dataset_id=dataset.id, file_name="more.csv", stream=_stream()
        )
        ingestion.upsert_mappings(
            db=db, batch_id=upload.batch_id, entries=[MappingEntry("Amount", "OrderAmount")], owner_id=OWNER
        )

        history = ingestion.get_upload_history(db=db, owner_id=OWNER, limit=500)

        assert [record.batch_id for record in history] == [second.batch_id, upload.batch_id]
        mapped = {column.source_name: column.system_field for column in history[1].columns}
        assert mapped["Amount"] == "OrderAmount"
        assert ingestion.get_upload_history(db=db, owner_id=OTHER_OWNER) == []


class TestMappings:
    def test_column_mapping_info_lists_system_fields(self, ingestion, db, upload) -> None:
        info = ingestion.get_column_mapping_info(db=db, owner_id=OWNER, batch_id=upload.batch_id)

        assert info.status == BatchStatus.PENDING
        assert ("OrderAmount", "number") in info.system_fields
        assert [column.source_name for column in info.columns] == ["Customer ID", "Amount", "Order Date", "Region"]
        assert all(column.system_field is None for column in info.columns)

    def test_submission_marks_batch_mapped_and_enqueues_after_commit(
        self, ingestion, db, store, enqueuer, upload
    ) -> None:
        store.events.clear()

        result = ingestion.upsert_mappings(
            db=db,
            batch_id=upload.batch_id,
            entries=[MappingEntry("customer id", "CustomerId"), MappingEntry("Amount", "OrderAmount")],
            owner_id=OWNER,
        )

        assert result.status == BatchStatus.MAPPED
        assert result.mapped == {"Customer ID": "CustomerId", "Amount": "OrderAmount"}
        assert store.state.batches[upload.batch_id].status == BatchStatus.MAPPED
        assert enqueuer.payloads == [RecomputeBatch(dataset_id=upload.dataset_id, batch_id=upload.batch_id)]
        assert store.events == ["commit", "enqueue:recompute_batch"]

    def test_sentinel_removes_existing_mapping(self, ingestion, db, store, upload) -> None:
        ingestion.upsert_mappings(
            db=db,
            batch_id=upload.batch_id,
            entries=[MappingEntry("Amount", "OrderAmount"), MappingEntry("Region", "Region")],
        )

        result = ingestion.upsert_mappings(db=db, batch_id=upload.batch_id, entries=[MappingEntry("Region", "None")])

        assert result.removed == ("Region",)
        assert store.state.mappings[upload.batch_id] == {"Amount": "OrderAmount"}

    def test_moving_a_field_to_another_column_replaces_the_old_binding(self, ingestion, db, store, upload) -> None:
        ingestion.upsert_mappings(db=db, batch_id=upload.batch_id, entries=[MappingEntry("Amount", "OrderAmount")])
        ingestion.upsert_mappings(db=db, batch_id=upload.batch_id, entries=[MappingEntry("Region", "OrderAmount")])

        assert store.state.mappings[upload.batch_id] == {"Region": "OrderAmount"}

    def test_invalid_submission_changes_nothing_and_enqueues_nothing(
        self, ingestion, db, store, enqueuer, upload
    ) -> None:
        with pytest.raises(MappingValidationError) as exc_info:
            ingestion.upsert_mappings(
                db=db,
                batch_id=upload.batch_id,
                entries=[MappingEntry("Amount", "OrderAmount"), MappingEntry("Nope", "Region")],
            )

        assert {error.code for error in exc_info.value.errors} == {"unknown_source_column"}
        assert store.state.mappings.get(upload.batch_id, {}) == {}
        assert store.state.batches[upload.batch_id].status == BatchStatus.PENDING
        assert enqueuer.payloads == []

    def test_storage_failure_rolls_back_and_enqueues_nothing(self, ingestion, db, store, enqueuer, upload) -> None:
        store.failures["apply_mappings"] = RuntimeError("connection reset")

        with pytest.raises(RuntimeError):
            ingestion.upsert_mappings(db=db, batch_id=upload.batch_id, entries=[MappingEntry("Amount", "OrderAmount")])

        assert store.state.batches[upload.batch_id].status == BatchStatus.PENDING
        assert enqueuer.payloads == []

    def test_enqueue_failure_keeps_the_committed_mapping(self, ingestion, db, store, enqueuer, upload) -> None:
        enqueuer.fail_with = RuntimeError("queue down")

        with pytest.raises(RuntimeError):
            ingestion.upsert_mappings(db=db, batch_id=upload.batch_id, entries=[MappingEntry("Amount", "OrderAmount")])

        assert store.state.batches[upload.batch_id].status == BatchStatus.MAPPED
        assert store.state.mappings[upload.batch_id] == {"Amount": "OrderAmount"}

    def test_foreign_owner_cannot_map(self, ingestion, db, upload) -> None:
        with pytest.raises(NotFoundError):
            ingestion.upsert_mappings(
                db=db, batch_id=upload.batch_id, entries=[MappingEntry("Amount", "OrderAmount")], owner_id=OTHER_OWNER
            )


class TestBatchDeletion:
    def test_delete_batch_cascades_then_enqueues_dataset_recompute(
        self, ingestion, db, store, enqueuer, upload
    ) -> None:
        store.events.clear()

        result = ingestion.delete_batch(db=db, owner_id=OWNER, batch_id=upload.batch_id)

        assert result.dataset_id == upload.dataset_id
        assert upload.batch_id not in store.state.batches
        assert upload.batch_id not in store.state.rows
        assert enqueuer.payloads == [RecomputeDataset(dataset_id=upload.dataset_id)]
        assert store.events == ["commit", "enqueue:recompute_dataset"]

    def test_delete_unknown_batch_is_not_found(self, ingestion, db, enqueuer) -> None:
        with pytest.raises(NotFoundError):
            ingestion.delete_batch(db=db, owner_id=OWNER, batch_id=999)
        assert enqueuer.payloads == []

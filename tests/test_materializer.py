"""
tests/test_materializer.py

MetricsMaterializer end to end over the in-memory store: the batch claim
guard, idempotent recomputes, cross-batch folding, deletion recompute,
rollback on failure and cache invalidation after commit.
"""

from __future__ import annotations

import io
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from app.errors import TransientInfrastructureError
from app.scheduler.payloads import RecomputeBatch, RecomputeDataset
from app.validators.mapping_validator import MappingEntry
from db.models.dataset_batch import BatchStatus
from metrics.catalog import MetricKey
from tests.fakes import FakeMetricRepository

OWNER = 1

BATCH_A = (
    "cust,amount,ordered,region,gender\n"
    "C1,100,2026-09-03,North,M\n"
    "C2,50,2026-10-01,South,F\n"
)
BATCH_B = (
    "cust,amount,ordered,region,gender\n"
    "C2,20,2026-10-10,North,female\n"
    "C3,30,2026-10-12,North,M\n"
)
MAPPING = [
    MappingEntry("cust", "CustomerId"),
    MappingEntry("amount", "OrderAmount"),
    MappingEntry("ordered", "OrderDate"),
    MappingEntry("region", "Region"),
    MappingEntry("gender", "Gender"),
]


def _upload_and_map(ingestion, db, dataset_id: int, text: str) -> int:
    upload = ingestion.upload_csv(
        db=db,
        owner_id=OWNER,
        dataset_id=dataset_id,
        file_name="orders.csv",
        stream=io.BytesIO(text.encode("utf-8")),
    )
    ingestion.upsert_mappings(db=db, batch_id=upload.batch_id, entries=MAPPING, owner_id=OWNER)
    return upload.batch_id


@pytest.fixture()
def dataset_id(ingestion, db) -> int:
    return ingestion.create_dataset(db=db, owner_id=OWNER, name="orders").id


@pytest.fixture()
def finals(db):
    repository = FakeMetricRepository(db)
    return lambda dataset_id, metric, bucket="", period=None: repository.final_value(dataset_id, metric, bucket, period)


class TestRecomputeBatch:
    def test_materializes_batch_and_marks_it_succeeded(self, ingestion, db, store, materializer, dataset_id, finals):
        batch_id = _upload_and_map(ingestion, db, dataset_id, BATCH_A)

        result = materializer.run(RecomputeBatch(dataset_id, batch_id))

        assert not result.skipped
        assert result.batches_processed == 1
        assert store.state.batches[batch_id].status == BatchStatus.SUCCEEDED
        assert finals(dataset_id, MetricKey.TOTAL_REVENUE) == Decimal("150")
        assert finals(dataset_id, MetricKey.TOTAL_CUSTOMERS) == Decimal("2")
        assert finals(dataset_id, MetricKey.MONTHLY_REVENUE_TREND, period=date(2026, 10, 1)) == Decimal("50")
        assert finals(dataset_id, MetricKey.GENDER_SHARE, bucket="male") == Decimal("0.5")

    def test_folds_across_batches_with_union_and_weighted_average(
        self, ingestion, db, materializer, dataset_id, finals
    ):
        first = _upload_and_map(ingestion, db, dataset_id, BATCH_A)
        second = _upload_and_map(ingestion, db, dataset_id, BATCH_B)
        materializer.run(RecomputeBatch(dataset_id, first))
        materializer.run(RecomputeBatch(dataset_id, second))

        assert finals(dataset_id, MetricKey.TOTAL_REVENUE) == Decimal("200")
        # C2 appears in both batches and is counted once.
        assert finals(dataset_id, MetricKey.TOTAL_CUSTOMERS) == Decimal("3")
        assert finals(dataset_id, MetricKey.AVG_ORDER_VALUE) == Decimal("50")
        assert finals(dataset_id, MetricKey.REGION_DISTRIBUTION, bucket="North") == Decimal("0.75")
        assert finals(dataset_id, MetricKey.MONTHLY_REVENUE_TREND, period=date(2026, 10, 1)) == Decimal("100")
        assert finals(dataset_id, MetricKey.NEW_CUSTOMERS, period=date(2026, 10, 1)) == Decimal("2")
        assert finals(dataset_id, MetricKey.RETURNING_CUSTOMERS, period=date(2026, 10, 1)) == Decimal("0")

    def test_duplicate_delivery_is_a_no_op(self, ingestion, db, store, materializer, dataset_id):
        batch_id = _upload_and_map(ingestion, db, dataset_id, BATCH_A)
        materializer.run(RecomputeBatch(dataset_id, batch_id))
        snapshot = (list(store.state.by_batch), dict(store.state.finals))

        again = materializer.run(RecomputeBatch(dataset_id, batch_id))

        assert again.skipped
        assert again.skip_reason == "batch_status_succeeded"
        assert (store.state.by_batch, store.state.finals) == snapshot

    def test_remapping_and_rerunning_is_idempotent(self, ingestion, db, store, materializer, dataset_id):
        batch_id = _upload_and_map(ingestion, db, dataset_id, BATCH_A)
        materializer.run(RecomputeBatch(dataset_id, batch_id))
        first = dict(store.state.finals)

        ingestion.upsert_mappings(db=db, batch_id=batch_id, entries=MAPPING, owner_id=OWNER)
        materializer.run(RecomputeBatch(dataset_id, batch_id))

        assert store.state.finals == first
        assert len(store.state.by_batch) == len({(b, a) for _, b, a in store.state.by_batch})

    def test_unmapping_a_field_removes_its_final_values(self, ingestion, db, store, materializer, dataset_id):
        batch_id = _upload_and_map(ingestion, db, dataset_id, BATCH_A)
        materializer.run(RecomputeBatch(dataset_id, batch_id))

        ingestion.upsert_mappings(db=db, batch_id=batch_id, entries=[MappingEntry("region", None)], owner_id=OWNER)
        result = materializer.run(RecomputeBatch(dataset_id, batch_id))

        assert "RegionDistribution" in result.metric_keys
        assert not any(key[1] == "RegionDistribution" for key in store.state.finals)
        assert any(key[1] == "TotalRevenue" for key in store.state.finals)

    def test_pending_batch_is_skipped(self, ingestion, db, store, materializer, dataset_id):
        upload = ingestion.upload_csv(
            db=db,
            owner_id=OWNER,
            dataset_id=dataset_id,
            file_name="a.csv",
            stream=io.BytesIO(BATCH_A.encode("utf-8")),
        )

        result = materializer.run(RecomputeBatch(dataset_id, upload.batch_id))

        assert result.skipped
        assert result.skip_reason == "batch_status_pending"
        assert store.state.finals == {}

    def test_batch_from_another_dataset_is_skipped(self, ingestion, db, materializer, dataset_id):
        batch_id = _upload_and_map(ingestion, db, dataset_id, BATCH_A)

        result = materializer.run(RecomputeBatch(dataset_id + 100, batch_id))

        assert result.skipped
        assert result.skip_reason == "batch_not_found"

    def test_failure_rolls_back_and_leaves_batch_mapped(self, ingestion, db, store, materializer, dataset_id):
        batch_id = _upload_and_map(ingestion, db, dataset_id, BATCH_A)
        store.failures["replace_final_metrics"] = RuntimeError("boom")

        with pytest.raises(RuntimeError):
            materializer.run(RecomputeBatch(dataset_id, batch_id))

        assert store.state.batches[batch_id].status == BatchStatus.MAPPED
        assert store.state.by_batch == []
        assert store.state.finals == {}

    def test_storage_outage_is_reported_as_transient(self, ingestion, db, store, materializer, dataset_id):
        batch_id = _upload_and_map(ingestion, db, dataset_id, BATCH_A)
        store.failures["claim_batch_for_processing"] = OperationalError("UPDATE", {}, Exception("gone"))

        with pytest.raises(TransientInfrastructureError):
            materializer.run(RecomputeBatch(dataset_id, batch_id))

        assert store.state.batches[batch_id].status == BatchStatus.MAPPED

    def test_failed_batch_can_be_rerun(self, ingestion, db, store, materializer, dataset_id):
        batch_id = _upload_and_map(ingestion, db, dataset_id, BATCH_A)
        store.state.batches[batch_id].status = BatchStatus.FAILED

        result = materializer.run(RecomputeBatch(dataset_id, batch_id))

        assert not result.skipped
        assert store.state.batches[batch_id].status == BatchStatus.SUCCEEDED


class TestCacheInvalidation:
    def test_cache_namespace_is_cleared_after_commit(self, ingestion, db, cache, keys, materializer, dataset_id):
        batch_id = _upload_and_map(ingestion, db, dataset_id, BATCH_A)
        cache.set(keys.metric(dataset_id, "kpi-summary"), "{}", 60)
        cache.set(keys.metric(dataset_id + 1, "kpi-summary"), "{}", 60)

        result = materializer.run(RecomputeBatch(dataset_id, batch_id))

        assert result.cache_invalidation is not None and result.cache_invalidation.deleted == 1
        assert list(cache.values) == [keys.metric(dataset_id + 1, "kpi-summary")]

    def test_cache_outage_does_not_fail_the_run(self, ingestion, db, store, cache, materializer, dataset_id):
        batch_id = _upload_and_map(ingestion, db, dataset_id, BATCH_A)
        cache.fail_deletes = True

        result = materializer.run(RecomputeBatch(dataset_id, batch_id))

        assert not result.cache_invalidation.ok
        assert store.state.batches[batch_id].status == BatchStatus.SUCCEEDED
        assert result.to_dict()["cache_invalidation"]["error"].startswith("ConnectionError")

    def test_skipped_run_does_not_invalidate(self, cache, keys, materializer, dataset_id):
        cache.set(keys.metric(dataset_id, "kpi-summary"), "{}", 60)

        result = materializer.run(RecomputeBatch(dataset_id, 12345))

        assert result.skipped
        assert result.cache_invalidation is None
        assert cache.values


class TestRecomputeDataset:
    def test_deleted_batch_contributions_disappear(self, ingestion, db, store, materializer, dataset_id, finals):
        first = _upload_and_map(ingestion, db, dataset_id, BATCH_A)
        second = _upload_and_map(ingestion, db, dataset_id, BATCH_B)
        materializer.run(RecomputeBatch(dataset_id, first))
        materializer.run(RecomputeBatch(dataset_id, second))

        ingestion.delete_batch(db=db, owner_id=OWNER, batch_id=first)
        result = materializer.run(RecomputeDataset(dataset_id))

        assert result.batches_processed == 1
        assert finals(dataset_id, MetricKey.TOTAL_REVENUE) == Decimal("50")
        assert finals(dataset_id, MetricKey.TOTAL_CUSTOMERS) == Decimal("2")
        assert finals(dataset_id, MetricKey.REGION_DISTRIBUTION, bucket="North") == Decimal("1")
        assert not any(key[2] == "South" for key in store.state.finals)
        assert store.state.batches[second].status == BatchStatus.SUCCEEDED

    def test_deleting_the_last_batch_clears_every_final_value(self, ingestion, db, store, materializer, dataset_id):
        batch_id = _upload_and_map(ingestion, db, dataset_id, BATCH_A)
        materializer.run(RecomputeBatch(dataset_id, batch_id))

        ingestion.delete_batch(db=db, owner_id=OWNER, batch_id=batch_id)
        materializer.run(RecomputeDataset(dataset_id))

        assert store.state.finals == {}

    def test_missing_dataset_is_skipped(self, materializer):
        result = materializer.run(RecomputeDataset(4242))

        assert result.skipped
        assert result.skip_reason == "dataset_not_found"


class TestMarkFailed:
    def test_marks_mapped_batch_failed(self, ingestion, db, store, materializer, dataset_id):
        batch_id = _upload_and_map(ingestion, db, dataset_id, BATCH_A)

        assert materializer.mark_failed(RecomputeBatch(dataset_id, batch_id), "x" * 5000)

        batch = store.state.batches[batch_id]
        assert batch.status == BatchStatus.FAILED
        assert len(batch.error_message) == 2000

    def test_does_not_overwrite_a_newer_state(self, ingestion, db, store, materializer, dataset_id):
        batch_id = _upload_and_map(ingestion, db, dataset_id, BATCH_A)
        materializer.run(RecomputeBatch(dataset_id, batch_id))

        assert not materializer.mark_failed(RecomputeBatch(dataset_id, batch_id), "late failure")
        assert store.state.batches[batch_id].status == BatchStatus.SUCCEEDED

    def test_dataset_payloads_have_no_batch_to_mark(self, materializer, dataset_id):
        assert materializer.mark_failed(RecomputeDataset(dataset_id), "boom") is False

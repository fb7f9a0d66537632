"""
tests/test_api.py

HTTP contract of the routers, with database, services and job repository
swapped for in-memory fakes through FastAPI dependency overrides.
"""

from __future__ import annotations

import uuid

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.api.routers import datasets_router, materialization_jobs_router, metrics_router, uploads_router
from app.api.routers.materialization_jobs import get_job_repository
from app.services.ingestion_service import get_ingestion_service
from app.services.metric_service import get_metric_service
from db.session import get_db
from tests.fakes import FakeMaterializationJobRepository

OWNER_HEADERS = {"X-Owner-Id": "7"}
OTHER_HEADERS = {"X-Owner-Id": "8"}

CSV_BODY = b"Customer,Amount,Ordered\nAda,10,2026-10-01\nBob,32.5,2026-10-02\n"


@pytest.fixture()
def client(store, ingestion, metric_service):
    application = FastAPI()
    for router in (datasets_router, uploads_router, metrics_router, materialization_jobs_router):
        application.include_router(router)

    def override_db():
        session = store.session_factory()
        try:
            yield session
        finally:
            session.close()

    application.dependency_overrides[get_db] = override_db
    application.dependency_overrides[get_ingestion_service] = lambda: ingestion
    application.dependency_overrides[get_metric_service] = lambda: metric_service
    application.dependency_overrides[get_job_repository] = lambda: FakeMaterializationJobRepository(
        store.session_factory()
    )
    with TestClient(application) as test_client:
        yield test_client


def _create_dataset(client: TestClient, name: str = "Orders") -> int:
    response = client.post("/datasets", json={"name": name}, headers=OWNER_HEADERS)
    assert response.status_code == 201, response.text
    return response.json()["dataset_id"]


def _upload(client: TestClient, dataset_id: int) -> dict:
    response = client.post(
        f"/datasets/{dataset_id}/uploads",
        files={"file": ("orders.csv", CSV_BODY, "text/csv")},
        headers=OWNER_HEADERS,
    )
    assert response.status_code == 201, response.text
    return response.json()


class TestDatasetEndpoints:
    def test_owner_header_is_required(self, client) -> None:
        assert client.get("/datasets").status_code == 422
        assert client.get("/datasets", headers={"X-Owner-Id": "0"}).status_code == 422

    def test_create_list_and_delete(self, client) -> None:
        dataset_id = _create_dataset(client)

        listed = client.get("/datasets", headers=OWNER_HEADERS).json()["datasets"]
        assert [item["dataset_id"] for item in listed] == [dataset_id]
        assert client.get("/datasets", headers=OTHER_HEADERS).json()["datasets"] == []

        deleted = client.delete(f"/datasets/{dataset_id}", headers=OWNER_HEADERS)
        assert deleted.status_code == 200
        assert deleted.json() == {"dataset_id": dataset_id, "cache_invalidated": True}

    def test_quota_breach_is_a_conflict(self, client) -> None:
        _create_dataset(client, "one")
        _create_dataset(client, "two")

        response = client.post("/datasets", json={"name": "three"}, headers=OWNER_HEADERS)

        assert response.status_code == 409

    def test_deleting_foreign_dataset_is_not_found(self, client) -> None:
        dataset_id = _create_dataset(client)
        assert client.delete(f"/datasets/{dataset_id}", headers=OTHER_HEADERS).status_code == 404


class TestUploadEndpoints:
    def test_upload_returns_sniffed_columns(self, client) -> None:
        dataset_id = _create_dataset(client)

        body = _upload(client, dataset_id)

        assert body["status"] == "Pending"
        assert body["total_rows"] == body["inserted_rows"] == 2
        assert [(column["source_name"], column["data_type"]) for column in body["columns"]] == [
            ("Customer", "text"),
            ("Amount", "number"),
            ("Ordered", "date"),
        ]

    def test_non_csv_upload_is_rejected(self, client) -> None:
        dataset_id = _create_dataset(client)

        response = client.post(
            f"/datasets/{dataset_id}/uploads",
            files={"file": ("orders.json", b"{}", "application/json")},
            headers=OWNER_HEADERS,
        )

        assert response.status_code == 400

    def test_mapping_flow(self, client, enqueuer) -> None:
        dataset_id = _create_dataset(client)
        batch_id = _upload(client, dataset_id)["batch_id"]

        info = client.get(f"/uploads/{batch_id}/columns", headers=OWNER_HEADERS).json()
        assert {"name": "OrderAmount", "expected_type": "number"} in info["system_fields"]

        response = client.put(
            f"/uploads/{batch_id}/mappings",
            json={"mappings": [{"source_column": "Amount", "system_field": "OrderAmount"}]},
            headers=OWNER_HEADERS,
        )

        assert response.status_code == 200, response.text
        body = response.json()
        assert body["status"] == "Mapped"
        assert body["mapped"] == {"Amount": "OrderAmount"}
        uuid.UUID(body["job_id"])
        assert len(enqueuer.payloads) == 1

        history = client.get("/uploads/history", headers=OWNER_HEADERS).json()["items"]
        assert history[0]["status"] == "Mapped"

    def test_invalid_mapping_reports_every_error(self, client) -> None:
        dataset_id = _create_dataset(client)
        batch_id = _upload(client, dataset_id)["batch_id"]

        response = client.put(
            f"/uploads/{batch_id}/mappings",
            json={
                "mappings": [
                    {"source_column": "Missing", "system_field": "Region"},
                    {"source_column": "Amount", "system_field": "Salary"},
                ]
            },
            headers=OWNER_HEADERS,
        )

        assert response.status_code == 400
        codes = {error["code"] for error in response.json()["detail"]["errors"]}
        assert codes == {"unknown_source_column", "invalid_system_field"}

    def test_delete_batch_queues_dataset_recompute(self, client, enqueuer) -> None:
        dataset_id = _create_dataset(client)
        batch_id = _upload(client, dataset_id)["batch_id"]

        response = client.delete(f"/uploads/{batch_id}", headers=OWNER_HEADERS)

        assert response.status_code == 200
        assert response.json()["dataset_id"] == dataset_id
        assert enqueuer.payloads[-1].job_type == "recompute_dataset"
        assert client.delete(f"/uploads/{batch_id}", headers=OWNER_HEADERS).status_code == 404


class TestMetricEndpoints:
    def test_kpi_summary_for_owned_dataset(self, client) -> None:
        dataset_id = _create_dataset(client)

        response = client.get(f"/datasets/{dataset_id}/metrics/kpi-summary", headers=OWNER_HEADERS)

        assert response.status_code == 200
        assert response.json()["dataset_id"] == dataset_id

    def test_foreign_dataset_is_not_found(self, client) -> None:
        dataset_id = _create_dataset(client)

        response = client.get(f"/datasets/{dataset_id}/metrics/gender-share", headers=OTHER_HEADERS)

        assert response.status_code == 404

    def test_trend_window_is_validated(self, client) -> None:
        dataset_id = _create_dataset(client)

        ok = client.get(f"/datasets/{dataset_id}/metrics/monthly-revenue-trend?months=6", headers=OWNER_HEADERS)
        bad = client.get(f"/datasets/{dataset_id}/metrics/monthly-revenue-trend?months=0", headers=OWNER_HEADERS)

        assert len(ok.json()["points"]) == 6
        assert bad.status_code == 422

    def test_all_metrics(self, client) -> None:
        dataset_id = _create_dataset(client)

        body = client.get(f"/datasets/{dataset_id}/metrics/all", headers=OWNER_HEADERS).json()

        assert set(body) >= {"kpi_summary", "age_distribution", "gender_share", "monthly_revenue_trend"}


class TestMaterializationJobEndpoints:
    def test_list_and_get_jobs(self, client, store) -> None:
        repository = FakeMaterializationJobRepository(store.session_factory())
        job = repository.create_job(job_type="recompute_dataset", dataset_id=3, batch_id=None, max_attempts=3)
        repository.mark_failed(job_id=job.id, error_message="exhausted")

        listed = client.get("/materialization-jobs?status=failed").json()["jobs"]
        fetched = client.get(f"/materialization-jobs/{job.id}")

        assert [item["job_id"] for item in listed] == [str(job.id)]
        assert fetched.json()["error_message"] == "exhausted"

    def test_unknown_status_filter_is_rejected(self, client) -> None:
        assert client.get("/materialization-jobs?status=exploded").status_code == 400

    def test_unknown_job_is_not_found(self, client) -> None:
        assert client.get(f"/materialization-jobs/{uuid.uuid4()}").status_code == 404

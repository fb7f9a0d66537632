"""
Shared pytest fixtures wiring services to the in-memory fakes.
"""

from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from app.caching.keys import CacheKeyBuilder
from app.config import CacheSettings, IngestionSettings
from app.services.ingestion_service import IngestionService
from app.services.materializer import MetricsMaterializer
from app.services.metric_service import MetricService
from tests.fakes import (
    FakeDatasetRepository,
    FakeMetricRepository,
    FakeSession,
    FakeStore,
    InMemoryCacheStore,
    RecordingEnqueuer,
)

FIXED_NOW = datetime(2026, 10, 19, 9, 30, tzinfo=timezone.utc)


@pytest.fixture()
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture()
def db(store: FakeStore) -> FakeSession:
    return store.session_factory()


@pytest.fixture()
def cache() -> InMemoryCacheStore:
    return InMemoryCacheStore()


@pytest.fixture()
def keys() -> CacheKeyBuilder:
    return CacheKeyBuilder("bi")


@pytest.fixture()
def enqueuer(store: FakeStore) -> RecordingEnqueuer:
    return RecordingEnqueuer(store)


@pytest.fixture()
def ingestion(enqueuer: RecordingEnqueuer, cache: InMemoryCacheStore, keys: CacheKeyBuilder) -> IngestionService:
    return IngestionService(
        enqueuer=enqueuer,
        cache=cache,
        key_builder=keys,
        settings=IngestionSettings(row_chunk_size=2, max_datasets_per_owner=2, max_batches_per_dataset=5),
        dataset_repository_factory=FakeDatasetRepository,
    )


@pytest.fixture()
def materializer(store: FakeStore, cache: InMemoryCacheStore, keys: CacheKeyBuilder) -> MetricsMaterializer:
    return MetricsMaterializer(
        cache=cache,
        key_builder=keys,
        session_factory=store.session_factory,
        dataset_repository_factory=FakeDatasetRepository,
        metric_repository_factory=FakeMetricRepository,
        today=lambda: date(2026, 10, 19),
    )


@pytest.fixture()
def metric_service(cache: InMemoryCacheStore, keys: CacheKeyBuilder) -> MetricService:
    return MetricService(
        cache=cache,
        key_builder=keys,
        settings=CacheSettings(),
        dataset_repository_factory=FakeDatasetRepository,
        metric_repository_factory=FakeMetricRepository,
        clock=lambda: FIXED_NOW,
    )

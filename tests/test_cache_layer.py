"""
tests/test_cache_layer.py

Cache key layout, the Redis-backed store (against an in-memory client)
and fire-and-log invalidation.
"""

from __future__ import annotations

import logging

from app.caching import CacheKeyBuilder, RedisCacheStore, invalidate_dataset_metrics
from tests.fakes import FakeRedis, InMemoryCacheStore


class TestCacheKeyBuilder:
    def test_metric_key_layout(self) -> None:
        keys = CacheKeyBuilder("bi")
        assert keys.metric(7, "kpi-summary") == "bi:7:metric:kpi-summary"
        assert keys.metric(7, "monthly-revenue-trend", "m12") == "bi:7:metric:monthly-revenue-trend:m12"

    def test_empty_sub_key_is_omitted(self) -> None:
        assert CacheKeyBuilder().metric(1, "gender-share", "") == "bi:1:metric:gender-share"

    def test_prefix_is_normalized(self) -> None:
        assert CacheKeyBuilder(" tenant: ").prefix == "tenant"
        assert CacheKeyBuilder("").prefix == "bi"

    def test_namespace_does_not_overlap_other_datasets(self) -> None:
        keys = CacheKeyBuilder()
        assert not keys.metric(11, "kpi-summary").startswith(keys.metric_namespace(1))


class TestRedisCacheStore:
    def test_set_applies_ttl_and_get_round_trips(self) -> None:
        client = FakeRedis()
        store = RedisCacheStore(client)

        store.set("bi:1:metric:kpi-summary", '{"v": 1}', 300)

        assert store.get("bi:1:metric:kpi-summary") == '{"v": 1}'
        assert client.expiry["bi:1:metric:kpi-summary"] == 300
        assert store.get("bi:1:metric:missing") is None

    def test_delete_by_prefix_scans_and_unlinks_in_batches(self) -> None:
        client = FakeRedis()
        store = RedisCacheStore(client, scan_batch_size=10)
        for index in range(25):
            client.set(f"bi:1:metric:m{index}", "x")
        client.set("bi:2:metric:kpi-summary", "y")
        client.set("bi:11:metric:kpi-summary", "z")

        deleted = store.delete_by_prefix("bi:1:metric:")

        assert deleted == 25
        assert sorted(client.data) == ["bi:11:metric:kpi-summary", "bi:2:metric:kpi-summary"]
        assert client.scan_calls == [("bi:1:metric:*", 10)]
        assert [len(batch) for batch in client.unlink_calls] == [10, 10, 5]

    def test_delete_by_prefix_with_no_matches(self) -> None:
        client = FakeRedis()
        assert RedisCacheStore(client).delete_by_prefix("bi:9:metric:") == 0
        assert client.unlink_calls == []


class TestInvalidation:
    def test_invalidates_only_the_dataset_namespace(self) -> None:
        cache = InMemoryCacheStore()
        keys = CacheKeyBuilder()
        cache.set(keys.metric(1, "kpi-summary"), "a", 60)
        cache.set(keys.metric(1, "all-metrics", "m12"), "b", 60)
        cache.set(keys.metric(2, "kpi-summary"), "c", 60)

        result = invalidate_dataset_metrics(cache, keys, 1)

        assert result.ok
        assert result.deleted == 2
        assert result.prefix == "bi:1:metric:"
        assert list(cache.values) == ["bi:2:metric:kpi-summary"]

    def test_failure_is_logged_and_returned_not_raised(self, caplog) -> None:
        cache = InMemoryCacheStore()
        cache.fail_deletes = True

        with caplog.at_level(logging.WARNING, logger="app.caching.invalidation"):
            result = invalidate_dataset_metrics(cache, CacheKeyBuilder(), 3)

        assert not result.ok
        assert result.deleted == 0
        assert "ConnectionError" in (result.error or "")
        assert "Cache invalidation failed" in caplog.text
        assert result.to_dict()["prefix"] == "bi:3:metric:"

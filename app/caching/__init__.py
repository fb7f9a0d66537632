"""
app/caching package marker.
"""

from app.caching.invalidation import InvalidationResult, invalidate_dataset_metrics
from app.caching.keys import CacheKeyBuilder
from app.caching.store import CacheStore, RedisCacheStore, get_cache_store

__all__ = [
    "CacheKeyBuilder",
    "CacheStore",
    "InvalidationResult",
    "RedisCacheStore",
    "get_cache_store",
    "invalidate_dataset_metrics",
]

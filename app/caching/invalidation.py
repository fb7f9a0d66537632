"""
app/caching/invalidation.py

Fire-and-log cache invalidation.

Callers receive an ``InvalidationResult`` and log it; a failed invalidation
is never raised into the operation that triggered it (finishing a
materialization run, deleting a dataset). Stale entries then expire by TTL.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from app.caching.keys import CacheKeyBuilder
from app.caching.store import CacheStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InvalidationResult:
    prefix: str
    deleted: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, object]:
        return {"prefix": self.prefix, "deleted": self.deleted, "error": self.error}


def invalidate_dataset_metrics(
    cache: CacheStore,
    keys: CacheKeyBuilder,
    dataset_id: int,
) -> InvalidationResult:
    """
    Remove every cached metric entry of ``dataset_id``.
    """

    prefix = keys.metric_namespace(dataset_id)
    try:
        deleted = cache.delete_by_prefix(prefix)
    except Exception as exc:  # noqa: BLE001
        result = InvalidationResult(prefix=prefix, error=f"{type(exc).__name__}: {exc}")
        logger.warning(
            "Cache invalidation failed dataset_id=%s prefix=%r error=%s",
            dataset_id,
            prefix,
            result.error,
        )
        return result

    logger.info("Cache invalidated dataset_id=%s prefix=%r deleted=%d", dataset_id, prefix, deleted)
    return InvalidationResult(prefix=prefix, deleted=deleted)

"""
app/caching/keys.py

Deterministic metric cache keys.

Layout: ``{prefix}:{dataset_id}:metric:{metric}[:{sub_key}]``. Every metric
entry of a dataset shares ``{prefix}:{dataset_id}:metric:``, which is the unit
of invalidation.
"""

from __future__ import annotations


class CacheKeyBuilder:
    def __init__(self, prefix: str = "bi") -> None:
        self._prefix = prefix.strip().rstrip(":") or "bi"

    @property
    def prefix(self) -> str:
        return self._prefix

    def metric_namespace(self, dataset_id: int) -> str:
        return f"{self._prefix}:{dataset_id}:metric:"

    def metric(self, dataset_id: int, metric: str, sub_key: str | int | None = None) -> str:
        key = f"{self.metric_namespace(dataset_id)}{metric}"
        if sub_key is not None and str(sub_key) != "":
            key = f"{key}:{sub_key}"
        return key

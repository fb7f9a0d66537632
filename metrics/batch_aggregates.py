"""
metrics/batch_aggregates.py

Per-batch aggregation: turns one batch's stored row documents plus its column
mapping into by-batch aggregate slices.

Each slice carries enough state for a correct cross-batch fold:

- ``sum_value`` and ``count_value`` for Sum, Count, Average, Ratio and Share
  kinds (Average is never pre-divided here);
- ``distinct_keys`` for DistinctCount kinds, so the fold can take a set union
  instead of summing per-batch distinct counts.

The computation is a single streaming pass; documents are consumed once and
never held in memory as a whole.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any

from metrics.catalog import (
    PENDING_STATUS_VALUES,
    AggregationKind,
    BucketRule,
    MetricDefinition,
    MetricKey,
    SystemField,
    computable_metrics,
)
from metrics.values import (
    age_band,
    age_from_birth_date,
    is_blank,
    month_start,
    normalize_gender,
    normalize_key,
    normalize_text,
    parse_date,
    parse_amount,
)

WHOLE_DATASET_BUCKET = ""

# Width of the bucket column on both aggregate tables.
MAX_BUCKET_LENGTH = 255

SliceKey = tuple[str, date | None]


@dataclass(frozen=True)
class BatchAggregate:
    """
    One by-batch aggregate slice for (metric, bucket, period).
    """

    metric_key: MetricKey
    bucket: str
    period: date | None
    sum_value: Decimal
    count_value: int
    distinct_keys: tuple[str, ...] = ()


@dataclass
class _SliceState:
    sum_value: Decimal = Decimal("0")
    count_value: int = 0
    distinct_keys: set[str] = field(default_factory=set)


class _MetricAccumulator:
    def __init__(self, definition: MetricDefinition, mapping: Mapping[SystemField, str], today: date) -> None:
        self.definition = definition
        self._today = today
        self._value_column = mapping.get(definition.value_field) if definition.value_field else None
        self._period_column = mapping.get(definition.period_field) if definition.period_field else None
        self._bucket_column: str | None = None
        self._bucket_from_fallback = False
        if definition.bucket_field is not None:
            if definition.bucket_field in mapping:
                self._bucket_column = mapping[definition.bucket_field]
            elif definition.bucket_fallback_field is not None:
                self._bucket_column = mapping.get(definition.bucket_fallback_field)
                self._bucket_from_fallback = True
        self._slices: dict[SliceKey, _SliceState] = {}
        self._share_total = 0

    def add(self, document: Mapping[str, Any]) -> None:
        bucket = self._resolve_bucket(document)
        if bucket is None:
            return
        period: date | None = None
        if self._period_column is not None:
            parsed = parse_date(document.get(self._period_column))
            if parsed is None:
                return
            period = month_start(parsed)

        value = document.get(self._value_column) if self._value_column is not None else None

        match self.definition.kind:
            case AggregationKind.SUM | AggregationKind.AVERAGE | AggregationKind.RATIO:
                amount = parse_amount(value)
                if amount is None:
                    return
                state = self._slice(bucket, period)
                state.sum_value += amount
                state.count_value += 1
            case AggregationKind.COUNT:
                if self._value_column is not None and is_blank(value):
                    return
                self._slice(bucket, period).count_value += 1
            case AggregationKind.STATUS_COUNT:
                status = normalize_key(value)
                if status is None or status not in PENDING_STATUS_VALUES:
                    return
                self._slice(bucket, period).count_value += 1
            case AggregationKind.SHARE:
                self._slice(bucket, period).sum_value += 1
                self._share_total += 1
            case AggregationKind.DISTINCT_COUNT:
                member = normalize_key(value)
                if member is None:
                    return
                self._slice(bucket, period).distinct_keys.add(member)

    def results(self) -> list[BatchAggregate]:
        aggregates: list[BatchAggregate] = []
        for (bucket, period), state in sorted(self._slices.items(), key=_slice_sort_key):
            count_value = self._share_total if self.definition.kind is AggregationKind.SHARE else state.count_value
            if self.definition.kind is AggregationKind.DISTINCT_COUNT:
                count_value = len(state.distinct_keys)
            aggregates.append(
                BatchAggregate(
                    metric_key=self.definition.key,
                    bucket=bucket,
                    period=period,
                    sum_value=state.sum_value,
                    count_value=count_value,
                    distinct_keys=tuple(sorted(state.distinct_keys)),
                )
            )
        return aggregates

    def _slice(self, bucket: str, period: date | None) -> _SliceState:
        key = (bucket, period)
        state = self._slices.get(key)
        if state is None:
            state = _SliceState()
            self._slices[key] = state
        return state

    def _resolve_bucket(self, document: Mapping[str, Any]) -> str | None:
        if self._bucket_column is None:
            return WHOLE_DATASET_BUCKET
        raw = document.get(self._bucket_column)
        match self.definition.bucket_rule:
            case BucketRule.RAW:
                label = normalize_text(raw)
                return label[:MAX_BUCKET_LENGTH] if label is not None else None
            case BucketRule.GENDER:
                return normalize_gender(raw)
            case BucketRule.AGE_BAND:
                if self._bucket_from_fallback:
                    birth_date = parse_date(raw)
                    if birth_date is None:
                        return None
                    return age_band(age_from_birth_date(birth_date, self._today))
                age = parse_amount(raw)
                if age is None:
                    return None
                return age_band(int(age))
        return None


def _slice_sort_key(item: tuple[SliceKey, _SliceState]) -> tuple[str, date]:
    (bucket, period), _ = item
    return bucket, period or date.min


def compute_batch_aggregates(
    mapping: Mapping[SystemField, str],
    documents: Iterable[Mapping[str, Any]],
    *,
    today: date,
) -> list[BatchAggregate]:
    """
    Compute by-batch aggregates for every metric whose fields are mapped.

    Parameters
    ----------
    mapping:
        System field to source column name for the batch.
    documents:
        The batch's row documents, keyed by source column name.
    today:
        Reference date used to derive ages from birth dates.

    Returns
    -------
    list[BatchAggregate]
        Slices ordered by metric, bucket and period. Empty when no metric
        is computable from the mapping.
    """

    accumulators = [
        _MetricAccumulator(definition, mapping, today)
        for definition in computable_metrics(frozenset(mapping))
    ]
    if not accumulators:
        return []

    for document in documents:
        for accumulator in accumulators:
            accumulator.add(document)

    aggregates: list[BatchAggregate] = []
    for accumulator in accumulators:
        aggregates.extend(accumulator.results())
    return aggregates

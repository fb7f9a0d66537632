"""
metrics/folding.py

Fold by-batch aggregates from every batch of a dataset into final,
dataset-wide metric values.

Fold rules by aggregation kind:

- Sum: sum of per-batch sums per slice.
- Count / StatusCount: sum of per-batch counts per slice.
- Average / Ratio: sum of sums divided by sum of counts per slice; never an
  average of per-batch averages. Slices with a zero total count are dropped.
- Share: per-slice count over the total count of every bucket in the same
  period, giving a ratio in [0, 1].
- DistinctCount: size of the union of per-batch member sets, with the
  metric's distinct scope deciding which members count in each period.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, localcontext

from metrics.batch_aggregates import BatchAggregate
from metrics.catalog import AggregationKind, DistinctScope, MetricKey, get_definition

VALUE_QUANTUM = Decimal("0.000001")
QUANTIZE_PRECISION = 48

SliceKey = tuple[str, date | None]


@dataclass(frozen=True)
class FinalMetricValue:
    """
    Dataset-wide value for one (metric, bucket, period) slice.
    """

    metric_key: MetricKey
    bucket: str
    period: date | None
    value: Decimal

    @property
    def slice_key(self) -> tuple[str, str, date | None]:
        return self.metric_key.value, self.bucket, self.period


def fold_aggregates(aggregates: Iterable[BatchAggregate]) -> list[FinalMetricValue]:
    """
    Fold by-batch aggregates of any number of metrics and batches.

    Returns final values ordered by metric, bucket and period.
    """

    by_metric: dict[MetricKey, list[BatchAggregate]] = defaultdict(list)
    for aggregate in aggregates:
        by_metric[MetricKey(aggregate.metric_key)].append(aggregate)

    folded: list[FinalMetricValue] = []
    for metric_key in sorted(by_metric, key=lambda key: key.value):
        folded.extend(fold_metric(metric_key, by_metric[metric_key]))
    return folded


def fold_metric(metric_key: MetricKey, aggregates: list[BatchAggregate]) -> list[FinalMetricValue]:
    definition = get_definition(metric_key)
    if definition is None:
        return []

    match definition.kind:
        case AggregationKind.SUM:
            values = {key: sums for key, (sums, _) in _totals(aggregates).items()}
        case AggregationKind.COUNT | AggregationKind.STATUS_COUNT:
            values = {key: Decimal(counts) for key, (_, counts) in _totals(aggregates).items()}
        case AggregationKind.AVERAGE | AggregationKind.RATIO:
            values = {
                key: sums / counts
                for key, (sums, counts) in _totals(aggregates).items()
                if counts
            }
        case AggregationKind.SHARE:
            values = _fold_share(aggregates)
        case AggregationKind.DISTINCT_COUNT:
            values = _fold_distinct(aggregates, definition.distinct_scope)
        case _:
            raise ValueError(f"Unsupported aggregation kind: {definition.kind}")

    return [
        FinalMetricValue(
            metric_key=metric_key,
            bucket=bucket,
            period=period,
            value=_quantize(value),
        )
        for (bucket, period), value in sorted(values.items(), key=lambda item: _sort_key(item[0]))
    ]


def _totals(aggregates: list[BatchAggregate]) -> dict[SliceKey, tuple[Decimal, int]]:
    totals: dict[SliceKey, tuple[Decimal, int]] = {}
    for aggregate in aggregates:
        key = (aggregate.bucket, aggregate.period)
        sums, counts = totals.get(key, (Decimal("0"), 0))
        totals[key] = (sums + Decimal(aggregate.sum_value), counts + int(aggregate.count_value))
    return totals


def _fold_share(aggregates: list[BatchAggregate]) -> dict[SliceKey, Decimal]:
    bucket_totals = {key: sums for key, (sums, _) in _totals(aggregates).items()}
    period_totals: dict[date | None, Decimal] = defaultdict(lambda: Decimal("0"))
    for (_, period), amount in bucket_totals.items():
        period_totals[period] += amount

    return {
        (bucket, period): amount / period_totals[period]
        for (bucket, period), amount in bucket_totals.items()
        if period_totals[period] > 0
    }


def _fold_distinct(aggregates: list[BatchAggregate], scope: DistinctScope) -> dict[SliceKey, Decimal]:
    members: dict[SliceKey, set[str]] = defaultdict(set)
    for aggregate in aggregates:
        members[(aggregate.bucket, aggregate.period)].update(aggregate.distinct_keys)

    if scope is DistinctScope.ALL:
        return {key: Decimal(len(keys)) for key, keys in members.items()}

    first_seen: dict[tuple[str, str], date] = {}
    for (bucket, period), keys in members.items():
        if period is None:
            continue
        for member in keys:
            current = first_seen.get((bucket, member))
            if current is None or period < current:
                first_seen[(bucket, member)] = period

    values: dict[SliceKey, Decimal] = {}
    for (bucket, period), keys in members.items():
        if period is None:
            continue
        if scope is DistinctScope.FIRST_SEEN:
            count = sum(1 for member in keys if first_seen[(bucket, member)] == period)
        else:
            count = sum(1 for member in keys if first_seen[(bucket, member)] < period)
        values[(bucket, period)] = Decimal(count)
    return values


def _quantize(value: Decimal) -> Decimal:
    # Precision covers the full Numeric(38, 6) range, so quantize never
    # raises InvalidOperation for a storable value.
    with localcontext() as context:
        context.prec = QUANTIZE_PRECISION
        return value.quantize(VALUE_QUANTUM)


def _sort_key(key: SliceKey) -> tuple[str, date]:
    bucket, period = key
    return bucket, period or date.min

"""
metrics package marker.
"""

from metrics.batch_aggregates import BatchAggregate, compute_batch_aggregates
from metrics.catalog import (
    METRIC_AGGREGATION,
    AggregationKind,
    ColumnDataType,
    MetricKey,
    SystemField,
    aggregation_kind,
)
from metrics.folding import FinalMetricValue, fold_aggregates

__all__ = [
    "METRIC_AGGREGATION",
    "AggregationKind",
    "BatchAggregate",
    "ColumnDataType",
    "FinalMetricValue",
    "MetricKey",
    "SystemField",
    "aggregation_kind",
    "compute_batch_aggregates",
    "fold_aggregates",
]

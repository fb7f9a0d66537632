"""
metrics/catalog.py

Static registry of canonical system fields, metric keys and the aggregation
kind that governs how each metric's per-batch values fold into dataset-wide
values.

The metric set is closed. Behaviour is resolved by matching on the
``AggregationKind`` tag (see ``metrics.batch_aggregates`` and
``metrics.folding``) rather than through per-metric classes.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ColumnDataType(str, Enum):
    """Advisory data type inferred for an uploaded column."""

    NUMBER = "number"
    DATE = "date"
    EMAIL = "email"
    TEXT = "text"


class SystemField(str, Enum):
    """Canonical business attribute a source column can be mapped onto."""

    NAME = "Name"
    EMAIL = "Email"
    PHONE = "Phone"
    GENDER = "Gender"
    BIRTH_DATE = "BirthDate"
    AGE = "Age"
    CUSTOMER_ID = "CustomerId"
    ORDER_ID = "OrderId"
    ORDER_DATE = "OrderDate"
    ORDER_AMOUNT = "OrderAmount"
    ORDER_STATUS = "OrderStatus"
    REGION = "Region"
    PRODUCT_CATEGORY = "ProductCategory"

    @classmethod
    def parse(cls, raw: str) -> "SystemField | None":
        """
        Resolve a field by value or member name, case-insensitively.

        Returns None when ``raw`` is outside the enumerated domain.
        """

        token = raw.strip().lower().replace("_", "").replace(" ", "")
        for member in cls:
            if token in (member.value.lower(), member.name.lower().replace("_", "")):
                return member
        return None


class MetricKey(str, Enum):
    """Dashboard KPI or distribution identifier."""

    TOTAL_REVENUE = "TotalRevenue"
    TOTAL_CUSTOMERS = "TotalCustomers"
    TOTAL_ORDERS = "TotalOrders"
    AVG_ORDER_VALUE = "AvgOrderValue"
    NEW_CUSTOMERS = "NewCustomers"
    RETURNING_CUSTOMERS = "ReturningCustomers"
    PENDING_ORDERS = "PendingOrders"
    REGIONS = "Regions"
    PRODUCT_CATEGORY_SALES = "ProductCategorySales"
    MONTHLY_REVENUE_TREND = "MonthlyRevenueTrend"
    REGION_DISTRIBUTION = "RegionDistribution"
    AGE_DISTRIBUTION = "AgeDistribution"
    GENDER_SHARE = "GenderShare"
    DATA_SUMMARY = "DataSummary"


class AggregationKind(str, Enum):
    """Fold strategy used to combine per-batch values."""

    SUM = "Sum"
    COUNT = "Count"
    AVERAGE = "Average"
    SHARE = "Share"
    RATIO = "Ratio"
    DISTINCT_COUNT = "DistinctCount"
    STATUS_COUNT = "StatusCount"


class BucketRule(str, Enum):
    """How a raw cell becomes a bucket label."""

    RAW = "raw"
    GENDER = "gender"
    AGE_BAND = "age_band"


class DistinctScope(str, Enum):
    """Which members of a distinct set are counted per period."""

    ALL = "all"
    FIRST_SEEN = "first_seen"
    REPEAT = "repeat"


METRIC_AGGREGATION: dict[MetricKey, AggregationKind] = {
    MetricKey.TOTAL_REVENUE: AggregationKind.SUM,
    MetricKey.TOTAL_CUSTOMERS: AggregationKind.DISTINCT_COUNT,
    MetricKey.TOTAL_ORDERS: AggregationKind.COUNT,
    MetricKey.AVG_ORDER_VALUE: AggregationKind.AVERAGE,
    MetricKey.NEW_CUSTOMERS: AggregationKind.DISTINCT_COUNT,
    MetricKey.RETURNING_CUSTOMERS: AggregationKind.DISTINCT_COUNT,
    MetricKey.PENDING_ORDERS: AggregationKind.STATUS_COUNT,
    MetricKey.REGIONS: AggregationKind.SHARE,
    MetricKey.PRODUCT_CATEGORY_SALES: AggregationKind.SUM,
    MetricKey.MONTHLY_REVENUE_TREND: AggregationKind.SUM,
    MetricKey.REGION_DISTRIBUTION: AggregationKind.SHARE,
    MetricKey.AGE_DISTRIBUTION: AggregationKind.COUNT,
    MetricKey.GENDER_SHARE: AggregationKind.SHARE,
    MetricKey.DATA_SUMMARY: AggregationKind.SUM,
}

SYSTEM_FIELD_TYPES: dict[SystemField, ColumnDataType] = {
    SystemField.NAME: ColumnDataType.TEXT,
    SystemField.EMAIL: ColumnDataType.EMAIL,
    SystemField.PHONE: ColumnDataType.TEXT,
    SystemField.GENDER: ColumnDataType.TEXT,
    SystemField.BIRTH_DATE: ColumnDataType.DATE,
    SystemField.AGE: ColumnDataType.NUMBER,
    SystemField.CUSTOMER_ID: ColumnDataType.TEXT,
    SystemField.ORDER_ID: ColumnDataType.TEXT,
    SystemField.ORDER_DATE: ColumnDataType.DATE,
    SystemField.ORDER_AMOUNT: ColumnDataType.NUMBER,
    SystemField.ORDER_STATUS: ColumnDataType.TEXT,
    SystemField.REGION: ColumnDataType.TEXT,
    SystemField.PRODUCT_CATEGORY: ColumnDataType.TEXT,
}

PENDING_STATUS_VALUES: frozenset[str] = frozenset(
    {"pending", "processing", "awaiting payment", "on hold", "on-hold", "unpaid"}
)


@dataclass(frozen=True)
class MetricDefinition:
    """
    Which system fields a materialized metric reads and how it slices rows.

    ``value_field`` is summed for Sum/Average, must be non-blank for Count,
    is matched for StatusCount and is the member identity for DistinctCount.
    ``bucket_fallback_field`` is consulted only when ``bucket_field`` is unmapped.
    """

    key: MetricKey
    value_field: SystemField | None = None
    bucket_field: SystemField | None = None
    bucket_rule: BucketRule = BucketRule.RAW
    bucket_fallback_field: SystemField | None = None
    period_field: SystemField | None = None
    distinct_scope: DistinctScope = DistinctScope.ALL

    @property
    def kind(self) -> AggregationKind:
        return METRIC_AGGREGATION[self.key]

    def is_computable(self, mapped_fields: set[SystemField] | frozenset[SystemField]) -> bool:
        """Return True when every field this metric needs is mapped."""

        if self.value_field is not None and self.value_field not in mapped_fields:
            return False
        if self.period_field is not None and self.period_field not in mapped_fields:
            return False
        if self.bucket_field is not None and self.bucket_field not in mapped_fields:
            return self.bucket_fallback_field is not None and self.bucket_fallback_field in mapped_fields
        return True


METRIC_DEFINITIONS: tuple[MetricDefinition, ...] = (
    MetricDefinition(MetricKey.TOTAL_REVENUE, value_field=SystemField.ORDER_AMOUNT),
    MetricDefinition(MetricKey.TOTAL_CUSTOMERS, value_field=SystemField.CUSTOMER_ID),
    MetricDefinition(MetricKey.TOTAL_ORDERS, value_field=SystemField.ORDER_ID),
    MetricDefinition(MetricKey.AVG_ORDER_VALUE, value_field=SystemField.ORDER_AMOUNT),
    MetricDefinition(
        MetricKey.NEW_CUSTOMERS,
        value_field=SystemField.CUSTOMER_ID,
        period_field=SystemField.ORDER_DATE,
        distinct_scope=DistinctScope.FIRST_SEEN,
    ),
    MetricDefinition(
        MetricKey.RETURNING_CUSTOMERS,
        value_field=SystemField.CUSTOMER_ID,
        period_field=SystemField.ORDER_DATE,
        distinct_scope=DistinctScope.REPEAT,
    ),
    MetricDefinition(MetricKey.PENDING_ORDERS, value_field=SystemField.ORDER_STATUS),
    MetricDefinition(MetricKey.REGIONS, bucket_field=SystemField.REGION),
    MetricDefinition(
        MetricKey.PRODUCT_CATEGORY_SALES,
        value_field=SystemField.ORDER_AMOUNT,
        bucket_field=SystemField.PRODUCT_CATEGORY,
    ),
    MetricDefinition(
        MetricKey.MONTHLY_REVENUE_TREND,
        value_field=SystemField.ORDER_AMOUNT,
        period_field=SystemField.ORDER_DATE,
    ),
    MetricDefinition(MetricKey.REGION_DISTRIBUTION, bucket_field=SystemField.REGION),
    MetricDefinition(
        MetricKey.AGE_DISTRIBUTION,
        bucket_field=SystemField.AGE,
        bucket_rule=BucketRule.AGE_BAND,
        bucket_fallback_field=SystemField.BIRTH_DATE,
    ),
    MetricDefinition(
        MetricKey.GENDER_SHARE,
        bucket_field=SystemField.GENDER,
        bucket_rule=BucketRule.GENDER,
    ),
)

_DEFINITIONS_BY_KEY: dict[MetricKey, MetricDefinition] = {
    definition.key: definition for definition in METRIC_DEFINITIONS
}

MATERIALIZED_METRIC_KEYS: tuple[MetricKey, ...] = tuple(
    definition.key for definition in METRIC_DEFINITIONS
)


def aggregation_kind(metric_key: MetricKey | str) -> AggregationKind:
    """Return the aggregation kind registered for ``metric_key``."""

    return METRIC_AGGREGATION[MetricKey(metric_key)]


def get_definition(metric_key: MetricKey | str) -> MetricDefinition | None:
    """Return the materialization definition, or None for read-side composites."""

    return _DEFINITIONS_BY_KEY.get(MetricKey(metric_key))


def computable_metrics(mapped_fields: set[SystemField] | frozenset[SystemField]) -> list[MetricDefinition]:
    """Return the definitions whose required fields are all present in ``mapped_fields``."""

    return [definition for definition in METRIC_DEFINITIONS if definition.is_computable(mapped_fields)]

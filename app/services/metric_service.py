"""
Metric read service: cache-aside dashboard views over final aggregates.

Reads try the cache first. On a miss the view is built from
``materialized_metrics`` and written back with a view-specific TTL. The
materializer never writes cache entries; it only invalidates the dataset's
namespace, and the next read repopulates it.

A cache that cannot be reached degrades to a miss: the view is still served
from the database and the failure is logged.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from datetime import date, datetime, timezone
from decimal import Decimal
from functools import lru_cache
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError
from sqlalchemy.orm import Session

from app.caching.keys import CacheKeyBuilder
from app.caching.store import CacheStore
from app.config import CacheSettings
from app.errors import InputValidationError, NotFoundError
from app.schemas.metrics import (
    AgeDistributionPoint,
    AgeDistributionResponse,
    AllMetricsResponse,
    GenderShareResponse,
    KpiSummaryResponse,
    MonthlyRevenueTrendResponse,
    ProductCategorySalesPoint,
    ProductCategorySalesResponse,
    RegionDistributionPoint,
    RegionDistributionResponse,
    TrendPoint,
)
from db.repositories.dataset_repository import DatasetRepository
from db.repositories.metric_repository import MetricRepository
from metrics.batch_aggregates import WHOLE_DATASET_BUCKET
from metrics.catalog import MetricKey
from metrics.folding import FinalMetricValue
from metrics.values import GENDER_FEMALE, GENDER_MALE, add_months, age_band_sort_key, month_start

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

DEFAULT_TREND_MONTHS = 12
MAX_TREND_MONTHS = 120

_KPI_SUMMARY_KEYS = (
    MetricKey.TOTAL_REVENUE,
    MetricKey.TOTAL_CUSTOMERS,
    MetricKey.TOTAL_ORDERS,
    MetricKey.AVG_ORDER_VALUE,
    MetricKey.NEW_CUSTOMERS,
    MetricKey.RETURNING_CUSTOMERS,
    MetricKey.PENDING_ORDERS,
)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class MetricService:
    def __init__(
        self,
        *,
        cache: CacheStore,
        key_builder: CacheKeyBuilder,
        settings: CacheSettings | None = None,
        dataset_repository_factory: Callable[[Any], DatasetRepository] = DatasetRepository,
        metric_repository_factory: Callable[[Any], MetricRepository] = MetricRepository,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._cache = cache
        self._keys = key_builder
        self._settings = settings or CacheSettings()
        self._dataset_repository_factory = dataset_repository_factory
        self._metric_repository_factory = metric_repository_factory
        self._clock = clock

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def get_kpi_summary(self, *, db: Session, owner_id: int, dataset_id: int) -> KpiSummaryResponse:
        self._ensure_owned(db, owner_id, dataset_id)
        return self._cached(
            self._keys.metric(dataset_id, "kpi-summary"),
            self._settings.kpi_summary_ttl_seconds,
            KpiSummaryResponse,
            lambda: self._build_kpi_summary(db, dataset_id),
        )

    def get_age_distribution(self, *, db: Session, owner_id: int, dataset_id: int) -> AgeDistributionResponse:
        self._ensure_owned(db, owner_id, dataset_id)
        return self._cached(
            self._keys.metric(dataset_id, "age-distribution"),
            self._settings.distribution_ttl_seconds,
            AgeDistributionResponse,
            lambda: self._build_age_distribution(db, dataset_id),
        )

    def get_gender_share(self, *, db: Session, owner_id: int, dataset_id: int) -> GenderShareResponse:
        self._ensure_owned(db, owner_id, dataset_id)
        return self._cached(
            self._keys.metric(dataset_id, "gender-share"),
            self._settings.distribution_ttl_seconds,
            GenderShareResponse,
            lambda: self._build_gender_share(db, dataset_id),
        )

    def get_region_distribution(self, *, db: Session, owner_id: int, dataset_id: int) -> RegionDistributionResponse:
        self._ensure_owned(db, owner_id, dataset_id)
        return self._cached(
            self._keys.metric(dataset_id, "region-distribution"),
            self._settings.distribution_ttl_seconds,
            RegionDistributionResponse,
            lambda: self._build_region_distribution(db, dataset_id),
        )

    def get_product_category_sales(
        self, *, db: Session, owner_id: int, dataset_id: int
    ) -> ProductCategorySalesResponse:
        self._ensure_owned(db, owner_id, dataset_id)
        return self._cached(
            self._keys.metric(dataset_id, "product-category-sales"),
            self._settings.distribution_ttl_seconds,
            ProductCategorySalesResponse,
            lambda: self._build_product_category_sales(db, dataset_id),
        )

    def get_monthly_revenue_trend(
        self,
        *,
        db: Session,
        owner_id: int,
        dataset_id: int,
        months: int = DEFAULT_TREND_MONTHS,
    ) -> MonthlyRevenueTrendResponse:
        months = _validate_months(months)
        self._ensure_owned(db, owner_id, dataset_id)
        return self._cached(
            self._keys.metric(dataset_id, "monthly-revenue-trend", f"m{months}"),
            self._settings.monthly_trend_ttl_seconds,
            MonthlyRevenueTrendResponse,
            lambda: self._build_monthly_revenue_trend(db, dataset_id, months),
        )

    def get_all_metrics(
        self,
        *,
        db: Session,
        owner_id: int,
        dataset_id: int,
        months: int = DEFAULT_TREND_MONTHS,
    ) -> AllMetricsResponse:
        months = _validate_months(months)
        self._ensure_owned(db, owner_id, dataset_id)

        def build() -> AllMetricsResponse:
            return AllMetricsResponse(
                dataset_id=dataset_id,
                kpi_summary=self._build_kpi_summary(db, dataset_id),
                age_distribution=self._build_age_distribution(db, dataset_id),
                gender_share=self._build_gender_share(db, dataset_id),
                monthly_revenue_trend=self._build_monthly_revenue_trend(db, dataset_id, months),
                region_distribution=self._build_region_distribution(db, dataset_id),
                product_category_sales=self._build_product_category_sales(db, dataset_id),
                updated_at=self._clock(),
            )

        return self._cached(
            self._keys.metric(dataset_id, "all-metrics", f"m{months}"),
            self._settings.all_metrics_ttl_seconds,
            AllMetricsResponse,
            build,
        )

    # ------------------------------------------------------------------
    # Cache-aside
    # ------------------------------------------------------------------

    def _cached(self, key: str, ttl_seconds: int, model: type[ModelT], compute: Callable[[], ModelT]) -> ModelT:
        try:
            raw = self._cache.get(key)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Cache read failed key=%r, serving from database: %s", key, exc)
            raw = None

        if raw:
            try:
                return model.model_validate_json(raw)
            except ValidationError:
                logger.warning("Discarding unreadable cache entry key=%r", key)

        value = compute()
        try:
            self._cache.set(key, value.model_dump_json(), ttl_seconds)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Cache write failed key=%r: %s", key, exc)
        return value

    # ------------------------------------------------------------------
    # Builders
    # ------------------------------------------------------------------

    def _build_kpi_summary(self, db: Session, dataset_id: int) -> KpiSummaryResponse:
        now = self._clock()
        since = add_months(month_start(now.date()), -1)
        values = self._metric_repository_factory(db).get_final_metrics(dataset_id, _KPI_SUMMARY_KEYS, since=since)

        by_key: dict[MetricKey, list[FinalMetricValue]] = defaultdict(list)
        for value in values:
            by_key[value.metric_key].append(value)

        total_orders = _scalar(by_key, MetricKey.TOTAL_ORDERS)
        total_customers = _scalar(by_key, MetricKey.TOTAL_CUSTOMERS)
        customers_source: str | None = MetricKey.TOTAL_CUSTOMERS.value
        if total_customers is None:
            total_customers = total_orders
            customers_source = MetricKey.TOTAL_ORDERS.value if total_orders is not None else None

        return KpiSummaryResponse(
            dataset_id=dataset_id,
            total_revenue=float(_scalar(by_key, MetricKey.TOTAL_REVENUE) or 0),
            total_customers=int(total_customers or 0),
            total_customers_source=customers_source,
            total_orders=int(total_orders or 0),
            avg_order_value=float(_scalar(by_key, MetricKey.AVG_ORDER_VALUE) or 0),
            new_customers=int(sum((item.value for item in by_key[MetricKey.NEW_CUSTOMERS]), Decimal(0))),
            returning_customers=int(
                sum((item.value for item in by_key[MetricKey.RETURNING_CUSTOMERS]), Decimal(0))
            ),
            pending_orders=int(_scalar(by_key, MetricKey.PENDING_ORDERS) or 0),
            since=since,
            updated_at=now,
        )

    def _build_age_distribution(self, db: Session, dataset_id: int) -> AgeDistributionResponse:
        values = self._metric_repository_factory(db).get_final_metrics(dataset_id, [MetricKey.AGE_DISTRIBUTION])
        points = sorted(
            (AgeDistributionPoint(bucket=item.bucket, value=int(item.value)) for item in values),
            key=lambda point: age_band_sort_key(point.bucket),
        )
        return AgeDistributionResponse(dataset_id=dataset_id, points=points)

    def _build_gender_share(self, db: Session, dataset_id: int) -> GenderShareResponse:
        values = self._metric_repository_factory(db).get_final_metrics(dataset_id, [MetricKey.GENDER_SHARE])
        male = female = other = Decimal(0)
        for item in values:
            if item.bucket == GENDER_MALE:
                male += item.value
            elif item.bucket == GENDER_FEMALE:
                female += item.value
            else:
                other += item.value
        return GenderShareResponse(dataset_id=dataset_id, male=float(male), female=float(female), other=float(other))

    def _build_region_distribution(self, db: Session, dataset_id: int) -> RegionDistributionResponse:
        values = self._metric_repository_factory(db).get_final_metrics(dataset_id, [MetricKey.REGION_DISTRIBUTION])
        points = [
            RegionDistributionPoint(name=item.bucket, value=float(item.value))
            for item in sorted(values, key=lambda item: (-item.value, item.bucket))
        ]
        return RegionDistributionResponse(dataset_id=dataset_id, points=points)

    def _build_product_category_sales(self, db: Session, dataset_id: int) -> ProductCategorySalesResponse:
        values = self._metric_repository_factory(db).get_final_metrics(
            dataset_id, [MetricKey.PRODUCT_CATEGORY_SALES]
        )
        points = [
            ProductCategorySalesPoint(category=item.bucket, value=float(item.value))
            for item in sorted(values, key=lambda item: (-item.value, item.bucket))
        ]
        return ProductCategorySalesResponse(dataset_id=dataset_id, points=points)

    def _build_monthly_revenue_trend(self, db: Session, dataset_id: int, months: int) -> MonthlyRevenueTrendResponse:
        current = month_start(self._clock().date())
        start = add_months(current, -(months - 1))
        values = self._metric_repository_factory(db).get_final_metrics(
            dataset_id, [MetricKey.MONTHLY_REVENUE_TREND], since=start
        )

        totals: dict[date, Decimal] = defaultdict(Decimal)
        for item in values:
            if item.period is not None and start <= item.period <= current:
                totals[item.period] += item.value

        points = [
            TrendPoint(period=period, value=float(totals.get(period, Decimal(0))))
            for period in (add_months(start, offset) for offset in range(months))
        ]
        return MonthlyRevenueTrendResponse(dataset_id=dataset_id, months=months, points=points)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _ensure_owned(self, db: Session, owner_id: int, dataset_id: int) -> None:
        if self._dataset_repository_factory(db).get_dataset(dataset_id, owner_id=owner_id) is None:
            raise NotFoundError(f"Dataset {dataset_id} was not found.")


def _scalar(by_key: dict[MetricKey, list[FinalMetricValue]], metric_key: MetricKey) -> Decimal | None:
    for item in by_key.get(metric_key, []):
        if item.bucket == WHOLE_DATASET_BUCKET and item.period is None:
            return item.value
    return None


def _validate_months(months: int) -> int:
    if months < 1 or months > MAX_TREND_MONTHS:
        raise InputValidationError(f"months must be between 1 and {MAX_TREND_MONTHS}.")
    return months


@lru_cache(maxsize=1)
def get_metric_service() -> MetricService:
    """
    Return the process-wide metric read service.
    """

    from app.caching.store import get_cache_store
    from app.config import get_cache_settings

    settings = get_cache_settings()
    return MetricService(
        cache=get_cache_store(),
        key_builder=CacheKeyBuilder(settings.key_prefix),
        settings=settings,
    )

"""
app/api/routers/metrics.py

Dashboard metric read endpoints, served cache-aside from final aggregates.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.dependencies import get_owner_id, http_error_for
from app.errors import PipelineError
from app.schemas.metrics import (
    AgeDistributionResponse,
    AllMetricsResponse,
    GenderShareResponse,
    KpiSummaryResponse,
    MonthlyRevenueTrendResponse,
    ProductCategorySalesResponse,
    RegionDistributionResponse,
)
from app.services.metric_service import (
    DEFAULT_TREND_MONTHS,
    MAX_TREND_MONTHS,
    MetricService,
    get_metric_service,
)
from db.session import get_db

router = APIRouter(prefix="/datasets/{dataset_id}/metrics", tags=["metrics"])


@router.get("/kpi-summary", response_model=KpiSummaryResponse)
def get_kpi_summary(
    dataset_id: int,
    owner_id: int = Depends(get_owner_id),
    db: Session = Depends(get_db),
    service: MetricService = Depends(get_metric_service),
) -> KpiSummaryResponse:
    try:
        return service.get_kpi_summary(db=db, owner_id=owner_id, dataset_id=dataset_id)
    except PipelineError as exc:
        raise http_error_for(exc) from exc


@router.get("/age-distribution", response_model=AgeDistributionResponse)
def get_age_distribution(
    dataset_id: int,
    owner_id: int = Depends(get_owner_id),
    db: Session = Depends(get_db),
    service: MetricService = Depends(get_metric_service),
) -> AgeDistributionResponse:
    try:
        return service.get_age_distribution(db=db, owner_id=owner_id, dataset_id=dataset_id)
    except PipelineError as exc:
        raise http_error_for(exc) from exc


@router.get("/gender-share", response_model=GenderShareResponse)
def get_gender_share(
    dataset_id: int,
    owner_id: int = Depends(get_owner_id),
    db: Session = Depends(get_db),
    service: MetricService = Depends(get_metric_service),
) -> GenderShareResponse:
    try:
        return service.get_gender_share(db=db, owner_id=owner_id, dataset_id=dataset_id)
    except PipelineError as exc:
        raise http_error_for(exc) from exc


@router.get("/region-distribution", response_model=RegionDistributionResponse)
def get_region_distribution(
    dataset_id: int,
    owner_id: int = Depends(get_owner_id),
    db: Session = Depends(get_db),
    service: MetricService = Depends(get_metric_service),
) -> RegionDistributionResponse:
    try:
        return service.get_region_distribution(db=db, owner_id=owner_id, dataset_id=dataset_id)
    except PipelineError as exc:
        raise http_error_for(exc) from exc


@router.get("/product-category-sales", response_model=ProductCategorySalesResponse)
def get_product_category_sales(
    dataset_id: int,
    owner_id: int = Depends(get_owner_id),
    db: Session = Depends(get_db),
    service: MetricService = Depends(get_metric_service),
) -> ProductCategorySalesResponse:
    try:
        return service.get_product_category_sales(db=db, owner_id=owner_id, dataset_id=dataset_id)
    except PipelineError as exc:
        raise http_error_for(exc) from exc


@router.get("/monthly-revenue-trend", response_model=MonthlyRevenueTrendResponse)
def get_monthly_revenue_trend(
    dataset_id: int,
    months: int = Query(default=DEFAULT_TREND_MONTHS, ge=1, le=MAX_TREND_MONTHS),
    owner_id: int = Depends(get_owner_id),
    db: Session = Depends(get_db),
    service: MetricService = Depends(get_metric_service),
) -> MonthlyRevenueTrendResponse:
    try:
        return service.get_monthly_revenue_trend(db=db, owner_id=owner_id, dataset_id=dataset_id, months=months)
    except PipelineError as exc:
        raise http_error_for(exc) from exc


@router.get("/all", response_model=AllMetricsResponse)
def get_all_metrics(
    dataset_id: int,
    months: int = Query(default=DEFAULT_TREND_MONTHS, ge=1, le=MAX_TREND_MONTHS),
    owner_id: int = Depends(get_owner_id),
    db: Session = Depends(get_db),
    service: MetricService = Depends(get_metric_service),
) -> AllMetricsResponse:
    try:
        return service.get_all_metrics(db=db, owner_id=owner_id, dataset_id=dataset_id, months=months)
    except PipelineError as exc:
        raise http_error_for(exc) from exc

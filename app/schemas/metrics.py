"""
Schemas for dashboard metric read endpoints.

These models are also the cache payload format: values are serialised with
``model_dump_json`` and restored with ``model_validate_json``.
"""

from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, Field


class KpiSummaryResponse(BaseModel):
    dataset_id: int
    total_revenue: float = 0.0
    total_customers: int = 0
    total_customers_source: str | None = Field(
        default=None,
        description="Metric the customer count came from: TotalCustomers, or TotalOrders when no customer id is mapped",
    )
    total_orders: int = 0
    avg_order_value: float = 0.0
    new_customers: int = 0
    returning_customers: int = 0
    pending_orders: int = 0
    since: date
    updated_at: datetime


class AgeDistributionPoint(BaseModel):
    bucket: str
    value: int


class AgeDistributionResponse(BaseModel):
    dataset_id: int
    points: list[AgeDistributionPoint] = Field(default_factory=list)
    unit: str = "people"


class GenderShareResponse(BaseModel):
    dataset_id: int
    male: float = 0.0
    female: float = 0.0
    other: float = 0.0


class RegionDistributionPoint(BaseModel):
    name: str
    value: float


class RegionDistributionResponse(BaseModel):
    dataset_id: int
    points: list[RegionDistributionPoint] = Field(default_factory=list)
    unit: str = "ratio"


class ProductCategorySalesPoint(BaseModel):
    category: str
    value: float


class ProductCategorySalesResponse(BaseModel):
    dataset_id: int
    points: list[ProductCategorySalesPoint] = Field(default_factory=list)
    unit: str = "currency"


class TrendPoint(BaseModel):
    period: date
    value: float


class MonthlyRevenueTrendResponse(BaseModel):
    dataset_id: int
    months: int
    points: list[TrendPoint] = Field(default_factory=list)
    unit: str = "currency"


class AllMetricsResponse(BaseModel):
    dataset_id: int
    kpi_summary: KpiSummaryResponse
    age_distribution: AgeDistributionResponse
    gender_share: GenderShareResponse
    monthly_revenue_trend: MonthlyRevenueTrendResponse
    region_distribution: RegionDistributionResponse
    product_category_sales: ProductCategorySalesResponse
    updated_at: datetime

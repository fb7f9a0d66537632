"""
app/schemas package marker.
"""

from app.schemas.materialization import MaterializationJobListResponse, MaterializationJobResponse
from app.schemas.metrics import (
    AgeDistributionResponse,
    AllMetricsResponse,
    GenderShareResponse,
    KpiSummaryResponse,
    MonthlyRevenueTrendResponse,
    ProductCategorySalesResponse,
    RegionDistributionResponse,
)
from app.schemas.uploads import (
    ColumnMappingInfoResponse,
    DatasetResponse,
    MappingResultResponse,
    MappingSubmissionRequest,
    UploadHistoryResponse,
    UploadResultResponse,
)

__all__ = [
    "AgeDistributionResponse",
    "AllMetricsResponse",
    "ColumnMappingInfoResponse",
    "DatasetResponse",
    "GenderShareResponse",
    "KpiSummaryResponse",
    "MappingResultResponse",
    "MappingSubmissionRequest",
    "MaterializationJobListResponse",
    "MaterializationJobResponse",
    "MonthlyRevenueTrendResponse",
    "ProductCategorySalesResponse",
    "RegionDistributionResponse",
    "UploadHistoryResponse",
    "UploadResultResponse",
]

"""
app/services package marker.
"""

from app.services.materializer import MaterializationResult, MetricsMaterializer
from app.services.metric_service import MetricService, get_metric_service
from app.services.ingestion_service import (
    IngestionService,
    MappingResult,
    UploadResult,
    get_ingestion_service,
)

__all__ = [
    "MaterializationResult",
    "MetricsMaterializer",
    "MetricService",
    "get_metric_service",
    "IngestionService",
    "MappingResult",
    "UploadResult",
    "get_ingestion_service",
]

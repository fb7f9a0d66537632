"""
Repository layer exports.
"""

from db.repositories.dataset_repository import DatasetRepository
from db.repositories.materialization_job_repository import MaterializationJobRepository
from db.repositories.metric_repository import MetricRepository
from db.repositories.types import BatchHistoryRecord, ColumnDescriptor, ColumnWithMapping

__all__ = [
    "BatchHistoryRecord",
    "ColumnDescriptor",
    "ColumnWithMapping",
    "DatasetRepository",
    "MaterializationJobRepository",
    "MetricRepository",
]

"""
Model package exports.

Import all SQLAlchemy models here so metadata registration and Alembic
autogeneration work without extra imports.
"""

from db.models.dataset import Dataset
from db.models.dataset_batch import BatchStatus, DatasetBatch
from db.models.dataset_column import DatasetColumn
from db.models.dataset_mapping import DatasetMapping
from db.models.dataset_row import DatasetRow
from db.models.materialization_job import (
    MaterializationJob,
    MaterializationJobStatus,
    MaterializationJobType,
)
from db.models.materialized_metric import MaterializedMetric, MaterializedMetricByBatch

__all__ = [
    "BatchStatus",
    "Dataset",
    "DatasetBatch",
    "DatasetColumn",
    "DatasetMapping",
    "DatasetRow",
    "MaterializationJob",
    "MaterializationJobStatus",
    "MaterializationJobType",
    "MaterializedMetric",
    "MaterializedMetricByBatch",
]

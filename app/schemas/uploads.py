"""
Schemas for dataset, upload and column-mapping endpoints.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field


class DatasetCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)


class DatasetResponse(BaseModel):
    dataset_id: int
    name: str
    created_at: datetime
    updated_at: datetime


class DatasetListResponse(BaseModel):
    datasets: list[DatasetResponse] = Field(default_factory=list)


class DatasetDeletedResponse(BaseModel):
    dataset_id: int
    cache_invalidated: bool


class ColumnResponse(BaseModel):
    source_name: str
    data_type: str
    sample_value: str | None = None
    system_field: str | None = None


class UploadResultResponse(BaseModel):
    batch_id: int
    dataset_id: int
    source_filename: str
    status: str
    total_rows: int
    inserted_rows: int
    row_count_mismatch: bool = False
    columns: list[ColumnResponse] = Field(default_factory=list)


class UploadHistoryItem(BaseModel):
    batch_id: int
    dataset_id: int
    dataset_name: str
    source_filename: str
    total_rows: int
    status: str
    error_message: str | None = None
    created_at: datetime
    updated_at: datetime
    columns: list[ColumnResponse] = Field(default_factory=list)


class UploadHistoryResponse(BaseModel):
    items: list[UploadHistoryItem] = Field(default_factory=list)
    limit: int
    offset: int


class SystemFieldInfo(BaseModel):
    name: str
    expected_type: str


class ColumnMappingInfoResponse(BaseModel):
    batch_id: int
    dataset_id: int
    status: str
    system_fields: list[SystemFieldInfo] = Field(default_factory=list)
    columns: list[ColumnResponse] = Field(default_factory=list)


class MappingEntryRequest(BaseModel):
    source_column: str = Field(min_length=1)
    system_field: str | None = Field(
        default=None,
        description="Canonical field name; null, 'None' or 'unmapped' removes the column's mapping",
    )


class MappingSubmissionRequest(BaseModel):
    mappings: list[MappingEntryRequest] = Field(default_factory=list)


class MappingResultResponse(BaseModel):
    batch_id: int
    dataset_id: int
    status: str
    mapped: dict[str, str] = Field(default_factory=dict)
    removed: list[str] = Field(default_factory=list)
    job_id: UUID


class BatchDeletedResponse(BaseModel):
    batch_id: int
    dataset_id: int
    job_id: UUID

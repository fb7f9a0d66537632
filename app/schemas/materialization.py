"""
Schemas for materialization job status endpoints.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field


class MaterializationJobResponse(BaseModel):
    job_id: UUID
    job_type: str
    dataset_id: int
    batch_id: int | None = None
    status: str
    attempts: int
    max_attempts: int
    created_at: datetime
    updated_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    request_payload: dict[str, Any] | None = None
    result_payload: dict[str, Any] | None = None
    error_message: str | None = None


class MaterializationJobListResponse(BaseModel):
    jobs: list[MaterializationJobResponse] = Field(default_factory=list)

"""
app/api/routers/materialization_jobs.py

Operator view of background materialization jobs, including exhausted ones.
"""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.schemas.materialization import MaterializationJobListResponse, MaterializationJobResponse
from db.models.materialization_job import MaterializationJob, MaterializationJobStatus
from db.repositories.materialization_job_repository import MaterializationJobRepository
from db.session import get_db

router = APIRouter(prefix="/materialization-jobs", tags=["materialization"])

_STATUSES = (
    MaterializationJobStatus.INCOMPLETE
    + (MaterializationJobStatus.COMPLETED, MaterializationJobStatus.FAILED)
)


def get_job_repository(db: Session = Depends(get_db)) -> MaterializationJobRepository:
    return MaterializationJobRepository(db)


def _to_response(job: MaterializationJob) -> MaterializationJobResponse:
    return MaterializationJobResponse(
        job_id=job.id,
        job_type=job.job_type,
        dataset_id=job.dataset_id,
        batch_id=job.batch_id,
        status=job.status,
        attempts=job.attempts,
        max_attempts=job.max_attempts,
        created_at=job.created_at,
        updated_at=job.updated_at,
        started_at=job.started_at,
        completed_at=job.completed_at,
        request_payload=job.request_payload,
        result_payload=job.result_payload,
        error_message=job.error_message,
    )


@router.get("", response_model=MaterializationJobListResponse)
def list_materialization_jobs(
    status_filter: str | None = Query(default=None, alias="status", description="Filter by job status"),
    dataset_id: int | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    repository: MaterializationJobRepository = Depends(get_job_repository),
) -> MaterializationJobListResponse:
    if status_filter is not None and status_filter not in _STATUSES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"status must be one of: {', '.join(_STATUSES)}",
        )
    jobs = repository.list_jobs(limit=limit, status=status_filter, dataset_id=dataset_id)
    return MaterializationJobListResponse(jobs=[_to_response(job) for job in jobs])


@router.get("/{job_id}", response_model=MaterializationJobResponse)
def get_materialization_job(
    job_id: UUID,
    repository: MaterializationJobRepository = Depends(get_job_repository),
) -> MaterializationJobResponse:
    job = repository.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Materialization job not found.")
    return _to_response(job)

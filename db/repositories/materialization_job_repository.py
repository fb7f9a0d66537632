"""
Repository for materialization job lifecycle persistence and status lookup.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Select, select
from sqlalchemy.orm import Session

from db.models.materialization_job import MaterializationJob, MaterializationJobStatus


class MaterializationJobRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def create_job(
        self,
        *,
        job_type: str,
        dataset_id: int,
        batch_id: int | None,
        max_attempts: int,
        request_payload: dict[str, Any] | None = None,
    ) -> MaterializationJob:
        job = MaterializationJob(
            job_type=job_type,
            dataset_id=dataset_id,
            batch_id=batch_id,
            status=MaterializationJobStatus.PENDING,
            attempts=0,
            max_attempts=max_attempts,
            request_payload=request_payload,
        )
        self._session.add(job)
        self._session.flush()
        return job

    def get_job(self, job_id: uuid.UUID) -> MaterializationJob | None:
        return self._session.get(MaterializationJob, job_id)

    def list_jobs(
        self,
        *,
        limit: int = 100,
        status: str | None = None,
        dataset_id: int | None = None,
    ) -> list[MaterializationJob]:
        stmt: Select[tuple[MaterializationJob]] = select(MaterializationJob)

        if status:
            stmt = stmt.where(MaterializationJob.status == status)
        if dataset_id is not None:
            stmt = stmt.where(MaterializationJob.dataset_id == dataset_id)

        stmt = stmt.order_by(MaterializationJob.created_at.desc()).limit(max(1, limit))
        return list(self._session.scalars(stmt).all())

    def list_incomplete_jobs(self) -> list[MaterializationJob]:
        stmt = (
            select(MaterializationJob)
            .where(MaterializationJob.status.in_(MaterializationJobStatus.INCOMPLETE))
            .order_by(MaterializationJob.created_at)
        )
        return list(self._session.scalars(stmt).all())

    def mark_running(self, *, job_id: uuid.UUID, attempt: int) -> MaterializationJob | None:
        job = self.get_job(job_id)
        if job is None:
            return None
        job.status = MaterializationJobStatus.RUNNING
        job.attempts = attempt
        if job.started_at is None:
            job.started_at = datetime.now(timezone.utc)
        job.completed_at = None
        return job

    def mark_retrying(self, *, job_id: uuid.UUID, error_message: str) -> MaterializationJob | None:
        job = self.get_job(job_id)
        if job is None:
            return None
        job.status = MaterializationJobStatus.RETRYING
        job.error_message = error_message
        return job

    def mark_completed(
        self,
        *,
        job_id: uuid.UUID,
        result_payload: dict[str, Any] | None = None,
    ) -> MaterializationJob | None:
        job = self.get_job(job_id)
        if job is None:
            return None
        job.status = MaterializationJobStatus.COMPLETED
        job.completed_at = datetime.now(timezone.utc)
        job.result_payload = result_payload
        job.error_message = None
        return job

    def mark_failed(
        self,
        *,
        job_id: uuid.UUID,
        error_message: str,
        result_payload: dict[str, Any] | None = None,
    ) -> MaterializationJob | None:
        job = self.get_job(job_id)
        if job is None:
            return None
        job.status = MaterializationJobStatus.FAILED
        job.completed_at = datetime.now(timezone.utc)
        job.error_message = error_message
        if result_payload is not None:
            job.result_payload = result_payload
        return job

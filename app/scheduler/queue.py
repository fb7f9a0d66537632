"""
app/scheduler/queue.py

Durable materialization queue on top of APScheduler.

Every enqueued payload gets a ``materialization_jobs`` row before it is
scheduled, so the job survives a process restart: ``recover_incomplete_jobs``
re-schedules anything left pending, running or retrying.

Retry policy
------------
Attempts run on the scheduler's thread pool. A failed attempt is retried with
exponential backoff (``retry_backoff_seconds * 2 ** (attempt - 1)``) until
``max_attempts`` is reached. Validation and not-found errors are permanent and
fail the job immediately. When attempts are exhausted the batch itself is
marked Failed through ``MetricsMaterializer.mark_failed``.
Storage errors while writing the job row count as a failed attempt; a job row
that cannot be failed stays incomplete and is recovered on the next start.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Any, Protocol

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy.orm import Session

from app.errors import InputValidationError, NotFoundError
from app.scheduler.payloads import (
    MaterializationPayload,
    batch_id_of,
    payload_from_dict,
    payload_to_dict,
)
from app.services.materializer import MetricsMaterializer
from db.models.materialization_job import MaterializationJob
from db.repositories.materialization_job_repository import MaterializationJobRepository

logger = logging.getLogger(__name__)

_PERMANENT_ERRORS = (InputValidationError, NotFoundError)


class JobEnqueuer(Protocol):
    def enqueue(self, payload: MaterializationPayload) -> uuid.UUID:
        ...


def build_scheduler(worker_threads: int = 4) -> BackgroundScheduler:
    """
    Return a configured but *not yet started* ``BackgroundScheduler``.
    """

    return BackgroundScheduler(
        timezone="UTC",
        executors={"default": ThreadPoolExecutor(max(1, worker_threads))},
        job_defaults={"coalesce": False, "misfire_grace_time": 3600},
    )


class MaterializationQueue:
    def __init__(
        self,
        *,
        materializer: MetricsMaterializer,
        session_factory: Callable[[], Session] | None = None,
        scheduler: BackgroundScheduler | None = None,
        max_attempts: int = 3,
        retry_backoff_seconds: float = 5.0,
        worker_threads: int = 4,
        job_repository_factory: Callable[[Any], MaterializationJobRepository] = MaterializationJobRepository,
    ) -> None:
        if session_factory is None:
            from db.session import SessionLocal

            self._session_factory: Callable[[], Session] = SessionLocal
        else:
            self._session_factory = session_factory

        self._materializer = materializer
        self._scheduler = scheduler or build_scheduler(worker_threads)
        self._max_attempts = max(1, max_attempts)
        self._retry_backoff_seconds = max(0.0, retry_backoff_seconds)
        self._job_repository_factory = job_repository_factory

    @property
    def scheduler(self) -> BackgroundScheduler:
        return self._scheduler

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def start(self) -> None:
        if not self._scheduler.running:
            self._scheduler.start()
            logger.info("Materialization queue started")

    def shutdown(self, wait: bool = True) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=wait)
            logger.info("Materialization queue shut down")

    def enqueue(self, payload: MaterializationPayload) -> uuid.UUID:
        with self._session_factory() as db:
            with db.begin():
                job = self._job_repository_factory(db).create_job(
                    job_type=payload.job_type,
                    dataset_id=payload.dataset_id,
                    batch_id=batch_id_of(payload),
                    max_attempts=self._max_attempts,
                    request_payload=payload_to_dict(payload),
                )
                job_id = job.id

        logger.info("Materialization job queued job_id=%s payload=%r", job_id, payload)
        self._schedule(job_id, payload, attempt=1, delay_seconds=0.0)
        return job_id

    def recover_incomplete_jobs(self) -> int:
        """
        Re-schedule jobs a previous process left unfinished. Returns the count.
        """

        with self._session_factory() as db:
            jobs: list[MaterializationJob] = self._job_repository_factory(db).list_incomplete_jobs()
            pending = [(job.id, job.attempts, job.request_payload or {}) for job in jobs]

        recovered = 0
        for job_id, attempts, raw_payload in pending:
            try:
                payload = payload_from_dict(raw_payload)
            except (KeyError, TypeError, ValueError) as exc:
                self._finish_failed(job_id, f"Unreadable job payload: {exc}")
                continue
            self._schedule(job_id, payload, attempt=min(attempts + 1, self._max_attempts), delay_seconds=0.0)
            recovered += 1

        if recovered:
            logger.info("Recovered %d incomplete materialization job(s)", recovered)
        return recovered

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _schedule(
        self,
        job_id: uuid.UUID,
        payload: MaterializationPayload,
        *,
        attempt: int,
        delay_seconds: float,
    ) -> None:
        run_date = datetime.now(timezone.utc) + timedelta(seconds=delay_seconds)
        self._scheduler.add_job(
            self._run_attempt,
            trigger="date",
            run_date=run_date,
            args=[job_id, payload, attempt],
            id=f"materialize-{job_id}-{attempt}",
            name=f"Materialize {payload.job_type} dataset={payload.dataset_id}",
            replace_existing=True,
        )

    def _run_attempt(self, job_id: uuid.UUID, payload: MaterializationPayload, attempt: int) -> None:
        # Job-row writes share the attempt's retry budget: a storage error
        # while marking the job running or completed is a failed attempt.
        try:
            with self._session_factory() as db:
                with db.begin():
                    self._job_repository_factory(db).mark_running(job_id=job_id, attempt=attempt)

            result = self._materializer.run(payload)

            with self._session_factory() as db:
                with db.begin():
                    self._job_repository_factory(db).mark_completed(
                        job_id=job_id, result_payload=result.to_dict()
                    )
        except _PERMANENT_ERRORS as exc:
            logger.warning("Materialization job %s failed permanently: %s", job_id, exc)
            self._record_failure(job_id, str(exc))
        except Exception as exc:  # noqa: BLE001
            message = f"{type(exc).__name__}: {exc}"
            if attempt < self._max_attempts:
                delay = self._retry_backoff_seconds * (2 ** (attempt - 1))
                logger.warning(
                    "Materialization job %s attempt %d/%d failed, retrying in %.1fs: %s",
                    job_id,
                    attempt,
                    self._max_attempts,
                    delay,
                    message,
                )
                self._record_retry(job_id, message)
                self._schedule(job_id, payload, attempt=attempt + 1, delay_seconds=delay)
                return

            logger.exception(
                "Materialization job %s exhausted %d attempt(s)", job_id, self._max_attempts
            )
            self._record_failure(job_id, message, payload=payload)

    def _record_retry(self, job_id: uuid.UUID, message: str) -> None:
        try:
            with self._session_factory() as db:
                with db.begin():
                    self._job_repository_factory(db).mark_retrying(job_id=job_id, error_message=message)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Could not mark materialization job %s retrying: %s", job_id, exc)

    def _record_failure(
        self,
        job_id: uuid.UUID,
        message: str,
        *,
        payload: MaterializationPayload | None = None,
    ) -> None:
        """
        Fail the job row and, for an exhausted run, the batch. Each write is
        attempted independently; a job row left incomplete is picked up again
        by ``recover_incomplete_jobs`` on the next start.
        """

        try:
            self._finish_failed(job_id, message)
        except Exception:  # noqa: BLE001
            logger.exception("Could not record failure of materialization job %s", job_id)
        if payload is None:
            return
        try:
            self._materializer.mark_failed(payload, message)
        except Exception:  # noqa: BLE001
            logger.exception("Could not mark batch failed for materialization job %s", job_id)

    def _finish_failed(self, job_id: uuid.UUID, message: str) -> None:
        with self._session_factory() as db:
            with db.begin():
                self._job_repository_factory(db).mark_failed(job_id=job_id, error_message=message)


@lru_cache(maxsize=1)
def get_materialization_queue() -> MaterializationQueue:
    """
    Return the process-wide materialization queue.
    """

    from app.caching.keys import CacheKeyBuilder
    from app.caching.store import get_cache_store
    from app.config import get_cache_settings, get_ingestion_settings, get_materialization_settings

    settings = get_materialization_settings()
    materializer = MetricsMaterializer(
        cache=get_cache_store(),
        key_builder=CacheKeyBuilder(get_cache_settings().key_prefix),
        row_chunk_size=get_ingestion_settings().row_chunk_size,
    )
    return MaterializationQueue(
        materializer=materializer,
        max_attempts=settings.max_attempts,
        retry_backoff_seconds=settings.retry_backoff_seconds,
        worker_threads=settings.worker_threads,
    )

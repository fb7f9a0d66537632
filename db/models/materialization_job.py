"""
db/models/materialization_job.py

Background materialization job record. Exhausted retries stay visible here
with status ``failed`` for operators.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import BigInteger, DateTime, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, TimestampMixin


class MaterializationJobType:
    RECOMPUTE_BATCH = "recompute_batch"
    RECOMPUTE_DATASET = "recompute_dataset"


class MaterializationJobStatus:
    PENDING = "pending"
    RUNNING = "running"
    RETRYING = "retrying"
    COMPLETED = "completed"
    FAILED = "failed"

    INCOMPLETE = (PENDING, RUNNING, RETRYING)


class MaterializationJob(Base, TimestampMixin):
    __tablename__ = "materialization_jobs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    job_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="recompute_batch, recompute_dataset",
    )
    dataset_id: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        comment="Not a foreign key: job history outlives deleted datasets",
    )
    batch_id: Mapped[int | None] = mapped_column(
        BigInteger,
        nullable=True,
    )
    status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=MaterializationJobStatus.PENDING,
    )
    attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    max_attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=3,
    )
    request_payload: Mapped[dict[str, Any] | None] = mapped_column(
        JSONB,
        nullable=True,
    )
    result_payload: Mapped[dict[str, Any] | None] = mapped_column(
        JSONB,
        nullable=True,
    )
    error_message: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    __table_args__ = (
        Index("ix_materialization_jobs_status", "status"),
        Index("ix_materialization_jobs_dataset_id", "dataset_id"),
        Index("ix_materialization_jobs_created_at", "created_at"),
    )

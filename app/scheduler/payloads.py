"""
app/scheduler/payloads.py

Materialization job payloads.

``RecomputeBatch`` reprocesses one batch and re-folds the dataset-wide values
it touches; ``RecomputeDataset`` rebuilds every by-batch and final aggregate
of a dataset from its successful batches (used after a batch is deleted).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union

from db.models.materialization_job import MaterializationJobType


@dataclass(frozen=True)
class RecomputeBatch:
    dataset_id: int
    batch_id: int

    @property
    def job_type(self) -> str:
        return MaterializationJobType.RECOMPUTE_BATCH


@dataclass(frozen=True)
class RecomputeDataset:
    dataset_id: int

    @property
    def job_type(self) -> str:
        return MaterializationJobType.RECOMPUTE_DATASET


MaterializationPayload = Union[RecomputeBatch, RecomputeDataset]


def payload_to_dict(payload: MaterializationPayload) -> dict[str, Any]:
    match payload:
        case RecomputeBatch(dataset_id=dataset_id, batch_id=batch_id):
            return {"job_type": payload.job_type, "dataset_id": dataset_id, "batch_id": batch_id}
        case RecomputeDataset(dataset_id=dataset_id):
            return {"job_type": payload.job_type, "dataset_id": dataset_id}
    raise TypeError(f"Unsupported materialization payload: {payload!r}")


def payload_from_dict(data: dict[str, Any]) -> MaterializationPayload:
    job_type = data.get("job_type")
    if job_type == MaterializationJobType.RECOMPUTE_BATCH:
        return RecomputeBatch(dataset_id=int(data["dataset_id"]), batch_id=int(data["batch_id"]))
    if job_type == MaterializationJobType.RECOMPUTE_DATASET:
        return RecomputeDataset(dataset_id=int(data["dataset_id"]))
    raise ValueError(f"Unknown materialization job type: {job_type!r}")


def batch_id_of(payload: MaterializationPayload) -> int | None:
    return payload.batch_id if isinstance(payload, RecomputeBatch) else None

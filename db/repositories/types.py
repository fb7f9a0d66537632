"""
Typed DTOs passed across the repository boundary.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True)
class ColumnDescriptor:
    """
    A sniffed source column ready to be upserted for a batch.
    """

    source_name: str
    data_type: str
    sample_value: str | None = None


@dataclass(frozen=True)
class ColumnWithMapping:
    """
    A batch column joined with its current system-field mapping, if any.
    """

    source_name: str
    data_type: str
    sample_value: str | None = None
    system_field: str | None = None


@dataclass(frozen=True)
class BatchHistoryRecord:
    """
    One upload batch with its columns and mappings, for history views.
    """

    batch_id: int
    dataset_id: int
    dataset_name: str
    source_filename: str
    total_rows: int
    status: str
    error_message: str | None
    created_at: datetime
    updated_at: datetime
    columns: tuple[ColumnWithMapping, ...] = field(default_factory=tuple)

"""
db/models/dataset_row.py

Raw ingested record stored as an opaque header-keyed JSONB document.
Rows are append-only and interpreted only at materialization time.
"""

from typing import Any

from sqlalchemy import BigInteger, ForeignKey, Index
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, CreatedAtMixin, IdentityPKMixin


class DatasetRow(Base, IdentityPKMixin, CreatedAtMixin):
    __tablename__ = "dataset_rows"

    batch_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("dataset_batches.id", ondelete="CASCADE"),
        nullable=False,
    )

    row_document: Mapped[dict[str, Any]] = mapped_column(
        JSONB,
        nullable=False,
        comment="Header-keyed cell values; empty cells are stored as null",
    )

    __table_args__ = (
        Index("ix_dataset_rows_batch_id", "batch_id"),
    )

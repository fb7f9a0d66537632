"""
db/models/dataset_batch.py

One upload event within a dataset, plus its status state machine.
"""

from typing import TYPE_CHECKING

from sqlalchemy import BigInteger, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from db.base import Base, IdentityPKMixin, TimestampMixin

if TYPE_CHECKING:
    from db.models.dataset import Dataset
    from db.models.dataset_column import DatasetColumn
    from db.models.dataset_mapping import DatasetMapping


class BatchStatus:
    """
    Batch lifecycle.

    Pending → Mapped → Processing → Succeeded | Failed. Mapped is re-entered
    whenever a mapping is re-submitted; nothing returns to Pending. Processing
    is only ever held inside an open materialization transaction.
    """

    PENDING = "Pending"
    MAPPED = "Mapped"
    PROCESSING = "Processing"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"

    ALL = (PENDING, MAPPED, PROCESSING, SUCCEEDED, FAILED)
    CLAIMABLE = (MAPPED, FAILED)


class DatasetBatch(Base, IdentityPKMixin, TimestampMixin):
    __tablename__ = "dataset_batches"

    dataset_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("datasets.id", ondelete="CASCADE"),
        nullable=False,
    )

    source_filename: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    total_rows: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
        comment="Row count observed by the column sniffer",
    )

    status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=BatchStatus.PENDING,
    )

    error_message: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    # ── Relationships ──────────────────────────────────────────────────────────

    dataset: Mapped["Dataset"] = relationship(
        "Dataset",
        back_populates="batches",
    )

    columns: Mapped[list["DatasetColumn"]] = relationship(
        "DatasetColumn",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="DatasetColumn.id",
    )

    mappings: Mapped[list["DatasetMapping"]] = relationship(
        "DatasetMapping",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="DatasetMapping.id",
    )

    # ── Indexes ────────────────────────────────────────────────────────────────

    __table_args__ = (
        Index("ix_dataset_batches_dataset_id", "dataset_id"),
        Index("ix_dataset_batches_dataset_status", "dataset_id", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<DatasetBatch id={self.id} dataset_id={self.dataset_id} "
            f"status={self.status!r} total_rows={self.total_rows}>"
        )

"""
db/models/dataset_column.py

A source column detected in an uploaded batch.
"""

from sqlalchemy import BigInteger, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, IdentityPKMixin, TimestampMixin


class DatasetColumn(Base, IdentityPKMixin, TimestampMixin):
    __tablename__ = "dataset_columns"

    batch_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("dataset_batches.id", ondelete="CASCADE"),
        nullable=False,
    )

    source_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    data_type: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        comment="Advisory sniffed type: number, date, email, text",
    )

    sample_value: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        comment="Diagnostic only; never read by aggregation",
    )

    __table_args__ = (
        UniqueConstraint("batch_id", "source_name", name="uq_dataset_columns_batch_source"),
    )

"""
db/models/dataset_mapping.py

Binding of one batch column onto one canonical system field.
"""

from sqlalchemy import BigInteger, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, IdentityPKMixin, TimestampMixin


class DatasetMapping(Base, IdentityPKMixin, TimestampMixin):
    """
    Within a batch each source column maps to at most one system field and
    each system field is claimed by at most one source column.
    """

    __tablename__ = "dataset_mappings"

    batch_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("dataset_batches.id", ondelete="CASCADE"),
        nullable=False,
    )

    source_column: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    system_field: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("batch_id", "source_column", name="uq_dataset_mappings_batch_source"),
        UniqueConstraint("batch_id", "system_field", name="uq_dataset_mappings_batch_field"),
    )

"""
db/models/dataset.py

Dataset model: a logical container of upload batches owned by one user.
Deleting a dataset cascades to its batches and to every materialized metric.
"""

from typing import TYPE_CHECKING

from sqlalchemy import BigInteger, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from db.base import Base, IdentityPKMixin, TimestampMixin

if TYPE_CHECKING:
    from db.models.dataset_batch import DatasetBatch


class Dataset(Base, IdentityPKMixin, TimestampMixin):
    """
    One owner-scoped analytics dataset.

    The owner is an opaque identifier issued by the external identity
    provider; no users table exists in this schema.
    """

    __tablename__ = "datasets"

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Human-readable label for this dataset",
    )

    owner_id: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
    )

    # ── Relationships ──────────────────────────────────────────────────────────

    batches: Mapped[list["DatasetBatch"]] = relationship(
        "DatasetBatch",
        back_populates="dataset",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="DatasetBatch.id",
    )

    # ── Indexes ────────────────────────────────────────────────────────────────

    __table_args__ = (
        Index("ix_datasets_owner_id", "owner_id"),
    )

    def __repr__(self) -> str:
        return f"<Dataset id={self.id} name={self.name!r} owner_id={self.owner_id}>"

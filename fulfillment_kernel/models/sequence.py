"""
Module: fulfillment_kernel.models.sequence
Responsibility: ORM persistence for document number counters.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Exactly one row per (document_type, scope_key, year_month).
      ``scope_key`` is the warehouse id as text, or ``GEN`` for documents
      without a warehouse, so the unique constraint also holds for the
      warehouse-less partition (a NULL warehouse_id would not be unique).
    - next_value >= 1 and never decreases within a key.
    - A new month is a new key; nothing is ever reset in place.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from fulfillment_kernel.db.base import Base, UUIDString


class SequenceCounter(Base):
    """
    Per-document-type, per-warehouse, per-month counter row.

    Row-level locking on this row serializes concurrent allocations for the
    same key; different keys never contend.
    """

    __tablename__ = "sequence_counters"

    __table_args__ = (
        UniqueConstraint(
            "document_type", "scope_key", "year_month",
            name="uq_sequence_counters_key",
        ),
        CheckConstraint("next_value >= 1", name="ck_sequence_counters_positive"),
    )

    document_type: Mapped[str] = mapped_column(String(50), nullable=False)
    warehouse_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("warehouses.id"), nullable=True,
    )
    scope_key: Mapped[str] = mapped_column(String(36), nullable=False)
    year_month: Mapped[str] = mapped_column(String(7), nullable=False)
    prefix: Mapped[str] = mapped_column(String(2), nullable=False)

    # The value the next allocation will hand out
    next_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=1)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<SequenceCounter {self.document_type}/{self.scope_key}/"
            f"{self.year_month} next={self.next_value}>"
        )

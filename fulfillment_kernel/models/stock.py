"""
Module: fulfillment_kernel.models.stock
Responsibility: ORM persistence for stock records and the stock movement log.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - (product_id, warehouse_id) is unique on product_stock.
    - Check constraints: counters are non-negative and
      reserved + damaged <= quantity, i.e. available >= 0.  Available is
      never stored; it is computed on read.
    - ``version`` counts the movements applied to a record; each movement
      carries the version it produced, unique per record, which orders the
      trail for replay.
    - stock_movements is append-only (ORM listeners in db/immutability.py).

Failure modes:
    - IntegrityError on a second record for the same pair (handled by the
      ledger with a savepoint retry).
    - ImmutabilityViolationError on movement UPDATE/DELETE.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from fulfillment_kernel.db.base import Base, TrackedBase, UUIDString
from fulfillment_kernel.domain.stock import (
    MovementType,
    StockLevels,
    StockMovementRecord,
    StockSnapshot,
)

_MOVEMENT_TYPES = ", ".join(f"'{t.value}'" for t in MovementType)


class ProductStock(TrackedBase):
    """On-hand, reserved and damaged quantities of one product in one warehouse."""

    __tablename__ = "product_stock"

    __table_args__ = (
        UniqueConstraint("product_id", "warehouse_id", name="uq_product_stock_pair"),
        CheckConstraint("quantity >= 0", name="ck_product_stock_quantity"),
        CheckConstraint("reserved_quantity >= 0", name="ck_product_stock_reserved"),
        CheckConstraint("damaged_quantity >= 0", name="ck_product_stock_damaged"),
        CheckConstraint(
            "reserved_quantity + damaged_quantity <= quantity",
            name="ck_product_stock_available",
        ),
        Index("idx_product_stock_warehouse", "warehouse_id"),
    )

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("products.id"), nullable=False,
    )
    warehouse_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("warehouses.id"), nullable=False,
    )
    quantity: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    reserved_quantity: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    damaged_quantity: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    bin_location: Mapped[str | None] = mapped_column(String(50), nullable=True)
    version: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    @property
    def available_quantity(self) -> int:
        return self.quantity - self.reserved_quantity - self.damaged_quantity

    @property
    def levels(self) -> StockLevels:
        return StockLevels(
            self.quantity, self.reserved_quantity, self.damaged_quantity,
        )

    def to_snapshot(self) -> StockSnapshot:
        return StockSnapshot(
            product_id=self.product_id,
            warehouse_id=self.warehouse_id,
            quantity=self.quantity,
            reserved_quantity=self.reserved_quantity,
            damaged_quantity=self.damaged_quantity,
            bin_location=self.bin_location,
        )

    def __repr__(self) -> str:
        return (
            f"<ProductStock {self.product_id}@{self.warehouse_id} "
            f"qty={self.quantity} res={self.reserved_quantity} "
            f"dmg={self.damaged_quantity}>"
        )


class StockMovement(Base):
    """One immutable change to a stock record."""

    __tablename__ = "stock_movements"

    __table_args__ = (
        CheckConstraint(
            f"movement_type IN ({_MOVEMENT_TYPES})",
            name="ck_stock_movements_type",
        ),
        CheckConstraint("quantity_change <> 0", name="ck_stock_movements_nonzero"),
        UniqueConstraint("stock_id", "version", name="uq_stock_movements_version"),
        Index("idx_stock_movements_pair", "product_id", "warehouse_id"),
        Index("idx_stock_movements_reference", "reference_type", "reference_id"),
    )

    stock_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("product_stock.id"), nullable=False,
    )
    product_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("products.id"), nullable=False,
    )
    warehouse_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("warehouses.id"), nullable=False,
    )
    movement_type: Mapped[str] = mapped_column(String(20), nullable=False)
    quantity_change: Mapped[int] = mapped_column(BigInteger, nullable=False)
    previous_quantity: Mapped[int] = mapped_column(BigInteger, nullable=False)
    new_quantity: Mapped[int] = mapped_column(BigInteger, nullable=False)
    version: Mapped[int] = mapped_column(BigInteger, nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    # Causing document
    reference_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    reference_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    reference_number: Mapped[str | None] = mapped_column(String(50), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def to_record(self) -> StockMovementRecord:
        return StockMovementRecord(
            movement_id=self.id,
            product_id=self.product_id,
            warehouse_id=self.warehouse_id,
            movement_type=MovementType(self.movement_type),
            quantity_change=self.quantity_change,
            previous_quantity=self.previous_quantity,
            new_quantity=self.new_quantity,
            version=self.version,
            reason=self.reason,
            actor_id=self.actor_id,
            reference_type=self.reference_type,
            reference_id=self.reference_id,
            reference_number=self.reference_number,
        )

    def __repr__(self) -> str:
        return (
            f"<StockMovement {self.movement_type} {self.quantity_change:+d} "
            f"v{self.version}>"
        )

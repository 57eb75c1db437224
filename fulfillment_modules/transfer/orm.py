"""
Module: fulfillment_modules.transfer.orm
Responsibility: Persistence for warehouse transfers and their lines.
Architecture position: Modules > Transfer > ORM.  Inherits from TrackedBase.

Invariants enforced:
    - transfer_number is unique.
    - Source and destination warehouses differ.
    - quantity_delivered <= quantity_requested and
      quantity_received <= quantity_delivered on every line.
    - Only REQUESTED transfers may be deleted (``deletable_statuses``).
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fulfillment_kernel.db.base import TrackedBase, UUIDString
from fulfillment_modules.transfer.models import (
    TransferStatus,
    WarehouseTransfer,
    WarehouseTransferItem,
)


class WarehouseTransferItemModel(TrackedBase):
    __tablename__ = "warehouse_transfer_items"

    __table_args__ = (
        UniqueConstraint("transfer_id", "product_id", name="uq_transfer_items_product"),
        CheckConstraint("quantity_requested > 0", name="ck_transfer_items_requested"),
        CheckConstraint(
            "quantity_delivered >= 0 AND quantity_delivered <= quantity_requested",
            name="ck_transfer_items_delivered",
        ),
        CheckConstraint(
            "quantity_received >= 0 AND quantity_received <= quantity_delivered",
            name="ck_transfer_items_received",
        ),
        CheckConstraint("shortfall >= 0", name="ck_transfer_items_shortfall"),
    )

    transfer_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("warehouse_transfers.id", ondelete="CASCADE"), nullable=False,
    )
    line_number: Mapped[int] = mapped_column(nullable=False)
    product_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("products.id"), nullable=False,
    )
    quantity_requested: Mapped[int] = mapped_column(nullable=False)
    quantity_delivered: Mapped[int] = mapped_column(nullable=False, default=0)
    quantity_received: Mapped[int] = mapped_column(nullable=False, default=0)
    shortfall: Mapped[int] = mapped_column(nullable=False, default=0)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    def to_dto(self) -> WarehouseTransferItem:
        return WarehouseTransferItem(
            id=self.id,
            product_id=self.product_id,
            quantity_requested=self.quantity_requested,
            quantity_delivered=self.quantity_delivered,
            quantity_received=self.quantity_received,
            shortfall=self.shortfall,
            notes=self.notes,
        )


class WarehouseTransferModel(TrackedBase):
    """A request to move stock from one warehouse to another."""

    __tablename__ = "warehouse_transfers"

    __table_args__ = (
        CheckConstraint(
            "source_warehouse_id <> destination_warehouse_id",
            name="ck_warehouse_transfers_distinct",
        ),
        Index("idx_warehouse_transfers_status", "status"),
        Index("idx_warehouse_transfers_source", "source_warehouse_id"),
        Index("idx_warehouse_transfers_destination", "destination_warehouse_id"),
    )

    deletable_statuses = frozenset({TransferStatus.REQUESTED.value})

    transfer_number: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)
    source_warehouse_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("warehouses.id"), nullable=False,
    )
    destination_warehouse_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("warehouses.id"), nullable=False,
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TransferStatus.REQUESTED.value,
    )
    picking_list_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("picking_lists.id"), nullable=True,
    )
    delivery_order_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("delivery_orders.id"), nullable=True,
    )
    requested_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    approved_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    delivered_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(nullable=True)
    received_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    received_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancelled_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    items: Mapped[list[WarehouseTransferItemModel]] = relationship(
        WarehouseTransferItemModel,
        cascade="all, delete-orphan",
        order_by=WarehouseTransferItemModel.line_number,
        lazy="selectin",
    )

    def item_for(self, product_id: UUID) -> WarehouseTransferItemModel | None:
        for item in self.items:
            if item.product_id == product_id:
                return item
        return None

    def to_dto(self) -> WarehouseTransfer:
        return WarehouseTransfer(
            id=self.id,
            transfer_number=self.transfer_number,
            source_warehouse_id=self.source_warehouse_id,
            destination_warehouse_id=self.destination_warehouse_id,
            status=TransferStatus(self.status),
            items=tuple(item.to_dto() for item in self.items),
            requested_by_id=self.requested_by_id,
            picking_list_id=self.picking_list_id,
            delivery_order_id=self.delivery_order_id,
            approved_by_id=self.approved_by_id,
            approved_at=self.approved_at,
            delivered_by_id=self.delivered_by_id,
            delivered_at=self.delivered_at,
            received_by_id=self.received_by_id,
            received_at=self.received_at,
            cancelled_by_id=self.cancelled_by_id,
            cancelled_at=self.cancelled_at,
            cancel_reason=self.cancel_reason,
            notes=self.notes,
        )

    def __repr__(self) -> str:
        return f"<WarehouseTransfer {self.transfer_number} status={self.status}>"

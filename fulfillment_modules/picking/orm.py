"""
Module: fulfillment_modules.picking.orm
Responsibility: Persistence for picking lists and their lines.
Architecture position: Modules > Picking > ORM.  Inherits from TrackedBase.

Invariants enforced:
    - picking_number is unique.
    - 0 <= quantity_picked <= quantity_required (check constraints).
    - One line per product per list.
    - Only DRAFT lists may be deleted (``deletable_statuses``, enforced by
      the kernel's before_flush listener).
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fulfillment_kernel.db.base import TrackedBase, UUIDString
from fulfillment_modules.picking.models import (
    PickingItemStatus,
    PickingList,
    PickingListItem,
    PickingListStatus,
)


class PickingListItemModel(TrackedBase):
    __tablename__ = "picking_list_items"

    __table_args__ = (
        UniqueConstraint("picking_list_id", "product_id", name="uq_picking_list_items_product"),
        CheckConstraint("quantity_required > 0", name="ck_picking_items_required"),
        CheckConstraint(
            "quantity_picked >= 0 AND quantity_picked <= quantity_required",
            name="ck_picking_items_picked",
        ),
    )

    picking_list_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("picking_lists.id", ondelete="CASCADE"), nullable=False,
    )
    line_number: Mapped[int] = mapped_column(nullable=False)
    product_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("products.id"), nullable=False,
    )
    quantity_required: Mapped[int] = mapped_column(nullable=False)
    quantity_picked: Mapped[int] = mapped_column(nullable=False, default=0)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PickingItemStatus.PENDING.value,
    )
    bin_location: Mapped[str | None] = mapped_column(String(50), nullable=True)

    def to_dto(self) -> PickingListItem:
        return PickingListItem(
            id=self.id,
            product_id=self.product_id,
            quantity_required=self.quantity_required,
            quantity_picked=self.quantity_picked,
            status=PickingItemStatus(self.status),
            bin_location=self.bin_location,
        )


class PickingListModel(TrackedBase):
    """A pick instruction for one warehouse."""

    __tablename__ = "picking_lists"

    __table_args__ = (
        Index("idx_picking_lists_warehouse_status", "warehouse_id", "status"),
        Index("idx_picking_lists_source", "source_type", "source_id"),
    )

    deletable_statuses = frozenset({PickingListStatus.DRAFT.value})

    picking_number: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)
    warehouse_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("warehouses.id"), nullable=False,
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PickingListStatus.DRAFT.value,
    )
    source_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    source_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    assigned_to_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    items: Mapped[list[PickingListItemModel]] = relationship(
        PickingListItemModel,
        cascade="all, delete-orphan",
        order_by=PickingListItemModel.line_number,
        lazy="selectin",
    )

    def item_for(self, product_id: UUID) -> PickingListItemModel | None:
        for item in self.items:
            if item.product_id == product_id:
                return item
        return None

    def to_dto(self) -> PickingList:
        return PickingList(
            id=self.id,
            picking_number=self.picking_number,
            warehouse_id=self.warehouse_id,
            status=PickingListStatus(self.status),
            items=tuple(item.to_dto() for item in self.items),
            source_type=self.source_type,
            source_id=self.source_id,
            assigned_to_id=self.assigned_to_id,
            notes=self.notes,
            completed_at=self.completed_at,
            cancelled_at=self.cancelled_at,
            cancel_reason=self.cancel_reason,
        )

    def __repr__(self) -> str:
        return f"<PickingList {self.picking_number} status={self.status}>"

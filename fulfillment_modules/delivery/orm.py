"""
Module: fulfillment_modules.delivery.orm
Responsibility: Persistence for delivery orders and their lines.
Architecture position: Modules > Delivery > ORM.  Inherits from TrackedBase.

Invariants enforced:
    - delivery_number is unique.
    - quantity_shipped > 0 and 0 <= quantity_delivered <= quantity_shipped.
    - Only PREPARING orders may be deleted (``deletable_statuses``).
"""

from datetime import date, datetime
from uuid import UUID

from sqlalchemy import CheckConstraint, Date, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fulfillment_kernel.db.base import TrackedBase, UUIDString
from fulfillment_modules.delivery.models import (
    DeliveryItemStatus,
    DeliveryOrder,
    DeliveryOrderItem,
    DeliveryStatus,
    ShippingDetails,
)


class DeliveryOrderItemModel(TrackedBase):
    __tablename__ = "delivery_order_items"

    __table_args__ = (
        UniqueConstraint("delivery_order_id", "product_id", name="uq_delivery_items_product"),
        CheckConstraint("quantity_shipped > 0", name="ck_delivery_items_shipped"),
        CheckConstraint(
            "quantity_delivered >= 0 AND quantity_delivered <= quantity_shipped",
            name="ck_delivery_items_delivered",
        ),
        CheckConstraint(
            "quantity_adopted >= 0 AND quantity_adopted <= quantity_shipped",
            name="ck_delivery_items_adopted",
        ),
    )

    delivery_order_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("delivery_orders.id", ondelete="CASCADE"), nullable=False,
    )
    line_number: Mapped[int] = mapped_column(nullable=False)
    product_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("products.id"), nullable=False,
    )
    quantity_shipped: Mapped[int] = mapped_column(nullable=False)
    quantity_delivered: Mapped[int] = mapped_column(nullable=False, default=0)
    # Part of the reservation taken over from the sales order at mark_ready
    quantity_adopted: Mapped[int] = mapped_column(nullable=False, default=0)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=DeliveryItemStatus.PREPARING.value,
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    def to_dto(self) -> DeliveryOrderItem:
        return DeliveryOrderItem(
            id=self.id,
            product_id=self.product_id,
            quantity_shipped=self.quantity_shipped,
            quantity_delivered=self.quantity_delivered,
            status=DeliveryItemStatus(self.status),
            quantity_adopted=self.quantity_adopted,
            notes=self.notes,
        )


class DeliveryOrderModel(TrackedBase):
    """Goods leaving one warehouse for a customer."""

    __tablename__ = "delivery_orders"

    __table_args__ = (
        Index("idx_delivery_orders_warehouse_status", "warehouse_id", "status"),
        Index("idx_delivery_orders_sales_order", "sales_order_id"),
    )

    deletable_statuses = frozenset({DeliveryStatus.PREPARING.value})

    delivery_number: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)
    warehouse_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("warehouses.id"), nullable=False,
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=DeliveryStatus.PREPARING.value,
    )
    picking_list_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("picking_lists.id"), nullable=True,
    )
    # Sales orders live outside this core; referenced without FK
    sales_order_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    sales_order_number: Mapped[str | None] = mapped_column(String(40), nullable=True)
    recipient_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    shipping_address: Mapped[str | None] = mapped_column(Text, nullable=True)

    shipping_method: Mapped[str | None] = mapped_column(String(100), nullable=True)
    tracking_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    driver_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    vehicle_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    shipping_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    ready_at: Mapped[datetime | None] = mapped_column(nullable=True)
    shipped_at: Mapped[datetime | None] = mapped_column(nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    items: Mapped[list[DeliveryOrderItemModel]] = relationship(
        DeliveryOrderItemModel,
        cascade="all, delete-orphan",
        order_by=DeliveryOrderItemModel.line_number,
        lazy="selectin",
    )

    @property
    def shipping(self) -> ShippingDetails:
        return ShippingDetails(
            shipping_method=self.shipping_method,
            tracking_number=self.tracking_number,
            driver_name=self.driver_name,
            vehicle_number=self.vehicle_number,
            shipping_date=self.shipping_date,
        )

    def apply_shipping(self, details: ShippingDetails) -> None:
        self.shipping_method = details.shipping_method
        self.tracking_number = details.tracking_number
        self.driver_name = details.driver_name
        self.vehicle_number = details.vehicle_number
        self.shipping_date = details.shipping_date

    def item_for(self, product_id: UUID) -> DeliveryOrderItemModel | None:
        for item in self.items:
            if item.product_id == product_id:
                return item
        return None

    def to_dto(self) -> DeliveryOrder:
        return DeliveryOrder(
            id=self.id,
            delivery_number=self.delivery_number,
            warehouse_id=self.warehouse_id,
            status=DeliveryStatus(self.status),
            items=tuple(item.to_dto() for item in self.items),
            shipping=self.shipping,
            picking_list_id=self.picking_list_id,
            sales_order_id=self.sales_order_id,
            sales_order_number=self.sales_order_number,
            recipient_name=self.recipient_name,
            shipping_address=self.shipping_address,
            ready_at=self.ready_at,
            shipped_at=self.shipped_at,
            delivered_at=self.delivered_at,
            cancelled_at=self.cancelled_at,
            cancel_reason=self.cancel_reason,
            notes=self.notes,
        )

    def __repr__(self) -> str:
        return f"<DeliveryOrder {self.delivery_number} status={self.status}>"

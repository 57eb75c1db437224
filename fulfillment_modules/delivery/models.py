"""
Delivery order domain models.

Frozen DTOs returned by ``DeliveryService``.
"""

from dataclasses import dataclass, fields, replace
from datetime import date, datetime
from enum import Enum
from uuid import UUID


class DeliveryStatus(str, Enum):
    PREPARING = "PREPARING"
    READY_TO_SHIP = "READY_TO_SHIP"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


class DeliveryItemStatus(str, Enum):
    PREPARING = "PREPARING"
    IN_TRANSIT = "IN_TRANSIT"
    DELIVERED = "DELIVERED"
    PARTIAL = "PARTIAL"
    CANCELLED = "CANCELLED"


@dataclass(frozen=True)
class DeliveryLine:
    """Input line for a new delivery order."""
    product_id: UUID
    quantity_shipped: int
    notes: str | None = None


@dataclass(frozen=True)
class ShippingDetails:
    """How the goods travel.  ``shipping_method`` is required to ship."""
    shipping_method: str | None = None
    tracking_number: str | None = None
    driver_name: str | None = None
    vehicle_number: str | None = None
    shipping_date: date | None = None

    def merged_with(self, other: "ShippingDetails | None") -> "ShippingDetails":
        """``other``'s non-empty fields win."""
        if other is None:
            return self
        changes = {
            f.name: getattr(other, f.name)
            for f in fields(other)
            if getattr(other, f.name) not in (None, "")
        }
        return replace(self, **changes)


@dataclass(frozen=True)
class DeliveryOrderItem:
    id: UUID
    product_id: UUID
    quantity_shipped: int
    quantity_delivered: int
    status: DeliveryItemStatus
    quantity_adopted: int = 0
    notes: str | None = None

    @property
    def quantity_undelivered(self) -> int:
        return self.quantity_shipped - self.quantity_delivered


@dataclass(frozen=True)
class DeliveryOrder:
    id: UUID
    delivery_number: str
    warehouse_id: UUID
    status: DeliveryStatus
    items: tuple[DeliveryOrderItem, ...]
    shipping: ShippingDetails
    picking_list_id: UUID | None = None
    sales_order_id: UUID | None = None
    sales_order_number: str | None = None
    recipient_name: str | None = None
    shipping_address: str | None = None
    ready_at: datetime | None = None
    shipped_at: datetime | None = None
    delivered_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancel_reason: str | None = None
    notes: str | None = None

    @property
    def is_fully_delivered(self) -> bool:
        return all(i.status == DeliveryItemStatus.DELIVERED for i in self.items)

    def item_for(self, product_id: UUID) -> DeliveryOrderItem | None:
        for item in self.items:
            if item.product_id == product_id:
                return item
        return None

"""
Warehouse transfer domain models.

Frozen DTOs returned by ``TransferService``.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID


class TransferStatus(str, Enum):
    REQUESTED = "REQUESTED"
    APPROVED = "APPROVED"
    IN_TRANSIT = "IN_TRANSIT"
    RECEIVED = "RECEIVED"
    CANCELLED = "CANCELLED"


@dataclass(frozen=True)
class TransferLine:
    """Input line for a transfer request."""
    product_id: UUID
    quantity_requested: int
    notes: str | None = None


@dataclass(frozen=True)
class WarehouseTransferItem:
    id: UUID
    product_id: UUID
    quantity_requested: int
    quantity_delivered: int
    quantity_received: int
    shortfall: int
    notes: str | None = None


@dataclass(frozen=True)
class WarehouseTransfer:
    id: UUID
    transfer_number: str
    source_warehouse_id: UUID
    destination_warehouse_id: UUID
    status: TransferStatus
    items: tuple[WarehouseTransferItem, ...]
    requested_by_id: UUID
    picking_list_id: UUID | None = None
    delivery_order_id: UUID | None = None
    approved_by_id: UUID | None = None
    approved_at: datetime | None = None
    delivered_by_id: UUID | None = None
    delivered_at: datetime | None = None
    received_by_id: UUID | None = None
    received_at: datetime | None = None
    cancelled_by_id: UUID | None = None
    cancelled_at: datetime | None = None
    cancel_reason: str | None = None
    notes: str | None = None

    @property
    def total_shortfall(self) -> int:
        return sum(item.shortfall for item in self.items)

    @property
    def has_shortfall(self) -> bool:
        return self.total_shortfall > 0

    def item_for(self, product_id: UUID) -> WarehouseTransferItem | None:
        for item in self.items:
            if item.product_id == product_id:
                return item
        return None

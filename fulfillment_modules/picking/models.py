"""
Picking domain models.

Frozen DTOs returned by ``PickingService``.  They carry no session and can
be handed to callers freely.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID


class PickingListStatus(str, Enum):
    DRAFT = "DRAFT"
    PICKING = "PICKING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class PickingItemStatus(str, Enum):
    PENDING = "PENDING"
    PARTIAL = "PARTIAL"
    COMPLETED = "COMPLETED"


def item_status_for(quantity_picked: int, quantity_required: int) -> PickingItemStatus:
    if quantity_picked <= 0:
        return PickingItemStatus.PENDING
    if quantity_picked < quantity_required:
        return PickingItemStatus.PARTIAL
    return PickingItemStatus.COMPLETED


@dataclass(frozen=True)
class PickingLine:
    """Input line for a new picking list."""
    product_id: UUID
    quantity_required: int
    bin_location: str | None = None


@dataclass(frozen=True)
class PickingListItem:
    id: UUID
    product_id: UUID
    quantity_required: int
    quantity_picked: int
    status: PickingItemStatus
    bin_location: str | None = None

    @property
    def quantity_outstanding(self) -> int:
        return self.quantity_required - self.quantity_picked


@dataclass(frozen=True)
class PickingList:
    id: UUID
    picking_number: str
    warehouse_id: UUID
    status: PickingListStatus
    items: tuple[PickingListItem, ...]
    source_type: str | None = None
    source_id: UUID | None = None
    assigned_to_id: UUID | None = None
    notes: str | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancel_reason: str | None = None

    @property
    def is_fully_picked(self) -> bool:
        return all(i.status == PickingItemStatus.COMPLETED for i in self.items)

    def picked_quantities(self) -> dict[UUID, int]:
        return {i.product_id: i.quantity_picked for i in self.items}

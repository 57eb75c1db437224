"""
Picking Module (``fulfillment_modules.picking``).

Picking lists tell warehouse staff what to pull from which bin for an
outgoing delivery or warehouse transfer.  A completed picking list is the
guard that lets a delivery order become READY_TO_SHIP.

Picking itself moves no stock: goods stay reserved or on hand until the
delivery or transfer that owns them ships.
"""

from fulfillment_modules.picking.models import (
    PickingItemStatus,
    PickingLine,
    PickingList,
    PickingListItem,
    PickingListStatus,
)
from fulfillment_modules.picking.service import PickingService
from fulfillment_modules.picking.workflows import PICKING_LIST_WORKFLOW

__all__ = [
    "PICKING_LIST_WORKFLOW",
    "PickingItemStatus",
    "PickingLine",
    "PickingList",
    "PickingListItem",
    "PickingListStatus",
    "PickingService",
]

"""
Warehouse Transfer Module (``fulfillment_modules.transfer``).

Internal movement of stock between two warehouses:

    REQUESTED -> APPROVED -> IN_TRANSIT -> RECEIVED
        \\            \\
         +-> CANCELLED +-> CANCELLED

Delivering ships the goods out of the source warehouse (reserve, then
commit shipment); receiving books what actually arrived into the
destination.  A short receipt still ends RECEIVED, with the missing units
recorded per line as ``shortfall``.
"""

from fulfillment_modules.transfer.config import TransferConfig
from fulfillment_modules.transfer.models import (
    TransferLine,
    TransferStatus,
    WarehouseTransfer,
    WarehouseTransferItem,
)
from fulfillment_modules.transfer.service import TransferService
from fulfillment_modules.transfer.workflows import TRANSFER_WORKFLOW

__all__ = [
    "TRANSFER_WORKFLOW",
    "TransferConfig",
    "TransferLine",
    "TransferService",
    "TransferStatus",
    "WarehouseTransfer",
    "WarehouseTransferItem",
]

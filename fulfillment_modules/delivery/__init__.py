"""
Delivery Order Module (``fulfillment_modules.delivery``).

Customer-facing shipments out of one warehouse:

    PREPARING -> READY_TO_SHIP -> SHIPPED -> DELIVERED
        \\              \\
         +-> CANCELLED   +-> CANCELLED

Becoming READY_TO_SHIP needs a COMPLETED picking list and reserves the
picked goods; shipping commits the reservation (goods leave the
warehouse); delivery records what the customer actually took.
"""

from fulfillment_modules.delivery.models import (
    DeliveryItemStatus,
    DeliveryLine,
    DeliveryOrder,
    DeliveryOrderItem,
    DeliveryStatus,
    ShippingDetails,
)
from fulfillment_modules.delivery.service import DeliveryService
from fulfillment_modules.delivery.workflows import DELIVERY_WORKFLOW

__all__ = [
    "DELIVERY_WORKFLOW",
    "DeliveryItemStatus",
    "DeliveryLine",
    "DeliveryOrder",
    "DeliveryOrderItem",
    "DeliveryService",
    "DeliveryStatus",
    "ShippingDetails",
]

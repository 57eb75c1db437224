"""
Transfer configuration schema.

Defaults describe the usual flow.  Override at instantiation:

    config = TransferConfig(create_picking_list=False)
"""

from dataclasses import dataclass

from fulfillment_kernel.logging_config import get_logger

logger = get_logger("modules.transfer.config")


@dataclass
class TransferConfig:
    """Behaviour switches for ``TransferService``."""

    # Approve only when the source warehouse has the stock available now
    check_availability_on_approval: bool = True
    # Create a DRAFT picking list for the source warehouse on approval
    create_picking_list: bool = True
    # Open a document-only delivery order on deliver and close it on receive
    create_delivery_order: bool = True
    # Receiving fewer units than were delivered ends RECEIVED with a shortfall
    allow_partial_receipt: bool = True
    # A short receipt needs notes explaining the difference
    require_notes_on_shortfall: bool = False
    reference_type: str = "WAREHOUSE_TRANSFER"

    def __post_init__(self):
        if not self.reference_type:
            raise ValueError("reference_type must not be empty")
        if self.require_notes_on_shortfall and not self.allow_partial_receipt:
            raise ValueError(
                "require_notes_on_shortfall has no effect when partial receipt is disallowed"
            )
        logger.debug(
            "transfer_config_created",
            extra={
                "check_availability_on_approval": self.check_availability_on_approval,
                "create_picking_list": self.create_picking_list,
                "create_delivery_order": self.create_delivery_order,
                "allow_partial_receipt": self.allow_partial_receipt,
            },
        )

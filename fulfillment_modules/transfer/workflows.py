"""
Warehouse transfer workflow.

Deliver and receive are the only transitions that move stock: deliver
empties the source (reserve, then commit shipment), receive fills the
destination.  Cancellation is possible until goods leave the source.
"""

from fulfillment_kernel.domain.workflow import Guard, Transition, Workflow
from fulfillment_kernel.logging_config import get_logger
from fulfillment_modules.transfer.models import TransferStatus as S

logger = get_logger("modules.transfer.workflows")

# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

TRANSFER_APPROVER = Guard(
    name="transfer_approver",
    description="Actor may approve transfers out of the source warehouse",
)

STOCK_AVAILABLE = Guard(
    name="stock_available",
    description="Source warehouse has the requested quantity available",
)

DELIVERED_WITHIN_REQUESTED = Guard(
    name="delivered_within_requested",
    description="quantity_delivered <= quantity_requested on every line",
)

RECEIVED_WITHIN_DELIVERED = Guard(
    name="received_within_delivered",
    description="quantity_received <= quantity_delivered on every line",
)

# -----------------------------------------------------------------------------
# Workflow
# -----------------------------------------------------------------------------

TRANSFER_WORKFLOW = Workflow(
    name="warehouse_transfer",
    description="Inter-warehouse stock transfer",
    initial_state=S.REQUESTED.value,
    states=tuple(s.value for s in S),
    transitions=(
        Transition(S.REQUESTED.value, S.APPROVED.value, action="approve", guard=TRANSFER_APPROVER),
        Transition(
            S.APPROVED.value, S.IN_TRANSIT.value, action="deliver",
            guard=DELIVERED_WITHIN_REQUESTED, moves_stock=True,
        ),
        Transition(
            S.IN_TRANSIT.value, S.RECEIVED.value, action="receive",
            guard=RECEIVED_WITHIN_DELIVERED, moves_stock=True,
        ),
        Transition(S.REQUESTED.value, S.CANCELLED.value, action="cancel"),
        Transition(S.APPROVED.value, S.CANCELLED.value, action="cancel"),
    ),
    terminal_states=(S.RECEIVED.value, S.CANCELLED.value),
)

logger.debug(
    "transfer_workflow_defined",
    extra={"transitions": [t.action for t in TRANSFER_WORKFLOW.transitions]},
)

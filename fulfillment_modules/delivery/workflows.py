"""
Delivery order workflow.

    PREPARING --mark_ready--> READY_TO_SHIP --ship--> SHIPPED --deliver--> DELIVERED

CANCELLED is reachable from PREPARING and READY_TO_SHIP.  Cancelling a
READY_TO_SHIP order releases the reservation made by ``mark_ready``.
"""

from fulfillment_kernel.domain.workflow import Guard, Transition, Workflow
from fulfillment_modules.delivery.models import DeliveryStatus as S

PICKING_COMPLETED = Guard(
    name="picking_completed",
    description="The associated picking list is COMPLETED",
)

SHIPPING_METHOD_SET = Guard(
    name="shipping_method_set",
    description="Shipping method details are recorded",
)

DELIVERED_WITHIN_SHIPPED = Guard(
    name="delivered_within_shipped",
    description="quantity_delivered <= quantity_shipped on every line",
)

DELIVERY_WORKFLOW = Workflow(
    name="delivery_order",
    description="Customer delivery order lifecycle",
    initial_state=S.PREPARING.value,
    states=tuple(s.value for s in S),
    transitions=(
        Transition(
            S.PREPARING.value, S.READY_TO_SHIP.value, action="mark_ready",
            guard=PICKING_COMPLETED, moves_stock=True,
        ),
        Transition(
            S.READY_TO_SHIP.value, S.SHIPPED.value, action="ship",
            guard=SHIPPING_METHOD_SET, moves_stock=True,
        ),
        Transition(
            S.SHIPPED.value, S.DELIVERED.value, action="deliver",
            guard=DELIVERED_WITHIN_SHIPPED,
        ),
        Transition(S.PREPARING.value, S.CANCELLED.value, action="cancel"),
        Transition(S.READY_TO_SHIP.value, S.CANCELLED.value, action="cancel", moves_stock=True),
    ),
    terminal_states=(S.DELIVERED.value, S.CANCELLED.value),
)

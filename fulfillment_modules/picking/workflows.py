"""
Picking list workflow.

    DRAFT --start--> PICKING --complete--> COMPLETED
      |                 |
      +----cancel-------+----cancel----> CANCELLED
"""

from fulfillment_kernel.domain.workflow import Guard, Transition, Workflow
from fulfillment_modules.picking.models import PickingListStatus as S

ALL_ITEMS_PICKED = Guard(
    name="all_items_picked",
    description="Every line has quantity_picked == quantity_required",
)

PICKING_LIST_WORKFLOW = Workflow(
    name="picking_list",
    description="Warehouse picking list lifecycle",
    initial_state=S.DRAFT.value,
    states=tuple(s.value for s in S),
    transitions=(
        Transition(S.DRAFT.value, S.PICKING.value, action="start"),
        Transition(S.PICKING.value, S.COMPLETED.value, action="complete", guard=ALL_ITEMS_PICKED),
        Transition(S.DRAFT.value, S.CANCELLED.value, action="cancel"),
        Transition(S.PICKING.value, S.CANCELLED.value, action="cancel"),
    ),
    terminal_states=(S.COMPLETED.value, S.CANCELLED.value),
)

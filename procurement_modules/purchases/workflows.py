"""
Purchase Workflow.

A purchase is scheduled with a supplier, then either delivered to the
warehouse or cancelled before delivery.
"""

from procurement_kernel.domain.workflow import Guard, Transition, Workflow
from procurement_kernel.logging_config import get_logger

logger = get_logger("modules.purchases.workflows")


CONFIRMED_PRICES = Guard(
    name="confirmed_prices",
    description="Supplier and delivery date given; every line has a confirmed price > 0",
)

RECEIPT_WITHIN_ORDERED = Guard(
    name="receipt_within_ordered",
    description="Received quantities do not exceed ordered quantities and at least one is > 0",
)

DISCREPANCY_ACKNOWLEDGED = Guard(
    name="discrepancy_acknowledged",
    description="A partial receipt was explicitly acknowledged",
)

PURCHASE_WORKFLOW = Workflow(
    name="purchase",
    description="Supplier purchase lifecycle",
    initial_state="scheduled",
    states=("scheduled", "delivered", "cancelled"),
    transitions=(
        Transition("scheduled", "delivered", action="deliver", guard=RECEIPT_WITHIN_ORDERED, required_capability="purchase.deliver"),
        Transition("scheduled", "cancelled", action="cancel", required_capability="purchase.cancel"),
    ),
    terminal_states=("delivered", "cancelled"),
)

logger.info(
    "purchase_workflow_registered",
    extra={
        "workflow_name": PURCHASE_WORKFLOW.name,
        "state_count": len(PURCHASE_WORKFLOW.states),
        "transition_count": len(PURCHASE_WORKFLOW.transitions),
        "guards": [CONFIRMED_PRICES.name, RECEIPT_WITHIN_ORDERED.name, DISCREPANCY_ACKNOWLEDGED.name],
    },
)

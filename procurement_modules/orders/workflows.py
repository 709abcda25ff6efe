"""
Order Workflow.

State machine for a vendor order from submission to reception.
"""

from procurement_kernel.domain.workflow import Guard, Transition, Workflow
from procurement_kernel.logging_config import get_logger

logger = get_logger("modules.orders.workflows")


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

CREATED_BY_VENDOR = Guard(
    name="created_by_vendor",
    description="Orders are submitted by a vendor",
)

VALID_LINES = Guard(
    name="valid_lines",
    description="Lines are non-empty, unique per product, with positive quantities valid for their unit and a positive total",
)

ACTOR_IS_CREATOR = Guard(
    name="actor_is_creator",
    description="Only the vendor who submitted the order may revise it",
)

NO_ACTIVE_PURCHASE = Guard(
    name="no_active_purchase",
    description="The order has no scheduled or delivered purchase",
)

PURCHASE_DELIVERED = Guard(
    name="purchase_delivered",
    description="The order's purchase was delivered",
)

logger.info(
    "order_workflow_guards_defined",
    extra={
        "guards": [
            CREATED_BY_VENDOR.name,
            VALID_LINES.name,
            ACTOR_IS_CREATOR.name,
            NO_ACTIVE_PURCHASE.name,
            PURCHASE_DELIVERED.name,
        ],
    },
)


# -----------------------------------------------------------------------------
# Order Workflow
# -----------------------------------------------------------------------------

ORDER_WORKFLOW = Workflow(
    name="order",
    description="Vendor order lifecycle",
    initial_state="pending",
    states=(
        "pending",
        "approved",
        "rejected",
        "processing",
        "received",
        "cancelled",
    ),
    transitions=(
        Transition("pending", "pending", action="revise", guard=ACTOR_IS_CREATOR, required_capability="order.revise"),
        Transition("pending", "approved", action="approve", required_capability="order.approve"),
        Transition("pending", "rejected", action="reject", required_capability="order.reject"),
        Transition("approved", "processing", action="process", guard=NO_ACTIVE_PURCHASE, required_capability="purchase.process"),
        Transition("processing", "processing", action="process", guard=NO_ACTIVE_PURCHASE, required_capability="purchase.process"),
        Transition("approved", "cancelled", action="cancel", required_capability="order.cancel"),
        Transition("processing", "received", action="deliver", guard=PURCHASE_DELIVERED, required_capability="purchase.deliver"),
    ),
    terminal_states=("rejected", "received", "cancelled"),
)

logger.info(
    "order_workflow_registered",
    extra={
        "workflow_name": ORDER_WORKFLOW.name,
        "state_count": len(ORDER_WORKFLOW.states),
        "transition_count": len(ORDER_WORKFLOW.transitions),
        "initial_state": ORDER_WORKFLOW.initial_state,
    },
)

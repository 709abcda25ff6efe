"""
Bon Workflow.

Each ``set_price`` prices one product; the call that prices the last
unpriced product moves the Bon to ``ready_for_sale``.
"""

from procurement_kernel.domain.workflow import Guard, Transition, Workflow
from procurement_kernel.logging_config import get_logger

logger = get_logger("modules.bons.workflows")


PRODUCT_IN_BON = Guard(
    name="product_in_bon",
    description="The product being priced is listed on the bon",
)

POSITIVE_SELLING_PRICE = Guard(
    name="positive_selling_price",
    description="Selling price is greater than zero",
)

BON_WORKFLOW = Workflow(
    name="bon",
    description="Pricing voucher lifecycle",
    initial_state="pending",
    states=("pending", "ready_for_sale"),
    transitions=(
        Transition("pending", "pending", action="set_price", guard=POSITIVE_SELLING_PRICE, required_capability="bon.set_price"),
        Transition("pending", "ready_for_sale", action="set_price", guard=POSITIVE_SELLING_PRICE, required_capability="bon.set_price"),
    ),
    terminal_states=("ready_for_sale",),
)

logger.info(
    "bon_workflow_registered",
    extra={
        "workflow_name": BON_WORKFLOW.name,
        "state_count": len(BON_WORKFLOW.states),
        "transition_count": len(BON_WORKFLOW.transitions),
        "guards": [PRODUCT_IN_BON.name, POSITIVE_SELLING_PRICE.name],
    },
)

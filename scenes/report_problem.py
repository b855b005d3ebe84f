"""
Report Problem Scene Definition

Flow: Order (skipped when started from an order button) → Problem text → Operators notified
"""

from models import AccountRole, FlowKind
from services.conversation_engine import FlowContext, FlowDefinition, FlowStep, StepValidators


async def _reportable_orders(ctx: FlowContext):
    orders = await ctx.services.orders.list_reportable_orders(ctx.account_id)
    return [(str(order.id), f"#{order.id} {order.service_name or order.category}") for order in orders]


async def _report(ctx: FlowContext):
    return await ctx.services.orders.report_problem(int(ctx.data["order_id"]), ctx.account_id, ctx.data["text"])


report_problem_scene = FlowDefinition(
    kind=FlowKind.REPORT_PROBLEM,
    roles={AccountRole.REQUESTER},
    description="Tell an operator something went wrong",
    steps=[
        FlowStep(
            "order_id",
            "📋 Which order is this about?",
            StepValidators.choice(),
            choices=_reportable_orders,
            empty_choices_message="You have no completed orders to report on.",
        ),
        FlowStep("text", "✍️ Describe the problem:", StepValidators.text("Description", max_length=2000)),
    ],
    on_complete=_report,
    completion_message=lambda order: f"📨 Thanks. An operator will look into order #{order.id}.",
)

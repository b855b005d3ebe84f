"""
New Order Scene Definition

Flow: Provider → Service → Description → Order created (pending)
"""

from models import AccountRole, FlowKind
from services.conversation_engine import FlowContext, FlowDefinition, FlowStep, StepValidators
from utils.decimal_precision import format_cents


async def _provider_choices(ctx: FlowContext):
    providers = await ctx.services.catalog.list_bookable_providers()
    return [(str(provider.id), provider.label) for provider in providers]


async def _service_choices(ctx: FlowContext):
    services = await ctx.services.catalog.list_services(int(ctx.data["provider_id"]))
    return [
        (str(service.id), f"{service.name} · {format_cents(service.price_cents)}")
        for service in services
    ]


async def _create_order(ctx: FlowContext):
    return await ctx.services.orders.create(
        requester_id=ctx.account_id,
        provider_id=int(ctx.data["provider_id"]),
        service_id=int(ctx.data["service_id"]),
        description=ctx.data.get("description"),
    )


def _created_message(order) -> str:
    return (
        f"✅ Order #{order.id} sent. Total {format_cents(order.total_cents, order.currency)}, "
        f"charged only once the provider accepts."
    )


new_order_scene = FlowDefinition(
    kind=FlowKind.NEW_ORDER,
    roles={AccountRole.REQUESTER},
    description="Order a service from a provider",
    steps=[
        FlowStep(
            "provider_id",
            "👤 Choose a provider:",
            StepValidators.choice(),
            choices=_provider_choices,
            empty_choices_message="No providers are available right now. Please try again later.",
        ),
        FlowStep(
            "service_id",
            "🧾 Choose a service:",
            StepValidators.choice(),
            choices=_service_choices,
            empty_choices_message="This provider has no active services.",
        ),
        FlowStep(
            "description",
            "🗒 Anything the provider should know? Send '-' to skip.",
            StepValidators.optional_text("Description"),
            allow_skip=True,
        ),
    ],
    on_complete=_create_order,
    completion_message=_created_message,
)

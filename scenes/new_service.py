"""
New Service Scene Definition

Flow: Name → Category → Price → Duration (sessions only) → Description → Service created
"""

from models import AccountRole, FlowKind, ServiceCategory
from services.conversation_engine import FlowContext, FlowDefinition, FlowStep, StepValidators
from utils.decimal_precision import format_cents

CATEGORY_CHOICES = [
    (ServiceCategory.SESSION.value, "📞 Live session"),
    (ServiceCategory.DELIVERABLE.value, "📦 Deliverable"),
    (ServiceCategory.OTHER.value, "🧩 Other"),
]


def _is_session(data) -> bool:
    return data.get("category") == ServiceCategory.SESSION.value


async def _create_service(ctx: FlowContext):
    return await ctx.services.catalog.create_service(
        provider_id=ctx.account_id,
        name=ctx.data["name"],
        category=ServiceCategory(ctx.data["category"]),
        price_cents=ctx.data["price_cents"],
        duration_min=ctx.data.get("duration_min"),
        description=ctx.data.get("description"),
    )


def _created_message(service) -> str:
    return f"✅ Service '{service.name}' added for {format_cents(service.price_cents)}."


new_service_scene = FlowDefinition(
    kind=FlowKind.NEW_SERVICE,
    roles={AccountRole.PROVIDER},
    requires_approval=True,
    description="Add a service to your catalog",
    steps=[
        FlowStep("name", "📝 What is the name of the service?", StepValidators.text("Name", max_length=100)),
        FlowStep("category", "📂 What kind of service is it?", StepValidators.choice(), choices=CATEGORY_CHOICES),
        FlowStep("price_cents", "💶 What is the price? (e.g. 25,00)", StepValidators.amount()),
        FlowStep(
            "duration_min",
            "⏱ How long is the session, in minutes?",
            StepValidators.positive_int("Duration", max_value=600),
            condition=_is_session,
        ),
        FlowStep(
            "description",
            "🗒 Add a short description, or send '-' to skip.",
            StepValidators.optional_text("Description"),
            allow_skip=True,
        ),
    ],
    on_complete=_create_service,
    completion_message=_created_message,
)

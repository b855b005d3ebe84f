"""
Edit Profile Scene Definition

Flow: Display name → Photo (or '-') → Profile saved
"""

from models import AccountRole, FlowKind
from services.conversation_engine import FlowContext, FlowDefinition, FlowStep, StepValidators


async def _save_profile(ctx: FlowContext):
    return await ctx.services.accounts.update_profile(
        ctx.account_id,
        display_name=ctx.data["display_name"],
        photo_file_id=ctx.data.get("photo_file_id"),
    )


edit_profile_scene = FlowDefinition(
    kind=FlowKind.EDIT_PROFILE,
    roles={AccountRole.PROVIDER},
    requires_approval=True,
    description="Change your display name and photo",
    steps=[
        FlowStep("display_name", "🪪 What name should others see?", StepValidators.text("Display name", max_length=64)),
        FlowStep(
            "photo_file_id",
            "🖼 Send a profile photo, or '-' to keep the current one.",
            StepValidators.photo_or_skip(),
            allow_skip=True,
        ),
    ],
    on_complete=_save_profile,
    completion_message=lambda account: f"✅ Profile saved, {account.display_name}.",
)

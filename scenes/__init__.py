"""
Scene Definitions - declarative conversation flows

Each scene file defines the ordered steps (field, prompt, validator, optional
choices and condition), who may start it, and the completion action run by
services.conversation_engine.
"""

from .new_service import new_service_scene
from .new_order import new_order_scene
from .edit_profile import edit_profile_scene
from .report_problem import report_problem_scene

ALL_FLOWS = [
    new_service_scene,
    new_order_scene,
    edit_profile_scene,
    report_problem_scene,
]

__all__ = [
    'ALL_FLOWS',
    'new_service_scene',
    'new_order_scene',
    'edit_profile_scene',
    'report_problem_scene',
]

# AI Adapters
# Anthropic coaching integration

from .coach_adapter import (
    CoachContext,
    CoachRequestType,
    FocusCoachService,
    coach_ai_service,
)

__all__ = [
    "FocusCoachService",
    "coach_ai_service",
    "CoachContext",
    "CoachRequestType",
]

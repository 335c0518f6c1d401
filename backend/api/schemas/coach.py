"""
AI coaching request/response schemas.
"""

from typing import Any

from pydantic import BaseModel, Field

from adapters.ai.coach_adapter import CoachRequestType


class CoachTask(BaseModel):
    """Board task the coaching request is about."""

    title: str = Field("", max_length=500)
    description: str = Field("", max_length=5000)


class CoachRequest(BaseModel):
    """Request for an AI coaching reply."""

    type: CoachRequestType = Field(..., description="Kind of coaching requested")
    task: CoachTask = Field(default_factory=CoachTask)
    history: list[dict[str, Any]] = Field(
        default_factory=list, description="Recent focus sessions, for motivational insights"
    )
    focus_quality: int | None = Field(None, ge=1, le=10)
    focus_depth: str | None = Field(None, max_length=2000, description="What was accomplished")
    what_distracted: str | None = Field(None, max_length=2000)
    whats_next: str | None = Field(None, max_length=2000)

    model_config = {
        "json_schema_extra": {
            "example": {
                "type": "task-breakdown",
                "task": {"title": "Write launch post", "description": "Announce v2"},
            }
        }
    }


class CoachUsage(BaseModel):
    """Quota position after this request."""

    current: int
    limit: int = Field(..., description="-1 for unlimited")
    tier: str


class CoachResponse(BaseModel):
    """AI coaching reply."""

    response: str
    usage: CoachUsage

"""
Focus session and analytics schemas.
"""

from datetime import datetime

from pydantic import BaseModel, Field, model_validator

from infrastructure.database.models.focus import DEFAULT_TARGET_DURATION_SECONDS


class FocusReflection(BaseModel):
    """Post-session reflection."""

    focus_depth: str | None = Field(None, max_length=2000)
    what_distracted: str | None = Field(None, max_length=2000)
    whats_next: str | None = Field(None, max_length=2000)


class FocusSessionCreate(BaseModel):
    """Request to record a focus session."""

    task_id: str = Field(..., min_length=1, max_length=255)
    task_title: str = Field(..., min_length=1, max_length=500)
    started_at: datetime
    ended_at: datetime | None = None
    duration_seconds: int = Field(0, ge=0)
    target_duration_seconds: int = Field(DEFAULT_TARGET_DURATION_SECONDS, gt=0)
    focus_quality: int | None = Field(None, ge=1, le=10)
    distractions: list[str] = Field(default_factory=list, max_length=50)
    reflection: FocusReflection | None = None
    ai_summary: str | None = Field(None, max_length=5000)

    @model_validator(mode="after")
    def check_time_order(self) -> "FocusSessionCreate":
        if self.ended_at is not None and self.ended_at < self.started_at:
            raise ValueError("ended_at must not be before started_at")
        return self


class FocusSessionResponse(BaseModel):
    """Stored focus session."""

    id: str
    task_id: str
    task_title: str
    started_at: datetime
    ended_at: datetime | None = None
    duration_seconds: int
    target_duration_seconds: int
    focus_quality: int | None = None
    distractions: list[str] = Field(default_factory=list)
    reflection: dict | None = None
    ai_summary: str | None = None
    created_at: datetime | None = None

    model_config = {"from_attributes": True}


class FocusSessionListResponse(BaseModel):
    items: list[FocusSessionResponse]
    total: int


class HeatmapCellResponse(BaseModel):
    day: str
    hour: int
    focus_quality: float
    session_count: int


class TaskVelocityResponse(BaseModel):
    task_id: str
    task_title: str
    sessions_completed: int
    avg_focus_quality: float
    total_focus_seconds: int
    completion_rate: float = Field(..., description="Completed sessions as a percentage")


class DistractionPatternResponse(BaseModel):
    distraction: str
    count: int
    impact_on_quality: float = Field(..., description="Mean of 10 - focus quality")
    most_common_time: str = Field(..., description='Hour label such as "14:00"')


class FocusStatsResponse(BaseModel):
    total_focus_seconds: int
    sessions_completed: int
    avg_quality: float
    current_streak: int
    longest_streak: int


class BenchmarkResponse(BaseModel):
    user_average: float
    top_performers: float
    all_users: float
    percentile: int


class InsightsSummaryResponse(BaseModel):
    avg_quality: float
    total_hours: float
    sessions_completed: int
    best_focus_time: str
    best_task: str
    top_distraction: str
    current_streak: int


class FocusInsightsResponse(BaseModel):
    """Analytics over the user's recent focus sessions."""

    days: int
    summary: InsightsSummaryResponse
    stats: FocusStatsResponse
    benchmark: BenchmarkResponse
    heatmap: list[HeatmapCellResponse]
    task_velocity: list[TaskVelocityResponse]
    distractions: list[DistractionPatternResponse]

    model_config = {"from_attributes": True}

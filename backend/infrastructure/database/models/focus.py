"""
Focus session database model.
"""

from datetime import datetime
from typing import Optional
from uuid import uuid4

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin

DEFAULT_TARGET_DURATION_SECONDS = 90 * 60


class FocusSession(Base, TimestampMixin):
    """A timed deep-work session against a board task."""

    __tablename__ = "focus_sessions"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    user_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )

    # Board task the session was run against (ids are client-generated)
    task_id: Mapped[str] = mapped_column(String(255), nullable=False)
    task_title: Mapped[str] = mapped_column(String(500), nullable=False)

    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ended_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_seconds: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    target_duration_seconds: Mapped[int] = mapped_column(
        Integer, default=DEFAULT_TARGET_DURATION_SECONDS, nullable=False
    )

    # Reflection
    focus_quality: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # 1-10
    distractions: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    reflection: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    """
    Structure:
    {
        "focus_depth": "Finished the parser rewrite",
        "what_distracted": "Slack",
        "whats_next": "Write the tests"
    }
    """
    ai_summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_focus_sessions_user_started", "user_id", "started_at"),
    )

    def __repr__(self) -> str:
        return f"<FocusSession(id={self.id}, task_id={self.task_id}, quality={self.focus_quality})>"

    @property
    def is_completed(self) -> bool:
        """A session counts towards analytics once it has ended and been rated."""
        return self.ended_at is not None and self.focus_quality is not None

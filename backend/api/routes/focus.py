"""
Focus session API routes.
"""

import logging
from dataclasses import asdict
from typing import Annotated
from uuid import uuid4

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_current_account
from api.schemas.focus import (
    FocusInsightsResponse,
    FocusSessionCreate,
    FocusSessionListResponse,
    FocusSessionResponse,
)
from infrastructure.database.connection import get_db
from infrastructure.database.models.focus import FocusSession
from infrastructure.database.models.user import User
from services.focus_analytics import FocusAnalyticsService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/focus", tags=["focus"])


@router.post("/sessions", response_model=FocusSessionResponse, status_code=status.HTTP_201_CREATED)
async def create_focus_session(
    body: FocusSessionCreate,
    current_user: Annotated[User, Depends(get_current_account)],
    db: AsyncSession = Depends(get_db),
):
    """Store a finished (or abandoned) focus session."""
    session = FocusSession(
        id=str(uuid4()),
        user_id=current_user.id,
        task_id=body.task_id,
        task_title=body.task_title,
        started_at=body.started_at,
        ended_at=body.ended_at,
        duration_seconds=body.duration_seconds,
        target_duration_seconds=body.target_duration_seconds,
        focus_quality=body.focus_quality,
        distractions=body.distractions,
        reflection=body.reflection.model_dump() if body.reflection else None,
        ai_summary=body.ai_summary,
    )
    db.add(session)
    await db.commit()
    await db.refresh(session)

    logger.info("Stored focus session %s for user %s", session.id, current_user.id)
    return session


@router.get("/sessions", response_model=FocusSessionListResponse)
async def list_focus_sessions(
    current_user: Annotated[User, Depends(get_current_account)],
    days: int = Query(30, ge=1, le=365),
    db: AsyncSession = Depends(get_db),
):
    """List the caller's focus sessions from the last ``days`` days, newest first."""
    sessions = await FocusAnalyticsService(db).list_sessions(current_user.id, days=days)
    return FocusSessionListResponse(
        items=[FocusSessionResponse.model_validate(s) for s in sessions],
        total=len(sessions),
    )


@router.get("/insights", response_model=FocusInsightsResponse)
async def get_focus_insights(
    current_user: Annotated[User, Depends(get_current_account)],
    days: int = Query(30, ge=1, le=365),
    db: AsyncSession = Depends(get_db),
):
    """Focus analytics over the caller's recent sessions."""
    insights = await FocusAnalyticsService(db).get_insights(current_user.id, days=days)
    return FocusInsightsResponse.model_validate({"days": days, **asdict(insights)})

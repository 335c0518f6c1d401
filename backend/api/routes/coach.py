"""
AI coaching API routes.

Every coaching reply is metered: the usage gate reserves one unit of the
monthly quota before the LLM is called.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from adapters.ai.coach_adapter import CoachContext, FocusCoachService, coach_ai_service
from api.dependencies import get_current_identity, get_optional_identity
from api.middleware.rate_limit import get_rate_limit, limiter
from api.schemas.billing import AIUsageResponse
from api.schemas.coach import CoachRequest, CoachResponse, CoachUsage
from core.exceptions import InfrastructureError, NotFoundError, QuotaExceededError
from core.security.tokens import TokenPayload
from infrastructure.database.connection import get_db
from services.ai_usage import AIUsageGate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ai", tags=["ai"])


def get_coach_service() -> FocusCoachService:
    """Dependency providing the coaching service (overridden in tests)."""
    return coach_ai_service


@router.post(
    "/coach",
    response_model=CoachResponse,
    responses={
        401: {"description": "Not authenticated"},
        404: {"description": "User profile not found"},
        429: {"description": "Monthly AI request limit reached"},
        500: {"description": "Usage metering or AI provider failure"},
    },
)
@limiter.limit(get_rate_limit("coach"))
async def coach(
    request: Request,
    body: CoachRequest,
    identity: Annotated[TokenPayload | None, Depends(get_optional_identity)],
    db: AsyncSession = Depends(get_db),
    coach_service: FocusCoachService = Depends(get_coach_service),
):
    """
    Generate an AI coaching reply.

    Order: authenticate, reserve quota, call the LLM. A reserved unit is not
    returned if the LLM call fails.
    """
    if identity is None:
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"error": "Unauthorized"},
            headers={"WWW-Authenticate": "Bearer"},
        )

    gate = AIUsageGate(db)
    try:
        reservation = await gate.reserve(identity.sub)
    except NotFoundError:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"error": "User profile not found"},
        )
    except QuotaExceededError as e:
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content={
                "error": "AI request limit reached. Upgrade your plan for unlimited coaching.",
                "limit": e.limit,
                "current": e.current,
            },
        )
    except InfrastructureError:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Failed to process AI request"},
        )

    context = CoachContext(
        task_title=body.task.title,
        task_description=body.task.description,
        history=body.history,
        focus_quality=body.focus_quality,
        focus_depth=body.focus_depth,
        what_distracted=body.what_distracted,
        whats_next=body.whats_next,
    )

    try:
        reply = await coach_service.coach(body.type, context)
    except Exception as e:
        logger.error("AI coaching failed for user %s: %s", identity.sub, e)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Failed to generate AI response"},
        )

    return CoachResponse(
        response=reply,
        usage=CoachUsage(
            current=reservation.current,
            limit=reservation.limit,
            tier=reservation.tier.value,
        ),
    )


@router.get("/usage", response_model=AIUsageResponse)
async def get_ai_usage(
    identity: Annotated[TokenPayload, Depends(get_current_identity)],
    db: AsyncSession = Depends(get_db),
):
    """Current AI usage for the caller. Does not consume quota."""
    try:
        usage = await AIUsageGate(db).get_usage(identity.sub)
    except NotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User profile not found")
    except InfrastructureError:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load usage",
        )

    return AIUsageResponse(
        current=usage.current,
        limit=usage.limit,
        tier=usage.tier.value,
        reset_at=usage.reset_at,
        state=usage.state.value,
    )

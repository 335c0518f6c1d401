"""
AI usage metering service.

Enforces the per-tier monthly quota on AI coaching requests. The counter
lives on the ``users`` row and is only ever changed by single conditional
UPDATE statements, so concurrent requests cannot jointly exceed the quota.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.domain.subscription import (
    UNLIMITED,
    QuotaState,
    SubscriptionTier,
    needs_window_reset,
    quota_state,
)
from core.exceptions import InfrastructureError, NotFoundError, QuotaExceededError
from core.plans import get_ai_request_limit
from infrastructure.database.models.user import User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UsageReservation:
    """A granted unit of AI quota. ``limit`` is -1 for unlimited tiers."""

    current: int
    limit: int
    tier: SubscriptionTier


@dataclass(frozen=True)
class UsageSnapshot:
    """Read-only view of an account's AI usage in the current window."""

    current: int
    limit: int
    tier: SubscriptionTier
    reset_at: Optional[datetime]
    state: QuotaState


class AIUsageGate:
    """
    Check-and-increment gate in front of the AI coaching call.

    ``reserve`` commits the increment before returning, so the caller must
    only make the metered call after it returns. A later failure of that
    call does not give the unit back.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _load_account(self, user_id: str) -> Optional[User]:
        result = await self.db.execute(
            select(User)
            .where(User.id == user_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _reset_window(
        self,
        user_id: str,
        observed_reset_at: Optional[datetime],
        now: datetime,
    ) -> int:
        """
        Start a new monthly window, compare-and-set on the observed timestamp.

        Returns the counter value this request should continue with: 0 when
        this request did the reset, otherwise whatever the winner left.
        """
        stmt = update(User).where(User.id == user_id)
        if observed_reset_at is None:
            stmt = stmt.where(User.ai_requests_reset_at.is_(None))
        else:
            stmt = stmt.where(User.ai_requests_reset_at == observed_reset_at)

        result = await self.db.execute(
            stmt.values(ai_requests_count=0, ai_requests_reset_at=now)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

        if result.rowcount:
            logger.info("Reset monthly AI usage for user %s", user_id)
            return 0

        # Another request reset the window first
        current = await self.db.execute(
            select(User.ai_requests_count).where(User.id == user_id)
        )
        return current.scalar_one()

    async def _increment(self, user_id: str, limit: int) -> Optional[int]:
        """Atomic conditional increment; None when the quota was already used up."""
        stmt = (
            update(User)
            .where(User.id == user_id)
            .values(ai_requests_count=User.ai_requests_count + 1)
        )
        if limit != UNLIMITED:
            stmt = stmt.where(User.ai_requests_count < limit)

        result = await self.db.execute(
            stmt.returning(User.ai_requests_count)
            .execution_options(synchronize_session=False)
        )
        return result.scalar_one_or_none()

    async def reserve(self, user_id: str, now: Optional[datetime] = None) -> UsageReservation:
        """
        Reserve one AI request for the user.

        Args:
            user_id: Authenticated user id
            now: Current time (defaults to UTC now)

        Returns:
            UsageReservation with the post-increment count

        Raises:
            NotFoundError: No account row for the user
            QuotaExceededError: Monthly quota used up (including a lost race)
            InfrastructureError: Store failure; the call must not proceed
        """
        now = now or datetime.now(timezone.utc)

        try:
            user = await self._load_account(user_id)
            if user is None:
                raise NotFoundError(f"User profile {user_id} not found")

            tier = user.tier
            limit = get_ai_request_limit(tier.value)
            count = user.ai_requests_count or 0

            if needs_window_reset(user.ai_requests_reset_at, now):
                count = await self._reset_window(user_id, user.ai_requests_reset_at, now)

            if quota_state(count, limit) == QuotaState.EXHAUSTED:
                logger.info("AI quota exhausted for user %s (%d/%d)", user_id, count, limit)
                raise QuotaExceededError(limit=limit, current=count)

            new_count = await self._increment(user_id, limit)
            if new_count is None:
                await self.db.rollback()
                logger.info("AI quota race lost for user %s at limit %d", user_id, limit)
                raise QuotaExceededError(limit=limit, current=limit)

            await self.db.commit()

        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("AI usage metering failed for user %s: %s", user_id, e)
            raise InfrastructureError("Failed to record AI usage") from e

        logger.info("Reserved AI request for user %s (%d/%d)", user_id, new_count, limit)
        return UsageReservation(current=new_count, limit=limit, tier=tier)

    async def get_usage(self, user_id: str, now: Optional[datetime] = None) -> UsageSnapshot:
        """
        Current usage without consuming quota.

        A window that has rolled over reads as empty; the stored row is left
        for the next reservation to reset.
        """
        now = now or datetime.now(timezone.utc)

        try:
            user = await self._load_account(user_id)
        except SQLAlchemyError as e:
            logger.error("Failed to read AI usage for user %s: %s", user_id, e)
            raise InfrastructureError("Failed to read AI usage") from e

        if user is None:
            raise NotFoundError(f"User profile {user_id} not found")

        limit = get_ai_request_limit(user.tier.value)
        if needs_window_reset(user.ai_requests_reset_at, now):
            current, reset_at = 0, now
        else:
            current, reset_at = user.ai_requests_count or 0, user.ai_requests_reset_at

        return UsageSnapshot(
            current=current,
            limit=limit,
            tier=user.tier,
            reset_at=reset_at,
            state=quota_state(current, limit),
        )

"""
User account database model.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, Index, Integer, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from core.domain.subscription import SubscriptionStatus, SubscriptionTier

from .base import Base, TimestampMixin


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base, TimestampMixin):
    """User account: billing linkage, derived subscription state and AI usage counter.

    The id is owned by the external identity provider (the ``sub`` claim of
    its access tokens); rows are referenced by it, never generated here.
    """

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True)

    # Basic info
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    full_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Billing linkage
    stripe_customer_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, unique=True
    )
    stripe_subscription_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True
    )

    # Subscription (derived from provider state, never user-settable)
    subscription_tier: Mapped[str] = mapped_column(
        String(50),
        default=SubscriptionTier.FREE.value,
        server_default=SubscriptionTier.FREE.value,
        nullable=False,
    )
    subscription_status: Mapped[Optional[str]] = mapped_column(
        String(50), nullable=True
    )  # active, canceled, past_due, trialing

    # AI usage metering
    ai_requests_count: Mapped[int] = mapped_column(
        Integer, default=0, server_default="0", nullable=False
    )
    ai_requests_reset_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=True
    )

    __table_args__ = (
        Index("ix_users_stripe_customer", "stripe_customer_id"),
        Index("ix_users_subscription", "subscription_tier", "subscription_status"),
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, tier={self.subscription_tier}, status={self.subscription_status})>"

    @property
    def tier(self) -> SubscriptionTier:
        """Stored tier as an enum; unknown stored values read as free."""
        try:
            return SubscriptionTier(self.subscription_tier)
        except ValueError:
            return SubscriptionTier.FREE

    @property
    def status(self) -> Optional[SubscriptionStatus]:
        if self.subscription_status is None:
            return None
        try:
            return SubscriptionStatus(self.subscription_status)
        except ValueError:
            return None

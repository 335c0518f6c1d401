"""Subscription and AI usage domain rules.

Pure functions only: nothing here touches the database or the billing
provider, so the reconciler and the metering gate can share (and tests can
pin down) the mapping and window rules.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class SubscriptionTier(str, Enum):
    """Available subscription tiers."""
    FREE = "free"
    PRO = "pro"
    ELITE = "elite"


class BillingInterval(str, Enum):
    """Billing interval options."""
    MONTHLY = "monthly"
    YEARLY = "yearly"


class SubscriptionStatus(str, Enum):
    """Locally stored subscription status."""
    ACTIVE = "active"
    CANCELED = "canceled"
    PAST_DUE = "past_due"
    TRIALING = "trialing"


class QuotaState(str, Enum):
    """Per-account metering state within one monthly window."""
    COUNTING = "counting"
    EXHAUSTED = "exhausted"


UNLIMITED = -1

_PROVIDER_STATUS_MAP = {
    "active": SubscriptionStatus.ACTIVE,
    "canceled": SubscriptionStatus.CANCELED,
    "past_due": SubscriptionStatus.PAST_DUE,
    "trialing": SubscriptionStatus.TRIALING,
}


def map_provider_status(status: Optional[str]) -> Optional[SubscriptionStatus]:
    """Map a provider subscription status string to the local enum.

    Anything outside the four recognised values (``incomplete``, ``unpaid``,
    ``paused`` ...) maps to None: unknown rather than guessed.
    """
    if not status:
        return None
    return _PROVIDER_STATUS_MAP.get(status)


def tier_for_price(
    price_id: Optional[str],
    price_to_tier: dict[str, SubscriptionTier],
) -> SubscriptionTier:
    """Derive the tier from a subscription's price identifier.

    Unknown or missing prices fall back to FREE.
    """
    if not price_id:
        return SubscriptionTier.FREE
    return price_to_tier.get(price_id, SubscriptionTier.FREE)


def build_price_to_tier(price_ids: dict[str, Optional[str]]) -> dict[str, SubscriptionTier]:
    """Build the price id → tier map from ``<tier>_<cycle>`` keyed price ids.

    Unconfigured (None/empty) price ids are skipped.
    """
    mapping: dict[str, SubscriptionTier] = {}
    for key, price_id in price_ids.items():
        if not price_id:
            continue
        tier_name = key.split("_", 1)[0]
        mapping[str(price_id)] = SubscriptionTier(tier_name)
    return mapping


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; they are stored as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def needs_window_reset(reset_at: Optional[datetime], now: datetime) -> bool:
    """True when the stored window start is in a different calendar month/year than now."""
    if reset_at is None:
        return True
    reset_at = as_utc(reset_at)
    now = as_utc(now)
    return (reset_at.year, reset_at.month) != (now.year, now.month)


def quota_state(count: int, limit: int) -> QuotaState:
    """Classify a counter against its limit."""
    if limit == UNLIMITED or count < limit:
        return QuotaState.COUNTING
    return QuotaState.EXHAUSTED

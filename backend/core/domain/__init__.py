# Domain Entities
# Pure business rules with no external dependencies
from .subscription import (
    UNLIMITED,
    BillingInterval,
    QuotaState,
    SubscriptionStatus,
    SubscriptionTier,
    as_utc,
    build_price_to_tier,
    map_provider_status,
    needs_window_reset,
    quota_state,
    tier_for_price,
)

__all__ = [
    "UNLIMITED",
    "BillingInterval",
    "QuotaState",
    "SubscriptionStatus",
    "SubscriptionTier",
    "as_utc",
    "build_price_to_tier",
    "map_provider_status",
    "needs_window_reset",
    "quota_state",
    "tier_for_price",
]

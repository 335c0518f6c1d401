"""
Plan configuration for subscription tiers.

This module is the single source of truth for plan limits and features.
It lives in core/ so both service and API layers can import from it
without creating circular dependencies.
"""

from core.domain.subscription import UNLIMITED, SubscriptionTier

# Plan configuration with features and limits (-1 means unlimited)
PLANS = {
    SubscriptionTier.FREE.value: {
        "name": "Free",
        "price_monthly": 0,
        "price_yearly": 0,
        "features": [
            "Unlimited tasks and boards",
            "90-minute focus timer",
            "5 AI coaching requests per month",
            "Basic focus analytics",
        ],
        "limits": {
            "ai_requests_per_month": 5,
        },
    },
    SubscriptionTier.PRO.value: {
        "name": "Pro",
        "price_monthly": 12,
        "price_yearly": 120,  # 2 months free
        "features": [
            "Everything in Free",
            "Unlimited AI coaching",
            "Advanced focus analytics",
            "Cloud sync across devices",
        ],
        "limits": {
            "ai_requests_per_month": UNLIMITED,
        },
    },
    SubscriptionTier.ELITE.value: {
        "name": "Elite",
        "price_monthly": 29,
        "price_yearly": 290,  # 2 months free
        "features": [
            "Everything in Pro",
            "Team workspaces",
            "Focus benchmarks",
            "Priority support",
        ],
        "limits": {
            "ai_requests_per_month": UNLIMITED,
        },
    },
}

PAID_TIERS = (SubscriptionTier.PRO.value, SubscriptionTier.ELITE.value)


def get_ai_request_limit(tier: str) -> int:
    """Monthly AI request quota for a tier; unknown tiers get the free quota."""
    plan = PLANS.get(tier, PLANS[SubscriptionTier.FREE.value])
    return plan["limits"]["ai_requests_per_month"]

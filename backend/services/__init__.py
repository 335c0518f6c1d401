"""
Service layer for business logic.
"""

from services.ai_usage import AIUsageGate, UsageReservation, UsageSnapshot
from services.focus_analytics import FocusAnalyticsService, build_insights
from services.subscription_reconciler import (
    AccountUpdate,
    ReconcileResult,
    SubscriptionReconciler,
)

__all__ = [
    "AIUsageGate",
    "UsageReservation",
    "UsageSnapshot",
    "FocusAnalyticsService",
    "build_insights",
    "AccountUpdate",
    "ReconcileResult",
    "SubscriptionReconciler",
]

"""
API request and response schemas.
"""

from .billing import (
    AIUsageResponse,
    CheckoutRequest,
    CheckoutResponse,
    CustomerPortalResponse,
    PricingResponse,
    SubscriptionStatusResponse,
    WebhookAck,
)
from .coach import CoachRequest, CoachResponse
from .focus import FocusInsightsResponse, FocusSessionCreate, FocusSessionResponse

__all__ = [
    "AIUsageResponse",
    "CheckoutRequest",
    "CheckoutResponse",
    "CustomerPortalResponse",
    "PricingResponse",
    "SubscriptionStatusResponse",
    "WebhookAck",
    "CoachRequest",
    "CoachResponse",
    "FocusInsightsResponse",
    "FocusSessionCreate",
    "FocusSessionResponse",
]

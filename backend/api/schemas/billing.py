"""
Billing and subscription request/response schemas.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from core.domain.subscription import BillingInterval, SubscriptionTier


class PlanLimits(BaseModel):
    """Usage limits for a subscription plan."""

    ai_requests_per_month: int = Field(
        ..., description="AI coaching requests allowed per month (-1 for unlimited)"
    )


class PlanInfo(BaseModel):
    """Information about a subscription plan."""

    id: str = Field(..., description="Plan ID (free, pro, elite)")
    name: str = Field(..., description="Display name of the plan")
    price_monthly: float = Field(..., description="Monthly price in USD")
    price_yearly: float = Field(..., description="Yearly price in USD")
    features: list[str] = Field(..., description="List of features included in the plan")
    limits: PlanLimits = Field(..., description="Usage limits for the plan")


class PricingResponse(BaseModel):
    """Response containing all available pricing plans."""

    plans: list[PlanInfo] = Field(..., description="List of all available plans")


class AIUsageResponse(BaseModel):
    """AI request usage in the current monthly window."""

    current: int = Field(..., description="Requests used this month")
    limit: int = Field(..., description="Monthly request quota (-1 for unlimited)")
    tier: str = Field(..., description="Subscription tier the quota comes from")
    reset_at: datetime | None = Field(None, description="Start of the current counting window")
    state: str = Field(..., description="counting or exhausted")


class SubscriptionStatusResponse(BaseModel):
    """Current subscription status for a user."""

    subscription_tier: str = Field(..., description="Current subscription tier")
    subscription_status: str | None = Field(
        None, description="Subscription status (active, canceled, past_due, trialing)"
    )
    customer_id: str | None = Field(None, description="Stripe customer ID")
    subscription_id: str | None = Field(None, description="Stripe subscription ID")
    can_manage: bool = Field(..., description="Whether user can access the billing portal")
    ai_usage: AIUsageResponse = Field(..., description="AI coaching usage this month")


class CheckoutRequest(BaseModel):
    """Request to create a checkout session."""

    tier: SubscriptionTier = Field(..., description="Paid tier (pro, elite)")
    billing_cycle: BillingInterval = Field(
        BillingInterval.MONTHLY, description="Billing cycle (monthly, yearly)"
    )

    model_config = {
        "json_schema_extra": {"example": {"tier": "pro", "billing_cycle": "monthly"}}
    }


class CheckoutResponse(BaseModel):
    """Response containing the hosted checkout session."""

    session_id: str = Field(..., description="Stripe checkout session ID")
    url: str = Field(..., description="URL to the Stripe checkout page")


class CustomerPortalResponse(BaseModel):
    """Response containing billing portal URL."""

    url: str = Field(..., description="URL to the Stripe billing portal")


class WebhookAck(BaseModel):
    """Acknowledgement returned to the billing provider."""

    received: bool = True

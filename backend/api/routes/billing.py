"""
Billing and subscription API routes.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from adapters.payments.stripe_adapter import (
    StripeAdapter,
    StripeError,
    StripeWebhookError,
    create_stripe_adapter,
)
from api.dependencies import get_current_account
from api.middleware.rate_limit import get_rate_limit, limiter
from api.schemas.billing import (
    AIUsageResponse,
    CheckoutRequest,
    CheckoutResponse,
    CustomerPortalResponse,
    PlanInfo,
    PlanLimits,
    PricingResponse,
    SubscriptionStatusResponse,
    WebhookAck,
)
from core.domain.subscription import BillingInterval, SubscriptionTier
from core.exceptions import AuthenticationError, InfrastructureError
from core.plans import PAID_TIERS, PLANS
from infrastructure.config.settings import settings
from infrastructure.database.connection import get_db
from infrastructure.database.models.user import User
from services.ai_usage import AIUsageGate
from services.subscription_reconciler import SubscriptionReconciler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["billing"])


def get_stripe_adapter() -> StripeAdapter:
    """Dependency providing the Stripe adapter (overridden in tests)."""
    return create_stripe_adapter()


def get_price_id(tier: SubscriptionTier, billing_cycle: BillingInterval) -> str:
    """Get the configured Stripe price ID for a tier and billing cycle."""
    price_id = settings.stripe_price_ids.get(f"{tier.value}_{billing_cycle.value}")

    if not price_id:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Price not configured for {tier.value} {billing_cycle.value}",
        )

    return price_id


@router.get("/pricing", response_model=PricingResponse)
async def get_pricing():
    """
    Get available subscription plans and pricing.

    Public endpoint - no authentication required.
    """
    plans = [
        PlanInfo(
            id=plan_id,
            name=plan_data["name"],
            price_monthly=plan_data["price_monthly"],
            price_yearly=plan_data["price_yearly"],
            features=plan_data["features"],
            limits=PlanLimits(**plan_data["limits"]),
        )
        for plan_id, plan_data in PLANS.items()
    ]

    return PricingResponse(plans=plans)


@router.get("/subscription", response_model=SubscriptionStatusResponse)
async def get_subscription_status(
    current_user: Annotated[User, Depends(get_current_account)],
    db: AsyncSession = Depends(get_db),
):
    """Get current user's subscription status and AI usage."""
    try:
        usage = await AIUsageGate(db).get_usage(current_user.id)
    except InfrastructureError:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load usage",
        )

    return SubscriptionStatusResponse(
        subscription_tier=current_user.subscription_tier,
        subscription_status=current_user.subscription_status,
        customer_id=current_user.stripe_customer_id,
        subscription_id=current_user.stripe_subscription_id,
        can_manage=current_user.stripe_customer_id is not None,
        ai_usage=AIUsageResponse(
            current=usage.current,
            limit=usage.limit,
            tier=usage.tier.value,
            reset_at=usage.reset_at,
            state=usage.state.value,
        ),
    )


@router.post("/checkout", response_model=CheckoutResponse)
@limiter.limit(get_rate_limit("checkout"))
async def create_checkout(
    request: Request,
    body: CheckoutRequest,
    current_user: Annotated[User, Depends(get_current_account)],
    db: AsyncSession = Depends(get_db),
    stripe: StripeAdapter = Depends(get_stripe_adapter),
):
    """
    Create a Stripe checkout session for a plan upgrade.

    Creates the Stripe customer on first checkout. The user id travels as
    the session's client reference so the completion webhook can find the
    account.
    """
    if body.tier.value not in PAID_TIERS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid tier. Must be one of: pro, elite",
        )

    if not settings.stripe_secret_key:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Payment system not configured",
        )

    price_id = get_price_id(body.tier, body.billing_cycle)
    frontend_url = settings.frontend_url.rstrip("/")

    try:
        customer_id = current_user.stripe_customer_id
        if not customer_id:
            customer = await stripe.create_customer(email=current_user.email, user_id=current_user.id)
            customer_id = customer.id
            current_user.stripe_customer_id = customer_id
            await db.commit()

        session = await stripe.create_checkout_session(
            customer_id=customer_id,
            price_id=price_id,
            user_id=current_user.id,
            success_url=f"{frontend_url}/pricing/success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{frontend_url}/pricing",
        )
    except StripeError as e:
        logger.error("Checkout session creation failed for user %s: %s", current_user.id, e)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create checkout session",
        )
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error("Failed to store Stripe customer for user %s: %s", current_user.id, e)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create checkout session",
        )

    logger.info(
        "Created checkout session for user %s, tier=%s, billing_cycle=%s",
        current_user.id, body.tier.value, body.billing_cycle.value,
    )

    return CheckoutResponse(session_id=session.id, url=session.url)


@router.post("/portal", response_model=CustomerPortalResponse)
@limiter.limit(get_rate_limit("portal"))
async def create_customer_portal(
    request: Request,
    current_user: Annotated[User, Depends(get_current_account)],
    stripe: StripeAdapter = Depends(get_stripe_adapter),
):
    """Create a Stripe billing-portal session for managing the subscription."""
    if not current_user.stripe_customer_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No billing account found. Subscribe to a plan first.",
        )

    try:
        session = await stripe.create_portal_session(
            customer_id=current_user.stripe_customer_id,
            return_url=f"{settings.frontend_url.rstrip('/')}/settings",
        )
    except StripeError as e:
        logger.error("Portal session creation failed for user %s: %s", current_user.id, e)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create portal session",
        )

    return CustomerPortalResponse(url=session.url)


@router.post("/webhook", response_model=WebhookAck)
@limiter.limit(get_rate_limit("webhook"))
async def handle_webhook(
    request: Request,
    stripe_signature: Annotated[str | None, Header(alias="Stripe-Signature")] = None,
    db: AsyncSession = Depends(get_db),
    stripe: StripeAdapter = Depends(get_stripe_adapter),
):
    """
    Handle Stripe webhook events.

    - customer.subscription.created / updated: sync tier and status
    - customer.subscription.deleted: downgrade to free
    - checkout.session.completed: link the customer and activate the plan
    - invoice.paid / invoice.payment_succeeded: logged only
    - invoice.payment_failed: mark past due

    Other event types are acknowledged and ignored. Non-2xx responses make
    Stripe redeliver the event.
    """
    # Raw body is required for signature verification
    body = await request.body()

    reconciler = SubscriptionReconciler(db, stripe)
    try:
        event = reconciler.authenticate(body, stripe_signature)
    except StripeWebhookError as e:
        logger.error("Webhook rejected: %s", e)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook verification not configured",
        )
    except AuthenticationError as e:
        logger.warning("Webhook rejected: %s", e)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    try:
        await reconciler.handle(event)
    except InfrastructureError as e:
        logger.error(
            "Webhook processing failed: %s",
            e,
            exc_info=True,
            extra={"event_id": event.id, "event_type": event.type},
        )
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook processing failed",
        )

    return WebhookAck(received=True)

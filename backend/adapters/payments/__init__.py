"""Payment adapters for billing and subscription management."""

from .stripe_adapter import (
    BillingEvent,
    BillingEventType,
    CheckoutSession,
    StripeAdapter,
    StripeAPIError,
    StripeAuthError,
    StripeCustomer,
    StripeError,
    StripeSubscription,
    StripeWebhookError,
    create_stripe_adapter,
    sign_webhook_payload,
)

__all__ = [
    "StripeAdapter",
    "StripeCustomer",
    "StripeSubscription",
    "CheckoutSession",
    "BillingEvent",
    "BillingEventType",
    "StripeError",
    "StripeAPIError",
    "StripeWebhookError",
    "StripeAuthError",
    "create_stripe_adapter",
    "sign_webhook_payload",
]

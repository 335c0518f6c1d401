"""
Subscription reconciliation service.

Applies verified Stripe webhook events to the local ``users`` row so the
stored tier and status track the provider's view of the subscription.

Each handler is a pure function from an event to an ``AccountUpdate``; the
service applies it with a single ``UPDATE ... WHERE`` statement. All writes
are last-write-wins sets, so redelivered events converge on the same state.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from adapters.payments.stripe_adapter import (
    BillingEvent,
    BillingEventType,
    StripeAdapter,
    StripeError,
    StripeSubscription,
    StripeWebhookError,
)
from core.domain.subscription import (
    SubscriptionStatus,
    SubscriptionTier,
    build_price_to_tier,
    map_provider_status,
    tier_for_price,
)
from core.exceptions import AuthenticationError, InfrastructureError, UnrecognizedEventError
from infrastructure.config.settings import settings
from infrastructure.database.models.user import User

logger = logging.getLogger(__name__)

MATCH_CUSTOMER = "stripe_customer_id"
MATCH_USER = "id"


@dataclass(frozen=True)
class AccountUpdate:
    """One conditional write against the users table."""

    match_column: str
    match_value: str
    values: dict[str, Any] = field(default_factory=dict)


@dataclass
class ReconcileResult:
    """Outcome of handling one event, for logging and tests."""

    event_id: str
    event_type: str
    recognized: bool = True
    update: Optional[AccountUpdate] = None
    rows_matched: int = 0


def _tier_from_price(price_id: Optional[str], price_to_tier: dict[str, SubscriptionTier]) -> SubscriptionTier:
    tier = tier_for_price(price_id, price_to_tier)
    if price_id and price_id not in price_to_tier:
        logger.warning("Unknown price id %s, treating subscription as free", price_id)
    return tier


def _status_value(status: Optional[str]) -> Optional[str]:
    mapped = map_provider_status(status)
    return mapped.value if mapped else None


# Pure handlers: event (+ config) -> AccountUpdate | None

def subscription_changed_update(
    event: BillingEvent,
    price_to_tier: dict[str, SubscriptionTier],
) -> Optional[AccountUpdate]:
    """customer.subscription.created / customer.subscription.updated"""
    if not event.customer_id:
        logger.warning("Subscription event %s has no customer id", event.id)
        return None

    tier = _tier_from_price(event.price_id, price_to_tier)
    return AccountUpdate(
        match_column=MATCH_CUSTOMER,
        match_value=event.customer_id,
        values={
            "stripe_customer_id": event.customer_id,
            "stripe_subscription_id": event.subscription_id,
            "subscription_tier": tier.value,
            "subscription_status": _status_value(event.status),
        },
    )


def subscription_deleted_update(event: BillingEvent) -> Optional[AccountUpdate]:
    """customer.subscription.deleted: always downgrade, whatever the payload says."""
    if not event.customer_id:
        logger.warning("Subscription deletion %s has no customer id", event.id)
        return None

    return AccountUpdate(
        match_column=MATCH_CUSTOMER,
        match_value=event.customer_id,
        values={
            "subscription_tier": SubscriptionTier.FREE.value,
            "subscription_status": SubscriptionStatus.CANCELED.value,
        },
    )


def checkout_completed_update(
    event: BillingEvent,
    subscription: Optional[StripeSubscription],
    price_to_tier: dict[str, SubscriptionTier],
) -> Optional[AccountUpdate]:
    """checkout.session.completed, given the re-fetched subscription."""
    user_id = event.client_reference_id
    if not user_id or not event.subscription_id:
        return None

    price_id = subscription.price_id if subscription else None
    values: dict[str, Any] = {
        "stripe_subscription_id": event.subscription_id,
        "subscription_tier": _tier_from_price(price_id, price_to_tier).value,
        "subscription_status": SubscriptionStatus.ACTIVE.value,
    }
    if event.customer_id:
        values["stripe_customer_id"] = event.customer_id

    return AccountUpdate(match_column=MATCH_USER, match_value=user_id, values=values)


def payment_failed_update(event: BillingEvent) -> Optional[AccountUpdate]:
    """invoice.payment_failed: mark past due, leave the tier alone."""
    if not event.customer_id:
        logger.warning("Payment failure %s has no customer id", event.id)
        return None

    return AccountUpdate(
        match_column=MATCH_CUSTOMER,
        match_value=event.customer_id,
        values={"subscription_status": SubscriptionStatus.PAST_DUE.value},
    )


class SubscriptionReconciler:
    """Dispatches billing events to their handler and applies the result."""

    def __init__(
        self,
        db: AsyncSession,
        stripe: StripeAdapter,
        price_to_tier: Optional[dict[str, SubscriptionTier]] = None,
    ):
        self.db = db
        self.stripe = stripe
        self.price_to_tier = (
            price_to_tier
            if price_to_tier is not None
            else build_price_to_tier(settings.stripe_price_ids)
        )
        self._handlers: dict[str, Callable[[BillingEvent], Any]] = {
            BillingEventType.SUBSCRIPTION_CREATED: self._on_subscription_changed,
            BillingEventType.SUBSCRIPTION_UPDATED: self._on_subscription_changed,
            BillingEventType.SUBSCRIPTION_DELETED: self._on_subscription_deleted,
            BillingEventType.CHECKOUT_COMPLETED: self._on_checkout_completed,
            BillingEventType.INVOICE_PAID: self._on_invoice_paid,
            BillingEventType.INVOICE_PAYMENT_SUCCEEDED: self._on_invoice_paid,
            BillingEventType.INVOICE_PAYMENT_FAILED: self._on_payment_failed,
        }

    def authenticate(self, payload: bytes, signature_header: Optional[str]) -> BillingEvent:
        """
        Verify a webhook delivery and decode its event.

        Raises:
            AuthenticationError: Missing, forged or expired signature, or a
                body that is not a Stripe event.
            StripeWebhookError: Webhook secret not configured.
        """
        if not self.stripe.verify_webhook_signature(payload, signature_header):
            raise AuthenticationError("Invalid webhook signature")

        try:
            return self.stripe.parse_webhook_event(payload)
        except StripeWebhookError as e:
            raise AuthenticationError(f"Invalid webhook payload: {e}") from e

    async def handle(self, event: BillingEvent) -> ReconcileResult:
        """
        Apply one verified event.

        Unrecognized types and zero-row matches are logged no-ops.

        Raises:
            InfrastructureError: Store or provider failure; nothing is committed
                and the provider is expected to redeliver.
        """
        logger.info(
            "Processing billing event %s",
            event.type,
            extra={"event_id": event.id, "event_type": event.type},
        )
        result = ReconcileResult(event_id=event.id, event_type=event.type)

        try:
            account_update = await self._dispatch(event)
        except UnrecognizedEventError as e:
            logger.info("%s, ignoring event %s", e, event.id)
            result.recognized = False
            return result

        result.update = account_update
        if account_update is None:
            return result

        result.rows_matched = await self.apply(account_update)
        if result.rows_matched == 0:
            logger.warning(
                "No account matched %s=%s for event %s",
                account_update.match_column,
                account_update.match_value,
                event.id,
            )
        return result

    async def _dispatch(self, event: BillingEvent) -> Optional[AccountUpdate]:
        handler = self._handlers.get(event.type)
        if handler is None:
            raise UnrecognizedEventError(event.type)
        return await handler(event)

    async def apply(self, account_update: AccountUpdate) -> int:
        """Run the update as a single statement and commit; returns rows matched."""
        column = getattr(User, account_update.match_column)
        try:
            result = await self.db.execute(
                update(User)
                .where(column == account_update.match_value)
                .values(**account_update.values)
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("Failed to apply account update: %s", e)
            raise InfrastructureError("Failed to update account") from e
        return result.rowcount

    async def _on_subscription_changed(self, event: BillingEvent) -> Optional[AccountUpdate]:
        return subscription_changed_update(event, self.price_to_tier)

    async def _on_subscription_deleted(self, event: BillingEvent) -> Optional[AccountUpdate]:
        return subscription_deleted_update(event)

    async def _on_checkout_completed(self, event: BillingEvent) -> Optional[AccountUpdate]:
        if not event.client_reference_id:
            logger.warning("Checkout session %s completed without a client reference", event.id)
            return None
        if not event.subscription_id:
            logger.warning("Checkout session %s completed without a subscription", event.id)
            return None

        try:
            subscription = await self.stripe.get_subscription(event.subscription_id)
        except StripeError as e:
            raise InfrastructureError(
                f"Failed to fetch subscription {event.subscription_id}"
            ) from e

        return checkout_completed_update(event, subscription, self.price_to_tier)

    async def _on_invoice_paid(self, event: BillingEvent) -> Optional[AccountUpdate]:
        logger.info("Invoice paid for customer %s", event.customer_id)
        return None

    async def _on_payment_failed(self, event: BillingEvent) -> Optional[AccountUpdate]:
        return payment_failed_update(event)

"""
Unit tests for the subscription reconciler.

Tests:
- Pure event -> AccountUpdate handlers
- Applying updates against the users table
- Redelivery idempotence and deletion downgrade
- Unknown event types, zero-row matches and provider failures
- Webhook authentication
"""

import json
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from adapters.payments.stripe_adapter import (
    BillingEvent,
    StripeAdapter,
    StripeAPIError,
    StripeSubscription,
    StripeWebhookError,
    sign_webhook_payload,
)
from core.domain.subscription import SubscriptionTier
from core.exceptions import AuthenticationError, InfrastructureError
from services.subscription_reconciler import (
    MATCH_CUSTOMER,
    MATCH_USER,
    SubscriptionReconciler,
    checkout_completed_update,
    payment_failed_update,
    subscription_changed_update,
    subscription_deleted_update,
)

PRICE_TO_TIER = {
    "price_pro_monthly": SubscriptionTier.PRO,
    "price_pro_yearly": SubscriptionTier.PRO,
    "price_elite_monthly": SubscriptionTier.ELITE,
    "price_elite_yearly": SubscriptionTier.ELITE,
}


def _event(event_factory, event_type: str, obj: dict, event_id: str | None = None) -> BillingEvent:
    return BillingEvent.from_webhook_payload(event_factory(event_type, obj, event_id=event_id))


def _checkout_session(
    user_id: str | None, customer_id: str = "cus_new", subscription_id: str | None = "sub_new"
) -> dict:
    return {
        "id": "cs_test",
        "object": "checkout.session",
        "customer": customer_id,
        "subscription": subscription_id,
        "client_reference_id": user_id,
    }


@pytest.fixture
def reconciler(db_session, stripe_adapter) -> SubscriptionReconciler:
    return SubscriptionReconciler(db_session, stripe_adapter, price_to_tier=PRICE_TO_TIER)


# ============================================================================
# Pure handlers
# ============================================================================


class TestSubscriptionChangedUpdate:
    def test_active_elite(self, event_factory, subscription_payload):
        event = _event(
            event_factory,
            "customer.subscription.updated",
            subscription_payload(customer_id="cus_1", subscription_id="sub_1", price_id="price_elite_yearly"),
        )

        update = subscription_changed_update(event, PRICE_TO_TIER)

        assert update.match_column == MATCH_CUSTOMER
        assert update.match_value == "cus_1"
        assert update.values == {
            "stripe_customer_id": "cus_1",
            "stripe_subscription_id": "sub_1",
            "subscription_tier": "elite",
            "subscription_status": "active",
        }

    def test_unknown_price_is_free(self, event_factory, subscription_payload):
        event = _event(
            event_factory,
            "customer.subscription.created",
            subscription_payload(price_id="price_legacy"),
        )

        update = subscription_changed_update(event, PRICE_TO_TIER)

        assert update.values["subscription_tier"] == "free"

    def test_unrecognised_status_is_stored_as_unknown(self, event_factory, subscription_payload):
        event = _event(
            event_factory,
            "customer.subscription.updated",
            subscription_payload(status="incomplete"),
        )

        update = subscription_changed_update(event, PRICE_TO_TIER)

        assert update.values["subscription_status"] is None
        assert update.values["subscription_tier"] == "pro"

    def test_missing_customer(self, event_factory):
        event = _event(event_factory, "customer.subscription.updated", {"object": "subscription", "id": "sub_1"})

        assert subscription_changed_update(event, PRICE_TO_TIER) is None


class TestOtherHandlers:
    def test_deletion_always_downgrades(self, event_factory, subscription_payload):
        # Deleted subscriptions can still carry a paid price and an active status
        event = _event(
            event_factory,
            "customer.subscription.deleted",
            subscription_payload(customer_id="cus_1", status="active", price_id="price_elite_monthly"),
        )

        update = subscription_deleted_update(event)

        assert update.match_value == "cus_1"
        assert update.values == {"subscription_tier": "free", "subscription_status": "canceled"}

    def test_payment_failed_keeps_tier(self, event_factory):
        event = _event(event_factory, "invoice.payment_failed", {"object": "invoice", "customer": "cus_1"})

        update = payment_failed_update(event)

        assert update.match_column == MATCH_CUSTOMER
        assert update.values == {"subscription_status": "past_due"}

    def test_checkout_matches_on_user_id(self, event_factory):
        event = _event(event_factory, "checkout.session.completed", _checkout_session("user-1"))
        subscription = StripeSubscription(
            id="sub_new", customer_id="cus_new", status="active", price_id="price_pro_yearly"
        )

        update = checkout_completed_update(event, subscription, PRICE_TO_TIER)

        assert update.match_column == MATCH_USER
        assert update.match_value == "user-1"
        assert update.values == {
            "stripe_customer_id": "cus_new",
            "stripe_subscription_id": "sub_new",
            "subscription_tier": "pro",
            "subscription_status": "active",
        }

    def test_checkout_without_reference(self, event_factory):
        event = _event(event_factory, "checkout.session.completed", _checkout_session(None))

        assert checkout_completed_update(event, None, PRICE_TO_TIER) is None

    def test_checkout_without_subscription(self, event_factory):
        session = _checkout_session("user-1", subscription_id=None)
        session["mode"] = "payment"
        event = _event(event_factory, "checkout.session.completed", session)

        assert checkout_completed_update(event, None, PRICE_TO_TIER) is None


# ============================================================================
# Reconciler against the database
# ============================================================================


class TestReconcilerHandle:
    @pytest.mark.asyncio
    async def test_subscription_update_applies(
        self, reconciler, db_session, subscribed_user, event_factory, subscription_payload
    ):
        event = _event(
            event_factory,
            "customer.subscription.updated",
            subscription_payload(status="past_due", price_id="price_elite_monthly"),
        )

        result = await reconciler.handle(event)

        assert result.recognized is True
        assert result.rows_matched == 1
        await db_session.refresh(subscribed_user)
        assert subscribed_user.subscription_tier == "elite"
        assert subscribed_user.subscription_status == "past_due"

    @pytest.mark.asyncio
    async def test_redelivery_is_idempotent(
        self, reconciler, db_session, subscribed_user, event_factory, subscription_payload
    ):
        event = _event(
            event_factory,
            "customer.subscription.updated",
            subscription_payload(price_id="price_elite_yearly"),
            event_id="evt_same",
        )

        await reconciler.handle(event)
        await db_session.refresh(subscribed_user)
        first = (subscribed_user.subscription_tier, subscribed_user.subscription_status,
                 subscribed_user.stripe_subscription_id)

        await reconciler.handle(event)
        await db_session.refresh(subscribed_user)
        second = (subscribed_user.subscription_tier, subscribed_user.subscription_status,
                  subscribed_user.stripe_subscription_id)

        assert first == second == ("elite", "active", "sub_test123")

    @pytest.mark.asyncio
    async def test_deletion_downgrades_account(
        self, reconciler, db_session, subscribed_user, event_factory, subscription_payload
    ):
        event = _event(event_factory, "customer.subscription.deleted", subscription_payload(status="canceled"))

        await reconciler.handle(event)

        await db_session.refresh(subscribed_user)
        assert subscribed_user.subscription_tier == "free"
        assert subscribed_user.subscription_status == "canceled"
        assert subscribed_user.stripe_customer_id == "cus_test123"

    @pytest.mark.asyncio
    async def test_payment_failed_marks_past_due(self, reconciler, db_session, subscribed_user, event_factory):
        event = _event(event_factory, "invoice.payment_failed", {"object": "invoice", "customer": "cus_test123"})

        await reconciler.handle(event)

        await db_session.refresh(subscribed_user)
        assert subscribed_user.subscription_status == "past_due"
        assert subscribed_user.subscription_tier == "pro"

    @pytest.mark.asyncio
    async def test_checkout_links_customer_and_fetches_price(
        self, reconciler, db_session, test_user, stripe_adapter, event_factory
    ):
        stripe_adapter.get_subscription = AsyncMock(
            return_value=StripeSubscription(
                id="sub_new", customer_id="cus_new", status="active", price_id="price_elite_monthly"
            )
        )
        event = _event(event_factory, "checkout.session.completed", _checkout_session(test_user.id))

        result = await reconciler.handle(event)

        stripe_adapter.get_subscription.assert_awaited_once_with("sub_new")
        assert result.rows_matched == 1
        await db_session.refresh(test_user)
        assert test_user.stripe_customer_id == "cus_new"
        assert test_user.stripe_subscription_id == "sub_new"
        assert test_user.subscription_tier == "elite"
        assert test_user.subscription_status == "active"

    @pytest.mark.asyncio
    async def test_checkout_without_reference_is_noop(
        self, reconciler, db_session, test_user, stripe_adapter, event_factory
    ):
        stripe_adapter.get_subscription = AsyncMock()
        event = _event(event_factory, "checkout.session.completed", _checkout_session(None))

        result = await reconciler.handle(event)

        assert result.update is None
        stripe_adapter.get_subscription.assert_not_awaited()
        await db_session.refresh(test_user)
        assert test_user.subscription_tier == "free"

    @pytest.mark.asyncio
    async def test_checkout_without_subscription_keeps_plan(
        self, reconciler, db_session, subscribed_user, stripe_adapter, event_factory
    ):
        stripe_adapter.get_subscription = AsyncMock()
        session = _checkout_session(subscribed_user.id, customer_id="cus_test123", subscription_id=None)
        session["mode"] = "payment"
        event = _event(event_factory, "checkout.session.completed", session)

        result = await reconciler.handle(event)

        assert result.update is None
        stripe_adapter.get_subscription.assert_not_awaited()
        await db_session.refresh(subscribed_user)
        assert subscribed_user.subscription_tier == "pro"
        assert subscribed_user.subscription_status == "active"
        assert subscribed_user.stripe_subscription_id == "sub_test123"

    @pytest.mark.asyncio
    async def test_provider_failure_raises(self, reconciler, db_session, test_user, stripe_adapter, event_factory):
        stripe_adapter.get_subscription = AsyncMock(side_effect=StripeAPIError("unreachable"))
        event = _event(event_factory, "checkout.session.completed", _checkout_session(test_user.id))

        with pytest.raises(InfrastructureError):
            await reconciler.handle(event)

        await db_session.refresh(test_user)
        assert test_user.subscription_tier == "free"
        assert test_user.stripe_customer_id is None

    @pytest.mark.asyncio
    async def test_invoice_paid_changes_nothing(self, reconciler, db_session, subscribed_user, event_factory):
        event = _event(event_factory, "invoice.paid", {"object": "invoice", "customer": "cus_test123"})

        result = await reconciler.handle(event)

        assert result.recognized is True
        assert result.update is None
        await db_session.refresh(subscribed_user)
        assert subscribed_user.subscription_tier == "pro"

    @pytest.mark.asyncio
    async def test_unknown_event_type_is_ignored(self, reconciler, db_session, subscribed_user, event_factory):
        event = _event(event_factory, "customer.created", {"object": "customer", "id": "cus_test123"})

        result = await reconciler.handle(event)

        assert result.recognized is False
        assert result.rows_matched == 0
        await db_session.refresh(subscribed_user)
        assert subscribed_user.subscription_tier == "pro"
        assert subscribed_user.subscription_status == "active"

    @pytest.mark.asyncio
    async def test_unmatched_customer_is_noop(
        self, reconciler, subscribed_user, event_factory, subscription_payload
    ):
        event = _event(
            event_factory,
            "customer.subscription.updated",
            subscription_payload(customer_id="cus_nobody"),
        )

        result = await reconciler.handle(event)

        assert result.recognized is True
        assert result.rows_matched == 0

    @pytest.mark.asyncio
    async def test_store_failure_raises(self, reconciler, db_session, event_factory, subscription_payload):
        event = _event(event_factory, "customer.subscription.updated", subscription_payload())

        with patch.object(
            db_session, "execute", AsyncMock(side_effect=OperationalError("UPDATE", {}, Exception("down")))
        ):
            with pytest.raises(InfrastructureError):
                await reconciler.handle(event)


class TestAuthenticate:
    def test_signed_event_is_decoded(self, reconciler, event_factory, subscription_payload):
        body = json.dumps(event_factory("customer.subscription.updated", subscription_payload())).encode()

        event = reconciler.authenticate(body, sign_webhook_payload(body, "whsec_test_secret"))

        assert event.type == "customer.subscription.updated"
        assert event.customer_id == "cus_test123"

    @pytest.mark.parametrize("header", [None, "t=1,v1=deadbeef", "t=1700000000,v1=éé"])
    def test_bad_signature(self, reconciler, header):
        with pytest.raises(AuthenticationError):
            reconciler.authenticate(b"{}", header)

    def test_signed_but_not_an_event(self, reconciler):
        body = b"not json"

        with pytest.raises(AuthenticationError):
            reconciler.authenticate(body, sign_webhook_payload(body, "whsec_test_secret"))

    def test_unconfigured_secret(self, db_session):
        adapter = StripeAdapter(secret_key="sk_test_123", webhook_secret="")
        adapter.webhook_secret = None
        reconciler = SubscriptionReconciler(db_session, adapter, price_to_tier=PRICE_TO_TIER)

        with pytest.raises(StripeWebhookError):
            reconciler.authenticate(b"{}", "t=1,v1=deadbeef")

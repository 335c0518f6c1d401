"""
Stripe billing adapter for subscription management.

Provides integration with the Stripe REST API for customers, checkout and
billing-portal sessions, subscription lookup, and webhook signature
verification / event parsing.
"""

import hashlib
import hmac
import json
import logging
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Optional

import httpx

from infrastructure.config.settings import settings

logger = logging.getLogger(__name__)


# Custom Exceptions
class StripeError(Exception):
    """Base exception for Stripe adapter errors."""

    pass


class StripeAPIError(StripeError):
    """Raised when the Stripe API returns an error or cannot be reached."""

    pass


class StripeWebhookError(StripeError):
    """Raised when webhook verification or parsing fails."""

    pass


class StripeAuthError(StripeError):
    """Raised when API credentials are missing."""

    pass


class BillingEventType(StrEnum):
    """Stripe webhook event types handled by the reconciler."""

    SUBSCRIPTION_CREATED = "customer.subscription.created"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"
    CHECKOUT_COMPLETED = "checkout.session.completed"
    INVOICE_PAID = "invoice.paid"
    INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
    INVOICE_PAYMENT_FAILED = "invoice.payment_failed"


def _object_id(value: Any) -> Optional[str]:
    """Return the id of a Stripe reference that may be a bare id or an expanded object."""
    if value is None:
        return None
    if isinstance(value, dict):
        value = value.get("id")
    return str(value) if value else None


def _first_price_id(subscription: dict[str, Any]) -> Optional[str]:
    items = (subscription.get("items") or {}).get("data") or []
    if not items:
        return None
    price = items[0].get("price") or {}
    return _object_id(price)


# Dataclasses
@dataclass
class StripeCustomer:
    """Stripe customer information."""

    id: str
    email: Optional[str]
    metadata: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "StripeCustomer":
        """Create customer from API response data."""
        return cls(
            id=data.get("id", ""),
            email=data.get("email"),
            metadata=data.get("metadata") or {},
        )


@dataclass
class StripeSubscription:
    """The parts of a Stripe subscription the reconciler depends on."""

    id: str
    customer_id: Optional[str]
    status: str
    price_id: Optional[str]
    current_period_end: Optional[datetime] = None

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "StripeSubscription":
        """Create subscription from API response (or webhook ``data.object``)."""
        period_end = data.get("current_period_end")
        return cls(
            id=data.get("id", ""),
            customer_id=_object_id(data.get("customer")),
            status=data.get("status", ""),
            price_id=_first_price_id(data),
            current_period_end=datetime.fromtimestamp(period_end, tz=UTC) if period_end else None,
        )


@dataclass
class CheckoutSession:
    """Hosted checkout or billing-portal session."""

    id: str
    url: str

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "CheckoutSession":
        return cls(id=data.get("id", ""), url=data.get("url", ""))


@dataclass
class BillingEvent:
    """A verified Stripe webhook event.

    ``payload`` is the provider's ``data.object`` snapshot at event time;
    the accessors below pull out only what reconciliation needs.
    """

    id: str
    type: str
    created: Optional[int]
    payload: dict[str, Any]

    @classmethod
    def from_webhook_payload(cls, payload: dict[str, Any]) -> "BillingEvent":
        """Create event from the decoded webhook envelope."""
        data = payload.get("data") or {}
        return cls(
            id=payload.get("id", ""),
            type=payload.get("type", ""),
            created=payload.get("created"),
            payload=data.get("object") or {},
        )

    @property
    def customer_id(self) -> Optional[str]:
        return _object_id(self.payload.get("customer"))

    @property
    def client_reference_id(self) -> Optional[str]:
        return self.payload.get("client_reference_id") or None

    @property
    def subscription_id(self) -> Optional[str]:
        # Subscription objects carry their own id; sessions and invoices reference one
        if self.payload.get("object") == "subscription":
            return _object_id(self.payload.get("id"))
        return _object_id(self.payload.get("subscription"))

    @property
    def status(self) -> Optional[str]:
        return self.payload.get("status")

    @property
    def price_id(self) -> Optional[str]:
        return _first_price_id(self.payload)


class StripeAdapter:
    """
    Stripe API adapter for subscription billing.

    Talks to the REST API directly with httpx (form-encoded bodies, bearer
    secret key) and verifies ``Stripe-Signature`` headers locally.
    """

    def __init__(
        self,
        secret_key: str | None = None,
        webhook_secret: str | None = None,
        api_base_url: str | None = None,
        webhook_tolerance: int | None = None,
        timeout: float = 20.0,
    ):
        """
        Initialize Stripe adapter.

        Args:
            secret_key: Stripe secret API key (defaults to settings)
            webhook_secret: Webhook endpoint signing secret (defaults to settings)
            api_base_url: API base URL (defaults to settings)
            webhook_tolerance: Max signature age in seconds (defaults to settings)
            timeout: HTTP timeout in seconds
        """
        self.secret_key = secret_key or settings.stripe_secret_key
        self.webhook_secret = webhook_secret or settings.stripe_webhook_secret
        self.api_base_url = (api_base_url or settings.stripe_api_base_url).rstrip("/")
        self.webhook_tolerance = (
            webhook_tolerance if webhook_tolerance is not None else settings.stripe_webhook_tolerance
        )
        self.timeout = timeout

        if not self.secret_key:
            logger.warning("Stripe secret key not configured. Set STRIPE_SECRET_KEY.")

    def _get_headers(self) -> dict[str, str]:
        """Get HTTP headers for API requests."""
        if not self.secret_key:
            raise StripeAuthError("Stripe secret key not configured. Set STRIPE_SECRET_KEY.")

        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/x-www-form-urlencoded",
        }

    @staticmethod
    def _flatten_params(data: dict[str, Any], prefix: str = "") -> list[tuple[str, str]]:
        """Encode nested dicts/lists in Stripe's bracket notation (``line_items[0][price]``)."""
        pairs: list[tuple[str, str]] = []
        for key, value in data.items():
            name = f"{prefix}[{key}]" if prefix else str(key)
            if value is None:
                continue
            if isinstance(value, dict):
                pairs.extend(StripeAdapter._flatten_params(value, name))
            elif isinstance(value, (list, tuple)):
                for index, item in enumerate(value):
                    item_name = f"{name}[{index}]"
                    if isinstance(item, dict):
                        pairs.extend(StripeAdapter._flatten_params(item, item_name))
                    else:
                        pairs.append((item_name, str(item)))
            elif isinstance(value, bool):
                pairs.append((name, "true" if value else "false"))
            else:
                pairs.append((name, str(value)))
        return pairs

    async def _make_request(
        self,
        method: str,
        endpoint: str,
        data: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Make HTTP request to the Stripe API.

        Args:
            method: HTTP method (GET, POST, DELETE)
            endpoint: API endpoint path
            data: Form parameters (for POST)

        Returns:
            API response as dictionary

        Raises:
            StripeAPIError: If API request fails
        """
        url = f"{self.api_base_url}/{endpoint}"
        headers = self._get_headers()

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                logger.info("Making %s request to %s", method, endpoint)

                if method == "GET":
                    response = await client.get(url, headers=headers)
                elif method == "POST":
                    response = await client.post(
                        url, headers=headers, data=self._flatten_params(data or {})
                    )
                elif method == "DELETE":
                    response = await client.delete(url, headers=headers)
                else:
                    raise ValueError(f"Unsupported HTTP method: {method}")

                response.raise_for_status()
                return response.json()

        except httpx.HTTPStatusError as e:
            error_detail = str(e)
            try:
                error_detail = e.response.json().get("error", {}).get("message", error_detail)
            except (ValueError, AttributeError):
                pass

            logger.error("Stripe API error: %s", error_detail)
            raise StripeAPIError(f"API request failed: {error_detail}") from e
        except httpx.RequestError as e:
            logger.error("HTTP request error: %s", e)
            raise StripeAPIError(f"Request failed: {e}") from e

    async def create_customer(self, email: str, user_id: str) -> StripeCustomer:
        """
        Create a customer linked to a FlowBoard user.

        Args:
            email: Customer email address
            user_id: FlowBoard user id, stored in customer metadata

        Returns:
            StripeCustomer object
        """
        logger.info("Creating Stripe customer for user %s", user_id)
        response = await self._make_request(
            "POST",
            "customers",
            data={"email": email, "metadata": {"user_id": user_id}},
        )
        return StripeCustomer.from_api_response(response)

    async def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        user_id: str,
        success_url: str,
        cancel_url: str,
    ) -> CheckoutSession:
        """
        Create a subscription-mode checkout session.

        The user id travels as ``client_reference_id`` and comes back on the
        ``checkout.session.completed`` event.
        """
        logger.info("Creating checkout session for user %s, price %s", user_id, price_id)
        response = await self._make_request(
            "POST",
            "checkout/sessions",
            data={
                "customer": customer_id,
                "client_reference_id": user_id,
                "mode": "subscription",
                "payment_method_types": ["card"],
                "line_items": [{"price": price_id, "quantity": 1}],
                "success_url": success_url,
                "cancel_url": cancel_url,
                "allow_promotion_codes": True,
                "billing_address_collection": "auto",
                "subscription_data": {"metadata": {"user_id": user_id}},
            },
        )
        return CheckoutSession.from_api_response(response)

    async def create_portal_session(self, customer_id: str, return_url: str) -> CheckoutSession:
        """Create a billing-portal session for managing an existing subscription."""
        logger.info("Creating billing portal session for customer %s", customer_id)
        response = await self._make_request(
            "POST",
            "billing_portal/sessions",
            data={"customer": customer_id, "return_url": return_url},
        )
        return CheckoutSession.from_api_response(response)

    async def get_subscription(self, subscription_id: str) -> StripeSubscription:
        """
        Get subscription information by ID.

        Raises:
            StripeAPIError: If API request fails
        """
        logger.info("Fetching subscription %s", subscription_id)
        response = await self._make_request("GET", f"subscriptions/{subscription_id}")
        return StripeSubscription.from_api_response(response)

    def verify_webhook_signature(
        self,
        payload: bytes,
        signature_header: str | None,
        now: float | None = None,
    ) -> bool:
        """
        Verify a ``Stripe-Signature`` header against the raw request body.

        The header looks like ``t=1492774577,v1=5257a869...,v0=...``.  The
        signed payload is ``"{t}.{body}"`` under HMAC-SHA256 with the
        endpoint secret; any ``v1`` entry may match, and ``t`` must be within
        the tolerance window.

        Args:
            payload: Raw webhook body (bytes)
            signature_header: Value of the Stripe-Signature header
            now: Current unix time (defaults to time.time())

        Returns:
            True if signature is valid, False otherwise

        Raises:
            StripeWebhookError: If webhook secret not configured
        """
        if not self.webhook_secret:
            raise StripeWebhookError(
                "Webhook secret not configured. Set STRIPE_WEBHOOK_SECRET."
            )

        if not signature_header:
            logger.warning("Webhook received without signature")
            return False

        timestamp: int | None = None
        signatures: list[str] = []
        for part in signature_header.split(","):
            key, _, value = part.strip().partition("=")
            if key == "t":
                try:
                    timestamp = int(value)
                except ValueError:
                    return False
            elif key == "v1" and value:
                signatures.append(value)

        if timestamp is None or not signatures:
            logger.warning("Malformed Stripe-Signature header")
            return False

        signed_payload = f"{timestamp}.".encode("utf-8") + payload
        expected_signature = hmac.new(
            key=self.webhook_secret.encode("utf-8"),
            msg=signed_payload,
            digestmod=hashlib.sha256,
        ).hexdigest()

        expected = expected_signature.encode("utf-8")
        if not any(hmac.compare_digest(expected, sig.encode("utf-8")) for sig in signatures):
            logger.warning("Webhook signature verification failed")
            return False

        current = time.time() if now is None else now
        if self.webhook_tolerance and abs(current - timestamp) > self.webhook_tolerance:
            logger.warning("Webhook timestamp outside tolerance window (t=%s)", timestamp)
            return False

        return True

    def parse_webhook_event(self, payload: bytes) -> BillingEvent:
        """
        Decode a verified webhook body into a BillingEvent.

        Raises:
            StripeWebhookError: If the body is not a JSON event envelope
        """
        try:
            decoded = json.loads(payload)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise StripeWebhookError(f"Invalid webhook payload: {e}") from e

        if not isinstance(decoded, dict) or not decoded.get("type"):
            raise StripeWebhookError("Webhook payload missing event type")

        event = BillingEvent.from_webhook_payload(decoded)
        logger.info("Parsed webhook event %s (%s)", event.id, event.type)
        return event


def sign_webhook_payload(payload: bytes, secret: str, timestamp: int | None = None) -> str:
    """Build a ``Stripe-Signature`` header value for a payload (local tooling and tests)."""
    ts = int(time.time()) if timestamp is None else timestamp
    signature = hmac.new(
        secret.encode("utf-8"), f"{ts}.".encode("utf-8") + payload, hashlib.sha256
    ).hexdigest()
    return f"t={ts},v1={signature}"


# Factory function for easy instantiation
def create_stripe_adapter(
    secret_key: str | None = None,
    webhook_secret: str | None = None,
) -> StripeAdapter:
    """
    Create a Stripe adapter instance.

    Args:
        secret_key: Stripe secret key (defaults to settings)
        webhook_secret: Webhook signing secret (defaults to settings)

    Returns:
        StripeAdapter instance
    """
    return StripeAdapter(secret_key=secret_key, webhook_secret=webhook_secret)

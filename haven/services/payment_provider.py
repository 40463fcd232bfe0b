"""
Payment Provider Protocol - Provider-agnostic interface.

NO DICTIONARIES - Results are strongly typed; only the raw webhook object
keeps the provider's own shape until a handler parses it.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol


@dataclass(frozen=True)
class CheckoutRequest:
    """Request to start a hosted checkout for a plan."""

    customer_id: str
    price_id: str
    recurring: bool
    user_id: str
    plan_type: str
    success_url: str
    cancel_url: str


@dataclass(frozen=True)
class CheckoutSession:
    session_id: str
    url: str | None


@dataclass(frozen=True)
class TopupIntent:
    """Client-confirmable one-time payment for voice top-up credits."""

    payment_intent_id: str
    client_secret: str
    amount_cents: int
    status: str


@dataclass(frozen=True)
class SubscriptionInfo:
    """Subscription state as reported by the provider."""

    subscription_id: str
    status: str
    customer_id: str | None
    current_period_end: datetime | None
    cancel_at_period_end: bool
    metadata_user_id: str | None
    metadata_plan_type: str | None


@dataclass(frozen=True)
class WebhookEvent:
    """
    Verified webhook notification.

    `data` is the event's `data.object` as decoded JSON.
    """

    event_id: str
    event_type: str
    data: dict[str, Any] = field(default_factory=dict)


class PaymentProvider(Protocol):
    """
    Payment provider protocol.

    The billing routes and webhook handler depend on this interface rather
    than on the Stripe SDK directly.
    """

    async def create_customer(self, email: str, name: str, user_id: str) -> str:
        """Create a customer and return its provider ID."""
        ...

    async def create_checkout_session(self, request: CheckoutRequest) -> CheckoutSession:
        """
        Create a hosted checkout session.

        Raises:
            PaymentProviderError: If session creation fails
        """
        ...

    async def create_topup_payment_intent(
        self, customer_id: str, amount_cents: int, user_id: str, credits: int
    ) -> TopupIntent:
        ...

    async def retrieve_subscription(self, subscription_id: str) -> SubscriptionInfo:
        ...

    async def cancel_subscription_at_period_end(self, subscription_id: str) -> SubscriptionInfo:
        ...

    async def cancel_subscription_now(self, subscription_id: str) -> None:
        ...

    async def create_portal_session(self, customer_id: str, return_url: str) -> str:
        """Create a billing portal session and return its URL."""
        ...

    async def verify_webhook(self, payload: bytes, signature: str) -> WebhookEvent:
        """
        Verify and parse webhook event from provider.

        Raises:
            WebhookVerificationError: If signature verification fails
        """
        ...

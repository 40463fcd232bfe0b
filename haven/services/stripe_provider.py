"""
Stripe Payment Provider Implementation.

NO DICTIONARIES - Stripe objects are converted to typed results at this boundary.
"""

import json
from datetime import UTC, datetime
from typing import Any

import stripe
from structlog import get_logger

from haven.exceptions import PaymentProviderError, WebhookVerificationError
from haven.services.payment_provider import (
    CheckoutRequest,
    CheckoutSession,
    SubscriptionInfo,
    TopupIntent,
    WebhookEvent,
)

logger = get_logger(__name__)


def stripe_field(obj: Any, *path: str) -> Any:
    """
    Walk nested keys of a Stripe object or decoded webhook dict.

    Returns None when any step is missing.
    """
    current = obj
    for key in path:
        if current is None:
            return None
        try:
            current = current[key]
        except (KeyError, IndexError, TypeError, AttributeError):
            return None
    return current


def from_timestamp(value: Any) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=UTC)


def subscription_period_end(subscription: Any) -> datetime | None:
    """
    Current period end of a subscription.

    Newer API versions report the period on subscription items instead of the
    subscription itself.
    """
    value = stripe_field(subscription, "current_period_end")
    if value is None:
        value = stripe_field(subscription, "items", "data", 0, "current_period_end")
    return from_timestamp(value)


def to_subscription_info(subscription: Any) -> SubscriptionInfo:
    return SubscriptionInfo(
        subscription_id=stripe_field(subscription, "id"),
        status=stripe_field(subscription, "status") or "incomplete",
        customer_id=stripe_field(subscription, "customer"),
        current_period_end=subscription_period_end(subscription),
        cancel_at_period_end=bool(stripe_field(subscription, "cancel_at_period_end")),
        metadata_user_id=stripe_field(subscription, "metadata", "userId"),
        metadata_plan_type=stripe_field(subscription, "metadata", "planType"),
    )


class StripeProvider:
    """
    Stripe payment provider implementation.

    Implements the PaymentProvider protocol for Stripe.
    """

    def __init__(self, api_key: str, webhook_secret: str) -> None:
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        stripe.api_key = api_key

    async def create_customer(self, email: str, name: str, user_id: str) -> str:
        try:
            customer = stripe.Customer.create(
                email=email,
                name=name,
                metadata={"userId": user_id},
            )
            logger.info("stripe_customer_created", user_id=user_id, customer_id=customer.id)
            customer_id: str = customer.id
            return customer_id
        except stripe.StripeError as exc:
            logger.error("stripe_customer_create_failed", user_id=user_id, error=str(exc))
            raise PaymentProviderError(f"Failed to create Stripe customer: {exc}") from exc

    async def create_checkout_session(self, request: CheckoutRequest) -> CheckoutSession:
        """
        Create a Stripe Checkout session.

        Subscription metadata is copied onto the subscription itself so invoice
        events can be attributed to the user and plan.
        """
        metadata = {"userId": request.user_id, "planType": request.plan_type}
        params: dict[str, Any] = {
            "customer": request.customer_id,
            "line_items": [{"price": request.price_id, "quantity": 1}],
            "mode": "subscription" if request.recurring else "payment",
            "success_url": request.success_url,
            "cancel_url": request.cancel_url,
            "metadata": metadata,
        }
        if request.recurring:
            params["subscription_data"] = {"metadata": metadata}
        else:
            params["payment_intent_data"] = {"metadata": metadata}

        try:
            session = stripe.checkout.Session.create(**params)
            logger.info(
                "stripe_checkout_session_created",
                session_id=session.id,
                user_id=request.user_id,
                plan_type=request.plan_type,
            )
            return CheckoutSession(session_id=session.id, url=session.url)
        except stripe.StripeError as exc:
            logger.error(
                "stripe_checkout_session_failed",
                user_id=request.user_id,
                plan_type=request.plan_type,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise PaymentProviderError(f"Failed to create checkout session: {exc}") from exc

    async def create_topup_payment_intent(
        self, customer_id: str, amount_cents: int, user_id: str, credits: int
    ) -> TopupIntent:
        try:
            payment_intent = stripe.PaymentIntent.create(
                amount=amount_cents,
                currency="usd",
                customer=customer_id,
                automatic_payment_methods={"enabled": True},
                metadata={
                    "userId": user_id,
                    "type": "voice_topup",
                    "creditsToAdd": str(credits),
                },
            )
            logger.info(
                "stripe_payment_intent_created",
                payment_intent_id=payment_intent.id,
                user_id=user_id,
                amount_cents=amount_cents,
            )
            return TopupIntent(
                payment_intent_id=payment_intent.id,
                client_secret=payment_intent.client_secret or "",
                amount_cents=payment_intent.amount,
                status=payment_intent.status,
            )
        except stripe.StripeError as exc:
            logger.error(
                "stripe_payment_intent_failed",
                user_id=user_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise PaymentProviderError(f"Stripe payment failed: {exc}") from exc

    async def retrieve_subscription(self, subscription_id: str) -> SubscriptionInfo:
        try:
            subscription = stripe.Subscription.retrieve(subscription_id)
            return to_subscription_info(subscription)
        except stripe.StripeError as exc:
            logger.error(
                "stripe_subscription_retrieve_failed",
                subscription_id=subscription_id,
                error=str(exc),
            )
            raise PaymentProviderError(f"Failed to retrieve subscription: {exc}") from exc

    async def cancel_subscription_at_period_end(self, subscription_id: str) -> SubscriptionInfo:
        try:
            subscription = stripe.Subscription.modify(subscription_id, cancel_at_period_end=True)
            logger.info("stripe_subscription_cancel_scheduled", subscription_id=subscription_id)
            return to_subscription_info(subscription)
        except stripe.StripeError as exc:
            logger.error(
                "stripe_subscription_cancel_failed",
                subscription_id=subscription_id,
                error=str(exc),
            )
            raise PaymentProviderError(f"Failed to cancel subscription: {exc}") from exc

    async def cancel_subscription_now(self, subscription_id: str) -> None:
        try:
            stripe.Subscription.cancel(subscription_id, prorate=True)
            logger.info("stripe_subscription_canceled", subscription_id=subscription_id)
        except stripe.StripeError as exc:
            logger.error(
                "stripe_subscription_cancel_failed",
                subscription_id=subscription_id,
                error=str(exc),
            )
            raise PaymentProviderError(f"Failed to cancel subscription: {exc}") from exc

    async def create_portal_session(self, customer_id: str, return_url: str) -> str:
        try:
            session = stripe.billing_portal.Session.create(
                customer=customer_id,
                return_url=return_url,
            )
            url: str = session.url
            return url
        except stripe.StripeError as exc:
            logger.error("stripe_portal_session_failed", customer_id=customer_id, error=str(exc))
            raise PaymentProviderError(f"Failed to create portal session: {exc}") from exc

    async def verify_webhook(self, payload: bytes, signature: str) -> WebhookEvent:
        """
        Verify and parse Stripe webhook event.

        Raises:
            WebhookVerificationError: If signature verification fails
        """
        try:
            event = stripe.Webhook.construct_event(  # type: ignore[no-untyped-call]
                payload, signature, self.webhook_secret
            )
        except stripe.SignatureVerificationError as exc:
            logger.error("stripe_webhook_verification_failed", error=str(exc))
            raise WebhookVerificationError("Invalid Stripe webhook signature") from exc
        except ValueError as exc:
            logger.error("stripe_webhook_parsing_failed", error=str(exc))
            raise WebhookVerificationError(f"Failed to parse Stripe webhook: {exc}") from exc

        body = json.loads(payload)
        logger.info("stripe_webhook_verified", event_id=event.id, event_type=event.type)
        return WebhookEvent(
            event_id=body["id"],
            event_type=body["type"],
            data=stripe_field(body, "data", "object") or {},
        )

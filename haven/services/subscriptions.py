"""
Subscription Service - checkout, top-up purchase, cancellation and billing portal.

Nothing here grants credits or plan privileges. Every purchase is recorded as a
pending transaction and settled by the webhook handler.
"""

import math
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from haven.config import settings
from haven.db.models import Transaction, User
from haven.exceptions import PaymentProviderError, SubscriptionConflictError
from haven.models.api import (
    CancelSubscriptionResponse,
    CheckoutSessionResponse,
    SubscriptionStatus,
    SubscriptionStatusResponse,
    SubscriptionType,
    TopupResponse,
    TransactionItem,
    TransactionStatus,
    TransactionType,
)
from haven.observability import metrics
from haven.services.credits import build_credit_status, plan_in_force
from haven.services.payment_provider import CheckoutRequest, PaymentProvider
from haven.services.plans import get_plan, list_plans, topup_credits_for_amount

logger = get_logger(__name__)

RECENT_TRANSACTIONS_LIMIT = 5


class SubscriptionService:
    def __init__(self, session: AsyncSession, provider: PaymentProvider | None = None) -> None:
        self.session = session
        self._provider = provider

    @property
    def provider(self) -> PaymentProvider:
        """Provider for Stripe calls. Read-only status queries work without one."""
        if self._provider is None:
            raise PaymentProviderError("Payment provider is not configured")
        return self._provider

    async def ensure_customer(self, user: User) -> str:
        """Return the user's Stripe customer id, creating the customer on first use."""
        if user.stripe_customer_id:
            return user.stripe_customer_id
        customer_id = await self.provider.create_customer(
            email=user.email, name=user.name, user_id=str(user.id)
        )
        user.stripe_customer_id = customer_id
        await self.session.flush()
        return customer_id

    async def create_checkout(self, user: User, plan_type: str) -> CheckoutSessionResponse:
        """
        Start a hosted checkout for a subscription plan or a one-time top-up.

        Raises:
            InvalidPlanError: Unknown plan type
            SubscriptionConflictError: Already subscribed to this plan
            PaymentProviderError: Stripe call failed
        """
        plan = get_plan(plan_type)
        now = datetime.now(UTC)

        if plan.recurring:
            active = (
                plan_in_force(user, now)
                and user.subscription_status == SubscriptionStatus.ACTIVE.value
            )
            if active and user.subscription_type == plan.plan_type.value:
                raise SubscriptionConflictError(f"Already subscribed to {plan.name}")
            if active and user.stripe_subscription_id:
                await self._cancel_previous_subscription(user)

        customer_id = await self.ensure_customer(user)
        app_url = settings.app_url.rstrip("/")
        checkout = await self.provider.create_checkout_session(
            CheckoutRequest(
                customer_id=customer_id,
                price_id=plan.price_id,
                recurring=plan.recurring,
                user_id=str(user.id),
                plan_type=plan.plan_type.value,
                success_url=f"{app_url}/subscription/success?session_id={{CHECKOUT_SESSION_ID}}",
                cancel_url=f"{app_url}/subscription/cancel",
            )
        )

        self.session.add(
            Transaction(
                user_id=user.id,
                type=(
                    TransactionType.SUBSCRIPTION.value
                    if plan.recurring
                    else TransactionType.TOPUP.value
                ),
                amount_cents=plan.price_cents,
                credits_added=plan.credits_added,
                stripe_payment_id=checkout.session_id,
                status=TransactionStatus.PENDING.value,
                transaction_metadata={"plan_type": plan.plan_type.value},
            )
        )
        await self.session.commit()
        metrics.checkout_sessions_total.labels(plan=plan.plan_type.value).inc()
        logger.info(
            "checkout_session_created",
            user_id=str(user.id),
            plan_type=plan.plan_type.value,
            session_id=checkout.session_id,
        )
        return CheckoutSessionResponse(session_id=checkout.session_id, url=checkout.url)

    async def purchase_topup(self, user: User, amount_dollars: float) -> TopupResponse:
        """
        Create a PaymentIntent for voice credits. Amount is in dollars.

        Raises:
            ValueError: Amount is not positive or buys no credits
            PaymentProviderError: Stripe call failed
        """
        if not math.isfinite(amount_dollars):
            raise ValueError("Amount must be a finite number")
        if amount_dollars <= 0:
            raise ValueError("Amount must be greater than 0")
        credits = topup_credits_for_amount(amount_dollars)
        if credits <= 0:
            raise ValueError("Amount is too small to buy any credits")
        amount_cents = round(amount_dollars * 100)

        customer_id = await self.ensure_customer(user)
        intent = await self.provider.create_topup_payment_intent(
            customer_id=customer_id,
            amount_cents=amount_cents,
            user_id=str(user.id),
            credits=credits,
        )

        self.session.add(
            Transaction(
                user_id=user.id,
                type=TransactionType.TOPUP.value,
                amount_cents=amount_cents,
                credits_added=credits,
                stripe_payment_id=intent.payment_intent_id,
                status=TransactionStatus.PENDING.value,
                transaction_metadata={"feature": "voice"},
            )
        )
        await self.session.commit()
        logger.info(
            "topup_payment_intent_created",
            user_id=str(user.id),
            amount_cents=amount_cents,
            credits=credits,
        )
        return TopupResponse(
            client_secret=intent.client_secret, credits_to_add=credits, amount_cents=amount_cents
        )

    async def cancel_subscription(self, user: User) -> CancelSubscriptionResponse:
        """
        Cancel at period end. Privileges remain until subscription_end_date.

        Raises:
            SubscriptionConflictError: No subscription to cancel
            PaymentProviderError: Stripe call failed
        """
        if not user.stripe_subscription_id:
            raise SubscriptionConflictError("No active subscription to cancel")

        info = await self.provider.cancel_subscription_at_period_end(user.stripe_subscription_id)
        user.subscription_status = SubscriptionStatus.CANCELED.value
        if info.current_period_end is not None:
            user.subscription_end_date = info.current_period_end
        await self.session.commit()
        logger.info(
            "subscription_cancel_requested",
            user_id=str(user.id),
            subscription_id=user.stripe_subscription_id,
            ends_at=user.subscription_end_date.isoformat() if user.subscription_end_date else None,
        )
        return CancelSubscriptionResponse(
            message="Subscription will be canceled at the end of the billing period",
            subscription_end_date=user.subscription_end_date,
        )

    async def create_portal_session(self, user: User) -> str:
        if not user.stripe_customer_id:
            raise SubscriptionConflictError("No billing account found")
        return await self.provider.create_portal_session(
            user.stripe_customer_id, f"{settings.app_url.rstrip('/')}/subscription"
        )

    async def get_subscription_status(self, user: User) -> SubscriptionStatusResponse:
        result = await self.session.execute(
            select(Transaction)
            .where(Transaction.user_id == user.id)
            .order_by(Transaction.created_at.desc())
            .limit(RECENT_TRANSACTIONS_LIMIT)
        )
        transactions = [
            TransactionItem(
                id=t.id,
                type=TransactionType(t.type),
                amount_cents=t.amount_cents,
                credits_added=t.credits_added,
                status=TransactionStatus(t.status),
                created_at=t.created_at,
            )
            for t in result.scalars().all()
        ]
        return SubscriptionStatusResponse(
            subscription_type=SubscriptionType(user.subscription_type),
            subscription_status=SubscriptionStatus(user.subscription_status),
            subscription_end_date=user.subscription_end_date,
            has_stripe_customer=bool(user.stripe_customer_id),
            credits=build_credit_status(user, datetime.now(UTC)),
            plans=[plan.to_response() for plan in list_plans()],
            recent_transactions=transactions,
        )

    async def _cancel_previous_subscription(self, user: User) -> None:
        """Cancel the current subscription right away on a plan switch. Failures are logged."""
        subscription_id = user.stripe_subscription_id
        assert subscription_id is not None
        try:
            await self.provider.cancel_subscription_now(subscription_id)
        except PaymentProviderError as exc:
            logger.warning(
                "previous_subscription_cancel_failed",
                user_id=str(user.id),
                subscription_id=subscription_id,
                error=str(exc),
            )
            return
        logger.info(
            "previous_subscription_canceled", user_id=str(user.id), subscription_id=subscription_id
        )

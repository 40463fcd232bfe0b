"""
Stripe Webhook Reconciliation - maps Stripe events onto user and transaction rows.

Plan privileges are granted only on `invoice.payment_succeeded`. Checkout
completion and subscription creation link identifiers but grant nothing.
Top-up credits are granted once, when their pending transaction first moves
to succeeded.
"""

from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from haven.db.models import Transaction, User
from haven.exceptions import InvalidPlanError
from haven.models.api import (
    Feature,
    PlanType,
    SubscriptionStatus,
    SubscriptionType,
    TransactionStatus,
    TransactionType,
)
from haven.observability import metrics, trace_operation
from haven.services.credits import grant_topup_credits
from haven.services.payment_provider import PaymentProvider, WebhookEvent
from haven.services.plans import Plan, get_plan, get_subscription_plan
from haven.services.stripe_provider import from_timestamp, stripe_field, subscription_period_end

logger = get_logger(__name__)


STRIPE_STATUS_MAP: dict[str, SubscriptionStatus] = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "unpaid": SubscriptionStatus.PAST_DUE,
    "incomplete": SubscriptionStatus.INCOMPLETE,
}


def map_subscription_status(stripe_status: str | None) -> SubscriptionStatus:
    """Normalize a Stripe subscription status; anything unrecognized is canceled."""
    return STRIPE_STATUS_MAP.get(stripe_status or "", SubscriptionStatus.CANCELED)


def _parse_user_id(value: Any) -> UUID | None:
    if not value:
        return None
    try:
        return UUID(str(value))
    except ValueError:
        return None


def invoice_subscription_id(invoice: dict[str, Any]) -> str | None:
    """Subscription an invoice belongs to (top-level on older API versions)."""
    return stripe_field(invoice, "subscription") or stripe_field(
        invoice, "parent", "subscription_details", "subscription"
    )


def invoice_period_end(invoice: dict[str, Any]) -> datetime | None:
    return from_timestamp(stripe_field(invoice, "lines", "data", 0, "period", "end"))


class StripeWebhookHandler:
    """
    Switch over Stripe event types.

    Each handler updates the latest known state and commits. Unhandled event
    types are acknowledged without changes.
    """

    def __init__(self, session: AsyncSession, provider: PaymentProvider) -> None:
        self.session = session
        self.provider = provider
        self._handlers: dict[str, Callable[[dict[str, Any]], Awaitable[None]]] = {
            "checkout.session.completed": self._on_checkout_completed,
            "customer.subscription.created": self._on_subscription_created,
            "customer.subscription.updated": self._on_subscription_updated,
            "customer.subscription.deleted": self._on_subscription_deleted,
            "invoice.payment_succeeded": self._on_invoice_paid,
            "invoice.payment_failed": self._on_invoice_failed,
            "payment_intent.succeeded": self._on_payment_intent_succeeded,
            "payment_intent.payment_failed": self._on_payment_intent_failed,
        }

    async def handle(self, event: WebhookEvent) -> bool:
        """
        Dispatch an event. Returns False when the event type is not handled.

        Exceptions propagate so the caller can answer 500 and let Stripe retry.
        """
        handler = self._handlers.get(event.event_type)
        if handler is None:
            logger.info(
                "stripe_webhook_unhandled", event_id=event.event_id, event_type=event.event_type
            )
            metrics.record_webhook(event.event_type, "ignored")
            return False

        logger.info(
            "stripe_webhook_processing", event_id=event.event_id, event_type=event.event_type
        )
        try:
            with trace_operation(
                "stripe_webhook", event_id=event.event_id, event_type=event.event_type
            ):
                await handler(event.data)
        except Exception:
            await self.session.rollback()
            metrics.record_webhook(event.event_type, "error")
            raise
        metrics.record_webhook(event.event_type, "processed")
        return True

    # ========================================================================
    # Checkout / one-time payments
    # ========================================================================

    async def _on_checkout_completed(self, session_obj: dict[str, Any]) -> None:
        session_id = stripe_field(session_obj, "id")
        user_id = _parse_user_id(stripe_field(session_obj, "metadata", "userId"))
        plan_type = stripe_field(session_obj, "metadata", "planType")

        if user_id is None or not plan_type:
            logger.warning("checkout_missing_metadata", session_id=session_id)
            return

        user = await self._lock_user(user_id)
        if user is None:
            logger.warning("checkout_user_not_found", session_id=session_id, user_id=str(user_id))
            return

        customer_id = stripe_field(session_obj, "customer")
        if customer_id and not user.stripe_customer_id:
            user.stripe_customer_id = customer_id

        transaction = await self._find_transaction_by_payment_id(session_id)
        newly_succeeded = False
        if transaction is not None and transaction.status == TransactionStatus.PENDING.value:
            if stripe_field(session_obj, "payment_status") in ("paid", "no_payment_required"):
                transaction.status = TransactionStatus.SUCCEEDED.value
                newly_succeeded = True
                payment_intent_id = stripe_field(session_obj, "payment_intent")
                if payment_intent_id:
                    transaction.transaction_metadata = {
                        **(transaction.transaction_metadata or {}),
                        "payment_intent_id": payment_intent_id,
                    }

        if plan_type == PlanType.VOICE_TOPUP.value:
            if newly_succeeded:
                credits = transaction.credits_added or get_plan(plan_type).credits_added
                total = grant_topup_credits(user, Feature.VOICE, credits)
                metrics.record_grant(Feature.VOICE.value, "topup", credits)
                logger.info(
                    "topup_credits_granted",
                    user_id=str(user.id),
                    credits=credits,
                    voice_pool_total=total,
                    session_id=session_id,
                )
            else:
                logger.info("topup_checkout_already_applied", session_id=session_id)
        else:
            subscription_id = stripe_field(session_obj, "subscription")
            if subscription_id:
                user.stripe_subscription_id = subscription_id
                if transaction is not None:
                    transaction.stripe_subscription_id = subscription_id
            logger.info(
                "subscription_checkout_completed",
                user_id=str(user.id),
                plan_type=plan_type,
                subscription_id=subscription_id,
            )

        await self.session.commit()

    async def _on_payment_intent_succeeded(self, intent: dict[str, Any]) -> None:
        if stripe_field(intent, "metadata", "type") != PlanType.VOICE_TOPUP.value:
            return
        transaction = await self._find_transaction_by_payment_id(stripe_field(intent, "id"))
        if transaction is None or transaction.status != TransactionStatus.PENDING.value:
            return

        user = await self._lock_user(transaction.user_id)
        if user is None:
            logger.warning("topup_user_not_found", transaction_id=str(transaction.id))
            return

        transaction.status = TransactionStatus.SUCCEEDED.value
        total = grant_topup_credits(user, Feature.VOICE, transaction.credits_added)
        await self.session.commit()
        metrics.record_grant(Feature.VOICE.value, "topup", transaction.credits_added)
        logger.info(
            "topup_credits_granted",
            user_id=str(user.id),
            credits=transaction.credits_added,
            voice_pool_total=total,
            payment_intent_id=transaction.stripe_payment_id,
        )

    async def _on_payment_intent_failed(self, intent: dict[str, Any]) -> None:
        transaction = await self._find_transaction_by_payment_id(stripe_field(intent, "id"))
        if transaction is None or transaction.status != TransactionStatus.PENDING.value:
            return
        transaction.status = TransactionStatus.FAILED.value
        await self.session.commit()
        logger.warning(
            "topup_payment_failed",
            transaction_id=str(transaction.id),
            error=stripe_field(intent, "last_payment_error", "message"),
        )

    # ========================================================================
    # Subscriptions
    # ========================================================================

    async def _on_subscription_created(self, subscription: dict[str, Any]) -> None:
        user = await self._resolve_subscription_user(subscription)
        if user is None:
            return
        user.stripe_subscription_id = stripe_field(subscription, "id")
        user.subscription_end_date = subscription_period_end(subscription)
        await self.session.commit()
        logger.info(
            "subscription_linked",
            user_id=str(user.id),
            subscription_id=user.stripe_subscription_id,
            stripe_status=stripe_field(subscription, "status"),
        )

    async def _on_subscription_updated(self, subscription: dict[str, Any]) -> None:
        user = await self._resolve_subscription_user(subscription)
        if user is None:
            return
        subscription_id = stripe_field(subscription, "id")
        status = map_subscription_status(stripe_field(subscription, "status"))
        replaced = (
            user.stripe_subscription_id is not None
            and user.stripe_subscription_id != subscription_id
        )
        if replaced and status != SubscriptionStatus.ACTIVE:
            logger.info(
                "subscription_update_for_replaced_subscription",
                user_id=str(user.id),
                subscription_id=subscription_id,
                status=status.value,
            )
            return

        if status == SubscriptionStatus.ACTIVE and stripe_field(
            subscription, "cancel_at_period_end"
        ):
            status = SubscriptionStatus.CANCELED

        user.stripe_subscription_id = subscription_id
        user.subscription_status = status.value
        user.subscription_end_date = subscription_period_end(subscription)
        await self.session.commit()
        logger.info(
            "subscription_status_updated",
            user_id=str(user.id),
            subscription_id=subscription_id,
            status=status.value,
        )

    async def _on_subscription_deleted(self, subscription: dict[str, Any]) -> None:
        user = await self._resolve_subscription_user(subscription)
        if user is None:
            return
        subscription_id = stripe_field(subscription, "id")
        if user.stripe_subscription_id != subscription_id:
            logger.info(
                "subscription_deleted_not_current",
                user_id=str(user.id),
                subscription_id=subscription_id,
                current_subscription_id=user.stripe_subscription_id,
            )
            return

        user.subscription_type = SubscriptionType.FREE_TRIAL.value
        user.subscription_status = SubscriptionStatus.CANCELED.value
        user.stripe_subscription_id = None
        user.subscription_end_date = None
        await self.session.commit()
        logger.info("subscription_ended", user_id=str(user.id), subscription_id=subscription_id)

    # ========================================================================
    # Invoices
    # ========================================================================

    async def _on_invoice_paid(self, invoice: dict[str, Any]) -> None:
        subscription_id = invoice_subscription_id(invoice)
        if not subscription_id:
            return

        invoice_id = stripe_field(invoice, "id")
        user_id = _parse_user_id(
            stripe_field(invoice, "parent", "subscription_details", "metadata", "userId")
        )
        plan_type = stripe_field(invoice, "parent", "subscription_details", "metadata", "planType")
        period_end = invoice_period_end(invoice)

        if user_id is None or not plan_type or period_end is None:
            info = await self.provider.retrieve_subscription(subscription_id)
            user_id = user_id or _parse_user_id(info.metadata_user_id)
            plan_type = plan_type or info.metadata_plan_type
            period_end = period_end or info.current_period_end

        user = await self._lock_user(user_id) if user_id else None
        if user is None:
            user = await self._find_user_by_subscription(subscription_id, lock=True)
        if user is None:
            logger.warning(
                "invoice_user_not_found", invoice_id=invoice_id, subscription_id=subscription_id
            )
            return

        plan = self._plan_or_none(plan_type) or self._plan_or_none(user.subscription_type)
        if plan is None:
            logger.error(
                "invoice_plan_unknown",
                invoice_id=invoice_id,
                plan_type=plan_type,
                user_id=str(user.id),
            )
            return

        newly_recorded = bool(invoice_id) and (
            await self._find_transaction_by_invoice(invoice_id) is None
        )
        if newly_recorded:
            self.session.add(
                Transaction(
                    user_id=user.id,
                    type=TransactionType.SUBSCRIPTION.value,
                    amount_cents=int(stripe_field(invoice, "amount_paid") or 0),
                    credits_added=plan.monthly_voice_credits,
                    stripe_payment_id=stripe_field(invoice, "payment_intent"),
                    stripe_subscription_id=subscription_id,
                    stripe_invoice_id=invoice_id,
                    status=TransactionStatus.SUCCEEDED.value,
                    transaction_metadata={
                        "plan_type": plan.plan_type.value,
                        "billing_reason": stripe_field(invoice, "billing_reason"),
                    },
                )
            )

        user.subscription_type = plan.plan_type.value
        user.subscription_status = SubscriptionStatus.ACTIVE.value
        user.stripe_subscription_id = subscription_id
        user.subscription_end_date = period_end
        if plan.daily_voice_credits:
            user.daily_voice_credits = plan.daily_voice_credits
        if plan.monthly_voice_credits:
            user.monthly_voice_credits = plan.monthly_voice_credits
        # Only the first delivery of an invoice resets monthly usage
        if newly_recorded and stripe_field(invoice, "billing_reason") in (
            "subscription_create",
            "subscription_cycle",
        ):
            user.voice_credits_used_this_month = 0
            user.last_monthly_reset = datetime.now(UTC)

        await self.session.commit()
        logger.info(
            "subscription_payment_applied",
            user_id=str(user.id),
            plan_type=plan.plan_type.value,
            invoice_id=invoice_id,
            subscription_end_date=period_end.isoformat() if period_end else None,
        )

    async def _on_invoice_failed(self, invoice: dict[str, Any]) -> None:
        subscription_id = invoice_subscription_id(invoice)
        if not subscription_id:
            return
        user = await self._find_user_by_subscription(subscription_id, lock=True)
        if user is None:
            info = await self.provider.retrieve_subscription(subscription_id)
            user_id = _parse_user_id(info.metadata_user_id)
            user = await self._lock_user(user_id) if user_id else None
        if user is None:
            logger.warning("invoice_failed_user_not_found", subscription_id=subscription_id)
            return

        user.subscription_status = SubscriptionStatus.PAST_DUE.value
        await self.session.commit()
        logger.warning(
            "subscription_payment_failed",
            user_id=str(user.id),
            subscription_id=subscription_id,
            invoice_id=stripe_field(invoice, "id"),
        )

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    @staticmethod
    def _plan_or_none(plan_type: str | None) -> Plan | None:
        if not plan_type:
            return None
        try:
            return get_subscription_plan(plan_type)
        except InvalidPlanError:
            return None

    async def _resolve_subscription_user(self, subscription: dict[str, Any]) -> User | None:
        """Find the user by `userId` metadata, falling back to the stored subscription ID."""
        user_id = _parse_user_id(stripe_field(subscription, "metadata", "userId"))
        user = await self._lock_user(user_id) if user_id else None
        if user is None:
            user = await self._find_user_by_subscription(
                stripe_field(subscription, "id"), lock=True
            )
        if user is None:
            logger.warning(
                "subscription_user_not_found",
                subscription_id=stripe_field(subscription, "id"),
                user_id=str(user_id) if user_id else None,
            )
        return user

    async def _lock_user(self, user_id: UUID) -> User | None:
        stmt = (
            select(User)
            .where(User.id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _find_user_by_subscription(
        self, subscription_id: str | None, lock: bool = False
    ) -> User | None:
        if not subscription_id:
            return None
        stmt = select(User).where(User.stripe_subscription_id == subscription_id)
        if lock:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _find_transaction_by_payment_id(self, payment_id: str | None) -> Transaction | None:
        if not payment_id:
            return None
        stmt = (
            select(Transaction)
            .where(Transaction.stripe_payment_id == payment_id)
            .with_for_update()
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _find_transaction_by_invoice(self, invoice_id: str) -> Transaction | None:
        stmt = select(Transaction).where(Transaction.stripe_invoice_id == invoice_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

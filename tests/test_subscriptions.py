"""
Tests for SubscriptionService.

Purchases only ever create pending transactions; credits are granted by the
webhook handler, which is covered in test_webhooks.py.
"""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from haven.db.models import Transaction
from haven.exceptions import InvalidPlanError, PaymentProviderError, SubscriptionConflictError
from haven.services.subscriptions import SubscriptionService
from tests.conftest import create_mock_user, make_result


def _added_transaction(db_session: AsyncMock) -> Transaction:
    added = [call[0][0] for call in db_session.add.call_args_list]
    return next(obj for obj in added if isinstance(obj, Transaction))


class TestEnsureCustomer:
    async def test_existing_customer_reused(
        self, db_session: AsyncMock, payment_provider: MagicMock, premium_user: MagicMock
    ):
        service = SubscriptionService(db_session, payment_provider)
        assert await service.ensure_customer(premium_user) == "cus_test123"
        payment_provider.create_customer.assert_not_awaited()

    async def test_new_customer_created(
        self, db_session: AsyncMock, payment_provider: MagicMock, free_user: MagicMock
    ):
        service = SubscriptionService(db_session, payment_provider)
        assert await service.ensure_customer(free_user) == "cus_new123"
        assert free_user.stripe_customer_id == "cus_new123"
        payment_provider.create_customer.assert_awaited_once_with(
            email=free_user.email, name=free_user.name, user_id=str(free_user.id)
        )


class TestCheckout:
    async def test_subscription_checkout_records_pending(
        self, db_session: AsyncMock, payment_provider: MagicMock, free_user: MagicMock
    ):
        response = await SubscriptionService(db_session, payment_provider).create_checkout(
            free_user, "premium"
        )

        assert response.session_id == "cs_test123"
        request = payment_provider.create_checkout_session.call_args[0][0]
        assert request.price_id == "price_premium"
        assert request.recurring is True
        assert request.success_url.endswith("session_id={CHECKOUT_SESSION_ID}")

        transaction = _added_transaction(db_session)
        assert transaction.type == "subscription"
        assert transaction.status == "pending"
        assert transaction.amount_cents == 9900
        assert transaction.stripe_payment_id == "cs_test123"
        # No plan change until the invoice is paid
        assert free_user.subscription_type == "free_trial"

    async def test_topup_checkout(
        self, db_session: AsyncMock, payment_provider: MagicMock, chat_only_user: MagicMock
    ):
        await SubscriptionService(db_session, payment_provider).create_checkout(
            chat_only_user, "voice_topup"
        )
        request = payment_provider.create_checkout_session.call_args[0][0]
        assert request.recurring is False
        transaction = _added_transaction(db_session)
        assert transaction.type == "topup"
        assert transaction.credits_added == 1000

    async def test_same_plan_conflict(
        self, db_session: AsyncMock, payment_provider: MagicMock, premium_user: MagicMock
    ):
        with pytest.raises(SubscriptionConflictError, match="Already subscribed"):
            await SubscriptionService(db_session, payment_provider).create_checkout(
                premium_user, "premium"
            )
        payment_provider.create_checkout_session.assert_not_awaited()

    async def test_plan_switch_cancels_previous(
        self, db_session: AsyncMock, payment_provider: MagicMock, chat_only_user: MagicMock
    ):
        await SubscriptionService(db_session, payment_provider).create_checkout(
            chat_only_user, "premium"
        )
        payment_provider.cancel_subscription_now.assert_awaited_once_with("sub_test123")

    async def test_cancel_failure_does_not_block_switch(
        self, db_session: AsyncMock, payment_provider: MagicMock, chat_only_user: MagicMock
    ):
        payment_provider.cancel_subscription_now = AsyncMock(
            side_effect=PaymentProviderError("already canceled")
        )
        response = await SubscriptionService(db_session, payment_provider).create_checkout(
            chat_only_user, "premium"
        )
        assert response.session_id == "cs_test123"

    async def test_unknown_plan(
        self, db_session: AsyncMock, payment_provider: MagicMock, free_user: MagicMock
    ):
        with pytest.raises(InvalidPlanError):
            await SubscriptionService(db_session, payment_provider).create_checkout(
                free_user, "platinum"
            )

    async def test_provider_failure_records_nothing(
        self, db_session: AsyncMock, payment_provider: MagicMock, free_user: MagicMock
    ):
        payment_provider.create_checkout_session = AsyncMock(
            side_effect=PaymentProviderError("price missing")
        )
        with pytest.raises(PaymentProviderError):
            await SubscriptionService(db_session, payment_provider).create_checkout(
                free_user, "chat_only"
            )
        db_session.commit.assert_not_awaited()


class TestTopupPurchase:
    async def test_purchase(
        self, db_session: AsyncMock, payment_provider: MagicMock, free_user: MagicMock
    ):
        response = await SubscriptionService(db_session, payment_provider).purchase_topup(
            free_user, 15
        )
        assert response.credits_to_add == 1000
        assert response.amount_cents == 1500
        assert response.client_secret == "pi_test123_secret"

        transaction = _added_transaction(db_session)
        assert transaction.stripe_payment_id == "pi_test123"
        assert transaction.status == "pending"
        assert free_user.voice_credits == 200

    @pytest.mark.parametrize("amount", [0, -5, 0.01, float("inf"), float("-inf"), float("nan")])
    async def test_bad_amounts(
        self, db_session: AsyncMock, payment_provider: MagicMock, free_user: MagicMock, amount
    ):
        with pytest.raises(ValueError):
            await SubscriptionService(db_session, payment_provider).purchase_topup(
                free_user, amount
            )
        payment_provider.create_topup_payment_intent.assert_not_awaited()


class TestCancel:
    async def test_cancel_keeps_access_until_period_end(
        self, db_session: AsyncMock, payment_provider: MagicMock, premium_user: MagicMock
    ):
        response = await SubscriptionService(db_session, payment_provider).cancel_subscription(
            premium_user
        )
        assert premium_user.subscription_status == "canceled"
        assert premium_user.subscription_type == "premium"
        assert response.subscription_end_date > datetime.now(UTC) + timedelta(days=19)

    async def test_nothing_to_cancel(
        self, db_session: AsyncMock, payment_provider: MagicMock, free_user: MagicMock
    ):
        with pytest.raises(SubscriptionConflictError):
            await SubscriptionService(db_session, payment_provider).cancel_subscription(free_user)


class TestPortalAndStatus:
    async def test_portal(
        self, db_session: AsyncMock, payment_provider: MagicMock, premium_user: MagicMock
    ):
        url = await SubscriptionService(db_session, payment_provider).create_portal_session(
            premium_user
        )
        assert url == "https://billing.test/portal"

    async def test_portal_without_customer(
        self, db_session: AsyncMock, payment_provider: MagicMock, free_user: MagicMock
    ):
        with pytest.raises(SubscriptionConflictError):
            await SubscriptionService(db_session, payment_provider).create_portal_session(
                free_user
            )

    async def test_status(self, db_session: AsyncMock, payment_provider: MagicMock):
        user = create_mock_user(subscription_type="voice_only", stripe_customer_id="cus_1")
        transaction = MagicMock(spec=Transaction)
        transaction.id = user.id
        transaction.type = "subscription"
        transaction.amount_cents = 4900
        transaction.credits_added = 0
        transaction.status = "succeeded"
        transaction.created_at = datetime.now(UTC)
        db_session.execute = AsyncMock(return_value=make_result(scalars=[transaction]))

        status = await SubscriptionService(db_session, payment_provider).get_subscription_status(
            user
        )

        assert status.subscription_type == "voice_only"
        assert status.has_stripe_customer is True
        assert len(status.plans) == 4
        assert status.recent_transactions[0].amount_cents == 4900


class TestWithoutProvider:
    async def test_status_needs_no_provider(self, db_session: AsyncMock, free_user: MagicMock):
        status = await SubscriptionService(db_session).get_subscription_status(free_user)
        assert status.subscription_type == "free_trial"
        assert status.has_stripe_customer is False

    async def test_purchase_needs_provider(self, db_session: AsyncMock, free_user: MagicMock):
        with pytest.raises(PaymentProviderError, match="not configured"):
            await SubscriptionService(db_session).purchase_topup(free_user, 15)
        db_session.commit.assert_not_awaited()

"""
API route tests.

Database, auth, payment and LLM dependencies are overridden; services run
against the mocked session, or against SQLite where session state matters.
"""

from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from haven.api.dependencies import get_payment_provider
from haven.config import settings
from haven.db.models import AuthSession, ChatMessage, MoodEntry, Transaction, User
from haven.exceptions import LLMProviderError, WebhookVerificationError
from haven.models.api import MessageRole, UserRole
from haven.models.domain import ConversationTurn, FeatureAccess
from haven.services.auth import hash_password
from haven.services.chat import ChatTurnResult
from haven.services.llm import get_llm_client
from haven.services.payment_provider import WebhookEvent
from tests.conftest import create_db_user, create_mock_user, make_result

CRON_HEADERS = {"Authorization": "Bearer test-cron-secret"}


@pytest.fixture
def fake_payments(app, payment_provider: MagicMock) -> MagicMock:
    app.dependency_overrides[get_payment_provider] = lambda: payment_provider
    return payment_provider


@pytest.fixture
def fake_llm(app, llm_client: MagicMock) -> MagicMock:
    app.dependency_overrides[get_llm_client] = lambda: llm_client
    return llm_client


class TestAuthentication:
    def test_missing_session(self, client, override_db):
        response = client.get("/api/credits/status")
        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_unknown_session_token(self, client, override_db):
        response = client.get(
            "/api/credits/status", headers={"Authorization": "Bearer nope"}
        )
        assert response.status_code == 401
        assert response.json()["detail"] == "Authentication failed: Invalid session"

    def test_banned_user_forbidden(self, client, override_db, banned_user):
        auth_session = MagicMock(spec=AuthSession)
        auth_session.expires_at = banned_user.created_at.replace(year=2099)
        auth_session.user = banned_user
        override_db.execute = AsyncMock(return_value=make_result(scalar=auth_session))

        response = client.get("/api/user/profile", headers={"Authorization": "Bearer tok"})
        assert response.status_code == 403
        assert response.json()["detail"].startswith("Account banned")

    def test_session_cookie_accepted(self, client, override_db, free_user):
        auth_session = MagicMock(spec=AuthSession)
        auth_session.expires_at = free_user.created_at.replace(year=2099)
        auth_session.user = free_user
        override_db.execute = AsyncMock(return_value=make_result(scalar=auth_session))

        client.cookies.set(settings.session_cookie_name, "tok")
        response = client.get("/api/auth/session")
        assert response.status_code == 200
        assert response.json()["user"]["email"] == free_user.email

    def test_sign_in_returns_token_and_cookie(self, client, override_db):
        user = create_mock_user()
        user.password_hash = hash_password("password123")
        override_db.execute = AsyncMock(return_value=make_result(scalar=user))

        response = client.post(
            "/api/auth/sign-in", json={"email": user.email, "password": "password123"}
        )

        assert response.status_code == 200
        token = response.json()["token"]
        assert token
        assert f"{settings.session_cookie_name}={token}" in response.headers["set-cookie"]

    def test_sign_in_wrong_password(self, client, override_db):
        response = client.post(
            "/api/auth/sign-in", json={"email": "ghost@example.com", "password": "password123"}
        )
        assert response.status_code == 401

    def test_sign_up_weak_password(self, client, override_db):
        response = client.post(
            "/api/auth/sign-up",
            json={"name": "Ada", "email": "ada@example.com", "password": "short"},
        )
        assert response.status_code == 400

    def test_sign_up_duplicate(self, client, override_db, free_user):
        override_db.execute = AsyncMock(return_value=make_result(scalar=free_user))
        response = client.post(
            "/api/auth/sign-up",
            json={"name": "Ada", "email": free_user.email, "password": "password123"},
        )
        assert response.status_code == 409

    def test_forgot_password_never_reveals_accounts(self, client, override_db):
        response = client.post("/api/auth/forgot-password", json={"email": "ghost@example.com"})
        assert response.status_code == 200


class TestCron:
    def test_health_needs_no_auth(self, client):
        response = client.get("/api/cron/reset-credits")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_missing_secret(self, client, override_db):
        response = client.post("/api/cron/reset-credits", json={"type": "daily"})
        assert response.status_code == 401

    def test_wrong_secret(self, client, override_db):
        response = client.post(
            "/api/cron/reset-credits",
            json={"type": "daily"},
            headers={"Authorization": "Bearer wrong"},
        )
        assert response.status_code == 401

    def test_not_configured(self, client, override_db, monkeypatch):
        monkeypatch.setattr(settings, "cron_secret", "")
        response = client.post(
            "/api/cron/reset-credits", json={"type": "daily"}, headers=CRON_HEADERS
        )
        assert response.status_code == 503

    def test_invalid_type(self, client, override_db):
        response = client.post(
            "/api/cron/reset-credits", json={"type": "weekly"}, headers=CRON_HEADERS
        )
        assert response.status_code == 400

    @pytest.mark.parametrize("reset_type", ["daily", "monthly"])
    def test_reset(self, client, override_db, reset_type):
        override_db.execute = AsyncMock(return_value=make_result(rowcount=12))
        response = client.post(
            "/api/cron/reset-credits", json={"type": reset_type}, headers=CRON_HEADERS
        )
        assert response.status_code == 200
        assert response.json()["users_reset"] == 12
        assert response.json()["type"] == reset_type


class TestCredits:
    def test_feature_check(self, client, override_db, login_as):
        user = login_as(create_mock_user(chat_credits=3))
        override_db.execute = AsyncMock(return_value=make_result(scalar=user))

        response = client.get("/api/credits/check", params={"feature": "chat"})

        assert response.status_code == 200
        body = response.json()
        assert body["allowed"] is False
        assert body["credits_needed"] == 2

    def test_voice_deduct_insufficient(self, client, override_db, login_as):
        user = login_as(create_mock_user(voice_credits=5))
        override_db.execute = AsyncMock(return_value=make_result(scalar=user))

        response = client.post("/api/chat/voice-credit-deduct", json={"credits": 10})

        assert response.status_code == 402
        assert response.json() == {
            "error": "Insufficient voice credits. Balance: 5, Required: 10",
            "insufficient_credits": True,
            "credits_needed": 10,
        }

    def test_voice_duration_deduct(self, client, override_db, login_as):
        user = login_as(create_mock_user())
        override_db.execute = AsyncMock(return_value=make_result(scalar=user))
        override_db.get = AsyncMock(return_value=user)

        response = client.post(
            "/api/chat/voice-credit-deduct-duration",
            json={"user_speaking_seconds": 61, "bot_speaking_seconds": 0},
        )

        assert response.status_code == 200
        assert response.json()["minutes_used"] == 2
        assert response.json()["credits_used"] == 20
        assert response.json()["remaining_credits"] == 180

    def test_voice_only_daily_limit_is_402(self, client, override_db, login_as):
        user = login_as(create_mock_user(subscription_type="voice_only", voice_credits=0))
        user.voice_credits_used_today = 300
        override_db.execute = AsyncMock(return_value=make_result(scalar=user))

        response = client.post("/api/chat/voice-credit-deduct", json={"credits": 10})

        assert response.status_code == 402
        assert response.json()["insufficient_credits"] is True


class TestChat:
    def test_insufficient_credits_is_402(self, client, override_db, login_as, fake_llm):
        user = login_as(create_mock_user(chat_credits=0))
        override_db.execute = AsyncMock(return_value=make_result(scalar=user))

        response = client.post("/api/chat", json={"message": "Hello"})

        assert response.status_code == 402
        assert response.json()["insufficient_credits"] is True
        assert response.json()["credits_needed"] == 5
        fake_llm.complete.assert_not_awaited()

    def test_reply_and_mood_tracking_scheduled(self, client, override_db, login_as, fake_llm):
        user = login_as(create_mock_user())
        override_db.execute = AsyncMock(return_value=make_result(scalar=user))
        thread_id = uuid4()
        turn = ChatTurnResult(
            thread_id=thread_id,
            reply="That sounds heavy.",
            credits_used=5,
            turns=(ConversationTurn(MessageRole.USER, "Hello"),),
        )

        with (
            patch(
                "haven.api.chat_routes.ChatService.send_message", AsyncMock(return_value=turn)
            ),
            patch("haven.api.chat_routes.run_mood_tracking", AsyncMock()) as track,
        ):
            response = client.post("/api/chat", json={"message": "Hello"})

        assert response.status_code == 200
        assert response.json() == {
            "thread_id": str(thread_id),
            "reply": "That sounds heavy.",
            "credits_used": 5,
        }
        track.assert_awaited_once()

    def test_llm_outage_is_503(self, client, override_db, login_as, fake_llm):
        user = login_as(create_mock_user())
        override_db.execute = AsyncMock(return_value=make_result(scalar=user))
        fake_llm.complete = AsyncMock(side_effect=LLMProviderError("down"))

        response = client.post("/api/chat", json={"message": "Hello"})
        assert response.status_code == 503

    def test_foreign_thread_is_403(self, client, override_db, login_as, fake_llm):
        login_as(create_mock_user())
        thread = MagicMock(user_id=uuid4())
        override_db.get = AsyncMock(return_value=thread)
        response = client.delete(f"/api/chat/threads/{uuid4()}")
        assert response.status_code == 403

    def test_missing_thread_is_404(self, client, override_db, login_as, fake_llm):
        login_as(create_mock_user())
        response = client.get(f"/api/chat/threads/{uuid4()}")
        assert response.status_code == 404

    def test_image_upload_denied_for_free_trial(self, client, override_db, login_as):
        login_as(create_mock_user())
        response = client.post("/api/chat/image-upload")
        assert response.status_code == 403

    def test_voice_session_end(self, client, override_db, login_as, fake_llm):
        user = login_as(create_mock_user())
        with patch("haven.api.chat_routes.run_mood_tracking", AsyncMock()) as track:
            response = client.post(
                "/api/chat/voice-session-end",
                json={"transcript": [{"role": "user", "content": "I feel calmer"}]},
            )
        assert response.status_code == 200
        assert response.json()["total_voice_sessions"] == 1
        assert user.total_voice_sessions == 1
        track.assert_awaited_once()


class TestMood:
    @pytest.mark.parametrize("score", [0, 10.6, 11])
    def test_out_of_range_is_400(self, client, override_db, login_as, score):
        login_as(create_mock_user())
        response = client.post("/api/user/track-mood", json={"mood_score": score})
        assert response.status_code == 400

    def test_manual_mood_rounded(self, client, override_db, login_as):
        login_as(create_mock_user())
        response = client.post("/api/user/track-mood", json={"mood_score": 7.5})
        assert response.status_code == 200
        entry = override_db.add.call_args[0][0]
        assert isinstance(entry, MoodEntry)
        assert entry.mood_score == 8

    def test_other_users_mood_needs_admin(self, client, override_db, login_as):
        login_as(create_mock_user())
        response = client.get(f"/api/user/weekly-mood/{uuid4()}")
        assert response.status_code == 403

    def test_admin_reads_other_users_mood(self, client, override_db, login_as, admin_user):
        login_as(admin_user)
        target = uuid4()
        response = client.get(f"/api/user/weekly-mood/{target}")
        assert response.status_code == 200
        assert response.json()["user_id"] == str(target)
        assert len(response.json()["days"]) == 7


class TestStripe:
    def test_invalid_plan(self, client, override_db, login_as, fake_payments):
        login_as(create_mock_user())
        response = client.post("/api/stripe/create-checkout-session", json={"plan_type": "gold"})
        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid plan type: gold"

    def test_checkout(self, client, override_db, login_as, fake_payments):
        login_as(create_mock_user())
        response = client.post(
            "/api/stripe/create-checkout-session", json={"plan_type": "voice_only"}
        )
        assert response.status_code == 200
        assert response.json()["session_id"] == "cs_test123"

    @pytest.mark.parametrize("amount", [b"Infinity", b"-Infinity", b"NaN", b"0"])
    def test_topup_rejects_unusable_amounts(
        self, client, override_db, login_as, fake_payments, amount
    ):
        login_as(create_mock_user())
        response = client.post(
            "/api/stripe/purchase-topup",
            content=b'{"amount": ' + amount + b"}",
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 400
        fake_payments.create_topup_payment_intent.assert_not_awaited()

    def test_topup(self, client, override_db, login_as, fake_payments):
        login_as(create_mock_user())
        response = client.post("/api/stripe/purchase-topup", json={"amount": 30})
        assert response.status_code == 200
        assert response.json()["credits_to_add"] == 2000

    def test_subscription_status_without_stripe_keys(
        self, client, override_db, login_as, monkeypatch
    ):
        monkeypatch.setattr(settings, "stripe_api_key", "")
        login_as(create_mock_user(subscription_type="chat_only"))

        response = client.get("/api/stripe/subscription-status")

        assert response.status_code == 200
        assert response.json()["subscription_type"] == "chat_only"
        # Purchases still need the provider
        checkout = client.post(
            "/api/stripe/create-checkout-session", json={"plan_type": "premium"}
        )
        assert checkout.status_code == 503

    def test_webhook_missing_signature(self, client, override_db, fake_payments):
        response = client.post("/api/stripe/webhooks", content=b"{}")
        assert response.status_code == 400
        fake_payments.verify_webhook.assert_not_awaited()

    def test_webhook_bad_signature(self, client, override_db, fake_payments):
        fake_payments.verify_webhook = AsyncMock(side_effect=WebhookVerificationError("bad"))
        response = client.post(
            "/api/stripe/webhooks", content=b"{}", headers={"stripe-signature": "t=1,v1=x"}
        )
        assert response.status_code == 400

    def test_webhook_processing_failure_is_500(self, client, override_db, fake_payments):
        fake_payments.verify_webhook = AsyncMock(
            return_value=WebhookEvent(
                event_id="evt_1",
                event_type="invoice.payment_succeeded",
                data={"id": "in_1", "subscription": "sub_1"},
            )
        )
        with patch(
            "haven.api.stripe_routes.StripeWebhookHandler.handle",
            AsyncMock(side_effect=RuntimeError("db down")),
        ):
            response = client.post(
                "/api/stripe/webhooks", content=b"{}", headers={"stripe-signature": "t=1,v1=x"}
            )
        assert response.status_code == 500

    def test_webhook_acknowledged(self, client, override_db, fake_payments):
        fake_payments.verify_webhook = AsyncMock(
            return_value=WebhookEvent(event_id="evt_2", event_type="customer.created", data={})
        )
        response = client.post(
            "/api/stripe/webhooks", content=b"{}", headers={"stripe-signature": "t=1,v1=x"}
        )
        assert response.status_code == 200
        assert response.json()["event_type"] == "customer.created"


class TestAdmin:
    def test_non_admin_forbidden(self, client, override_db, login_as):
        login_as(create_mock_user())
        assert client.get("/api/admin/users").status_code == 403

    def test_list_users(self, client, override_db, login_as, admin_user):
        login_as(admin_user)
        users = [create_mock_user(email=f"u{i}@example.com") for i in range(3)]
        override_db.execute = AsyncMock(
            side_effect=[make_result(scalar=3), make_result(scalars=users)]
        )

        response = client.get("/api/admin/users", params={"page": 1, "page_size": 2})

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 3
        assert body["total_pages"] == 2

    def test_cannot_ban_self(self, client, override_db, login_as, admin_user):
        login_as(admin_user)
        override_db.get = AsyncMock(return_value=admin_user)
        response = client.patch(f"/api/admin/users/{admin_user.id}", json={"banned": True})
        assert response.status_code == 400

    def test_ban_user(self, client, override_db, login_as, admin_user, free_user):
        login_as(admin_user)
        override_db.get = AsyncMock(return_value=free_user)
        response = client.patch(
            f"/api/admin/users/{free_user.id}", json={"banned": True, "ban_reason": "abuse"}
        )
        assert response.status_code == 200
        assert free_user.banned is True
        assert free_user.ban_reason == "abuse"

    def test_unknown_user_404(self, client, override_db, login_as, admin_user):
        login_as(admin_user)
        assert client.get(f"/api/admin/users/{uuid4()}").status_code == 404


class TestUserRoutes:
    def test_therapists_public(self, client):
        response = client.get("/api/therapists")
        assert response.status_code == 200
        assert len(response.json()) == 8

    def test_select_unknown_therapist(self, client, override_db, login_as):
        login_as(create_mock_user())
        response = client.post("/api/user/select-therapist", json={"therapist_id": "dr-nobody"})
        assert response.status_code == 400

    def test_preferred_language(self, client, override_db, login_as):
        user = login_as(create_mock_user())
        response = client.post("/api/user/preferred-language", json={"language": "es"})
        assert response.status_code == 200
        assert user.preferred_language == "es"

    @pytest.mark.parametrize(
        ("country", "first_contact"),
        [
            ("Kenya", "Befrienders Kenya"),
            ("united kingdom", "Samaritans"),
            ("Atlantis", "International Association for Suicide Prevention"),
            (None, "International Association for Suicide Prevention"),
        ],
    )
    def test_emergency_contacts(self, client, override_db, login_as, country, first_contact):
        user = login_as(create_mock_user())
        user.country = country

        response = client.get("/api/safety/emergency-contacts")

        assert response.status_code == 200
        body = response.json()
        assert body["country"] == country
        assert body["has_contacts"] is True
        assert body["emergency_contacts"][0]["name"] == first_contact

    def test_emergency_contacts_need_session(self, client, override_db):
        assert client.get("/api/safety/emergency-contacts").status_code == 401


class TestChatAgainstDatabase:
    async def test_lost_credit_race_still_returns_reply(
        self, async_client, override_sqlite_db, login_as, fake_llm
    ):
        user = login_as(await create_db_user(override_sqlite_db, chat_credits=0))
        user_id = user.id

        # The up-front check passed before a concurrent message spent the credits
        with (
            patch(
                "haven.api.chat_routes.CreditService.can_use_feature",
                AsyncMock(return_value=FeatureAccess(allowed=True)),
            ),
            patch("haven.api.chat_routes.run_mood_tracking", AsyncMock()) as track,
        ):
            response = await async_client.post("/api/chat", json={"message": "Hello"})

        assert response.status_code == 200
        body = response.json()
        assert body["credits_used"] == 0
        assert body["reply"] == "I hear you. Tell me more about that."
        assert track.await_args[0][0] == user_id
        stored = await override_sqlite_db.scalar(
            select(func.count()).select_from(ChatMessage)
        )
        assert stored == 2


class TestAdminCreditGrants:
    async def test_unknown_user_404(self, async_client, override_sqlite_db, login_as):
        login_as(await create_db_user(override_sqlite_db, role=UserRole.ADMIN.value))

        response = await async_client.post(
            f"/api/admin/users/{uuid4()}/credits", json={"feature": "voice", "credits": 500}
        )

        assert response.status_code == 404
        recorded = await override_sqlite_db.scalar(
            select(func.count()).select_from(Transaction)
        )
        assert recorded == 0

    async def test_grant_recorded_as_adjustment(
        self, async_client, override_sqlite_db, login_as
    ):
        admin = login_as(await create_db_user(override_sqlite_db, role=UserRole.ADMIN.value))
        admin_id = admin.id
        target = await create_db_user(override_sqlite_db, voice_credits_from_topup=100)
        target_id = target.id

        response = await async_client.post(
            f"/api/admin/users/{target_id}/credits",
            json={"feature": "voice", "credits": 500, "reason": "Outage credit"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["credits_added"] == 500

        transaction = await override_sqlite_db.scalar(select(Transaction))
        assert str(transaction.id) == body["transaction_id"]
        assert transaction.user_id == target_id
        assert transaction.type == "adjustment"
        assert transaction.amount_cents == 0
        assert transaction.transaction_metadata["granted_by"] == str(admin_id)

        stored = await override_sqlite_db.get(User, target_id)
        assert stored.voice_credits_from_topup == 600

    async def test_non_admin_forbidden(self, async_client, override_sqlite_db, login_as):
        login_as(await create_db_user(override_sqlite_db))
        target = await create_db_user(override_sqlite_db)

        response = await async_client.post(
            f"/api/admin/users/{target.id}/credits", json={"feature": "chat", "credits": 10}
        )

        assert response.status_code == 403

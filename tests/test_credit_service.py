"""
Tests for CreditService.

Covers row-locked deductions, write verification, duration billing and the
scheduled usage resets.
"""

from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest

from haven.db.models import UsageLog
from haven.exceptions import (
    DataIntegrityError,
    InsufficientCreditsError,
    UsageLimitExceededError,
    UserNotFoundError,
    WriteVerificationError,
)
from haven.models.api import Feature
from haven.services.credits import CreditService
from tests.conftest import create_mock_user, make_result


def _service_for(db_session: AsyncMock, user: MagicMock | None) -> CreditService:
    db_session.execute = AsyncMock(return_value=make_result(scalar=user))
    db_session.get = AsyncMock(return_value=user)
    return CreditService(db_session)


class TestCanUseFeature:
    async def test_unknown_user_denied(self, db_session: AsyncMock):
        access = await CreditService(db_session).can_use_feature(uuid4(), Feature.CHAT)
        assert access.allowed is False
        assert access.reason == "User not found"

    async def test_free_user_allowed(self, db_session: AsyncMock, free_user: MagicMock):
        access = await _service_for(db_session, free_user).can_use_feature(
            free_user.id, Feature.CHAT
        )
        assert access.allowed is True
        assert access.remaining == 200

    async def test_stale_usage_counters_committed(self, db_session: AsyncMock):
        user = create_mock_user(subscription_type="voice_only", voice_credits_used_today=300)
        user.last_daily_reset = None
        access = await _service_for(db_session, user).can_use_feature(user.id, Feature.VOICE)
        assert access.allowed is True
        assert user.voice_credits_used_today == 0
        db_session.commit.assert_awaited()


class TestDeductCredits:
    async def test_deducts_and_logs_usage(self, db_session: AsyncMock, free_user: MagicMock):
        thread_id = uuid4()
        result = await _service_for(db_session, free_user).deduct_credits(
            free_user.id, 5, Feature.CHAT, thread_id=thread_id
        )

        assert result.credits_used == 5
        assert result.remaining == 195
        assert free_user.chat_credits == 195

        usage = db_session.add.call_args[0][0]
        assert isinstance(usage, UsageLog)
        assert usage.type == "chat"
        assert usage.credits_used == 5
        assert usage.thread_id == thread_id
        assert usage.usage_metadata["plan"] == "free_trial"
        db_session.commit.assert_awaited_once()

    async def test_premium_chat_is_unlimited(
        self, db_session: AsyncMock, premium_user: MagicMock
    ):
        result = await _service_for(db_session, premium_user).deduct_credits(
            premium_user.id, 5, Feature.CHAT
        )
        assert result.remaining is None
        assert premium_user.chat_credits == 200

    async def test_user_not_found(self, db_session: AsyncMock):
        with pytest.raises(UserNotFoundError):
            await _service_for(db_session, None).deduct_credits(uuid4(), 5, Feature.CHAT)

    async def test_insufficient_rolls_back(self, db_session: AsyncMock):
        user = create_mock_user(chat_credits=2)
        with pytest.raises(InsufficientCreditsError):
            await _service_for(db_session, user).deduct_credits(user.id, 5, Feature.CHAT)
        db_session.rollback.assert_awaited_once()
        db_session.add.assert_not_called()
        db_session.commit.assert_not_awaited()

    async def test_voice_only_limit(self, db_session: AsyncMock, voice_only_user: MagicMock):
        voice_only_user.voice_credits_used_today = 295
        with pytest.raises(UsageLimitExceededError):
            await _service_for(db_session, voice_only_user).deduct_credits(
                voice_only_user.id, 10, Feature.VOICE
            )
        db_session.rollback.assert_awaited_once()

    async def test_vanished_user_fails_verification(
        self, db_session: AsyncMock, free_user: MagicMock
    ):
        service = _service_for(db_session, free_user)
        db_session.get = AsyncMock(return_value=None)
        with pytest.raises(WriteVerificationError):
            await service.deduct_credits(free_user.id, 5, Feature.CHAT)
        db_session.commit.assert_not_awaited()

    async def test_negative_pool_fails_integrity_check(
        self, db_session: AsyncMock, free_user: MagicMock
    ):
        service = _service_for(db_session, free_user)
        corrupted = create_mock_user(user_id=free_user.id, voice_credits=-1)
        db_session.get = AsyncMock(return_value=corrupted)
        with pytest.raises(DataIntegrityError):
            await service.deduct_credits(free_user.id, 5, Feature.CHAT)


class TestDeductVoiceByDuration:
    async def test_bills_started_minutes(self, db_session: AsyncMock, free_user: MagicMock):
        result = await _service_for(db_session, free_user).deduct_voice_by_duration(
            free_user.id, user_seconds=45, bot_seconds=30
        )
        assert result.minutes_used == 2
        assert result.credits_used == 20
        assert free_user.voice_credits == 180

        usage = db_session.add.call_args[0][0]
        assert usage.usage_metadata["user_speaking_seconds"] == 45
        assert usage.usage_metadata["minutes_used"] == 2

    async def test_zero_seconds_deducts_nothing(
        self, db_session: AsyncMock, free_user: MagicMock
    ):
        result = await _service_for(db_session, free_user).deduct_voice_by_duration(
            free_user.id, user_seconds=0, bot_seconds=0
        )
        assert result.credits_used == 0
        assert result.minutes_used == 0
        assert result.remaining == 200
        db_session.add.assert_not_called()


class TestTopupAndResets:
    async def test_add_topup_credits(self, db_session: AsyncMock, free_user: MagicMock):
        total = await _service_for(db_session, free_user).add_topup_credits(
            free_user.id, Feature.VOICE, 1000
        )
        assert total == 1200
        db_session.commit.assert_awaited_once()

    async def test_add_topup_unknown_user(self, db_session: AsyncMock):
        with pytest.raises(UserNotFoundError):
            await _service_for(db_session, None).add_topup_credits(uuid4(), Feature.CHAT, 10)

    async def test_daily_reset_returns_rowcount(self, db_session: AsyncMock):
        db_session.execute = AsyncMock(return_value=make_result(rowcount=42))
        assert await CreditService(db_session).reset_daily_usage() == 42
        db_session.commit.assert_awaited_once()

    async def test_monthly_reset_returns_rowcount(self, db_session: AsyncMock):
        db_session.execute = AsyncMock(return_value=make_result(rowcount=7))
        assert await CreditService(db_session).reset_monthly_usage() == 7

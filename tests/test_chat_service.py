"""
Tests for ChatService and therapist personas.

The LLM client is mocked; credit deduction is patched where the test cares
about its outcome. Deduction races run against a real SQLite session.
"""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from haven.db.models import ChatMessage, ChatThread, UsageLog, User
from haven.exceptions import (
    InsufficientCreditsError,
    LLMProviderError,
    ThreadAccessDeniedError,
    ThreadNotFoundError,
)
from haven.models.api import Feature, MessageRole
from haven.models.domain import DeductionResult
from haven.services.chat import (
    THREAD_TITLE_MAX_LENGTH,
    ChatService,
    build_system_prompt,
    thread_title_from_message,
)
from haven.services.therapists import (
    DEFAULT_THERAPIST_ID,
    get_therapist,
    is_supported_language,
    list_therapists,
)
from tests.conftest import create_db_user, make_result


def _thread(user_id, thread_id=None) -> MagicMock:
    thread = MagicMock(spec=ChatThread)
    thread.id = thread_id or uuid4()
    thread.user_id = user_id
    return thread


def _message(role: str, content: str) -> MagicMock:
    message = MagicMock(spec=ChatMessage)
    message.role = role
    message.content = content
    return message


class TestTherapists:
    def test_eight_personas(self):
        therapists = list_therapists()
        assert len(therapists) == 8
        assert len({t.language for t in therapists}) == 8

    def test_default_exists(self):
        assert get_therapist(DEFAULT_THERAPIST_ID).language == "en"

    def test_unknown(self):
        assert get_therapist("dr-nobody") is None
        assert get_therapist(None) is None

    def test_supported_language(self):
        assert is_supported_language("ja") is True
        assert is_supported_language("xx") is False
        assert is_supported_language(None) is False


class TestPromptAndTitle:
    def test_short_title_kept(self):
        assert thread_title_from_message("  I feel   stuck  ") == "I feel stuck"

    def test_long_title_truncated(self):
        title = thread_title_from_message("word " * 40)
        assert len(title) <= THREAD_TITLE_MAX_LENGTH
        assert title.endswith("...")

    def test_prompt_includes_persona_language_and_profile(self, free_user: MagicMock):
        free_user.preferred_language = "fr"
        free_user.country = "Canada"
        free_user.therapy_needs = ["anxiety", "sleep"]
        therapist = get_therapist("marcel-dubois")

        prompt = build_system_prompt(free_user, therapist, datetime(2026, 3, 15, tzinfo=UTC))

        assert "Dr. Marcel Dubois" in prompt
        assert "Sunday, March 15, 2026" in prompt
        assert "Always reply in French." in prompt
        assert "Country: Canada" in prompt
        assert "Therapy needs: anxiety, sleep" in prompt
        assert "988" in prompt

    def test_prompt_without_profile(self, free_user: MagicMock):
        free_user.name = None
        prompt = build_system_prompt(free_user, get_therapist(DEFAULT_THERAPIST_ID))
        assert "What you know about the user" not in prompt


class TestSendMessage:
    async def test_new_thread(self, db_session: AsyncMock, llm_client, free_user: MagicMock):
        deduction = DeductionResult(free_user.id, Feature.CHAT, credits_used=5, remaining=195)
        with patch(
            "haven.services.chat.CreditService.deduct_credits",
            AsyncMock(return_value=deduction),
        ):
            result = await ChatService(db_session, llm_client).send_message(
                free_user, "I can't sleep lately"
            )

        assert result.reply == "I hear you. Tell me more about that."
        assert result.credits_used == 5
        assert [t.role for t in result.turns] == [MessageRole.USER, MessageRole.ASSISTANT]
        assert free_user.total_chat_sessions == 1

        added = [call[0][0] for call in db_session.add.call_args_list]
        thread = next(obj for obj in added if isinstance(obj, ChatThread))
        assert thread.title == "I can't sleep lately"
        assert thread.therapist_id == DEFAULT_THERAPIST_ID
        messages = [obj for obj in added if isinstance(obj, ChatMessage)]
        assert [m.role for m in messages] == ["user", "assistant"]

        conversation = llm_client.complete.call_args[0][0]
        assert conversation[0].role == MessageRole.SYSTEM
        assert conversation[-1].content == "I can't sleep lately"

    async def test_existing_thread_loads_history(
        self, db_session: AsyncMock, llm_client, free_user: MagicMock
    ):
        thread = _thread(free_user.id)
        db_session.get = AsyncMock(return_value=thread)
        # Newest first, as the query returns them
        db_session.execute = AsyncMock(
            return_value=make_result(
                scalars=[_message("assistant", "How are you?"), _message("user", "Hello")]
            )
        )
        with patch(
            "haven.services.chat.CreditService.deduct_credits",
            AsyncMock(return_value=DeductionResult(free_user.id, Feature.CHAT, 5, 190)),
        ):
            result = await ChatService(db_session, llm_client).send_message(
                free_user, "Not great", thread_id=thread.id
            )

        assert result.thread_id == thread.id
        conversation = llm_client.complete.call_args[0][0]
        assert [t.content for t in conversation[1:]] == ["Hello", "How are you?", "Not great"]
        assert len(result.turns) == 4
        assert free_user.total_chat_sessions == 0

    async def test_deduction_failure_reports_zero(
        self, db_session: AsyncMock, llm_client, free_user: MagicMock
    ):
        with patch(
            "haven.services.chat.CreditService.deduct_credits",
            AsyncMock(side_effect=InsufficientCreditsError("chat", 0, 5)),
        ):
            result = await ChatService(db_session, llm_client).send_message(free_user, "Hi")
        assert result.credits_used == 0
        assert result.reply

    async def test_llm_failure_persists_nothing(
        self, db_session: AsyncMock, llm_client, free_user: MagicMock
    ):
        llm_client.complete = AsyncMock(side_effect=LLMProviderError("rate limited"))
        with pytest.raises(LLMProviderError):
            await ChatService(db_session, llm_client).send_message(free_user, "Hi")
        added = [call[0][0] for call in db_session.add.call_args_list]
        assert not any(isinstance(obj, ChatMessage) for obj in added)
        db_session.commit.assert_not_awaited()

    async def test_selected_therapist_used(
        self, db_session: AsyncMock, llm_client, free_user: MagicMock
    ):
        free_user.selected_therapist_id = "yuki-tanaka"
        with patch(
            "haven.services.chat.CreditService.deduct_credits",
            AsyncMock(return_value=DeductionResult(free_user.id, Feature.CHAT, 5, 195)),
        ):
            await ChatService(db_session, llm_client).send_message(free_user, "Hi")
        system_prompt = llm_client.complete.call_args[0][0][0].content
        assert "Dr. Yuki Tanaka" in system_prompt


class TestDeniedDeductionAfterReply:
    """A message passed the up-front check, then a concurrent one spent the credits."""

    async def test_reply_kept_and_nothing_charged(
        self, sqlite_session: AsyncSession, llm_client
    ):
        user = await create_db_user(sqlite_session, chat_credits=0)
        user_id = user.id

        result = await ChatService(sqlite_session, llm_client).send_message(
            user, "I can't sleep lately"
        )

        assert result.credits_used == 0
        assert result.reply == "I hear you. Tell me more about that."

        roles = (
            await sqlite_session.scalars(
                select(ChatMessage.role).where(ChatMessage.thread_id == result.thread_id)
            )
        ).all()
        assert sorted(roles) == ["assistant", "user"]
        assert await sqlite_session.scalar(select(func.count()).select_from(UsageLog)) == 0

        stored = await sqlite_session.get(User, user_id)
        assert stored.chat_credits == 0
        assert stored.total_chat_sessions == 1

    async def test_existing_thread(self, sqlite_session: AsyncSession, llm_client):
        user = await create_db_user(sqlite_session, chat_credits=0)
        thread = ChatThread(user_id=user.id, title="Earlier", therapist_id="emma-johnson")
        sqlite_session.add(thread)
        await sqlite_session.commit()
        thread_id = thread.id

        result = await ChatService(sqlite_session, llm_client).send_message(
            user, "Still here", thread_id=thread_id
        )

        assert result.thread_id == thread_id
        assert result.credits_used == 0


class TestThreads:
    async def test_missing_thread(self, db_session: AsyncMock, llm_client):
        with pytest.raises(ThreadNotFoundError):
            await ChatService(db_session, llm_client).get_owned_thread(uuid4(), uuid4())

    async def test_foreign_thread(self, db_session: AsyncMock, llm_client):
        db_session.get = AsyncMock(return_value=_thread(uuid4()))
        with pytest.raises(ThreadAccessDeniedError):
            await ChatService(db_session, llm_client).get_owned_thread(uuid4(), uuid4())

    async def test_delete_thread(self, db_session: AsyncMock, llm_client):
        user_id = uuid4()
        thread = _thread(user_id)
        db_session.get = AsyncMock(return_value=thread)
        await ChatService(db_session, llm_client).delete_thread(user_id, thread.id)
        db_session.delete.assert_awaited_once_with(thread)
        db_session.commit.assert_awaited_once()

    async def test_end_voice_session_counts(
        self, db_session: AsyncMock, llm_client, free_user: MagicMock
    ):
        free_user.total_voice_sessions = 2
        total = await ChatService(db_session, llm_client).end_voice_session(free_user, None)
        assert total == 3

    async def test_end_voice_session_checks_ownership(
        self, db_session: AsyncMock, llm_client, free_user: MagicMock
    ):
        db_session.get = AsyncMock(return_value=_thread(uuid4()))
        with pytest.raises(ThreadAccessDeniedError):
            await ChatService(db_session, llm_client).end_voice_session(free_user, uuid4())
        assert free_user.total_voice_sessions == 0

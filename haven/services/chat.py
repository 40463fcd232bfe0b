"""
Chat Service - therapy conversations, threads and voice session bookkeeping.

A chat turn persists both messages before deducting credits. A deduction
failure after the reply was generated is logged and never surfaced.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from haven.config import settings
from haven.db.models import ChatMessage, ChatThread, User
from haven.exceptions import HavenError, ThreadAccessDeniedError, ThreadNotFoundError
from haven.models.api import (
    Feature,
    MessageItem,
    MessageRole,
    ThreadDetailResponse,
    ThreadSummary,
    TranscriptTurn,
)
from haven.models.domain import ConversationTurn
from haven.services.credits import CreditService
from haven.services.llm import LLMClient
from haven.services.plans import CreditCosts
from haven.services.therapists import (
    DEFAULT_THERAPIST_ID,
    SUPPORTED_LANGUAGES,
    Therapist,
    get_therapist,
)

logger = get_logger(__name__)

THREAD_TITLE_MAX_LENGTH = 80

BASE_SYSTEM_PROMPT = """You are {name}, {title}, working as a professional AI therapist \
on the Haven platform. The current date is {today}.

Your purpose is to provide emotional support and therapeutic guidance. Listen actively \
with empathy, validate feelings before offering guidance, and keep a warm, \
non-judgmental tone. Your focus areas are: {focus}.

Keep responses short and conversational, like a real therapy session. Ask brief, \
open-ended questions to understand the user's main concern.

This is a therapy-only platform. If the user moves to unrelated topics, gently bring \
the conversation back to how they are feeling.

If the user expresses suicidal thoughts or intent to self-harm, respond with deep \
empathy and always point them to immediate help: their local emergency number or a \
crisis line such as 988 in the US."""


@dataclass(frozen=True)
class ChatTurnResult:
    """Outcome of one chat exchange."""

    thread_id: UUID
    reply: str
    credits_used: int
    turns: tuple[ConversationTurn, ...]


def thread_title_from_message(message: str) -> str:
    title = " ".join(message.split())
    if len(title) <= THREAD_TITLE_MAX_LENGTH:
        return title
    return title[: THREAD_TITLE_MAX_LENGTH - 3].rstrip() + "..."


def build_system_prompt(user: User, therapist: Therapist, now: datetime | None = None) -> str:
    """Compose the system prompt from persona, language and the user's profile."""
    now = now or datetime.now(UTC)
    prompt = BASE_SYSTEM_PROMPT.format(
        name=therapist.name,
        title=therapist.title,
        today=now.strftime("%A, %B %d, %Y"),
        focus=", ".join(therapist.focus),
    )

    language = SUPPORTED_LANGUAGES.get(user.preferred_language, "English")
    prompt += f"\n\nAlways reply in {language}."

    profile = []
    if user.name:
        profile.append(f"Name: {user.name}")
    if user.country:
        profile.append(f"Country: {user.country}")
    if user.religion:
        profile.append(f"Religion: {user.religion}")
    if user.therapy_needs:
        profile.append(f"Therapy needs: {', '.join(user.therapy_needs)}")
    if user.preferred_therapy_style:
        profile.append(f"Preferred therapy style: {user.preferred_therapy_style}")
    if user.specific_concerns:
        profile.append(f"Specific concerns: {user.specific_concerns}")
    if profile:
        prompt += "\n\nWhat you know about the user:\n" + "\n".join(profile)
    return prompt


def thread_to_summary(thread: ChatThread) -> ThreadSummary:
    return ThreadSummary(
        id=thread.id,
        title=thread.title,
        therapist_id=thread.therapist_id,
        archived=thread.archived,
        created_at=thread.created_at,
        updated_at=thread.updated_at,
    )


def transcript_to_turns(transcript: Sequence[TranscriptTurn]) -> tuple[ConversationTurn, ...]:
    return tuple(ConversationTurn(role=t.role, content=t.content) for t in transcript)


class ChatService:
    def __init__(self, session: AsyncSession, llm: LLMClient) -> None:
        self.session = session
        self.llm = llm

    async def send_message(
        self, user: User, message: str, thread_id: UUID | None = None
    ) -> ChatTurnResult:
        """
        Generate a therapist reply and persist the exchange.

        Raises:
            ThreadNotFoundError: Supplied thread doesn't exist
            ThreadAccessDeniedError: Thread belongs to another user
            LLMProviderError: Reply could not be generated
        """
        # A denied deduction rolls the session back and expires loaded rows
        user_id = user.id
        therapist = get_therapist(user.selected_therapist_id) or get_therapist(
            DEFAULT_THERAPIST_ID
        )
        assert therapist is not None

        if thread_id is None:
            thread = await self._create_thread(user, message, therapist)
            history: list[ConversationTurn] = []
        else:
            thread = await self.get_owned_thread(user_id, thread_id)
            history = await self._load_history(thread.id)
        thread_id = thread.id

        conversation = [
            ConversationTurn(role=MessageRole.SYSTEM, content=build_system_prompt(user, therapist)),
            *history,
            ConversationTurn(role=MessageRole.USER, content=message),
        ]
        reply = await self.llm.complete(
            conversation,
            model=settings.chat_model,
            operation="chat_reply",
            max_tokens=settings.chat_max_tokens,
            temperature=settings.chat_temperature,
        )

        self.session.add(
            ChatMessage(thread_id=thread_id, role=MessageRole.USER.value, content=message)
        )
        self.session.add(
            ChatMessage(
                thread_id=thread_id,
                role=MessageRole.ASSISTANT.value,
                content=reply,
                message_metadata={"therapist_id": therapist.id, "model": settings.chat_model},
            )
        )
        thread.updated_at = datetime.now(UTC)
        await self.session.commit()

        credits_used = await self._deduct_chat_credits(user_id, thread_id)

        logger.info(
            "chat_turn_completed",
            user_id=str(user_id),
            thread_id=str(thread_id),
            therapist_id=therapist.id,
            credits_used=credits_used,
        )
        return ChatTurnResult(
            thread_id=thread_id,
            reply=reply,
            credits_used=credits_used,
            turns=(
                *history,
                ConversationTurn(role=MessageRole.USER, content=message),
                ConversationTurn(role=MessageRole.ASSISTANT, content=reply),
            ),
        )

    async def list_threads(self, user_id: UUID) -> list[ThreadSummary]:
        result = await self.session.execute(
            select(ChatThread)
            .where(ChatThread.user_id == user_id)
            .order_by(ChatThread.updated_at.desc())
        )
        return [thread_to_summary(t) for t in result.scalars().all()]

    async def get_thread_detail(self, user_id: UUID, thread_id: UUID) -> ThreadDetailResponse:
        thread = await self.get_owned_thread(user_id, thread_id)
        result = await self.session.execute(
            select(ChatMessage)
            .where(ChatMessage.thread_id == thread.id)
            .order_by(ChatMessage.created_at.asc())
        )
        messages = [
            MessageItem(
                id=m.id, role=MessageRole(m.role), content=m.content, created_at=m.created_at
            )
            for m in result.scalars().all()
        ]
        return ThreadDetailResponse(thread=thread_to_summary(thread), messages=messages)

    async def delete_thread(self, user_id: UUID, thread_id: UUID) -> None:
        thread = await self.get_owned_thread(user_id, thread_id)
        await self.session.execute(delete(ChatMessage).where(ChatMessage.thread_id == thread.id))
        await self.session.delete(thread)
        await self.session.commit()
        logger.info("chat_thread_deleted", user_id=str(user_id), thread_id=str(thread_id))

    async def get_owned_thread(self, user_id: UUID, thread_id: UUID) -> ChatThread:
        thread = await self.session.get(ChatThread, thread_id)
        if thread is None:
            raise ThreadNotFoundError(thread_id)
        if thread.user_id != user_id:
            logger.warning(
                "chat_thread_access_denied", user_id=str(user_id), thread_id=str(thread_id)
            )
            raise ThreadAccessDeniedError(thread_id, user_id)
        return thread

    async def end_voice_session(self, user: User, thread_id: UUID | None) -> int:
        """Count a finished voice session. Returns the user's new total."""
        if thread_id is not None:
            await self.get_owned_thread(user.id, thread_id)
        user.total_voice_sessions += 1
        await self.session.commit()
        logger.info(
            "voice_session_ended",
            user_id=str(user.id),
            thread_id=str(thread_id) if thread_id else None,
            total_voice_sessions=user.total_voice_sessions,
        )
        return user.total_voice_sessions

    async def _create_thread(self, user: User, message: str, therapist: Therapist) -> ChatThread:
        thread = ChatThread(
            user_id=user.id,
            title=thread_title_from_message(message),
            therapist_id=therapist.id,
        )
        self.session.add(thread)
        user.total_chat_sessions += 1
        await self.session.flush()
        logger.info("chat_thread_created", user_id=str(user.id), thread_id=str(thread.id))
        return thread

    async def _load_history(self, thread_id: UUID) -> list[ConversationTurn]:
        """Most recent messages of the thread, oldest first."""
        result = await self.session.execute(
            select(ChatMessage)
            .where(ChatMessage.thread_id == thread_id)
            .order_by(ChatMessage.created_at.desc())
            .limit(settings.chat_history_limit)
        )
        rows = list(result.scalars().all())
        rows.reverse()
        return [
            ConversationTurn(role=MessageRole(m.role), content=m.content)
            for m in rows
            if m.role != MessageRole.SYSTEM.value
        ]

    async def _deduct_chat_credits(self, user_id: UUID, thread_id: UUID) -> int:
        try:
            result = await CreditService(self.session).deduct_credits(
                user_id, CreditCosts.CHAT_MESSAGE, Feature.CHAT, thread_id=thread_id
            )
        except HavenError as exc:
            logger.warning(
                "chat_credit_deduction_failed",
                user_id=str(user_id),
                thread_id=str(thread_id),
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return 0
        return result.credits_used

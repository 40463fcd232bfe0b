"""
Mood Tracking - LLM sentiment classification of conversations and manual check-ins.

Conversation analysis is non-critical: every failure is logged and swallowed
so it never breaks the chat or voice flow that triggered it.
"""

import asyncio
import json
import math
import re
from collections import Counter
from collections.abc import Sequence
from datetime import UTC, date, datetime, timedelta
from uuid import UUID

from pydantic import BaseModel, Field, ValidationError
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from haven.config import settings
from haven.db.models import ChatMessage, ChatThread, MoodEntry, UsageLog, User
from haven.db.session import get_write_session
from haven.exceptions import LLMProviderError
from haven.models.api import (
    MessageRole,
    Sentiment,
    SessionInsightsResponse,
    SessionType,
    TodayMoodResponse,
    WeeklyMoodDay,
)
from haven.models.domain import ConversationTurn, MoodAnalysis
from haven.observability import metrics
from haven.services.llm import LLMClient, get_llm_client

logger = get_logger(__name__)


MOOD_ANALYSIS_PROMPT = """Analyze the emotional tone and mood of this therapy conversation.

Conversation:
{conversation}

Provide a JSON response with:
1. moodScore: A number from 1-10 where:
   - 1-3: Very low mood, depressed, distressed
   - 4-6: Okay mood, mixed feelings, moderate stress
   - 7-10: Good to great mood, positive, hopeful

2. sentiment: "positive", "neutral", or "negative"

3. notes: A brief 1-sentence summary of the emotional state (max 100 chars)

Return ONLY valid JSON in this format:
{{"moodScore": 5, "sentiment": "neutral", "notes": "Feeling stressed about work but hopeful"}}"""

_CODE_FENCE = re.compile(r"```(?:json)?\s*|\s*```")

MANUAL_ENTRY_NOTE = "Manual mood entry"


class _MoodPayload(BaseModel):
    """Shape of the model's JSON reply."""

    moodScore: int = Field(..., ge=1, le=10)
    sentiment: Sentiment
    notes: str | None = None


def parse_mood_response(text: str) -> MoodAnalysis | None:
    """Parse the model's reply, tolerating code fences. Invalid output yields None."""
    cleaned = _CODE_FENCE.sub("", text.strip()).strip()
    try:
        payload = _MoodPayload.model_validate(json.loads(cleaned))
    except (json.JSONDecodeError, ValidationError) as exc:
        logger.warning("mood_response_invalid", error=str(exc), response_preview=cleaned[:200])
        return None
    notes = payload.notes[:100] if payload.notes else None
    return MoodAnalysis(mood_score=payload.moodScore, sentiment=payload.sentiment, notes=notes)


def mood_emoji(score: int, notes: str | None = None) -> str:
    if score >= 9:
        return "😊"
    if score == 8:
        return "😌"
    if score >= 6:
        return "🙂"
    if score == 5:
        return "😐"
    if score == 4:
        return "😰" if notes and "anxious" in notes.lower() else "😓"
    if score == 3:
        return "😔"
    if score == 2:
        return "😢"
    return "😡"


def format_time_ago(then: datetime | None, now: datetime) -> str:
    if then is None:
        return "Never"
    seconds = (now - then).total_seconds()
    if seconds < 60:
        return "Just now"
    minutes = int(seconds // 60)
    if minutes < 60:
        return "1 minute ago" if minutes == 1 else f"{minutes} minutes ago"
    hours = minutes // 60
    if hours < 24:
        return "1 hour ago" if hours == 1 else f"{hours} hours ago"
    days = hours // 24
    if days == 1:
        return "Yesterday"
    return f"{days} days ago"


def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


class MoodTrackingService:
    """Mood analysis, persistence and read models for mood dashboards."""

    SAVE_ATTEMPTS = 3
    SAVE_BACKOFF_SECONDS = 0.5

    def __init__(self, session: AsyncSession, llm: LLMClient | None = None) -> None:
        self.session = session
        self.llm = llm

    async def analyze_mood(self, messages: Sequence[str]) -> MoodAnalysis | None:
        """Classify the mood of the given user messages. Returns None on any failure."""
        if not messages:
            return None
        if self.llm is None:
            raise RuntimeError("MoodTrackingService needs an LLM client to analyze mood")

        prompt = MOOD_ANALYSIS_PROMPT.format(conversation="\n".join(messages))
        try:
            reply = await self.llm.complete(
                [ConversationTurn(role=MessageRole.USER, content=prompt)],
                model=settings.mood_model,
                operation="mood_analysis",
                temperature=0.2,
            )
        except LLMProviderError as exc:
            metrics.record_mood_analysis("llm_error")
            logger.error("mood_analysis_failed", error=str(exc))
            return None

        analysis = parse_mood_response(reply)
        metrics.record_mood_analysis("success" if analysis else "invalid_response")
        return analysis

    async def save_mood_entry(
        self,
        user_id: UUID,
        analysis: MoodAnalysis,
        thread_id: UUID | None,
        session_type: SessionType | None,
    ) -> MoodEntry:
        """Insert one mood row dated today (UTC), retrying transient database errors."""
        attempt = 0
        while True:
            attempt += 1
            entry = MoodEntry(
                user_id=user_id,
                entry_date=datetime.now(UTC).date(),
                mood_score=analysis.mood_score,
                sentiment=analysis.sentiment.value,
                thread_id=thread_id,
                session_type=session_type.value if session_type else None,
                notes=analysis.notes,
            )
            try:
                self.session.add(entry)
                await self.session.commit()
            except SQLAlchemyError as exc:
                await self.session.rollback()
                logger.warning(
                    "mood_entry_save_failed",
                    user_id=str(user_id),
                    attempt=attempt,
                    max_attempts=self.SAVE_ATTEMPTS,
                    error=str(exc),
                )
                if attempt >= self.SAVE_ATTEMPTS:
                    raise
                await asyncio.sleep(self.SAVE_BACKOFF_SECONDS * attempt)
                continue

            logger.info(
                "mood_tracked",
                user_id=str(user_id),
                thread_id=str(thread_id) if thread_id else None,
                session_type=session_type.value if session_type else "manual",
                mood_score=analysis.mood_score,
                sentiment=analysis.sentiment.value,
            )
            return entry

    async def track_conversation_mood(
        self,
        user_id: UUID,
        thread_id: UUID | None,
        turns: Sequence[ConversationTurn],
        session_type: SessionType,
    ) -> MoodEntry | None:
        """Analyze the user's side of a conversation and store the result. Never raises."""
        try:
            user_messages = [
                t.content
                for t in turns
                if t.role == MessageRole.USER and t.content and t.content.strip()
            ]
            if not user_messages:
                logger.debug(
                    "mood_tracking_skipped", user_id=str(user_id), reason="no_user_messages"
                )
                return None

            analysis = await self.analyze_mood(user_messages)
            if analysis is None:
                return None
            return await self.save_mood_entry(user_id, analysis, thread_id, session_type)
        except Exception as exc:
            logger.error(
                "mood_tracking_failed",
                user_id=str(user_id),
                thread_id=str(thread_id) if thread_id else None,
                error=str(exc),
                exc_info=True,
            )
            return None

    async def record_manual_mood(
        self,
        user_id: UUID,
        mood_score: int,
        sentiment: Sentiment | None = None,
        notes: str | None = None,
    ) -> MoodEntry:
        analysis = MoodAnalysis(
            mood_score=mood_score,
            sentiment=sentiment or Sentiment.NEUTRAL,
            notes=notes or MANUAL_ENTRY_NOTE,
        )
        return await self.save_mood_entry(user_id, analysis, thread_id=None, session_type=None)

    async def get_today_mood(self, user_id: UUID) -> TodayMoodResponse:
        """Latest manual check-in for today, if any."""
        stmt = (
            select(MoodEntry)
            .where(
                MoodEntry.user_id == user_id,
                MoodEntry.entry_date == datetime.now(UTC).date(),
                MoodEntry.thread_id.is_(None),
            )
            .order_by(MoodEntry.created_at.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        entry = result.scalar_one_or_none()
        if entry is None:
            return TodayMoodResponse(has_tracked_today=False)
        return TodayMoodResponse(
            has_tracked_today=True,
            mood_score=entry.mood_score,
            emoji=mood_emoji(entry.mood_score, entry.notes),
        )

    async def get_weekly_mood(
        self, user_id: UUID, today: date | None = None
    ) -> list[WeeklyMoodDay]:
        """Daily average mood for the last 7 days, oldest first; 0 where nothing was recorded."""
        today = today or datetime.now(UTC).date()
        start = today - timedelta(days=6)
        stmt = select(MoodEntry.entry_date, MoodEntry.mood_score).where(
            MoodEntry.user_id == user_id,
            MoodEntry.entry_date >= start,
            MoodEntry.entry_date <= today,
        )
        result = await self.session.execute(stmt)

        scores: dict[date, list[int]] = {}
        for entry_date, score in result.all():
            scores.setdefault(entry_date, []).append(score)

        days = []
        for offset in range(7):
            day = start + timedelta(days=offset)
            day_scores = scores.get(day)
            mood = round_half_up(sum(day_scores) / len(day_scores)) if day_scores else 0
            days.append(WeeklyMoodDay(day=day.strftime("%a"), date=day.isoformat(), mood=mood))
        return days

    async def get_session_insights(self, user: User) -> SessionInsightsResponse:
        now = datetime.now(UTC)

        last_chat = await self.session.scalar(
            select(func.max(ChatMessage.created_at))
            .join(ChatThread, ChatThread.id == ChatMessage.thread_id)
            .where(ChatThread.user_id == user.id, ChatMessage.role == MessageRole.USER.value)
        )

        result = await self.session.execute(
            select(UsageLog.type, UsageLog.created_at, UsageLog.usage_metadata)
            .where(UsageLog.user_id == user.id, UsageLog.created_at >= now - timedelta(days=30))
            .order_by(UsageLog.created_at.desc())
        )
        logs = result.all()

        voice_logs = [log for log in logs if log.type == SessionType.VOICE.value]
        last_voice = voice_logs[0].created_at if voice_logs else None

        weekday_counts = Counter(log.created_at.strftime("%A") for log in logs)
        most_active_day = weekday_counts.most_common(1)[0][0] if weekday_counts else None

        minutes = [
            float(log.usage_metadata["minutes_used"])
            for log in voice_logs
            if log.usage_metadata and "minutes_used" in log.usage_metadata
        ]
        average_minutes = round(sum(minutes) / len(minutes), 1) if minutes else None

        return SessionInsightsResponse(
            last_chat_session=format_time_ago(last_chat, now),
            last_voice_session=format_time_ago(last_voice, now),
            most_active_day=most_active_day,
            average_voice_session_minutes=average_minutes,
            total_chat_sessions=user.total_chat_sessions,
            total_voice_sessions=user.total_voice_sessions,
        )


async def run_mood_tracking(
    user_id: UUID,
    thread_id: UUID | None,
    turns: Sequence[ConversationTurn],
    session_type: SessionType,
) -> None:
    """
    Background-task entry point.

    Opens its own session because request-scoped sessions are closed by the
    time background tasks run.
    """
    try:
        async with get_write_session() as session:
            service = MoodTrackingService(session, get_llm_client())
            await service.track_conversation_mood(user_id, thread_id, turns, session_type)
    except Exception as exc:
        logger.error("mood_tracking_session_failed", user_id=str(user_id), error=str(exc))

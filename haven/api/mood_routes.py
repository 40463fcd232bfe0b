"""
Mood Routes - manual check-ins, weekly mood and session insights.

NO DICTIONARIES - All requests/responses use Pydantic models.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from haven.api.dependencies import get_current_user
from haven.db.models import User
from haven.db.session import get_read_db, get_write_db
from haven.models.api import (
    SessionInsightsResponse,
    StatusMessageResponse,
    TodayMoodResponse,
    TrackMoodRequest,
    UserRole,
    WeeklyMoodResponse,
)
from haven.services.mood_tracking import MoodTrackingService, round_half_up

logger = get_logger(__name__)

router = APIRouter(prefix="/api/user")


@router.post("/track-mood", response_model=StatusMessageResponse)
async def track_mood(
    request: TrackMoodRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_write_db),
) -> StatusMessageResponse:
    """Record a manual mood check-in for today."""
    if not 1 <= request.mood_score <= 10:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid mood score. Must be between 1 and 10.",
        )

    await MoodTrackingService(db).record_manual_mood(
        user.id,
        round_half_up(request.mood_score),
        sentiment=request.sentiment,
        notes=request.notes,
    )
    return StatusMessageResponse(message="Mood tracked successfully")


@router.get("/check-today-mood", response_model=TodayMoodResponse)
async def check_today_mood(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_read_db),
) -> TodayMoodResponse:
    return await MoodTrackingService(db).get_today_mood(user.id)


@router.get("/weekly-mood", response_model=WeeklyMoodResponse)
async def get_weekly_mood(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_read_db),
) -> WeeklyMoodResponse:
    days = await MoodTrackingService(db).get_weekly_mood(user.id)
    return WeeklyMoodResponse(user_id=user.id, days=days)


@router.get("/weekly-mood/{user_id}", response_model=WeeklyMoodResponse)
async def get_weekly_mood_for_user(
    user_id: UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_read_db),
) -> WeeklyMoodResponse:
    """Weekly mood of any user; admins only, unless it is the caller's own."""
    if user_id != user.id and user.role != UserRole.ADMIN.value:
        logger.warning(
            "weekly_mood_access_denied", user_id=str(user.id), target_user_id=str(user_id)
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Forbidden",
        )
    days = await MoodTrackingService(db).get_weekly_mood(user_id)
    return WeeklyMoodResponse(user_id=user_id, days=days)


@router.get("/session-insights", response_model=SessionInsightsResponse)
async def get_session_insights(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_read_db),
) -> SessionInsightsResponse:
    return await MoodTrackingService(db).get_session_insights(user)

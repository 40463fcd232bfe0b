"""
User Service - profile, preferences, session counters and image upload allowance.
"""

import re
from datetime import UTC, datetime

from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from haven.config import settings
from haven.db.models import User
from haven.models.api import (
    ImageUploadCheckResponse,
    ProfileResponse,
    ProfileSetupRequest,
    SubscriptionType,
)
from haven.services.credits import effective_plan
from haven.services.therapists import Therapist, get_therapist, is_supported_language

logger = get_logger(__name__)

DATE_OF_BIRTH_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")

IMAGE_UPLOAD_PLANS = (SubscriptionType.CHAT_ONLY, SubscriptionType.PREMIUM)


class ProfileValidationError(ValueError):
    """Raised when profile input is malformed."""


def _utc_now() -> datetime:
    return datetime.now(UTC)


def profile_to_response(user: User) -> ProfileResponse:
    return ProfileResponse(
        id=user.id,
        name=user.name,
        email=user.email,
        profile_completed=user.profile_completed,
        date_of_birth=user.date_of_birth,
        gender=user.gender,
        country=user.country,
        religion=user.religion,
        therapy_needs=list(user.therapy_needs or []),
        preferred_therapy_style=user.preferred_therapy_style,
        specific_concerns=user.specific_concerns,
        preferred_language=user.preferred_language,
        selected_therapist_id=user.selected_therapist_id,
    )


def roll_image_usage(user: User, now: datetime) -> bool:
    """Zero the monthly image counter when the month has changed. Returns True if reset."""
    last = user.image_usage_reset_date
    if last is not None:
        last = last.astimezone(UTC) if last.tzinfo else last.replace(tzinfo=UTC)
        if (last.year, last.month) == (now.year, now.month):
            return False
    user.images_used_this_month = 0
    user.image_usage_reset_date = now
    return True


def evaluate_image_upload(user: User, now: datetime) -> ImageUploadCheckResponse:
    limit = settings.monthly_image_upload_limit
    roll_image_usage(user, now)
    used = user.images_used_this_month
    if effective_plan(user, now) not in IMAGE_UPLOAD_PLANS:
        return ImageUploadCheckResponse(
            can_upload=False,
            reason="Image uploads require the Chat Only or Premium plan",
            used=used,
            limit=limit,
        )
    if used >= limit:
        return ImageUploadCheckResponse(
            can_upload=False,
            reason=f"Monthly image upload limit reached ({limit}). Resets next month.",
            used=used,
            limit=limit,
        )
    return ImageUploadCheckResponse(can_upload=True, used=used, limit=limit)


class UserService:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def setup_profile(self, user: User, request: ProfileSetupRequest) -> User:
        """
        Save the onboarding profile. A skipped setup only marks the profile complete.

        Raises:
            ProfileValidationError: If date_of_birth is not YYYY-MM-DD
        """
        now = _utc_now()
        if not request.skipped:
            if request.date_of_birth and not DATE_OF_BIRTH_PATTERN.match(request.date_of_birth):
                raise ProfileValidationError("Date of birth must be in YYYY-MM-DD format")
            user.date_of_birth = request.date_of_birth
            user.gender = request.gender
            user.country = request.country
            user.religion = request.religion
            user.therapy_needs = [n.strip() for n in request.therapy_needs if n.strip()]
            user.preferred_therapy_style = request.preferred_therapy_style
            user.specific_concerns = request.specific_concerns

        user.profile_completed = True
        user.profile_last_updated = now
        await self.session.commit()
        logger.info("profile_updated", user_id=str(user.id), skipped=request.skipped)
        return user

    async def set_preferred_language(self, user: User, language: str) -> str:
        if not is_supported_language(language):
            raise ProfileValidationError(f"Unsupported language: {language}")
        user.preferred_language = language
        await self.session.commit()
        logger.info("preferred_language_updated", user_id=str(user.id), language=language)
        return language

    async def select_therapist(self, user: User, therapist_id: str) -> Therapist:
        therapist = get_therapist(therapist_id)
        if therapist is None:
            raise ProfileValidationError(f"Unknown therapist: {therapist_id}")
        user.selected_therapist_id = therapist.id
        await self.session.commit()
        logger.info("therapist_selected", user_id=str(user.id), therapist_id=therapist.id)
        return therapist

    async def check_image_upload(self, user: User) -> ImageUploadCheckResponse:
        now = _utc_now()
        result = evaluate_image_upload(user, now)
        await self.session.commit()
        return result

    async def record_image_upload(self, user: User) -> ImageUploadCheckResponse:
        """Consume one upload. Returns the pre-upload check when not allowed."""
        now = _utc_now()
        check = evaluate_image_upload(user, now)
        if not check.can_upload:
            await self.session.commit()
            return check
        user.images_used_this_month += 1
        await self.session.commit()
        logger.info(
            "image_upload_recorded", user_id=str(user.id), used=user.images_used_this_month
        )
        return ImageUploadCheckResponse(
            can_upload=user.images_used_this_month < check.limit,
            used=user.images_used_this_month,
            limit=check.limit,
        )

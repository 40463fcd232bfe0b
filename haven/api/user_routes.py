"""
User Routes - therapists, language, profile and emergency contacts.

NO DICTIONARIES - All requests/responses use Pydantic models.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from haven.api.dependencies import get_current_user
from haven.db.models import User
from haven.db.session import get_write_db
from haven.models.api import (
    EmergencyContactsResponse,
    PreferredLanguageRequest,
    PreferredLanguageResponse,
    ProfileResponse,
    ProfileSetupRequest,
    SelectedTherapistResponse,
    SelectTherapistRequest,
    TherapistResponse,
)
from haven.services.emergency_contacts import get_emergency_contacts
from haven.services.therapists import get_therapist, list_therapists
from haven.services.users import ProfileValidationError, UserService, profile_to_response

router = APIRouter()


@router.get("/api/therapists", response_model=list[TherapistResponse])
async def get_therapists() -> list[TherapistResponse]:
    return [t.to_response() for t in list_therapists()]


@router.get("/api/user/select-therapist", response_model=SelectedTherapistResponse)
async def get_selected_therapist(
    user: User = Depends(get_current_user),
) -> SelectedTherapistResponse:
    therapist = get_therapist(user.selected_therapist_id)
    return SelectedTherapistResponse(
        therapist_id=user.selected_therapist_id,
        therapist=therapist.to_response() if therapist else None,
    )


@router.post("/api/user/select-therapist", response_model=SelectedTherapistResponse)
async def select_therapist(
    request: SelectTherapistRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_write_db),
) -> SelectedTherapistResponse:
    if not request.therapist_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Therapist ID is required",
        )
    try:
        therapist = await UserService(db).select_therapist(user, request.therapist_id)
    except ProfileValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    return SelectedTherapistResponse(therapist_id=therapist.id, therapist=therapist.to_response())


@router.get("/api/user/preferred-language", response_model=PreferredLanguageResponse)
async def get_preferred_language(
    user: User = Depends(get_current_user),
) -> PreferredLanguageResponse:
    return PreferredLanguageResponse(language=user.preferred_language)


@router.post("/api/user/preferred-language", response_model=PreferredLanguageResponse)
async def set_preferred_language(
    request: PreferredLanguageRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_write_db),
) -> PreferredLanguageResponse:
    try:
        language = await UserService(db).set_preferred_language(user, request.language or "")
    except ProfileValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    return PreferredLanguageResponse(language=language)


@router.post("/api/user/profile-setup", response_model=ProfileResponse)
async def setup_profile(
    request: ProfileSetupRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_write_db),
) -> ProfileResponse:
    """Save the onboarding questionnaire, or mark it skipped."""
    try:
        user = await UserService(db).setup_profile(user, request)
    except ProfileValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    return profile_to_response(user)


@router.get("/api/user/profile", response_model=ProfileResponse)
async def get_profile(user: User = Depends(get_current_user)) -> ProfileResponse:
    return profile_to_response(user)


@router.get("/api/safety/emergency-contacts", response_model=EmergencyContactsResponse)
async def get_user_emergency_contacts(
    user: User = Depends(get_current_user),
) -> EmergencyContactsResponse:
    """Crisis helplines for the country on the user's profile."""
    contacts = [c.to_response() for c in get_emergency_contacts(user.country)]
    return EmergencyContactsResponse(
        country=user.country,
        emergency_contacts=contacts,
        has_contacts=bool(contacts),
    )

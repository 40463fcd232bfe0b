"""
Chat Routes - therapy chat, threads, voice session end and image upload allowance.

NO DICTIONARIES - All requests/responses use Pydantic models.
"""

from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from haven.api.dependencies import get_current_user, insufficient_credits_response
from haven.db.models import User
from haven.db.session import get_write_db
from haven.exceptions import LLMProviderError, ThreadAccessDeniedError, ThreadNotFoundError
from haven.models.api import (
    ChatRequest,
    ChatResponse,
    Feature,
    ImageUploadCheckResponse,
    SessionType,
    StatusMessageResponse,
    ThreadDetailResponse,
    ThreadListResponse,
    VoiceSessionEndRequest,
    VoiceSessionEndResponse,
)
from haven.services.chat import ChatService, transcript_to_turns
from haven.services.credits import CreditService
from haven.services.llm import LLMClient, get_llm_client
from haven.services.mood_tracking import run_mood_tracking
from haven.services.users import UserService

logger = get_logger(__name__)

router = APIRouter(prefix="/api/chat")


def _thread_error(exc: ThreadNotFoundError | ThreadAccessDeniedError) -> HTTPException:
    if isinstance(exc, ThreadAccessDeniedError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Thread not found")


@router.post(
    "",
    response_model=ChatResponse,
    responses={402: {"description": "Insufficient chat credits"}},
)
async def chat(
    request: ChatRequest,
    background_tasks: BackgroundTasks,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_write_db),
    llm: LLMClient = Depends(get_llm_client),
) -> ChatResponse | JSONResponse:
    """
    Send a message to the selected therapist.

    Credits are checked up front and deducted once the reply exists. Mood
    analysis of the thread runs after the response is sent.
    """
    user_id = user.id
    access = await CreditService(db).can_use_feature(user_id, Feature.CHAT)
    if not access.allowed:
        return insufficient_credits_response(
            access.reason or "Insufficient chat credits", credits_needed=access.credits_needed
        )

    try:
        result = await ChatService(db, llm).send_message(user, request.message, request.thread_id)
    except (ThreadNotFoundError, ThreadAccessDeniedError) as exc:
        raise _thread_error(exc) from exc
    except LLMProviderError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="The assistant is temporarily unavailable",
        ) from exc

    background_tasks.add_task(
        run_mood_tracking, user_id, result.thread_id, result.turns, SessionType.CHAT
    )
    return ChatResponse(
        thread_id=result.thread_id, reply=result.reply, credits_used=result.credits_used
    )


@router.get("/threads", response_model=ThreadListResponse)
async def list_threads(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_write_db),
    llm: LLMClient = Depends(get_llm_client),
) -> ThreadListResponse:
    return ThreadListResponse(threads=await ChatService(db, llm).list_threads(user.id))


@router.get("/threads/{thread_id}", response_model=ThreadDetailResponse)
async def get_thread(
    thread_id: UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_write_db),
    llm: LLMClient = Depends(get_llm_client),
) -> ThreadDetailResponse:
    try:
        return await ChatService(db, llm).get_thread_detail(user.id, thread_id)
    except (ThreadNotFoundError, ThreadAccessDeniedError) as exc:
        raise _thread_error(exc) from exc


@router.delete("/threads/{thread_id}", response_model=StatusMessageResponse)
async def delete_thread(
    thread_id: UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_write_db),
    llm: LLMClient = Depends(get_llm_client),
) -> StatusMessageResponse:
    try:
        await ChatService(db, llm).delete_thread(user.id, thread_id)
    except (ThreadNotFoundError, ThreadAccessDeniedError) as exc:
        raise _thread_error(exc) from exc
    return StatusMessageResponse(message="Thread deleted")


@router.post("/voice-session-end", response_model=VoiceSessionEndResponse)
async def voice_session_end(
    request: VoiceSessionEndRequest,
    background_tasks: BackgroundTasks,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_write_db),
    llm: LLMClient = Depends(get_llm_client),
) -> VoiceSessionEndResponse:
    """Count the finished voice session and analyze its transcript, if one was sent."""
    try:
        total = await ChatService(db, llm).end_voice_session(user, request.thread_id)
    except (ThreadNotFoundError, ThreadAccessDeniedError) as exc:
        raise _thread_error(exc) from exc

    if request.transcript:
        background_tasks.add_task(
            run_mood_tracking,
            user.id,
            request.thread_id,
            transcript_to_turns(request.transcript),
            SessionType.VOICE,
        )
    return VoiceSessionEndResponse(total_voice_sessions=total)


@router.get("/image-upload-check", response_model=ImageUploadCheckResponse)
async def image_upload_check(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_write_db),
) -> ImageUploadCheckResponse:
    return await UserService(db).check_image_upload(user)


@router.post("/image-upload", response_model=ImageUploadCheckResponse)
async def record_image_upload(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_write_db),
) -> ImageUploadCheckResponse:
    """Consume one image upload from the monthly allowance."""
    result = await UserService(db).record_image_upload(user)
    if not result.can_upload and result.reason:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=result.reason,
        )
    return result

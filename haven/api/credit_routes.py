"""
Credit Routes - credit status, feature checks, voice deductions and scheduled resets.

NO DICTIONARIES - All requests/responses use Pydantic models.
"""

from collections.abc import Awaitable
from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from haven.api.dependencies import (
    get_current_user,
    insufficient_credits_response,
    require_cron_secret,
)
from haven.db.models import User
from haven.db.session import get_write_db
from haven.exceptions import (
    DataIntegrityError,
    InsufficientCreditsError,
    UsageLimitExceededError,
    UserBannedError,
    UserNotFoundError,
    WriteVerificationError,
)
from haven.models.api import (
    CreditStatusResponse,
    CronHealthResponse,
    CronResetRequest,
    CronResetResponse,
    DeductionResponse,
    Feature,
    FeatureAccessResponse,
    ResetType,
    VoiceCreditDeductRequest,
    VoiceDurationDeductRequest,
)
from haven.models.domain import DeductionResult
from haven.services.credits import CreditService

logger = get_logger(__name__)

router = APIRouter()

CRON_ENDPOINTS = ["POST /api/cron/reset-credits {type: daily|monthly}"]


@router.get("/api/credits/status", response_model=CreditStatusResponse)
async def get_credit_status(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_write_db),
) -> CreditStatusResponse:
    """Current plan, pools and voice usage for the signed-in user."""
    try:
        return await CreditService(db).get_credit_status(user.id)
    except UserNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found",
        ) from exc


@router.get("/api/credits/check", response_model=FeatureAccessResponse)
async def check_feature_access(
    feature: Feature = Query(...),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_write_db),
) -> FeatureAccessResponse:
    access = await CreditService(db).can_use_feature(user.id, feature)
    return FeatureAccessResponse(
        feature=feature,
        allowed=access.allowed,
        reason=access.reason,
        credits_needed=access.credits_needed,
        remaining=access.remaining,
    )


async def _run_voice_deduction(
    coro: Awaitable[DeductionResult],
) -> DeductionResult | JSONResponse:
    """Await a deduction, mapping ledger errors to HTTP responses."""
    try:
        return await coro
    except InsufficientCreditsError as exc:
        return insufficient_credits_response(str(exc), credits_needed=exc.required)
    except UsageLimitExceededError as exc:
        return insufficient_credits_response(str(exc))
    except UserBannedError as exc:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=str(exc),
        ) from exc
    except UserNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found",
        ) from exc
    except (WriteVerificationError, DataIntegrityError) as exc:
        logger.error("voice_deduction_integrity_error", error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Database integrity error",
        ) from exc


@router.post(
    "/api/chat/voice-credit-deduct",
    response_model=DeductionResponse,
    responses={402: {"description": "Insufficient credits or voice limit reached"}},
)
async def deduct_voice_credits(
    request: VoiceCreditDeductRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_write_db),
) -> DeductionResponse | JSONResponse:
    """Deduct a fixed number of voice credits (client-metered sessions)."""
    result = await _run_voice_deduction(
        CreditService(db).deduct_credits(
            user.id, request.credits, Feature.VOICE, thread_id=request.thread_id
        )
    )
    if isinstance(result, JSONResponse):
        return result
    return DeductionResponse(remaining_credits=result.remaining, credits_used=result.credits_used)


@router.post(
    "/api/chat/voice-credit-deduct-duration",
    response_model=DeductionResponse,
    responses={402: {"description": "Insufficient credits or voice limit reached"}},
)
async def deduct_voice_by_duration(
    request: VoiceDurationDeductRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_write_db),
) -> DeductionResponse | JSONResponse:
    """Bill speaking time per started minute of combined user and assistant audio."""
    result = await _run_voice_deduction(
        CreditService(db).deduct_voice_by_duration(
            user.id,
            request.user_speaking_seconds,
            request.bot_speaking_seconds,
            thread_id=request.thread_id,
        )
    )
    if isinstance(result, JSONResponse):
        return result
    return DeductionResponse(
        remaining_credits=result.remaining,
        credits_used=result.credits_used,
        minutes_used=result.minutes_used,
    )


# =============================================================================
# Cron
# =============================================================================


@router.post(
    "/api/cron/reset-credits",
    response_model=CronResetResponse,
    dependencies=[Depends(require_cron_secret)],
)
async def reset_credits(
    request: CronResetRequest,
    db: AsyncSession = Depends(get_write_db),
) -> CronResetResponse:
    """Zero daily or monthly voice usage counters for every user."""
    try:
        reset_type = ResetType(request.type)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid type. Use 'daily' or 'monthly'",
        ) from exc

    service = CreditService(db)
    try:
        if reset_type == ResetType.DAILY:
            count = await service.reset_daily_usage()
        else:
            count = await service.reset_monthly_usage()
    except Exception as exc:
        logger.error("cron_reset_failed", type=reset_type.value, error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Cron job failed",
        ) from exc

    return CronResetResponse(type=reset_type, users_reset=count, timestamp=datetime.now(UTC))


@router.get("/api/cron/reset-credits", response_model=CronHealthResponse)
async def cron_health() -> CronHealthResponse:
    return CronHealthResponse(status="healthy", endpoints=CRON_ENDPOINTS)

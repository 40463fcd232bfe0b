"""
Admin API routes for user management.

All endpoints require the admin role.
"""

from datetime import UTC, datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from haven.api.dependencies import require_admin
from haven.db.models import Transaction, User
from haven.db.session import get_read_db, get_write_db
from haven.exceptions import UserNotFoundError
from haven.models.api import (
    AdminGrantCreditsRequest,
    AdminGrantCreditsResponse,
    AdminUserDetailResponse,
    AdminUserItem,
    AdminUserListResponse,
    AdminUserUpdateRequest,
    SubscriptionStatus,
    SubscriptionType,
    TransactionStatus,
    TransactionType,
    UserRole,
)
from haven.services.credits import CreditService, build_credit_status
from haven.services.mood_tracking import MoodTrackingService

logger = get_logger(__name__)

router = APIRouter(prefix="/api/admin")


def to_admin_item(user: User) -> AdminUserItem:
    return AdminUserItem(
        id=user.id,
        name=user.name,
        email=user.email,
        role=UserRole(user.role),
        banned=user.banned,
        ban_reason=user.ban_reason,
        subscription_type=SubscriptionType(user.subscription_type),
        subscription_status=SubscriptionStatus(user.subscription_status),
        created_at=user.created_at,
        last_login=user.last_login,
    )


async def _get_user_or_404(db: AsyncSession, user_id: UUID) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"User {user_id} not found",
        )
    return user


@router.get("/users", response_model=AdminUserListResponse)
async def list_users(
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=500, description="Items per page"),
    search: str | None = Query(None, description="Search by email"),
    db: AsyncSession = Depends(get_read_db),
    admin: User = Depends(require_admin),
) -> AdminUserListResponse:
    offset = (page - 1) * page_size

    stmt = select(User)
    if search:
        stmt = stmt.where(User.email.ilike(f"%{search.strip()}%"))

    total = (await db.execute(select(func.count()).select_from(stmt.subquery()))).scalar_one()

    stmt = stmt.order_by(User.created_at.desc()).offset(offset).limit(page_size)
    result = await db.execute(stmt)
    users = [to_admin_item(u) for u in result.scalars().all()]

    total_pages = (total + page_size - 1) // page_size

    logger.info(
        "admin_list_users",
        admin_id=str(admin.id),
        page=page,
        page_size=page_size,
        total=total,
    )

    return AdminUserListResponse(
        users=users,
        total=total,
        page=page,
        page_size=page_size,
        total_pages=total_pages,
    )


@router.get("/users/{user_id}", response_model=AdminUserDetailResponse)
async def get_user(
    user_id: UUID,
    db: AsyncSession = Depends(get_read_db),
    admin: User = Depends(require_admin),
) -> AdminUserDetailResponse:
    """User profile, credit status, weekly mood and session totals."""
    user = await _get_user_or_404(db, user_id)
    weekly_mood = await MoodTrackingService(db).get_weekly_mood(user.id)
    return AdminUserDetailResponse(
        user=to_admin_item(user),
        credits=build_credit_status(user, datetime.now(UTC)),
        weekly_mood=weekly_mood,
        total_chat_sessions=user.total_chat_sessions,
        total_voice_sessions=user.total_voice_sessions,
    )


@router.patch("/users/{user_id}", response_model=AdminUserItem)
async def update_user(
    user_id: UUID,
    request: AdminUserUpdateRequest,
    db: AsyncSession = Depends(get_write_db),
    admin: User = Depends(require_admin),
) -> AdminUserItem:
    """Change role, or ban/unban with a reason and optional expiry."""
    user = await _get_user_or_404(db, user_id)

    if user.id == admin.id and (
        request.banned or (request.role is not None and request.role != UserRole.ADMIN)
    ):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Admins cannot ban or demote themselves",
        )

    if request.role is not None:
        user.role = request.role.value
    if request.banned is not None:
        user.banned = request.banned
        if request.banned:
            user.ban_reason = request.ban_reason
            user.ban_expires = request.ban_expires
        else:
            user.ban_reason = None
            user.ban_expires = None

    await db.commit()

    logger.info(
        "admin_user_updated",
        admin_id=str(admin.id),
        user_id=str(user.id),
        role=user.role,
        banned=user.banned,
    )
    return to_admin_item(user)


@router.post("/users/{user_id}/credits", response_model=AdminGrantCreditsResponse)
async def grant_credits(
    user_id: UUID,
    request: AdminGrantCreditsRequest,
    db: AsyncSession = Depends(get_write_db),
    admin: User = Depends(require_admin),
) -> AdminGrantCreditsResponse:
    """Add top-up credits and record an adjustment transaction."""
    await _get_user_or_404(db, user_id)
    transaction = Transaction(
        user_id=user_id,
        type=TransactionType.ADJUSTMENT.value,
        amount_cents=0,
        credits_added=request.credits,
        status=TransactionStatus.SUCCEEDED.value,
        transaction_metadata={
            "feature": request.feature.value,
            "reason": request.reason,
            "granted_by": str(admin.id),
        },
    )
    db.add(transaction)
    try:
        await CreditService(db).add_topup_credits(user_id, request.feature, request.credits)
    except UserNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"User {user_id} not found",
        ) from exc

    logger.info(
        "admin_credits_granted",
        admin_id=str(admin.id),
        user_id=str(user_id),
        feature=request.feature.value,
        credits=request.credits,
    )
    return AdminGrantCreditsResponse(
        feature=request.feature,
        credits_added=request.credits,
        transaction_id=transaction.id,
    )

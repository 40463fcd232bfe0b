"""
Credit Service - Feature access checks and credit deduction.

Access rules depend on the plan in force:
- premium: chat and voice unlimited (voice usage still counted)
- chat_only: chat unlimited, voice from the voice pools
- voice_only: voice within daily/monthly allowances, chat from the chat pools
- free_trial (or a lapsed plan): both features from their pools

Pool deductions draw from top-up credits first, then the free allowance.
"""

import math
from dataclasses import replace
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from haven.db.models import User, UsageLog
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
    Feature,
    SubscriptionStatus,
    SubscriptionType,
)
from haven.models.domain import DeductionResult, FeatureAccess
from haven.observability import metrics
from haven.services.plans import CreditCosts

logger = get_logger(__name__)


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


# ============================================================================
# Policy
# ============================================================================


def is_banned(user: User, now: datetime) -> bool:
    if not user.banned:
        return False
    return user.ban_expires is None or _as_utc(user.ban_expires) > now


def plan_in_force(user: User, now: datetime) -> bool:
    """
    A paid plan grants privileges while active, or while canceled but paid
    through its end date.
    """
    if user.subscription_type == SubscriptionType.FREE_TRIAL.value:
        return False
    if user.subscription_status == SubscriptionStatus.ACTIVE.value:
        return True
    if (
        user.subscription_status == SubscriptionStatus.CANCELED.value
        and user.subscription_end_date is not None
    ):
        return _as_utc(user.subscription_end_date) > now
    return False


def effective_plan(user: User, now: datetime) -> SubscriptionType:
    if plan_in_force(user, now):
        return SubscriptionType(user.subscription_type)
    return SubscriptionType.FREE_TRIAL


def pool_total(user: User, feature: Feature) -> int:
    if feature == Feature.CHAT:
        return user.chat_credits + user.chat_credits_from_topup
    return user.voice_credits + user.voice_credits_from_topup


def roll_usage_periods(user: User, now: datetime) -> bool:
    """
    Zero the daily/monthly voice counters when the UTC day/month has changed
    since the last reset. Returns True if anything changed.
    """
    changed = False
    last_daily = user.last_daily_reset
    if last_daily is None or _as_utc(last_daily).date() != now.date():
        user.voice_credits_used_today = 0
        user.last_daily_reset = now
        changed = True

    last_monthly = user.last_monthly_reset
    if last_monthly is None or (
        (_as_utc(last_monthly).year, _as_utc(last_monthly).month) != (now.year, now.month)
    ):
        user.voice_credits_used_this_month = 0
        user.last_monthly_reset = now
        changed = True

    return changed


def voice_allowance_remaining(user: User) -> int:
    return max(
        0,
        min(
            user.daily_voice_credits - user.voice_credits_used_today,
            user.monthly_voice_credits - user.voice_credits_used_this_month,
        ),
    )


def evaluate_feature_access(
    user: User, feature: Feature, now: datetime, cost: int | None = None
) -> FeatureAccess:
    """Decide whether the user may start a unit of the feature right now."""
    cost = CreditCosts.for_feature(feature) if cost is None else cost

    if is_banned(user, now):
        return FeatureAccess(allowed=False, reason="Account is suspended")

    plan = effective_plan(user, now)
    total = pool_total(user, feature)

    if plan == SubscriptionType.PREMIUM:
        return FeatureAccess(allowed=True)

    if plan == SubscriptionType.CHAT_ONLY:
        if feature == Feature.CHAT:
            return FeatureAccess(allowed=True)
        if total >= cost:
            return FeatureAccess(allowed=True, remaining=total)
        return FeatureAccess(
            allowed=False,
            reason=(
                "Voice sessions are not included in the Chat Only plan. "
                "Upgrade your plan or buy a voice top-up."
            ),
            credits_needed=cost - total,
            remaining=total,
        )

    if plan == SubscriptionType.VOICE_ONLY and feature == Feature.VOICE:
        roll_usage_periods(user, now)
        if user.voice_credits_used_today + cost > user.daily_voice_credits:
            return FeatureAccess(
                allowed=False,
                reason=(
                    f"Daily voice limit reached ({user.daily_voice_credits} credits). "
                    "Resets tomorrow."
                ),
                remaining=voice_allowance_remaining(user),
            )
        if user.voice_credits_used_this_month + cost > user.monthly_voice_credits:
            return FeatureAccess(
                allowed=False,
                reason=(
                    f"Monthly voice limit reached ({user.monthly_voice_credits} credits). "
                    "Resets next month."
                ),
                remaining=voice_allowance_remaining(user),
            )
        return FeatureAccess(allowed=True, remaining=voice_allowance_remaining(user))

    if total >= cost:
        return FeatureAccess(allowed=True, remaining=total)
    return FeatureAccess(
        allowed=False,
        reason=f"Insufficient {feature.value} credits",
        credits_needed=cost - total,
        remaining=total,
    )


def apply_deduction(user: User, feature: Feature, amount: int, now: datetime) -> int | None:
    """
    Mutate the user's counters for a deduction of `amount` credits.

    Returns the remaining balance (pool or allowance) for the feature, or None
    when the plan is unlimited for it. Raises without mutating anything when
    the deduction cannot be covered.
    """
    if amount < 0:
        raise ValueError(f"amount cannot be negative: {amount}")
    if is_banned(user, now):
        raise UserBannedError(user.id, user.ban_reason, user.ban_expires)

    plan = effective_plan(user, now)

    if feature == Feature.VOICE and plan in (SubscriptionType.VOICE_ONLY, SubscriptionType.PREMIUM):
        roll_usage_periods(user, now)
        if plan == SubscriptionType.VOICE_ONLY:
            if user.voice_credits_used_today + amount > user.daily_voice_credits:
                raise UsageLimitExceededError(
                    "daily", user.daily_voice_credits, user.voice_credits_used_today
                )
            if user.voice_credits_used_this_month + amount > user.monthly_voice_credits:
                raise UsageLimitExceededError(
                    "monthly", user.monthly_voice_credits, user.voice_credits_used_this_month
                )
        user.voice_credits_used_today += amount
        user.voice_credits_used_this_month += amount
        if plan == SubscriptionType.PREMIUM:
            return None
        return voice_allowance_remaining(user)

    if plan == SubscriptionType.PREMIUM or (
        plan == SubscriptionType.CHAT_ONLY and feature == Feature.CHAT
    ):
        return None

    total = pool_total(user, feature)
    if total < amount:
        raise InsufficientCreditsError(feature.value, total, amount)

    if feature == Feature.CHAT:
        from_topup = min(user.chat_credits_from_topup, amount)
        user.chat_credits_from_topup -= from_topup
        user.chat_credits -= amount - from_topup
    else:
        from_topup = min(user.voice_credits_from_topup, amount)
        user.voice_credits_from_topup -= from_topup
        user.voice_credits -= amount - from_topup

    return total - amount


def grant_topup_credits(user: User, feature: Feature, credits: int) -> int:
    """Add purchased credits to the feature's top-up pool. Returns the new pool total."""
    if credits <= 0:
        raise ValueError(f"credits must be positive: {credits}")
    if feature == Feature.CHAT:
        user.chat_credits_from_topup += credits
    else:
        user.voice_credits_from_topup += credits
    return pool_total(user, feature)


def voice_minutes(user_seconds: float, bot_seconds: float) -> int:
    """Billable minutes for a voice exchange, rounded up."""
    if user_seconds < 0 or bot_seconds < 0:
        raise ValueError("Speaking durations cannot be negative")
    return math.ceil((user_seconds + bot_seconds) / 60)


def build_credit_status(user: User, now: datetime) -> CreditStatusResponse:
    roll_usage_periods(user, now)
    plan = effective_plan(user, now)
    return CreditStatusResponse(
        user_id=user.id,
        subscription_type=SubscriptionType(user.subscription_type),
        subscription_status=SubscriptionStatus(user.subscription_status),
        plan_in_force=plan_in_force(user, now),
        unlimited_chat=plan in (SubscriptionType.PREMIUM, SubscriptionType.CHAT_ONLY),
        unlimited_voice=plan == SubscriptionType.PREMIUM,
        chat_credits=user.chat_credits,
        voice_credits=user.voice_credits,
        chat_credits_from_topup=user.chat_credits_from_topup,
        voice_credits_from_topup=user.voice_credits_from_topup,
        total_chat_credits=pool_total(user, Feature.CHAT),
        total_voice_credits=pool_total(user, Feature.VOICE),
        daily_voice_limit=user.daily_voice_credits,
        monthly_voice_limit=user.monthly_voice_credits,
        voice_used_today=user.voice_credits_used_today,
        voice_used_this_month=user.voice_credits_used_this_month,
        subscription_end_date=user.subscription_end_date,
    )


# ============================================================================
# Service
# ============================================================================


class CreditService:
    """
    Credit ledger operations with row locking and write verification.

    Deductions lock the user row (SELECT FOR UPDATE) so concurrent requests
    cannot both spend the same credits.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def can_use_feature(self, user_id: UUID, feature: Feature) -> FeatureAccess:
        user = await self.session.get(User, user_id)
        if user is None:
            metrics.record_credit_check(feature.value, False)
            return FeatureAccess(allowed=False, reason="User not found")

        now = _utc_now()
        if roll_usage_periods(user, now):
            await self.session.commit()

        access = evaluate_feature_access(user, feature, now)
        metrics.record_credit_check(feature.value, access.allowed)
        logger.info(
            "feature_access_checked",
            user_id=str(user_id),
            feature=feature.value,
            allowed=access.allowed,
            reason=access.reason,
        )
        return access

    async def deduct_credits(
        self,
        user_id: UUID,
        amount: int,
        feature: Feature,
        thread_id: UUID | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> DeductionResult:
        """
        Deduct credits for a usage event and write a usage log row.

        Raises:
            UserNotFoundError: User doesn't exist
            UserBannedError: User is banned
            InsufficientCreditsError: Pool cannot cover the amount
            UsageLimitExceededError: Voice allowance would be exceeded
        """
        user = await self._lock_user_for_update(user_id)
        if user is None:
            raise UserNotFoundError(user_id)

        now = _utc_now()
        plan = effective_plan(user, now)

        try:
            remaining = apply_deduction(user, feature, amount, now)
        except (InsufficientCreditsError, UsageLimitExceededError) as exc:
            await self.session.rollback()
            reason = "limit" if isinstance(exc, UsageLimitExceededError) else "insufficient"
            metrics.record_denial(feature.value, reason)
            logger.info(
                "credit_deduction_denied",
                user_id=str(user_id),
                feature=feature.value,
                amount=amount,
                plan=plan.value,
                error=str(exc),
            )
            raise

        usage = UsageLog(
            user_id=user.id,
            type=feature.value,
            credits_used=amount,
            thread_id=thread_id,
            usage_metadata={"plan": plan.value, **(metadata or {})},
        )
        self.session.add(usage)
        await self.session.flush()

        verified = await self.session.get(User, user.id)
        if verified is None:
            raise WriteVerificationError(f"User {user.id} disappeared after deduction")
        if min(
            verified.chat_credits,
            verified.voice_credits,
            verified.chat_credits_from_topup,
            verified.voice_credits_from_topup,
        ) < 0:
            raise DataIntegrityError(f"Negative credit pool for user {user.id}")

        await self.session.commit()

        metrics.record_deduction(feature.value, plan.value, amount)
        logger.info(
            "credits_deducted",
            user_id=str(user_id),
            feature=feature.value,
            amount=amount,
            plan=plan.value,
            remaining=remaining,
            thread_id=str(thread_id) if thread_id else None,
        )
        return DeductionResult(
            user_id=user.id, feature=feature, credits_used=amount, remaining=remaining
        )

    async def deduct_voice_by_duration(
        self,
        user_id: UUID,
        user_seconds: float,
        bot_seconds: float,
        thread_id: UUID | None = None,
    ) -> DeductionResult:
        """Deduct voice credits for speaking time, billed per started minute."""
        minutes = voice_minutes(user_seconds, bot_seconds)
        credits = minutes * CreditCosts.VOICE_PER_MINUTE

        if credits == 0:
            user = await self.session.get(User, user_id)
            if user is None:
                raise UserNotFoundError(user_id)
            status = build_credit_status(user, _utc_now())
            return DeductionResult(
                user_id=user_id,
                feature=Feature.VOICE,
                credits_used=0,
                remaining=None if status.unlimited_voice else status.total_voice_credits,
                minutes_used=0,
            )

        result = await self.deduct_credits(
            user_id,
            credits,
            Feature.VOICE,
            thread_id=thread_id,
            metadata={
                "user_speaking_seconds": user_seconds,
                "bot_speaking_seconds": bot_seconds,
                "minutes_used": minutes,
            },
        )
        return replace(result, minutes_used=minutes)

    async def add_topup_credits(self, user_id: UUID, feature: Feature, credits: int) -> int:
        """Grant top-up credits outside of a webhook (admin adjustments). Commits."""
        user = await self._lock_user_for_update(user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        total = grant_topup_credits(user, feature, credits)
        await self.session.commit()
        metrics.record_grant(feature.value, "adjustment", credits)
        logger.info(
            "topup_credits_added",
            user_id=str(user_id),
            feature=feature.value,
            credits=credits,
            pool_total=total,
        )
        return total

    async def get_credit_status(self, user_id: UUID) -> CreditStatusResponse:
        user = await self.session.get(User, user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        return build_credit_status(user, _utc_now())

    async def reset_daily_usage(self) -> int:
        """Zero every user's daily voice counter. Returns rows affected."""
        now = _utc_now()
        result = await self.session.execute(
            update(User).values(voice_credits_used_today=0, last_daily_reset=now)
        )
        await self.session.commit()
        count = result.rowcount or 0
        metrics.usage_resets_total.labels(period="daily").inc()
        logger.info("daily_usage_reset", users_reset=count)
        return count

    async def reset_monthly_usage(self) -> int:
        """Zero every user's monthly voice counter. Returns rows affected."""
        now = _utc_now()
        result = await self.session.execute(
            update(User).values(voice_credits_used_this_month=0, last_monthly_reset=now)
        )
        await self.session.commit()
        count = result.rowcount or 0
        metrics.usage_resets_total.labels(period="monthly").inc()
        logger.info("monthly_usage_reset", users_reset=count)
        return count

    async def _lock_user_for_update(self, user_id: UUID) -> User | None:
        """Lock user row for update (SELECT FOR UPDATE)."""
        stmt = (
            select(User)
            .where(User.id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

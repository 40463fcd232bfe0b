"""
Database Models - SQLAlchemy ORM models with strict typing.

NO DICTIONARIES - All columns use Mapped[] type annotations.
"""

from datetime import UTC, date, datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class User(Base):
    """
    ORM model for users table.

    Holds identity, subscription state, credit pools, voice usage counters
    and the therapy profile.
    """

    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)

    # Identity
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    email_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    password_hash: Mapped[str | None] = mapped_column(Text, nullable=True)
    image: Mapped[str | None] = mapped_column(Text, nullable=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="user")

    # Moderation
    banned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    ban_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    ban_expires: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_login: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Subscription
    subscription_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default="free_trial"
    )
    subscription_status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    stripe_customer_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    stripe_subscription_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    subscription_end_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Credit pools (free allowance and purchased top-ups)
    chat_credits: Mapped[int] = mapped_column(Integer, nullable=False, default=200)
    voice_credits: Mapped[int] = mapped_column(Integer, nullable=False, default=200)
    chat_credits_from_topup: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    voice_credits_from_topup: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Voice allowances and usage counters
    daily_voice_credits: Mapped[int] = mapped_column(Integer, nullable=False, default=300)
    monthly_voice_credits: Mapped[int] = mapped_column(Integer, nullable=False, default=9000)
    voice_credits_used_today: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    voice_credits_used_this_month: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    last_daily_reset: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_monthly_reset: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Preferences
    preferred_language: Mapped[str] = mapped_column(String(8), nullable=False, default="en")
    selected_therapist_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Therapy profile
    profile_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    date_of_birth: Mapped[str | None] = mapped_column(String(10), nullable=True)
    gender: Mapped[str | None] = mapped_column(String(50), nullable=True)
    country: Mapped[str | None] = mapped_column(String(100), nullable=True)
    religion: Mapped[str | None] = mapped_column(String(100), nullable=True)
    therapy_needs: Mapped[list[str] | None] = mapped_column(JSONB, nullable=True)
    preferred_therapy_style: Mapped[str | None] = mapped_column(String(100), nullable=True)
    specific_concerns: Mapped[str | None] = mapped_column(Text, nullable=True)
    profile_last_updated: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Session counters
    total_chat_sessions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_voice_sessions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Image uploads
    images_used_this_month: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    image_usage_reset_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("chat_credits >= 0", name="ck_users_chat_credits_non_negative"),
        CheckConstraint("voice_credits >= 0", name="ck_users_voice_credits_non_negative"),
        CheckConstraint(
            "chat_credits_from_topup >= 0", name="ck_users_chat_topup_non_negative"
        ),
        CheckConstraint(
            "voice_credits_from_topup >= 0", name="ck_users_voice_topup_non_negative"
        ),
        CheckConstraint("role IN ('user', 'admin')", name="ck_users_role"),
        CheckConstraint(
            "subscription_type IN ('free_trial', 'chat_only', 'voice_only', 'premium')",
            name="ck_users_subscription_type",
        ),
        CheckConstraint(
            "subscription_status IN ('active', 'canceled', 'past_due', 'incomplete')",
            name="ck_users_subscription_status",
        ),
        Index("idx_users_stripe_customer", "stripe_customer_id"),
        Index("idx_users_stripe_subscription", "stripe_subscription_id"),
        Index("idx_users_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<User(id={self.id}, email={self.email}, "
            f"subscription={self.subscription_type}/{self.subscription_status})>"
        )


class AuthSession(Base):
    """Opaque session token issued at sign-in."""

    __tablename__ = "auth_sessions"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    token: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    user: Mapped[User] = relationship("User", lazy="joined")

    __table_args__ = (
        Index("idx_auth_sessions_user", "user_id"),
        Index("idx_auth_sessions_expires", "expires_at"),
    )


class OAuthAccount(Base):
    """External identity (e.g. Google) linked to a user."""

    __tablename__ = "oauth_accounts"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    provider_account_id: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        UniqueConstraint("provider", "provider_account_id", name="uq_oauth_provider_account"),
        Index("idx_oauth_accounts_user", "user_id"),
    )


class Verification(Base):
    """One-time token: password resets and OAuth state."""

    __tablename__ = "verifications"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    identifier: Mapped[str] = mapped_column(String(255), nullable=False)
    value: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (Index("idx_verifications_identifier", "identifier"),)


class ChatThread(Base):
    """Conversation container."""

    __tablename__ = "chat_threads"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False, default="New conversation")
    therapist_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    archived: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (Index("idx_chat_threads_user_updated", "user_id", "updated_at"),)


class ChatMessage(Base):
    """Single conversation turn."""

    __tablename__ = "chat_messages"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    thread_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("chat_threads.id", ondelete="CASCADE"), nullable=False
    )
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    message_metadata: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata", JSONB, nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint(
            "role IN ('user', 'assistant', 'system')", name="ck_chat_messages_role"
        ),
        Index("idx_chat_messages_thread_created", "thread_id", "created_at"),
    )


class Transaction(Base):
    """
    Billing record linking a Stripe payment, subscription invoice or admin
    adjustment to the credits it granted.
    """

    __tablename__ = "transactions"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    credits_added: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    stripe_payment_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    stripe_subscription_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    stripe_invoice_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    transaction_metadata: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata", JSONB, nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint(
            "type IN ('subscription', 'topup', 'adjustment')", name="ck_transactions_type"
        ),
        CheckConstraint(
            "status IN ('pending', 'succeeded', 'failed', 'canceled')",
            name="ck_transactions_status",
        ),
        CheckConstraint("amount_cents >= 0", name="ck_transactions_amount_non_negative"),
        CheckConstraint("credits_added >= 0", name="ck_transactions_credits_non_negative"),
        Index("idx_transactions_user_created", "user_id", "created_at"),
        Index("idx_transactions_stripe_payment", "stripe_payment_id"),
        Index(
            "uq_transactions_stripe_invoice",
            "stripe_invoice_id",
            unique=True,
            postgresql_where=(stripe_invoice_id.isnot(None)),
        ),
    )


class UsageLog(Base):
    """One row per metered chat or voice deduction."""

    __tablename__ = "usage_logs"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[str] = mapped_column(String(10), nullable=False)
    credits_used: Mapped[int] = mapped_column(Integer, nullable=False)
    thread_id: Mapped[UUID | None] = mapped_column(PG_UUID(as_uuid=True), nullable=True)
    usage_metadata: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata", JSONB, nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("type IN ('chat', 'voice')", name="ck_usage_logs_type"),
        CheckConstraint("credits_used >= 0", name="ck_usage_logs_credits_non_negative"),
        Index("idx_usage_logs_user_created", "user_id", "created_at"),
    )


class MoodEntry(Base):
    """Mood score for a day, from conversation analysis or a manual check-in."""

    __tablename__ = "mood_entries"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    entry_date: Mapped[date] = mapped_column(Date, nullable=False)
    mood_score: Mapped[int] = mapped_column(Integer, nullable=False)
    sentiment: Mapped[str] = mapped_column(String(10), nullable=False)
    thread_id: Mapped[UUID | None] = mapped_column(PG_UUID(as_uuid=True), nullable=True)
    session_type: Mapped[str | None] = mapped_column(String(10), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("mood_score BETWEEN 1 AND 10", name="ck_mood_entries_score_range"),
        CheckConstraint(
            "sentiment IN ('positive', 'neutral', 'negative')", name="ck_mood_entries_sentiment"
        ),
        Index("idx_mood_entries_user_date", "user_id", "entry_date"),
    )

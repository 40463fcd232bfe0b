"""
API Models - Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field, field_validator


class SubscriptionType(str, Enum):
    """Plan a user is subscribed to."""

    FREE_TRIAL = "free_trial"
    CHAT_ONLY = "chat_only"
    VOICE_ONLY = "voice_only"
    PREMIUM = "premium"


class SubscriptionStatus(str, Enum):
    """Subscription lifecycle status (normalized from Stripe)."""

    ACTIVE = "active"
    CANCELED = "canceled"
    PAST_DUE = "past_due"
    INCOMPLETE = "incomplete"


class PlanType(str, Enum):
    """Purchasable products: the three subscriptions plus the one-time voice top-up."""

    CHAT_ONLY = "chat_only"
    VOICE_ONLY = "voice_only"
    PREMIUM = "premium"
    VOICE_TOPUP = "voice_topup"


class Feature(str, Enum):
    """Metered feature."""

    CHAT = "chat"
    VOICE = "voice"


class TransactionType(str, Enum):
    SUBSCRIPTION = "subscription"
    TOPUP = "topup"
    ADJUSTMENT = "adjustment"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"


class Sentiment(str, Enum):
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"


class SessionType(str, Enum):
    CHAT = "chat"
    VOICE = "voice"


class UserRole(str, Enum):
    USER = "user"
    ADMIN = "admin"


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class ResetType(str, Enum):
    DAILY = "daily"
    MONTHLY = "monthly"


# ============================================================================
# Shared
# ============================================================================


class InsufficientCreditsResponse(BaseModel):
    """402 body returned when a deduction or feature check fails."""

    error: str
    insufficient_credits: bool = True
    credits_needed: int | None = None


class StatusMessageResponse(BaseModel):
    success: bool = True
    message: str


# ============================================================================
# Credit Models
# ============================================================================


class CreditStatusResponse(BaseModel):
    """GET /api/credits/status response."""

    user_id: UUID
    subscription_type: SubscriptionType
    subscription_status: SubscriptionStatus
    plan_in_force: bool
    unlimited_chat: bool
    unlimited_voice: bool
    chat_credits: int
    voice_credits: int
    chat_credits_from_topup: int
    voice_credits_from_topup: int
    total_chat_credits: int
    total_voice_credits: int
    daily_voice_limit: int
    monthly_voice_limit: int
    voice_used_today: int
    voice_used_this_month: int
    subscription_end_date: datetime | None


class FeatureAccessResponse(BaseModel):
    """GET /api/credits/check response."""

    feature: Feature
    allowed: bool
    reason: str | None = None
    credits_needed: int | None = None
    remaining: int | None = None


class VoiceCreditDeductRequest(BaseModel):
    """POST /api/chat/voice-credit-deduct request body."""

    credits: int = Field(..., gt=0, le=100_000, description="Voice credits to deduct")
    thread_id: UUID | None = None


class VoiceDurationDeductRequest(BaseModel):
    """POST /api/chat/voice-credit-deduct-duration request body."""

    user_speaking_seconds: float = Field(..., ge=0, le=86_400)
    bot_speaking_seconds: float = Field(..., ge=0, le=86_400)
    thread_id: UUID | None = None


class DeductionResponse(BaseModel):
    success: bool = True
    remaining_credits: int | None
    credits_used: int
    minutes_used: int | None = None


class CronResetRequest(BaseModel):
    """POST /api/cron/reset-credits body. Type is validated by the route (400 on mismatch)."""

    type: str


class CronResetResponse(BaseModel):
    success: bool = True
    type: ResetType
    users_reset: int
    timestamp: datetime


class CronHealthResponse(BaseModel):
    status: str
    endpoints: list[str]


# ============================================================================
# Billing Models
# ============================================================================


class PlanResponse(BaseModel):
    plan_type: PlanType
    name: str
    price_cents: int
    recurring: bool
    unlimited_chat: bool
    unlimited_voice: bool
    daily_voice_credits: int
    monthly_voice_credits: int
    credits_added: int
    features: list[str]


class CheckoutSessionRequest(BaseModel):
    """POST /api/stripe/create-checkout-session request body."""

    plan_type: str = Field(..., min_length=1, max_length=50)


class CheckoutSessionResponse(BaseModel):
    session_id: str
    url: str | None


class TopupRequest(BaseModel):
    """POST /api/stripe/purchase-topup body. Amount in dollars."""

    amount: float


class TopupResponse(BaseModel):
    client_secret: str
    credits_to_add: int
    amount_cents: int


class CancelSubscriptionResponse(BaseModel):
    success: bool = True
    message: str
    subscription_end_date: datetime | None


class PortalSessionResponse(BaseModel):
    url: str


class TransactionItem(BaseModel):
    id: UUID
    type: TransactionType
    amount_cents: int
    credits_added: int
    status: TransactionStatus
    created_at: datetime


class SubscriptionStatusResponse(BaseModel):
    """GET /api/stripe/subscription-status response."""

    subscription_type: SubscriptionType
    subscription_status: SubscriptionStatus
    subscription_end_date: datetime | None
    has_stripe_customer: bool
    credits: CreditStatusResponse
    plans: list[PlanResponse]
    recent_transactions: list[TransactionItem]


class WebhookResponse(BaseModel):
    received: bool = True
    event_type: str | None = None


# ============================================================================
# Mood Models
# ============================================================================


class TrackMoodRequest(BaseModel):
    """POST /api/user/track-mood body. Score range is checked by the route (400)."""

    mood_score: float
    sentiment: Sentiment | None = None
    notes: str | None = Field(None, max_length=500)


class TodayMoodResponse(BaseModel):
    has_tracked_today: bool
    mood_score: int | None = None
    emoji: str | None = None


class WeeklyMoodDay(BaseModel):
    day: str
    date: str  # ISO YYYY-MM-DD
    mood: int


class WeeklyMoodResponse(BaseModel):
    user_id: UUID
    days: list[WeeklyMoodDay]


class SessionInsightsResponse(BaseModel):
    last_chat_session: str
    last_voice_session: str
    most_active_day: str | None
    average_voice_session_minutes: float | None
    total_chat_sessions: int
    total_voice_sessions: int


# ============================================================================
# Chat Models
# ============================================================================


class ChatRequest(BaseModel):
    """POST /api/chat request body."""

    message: str = Field(..., min_length=1, max_length=8000)
    thread_id: UUID | None = None

    @field_validator("message")
    @classmethod
    def message_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("message cannot be blank")
        return v


class ChatResponse(BaseModel):
    thread_id: UUID
    reply: str
    credits_used: int


class ThreadSummary(BaseModel):
    id: UUID
    title: str
    therapist_id: str | None
    archived: bool
    created_at: datetime
    updated_at: datetime


class ThreadListResponse(BaseModel):
    threads: list[ThreadSummary]


class MessageItem(BaseModel):
    id: UUID
    role: MessageRole
    content: str
    created_at: datetime


class ThreadDetailResponse(BaseModel):
    thread: ThreadSummary
    messages: list[MessageItem]


class TranscriptTurn(BaseModel):
    role: MessageRole
    content: str = Field(..., max_length=8000)


class VoiceSessionEndRequest(BaseModel):
    """POST /api/chat/voice-session-end body."""

    thread_id: UUID | None = None
    transcript: list[TranscriptTurn] = Field(default_factory=list, max_length=500)


class VoiceSessionEndResponse(BaseModel):
    success: bool = True
    total_voice_sessions: int


class ImageUploadCheckResponse(BaseModel):
    can_upload: bool
    reason: str | None = None
    used: int
    limit: int


# ============================================================================
# User / Profile Models
# ============================================================================


class TherapistResponse(BaseModel):
    id: str
    name: str
    title: str
    specialization: str
    language: str
    voice: str
    focus: list[str]
    description: str


class SelectTherapistRequest(BaseModel):
    therapist_id: str | None = None


class SelectedTherapistResponse(BaseModel):
    therapist_id: str | None
    therapist: TherapistResponse | None


class PreferredLanguageRequest(BaseModel):
    language: str | None = None


class PreferredLanguageResponse(BaseModel):
    language: str


class ProfileSetupRequest(BaseModel):
    """POST /api/user/profile-setup body."""

    skipped: bool = False
    date_of_birth: str | None = None
    gender: str | None = Field(None, max_length=50)
    country: str | None = Field(None, max_length=100)
    religion: str | None = Field(None, max_length=100)
    therapy_needs: list[str] = Field(default_factory=list, max_length=20)
    preferred_therapy_style: str | None = Field(None, max_length=100)
    specific_concerns: str | None = Field(None, max_length=2000)


class ProfileResponse(BaseModel):
    id: UUID
    name: str
    email: str
    profile_completed: bool
    date_of_birth: str | None
    gender: str | None
    country: str | None
    religion: str | None
    therapy_needs: list[str]
    preferred_therapy_style: str | None
    specific_concerns: str | None
    preferred_language: str
    selected_therapist_id: str | None


# ============================================================================
# Safety Models
# ============================================================================


class EmergencyContactItem(BaseModel):
    name: str
    number: str
    description: str
    website: str | None = None


class EmergencyContactsResponse(BaseModel):
    """GET /api/safety/emergency-contacts response."""

    country: str | None
    emergency_contacts: list[EmergencyContactItem]
    has_contacts: bool


# ============================================================================
# Auth Models
# ============================================================================


class SignUpRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., max_length=256)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        v = v.strip().lower()
        if "@" not in v:
            raise ValueError("Invalid email address")
        return v


class SignInRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., max_length=256)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()


class ForgotPasswordRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()


class ResetPasswordRequest(BaseModel):
    token: str = Field(..., min_length=1, max_length=255)
    new_password: str = Field(..., max_length=256)


class UserResponse(BaseModel):
    id: UUID
    name: str
    email: str
    email_verified: bool
    image: str | None
    role: UserRole
    subscription_type: SubscriptionType
    subscription_status: SubscriptionStatus
    created_at: datetime


class SessionResponse(BaseModel):
    user: UserResponse
    expires_at: datetime
    token: str | None = None  # Set on sign-in/sign-up for Bearer clients


# ============================================================================
# Admin Models
# ============================================================================


class AdminUserItem(BaseModel):
    id: UUID
    name: str
    email: str
    role: UserRole
    banned: bool
    ban_reason: str | None
    subscription_type: SubscriptionType
    subscription_status: SubscriptionStatus
    created_at: datetime
    last_login: datetime | None


class AdminUserListResponse(BaseModel):
    users: list[AdminUserItem]
    total: int
    page: int
    page_size: int
    total_pages: int


class AdminUserDetailResponse(BaseModel):
    user: AdminUserItem
    credits: CreditStatusResponse
    weekly_mood: list[WeeklyMoodDay]
    total_chat_sessions: int
    total_voice_sessions: int


class AdminUserUpdateRequest(BaseModel):
    role: UserRole | None = None
    banned: bool | None = None
    ban_reason: str | None = Field(None, max_length=500)
    ban_expires: datetime | None = None


class AdminGrantCreditsRequest(BaseModel):
    feature: Feature
    credits: int = Field(..., gt=0, le=1_000_000)
    reason: str | None = Field(None, max_length=500)


class AdminGrantCreditsResponse(BaseModel):
    success: bool = True
    feature: Feature
    credits_added: int
    transaction_id: UUID

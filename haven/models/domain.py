"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
"""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from haven.models.api import Feature, MessageRole, Sentiment


@dataclass(frozen=True)
class FeatureAccess:
    """Outcome of a feature access check."""

    allowed: bool
    reason: str | None = None
    credits_needed: int | None = None
    remaining: int | None = None

    def __post_init__(self) -> None:
        if self.allowed and self.reason is not None:
            raise ValueError("An allowed check carries no denial reason")
        if self.credits_needed is not None and self.credits_needed < 0:
            raise ValueError(f"credits_needed cannot be negative: {self.credits_needed}")


@dataclass(frozen=True)
class DeductionResult:
    """Outcome of a successful deduction."""

    user_id: UUID
    feature: Feature
    credits_used: int
    remaining: int | None  # None when the plan is unlimited for the feature
    minutes_used: int | None = None

    def __post_init__(self) -> None:
        if self.credits_used < 0:
            raise ValueError(f"credits_used cannot be negative: {self.credits_used}")
        if self.remaining is not None and self.remaining < 0:
            raise ValueError(f"remaining cannot be negative: {self.remaining}")


@dataclass(frozen=True)
class MoodAnalysis:
    """Validated mood classification of a conversation."""

    mood_score: int
    sentiment: Sentiment
    notes: str | None = None

    def __post_init__(self) -> None:
        if not 1 <= self.mood_score <= 10:
            raise ValueError(f"mood_score must be between 1 and 10: {self.mood_score}")


@dataclass(frozen=True)
class ConversationTurn:
    role: MessageRole
    content: str


@dataclass(frozen=True)
class IssuedSession:
    """Session token handed to the client after sign-in."""

    user_id: UUID
    token: str
    expires_at: datetime

    def __post_init__(self) -> None:
        if not self.token:
            raise ValueError("token cannot be empty")


@dataclass(frozen=True)
class OAuthToken:
    access_token: str
    token_type: str = "Bearer"
    expires_in: int | None = None


@dataclass(frozen=True)
class OAuthProfile:
    """Identity returned by an OAuth provider."""

    provider_account_id: str
    email: str
    name: str | None = None
    picture: str | None = None
    email_verified: bool = False

    def __post_init__(self) -> None:
        if "@" not in self.email:
            raise ValueError(f"Provider returned an invalid email: {self.email!r}")

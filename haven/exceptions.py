"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.
"""

from datetime import datetime
from uuid import UUID


class HavenError(Exception):
    """Base exception for all Haven errors."""

    pass


class UserNotFoundError(HavenError):
    """Raised when a user doesn't exist."""

    def __init__(self, user_id: UUID | str) -> None:
        self.user_id = user_id
        super().__init__(f"User not found: {user_id}")


class UserBannedError(HavenError):
    """Raised when a banned user tries to act."""

    def __init__(self, user_id: UUID, reason: str | None, expires: datetime | None = None) -> None:
        self.user_id = user_id
        self.reason = reason
        self.expires = expires
        super().__init__(f"User {user_id} is banned: {reason or 'no reason given'}")


class InsufficientCreditsError(HavenError):
    """Raised when a credit pool cannot cover a deduction."""

    def __init__(self, feature: str, balance: int, required: int) -> None:
        self.feature = feature
        self.balance = balance
        self.required = required
        super().__init__(
            f"Insufficient {feature} credits. Balance: {balance}, Required: {required}"
        )


class UsageLimitExceededError(HavenError):
    """Raised when a daily or monthly voice allowance would be exceeded."""

    def __init__(self, period: str, limit: int, used: int) -> None:
        self.period = period
        self.limit = limit
        self.used = used
        super().__init__(f"{period.capitalize()} voice credit limit exceeded ({used}/{limit})")


class InvalidPlanError(HavenError):
    """Raised when a plan type is unknown or unusable."""

    def __init__(self, plan_type: str) -> None:
        self.plan_type = plan_type
        super().__init__(f"Invalid plan type: {plan_type}")


class SubscriptionConflictError(HavenError):
    """Raised when a subscription change conflicts with the current state."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ThreadNotFoundError(HavenError):
    """Raised when a chat thread doesn't exist."""

    def __init__(self, thread_id: UUID) -> None:
        self.thread_id = thread_id
        super().__init__(f"Chat thread not found: {thread_id}")


class ThreadAccessDeniedError(HavenError):
    """Raised when a user touches a thread owned by someone else."""

    def __init__(self, thread_id: UUID, user_id: UUID) -> None:
        self.thread_id = thread_id
        self.user_id = user_id
        super().__init__(f"User {user_id} cannot access thread {thread_id}")


class WriteVerificationError(HavenError):
    """Raised when database write verification fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Write verification failed: {message}")


class DataIntegrityError(HavenError):
    """Raised when data integrity constraint violated."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Data integrity error: {message}")


class PaymentProviderError(HavenError):
    """Raised when payment provider operation fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Payment provider error: {message}")


class WebhookVerificationError(HavenError):
    """Raised when webhook verification fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Webhook verification error: {message}")


class LLMProviderError(HavenError):
    """Raised when the language model call fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"LLM provider error: {message}")


class EmailDeliveryError(HavenError):
    """Raised when a transactional email cannot be sent."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Email delivery failed: {message}")


class AuthenticationError(HavenError):
    """Raised when authentication fails (bad credentials, missing or expired session)."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Authentication failed: {message}")


class EmailAlreadyRegisteredError(HavenError):
    """Raised on sign-up with an email that already has an account."""

    def __init__(self, email: str) -> None:
        self.email = email
        super().__init__(f"Email already registered: {email}")


class InvalidTokenError(HavenError):
    """Raised when a one-time token (password reset, OAuth state) is invalid or expired."""

    def __init__(self, purpose: str) -> None:
        self.purpose = purpose
        super().__init__(f"Invalid or expired {purpose} token")

"""
Plan catalogue - subscription plans, the voice top-up product and credit costs.

Stripe price IDs are read from settings so the same catalogue serves test and
live mode.
"""

from dataclasses import dataclass, field

from haven.config import settings
from haven.exceptions import InvalidPlanError
from haven.models.api import Feature, PlanResponse, PlanType


class CreditCosts:
    """Credits consumed per metered unit."""

    CHAT_MESSAGE = 5
    VOICE_PER_MINUTE = 10

    @classmethod
    def for_feature(cls, feature: Feature) -> int:
        return cls.CHAT_MESSAGE if feature == Feature.CHAT else cls.VOICE_PER_MINUTE


# Dollars per voice top-up bundle and the credits it buys
TOPUP_UNIT_PRICE_DOLLARS = 15
TOPUP_UNIT_CREDITS = 1000


@dataclass(frozen=True)
class Plan:
    """Purchasable product configuration."""

    plan_type: PlanType
    name: str
    price_cents: int
    recurring: bool
    unlimited_chat: bool = False
    unlimited_voice: bool = False
    daily_voice_credits: int = 0
    monthly_voice_credits: int = 0
    credits_added: int = 0
    features: tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if self.price_cents <= 0:
            raise ValueError(f"Price must be positive: {self.price_cents}")
        if not self.recurring and self.credits_added <= 0:
            raise ValueError("One-time products must add credits")

    @property
    def price_id(self) -> str:
        """Stripe price ID configured for this plan."""
        return {
            PlanType.CHAT_ONLY: settings.stripe_chat_only_price_id,
            PlanType.VOICE_ONLY: settings.stripe_voice_only_price_id,
            PlanType.PREMIUM: settings.stripe_premium_price_id,
            PlanType.VOICE_TOPUP: settings.stripe_voice_topup_price_id,
        }[self.plan_type]

    def to_response(self) -> PlanResponse:
        return PlanResponse(
            plan_type=self.plan_type,
            name=self.name,
            price_cents=self.price_cents,
            recurring=self.recurring,
            unlimited_chat=self.unlimited_chat,
            unlimited_voice=self.unlimited_voice,
            daily_voice_credits=self.daily_voice_credits,
            monthly_voice_credits=self.monthly_voice_credits,
            credits_added=self.credits_added,
            features=list(self.features),
        )


PLANS: dict[PlanType, Plan] = {
    PlanType.CHAT_ONLY: Plan(
        plan_type=PlanType.CHAT_ONLY,
        name="Chat Only",
        price_cents=1900,
        recurring=True,
        unlimited_chat=True,
        features=("Unlimited chat sessions", "Image uploads", "Mood tracking"),
    ),
    PlanType.VOICE_ONLY: Plan(
        plan_type=PlanType.VOICE_ONLY,
        name="Voice Only",
        price_cents=4900,
        recurring=True,
        daily_voice_credits=300,
        monthly_voice_credits=9000,
        features=("30 voice minutes per day", "900 voice minutes per month", "Mood tracking"),
    ),
    PlanType.PREMIUM: Plan(
        plan_type=PlanType.PREMIUM,
        name="Premium",
        price_cents=9900,
        recurring=True,
        unlimited_chat=True,
        unlimited_voice=True,
        daily_voice_credits=300,
        monthly_voice_credits=9000,
        features=("Unlimited chat", "Unlimited voice", "Image uploads", "Mood tracking"),
    ),
    PlanType.VOICE_TOPUP: Plan(
        plan_type=PlanType.VOICE_TOPUP,
        name="Voice Top-up",
        price_cents=TOPUP_UNIT_PRICE_DOLLARS * 100,
        recurring=False,
        credits_added=TOPUP_UNIT_CREDITS,
        features=("1000 extra voice credits",),
    ),
}


def get_plan(plan_type: str | PlanType) -> Plan:
    """
    Get plan configuration by type.

    Raises:
        InvalidPlanError: If the plan type is unknown
    """
    try:
        return PLANS[PlanType(plan_type)]
    except ValueError as exc:
        raise InvalidPlanError(str(plan_type)) from exc


def get_subscription_plan(plan_type: str | PlanType) -> Plan:
    """Like get_plan, but rejects one-time products."""
    plan = get_plan(plan_type)
    if not plan.recurring:
        raise InvalidPlanError(str(plan_type))
    return plan


def get_plan_by_price_id(price_id: str) -> Plan | None:
    if not price_id:
        return None
    for plan in PLANS.values():
        if plan.price_id == price_id:
            return plan
    return None


def list_plans() -> list[Plan]:
    return list(PLANS.values())


def topup_credits_for_amount(amount_dollars: float) -> int:
    """Credits bought by a top-up of the given dollar amount, rounded down."""
    return int(amount_dollars / TOPUP_UNIT_PRICE_DOLLARS * TOPUP_UNIT_CREDITS)

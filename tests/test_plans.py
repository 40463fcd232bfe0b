"""Tests for the plan catalogue and credit costs."""

import pytest

from haven.exceptions import InvalidPlanError
from haven.models.api import Feature, PlanType
from haven.services.plans import (
    PLANS,
    CreditCosts,
    Plan,
    get_plan,
    get_plan_by_price_id,
    get_subscription_plan,
    list_plans,
    topup_credits_for_amount,
)


class TestCreditCosts:
    def test_costs(self):
        assert CreditCosts.for_feature(Feature.CHAT) == 5
        assert CreditCosts.for_feature(Feature.VOICE) == 10


class TestCatalogue:
    def test_prices(self):
        assert get_plan("chat_only").price_cents == 1900
        assert get_plan("voice_only").price_cents == 4900
        assert get_plan(PlanType.PREMIUM).price_cents == 9900
        assert get_plan("voice_topup").price_cents == 1500

    def test_voice_only_allowances(self):
        plan = get_plan("voice_only")
        assert plan.daily_voice_credits == 300
        assert plan.monthly_voice_credits == 9000
        assert plan.unlimited_voice is False

    def test_chat_only_has_no_voice(self):
        plan = get_plan("chat_only")
        assert plan.unlimited_chat is True
        assert plan.unlimited_voice is False
        assert plan.monthly_voice_credits == 0

    def test_topup_is_one_time(self):
        plan = get_plan("voice_topup")
        assert plan.recurring is False
        assert plan.credits_added == 1000

    def test_unknown_plan(self):
        with pytest.raises(InvalidPlanError, match="gold"):
            get_plan("gold")

    def test_subscription_plan_rejects_topup(self):
        with pytest.raises(InvalidPlanError):
            get_subscription_plan("voice_topup")
        assert get_subscription_plan("premium").plan_type == PlanType.PREMIUM

    def test_list_plans(self):
        assert [plan.plan_type for plan in list_plans()] == list(PLANS)


class TestPriceIds:
    def test_price_ids_from_settings(self):
        assert get_plan("premium").price_id == "price_premium"
        assert get_plan_by_price_id("price_voice_only").plan_type == PlanType.VOICE_ONLY

    @pytest.mark.parametrize("price_id", ["", "price_unknown"])
    def test_unknown_price(self, price_id):
        assert get_plan_by_price_id(price_id) is None


class TestTopupAmounts:
    @pytest.mark.parametrize(
        ("dollars", "credits"), [(15, 1000), (30, 2000), (7.5, 500), (1, 66)]
    )
    def test_credits_for_amount(self, dollars, credits):
        assert topup_credits_for_amount(dollars) == credits


class TestPlanValidation:
    def test_price_must_be_positive(self):
        with pytest.raises(ValueError):
            Plan(plan_type=PlanType.PREMIUM, name="Free", price_cents=0, recurring=True)

    def test_one_time_product_needs_credits(self):
        with pytest.raises(ValueError):
            Plan(plan_type=PlanType.VOICE_TOPUP, name="Empty", price_cents=100, recurring=False)

    def test_to_response(self):
        response = get_plan("premium").to_response()
        assert response.unlimited_voice is True
        assert "Unlimited voice" in response.features

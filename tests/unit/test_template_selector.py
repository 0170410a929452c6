"""
Unit tests for template selection and filling.

WHAT: Test scenario classification, placeholder substitution, prompt rendering
WHY: No raw placeholder may reach the model or the buyer; scenario order is policy
HOW: Build contexts around the tie-break boundaries and inspect rendered text
"""

import pytest

from negotiator.models.negotiation import NegotiationContext
from negotiator.services.template_selector import (
    build_prompt_messages,
    build_template_values,
    closing_message,
    detect_scenario,
    fallback_message,
    fill_template,
    is_stale_listing,
    offer_quality,
    select_template,
)


def make_context(**overrides) -> NegotiationContext:
    data = {
        "product_title": "Laptop",
        "base_price": 2500,
        "min_price": 1800,
        "current_offer": 1950,
        "round": 3,
        "max_rounds": 10,
    }
    data.update(overrides)
    return NegotiationContext(**data)


@pytest.mark.unit
class TestFillTemplate:
    """Literal placeholder substitution."""

    def test_substitutes_known_values(self):
        assert fill_template("Hi {name}, round {round}", {"name": "Ann", "round": 2}) == "Hi Ann, round 2"

    def test_unknown_placeholder_becomes_empty(self):
        assert fill_template("Offer: {missing}!", {}) == "Offer: !"

    def test_none_value_becomes_empty(self):
        assert fill_template("[{value}]", {"value": None}) == "[]"

    def test_markers_inside_values_are_dropped(self):
        result = fill_template("Buyer said: {msg}", {"msg": "is {min_price} your floor?"})
        assert "{" not in result
        assert result == "Buyer said: is  your floor?"


@pytest.mark.unit
class TestDetectScenario:
    """Tie-break order: final round, justify price, urgency, opening, counter."""

    def test_final_round_wins_over_everything(self):
        context = make_context(round=10, current_offer=500, urgency="high")
        assert detect_scenario(context) == "final_round"

    def test_justify_price_below_80_percent_of_min(self):
        # 0.8 * 1800 = 1440
        assert detect_scenario(make_context(current_offer=1400, urgency="high")) == "justify_price"
        assert detect_scenario(make_context(current_offer=1440)) != "justify_price"

    def test_urgent_sale_on_high_urgency(self):
        assert detect_scenario(make_context(urgency="high")) == "urgent_sale"

    def test_stale_listing_triggers_liquidation(self):
        context = make_context(days_on_market=90, view_count=10)
        assert is_stale_listing(context)
        assert detect_scenario(context) == "urgent_liquidation"

    def test_busy_listing_is_not_stale(self):
        assert not is_stale_listing(make_context(days_on_market=90, view_count=400))
        assert not is_stale_listing(make_context())

    def test_first_round_is_initial(self):
        assert detect_scenario(make_context(round=1)) == "initial"

    def test_default_is_counter_offer(self):
        assert detect_scenario(make_context()) == "counter_offer"


@pytest.mark.unit
def test_offer_quality_bands():
    assert offer_quality(2400, 2500) == "excellent"
    assert offer_quality(2150, 2500) == "good"
    assert offer_quality(2000, 2500) == "fair"
    assert offer_quality(1600, 2500) == "low"
    assert offer_quality(1000, 2500) == "very low"


@pytest.mark.unit
def test_template_values_are_derived_from_context():
    values = build_template_values(make_context(), "counter_offer")

    assert values["base_price"] == "$2,500"
    assert values["current_offer"] == "$1,950"
    assert values["discount_percentage"] == "22.0"
    assert values["price_gap"] == "$550"
    assert values["progress_percentage"] == "30.0"
    assert values["conversation_history"] == "(no earlier messages)"
    assert values["urgency_line"] == ""


@pytest.mark.unit
def test_select_template_renders_without_placeholders():
    context = make_context(category="electronics", user_message="Is {min_price} your floor?")
    scenario, text = select_template(context)

    assert scenario == "counter_offer"
    assert "{" not in text and "}" not in text
    assert "Laptop" in text
    assert "$1,950" in text
    assert "Electronics considerations" in text


@pytest.mark.unit
def test_unknown_category_adds_nothing():
    _, text = select_template(make_context(category="garden"))
    assert "considerations" not in text


@pytest.mark.unit
def test_build_prompt_messages_has_system_and_user():
    scenario, messages = build_prompt_messages(make_context(round=1, personality="friendly"))

    assert scenario == "initial"
    assert [m["role"] for m in messages] == ["system", "user"]
    assert "Laptop" in messages[0]["content"]
    assert "$1,800" in messages[0]["content"]
    assert "Thanks for your interest in my Laptop" in messages[0]["content"]
    for message in messages:
        assert "{" not in message["content"]


@pytest.mark.unit
def test_selector_is_pure():
    context = make_context()
    assert select_template(context) == select_template(context)


@pytest.mark.unit
def test_fallback_message_rotates_by_round():
    first = fallback_message("professional", "Laptop", 0)
    second = fallback_message("professional", "Laptop", 1)

    assert first != second
    assert "Laptop" in first and "Laptop" in second
    assert fallback_message("professional", "Laptop", 2) == first


@pytest.mark.unit
def test_closing_messages():
    assert "maximum number of negotiation rounds" in closing_message("professional", "Laptop")
    assert "already have a deal on the Laptop" in closing_message("firm", "Laptop", deal_closed=True)

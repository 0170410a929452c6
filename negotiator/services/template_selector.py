"""
Template selection and filling.

WHAT: Classify a turn into a scenario and render the prompt for it
WHY: The model needs different instructions at the opening, the final round, under price pressure
HOW: Pure functions over NegotiationContext; literal {placeholder} substitution, unknown -> ""
"""

import re
from typing import Any, Mapping

from ..llm.types import ChatMessage
from ..models.negotiation import NegotiationContext
from ..utils.offers import format_price
from .prompts import (
    SELLER_SYSTEM_PROMPT,
    SCENARIO_TEMPLATES,
    PERSONALITY_PHRASES,
    CATEGORY_ADDONS,
    FALLBACK_MESSAGES,
    CLOSING_MESSAGES,
    DEAL_CLOSED_MESSAGE,
)

PLACEHOLDER_PATTERN = re.compile(r"\{(\w+)\}")

JUSTIFY_PRICE_RATIO = 0.8  # of min_price
STALE_LISTING_DAYS = 60
STALE_LISTING_MAX_VIEWS = 25

OFFER_QUALITY_BANDS = [
    (95.0, "excellent"),
    (85.0, "good"),
    (75.0, "fair"),
    (60.0, "low"),
]


def fill_template(template: str, values: Mapping[str, Any]) -> str:
    """
    Substitute {name} placeholders with values.

    Placeholders with no value (or a None value) become "". Placeholder
    markers inside the values themselves are dropped, so no raw marker can
    survive in the output.
    """
    def _replace(match: re.Match) -> str:
        value = values.get(match.group(1))
        if value is None:
            return ""
        return PLACEHOLDER_PATTERN.sub("", str(value))

    return PLACEHOLDER_PATTERN.sub(_replace, template)


def is_stale_listing(context: NegotiationContext) -> bool:
    """Long on the market with little interest."""
    if context.days_on_market is None or context.view_count is None:
        return False
    return context.days_on_market >= STALE_LISTING_DAYS and context.view_count < STALE_LISTING_MAX_VIEWS


def detect_scenario(context: NegotiationContext) -> str:
    """
    Deterministic scenario classification.

    Order: final round, price justification, urgency, opening, counter-offer.
    """
    if context.is_final_round:
        return "final_round"
    if context.current_offer < context.min_price * JUSTIFY_PRICE_RATIO:
        return "justify_price"
    if context.urgency == "high":
        return "urgent_sale"
    if is_stale_listing(context):
        return "urgent_liquidation"
    if context.round == 1:
        return "initial"
    return "counter_offer"


def offer_quality(current_offer: float, base_price: float) -> str:
    """Label an offer by its share of the listed price."""
    percentage = current_offer / base_price * 100
    for threshold, label in OFFER_QUALITY_BANDS:
        if percentage >= threshold:
            return label
    return "very low"


def _personality_key(scenario: str, context: NegotiationContext) -> str:
    if scenario == "initial":
        return "greeting"
    if scenario == "final_round":
        return "acceptance" if context.current_offer >= context.min_price else "rejection"
    if scenario in ("urgent_sale", "urgent_liquidation"):
        return "urgency_high"
    return "counter"


def build_template_values(context: NegotiationContext, scenario: str | None = None) -> dict[str, Any]:
    """Context values plus derived values available to every template."""
    scenario = scenario or detect_scenario(context)
    phrases = PERSONALITY_PHRASES[context.personality]

    if context.urgency == "high":
        urgency_line = phrases["urgency_high"]
    elif context.urgency == "low":
        urgency_line = phrases["urgency_low"]
    else:
        urgency_line = ""

    values = {
        "product_title": context.product_title,
        "base_price": format_price(context.base_price),
        "min_price": format_price(context.min_price),
        "current_offer": format_price(context.current_offer),
        "round": context.round,
        "max_rounds": context.max_rounds,
        "urgency": context.urgency,
        "personality": context.personality,
        "category": context.category,
        "condition": context.condition or "not specified",
        "user_message": context.user_message,
        "days_on_market": context.days_on_market,
        "view_count": context.view_count,
        "conversation_history": context.conversation_history or "(no earlier messages)",
        "discount_percentage": f"{(context.base_price - context.current_offer) / context.base_price * 100:.1f}",
        "price_gap": format_price(context.base_price - context.current_offer),
        "offer_quality": offer_quality(context.current_offer, context.base_price),
        "progress_percentage": f"{context.round / context.max_rounds * 100:.1f}",
        "urgency_line": urgency_line,
        "scenario": scenario,
    }
    values["personality_line"] = fill_template(phrases[_personality_key(scenario, context)], values)
    return values


def select_template(context: NegotiationContext) -> tuple[str, str]:
    """
    Pick the scenario for this turn and render its template.

    Returns:
        (scenario_id, filled_text)
    """
    scenario = detect_scenario(context)
    values = build_template_values(context, scenario)

    template = SCENARIO_TEMPLATES[scenario]
    addon = CATEGORY_ADDONS.get(context.category.lower())
    if addon:
        template = f"{template}\n\n{addon}"

    return scenario, fill_template(template, values)


def build_prompt_messages(context: NegotiationContext) -> tuple[str, list[ChatMessage]]:
    """
    Render the chat messages handed to the language model.

    Returns:
        (scenario_id, [system, user] messages)
    """
    scenario, user_prompt = select_template(context)
    values = build_template_values(context, scenario)
    system_prompt = fill_template(SELLER_SYSTEM_PROMPT, values)
    return scenario, [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": user_prompt},
    ]


def fallback_message(personality: str, product_title: str, round_number: int = 0) -> str:
    """Polite 'let me think about it' line, rotated by round."""
    options = FALLBACK_MESSAGES.get(personality, FALLBACK_MESSAGES["professional"])
    return fill_template(options[round_number % len(options)], {"product_title": product_title})


def closing_message(personality: str, product_title: str, deal_closed: bool = False) -> str:
    """Final message once the negotiation can no longer continue."""
    if deal_closed:
        template = DEAL_CLOSED_MESSAGE
    else:
        template = CLOSING_MESSAGES.get(personality, CLOSING_MESSAGES["professional"])
    return fill_template(template, {"product_title": product_title})

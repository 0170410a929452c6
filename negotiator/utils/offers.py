"""
Offer extraction and strategic counter calculation.

WHAT: Pull candidate prices out of model text and compute fallback counters
WHY: Seller replies state prices in free text; counters must stay within policy bounds
HOW: Ordered regex patterns, bounds filtering, gap-closing formula
"""

import re

from ..utils.logger import get_logger

logger = get_logger(__name__)

_AMOUNT = r"(\d{1,3}(?:,\d{3})+(?:\.\d{1,2})?|\d+(?:\.\d{1,2})?)"

# Order matters: earlier patterns win when several match
PRICE_PATTERNS = [
    re.compile(r"\$\s?" + _AMOUNT),
    re.compile(_AMOUNT + r"\s*dollars?\b", re.IGNORECASE),
    re.compile(r"\boffer\s+(?:of\s+)?" + _AMOUNT, re.IGNORECASE),
    re.compile(r"\bhow about\s+" + _AMOUNT, re.IGNORECASE),
]

EXTRACTION_LOWER_FACTOR = 0.7
EXTRACTION_UPPER_FACTOR = 1.2


def find_price_candidates(text: str) -> list[float]:
    """Find every price mentioned in text, in pattern order then position order."""
    candidates = []
    for pattern in PRICE_PATTERNS:
        for match in pattern.finditer(text):
            amount = float(match.group(1).replace(",", ""))
            if amount > 0:
                candidates.append(amount)
    return candidates


def extraction_bounds(min_price: float, base_price: float) -> tuple[float, float]:
    """Inclusive range a counter read from text must fall into."""
    return min_price * EXTRACTION_LOWER_FACTOR, base_price * EXTRACTION_UPPER_FACTOR


def select_counter_candidate(
    candidates: list[float],
    min_price: float,
    base_price: float,
    current_offer: float
) -> float | None:
    """
    First candidate inside the bounds that improves on the buyer's offer.

    A seller counter never restates or undercuts the buyer's bid, so amounts
    at or below current_offer are skipped.
    """
    lower, upper = extraction_bounds(min_price, base_price)
    for amount in candidates:
        if lower <= amount <= upper and amount > current_offer:
            return float(round(amount))
    return None


def calculate_strategic_counter(current_offer: float, base_price: float, min_price: float) -> float:
    """
    Counter computed from the gap between the buyer's offer and the list price.

    - offer >= 110% of min: close 40% of the gap to base
    - offer >= min: close 60% of the gap to base
    - otherwise: min + 30% of (base - min)
    """
    gap = base_price - current_offer
    if current_offer >= min_price * 1.1:
        amount = current_offer + gap * 0.4
    elif current_offer >= min_price:
        amount = current_offer + gap * 0.6
    else:
        amount = min_price + (base_price - min_price) * 0.3
    return float(round(amount))


def format_price(amount: float) -> str:
    """Format like $2,150 or $2,150.50."""
    if float(amount).is_integer():
        return f"${amount:,.0f}"
    return f"${amount:,.2f}"

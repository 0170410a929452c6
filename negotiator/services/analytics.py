"""
Conversation analytics.

WHAT: Derive success probability, phase, momentum and related signals from state
WHY: Dashboards and the next prompt need a compact read on how a negotiation is going
HOW: Pure functions over messages/offers; weights are configurable policy, not constants
"""

from datetime import datetime, timedelta
from statistics import mean

from ..core.config import settings
from ..models.negotiation import (
    AnalyticsBlock,
    Message,
    NegotiationState,
    OfferRecord,
    PredictedOutcome,
)

POSITIVE_WORDS = frozenset([
    "good", "great", "excellent", "perfect", "love", "amazing", "wonderful", "fantastic",
    "fair", "happy", "deal", "thanks", "thank", "appreciate",
])
NEGATIVE_WORDS = frozenset([
    "bad", "terrible", "awful", "hate", "horrible", "disgusting", "worst",
    "ridiculous", "insulting", "overpriced", "unfair",
])

PHASE_MULTIPLIERS = {
    "opening": 0.9,
    "exploration": 1.0,
    "active_negotiation": 1.1,
    "closing": 1.2,
}

COLLABORATIVE_STRATEGIES = {"collaborative", "cooperative", "compromise", "rapport"}
COMPETITIVE_STRATEGIES = {"competitive", "aggressive", "anchoring", "hardball", "lowball"}

TREND_WINDOW = 3
TREND_DELTA = 0.1


def score_sentiment(text: str) -> float:
    """
    Lexicon sentiment in [0, 1]; 0.5 is neutral.

    Each positive word adds 0.25, each negative word subtracts 0.25.
    """
    words = [w.strip(".,!?;:()'\"") for w in text.lower().split()]
    score = sum(1 for w in words if w in POSITIVE_WORDS) - sum(1 for w in words if w in NEGATIVE_WORDS)
    return max(0.0, min(1.0, 0.5 + 0.25 * score))


def message_sentiment(message: Message) -> float:
    """Classified sentiment when present, lexicon score otherwise."""
    if message.sentiment is not None:
        return message.sentiment
    return score_sentiment(message.content)


def price_flexibility(offers: list[OfferRecord]) -> float:
    """Total movement between first and last offer, as percent of the first."""
    if len(offers) < 2:
        return 0.0
    first, last = offers[0].amount, offers[-1].amount
    return abs(last - first) / first * 100


def determine_phase(current_round: int, max_rounds: int, movement_pct: float, threshold: float | None = None) -> str:
    """
    Phase from round progress.

    Bands: <20% opening, <50% exploration, <80% active_negotiation, then closing.
    Before the halfway point, price movement at or above the threshold already
    counts as active negotiation.
    """
    threshold = settings.PHASE_MOVEMENT_THRESHOLD if threshold is None else threshold
    ratio = current_round / max_rounds if max_rounds else 1.0
    if ratio < 0.2:
        return "opening"
    if ratio >= 0.8:
        return "closing"
    if ratio >= 0.5 or movement_pct >= threshold:
        return "active_negotiation"
    return "exploration"


def price_convergence(offers: list[OfferRecord], target_price: float) -> float:
    """
    How far offers moved toward the target, in [-1, 1].

    1 means the last offer hit the target, 0 means no progress, negative
    means the offers moved away from it.
    """
    if len(offers) < 2:
        return 0.0
    first, last = offers[0].amount, offers[-1].amount
    initial_distance = abs(first - target_price)
    if initial_distance == 0:
        return 0.0
    convergence = 1 - abs(last - target_price) / initial_distance
    return max(-1.0, min(1.0, convergence))


def response_times(messages: list[Message]) -> list[float]:
    """Seconds between consecutive messages."""
    return [
        max(0.0, (later.timestamp - earlier.timestamp).total_seconds())
        for earlier, later in zip(messages, messages[1:])
    ]


def success_probability(
    sentiments: list[float],
    convergence: float,
    average_response_seconds: float,
    phase: str,
    *,
    sentiment_weight: float | None = None,
    convergence_weight: float | None = None,
    response_weight: float | None = None
) -> float:
    """Weighted heuristic, clamped to [0, 1]."""
    sentiment_weight = settings.ANALYTICS_SENTIMENT_WEIGHT if sentiment_weight is None else sentiment_weight
    convergence_weight = settings.ANALYTICS_CONVERGENCE_WEIGHT if convergence_weight is None else convergence_weight
    response_weight = settings.ANALYTICS_RESPONSE_TIME_WEIGHT if response_weight is None else response_weight

    probability = 0.5
    if sentiments:
        probability += (mean(sentiments) - 0.5) * sentiment_weight
    probability += convergence * convergence_weight
    if average_response_seconds > 0:
        # Replies slower than an hour earn nothing
        response_factor = max(0.0, 1 - average_response_seconds / 3600)
        probability += response_factor * response_weight

    probability *= PHASE_MULTIPLIERS.get(phase, 1.0)
    return max(0.0, min(1.0, probability))


def engagement_score(messages: list[Message], times: list[float]) -> float:
    if not messages:
        return 0.0
    score = 0.5
    if len(messages) > 5:
        score += 0.2
    if len(messages) > 10:
        score += 0.1
    if len(times) > 1 and mean(times) < 30 * 60:
        score += 0.2
    if mean(len(m.content) for m in messages) > 50:
        score += 0.1
    return max(0.0, min(1.0, score))


def momentum(messages: list[Message], now: datetime | None = None) -> float:
    """Messages exchanged during the trailing hour."""
    now = now or datetime.now()
    cutoff = now - timedelta(hours=1)
    return float(sum(1 for m in messages if m.timestamp >= cutoff))


def sentiment_trend(sentiments: list[float]) -> str:
    """Compare the latest window of sentiment scores with the one before it."""
    if len(sentiments) < TREND_WINDOW + 1:
        return "stable"
    recent = mean(sentiments[-TREND_WINDOW:])
    earlier = mean(sentiments[-2 * TREND_WINDOW:-TREND_WINDOW])
    if recent - earlier > TREND_DELTA:
        return "improving"
    if earlier - recent > TREND_DELTA:
        return "declining"
    return "stable"


def negotiation_style(messages: list[Message]) -> str:
    collaborative = sum(1 for m in messages if (m.strategy or "").lower() in COLLABORATIVE_STRATEGIES)
    competitive = sum(1 for m in messages if (m.strategy or "").lower() in COMPETITIVE_STRATEGIES)
    if collaborative > competitive:
        return "collaborative"
    if competitive > collaborative:
        return "competitive"
    return "balanced"


def predict_outcome(probability: float, flexibility: float, phase: str, engagement: float) -> PredictedOutcome:
    """Bucket the success probability into an outcome with a confidence."""
    if probability > 0.8:
        outcome, confidence = "likely_success", probability
    elif probability > 0.6:
        outcome, confidence = "possible_success", probability * 0.8
    elif probability < 0.3:
        outcome, confidence = "likely_failure", (1 - probability) * 0.8
    else:
        outcome, confidence = "uncertain", 0.5

    factors = [f"phase: {phase}", f"price flexibility: {flexibility:.1f}%", f"engagement: {engagement:.2f}"]
    return PredictedOutcome(outcome=outcome, confidence=round(confidence, 4), factors=factors)


def compute_analytics(state: NegotiationState, now: datetime | None = None) -> AnalyticsBlock:
    """Recompute the full analytics block for the active lineage of a negotiation."""
    messages = state.messages
    offers = state.offers

    sentiments = [message_sentiment(m) for m in messages]
    times = response_times(messages)
    avg_response = mean(times) if times else 0.0
    flexibility = price_flexibility(offers)
    phase = determine_phase(state.current_round, state.max_rounds, flexibility)

    target = state.settings.target_price or state.product.base_price
    probability = success_probability(sentiments, price_convergence(offers, target), avg_response, phase)
    engagement = engagement_score(messages, times)

    return AnalyticsBlock(
        success_probability=probability,
        phase=phase,
        price_flexibility=round(flexibility, 2),
        engagement_score=engagement,
        momentum=momentum(messages, now),
        sentiment_trend=sentiment_trend(sentiments),
        average_response_time=round(avg_response, 3),
        predicted_outcome=predict_outcome(probability, flexibility, phase, engagement),
        total_rounds=state.current_round,
        negotiation_style=negotiation_style(messages),
        updated_at=now or datetime.now(),
    )

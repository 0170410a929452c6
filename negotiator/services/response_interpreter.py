"""
Response interpreter for seller model replies.

WHAT: Turn free-text model output into a validated StructuredDecision
WHY: The model is an untrusted oracle; callers need one uniform, safe result
HOW: Validate context -> sanitize -> detect action -> extract/compute offer ->
     structural + business validation -> display cleanup. Never raises.
"""

import re
import time
from typing import Any
from uuid import uuid4

from pydantic import ValidationError

from ..core.config import settings
from ..models.negotiation import (
    NegotiationContext,
    StructuredDecision,
    DecisionOffer,
    DecisionMetadata,
    DecisionShape,
)
from ..utils.exceptions import (
    ErrorCode,
    ContextInvalidError,
    ParseLowConfidenceError,
    ValidationFailedError,
)
from ..utils.logger import get_logger
from ..utils.offers import (
    extraction_bounds,
    find_price_candidates,
    select_counter_candidate,
    calculate_strategic_counter,
    format_price,
)
from ..utils.sanitize import sanitize_text
from .template_selector import fallback_message, closing_message

logger = get_logger(__name__)


# Lexical cues, checked in priority order accept > reject > counter
NEGATED_ACCEPT_PATTERN = re.compile(
    r"\b(?:can't|cannot|can not|won't|will not|unable to|not able to|do not|don't|couldn't)\s+"
    r"(?:accept|agree|take|do)\b|\bno deal\b|\bnot (?:a )?deal\b",
    re.IGNORECASE,
)
ACCEPT_PATTERN = re.compile(r"\b(accept|accepted|agree|agreed|deal|sold)\b", re.IGNORECASE)
REJECT_PATTERN = re.compile(
    r"\b(reject|rejected|decline|declined|never|impossible|too low|cannot|can't|won't)\b",
    re.IGNORECASE,
)
COUNTER_PATTERN = re.compile(
    r"(\bcounter\b|\boffer\b|\bhow about\b|\bwhat if\b|\bmeet in the middle\b|\$\s?\d)",
    re.IGNORECASE,
)

LEXICAL_CONFIDENCE = {"accept": 0.95, "reject": 0.9, "counter": 0.85}

OFFER_CONFIDENCE = {"extracted": 0.85, "calculated": 0.8, "fallback": 0.78}

MODEL_FALLBACK_CONFIDENCE = 0.3
INTERNAL_FAILURE_CONFIDENCE = 0.2

# Leaked control words. Case-sensitive so ordinary prose ("I accept") survives.
ACTION_KEYWORDS = re.compile(r"\b(ACCEPT|REJECT|COUNTER|CONTINUE)\b")
ACTION_LABELS = re.compile(r"\b(?:ACTION|DECISION)\s*:", re.IGNORECASE)
LEADING_JUNK = re.compile(r"^[\s:;,\-]+")

DEFAULT_MESSAGES = {
    "accept": "I accept your offer!",
    "reject": "I cannot accept that offer.",
    "counter": "Let me make a counter-offer.",
    "continue": "Let's continue our negotiation.",
}


def detect_action(text: str, context: NegotiationContext) -> tuple[str, float, str]:
    """
    Decide the action from lexical cues, falling back to context inference.

    Returns:
        (action, confidence, reasoning)
    """
    negated = NEGATED_ACCEPT_PATTERN.search(text)
    unnegated = NEGATED_ACCEPT_PATTERN.sub(" ", text)

    if ACCEPT_PATTERN.search(unnegated):
        return "accept", LEXICAL_CONFIDENCE["accept"], "Detected accept pattern in response"
    if negated or REJECT_PATTERN.search(unnegated):
        return "reject", LEXICAL_CONFIDENCE["reject"], "Detected reject pattern in response"
    if COUNTER_PATTERN.search(text):
        return "counter", LEXICAL_CONFIDENCE["counter"], "Detected counter pattern in response"

    return infer_action(context)


def infer_action(context: NegotiationContext) -> tuple[str, float, str]:
    """Context-only action inference used when the text carries no cue."""
    offer = context.current_offer
    offer_ratio = offer / context.base_price

    if context.is_final_round:
        if offer >= context.min_price:
            return "accept", 0.75, "Final round with acceptable offer"
        return "reject", 0.72, "Final round with unacceptable offer"

    if offer_ratio >= 0.95:
        return "accept", 0.72, "Excellent offer (95%+ of base price)"
    if offer_ratio >= 0.8:
        return "counter", 0.65, "Good offer worth negotiating"
    if offer < context.min_price * 0.8:
        return "reject", 0.6, "Offer significantly below minimum"

    return "continue", 0.45, "Standard negotiation flow"


def build_counter_offer(text: str, context: NegotiationContext) -> tuple[DecisionOffer, float]:
    """
    Counter-offer read from the text, or computed when none is usable.

    Provenance:
        extracted: a price in bounds that improves on the buyer's offer
        calculated: no price named, or none above the buyer's bid
        fallback: prices were named but every one fell outside the bounds

    Returns:
        (offer, offer_confidence)
    """
    candidates = find_price_candidates(text)
    amount = select_counter_candidate(
        candidates, context.min_price, context.base_price, context.current_offer
    )

    if amount is not None:
        source = "extracted"
    else:
        lower, upper = extraction_bounds(context.min_price, context.base_price)
        if candidates and not any(lower <= c <= upper for c in candidates):
            logger.debug(f"All quoted prices {candidates} outside [{lower}, {upper}], using strategic fallback")
            source = "fallback"
        else:
            source = "calculated"
        amount = calculate_strategic_counter(context.current_offer, context.base_price, context.min_price)

    offer = DecisionOffer(amount=amount, final=False, source=source, formatted=format_price(amount))
    return offer, OFFER_CONFIDENCE[source]


def validate_business_rules(
    action: str,
    offer: DecisionOffer | None,
    context: NegotiationContext
) -> list[str]:
    """Advisory business checks. Never blocks the decision."""
    errors = []
    if offer is not None:
        if offer.amount < 0:
            errors.append("Offer amount cannot be negative")
        if offer.amount > context.base_price * 2:
            errors.append("Offer amount unreasonably high")
        if action == "counter" and offer.amount < context.min_price * 0.5:
            errors.append("Counter-offer too low to be reasonable")

    if action == "accept" and context.current_offer < context.min_price * 0.9:
        errors.append("Accepting offer below reasonable minimum")
    if action == "counter" and offer is None:
        errors.append("Counter action requires offer amount")
    if action == "continue" and context.round >= context.max_rounds:
        errors.append("Cannot continue negotiation past maximum rounds")
    return errors


def clean_for_display(text: str, action: str) -> str:
    """Strip leaked control words, normalize casing and punctuation."""
    cleaned = ACTION_LABELS.sub(" ", text)
    cleaned = ACTION_KEYWORDS.sub(" ", cleaned)
    cleaned = re.sub(r"\s+", " ", cleaned).strip()
    cleaned = LEADING_JUNK.sub("", cleaned)

    if cleaned:
        cleaned = cleaned[0].upper() + cleaned[1:]
        if not re.search(r"[.!?]$", cleaned):
            cleaned += "."

    return cleaned or DEFAULT_MESSAGES.get(action, DEFAULT_MESSAGES["continue"])


def enforce_decision_policy(
    decision: StructuredDecision,
    min_confidence: float | None = None,
    treat_flags_as_errors: bool = False
) -> StructuredDecision:
    """
    Apply a caller's strict policy to a decision.

    The interpreter only flags problems; callers that want them fatal use this.

    Raises:
        ParseLowConfidenceError: confidence below min_confidence
        ValidationFailedError: validation flags present and treat_flags_as_errors
    """
    floor = settings.MIN_DECISION_CONFIDENCE if min_confidence is None else min_confidence
    if decision.confidence < floor:
        raise ParseLowConfidenceError(decision.confidence, floor)

    if treat_flags_as_errors:
        errors = list(decision.metadata.validation_errors) + list(decision.metadata.business_errors)
        if errors:
            raise ValidationFailedError(errors)
    return decision


class ResponseInterpreter:
    """
    Stateless interpreter; safe to share across concurrent turns.

    Every path through process() returns a StructuredDecision.
    """

    def __init__(
        self,
        model_name: str = "unknown",
        min_confidence: float | None = None,
        max_length: int | None = None
    ):
        self.model_name = model_name
        self.min_confidence = settings.MIN_DECISION_CONFIDENCE if min_confidence is None else min_confidence
        self.max_length = max_length or settings.MAX_RESPONSE_LENGTH

    def process(
        self,
        raw_text: str,
        context: NegotiationContext | dict[str, Any],
        *,
        model: str | None = None,
        scenario: str | None = None
    ) -> StructuredDecision:
        """
        Interpret one model reply.

        Args:
            raw_text: Model output, untrusted
            context: Turn context (model or plain dict)
            model: Model identifier for metadata
            scenario: Scenario the prompt was rendered for

        Returns:
            StructuredDecision (never raises)
        """
        start = time.perf_counter()
        request_id = f"req_{uuid4().hex[:12]}"
        model = model or self.model_name

        try:
            ctx = self._validate_context(context)
        except ContextInvalidError as e:
            logger.warning(f"[{request_id}] {e.message}")
            return self._context_error_decision(e, raw_text, model, request_id, start)

        try:
            return self._interpret(raw_text, ctx, model, scenario, request_id, start)
        except Exception as e:
            logger.error(f"[{request_id}] Interpreter failure: {e}", exc_info=True)
            return self._internal_failure_decision(e, raw_text, ctx, model, scenario, request_id, start)

    def _validate_context(self, context: NegotiationContext | dict[str, Any]) -> NegotiationContext:
        """Re-validate the context; instances may have been built without validation."""
        try:
            if isinstance(context, NegotiationContext):
                return NegotiationContext.model_validate(context.model_dump())
            if isinstance(context, dict):
                return NegotiationContext.model_validate(context)
        except ValidationError as e:
            errors = [
                f"{'.'.join(str(part) for part in err['loc']) or 'context'}: {err['msg']}"
                for err in e.errors()
            ]
            raise ContextInvalidError(errors) from e
        raise ContextInvalidError([f"context must be a NegotiationContext or dict, got {type(context).__name__}"])

    def _interpret(
        self,
        raw_text: str,
        ctx: NegotiationContext,
        model: str,
        scenario: str | None,
        request_id: str,
        start: float
    ) -> StructuredDecision:
        sanitized = sanitize_text(raw_text or "", self.max_length)

        action, confidence, reasoning = detect_action(sanitized, ctx)

        offer = None
        if action == "counter":
            offer, offer_confidence = build_counter_offer(sanitized, ctx)
            confidence = min(confidence, offer_confidence)
        elif action == "accept":
            offer = DecisionOffer(
                amount=ctx.current_offer,
                final=True,
                source="accepted",
                formatted=format_price(ctx.current_offer),
            )

        content = clean_for_display(sanitized, action)

        decision = StructuredDecision(
            content=content,
            action=action,
            offer=offer,
            confidence=confidence,
            reasoning=reasoning,
            metadata=self._metadata(ctx, model, scenario, request_id, raw_text),
        )

        structural_errors = self._validate_structure(decision)
        business_errors = validate_business_rules(action, offer, ctx)
        if structural_errors:
            logger.warning(f"[{request_id}] Structural validation failed: {structural_errors}")
        if business_errors:
            logger.warning(f"[{request_id}] Business validation flagged: {business_errors}")

        error_codes = []
        if structural_errors or business_errors:
            error_codes.append(ErrorCode.VALIDATION_FAILED.value)
        low_confidence = confidence < self.min_confidence
        if low_confidence:
            error_codes.append(ErrorCode.PARSE_LOW_CONFIDENCE.value)

        decision = decision.with_metadata(
            validation_status="invalid" if structural_errors else "valid",
            validation_errors=structural_errors,
            business_errors=business_errors,
            low_confidence=low_confidence,
            error_codes=error_codes,
            processing_time_ms=_elapsed_ms(start),
        )

        logger.debug(
            f"[{request_id}] Interpreted reply: action={action}, confidence={confidence:.2f}, "
            f"offer={offer.amount if offer else None} ({offer.source if offer else '-'})"
        )
        return decision

    @staticmethod
    def _validate_structure(decision: StructuredDecision) -> list[str]:
        try:
            DecisionShape.model_validate(decision.model_dump())
        except ValidationError as e:
            return [
                f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
                for err in e.errors()
            ]
        return []

    @staticmethod
    def _metadata(
        ctx: NegotiationContext,
        model: str,
        scenario: str | None,
        request_id: str,
        raw_text: str | None,
        **extra
    ) -> DecisionMetadata:
        return DecisionMetadata(
            model=model,
            request_id=request_id,
            scenario=scenario,
            original_response=(raw_text or "")[:2000],
            round=ctx.round,
            max_rounds=ctx.max_rounds,
            progress=round(ctx.round / ctx.max_rounds * 100),
            **extra,
        )

    def _context_error_decision(
        self,
        error: ContextInvalidError,
        raw_text: str,
        model: str,
        request_id: str,
        start: float
    ) -> StructuredDecision:
        return StructuredDecision(
            content=DEFAULT_MESSAGES["continue"],
            action="continue",
            confidence=0.0,
            reasoning="Invalid negotiation context",
            metadata=DecisionMetadata(
                model=model,
                request_id=request_id,
                validation_status="error",
                validation_errors=error.details["errors"],
                error_codes=[ErrorCode.CONTEXT_INVALID.value],
                low_confidence=True,
                original_response=(raw_text or "")[:2000] if isinstance(raw_text, str) else "",
                processing_time_ms=_elapsed_ms(start),
            ),
        )

    def _internal_failure_decision(
        self,
        error: Exception,
        raw_text: str,
        ctx: NegotiationContext,
        model: str,
        scenario: str | None,
        request_id: str,
        start: float
    ) -> StructuredDecision:
        return StructuredDecision(
            content=DEFAULT_MESSAGES["continue"],
            action="continue",
            confidence=INTERNAL_FAILURE_CONFIDENCE,
            reasoning="Response could not be interpreted",
            metadata=self._metadata(
                ctx, model, scenario, request_id, raw_text if isinstance(raw_text, str) else "",
                validation_status="error",
                validation_errors=[f"{type(error).__name__}: {error}"],
                is_fallback=True,
                low_confidence=True,
                error_codes=[ErrorCode.PARSE_LOW_CONFIDENCE.value],
                processing_time_ms=_elapsed_ms(start),
            ),
        )

    def fallback_decision(
        self,
        context: NegotiationContext,
        reason: str,
        *,
        model: str | None = None,
        scenario: str | None = None
    ) -> StructuredDecision:
        """Pre-authored decision used when the model could not answer."""
        return StructuredDecision(
            content=fallback_message(context.personality, context.product_title, context.round),
            action="continue",
            confidence=MODEL_FALLBACK_CONFIDENCE,
            reasoning=f"Model unavailable: {reason}"[:200],
            metadata=self._metadata(
                context, model or self.model_name, scenario, f"req_{uuid4().hex[:12]}", "",
                is_fallback=True,
                low_confidence=MODEL_FALLBACK_CONFIDENCE < self.min_confidence,
                error_codes=[ErrorCode.MODEL_UNAVAILABLE.value],
            ),
        )

    def limit_decision(
        self,
        context: NegotiationContext,
        reason: str,
        *,
        deal_closed: bool = False
    ) -> StructuredDecision:
        """
        Final decision once no further rounds are allowed. No model call.

        A negotiation that already ended in a deal keeps answering accept;
        everything else is closed with a reject.
        """
        return StructuredDecision(
            content=closing_message(context.personality, context.product_title, deal_closed),
            action="accept" if deal_closed else "reject",
            confidence=1.0,
            reasoning=f"Negotiation closed: {reason}"[:200],
            metadata=self._metadata(
                context, "none", "limit_exceeded", f"req_{uuid4().hex[:12]}", "",
                error_codes=[ErrorCode.LIMIT_EXCEEDED.value],
            ),
        )


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 3)

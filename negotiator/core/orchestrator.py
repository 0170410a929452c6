"""
Negotiation orchestrator.

WHAT: Run one buyer turn end to end: template -> model -> interpreter -> state -> limits
WHY: Single entry point for routes/sockets; owns timeouts, fallbacks and per-negotiation ordering
HOW: Per-id asyncio.Lock, model call under asyncio.wait_for, state mutated only once a decision exists
"""

import asyncio
import time
from typing import Any

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from .config import settings
from .round_manager import RoundLimitManager
from .state_store import ConversationStateStore
from ..llm.provider import LLMProvider
from ..llm.provider_factory import get_provider
from ..llm.types import ChatMessage
from ..models.negotiation import (
    AnalyticsBlock,
    Message,
    MessageOffer,
    NegotiationContext,
    NegotiationState,
    ProductInfo,
    StructuredDecision,
)
from ..models.results import RoundResult
from ..services.export_service import export_state
from ..services.model_metrics import ModelMetrics
from ..services.record_store import NegotiationRecordStore
from ..services.response_interpreter import ResponseInterpreter
from ..services.state_mirror import StateMirror
from ..services.template_selector import build_prompt_messages
from ..utils.exceptions import ModelUnavailableError, StateNotFoundError, ValidationFailedError
from ..utils.logger import get_logger, negotiation_context
from ..utils.offers import find_price_candidates, format_price

logger = get_logger(__name__)

# Round manager lifecycle -> store status
_STORE_STATUS = {"accepted": "accepted", "rejected": "rejected", "expired": "expired"}


class NegotiationOrchestrator:
    """
    Compose selector, model, interpreter, state store and round manager.

    Turns for the same negotiation are serialized; different negotiations
    run fully in parallel.
    """

    def __init__(
        self,
        provider: LLMProvider | None = None,
        *,
        store: ConversationStateStore | None = None,
        rounds: RoundLimitManager | None = None,
        interpreter: ResponseInterpreter | None = None,
        metrics: ModelMetrics | None = None,
        record_store: NegotiationRecordStore | None = None,
        turn_timeout: float | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None
    ):
        self._provider = provider
        self.store = store or ConversationStateStore(mirror=StateMirror.from_settings())
        self.rounds = rounds or RoundLimitManager(record_store)
        self.record_store = record_store if record_store is not None else self.rounds.record_store
        self.interpreter = interpreter or ResponseInterpreter()
        self.metrics = metrics or ModelMetrics()
        self.turn_timeout = turn_timeout or settings.LLM_TURN_TIMEOUT
        self.temperature = settings.LLM_DEFAULT_TEMPERATURE if temperature is None else temperature
        self.max_tokens = max_tokens or settings.LLM_DEFAULT_MAX_TOKENS
        self._locks: dict[str, asyncio.Lock] = {}
        self.store.add_removal_listener(self._forget)

    @property
    def provider(self) -> LLMProvider:
        if self._provider is None:
            self._provider = get_provider()
        return self._provider

    def _lock_for(self, negotiation_id: str) -> asyncio.Lock:
        lock = self._locks.get(negotiation_id)
        if lock is None:
            lock = self._locks[negotiation_id] = asyncio.Lock()
        return lock

    def _forget(self, negotiation_id: str):
        """Release per-negotiation bookkeeping once the store drops the state."""
        self.rounds.forget(negotiation_id)
        lock = self._locks.get(negotiation_id)
        # Never drop a lock an in-flight turn holds
        if lock is not None and not lock.locked():
            del self._locks[negotiation_id]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start_negotiation(
        self,
        negotiation_id: str,
        product: ProductInfo | dict[str, Any],
        initial_offer: float,
        *,
        buyer_message: str = "",
        max_rounds: int | None = None,
        target_price: float | None = None,
        urgency: str = "medium",
        personality: str = "professional",
        buyer: str = "",
        seller: str = "",
        metadata: dict[str, Any] | None = None
    ) -> NegotiationState:
        """
        Create state and limits for a negotiation and record the buyer's opening offer.

        Raises:
            ValidationFailedError: Bad product data, non-positive offer, or duplicate id
        """
        if initial_offer is None or initial_offer <= 0:
            raise ValidationFailedError(["initial_offer must be > 0"])

        created = self.store.create(
            negotiation_id,
            product,
            max_rounds=max_rounds,
            negotiation_settings={"target_price": target_price, "urgency": urgency, "personality": personality},
            metadata=metadata,
        )
        if not created.success:
            raise ValidationFailedError([created.error])
        state: NegotiationState = created.data

        self._ensure_record(negotiation_id, buyer, seller, state)
        limits = self.rounds.register(negotiation_id, max_rounds=state.max_rounds)
        if limits.max_rounds != state.max_rounds:
            self.store.set_max_rounds(negotiation_id, limits.max_rounds)

        self.store.append_message(negotiation_id, Message(
            sender="buyer",
            content=buyer_message or f"I'd like to offer {format_price(initial_offer)}.",
            round=limits.current_round,
            offer=MessageOffer(amount=initial_offer),
        ))

        logger.info(
            f"Started negotiation {negotiation_id} for {state.product.title} "
            f"(opening offer {format_price(initial_offer)}, max rounds {limits.max_rounds})"
        )
        return state

    def _ensure_record(self, negotiation_id: str, buyer: str, seller: str, state: NegotiationState):
        """Create the persistent record when the store supports it and none exists yet."""
        create_record = getattr(self.record_store, "create_record", None)
        if create_record is None:
            return
        try:
            if self.record_store.get_record(negotiation_id) is None:
                create_record(
                    negotiation_id, buyer=buyer, seller=seller,
                    product=state.product.title, max_rounds=state.max_rounds,
                )
        except SQLAlchemyError as e:
            logger.error(f"Could not create negotiation record {negotiation_id}: {e}")

    async def close(self):
        """Stop background work and release the provider's HTTP client."""
        self.store.stop_cleanup()
        if self._provider is not None and hasattr(self._provider, "close"):
            await self._provider.close()

    # ------------------------------------------------------------------
    # Turns
    # ------------------------------------------------------------------

    async def orchestrate_turn(
        self,
        negotiation_id: str,
        buyer_text: str,
        offer_amount: float | None = None
    ) -> StructuredDecision:
        """
        Process one buyer message and return the seller's decision.

        Every condition other than an unknown id resolves to a decision:
        invalid context, model timeout/error and exhausted limits included.

        Raises:
            StateNotFoundError: Unknown or evicted negotiation id
        """
        async with self._lock_for(negotiation_id):
            with negotiation_context(negotiation_id), self.store.checkout(negotiation_id) as state:
                limits = self.rounds.get_limits(negotiation_id)
                if limits is None:
                    limits = self.rounds.register(
                        negotiation_id, max_rounds=state.max_rounds, current_round=state.current_round
                    )

                check = self.rounds.check_limit(negotiation_id)
                turn_round = max(1, limits.current_round + (1 if check.success else 0))
                stated_offer = _stated_offer(buyer_text, offer_amount)
                current_offer = stated_offer if stated_offer is not None else state.current_offer
                context_data = self._context_data(state, buyer_text, current_offer, turn_round, limits.max_rounds)

                try:
                    context = NegotiationContext.model_validate(context_data)
                except ValidationError:
                    logger.warning(f"Refusing model call for {negotiation_id}: invalid context")
                    return self.interpreter.process("", context_data)

                if not check.success:
                    return self._close_negotiation(negotiation_id, context, buyer_text, stated_offer)

                scenario, messages = build_prompt_messages(context)
                decision = await self._call_model(negotiation_id, context, scenario, messages)

                # Past this point a decision exists; mutate state
                self._record_turn(negotiation_id, buyer_text, stated_offer, turn_round, decision)
                increment = self.rounds.increment(negotiation_id)
                outcome = self.rounds.record_outcome(negotiation_id, decision.action)
                self._sync_status(negotiation_id, outcome)

                logger.info(
                    f"Turn {turn_round}/{increment.max_rounds} of {negotiation_id}: {decision.action} "
                    f"(confidence {decision.confidence:.2f}, scenario {scenario}, fallback {decision.metadata.is_fallback})"
                )
                return decision

    async def _call_model(
        self,
        negotiation_id: str,
        context: NegotiationContext,
        scenario: str,
        messages: list[ChatMessage]
    ) -> StructuredDecision:
        """The only suspension point of a turn. Timeouts and provider errors become a fallback decision."""
        start = time.perf_counter()
        try:
            result = await asyncio.wait_for(
                self.provider.generate(messages, temperature=self.temperature, max_tokens=self.max_tokens),
                timeout=self.turn_timeout,
            )
        except asyncio.TimeoutError as e:
            self.metrics.record_request(scenario, _elapsed_ms(start), False, e)
            logger.warning(f"Model call for {negotiation_id} timed out after {self.turn_timeout}s, using fallback")
            return self.interpreter.fallback_decision(
                context, f"timed out after {self.turn_timeout}s", scenario=scenario
            )
        except ModelUnavailableError as e:
            self.metrics.record_request(scenario, _elapsed_ms(start), False, e)
            logger.warning(f"Model unavailable for {negotiation_id}: {e.message}, using fallback")
            return self.interpreter.fallback_decision(context, e.message, scenario=scenario)
        except Exception as e:
            # Any other provider failure still ends the turn with a fallback
            self.metrics.record_request(scenario, _elapsed_ms(start), False, e)
            logger.error(f"Model call for {negotiation_id} failed unexpectedly: {e!r}, using fallback", exc_info=True)
            return self.interpreter.fallback_decision(context, f"{type(e).__name__}: {e}", scenario=scenario)

        self.metrics.record_request(scenario, _elapsed_ms(start), True)
        return self.interpreter.process(result.text, context, model=result.model, scenario=scenario)

    def _close_negotiation(
        self,
        negotiation_id: str,
        context: NegotiationContext,
        buyer_text: str,
        stated_offer: float | None
    ) -> StructuredDecision:
        """Terminal path: no model call, final accept/reject message."""
        denied = self.rounds.increment(negotiation_id)
        deal_closed = denied.status == "accepted"
        decision = self.interpreter.limit_decision(context, denied.reason or "limit reached", deal_closed=deal_closed)

        self._record_turn(negotiation_id, buyer_text, stated_offer, denied.current_round, decision)
        self._sync_status(negotiation_id, denied)
        logger.info(f"Negotiation {negotiation_id} refused a turn: {denied.reason}")
        return decision

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _context_data(
        self,
        state: NegotiationState,
        buyer_text: str,
        current_offer: float | None,
        turn_round: int,
        max_rounds: int
    ) -> dict[str, Any]:
        summary = self.store.summarize(state.negotiation_id)
        return {
            "product_title": state.product.title,
            "base_price": state.product.base_price,
            "min_price": state.product.min_price,
            "current_offer": current_offer,
            "round": turn_round,
            "max_rounds": max_rounds,
            "urgency": state.settings.urgency,
            "personality": state.settings.personality,
            "category": state.product.category,
            "user_message": (buyer_text or "")[:1000],
            "condition": state.product.condition,
            "days_on_market": state.product.days_on_market,
            "view_count": state.product.view_count,
            "conversation_history": summary.data if summary.success else "",
        }

    def _record_turn(
        self,
        negotiation_id: str,
        buyer_text: str,
        stated_offer: float | None,
        turn_round: int,
        decision: StructuredDecision
    ):
        self.store.append_message(negotiation_id, Message(
            sender="buyer",
            content=(buyer_text or "")[:5000],
            round=turn_round,
            offer=MessageOffer(amount=stated_offer) if stated_offer else None,
        ))
        self.store.append_message(negotiation_id, Message(
            sender="agent",
            content=decision.content,
            round=turn_round,
            offer=MessageOffer(amount=decision.offer.amount) if decision.offer and decision.offer.amount > 0 else None,
            strategy=decision.metadata.scenario,
            confidence=decision.confidence,
            action=decision.action,
        ))

    def _sync_status(self, negotiation_id: str, result: RoundResult):
        status = _STORE_STATUS.get(result.status or "", "active")
        self.store.set_status(negotiation_id, status)

    def _require_state(self, negotiation_id: str) -> NegotiationState:
        result = self.store.get(negotiation_id)
        if not result.success:
            raise StateNotFoundError(negotiation_id)
        return result.data

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def get_summary(self, negotiation_id: str, max_messages: int | None = None) -> str:
        result = self.store.summarize(negotiation_id, max_messages)
        if not result.success:
            raise StateNotFoundError(negotiation_id)
        return result.data

    def get_analytics(self, negotiation_id: str) -> AnalyticsBlock:
        result = self.store.analytics(negotiation_id)
        if not result.success:
            raise StateNotFoundError(negotiation_id)
        return result.data

    def export_negotiation(self, negotiation_id: str, format: str = "json") -> str:
        """
        Serialize a negotiation as json, csv or txt.

        Raises:
            StateNotFoundError: Unknown id
            ValueError: Unknown format
        """
        state = self._require_state(negotiation_id)
        return export_state(state, format, self.rounds.get_limits(negotiation_id))

    def get_model_metrics(self) -> dict:
        return self.metrics.snapshot()

    # ------------------------------------------------------------------
    # Limit administration
    # ------------------------------------------------------------------

    def extend_rounds(self, negotiation_id: str, new_max: int) -> RoundResult:
        """Grant an extension and keep the stored state's max_rounds in step."""
        self._require_state(negotiation_id)
        result = self.rounds.extend(negotiation_id, new_max)
        if result.success:
            self.store.set_max_rounds(negotiation_id, result.max_rounds)
            self._sync_status(negotiation_id, result)
        return result

    def reset_rounds(self, negotiation_id: str) -> RoundResult:
        self._require_state(negotiation_id)
        result = self.rounds.reset(negotiation_id)
        if result.success:
            self._sync_status(negotiation_id, result)
        return result


def _stated_offer(buyer_text: str, offer_amount: float | None) -> float | None:
    """Explicit amount, else the first price named in the buyer's text."""
    if offer_amount is not None:
        return offer_amount
    candidates = find_price_candidates(buyer_text or "")
    return candidates[0] if candidates else None


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 3)

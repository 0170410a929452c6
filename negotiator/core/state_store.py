"""
Conversation state store.

WHAT: Per-negotiation message/offer history, branches and derived analytics
WHY: The orchestrator needs bounded, consistent state across many concurrent negotiations
HOW: In-memory dict guarded by a lock, TTL eviction on a background Timer,
     synchronous analytics recomputation on append, optional Redis mirror
"""

import json
import threading
from collections import Counter
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Iterator

from pydantic import ValidationError

from .config import settings
from ..models.negotiation import (
    Branch,
    Message,
    NegotiationSettings,
    NegotiationState,
    OfferRecord,
    ProductInfo,
)
from ..models.results import StoreResult
from ..services.analytics import compute_analytics
from ..services.export_service import build_export_data
from ..services.state_mirror import StateMirror
from ..utils.exceptions import StateNotFoundError
from ..utils.logger import get_logger
from ..utils.offers import format_price

logger = get_logger(__name__)


class ConversationStateStore:
    """
    Store-with-TTL for NegotiationState.

    WHAT: Create, read, append, branch, summarize and evict negotiation state
    WHY: Single source of truth for conversation history inside this process
    HOW: Dict keyed by negotiation id; every mutation and eviction holds the store lock.
         Ids checked out by an in-flight turn are never evicted.
    """

    def __init__(
        self,
        *,
        ttl_hours: float | None = None,
        max_messages: int | None = None,
        cleanup_interval_seconds: float | None = None,
        mirror: StateMirror | None = None,
        archive_on_evict: bool | None = None,
        archive_dir: str | None = None,
        auto_cleanup: bool = False
    ):
        self.ttl = timedelta(hours=ttl_hours if ttl_hours is not None else settings.STATE_TTL_HOURS)
        self.max_messages = max_messages or settings.MAX_MESSAGES_PER_NEGOTIATION
        self.cleanup_interval = cleanup_interval_seconds or settings.STATE_CLEANUP_INTERVAL_SECONDS
        self.mirror = mirror
        self.archive_on_evict = settings.ARCHIVE_ON_EVICT if archive_on_evict is None else archive_on_evict
        self.archive_dir = Path(archive_dir or settings.ARCHIVE_DIR)

        self._states: dict[str, NegotiationState] = {}
        self._lock = threading.RLock()
        self._checked_out: Counter = Counter()
        self._cleanup_timer: threading.Timer | None = None
        self._removal_listeners: list[Callable[[str], None]] = []

        self.total_created = 0
        self.evicted_count = 0

        if auto_cleanup:
            self.start_cleanup()

    # ------------------------------------------------------------------
    # Background maintenance
    # ------------------------------------------------------------------

    def start_cleanup(self):
        """
        Start background eviction and analytics refresh.

        WHAT: Periodic sweep of expired negotiations
        WHY: Prevent memory bloat from abandoned negotiations
        HOW: Daemon threading.Timer rescheduling itself every cleanup interval
        """
        def cleanup_task():
            try:
                self.evict_expired()
                self.refresh_analytics()
            except Exception as e:
                logger.error(f"State cleanup sweep failed: {e}", exc_info=True)
            self._schedule(cleanup_task)

        self._schedule(cleanup_task)
        logger.info(f"Started state cleanup thread (interval: {self.cleanup_interval}s, ttl: {self.ttl})")

    def add_removal_listener(self, listener: Callable[[str], None]):
        """Register a callback invoked with each id removed by delete() or eviction."""
        self._removal_listeners.append(listener)

    def _notify_removed(self, negotiation_ids: list[str]):
        # Called outside the store lock
        for negotiation_id in negotiation_ids:
            for listener in self._removal_listeners:
                try:
                    listener(negotiation_id)
                except Exception as e:
                    logger.error(f"Removal listener failed for {negotiation_id}: {e}", exc_info=True)

    def _schedule(self, task):
        with self._lock:
            self._cleanup_timer = threading.Timer(self.cleanup_interval, task)
            self._cleanup_timer.daemon = True
            self._cleanup_timer.start()

    def stop_cleanup(self):
        with self._lock:
            if self._cleanup_timer is not None:
                self._cleanup_timer.cancel()
                self._cleanup_timer = None
                logger.info("Stopped state cleanup thread")

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def _resolve(self, negotiation_id: str) -> NegotiationState | None:
        """Memory first, then the mirror (restoring into memory). Caller holds the lock."""
        state = self._states.get(negotiation_id)
        if state is None and self.mirror is not None:
            state = self.mirror.load(negotiation_id)
            if state is not None:
                self._states[negotiation_id] = state
                logger.info(f"Restored negotiation {negotiation_id} from Redis mirror")
        return state

    def _persist(self, state: NegotiationState):
        if self.mirror is not None:
            self.mirror.save(state)

    def exists(self, negotiation_id: str) -> bool:
        with self._lock:
            return self._resolve(negotiation_id) is not None

    @contextmanager
    def checkout(self, negotiation_id: str) -> Iterator[NegotiationState]:
        """
        Pin a negotiation for the duration of a turn.

        Eviction skips pinned ids, so a turn that loaded the state always
        finishes against it.

        Raises:
            StateNotFoundError: Unknown or evicted id
        """
        with self._lock:
            state = self._resolve(negotiation_id)
            if state is None:
                raise StateNotFoundError(negotiation_id)
            self._checked_out[negotiation_id] += 1
        try:
            yield state
        finally:
            with self._lock:
                self._checked_out[negotiation_id] -= 1
                if self._checked_out[negotiation_id] <= 0:
                    del self._checked_out[negotiation_id]

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def create(
        self,
        negotiation_id: str,
        product: ProductInfo | dict[str, Any],
        *,
        max_rounds: int | None = None,
        negotiation_settings: NegotiationSettings | dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None
    ) -> StoreResult:
        """Create state for a new negotiation."""
        try:
            if isinstance(product, dict):
                product = ProductInfo(**product)
            if isinstance(negotiation_settings, dict):
                negotiation_settings = NegotiationSettings(**negotiation_settings)
            state = NegotiationState(
                negotiation_id=negotiation_id,
                max_rounds=max_rounds or settings.MAX_NEGOTIATION_ROUNDS,
                product=product,
                settings=negotiation_settings or NegotiationSettings(),
                metadata=metadata or {},
            )
        except ValidationError as e:
            return StoreResult.invalid(f"Invalid negotiation data: {e}")

        with self._lock:
            if self._resolve(negotiation_id) is not None:
                return StoreResult.invalid(f"Negotiation already exists: {negotiation_id}")
            state.analytics = compute_analytics(state)
            self._states[negotiation_id] = state
            self.total_created += 1
            self._persist(state)

        logger.info(f"Created negotiation state {negotiation_id} (max_rounds: {state.max_rounds})")
        return StoreResult.ok(state)

    def get(self, negotiation_id: str) -> StoreResult:
        with self._lock:
            state = self._resolve(negotiation_id)
        if state is None:
            return StoreResult.not_found(negotiation_id)
        return StoreResult.ok(state)

    def append_message(self, negotiation_id: str, message: Message | dict[str, Any]) -> StoreResult:
        """
        Append a message to the active branch.

        Updates the round counter, offer history and analytics before
        returning, so callers read consistent analytics right after.
        """
        with self._lock:
            state = self._resolve(negotiation_id)
            if state is None:
                return StoreResult.not_found(negotiation_id)

            try:
                if isinstance(message, dict):
                    message = Message(**{"round": state.current_round, **message, "branch": state.active_branch})
                elif message.branch != state.active_branch:
                    message = message.model_copy(update={"branch": state.active_branch})
            except ValidationError as e:
                return StoreResult.invalid(f"Invalid message: {e}")

            branch = state.branches[state.active_branch]
            branch.messages.append(message)
            if message.offer is not None:
                branch.offers.append(OfferRecord(
                    amount=message.offer.amount,
                    round=message.round,
                    sender=message.sender,
                    timestamp=message.timestamp,
                ))

            # Bounded retention: drop the oldest
            excess = len(branch.messages) - self.max_messages
            if excess > 0:
                del branch.messages[:excess]
                logger.debug(f"Dropped {excess} oldest message(s) from {negotiation_id}/{branch.name}")

            state.current_round = max(state.current_round, message.round)
            state.last_activity = datetime.now()
            state.analytics = compute_analytics(state)
            self._persist(state)

        logger.debug(
            f"Appended {message.sender} message to {negotiation_id} "
            f"(round {message.round}, branch {message.branch})"
        )
        return StoreResult.ok(message)

    def get_messages(
        self,
        negotiation_id: str,
        *,
        sender: str | None = None,
        limit: int = 50,
        offset: int = 0,
        branch: str | None = None
    ) -> StoreResult:
        """Paginated message history of a branch lineage (active branch by default)."""
        with self._lock:
            state = self._resolve(negotiation_id)
            if state is None:
                return StoreResult.not_found(negotiation_id)
            branch_name = branch or state.active_branch
            if branch_name not in state.branches:
                return StoreResult.invalid(f"Unknown branch: {branch_name}")
            messages = state.lineage_messages(branch_name)

        if sender:
            messages = [m for m in messages if m.sender == sender]
        total = len(messages)
        page = messages[offset:offset + limit]
        return StoreResult.ok({
            "messages": page,
            "pagination": {
                "total": total,
                "limit": limit,
                "offset": offset,
                "has_more": offset + len(page) < total,
            },
        })

    def summarize(self, negotiation_id: str, max_messages: int | None = None) -> StoreResult:
        """
        Compact transcript of the last N messages plus a context line.

        This is the only state fed back into prompts, so the prompt stays
        bounded however long the conversation gets.
        """
        max_messages = max_messages or settings.SUMMARY_MAX_MESSAGES
        with self._lock:
            state = self._resolve(negotiation_id)
            if state is None:
                return StoreResult.not_found(negotiation_id)
            recent = state.messages[-max_messages:]
            analytics = state.analytics

        lines = []
        for message in recent:
            offer = f" (Offered: {format_price(message.offer.amount)})" if message.offer else ""
            lines.append(f"{message.sender}: {message.content}{offer}")
        lines.append(
            f"[Context: Total rounds: {analytics.total_rounds}, "
            f"Current phase: {analytics.phase}, "
            f"Success probability: {round(analytics.success_probability * 100)}%]"
        )
        return StoreResult.ok("\n".join(lines))

    def analytics(self, negotiation_id: str) -> StoreResult:
        with self._lock:
            state = self._resolve(negotiation_id)
            if state is None:
                return StoreResult.not_found(negotiation_id)
            return StoreResult.ok(state.analytics)

    def create_branch(
        self,
        negotiation_id: str,
        name: str,
        parent: str | None = None,
        branch_point: int | None = None
    ) -> StoreResult:
        """
        Create a named branch rooted at a parent branch and round.

        The parent defaults to the active branch and the branch point to the
        current round. The new branch is not activated.
        """
        with self._lock:
            state = self._resolve(negotiation_id)
            if state is None:
                return StoreResult.not_found(negotiation_id)
            if name in state.branches:
                return StoreResult.invalid(f"Branch already exists: {name}")
            parent = parent or state.active_branch
            if parent not in state.branches:
                return StoreResult.invalid(f"Unknown parent branch: {parent}")
            branch_point = state.current_round if branch_point is None else branch_point
            if branch_point < 0:
                return StoreResult.invalid("branch_point must be >= 0")

            try:
                branch = Branch(name=name, parent=parent, branch_point=branch_point)
            except ValidationError as e:
                return StoreResult.invalid(f"Invalid branch: {e}")
            state.branches[name] = branch
            state.last_activity = datetime.now()
            self._persist(state)

        logger.info(f"Created branch {name} on {negotiation_id} (parent: {parent}, round: {branch_point})")
        return StoreResult.ok(branch)

    def switch_branch(self, negotiation_id: str, name: str) -> StoreResult:
        """Make a branch active. Other branches are kept."""
        with self._lock:
            state = self._resolve(negotiation_id)
            if state is None:
                return StoreResult.not_found(negotiation_id)
            if name not in state.branches:
                return StoreResult.invalid(f"Unknown branch: {name}")
            previous = state.active_branch
            state.active_branch = name
            state.last_activity = datetime.now()
            state.analytics = compute_analytics(state)
            self._persist(state)

        logger.info(f"Switched {negotiation_id} from branch {previous} to {name}")
        return StoreResult.ok(state)

    def set_status(self, negotiation_id: str, status: str) -> StoreResult:
        with self._lock:
            state = self._resolve(negotiation_id)
            if state is None:
                return StoreResult.not_found(negotiation_id)
            state.status = status
            self._persist(state)
        return StoreResult.ok(state)

    def set_max_rounds(self, negotiation_id: str, max_rounds: int) -> StoreResult:
        with self._lock:
            state = self._resolve(negotiation_id)
            if state is None:
                return StoreResult.not_found(negotiation_id)
            state.max_rounds = max_rounds
            state.analytics = compute_analytics(state)
            self._persist(state)
        return StoreResult.ok(state)

    def refresh_analytics(self, negotiation_id: str | None = None) -> int:
        """Recompute analytics for one or all negotiations. Returns how many were refreshed."""
        with self._lock:
            if negotiation_id is not None:
                state = self._resolve(negotiation_id)
                targets = [state] if state is not None else []
            else:
                targets = list(self._states.values())
            for state in targets:
                state.analytics = compute_analytics(state)
        return len(targets)

    def delete(self, negotiation_id: str) -> StoreResult:
        with self._lock:
            state = self._states.pop(negotiation_id, None)
            if self.mirror is not None:
                self.mirror.delete(negotiation_id)
        if state is None:
            return StoreResult.not_found(negotiation_id)
        logger.info(f"Deleted negotiation state {negotiation_id}")
        self._notify_removed([negotiation_id])
        return StoreResult.ok()

    def evict_expired(self, now: datetime | None = None) -> list[str]:
        """
        Remove negotiations idle for longer than the TTL.

        Atomic under the store lock; checked-out negotiations are skipped.
        With archive_on_evict, a negotiation whose archive cannot be written
        stays in the store and is retried on the next sweep.

        Returns:
            Evicted negotiation ids
        """
        now = now or datetime.now()
        cutoff = now - self.ttl
        evicted = []

        with self._lock:
            for negotiation_id, state in list(self._states.items()):
                if state.last_activity >= cutoff:
                    continue
                if self._checked_out.get(negotiation_id):
                    logger.debug(f"Skipping eviction of checked-out negotiation {negotiation_id}")
                    continue
                if self.archive_on_evict:
                    try:
                        self._write_archive(state)
                    except OSError as e:
                        logger.error(f"Could not archive {negotiation_id}, keeping it: {e}")
                        continue
                del self._states[negotiation_id]
                if self.mirror is not None:
                    self.mirror.delete(negotiation_id)
                evicted.append(negotiation_id)

            self.evicted_count += len(evicted)

        for negotiation_id in evicted:
            logger.info(f"Evicted expired negotiation: {negotiation_id}")
        if evicted:
            logger.info(f"Removed {len(evicted)} expired negotiations from store")
        self._notify_removed(evicted)
        return evicted

    def archive(self, negotiation_id: str) -> StoreResult:
        """Write the JSON export of a negotiation to the archive directory."""
        with self._lock:
            state = self._resolve(negotiation_id)
            if state is None:
                return StoreResult.not_found(negotiation_id)
            path = self._write_archive(state)
        return StoreResult.ok(path)

    def _write_archive(self, state: NegotiationState) -> str:
        self.archive_dir.mkdir(parents=True, exist_ok=True)
        archive_file = self.archive_dir / f"{state.negotiation_id}.json"
        with open(archive_file, "w") as f:
            json.dump(build_export_data(state), f, indent=2)
        logger.info(f"Archived negotiation {state.negotiation_id} to {archive_file}")
        return str(archive_file)

    def stats(self) -> dict:
        """Global store statistics."""
        with self._lock:
            lengths = [len(state.messages) for state in self._states.values()]
            return {
                "active_negotiations": len(self._states),
                "total_created": self.total_created,
                "evicted": self.evicted_count,
                "average_conversation_length": round(sum(lengths) / len(lengths), 2) if lengths else 0.0,
                "checked_out": sum(self._checked_out.values()),
            }

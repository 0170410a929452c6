"""
Round and limit management.

WHAT: Enforce max-round and max-duration policy, thresholds and extensions
WHY: Negotiations must end; the model may not be called once a cap is reached
HOW: RoundLimits per negotiation id, RoundResult objects for expected failures,
     limits seeded from and written back to the persistent record
"""

import threading
from datetime import datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError

from .config import settings
from ..models.negotiation import RoundLimits
from ..models.results import RoundResult
from ..services.record_store import NegotiationRecordStore
from ..utils.exceptions import ErrorCode
from ..utils.logger import get_logger

logger = get_logger(__name__)

TERMINAL_STATUSES = ("accepted", "rejected", "expired")

WARNING_ROUND_LIMIT = "Approaching round limit"
WARNING_ESCALATION = "Escalation threshold reached"
WARNING_TIME_LIMIT = "Approaching time limit"


def lifecycle_stage(current_round: int, max_rounds: int) -> str:
    """Non-terminal stage from round progress (boundaries at 20/50/80%)."""
    ratio = current_round / max_rounds if max_rounds else 1.0
    if ratio < 0.2:
        return "opening"
    if ratio < 0.5:
        return "exploring"
    if ratio < 0.8:
        return "bargaining"
    return "closing"


class RoundLimitManager:
    """
    Per-negotiation round counter with limits.

    Expected conditions (unknown id, limit reached, extension denied) come
    back as RoundResult with success=False; nothing here raises for them.
    """

    def __init__(self, record_store: NegotiationRecordStore | None = None):
        self.record_store = record_store
        self._limits: dict[str, RoundLimits] = {}
        self._lock = threading.Lock()

    def register(
        self,
        negotiation_id: str,
        *,
        max_rounds: int | None = None,
        allow_extension: bool | None = None,
        max_extensions: int | None = None,
        started_at: datetime | None = None,
        current_round: int = 0
    ) -> RoundLimits:
        """
        Create limits for a negotiation, seeded from the persistent record when one exists.
        """
        status = lifecycle_stage(current_round, max_rounds or settings.MAX_NEGOTIATION_ROUNDS)

        record = self._read_record(negotiation_id)
        if record is not None:
            max_rounds = record.max_rounds
            current_round = record.rounds
            status = record.status
            logger.info(f"Seeded limits for {negotiation_id} from record ({current_round}/{max_rounds}, {status})")

        limits = RoundLimits(
            negotiation_id=negotiation_id,
            max_rounds=max_rounds or settings.MAX_NEGOTIATION_ROUNDS,
            current_round=current_round,
            warning_fraction=settings.ROUND_WARNING_FRACTION,
            escalation_fraction=settings.ROUND_ESCALATION_FRACTION,
            max_duration=_hours(settings.MAX_NEGOTIATION_DURATION_HOURS),
            warning_duration=_hours(settings.WARNING_NEGOTIATION_DURATION_HOURS),
            allow_extension=settings.ALLOW_ROUND_EXTENSION if allow_extension is None else allow_extension,
            max_extensions=settings.MAX_ROUND_EXTENSIONS if max_extensions is None else max_extensions,
            started_at=started_at or datetime.now(),
            status=status,
        )
        with self._lock:
            self._limits[negotiation_id] = limits
        return limits

    def get_limits(self, negotiation_id: str) -> RoundLimits | None:
        with self._lock:
            return self._limits.get(negotiation_id)

    def forget(self, negotiation_id: str) -> bool:
        """Drop in-memory limits for a negotiation; the persistent record is untouched."""
        with self._lock:
            removed = self._limits.pop(negotiation_id, None) is not None
        if removed:
            logger.debug(f"Dropped round limits for {negotiation_id}")
        return removed

    def check_limit(self, negotiation_id: str, now: datetime | None = None) -> RoundResult:
        """Read-only check whether another round may be played."""
        with self._lock:
            limits = self._limits.get(negotiation_id)
            if limits is None:
                return _not_found(negotiation_id)

            reason = self._denial_reason(limits, now or datetime.now())
            if reason:
                return self._result(limits, success=False, reason=reason, error_code=ErrorCode.LIMIT_EXCEEDED)
            return self._result(limits, success=True, warnings=self._warnings(limits, now or datetime.now()))

    def increment(self, negotiation_id: str, now: datetime | None = None) -> RoundResult:
        """
        Advance the round counter by one.

        Denied (never raised) once round + 1 > max_rounds or the negotiation
        has outlived its max duration. A denial without a recorded
        accept/reject moves the negotiation to the terminal expired state.
        """
        now = now or datetime.now()
        with self._lock:
            limits = self._limits.get(negotiation_id)
            if limits is None:
                return _not_found(negotiation_id)

            reason = self._denial_reason(limits, now)
            if reason:
                if not limits.is_terminal:
                    limits.status = "expired"
                    logger.info(f"Negotiation {negotiation_id} expired: {reason}")
                result = self._result(limits, success=False, reason=reason, error_code=ErrorCode.LIMIT_EXCEEDED)
            else:
                limits.current_round += 1
                limits.status = lifecycle_stage(limits.current_round, limits.max_rounds)
                result = self._result(limits, success=True, warnings=self._warnings(limits, now))

        self._write_back(negotiation_id, rounds=result.current_round, status=result.status)
        if result.warnings:
            logger.info(f"Negotiation {negotiation_id} round {result.current_round}: {', '.join(result.warnings)}")
        return result

    def extend(self, negotiation_id: str, new_max: int) -> RoundResult:
        """
        Raise max_rounds, consuming one extension.

        An expired negotiation reopens when the extension leaves rounds to play.
        """
        with self._lock:
            limits = self._limits.get(negotiation_id)
            if limits is None:
                return _not_found(negotiation_id)

            reason = None
            if not limits.allow_extension:
                reason = "Extensions are disabled for this negotiation"
            elif limits.extensions_used >= limits.max_extensions:
                reason = f"Extension quota exhausted ({limits.max_extensions} used)"
            elif new_max <= limits.max_rounds:
                reason = f"New max rounds {new_max} must exceed current max {limits.max_rounds}"
            elif limits.status in ("accepted", "rejected"):
                reason = f"Negotiation already {limits.status}"
            if reason:
                return self._result(limits, success=False, reason=reason, error_code=ErrorCode.LIMIT_EXCEEDED)

            limits.max_rounds = new_max
            limits.extensions_used += 1
            if limits.status == "expired":
                limits.status = lifecycle_stage(limits.current_round, limits.max_rounds)
            result = self._result(limits, success=True)

        logger.info(f"Extended {negotiation_id} to {new_max} rounds ({result.extensions_remaining} extensions left)")
        self._write_back(negotiation_id, max_rounds=new_max, status=result.status)
        return result

    def reset(self, negotiation_id: str) -> RoundResult:
        """Back to round 0; clears an expired status and restarts the duration clock."""
        with self._lock:
            limits = self._limits.get(negotiation_id)
            if limits is None:
                return _not_found(negotiation_id)
            limits.current_round = 0
            limits.started_at = datetime.now()
            if limits.status not in ("accepted", "rejected"):
                limits.status = "opening"
            result = self._result(limits, success=True)

        logger.info(f"Reset rounds for {negotiation_id}")
        self._write_back(negotiation_id, rounds=0, status=result.status)
        return result

    def record_outcome(self, negotiation_id: str, action: str) -> RoundResult:
        """
        Record a decision that may end the negotiation.

        Accepts always close it. Rejects close it only in the final round;
        earlier rejects turn down an offer and bargaining goes on.
        """
        with self._lock:
            limits = self._limits.get(negotiation_id)
            if limits is None:
                return _not_found(negotiation_id)
            if not limits.is_terminal:
                if action == "accept":
                    limits.status = "accepted"
                elif action == "reject" and limits.current_round >= limits.max_rounds:
                    limits.status = "rejected"
            result = self._result(limits, success=True)

        if result.status in ("accepted", "rejected"):
            logger.info(f"Negotiation {negotiation_id} closed as {result.status}")
            self._write_back(negotiation_id, status=result.status)
        return result

    # ------------------------------------------------------------------

    @staticmethod
    def _denial_reason(limits: RoundLimits, now: datetime) -> str | None:
        if limits.is_terminal:
            return f"Negotiation already {limits.status}"
        if now - limits.started_at > limits.max_duration:
            return "Maximum negotiation duration exceeded"
        if limits.current_round + 1 > limits.max_rounds:
            return "Maximum rounds reached"
        return None

    @staticmethod
    def _warnings(limits: RoundLimits, now: datetime) -> list[str]:
        warnings = []
        if limits.current_round >= limits.warning_round:
            warnings.append(WARNING_ROUND_LIMIT)
        if limits.current_round >= limits.escalation_round:
            warnings.append(WARNING_ESCALATION)
        if now - limits.started_at >= limits.warning_duration:
            warnings.append(WARNING_TIME_LIMIT)
        return warnings

    @staticmethod
    def _result(
        limits: RoundLimits,
        *,
        success: bool,
        warnings: list[str] | None = None,
        reason: str | None = None,
        error_code: ErrorCode | None = None
    ) -> RoundResult:
        can_continue = success and not limits.is_terminal and limits.current_round < limits.max_rounds
        return RoundResult(
            success=success,
            current_round=limits.current_round,
            max_rounds=limits.max_rounds,
            remaining_rounds=limits.remaining_rounds,
            warnings=warnings or [],
            can_continue=can_continue,
            status=limits.status,
            extensions_remaining=max(0, limits.max_extensions - limits.extensions_used) if limits.allow_extension else 0,
            error_code=error_code,
            reason=reason,
        )

    def _read_record(self, negotiation_id: str):
        if self.record_store is None:
            return None
        try:
            return self.record_store.get_record(negotiation_id)
        except SQLAlchemyError as e:
            logger.error(f"Could not read negotiation record {negotiation_id}: {e}")
            return None

    def _write_back(self, negotiation_id: str, *, rounds: int | None = None, max_rounds: int | None = None, status: str | None = None):
        """Mirror limit changes onto the persistent record. The in-memory limits stay authoritative."""
        if self.record_store is None:
            return
        try:
            if rounds is not None:
                self.record_store.update_rounds(negotiation_id, rounds)
            if max_rounds is not None:
                self.record_store.update_max_rounds(negotiation_id, max_rounds)
            if status is not None:
                self.record_store.update_status(negotiation_id, status)
        except SQLAlchemyError as e:
            logger.error(f"Failed to write limits back to record {negotiation_id}: {e}")


def _not_found(negotiation_id: str) -> RoundResult:
    return RoundResult(
        success=False,
        error_code=ErrorCode.STATE_NOT_FOUND,
        reason=f"Negotiation not found: {negotiation_id}",
    )


def _hours(value: float) -> timedelta:
    return timedelta(hours=value)

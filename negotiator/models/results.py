"""
Result objects for expected failure conditions.

WHAT: Success/failure envelopes returned by the store and round manager
WHY: Unknown ids and exhausted limits are normal outcomes, not exceptions
HOW: Pydantic models carrying an ErrorCode on failure
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Any

from ..utils.exceptions import ErrorCode


class StoreResult(BaseModel):
    """Outcome of a conversation state store operation."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    success: bool
    data: Any = None
    error_code: ErrorCode | None = None
    error: str | None = None

    @classmethod
    def ok(cls, data: Any = None) -> "StoreResult":
        return cls(success=True, data=data)

    @classmethod
    def not_found(cls, negotiation_id: str) -> "StoreResult":
        return cls(
            success=False,
            error_code=ErrorCode.STATE_NOT_FOUND,
            error=f"Negotiation not found: {negotiation_id}",
        )

    @classmethod
    def invalid(cls, message: str) -> "StoreResult":
        return cls(success=False, error_code=ErrorCode.VALIDATION_FAILED, error=message)


class RoundResult(BaseModel):
    """Outcome of a round manager operation."""

    success: bool
    current_round: int = 0
    max_rounds: int = 0
    remaining_rounds: int = 0
    warnings: list[str] = Field(default_factory=list)
    can_continue: bool = False
    status: str | None = None
    extensions_remaining: int | None = None
    error_code: ErrorCode | None = None
    reason: str | None = None

"""
Error taxonomy for the negotiation engine.

WHAT: Error codes and domain exceptions shared by every component
WHY: One vocabulary for failures, whether raised or carried in result objects
HOW: ErrorCode enum plus BusinessException subclasses with code and details
"""

import enum
from typing import Optional, Any, Dict


class ErrorCode(str, enum.Enum):
    """Failure categories surfaced on decisions and result objects."""
    CONTEXT_INVALID = "CONTEXT_INVALID"
    MODEL_UNAVAILABLE = "MODEL_UNAVAILABLE"
    PARSE_LOW_CONFIDENCE = "PARSE_LOW_CONFIDENCE"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    LIMIT_EXCEEDED = "LIMIT_EXCEEDED"
    STATE_NOT_FOUND = "STATE_NOT_FOUND"


class BusinessException(Exception):
    """Base class for business logic exceptions."""

    def __init__(self, message: str, code: ErrorCode, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        """Serializable form for transport layers."""
        return {
            "error": self.code.value,
            "message": self.message,
            "details": self.details,
        }


class ContextInvalidError(BusinessException):
    """Raised when a negotiation context cannot be handed to the model."""

    def __init__(self, errors: list[str]):
        super().__init__(
            message=f"Invalid context: {', '.join(errors)}",
            code=ErrorCode.CONTEXT_INVALID,
            details={"errors": errors}
        )


class ModelUnavailableError(BusinessException):
    """Raised when the language model times out or fails."""

    def __init__(self, message: str = "Language model unavailable", details: Optional[Any] = None):
        super().__init__(message=message, code=ErrorCode.MODEL_UNAVAILABLE, details=details)


class ParseLowConfidenceError(BusinessException):
    """Raised by callers whose policy refuses low-confidence decisions."""

    def __init__(self, confidence: float, floor: float):
        super().__init__(
            message=f"Decision confidence {confidence:.2f} below floor {floor:.2f}",
            code=ErrorCode.PARSE_LOW_CONFIDENCE,
            details={"confidence": confidence, "floor": floor}
        )


class ValidationFailedError(BusinessException):
    """Raised by callers whose policy treats validation flags as hard failures."""

    def __init__(self, errors: list[str]):
        super().__init__(
            message=f"Decision validation failed: {'; '.join(errors)}",
            code=ErrorCode.VALIDATION_FAILED,
            details={"errors": errors}
        )


class LimitExceededError(BusinessException):
    """Raised when a round or time cap forbids further model calls."""

    def __init__(self, negotiation_id: str, reason: str):
        super().__init__(
            message=f"Negotiation {negotiation_id} reached its limit: {reason}",
            code=ErrorCode.LIMIT_EXCEEDED,
            details={"negotiation_id": negotiation_id, "reason": reason}
        )


class StateNotFoundError(BusinessException):
    """Raised when a negotiation id is unknown or was evicted."""

    def __init__(self, negotiation_id: str):
        super().__init__(
            message=f"Negotiation not found: {negotiation_id}",
            code=ErrorCode.STATE_NOT_FOUND,
            details={"negotiation_id": negotiation_id}
        )

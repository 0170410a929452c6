"""
LLM provider types, dataclasses, and exceptions.

WHAT: Standard type definitions for LLM interactions
WHY: Ensure consistent contracts across all providers
HOW: TypedDict for messages, dataclasses for results/status, custom exceptions for errors
"""

from typing import TypedDict, Literal
from dataclasses import dataclass

from ..utils.exceptions import ModelUnavailableError


# Message format compatible with OpenAI-style APIs
ChatMessage = TypedDict(
    "ChatMessage",
    {"role": Literal["system", "user", "assistant"], "content": str}
)


@dataclass
class LLMResult:
    """Complete LLM generation result."""
    text: str
    usage: dict
    model: str


@dataclass
class ProviderStatus:
    """Health status of an LLM provider."""
    available: bool
    base_url: str
    models: list[str] | None = None
    error: str | None = None


# Provider exceptions. All of them mean "the oracle could not answer",
# so the orchestrator handles them as one ModelUnavailable case.
class ProviderTimeoutError(ModelUnavailableError):
    """Request to provider timed out."""
    pass


class ProviderUnavailableError(ModelUnavailableError):
    """Provider is not reachable or down."""
    pass


class ProviderDisabledError(ModelUnavailableError):
    """Provider is disabled in configuration."""
    pass


class ProviderResponseError(ModelUnavailableError):
    """Provider returned an invalid or error response."""
    pass

"""
LLM provider factory with singleton pattern.

WHAT: Factory to get the configured LLM provider
WHY: Centralize provider selection and avoid multiple instances
HOW: Read LLM_PROVIDER from config, cache singleton, log selection
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .provider import LLMProvider

# Singleton instance
_provider_instance: "LLMProvider | None" = None


def get_provider(provider_name: str | None = None) -> "LLMProvider":
    """
    Get the configured LLM provider singleton.

    Args:
        provider_name: Override for settings.LLM_PROVIDER

    Returns:
        LLMProvider instance

    Raises:
        ValueError: If provider name is unknown
    """
    global _provider_instance

    if _provider_instance is None:
        # Import here to avoid circular dependencies
        from ..core.config import settings
        from ..utils.logger import get_logger

        logger = get_logger(__name__)
        provider_name = provider_name or settings.LLM_PROVIDER

        if provider_name == "openai_compatible":
            from .openai_compatible import OpenAICompatibleProvider
            _provider_instance = OpenAICompatibleProvider()
        elif provider_name == "gemini":
            from .gemini import GeminiProvider
            _provider_instance = GeminiProvider()
        else:
            raise ValueError(f"Unknown LLM provider: {provider_name}")

        logger.info(f"LLM provider initialized: {provider_name}")

    return _provider_instance


def reset_provider() -> None:
    """Reset the provider singleton (useful for testing)."""
    global _provider_instance
    _provider_instance = None

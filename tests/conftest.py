"""
Pytest configuration and shared fixtures for negotiator tests.

WHAT: Centralized test configuration with markers and common builders
WHY: Enable test organization, filtering, and shared test utilities
HOW: Point settings at throwaway storage before import, define markers and fixtures
"""

import os

# Must be set before negotiator.core.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ["REDIS_URL"] = ""
os.environ.setdefault("LOG_FILE", "./data/logs/test.log")

import pytest

from negotiator.core.round_manager import RoundLimitManager
from negotiator.core.state_store import ConversationStateStore
from negotiator.llm.provider_factory import reset_provider
from negotiator.models.negotiation import NegotiationContext, ProductInfo
from negotiator.services.state_mirror import reset_redis_client


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests (isolated component tests)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests (multiple components)"
    )
    config.addinivalue_line(
        "markers", "slow: Tests that take significant time to run"
    )


@pytest.fixture(autouse=True)
def reset_singletons():
    """
    Reset provider and Redis singletons around each test.

    WHAT: Clear cached clients between tests
    WHY: Prevent test pollution and ensure clean state
    HOW: Call the reset helpers before and after each test
    """
    reset_provider()
    reset_redis_client()
    yield
    reset_provider()
    reset_redis_client()


@pytest.fixture
def laptop_context() -> NegotiationContext:
    """Round-3 counter-offer context used across interpreter and selector tests."""
    return NegotiationContext(
        product_title="Laptop",
        base_price=2500,
        min_price=1800,
        current_offer=1950,
        round=3,
        max_rounds=10,
        urgency="medium",
        personality="professional",
        category="electronics",
        user_message="Would you take $1950?",
    )


@pytest.fixture
def laptop_product() -> ProductInfo:
    return ProductInfo(
        title="Laptop",
        base_price=2500,
        min_price=1800,
        category="electronics",
        condition="like new",
    )


@pytest.fixture
def store(tmp_path) -> ConversationStateStore:
    """Store without mirror or background cleanup, archiving into tmp_path."""
    return ConversationStateStore(
        ttl_hours=1,
        max_messages=100,
        archive_dir=str(tmp_path / "archive"),
        archive_on_evict=False,
    )


@pytest.fixture
def rounds() -> RoundLimitManager:
    return RoundLimitManager()


# Test data constants
MOCK_CHAT_RESPONSE = {
    "choices": [{"message": {"content": "How about $2,150? It is in excellent condition."}}],
    "usage": {"prompt_tokens": 120, "completion_tokens": 14, "total_tokens": 134},
    "model": "test-model"
}

MOCK_GEMINI_RESPONSE = {
    "candidates": [{"content": {"role": "model", "parts": [{"text": "I accept your offer!"}]}}],
    "usageMetadata": {"promptTokenCount": 80, "candidatesTokenCount": 5, "totalTokenCount": 85},
}

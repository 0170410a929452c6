"""
Application configuration using pydantic-settings.

WHAT: Centralized config from environment variables
WHY: Type-safe, validated config with sensible defaults
HOW: Pydantic BaseSettings reads from .env and environment
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator
from typing import Literal
from pathlib import Path


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_file=[
            str(Path(__file__).parent.parent.parent / ".env"),
        ],
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # App metadata
    APP_NAME: str = "Negotiation Orchestrator"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False

    # Persistent negotiation records (owned by the CRUD layer)
    DATABASE_URL: str = "sqlite:///./data/negotiations.db"

    # LLM Provider Selection
    LLM_PROVIDER: Literal["openai_compatible", "gemini"] = "openai_compatible"

    # OpenAI-compatible endpoint (OpenRouter, LM Studio, ...)
    LLM_BASE_URL: str = "http://localhost:1234/v1"
    LLM_API_KEY: str = ""
    LLM_DEFAULT_MODEL: str = "qwen/qwen3-1.7b"

    # Gemini REST endpoint
    GEMINI_BASE_URL: str = "https://generativelanguage.googleapis.com/v1beta"
    GEMINI_API_KEY: str = ""
    GEMINI_MODEL: str = "gemini-1.5-flash"

    # LLM Request Configuration
    LLM_TIMEOUT: int = 30  # seconds, per HTTP request
    LLM_MAX_RETRIES: int = 3
    LLM_RETRY_DELAY: float = 2  # seconds, base for exponential backoff
    LLM_DEFAULT_TEMPERATURE: float = 0.7
    LLM_DEFAULT_MAX_TOKENS: int = 512
    LLM_TURN_TIMEOUT: float = 10.0  # seconds, whole model call inside a turn

    # Negotiation defaults
    MAX_NEGOTIATION_ROUNDS: int = 10
    ROUND_WARNING_FRACTION: float = 0.8
    ROUND_ESCALATION_FRACTION: float = 0.9
    MAX_NEGOTIATION_DURATION_HOURS: float = 24
    WARNING_NEGOTIATION_DURATION_HOURS: float = 20
    ALLOW_ROUND_EXTENSION: bool = True
    MAX_ROUND_EXTENSIONS: int = 2

    # Conversation state store
    STATE_TTL_HOURS: float = 24
    STATE_CLEANUP_INTERVAL_SECONDS: int = 3600
    MAX_MESSAGES_PER_NEGOTIATION: int = 5000
    SUMMARY_MAX_MESSAGES: int = 5

    # Analytics policy (empirical starting weights)
    ANALYTICS_SENTIMENT_WEIGHT: float = 0.3
    ANALYTICS_CONVERGENCE_WEIGHT: float = 0.2
    ANALYTICS_RESPONSE_TIME_WEIGHT: float = 0.1
    PHASE_MOVEMENT_THRESHOLD: float = 5.0  # percent of the first offer

    # Interpreter policy
    MIN_DECISION_CONFIDENCE: float = 0.5
    MAX_RESPONSE_LENGTH: int = 500

    # Optional distributed mirror
    REDIS_URL: str = ""
    REDIS_STATE_TTL_SECONDS: int = 3600

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "./data/logs/negotiator.log"
    ARCHIVE_DIR: str = "./data/archive"
    ARCHIVE_ON_EVICT: bool = False

    @field_validator("ROUND_WARNING_FRACTION", "ROUND_ESCALATION_FRACTION")
    @classmethod
    def validate_fraction(cls, v: float) -> float:
        """Thresholds are fractions of max rounds."""
        if not 0 < v <= 1:
            raise ValueError("threshold fractions must be within (0, 1]")
        return v


# Singleton instance
settings = Settings()

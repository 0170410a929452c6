"""
Redis mirror for negotiation state.

WHAT: Advisory copy of NegotiationState in Redis for recovery and resumption
WHY: Lets another process pick up a negotiation; memory stays authoritative
HOW: Cached redis client from REDIS_URL, JSON snapshots with a TTL, failures logged not raised
"""

import threading
from typing import Optional

import redis
from pydantic import ValidationError

from ..core.config import settings
from ..models.negotiation import NegotiationState
from ..utils.logger import get_logger

logger = get_logger(__name__)

_REDIS_LOCK = threading.Lock()
_REDIS_CLIENT: Optional["redis.Redis"] = None


def get_redis_client() -> Optional["redis.Redis"]:
    """Return a cached Redis client, or None when REDIS_URL is unset or unreachable."""
    global _REDIS_CLIENT

    with _REDIS_LOCK:
        if _REDIS_CLIENT is not None:
            return _REDIS_CLIENT

        url = settings.REDIS_URL
        if not url:
            return None

        try:
            client = redis.from_url(url)
            client.ping()
        except redis.RedisError:
            logger.exception(f"Failed to initialise Redis client for url={url}")
            return None

        _REDIS_CLIENT = client
        return _REDIS_CLIENT


def reset_redis_client() -> None:
    """Reset the cached Redis client (primarily for tests)."""
    global _REDIS_CLIENT
    with _REDIS_LOCK:
        _REDIS_CLIENT = None


class StateMirror:
    """Write-through, read-fallback copy of negotiation state."""

    KEY_PREFIX = "negotiator:state:"

    def __init__(self, client: "redis.Redis", ttl_seconds: int | None = None):
        self.client = client
        self.ttl_seconds = ttl_seconds or settings.REDIS_STATE_TTL_SECONDS

    @classmethod
    def from_settings(cls) -> "StateMirror | None":
        """Mirror bound to REDIS_URL, or None when Redis is not configured."""
        client = get_redis_client()
        if client is None:
            return None
        logger.info("Redis state mirror enabled")
        return cls(client)

    def _key(self, negotiation_id: str) -> str:
        return f"{self.KEY_PREFIX}{negotiation_id}"

    def save(self, state: NegotiationState) -> bool:
        try:
            self.client.setex(self._key(state.negotiation_id), self.ttl_seconds, state.model_dump_json())
            return True
        except redis.RedisError as e:
            logger.warning(f"Redis mirror write failed for {state.negotiation_id}: {e}")
            return False

    def load(self, negotiation_id: str) -> NegotiationState | None:
        try:
            raw = self.client.get(self._key(negotiation_id))
        except redis.RedisError as e:
            logger.warning(f"Redis mirror read failed for {negotiation_id}: {e}")
            return None
        if raw is None:
            return None
        try:
            return NegotiationState.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Discarding unreadable mirrored state for {negotiation_id}: {e}")
            return None

    def delete(self, negotiation_id: str) -> None:
        try:
            self.client.delete(self._key(negotiation_id))
        except redis.RedisError as e:
            logger.warning(f"Redis mirror delete failed for {negotiation_id}: {e}")

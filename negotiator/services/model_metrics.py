"""
Language model call metrics.

WHAT: Count model calls, failures, latency and error categories
WHY: Operators need to see when the oracle degrades before buyers notice
HOW: Thread-safe in-process counters with a bounded latency window
"""

import asyncio
import threading
from collections import Counter, deque
from datetime import datetime

from ..llm.types import ProviderTimeoutError, ProviderUnavailableError, ProviderDisabledError

RESPONSE_TIME_WINDOW = 1000

# Substring checks, first match wins
_ERROR_KEYWORDS = [
    ("rate limit", "rate_limit"),
    ("429", "rate_limit"),
    ("api key", "authentication"),
    ("401", "authentication"),
    ("403", "authentication"),
    ("timeout", "timeout"),
    ("timed out", "timeout"),
    ("network", "network"),
    ("not reachable", "network"),
    ("connection", "network"),
    ("quota", "quota_exceeded"),
    ("invalid", "invalid_request"),
    ("400", "invalid_request"),
]


def categorize_error(error: BaseException) -> str:
    """Map an exception to one of the metric error categories."""
    if isinstance(error, (ProviderTimeoutError, asyncio.TimeoutError, TimeoutError)):
        return "timeout"
    if isinstance(error, ProviderUnavailableError):
        return "network"
    if isinstance(error, ProviderDisabledError):
        return "authentication"

    message = str(error).lower()
    for keyword, category in _ERROR_KEYWORDS:
        if keyword in message:
            return category
    return "unknown"


class ModelMetrics:
    """Aggregate counters for model calls."""

    def __init__(self, window: int = RESPONSE_TIME_WINDOW):
        self._lock = threading.Lock()
        self._window = window
        self.reset()

    def reset(self) -> None:
        with self._lock:
            self.total_requests = 0
            self.successful_requests = 0
            self.failed_requests = 0
            self.response_times: deque[float] = deque(maxlen=self._window)
            self.error_types: Counter = Counter()
            self.scenarios: Counter = Counter()
            self.daily_usage: Counter = Counter()

    def record_request(
        self,
        scenario: str,
        response_time_ms: float,
        success: bool,
        error: BaseException | None = None
    ) -> None:
        """Record the outcome of one model call."""
        with self._lock:
            self.total_requests += 1
            self.scenarios[scenario or "unknown"] += 1
            self.daily_usage[datetime.now().date().isoformat()] += 1
            if success:
                self.successful_requests += 1
                self.response_times.append(response_time_ms)
            else:
                self.failed_requests += 1
                if error is not None:
                    self.error_types[categorize_error(error)] += 1

    def snapshot(self) -> dict:
        with self._lock:
            average = sum(self.response_times) / len(self.response_times) if self.response_times else 0.0
            success_rate = self.successful_requests / self.total_requests if self.total_requests else 0.0
            return {
                "total_requests": self.total_requests,
                "successful_requests": self.successful_requests,
                "failed_requests": self.failed_requests,
                "success_rate": round(success_rate, 4),
                "average_response_time_ms": round(average, 2),
                "error_types": dict(self.error_types),
                "scenarios": dict(self.scenarios),
                "daily_usage": dict(self.daily_usage),
            }

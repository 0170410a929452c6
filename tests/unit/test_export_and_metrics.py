"""
Unit tests for negotiation export and model metrics.

WHAT: Test JSON/CSV/text export and model call accounting
WHY: Exports are audit trails; metrics show when the model degrades
HOW: Export a seeded store state; feed metrics a mix of successes and failures
"""

import asyncio
import csv
import io
import json

import pytest

from negotiator.llm.types import ProviderResponseError, ProviderTimeoutError, ProviderUnavailableError
from negotiator.services.export_service import CSV_COLUMNS, export_state
from negotiator.services.model_metrics import ModelMetrics, categorize_error


@pytest.fixture
def negotiation(store):
    store.create("neg-1", {"title": "Laptop", "base_price": 2500, "min_price": 1800})
    store.append_message("neg-1", {"sender": "buyer", "content": "Would you take $1,500?", "round": 1,
                                   "offer": {"amount": 1500}})
    store.append_message("neg-1", {"sender": "agent", "content": "How about $2,200?", "round": 1,
                                   "offer": {"amount": 2200}, "action": "counter"})
    return store.get("neg-1").data


@pytest.mark.unit
class TestExport:

    def test_json(self, negotiation):
        data = json.loads(export_state(negotiation, "json"))

        assert data["metadata"]["negotiation_id"] == "neg-1"
        assert data["product"]["title"] == "Laptop"
        assert len(data["messages"]) == 2
        assert [o["amount"] for o in data["offers"]] == [1500, 2200]
        assert data["branches"][0]["name"] == "main"
        assert data["limits"] is None

    def test_csv(self, negotiation):
        rows = list(csv.DictReader(io.StringIO(export_state(negotiation, "csv"))))

        assert list(rows[0].keys()) == CSV_COLUMNS
        assert rows[0]["sender"] == "buyer"
        assert rows[0]["offer_amount"] == "1500.0"
        assert rows[1]["action"] == "counter"

    def test_text(self, negotiation):
        text = export_state(negotiation, "TXT")

        assert text.startswith("Negotiation neg-1")
        assert "Product: Laptop (listed at $2,500)" in text
        assert "buyer: Would you take $1,500? (Offered: $1,500)" in text

    def test_unknown_format(self, negotiation):
        with pytest.raises(ValueError, match="Unsupported export format"):
            export_state(negotiation, "xml")


@pytest.mark.unit
class TestModelMetrics:

    @pytest.mark.parametrize("error,expected", [
        (ProviderTimeoutError("Request timed out after 3 attempts"), "timeout"),
        (asyncio.TimeoutError(), "timeout"),
        (ProviderUnavailableError("Provider at http://x is not reachable"), "network"),
        (ProviderResponseError("HTTP 429: slow down"), "rate_limit"),
        (ProviderResponseError("HTTP 401: bad key"), "authentication"),
        (ProviderResponseError("Monthly quota used up"), "quota_exceeded"),
        (RuntimeError("something odd"), "unknown"),
    ])
    def test_categorize_error(self, error, expected):
        assert categorize_error(error) == expected

    def test_snapshot(self):
        metrics = ModelMetrics(window=2)
        metrics.record_request("initial", 100.0, True)
        metrics.record_request("counter_offer", 200.0, True)
        metrics.record_request("counter_offer", 400.0, True)
        metrics.record_request("counter_offer", 0.0, False, ProviderTimeoutError("timed out"))

        snapshot = metrics.snapshot()

        assert snapshot["total_requests"] == 4
        assert snapshot["successful_requests"] == 3
        assert snapshot["failed_requests"] == 1
        assert snapshot["success_rate"] == 0.75
        # Window of two keeps the latest samples only
        assert snapshot["average_response_time_ms"] == 300.0
        assert snapshot["error_types"] == {"timeout": 1}
        assert snapshot["scenarios"] == {"initial": 1, "counter_offer": 3}
        assert sum(snapshot["daily_usage"].values()) == 4

    def test_reset(self):
        metrics = ModelMetrics()
        metrics.record_request("initial", 10.0, True)
        metrics.reset()
        assert metrics.snapshot()["total_requests"] == 0

"""
Unit tests for logging setup.

WHAT: Test root logger configuration and per-module loggers
WHY: Hosts call setup_logging() once at startup and rely on the log file
HOW: Point LOG_FILE at tmp_path, restore root handlers afterwards
"""

import asyncio
import logging

import pytest

from negotiator.core.config import settings
from negotiator.utils.logger import (
    NO_NEGOTIATION,
    NegotiationIdFilter,
    current_negotiation_id,
    get_logger,
    negotiation_context,
    setup_logging,
)


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    for handler in root.handlers:
        handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.mark.unit
def test_setup_logging_writes_file(tmp_path, monkeypatch, restore_root_logger):
    log_file = tmp_path / "logs" / "negotiator.log"
    monkeypatch.setattr(settings, "LOG_FILE", str(log_file))
    monkeypatch.setattr(settings, "LOG_LEVEL", "debug")

    setup_logging()
    get_logger("negotiator.test").debug("round 3 of neg-1")

    root = restore_root_logger
    assert root.level == logging.DEBUG
    assert len(root.handlers) == 2
    for handler in root.handlers:
        handler.flush()
    content = log_file.read_text()
    assert "Logging initialized" in content
    assert "round 3 of neg-1" in content


@pytest.mark.unit
def test_lines_carry_the_negotiation_id(tmp_path, monkeypatch, restore_root_logger):
    log_file = tmp_path / "negotiator.log"
    monkeypatch.setattr(settings, "LOG_FILE", str(log_file))
    monkeypatch.setattr(settings, "LOG_LEVEL", "info")

    setup_logging()
    logger = get_logger("negotiator.test")
    with negotiation_context("neg-42"):
        logger.info("countered at 2150")
    logger.info("sweep finished")

    for handler in restore_root_logger.handlers:
        handler.flush()
    lines = log_file.read_text().splitlines()
    assert any("[neg-42]" in line and "countered at 2150" in line for line in lines)
    assert any(f"[{NO_NEGOTIATION}]" in line and "sweep finished" in line for line in lines)


@pytest.mark.unit
def test_get_logger_is_namespaced():
    assert get_logger("negotiator.core.orchestrator").name == "negotiator.core.orchestrator"


@pytest.mark.unit
class TestNegotiationContext:

    def test_context_is_restored_after_block(self):
        assert current_negotiation_id() == NO_NEGOTIATION
        with negotiation_context("neg-1"):
            with negotiation_context("neg-2"):
                assert current_negotiation_id() == "neg-2"
            assert current_negotiation_id() == "neg-1"
        assert current_negotiation_id() == NO_NEGOTIATION

    def test_filter_keeps_explicit_id(self):
        record = logging.LogRecord("negotiator", logging.INFO, __file__, 1, "msg", None, None)
        record.negotiation_id = "neg-explicit"

        with negotiation_context("neg-1"):
            assert NegotiationIdFilter().filter(record) is True
        assert record.negotiation_id == "neg-explicit"

    @pytest.mark.asyncio
    async def test_concurrent_tasks_keep_their_own_id(self):
        async def turn(negotiation_id):
            with negotiation_context(negotiation_id):
                await asyncio.sleep(0.01)
                return current_negotiation_id()

        assert await asyncio.gather(turn("neg-1"), turn("neg-2")) == ["neg-1", "neg-2"]

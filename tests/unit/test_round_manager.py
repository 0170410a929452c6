"""
Unit tests for round and limit management.

WHAT: Test increments, thresholds, duration caps, extensions and record write-back
WHY: No model call may happen once a negotiation has hit its limits
HOW: In-memory manager, plus a SQLite-backed record store on a StaticPool engine
"""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from negotiator.core.database import init_db
from negotiator.core.round_manager import (
    WARNING_ESCALATION,
    WARNING_ROUND_LIMIT,
    WARNING_TIME_LIMIT,
    RoundLimitManager,
    lifecycle_stage,
)
from negotiator.services.record_store import SqlNegotiationRecordStore
from negotiator.utils.exceptions import ErrorCode


@pytest.fixture
def record_store() -> SqlNegotiationRecordStore:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    return SqlNegotiationRecordStore(sessionmaker(bind=engine, expire_on_commit=False))


class FailingRecordStore:
    """Record store whose database is gone."""

    def get_record(self, negotiation_id):
        raise OperationalError("SELECT", {}, Exception("database is locked"))

    def update_rounds(self, negotiation_id, rounds):
        raise OperationalError("UPDATE", {}, Exception("database is locked"))

    def update_max_rounds(self, negotiation_id, max_rounds):
        raise OperationalError("UPDATE", {}, Exception("database is locked"))

    def update_status(self, negotiation_id, status):
        raise OperationalError("UPDATE", {}, Exception("database is locked"))


@pytest.mark.unit
@pytest.mark.parametrize("current_round,expected", [
    (0, "opening"),
    (2, "exploring"),
    (5, "bargaining"),
    (8, "closing"),
])
def test_lifecycle_stage(current_round, expected):
    assert lifecycle_stage(current_round, 10) == expected


@pytest.mark.unit
class TestIncrement:

    def test_increment_past_max_is_denied(self, rounds):
        rounds.register("neg-1", max_rounds=3)
        for expected in (1, 2, 3):
            result = rounds.increment("neg-1")
            assert result.success
            assert result.current_round == expected

        assert result.can_continue is False
        assert result.remaining_rounds == 0

        denied = rounds.increment("neg-1")
        assert denied.success is False
        assert denied.can_continue is False
        assert denied.error_code == ErrorCode.LIMIT_EXCEEDED
        assert denied.reason == "Maximum rounds reached"
        assert denied.status == "expired"
        assert denied.current_round == 3

    def test_check_limit_is_read_only(self, rounds):
        rounds.register("neg-1", max_rounds=3)
        check = rounds.check_limit("neg-1")

        assert check.success and check.can_continue
        assert rounds.get_limits("neg-1").current_round == 0

    def test_unknown_id(self, rounds):
        assert rounds.increment("missing").error_code == ErrorCode.STATE_NOT_FOUND
        assert rounds.check_limit("missing").error_code == ErrorCode.STATE_NOT_FOUND
        assert rounds.extend("missing", 20).error_code == ErrorCode.STATE_NOT_FOUND

    def test_warning_and_escalation_thresholds(self, rounds):
        rounds.register("neg-1", max_rounds=10)
        results = [rounds.increment("neg-1") for _ in range(9)]

        assert results[6].warnings == []
        assert results[7].warnings == [WARNING_ROUND_LIMIT]
        assert results[8].warnings == [WARNING_ROUND_LIMIT, WARNING_ESCALATION]

    def test_duration_limit(self, rounds):
        rounds.register("neg-1", max_rounds=10, started_at=datetime.now() - timedelta(hours=25))
        denied = rounds.increment("neg-1")

        assert denied.success is False
        assert denied.reason == "Maximum negotiation duration exceeded"
        assert denied.status == "expired"

    def test_time_warning(self, rounds):
        rounds.register("neg-1", max_rounds=10, started_at=datetime.now() - timedelta(hours=21))
        result = rounds.increment("neg-1")

        assert result.success
        assert WARNING_TIME_LIMIT in result.warnings


@pytest.mark.unit
class TestExtensions:

    def test_extension_reopens_expired_negotiation(self, rounds):
        rounds.register("neg-1", max_rounds=2)
        rounds.increment("neg-1")
        rounds.increment("neg-1")
        assert rounds.increment("neg-1").status == "expired"

        extended = rounds.extend("neg-1", 4)
        assert extended.success
        assert extended.max_rounds == 4
        assert extended.can_continue
        assert extended.status != "expired"
        assert extended.extensions_remaining == 1

        assert rounds.increment("neg-1").current_round == 3

    def test_new_max_must_grow(self, rounds):
        rounds.register("neg-1", max_rounds=5)
        denied = rounds.extend("neg-1", 5)
        assert denied.success is False
        assert denied.error_code == ErrorCode.LIMIT_EXCEEDED

    def test_disabled_extensions(self, rounds):
        rounds.register("neg-1", max_rounds=5, allow_extension=False)
        assert rounds.extend("neg-1", 10).reason == "Extensions are disabled for this negotiation"

    def test_quota(self, rounds):
        rounds.register("neg-1", max_rounds=5, max_extensions=1)
        assert rounds.extend("neg-1", 6).success
        denied = rounds.extend("neg-1", 7)
        assert denied.success is False
        assert "quota" in denied.reason

    def test_closed_deal_cannot_be_extended(self, rounds):
        rounds.register("neg-1", max_rounds=5)
        rounds.increment("neg-1")
        rounds.record_outcome("neg-1", "accept")
        assert rounds.extend("neg-1", 10).reason == "Negotiation already accepted"


@pytest.mark.unit
class TestOutcomes:

    def test_accept_is_terminal(self, rounds):
        rounds.register("neg-1", max_rounds=5)
        rounds.increment("neg-1")
        assert rounds.record_outcome("neg-1", "accept").status == "accepted"

        check = rounds.check_limit("neg-1")
        assert check.success is False
        assert check.reason == "Negotiation already accepted"

        # A denied increment keeps the accepted status
        assert rounds.increment("neg-1").status == "accepted"

    def test_early_reject_is_not_terminal(self, rounds):
        rounds.register("neg-1", max_rounds=5)
        rounds.increment("neg-1")
        result = rounds.record_outcome("neg-1", "reject")

        assert result.status == "exploring"
        assert rounds.check_limit("neg-1").success

    def test_final_round_reject_is_terminal(self, rounds):
        rounds.register("neg-1", max_rounds=2)
        rounds.increment("neg-1")
        rounds.increment("neg-1")
        assert rounds.record_outcome("neg-1", "reject").status == "rejected"

    def test_reset(self, rounds):
        rounds.register("neg-1", max_rounds=2)
        rounds.increment("neg-1")
        rounds.increment("neg-1")
        rounds.increment("neg-1")

        reset = rounds.reset("neg-1")
        assert reset.success
        assert reset.current_round == 0
        assert reset.status == "opening"
        assert rounds.increment("neg-1").success

    def test_forget_drops_limits(self, rounds):
        rounds.register("neg-1", max_rounds=3)

        assert rounds.forget("neg-1") is True
        assert rounds.get_limits("neg-1") is None
        assert rounds.increment("neg-1").error_code == ErrorCode.STATE_NOT_FOUND
        assert rounds.forget("neg-1") is False


@pytest.mark.unit
class TestRecordWriteBack:

    def test_limits_are_seeded_from_record(self, record_store):
        record_store.create_record("neg-1", buyer="ann", seller="bob", product="Laptop", max_rounds=4)
        record_store.update_rounds("neg-1", 2)

        limits = RoundLimitManager(record_store).register("neg-1", max_rounds=10)

        assert limits.max_rounds == 4
        assert limits.current_round == 2

    def test_increments_and_outcomes_are_written_back(self, record_store):
        record_store.create_record("neg-1", max_rounds=5)
        manager = RoundLimitManager(record_store)
        manager.register("neg-1")

        manager.increment("neg-1")
        record = record_store.get_record("neg-1")
        assert record.rounds == 1
        assert record.status == "exploring"

        manager.record_outcome("neg-1", "accept")
        assert record_store.get_record("neg-1").status == "accepted"

        manager.extend("neg-1", 8)
        assert record_store.get_record("neg-1").max_rounds == 5

    def test_extension_is_written_back(self, record_store):
        record_store.create_record("neg-1", max_rounds=5)
        manager = RoundLimitManager(record_store)
        manager.register("neg-1")

        manager.extend("neg-1", 8)
        assert record_store.get_record("neg-1").max_rounds == 8

    def test_missing_record_is_skipped(self, record_store):
        manager = RoundLimitManager(record_store)
        manager.register("neg-1", max_rounds=3)

        assert manager.increment("neg-1").success
        assert record_store.get_record("neg-1") is None

    def test_database_errors_do_not_break_limits(self):
        manager = RoundLimitManager(FailingRecordStore())
        limits = manager.register("neg-1", max_rounds=3)

        assert limits.max_rounds == 3
        assert manager.increment("neg-1").success
        assert manager.record_outcome("neg-1", "accept").status == "accepted"

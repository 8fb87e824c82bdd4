"""Tests for statements and the statement log."""

import pytest

from occtx.exceptions import TransactionUsageError
from occtx.statements.base import Statement, StatementKind
from occtx.statements.log import StatementLog, digest_result


class TestStatement:
    """Tests for Statement."""

    def test_read_and_write_constructors(self) -> None:
        """Test statement kinds."""
        read = Statement.read("SELECT name FROM venues WHERE code = :code", code="V1")
        write = Statement.write("DELETE FROM venues")

        assert read.kind is StatementKind.READ
        assert read.is_read
        assert not read.is_write
        assert read.parameters == {"code": "V1"}
        assert write.is_write
        assert write.parameters == {}

    def test_default_kind_is_write(self) -> None:
        """Test that a statement is a write unless told otherwise."""
        assert Statement("UPDATE venues SET name = 'x'").is_write

    def test_parameters_are_frozen(self) -> None:
        """Test that parameters cannot be changed after creation."""
        parameters = {"code": "V1"}
        statement = Statement.write("DELETE FROM venues WHERE code = :code", **parameters)
        parameters["code"] = "V2"

        assert statement.parameters["code"] == "V1"
        with pytest.raises(TypeError):
            statement.parameters["code"] = "V3"  # type: ignore[index]


class TestStatementLog:
    """Tests for StatementLog."""

    def test_append_keeps_issue_order(self) -> None:
        """Test that entries are kept in issue order with increasing positions."""
        log = StatementLog()
        first = log.append(Statement.write("INSERT 1"))
        second = log.append(Statement.read("SELECT 1"), digest="abc")

        assert len(log) == 2
        assert [entry.position for entry in log] == [0, 1]
        assert first.position < second.position
        assert second.digest == "abc"

    def test_reads_are_executed_when_recorded(self) -> None:
        """Test that a read takes its place in the execution order right away."""
        log = StatementLog()
        write = log.append(Statement.write("INSERT 1"))
        read = log.append(Statement.read("SELECT 1"))

        assert not write.executed
        assert read.executed
        assert log.executed() == (read,)

    def test_writes_are_executed_when_flushed(self) -> None:
        """Test that a write staged before a read but flushed after it is replayed after it."""
        log = StatementLog()
        write = log.append(Statement.write("INSERT 1"))
        read = log.append(Statement.read("SELECT 1"))

        log.mark_flushed([write.position])

        assert [entry.position for entry in log.executed()] == [read.position, write.position]
        assert log.replay() == (read.statement, write.statement)

    def test_mark_flushed_follows_flush_order(self) -> None:
        """Test that writes flushed in a different order than staged are replayed in flush order."""
        log = StatementLog()
        staged_first = log.append(Statement.write("UPDATE 1"))
        staged_second = log.append(Statement.write("INSERT 1"))

        log.mark_flushed([staged_second.position])
        log.mark_flushed([staged_first.position])

        assert log.replay() == (staged_second.statement, staged_first.statement)

    def test_mark_flushed_twice_keeps_the_first_place(self) -> None:
        """Test that flushing a write again does not move it in the execution order."""
        log = StatementLog()
        write = log.append(Statement.write("INSERT 1"))
        log.mark_flushed([write.position])
        read = log.append(Statement.read("SELECT 1"))

        log.mark_flushed([write.position])

        assert log.executed()[0].position == write.position
        assert log.executed()[1].position == read.position

    def test_replay_puts_staged_writes_last(self) -> None:
        """Test that writes that were never flushed come after the executed statements."""
        log = StatementLog()
        staged = log.append(Statement.write("INSERT 1"))
        flushed = log.append(Statement.write("INSERT 2"))
        log.mark_flushed([flushed.position])

        assert log.replay() == (flushed.statement, staged.statement)

    def test_writes(self) -> None:
        """Test that only writes are returned by writes."""
        log = StatementLog()
        log.append(Statement.read("SELECT 1"))
        write = log.append(Statement.write("INSERT 1"))

        assert log.writes() == (write,)

    def test_discard_removes_rejected_entries(self) -> None:
        """Test that discarded positions are never replayed."""
        log = StatementLog()
        kept = log.append(Statement.write("INSERT 1"))
        rejected = log.append(Statement.write("INSERT 2"))

        log.discard([rejected.position])

        assert log.entries() == (kept,)

    def test_positions_are_not_reused_after_discard(self) -> None:
        """Test that a new entry never takes the position of a discarded one."""
        log = StatementLog()
        rejected = log.append(Statement.write("INSERT 1"))
        log.discard([rejected.position])

        assert log.append(Statement.write("INSERT 2")).position == 1

    def test_clear_seals_the_log(self) -> None:
        """Test that a committed log is empty and rejects new statements."""
        log = StatementLog()
        log.append(Statement.write("INSERT 1"))

        log.clear()

        assert len(log) == 0
        assert log.sealed
        with pytest.raises(TransactionUsageError):
            log.append(Statement.write("INSERT 2"))
        with pytest.raises(TransactionUsageError):
            log.reset()

    def test_reset_keeps_the_log_open(self) -> None:
        """Test that a reset log accepts new statements."""
        log = StatementLog()
        log.append(Statement.write("INSERT 1"))

        log.reset()
        log.append(Statement.write("INSERT 2"))

        assert not log.sealed
        assert log.replay() == (Statement.write("INSERT 2"),)

    def test_iteration_is_a_snapshot(self) -> None:
        """Test that appending while iterating does not change the iteration."""
        log = StatementLog()
        log.append(Statement.write("INSERT 1"))

        for _ in log:
            log.append(Statement.write("INSERT 2"))

        assert len(log) == 2


def test_digest_result_is_stable() -> None:
    """Test that equal results have equal digests."""
    assert digest_result([{"name": "Venue 1"}]) == digest_result([{"name": "Venue 1"}])
    assert digest_result([{"name": "Venue 1"}]) != digest_result([{"name": "Venue 2"}])
    assert digest_result(None) != digest_result([])

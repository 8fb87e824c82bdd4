"""Statement log."""

import dataclasses
import hashlib
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from typing import Any

from occtx.exceptions import TransactionUsageError
from occtx.statements.base import Statement


def digest_result(result: Any) -> str:
    """Digest the result of a read so that it can be compared after a replay."""
    return hashlib.sha256(repr(result).encode()).hexdigest()


@dataclass(frozen=True)
class LogEntry:
    """A recorded statement.

    Attributes:
        position (int): Identity of the entry, in recording order.
        statement (Statement): The recorded statement.
        digest (str | None): Digest of the read result, if reads are verified on replay.
        sequence (int | None): Order in which the statement reached the store. None for a
            write that was staged but not flushed yet.

    """

    position: int
    statement: Statement
    digest: str | None = None
    sequence: int | None = None

    @property
    def executed(self) -> bool:
        """Whether the statement reached the store."""
        return self.sequence is not None


class StatementLog:
    """Statements issued by one logical transaction.

    Reads are recorded once they ran, writes as soon as they are staged. A write only gets
    its place in the execution order when it is flushed, so the log replays statements in the
    order the store saw them, whatever order they were staged in.

    The log is append-only while the transaction is running. Once the transaction commits,
    the log is cleared and sealed.
    """

    def __init__(self) -> None:
        """Initialize the log."""
        self._entries: list[LogEntry] = []
        self._next_position = 0
        self._next_sequence = 0
        self._sealed = False

    def __len__(self) -> int:
        """Get the number of recorded statements."""
        return len(self._entries)

    def __iter__(self) -> Iterator[LogEntry]:
        """Iterate over the entries in recording order."""
        return iter(tuple(self._entries))

    @property
    def sealed(self) -> bool:
        """Whether the log has been cleared after a commit."""
        return self._sealed

    def append(self, statement: Statement, digest: str | None = None) -> LogEntry:
        """Record a statement.

        A read is recorded as executed. A write is recorded as staged until `mark_flushed`.

        Args:
            statement (Statement): The statement to record.
            digest (str | None): The digest of the read result, if reads are verified on replay.

        Returns:
            LogEntry: The recorded entry.

        Raises:
            TransactionUsageError: If the log was sealed by a commit.

        """
        if self._sealed:
            raise TransactionUsageError("Cannot record statements after the transaction has committed.")

        entry = LogEntry(position=self._next_position, statement=statement, digest=digest)
        self._next_position += 1
        if statement.is_read:
            entry = self._sequenced(entry)
        self._entries.append(entry)
        return entry

    def mark_flushed(self, positions: Iterable[int]) -> None:
        """Record that staged writes reached the store, in the given order."""
        index = {entry.position: i for i, entry in enumerate(self._entries)}
        for position in positions:
            i = index[position]
            if not self._entries[i].executed:
                self._entries[i] = self._sequenced(self._entries[i])

    def executed(self) -> tuple[LogEntry, ...]:
        """Get the entries that reached the store, in execution order."""
        entries = [entry for entry in self._entries if entry.executed]
        return tuple(sorted(entries, key=lambda entry: entry.sequence or 0))

    def replay(self) -> tuple[Statement, ...]:
        """Get every recorded statement for re-execution.

        Executed statements come first in execution order, then the staged writes in staging order.
        """
        staged = [entry for entry in self._entries if not entry.executed]
        return tuple(entry.statement for entry in (*self.executed(), *staged))

    def entries(self) -> tuple[LogEntry, ...]:
        """Get every entry in recording order."""
        return tuple(self._entries)

    def writes(self) -> tuple[LogEntry, ...]:
        """Get the write entries in recording order."""
        return tuple(entry for entry in self._entries if entry.statement.is_write)

    def discard(self, positions: Iterable[int]) -> None:
        """Forget entries that the store rejected, so that they are never replayed."""
        rejected = set(positions)
        self._entries = [entry for entry in self._entries if entry.position not in rejected]

    def reset(self) -> None:
        """Empty the log for a full re-execution of the transaction body."""
        if self._sealed:
            raise TransactionUsageError("Cannot reset the log of a committed transaction.")
        self._entries.clear()

    def clear(self) -> None:
        """Empty and seal the log once the transaction has committed."""
        self._entries.clear()
        self._sealed = True

    def _sequenced(self, entry: LogEntry) -> LogEntry:
        entry = dataclasses.replace(entry, sequence=self._next_sequence)
        self._next_sequence += 1
        return entry

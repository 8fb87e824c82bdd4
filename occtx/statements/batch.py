"""Mutation batches."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from occtx.exceptions import TransactionUsageError
from occtx.statements.base import Statement
from occtx.statements.log import LogEntry, StatementLog
from occtx.transactions.outcome import Outcome

if TYPE_CHECKING:
    from occtx.transactions.handle import TransactionHandle

logger = logging.getLogger(__name__)


class MutationBatch:
    """Pending writes of a transaction, flushed as one atomic unit.

    Staging a write records it in the statement log at the same time, so the log always
    knows every write that may need to be replayed.
    """

    def __init__(self, log: StatementLog) -> None:
        """Initialize the batch.

        Args:
            log (StatementLog): The log of the transaction the batch belongs to.

        """
        self._log = log
        self._pending: list[LogEntry] = []

    def __len__(self) -> int:
        """Get the number of pending writes."""
        return len(self._pending)

    @property
    def pending(self) -> tuple[Statement, ...]:
        """Get the pending writes in staging order."""
        return tuple(entry.statement for entry in self._pending)

    def stage(self, statement: Statement) -> None:
        """Add a write to the batch and record it in the log.

        Raises:
            TransactionUsageError: If the statement is not a write.

        """
        if not statement.is_write:
            raise TransactionUsageError("Only write statements can be staged in a mutation batch.")

        self._pending.append(self._log.append(statement))

    async def flush(self, handle: TransactionHandle[Any]) -> Outcome[list[Any]]:
        """Send the pending writes to the store as one atomic unit.

        On success the batch is emptied and the statement results are returned. The writes
        stay in the log for a possible replay, marked as executed at this point.

        If the attempt was aborted, the writes stay pending so that they can be flushed
        against the next attempt. Any other failure discards them from both the batch and
        the log: nothing in the batch was applied and it must never be replayed.

        Args:
            handle (TransactionHandle[Any]): The attempt to flush the writes to.

        Returns:
            Outcome[list[Any]]: The result of each write, or the classified failure.

        """
        if not self._pending:
            return Outcome(value=[])

        outcome = await handle.execute_batch(self.pending)

        if outcome.ok:
            logger.debug("Flushed %d writes to attempt %d", len(self._pending), handle.attempt_id)
            self._log.mark_flushed(entry.position for entry in self._pending)
            self._pending.clear()
        elif not outcome.aborted:
            logger.debug("Discarding %d rejected writes: %s", len(self._pending), outcome.error)
            self.discard()

        return outcome

    async def replay(self, handle: TransactionHandle[Any], statements: Sequence[Statement]) -> Outcome[list[Any]]:
        """Send already logged writes to a new attempt without logging them again."""
        if not statements:
            return Outcome(value=[])

        logger.debug("Replaying %d writes against attempt %d", len(statements), handle.attempt_id)
        return await handle.execute_batch(statements)

    def discard(self) -> None:
        """Drop the pending writes from the batch and the log."""
        self._log.discard(entry.position for entry in self._pending)
        self._pending.clear()

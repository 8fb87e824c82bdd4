"""Retry coordination for aborted transactions."""

from __future__ import annotations

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable, Sequence
from typing import TYPE_CHECKING, Any

from occtx.configs.retry import RetryConfig
from occtx.exceptions import (
    ConcurrentModificationError,
    TransactionAbortedError,
    TransactionError,
    TransportError,
)
from occtx.observability.utils import observe_exception
from occtx.statements.base import Statement
from occtx.statements.batch import MutationBatch
from occtx.statements.log import StatementLog, digest_result
from occtx.transactions.handle import TransactionHandle
from occtx.transactions.outcome import Outcome
from occtx.transports.abstract import AbstractTransport

if TYPE_CHECKING:
    from occtx.transactions.registry import SharedTransactionRegistry
    from occtx.transactions.scope import TransactionScope

logger = logging.getLogger(__name__)


class RetryCoordinator:
    """Makes one logical transaction resilient to aborted attempts.

    When an attempt is aborted, the coordinator discards it, begins a new attempt and
    replays the writes flushed so far against it, so the caller never has to re-issue
    them. Reads are not replayed unless `verify_reads` is set, in which case they are
    re-executed in the order the store first saw them and their results must match.

    Retrying is transparent only for transactions whose write set is fully determined by the
    time the attempt aborts. Transactions whose writes depend on reads that may change should
    enable `verify_reads` or use `run_with_retry` with `rerun_body`.
    """

    def __init__(
        self,
        transport: AbstractTransport[Any],
        config: RetryConfig | None = None,
        *,
        on_attempt: Callable[[TransactionHandle[Any]], None] | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize the coordinator.

        Args:
            transport (AbstractTransport[Any]): The transport new attempts are begun with.
            config (RetryConfig | None): The retry config. If None, the default config is used.
            on_attempt (Callable[[TransactionHandle[Any]], None] | None): Called with every new attempt,
                before anything is replayed against it.
            sleep (Callable[[float], Awaitable[Any]]): Coroutine used to wait between attempts.
            rng (random.Random | None): Random generator for the jitter.

        """
        self._transport = transport
        self._config = config or RetryConfig()
        self._on_attempt = on_attempt
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._started_at = time.monotonic()
        self.internal_retries_enabled = self._config.internal_retries_enabled

    @property
    def config(self) -> RetryConfig:
        """Get the retry config."""
        return self._config

    def should_retry(self, error: TransactionError | None, attempt_id: int) -> bool:
        """Decide whether a failed attempt is followed by a new one.

        Only aborts are retried, and only while retries are enabled and the attempt and time
        budgets are not exhausted.
        """
        if not isinstance(error, TransactionAbortedError) or not error.retryable:
            return False

        if not self.internal_retries_enabled:
            return False

        if attempt_id >= self._config.max_attempts:
            logger.warning("Transaction %s was aborted %d times, giving up", error.transaction_id, attempt_id)
            return False

        if self._config.timeout is not None and self.elapsed() >= self._config.timeout.total_seconds():
            logger.warning("Transaction %s ran out of retry time, giving up", error.transaction_id)
            return False

        return True

    def elapsed(self) -> float:
        """Get the seconds spent since the logical transaction began."""
        return time.monotonic() - self._started_at

    def backoff_delay(self, attempt_id: int) -> float:
        """Get the delay in seconds before the attempt following `attempt_id`."""
        delay = self._config.base_delay.total_seconds() * self._config.multiplier ** (attempt_id - 1)
        delay = min(delay, self._config.max_delay.total_seconds())
        jitter = self._config.jitter
        return delay * self._rng.uniform(1 - jitter, 1 + jitter)

    async def commit(
        self,
        handle: TransactionHandle[Any],
        log: StatementLog,
        batches: Sequence[MutationBatch],
    ) -> TransactionHandle[Any]:
        """Commit the transaction, retrying aborted attempts.

        Returns:
            TransactionHandle[Any]: The attempt that committed.

        Raises:
            TransactionError: The last failure, when it is not retried.

        """
        while True:
            outcome = await handle.commit()
            if outcome.ok:
                return handle

            handle = await self.recover(handle, log, batches, outcome.unwrap_error())

    async def recover(
        self,
        handle: TransactionHandle[Any],
        log: StatementLog,
        batches: Sequence[MutationBatch],
        error: TransactionError,
    ) -> TransactionHandle[Any]:
        """Replace an aborted attempt by a new one that has replayed the flushed writes.

        Writes are replayed in the order they reached the store. Writes that are still pending in
        one of the batches are not replayed, they stay pending.

        Returns:
            TransactionHandle[Any]: The new attempt.

        Raises:
            TransactionError: The failure, when it is not retried.

        """
        while True:
            if self._config.rerun_body:
                raise error

            handle = await self._next_attempt(handle, error)
            outcome = await self._replay(handle, log, batches)
            if outcome.ok:
                return handle

            error = outcome.unwrap_error()

    async def restart(self, handle: TransactionHandle[Any], error: TransactionError) -> TransactionHandle[Any]:
        """Replace an aborted attempt by an empty new one, for a full re-execution of the body.

        Raises:
            TransactionError: The failure, when it is not retried.

        """
        return await self._next_attempt(handle, error)

    async def _next_attempt(self, handle: TransactionHandle[Any], error: TransactionError) -> TransactionHandle[Any]:
        await self._discard(handle)

        if not self.should_retry(error, handle.attempt_id):
            await observe_exception(error)
            raise error

        delay = self.backoff_delay(handle.attempt_id)
        logger.info(
            "Attempt %d of transaction %s was aborted, retrying in %.3fs",
            handle.attempt_id,
            handle.transaction_id,
            delay,
        )
        await self._sleep(delay)

        new_handle = await TransactionHandle.begin(self._transport, handle.transaction_id, handle.attempt_id + 1)
        if self._on_attempt is not None:
            self._on_attempt(new_handle)
        return new_handle

    async def _replay(
        self,
        handle: TransactionHandle[Any],
        log: StatementLog,
        batches: Sequence[MutationBatch],
    ) -> Outcome[list[Any]]:
        entries = log.executed()
        batch = batches[0]

        if not self._config.verify_reads:
            return await batch.replay(handle, [entry.statement for entry in entries if entry.statement.is_write])

        writes: list[Statement] = []
        for entry in entries:
            if entry.statement.is_write:
                writes.append(entry.statement)
                continue

            outcome = await batch.replay(handle, writes)
            if not outcome.ok:
                return outcome
            writes = []

            try:
                result = await handle.execute(entry.statement)
            except TransactionError as exc:
                return Outcome(error=exc)

            if entry.digest is not None and digest_result(result) != entry.digest:
                return Outcome(
                    error=ConcurrentModificationError(
                        "Data read by the transaction was modified concurrently.",
                        transaction_id=handle.transaction_id,
                        attempt_id=handle.attempt_id,
                        statement=entry.statement.text,
                    )
                )

        return await batch.replay(handle, writes)

    async def _discard(self, handle: TransactionHandle[Any]) -> None:
        try:
            await handle.rollback()
        except TransportError:
            logger.warning(
                "Failed to release attempt %d of transaction %s",
                handle.attempt_id,
                handle.transaction_id,
                exc_info=True,
            )


async def run_with_retry[T](
    transport: AbstractTransport[Any],
    body: Callable[[TransactionScope], Awaitable[T]],
    config: RetryConfig | None = None,
    registry: SharedTransactionRegistry | None = None,
) -> T:
    """Run a transaction body and commit it, retrying aborted attempts.

    By default an aborted attempt is recovered by replaying the flushed writes, and the body
    runs once. With `rerun_body` set, the body runs again from scratch against every new
    attempt instead.

    Args:
        transport (AbstractTransport[Any]): The transport to run the transaction with.
        body (Callable[[TransactionScope], Awaitable[T]]): The transaction body.
        config (RetryConfig | None): The retry config. If None, the default config is used.
        registry (SharedTransactionRegistry | None): The registry to share the transaction in.

    Returns:
        T: The result of the body.

    Example:
        ```python
        async def insert_venue(scope: TransactionScope) -> None:
            scope.add(Statement.write("INSERT INTO venues (code, name) VALUES (:code, :name)", code="V1", name="V"))
            await scope.save_changes()

        await run_with_retry(transport, insert_venue, RetryConfig(max_attempts=5))
        ```

    """
    from occtx.transactions.scope import TransactionScope  # noqa: PLC0415

    async with await TransactionScope.begin(transport, config=config, registry=registry) as scope:
        while True:
            try:
                result = await body(scope)
                await scope.commit()
            except TransactionAbortedError as exc:
                if not scope.config.rerun_body:
                    raise
                await scope.restart(exc)
                continue
            return result

"""Transaction scopes."""

from __future__ import annotations

import asyncio
import logging
import uuid
from types import TracebackType
from typing import Any, Self

from occtx.configs.retry import RetryConfig
from occtx.exceptions import TransactionAbortedError, TransactionError, TransactionUsageError
from occtx.statements.base import Statement
from occtx.statements.batch import MutationBatch
from occtx.statements.log import StatementLog, digest_result
from occtx.transactions.handle import TransactionHandle, TransactionState
from occtx.transactions.registry import SharedTransactionRegistry, default_registry
from occtx.transactions.retry import RetryCoordinator
from occtx.transports.abstract import AbstractTransport

logger = logging.getLogger(__name__)


class TransactionScope:
    """A logical transaction.

    The scope owns the current attempt, the statement log and the pending writes. Its identity
    is stable across retried attempts, so callers never observe a retry as a new transaction.
    Leaving the scope without a successful commit rolls the transaction back.

    Example:
        ```python
        async with await TransactionScope.begin(transport) as scope:
            scope.add(Statement.write("INSERT INTO venues (code, name) VALUES (:code, :name)", code="V1", name="V"))
            await scope.save_changes()
            rows = await scope.execute(Statement.read("SELECT name FROM venues WHERE code = :code", code="V1"))
            await scope.commit()
        ```

    """

    def __init__(
        self,
        transport: AbstractTransport[Any],
        handle: TransactionHandle[Any],
        config: RetryConfig | None = None,
        registry: SharedTransactionRegistry | None = None,
    ) -> None:
        """Initialize the scope.

        Use `TransactionScope.begin` to begin a new transaction.

        Args:
            transport (AbstractTransport[Any]): The transport the transaction runs on.
            handle (TransactionHandle[Any]): The first attempt.
            config (RetryConfig | None): The retry config. If None, the default config is used.
            registry (SharedTransactionRegistry | None): The registry other contexts can join the
                transaction through. If None, the process-wide registry is used.

        """
        self._transport = transport
        self._handle = handle
        self._config = config or RetryConfig()
        self._registry = registry if registry is not None else default_registry
        self._log = StatementLog()
        self._batch = MutationBatch(self._log)
        self._batches: list[MutationBatch] = [self._batch]
        self._coordinator = RetryCoordinator(transport, self._config, on_attempt=self._attach)
        self._io_lock = asyncio.Lock()
        self._resolution: TransactionState | None = None
        self._committing = False

        self._registry.register(handle, owner=self)

    @classmethod
    async def begin(
        cls,
        transport: AbstractTransport[Any],
        *,
        config: RetryConfig | None = None,
        registry: SharedTransactionRegistry | None = None,
        transaction_id: str | None = None,
    ) -> Self:
        """Begin a logical transaction.

        Args:
            transport (AbstractTransport[Any]): The transport to run the transaction on.
            config (RetryConfig | None): The retry config. If None, the default config is used.
            registry (SharedTransactionRegistry | None): The registry to share the transaction in.
            transaction_id (str | None): The logical transaction identity. Generated if None.

        Returns:
            Self: The scope, with its first attempt active.

        """
        handle = await TransactionHandle.begin(transport, transaction_id or uuid.uuid4().hex)
        try:
            return cls(transport, handle, config=config, registry=registry)
        except TransactionUsageError:
            await handle.rollback()
            raise

    @staticmethod
    def join(transaction_id: str, registry: SharedTransactionRegistry | None = None) -> JoinedTransaction:
        """Join the active transaction of another scope.

        Raises:
            TransactionUsageError: If the transaction is not registered or not active.

        """
        registry = registry if registry is not None else default_registry
        owner = registry.owner(transaction_id)
        if not isinstance(owner, TransactionScope) or registry.join(transaction_id) is None:
            raise TransactionUsageError("There is no active transaction to join.", transaction_id=transaction_id)
        return JoinedTransaction(owner)

    async def __aenter__(self) -> Self:
        """Enter the scope."""
        return self

    async def __aexit__(
        self, exc_type: type[BaseException] | None, exc_value: BaseException | None, traceback: TracebackType | None
    ) -> None:
        """Leave the scope, rolling back if the transaction was not committed."""
        await self.dispose()

    @property
    def transaction_id(self) -> str:
        """Get the logical transaction identity."""
        return self._handle.transaction_id

    @property
    def attempt_id(self) -> int:
        """Get the number of the current attempt."""
        return self._handle.attempt_id

    @property
    def handle(self) -> TransactionHandle[Any]:
        """Get the current attempt."""
        return self._handle

    @property
    def state(self) -> TransactionState:
        """Get the state of the logical transaction."""
        return self._resolution or self._handle.state

    @property
    def config(self) -> RetryConfig:
        """Get the retry config."""
        return self._config

    @property
    def log(self) -> StatementLog:
        """Get the statement log."""
        return self._log

    @property
    def pending(self) -> tuple[Statement, ...]:
        """Get the writes staged by the scope and not flushed yet."""
        return self._batch.pending

    @property
    def internal_retries_enabled(self) -> bool:
        """Whether aborted attempts are retried internally."""
        return self._coordinator.internal_retries_enabled

    @internal_retries_enabled.setter
    def internal_retries_enabled(self, value: bool) -> None:
        self._coordinator.internal_retries_enabled = value

    @property
    def resolved(self) -> bool:
        """Whether the transaction has been committed or rolled back."""
        return self._resolution is not None

    def _attach(self, handle: TransactionHandle[Any]) -> None:
        self._handle = handle
        self._registry.register(handle, owner=self)

    def _ensure_open(self) -> None:
        if self._resolution is not None:
            raise TransactionUsageError(
                f"Transaction has already been {self._resolution}.",
                transaction_id=self.transaction_id,
                attempt_id=self.attempt_id,
            )

    def add(self, statement: Statement) -> None:
        """Stage a write. It is sent to the store by the next `save_changes` or `commit`."""
        self._ensure_open()
        self._batch.stage(statement)

    async def execute(self, statement: Statement) -> Any:
        """Execute a read, or stage a write.

        Reads run against the current attempt and see the writes flushed by this transaction.
        If the attempt is aborted, the flushed writes are replayed against a new attempt and the
        read is issued again.

        Returns:
            Any: The rows of a read, None for a staged write.

        """
        if statement.is_write:
            self.add(statement)
            return None

        self._ensure_open()
        return await self._read(statement)

    async def save_changes(self) -> list[Any]:
        """Flush the staged writes as one atomic batch.

        Returns:
            list[Any]: The result of each write.

        Raises:
            ConstraintViolationError: If the store rejected the batch. Nothing in it was applied.
            TransactionAbortedError: If the attempt was aborted and is not retried.

        """
        self._ensure_open()
        return await self._flush(self._batch)

    async def commit(self) -> None:
        """Flush the staged writes and commit, retrying aborted attempts.

        Committing a committed transaction is a no-op. Only the writes staged by this scope are
        flushed here. Writes that joined contexts staged and did not flush themselves are not
        committed, and a warning is logged for them.

        Raises:
            TransactionUsageError: If the transaction was rolled back or is already being committed.
            TransactionError: If the commit failed and is not retried.

        """
        if self._resolution is TransactionState.COMMITTED:
            return
        self._ensure_open()
        if self._committing:
            raise TransactionUsageError(
                "Transaction is already being committed.",
                transaction_id=self.transaction_id,
                attempt_id=self.attempt_id,
            )

        unflushed = sum(len(batch) for batch in self._batches[1:])
        if unflushed:
            logger.warning(
                "Committing transaction %s with %d write(s) not flushed by joined contexts, they are dropped",
                self.transaction_id,
                unflushed,
            )

        self._committing = True
        try:
            await self._flush(self._batch)
            async with self._io_lock:
                await self._coordinator.commit(self._handle, self._log, self._batches)
        finally:
            self._committing = False

        logger.debug("Committed transaction %s after %d attempt(s)", self.transaction_id, self.attempt_id)
        self._log.clear()
        self._resolve(TransactionState.COMMITTED)

    async def rollback(self) -> None:
        """Roll back the transaction and discard every staged and flushed write.

        Rolling back a resolved transaction is a no-op.
        """
        if self._resolution is not None:
            return

        try:
            for batch in self._batches:
                batch.discard()
            await self._handle.rollback()
        finally:
            self._resolve(TransactionState.ROLLED_BACK)

    async def dispose(self) -> None:
        """Release the transaction, rolling it back if it was not committed."""
        if self._resolution is None:
            logger.debug("Transaction %s left without a commit, rolling back", self.transaction_id)
            await self.rollback()

    async def restart(self, error: TransactionError) -> None:
        """Begin a new, empty attempt after an abort, for a full re-execution of the body.

        Raises:
            TransactionError: The failure, when it is not retried.

        """
        self._ensure_open()
        await self._coordinator.restart(self._handle, error)
        for batch in self._batches:
            batch.discard()
        self._log.reset()

    async def _read(self, statement: Statement) -> Any:
        async with self._io_lock:
            while True:
                try:
                    result = await self._handle.execute(statement)
                except TransactionAbortedError as exc:
                    await self._recover(exc)
                    continue
                break

        digest = digest_result(result) if self._config.verify_reads else None
        self._log.append(statement, digest=digest)
        return result

    async def _flush(self, batch: MutationBatch) -> list[Any]:
        async with self._io_lock:
            while True:
                outcome = await batch.flush(self._handle)
                if not outcome.aborted:
                    return outcome.unwrap()
                await self._recover(outcome.unwrap_error())

    async def _recover(self, error: TransactionError) -> None:
        await self._coordinator.recover(self._handle, self._log, self._batches, error)

    def _resolve(self, resolution: TransactionState) -> None:
        self._resolution = resolution
        self._registry.unregister(self.transaction_id, owner=self)


class JoinedTransaction:
    """A context attached to the transaction of another scope.

    Statements run against the owner's current attempt, so both sides see each other's
    uncommitted writes. Only the owner can commit or roll back; writes staged here are recorded
    in the owner's log, so they are replayed if the owner retries.

    Example:
        ```python
        async with TransactionScope.join(owner.transaction_id) as joined:
            joined.add(Statement.write("INSERT INTO venues (code, name) VALUES (:code, :name)", code="V3", name="V"))
            await joined.save_changes()
        rows = await owner.execute(Statement.read("SELECT name FROM venues WHERE code = :code", code="V3"))
        ```

    """

    def __init__(self, owner: TransactionScope) -> None:
        """Initialize the joined context.

        Args:
            owner (TransactionScope): The scope that owns the transaction.

        """
        self._owner = owner
        self._batch = MutationBatch(owner._log)  # noqa: SLF001
        owner._batches.append(self._batch)  # noqa: SLF001
        self._detached = False

    async def __aenter__(self) -> Self:
        """Enter the joined context."""
        return self

    async def __aexit__(
        self, exc_type: type[BaseException] | None, exc_value: BaseException | None, traceback: TracebackType | None
    ) -> None:
        """Leave the joined context, dropping the writes it did not flush."""
        self.detach()

    @property
    def transaction_id(self) -> str:
        """Get the logical transaction identity."""
        return self._owner.transaction_id

    @property
    def handle(self) -> TransactionHandle[Any]:
        """Get the owner's current attempt."""
        return self._owner.handle

    @property
    def pending(self) -> tuple[Statement, ...]:
        """Get the writes staged by this context and not flushed yet."""
        return self._batch.pending

    def _ensure_attached(self) -> None:
        if self._detached:
            raise TransactionUsageError("Joined context has been detached.", transaction_id=self.transaction_id)
        self._owner._ensure_open()  # noqa: SLF001

    def add(self, statement: Statement) -> None:
        """Stage a write in the shared transaction."""
        self._ensure_attached()
        self._batch.stage(statement)

    async def execute(self, statement: Statement) -> Any:
        """Execute a read, or stage a write, in the shared transaction."""
        if statement.is_write:
            self.add(statement)
            return None

        self._ensure_attached()
        return await self._owner._read(statement)  # noqa: SLF001

    async def save_changes(self) -> list[Any]:
        """Flush the writes staged by this context as one atomic batch."""
        self._ensure_attached()
        return await self._owner._flush(self._batch)  # noqa: SLF001

    async def commit(self) -> None:
        """Joined contexts cannot commit.

        Raises:
            TransactionUsageError: Always.

        """
        raise TransactionUsageError(
            "Only the scope that began the transaction can commit it.", transaction_id=self.transaction_id
        )

    async def rollback(self) -> None:
        """Joined contexts cannot roll back.

        Raises:
            TransactionUsageError: Always.

        """
        raise TransactionUsageError(
            "Only the scope that began the transaction can roll it back.", transaction_id=self.transaction_id
        )

    def detach(self) -> None:
        """Detach from the transaction, dropping the writes that were not flushed."""
        if self._detached:
            return

        self._detached = True
        if not self._owner.resolved:
            self._batch.discard()
        if self._batch in self._owner._batches:  # noqa: SLF001
            self._owner._batches.remove(self._batch)  # noqa: SLF001

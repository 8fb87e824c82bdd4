"""Transaction handles."""

import logging
from collections.abc import Sequence
from enum import StrEnum
from typing import Any, Self

from opentelemetry import trace

from occtx.exceptions import TransactionAbortedError, TransactionError, TransactionUsageError
from occtx.statements.base import Statement
from occtx.transactions.outcome import Outcome
from occtx.transports.abstract import AbstractTransport

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class TransactionState(StrEnum):
    """State of a transaction attempt."""

    ACTIVE = "active"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"
    ABORTED = "aborted"


class TransactionHandle[T_Ref]:
    """One attempt of a server-side transaction.

    A handle is created `ACTIVE` and moves to exactly one of `COMMITTED`, `ROLLED_BACK`
    or `ABORTED`. Only an aborted handle may be followed by a new attempt.
    """

    def __init__(
        self,
        transport: AbstractTransport[T_Ref],
        ref: T_Ref,
        transaction_id: str,
        attempt_id: int = 1,
    ) -> None:
        """Initialize the handle.

        Args:
            transport (AbstractTransport[T_Ref]): The transport the attempt was begun with.
            ref (T_Ref): The transport's reference to the server-side transaction.
            transaction_id (str): The logical transaction identity.
            attempt_id (int): The attempt number, starting at 1.

        """
        self._transport = transport
        self._ref = ref
        self._transaction_id = transaction_id
        self._attempt_id = attempt_id
        self._state = TransactionState.ACTIVE
        self._released = False

    @classmethod
    async def begin(
        cls,
        transport: AbstractTransport[T_Ref],
        transaction_id: str,
        attempt_id: int = 1,
    ) -> Self:
        """Begin a new attempt against the transport.

        Raises:
            TransportError: If the server-side transaction could not be begun.

        """
        with tracer.start_as_current_span(
            "occtx.begin", attributes={"occtx.transaction_id": transaction_id, "occtx.attempt_id": attempt_id}
        ):
            try:
                ref = await transport.begin_transaction()
            except TransactionError as exc:
                exc.bind(transaction_id, attempt_id)
                raise

        logger.debug("Began attempt %d of transaction %s", attempt_id, transaction_id)
        return cls(transport, ref, transaction_id, attempt_id)

    @property
    def ref(self) -> T_Ref:
        """Get the transport's reference to the server-side transaction."""
        return self._ref

    @property
    def transaction_id(self) -> str:
        """Get the logical transaction identity."""
        return self._transaction_id

    @property
    def attempt_id(self) -> int:
        """Get the attempt number."""
        return self._attempt_id

    @property
    def state(self) -> TransactionState:
        """Get the state of the attempt."""
        return self._state

    @property
    def is_active(self) -> bool:
        """Whether statements may still be issued against the attempt."""
        return self._state is TransactionState.ACTIVE

    def _ensure_active(self, action: str) -> None:
        if not self.is_active:
            raise TransactionUsageError(
                f"Cannot {action} in a transaction that is {self._state}.",
                transaction_id=self._transaction_id,
                attempt_id=self._attempt_id,
            )

    def _fail(self, exc: TransactionError) -> TransactionError:
        exc.bind(self._transaction_id, self._attempt_id)
        if isinstance(exc, TransactionAbortedError):
            self._state = TransactionState.ABORTED
            logger.debug("Attempt %d of transaction %s was aborted", self._attempt_id, self._transaction_id)
        return exc

    async def execute(self, statement: Statement) -> Any:
        """Execute a statement in the attempt.

        Raises:
            TransactionAbortedError: If the store aborted the attempt. The handle becomes `ABORTED`.
            TransactionUsageError: If the attempt is not active.

        """
        self._ensure_active("execute a statement")
        try:
            return await self._transport.execute(self._ref, statement)
        except TransactionError as exc:
            self._fail(exc)
            raise

    async def execute_batch(self, statements: Sequence[Statement]) -> Outcome[list[Any]]:
        """Execute write statements as one atomic unit."""
        try:
            self._ensure_active("execute a batch")
            results = await self._transport.execute_batch(self._ref, statements)
        except TransactionError as exc:
            return Outcome(error=self._fail(exc))
        return Outcome(value=results)

    async def commit(self) -> Outcome[None]:
        """Commit the attempt.

        On success the handle becomes `COMMITTED`. If the store aborts the commit, the handle
        becomes `ABORTED` and the error is returned. Any other failure rolls the attempt back.
        """
        try:
            self._ensure_active("commit")
        except TransactionUsageError as exc:
            return Outcome(error=exc)

        with tracer.start_as_current_span(
            "occtx.commit",
            attributes={"occtx.transaction_id": self._transaction_id, "occtx.attempt_id": self._attempt_id},
        ) as span:
            try:
                await self._transport.commit(self._ref)
            except TransactionError as exc:
                error = self._fail(exc)
                span.set_attribute("occtx.outcome", type(error).__name__)
                if not self.is_active:
                    return Outcome(error=error)
                await self._rollback_after_failure()
                return Outcome(error=error)

        self._state = TransactionState.COMMITTED
        self._released = True
        logger.debug("Committed attempt %d of transaction %s", self._attempt_id, self._transaction_id)
        return Outcome()

    async def _rollback_after_failure(self) -> None:
        try:
            await self.rollback()
        except TransactionError:
            logger.warning(
                "Failed to roll back attempt %d of transaction %s after a failed commit",
                self._attempt_id,
                self._transaction_id,
                exc_info=True,
            )

    async def rollback(self) -> None:
        """Roll back the attempt.

        Rolling back a committed or rolled back attempt is a no-op. Rolling back an aborted
        attempt releases its server-side resources and keeps it `ABORTED`.
        """
        if self._released or self._state in (TransactionState.COMMITTED, TransactionState.ROLLED_BACK):
            return

        if self._state is TransactionState.ACTIVE:
            self._state = TransactionState.ROLLED_BACK
        self._released = True

        try:
            await self._transport.rollback(self._ref)
        except TransactionError as exc:
            exc.bind(self._transaction_id, self._attempt_id)
            raise

        logger.debug("Rolled back attempt %d of transaction %s", self._attempt_id, self._transaction_id)

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"TransactionHandle(transaction_id={self._transaction_id!r}, "
            f"attempt_id={self._attempt_id}, state={self._state.value!r})"
        )

"""Abstract transports."""

from collections.abc import Sequence
from typing import Any, Protocol

from occtx.statements.base import Statement


class AbstractTransport[T_Ref](Protocol):
    """Abstract transport to the backing store.

    A transport opens server-side transactions and executes statements in them.
    It is the only component that talks to the store. Failures are reported by raising
    the classified errors from `occtx.exceptions`:

    - `TransactionAbortedError` when the store aborted the transaction because of contention.
    - `ConstraintViolationError` when a write was rejected by the store.
    - `TransportError` when the connection or session failed.

    The reference returned by `begin_transaction` is opaque to the transaction layer.
    """

    async def begin_transaction(self) -> T_Ref:
        """Begin a server-side transaction.

        Returns:
            T_Ref: The reference to the transaction, passed to every other call.

        """
        ...

    async def execute(self, ref: T_Ref, statement: Statement) -> Any:
        """Execute a single statement.

        Returns:
            Any: The rows for a read, the affected row count for a write.

        """
        ...

    async def execute_batch(self, ref: T_Ref, statements: Sequence[Statement]) -> list[Any]:
        """Execute write statements as one all-or-nothing unit.

        If any statement fails, none of the statements in the batch are applied.

        Returns:
            list[Any]: The result of each statement, in order.

        """
        ...

    async def commit(self, ref: T_Ref) -> None:
        """Commit the transaction."""
        ...

    async def rollback(self, ref: T_Ref) -> None:
        """Roll back the transaction and release its resources."""
        ...

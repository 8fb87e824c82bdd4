"""Transaction errors."""

from typing import Any, Self


class TransactionError(Exception):
    """Base transaction error.

    Every error raised by the transaction layer carries the identity of the logical
    transaction and the attempt it happened in, when they are known.

    Attributes:
        transaction_id (str | None): The logical transaction identity.
        attempt_id (int | None): The attempt the error happened in.

    """

    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        transaction_id: str | None = None,
        attempt_id: int | None = None,
        **details: Any,
    ) -> None:
        """Initialize the error.

        Args:
            message (str): The error message.
            transaction_id (str | None): The logical transaction identity.
            attempt_id (int | None): The attempt the error happened in.
            **details (Any): Additional details, exposed as `details`.

        """
        super().__init__(message)
        self.message = message
        self.transaction_id = transaction_id
        self.attempt_id = attempt_id
        self.details = details

    def bind(self, transaction_id: str, attempt_id: int) -> Self:
        """Attach the transaction identity if the raiser did not know it."""
        if self.transaction_id is None:
            self.transaction_id = transaction_id
        if self.attempt_id is None:
            self.attempt_id = attempt_id
        return self

    def __str__(self) -> str:
        """Format the error with its transaction identity."""
        if self.transaction_id is None:
            return self.message
        return f"{self.message} (transaction={self.transaction_id}, attempt={self.attempt_id})"


class TransactionAbortedError(TransactionError):
    """The backing store aborted the attempt because of concurrent access.

    A fresh attempt may succeed.
    """

    retryable = True


class ConcurrentModificationError(TransactionAbortedError):
    """A replayed read returned different data than the original attempt.

    The write set was derived from data that has since changed, so replaying it
    would not be equivalent to the original attempt.
    """

    retryable = False


class ConstraintViolationError(TransactionError):
    """A statement or write batch was rejected by the store. Nothing in the batch was applied."""


class TransactionUsageError(TransactionError):
    """An operation was used against the transaction protocol.

    E.g. a joined context trying to commit, or using a resolved transaction.
    """


class TransportError(TransactionError):
    """The connection or session to the store failed."""

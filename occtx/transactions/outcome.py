"""Outcomes of transaction operations."""

from dataclasses import dataclass
from typing import cast

from occtx.exceptions import TransactionAbortedError, TransactionError


@dataclass(frozen=True)
class Outcome[T]:
    """Result of an operation against a transaction attempt.

    Holds either a value or the classified error, never both. Used instead of raising so
    that the retry decision can be made by inspecting the result.

    Example:
        ```python
        outcome = await handle.commit()
        if outcome.aborted:
            ...
        outcome.unwrap()  # raises the error, if any
        ```

    """

    value: T | None = None
    error: TransactionError | None = None

    @property
    def ok(self) -> bool:
        """Whether the operation succeeded."""
        return self.error is None

    @property
    def aborted(self) -> bool:
        """Whether the operation failed because the attempt was aborted."""
        return isinstance(self.error, TransactionAbortedError)

    def unwrap(self) -> T:
        """Get the value or raise the error."""
        if self.error is not None:
            raise self.error
        return cast("T", self.value)

    def unwrap_error(self) -> TransactionError:
        """Get the error of a failed operation."""
        if self.error is None:
            raise ValueError("The operation succeeded, there is no error.")
        return self.error

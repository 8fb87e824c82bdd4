"""Shared transaction registry."""

import logging
import threading
import weakref
from dataclasses import dataclass
from typing import Any

from occtx.exceptions import TransactionUsageError
from occtx.transactions.handle import TransactionHandle

logger = logging.getLogger(__name__)


@dataclass
class RegistryEntry:
    """Registry entry.

    Holds the current attempt of a logical transaction and a weak reference to the scope
    that owns it. The registry never owns the handle.
    """

    handle: TransactionHandle[Any]
    owner: weakref.ref[object]


class SharedTransactionRegistry:
    """Process-local registry of transactions that other contexts may join.

    Joined contexts issue statements against the owner's current attempt and therefore see
    its uncommitted writes. Only the owner may replace or remove its entry, and it removes it
    as soon as the transaction is resolved.

    Example:
        ```python
        registry = SharedTransactionRegistry()
        registry.register(handle, owner=scope)
        shared = registry.join(handle.transaction_id)
        assert shared is handle
        registry.unregister(handle.transaction_id, owner=scope)
        assert registry.join(handle.transaction_id) is None
        ```

    """

    def __init__(self) -> None:
        """Initialize the registry."""
        self._entries: dict[str, RegistryEntry] = {}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        """Get the number of registered transactions."""
        return len(self._entries)

    def __contains__(self, transaction_id: object) -> bool:
        """Whether a transaction is registered."""
        return transaction_id in self._entries

    def register(self, handle: TransactionHandle[Any], owner: object) -> None:
        """Register the attempt of a logical transaction.

        Args:
            handle (TransactionHandle[Any]): The current attempt.
            owner (object): The scope that owns the transaction.

        Raises:
            TransactionUsageError: If the transaction is already registered by another owner.

        """
        with self._lock:
            entry = self._entries.get(handle.transaction_id)
            if entry is not None and entry.owner() is not owner:
                raise TransactionUsageError(
                    "Transaction is already registered by another owner.",
                    transaction_id=handle.transaction_id,
                    attempt_id=entry.handle.attempt_id,
                )
            if entry is not None and entry.handle is not handle and entry.handle.is_active:
                raise TransactionUsageError(
                    "Transaction already has an active attempt.",
                    transaction_id=handle.transaction_id,
                    attempt_id=entry.handle.attempt_id,
                )

            transaction_id = handle.transaction_id
            self._entries[transaction_id] = RegistryEntry(
                handle=handle,
                owner=weakref.ref(owner, lambda _: self._evict(transaction_id)),
            )

    def join(self, transaction_id: str) -> TransactionHandle[Any] | None:
        """Get the active attempt of a registered transaction.

        Returns:
            TransactionHandle[Any] | None: The attempt, or None if the transaction is not registered
            or its current attempt is not active.

        """
        entry = self._entries.get(transaction_id)
        if entry is None or not entry.handle.is_active:
            return None
        return entry.handle

    def current(self, transaction_id: str) -> TransactionHandle[Any] | None:
        """Get the current attempt of a registered transaction, whatever its state."""
        entry = self._entries.get(transaction_id)
        return None if entry is None else entry.handle

    def owner(self, transaction_id: str) -> object | None:
        """Get the owner of a registered transaction, if it is still alive."""
        entry = self._entries.get(transaction_id)
        return None if entry is None else entry.owner()

    def is_owner(self, transaction_id: str, owner: object) -> bool:
        """Whether the given object owns the registered transaction."""
        entry = self._entries.get(transaction_id)
        return entry is not None and entry.owner() is owner

    def unregister(self, transaction_id: str, owner: object) -> None:
        """Remove a resolved transaction.

        Removing an unregistered transaction is a no-op.

        Raises:
            TransactionUsageError: If the caller does not own the transaction.

        """
        with self._lock:
            entry = self._entries.get(transaction_id)
            if entry is None:
                return
            if entry.owner() is not owner:
                raise TransactionUsageError(
                    "Only the owner of a transaction can remove it from the registry.",
                    transaction_id=transaction_id,
                )
            del self._entries[transaction_id]

    def _evict(self, transaction_id: str) -> None:
        # Runs from the garbage collector, possibly while this thread holds the lock.
        with self._lock:
            entry = self._entries.get(transaction_id)
            if entry is None or entry.owner() is not None:
                return
            del self._entries[transaction_id]

        if entry.handle.is_active:
            logger.warning("Owner of transaction %s was collected without resolving it", transaction_id)


default_registry = SharedTransactionRegistry()

"""Client-side retry of aborted transactions for optimistic concurrency databases."""

from occtx.configs.retry import RetryConfig
from occtx.exceptions import (
    ConcurrentModificationError,
    ConstraintViolationError,
    TransactionAbortedError,
    TransactionError,
    TransactionUsageError,
    TransportError,
)
from occtx.statements.base import Statement, StatementKind
from occtx.statements.batch import MutationBatch
from occtx.statements.log import LogEntry, StatementLog
from occtx.transactions.handle import TransactionHandle, TransactionState
from occtx.transactions.outcome import Outcome
from occtx.transactions.registry import SharedTransactionRegistry, default_registry
from occtx.transactions.retry import RetryCoordinator, run_with_retry
from occtx.transactions.scope import JoinedTransaction, TransactionScope
from occtx.transports.abstract import AbstractTransport

__all__ = [
    "AbstractTransport",
    "ConcurrentModificationError",
    "ConstraintViolationError",
    "JoinedTransaction",
    "LogEntry",
    "MutationBatch",
    "Outcome",
    "RetryConfig",
    "RetryCoordinator",
    "SharedTransactionRegistry",
    "Statement",
    "StatementKind",
    "StatementLog",
    "TransactionAbortedError",
    "TransactionError",
    "TransactionHandle",
    "TransactionScope",
    "TransactionState",
    "TransactionUsageError",
    "TransportError",
    "default_registry",
    "run_with_retry",
]

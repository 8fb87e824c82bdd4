"""SQLAlchemy transport."""

from collections.abc import Iterable, Sequence
from typing import Any, Self

from sqlalchemy import text
from sqlalchemy.exc import (
    DataError,
    DBAPIError,
    DisconnectionError,
    IntegrityError,
    InterfaceError,
    ProgrammingError,
    SQLAlchemyError,
)
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool

from occtx.configs.sqlalchemy import DEFAULT_ABORTED_MARKERS, DEFAULT_ABORTED_SQLSTATES, SQLAlchemyConfig
from occtx.exceptions import (
    ConstraintViolationError,
    TransactionAbortedError,
    TransactionError,
    TransportError,
)
from occtx.statements.base import Statement
from occtx.transports.abstract import AbstractTransport


class SQLAlchemyTransport(AbstractTransport[AsyncConnection]):
    """SQLAlchemy transport.

    Every attempt runs on its own `AsyncConnection`. Batches run inside a SAVEPOINT, so a
    rejected batch is rolled back as a whole and the writes flushed before it survive.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        aborted_sqlstates: Iterable[str] = DEFAULT_ABORTED_SQLSTATES,
        aborted_markers: Iterable[str] = DEFAULT_ABORTED_MARKERS,
    ) -> None:
        """Initialize the transport.

        Args:
            engine (AsyncEngine): The engine to open connections with.
            aborted_sqlstates (Iterable[str]): SQLSTATE codes that mean the transaction was aborted.
            aborted_markers (Iterable[str]): Error message fragments that mean the transaction was aborted.

        """
        self._engine = engine
        self._aborted_sqlstates = frozenset(aborted_sqlstates)
        self._aborted_markers = tuple(marker.lower() for marker in aborted_markers)

    @classmethod
    def from_config(cls, config: SQLAlchemyConfig) -> Self:
        """Create the transport and its engine from a config."""
        if config.use_pool:
            engine = create_async_engine(config.url)
        else:
            engine = create_async_engine(config.url, poolclass=NullPool)

        return cls(engine, aborted_sqlstates=config.aborted_sqlstates, aborted_markers=config.aborted_markers)

    @property
    def engine(self) -> AsyncEngine:
        """Get the engine."""
        return self._engine

    async def begin_transaction(self) -> AsyncConnection:
        """Open a connection and begin a transaction on it."""
        try:
            connection = await self._engine.connect()
        except SQLAlchemyError as exc:
            raise self.classify(exc) from exc

        try:
            await connection.begin()
        except SQLAlchemyError as exc:
            await connection.close()
            raise self.classify(exc) from exc

        return connection

    async def execute(self, ref: AsyncConnection, statement: Statement) -> Any:
        """Execute a statement on the attempt's connection."""
        try:
            return await self._execute(ref, statement)
        except SQLAlchemyError as exc:
            raise self.classify(exc) from exc

    async def execute_batch(self, ref: AsyncConnection, statements: Sequence[Statement]) -> list[Any]:
        """Execute the statements inside a SAVEPOINT."""
        results: list[Any] = []
        try:
            async with ref.begin_nested():
                for statement in statements:
                    results.append(await self._execute(ref, statement))
        except SQLAlchemyError as exc:
            raise self.classify(exc) from exc

        return results

    async def commit(self, ref: AsyncConnection) -> None:
        """Commit the transaction and release the connection."""
        try:
            await ref.commit()
        except SQLAlchemyError as exc:
            raise self.classify(exc) from exc

        await ref.close()

    async def rollback(self, ref: AsyncConnection) -> None:
        """Roll back the transaction and release the connection."""
        if ref.closed:
            return

        try:
            await ref.rollback()
        except SQLAlchemyError as exc:
            raise self.classify(exc) from exc
        finally:
            await ref.close()

    async def _execute(self, connection: AsyncConnection, statement: Statement) -> Any:
        result = await connection.execute(text(statement.text), dict(statement.parameters))
        if result.returns_rows:
            return result.mappings().all()
        return result.rowcount

    def classify(self, exc: SQLAlchemyError) -> TransactionError:
        """Classify a SQLAlchemy error.

        Args:
            exc (SQLAlchemyError): The error raised by SQLAlchemy.

        Returns:
            TransactionError: The classified error.

        """
        if isinstance(exc, DisconnectionError):
            return TransportError(f"Connection to the database was lost: {exc}")

        if not isinstance(exc, DBAPIError):
            return TransportError(f"Database session failed: {exc}")

        if exc.connection_invalidated or isinstance(exc, InterfaceError):
            return TransportError(f"Connection to the database was lost: {exc.orig}")

        if self._is_aborted(exc):
            return TransactionAbortedError(f"Transaction was aborted by the database: {exc.orig}")

        if isinstance(exc, IntegrityError | DataError | ProgrammingError):
            return ConstraintViolationError(f"Statement was rejected by the database: {exc.orig}")

        return TransportError(f"Database operation failed: {exc.orig}")

    def _is_aborted(self, exc: DBAPIError) -> bool:
        sqlstate = getattr(exc.orig, "sqlstate", None) or getattr(exc.orig, "pgcode", None)
        if sqlstate in self._aborted_sqlstates:
            return True

        message = str(exc.orig).lower()
        return any(marker in message for marker in self._aborted_markers)

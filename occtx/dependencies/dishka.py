"""Dishka providers."""

from collections.abc import AsyncIterable

from dishka import Provider, Scope, provide

from occtx.configs.retry import RetryConfig
from occtx.configs.sqlalchemy import SQLAlchemyConfig
from occtx.transactions.registry import SharedTransactionRegistry
from occtx.transactions.scope import TransactionScope
from occtx.transports.sqlalchemy import SQLAlchemyTransport


class OCCTXProvider(Provider):
    """Transactions provider.

    Expects a `SQLAlchemyConfig` to be provided by the application. The `RetryConfig` is read
    from the environment unless the application provides its own.
    """

    @provide(scope=Scope.APP)
    async def retry_config(self) -> RetryConfig:
        """Get the retry config."""
        return RetryConfig()

    @provide(scope=Scope.APP)
    async def transport(self, sqlalchemy_config: SQLAlchemyConfig) -> AsyncIterable[SQLAlchemyTransport]:
        """Get the transport.

        Args:
            sqlalchemy_config (SQLAlchemyConfig): The sqlalchemy config.

        Returns:
            SQLAlchemyTransport: The transport. Its engine is disposed when the container closes.

        """
        transport = SQLAlchemyTransport.from_config(sqlalchemy_config)
        yield transport
        await transport.engine.dispose()

    @provide(scope=Scope.APP)
    async def registry(self) -> SharedTransactionRegistry:
        """Get the registry of shared transactions."""
        return SharedTransactionRegistry()

    @provide(scope=Scope.REQUEST)
    async def transaction_scope(
        self,
        transport: SQLAlchemyTransport,
        retry_config: RetryConfig,
        registry: SharedTransactionRegistry,
    ) -> AsyncIterable[TransactionScope]:
        """Get a new transaction.

        The transaction is rolled back when the request scope closes, unless it was committed.

        Args:
            transport (SQLAlchemyTransport): The transport.
            retry_config (RetryConfig): The retry config.
            registry (SharedTransactionRegistry): The registry of shared transactions.

        Returns:
            TransactionScope: A new transaction.

        """
        async with await TransactionScope.begin(transport, config=retry_config, registry=registry) as scope:
            yield scope

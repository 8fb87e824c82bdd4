"""Conftest."""

from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

import pytest_asyncio
from sqlalchemy import ForeignKey, event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from occtx.configs.retry import RetryConfig
from occtx.statements.base import Statement
from occtx.transactions.registry import SharedTransactionRegistry
from occtx.transactions.scope import TransactionScope
from occtx.transports.sqlalchemy import SQLAlchemyTransport


class Base(DeclarativeBase):
    """Base class for test models."""


class SingerModel(Base):
    """Singer model for testing."""

    __tablename__ = "singers"

    singer_id: Mapped[int] = mapped_column(primary_key=True)
    first_name: Mapped[str] = mapped_column()
    last_name: Mapped[str] = mapped_column()


class AlbumModel(Base):
    """Album model for testing."""

    __tablename__ = "albums"

    album_id: Mapped[int] = mapped_column(primary_key=True)
    singer_id: Mapped[int] = mapped_column(ForeignKey("singers.singer_id"))
    title: Mapped[str] = mapped_column()


class VenueModel(Base):
    """Venue model for testing."""

    __tablename__ = "venues"

    code: Mapped[str] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column()


def insert_singer(singer_id: int, first_name: str, last_name: str) -> Statement:
    """Insert a singer."""
    return Statement.write(
        "INSERT INTO singers (singer_id, first_name, last_name) VALUES (:singer_id, :first_name, :last_name)",
        singer_id=singer_id,
        first_name=first_name,
        last_name=last_name,
    )


def insert_album(album_id: int, singer_id: int, title: str) -> Statement:
    """Insert an album."""
    return Statement.write(
        "INSERT INTO albums (album_id, singer_id, title) VALUES (:album_id, :singer_id, :title)",
        album_id=album_id,
        singer_id=singer_id,
        title=title,
    )


def insert_venue(code: str, name: str) -> Statement:
    """Insert a venue."""
    return Statement.write("INSERT INTO venues (code, name) VALUES (:code, :name)", code=code, name=name)


def select_venues(prefix: str) -> Statement:
    """Select the names of the venues whose name starts with the prefix."""
    return Statement.read("SELECT name FROM venues WHERE name LIKE :pattern ORDER BY name", pattern=f"{prefix}%")


def configure_sqlite(engine: AsyncEngine) -> None:
    """Let SQLAlchemy own transaction boundaries on sqlite, so that SAVEPOINTs work.

    Also enables foreign keys, which sqlite does not enforce by default.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def on_connect(dbapi_connection: Any, _: Any) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def on_begin(connection: Any) -> None:
        connection.exec_driver_sql("BEGIN")


@pytest_asyncio.fixture
async def engine(tmp_path: Path) -> AsyncIterator[AsyncEngine]:
    """Create a file-backed sqlite engine with the test tables."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'occtx.db'}")
    configure_sqlite(engine)

    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def sqlalchemy_transport(engine: AsyncEngine) -> SQLAlchemyTransport:
    """Create the transport."""
    return SQLAlchemyTransport(engine)


@pytest_asyncio.fixture
async def registry() -> SharedTransactionRegistry:
    """Create the registry of shared transactions."""
    return SharedTransactionRegistry()


@pytest_asyncio.fixture
async def retry_config() -> RetryConfig:
    """Create the retry config."""
    return RetryConfig(max_attempts=5)


@pytest_asyncio.fixture
async def new_scope(
    sqlalchemy_transport: SQLAlchemyTransport,
    retry_config: RetryConfig,
    registry: SharedTransactionRegistry,
) -> Any:
    """Get a factory of transaction scopes."""

    async def factory() -> TransactionScope:
        return await TransactionScope.begin(sqlalchemy_transport, config=retry_config, registry=registry)

    return factory

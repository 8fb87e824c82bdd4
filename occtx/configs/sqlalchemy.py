"""SQLAlchemy config."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_ABORTED_SQLSTATES = ("40001", "40P01")
DEFAULT_ABORTED_MARKERS = ("restart transaction", "could not serialize access", "database is locked")


class SQLAlchemyConfig(BaseSettings):
    """SQLAlchemy config.

    This config is used to configure the sqlalchemy transport.

    Attributes:
        url (str): The url of the database.
        use_pool (bool): Whether to use a connection pool. Defaults to False.
        aborted_sqlstates (list[str]): SQLSTATE codes that mean the transaction was aborted
            because of contention. Defaults to serialization failures and deadlocks.
        aborted_markers (list[str]): Fragments of driver error messages that mean the transaction
            was aborted, for drivers that do not expose a SQLSTATE.

    """

    model_config = SettingsConfigDict(env_prefix="OCCTX_SQLALCHEMY_")

    url: str
    use_pool: bool = Field(default=False)
    aborted_sqlstates: list[str] = Field(default_factory=lambda: list(DEFAULT_ABORTED_SQLSTATES))
    aborted_markers: list[str] = Field(default_factory=lambda: list(DEFAULT_ABORTED_MARKERS))

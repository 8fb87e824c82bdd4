"""Retry config."""

from datetime import timedelta

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class RetryConfig(BaseSettings):
    """Retry config.

    This config is used to configure how aborted transactions are retried.

    Attributes:
        internal_retries_enabled (bool): Whether aborted transactions are retried internally. Defaults to True.
        max_attempts (int): Maximum number of attempts of one logical transaction, the first one included.
            Defaults to 10.
        timeout (timedelta | None): Maximum time spent retrying one logical transaction. Defaults to no limit.
        base_delay (timedelta): Delay before the first retry. Defaults to 10 milliseconds.
        max_delay (timedelta): Upper bound of the delay between two attempts. Defaults to 1 second.
        multiplier (float): Growth factor of the delay between two attempts. Defaults to 2.
        jitter (float): Relative random deviation applied to each delay. Defaults to 0.2.
        rerun_body (bool): Whether to re-run the whole transaction body on retry instead of replaying
            the recorded writes. Only applies to `run_with_retry`. Defaults to False.
        verify_reads (bool): Whether recorded reads are replayed and compared on retry. Defaults to False.

    """

    model_config = SettingsConfigDict(env_prefix="OCCTX_RETRY_")

    internal_retries_enabled: bool = Field(default=True, description="Whether aborts are retried internally.")
    max_attempts: int = Field(default=10, ge=1, description="Maximum number of attempts.")
    timeout: timedelta | None = Field(default=None, description="Maximum time spent retrying.")
    base_delay: timedelta = Field(default=timedelta(milliseconds=10), description="Delay before the first retry.")
    max_delay: timedelta = Field(default=timedelta(seconds=1), description="Upper bound of the retry delay.")
    multiplier: float = Field(default=2.0, ge=1.0, description="Growth factor of the retry delay.")
    jitter: float = Field(default=0.2, ge=0.0, le=1.0, description="Relative random deviation of the retry delay.")
    rerun_body: bool = Field(default=False, description="Whether to re-run the transaction body on retry.")
    verify_reads: bool = Field(default=False, description="Whether recorded reads are verified on retry.")

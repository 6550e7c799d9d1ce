"""Client configuration, either built in code or loaded from the environment."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from tsdb_client import __version__

DEFAULT_USER_AGENT = f"tsdb-client-python/{__version__}"
DEFAULT_CONNECTION_TIMEOUT_MS = 1200 * 1000


class RetryPolicy(BaseModel):
    """Exponential backoff applied by the transport to retryable failures.

    The delay before retry *n* (0-based) is ``base_interval_ms * 2**n``,
    capped at ``max_delay_ms``.  ``max_error_retry=0`` disables retries.
    """

    model_config = ConfigDict(frozen=True)

    max_error_retry: int = Field(3, ge=0)
    max_delay_ms: int = Field(20_000, ge=0)
    base_interval_ms: int = Field(300, ge=0)

    def delay_seconds(self, attempt: int) -> float:
        """Return the sleep before retry *attempt*, or ``-1`` when exhausted."""
        if attempt >= self.max_error_retry:
            return -1
        delay_ms = min(self.base_interval_ms * (1 << attempt), self.max_delay_ms)
        return delay_ms / 1000.0


class ClientConfig(BaseModel):
    """Everything a ``TSDBClient`` needs; immutable once built."""

    model_config = ConfigDict(frozen=True)

    endpoint: str
    ak: str
    sk: str
    database: str = ""
    proxy_url: str = ""
    session_token: str = ""
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    connection_timeout_ms: int = Field(DEFAULT_CONNECTION_TIMEOUT_MS, gt=0)
    user_agent: str = DEFAULT_USER_AGENT


class Settings(BaseSettings):
    """All settings are read from ``TSDB_*`` environment variables (case-insensitive)."""

    model_config = SettingsConfigDict(
        env_prefix="TSDB_", env_file=".env", extra="ignore"
    )

    # ── Service ───────────────────────────────────────────────────────────────
    endpoint: str = "http://localhost:8086"
    database: str = ""

    # ── Credentials ───────────────────────────────────────────────────────────
    ak: str = ""
    sk: str = ""
    # Only set when using temporary (STS) credentials.
    session_token: str = ""

    # ── Transport ─────────────────────────────────────────────────────────────
    proxy_url: str = ""
    connection_timeout_ms: int = DEFAULT_CONNECTION_TIMEOUT_MS
    max_error_retry: int = 3
    max_delay_ms: int = 20_000
    base_interval_ms: int = 300

    def to_client_config(self) -> ClientConfig:
        return ClientConfig(
            endpoint=self.endpoint,
            ak=self.ak,
            sk=self.sk,
            database=self.database,
            proxy_url=self.proxy_url,
            session_token=self.session_token,
            retry=RetryPolicy(
                max_error_retry=self.max_error_retry,
                max_delay_ms=self.max_delay_ms,
                base_interval_ms=self.base_interval_ms,
            ),
            connection_timeout_ms=self.connection_timeout_ms,
        )

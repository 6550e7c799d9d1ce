"""Settings and client providers.

``get_settings()`` is cached so the environment is read once per process;
``get_tsdb_client()`` builds a fresh client on every call.  Tests override the
environment with ``monkeypatch`` and clear the cache with
``get_settings.cache_clear()``.
"""

from functools import lru_cache

from tsdb_client.clients.tsdb import TSDBClient
from tsdb_client.config import Settings


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


def get_tsdb_client(settings: Settings | None = None) -> TSDBClient:
    return TSDBClient.from_settings(settings or get_settings())

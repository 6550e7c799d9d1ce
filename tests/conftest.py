"""Shared pytest fixtures and helpers.

The TSDB service is replaced by ``FakeTSDB``, an ``httpx.MockTransport``
handler that records every request and answers from a queue of canned
replies, so tests run without any live service.  Retry sleeps are recorded
instead of slept.
"""

from __future__ import annotations

import hashlib
import hmac
from collections.abc import Callable
from urllib.parse import parse_qsl, unquote

import httpx
import pytest

from tsdb_client import ClientConfig, RetryPolicy, TSDBClient
from tsdb_client.clients import transport as transport_module
from tsdb_client.clients.auth import (
    canonical_headers,
    canonical_query_string,
    canonical_uri,
)

# ── Constants ─────────────────────────────────────────────────────────────────

AK = "test-access-key"
SK = "test-secret-key"
ENDPOINT = "http://tsdb.example.com"
HOST = "tsdb.example.com"

# ── Fake service ──────────────────────────────────────────────────────────────


class FakeTSDB:
    """Records requests and answers from a queue of canned replies.

    When the queue is empty every request gets ``200 {}``.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self._replies: list[httpx.Response | Exception] = []

    def reply(
        self,
        status_code: int = 200,
        json: object = None,
        content: bytes = b"",
        headers: dict[str, str] | None = None,
    ) -> None:
        if json is not None:
            self._replies.append(httpx.Response(status_code, json=json, headers=headers))
        else:
            self._replies.append(
                httpx.Response(status_code, content=content, headers=headers)
            )

    def fail(self, exc: Exception) -> None:
        self._replies.append(exc)

    def handler(self, request: httpx.Request) -> httpx.Response:
        request.read()
        self.requests.append(request)
        reply = self._replies.pop(0) if self._replies else httpx.Response(200, json={})
        if isinstance(reply, Exception):
            raise reply
        return reply

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]


# ── Fixtures ──────────────────────────────────────────────────────────────────


@pytest.fixture()
def fake_tsdb() -> FakeTSDB:
    return FakeTSDB()


@pytest.fixture()
def sleeps(monkeypatch: pytest.MonkeyPatch) -> list[float]:
    recorded: list[float] = []
    monkeypatch.setattr(transport_module.time, "sleep", recorded.append)
    return recorded


@pytest.fixture()
def make_client(fake_tsdb: FakeTSDB) -> Callable[..., TSDBClient]:
    """Factory for clients wired to ``fake_tsdb``; retries are off by default."""
    clients: list[TSDBClient] = []

    def _make(
        database: str = "",
        retry: RetryPolicy | None = None,
        session_token: str = "",
    ) -> TSDBClient:
        config = ClientConfig(
            endpoint=ENDPOINT,
            ak=AK,
            sk=SK,
            database=database,
            session_token=session_token,
            retry=retry or RetryPolicy(max_error_retry=0),
        )
        client = TSDBClient(config, transport=httpx.MockTransport(fake_tsdb.handler))
        clients.append(client)
        return client

    yield _make  # type: ignore[misc]
    for client in clients:
        client.close()


@pytest.fixture()
def client(make_client: Callable[..., TSDBClient]) -> TSDBClient:
    return make_client()


@pytest.fixture()
def verify_signature() -> Callable[[httpx.Request], bool]:
    """Recompute the signature the way the service does, from the wire request."""

    def _verify(request: httpx.Request, sk: str = SK) -> bool:
        version, ak, date, expire, signed, signature = request.headers[
            "authorization"
        ].split("/")
        raw_path, _, raw_query = request.url.raw_path.decode().partition("?")
        params = dict(parse_qsl(raw_query, keep_blank_values=True))
        headers = {name: request.headers[name] for name in signed.split(";")}
        canonical = "\n".join(
            [
                request.method,
                canonical_uri(unquote(raw_path)),
                canonical_query_string(params),
                canonical_headers(headers, frozenset(headers))[0],
            ]
        )
        prefix = "/".join([version, ak, date, expire])
        key = hmac.new(sk.encode(), prefix.encode(), hashlib.sha256).hexdigest()
        expected = hmac.new(key.encode(), canonical.encode(), hashlib.sha256).hexdigest()
        return hmac.compare_digest(expected, signature)

    return _verify

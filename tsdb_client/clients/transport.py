"""Signed HTTP transport for the TSDB service.

``BceRequest`` is the unsent request value handed to the signer;
``BceTransport`` owns the long-lived ``httpx.Client``, signs and sends one
request (retrying per ``RetryPolicy``) and returns a ``BceResponse`` that the
caller classifies and parses.

The wire path and query string are exactly the canonical forms that were
signed, so the service recomputes the same signature.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from tsdb_client.clients.auth import (
    BceCredentials,
    BceV1Signer,
    SignOptions,
    canonical_query_string,
    canonical_uri,
    format_iso8601,
)
from tsdb_client.config import DEFAULT_USER_AGENT, RetryPolicy
from tsdb_client.exceptions import DeserializationError, ServiceError, TransportError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

GET = "GET"
POST = "POST"
PUT = "PUT"

HOST = "Host"
USER_AGENT = "User-Agent"
CONTENT_TYPE = "Content-Type"
CONTENT_LENGTH = "Content-Length"
BCE_DATE = "x-bce-date"
BCE_REQUEST_ID = "x-bce-request-id"

DEFAULT_CONTENT_TYPE = "application/json;charset=utf-8"

_RETRYABLE_STATUS = frozenset({500, 502, 503})
_RETRYABLE_CODES = frozenset({"RequestExpired"})


@dataclass
class BceRequest:
    """An unsent request: method, URI, headers, query parameters and body."""

    method: str = GET
    uri: str = "/"
    headers: dict[str, str] = field(default_factory=dict)
    params: dict[str, str] = field(default_factory=dict)
    body: bytes | None = None

    def set_header(self, key: str, value: str) -> None:
        # Header names are case-insensitive; keep a single entry per name.
        for existing in [k for k in self.headers if k.lower() == key.lower()]:
            del self.headers[existing]
        self.headers[key] = value

    def header(self, key: str) -> str:
        for existing, value in self.headers.items():
            if existing.lower() == key.lower():
                return value
        return ""

    def set_param(self, key: str, value: str) -> None:
        self.params[key] = value

    def param(self, key: str) -> str:
        return self.params.get(key, "")

    def set_body(self, body: bytes) -> None:
        self.body = body
        self.set_header(CONTENT_LENGTH, str(len(body)))


class BceResponse:
    """Thin view over an ``httpx.Response`` with the service's error envelope."""

    def __init__(self, response: httpx.Response) -> None:
        self.raw = response

    @property
    def status_code(self) -> int:
        return self.raw.status_code

    @property
    def request_id(self) -> str:
        return self.raw.headers.get(BCE_REQUEST_ID, "")

    def is_fail(self) -> bool:
        return self.raw.status_code >= 400

    def service_error(self) -> ServiceError:
        """Build the ``ServiceError`` reported by a failed response.

        The body is expected to be ``{"code", "message", "requestId"}``; when it
        is empty or not JSON the HTTP reason phrase is used instead.
        """
        reason = self.raw.reason_phrase or f"HTTP {self.status_code}"
        envelope: dict = {}
        if self.raw.content:
            try:
                payload = self.raw.json()
            except ValueError:
                payload = None
            if isinstance(payload, dict):
                envelope = payload
        return ServiceError(
            str(envelope.get("message") or reason),
            code=str(envelope.get("code") or reason),
            request_id=str(envelope.get("requestId") or self.request_id),
            status_code=self.status_code,
        )

    def parse_json_body(self, model: type[ModelT]) -> ModelT:
        """Deserialize the body into *model*.

        Raises:
            DeserializationError: if the body is not JSON of the expected shape.
        """
        try:
            return model.model_validate_json(self.raw.content)
        except ValidationError as exc:
            raise DeserializationError(
                f"Unexpected response body for {model.__name__} "
                f"(HTTP {self.status_code}): {self.raw.text[:200]}"
            ) from exc


class BceTransport:
    """Signs and sends ``BceRequest`` objects over one pooled ``httpx.Client``."""

    def __init__(
        self,
        endpoint: str,
        host: str,
        credentials: BceCredentials,
        signer: BceV1Signer | None = None,
        sign_options: SignOptions | None = None,
        retry: RetryPolicy | None = None,
        connection_timeout_ms: int = 1200 * 1000,
        user_agent: str = DEFAULT_USER_AGENT,
        proxy_url: str = "",
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.endpoint = endpoint
        self.host = host
        self.credentials = credentials
        self.signer = signer or BceV1Signer()
        self.sign_options = sign_options or SignOptions()
        self.retry = retry or RetryPolicy()
        self.user_agent = user_agent
        self._client = httpx.Client(
            proxy=proxy_url or None,
            timeout=httpx.Timeout(connection_timeout_ms / 1000.0),
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def _prepare(self, request: BceRequest) -> None:
        request.set_header(HOST, self.host)
        request.set_header(USER_AGENT, self.user_agent)
        request.set_header(BCE_DATE, format_iso8601(int(time.time())))
        if not request.header(CONTENT_TYPE):
            request.set_header(CONTENT_TYPE, DEFAULT_CONTENT_TYPE)
        self.signer.sign(request, self.credentials, self.sign_options)

    def _url(self, request: BceRequest) -> str:
        url = f"{self.endpoint}{canonical_uri(request.uri)}"
        query = canonical_query_string(request.params)
        return f"{url}?{query}" if query else url

    def _should_retry(self, response: BceResponse) -> bool:
        if response.status_code in _RETRYABLE_STATUS:
            return True
        return response.is_fail() and response.service_error().code in _RETRYABLE_CODES

    def send(self, request: BceRequest) -> BceResponse:
        """Send *request*, retrying retryable failures.

        Returns the final response, which may be a failure; the caller decides
        what to do with it.

        Raises:
            TransportError: if the request never reached the service.
        """
        attempt = 0
        while True:
            self._prepare(request)
            url = self._url(request)
            logger.debug("Sending %s %s (attempt %d)", request.method, url, attempt + 1)
            try:
                raw = self._client.request(
                    request.method, url, headers=request.headers, content=request.body
                )
            except httpx.TransportError as exc:
                delay = self.retry.delay_seconds(attempt)
                if delay < 0:
                    raise TransportError(
                        f"{request.method} {request.uri} failed: {exc}"
                    ) from exc
                logger.warning(
                    "%s %s failed (%s); retrying in %.2fs",
                    request.method, request.uri, exc, delay,
                )
            else:
                response = BceResponse(raw)
                if not self._should_retry(response):
                    return response
                delay = self.retry.delay_seconds(attempt)
                if delay < 0:
                    return response
                logger.warning(
                    "%s %s returned HTTP %s; retrying in %.2fs",
                    request.method, request.uri, response.status_code, delay,
                )
            time.sleep(delay)
            attempt += 1

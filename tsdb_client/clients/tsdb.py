"""TSDB service client.

Every operation is one signed request against the service's ``/v1`` API:

  • ``POST /v1/datapoint``            write datapoints
  • ``PUT  /v1/datapoint?query=``     query datapoints (query set in the body)
  • ``GET  /v1/metric``               list metrics
  • ``GET  /v1/metric/{m}/field``     list fields of a metric
  • ``GET  /v1/metric/{m}/tag``       list tags of a metric
  • ``GET  /v1/row?sql=``             run a SQL statement

When the client is scoped to a database, every request carries it as the
``database`` query parameter.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping, Sequence
from typing import Any, TypeVar
from urllib.parse import urlencode, urlsplit

import httpx
from pydantic import BaseModel, ValidationError
from pydantic_core import PydanticSerializationError

from tsdb_client.clients.auth import (
    AUTHORIZATION,
    BCE_SECURITY_TOKEN,
    BceCredentials,
    BceV1Signer,
    SignOptions,
)
from tsdb_client.clients.transport import GET, POST, PUT, BceRequest, BceTransport, HOST
from tsdb_client.config import ClientConfig, Settings
from tsdb_client.exceptions import InvalidEndpointError, SerializationError
from tsdb_client.models import (
    Datapoint,
    ListDatapointArgs,
    ListDatapointResult,
    ListFieldResult,
    ListMetricsResult,
    ListTagsResult,
    MetricField,
    Query,
    QueryResult,
    RowResult,
    WriteDatapointArgs,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

URI_DATAPOINT = "/v1/datapoint"
URI_METRIC = "/v1/metric"
URI_FIELD = "/v1/metric/{metric}/field"
URI_TAG = "/v1/metric/{metric}/tag"
URI_ROW_SQL = "/v1/row"


def _parse_endpoint(endpoint: str) -> tuple[str, str]:
    """Return ``(endpoint, host)`` with any trailing slash removed.

    Raises:
        InvalidEndpointError: unless *endpoint* is ``http(s)://host[:port][/]``.
    """
    try:
        parts = urlsplit(endpoint)
        _ = parts.port  # raises ValueError on a malformed port
    except ValueError as exc:
        raise InvalidEndpointError(f"Cannot parse endpoint {endpoint!r}: {exc}") from exc
    if parts.scheme not in ("http", "https") or not parts.hostname:
        raise InvalidEndpointError(
            f"Endpoint must be an http(s) URL with a host, got {endpoint!r}"
        )
    if "@" in parts.netloc:
        raise InvalidEndpointError(f"Endpoint must not carry user info, got {endpoint!r}")
    if parts.path.strip("/") or parts.query or parts.fragment:
        raise InvalidEndpointError(
            f"Endpoint must not carry a path, query or fragment, got {endpoint!r}"
        )
    return f"{parts.scheme}://{parts.netloc}", parts.netloc


def _metric_uri(template: str, metric: str) -> str:
    # The transport percent-encodes the path; "/" is the only character it
    # leaves alone, so it cannot appear inside a metric segment.
    if not metric or "/" in metric:
        raise ValueError(f"Invalid metric name {metric!r}")
    return template.format(metric=metric)


def _to_json(payload: BaseModel) -> bytes:
    try:
        return payload.model_dump_json(by_alias=True, exclude_none=True).encode()
    except (PydanticSerializationError, TypeError, ValueError) as exc:
        raise SerializationError(f"Cannot encode request payload as JSON: {exc}") from exc


class TSDBClient:
    """Synchronous client for the TSDB HTTP API.

    One instance is meant to be shared: its configuration is immutable and the
    underlying ``httpx.Client`` connection pool is thread-safe.
    """

    def __init__(
        self,
        config: ClientConfig,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Build a client from *config*.

        Args:
            config:    Endpoint, credentials and transport options.
            transport: Optional ``httpx`` transport, e.g. ``httpx.MockTransport``.

        Raises:
            InvalidCredentialsError: if the access key or secret key is empty.
            InvalidEndpointError:    if the endpoint is not an http(s) URL.
        """
        credentials = BceCredentials(config.ak, config.sk, config.session_token)
        self.endpoint, self.host = _parse_endpoint(config.endpoint)
        self.config = config
        self.database = config.database
        self.signer = BceV1Signer()
        self.sign_options = SignOptions()
        self._transport = BceTransport(
            endpoint=self.endpoint,
            host=self.host,
            credentials=credentials,
            signer=self.signer,
            sign_options=self.sign_options,
            retry=config.retry,
            connection_timeout_ms=config.connection_timeout_ms,
            user_agent=config.user_agent,
            proxy_url=config.proxy_url,
            transport=transport,
        )

    # ── Construction ─────────────────────────────────────────────────────────

    @classmethod
    def new(cls, ak: str, sk: str, endpoint: str) -> TSDBClient:
        return cls(ClientConfig(endpoint=endpoint, ak=ak, sk=sk))

    @classmethod
    def new_with_db(cls, ak: str, sk: str, endpoint: str, database: str) -> TSDBClient:
        """Build a client whose every request is scoped to *database*."""
        return cls(ClientConfig(endpoint=endpoint, ak=ak, sk=sk, database=database))

    @classmethod
    def from_config(
        cls, config: ClientConfig, transport: httpx.BaseTransport | None = None
    ) -> TSDBClient:
        return cls(config, transport=transport)

    @classmethod
    def from_settings(cls, settings: Settings) -> TSDBClient:
        return cls(settings.to_client_config())

    @property
    def credentials(self) -> BceCredentials:
        return self._transport.credentials

    def close(self) -> None:
        """Release the pooled HTTP connections."""
        self._transport.close()

    def __enter__(self) -> TSDBClient:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    # ── Request execution ────────────────────────────────────────────────────

    def _new_request(
        self, method: str, uri: str, params: Mapping[str, str] | None
    ) -> BceRequest:
        request = BceRequest(method=method, uri=uri)
        if self.database:
            request.set_param("database", self.database)
        for key, value in (params or {}).items():
            request.set_param(key, value)
        return request

    def _get(
        self,
        uri: str,
        result: type[ModelT],
        params: Mapping[str, str] | None = None,
    ) -> ModelT:
        request = self._new_request(GET, uri, params)
        response = self._transport.send(request)
        if response.is_fail():
            raise response.service_error()
        return response.parse_json_body(result)

    def _post(
        self,
        uri: str,
        method: str,
        data: BaseModel,
        result: type[ModelT] | None = None,
        params: Mapping[str, str] | None = None,
    ) -> ModelT | None:
        body = _to_json(data)
        request = self._new_request(method, uri, params)
        request.set_body(body)
        response = self._transport.send(request)
        if response.is_fail():
            raise response.service_error()
        if result is None:
            return None
        return response.parse_json_body(result)

    # ── Operations ───────────────────────────────────────────────────────────

    def write_datapoint(self, datapoints: Sequence[Datapoint | Mapping[str, Any]]) -> None:
        """Write *datapoints*; the response body is not read.

        Raises:
            SerializationError: if the datapoints cannot be encoded.
            ServiceError:       if the service rejects the write.
            TransportError:     on network failure.
        """
        args = _build(WriteDatapointArgs, datapoints=list(datapoints))
        self._post(URI_DATAPOINT, POST, args)

    def list_metric(self) -> list[str]:
        return self._get(URI_METRIC, ListMetricsResult).metrics

    def list_field_by_metric(self, metric: str) -> dict[str, MetricField]:
        return self._get(_metric_uri(URI_FIELD, metric), ListFieldResult).fields

    def list_tag_by_metric(self, metric: str) -> dict[str, set[str]]:
        """Return tag name → set of values seen for *metric*."""
        return self._get(_metric_uri(URI_TAG, metric), ListTagsResult).tags

    def list_datapoint_by_query(
        self,
        queries: Sequence[Query | Mapping[str, Any]],
        disable_presampling: bool = False,
    ) -> list[QueryResult]:
        """Run a query set and return one ``QueryResult`` per query.

        Args:
            queries:             Query specifications, as models or plain dicts.
            disable_presampling: Ask the service to read raw data only.
        """
        args = _build(
            ListDatapointArgs,
            queries=list(queries),
            disable_presampling=True if disable_presampling else None,
        )
        listing = self._post(
            URI_DATAPOINT, PUT, args, ListDatapointResult, params={"query": ""}
        )
        return listing.results if listing is not None else []

    def iter_datapoint_by_query(
        self,
        query: Query | Mapping[str, Any],
        disable_presampling: bool = False,
    ) -> Iterator[QueryResult]:
        """Yield every page of a single query, following ``nextMarker``."""
        current = _build(Query, **dict(query)) if isinstance(query, Mapping) else query
        while True:
            results = self.list_datapoint_by_query([current], disable_presampling)
            if not results:
                return
            page = results[0]
            yield page
            if not page.truncated or not page.next_marker:
                return
            logger.debug("Fetching next page of %s at marker %s", current.metric, page.next_marker)
            current = current.model_copy(update={"marker": page.next_marker})

    def list_row_by_sql(self, statement: str) -> RowResult:
        """Run a SQL *statement* and return its rows.

        Either a fully parsed ``RowResult`` is returned or an exception is
        raised; a partially populated result is never returned.
        """
        return self._get(URI_ROW_SQL, RowResult, params={"sql": statement})

    def generate_presigned_url(
        self,
        queries: Sequence[Query | Mapping[str, Any]],
        expire_seconds: int,
        endpoint: str | None = None,
    ) -> str:
        """Return a self-authenticating GET URL for a datapoint query.

        The URL is signed with this client's credentials and stays valid for
        *expire_seconds*.  *endpoint* replaces the client endpoint in the
        returned URL, e.g. to hand out a public address for a client that
        talks to a private one; the signature is still bound to this
        client's host.  A session token is added as the signed
        ``x-bce-security-token`` parameter.

        Raises:
            SigningError:       if *expire_seconds* is not positive.
            SerializationError: if the queries cannot be encoded.
        """
        args = _build(ListDatapointArgs, queries=list(queries))
        query_json = _to_json(args).decode()

        request = BceRequest(method=GET, uri=URI_DATAPOINT)
        request.set_param("query", query_json)
        request.set_header(HOST, self.host)
        credentials = self.credentials
        if credentials.session_token:
            # A URL carries no headers: the token goes in as a signed parameter.
            request.set_param(BCE_SECURITY_TOKEN, credentials.session_token)
            credentials = BceCredentials(
                credentials.access_key_id, credentials.secret_access_key
            )
        self.signer.sign(
            request,
            credentials,
            SignOptions(
                headers_to_sign=self.sign_options.headers_to_sign,
                expire_seconds=expire_seconds,
            ),
        )

        base = endpoint.rstrip("/") if endpoint else self.endpoint
        query = urlencode(
            [*request.params.items(), ("authorization", request.header(AUTHORIZATION))]
        )
        return f"{base}{URI_DATAPOINT}?{query}"


def _build(model: type[ModelT], **fields: Any) -> ModelT:
    try:
        return model(**fields)
    except ValidationError as exc:
        raise SerializationError(f"Invalid {model.__name__} payload: {exc}") from exc

"""Unit tests for the signed transport: headers, error envelope and retries."""

from __future__ import annotations

from collections.abc import Callable

import httpx
import pytest

from tsdb_client import RetryPolicy, TSDBClient
from tsdb_client.clients.transport import BceRequest, BceResponse
from tsdb_client.exceptions import DeserializationError, ServiceError, TransportError
from tsdb_client.models import RowResult

from conftest import FakeTSDB

# ── Outgoing request ──────────────────────────────────────────────────────────


def test_request_carries_signed_bce_headers(
    client: TSDBClient,
    fake_tsdb: FakeTSDB,
    verify_signature: Callable[[httpx.Request], bool],
) -> None:
    fake_tsdb.reply(json={"metrics": []})
    client.list_metric()

    request = fake_tsdb.last
    assert request.headers["host"] == "tsdb.example.com"
    assert request.headers["content-type"] == "application/json;charset=utf-8"
    assert request.headers["user-agent"].startswith("tsdb-client-python/")
    assert "x-bce-date" in request.headers
    assert request.headers["authorization"].startswith("bce-auth-v1/test-access-key/")
    signed = request.headers["authorization"].split("/")[4]
    assert signed == "content-type;host;x-bce-date"
    assert verify_signature(request)


def test_body_requests_sign_content_length(
    client: TSDBClient,
    fake_tsdb: FakeTSDB,
    verify_signature: Callable[[httpx.Request], bool],
) -> None:
    client.write_datapoint([{"metric": "cpu", "value": 1}])

    request = fake_tsdb.last
    assert request.headers["content-length"] == str(len(request.content))
    assert "content-length" in request.headers["authorization"].split("/")[4]
    assert verify_signature(request)


def test_bce_request_header_names_are_case_insensitive() -> None:
    request = BceRequest()
    request.set_header("content-type", "a")
    request.set_header("Content-Type", "b")
    assert request.headers == {"Content-Type": "b"}
    assert request.header("CONTENT-TYPE") == "b"
    assert request.param("missing") == ""


# ── Response interpretation ───────────────────────────────────────────────────


def test_service_error_is_built_from_error_envelope() -> None:
    response = BceResponse(
        httpx.Response(
            400,
            json={"code": "InvalidParameter", "message": "bad sql", "requestId": "req-1"},
        )
    )
    assert response.is_fail()
    error = response.service_error()
    assert error.code == "InvalidParameter"
    assert error.message == "bad sql"
    assert error.request_id == "req-1"
    assert error.status_code == 400
    assert str(error) == "[Code: InvalidParameter; Message: bad sql; RequestId: req-1]"


def test_service_error_falls_back_to_status_and_header() -> None:
    response = BceResponse(
        httpx.Response(404, content=b"", headers={"x-bce-request-id": "req-2"})
    )
    error = response.service_error()
    assert error.code == "Not Found"
    assert error.message == "Not Found"
    assert error.request_id == "req-2"


def test_parse_json_body_rejects_wrong_shape() -> None:
    response = BceResponse(httpx.Response(200, json={"columns": "not-a-list"}))
    with pytest.raises(DeserializationError):
        response.parse_json_body(RowResult)


def test_parse_json_body_rejects_non_json() -> None:
    response = BceResponse(httpx.Response(200, content=b"<html>"))
    with pytest.raises(DeserializationError):
        response.parse_json_body(RowResult)


# ── Retries ───────────────────────────────────────────────────────────────────


def test_retries_server_errors_with_exponential_backoff(
    make_client: Callable[..., TSDBClient],
    fake_tsdb: FakeTSDB,
    sleeps: list[float],
) -> None:
    client = make_client(retry=RetryPolicy(max_error_retry=3, base_interval_ms=300))
    fake_tsdb.reply(503)
    fake_tsdb.reply(500)
    fake_tsdb.reply(json={"metrics": ["cpu"]})

    assert client.list_metric() == ["cpu"]
    assert len(fake_tsdb.requests) == 3
    assert sleeps == [0.3, 0.6]


def test_retry_delay_is_capped() -> None:
    policy = RetryPolicy(max_error_retry=10, max_delay_ms=1000, base_interval_ms=300)
    assert [policy.delay_seconds(n) for n in range(4)] == [0.3, 0.6, 1.0, 1.0]
    assert policy.delay_seconds(10) == -1


def test_gives_up_after_max_error_retry(
    make_client: Callable[..., TSDBClient],
    fake_tsdb: FakeTSDB,
    sleeps: list[float],
) -> None:
    client = make_client(retry=RetryPolicy(max_error_retry=2))
    for _ in range(3):
        fake_tsdb.reply(503, json={"code": "ServiceUnavailable", "message": "busy"})

    with pytest.raises(ServiceError) as exc_info:
        client.list_metric()
    assert exc_info.value.status_code == 503
    assert len(fake_tsdb.requests) == 3
    assert len(sleeps) == 2


def test_client_errors_are_not_retried(
    make_client: Callable[..., TSDBClient],
    fake_tsdb: FakeTSDB,
    sleeps: list[float],
) -> None:
    client = make_client(retry=RetryPolicy(max_error_retry=3))
    fake_tsdb.reply(400, json={"code": "InvalidParameter", "message": "bad"})

    with pytest.raises(ServiceError):
        client.list_metric()
    assert len(fake_tsdb.requests) == 1
    assert sleeps == []


def test_expired_requests_are_retried_and_resigned(
    make_client: Callable[..., TSDBClient],
    fake_tsdb: FakeTSDB,
    sleeps: list[float],
    verify_signature: Callable[[httpx.Request], bool],
) -> None:
    client = make_client(retry=RetryPolicy(max_error_retry=1))
    fake_tsdb.reply(400, json={"code": "RequestExpired", "message": "expired"})
    fake_tsdb.reply(json={"metrics": []})

    assert client.list_metric() == []
    assert len(fake_tsdb.requests) == 2
    assert all(verify_signature(request) for request in fake_tsdb.requests)


def test_network_errors_raise_transport_error(
    make_client: Callable[..., TSDBClient],
    fake_tsdb: FakeTSDB,
    sleeps: list[float],
) -> None:
    client = make_client(retry=RetryPolicy(max_error_retry=1))
    fake_tsdb.fail(httpx.ConnectError("connection refused"))
    fake_tsdb.fail(httpx.ConnectError("connection refused"))

    with pytest.raises(TransportError) as exc_info:
        client.list_metric()
    assert isinstance(exc_info.value.__cause__, httpx.ConnectError)
    assert len(fake_tsdb.requests) == 2
    assert len(sleeps) == 1


def test_network_error_then_success(
    make_client: Callable[..., TSDBClient],
    fake_tsdb: FakeTSDB,
    sleeps: list[float],
) -> None:
    client = make_client(retry=RetryPolicy(max_error_retry=3))
    fake_tsdb.fail(httpx.ReadTimeout("timed out"))
    fake_tsdb.reply(json={"metrics": ["cpu"]})

    assert client.list_metric() == ["cpu"]
    assert sleeps == [0.3]

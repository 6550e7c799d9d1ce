"""Exceptions raised by the TSDB client."""

from __future__ import annotations


class TSDBError(Exception):
    """Base exception for the tsdb_client library."""


class ConfigurationError(TSDBError, ValueError):
    """Raised when a client cannot be built from the given configuration."""


class InvalidEndpointError(ConfigurationError):
    """Raised when the endpoint is not an ``http(s)://host[:port]`` URL."""


class InvalidCredentialsError(ConfigurationError):
    """Raised when the access key or secret key is empty."""


class SigningError(TSDBError, ValueError):
    """Raised when a request cannot be signed with the requested options."""


class SerializationError(TSDBError):
    """Raised when a request payload cannot be encoded to JSON."""


class TransportError(TSDBError):
    """Raised for network-level failures (connect, DNS, timeout)."""


class DeserializationError(TSDBError):
    """Raised when a response body does not match the expected JSON shape."""


class ServiceError(TSDBError):
    """Raised when the TSDB service reports a failure."""

    def __init__(
        self,
        message: str,
        code: str = "",
        request_id: str = "",
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.request_id = request_id
        self.status_code = status_code

    def __str__(self) -> str:
        return (
            f"[Code: {self.code}; Message: {self.message}; "
            f"RequestId: {self.request_id}]"
        )

"""Python client for the TSDB HTTP API."""

__version__ = "0.1.0"

from .clients.tsdb import TSDBClient
from .config import ClientConfig, RetryPolicy, Settings
from .exceptions import (
    ConfigurationError,
    DeserializationError,
    InvalidCredentialsError,
    InvalidEndpointError,
    SerializationError,
    ServiceError,
    SigningError,
    TransportError,
    TSDBError,
)
from .models import Datapoint, Query, QueryResult, RowResult

__all__ = [
    "TSDBClient",
    "ClientConfig",
    "RetryPolicy",
    "Settings",
    "TSDBError",
    "ConfigurationError",
    "InvalidEndpointError",
    "InvalidCredentialsError",
    "SigningError",
    "SerializationError",
    "TransportError",
    "ServiceError",
    "DeserializationError",
    "Datapoint",
    "Query",
    "QueryResult",
    "RowResult",
]

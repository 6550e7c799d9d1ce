"""bce-auth-v1 request signing.

The service authenticates every request with an ``Authorization`` header of
the form::

    bce-auth-v1/{access_key}/{timestamp}/{expire_seconds}/{signed_headers}/{signature}

where ``signature`` is an HMAC-SHA256 over the canonical request (method,
URI, query string and the designated headers), keyed with an HMAC of the
secret key over the ``bce-auth-v1/...`` prefix.  A signature is therefore
bound to one method + URI + parameter set + header set and expires
``expire_seconds`` after ``timestamp``.
"""

from __future__ import annotations

import hashlib
import hmac
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from tsdb_client.exceptions import InvalidCredentialsError, SigningError

if TYPE_CHECKING:
    from tsdb_client.clients.transport import BceRequest

BCE_AUTH_VERSION = "bce-auth-v1"
BCE_PREFIX = "x-bce-"
BCE_REQUEST_ID = "x-bce-request-id"
BCE_SECURITY_TOKEN = "x-bce-security-token"
AUTHORIZATION = "Authorization"

DEFAULT_EXPIRE_SECONDS = 1800
DEFAULT_HEADERS_TO_SIGN = frozenset(
    {"host", "content-length", "content-type", "content-md5"}
)

_UNRESERVED = frozenset(
    "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_.~"
)


def uri_encode(value: str, encode_slash: bool = True) -> str:
    """Percent-encode *value* as RFC 3986 requires for canonical requests.

    Unreserved characters are kept, everything else becomes ``%XX`` over its
    UTF-8 bytes.  ``/`` is kept when *encode_slash* is false.
    """
    out: list[str] = []
    for byte in value.encode("utf-8"):
        char = chr(byte)
        if char in _UNRESERVED or (char == "/" and not encode_slash):
            out.append(char)
        else:
            out.append(f"%{byte:02X}")
    return "".join(out)


def canonical_uri(path: str) -> str:
    if not path:
        return "/"
    encoded = uri_encode(path, encode_slash=False)
    return encoded if encoded.startswith("/") else "/" + encoded


def canonical_query_string(params: Mapping[str, str]) -> str:
    items = []
    for key, value in params.items():
        if key.lower() == AUTHORIZATION.lower():
            continue
        items.append(f"{uri_encode(key)}={uri_encode(value)}")
    return "&".join(sorted(items))


def canonical_headers(
    headers: Mapping[str, str], headers_to_sign: frozenset[str]
) -> tuple[str, list[str]]:
    """Return the canonical header block and the sorted signed header names.

    A signed header with a blank value is still signed, as ``name:``.
    """
    lines: list[str] = []
    names: list[str] = []
    for key, value in headers.items():
        name = key.lower()
        if name == AUTHORIZATION.lower():
            continue
        signed = name in headers_to_sign or (
            name.startswith(BCE_PREFIX) and name != BCE_REQUEST_ID
        )
        if not signed:
            continue
        lines.append(f"{uri_encode(name)}:{uri_encode(value.strip())}")
        names.append(name)
    return "\n".join(sorted(lines)), sorted(names)


def format_iso8601(timestamp: int) -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(timestamp))


def _hmac_sha256_hex(key: str, data: str) -> str:
    return hmac.new(key.encode("utf-8"), data.encode("utf-8"), hashlib.sha256).hexdigest()


@dataclass(frozen=True)
class BceCredentials:
    """Access key / secret key pair, plus a session token for STS credentials."""

    access_key_id: str
    secret_access_key: str
    session_token: str = ""

    def __post_init__(self) -> None:
        if not self.access_key_id:
            raise InvalidCredentialsError("access key id should not be empty")
        if not self.secret_access_key:
            raise InvalidCredentialsError("secret access key should not be empty")


@dataclass(frozen=True)
class SignOptions:
    headers_to_sign: frozenset[str] = field(default=DEFAULT_HEADERS_TO_SIGN)
    expire_seconds: int = DEFAULT_EXPIRE_SECONDS
    # Fixed signing time in epoch seconds; 0 means "now".
    timestamp: int = 0


class BceV1Signer:
    """Computes and sets the ``Authorization`` header of a ``BceRequest``."""

    def sign(
        self,
        request: BceRequest,
        credentials: BceCredentials,
        options: SignOptions | None = None,
    ) -> str:
        """Sign *request* in place and return the authorization string.

        Raises:
            SigningError: if ``options.expire_seconds`` is not positive.
        """
        options = options or SignOptions()
        if options.expire_seconds <= 0:
            raise SigningError(
                f"expire_seconds must be positive, got {options.expire_seconds}"
            )

        if credentials.session_token:
            request.set_header(BCE_SECURITY_TOKEN, credentials.session_token)

        sign_date = format_iso8601(options.timestamp or int(time.time()))
        auth_prefix = (
            f"{BCE_AUTH_VERSION}/{credentials.access_key_id}/"
            f"{sign_date}/{options.expire_seconds}"
        )
        signing_key = _hmac_sha256_hex(credentials.secret_access_key, auth_prefix)

        header_block, signed_headers = canonical_headers(
            request.headers, options.headers_to_sign
        )
        canonical_request = "\n".join(
            [
                request.method,
                canonical_uri(request.uri),
                canonical_query_string(request.params),
                header_block,
            ]
        )
        signature = _hmac_sha256_hex(signing_key, canonical_request)

        authorization = f"{auth_prefix}/{';'.join(signed_headers)}/{signature}"
        request.set_header(AUTHORIZATION, authorization)
        return authorization

# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""SigV4 canonical request construction.

The canonical request is the exact byte sequence the service rebuilds on
its side to verify a signature.  Any difference (header casing, query
encoding, a missing ``host``) makes the signature invalid, so everything
here is deterministic and follows the S3 flavour of the rules:

- Paths are single-encoded (S3 does not double-encode or normalize).
- Query names and values are encoded including ``/`` and sorted.
- Header names are lowercased and sorted; values are trimmed and inner
  whitespace runs collapsed.
"""

from __future__ import annotations

import hashlib
import re
import urllib.parse
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from r2lift.errors import CanonicalizationError


UNSIGNED_PAYLOAD = "UNSIGNED-PAYLOAD"

_AWS_UNRESERVED = frozenset(
    b"ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_.~"
)

_DEFAULT_PORTS = {"http": 80, "https": 443}

_HEADER_NAME_RE = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")


def sha256_hex(data: bytes | str) -> str:
    """Lowercase hex SHA-256 of ``data`` (strings are UTF-8 encoded)."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


EMPTY_SHA256 = sha256_hex(b"")


def uri_encode(value: str, *, encode_slash: bool = True) -> str:
    """URI-encode a value using AWS's rules.

    - Unreserved characters are not encoded: A-Z, a-z, 0-9, -, _, ., ~
    - Every other byte of the UTF-8 encoding becomes %XX (uppercase hex)
    - Forward slashes (/) are optionally preserved

    Args:
        value: String to encode.
        encode_slash: If True, encode '/'; if False, preserve '/'.

    Returns:
        URI-encoded string.
    """
    result: list[str] = []
    for byte in value.encode("utf-8"):
        if byte in _AWS_UNRESERVED:
            result.append(chr(byte))
        elif byte == 0x2F and not encode_slash:
            result.append("/")
        else:
            result.append(f"%{byte:02X}")
    return "".join(result)


def canonical_uri(path: str) -> str:
    """Build the canonical URI from a request path.

    The path may already be percent-encoded; it is decoded first and then
    encoded exactly once, so ``/a%20b`` and ``/a b`` canonicalize alike.

    Args:
        path: Request path (no query string).

    Returns:
        Encoded path, ``/`` for an empty path.
    """
    if not path:
        return "/"
    return uri_encode(urllib.parse.unquote(path), encode_slash=False)


def parse_query(query: str) -> list[tuple[str, str]]:
    """Split a raw query string into decoded ``(name, value)`` pairs.

    Unlike ``urllib.parse.parse_qsl``, a literal ``+`` stays a ``+``;
    S3 does not treat it as an encoded space.  Parameters without ``=``
    get an empty value.
    """
    params: list[tuple[str, str]] = []
    for item in query.split("&"):
        if not item:
            continue
        name, _, value = item.partition("=")
        params.append(
            (urllib.parse.unquote(name), urllib.parse.unquote(value))
        )
    return params


def canonical_query_string(query: str) -> str:
    """Build the canonical query string.

    Args:
        query: Raw query string (without leading ``?``).  Parameters
            without ``=`` (e.g. ``?uploads``) get an empty value.

    Returns:
        ``name=value`` pairs, encoded including ``/``, sorted by name
        then value, joined with ``&``.
    """
    if not query:
        return ""
    encoded = sorted(
        (uri_encode(k), uri_encode(v)) for k, v in parse_query(query)
    )
    return "&".join(f"{k}={v}" for k, v in encoded)


def host_header(url: str) -> str:
    """Return the ``Host`` header value for ``url``.

    The port is kept only when it differs from the scheme default, which
    is what HTTP clients send on the wire.

    Raises:
        CanonicalizationError: If the URL has no scheme or host, or an
            invalid port.
    """
    parts = urllib.parse.urlsplit(url)
    if not parts.scheme or not parts.hostname:
        raise CanonicalizationError(f"URL has no scheme or host: {url!r}")
    try:
        port = parts.port
    except ValueError as exc:
        raise CanonicalizationError(f"Invalid port in URL {url!r}") from exc
    host = parts.hostname
    if ":" in host:
        host = f"[{host}]"
    if port is not None and port != _DEFAULT_PORTS.get(parts.scheme):
        host = f"{host}:{port}"
    return host


def _check_header(name: str, value: str) -> None:
    if not _HEADER_NAME_RE.match(name):
        raise CanonicalizationError(f"Invalid header name: {name!r}")
    if "\r" in value or "\n" in value:
        raise CanonicalizationError(
            f"Header {name!r} contains a line break"
        )


def canonical_headers_string(
    headers: Mapping[str, str], signed_header_names: Iterable[str]
) -> str:
    """Build the canonical headers block.

    Args:
        headers: Request headers, any casing.  Must already contain every
            signed header (``host`` included).
        signed_header_names: Names to include, any casing.

    Returns:
        One ``name:value\\n`` line per signed header, sorted by name.

    Raises:
        CanonicalizationError: If a header is malformed or a signed header
            is missing.
    """
    lower_headers: dict[str, str] = {}
    for name, value in headers.items():
        _check_header(name, value)
        lower_headers[name.lower()] = value

    lines: list[str] = []
    for name in sorted({n.lower() for n in signed_header_names}):
        if name not in lower_headers:
            raise CanonicalizationError(
                f"Signed header {name!r} is not present in the request"
            )
        trimmed = " ".join(lower_headers[name].split())
        lines.append(f"{name}:{trimmed}\n")
    return "".join(lines)


@dataclass(frozen=True)
class CanonicalRequest:
    """The six fields of a SigV4 canonical request.

    Exists only for the duration of a signing call; build it with
    ``CanonicalRequest.build``.
    """

    method: str
    canonical_uri: str
    canonical_query: str
    canonical_headers: str
    signed_headers: str
    payload_hash: str

    @classmethod
    def build(
        cls,
        method: str,
        url: str,
        headers: Mapping[str, str],
        signed_header_names: Iterable[str],
        payload_hash: str,
    ) -> CanonicalRequest:
        """Canonicalize a request.

        ``host`` is synthesized from the URL when the headers lack it.

        Args:
            method: HTTP method (uppercased).
            url: Absolute request URL including any query string.
            headers: Request headers.
            signed_header_names: Headers covered by the signature.
            payload_hash: Hex SHA-256 of the body, or ``UNSIGNED-PAYLOAD``.

        Returns:
            The canonical request.

        Raises:
            CanonicalizationError: On a malformed URL or headers.
        """
        host = host_header(url)
        parts = urllib.parse.urlsplit(url)

        all_headers = dict(headers)
        if not any(name.lower() == "host" for name in all_headers):
            all_headers["host"] = host

        names = sorted({n.lower() for n in signed_header_names})
        return cls(
            method=method.upper(),
            canonical_uri=canonical_uri(parts.path),
            canonical_query=canonical_query_string(parts.query),
            canonical_headers=canonical_headers_string(all_headers, names),
            signed_headers=";".join(names),
            payload_hash=payload_hash,
        )

    @property
    def string(self) -> str:
        """The newline-joined canonical request."""
        return "\n".join(
            [
                self.method,
                self.canonical_uri,
                self.canonical_query,
                self.canonical_headers,
                self.signed_headers,
                self.payload_hash,
            ]
        )

    @property
    def hash(self) -> str:
        """Lowercase hex SHA-256 of the canonical request string."""
        return sha256_hex(self.string)

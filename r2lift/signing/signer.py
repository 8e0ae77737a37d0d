# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""SigV4 request signing and presigned URL generation."""

from __future__ import annotations

import logging
import urllib.parse
from collections.abc import Mapping
from datetime import UTC, datetime

from r2lift.credentials import Credentials
from r2lift.signing.canonical import (
    UNSIGNED_PAYLOAD,
    CanonicalRequest,
    canonical_uri,
    host_header,
    parse_query,
    sha256_hex,
    uri_encode,
)
from r2lift.signing.keys import SigningKey


logger = logging.getLogger(__name__)

ALGORITHM = "AWS4-HMAC-SHA256"

#: Longest presigned URL lifetime the service accepts (7 days).
MAX_PRESIGN_EXPIRES = 7 * 24 * 60 * 60

_AMZ_DATE_FORMAT = "%Y%m%dT%H%M%SZ"

# Headers the signer owns; caller-supplied variants are replaced.
_MANAGED_HEADERS = frozenset(
    {"host", "x-amz-date", "x-amz-content-sha256", "authorization"}
)

# Query parameters the presigner owns, lowercased; replaced when present.
_PRESIGN_PARAMS = frozenset(
    {
        "x-amz-algorithm",
        "x-amz-credential",
        "x-amz-date",
        "x-amz-expires",
        "x-amz-signedheaders",
        "x-amz-signature",
    }
)


def format_amz_date(now: datetime) -> tuple[str, str]:
    """Format a timestamp for SigV4.

    Naive datetimes are taken to be UTC.

    Returns:
        Tuple of (amz_date ``YYYYMMDDTHHMMSSZ``, date_stamp ``YYYYMMDD``).
    """
    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)
    amz_date = now.astimezone(UTC).strftime(_AMZ_DATE_FORMAT)
    return amz_date, amz_date[:8]


def build_string_to_sign(
    amz_date: str, scope: str, canonical_request_hash: str
) -> str:
    """Build the SigV4 string to sign.

    Args:
        amz_date: Request timestamp (``YYYYMMDDTHHMMSSZ``).
        scope: Credential scope (date/region/service/aws4_request).
        canonical_request_hash: Hex SHA-256 of the canonical request.

    Returns:
        String to sign.
    """
    return "\n".join([ALGORITHM, amz_date, scope, canonical_request_hash])


class RequestSigner:
    """Signs requests for one account, region and service.

    Attributes:
        region: Region in the credential scope (``auto`` for R2).
        service: Service in the credential scope.
    """

    def __init__(
        self,
        credentials: Credentials,
        *,
        region: str = "auto",
        service: str = "s3",
    ) -> None:
        self._credentials = credentials
        self.region = region
        self.service = service

    def _signing_key(self, date_stamp: str) -> SigningKey:
        return SigningKey.derive(
            self._credentials.secret_access_key,
            date_stamp,
            self.region,
            self.service,
        )

    def sign(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str] | None = None,
        body: bytes | None = None,
        *,
        payload_hash: str | None = None,
        now: datetime | None = None,
    ) -> dict[str, str]:
        """Sign a request with an ``Authorization`` header.

        The signed header set is ``host``, ``x-amz-content-sha256`` and
        ``x-amz-date``, plus ``content-type`` / ``content-length`` when
        present, plus every ``x-amz-*`` header.

        Args:
            method: HTTP method.
            url: Absolute request URL including the query string.
            headers: Caller headers.  ``Host``, ``x-amz-date``,
                ``x-amz-content-sha256`` and ``Authorization`` are
                overwritten.
            body: Request body; hashed unless ``payload_hash`` is given.
            payload_hash: Explicit payload hash (e.g. ``UNSIGNED-PAYLOAD``).
            now: Signing time, defaults to the current time.

        Returns:
            A new header dict containing the caller's headers and the
            signing headers.

        Raises:
            CanonicalizationError: If the URL or headers are malformed.
        """
        amz_date, date_stamp = format_amz_date(now or datetime.now(UTC))
        if payload_hash is None:
            payload_hash = sha256_hex(body or b"")

        signed: dict[str, str] = {
            name: value
            for name, value in (headers or {}).items()
            if name.lower() not in _MANAGED_HEADERS
        }
        signed["Host"] = host_header(url)
        signed["x-amz-date"] = amz_date
        signed["x-amz-content-sha256"] = payload_hash

        signed_names = {"host", "x-amz-content-sha256", "x-amz-date"}
        for name in signed:
            lowered = name.lower()
            if lowered in ("content-type", "content-length"):
                signed_names.add(lowered)
            elif lowered.startswith("x-amz-"):
                signed_names.add(lowered)

        creq = CanonicalRequest.build(
            method, url, signed, signed_names, payload_hash
        )
        key = self._signing_key(date_stamp)
        signature = key.sign(
            build_string_to_sign(amz_date, key.credential_scope, creq.hash)
        )

        signed["Authorization"] = (
            f"{ALGORITHM} "
            f"Credential={self._credentials.access_key_id}/"
            f"{key.credential_scope}, "
            f"SignedHeaders={creq.signed_headers}, "
            f"Signature={signature}"
        )
        logger.debug(
            "Signed %s %s (signed headers: %s)",
            creq.method,
            creq.canonical_uri,
            creq.signed_headers,
        )
        return signed

    def presign_url(
        self,
        method: str,
        url: str,
        *,
        expires: int = 3600,
        headers: Mapping[str, str] | None = None,
        now: datetime | None = None,
    ) -> str:
        """Generate a presigned URL.

        The ``X-Amz-*`` authentication parameters are added to the query
        (replacing any already present, so a presigned URL can be re-signed)
        before signing, all parameters are sorted, the payload is taken as
        ``UNSIGNED-PAYLOAD`` and ``X-Amz-Signature`` is appended last.

        Args:
            method: HTTP method the URL will be used with.
            url: Absolute object URL, optionally with query parameters.
            expires: Lifetime in seconds, 1 to 604800.
            headers: Extra headers the holder must send verbatim
                (e.g. ``content-type`` for uploads); they are signed.
            now: Signing time, defaults to the current time.

        Returns:
            The presigned URL.

        Raises:
            ValueError: If ``expires`` is outside 1..604800.
            CanonicalizationError: If the URL or headers are malformed.
        """
        if not 1 <= expires <= MAX_PRESIGN_EXPIRES:
            raise ValueError(
                f"Presigned URL expiration must be between 1 and "
                f"{MAX_PRESIGN_EXPIRES} seconds: {expires}"
            )

        amz_date, date_stamp = format_amz_date(now or datetime.now(UTC))
        key = self._signing_key(date_stamp)

        signed_headers: dict[str, str] = {
            name.lower(): value for name, value in (headers or {}).items()
        }
        signed_headers["host"] = host_header(url)
        signed_names = sorted(signed_headers)

        parts = urllib.parse.urlsplit(url)
        params = [
            (k, v)
            for k, v in parse_query(parts.query)
            if k.lower() not in _PRESIGN_PARAMS
        ]
        params += [
            ("X-Amz-Algorithm", ALGORITHM),
            (
                "X-Amz-Credential",
                f"{self._credentials.access_key_id}/{key.credential_scope}",
            ),
            ("X-Amz-Date", amz_date),
            ("X-Amz-Expires", str(expires)),
            ("X-Amz-SignedHeaders", ";".join(signed_names)),
        ]
        query = "&".join(
            f"{k}={v}"
            for k, v in sorted(
                (uri_encode(k), uri_encode(v)) for k, v in params
            )
        )
        unsigned_url = urllib.parse.urlunsplit(
            (parts.scheme, parts.netloc, canonical_uri(parts.path), query, "")
        )

        creq = CanonicalRequest.build(
            method, unsigned_url, signed_headers, signed_names, UNSIGNED_PAYLOAD
        )
        signature = key.sign(
            build_string_to_sign(amz_date, key.credential_scope, creq.hash)
        )
        logger.debug(
            "Presigned %s %s for %ds", creq.method, creq.canonical_uri, expires
        )
        return f"{unsigned_url}&X-Amz-Signature={signature}"

# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""SigV4 signing key derivation."""

from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass, field


SCOPE_TERMINATOR = "aws4_request"


def hmac_sha256(key: bytes, msg: str | bytes) -> bytes:
    """HMAC-SHA256 helper."""
    if isinstance(msg, str):
        msg = msg.encode("utf-8")
    return hmac.new(key, msg, hashlib.sha256).digest()


def derive_signing_key(
    secret_key: str, date: str, region: str, service: str
) -> bytes:
    """Derive the SigV4 signing key.

    kDate = HMAC("AWS4" + secret, date), then region, service and the
    literal ``aws4_request`` are chained through HMAC-SHA256 in turn.

    An empty secret is accepted and yields a key the service will reject;
    validating credentials is the caller's job.

    Args:
        secret_key: Secret access key.
        date: Date stamp (YYYYMMDD).
        region: Region name (``auto`` for R2).
        service: Service name (``s3``).

    Returns:
        The 32-byte signing key.
    """
    k_date = hmac_sha256(("AWS4" + secret_key).encode("utf-8"), date)
    k_region = hmac_sha256(k_date, region)
    k_service = hmac_sha256(k_region, service)
    return hmac_sha256(k_service, SCOPE_TERMINATOR)


@dataclass(frozen=True)
class SigningKey:
    """A derived signing key bound to its credential scope.

    Cheap to recompute, so it is derived per signing call rather than
    cached.

    Attributes:
        key: Raw key bytes (never logged).
        date: Date stamp (YYYYMMDD).
        region: Region name.
        service: Service name.
    """

    key: bytes = field(repr=False)
    date: str
    region: str
    service: str

    @classmethod
    def derive(
        cls, secret_key: str, date: str, region: str, service: str
    ) -> SigningKey:
        return cls(
            key=derive_signing_key(secret_key, date, region, service),
            date=date,
            region=region,
            service=service,
        )

    @property
    def credential_scope(self) -> str:
        """``date/region/service/aws4_request``."""
        return f"{self.date}/{self.region}/{self.service}/{SCOPE_TERMINATOR}"

    def sign(self, string_to_sign: str) -> str:
        """Return the lowercase hex HMAC-SHA256 of ``string_to_sign``."""
        return hmac.new(
            self.key, string_to_sign.encode("utf-8"), hashlib.sha256
        ).hexdigest()

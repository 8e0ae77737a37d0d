# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""AWS Signature Version 4 signing.

- ``keys``: signing key derivation and credential scope
- ``canonical``: canonical request construction
- ``signer``: header signing and presigned URLs
"""

from r2lift.signing.canonical import (
    EMPTY_SHA256,
    UNSIGNED_PAYLOAD,
    CanonicalRequest,
    sha256_hex,
    uri_encode,
)
from r2lift.signing.keys import SigningKey, derive_signing_key
from r2lift.signing.signer import (
    ALGORITHM,
    MAX_PRESIGN_EXPIRES,
    RequestSigner,
    build_string_to_sign,
    format_amz_date,
)


__all__ = [
    "ALGORITHM",
    "CanonicalRequest",
    "EMPTY_SHA256",
    "MAX_PRESIGN_EXPIRES",
    "RequestSigner",
    "SigningKey",
    "UNSIGNED_PAYLOAD",
    "build_string_to_sign",
    "derive_signing_key",
    "format_amz_date",
    "sha256_hex",
    "uri_encode",
]

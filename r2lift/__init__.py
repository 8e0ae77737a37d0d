# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""r2lift: resumable multipart uploads to Cloudflare R2 and S3.

- ``signing``: AWS Signature Version 4 (headers and presigned URLs)
- ``multipart``: part planning, concurrent uploads, resumable state
- ``client``: signed object store requests over ``httpx``
- ``config``: YAML configuration
"""

from r2lift.client import ObjectStoreClient
from r2lift.config import ClientConfig, MultipartConfig, Settings
from r2lift.credentials import (
    ChainedCredentialsProvider,
    Credentials,
    CredentialsProvider,
    EnvironmentCredentialsProvider,
    StaticCredentialsProvider,
)
from r2lift.errors import (
    CanonicalizationError,
    MissingCredentialsError,
    MultipartError,
    MultipartFailure,
    NetworkError,
    R2Error,
    ServiceError,
    ServiceErrorKind,
    StateDecodeError,
)
from r2lift.multipart import (
    CompletedPart,
    MultipartUploadManager,
    Progress,
    ResumableState,
    UploadResult,
)
from r2lift.signing import RequestSigner
from r2lift.sources import BytesSource, FileSource, IterableSource, UploadSource


__all__ = [
    "BytesSource",
    "CanonicalizationError",
    "ChainedCredentialsProvider",
    "ClientConfig",
    "CompletedPart",
    "Credentials",
    "CredentialsProvider",
    "EnvironmentCredentialsProvider",
    "FileSource",
    "IterableSource",
    "MissingCredentialsError",
    "MultipartConfig",
    "MultipartError",
    "MultipartFailure",
    "MultipartUploadManager",
    "NetworkError",
    "ObjectStoreClient",
    "Progress",
    "R2Error",
    "RequestSigner",
    "ResumableState",
    "ServiceError",
    "ServiceErrorKind",
    "Settings",
    "StateDecodeError",
    "StaticCredentialsProvider",
    "UploadResult",
    "UploadSource",
]

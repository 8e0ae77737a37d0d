# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Error types raised by r2lift.

Every exception derives from ``R2Error``.  Failure categories that carry
a payload (service error kinds, multipart failure reasons) are closed
``Enum`` values on a single exception class rather than a subclass per
case, so callers branch on ``error.kind``::

    try:
        await client.upload_part(...)
    except ServiceError as exc:
        if exc.kind is ServiceErrorKind.RATE_LIMITED:
            await asyncio.sleep(exc.retry_after or 1.0)
"""

from __future__ import annotations

from enum import Enum


class R2Error(Exception):
    """Base class for all r2lift errors."""

    @property
    def retryable(self) -> bool:
        """Whether retrying the same request may succeed."""
        return False


class CanonicalizationError(R2Error):
    """A request could not be canonicalized for signing.

    Raised for malformed URLs or header values.  Deterministic: the same
    input always fails, so it is never retried.
    """


class NetworkError(R2Error):
    """Transport-level failure (connect, timeout, reset)."""

    @property
    def retryable(self) -> bool:
        return True


class MissingCredentialsError(R2Error):
    """No credentials could be obtained from the configured providers."""


class StateDecodeError(R2Error, ValueError):
    """A persisted resumable upload state could not be decoded."""


class ServiceErrorKind(Enum):
    """Classification of an error response from the object store."""

    NOT_FOUND = "not_found"
    ACCESS_DENIED = "access_denied"
    PRECONDITION_FAILED = "precondition_failed"
    RATE_LIMITED = "rate_limited"
    UNKNOWN = "unknown"


_NOT_FOUND_CODES = frozenset({"NoSuchKey", "NoSuchBucket", "NoSuchUpload"})
_ACCESS_DENIED_CODES = frozenset(
    {"AccessDenied", "InvalidAccessKeyId", "SignatureDoesNotMatch"}
)
_RATE_LIMITED_CODES = frozenset({"SlowDown", "ServiceUnavailable"})


def classify_service_error(code: str, status_code: int) -> ServiceErrorKind:
    """Map an S3 error code and HTTP status to a ``ServiceErrorKind``.

    The error code wins when it is recognized; the status code is only
    consulted for responses without a known code (e.g. empty HEAD bodies).

    Args:
        code: S3 error code from the ``<Code>`` element (may be empty).
        status_code: HTTP status code.

    Returns:
        The matching kind, ``UNKNOWN`` if nothing matches.
    """
    if code in _NOT_FOUND_CODES:
        return ServiceErrorKind.NOT_FOUND
    if code in _ACCESS_DENIED_CODES:
        return ServiceErrorKind.ACCESS_DENIED
    if code == "PreconditionFailed":
        return ServiceErrorKind.PRECONDITION_FAILED
    if code in _RATE_LIMITED_CODES:
        return ServiceErrorKind.RATE_LIMITED
    if code:
        return ServiceErrorKind.UNKNOWN
    if status_code == 404:
        return ServiceErrorKind.NOT_FOUND
    if status_code == 403:
        return ServiceErrorKind.ACCESS_DENIED
    if status_code == 412:
        return ServiceErrorKind.PRECONDITION_FAILED
    if status_code in (429, 503):
        return ServiceErrorKind.RATE_LIMITED
    return ServiceErrorKind.UNKNOWN


class ServiceError(R2Error):
    """The object store answered with an error response.

    Attributes:
        kind: Classification of the error.
        status_code: HTTP status code.
        code: S3 error code (``NoSuchKey``, ``SlowDown``, ...), may be empty.
        message: Human-readable message from the service.
        request_id: Service request ID, if reported.
        retry_after: Seconds to wait before retrying (rate limiting only).
        bucket: Bucket the request targeted, if known.
        key: Object key the request targeted, if known.
    """

    def __init__(
        self,
        kind: ServiceErrorKind,
        *,
        status_code: int,
        code: str = "",
        message: str = "",
        request_id: str | None = None,
        retry_after: float | None = None,
        bucket: str | None = None,
        key: str | None = None,
    ) -> None:
        self.kind = kind
        self.status_code = status_code
        self.code = code
        self.message = message
        self.request_id = request_id
        self.retry_after = retry_after
        self.bucket = bucket
        self.key = key
        super().__init__(self._describe())

    def _describe(self) -> str:
        parts = [f"{self.kind.value} (HTTP {self.status_code})"]
        if self.code:
            parts.append(f"[{self.code}]")
        if self.message:
            parts.append(self.message)
        if self.bucket is not None:
            target = self.bucket
            if self.key is not None:
                target = f"{self.bucket}/{self.key}"
            parts.append(f"target={target}")
        if self.request_id:
            parts.append(f"request_id={self.request_id}")
        if self.retry_after is not None:
            parts.append(f"retry_after={self.retry_after:g}s")
        return " ".join(parts)

    @property
    def retryable(self) -> bool:
        return (
            self.kind is ServiceErrorKind.RATE_LIMITED
            or self.status_code >= 500
        )


class MultipartFailure(Enum):
    """Reason a multipart upload failed."""

    PART_FAILED = "part_failed"
    INVALID_RESPONSE = "invalid_response"
    INVALID_STATE = "invalid_state"
    ABORT_FAILED = "abort_failed"


class MultipartError(R2Error):
    """A multipart upload could not be completed.

    When the upload was aborted after a failure, ``aborted`` is True.  If
    the abort itself failed, ``abort_error`` holds that secondary
    exception and ``leaked_upload`` is True: the session may still exist
    remotely and keep its parts billed until it is aborted or expires.

    Attributes:
        reason: Why the upload failed.
        upload_id: Multipart session ID, if one was created.
        part_number: Part that failed (``PART_FAILED`` only).
        attempts: Upload attempts made for that part.
        aborted: Whether the remote session was aborted after the failure.
        abort_error: Exception raised by the best-effort abort, if any.
    """

    def __init__(
        self,
        reason: MultipartFailure,
        message: str,
        *,
        upload_id: str | None = None,
        part_number: int | None = None,
        attempts: int = 0,
    ) -> None:
        super().__init__(message)
        self.reason = reason
        self.upload_id = upload_id
        self.part_number = part_number
        self.attempts = attempts
        self.abort_error: BaseException | None = None
        self.aborted = False

    @property
    def leaked_upload(self) -> bool:
        """True when the remote session may have been left behind."""
        return self.abort_error is not None

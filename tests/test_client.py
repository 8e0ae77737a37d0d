# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Tests for r2lift/client.py.

HTTP traffic goes through ``httpx.MockTransport``; each test installs a
handler that inspects the signed request and returns a canned response.
"""

import asyncio
import hashlib
from collections.abc import Callable
from datetime import UTC, datetime
from unittest.mock import MagicMock

import httpx
import pytest

from r2lift.client import ObjectStoreClient, parse_retry_after
from r2lift.config import ClientConfig
from r2lift.credentials import Credentials, StaticCredentialsProvider
from r2lift.errors import (
    MultipartError,
    MultipartFailure,
    NetworkError,
    ServiceError,
    ServiceErrorKind,
)
from r2lift.multipart.state import CompletedPart
from r2lift.transport import HttpxTransport


ENDPOINT = "https://account.r2.cloudflarestorage.com"

Handler = Callable[[httpx.Request], httpx.Response]


class _Recorder:
    """Records requests and answers with a configurable handler."""

    def __init__(self, handler: Handler) -> None:
        self.handler = handler
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)


def _client(recorder: _Recorder) -> ObjectStoreClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(recorder))
    return ObjectStoreClient(
        ClientConfig(ENDPOINT),
        StaticCredentialsProvider.from_keys("AKIDEXAMPLE", "s3cr3t-key"),
        transport=HttpxTransport(client=http),
    )


def _error(status: int, code: str, **headers: str) -> Handler:
    body = (
        f"<Error><Code>{code}</Code><Message>m</Message>"
        f"<RequestId>req-1</RequestId></Error>"
    ).encode()
    return lambda request: httpx.Response(status, content=body, headers=headers)


class TestCreateMultipartUpload:
    """Tests for create_multipart_upload."""

    def test_signed_request(self) -> None:
        """POST ?uploads with content type and metadata, signed."""
        recorder = _Recorder(
            lambda request: httpx.Response(
                200,
                content=(
                    b"<InitiateMultipartUploadResult><UploadId>up-1</UploadId>"
                    b"</InitiateMultipartUploadResult>"
                ),
            )
        )
        upload_id = asyncio.run(
            _client(recorder).create_multipart_upload(
                "media",
                "videos/big clip.mp4",
                content_type="video/mp4",
                metadata={"Owner": "me"},
            )
        )
        assert upload_id == "up-1"
        (request,) = recorder.requests
        assert request.method == "POST"
        assert request.url.raw_path == b"/media/videos/big%20clip.mp4?uploads"
        assert request.headers["content-type"] == "video/mp4"
        assert request.headers["x-amz-meta-owner"] == "me"
        today = datetime.now(UTC).strftime("%Y%m%d")
        authorization = request.headers["authorization"]
        assert authorization.startswith(
            f"AWS4-HMAC-SHA256 Credential=AKIDEXAMPLE/{today}/auto/s3/"
            "aws4_request, SignedHeaders=content-type;host;"
            "x-amz-content-sha256;x-amz-date;x-amz-meta-owner, Signature="
        )
        assert "s3cr3t-key" not in authorization

    def test_missing_upload_id(self) -> None:
        """A 200 without UploadId is an invalid response."""
        recorder = _Recorder(lambda request: httpx.Response(200, content=b""))
        with pytest.raises(MultipartError) as exc_info:
            asyncio.run(_client(recorder).create_multipart_upload("b", "k"))
        assert exc_info.value.reason is MultipartFailure.INVALID_RESPONSE

    def test_access_denied(self) -> None:
        """Error responses map to ServiceError."""
        recorder = _Recorder(_error(403, "AccessDenied"))
        with pytest.raises(ServiceError) as exc_info:
            asyncio.run(_client(recorder).create_multipart_upload("b", "k"))
        error = exc_info.value
        assert error.kind is ServiceErrorKind.ACCESS_DENIED
        assert error.request_id == "req-1"
        assert (error.bucket, error.key) == ("b", "k")
        assert not error.retryable


class TestUploadPart:
    """Tests for upload_part."""

    def test_returns_etag(self) -> None:
        """PUT with part number and upload ID returns the ETag header."""
        recorder = _Recorder(
            lambda request: httpx.Response(200, headers={"ETag": '"e1"'})
        )
        etag = asyncio.run(
            _client(recorder).upload_part("b", "k", "up/1+x", 3, b"payload")
        )
        assert etag == '"e1"'
        (request,) = recorder.requests
        assert request.method == "PUT"
        assert request.url.params["partNumber"] == "3"
        assert request.url.params["uploadId"] == "up/1+x"
        assert request.content == b"payload"
        assert request.headers["x-amz-content-sha256"] == (
            hashlib.sha256(b"payload").hexdigest()
        )

    def test_missing_etag(self) -> None:
        """A part response without ETag is an invalid response."""
        recorder = _Recorder(lambda request: httpx.Response(200))
        with pytest.raises(MultipartError) as exc_info:
            asyncio.run(_client(recorder).upload_part("b", "k", "u", 2, b"x"))
        assert exc_info.value.reason is MultipartFailure.INVALID_RESPONSE
        assert exc_info.value.part_number == 2

    def test_slow_down_with_retry_after(self) -> None:
        """SlowDown is rate limiting with the Retry-After delay."""
        recorder = _Recorder(_error(503, "SlowDown", **{"Retry-After": "3"}))
        with pytest.raises(ServiceError) as exc_info:
            asyncio.run(_client(recorder).upload_part("b", "k", "u", 1, b"x"))
        assert exc_info.value.kind is ServiceErrorKind.RATE_LIMITED
        assert exc_info.value.retry_after == 3.0
        assert exc_info.value.retryable

    def test_server_error_without_body(self) -> None:
        """A bare 500 is unknown but retryable."""
        recorder = _Recorder(lambda request: httpx.Response(500))
        with pytest.raises(ServiceError) as exc_info:
            asyncio.run(_client(recorder).upload_part("b", "k", "u", 1, b"x"))
        assert exc_info.value.kind is ServiceErrorKind.UNKNOWN
        assert exc_info.value.retryable

    def test_network_error(self) -> None:
        """Connection failures become NetworkError."""

        def fail(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(NetworkError):
            asyncio.run(
                _client(_Recorder(fail)).upload_part("b", "k", "u", 1, b"x")
            )


class TestCompleteMultipartUpload:
    """Tests for complete_multipart_upload."""

    def test_sorted_body_and_etag(self) -> None:
        """Parts are sent in ascending order; the ETag is parsed."""
        recorder = _Recorder(
            lambda request: httpx.Response(
                200,
                content=(
                    b"<CompleteMultipartUploadResult><ETag>&quot;f-2&quot;"
                    b"</ETag></CompleteMultipartUploadResult>"
                ),
            )
        )
        etag = asyncio.run(
            _client(recorder).complete_multipart_upload(
                "b",
                "k",
                "u",
                [CompletedPart(2, '"b"'), CompletedPart(1, '"a"')],
            )
        )
        assert etag == '"f-2"'
        (request,) = recorder.requests
        assert request.method == "POST"
        assert request.url.params["uploadId"] == "u"
        body = request.content
        assert body.index(b"<PartNumber>1</PartNumber>") < body.index(
            b"<PartNumber>2</PartNumber>"
        )

    def test_error_in_200_body(self) -> None:
        """A 200 carrying an Error document is a failure."""
        recorder = _Recorder(_error(200, "InternalError"))
        with pytest.raises(ServiceError) as exc_info:
            asyncio.run(
                _client(recorder).complete_multipart_upload(
                    "b", "k", "u", [CompletedPart(1, '"a"')]
                )
            )
        assert exc_info.value.code == "InternalError"

    def test_missing_etag(self) -> None:
        """A completion result without ETag is an invalid response."""
        recorder = _Recorder(
            lambda request: httpx.Response(
                200, content=b"<CompleteMultipartUploadResult/>"
            )
        )
        with pytest.raises(MultipartError) as exc_info:
            asyncio.run(
                _client(recorder).complete_multipart_upload(
                    "b", "k", "u", [CompletedPart(1, '"a"')]
                )
            )
        assert exc_info.value.reason is MultipartFailure.INVALID_RESPONSE


class TestAbortMultipartUpload:
    """Tests for abort_multipart_upload."""

    def test_delete(self) -> None:
        """Abort sends DELETE ?uploadId=."""
        recorder = _Recorder(lambda request: httpx.Response(204))
        asyncio.run(_client(recorder).abort_multipart_upload("b", "k", "u"))
        (request,) = recorder.requests
        assert request.method == "DELETE"
        assert request.url.raw_path == b"/b/k?uploadId=u"

    def test_no_such_upload(self) -> None:
        """A missing session is NOT_FOUND."""
        recorder = _Recorder(_error(404, "NoSuchUpload"))
        with pytest.raises(ServiceError) as exc_info:
            asyncio.run(_client(recorder).abort_multipart_upload("b", "k", "u"))
        assert exc_info.value.kind is ServiceErrorKind.NOT_FOUND


class TestGetObjectStream:
    """Tests for get_object_stream."""

    def test_streams_body(self) -> None:
        """The body is readable chunk by chunk."""
        recorder = _Recorder(
            lambda request: httpx.Response(200, content=b"object bytes")
        )

        async def read() -> bytes:
            async with _client(recorder).get_object_stream("b", "k") as resp:
                assert resp.status == 200
                return b"".join([chunk async for chunk in resp.iter_bytes()])

        assert asyncio.run(read()) == b"object bytes"
        assert recorder.requests[0].method == "GET"

    def test_missing_object(self) -> None:
        """A 404 raises before the body is handed out."""
        recorder = _Recorder(_error(404, "NoSuchKey"))

        async def read() -> None:
            async with _client(recorder).get_object_stream("b", "k"):
                pass

        with pytest.raises(ServiceError) as exc_info:
            asyncio.run(read())
        assert exc_info.value.kind is ServiceErrorKind.NOT_FOUND


class TestPresignedUrl:
    """Tests for presigned_url."""

    def test_path_style_url(self) -> None:
        """Presigned URLs are path-style and carry a signature."""
        client = _client(_Recorder(lambda request: httpx.Response(200)))
        url = client.presigned_url("get", "media", "a b.txt", expires=60)
        assert url.startswith(f"{ENDPOINT}/media/a%20b.txt?X-Amz-Algorithm=")
        assert "X-Amz-Expires=60&" in url
        assert "&X-Amz-Signature=" in url

    def test_content_type_signed(self) -> None:
        """An upload URL can pin the content type."""
        client = _client(_Recorder(lambda request: httpx.Response(200)))
        url = client.presigned_url(
            "PUT", "media", "k", content_type="video/mp4"
        )
        assert "X-Amz-SignedHeaders=content-type%3Bhost" in url

    def test_invalid_expiry(self) -> None:
        """Expiry beyond seven days is rejected."""
        client = _client(_Recorder(lambda request: httpx.Response(200)))
        with pytest.raises(ValueError):
            client.presigned_url("GET", "b", "k", expires=604801)


class TestCredentials:
    """Tests for credential handling."""

    def test_fetched_once(self) -> None:
        """The provider is consulted once per client."""
        provider = MagicMock()
        provider.credentials.return_value = Credentials("AKID", "secret")
        client = ObjectStoreClient(ClientConfig(ENDPOINT), provider)
        client.presigned_url("GET", "b", "k")
        client.presigned_url("GET", "b", "k2")
        assert provider.credentials.call_count == 1
        asyncio.run(client.aclose())


class TestParseRetryAfter:
    """Tests for parse_retry_after."""

    def test_seconds(self) -> None:
        """Delta seconds are parsed as floats."""
        assert parse_retry_after("5") == 5.0

    def test_http_date(self) -> None:
        """HTTP dates are converted to a delay from now."""
        now = datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC)
        assert parse_retry_after(
            "Mon, 01 Jan 2024 12:00:10 GMT", now=now
        ) == 10.0

    def test_past_date_is_zero(self) -> None:
        """Dates in the past mean retry immediately."""
        now = datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC)
        assert parse_retry_after("Mon, 01 Jan 2024 11:00:00 GMT", now=now) == 0

    def test_invalid(self) -> None:
        """Missing or garbage values yield None."""
        assert parse_retry_after(None) is None
        assert parse_retry_after("soon") is None

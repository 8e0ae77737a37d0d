# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Object store client for S3-compatible services (Cloudflare R2).

Requests use path-style URLs (``{endpoint}/{bucket}/{key}``) and are
signed with SigV4 header authentication.  Credentials are fetched from
the provider on first use and kept for the client's lifetime.

Usage::

    async with ObjectStoreClient(settings.client, provider) as client:
        upload_id = await client.create_multipart_upload("bucket", "key")
"""

from __future__ import annotations

import email.utils
import logging
from collections.abc import AsyncIterator, Mapping, Sequence
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from types import TracebackType

from r2lift.config import ClientConfig
from r2lift.credentials import CredentialsProvider
from r2lift.errors import (
    MultipartError,
    MultipartFailure,
    ServiceError,
    ServiceErrorKind,
    classify_service_error,
)
from r2lift.multipart.state import CompletedPart
from r2lift.signing import RequestSigner, uri_encode
from r2lift.transport import HttpxTransport, Response, StreamResponse, Transport
from r2lift.xml import (
    build_complete_body,
    parse_complete_etag,
    parse_error,
    parse_upload_id,
)


logger = logging.getLogger(__name__)

_METADATA_PREFIX = "x-amz-meta-"


def parse_retry_after(
    value: str | None, now: datetime | None = None
) -> float | None:
    """Parse a ``Retry-After`` header (delta seconds or HTTP date)."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = email.utils.parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    return max(0.0, (when - (now or datetime.now(UTC))).total_seconds())


def service_error_from_response(
    status: int,
    headers: Mapping[str, str],
    body: bytes,
    *,
    bucket: str | None = None,
    key: str | None = None,
) -> ServiceError:
    """Map an error response to a ``ServiceError``."""
    document = parse_error(body)
    code = document.code if document else ""
    kind = classify_service_error(code, status)
    retry_after = None
    if kind is ServiceErrorKind.RATE_LIMITED:
        retry_after = parse_retry_after(headers.get("retry-after"))
    return ServiceError(
        kind,
        status_code=status,
        code=code,
        message=document.message if document else "",
        request_id=(document.request_id if document else None)
        or headers.get("x-amz-request-id"),
        retry_after=retry_after,
        bucket=bucket,
        key=key,
    )


class ObjectStoreClient:
    """Signed multipart and presign operations against one endpoint.

    Args:
        config: Endpoint, region, service and timeout.
        credentials_provider: Source of the signing keys.
        transport: HTTP transport; defaults to ``HttpxTransport`` with
            the configured timeout, closed by ``aclose``.
    """

    def __init__(
        self,
        config: ClientConfig,
        credentials_provider: CredentialsProvider,
        transport: Transport | None = None,
    ) -> None:
        self.config = config
        self._credentials_provider = credentials_provider
        self._owns_transport = transport is None
        self._transport: Transport = transport or HttpxTransport(config.timeout)
        self._signer: RequestSigner | None = None

    async def __aenter__(self) -> ObjectStoreClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_transport and isinstance(self._transport, HttpxTransport):
            await self._transport.aclose()

    @property
    def signer(self) -> RequestSigner:
        """Signer for this client, fetching credentials on first use.

        Raises:
            MissingCredentialsError: If the provider has no credentials.
        """
        if self._signer is None:
            self._signer = RequestSigner(
                self._credentials_provider.credentials(),
                region=self.config.region,
                service=self.config.service,
            )
        return self._signer

    def object_url(self, bucket: str, key: str = "", query: str = "") -> str:
        """Path-style URL for ``bucket/key`` with an encoded ``query``."""
        url = f"{self.config.endpoint.rstrip('/')}/{uri_encode(bucket)}"
        if key:
            url += "/" + uri_encode(key, encode_slash=False)
        if query:
            url += "?" + query
        return url

    async def _send(
        self,
        method: str,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        body: bytes | None = None,
        bucket: str,
        key: str,
    ) -> Response:
        signed = self.signer.sign(method, url, headers, body)
        response = await self._transport.execute(method, url, signed, body)
        if not 200 <= response.status < 300:
            raise service_error_from_response(
                response.status,
                response.headers,
                response.body,
                bucket=bucket,
                key=key,
            )
        return response

    async def create_multipart_upload(
        self,
        bucket: str,
        key: str,
        *,
        content_type: str | None = None,
        metadata: Mapping[str, str] | None = None,
    ) -> str:
        """Open a multipart session and return its upload ID.

        Raises:
            ServiceError: If the service rejects the request.
            MultipartError: ``INVALID_RESPONSE`` if no upload ID is returned.
        """
        headers: dict[str, str] = {}
        if content_type:
            headers["Content-Type"] = content_type
        for name, value in (metadata or {}).items():
            headers[_METADATA_PREFIX + name.lower()] = value

        response = await self._send(
            "POST",
            self.object_url(bucket, key, "uploads"),
            headers=headers,
            bucket=bucket,
            key=key,
        )
        upload_id = parse_upload_id(response.body)
        if upload_id is None:
            raise MultipartError(
                MultipartFailure.INVALID_RESPONSE,
                f"CreateMultipartUpload for {bucket}/{key} returned no "
                "UploadId",
            )
        logger.debug(
            "Created multipart upload %s for %s/%s", upload_id, bucket, key
        )
        return upload_id

    async def upload_part(
        self,
        bucket: str,
        key: str,
        upload_id: str,
        part_number: int,
        data: bytes,
    ) -> str:
        """Upload one part and return its ETag.

        Raises:
            ServiceError: If the service rejects the part.
            NetworkError: If the request could not be sent.
            MultipartError: ``INVALID_RESPONSE`` if no ETag is returned.
        """
        query = f"partNumber={part_number}&uploadId={uri_encode(upload_id)}"
        response = await self._send(
            "PUT",
            self.object_url(bucket, key, query),
            headers={"Content-Length": str(len(data))},
            body=data,
            bucket=bucket,
            key=key,
        )
        etag = response.header("etag")
        if not etag:
            raise MultipartError(
                MultipartFailure.INVALID_RESPONSE,
                f"UploadPart {part_number} of {upload_id} returned no ETag",
                upload_id=upload_id,
                part_number=part_number,
            )
        return etag

    async def complete_multipart_upload(
        self,
        bucket: str,
        key: str,
        upload_id: str,
        parts: Sequence[CompletedPart],
    ) -> str:
        """Assemble the object from ``parts`` and return its ETag.

        Parts are sent in ascending part number order.  The service can
        answer 200 and still fail, with an ``<Error>`` document as body;
        that is raised as ``ServiceError``.

        Raises:
            ServiceError: If completion fails.
            MultipartError: ``INVALID_RESPONSE`` if no ETag is returned.
        """
        ordered = sorted(parts, key=lambda p: p.part_number)
        response = await self._send(
            "POST",
            self.object_url(bucket, key, f"uploadId={uri_encode(upload_id)}"),
            headers={"Content-Type": "application/xml"},
            body=build_complete_body(ordered),
            bucket=bucket,
            key=key,
        )
        if parse_error(response.body) is not None:
            raise service_error_from_response(
                response.status,
                response.headers,
                response.body,
                bucket=bucket,
                key=key,
            )
        etag = parse_complete_etag(response.body)
        if etag is None:
            raise MultipartError(
                MultipartFailure.INVALID_RESPONSE,
                f"CompleteMultipartUpload of {upload_id} returned no ETag",
                upload_id=upload_id,
            )
        return etag

    async def abort_multipart_upload(
        self, bucket: str, key: str, upload_id: str
    ) -> None:
        """Abort a multipart session.

        Raises:
            ServiceError: If the service rejects the abort.
        """
        await self._send(
            "DELETE",
            self.object_url(bucket, key, f"uploadId={uri_encode(upload_id)}"),
            bucket=bucket,
            key=key,
        )

    @asynccontextmanager
    async def get_object_stream(
        self, bucket: str, key: str
    ) -> AsyncIterator[StreamResponse]:
        """Stream an object's body.

        Usage::

            async with client.get_object_stream("bucket", "key") as response:
                async for chunk in response.iter_bytes():
                    ...

        Raises:
            ServiceError: If the object cannot be read.
        """
        url = self.object_url(bucket, key)
        signed = self.signer.sign("GET", url)
        async with self._transport.stream("GET", url, signed) as response:
            if not 200 <= response.status < 300:
                body = await response.read()
                raise service_error_from_response(
                    response.status,
                    response.headers,
                    body,
                    bucket=bucket,
                    key=key,
                )
            yield response

    def presigned_url(
        self,
        method: str,
        bucket: str,
        key: str,
        *,
        expires: int = 3600,
        content_type: str | None = None,
    ) -> str:
        """Presigned URL granting ``method`` on ``bucket/key``.

        Raises:
            ValueError: If ``expires`` is outside 1..604800 seconds.
        """
        headers = {"content-type": content_type} if content_type else None
        return self.signer.presign_url(
            method.upper(),
            self.object_url(bucket, key),
            expires=expires,
            headers=headers,
        )

# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""HTTP transport for signed requests.

The client only depends on the ``Transport`` protocol; ``HttpxTransport``
is the default implementation over ``httpx.AsyncClient``.  Transport
failures (connect, timeout, reset) surface as ``NetworkError``; HTTP
error statuses are returned as responses for the client to interpret.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Mapping
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from dataclasses import dataclass, field
from typing import Protocol

import httpx

from r2lift.errors import NetworkError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Response:
    """A fully read HTTP response.

    Attributes:
        status: HTTP status code.
        headers: Response headers with lowercased names.
        body: Response body.
    """

    status: int
    headers: Mapping[str, str]
    body: bytes = field(default=b"", repr=False)

    def header(self, name: str) -> str | None:
        return self.headers.get(name.lower())


class StreamResponse(Protocol):
    """A response whose body is read incrementally."""

    @property
    def status(self) -> int: ...

    @property
    def headers(self) -> Mapping[str, str]: ...

    def iter_bytes(self) -> AsyncIterator[bytes]: ...

    async def read(self) -> bytes: ...


class Transport(Protocol):
    """Sends already-signed requests."""

    async def execute(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str],
        body: bytes | None = None,
    ) -> Response: ...

    def stream(
        self, method: str, url: str, headers: Mapping[str, str]
    ) -> AbstractAsyncContextManager[StreamResponse]: ...


class _HttpxStreamResponse:
    def __init__(self, response: httpx.Response) -> None:
        self._response = response
        self.status = response.status_code
        self.headers = {k.lower(): v for k, v in response.headers.items()}

    async def iter_bytes(self) -> AsyncIterator[bytes]:
        try:
            async for chunk in self._response.aiter_bytes():
                yield chunk
        except httpx.TransportError as exc:
            raise NetworkError(f"Reading response body failed: {exc}") from exc

    async def read(self) -> bytes:
        try:
            return await self._response.aread()
        except httpx.TransportError as exc:
            raise NetworkError(f"Reading response body failed: {exc}") from exc


class HttpxTransport:
    """``Transport`` over ``httpx.AsyncClient``.

    Args:
        timeout: Per-request timeout in seconds.
        client: Client to use instead of creating one (e.g. with an
            ``httpx.MockTransport``).  An injected client is not closed
            by ``aclose``.
    """

    def __init__(
        self, timeout: float = 60.0, client: httpx.AsyncClient | None = None
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def execute(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str],
        body: bytes | None = None,
    ) -> Response:
        try:
            response = await self._client.request(
                method, url, headers=dict(headers), content=body
            )
        except httpx.TransportError as exc:
            logger.debug("%s %s failed: %s", method, url, exc)
            raise NetworkError(f"{method} request failed: {exc}") from exc
        logger.debug("%s %s -> %d", method, url, response.status_code)
        return Response(
            status=response.status_code,
            headers={k.lower(): v for k, v in response.headers.items()},
            body=response.content,
        )

    @asynccontextmanager
    async def stream(
        self, method: str, url: str, headers: Mapping[str, str]
    ) -> AsyncIterator[StreamResponse]:
        try:
            async with self._client.stream(
                method, url, headers=dict(headers)
            ) as response:
                logger.debug(
                    "%s %s -> %d (streaming)", method, url, response.status_code
                )
                yield _HttpxStreamResponse(response)
        except httpx.TransportError as exc:
            raise NetworkError(f"{method} request failed: {exc}") from exc

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

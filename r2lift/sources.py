# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Byte sources for uploads.

An upload source yields its content as a sequence of byte chunks.  Chunk
boundaries are arbitrary; ``PartPlanner`` regroups them into parts.
Resuming an upload calls ``chunks()`` again and relies on it producing
the same bytes from the beginning, so sources must be re-iterable.

Built-ins cover in-memory data, files and arbitrary iterables.  Any
object implementing ``UploadSource`` can be passed to the upload manager.
"""

from __future__ import annotations

import asyncio
import mimetypes
from collections.abc import AsyncIterable, AsyncIterator, Iterable
from pathlib import Path
from typing import Protocol


DEFAULT_CHUNK_SIZE = 1024 * 1024
DEFAULT_CONTENT_TYPE = "application/octet-stream"


class UploadSource(Protocol):
    """Re-iterable producer of upload bytes."""

    @property
    def content_length(self) -> int | None:
        """Total length in bytes, None if unknown."""
        ...

    @property
    def content_type(self) -> str | None:
        """MIME type to store with the object, if any."""
        ...

    def chunks(self) -> AsyncIterator[bytes]:
        """Yield the content from the beginning."""
        ...


class BytesSource:
    """In-memory bytes."""

    def __init__(
        self,
        data: bytes,
        content_type: str | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        if chunk_size < 1:
            raise ValueError(f"Chunk size must be >= 1: {chunk_size}")
        self._data = data
        self._chunk_size = chunk_size
        self.content_type = content_type

    @property
    def content_length(self) -> int:
        return len(self._data)

    async def chunks(self) -> AsyncIterator[bytes]:
        view = memoryview(self._data)
        for offset in range(0, len(view), self._chunk_size):
            yield bytes(view[offset : offset + self._chunk_size])


class FileSource:
    """A file on disk, reopened from the start on every ``chunks()`` call.

    The content type is guessed from the file extension when not given.
    """

    def __init__(
        self,
        path: Path | str,
        content_type: str | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        if chunk_size < 1:
            raise ValueError(f"Chunk size must be >= 1: {chunk_size}")
        self.path = Path(path)
        self._chunk_size = chunk_size
        self._content_length = self.path.stat().st_size
        if content_type is None:
            guessed, _ = mimetypes.guess_type(self.path.name)
            content_type = guessed or DEFAULT_CONTENT_TYPE
        self.content_type = content_type

    @property
    def content_length(self) -> int:
        return self._content_length

    async def chunks(self) -> AsyncIterator[bytes]:
        with self.path.open("rb") as f:
            while True:
                # Disk reads are short; run them off the event loop anyway
                # so in-flight part uploads keep progressing.
                chunk = await asyncio.to_thread(f.read, self._chunk_size)
                if not chunk:
                    break
                yield chunk


class IterableSource:
    """Wraps a sync or async iterable of byte chunks.

    Only re-iterable inputs (lists, objects whose ``__iter__`` starts
    over) can be resumed; a one-shot generator yields nothing the second
    time.
    """

    def __init__(
        self,
        iterable: Iterable[bytes] | AsyncIterable[bytes],
        content_length: int | None = None,
        content_type: str | None = None,
    ) -> None:
        self._iterable = iterable
        self._content_length = content_length
        self.content_type = content_type

    @property
    def content_length(self) -> int | None:
        return self._content_length

    async def chunks(self) -> AsyncIterator[bytes]:
        if isinstance(self._iterable, AsyncIterable):
            async for chunk in self._iterable:
                yield chunk
        else:
            for chunk in self._iterable:
                yield chunk

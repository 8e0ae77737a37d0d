# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Splitting a byte stream into numbered upload parts.

Part numbers depend on stream order, so splitting is strictly sequential:
chunks are buffered until ``part_size`` bytes are available, each full
buffer becomes the next part, and the leftover tail becomes the final,
possibly short, part.
"""

from __future__ import annotations

from collections.abc import AsyncIterable, AsyncIterator, Iterable, Iterator
from dataclasses import dataclass, field

from r2lift.errors import MultipartError, MultipartFailure
from r2lift.multipart.state import MAX_PART_NUMBER


@dataclass(frozen=True)
class Part:
    """One part of a multipart upload.

    Attributes:
        number: 1-based part number.
        data: Part payload.
    """

    number: int
    data: bytes = field(repr=False)

    @property
    def size(self) -> int:
        return len(self.data)


class _PartBuffer:
    """Accumulates chunks and cuts them into parts."""

    def __init__(self, part_size: int, max_parts: int) -> None:
        self._part_size = part_size
        self._max_parts = max_parts
        self._buffer = bytearray()
        self._next_number = 1

    def _emit(self, data: bytes) -> Part:
        if self._next_number > self._max_parts:
            raise MultipartError(
                MultipartFailure.INVALID_STATE,
                f"Source needs more than {self._max_parts} parts of "
                f"{self._part_size} bytes; use a larger part size",
            )
        part = Part(self._next_number, data)
        self._next_number += 1
        return part

    def feed(self, chunk: bytes) -> list[Part]:
        self._buffer += chunk
        parts: list[Part] = []
        while len(self._buffer) >= self._part_size:
            parts.append(self._emit(bytes(self._buffer[: self._part_size])))
            del self._buffer[: self._part_size]
        return parts

    def finish(self) -> Part | None:
        # An empty source still needs one (empty) part to complete.
        if self._buffer or self._next_number == 1:
            data = bytes(self._buffer)
            self._buffer.clear()
            return self._emit(data)
        return None


class PartPlanner:
    """Splits byte chunks into ``Part`` objects of ``part_size`` bytes.

    Every part except the last is exactly ``part_size`` bytes and part
    numbers are contiguous from 1.  An empty source produces a single
    empty part 1, since the service needs at least one part to complete.
    """

    def __init__(
        self, part_size: int, *, max_parts: int = MAX_PART_NUMBER
    ) -> None:
        if part_size < 1:
            raise ValueError(f"Part size must be >= 1: {part_size}")
        self.part_size = part_size
        self.max_parts = max_parts

    def split(self, chunks: Iterable[bytes]) -> Iterator[Part]:
        """Split a synchronous chunk iterable."""
        buffer = _PartBuffer(self.part_size, self.max_parts)
        for chunk in chunks:
            yield from buffer.feed(chunk)
        tail = buffer.finish()
        if tail is not None:
            yield tail

    async def parts(self, chunks: AsyncIterable[bytes]) -> AsyncIterator[Part]:
        """Split an asynchronous chunk stream, one part at a time.

        Only the current chunk and one part's worth of buffered bytes are
        held here; the caller controls read-ahead by how fast it pulls.
        """
        buffer = _PartBuffer(self.part_size, self.max_parts)
        async for chunk in chunks:
            for part in buffer.feed(chunk):
                yield part
        tail = buffer.finish()
        if tail is not None:
            yield tail

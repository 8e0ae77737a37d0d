# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Resumable multipart upload state.

A ``ResumableState`` is an immutable snapshot of a multipart session.
The coordinating upload routine produces a new snapshot after every
completed part (``with_part``) and hands it to the caller, who persists
the ``encode()``-d blob wherever it likes and later passes the
``decode()``-d value back to ``MultipartUploadManager.resume``.

The blob is JSON with a ``version`` field.  Decoding ignores fields it
does not know, so a state written by a newer release still loads; all
fields are mandatory except ``total_size``.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from typing import Any

from r2lift.errors import StateDecodeError


STATE_VERSION = 1

#: Service limits for multipart uploads.
MIN_PART_NUMBER = 1
MAX_PART_NUMBER = 10_000


@dataclass(frozen=True)
class CompletedPart:
    """A part the service has accepted.

    Attributes:
        part_number: 1-based part number.
        etag: ETag returned by the part upload.
    """

    part_number: int
    etag: str


@dataclass(frozen=True)
class ResumableState:
    """Snapshot of an in-progress multipart upload.

    Attributes:
        bucket: Target bucket.
        key: Target object key.
        upload_id: Multipart session ID.
        part_size: Part size the session was split with.
        total_size: Source length in bytes, if known up front.
        completed_parts: Accepted parts in completion order.
    """

    bucket: str
    key: str
    upload_id: str
    part_size: int
    total_size: int | None = None
    completed_parts: tuple[CompletedPart, ...] = field(default_factory=tuple)

    @property
    def bytes_uploaded(self) -> int:
        """Approximate bytes uploaded: completed parts times ``part_size``.

        Overstates by up to ``part_size - 1`` once the short final part
        has completed.
        """
        return len(self.completed_parts) * self.part_size

    @property
    def next_part_number(self) -> int:
        """One past the highest completed part number, or 1."""
        return max((p.part_number for p in self.completed_parts), default=0) + 1

    @property
    def completed_part_numbers(self) -> frozenset[int]:
        return frozenset(p.part_number for p in self.completed_parts)

    def with_part(self, part: CompletedPart) -> ResumableState:
        """Return a new snapshot with ``part`` appended."""
        return replace(self, completed_parts=(*self.completed_parts, part))

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        return {
            "version": STATE_VERSION,
            "bucket": self.bucket,
            "key": self.key,
            "upload_id": self.upload_id,
            "part_size": self.part_size,
            "total_size": self.total_size,
            "completed_parts": [
                {"part_number": p.part_number, "etag": p.etag}
                for p in self.completed_parts
            ],
        }

    def encode(self) -> bytes:
        """Serialize to a UTF-8 JSON blob."""
        return json.dumps(self.to_dict(), separators=(",", ":")).encode("utf-8")

    @classmethod
    def from_dict(cls, raw: Any) -> ResumableState:
        """Build a state from a decoded JSON mapping.

        Raises:
            StateDecodeError: If a mandatory field is missing or has the
                wrong type.
        """
        if not isinstance(raw, dict):
            raise StateDecodeError("Upload state must be a JSON object")

        version = _require(raw, "version", int)
        if version < 1:
            raise StateDecodeError(f"Invalid upload state version: {version}")

        total_size = raw.get("total_size")
        if total_size is not None and (
            not isinstance(total_size, int) or isinstance(total_size, bool)
        ):
            raise StateDecodeError("Field 'total_size' must be an integer")

        raw_parts = _require(raw, "completed_parts", list)
        parts: list[CompletedPart] = []
        for index, entry in enumerate(raw_parts):
            if not isinstance(entry, dict):
                raise StateDecodeError(
                    f"completed_parts[{index}] must be a JSON object"
                )
            parts.append(
                CompletedPart(
                    part_number=_require(entry, "part_number", int),
                    etag=_require(entry, "etag", str),
                )
            )

        return cls(
            bucket=_require(raw, "bucket", str),
            key=_require(raw, "key", str),
            upload_id=_require(raw, "upload_id", str),
            part_size=_require(raw, "part_size", int),
            total_size=total_size,
            completed_parts=tuple(parts),
        )

    @classmethod
    def decode(cls, data: bytes | str) -> ResumableState:
        """Deserialize a blob produced by ``encode``.

        Raises:
            StateDecodeError: If the blob is not valid JSON or not a valid
                state.
        """
        try:
            raw = json.loads(data)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise StateDecodeError(
                f"Upload state is not valid JSON: {exc}"
            ) from exc
        return cls.from_dict(raw)


def _require(raw: dict[str, Any], name: str, kind: type) -> Any:
    if name not in raw:
        raise StateDecodeError(f"Upload state is missing field '{name}'")
    value = raw[name]
    # bool is an int subclass; reject it for integer fields.
    if not isinstance(value, kind) or (kind is int and isinstance(value, bool)):
        raise StateDecodeError(
            f"Field '{name}' must be {kind.__name__}, "
            f"got {type(value).__name__}"
        )
    return value

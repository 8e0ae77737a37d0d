# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""S3 XML request and response documents.

Responses carry the ``http://s3.amazonaws.com/doc/2006-03-01/`` namespace
on some services and none on others, so elements are matched by local
name.
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from collections.abc import Sequence
from dataclasses import dataclass
from xml.sax.saxutils import escape

from r2lift.multipart.state import CompletedPart


S3_NAMESPACE = "http://s3.amazonaws.com/doc/2006-03-01/"


@dataclass(frozen=True)
class ErrorDocument:
    """Parsed ``<Error>`` response body."""

    code: str = ""
    message: str = ""
    request_id: str | None = None


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _parse(body: bytes) -> ET.Element | None:
    if not body.strip():
        return None
    try:
        return ET.fromstring(body)
    except ET.ParseError:
        return None


def _child_text(element: ET.Element, name: str) -> str | None:
    for child in element:
        if _local(child.tag) == name:
            return (child.text or "").strip()
    return None


def parse_error(body: bytes) -> ErrorDocument | None:
    """Parse an ``<Error>`` document, None if ``body`` is not one."""
    root = _parse(body)
    if root is None or _local(root.tag) != "Error":
        return None
    return ErrorDocument(
        code=_child_text(root, "Code") or "",
        message=_child_text(root, "Message") or "",
        request_id=_child_text(root, "RequestId") or None,
    )


def parse_upload_id(body: bytes) -> str | None:
    """Extract ``UploadId`` from an ``InitiateMultipartUploadResult``."""
    root = _parse(body)
    if root is None or _local(root.tag) != "InitiateMultipartUploadResult":
        return None
    return _child_text(root, "UploadId") or None


def parse_complete_etag(body: bytes) -> str | None:
    """Extract ``ETag`` from a ``CompleteMultipartUploadResult``."""
    root = _parse(body)
    if root is None or _local(root.tag) != "CompleteMultipartUploadResult":
        return None
    return _child_text(root, "ETag") or None


def build_complete_body(parts: Sequence[CompletedPart]) -> bytes:
    """Build the ``CompleteMultipartUpload`` request body.

    Parts are written in the order given; callers sort them.
    """
    lines = [
        '<?xml version="1.0" encoding="UTF-8"?>',
        f'<CompleteMultipartUpload xmlns="{S3_NAMESPACE}">',
    ]
    for part in parts:
        lines.append(
            f"<Part><PartNumber>{part.part_number}</PartNumber>"
            f"<ETag>{escape(part.etag)}</ETag></Part>"
        )
    lines.append("</CompleteMultipartUpload>")
    return "".join(lines).encode("utf-8")

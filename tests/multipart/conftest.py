# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Shared fixtures for multipart tests."""

from collections.abc import Callable, Mapping, Sequence

import pytest

from r2lift.errors import R2Error
from r2lift.multipart.state import CompletedPart


class FakeClient:
    """In-memory stand-in for ObjectStoreClient.

    ``part_failures`` maps a part number to a factory for the exception
    raised on each attempt; factories returning None let the attempt
    succeed.
    """

    def __init__(self) -> None:
        self.upload_id = "upload-1"
        self.created: list[tuple[str, str, str | None, dict[str, str]]] = []
        self.uploaded: dict[int, bytes] = {}
        self.attempts: dict[int, int] = {}
        self.completed: list[Sequence[CompletedPart]] = []
        self.aborted: list[str] = []
        self.part_failures: dict[int, Callable[[int], R2Error | None]] = {}
        self.complete_error: R2Error | None = None
        self.abort_error: R2Error | None = None

    async def create_multipart_upload(
        self,
        bucket: str,
        key: str,
        *,
        content_type: str | None = None,
        metadata: Mapping[str, str] | None = None,
    ) -> str:
        self.created.append((bucket, key, content_type, dict(metadata or {})))
        return self.upload_id

    async def upload_part(
        self,
        bucket: str,
        key: str,
        upload_id: str,
        part_number: int,
        data: bytes,
    ) -> str:
        attempt = self.attempts.get(part_number, 0)
        self.attempts[part_number] = attempt + 1
        failure = self.part_failures.get(part_number)
        if failure is not None:
            error = failure(attempt)
            if error is not None:
                raise error
        self.uploaded[part_number] = data
        return f'"etag-{part_number}"'

    async def complete_multipart_upload(
        self,
        bucket: str,
        key: str,
        upload_id: str,
        parts: Sequence[CompletedPart],
    ) -> str:
        if self.complete_error is not None:
            raise self.complete_error
        self.completed.append(list(parts))
        return '"final-etag-2"'

    async def abort_multipart_upload(
        self, bucket: str, key: str, upload_id: str
    ) -> None:
        self.aborted.append(upload_id)
        if self.abort_error is not None:
            raise self.abort_error


@pytest.fixture
def fake_client() -> FakeClient:
    return FakeClient()

# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Multipart upload orchestration.

``MultipartUploadManager`` drives a whole upload: it opens a session,
feeds parts from the source through ``UploadScheduler``, reports progress
and state snapshots after every accepted part, completes the session with
the parts in ascending order, and aborts it when anything goes wrong.

Usage::

    manager = MultipartUploadManager(client, MultipartConfig())
    result = await manager.upload(
        "bucket", "videos/big.mp4", FileSource("big.mp4"),
        on_state=lambda state: state_path.write_bytes(state.encode()),
    )
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import (
    AsyncIterator,
    Awaitable,
    Callable,
    Mapping,
    Sequence,
)
from dataclasses import dataclass
from typing import Protocol

from r2lift.config import MultipartConfig
from r2lift.errors import MultipartError, MultipartFailure
from r2lift.multipart.planner import Part, PartPlanner
from r2lift.multipart.scheduler import UploadScheduler
from r2lift.multipart.state import (
    MAX_PART_NUMBER,
    MIN_PART_NUMBER,
    CompletedPart,
    ResumableState,
)
from r2lift.sources import UploadSource


logger = logging.getLogger(__name__)


class MultipartClient(Protocol):
    """The object store operations an upload needs."""

    async def create_multipart_upload(
        self,
        bucket: str,
        key: str,
        *,
        content_type: str | None = None,
        metadata: Mapping[str, str] | None = None,
    ) -> str: ...

    async def upload_part(
        self,
        bucket: str,
        key: str,
        upload_id: str,
        part_number: int,
        data: bytes,
    ) -> str: ...

    async def complete_multipart_upload(
        self,
        bucket: str,
        key: str,
        upload_id: str,
        parts: Sequence[CompletedPart],
    ) -> str: ...

    async def abort_multipart_upload(
        self, bucket: str, key: str, upload_id: str
    ) -> None: ...


@dataclass(frozen=True)
class Progress:
    """Upload progress.

    Attributes:
        completed_bytes: Bytes in accepted parts.
        total_bytes: Source length, None if unknown.
    """

    completed_bytes: int
    total_bytes: int | None

    @property
    def fraction(self) -> float | None:
        """Completed share in 0..1, None when the total is unknown."""
        if self.total_bytes is None:
            return None
        if self.total_bytes == 0:
            return 1.0
        return min(1.0, self.completed_bytes / self.total_bytes)


@dataclass(frozen=True)
class UploadResult:
    """A completed multipart upload.

    Attributes:
        bucket: Target bucket.
        key: Object key.
        upload_id: Session ID the object was assembled from.
        etag: ETag of the assembled object.
        parts: Parts in ascending part number order.
    """

    bucket: str
    key: str
    upload_id: str
    etag: str
    parts: tuple[CompletedPart, ...]


ProgressHandler = Callable[[Progress], None]
StateHandler = Callable[[ResumableState], None]


def validate_parts(parts: Sequence[CompletedPart]) -> None:
    """Check part numbers are in range and unique.

    Raises:
        MultipartError: ``INVALID_STATE`` on a violation.
    """
    seen: set[int] = set()
    for part in parts:
        if not MIN_PART_NUMBER <= part.part_number <= MAX_PART_NUMBER:
            raise MultipartError(
                MultipartFailure.INVALID_STATE,
                f"Part number {part.part_number} is outside "
                f"{MIN_PART_NUMBER}..{MAX_PART_NUMBER}",
                part_number=part.part_number,
            )
        if part.part_number in seen:
            raise MultipartError(
                MultipartFailure.INVALID_STATE,
                f"Part {part.part_number} is recorded more than once",
                part_number=part.part_number,
            )
        seen.add(part.part_number)


class MultipartUploadManager:
    """Uploads sources as multipart objects, with resume and abort.

    Args:
        client: Object store client.
        config: Part size, concurrency, retry and abort settings.
        sleep: Backoff sleep, replaceable in tests.
    """

    def __init__(
        self,
        client: MultipartClient,
        config: MultipartConfig | None = None,
        *,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self._client = client
        self.config = config or MultipartConfig()
        self._sleep = sleep

    async def upload(
        self,
        bucket: str,
        key: str,
        source: UploadSource,
        *,
        metadata: Mapping[str, str] | None = None,
        progress: ProgressHandler | None = None,
        on_state: StateHandler | None = None,
    ) -> UploadResult:
        """Upload ``source`` to ``bucket/key`` in a new multipart session.

        ``on_state`` first receives the empty state right after the
        session is created, so persisting it makes even an upload that
        dies before its first part resumable.

        Raises:
            MultipartError: If a part fails or the service response is
                invalid.
            ServiceError: If the service rejects session creation or
                completion.
            NetworkError: If the service cannot be reached.
        """
        upload_id = await self._client.create_multipart_upload(
            bucket, key, content_type=source.content_type, metadata=metadata
        )
        logger.info(
            "Started multipart upload %s for %s/%s (%s bytes, part size %d)",
            upload_id,
            bucket,
            key,
            "?" if source.content_length is None else source.content_length,
            self.config.part_size,
        )
        state = ResumableState(
            bucket=bucket,
            key=key,
            upload_id=upload_id,
            part_size=self.config.part_size,
            total_size=source.content_length,
        )
        if on_state is not None:
            on_state(state)
        return await self._run(state, source, progress, on_state)

    async def resume(
        self,
        state: ResumableState,
        source: UploadSource,
        *,
        progress: ProgressHandler | None = None,
        on_state: StateHandler | None = None,
    ) -> UploadResult:
        """Continue an upload from a persisted state.

        ``source`` must produce the same bytes as the original.  It is
        split with the state's part size, not the configured one, and
        only parts missing from ``state.completed_parts`` are uploaded.

        Raises:
            MultipartError: ``INVALID_STATE`` if the state is inconsistent
                or the source length differs from ``state.total_size``
                (both checked before any request), otherwise as for
                ``upload``.
        """
        if state.part_size < 1:
            raise MultipartError(
                MultipartFailure.INVALID_STATE,
                f"Invalid part size in upload state: {state.part_size}",
                upload_id=state.upload_id,
            )
        validate_parts(state.completed_parts)
        length = source.content_length
        if (
            length is not None
            and state.total_size is not None
            and length != state.total_size
        ):
            raise MultipartError(
                MultipartFailure.INVALID_STATE,
                f"Source is {length} bytes but the upload state was written "
                f"for {state.total_size}; the source changed since the "
                f"upload started",
                upload_id=state.upload_id,
            )
        logger.info(
            "Resuming multipart upload %s for %s/%s (%d part(s) done)",
            state.upload_id,
            state.bucket,
            state.key,
            len(state.completed_parts),
        )
        return await self._run(state, source, progress, on_state)

    async def abort(self, bucket: str, key: str, upload_id: str) -> None:
        """Abort a multipart session, discarding its uploaded parts."""
        await self._client.abort_multipart_upload(bucket, key, upload_id)
        logger.info(
            "Aborted multipart upload %s for %s/%s", upload_id, bucket, key
        )

    async def _run(
        self,
        state: ResumableState,
        source: UploadSource,
        progress: ProgressHandler | None,
        on_state: StateHandler | None,
    ) -> UploadResult:
        try:
            return await self._upload_parts(state, source, progress, on_state)
        except Exception as exc:
            if isinstance(exc, MultipartError) and exc.upload_id is None:
                exc.upload_id = state.upload_id
            if self.config.abort_on_failure:
                await self._abort_after_failure(state, exc)
            raise

    async def _abort_after_failure(
        self, state: ResumableState, error: Exception
    ) -> None:
        try:
            await self._client.abort_multipart_upload(
                state.bucket, state.key, state.upload_id
            )
        except Exception as abort_exc:
            logger.warning(
                "Abort of multipart upload %s failed; the session may be "
                "left behind: %s",
                state.upload_id,
                abort_exc,
            )
            if isinstance(error, MultipartError):
                error.abort_error = abort_exc
            else:
                error.add_note(
                    f"Abort of multipart upload {state.upload_id} also "
                    f"failed: {abort_exc}"
                )
            return
        if isinstance(error, MultipartError):
            error.aborted = True
        logger.info(
            "Aborted multipart upload %s after failure", state.upload_id
        )

    async def _upload_parts(
        self,
        state: ResumableState,
        source: UploadSource,
        progress: ProgressHandler | None,
        on_state: StateHandler | None,
    ) -> UploadResult:
        total = source.content_length
        if total is None:
            total = state.total_size
        done = state.completed_part_numbers
        completed_bytes = state.bytes_uploaded
        if total is not None:
            completed_bytes = min(completed_bytes, total)
        if progress is not None:
            progress(Progress(completed_bytes, total))

        planned = 0

        async def missing_parts() -> AsyncIterator[Part]:
            nonlocal planned
            planner = PartPlanner(state.part_size)
            async for part in planner.parts(source.chunks()):
                planned = part.number
                if part.number not in done:
                    yield part

        current = state

        def on_complete(part: CompletedPart, size: int) -> None:
            nonlocal current, completed_bytes
            current = current.with_part(part)
            completed_bytes += size
            if on_state is not None:
                on_state(current)
            if progress is not None:
                progress(Progress(completed_bytes, total))

        async def upload_part(part: Part) -> str:
            return await self._client.upload_part(
                state.bucket, state.key, state.upload_id, part.number, part.data
            )

        scheduler = UploadScheduler(
            upload_part,
            max_concurrency=self.config.max_concurrent_uploads,
            retry=self.config.retry_policy,
            sleep=self._sleep,
        )
        await scheduler.run(missing_parts(), on_complete)

        stale = sorted(n for n in current.completed_part_numbers if n > planned)
        if stale:
            raise MultipartError(
                MultipartFailure.INVALID_STATE,
                f"Upload state lists part(s) {stale} but the source only "
                f"produced {planned}; the source changed since the upload "
                f"started",
                part_number=stale[0],
            )

        parts = sorted(current.completed_parts, key=lambda p: p.part_number)
        validate_parts(parts)
        etag = await self._client.complete_multipart_upload(
            state.bucket, state.key, state.upload_id, parts
        )
        logger.info(
            "Completed multipart upload %s for %s/%s (%d part(s))",
            state.upload_id,
            state.bucket,
            state.key,
            len(parts),
        )
        return UploadResult(
            bucket=state.bucket,
            key=state.key,
            upload_id=state.upload_id,
            etag=etag,
            parts=tuple(parts),
        )

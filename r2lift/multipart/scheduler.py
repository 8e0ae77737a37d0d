# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Bounded-concurrency part upload scheduling.

``UploadScheduler.run`` is the single coordinator of a multipart upload.
It pulls parts lazily from the planner, keeps at most ``max_concurrency``
part uploads in flight, and is the only place completions are recorded:
workers return their result and the coordinator hands it to the
``on_complete`` callback, so callers never see concurrent updates.

A part that keeps failing after its retries are exhausted stops the
coordinator from admitting new parts.  Parts already in flight run to
completion (their results are still recorded) before the failure is
raised.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import (
    AsyncIterable,
    AsyncIterator,
    Awaitable,
    Callable,
    Iterable,
)
from dataclasses import dataclass

from r2lift.errors import (
    MultipartError,
    MultipartFailure,
    R2Error,
    ServiceError,
    ServiceErrorKind,
)
from r2lift.multipart.planner import Part
from r2lift.multipart.state import CompletedPart


logger = logging.getLogger(__name__)

#: Uploads one part and returns the ETag the service assigned to it.
UploadPartFn = Callable[[Part], Awaitable[str]]

#: Called by the coordinator for every accepted part with its byte size.
CompletionHandler = Callable[[CompletedPart, int], None]


@dataclass(frozen=True)
class RetryPolicy:
    """Per-part retry settings.

    Attributes:
        max_attempts: Retries after the first attempt.
        base_delay: Backoff before retry ``n`` (0-based) is
            ``base_delay * 2**n`` seconds.
        enabled: When False, the first failure is final.
    """

    max_attempts: int = 3
    base_delay: float = 0.5
    enabled: bool = True

    def delay(self, attempt: int) -> float:
        return self.base_delay * 2**attempt

    def should_retry(self, error: R2Error, attempt: int) -> bool:
        """Whether a failed attempt (0-based) should be retried."""
        return self.enabled and error.retryable and attempt < self.max_attempts


class UploadScheduler:
    """Runs part uploads with bounded concurrency and per-part retries."""

    def __init__(
        self,
        upload_part: UploadPartFn,
        *,
        max_concurrency: int = 4,
        retry: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError(f"Concurrency must be >= 1: {max_concurrency}")
        self._upload_part = upload_part
        self.max_concurrency = max_concurrency
        self.retry = retry or RetryPolicy()
        self._sleep = sleep

    async def _upload_with_retry(self, part: Part) -> CompletedPart:
        attempt = 0
        while True:
            try:
                etag = await self._upload_part(part)
                return CompletedPart(part.number, etag)
            except R2Error as exc:
                if not self.retry.should_retry(exc, attempt):
                    raise MultipartError(
                        MultipartFailure.PART_FAILED,
                        f"Part {part.number} failed after {attempt + 1} "
                        f"attempt(s): {exc}",
                        part_number=part.number,
                        attempts=attempt + 1,
                    ) from exc

                delay = self.retry.delay(attempt)
                if (
                    isinstance(exc, ServiceError)
                    and exc.kind is ServiceErrorKind.RATE_LIMITED
                    and exc.retry_after is not None
                ):
                    delay = max(delay, exc.retry_after)
                logger.warning(
                    "Part %d attempt %d failed, retrying in %.2fs: %s",
                    part.number,
                    attempt + 1,
                    delay,
                    exc,
                )
                await self._sleep(delay)
                attempt += 1

    async def run(
        self,
        parts: AsyncIterable[Part] | Iterable[Part],
        on_complete: CompletionHandler | None = None,
    ) -> list[CompletedPart]:
        """Upload every part, recording completions as they arrive.

        Args:
            parts: Parts to upload, pulled one at a time as slots free up.
            on_complete: Called from the coordinator for each accepted part.

        Returns:
            Accepted parts in completion order.

        Raises:
            MultipartError: ``PART_FAILED`` when a part exhausts its
                retries.  Errors raised while producing parts propagate
                unchanged.  Either way, in-flight parts finish first.
        """
        iterator = _aiter(parts)
        pending: dict[asyncio.Task[CompletedPart], Part] = {}
        completed: list[CompletedPart] = []
        failure: BaseException | None = None
        exhausted = False

        try:
            while True:
                while (
                    failure is None
                    and not exhausted
                    and len(pending) < self.max_concurrency
                ):
                    try:
                        part = await anext(iterator)
                    except StopAsyncIteration:
                        exhausted = True
                        break
                    except Exception as exc:
                        failure = exc
                        break
                    task = asyncio.create_task(
                        self._upload_with_retry(part),
                        name=f"upload-part-{part.number}",
                    )
                    pending[task] = part

                if not pending:
                    break

                done, _ = await asyncio.wait(
                    pending, return_when=asyncio.FIRST_COMPLETED
                )
                for task in sorted(done, key=lambda t: pending[t].number):
                    part = pending.pop(task)
                    exc = task.exception()
                    if exc is not None:
                        if failure is None:
                            failure = exc
                            logger.error(
                                "Part %d failed; waiting for %d in-flight "
                                "part(s) before stopping",
                                part.number,
                                len(pending),
                            )
                        else:
                            logger.warning(
                                "Part %d also failed: %s", part.number, exc
                            )
                        continue
                    result = task.result()
                    completed.append(result)
                    logger.debug(
                        "Part %d uploaded (%d bytes)", part.number, part.size
                    )
                    if on_complete is not None:
                        on_complete(result, part.size)
        finally:
            # Only reached with tasks pending on cancellation.
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
            # Release the source (open files) when stopping early.
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()

        if failure is not None:
            raise failure
        return completed


async def _aiter_sync(parts: Iterable[Part]) -> AsyncIterator[Part]:
    for part in parts:
        yield part


def _aiter(parts: AsyncIterable[Part] | Iterable[Part]) -> AsyncIterator[Part]:
    if isinstance(parts, AsyncIterable):
        return aiter(parts)
    return _aiter_sync(parts)

# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Multipart uploads.

- ``planner``: splitting sources into numbered parts
- ``scheduler``: bounded-concurrency part uploads with retries
- ``state``: resumable upload snapshots
- ``manager``: upload, resume and abort orchestration
"""

from r2lift.multipart.manager import (
    MultipartClient,
    MultipartUploadManager,
    Progress,
    UploadResult,
    validate_parts,
)
from r2lift.multipart.planner import Part, PartPlanner
from r2lift.multipart.scheduler import RetryPolicy, UploadScheduler
from r2lift.multipart.state import (
    MAX_PART_NUMBER,
    MIN_PART_NUMBER,
    CompletedPart,
    ResumableState,
)


__all__ = [
    "CompletedPart",
    "MAX_PART_NUMBER",
    "MIN_PART_NUMBER",
    "MultipartClient",
    "MultipartUploadManager",
    "Part",
    "PartPlanner",
    "Progress",
    "ResumableState",
    "RetryPolicy",
    "UploadResult",
    "UploadScheduler",
    "validate_parts",
]

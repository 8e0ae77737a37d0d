# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""r2lift CLI.

Subcommands:

* ``upload``: multipart upload of a file, resumable via a state file
* ``presign``: print a presigned URL for an object
* ``abort``: abort a multipart upload session

Exit status is 0 on success, 1 on configuration or service errors and 2
on usage errors.
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging
import sys
import tempfile
from pathlib import Path

from r2lift.client import ObjectStoreClient
from r2lift.config import Settings
from r2lift.errors import MultipartError, R2Error, ServiceError
from r2lift.logging import configure_logging
from r2lift.multipart import (
    MultipartUploadManager,
    Progress,
    ResumableState,
    UploadResult,
)
from r2lift.sources import FileSource


logger = logging.getLogger(__name__)


# ── State file ──────────────────────────────────────────────────────


def load_state(path: Path) -> ResumableState | None:
    """Load a persisted upload state, None if the file does not exist.

    Raises:
        StateDecodeError: If the file exists but is not a valid state.
    """
    try:
        data = path.read_bytes()
    except FileNotFoundError:
        return None
    return ResumableState.decode(data)


def save_state(path: Path, state: ResumableState) -> None:
    """Persist ``state`` to ``path`` atomically."""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
        try:
            with open(fd, "wb") as f:
                f.write(state.encode())
            Path(tmp).replace(path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
    except OSError as e:
        logger.warning("Failed to save upload state %s: %s", path, e)


# ── Subcommands ─────────────────────────────────────────────────────


def _log_progress(progress: Progress) -> None:
    fraction = progress.fraction
    if fraction is None:
        logger.info("Uploaded %d bytes", progress.completed_bytes)
    else:
        logger.info(
            "Uploaded %d/%d bytes (%.1f%%)",
            progress.completed_bytes,
            progress.total_bytes,
            fraction * 100,
        )


def _is_no_such_upload(exc: BaseException | None) -> bool:
    return isinstance(exc, ServiceError) and exc.code == "NoSuchUpload"


def _session_closed(exc: BaseException) -> bool:
    """Whether a failed upload left no remote session to resume."""
    if _is_no_such_upload(exc) or _is_no_such_upload(exc.__cause__):
        return True
    if isinstance(exc, MultipartError):
        return exc.aborted or _is_no_such_upload(exc.abort_error)
    return False


async def _upload(args: argparse.Namespace, settings: Settings) -> UploadResult:
    multipart = settings.multipart
    if args.part_size is not None:
        multipart = dataclasses.replace(multipart, part_size=args.part_size)
    if args.concurrency is not None:
        multipart = dataclasses.replace(
            multipart, max_concurrent_uploads=args.concurrency
        )

    source = FileSource(args.file)
    state_path: Path | None = args.state
    state = load_state(state_path) if state_path is not None else None
    target = (args.bucket, args.key)
    if state is not None and (state.bucket, state.key) != target:
        raise R2Error(
            f"State file {state_path} belongs to {state.bucket}/{state.key}, "
            f"not {args.bucket}/{args.key}"
        )

    if (
        state is not None
        and args.part_size is not None
        and args.part_size != state.part_size
    ):
        logger.warning(
            "Ignoring --part-size %d: upload %s continues with the part "
            "size it was started with (%d)",
            args.part_size,
            state.upload_id,
            state.part_size,
        )

    def on_state(new_state: ResumableState) -> None:
        if state_path is not None:
            save_state(state_path, new_state)

    try:
        async with ObjectStoreClient(
            settings.client, settings.credentials_provider()
        ) as client:
            manager = MultipartUploadManager(client, multipart)
            if state is not None:
                result = await manager.resume(
                    state, source, progress=_log_progress, on_state=on_state
                )
            else:
                result = await manager.upload(
                    args.bucket,
                    args.key,
                    source,
                    progress=_log_progress,
                    on_state=on_state,
                )
    except Exception as e:
        if state_path is not None and _session_closed(e):
            logger.info(
                "Removing state file %s; its upload session is gone",
                state_path,
            )
            state_path.unlink(missing_ok=True)
        raise

    if state_path is not None:
        state_path.unlink(missing_ok=True)
    return result


def cmd_upload(args: argparse.Namespace, settings: Settings) -> int:
    """Upload a file, resuming from ``--state`` when it exists."""
    result = asyncio.run(_upload(args, settings))
    print(f"{result.bucket}/{result.key} {result.etag}")
    return 0


def cmd_presign(args: argparse.Namespace, settings: Settings) -> int:
    """Print a presigned URL."""
    client = ObjectStoreClient(settings.client, settings.credentials_provider())
    try:
        url = client.presigned_url(
            args.method,
            args.bucket,
            args.key,
            expires=args.expires,
            content_type=args.content_type,
        )
    finally:
        asyncio.run(client.aclose())
    print(url)
    return 0


async def _abort(args: argparse.Namespace, settings: Settings) -> None:
    async with ObjectStoreClient(
        settings.client, settings.credentials_provider()
    ) as client:
        await MultipartUploadManager(client, settings.multipart).abort(
            args.bucket, args.key, args.upload_id
        )


def cmd_abort(args: argparse.Namespace, settings: Settings) -> int:
    """Abort a multipart upload session."""
    asyncio.run(_abort(args, settings))
    return 0


# ── CLI plumbing ────────────────────────────────────────────────────


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an integer: {value!r}") from None
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be >= 1: {number}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="r2lift",
        description="Resumable multipart uploads to Cloudflare R2",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        metavar="PATH",
        help=(
            "Path to r2lift.yaml config file"
            " (default: ~/.config/r2lift/r2lift.yaml)"
        ),
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    upload = subparsers.add_parser("upload", help="Upload a file")
    upload.add_argument("file", type=Path)
    upload.add_argument("bucket")
    upload.add_argument("key")
    upload.add_argument(
        "--state",
        type=Path,
        default=None,
        metavar="PATH",
        help="Persist progress here; resumes when the file exists",
    )
    upload.add_argument("--part-size", type=_positive_int, default=None)
    upload.add_argument("--concurrency", type=_positive_int, default=None)
    upload.set_defaults(handler=cmd_upload)

    presign = subparsers.add_parser("presign", help="Print a presigned URL")
    presign.add_argument("bucket")
    presign.add_argument("key")
    presign.add_argument("--method", choices=("GET", "PUT"), default="GET")
    presign.add_argument(
        "--expires", type=_positive_int, default=3600, metavar="SECONDS"
    )
    presign.add_argument("--content-type", default=None)
    presign.set_defaults(handler=cmd_presign)

    abort = subparsers.add_parser("abort", help="Abort a multipart upload")
    abort.add_argument("bucket")
    abort.add_argument("key")
    abort.add_argument("upload_id")
    abort.set_defaults(handler=cmd_abort)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point.

    Args:
        argv: Command-line arguments. If None, uses sys.argv[1:].

    Returns:
        Exit code (0=success, 1=error, 2=usage error).
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(
        level=logging.DEBUG if args.verbose else logging.INFO,
        add_secret_filter=True,
    )

    try:
        settings = Settings.from_yaml(config_path=args.config)
    except R2Error as e:
        logger.critical("Configuration error: %s", e)
        return 1

    try:
        return args.handler(args, settings)
    except R2Error as e:
        logger.error("%s failed: %s", args.command, e)
        return 1
    except ValueError as e:
        logger.error("%s failed: %s", args.command, e)
        return 2
    except OSError as e:
        logger.error("%s failed: %s", args.command, e)
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 1


def cli() -> None:
    """Entry point for the ``r2lift`` console script."""
    sys.exit(main())

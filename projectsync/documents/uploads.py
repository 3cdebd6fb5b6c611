"""
ProjectSync Upload Coordinator — streams a file to blob storage and hands the
stored path + download URL to exactly one metadata write.

State machine per upload:

    IDLE ──start──▶ UPLOADING ──blob stored + URL fetched──▶ COMPLETED ──▶ on_completed (once)
                              ──transfer/URL failure─────────▶ FAILED     (no metadata write)
                              ──cancel()─────────────────────▶ CANCELLED  (no metadata write)

Destination paths:
    projects/{project_id}/general/{epoch_ms}_{nonce}_{file_name}
    projects/{project_id}/tasks/{task_id}/{epoch_ms}_{nonce}_{file_name}
    projects/{project_id}/receipts/{epoch_ms}_{nonce}_{file_name}

The random nonce keeps two uploads of the same (or same-sanitised) name in
the same millisecond on distinct paths.

Bytes committed before a cancel or failure, and blobs whose metadata write
fails, are orphans: they are logged, never surfaced as records.
"""

from __future__ import annotations

import asyncio
import inspect
import io
import logging
import mimetypes
import os
import time
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, AsyncIterator, BinaryIO, Callable, List, Optional, Sequence, Union

from projectsync.engine.errors import ProjectSyncError, TransportError, ValidationError
from projectsync.engine.logging import log, log_orphan_resource, log_upload_event
from projectsync.store.blob import BlobStore

logger = logging.getLogger("projectsync.documents.uploads")

NAMESPACES = ("general", "receipts")


# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

def safe_filename(filename: str) -> str:
    """
    Sanitize a file name for use as the last storage path segment.

    Removes path components, control and reserved characters, leading dots.
    Preserves the extension.
    """
    name = os.path.basename(filename.replace("\\", "/"))
    name = "".join(c for c in name if c.isprintable() and c not in '<>:"/\\|?*#[]')
    name = name.strip().lstrip(".")
    if not name:
        name = "unnamed_file"
    if len(name) > 200:
        base, ext = os.path.splitext(name)
        name = base[:200 - len(ext)] + ext
    return name


def destination_path(
    project_id: str,
    file_name: str,
    task_id: Optional[str] = None,
    kind: str = "general",
    now: Optional[datetime] = None,
    nonce: Optional[str] = None,
) -> str:
    """Storage path for a new upload under its project (and optional task) namespace."""
    if not project_id:
        raise ValidationError("A project is required for uploads", field_errors={"projectId": "Required."})
    if kind not in NAMESPACES:
        raise ValueError(f"kind must be one of {NAMESPACES}, got '{kind}'")

    now = now or datetime.now(timezone.utc)
    stamp = int(now.timestamp() * 1000)
    nonce = nonce or uuid.uuid4().hex[:8]
    unique_name = f"{stamp}_{nonce}_{safe_filename(file_name)}"

    if kind == "receipts":
        return f"projects/{project_id}/receipts/{unique_name}"
    if task_id:
        return f"projects/{project_id}/tasks/{task_id}/{unique_name}"
    return f"projects/{project_id}/general/{unique_name}"


# ---------------------------------------------------------------------------
# Sources / results
# ---------------------------------------------------------------------------

@dataclass
class UploadSource:
    """A file selected for upload."""

    name: str
    data: Union[bytes, BinaryIO]
    size: int
    content_type: Optional[str] = None

    @classmethod
    def from_bytes(cls, name: str, data: bytes, content_type: Optional[str] = None) -> "UploadSource":
        return cls(name=name, data=data, size=len(data), content_type=content_type)

    @classmethod
    def from_path(cls, path: Union[str, Path], content_type: Optional[str] = None) -> "UploadSource":
        p = Path(path)
        return cls(name=p.name, data=p.read_bytes(), size=p.stat().st_size, content_type=content_type)

    @property
    def mime_type(self) -> str:
        if self.content_type:
            return self.content_type
        guessed, _ = mimetypes.guess_type(self.name)
        return guessed or "application/octet-stream"

    def open(self) -> BinaryIO:
        return io.BytesIO(self.data) if isinstance(self.data, (bytes, bytearray)) else self.data


@dataclass(frozen=True)
class UploadResult:
    path: str
    url: str
    name: str
    size: int
    content_type: str
    # Whatever the completion callback returned (e.g. the metadata record id)
    record_id: Optional[str] = None


class UploadState(str, Enum):
    IDLE = "idle"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


CompletionCallback = Callable[[UploadResult], Any]


def mime_accepted(mime_type: str, accept: Sequence[str]) -> bool:
    """Match against patterns like "image/*" or "application/pdf"."""
    for pattern in accept:
        if pattern.endswith("/*"):
            if mime_type.startswith(pattern[:-1]):
                return True
        elif mime_type == pattern:
            return True
    return False


# ---------------------------------------------------------------------------
# Upload task
# ---------------------------------------------------------------------------

class UploadTask:
    """
    One in-flight upload.

    Usage:
        task = coordinator.upload(source, path, on_completed=write_metadata)
        async for fraction in task.progress():
            ...
        result = await task.result()
    """

    def __init__(
        self,
        blobs: BlobStore,
        source: UploadSource,
        destination: str,
        on_completed: Optional[CompletionCallback] = None,
        user_id: Optional[str] = None,
    ):
        self.source = source
        self.destination = destination
        self.user_id = user_id
        self.error: Optional[BaseException] = None
        self._blobs = blobs
        self._on_completed = on_completed
        self._state = UploadState.IDLE
        self._result: Optional[UploadResult] = None
        self._history: List[float] = []
        self._waiters: List[asyncio.Future] = []
        self._bytes_written = 0
        self._done = False
        self._task: Optional[asyncio.Task] = None

    @property
    def state(self) -> UploadState:
        return self._state

    @property
    def fraction(self) -> float:
        return self._history[-1] if self._history else 0.0

    @property
    def done(self) -> bool:
        return self._done

    def start(self) -> "UploadTask":
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._run())
        return self

    def cancel(self) -> bool:
        """Best-effort abort. Returns False once the transfer has finished."""
        if self._state is UploadState.IDLE:
            self._state = UploadState.CANCELLED
            if self._task is not None:
                self._task.cancel()
            self._finish()
            log(log_upload_event("upload_cancelled", self.destination, self.user_id, total_bytes=0))
            return True
        if self._state is UploadState.UPLOADING and self._task is not None:
            self._task.cancel()
            return True
        return False

    async def result(self) -> Optional[UploadResult]:
        """
        Wait for the upload to finish.

        Returns the UploadResult on completion, None when cancelled, and
        raises the transfer or metadata-write error on failure.
        """
        if self._task is not None and self._state is not UploadState.CANCELLED:
            await self._task
        if self.error is not None:
            raise self.error
        return self._result

    async def progress(self) -> AsyncIterator[float]:
        """Progress fractions in [0, 1], non-decreasing. Ends when the upload ends."""
        index = 0
        while True:
            while index < len(self._history):
                yield self._history[index]
                index += 1
            if self._done:
                return
            waiter = asyncio.get_running_loop().create_future()
            self._waiters.append(waiter)
            await waiter

    # -------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------

    def _emit(self, fraction: float) -> None:
        fraction = max(0.0, min(1.0, fraction))
        if self._history and fraction < self._history[-1]:
            return
        self._history.append(fraction)
        self._wake()

    def _wake(self) -> None:
        for waiter in self._waiters:
            if not waiter.done():
                waiter.set_result(None)
        self._waiters.clear()

    def _finish(self) -> None:
        self._done = True
        self._wake()

    def _on_progress(self, written: int, total: int) -> None:
        self._bytes_written = written
        self._emit(written / total if total else 1.0)

    async def _run(self) -> None:
        self._state = UploadState.UPLOADING
        started = time.monotonic()
        self._emit(0.0)
        try:
            size = await self._blobs.upload(
                self.destination, self.source.open(), self.source.size, self._on_progress,
            )
            url = await self._blobs.download_url(self.destination)
        except asyncio.CancelledError:
            self._state = UploadState.CANCELLED
            self._orphaned("upload cancelled")
            log(log_upload_event(
                "upload_cancelled", self.destination, self.user_id,
                total_bytes=self._bytes_written, duration_ms=(time.monotonic() - started) * 1000,
            ))
            logger.info(f"Upload cancelled: {self.destination}")
            self._finish()
            return
        except Exception as e:
            if not isinstance(e, ProjectSyncError):
                e = TransportError(f"Upload failed: {e}", backend="blob", storage_path=self.destination)
            self.error = e
            self._state = UploadState.FAILED
            self._orphaned(f"upload failed: {e}")
            logger.error(f"Upload failed: {self.destination}: {e}")
            log(log_upload_event(
                "upload_failed", self.destination, self.user_id,
                total_bytes=self._bytes_written, error=str(e),
            ))
            self._finish()
            return

        self._emit(1.0)
        self._state = UploadState.COMPLETED
        result = UploadResult(
            path=self.destination,
            url=url,
            name=self.source.name,
            size=size,
            content_type=self.source.mime_type,
        )
        log(log_upload_event(
            "upload_completed", self.destination, self.user_id,
            total_bytes=size, duration_ms=(time.monotonic() - started) * 1000,
        ))

        try:
            if self._on_completed is not None:
                value = self._on_completed(result)
                if inspect.isawaitable(value):
                    value = await value
                if isinstance(value, str):
                    result = replace(result, record_id=value)
        except Exception as e:
            # Blob is stored but its metadata record is not
            self.error = e
            logger.error(f"Metadata write failed for {self.destination}: {e}")
            log(log_orphan_resource("blob", self.destination, reason=f"metadata write failed: {e}"))
        self._result = result
        self._finish()

    def _orphaned(self, reason: str) -> None:
        if self._bytes_written > 0:
            log(log_orphan_resource("blob", self.destination, reason=reason))

    def __repr__(self) -> str:
        return f"<UploadTask({self.destination}, state={self._state.value}, {self.fraction:.0%})>"


# ---------------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------------

class UploadCoordinator:
    """
    Validates and starts uploads against a BlobStore.

    Args:
        blobs: Blob store the files go to.
        max_upload_size_mb: Platform-wide size limit.
    """

    def __init__(self, blobs: BlobStore, max_upload_size_mb: int = 50):
        self._blobs = blobs
        self._max_upload_size_mb = max_upload_size_mb
        self._tasks: List[UploadTask] = []

    @property
    def blobs(self) -> BlobStore:
        return self._blobs

    @property
    def in_flight(self) -> List[UploadTask]:
        return [t for t in self._tasks if not t.done]

    def validate(self, source: UploadSource, accept: Optional[Sequence[str]] = None) -> None:
        """Raise ValidationError when the file is too large or of a refused type."""
        max_bytes = self._max_upload_size_mb * 1024 * 1024
        if source.size > max_bytes:
            raise ValidationError(
                f"File size ({source.size / 1024 / 1024:.1f} MB) exceeds "
                f"platform limit ({self._max_upload_size_mb} MB)",
                field_errors={"file": f"Files must be {self._max_upload_size_mb} MB or smaller."},
            )
        if accept and not mime_accepted(source.mime_type, accept):
            raise ValidationError(
                f"File type '{source.mime_type}' not allowed. Allowed: {list(accept)}",
                field_errors={"file": "This file type is not allowed."},
            )

    def upload(
        self,
        source: UploadSource,
        destination: str,
        on_completed: Optional[CompletionCallback] = None,
        accept: Optional[Sequence[str]] = None,
        user_id: Optional[str] = None,
    ) -> UploadTask:
        """Validate and start an upload. Must be called with a running event loop."""
        self.validate(source, accept)
        task = UploadTask(self._blobs, source, destination, on_completed, user_id=user_id)
        self._tasks = [t for t in self._tasks if not t.done]
        self._tasks.append(task)
        logger.debug(f"Upload started: {destination} ({source.size} bytes)")
        return task.start()

    def cancel_all(self) -> int:
        return sum(1 for task in self.in_flight if task.cancel())

"""
ProjectSync Blob Storage — resumable uploads, download URLs, deletion.

BlobStore is the boundary the upload coordinator and the mutation gateway
talk to. LocalBlobStore keeps blobs on the filesystem:

    {storage.root}/{storage_path}

Uploads are written chunk by chunk and yield to the event loop between
chunks, so a cancelled upload stops at a chunk boundary. Bytes already
written stay on disk as an orphan blob.
"""

from __future__ import annotations

import asyncio
import io
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path, PurePosixPath
from typing import BinaryIO, Callable, List, Optional, Union

from projectsync.engine.errors import NotFoundError, TransportError, ValidationError

logger = logging.getLogger("projectsync.store.blob")

# Called with (bytes_transferred, total_bytes)
ProgressCallback = Callable[[int, int], None]
BlobSource = Union[bytes, BinaryIO]


class BlobStore(ABC):
    """Blob storage client interface."""

    @abstractmethod
    async def upload(
        self,
        path: str,
        source: BlobSource,
        total_bytes: int,
        on_progress: Optional[ProgressCallback] = None,
    ) -> int:
        """Transfer ``source`` to ``path``. Returns the number of bytes written."""

    @abstractmethod
    async def download_url(self, path: str) -> str:
        """Durable public reference for a stored blob."""

    @abstractmethod
    async def delete(self, path: str) -> None:
        """Delete by path. Raises NotFoundError if the blob does not exist."""

    @abstractmethod
    async def list(self, prefix: str) -> List[str]:
        """Storage paths under ``prefix``, sorted."""


def normalize_path(path: str) -> str:
    """Reject absolute paths and parent references; return a clean posix path."""
    pure = PurePosixPath(path.replace("\\", "/"))
    if pure.is_absolute() or ".." in pure.parts or not pure.parts:
        raise ValidationError(f"Invalid storage path: '{path}'", storage_path=path)
    return str(pure)


class LocalBlobStore(BlobStore):
    """
    Filesystem-backed blob store.

    Args:
        root: Directory holding all blobs.
        chunk_size: Bytes written per step (progress granularity).
        public_base_url: When set, download URLs are ``{base}/{path}``;
            otherwise they are ``file://`` URIs.
    """

    def __init__(
        self,
        root: str,
        chunk_size: int = 256 * 1024,
        public_base_url: Optional[str] = None,
    ):
        self._root = Path(root)
        self._chunk_size = chunk_size
        self._public_base_url = public_base_url.rstrip("/") if public_base_url else None

    @property
    def root(self) -> Path:
        return self._root

    def _physical(self, path: str) -> Path:
        return self._root / normalize_path(path)

    async def upload(
        self,
        path: str,
        source: BlobSource,
        total_bytes: int,
        on_progress: Optional[ProgressCallback] = None,
    ) -> int:
        physical = self._physical(path)
        stream = io.BytesIO(source) if isinstance(source, (bytes, bytearray)) else source

        written = 0
        try:
            physical.parent.mkdir(parents=True, exist_ok=True)
            # Exclusive create: a stored blob is never overwritten
            with open(physical, "xb") as f:
                while True:
                    chunk = stream.read(self._chunk_size)
                    if not chunk:
                        break
                    f.write(chunk)
                    written += len(chunk)
                    if on_progress is not None:
                        on_progress(written, total_bytes)
                    # Cancellation point between chunks
                    await asyncio.sleep(0)
        except FileExistsError as e:
            raise TransportError(
                f"Blob '{path}' already exists", backend="blob", storage_path=path,
            ) from e
        except OSError as e:
            raise TransportError(
                f"Upload to '{path}' failed: {e}", backend="blob", storage_path=path,
            ) from e

        logger.info(f"Stored blob: {path} ({written} bytes)")
        return written

    async def download_url(self, path: str) -> str:
        physical = self._physical(path)
        if not physical.is_file():
            raise NotFoundError(f"Blob '{path}' does not exist", storage_path=path)
        if self._public_base_url:
            return f"{self._public_base_url}/{normalize_path(path)}"
        return physical.resolve().as_uri()

    async def delete(self, path: str) -> None:
        physical = self._physical(path)
        if not physical.is_file():
            raise NotFoundError(f"Blob '{path}' does not exist", storage_path=path)
        try:
            physical.unlink()
        except OSError as e:
            raise TransportError(
                f"Delete of '{path}' failed: {e}", backend="blob", storage_path=path,
            ) from e
        logger.info(f"Deleted blob: {path}")

    async def list(self, prefix: str) -> List[str]:
        base = self._root / normalize_path(prefix)
        if not base.is_dir():
            return []
        paths = []
        for dirpath, _, filenames in os.walk(base):
            for name in filenames:
                full = Path(dirpath) / name
                paths.append(full.relative_to(self._root).as_posix())
        return sorted(paths)

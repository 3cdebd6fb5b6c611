"""
ProjectSync Event Logging — structured JSON-lines audit trail.

    {log_dir}/{stream}/{category}/{YYYY-MM-DD}.jsonl

- LogEntry: one event, routed to a stream/category file
- FileLogger: appends entries to the day's file and reads them back
- AsyncLogQueue: producers push without blocking; a daemon thread batches
  entries to disk
- Builders (log_record_operation, log_upload_event, ...) shape the payload
  of each event family

Diagnostics still go through stdlib ``logging``. Entries pushed before
init_logging() are dropped.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from datetime import date, datetime, timezone
from itertools import groupby
from pathlib import Path
from queue import Empty, Full, Queue
from typing import Any, Dict, Iterable, List, Optional, Tuple

logger = logging.getLogger("projectsync.engine.logging")

# stream -> categories it may be written under
LOG_STREAMS: Dict[str, Tuple[str, ...]] = {
    "records": ("execution", "security"),
    "subscriptions": ("execution",),
    "uploads": ("execution",),
    "orphans": ("execution",),
    "provisioning": ("execution",),
    "sessions": ("execution", "security"),
    "system": ("execution",),
}


@dataclass(frozen=True)
class LogEntry:
    stream: str
    category: str
    data: Dict[str, Any]

    @property
    def event(self) -> Optional[str]:
        return self.data.get("event")

    def to_json(self) -> str:
        return json.dumps(self.data, default=str, separators=(",", ":"))


class FileLogger:
    """Appends LogEntry objects to daily JSONL files. Safe to share between threads."""

    def __init__(self, log_dir: str = "logs"):
        self.log_dir = Path(log_dir)
        self._lock = threading.Lock()
        for stream, categories in LOG_STREAMS.items():
            for category in categories:
                (self.log_dir / stream / category).mkdir(parents=True, exist_ok=True)

    def file_for(self, stream: str, category: str, day: Optional[date] = None) -> Path:
        return self.log_dir / stream / category / f"{(day or date.today()).isoformat()}.jsonl"

    def write(self, *entries: LogEntry) -> None:
        def route(entry: LogEntry) -> Tuple[str, str]:
            return entry.stream, entry.category

        with self._lock:
            for (stream, category), group in groupby(sorted(entries, key=route), key=route):
                lines = "".join(f"{entry.to_json()}\n" for entry in group)
                with open(self.file_for(stream, category), "a", encoding="utf-8") as f:
                    f.write(lines)

    def query(
        self,
        stream: str,
        category: str,
        since: Optional[date] = None,
        filters: Optional[Dict[str, Any]] = None,
        limit: int = 500,
    ) -> List[Dict[str, Any]]:
        """
        Entries of one stream/category, oldest first.

        ``since`` skips files of earlier days; ``filters`` keeps entries
        whose top-level keys equal the given values.
        """
        folder = self.log_dir / stream / category
        if not folder.is_dir():
            return []

        found: List[Dict[str, Any]] = []
        for path in sorted(folder.glob("*.jsonl")):
            if since is not None and path.stem < since.isoformat():
                continue
            for data in _read_lines(path):
                if filters and any(data.get(k) != v for k, v in filters.items()):
                    continue
                found.append(data)
                if len(found) >= limit:
                    return found
        return found


def _read_lines(path: Path) -> Iterable[Dict[str, Any]]:
    try:
        with open(path, encoding="utf-8") as f:
            for line in f:
                if not line.strip():
                    continue
                try:
                    yield json.loads(line)
                except json.JSONDecodeError:
                    logger.warning(f"Skipping malformed line in {path}")
    except OSError as e:
        logger.warning(f"Could not read {path}: {e}")


class AsyncLogQueue:
    """
    Bounded in-memory queue drained by a daemon thread.

    The thread writes as soon as ``flush_batch_size`` entries are waiting or
    ``flush_interval_ms`` has passed since the first one arrived.
    """

    def __init__(
        self,
        file_logger: FileLogger,
        flush_interval_ms: int = 100,
        flush_batch_size: int = 50,
        max_queue_size: int = 10000,
    ):
        self.file_logger = file_logger
        self._interval = flush_interval_ms / 1000.0
        self._batch_size = flush_batch_size
        self._queue: "Queue[LogEntry]" = Queue(maxsize=max_queue_size)
        self._stopping = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.dropped_count = 0

    @property
    def pending_count(self) -> int:
        return self._queue.qsize()

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stopping.clear()
        self._thread = threading.Thread(target=self._run, name="projectsync-log-writer", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the writer thread, then write whatever is still queued."""
        self._stopping.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        self._write(self._take(block=False))
        if self.dropped_count:
            logger.warning(f"Log queue stopped; {self.dropped_count} entries were dropped")

    def push(self, entry: LogEntry) -> bool:
        """Enqueue without blocking. False when the queue is full."""
        try:
            self._queue.put_nowait(entry)
        except Full:
            self.dropped_count += 1
            return False
        return True

    def _run(self) -> None:
        while not self._stopping.is_set():
            self._write(self._take(block=True))

    def _take(self, block: bool) -> List[LogEntry]:
        batch: List[LogEntry] = []
        limit = self._batch_size if block else None
        while limit is None or len(batch) < limit:
            try:
                if block:
                    # Wait a full interval for the first entry, then only briefly
                    batch.append(self._queue.get(timeout=self._interval if not batch else 0.01))
                else:
                    batch.append(self._queue.get_nowait())
            except Empty:
                break
        return batch

    def _write(self, batch: List[LogEntry]) -> None:
        if not batch:
            return
        try:
            self.file_logger.write(*batch)
        except OSError as e:
            logger.error(f"Writing {len(batch)} log entries failed: {e}")


# ---------------------------------------------------------------------------
# Entry builders
# ---------------------------------------------------------------------------

def _entry(stream: str, category: str, event: str, level: str, **fields: Any) -> LogEntry:
    """Build an entry; fields left as None are omitted."""
    data: Dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "level": level,
        "event": event,
    }
    data.update((k, v) for k, v in fields.items() if v is not None)
    return LogEntry(stream, category, data)


def log_record_operation(
    operation: str,
    collection: str,
    user_id: Optional[str],
    record_id: Optional[str] = None,
    fields_changed: Optional[List[str]] = None,
    success: bool = True,
    error: Optional[str] = None,
) -> LogEntry:
    """create / update / delete of one record."""
    return _entry(
        "records", "execution", f"record_{operation}", "INFO" if success else "ERROR",
        user_id=user_id, collection=collection, operation=operation, success=success,
        record_id=record_id, fields_changed=sorted(fields_changed) if fields_changed else None,
        error=error,
    )


def log_security_event(
    event: str,
    collection: str,
    record_id: Optional[str],
    user_id: Optional[str],
    owner_id: Optional[str] = None,
    level: str = "WARNING",
) -> LogEntry:
    return _entry(
        "records", "security", event, level,
        user_id=user_id, collection=collection, record_id=record_id, owner_id=owner_id,
    )


def log_subscription_event(
    event: str,
    query: str,
    record_count: Optional[int] = None,
    skipped: Optional[int] = None,
    error: Optional[str] = None,
) -> LogEntry:
    """Live query opened / closed / failed / records_skipped."""
    return _entry(
        "subscriptions", "execution", event, "ERROR" if error else "INFO",
        query=query, record_count=record_count, skipped=skipped or None, error=error,
    )


def log_upload_event(
    event: str,
    storage_path: str,
    user_id: Optional[str] = None,
    total_bytes: Optional[int] = None,
    duration_ms: Optional[float] = None,
    error: Optional[str] = None,
) -> LogEntry:
    return _entry(
        "uploads", "execution", event, "ERROR" if event.endswith("failed") else "INFO",
        user_id=user_id, storage_path=storage_path, total_bytes=total_bytes,
        duration_ms=round(duration_ms, 2) if duration_ms is not None else None, error=error,
    )


def log_orphan_resource(
    kind: str,
    storage_path: str,
    collection: Optional[str] = None,
    record_id: Optional[str] = None,
    reason: Optional[str] = None,
) -> LogEntry:
    """kind is "blob" (no record) or "record" (no blob)."""
    return _entry(
        "orphans", "execution", f"orphan_{kind}", "WARNING",
        storage_path=storage_path, collection=collection, record_id=record_id, reason=reason,
    )


def log_provisioning_event(
    event: str,
    project_id: str,
    folder_id: Optional[str] = None,
    owner_email: Optional[str] = None,
    error: Optional[str] = None,
) -> LogEntry:
    return _entry(
        "provisioning", "execution", event, "ERROR" if error else "INFO",
        project_id=project_id, folder_id=folder_id, owner_email=owner_email, error=error,
    )


def log_session_event(
    event: str,
    user_id: Optional[str] = None,
    provider: Optional[str] = None,
    success: bool = True,
    reason: Optional[str] = None,
) -> LogEntry:
    """Sign-in / sign-up / sign-out. Failures land in the security category."""
    return _entry(
        "sessions", "execution" if success else "security", event, "INFO" if success else "WARNING",
        user_id=user_id, success=success, provider=provider, reason=reason,
    )


def log_system_event(event: str, level: str = "INFO", details: Optional[Dict[str, Any]] = None) -> LogEntry:
    return _entry("system", "execution", event, level, details=details or None)


# ---------------------------------------------------------------------------
# Process-wide queue
# ---------------------------------------------------------------------------

_global_queue: Optional[AsyncLogQueue] = None


def init_logging(
    log_dir: str = "logs",
    flush_interval_ms: int = 100,
    flush_batch_size: int = 50,
    max_queue_size: int = 10000,
) -> AsyncLogQueue:
    """Start the process-wide queue, replacing (and flushing) any previous one."""
    global _global_queue
    if _global_queue is not None:
        _global_queue.stop()
    _global_queue = AsyncLogQueue(
        FileLogger(log_dir),
        flush_interval_ms=flush_interval_ms,
        flush_batch_size=flush_batch_size,
        max_queue_size=max_queue_size,
    )
    _global_queue.start()
    return _global_queue


def get_log_queue() -> Optional[AsyncLogQueue]:
    return _global_queue


def log(entry: LogEntry) -> bool:
    """Hand an entry to the process-wide queue. False when dropped."""
    if _global_queue is None:
        logger.debug(f"Log queue not initialized; {entry.event} entry dropped")
        return False
    return _global_queue.push(entry)


def shutdown_logging() -> None:
    global _global_queue
    if _global_queue is not None:
        _global_queue.stop()
        _global_queue = None

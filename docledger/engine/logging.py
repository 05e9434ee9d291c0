"""
DocLedger Logging — Structured JSON-lines audit logging with an async queue.

Implements:
- FileLogger: per-object-type, per-category log files (daily files)
- AsyncLogQueue: in-memory queue with background flush
- Log entry builders for document lifecycle, partial failures and system events
- configure_logging(): stdlib root logger setup

Layout:
    {log_dir}/{object_type}/{category}/{YYYY-MM-DD}.jsonl

ERROR-level entries are routed to the "errors" category so reconciliation
work never has to grep through the combined execution stream.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections import defaultdict
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from queue import Empty, Full, Queue
from typing import Any, Dict, List, Optional

logger = logging.getLogger("docledger.engine.logging")

# Valid object types and their permitted categories
OBJECT_TYPE_CATEGORIES = {
    "documents": ["execution", "errors"],
    "storage": ["execution", "errors"],
    "system": ["execution", "errors"],
}

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Configure the stdlib root logger for console output."""
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)


class LogEntry:
    """A structured log entry destined for a specific file."""

    __slots__ = ("object_type", "category", "data")

    def __init__(self, object_type: str, category: str, data: Dict[str, Any]):
        self.object_type = object_type
        self.category = category
        self.data = data

    def to_json(self) -> str:
        return json.dumps(self.data, default=str, separators=(",", ":"))


class FileLogger:
    """
    Writes structured JSON log entries to per-object-type, per-category files.

    Thread-safe — uses a lock per file path.
    """

    def __init__(self, log_dir: str = "logs"):
        self._log_dir = Path(log_dir)
        self._file_locks: Dict[str, threading.Lock] = defaultdict(threading.Lock)
        self._ensure_directories()

    def _ensure_directories(self) -> None:
        for obj_type, categories in OBJECT_TYPE_CATEGORIES.items():
            for cat in categories:
                (self._log_dir / obj_type / cat).mkdir(parents=True, exist_ok=True)

    def write(self, entry: LogEntry) -> None:
        """Write a single log entry to the appropriate file."""
        self.write_batch([entry])

    def write_batch(self, entries: List[LogEntry]) -> None:
        """Write a batch of entries, grouped by target file."""
        grouped: Dict[str, List[LogEntry]] = defaultdict(list)
        for entry in entries:
            file_path = str(self._resolve_path(entry.object_type, entry.category))
            grouped[file_path].append(entry)

        for file_path, batch in grouped.items():
            with self._file_locks[file_path]:
                with open(file_path, "a", encoding="utf-8") as f:
                    for entry in batch:
                        f.write(entry.to_json())
                        f.write("\n")

    def _resolve_path(self, object_type: str, category: str) -> Path:
        today = date.today().isoformat()
        directory = self._log_dir / object_type / category
        directory.mkdir(parents=True, exist_ok=True)
        return directory / f"{today}.jsonl"

    @property
    def log_dir(self) -> Path:
        return self._log_dir

    def query(
        self,
        object_type: str,
        category: str,
        *,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        filters: Optional[Dict[str, Any]] = None,
        limit: int = 500,
    ) -> List[Dict[str, Any]]:
        """
        Read entries back, newest first.

        Args:
            filters: Only entries whose top-level keys equal ALL given values.
            start_date: Defaults to 7 days before end_date.
            end_date: Defaults to today.
        """
        if end_date is None:
            end_date = date.today()
        if start_date is None:
            start_date = end_date - timedelta(days=7)

        log_base = self._log_dir / object_type / category
        if not log_base.exists():
            return []

        results: List[Dict[str, Any]] = []
        current = end_date
        while current >= start_date and len(results) < limit:
            file_path = log_base / f"{current.isoformat()}.jsonl"
            if file_path.exists():
                # lines are chronological; newest-first within a day
                day = self._read_jsonl(file_path, filters)
                day.reverse()
                results.extend(day[: limit - len(results)])
            current -= timedelta(days=1)
        return results

    @staticmethod
    def _read_jsonl(path: Path, filters: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
        entries: List[Dict[str, Any]] = []
        try:
            with open(path, "r", encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        data = json.loads(line)
                    except json.JSONDecodeError:
                        continue
                    if filters and not all(data.get(k) == v for k, v in filters.items()):
                        continue
                    entries.append(data)
        except OSError as exc:
            logger.warning("Could not read log file %s: %s", path, exc)
        return entries


class AsyncLogQueue:
    """
    In-memory queue with a background flush thread.

    Entries are pushed non-blocking. The flush thread writes to the FileLogger
    every flush_interval_ms or once flush_batch_size entries accumulate.
    """

    def __init__(
        self,
        file_logger: FileLogger,
        flush_interval_ms: int = 100,
        flush_batch_size: int = 50,
        max_queue_size: int = 10000,
    ):
        self._logger = file_logger
        self._flush_interval = flush_interval_ms / 1000.0
        self._flush_batch_size = flush_batch_size
        self._queue: Queue[LogEntry] = Queue(maxsize=max_queue_size)
        self._running = False
        self._flush_thread: Optional[threading.Thread] = None
        self._dropped_count = 0

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._flush_thread = threading.Thread(
            target=self._flush_loop,
            name="docledger-log-flush",
            daemon=True,
        )
        self._flush_thread.start()
        logger.info("Async log queue started")

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the flush thread and drain remaining entries."""
        self._running = False
        if self._flush_thread and self._flush_thread.is_alive():
            self._flush_thread.join(timeout=timeout)
        self._drain()
        logger.info(f"Async log queue stopped (dropped: {self._dropped_count})")

    def push(self, entry: LogEntry) -> bool:
        """Queue an entry. Returns False if it was dropped (queue full)."""
        try:
            self._queue.put_nowait(entry)
            return True
        except Full:
            self._dropped_count += 1
            return False

    def _flush_loop(self) -> None:
        while self._running:
            batch = self._collect_batch()
            if batch:
                try:
                    self._logger.write_batch(batch)
                except OSError as e:
                    logger.error(f"Log flush error: {e}")
            else:
                time.sleep(self._flush_interval)

    def _collect_batch(self) -> List[LogEntry]:
        batch: List[LogEntry] = []
        deadline = time.monotonic() + self._flush_interval

        while len(batch) < self._flush_batch_size:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            try:
                batch.append(self._queue.get(timeout=min(remaining, 0.01)))
            except Empty:
                if batch:
                    break
        return batch

    def _drain(self) -> None:
        batch: List[LogEntry] = []
        while True:
            try:
                batch.append(self._queue.get_nowait())
            except Empty:
                break
        if batch:
            try:
                self._logger.write_batch(batch)
            except OSError as e:
                logger.error(f"Log drain error: {e}")

    @property
    def pending_count(self) -> int:
        return self._queue.qsize()

    @property
    def dropped_count(self) -> int:
        return self._dropped_count


# ---------------------------------------------------------------------------
# Log Entry Builders
# ---------------------------------------------------------------------------

def _base_entry(event: str, level: str, **extra: Any) -> Dict[str, Any]:
    entry: Dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "level": level,
        "event": event,
        "service": "docledger",
    }
    entry.update({k: v for k, v in extra.items() if v is not None})
    return entry


def _category(level: str) -> str:
    return "errors" if level in ("ERROR", "CRITICAL") else "execution"


def log_document_event(
    event: str,
    file_id: str,
    document_id: Optional[int] = None,
    duration_ms: Optional[float] = None,
    level: str = "INFO",
    **details: Any,
) -> LogEntry:
    """Build an entry for a lifecycle operation (ingested, duplicate, updated...)."""
    data = _base_entry(
        event,
        level,
        file_id=file_id,
        document_id=document_id,
        duration_ms=round(duration_ms, 2) if duration_ms is not None else None,
    )
    if details:
        data["details"] = details
    return LogEntry("documents", _category(level), data)


def log_partial_failure(
    operation: str,
    file_id: Optional[str],
    completed_steps: List[str],
    failed_step: str,
    error: str,
    compensated: Optional[List[str]] = None,
    compensation_failures: Optional[List[str]] = None,
    **details: Any,
) -> LogEntry:
    """Build the reconciliation record for a multi-step operation that stopped half-way."""
    data = _base_entry(
        "partial_failure",
        "ERROR",
        operation=operation,
        file_id=file_id,
        completed_steps=completed_steps,
        failed_step=failed_step,
        error=error,
        compensated=compensated or [],
        compensation_failures=compensation_failures or [],
    )
    if details:
        data["details"] = details
    return LogEntry("documents", "errors", data)


def log_audit_failure(file_id: str, event_type: str, error: str) -> LogEntry:
    """Build an entry for a best-effort audit event that could not be recorded."""
    data = _base_entry(
        "audit_event_dropped",
        "ERROR",
        file_id=file_id,
        event_type=event_type,
        error=error,
    )
    return LogEntry("documents", "errors", data)


def log_storage_event(event: str, storage_path: str, level: str = "INFO", **details: Any) -> LogEntry:
    """Build a blob store entry (written, deleted, cleanup failures)."""
    data = _base_entry(event, level, storage_path=storage_path)
    if details:
        data["details"] = details
    return LogEntry("storage", _category(level), data)


def log_system_event(
    event: str,
    level: str = "INFO",
    details: Optional[Dict[str, Any]] = None,
) -> LogEntry:
    """Build a system event entry (startup, shutdown, config)."""
    data = _base_entry(event, level)
    if details:
        data["details"] = details
    return LogEntry("system", _category(level), data)


# ---------------------------------------------------------------------------
# Convenience: Global Log Queue
# ---------------------------------------------------------------------------

_global_queue: Optional[AsyncLogQueue] = None


def init_logging(
    log_dir: str = "logs",
    flush_interval_ms: int = 100,
    flush_batch_size: int = 50,
    max_queue_size: int = 10000,
) -> AsyncLogQueue:
    """Initialize and start the global async log queue."""
    global _global_queue
    if _global_queue is not None:
        _global_queue.stop()
    file_logger = FileLogger(log_dir=log_dir)
    _global_queue = AsyncLogQueue(
        file_logger=file_logger,
        flush_interval_ms=flush_interval_ms,
        flush_batch_size=flush_batch_size,
        max_queue_size=max_queue_size,
    )
    _global_queue.start()
    return _global_queue


def get_log_queue() -> Optional[AsyncLogQueue]:
    return _global_queue


def log(entry: LogEntry) -> bool:
    """Push an entry to the global queue. Non-blocking; False if not queued."""
    if _global_queue is None:
        logger.debug(f"Log queue not initialized, entry dropped: {entry.data.get('event')}")
        return False
    return _global_queue.push(entry)


def shutdown_logging() -> None:
    """Flush and stop the global log queue."""
    global _global_queue
    if _global_queue:
        _global_queue.stop()
        _global_queue = None

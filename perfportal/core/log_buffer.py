"""Recent log records and JTL parse events, kept in memory for diagnostics."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Generic, TypeVar

_MESSAGE_LIMIT = 2000

T = TypeVar("T")


def _shorten(message: str, limit: int = _MESSAGE_LIMIT) -> str:
    return message if len(message) <= limit else message[: limit - 1] + "…"


@dataclass(frozen=True)
class LogEntry:
    timestamp: datetime
    level: str
    levelno: int
    logger: str
    message: str
    test_run_id: str | None = None
    exception: str | None = None


@dataclass(frozen=True)
class ParseEventEntry:
    timestamp: datetime
    test_run_id: str | None
    file_name: str | None
    status: str
    rows_parsed: int
    rows_skipped: int
    duration_ms: float
    error: str | None = None


class _Ring(Generic[T]):
    def __init__(self, capacity: int) -> None:
        self.capacity = max(1, capacity)
        self._items: deque[T] = deque(maxlen=self.capacity)
        self._lock = Lock()

    def push(self, item: T) -> None:
        with self._lock:
            self._items.append(item)

    def items(self) -> list[T]:
        with self._lock:
            return list(self._items)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()


def _tail(items: list[T], limit: int | None) -> list[T]:
    if limit is None or limit >= len(items):
        return items
    return items[len(items) - limit :]


class _RingHandler(logging.Handler):
    """Copies every record into a ring; a `test_run_id` passed via `extra` is kept."""

    def __init__(self, ring: _Ring[LogEntry]) -> None:
        super().__init__(level=logging.NOTSET)
        self._ring = ring

    def emit(self, record: logging.LogRecord) -> None:
        try:
            test_run_id = getattr(record, "test_run_id", None)
            self._ring.push(
                LogEntry(
                    timestamp=datetime.fromtimestamp(record.created, tz=timezone.utc),
                    level=record.levelname,
                    levelno=record.levelno,
                    logger=record.name,
                    message=_shorten(record.getMessage()),
                    test_run_id=str(test_run_id) if test_run_id is not None else None,
                    exception=self.formatException(record.exc_info) if record.exc_info else None,
                )
            )
        except Exception:  # pragma: no cover - logging must not raise
            self.handleError(record)


class DiagnosticsBuffer:
    def __init__(self) -> None:
        self._logs: _Ring[LogEntry] = _Ring(500)
        self._events: _Ring[ParseEventEntry] = _Ring(200)
        self._handlers: list[logging.Handler] = []
        self._lock = Lock()

    def install(
        self,
        *,
        max_logs: int,
        max_parse_events: int,
        file_path: Path | None,
        level: int,
    ) -> None:
        """Attach the handlers to the root logger once; later calls are no-ops."""

        with self._lock:
            if self._handlers:
                return
            self._logs = _Ring(max_logs)
            self._events = _Ring(max_parse_events)

            root = logging.getLogger()
            if root.level == logging.NOTSET or root.level > level:
                root.setLevel(level)

            handlers: list[logging.Handler] = [_RingHandler(self._logs)]
            if file_path is not None:
                file_path.parent.mkdir(parents=True, exist_ok=True)
                file_handler = logging.FileHandler(file_path, encoding="utf-8")
                file_handler.setLevel(level)
                file_handler.setFormatter(
                    logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")
                )
                handlers.append(file_handler)
            for handler in handlers:
                root.addHandler(handler)
            self._handlers = handlers

    def add_parse_event(self, event: ParseEventEntry) -> None:
        self._events.push(event)

    def logs(
        self, *, limit: int | None = None, min_level: int = logging.NOTSET, test_run_id: str | None = None
    ) -> list[LogEntry]:
        entries = [
            entry
            for entry in self._logs.items()
            if entry.levelno >= min_level and (test_run_id is None or entry.test_run_id == test_run_id)
        ]
        return _tail(entries, limit)

    def parse_events(self, *, limit: int | None = None, status: str | None = None) -> list[ParseEventEntry]:
        events = self._events.items()
        if status is not None:
            events = [event for event in events if event.status == status]
        return _tail(events, limit)

    def limits(self) -> dict[str, int]:
        return {"logs": self._logs.capacity, "parse_events": self._events.capacity}

    def clear(self) -> None:
        self._logs.clear()
        self._events.clear()


_BUFFER = DiagnosticsBuffer()


def install_log_buffer(
    *,
    max_logs: int = 500,
    max_parse_events: int = 200,
    file_path: Path | None = None,
    level: int = logging.INFO,
) -> None:
    _BUFFER.install(
        max_logs=max_logs,
        max_parse_events=max_parse_events,
        file_path=file_path,
        level=level,
    )


def record_parse_event(
    *,
    test_run_id: str | None,
    file_name: str | None,
    status: str,
    rows_parsed: int,
    rows_skipped: int,
    duration_ms: float,
    error: str | None = None,
) -> None:
    """Remember the outcome of one parse attempt, oldest events dropping off first."""

    _BUFFER.add_parse_event(
        ParseEventEntry(
            timestamp=datetime.now(timezone.utc),
            test_run_id=test_run_id,
            file_name=file_name,
            status=status,
            rows_parsed=rows_parsed,
            rows_skipped=rows_skipped,
            duration_ms=round(duration_ms, 2),
            error=_shorten(error) if error else None,
        )
    )


def get_log_entries(
    limit: int | None = None, *, min_level: int = logging.NOTSET, test_run_id: str | None = None
) -> list[LogEntry]:
    return _BUFFER.logs(limit=limit, min_level=min_level, test_run_id=test_run_id)


def get_parse_events(limit: int | None = None, *, status: str | None = None) -> list[ParseEventEntry]:
    return _BUFFER.parse_events(limit=limit, status=status)


def buffer_limits() -> dict[str, int]:
    return _BUFFER.limits()


def reset_buffers() -> None:
    """TEST-ONLY: clear in-memory buffers."""

    _BUFFER.clear()


__all__ = [
    "LogEntry",
    "ParseEventEntry",
    "buffer_limits",
    "get_log_entries",
    "get_parse_events",
    "install_log_buffer",
    "record_parse_event",
    "reset_buffers",
]

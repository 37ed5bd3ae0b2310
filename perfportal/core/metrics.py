from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Dict, List


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass
class ProcessingMetricCounter:
    capability: str
    uploads: int = 0
    completed: int = 0
    failed: int = 0
    rejected: int = 0
    rows_parsed: int = 0
    rows_skipped: int = 0
    last_event_at: datetime = field(default_factory=_utcnow)
    last_failure_reason: str | None = None
    last_failure_at: datetime | None = None

    def bump(
        self,
        *,
        uploads: int = 0,
        completed: int = 0,
        failed: int = 0,
        rejected: int = 0,
        rows_parsed: int = 0,
        rows_skipped: int = 0,
        failure_reason: str | None = None,
    ) -> None:
        self.uploads += uploads
        self.completed += completed
        self.failed += failed
        self.rejected += rejected
        self.rows_parsed += rows_parsed
        self.rows_skipped += rows_skipped
        self.last_event_at = _utcnow()
        if failure_reason:
            self.last_failure_reason = failure_reason
            self.last_failure_at = _utcnow()


@dataclass(frozen=True)
class ProcessingFailureEvent:
    timestamp: datetime
    capability: str
    error_type: str
    reason: str
    test_run_id: str | None = None
    rows_processed: int = 0


class ProcessingMetrics:
    """In-memory counters for JTL uploads and test-run processing."""

    def __init__(self) -> None:
        self._counters: Dict[str, ProcessingMetricCounter] = {}
        self._lock = Lock()
        self._recent_failures: deque[ProcessingFailureEvent] = deque(maxlen=50)

    def _counter(self, capability: str | None) -> ProcessingMetricCounter:
        key = capability or "unknown"
        counter = self._counters.get(key)
        if counter is None:
            counter = ProcessingMetricCounter(capability=key)
            self._counters[key] = counter
        return counter

    def record_upload(self, *, capability: str | None) -> None:
        with self._lock:
            self._counter(capability).bump(uploads=1)

    def record_completed(
        self, *, capability: str | None, rows_parsed: int, rows_skipped: int
    ) -> None:
        with self._lock:
            self._counter(capability).bump(
                completed=1, rows_parsed=rows_parsed, rows_skipped=rows_skipped
            )

    def record_failure(
        self,
        *,
        capability: str | None,
        error_type: str,
        reason: str,
        test_run_id: str | None = None,
        rows_processed: int = 0,
        rejected: bool = False,
    ) -> None:
        """Count a failed attempt; `rejected` marks uploads refused before storage."""

        with self._lock:
            counter = self._counter(capability)
            counter.bump(
                failed=0 if rejected else 1,
                rejected=1 if rejected else 0,
                rows_parsed=rows_processed,
                failure_reason=reason,
            )
            self._recent_failures.append(
                ProcessingFailureEvent(
                    timestamp=_utcnow(),
                    capability=counter.capability,
                    error_type=error_type,
                    reason=reason,
                    test_run_id=test_run_id,
                    rows_processed=rows_processed,
                )
            )

    def snapshot(self) -> list[ProcessingMetricCounter]:
        with self._lock:
            return sorted(self._counters.values(), key=lambda c: c.last_event_at, reverse=True)

    def recent_failures(self, limit: int = 10) -> List[ProcessingFailureEvent]:
        with self._lock:
            events = list(self._recent_failures)
        if not events:
            return []
        return list(reversed(events[-limit:]))

    def aggregate_totals(self) -> dict[str, int]:
        with self._lock:
            counters = list(self._counters.values())
        totals = {
            "uploads": 0,
            "completed": 0,
            "failed": 0,
            "rejected": 0,
            "rows_parsed": 0,
            "rows_skipped": 0,
        }
        for counter in counters:
            for key in totals:
                totals[key] += getattr(counter, key)
        return totals

    def reset(self) -> None:
        """TEST-ONLY: drop all counters and failure events."""

        with self._lock:
            self._counters.clear()
            self._recent_failures.clear()


metrics = ProcessingMetrics()

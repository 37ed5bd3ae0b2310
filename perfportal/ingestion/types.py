from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional


@dataclass(frozen=True)
class TransactionRecord:
    """One normalized sample from a JTL file; never persisted individually."""

    label: str
    timestamp: datetime
    response_time_ms: int
    success: bool
    status_code: Optional[int] = None
    bytes_sent: Optional[int] = None
    bytes_received: Optional[int] = None
    latency_ms: Optional[int] = None
    connect_time_ms: Optional[int] = None
    response_message: Optional[str] = None
    thread_name: Optional[str] = None


@dataclass
class ExtractionStats:
    parsed_rows: int = 0
    skipped_rows: int = 0
    warnings: List[str] = field(default_factory=list)
    max_warnings: int = 20

    def record_skip(self, row_number: int, reason: str) -> None:
        self.skipped_rows += 1
        if len(self.warnings) < self.max_warnings:
            self.warnings.append(f"row {row_number}: {reason}")


class RowRejected(ValueError):
    """A single row could not be normalized; the row is skipped, parsing continues."""

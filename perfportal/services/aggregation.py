"""Fold a stream of JTL records into summary statistics.

Response times and latencies are kept once, per label; overall order
statistics are read from a k-way merge of the sorted per-label samples
instead of a second copy.
Percentiles use the nearest-rank method, so every reported percentile is a
response time that was actually observed.
"""

from __future__ import annotations

import heapq
import logging
import math
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Iterator, Optional, Sequence

from pydantic import BaseModel, ConfigDict

from perfportal.ingestion.types import TransactionRecord

logger = logging.getLogger(__name__)

REQUIRED_PERCENTILES = (90.0, 95.0, 99.0)


def percentile_key(percentile: float) -> str:
    return f"p{percentile:g}"


def nearest_rank_index(percentile: float, count: int) -> int:
    """Zero-based index of the nearest-rank percentile, clamped to the sample."""

    if count <= 0:
        raise ValueError("nearest rank is undefined for an empty sample")
    index = math.ceil(percentile * count / 100.0) - 1
    return max(0, min(index, count - 1))


def nearest_rank(sorted_values: Sequence[int], percentile: float) -> float:
    if not sorted_values:
        return 0.0
    return float(sorted_values[nearest_rank_index(percentile, len(sorted_values))])


def _order_statistics(
    sorted_values: Iterator[int], count: int, percentiles: Sequence[float]
) -> dict[float, float]:
    """Pick several nearest-rank values from one ascending pass over the data."""

    if count == 0:
        return {p: 0.0 for p in percentiles}
    wanted: dict[int, list[float]] = {}
    for p in percentiles:
        wanted.setdefault(nearest_rank_index(p, count), []).append(p)

    found: dict[float, float] = {}
    last_index = max(wanted)
    for index, value in enumerate(sorted_values):
        if index in wanted:
            for p in wanted[index]:
                found[p] = float(value)
        if index >= last_index:
            break
    return found


@dataclass(frozen=True)
class AggregationConfig:
    percentiles: tuple[float, ...] = (50.0, 90.0, 95.0, 99.0)

    def __post_init__(self) -> None:
        missing = set(REQUIRED_PERCENTILES) - {float(p) for p in self.percentiles}
        if missing:
            raise ValueError(f"percentiles must include 90, 95 and 99 (missing {sorted(missing)})")

    @classmethod
    def from_settings(cls, settings) -> "AggregationConfig":
        return cls(percentiles=tuple(settings.percentiles))


class AggregateMetrics(BaseModel):
    """Summary statistics for a whole test run or one label within it."""

    model_config = ConfigDict(frozen=True)

    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    avg_response_time_ms: float = 0.0
    min_response_time_ms: float = 0.0
    max_response_time_ms: float = 0.0
    median_response_time_ms: float = 0.0
    p90: float = 0.0
    p95: float = 0.0
    p99: float = 0.0
    percentiles: dict[str, float] = {}
    throughput: float = 0.0
    error_rate: float = 0.0
    duration_seconds: float = 0.0
    avg_latency_ms: float = 0.0
    p95_latency_ms: float = 0.0
    avg_connect_time_ms: float = 0.0
    total_bytes_sent: int = 0
    total_bytes_received: int = 0
    received_kb_per_sec: float = 0.0
    sent_kb_per_sec: float = 0.0
    first_timestamp: Optional[datetime] = None
    last_timestamp: Optional[datetime] = None
    status_codes: dict[str, int] = {}


class AggregationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    overall: AggregateMetrics
    by_label: dict[str, AggregateMetrics] = {}


@dataclass
class _Accumulator:
    count: int = 0
    successes: int = 0
    failures: int = 0
    response_time_sum: int = 0
    min_response_time: Optional[int] = None
    max_response_time: Optional[int] = None
    first_timestamp: Optional[datetime] = None
    last_timestamp: Optional[datetime] = None
    latency_sum: int = 0
    latency_count: int = 0
    connect_sum: int = 0
    connect_count: int = 0
    bytes_sent: int = 0
    bytes_received: int = 0
    samples: list[int] = field(default_factory=list)
    latencies: list[int] = field(default_factory=list)

    def add(self, record: TransactionRecord) -> None:
        elapsed = record.response_time_ms
        self.count += 1
        if record.success:
            self.successes += 1
        else:
            self.failures += 1
        self.response_time_sum += elapsed
        if self.min_response_time is None or elapsed < self.min_response_time:
            self.min_response_time = elapsed
        if self.max_response_time is None or elapsed > self.max_response_time:
            self.max_response_time = elapsed
        if self.first_timestamp is None or record.timestamp < self.first_timestamp:
            self.first_timestamp = record.timestamp
        if self.last_timestamp is None or record.timestamp > self.last_timestamp:
            self.last_timestamp = record.timestamp
        if record.latency_ms is not None:
            self.latency_sum += record.latency_ms
            self.latency_count += 1
            self.latencies.append(record.latency_ms)
        if record.connect_time_ms is not None:
            self.connect_sum += record.connect_time_ms
            self.connect_count += 1
        if record.bytes_sent is not None:
            self.bytes_sent += record.bytes_sent
        if record.bytes_received is not None:
            self.bytes_received += record.bytes_received
        self.samples.append(elapsed)

    def merge(self, other: "_Accumulator") -> None:
        """Fold counters from `other` into this one; samples are not copied."""

        self.count += other.count
        self.successes += other.successes
        self.failures += other.failures
        self.response_time_sum += other.response_time_sum
        for attr, pick in (
            ("min_response_time", min),
            ("max_response_time", max),
            ("first_timestamp", min),
            ("last_timestamp", max),
        ):
            mine, theirs = getattr(self, attr), getattr(other, attr)
            if theirs is None:
                continue
            setattr(self, attr, theirs if mine is None else pick(mine, theirs))
        self.latency_sum += other.latency_sum
        self.latency_count += other.latency_count
        self.connect_sum += other.connect_sum
        self.connect_count += other.connect_count
        self.bytes_sent += other.bytes_sent
        self.bytes_received += other.bytes_received

    def to_metrics(
        self,
        order_stats: dict[float, float],
        *,
        p95_latency: float = 0.0,
        status_codes: Optional[dict[str, int]] = None,
    ) -> AggregateMetrics:
        if self.count == 0:
            return AggregateMetrics(
                percentiles={percentile_key(p): 0.0 for p in order_stats},
                status_codes=status_codes or {},
            )

        duration = 0.0
        if self.first_timestamp is not None and self.last_timestamp is not None:
            duration = (self.last_timestamp - self.first_timestamp).total_seconds()
        # A zero-length window (single record or shared timestamp) counts as one second.
        effective_duration = duration if duration > 0 else 1.0

        return AggregateMetrics(
            total_requests=self.count,
            successful_requests=self.successes,
            failed_requests=self.failures,
            avg_response_time_ms=self.response_time_sum / self.count,
            min_response_time_ms=float(self.min_response_time or 0),
            max_response_time_ms=float(self.max_response_time or 0),
            median_response_time_ms=order_stats.get(50.0, 0.0),
            p90=order_stats[90.0],
            p95=order_stats[95.0],
            p99=order_stats[99.0],
            percentiles={percentile_key(p): value for p, value in sorted(order_stats.items())},
            throughput=self.count / effective_duration,
            error_rate=self.failures / self.count,
            duration_seconds=duration,
            avg_latency_ms=self.latency_sum / self.latency_count if self.latency_count else 0.0,
            p95_latency_ms=p95_latency,
            avg_connect_time_ms=self.connect_sum / self.connect_count if self.connect_count else 0.0,
            total_bytes_sent=self.bytes_sent,
            total_bytes_received=self.bytes_received,
            received_kb_per_sec=self.bytes_received / 1024.0 / effective_duration,
            sent_kb_per_sec=self.bytes_sent / 1024.0 / effective_duration,
            first_timestamp=self.first_timestamp,
            last_timestamp=self.last_timestamp,
            status_codes=status_codes or {},
        )


class MetricsAggregator:
    """Running accumulator for one parse pass; not shared between uploads."""

    def __init__(self, config: Optional[AggregationConfig] = None) -> None:
        self.config = config or AggregationConfig()
        self._labels: dict[str, _Accumulator] = {}
        self._status_codes: Counter[str] = Counter()

    def add(self, record: TransactionRecord) -> None:
        accumulator = self._labels.get(record.label)
        if accumulator is None:
            accumulator = _Accumulator()
            self._labels[record.label] = accumulator
        accumulator.add(record)
        code = str(record.status_code) if record.status_code is not None else "unknown"
        self._status_codes[code] += 1

    def consume(self, records: Iterable[TransactionRecord]) -> "MetricsAggregator":
        for record in records:
            self.add(record)
        return self

    def result(self) -> AggregationResult:
        percentiles = self.config.percentiles
        overall = _Accumulator()
        by_label: dict[str, AggregateMetrics] = {}

        for label, accumulator in self._labels.items():
            accumulator.samples.sort()
            accumulator.latencies.sort()
            stats = {p: nearest_rank(accumulator.samples, p) for p in percentiles}
            by_label[label] = accumulator.to_metrics(
                stats, p95_latency=nearest_rank(accumulator.latencies, 95.0)
            )
            overall.merge(accumulator)

        merged = heapq.merge(*(acc.samples for acc in self._labels.values()))
        overall_stats = _order_statistics(merged, overall.count, percentiles)
        merged_latencies = heapq.merge(*(acc.latencies for acc in self._labels.values()))
        latency_stats = _order_statistics(merged_latencies, overall.latency_count, (95.0,))
        overall_metrics = overall.to_metrics(
            overall_stats,
            p95_latency=latency_stats[95.0],
            status_codes=dict(sorted(self._status_codes.items())),
        )
        logger.debug(
            "Aggregated %d requests across %d labels", overall_metrics.total_requests, len(by_label)
        )
        return AggregationResult(overall=overall_metrics, by_label=by_label)


def aggregate(
    records: Iterable[TransactionRecord],
    config: Optional[AggregationConfig] = None,
) -> AggregationResult:
    """Consume `records` and return overall and per-label metrics."""

    return MetricsAggregator(config).consume(records).result()


__all__ = [
    "AggregateMetrics",
    "AggregationConfig",
    "AggregationResult",
    "MetricsAggregator",
    "aggregate",
    "nearest_rank",
    "nearest_rank_index",
    "percentile_key",
]

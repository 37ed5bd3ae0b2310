from datetime import datetime, timedelta

import pytest
from pydantic import ValidationError

from perfportal.ingestion import RecordExtractor
from perfportal.ingestion.types import TransactionRecord
from perfportal.services.aggregation import (
    AggregationConfig,
    MetricsAggregator,
    aggregate,
    nearest_rank,
)

BASE = datetime(2024, 1, 1, 12, 0, 0)


def _record(label="A", elapsed=100, offset_ms=0, success=True, **extra) -> TransactionRecord:
    return TransactionRecord(
        label=label,
        timestamp=BASE + timedelta(milliseconds=offset_ms),
        response_time_ms=elapsed,
        success=success,
        **extra,
    )


def test_nearest_rank_uses_observed_values():
    values = [15, 20, 35, 40, 50]

    assert nearest_rank(values, 5) == 15
    assert nearest_rank(values, 30) == 20
    assert nearest_rank(values, 40) == 20
    assert nearest_rank(values, 50) == 35
    assert nearest_rank(values, 100) == 50
    assert nearest_rank([], 90) == 0.0


def test_sample_file_overall_and_label_metrics(write_jtl, make_csv):
    result = aggregate(RecordExtractor(write_jtl(make_csv())))
    overall = result.overall

    assert overall.total_requests == 4
    assert overall.successful_requests == 3
    assert overall.failed_requests == 1
    assert overall.avg_response_time_ms == 250
    assert overall.min_response_time_ms == 100
    assert overall.max_response_time_ms == 400
    assert overall.median_response_time_ms == 200
    assert overall.p90 == overall.p95 == overall.p99 == 400
    assert overall.percentiles == {"p50": 200, "p90": 400, "p95": 400, "p99": 400}
    assert overall.duration_seconds == 2.0
    assert overall.throughput == 2.0
    assert overall.error_rate == 0.25
    assert overall.total_bytes_received == 3072
    assert overall.total_bytes_sent == 600
    assert overall.received_kb_per_sec == pytest.approx(1.5)
    assert overall.avg_latency_ms == 100
    assert overall.p95_latency_ms == 150
    assert overall.avg_connect_time_ms == pytest.approx(35 / 3)
    assert overall.status_codes == {"200": 3, "500": 1}
    assert overall.first_timestamp == datetime(2023, 11, 14, 22, 13, 20)

    assert list(result.by_label) == ["Login", "Search"]
    login = result.by_label["Login"]
    assert login.total_requests == 2
    assert login.avg_response_time_ms == 200
    assert login.duration_seconds == 0.5
    assert login.throughput == 4.0
    assert login.p95_latency_ms == 150
    assert result.by_label["Search"].p95_latency_ms == 120
    assert login.status_codes == {}
    assert result.by_label["Search"].error_rate == 0.5


def test_degenerate_distribution():
    records = [_record(elapsed=500, offset_ms=i * 100) for i in range(100)]
    overall = aggregate(records).overall

    assert overall.p90 == overall.p95 == overall.p99 == 500
    assert overall.avg_response_time_ms == 500
    assert overall.min_response_time_ms == overall.max_response_time_ms == 500


def test_zero_records_give_zero_metrics():
    result = aggregate([])
    overall = result.overall

    assert overall.total_requests == 0
    assert overall.error_rate == 0
    assert overall.throughput == 0
    assert overall.p90 == overall.p95 == overall.p99 == 0
    assert overall.first_timestamp is None
    assert overall.last_timestamp is None
    assert result.by_label == {}


def test_zero_duration_throughput_equals_total():
    records = [_record(elapsed=10 * i, bytes_received=2048) for i in range(1, 6)]
    overall = aggregate(records).overall

    assert overall.duration_seconds == 0.0
    assert overall.throughput == 5
    assert overall.received_kb_per_sec == 10.0


def test_invariants_hold_for_mixed_input():
    records = [
        _record(label=f"L{i % 4}", elapsed=(i * 37) % 1000, offset_ms=i * 13, success=i % 7 != 0)
        for i in range(1, 500)
    ]
    result = aggregate(records)

    for metrics in [result.overall, *result.by_label.values()]:
        assert metrics.successful_requests + metrics.failed_requests == metrics.total_requests
        assert metrics.min_response_time_ms <= metrics.avg_response_time_ms <= metrics.max_response_time_ms
        assert metrics.p90 <= metrics.p95 <= metrics.p99 <= metrics.max_response_time_ms
        assert metrics.error_rate == pytest.approx(metrics.failed_requests / metrics.total_requests)
    assert sum(m.total_requests for m in result.by_label.values()) == result.overall.total_requests


def test_overall_percentiles_match_a_full_sort():
    records = [
        _record(label="fast", elapsed=elapsed) for elapsed in (5, 9, 12, 30, 31)
    ] + [_record(label="slow", elapsed=elapsed) for elapsed in (200, 7, 450, 90)]
    overall = aggregate(records).overall
    ordered = sorted(record.response_time_ms for record in records)

    for p in (50, 90, 95, 99):
        assert overall.percentiles[f"p{p}"] == nearest_rank(ordered, p)


def test_latency_percentile_ignores_missing_latency():
    records = [_record(label="A", latency_ms=ms) for ms in range(1, 21)]
    records += [_record(label="B", latency_ms=None) for _ in range(5)]
    result = aggregate(records)

    assert result.overall.p95_latency_ms == 19
    assert result.by_label["A"].p95_latency_ms == 19
    assert result.by_label["B"].p95_latency_ms == 0


def test_identical_input_gives_identical_output(write_jtl, make_csv):
    path = write_jtl(make_csv())

    first = aggregate(RecordExtractor(path))
    second = aggregate(RecordExtractor(path))

    assert first == second


def test_custom_percentiles_are_reported():
    records = [_record(elapsed=e) for e in range(1, 1001)]
    result = MetricsAggregator(AggregationConfig(percentiles=(75, 90, 95, 99, 99.5))).consume(records).result()

    assert result.overall.percentiles["p75"] == 750
    assert result.overall.percentiles["p99.5"] == 995
    assert result.overall.median_response_time_ms == 0.0


def test_percentile_set_must_include_report_percentiles():
    with pytest.raises(ValueError):
        AggregationConfig(percentiles=(50, 95))


def test_result_is_immutable():
    result = aggregate([_record()])

    with pytest.raises(ValidationError):
        result.overall.total_requests = 5

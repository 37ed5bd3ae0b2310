import math

import pytest

from perfportal.services.aggregation import AggregateMetrics, aggregate
from perfportal.services.baseline import (
    BaselineThresholds,
    evaluate_baseline,
    evaluate_labels,
)


def _metrics(**values) -> AggregateMetrics:
    return AggregateMetrics(total_requests=100, successful_requests=100, **values)


def test_mixed_verdict_fails_overall():
    thresholds = BaselineThresholds.from_acceptance_criteria(
        {"baseline": {"p95MaxMs": 1200, "avgMaxMs": 600, "p90MaxMs": 900, "throughputMin": 45}}
    )
    metrics = _metrics(p95=1100, avg_response_time_ms=650, p90=850, throughput=50)

    verdict = evaluate_baseline(metrics, thresholds)

    assert verdict.check("p95").status == "pass"
    assert verdict.check("avg").status == "fail"
    assert verdict.check("p90").status == "pass"
    assert verdict.check("throughput").status == "pass"
    assert verdict.overall == "fail"
    assert verdict.failed_checks == ["avg"]


def test_boundary_values_pass():
    thresholds = BaselineThresholds(p95_max_ms=500, throughput_min=10)
    verdict = evaluate_baseline(_metrics(p95=500, throughput=10), thresholds)

    assert verdict.overall == "pass"
    assert verdict.check("avg").status == "skipped"
    assert verdict.check("p90").threshold is None


def test_no_thresholds_is_not_evaluated():
    verdict = evaluate_baseline(_metrics(p95=10_000), BaselineThresholds())

    assert verdict.overall == "not_evaluated"
    assert {check.status for check in verdict.checks} == {"skipped"}


def test_zero_records_against_thresholds():
    overall = aggregate([]).overall

    with_thresholds = evaluate_baseline(overall, BaselineThresholds(p95_max_ms=100, throughput_min=1))
    assert with_thresholds.check("p95").status == "pass"
    assert with_thresholds.check("throughput").status == "fail"
    assert with_thresholds.overall == "fail"

    assert evaluate_baseline(overall, BaselineThresholds()).overall == "not_evaluated"


@pytest.mark.parametrize("value", [0, -5, "abc", None, True, math.nan, ""])
def test_non_positive_or_unparseable_thresholds_are_ignored(value):
    thresholds = BaselineThresholds.from_acceptance_criteria({"baseline": {"p95MaxMs": value}})

    assert thresholds.p95_max_ms is None
    assert not thresholds.is_configured


def test_acceptance_criteria_round_trip_keeps_camel_case_keys():
    thresholds = BaselineThresholds.from_values(p95_max_ms="1200", throughput_min=45)

    assert thresholds.to_acceptance_criteria() == {
        "p95MaxMs": 1200.0,
        "avgMaxMs": None,
        "p90MaxMs": None,
        "throughputMin": 45.0,
    }
    assert BaselineThresholds.from_acceptance_criteria(None) == BaselineThresholds()
    assert BaselineThresholds.from_acceptance_criteria({"baseline": "fast"}) == BaselineThresholds()


def test_unknown_check_name_raises_key_error():
    verdict = evaluate_baseline(_metrics(), BaselineThresholds())

    with pytest.raises(KeyError):
        verdict.check("p99")


def test_labels_are_evaluated_independently():
    thresholds = BaselineThresholds(p95_max_ms=300)
    by_label = {
        "Login": _metrics(p95=250),
        "Search": _metrics(p95=450),
    }

    verdicts = evaluate_labels(by_label, thresholds)

    assert verdicts["Login"].overall == "pass"
    assert verdicts["Search"].overall == "fail"
    assert verdicts["Search"].check("p95").actual == 450

from __future__ import annotations

import logging
import math
from typing import Any, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict

from perfportal.services.aggregation import AggregateMetrics

logger = logging.getLogger(__name__)

CheckStatus = Literal["pass", "fail", "skipped"]
VerdictStatus = Literal["pass", "fail", "not_evaluated"]

# (check name, metric attribute, threshold attribute, acceptance key, comparison)
_CHECKS: tuple[tuple[str, str, str, str, str], ...] = (
    ("p95", "p95", "p95_max_ms", "p95MaxMs", "max"),
    ("avg", "avg_response_time_ms", "avg_max_ms", "avgMaxMs", "max"),
    ("p90", "p90", "p90_max_ms", "p90MaxMs", "max"),
    ("throughput", "throughput", "throughput_min", "throughputMin", "min"),
)


def _positive_or_none(value: Any) -> Optional[float]:
    """Thresholds that are absent, unparseable or not positive are not configured."""

    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or number <= 0:
        return None
    return number


class BaselineThresholds(BaseModel):
    model_config = ConfigDict(frozen=True)

    p95_max_ms: Optional[float] = None
    avg_max_ms: Optional[float] = None
    p90_max_ms: Optional[float] = None
    throughput_min: Optional[float] = None

    @classmethod
    def from_values(cls, **values: Any) -> "BaselineThresholds":
        return cls(**{key: _positive_or_none(value) for key, value in values.items()})

    @classmethod
    def from_acceptance_criteria(
        cls, acceptance_criteria: Optional[Mapping[str, Any]]
    ) -> "BaselineThresholds":
        """Read the `baseline` block stored on a capability."""

        baseline = (acceptance_criteria or {}).get("baseline") or {}
        if not isinstance(baseline, Mapping):
            logger.warning("Ignoring non-mapping baseline in acceptance criteria: %r", baseline)
            return cls()
        return cls.from_values(
            **{attr: baseline.get(key) for _, _, attr, key, _ in _CHECKS}
        )

    def to_acceptance_criteria(self) -> dict[str, Optional[float]]:
        return {key: getattr(self, attr) for _, _, attr, key, _ in _CHECKS}

    @property
    def is_configured(self) -> bool:
        return any(getattr(self, attr) is not None for _, _, attr, _, _ in _CHECKS)


class BaselineCheck(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    status: CheckStatus
    actual: float
    threshold: Optional[float] = None
    comparison: Literal["max", "min"]


class BaselineVerdict(BaseModel):
    model_config = ConfigDict(frozen=True)

    overall: VerdictStatus
    checks: tuple[BaselineCheck, ...] = ()

    def check(self, name: str) -> BaselineCheck:
        for item in self.checks:
            if item.name == name:
                return item
        raise KeyError(name)

    @property
    def failed_checks(self) -> list[str]:
        return [item.name for item in self.checks if item.status == "fail"]


def evaluate_baseline(metrics: AggregateMetrics, thresholds: BaselineThresholds) -> BaselineVerdict:
    """Compare `metrics` against `thresholds`; a missing threshold skips its check."""

    checks = []
    for name, metric_attr, threshold_attr, _, comparison in _CHECKS:
        actual = float(getattr(metrics, metric_attr))
        threshold = getattr(thresholds, threshold_attr)
        if threshold is None:
            status: CheckStatus = "skipped"
        elif comparison == "max":
            status = "pass" if actual <= threshold else "fail"
        else:
            status = "pass" if actual >= threshold else "fail"
        checks.append(
            BaselineCheck(
                name=name,
                status=status,
                actual=actual,
                threshold=threshold,
                comparison=comparison,
            )
        )

    evaluated = [item for item in checks if item.status != "skipped"]
    if not evaluated:
        overall: VerdictStatus = "not_evaluated"
    elif all(item.status == "pass" for item in evaluated):
        overall = "pass"
    else:
        overall = "fail"
    return BaselineVerdict(overall=overall, checks=tuple(checks))


def evaluate_labels(
    by_label: Mapping[str, AggregateMetrics], thresholds: BaselineThresholds
) -> dict[str, BaselineVerdict]:
    return {label: evaluate_baseline(metrics, thresholds) for label, metrics in by_label.items()}


__all__ = [
    "BaselineCheck",
    "BaselineThresholds",
    "BaselineVerdict",
    "evaluate_baseline",
    "evaluate_labels",
]

"""Compose the structured payload handed to the report renderer."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Sequence

from pydantic import BaseModel, ConfigDict

from perfportal.services.aggregation import AggregateMetrics, AggregationResult
from perfportal.services.baseline import BaselineThresholds, BaselineVerdict

# Attribute on ReportContext -> name shown to the user when it is blank.
COVER_FIELDS: tuple[tuple[str, str], ...] = (
    ("capability_name", "Capability name"),
    ("test_name", "Test name"),
    ("test_date", "Test date"),
    ("capability_description", "Capability description"),
    ("test_objective", "Test objective"),
    ("test_scope", "Test scope"),
    ("environment_details", "Environment details"),
    ("acceptance_criteria", "Acceptance criteria"),
)


class MissingCoverFieldsError(ValueError):
    def __init__(self, missing: Sequence[str]) -> None:
        self.missing = list(missing)
        super().__init__("Missing required fields for cover page: " + ", ".join(self.missing))


class ReportContext(BaseModel):
    """Caller-supplied metadata for one report (test run plus its capability)."""

    model_config = ConfigDict(frozen=True)

    capability_name: Optional[str] = None
    test_name: Optional[str] = None
    build_number: Optional[str] = None
    test_date: Optional[datetime] = None
    description: Optional[str] = None
    capability_description: Optional[str] = None
    test_objective: Optional[str] = None
    test_scope: Optional[str] = None
    environment_details: Optional[str] = None
    acceptance_criteria: Optional[dict[str, Any]] = None


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (Mapping, list, tuple)):
        return len(value) == 0
    return False


def missing_cover_fields(context: ReportContext) -> list[str]:
    return [label for attr, label in COVER_FIELDS if _is_blank(getattr(context, attr))]


def require_cover_fields(context: ReportContext) -> None:
    missing = missing_cover_fields(context)
    if missing:
        raise MissingCoverFieldsError(missing)


def _normalize_name(name: str) -> str:
    return name.strip().lower()


def filter_labels_to_test_cases(
    by_label: Mapping[str, AggregateMetrics],
    test_case_names: Sequence[str],
) -> dict[str, AggregateMetrics]:
    """Keep labels matching a capability test case; no test cases keeps everything."""

    wanted = {_normalize_name(name) for name in test_case_names if name and name.strip()}
    if not wanted:
        return dict(by_label)
    return {label: metrics for label, metrics in by_label.items() if _normalize_name(label) in wanted}


class ReportPayload(BaseModel):
    model_config = ConfigDict(frozen=True)

    capability_name: Optional[str] = None
    test_name: Optional[str] = None
    build_number: Optional[str] = None
    test_date: Optional[datetime] = None
    description: Optional[str] = None
    narrative: dict[str, Optional[str]] = {}
    overall: AggregateMetrics
    by_label: dict[str, AggregateMetrics] = {}
    verdict: BaselineVerdict
    label_verdicts: dict[str, BaselineVerdict] = {}
    thresholds: BaselineThresholds
    missing_fields: list[str] = []
    generated_at: datetime


def assemble_report(
    context: ReportContext,
    aggregation: AggregationResult,
    verdict: BaselineVerdict,
    thresholds: BaselineThresholds,
    *,
    label_verdicts: Optional[Mapping[str, BaselineVerdict]] = None,
    test_case_names: Sequence[str] = (),
    generated_at: Optional[datetime] = None,
) -> ReportPayload:
    """Build the immutable report payload; none of the inputs are modified.

    `generated_at` defaults to the current UTC time and is the only clock read.
    """

    by_label = filter_labels_to_test_cases(aggregation.by_label, test_case_names)
    label_verdicts = {
        label: result for label, result in (label_verdicts or {}).items() if label in by_label
    }
    if generated_at is None:
        generated_at = datetime.now(timezone.utc).replace(tzinfo=None)

    return ReportPayload(
        capability_name=context.capability_name,
        test_name=context.test_name,
        build_number=context.build_number,
        test_date=context.test_date,
        description=context.description,
        narrative={
            "capability_description": context.capability_description,
            "test_objective": context.test_objective,
            "test_scope": context.test_scope,
            "environment_details": context.environment_details,
        },
        overall=aggregation.overall,
        by_label=by_label,
        verdict=verdict,
        label_verdicts=label_verdicts,
        thresholds=thresholds,
        missing_fields=missing_cover_fields(context),
        generated_at=generated_at,
    )


__all__ = [
    "COVER_FIELDS",
    "MissingCoverFieldsError",
    "ReportContext",
    "ReportPayload",
    "assemble_report",
    "filter_labels_to_test_cases",
    "missing_cover_fields",
    "require_cover_fields",
]

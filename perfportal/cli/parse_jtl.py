from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Any

from perfportal.core.config import settings
from perfportal.ingestion import ExtractorConfig, RecordExtractor
from perfportal.ingestion.errors import JtlProcessingError
from perfportal.ingestion.extractor import FORMAT_HINTS
from perfportal.services.aggregation import AggregationConfig, MetricsAggregator
from perfportal.services.baseline import BaselineThresholds, evaluate_baseline, evaluate_labels


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Parse a JMeter JTL file and print aggregate metrics as JSON"
    )
    parser.add_argument("file", type=Path, help="Path to the .jtl file")
    parser.add_argument("--format", choices=FORMAT_HINTS, default="auto", help="JTL layout")
    parser.add_argument("--p95-max", type=float, default=None, help="Baseline p95 ceiling (ms)")
    parser.add_argument("--avg-max", type=float, default=None, help="Baseline average ceiling (ms)")
    parser.add_argument("--p90-max", type=float, default=None, help="Baseline p90 ceiling (ms)")
    parser.add_argument(
        "--throughput-min", type=float, default=None, help="Baseline throughput floor (req/s)"
    )
    parser.add_argument("--output", type=Path, default=None, help="Write JSON here instead of stdout")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    file_path: Path = args.file
    if not file_path.exists():
        print(f"File not found: {file_path}")
        return 1

    try:
        extractor = RecordExtractor(
            file_path,
            format_hint=args.format,
            config=ExtractorConfig.from_settings(settings),
        )
        aggregation = MetricsAggregator(AggregationConfig.from_settings(settings)).consume(
            extractor
        ).result()
    except JtlProcessingError as exc:
        print(f"Rejected {file_path.name}: {exc.message} (rows processed: {exc.rows_processed})")
        return 1

    thresholds = BaselineThresholds.from_values(
        p95_max_ms=args.p95_max,
        avg_max_ms=args.avg_max,
        p90_max_ms=args.p90_max,
        throughput_min=args.throughput_min,
    )
    verdict = evaluate_baseline(aggregation.overall, thresholds)

    report: dict[str, Any] = {
        "file": file_path.name,
        "format": extractor.format,
        "rows_parsed": extractor.stats.parsed_rows,
        "rows_skipped": extractor.stats.skipped_rows,
        "warnings": extractor.stats.warnings,
        "metrics": aggregation.overall.model_dump(mode="json"),
        "labels": {
            label: metrics.model_dump(mode="json") for label, metrics in aggregation.by_label.items()
        },
        "verdict": verdict.model_dump(mode="json"),
        "label_verdicts": {
            label: result.model_dump(mode="json")
            for label, result in evaluate_labels(aggregation.by_label, thresholds).items()
        },
    }
    rendered = json.dumps(report, indent=2)
    if args.output:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        args.output.write_text(rendered + "\n", encoding="utf-8")
        print(f"Wrote metrics for {extractor.stats.parsed_rows} rows to {args.output}")
    else:
        print(rendered)

    return 2 if verdict.overall == "fail" else 0


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    raise SystemExit(main())

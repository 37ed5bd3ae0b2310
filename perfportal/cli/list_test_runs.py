from __future__ import annotations

import argparse
from datetime import datetime

from sqlmodel import select

from perfportal.db import models
from perfportal.db.session import get_session, init_db


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="List stored test runs")
    parser.add_argument("--limit", type=int, default=50, help="Maximum records to display")
    parser.add_argument("--status", type=str, help="Filter by status")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    init_db()

    statement = select(models.TestRun).order_by(models.TestRun.created_at.desc())
    if args.status:
        statement = statement.where(models.TestRun.status == args.status.lower())
    statement = statement.limit(args.limit)

    with get_session() as session:
        runs = session.exec(statement).all()

        if not runs:
            print("No test runs found")
            return 0

        headers = ["ID", "Test", "Build", "Status", "Requests", "p95 (ms)", "Errors", "Date"]
        rows = [
            [
                str(run.id),
                run.test_name,
                run.build_number or "-",
                run.status,
                _fmt_number(run.total_requests),
                _fmt_number(run.percentile_95),
                _fmt_rate(run.error_rate),
                _fmt(run.test_date),
            ]
            for run in runs
        ]

    _print_table(headers, rows, numeric={4, 5, 6})
    return 0


def _fmt(value: datetime | None) -> str:
    if value is None:
        return "-"
    return value.strftime("%Y-%m-%d %H:%M")


def _fmt_number(value: float | int | None) -> str:
    if value is None:
        return "-"
    return f"{value:g}"


def _fmt_rate(value: float | None) -> str:
    if value is None:
        return "-"
    return f"{value * 100:.2f}%"


def _print_table(
    headers: list[str],
    rows: list[list[str]],
    numeric: frozenset[int] | set[int] = frozenset(),
) -> None:
    """Print an aligned table; columns listed in `numeric` are right-aligned."""

    widths = [max(len(line[idx]) for line in [headers, *rows]) for idx in range(len(headers))]

    def _render(values: list[str]) -> str:
        cells = [
            value.rjust(widths[idx]) if idx in numeric else value.ljust(widths[idx])
            for idx, value in enumerate(values)
        ]
        return " | ".join(cells).rstrip()

    print(_render(headers))
    print("-+-".join("-" * width for width in widths))
    for row in rows:
        print(_render(row))


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    raise SystemExit(main())

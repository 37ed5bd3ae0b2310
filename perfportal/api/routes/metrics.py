from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Query

from perfportal.core.log_buffer import buffer_limits, get_log_entries, get_parse_events
from perfportal.core.metrics import metrics

router = APIRouter(prefix="/metrics", tags=["metrics"])


def _jsonable(record: Any) -> dict[str, Any]:
    """Dataclass to dict with datetimes as ISO strings."""

    data = asdict(record)
    for key, value in data.items():
        if hasattr(value, "isoformat"):
            data[key] = value.isoformat()
    return data


@router.get("", summary="Processing metrics snapshot")
def metrics_root(limit: int = Query(default=10, ge=1, le=50)) -> dict[str, Any]:
    counters = metrics.snapshot()
    return {
        "totals": metrics.aggregate_totals(),
        "counters": [_jsonable(counter) for counter in counters],
        "recent_failures": [_jsonable(event) for event in metrics.recent_failures(limit=limit)],
        "recent_parse_events": [_jsonable(event) for event in reversed(get_parse_events(limit))],
        "buffer_limits": buffer_limits(),
        "generated_at": counters[0].last_event_at.isoformat() if counters else None,
    }


@router.get("/logs", summary="Recent application log records")
def recent_logs(
    limit: int = Query(default=50, ge=1, le=500),
    level: str = Query(default="INFO"),
    test_run_id: Optional[str] = Query(default=None),
) -> dict[str, Any]:
    min_level = logging.getLevelName(level.strip().upper())
    if not isinstance(min_level, int):
        raise HTTPException(status_code=400, detail=f"Unknown log level: {level}")
    entries = get_log_entries(limit, min_level=min_level, test_run_id=test_run_id)
    return {
        "entries": [_jsonable(entry) for entry in reversed(entries)],
        "limit": buffer_limits()["logs"],
    }

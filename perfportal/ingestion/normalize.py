"""Field-level normalization shared by the CSV and XML JTL readers."""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from math import isinf, isnan
from typing import Any, Mapping, Optional

from perfportal.ingestion.types import RowRejected, TransactionRecord

_EPOCH = datetime(1970, 1, 1)
_EPOCH_MILLIS = re.compile(r"^-?\d+$")
_TEXT_TIMESTAMP_FORMATS = (
    "%Y/%m/%d %H:%M:%S.%f",
    "%Y/%m/%d %H:%M:%S",
    "%Y-%m-%d %H:%M:%S.%f",
    "%Y-%m-%d %H:%M:%S",
)
_TRUE_STRINGS = {"true"}
_FALSE_STRINGS = {"false"}

# Canonical field name -> (CSV header, XML attribute)
FIELD_SOURCES: dict[str, tuple[str, str]] = {
    "timestamp": ("timeStamp", "ts"),
    "response_time_ms": ("elapsed", "t"),
    "label": ("label", "lb"),
    "success": ("success", "s"),
    "status_code": ("responseCode", "rc"),
    "response_message": ("responseMessage", "rm"),
    "thread_name": ("threadName", "tn"),
    "bytes_received": ("bytes", "by"),
    "bytes_sent": ("sentBytes", "sby"),
    "latency_ms": ("Latency", "lt"),
    "connect_time_ms": ("Connect", "ct"),
}
REQUIRED_FIELDS = ("timestamp", "response_time_ms", "label")


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, float) and isnan(value):
        return None
    text = str(value).strip()
    return text or None


def parse_timestamp(value: Any) -> datetime:
    """Return a timezone-naive UTC datetime for a JTL timestamp cell."""

    text = _clean(value)
    if text is None:
        raise RowRejected("missing timestamp")

    if _EPOCH_MILLIS.match(text):
        try:
            return _EPOCH + timedelta(milliseconds=int(text))
        except OverflowError as exc:
            raise RowRejected(f"timestamp out of range: {text!r}") from exc

    parsed: Optional[datetime] = None
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        for fmt in _TEXT_TIMESTAMP_FORMATS:
            try:
                parsed = datetime.strptime(text, fmt)
                break
            except ValueError:
                continue
    if parsed is None:
        raise RowRejected(f"unparseable timestamp: {text!r}")
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def parse_optional_int(value: Any) -> Optional[int]:
    text = _clean(value)
    if text is None:
        return None
    try:
        parsed = float(text)
    except ValueError:
        return None
    if isnan(parsed) or isinf(parsed) or parsed < 0:
        return None
    return int(parsed)


def parse_response_time(value: Any) -> int:
    text = _clean(value)
    if text is None:
        raise RowRejected("missing response time")
    try:
        parsed = float(text)
    except ValueError as exc:
        raise RowRejected(f"unparseable response time: {text!r}") from exc
    if isnan(parsed) or isinf(parsed):
        raise RowRejected(f"unparseable response time: {text!r}")
    if parsed < 0:
        raise RowRejected(f"negative response time: {text!r}")
    return int(parsed)


def parse_success(value: Any, status_code: Optional[int]) -> bool:
    text = _clean(value)
    if text is not None:
        lowered = text.lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
        raise RowRejected(f"unrecognized success flag: {text!r}")
    if status_code is not None:
        return 200 <= status_code < 400
    raise RowRejected("missing success flag and response code")


def parse_status_code(value: Any) -> Optional[int]:
    text = _clean(value)
    if text is None or not (text.isascii() and text.isdigit()):
        return None
    return int(text)


def build_record(fields: Mapping[str, Any]) -> TransactionRecord:
    """Normalize a mapping keyed by canonical field names into a record.

    Raises `RowRejected` when a required field is missing or malformed.
    """

    label = _clean(fields.get("label"))
    if label is None:
        raise RowRejected("missing label")

    timestamp = parse_timestamp(fields.get("timestamp"))
    response_time = parse_response_time(fields.get("response_time_ms"))
    status_code = parse_status_code(fields.get("status_code"))
    success = parse_success(fields.get("success"), status_code)

    return TransactionRecord(
        label=label,
        timestamp=timestamp,
        response_time_ms=response_time,
        success=success,
        status_code=status_code,
        bytes_sent=parse_optional_int(fields.get("bytes_sent")),
        bytes_received=parse_optional_int(fields.get("bytes_received")),
        latency_ms=parse_optional_int(fields.get("latency_ms")),
        connect_time_ms=parse_optional_int(fields.get("connect_time_ms")),
        response_message=_clean(fields.get("response_message")),
        thread_name=_clean(fields.get("thread_name")),
    )


__all__ = [
    "FIELD_SOURCES",
    "REQUIRED_FIELDS",
    "build_record",
    "parse_optional_int",
    "parse_response_time",
    "parse_status_code",
    "parse_success",
    "parse_timestamp",
]

from __future__ import annotations

import logging
from collections import deque
from typing import Any, BinaryIO, Iterator

import pandas as pd

from perfportal.ingestion.base import BaseJtlReader, ExtractorConfig, registry, strip_leading
from perfportal.ingestion.errors import MalformedInputError
from perfportal.ingestion.normalize import FIELD_SOURCES, REQUIRED_FIELDS, build_record
from perfportal.ingestion.types import ExtractionStats, RowRejected, TransactionRecord

logger = logging.getLogger(__name__)

# Stands in for a line with too many fields so it keeps its place in the row count.
_BAD_LINE = "\x00malformed-line"


class CsvJtlReader(BaseJtlReader):
    """Streams the delimited JTL layout (JMeter's default `.jtl` output)."""

    name = "csv"

    def can_read(self, head: bytes) -> bool:
        stripped = strip_leading(head)
        return bool(stripped) and not stripped.startswith(b"<")

    def iter_records(
        self,
        stream: BinaryIO,
        *,
        stats: ExtractionStats,
        config: ExtractorConfig,
    ) -> Iterator[TransactionRecord]:
        start = stream.tell()
        column_map, width = self._read_header(stream)
        stream.seek(start)
        bad_lines: deque[str] = deque()

        def _on_bad_line(fields: list[str]) -> list[str]:
            bad_lines.append(f"unexpected field count ({len(fields)}, expected {width})")
            return [_BAD_LINE] + [""] * (width - 1)

        try:
            reader = pd.read_csv(
                stream,
                dtype=str,
                keep_default_na=False,
                encoding="utf-8-sig",
                engine="python",
                on_bad_lines=_on_bad_line,
                chunksize=config.csv_chunk_size,
            )
        except (pd.errors.ParserError, UnicodeDecodeError) as exc:
            raise MalformedInputError(f"Unable to read JTL CSV: {exc}") from exc

        row_number = 1  # header
        chunks = iter(reader)
        while True:
            try:
                chunk = next(chunks)
            except StopIteration:
                break
            except (pd.errors.ParserError, UnicodeDecodeError, ValueError) as exc:
                raise MalformedInputError(
                    f"Malformed JTL CSV after row {row_number}: {exc}",
                    rows_processed=stats.parsed_rows,
                ) from exc

            chunk.columns = [str(col).strip() for col in chunk.columns]
            first_column = chunk.columns[0]
            for row in chunk.to_dict(orient="records"):
                row_number += 1
                if row.get(first_column) == _BAD_LINE and bad_lines:
                    stats.record_skip(row_number, bad_lines.popleft())
                    continue
                fields = self._canonical_fields(row, column_map)
                try:
                    record = build_record(fields)
                except RowRejected as exc:
                    logger.debug("Skipping JTL row %d: %s", row_number, exc)
                    stats.record_skip(row_number, str(exc))
                    continue
                stats.parsed_rows += 1
                yield record

    @staticmethod
    def _read_header(stream: BinaryIO) -> tuple[dict[str, str], int]:
        try:
            header = pd.read_csv(stream, nrows=0, dtype=str, encoding="utf-8-sig")
        except pd.errors.EmptyDataError as exc:
            raise MalformedInputError("Empty JTL file: no header row found") from exc
        except (pd.errors.ParserError, UnicodeDecodeError) as exc:
            raise MalformedInputError(f"Unable to read JTL CSV header: {exc}") from exc

        columns = {str(col).strip() for col in header.columns}
        column_map = {
            canonical: csv_name
            for canonical, (csv_name, _) in FIELD_SOURCES.items()
            if csv_name in columns
        }
        missing = [FIELD_SOURCES[name][0] for name in REQUIRED_FIELDS if name not in column_map]
        if missing:
            raise MalformedInputError(
                f"JTL CSV header is missing required columns: {', '.join(missing)}"
            )
        logger.info("CSV JTL columns: %s", ", ".join(sorted(columns)))
        return column_map, len(header.columns)

    @staticmethod
    def _canonical_fields(row: dict[str, Any], column_map: dict[str, str]) -> dict[str, Any]:
        return {canonical: row.get(csv_name) for canonical, csv_name in column_map.items()}


registry.register(CsvJtlReader())

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import BinaryIO, Iterator, Optional, Union

from perfportal.ingestion.base import ExtractorConfig, registry
from perfportal.ingestion.errors import (
    FileTooLargeError,
    MalformedInputError,
    UnsupportedFormatError,
)
from perfportal.ingestion.types import ExtractionStats, TransactionRecord

logger = logging.getLogger(__name__)

FORMAT_HINTS = ("auto", "csv", "xml")
_SNIFF_BYTES = 512
_COPY_CHUNK = 64 * 1024


def check_upload(file_name: Optional[str], size: Optional[int], config: ExtractorConfig) -> None:
    """Reject an upload by extension and size before anything is parsed."""

    suffix = Path(file_name or "").suffix.lower()
    if suffix not in config.allowed_suffixes:
        allowed = ", ".join(config.allowed_suffixes)
        raise UnsupportedFormatError(
            f"Unsupported file type: {suffix or '(none)'}. Supported: {allowed}"
        )
    if size is not None and size > config.max_bytes:
        raise FileTooLargeError(size, config.max_bytes)


class RecordExtractor:
    """Single-pass, lazy iterator of `TransactionRecord` values from a JTL file.

    Boundary checks run at construction; a stream of unknown length is
    measured while it is spooled, before any reader sees it. Iterating a
    second time raises `RuntimeError`; build a new extractor to re-parse the
    same file.
    """

    def __init__(
        self,
        source: Union[Path, str, BinaryIO],
        *,
        file_name: Optional[str] = None,
        format_hint: str = "auto",
        config: Optional[ExtractorConfig] = None,
    ) -> None:
        self.config = config or ExtractorConfig()
        if format_hint not in FORMAT_HINTS:
            raise UnsupportedFormatError(
                f"Unknown JTL format hint: {format_hint}. Expected one of: {', '.join(FORMAT_HINTS)}"
            )
        self.format_hint = format_hint

        if isinstance(source, (str, Path)):
            self._path: Optional[Path] = Path(source)
            self._stream: Optional[BinaryIO] = None
            self.file_name = file_name or self._path.name
            try:
                size = self._path.stat().st_size
            except FileNotFoundError as exc:
                raise MalformedInputError(f"JTL file not found: {self._path}") from exc
        else:
            self._path = None
            self._stream = source
            self.file_name = file_name or getattr(source, "name", None) or ""
            size = self._stream_size(source)

        check_upload(self.file_name, size, self.config)
        self.size = size
        self.format: Optional[str] = None
        self.stats = ExtractionStats(max_warnings=self.config.max_warnings)
        self._consumed = False

    def __iter__(self) -> Iterator[TransactionRecord]:
        if self._consumed:
            raise RuntimeError("JTL extractor is single-pass; create a new extractor to re-parse")
        self._consumed = True
        return self._iterate()

    def _iterate(self) -> Iterator[TransactionRecord]:
        if self._path is not None:
            with self._path.open("rb") as handle:
                yield from self._read(handle)
            return

        stream = self._stream
        assert stream is not None
        if stream.seekable():
            yield from self._read(stream)
            return

        with tempfile.SpooledTemporaryFile(max_size=8 * 1024 * 1024) as spooled:
            self.size = self._spool(stream, spooled)
            spooled.seek(0)
            yield from self._read(spooled)

    def _spool(self, stream: BinaryIO, target: BinaryIO) -> int:
        """Copy a stream of unknown length, stopping once it passes the size limit."""

        written = 0
        while True:
            chunk = stream.read(_COPY_CHUNK)
            if not chunk:
                return written
            written += len(chunk)
            if written > self.config.max_bytes:
                raise FileTooLargeError(written, self.config.max_bytes)
            target.write(chunk)

    def _read(self, stream: BinaryIO) -> Iterator[TransactionRecord]:
        start = stream.tell()
        head = stream.read(_SNIFF_BYTES)
        stream.seek(start)
        if not head.strip():
            raise MalformedInputError("Empty JTL file")

        if self.format_hint == "auto":
            reader = registry.match(head)
            if reader is None:
                raise UnsupportedFormatError("Unable to detect JTL layout from file contents")
        else:
            reader = registry.get(self.format_hint)
        self.format = reader.name

        logger.info(
            "Parsing JTL file %s (%s bytes) as %s", self.file_name or "<stream>", self.size, reader.name
        )
        yield from reader.iter_records(stream, stats=self.stats, config=self.config)
        logger.info(
            "Parsed %d JTL rows from %s (%d skipped)",
            self.stats.parsed_rows,
            self.file_name or "<stream>",
            self.stats.skipped_rows,
        )

    @staticmethod
    def _stream_size(stream: BinaryIO) -> Optional[int]:
        try:
            if not stream.seekable():
                return None
            current = stream.tell()
            stream.seek(0, os.SEEK_END)
            end = stream.tell()
            stream.seek(current)
            return end - current
        except (AttributeError, OSError):
            return None


__all__ = ["FORMAT_HINTS", "RecordExtractor", "check_upload"]

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import BinaryIO, Iterator

from perfportal.ingestion.types import ExtractionStats, TransactionRecord


@dataclass(frozen=True)
class ExtractorConfig:
    """Limits applied to a single extraction; built once per upload."""

    max_bytes: int = 100 * 1024 * 1024
    allowed_suffixes: tuple[str, ...] = (".jtl",)
    csv_chunk_size: int = 10_000
    max_warnings: int = 20

    @classmethod
    def from_settings(cls, settings) -> "ExtractorConfig":
        return cls(
            max_bytes=settings.jtl_max_bytes,
            allowed_suffixes=tuple(settings.jtl_allowed_suffixes),
            csv_chunk_size=settings.jtl_csv_chunk_size,
            max_warnings=settings.jtl_max_warnings,
        )


class BaseJtlReader(ABC):
    """Abstract base class for readers handling one JTL encoding."""

    name: str = "base"

    @abstractmethod
    def can_read(self, head: bytes) -> bool:
        """Return True when the leading bytes look like this reader's encoding."""

    @abstractmethod
    def iter_records(
        self,
        stream: BinaryIO,
        *,
        stats: ExtractionStats,
        config: ExtractorConfig,
    ) -> Iterator[TransactionRecord]:
        """Yield normalized records, counting skipped rows on `stats`."""


class ReaderRegistry:
    """Runtime registry for available JTL readers."""

    def __init__(self) -> None:
        self._readers: dict[str, BaseJtlReader] = {}

    def register(self, reader: BaseJtlReader) -> None:
        self._readers[reader.name] = reader

    def get(self, name: str) -> BaseJtlReader:
        return self._readers[name]

    def match(self, head: bytes) -> BaseJtlReader | None:
        for reader in self._readers.values():
            if reader.can_read(head):
                return reader
        return None


registry = ReaderRegistry()


def strip_leading(head: bytes) -> bytes:
    """Drop a UTF-8 BOM and leading whitespace from a sniffed header."""

    if head.startswith(b"\xef\xbb\xbf"):
        head = head[3:]
    return head.lstrip()

from __future__ import annotations

import logging
from typing import BinaryIO, Iterator
from xml.etree.ElementTree import ParseError

from defusedxml import DefusedXmlException
from defusedxml.ElementTree import iterparse

from perfportal.ingestion.base import BaseJtlReader, ExtractorConfig, registry, strip_leading
from perfportal.ingestion.errors import MalformedInputError
from perfportal.ingestion.normalize import FIELD_SOURCES, build_record
from perfportal.ingestion.types import ExtractionStats, RowRejected, TransactionRecord

logger = logging.getLogger(__name__)

SAMPLE_TAGS = {"httpSample", "sample"}
_SAMPLE_DEPTH = 2


class XmlJtlReader(BaseJtlReader):
    """Streams the XML JTL layout with DTDs and entity expansion disabled.

    Only samples directly under the root element become records; sub-samples
    nested inside a transaction sample belong to their parent.
    """

    name = "xml"

    def can_read(self, head: bytes) -> bool:
        return strip_leading(head).startswith(b"<")

    def iter_records(
        self,
        stream: BinaryIO,
        *,
        stats: ExtractionStats,
        config: ExtractorConfig,
    ) -> Iterator[TransactionRecord]:
        depth = 0
        root = None
        sample_index = 0

        try:
            events = iterparse(
                stream,
                events=("start", "end"),
                forbid_dtd=True,
                forbid_entities=True,
                forbid_external=True,
            )
            for event, element in events:
                if event == "start":
                    depth += 1
                    if root is None:
                        root = element
                    continue

                if depth == _SAMPLE_DEPTH and element.tag in SAMPLE_TAGS:
                    sample_index += 1
                    fields = {
                        canonical: element.attrib.get(attribute)
                        for canonical, (_, attribute) in FIELD_SOURCES.items()
                    }
                    try:
                        record = build_record(fields)
                    except RowRejected as exc:
                        logger.debug("Skipping XML sample %d: %s", sample_index, exc)
                        stats.record_skip(sample_index, str(exc))
                    else:
                        stats.parsed_rows += 1
                        yield record
                    element.clear()
                    if root is not None:
                        root.clear()
                depth -= 1
        except DefusedXmlException as exc:
            raise MalformedInputError(
                f"JTL XML declares a DTD or entity, which is not allowed: {exc}",
                rows_processed=stats.parsed_rows,
            ) from exc
        except ParseError as exc:
            line, column = getattr(exc, "position", (None, None))
            raise MalformedInputError(
                f"JTL XML is not well-formed at line {line}, column {column} "
                f"after {stats.parsed_rows} rows: {exc}",
                rows_processed=stats.parsed_rows,
            ) from exc


registry.register(XmlJtlReader())

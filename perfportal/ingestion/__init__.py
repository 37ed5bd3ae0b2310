"""JTL ingestion subsystem entrypoint."""

from perfportal.ingestion.base import BaseJtlReader, ExtractorConfig, registry

# Register built-in readers by importing their modules
from perfportal.ingestion import jtl_xml as _jtl_xml  # noqa: F401
from perfportal.ingestion import jtl_csv as _jtl_csv  # noqa: F401
from perfportal.ingestion.extractor import RecordExtractor, check_upload

__all__ = ["BaseJtlReader", "ExtractorConfig", "RecordExtractor", "check_upload", "registry"]

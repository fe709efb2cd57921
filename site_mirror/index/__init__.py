"""site_mirror.index: публикация снимков страниц в поисковый индекс через _bulk API."""

from site_mirror.index.client import BulkExportClient, build_bulk_body, classify_response
from site_mirror.index.models import (
    BatchOutcome,
    BulkBatch,
    ExportReport,
    ExportResult,
    Fatal,
    PartialFailure,
    Success,
    chunk_captures,
)
from site_mirror.index.orchestrator import export_captures

__all__ = [
    "BatchOutcome",
    "BulkBatch",
    "BulkExportClient",
    "ExportReport",
    "ExportResult",
    "Fatal",
    "PartialFailure",
    "Success",
    "build_bulk_body",
    "chunk_captures",
    "classify_response",
    "export_captures",
]

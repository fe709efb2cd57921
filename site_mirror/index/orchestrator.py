# site_mirror/index/orchestrator.py
"""
Export orchestration: chunk captures into batches and push them one by one.
"""
from __future__ import annotations

from typing import Iterable, Optional

from site_mirror.crawler.models import PageCapture
from site_mirror.index.client import BulkExportClient
from site_mirror.index.models import BatchOutcome, ExportReport, Fatal, chunk_captures
from site_mirror.logger import get_logger

__all__ = ["export_captures"]

logger = get_logger("export")


async def export_captures(
    client: BulkExportClient,
    captures: Iterable[PageCapture],
    batch_size: int,
    *,
    max_batch_size: Optional[int] = None,
    batch_attempts: int = 1,
) -> ExportReport:
    """
    Export *captures* in batches and collect one outcome per batch.

    A ``Fatal`` batch is re-submitted whole, up to *batch_attempts* times in
    total; partial failures are reported, not retried.
    """
    report = ExportReport()
    batches = chunk_captures(captures, batch_size, max_batch_size)
    for number, batch in enumerate(batches, start=1):
        attempts = 0
        while True:
            attempts += 1
            result = await client.export(batch)
            if not isinstance(result, Fatal) or attempts >= batch_attempts:
                break
            logger.warning(
                "Batch %d/%d failed (%s), resubmitting (%d/%d)",
                number, len(batches), result.error, attempts + 1, batch_attempts,
            )
        report.outcomes.append(BatchOutcome(number, len(batch), result, attempts))
        if isinstance(result, Fatal):
            logger.error("Batch %d/%d not exported: %s", number, len(batches), result.error)

    logger.info(
        "Export finished: %d documents in %d batches, %d failed ids, %d fatal batches",
        report.documents_sent,
        len(report.outcomes),
        len(report.failed_ids),
        len(report.fatal_batches),
    )
    return report

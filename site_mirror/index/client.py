# site_mirror/index/client.py
"""
Bulk export client: one ``_bulk`` request per batch, classified response.

Wire format (NDJSON, one pair of lines per capture)::

    {"index": {"_index": "<name>", "_id": "<normalized url>"}}
    {"url": "...", "title": "...", "textContent": "..."}

The ``index`` action creates or replaces the document with that id, so
exporting the same page twice overwrites it instead of duplicating it.
"""
from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, List, Optional, Sequence

from aiohttp import BasicAuth, ClientError, ClientSession, ClientTimeout

from site_mirror.config import IndexConfig
from site_mirror.index.models import BulkBatch, ExportResult, Fatal, PartialFailure, Success
from site_mirror.logger import get_logger

__all__ = ("BulkExportClient", "build_bulk_body", "classify_response")

logger = get_logger("index")


def build_bulk_body(batch: BulkBatch, index_name: str) -> str:
    """Serialize *batch* as a ``_bulk`` NDJSON body (trailing newline included)."""
    lines: List[str] = []
    for capture in batch:
        lines.append(json.dumps({"index": {"_index": index_name, "_id": capture.url}}))
        lines.append(json.dumps(capture.to_document(), ensure_ascii=False))
    return "\n".join(lines) + "\n"


def _describe_error(error: Any) -> str:
    if isinstance(error, dict):
        kind = error.get("type", "error")
        reason = error.get("reason", "")
        return f"{kind}: {reason}" if reason else str(kind)
    return str(error)


def _item_failures(items: List[Any], ids: Sequence[str] = ()) -> Dict[str, str]:
    failed: Dict[str, str] = {}
    for position, item in enumerate(items):
        if not isinstance(item, dict) or not item:
            continue
        # each item is {"<action>": {...}}
        result = next(iter(item.values()))
        if not isinstance(result, dict):
            continue
        status = result.get("status", 200)
        if "error" in result or (isinstance(status, int) and status >= 300):
            doc_id = result.get("_id")
            if doc_id is None:
                # items come back in request order
                doc_id = ids[position] if position < len(ids) else f"#{position}"
            doc_id = str(doc_id)
            failed[doc_id] = _describe_error(result.get("error", f"status {status}"))
    return failed


def classify_response(status: int, body: str, ids: Sequence[str] = ()) -> ExportResult:
    """Turn an HTTP status and raw ``_bulk`` response body into an outcome.

    *ids* are the document ids in request order, used for failed items that
    carry no ``_id`` of their own.
    """
    if status >= 500:
        logger.error("Index server error %d from _bulk: %s", status, body[:500])
        return Fatal(f"index server error (HTTP {status})", status=status)

    if not 200 <= status < 300:
        logger.warning("HTTP status %d from _bulk, response: %s", status, body[:500])

    try:
        payload = json.loads(body)
    except ValueError:
        return Fatal(f"unparseable _bulk response (HTTP {status})", status=status)
    if not isinstance(payload, dict) or not isinstance(payload.get("items"), list):
        return Fatal(f"unexpected _bulk response (HTTP {status})", status=status)

    took = payload.get("took")
    took = took if isinstance(took, int) else 0
    if not payload.get("errors", False):
        logger.info("Bulk indexing of %d documents finished in %d ms", len(payload["items"]), took)
        return Success(took)

    failed = _item_failures(payload["items"], ids)
    logger.warning(
        "Bulk indexing finished in %d ms with %d failed item(s): %s",
        took, len(failed), ", ".join(failed) or "none reported",
    )
    return PartialFailure(took, tuple(failed), failed)


class BulkExportClient:
    """Sends batches to ``<endpoint>/_bulk`` over a caller-owned session.

    The session is never closed here; whoever opened it closes it once the
    run is over.
    """

    def __init__(
        self,
        session: ClientSession,
        endpoint: str,
        index_name: str,
        *,
        timeout: float = 30.0,
        auth: Optional[BasicAuth] = None,
    ) -> None:
        self.session = session
        self.endpoint = endpoint.rstrip("/")
        self.index_name = index_name
        self.timeout = timeout
        self.auth = auth

    @classmethod
    def from_config(cls, session: ClientSession, config: IndexConfig) -> BulkExportClient:
        auth = None
        if config.username:
            auth = BasicAuth(config.username, config.password or "")
        return cls(session, config.base_url, config.name, timeout=config.timeout, auth=auth)

    @property
    def bulk_url(self) -> str:
        return f"{self.endpoint}/_bulk"

    async def export(self, batch: BulkBatch) -> ExportResult:
        body = build_bulk_body(batch, self.index_name)
        logger.info("Sending %d documents to index %s at %s", len(batch), self.index_name, self.endpoint)
        try:
            async with self.session.post(
                self.bulk_url,
                data=body.encode("utf-8"),
                headers={"Content-Type": "application/x-ndjson"},
                auth=self.auth,
                timeout=ClientTimeout(total=self.timeout),
            ) as resp:
                status = resp.status
                text = await resp.text(errors="replace")
        except (ClientError, asyncio.TimeoutError) as exc:
            logger.error("Bulk request to %s failed: %s", self.bulk_url, exc)
            return Fatal(f"transport failure: {type(exc).__name__}: {exc}")
        return classify_response(status, text, batch.ids)

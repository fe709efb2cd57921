# File: tests/conftest.py
from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator
from typing import Callable, Dict, Iterable, List, Optional

import pytest
from aiohttp import web

from site_mirror.config import MirrorConfig
from site_mirror.crawler.models import PageCapture, RenderedPage
from site_mirror.crawler.renderer import RenderPermanent
from site_mirror.crawler.urls import normalize_url

ROOT = "https://example.com/"


def pytest_configure(config):
    """Register custom markers so that `--strict-markers` does not fail."""
    config.addinivalue_line(
        "markers",
        "slow: marks tests as slow (deselect with '-m \"not slow\"')",
    )


class GraphRenderer:
    """
    In-memory renderer over a link graph ``{url: [href, ...]}``.

    ``failures`` maps a URL to exceptions raised (in order) before the page
    renders; ``on_render`` is called with each URL before rendering.
    """

    def __init__(
        self,
        graph: Dict[str, List[str]],
        failures: Optional[Dict[str, List[Exception]]] = None,
        on_render: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.graph = graph
        self.failures = {url: list(errs) for url, errs in (failures or {}).items()}
        self.on_render = on_render
        self.calls: List[str] = []

    async def render(self, url: str) -> RenderedPage:
        # yield to the loop like a real render would
        await asyncio.sleep(0)
        url = normalize_url(url)
        self.calls.append(url)
        if self.on_render is not None:
            self.on_render(url)
        pending = self.failures.get(url)
        if pending:
            raise pending.pop(0)
        if url not in self.graph:
            raise RenderPermanent(url, "HTTP 404")
        return RenderedPage(
            title=f"Title of {url}",
            text_content=f"Text of {url}",
            links=tuple(self.graph[url]),
        )


def u(path: str) -> str:
    """Absolute URL on the test host."""
    return ROOT.rstrip("/") + path


@pytest.fixture()
def make_config() -> Callable[..., MirrorConfig]:
    """Factory for a MirrorConfig with no retry delays."""

    def factory(**overrides) -> MirrorConfig:
        params = dict(
            seed_url=ROOT,
            max_depth=10,
            max_pages=1000,
            retry_times=2,
            backoff_base=0.0,
            respect_robots=False,
        )
        params.update(overrides)
        return MirrorConfig(**params)

    return factory


@pytest.fixture()
def captures() -> List[PageCapture]:
    return [
        PageCapture(url=u(f"/page{i}"), title=f"Page {i}", text_content=f"Body {i}")
        for i in range(1, 4)
    ]


async def serve_app(app: web.Application, port: int) -> AsyncIterator[str]:
    """Start *app* on *port*, yield base URL, ensure cleanup."""
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "localhost", port)
    await site.start()
    try:
        yield f"http://localhost:{port}"
    finally:
        await runner.cleanup()


def bulk_index_app(
    store: Dict[str, dict],
    fail_ids: Iterable[str] = (),
    requests: Optional[List[str]] = None,
) -> web.Application:
    """
    Minimal ``_bulk`` endpoint: upserts documents into *store* by ``_id``
    and reports a version conflict for every id in *fail_ids*.
    """
    failing = set(fail_ids)
    app = web.Application()

    async def bulk(request: web.Request) -> web.Response:
        body = await request.text()
        if requests is not None:
            requests.append(body)
        lines = [line for line in body.splitlines() if line.strip()]
        items = []
        errors = False
        for action_line, doc_line in zip(lines[::2], lines[1::2]):
            meta = json.loads(action_line)["index"]
            doc_id = meta["_id"]
            if doc_id in failing:
                errors = True
                items.append({
                    "index": {
                        "_index": meta["_index"],
                        "_id": doc_id,
                        "status": 409,
                        "error": {
                            "type": "version_conflict_engine_exception",
                            "reason": f"[{doc_id}]: version conflict",
                        },
                    }
                })
                continue
            created = doc_id not in store
            store[doc_id] = json.loads(doc_line)
            items.append({
                "index": {
                    "_index": meta["_index"],
                    "_id": doc_id,
                    "status": 201 if created else 200,
                    "result": "created" if created else "updated",
                }
            })
        return web.json_response({"took": 7, "errors": errors, "items": items})

    app.router.add_post("/_bulk", bulk)
    return app

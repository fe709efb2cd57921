# === FILE: site_mirror/crawler/engine.py ===
from __future__ import annotations

import asyncio
import random
import time
from contextlib import aclosing
from typing import AsyncIterator, List, Optional, Tuple
from urllib.parse import urldefrag

from site_mirror.config import MirrorConfig
from site_mirror.crawler.models import (
    CaptureFailure,
    CrawlReport,
    FailureKind,
    FrontierEntry,
    PageCapture,
    RenderedPage,
    Termination,
)
from site_mirror.crawler.renderer import Renderer, RenderError, RenderFatal, RenderTransient
from site_mirror.crawler.robots import RobotsTxtRules
from site_mirror.crawler.state import CrawlState
from site_mirror.crawler.urls import absolutize, normalize_url, url_host, url_path
from site_mirror.logger import get_logger

__all__ = ("CrawlAborted", "CrawlEngine")

logger = get_logger("crawler")


class CrawlAborted(Exception):
    """Raised by :meth:`CrawlEngine.iter_captures` after a fatal renderer failure.

    Every capture made before the failure has already been yielded.
    """

    def __init__(self, reason: str, captured: int) -> None:
        super().__init__(reason)
        self.reason = reason
        self.captured = captured


class CrawlEngine:
    """Breadth-first, deduplicating site walk driven by a :class:`Renderer`.

    One run at a time per engine; every call to :meth:`iter_captures` or
    :meth:`crawl` starts from a fresh frontier.
    """

    def __init__(
        self,
        renderer: Renderer,
        config: MirrorConfig,
        robots: Optional[RobotsTxtRules] = None,
    ) -> None:
        self.renderer = renderer
        self.config = config
        self.robots = robots
        self._state: Optional[CrawlState] = None

    @property
    def state(self) -> Optional[CrawlState]:
        """State of the current (or last) run."""
        return self._state

    def cancel(self) -> None:
        """Stop issuing renders; in-flight renders finish and are kept."""
        if self._state is not None:
            self._state.cancel_requested = True
            logger.info("Crawl cancellation requested")

    async def crawl(self, seed: str) -> CrawlReport:
        """Run the whole walk and return captures, failures and how it ended."""
        logger.info("Crawl started: %s", seed)
        start = time.monotonic()
        state = self._prepare(seed)
        report = CrawlReport(seed=normalize_url(seed))
        try:
            async with aclosing(self._stream(state)) as captures:
                async for capture in captures:
                    report.captures.append(capture)
        except CrawlAborted as exc:
            report.error = exc.reason

        report.failures = list(state.failures.values())
        report.disallowed = sorted(state.disallowed)
        report.termination = state.termination or Termination.EXHAUSTED
        report.duration = time.monotonic() - start

        logger.info(
            "Crawl finished (%s): %d captured, %d failed in %.2f s",
            report.termination.value,
            report.pages_captured,
            report.pages_failed,
            report.duration,
        )
        if report.disallowed:
            logger.info("Blocked by robots.txt: %d", len(report.disallowed))
        return report

    async def iter_captures(self, seed: str) -> AsyncIterator[PageCapture]:
        """Yield captures in discovery order as they are made.

        Closing the iterator early cancels the run. A fatal renderer failure
        raises :class:`CrawlAborted` once the captures made before it are out.
        """
        state = self._prepare(seed)
        async with aclosing(self._stream(state)) as captures:
            async for capture in captures:
                yield capture

    def _prepare(self, seed: str) -> CrawlState:
        state = CrawlState(self.config.max_pages, self.config.max_seconds)
        state.seed(normalize_url(seed), urldefrag(seed.strip())[0])
        self._state = state
        return state

    async def _stream(self, state: CrawlState) -> AsyncIterator[PageCapture]:
        out: asyncio.Queue[Optional[PageCapture]] = asyncio.Queue()
        runner = asyncio.create_task(self._run(state, out))
        try:
            while True:
                capture = await out.get()
                if capture is None:
                    break
                yield capture
            await runner
        finally:
            if not runner.done():
                state.cancel_requested = True
                runner.cancel()
                await asyncio.gather(runner, return_exceptions=True)

        if state.fatal_error is not None:
            raise CrawlAborted(str(state.fatal_error), len(state.captures)) from state.fatal_error

    async def _run(self, state: CrawlState, out: asyncio.Queue[Optional[PageCapture]]) -> None:
        workers = [
            asyncio.create_task(self._worker(state, out))
            for _ in range(self.config.concurrency)
        ]
        try:
            if state.deadline is None:
                await asyncio.gather(*workers)
            else:
                remaining = max(0.0, state.deadline - time.monotonic())
                await asyncio.wait_for(asyncio.gather(*workers), remaining)
        except asyncio.TimeoutError:
            logger.warning("Crawl time limit reached, %d render(s) interrupted", state.in_flight)
            await state.expire()
        finally:
            for w in workers:
                w.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            out.put_nowait(None)

    async def _worker(self, state: CrawlState, out: asyncio.Queue[Optional[PageCapture]]) -> None:
        while True:
            entry = await state.claim()
            if entry is None:
                return
            try:
                page = await self._render(entry.target)
            except RenderFatal as exc:
                logger.error("Renderer is unusable, aborting crawl: %s", exc)
                await state.fail(entry, CaptureFailure(entry.url, exc.kind, exc.reason, exc.attempts))
                await state.abort(exc)
                return
            except RenderError as exc:
                logger.warning("Failed %s (%s): %s", entry.url, exc.kind.value, exc.reason)
                await state.fail(entry, CaptureFailure(entry.url, exc.kind, exc.reason, exc.attempts))
                continue
            except Exception as exc:
                logger.exception("Unexpected renderer error on %s", entry.url)
                await state.fail(entry, CaptureFailure(entry.url, FailureKind.FATAL, repr(exc)))
                await state.abort(exc)
                return

            if entry.depth == 0 and page.final_url and url_host(page.final_url) not in state.sites:
                # the seed redirected to another host (e.g. www.), links live there
                logger.info("Seed redirected to %s", page.final_url)
                state.allow_site(page.final_url)

            capture = PageCapture(url=entry.url, title=page.title, text_content=page.text_content)
            added = await state.complete(entry, capture, self._select_links(state, page, entry))
            logger.debug("Captured %s (depth %d, %d new links)", entry.url, entry.depth, len(added))
            out.put_nowait(capture)

    async def _render(self, url: str) -> RenderedPage:
        attempts = 0
        while True:
            attempts += 1
            try:
                return await self.renderer.render(url)
            except RenderTransient as exc:
                exc.attempts = attempts
                if attempts > self.config.retry_times:
                    raise
                backoff = min(
                    self.config.backoff_cap,
                    self.config.backoff_base * (2 ** (attempts - 1) + random.random()),
                )
                logger.debug(
                    "Retry %d/%d for %s after %.2f s: %s",
                    attempts, self.config.retry_times, url, backoff, exc.reason,
                )
                await asyncio.sleep(backoff)

    def _select_links(
        self, state: CrawlState, page: RenderedPage, entry: FrontierEntry
    ) -> List[Tuple[str, str]]:
        if entry.depth >= self.config.max_depth:
            return []
        base = page.final_url or entry.target
        selected: List[Tuple[str, str]] = []
        for href in page.links:
            absolute = absolutize(base, href)
            if absolute is None:
                continue
            url = normalize_url(absolute)
            if self.config.same_site_only and url_host(url) not in state.sites:
                continue
            if self.robots is not None and not self.robots.can_fetch(
                self.config.user_agent, url_path(url)
            ):
                state.disallowed.add(url)
                continue
            selected.append((url, absolute))
        return selected

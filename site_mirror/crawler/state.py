# site_mirror/crawler/state.py
"""
Frontier and visited bookkeeping for one crawl run.

All mutation goes through one :class:`asyncio.Condition`, so workers see a
single structure: a URL is claimed (moved from the frontier to the visited
set) in one step, and a discovered link is enqueued only if it has never been
seen, also in one step.
"""
from __future__ import annotations

import asyncio
import time
from collections import deque
from typing import Deque, Dict, Iterable, List, Optional, Set, Tuple

from site_mirror.crawler.models import (
    CaptureFailure,
    FailureKind,
    FrontierEntry,
    PageCapture,
    Termination,
)
from site_mirror.crawler.urls import url_host


class CrawlState:
    """Owned by one crawl run and discarded after it."""

    def __init__(self, max_pages: int, max_seconds: Optional[float] = None) -> None:
        self.max_pages = max_pages
        self.deadline = None if max_seconds is None else time.monotonic() + max_seconds
        self.frontier: Deque[FrontierEntry] = deque()
        self.visited: Set[str] = set()
        self.captures: Dict[str, PageCapture] = {}
        self.failures: Dict[str, CaptureFailure] = {}
        self.disallowed: Set[str] = set()
        self.termination: Optional[Termination] = None
        self.fatal_error: Optional[BaseException] = None
        self.cancel_requested = False
        self.sites: Set[str] = set()
        self._seen: Set[str] = set()
        self._active: Dict[str, FrontierEntry] = {}
        self._changed = asyncio.Condition()

    @property
    def in_flight(self) -> int:
        return len(self._active)

    def seed(self, url: str, fetch_url: Optional[str] = None) -> None:
        self.allow_site(url)
        self._offer(url, 0, fetch_url)

    def allow_site(self, url: str) -> None:
        """Treat the host of *url* as part of the crawled site."""
        host = url_host(url)
        if host:
            self.sites.add(host)

    def _offer(self, url: str, depth: int, fetch_url: Optional[str] = None) -> bool:
        # _seen == visited ∪ frontier, so this is the insert-if-absent check
        if url in self._seen:
            return False
        self._seen.add(url)
        self.frontier.append(FrontierEntry(url, depth, fetch_url))
        return True

    def _finish(self, reason: Termination) -> None:
        if self.termination is None:
            self.termination = reason
        self._changed.notify_all()

    async def claim(self) -> Optional[FrontierEntry]:
        """
        Pop the oldest frontier entry and mark it visited.

        Returns None once the run is over; waits while the frontier is empty
        (or the page budget is fully reserved) but renders are still in flight.
        """
        async with self._changed:
            while True:
                if self.termination is not None:
                    return None
                if self.cancel_requested:
                    self._finish(Termination.CANCELLED)
                    return None
                if not self.frontier:
                    if not self._active:
                        self._finish(Termination.EXHAUSTED)
                        return None
                elif self.deadline is not None and time.monotonic() >= self.deadline:
                    self._finish(Termination.CEILING)
                    return None
                elif len(self.captures) + len(self._active) < self.max_pages:
                    entry = self.frontier.popleft()
                    self.visited.add(entry.url)
                    self._active[entry.url] = entry
                    return entry
                elif not self._active:
                    self._finish(Termination.CEILING)
                    return None
                await self._changed.wait()

    async def complete(
        self,
        entry: FrontierEntry,
        capture: PageCapture,
        links: Iterable[Tuple[str, str]] = (),
    ) -> List[str]:
        """Record a successful render and enqueue its unseen ``(url, fetch_url)`` links."""
        async with self._changed:
            self._active.pop(entry.url, None)
            self.captures[entry.url] = capture
            added = [url for url, fetch_url in links if self._offer(url, entry.depth + 1, fetch_url)]
            self._changed.notify_all()
            return added

    async def fail(self, entry: FrontierEntry, failure: CaptureFailure) -> None:
        async with self._changed:
            self._active.pop(entry.url, None)
            self.failures[entry.url] = failure
            self._changed.notify_all()

    async def abort(self, error: BaseException) -> None:
        async with self._changed:
            if self.fatal_error is None:
                self.fatal_error = error
            self._finish(Termination.FATAL)

    async def expire(self) -> None:
        """Time limit hit mid-render: record interrupted pages and stop."""
        async with self._changed:
            for url in self._active:
                self.failures[url] = CaptureFailure(
                    url, FailureKind.TRANSIENT, "interrupted by the time limit"
                )
            self._active.clear()
            self._finish(Termination.CEILING)

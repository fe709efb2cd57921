# site_mirror/crawler/renderer.py
"""
Renderer boundary: turns a URL into title, visible text and outbound links.

The crawl engine only depends on :class:`Renderer`. :class:`HttpRenderer` is
the stock implementation (plain HTTP + BeautifulSoup); a browser-backed
renderer that executes JavaScript can be plugged in by implementing the same
``render`` coroutine and raising the same :class:`RenderError` subclasses.
"""
from __future__ import annotations

import asyncio
from typing import List, Optional, Protocol, Sequence, runtime_checkable
from urllib.parse import urljoin, urlparse, urlunparse

from aiohttp import ClientConnectionError, ClientError, ClientSession, ClientTimeout
from bs4 import BeautifulSoup
from bs4.exceptions import ParserRejectedMarkup

from site_mirror.config import MirrorConfig
from site_mirror.crawler.models import FailureKind, RenderedPage
from site_mirror.crawler.robots import RobotsTxtRules
from site_mirror.logger import get_logger

__all__ = (
    "RenderError",
    "RenderTransient",
    "RenderPermanent",
    "RenderFatal",
    "Renderer",
    "HttpRenderer",
    "parse_html",
)

logger = get_logger("renderer")


class RenderError(Exception):
    """Base class for renderer failures."""

    kind: FailureKind = FailureKind.PERMANENT

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"{url}: {reason}")
        self.url = url
        self.reason = reason
        self.attempts = 1


class RenderTransient(RenderError):
    """Timeout or temporary network/server trouble; worth retrying."""

    kind = FailureKind.TRANSIENT


class RenderPermanent(RenderError):
    """4xx-equivalent or a document that cannot be used; never retried."""

    kind = FailureKind.PERMANENT


class RenderFatal(RenderError):
    """The renderer itself is unusable; the crawl must stop."""

    kind = FailureKind.FATAL


@runtime_checkable
class Renderer(Protocol):
    async def render(self, url: str) -> RenderedPage:
        ...


def parse_html(html: str, base_url: str) -> RenderedPage:
    """Extract title, visible text and absolute ``<a href>`` targets."""
    soup = BeautifulSoup(html, "html.parser")

    title_tag = soup.find("title")
    title = title_tag.get_text(strip=True) if title_tag else ""

    # <base href> overrides the document URL for relative links
    base_tag = soup.find("base", href=True)
    if base_tag is not None:
        base_url = urljoin(base_url, str(base_tag["href"]))

    seen: set[str] = set()
    links: List[str] = []
    for tag in soup.find_all("a", href=True):
        href = str(tag["href"]).strip()
        if not href or href.startswith(("mailto:", "javascript:", "#")):
            continue
        try:
            absolute = urljoin(base_url, href)
        except ValueError:
            logger.debug("Skipping malformed link %r on %s", href, base_url)
            continue
        if absolute not in seen:
            seen.add(absolute)
            links.append(absolute)

    for element in soup(["script", "style", "noscript", "template"]):
        element.decompose()
    body = soup.body or soup
    text = " ".join(body.stripped_strings)

    return RenderedPage(title=title, text_content=text, links=tuple(links), final_url=base_url)


class HttpRenderer:
    """Fetches pages over HTTP and classifies failures for the crawl engine."""

    _TRANSIENT_STATUS: Sequence[int] = tuple(range(500, 600)) + (408, 425, 429)
    _HTML_TYPES = ("text/html", "application/xhtml+xml")

    def __init__(self, config: MirrorConfig, session: Optional[ClientSession] = None) -> None:
        self.config = config
        self.session = session
        self._owns_session = session is None

    async def __aenter__(self) -> HttpRenderer:
        if self.session is None:
            self.session = ClientSession(
                timeout=ClientTimeout(total=self.config.timeout),
                headers={"User-Agent": self.config.user_agent},
                raise_for_status=False,
            )
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_session and self.session is not None and not self.session.closed:
            await self.session.close()

    async def render(self, url: str) -> RenderedPage:
        if self.session is None or self.session.closed:
            raise RenderFatal(url, "HTTP session is not open")
        try:
            async with self.session.get(url, allow_redirects=True) as resp:
                status = resp.status
                if status in self._TRANSIENT_STATUS:
                    raise RenderTransient(url, f"HTTP {status}")
                if status >= 400:
                    raise RenderPermanent(url, f"HTTP {status}")
                mime = resp.headers.get("Content-Type", "").split(";", 1)[0].strip().lower()
                if mime and mime not in self._HTML_TYPES:
                    raise RenderPermanent(url, f"unsupported content type {mime}")
                html = await resp.text(errors="replace")
                final_url = str(resp.url)
        except (asyncio.TimeoutError, ClientConnectionError) as exc:
            raise RenderTransient(url, f"{type(exc).__name__}: {exc}") from exc
        except ClientError as exc:
            raise RenderPermanent(url, f"{type(exc).__name__}: {exc}") from exc
        except RuntimeError as exc:
            # aiohttp raises RuntimeError once the session or connector is closed
            raise RenderFatal(url, str(exc)) from exc

        logger.debug("Rendered %s (%d bytes)", url, len(html))
        try:
            return parse_html(html, final_url)
        except (ParserRejectedMarkup, ValueError) as exc:
            raise RenderPermanent(url, f"malformed document: {exc}") from exc

    async def load_robots(self, seed: str) -> Optional[RobotsTxtRules]:
        """Fetch ``/robots.txt`` for the seed host; None means allow all."""
        if self.session is None:
            return None
        parsed = urlparse(seed)
        robots_url = urlunparse((parsed.scheme, parsed.netloc, "/robots.txt", "", "", ""))
        try:
            async with self.session.get(robots_url) as resp:
                if resp.status != 200:
                    logger.debug("robots.txt %s -> HTTP %s", robots_url, resp.status)
                    return None
                return RobotsTxtRules(await resp.text(errors="replace"))
        except (ClientError, asyncio.TimeoutError) as exc:
            logger.warning("Error loading robots.txt: %s", exc)
            return None

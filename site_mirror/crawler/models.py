# site_mirror/crawler/models.py
"""
Data models for the SiteMirror crawler.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


@dataclass(frozen=True, slots=True)
class PageCapture:
    """Rendered snapshot of one page.

    Identity is the normalized URL alone: two captures of the same URL compare
    equal and hash the same even when their content differs.
    """

    url: str
    title: str = field(default="", compare=False)
    text_content: str = field(default="", compare=False, repr=False)

    def to_document(self) -> Dict[str, str]:
        """Index document body for this capture."""
        return {"url": self.url, "title": self.title, "textContent": self.text_content}


@dataclass(frozen=True, slots=True)
class RenderedPage:
    """What a renderer hands back for one URL."""

    title: str
    text_content: str
    links: Tuple[str, ...] = ()
    final_url: Optional[str] = None


class FailureKind(str, Enum):
    TRANSIENT = "transient"
    PERMANENT = "permanent"
    FATAL = "fatal"


@dataclass(frozen=True, slots=True)
class CaptureFailure:
    """A visited URL that produced no capture."""

    url: str
    kind: FailureKind
    reason: str
    attempts: int = 1


@dataclass(frozen=True, slots=True)
class FrontierEntry:
    """Normalized identity plus the address to fetch (first form seen)."""

    url: str
    depth: int
    fetch_url: Optional[str] = None

    @property
    def target(self) -> str:
        return self.fetch_url or self.url


class Termination(str, Enum):
    """Why a crawl run stopped."""

    EXHAUSTED = "exhausted"
    CEILING = "ceiling"
    CANCELLED = "cancelled"
    FATAL = "fatal"


@dataclass(slots=True)
class CrawlReport:
    """Outcome of one crawl run."""

    seed: str
    captures: List[PageCapture] = field(default_factory=list)
    failures: List[CaptureFailure] = field(default_factory=list)
    disallowed: List[str] = field(default_factory=list)
    termination: Termination = Termination.EXHAUSTED
    error: Optional[str] = None
    duration: float = 0.0

    @property
    def pages_captured(self) -> int:
        return len(self.captures)

    @property
    def pages_failed(self) -> int:
        return len(self.failures)

    def as_dict(self, *, include_content: bool = True) -> Dict[str, Any]:
        pages: List[Dict[str, Any]] = []
        for capture in self.captures:
            page: Dict[str, Any] = {"url": capture.url, "title": capture.title}
            if include_content:
                page["text_content"] = capture.text_content
            pages.append(page)
        return {
            "seed": self.seed,
            "termination": self.termination.value,
            "error": self.error,
            "duration": round(self.duration, 3),
            "pages_captured": self.pages_captured,
            "pages_failed": self.pages_failed,
            "pages": pages,
            "failures": [
                {"url": f.url, "kind": f.kind.value, "reason": f.reason, "attempts": f.attempts}
                for f in self.failures
            ],
            "disallowed": list(self.disallowed),
        }

    def json(self, *, pretty: bool = False, include_content: bool = True) -> str:
        return json.dumps(
            self.as_dict(include_content=include_content),
            ensure_ascii=False,
            indent=2 if pretty else None,
        )

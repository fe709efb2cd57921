"""site_mirror.crawler: обход сайта и снятие снимков страниц."""

from site_mirror.crawler.engine import CrawlAborted, CrawlEngine
from site_mirror.crawler.models import (
    CaptureFailure,
    CrawlReport,
    FailureKind,
    PageCapture,
    RenderedPage,
    Termination,
)
from site_mirror.crawler.renderer import (
    HttpRenderer,
    Renderer,
    RenderError,
    RenderFatal,
    RenderPermanent,
    RenderTransient,
)

__all__ = [
    "CaptureFailure",
    "CrawlAborted",
    "CrawlEngine",
    "CrawlReport",
    "FailureKind",
    "HttpRenderer",
    "PageCapture",
    "RenderError",
    "RenderFatal",
    "RenderPermanent",
    "RenderTransient",
    "RenderedPage",
    "Renderer",
    "Termination",
]

# File: site_mirror/pipeline.py
"""site_mirror.pipeline: связывает конфиг, рендерер, обход и публикацию в индекс."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from aiohttp import ClientSession

from site_mirror.config import MirrorConfig
from site_mirror.crawler.engine import CrawlEngine
from site_mirror.crawler.models import CrawlReport
from site_mirror.crawler.renderer import HttpRenderer, Renderer
from site_mirror.index.client import BulkExportClient
from site_mirror.index.models import ExportReport
from site_mirror.index.orchestrator import export_captures
from site_mirror.logger import logger

__all__ = ["MirrorReport", "start_crawl", "start_mirror"]


@dataclass(slots=True)
class MirrorReport:
    """Итог полного прогона: обход и публикация."""

    crawl: CrawlReport
    export: ExportReport = field(default_factory=ExportReport)

    def as_dict(self) -> Dict[str, Any]:
        crawl = self.crawl.as_dict(include_content=False)
        crawl.pop("pages")
        return {"crawl": crawl, "export": self.export.as_dict()}


async def start_crawl(cfg: MirrorConfig, renderer: Optional[Renderer] = None) -> CrawlReport:
    """
    Запускает обход от cfg.seed_url и возвращает CrawlReport.

    Если renderer не передан, используется HttpRenderer со своей сессией,
    которая закрывается по окончании обхода.
    """
    seed = str(cfg.seed_url)
    if renderer is not None:
        return await CrawlEngine(renderer, cfg).crawl(seed)

    async with HttpRenderer(cfg) as http_renderer:
        robots = await http_renderer.load_robots(seed) if cfg.respect_robots else None
        return await CrawlEngine(http_renderer, cfg, robots=robots).crawl(seed)


async def start_mirror(cfg: MirrorConfig, renderer: Optional[Renderer] = None) -> MirrorReport:
    """
    Обход и публикация всех снятых страниц в индекс.

    Одна HTTP-сессия к индексу открывается на весь прогон и закрывается
    один раз в конце; клиент экспорта её не закрывает.
    """
    if cfg.index is None:
        raise ValueError("В конфигурации не задан раздел index")

    crawl_report = await start_crawl(cfg, renderer)
    report = MirrorReport(crawl=crawl_report)
    if not crawl_report.captures:
        logger.warning("Nothing captured from %s, export skipped", crawl_report.seed)
        return report

    async with ClientSession() as session:
        client = BulkExportClient.from_config(session, cfg.index)
        report.export = await export_captures(
            client,
            crawl_report.captures,
            cfg.index.batch_size,
            max_batch_size=cfg.index.max_batch_size,
            batch_attempts=cfg.index.batch_attempts,
        )
    return report

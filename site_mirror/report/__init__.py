# File: site_mirror/report/__init__.py
"""site_mirror.report: Утилиты для генерации отчётов (JSON и HTML) используемые CLI и тестами."""

from site_mirror.report.html_report import render_html
from site_mirror.report.json_report import render_json

__all__ = ["render_json", "render_html"]

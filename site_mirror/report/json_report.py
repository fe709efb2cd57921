# site_mirror/report/json_report.py

"""
Генерация JSON-отчёта для проекта SiteMirror.

Сериализация отчёта обхода (или полного прогона) в файл.
"""
import json
from pathlib import Path
from typing import Any, Dict, Union


def render_json(data: Dict[str, Any], output_path: Union[Path, str], *, pretty: bool = True) -> Path:
    """
    Сохраняет словарь отчёта в формате JSON по указанному пути.

    :param data: результат ``CrawlReport.as_dict()`` или ``MirrorReport.as_dict()``
    :param output_path: путь к JSON-файлу
    :param pretty: форматировать с отступом 2
    :return: Path сохранённого файла

    Пример:
    ```python
    from site_mirror.report.json_report import render_json
    report_path = render_json(report.as_dict(), 'reports/crawl.json')
    ```
    """
    output = Path(output_path)
    output.parent.mkdir(parents=True, exist_ok=True)

    with output.open('w', encoding='utf-8') as f:
        json.dump(data, f, ensure_ascii=False, indent=2 if pretty else None)

    return output

# === FILE: site_mirror/config.py ===
"""
Модуль для загрузки и валидации конфигурации SiteMirror.
Используется Pydantic для описания схемы и проверки данных.
"""
from __future__ import annotations

import errno
import json
import os
from pathlib import Path
from typing import Any, Optional, Union

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    HttpUrl,
    ValidationError,
    field_validator,
    model_validator,
)


class IndexConfig(BaseModel):
    """Параметры поискового индекса, в который публикуются страницы."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    endpoint: HttpUrl = Field(..., description="Адрес индекса, например http://localhost:9200.")
    name: str = Field("site-mirror", min_length=1, description="Имя индекса.")
    batch_size: int = Field(100, ge=1, description="Число документов в одном bulk-запросе.")
    max_batch_size: int = Field(1000, ge=1, description="Жесткий лимит размера пакета.")
    batch_attempts: int = Field(1, ge=1, description="Попыток отправки пакета при Fatal.")
    timeout: float = Field(30.0, gt=0, description="Таймаут одного bulk-запроса (секунд).")
    username: Optional[str] = Field(None, description="Логин для Basic Auth.")
    password: Optional[str] = Field(None, description="Пароль для Basic Auth.")

    @field_validator("endpoint", mode="before")
    def _strip_trailing_slash(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.rstrip("/")
        return v

    @model_validator(mode="after")
    def _check_batch_size(self) -> IndexConfig:
        if self.batch_size > self.max_batch_size:
            raise ValueError("batch_size не может превышать max_batch_size")
        return self

    @property
    def base_url(self) -> str:
        return str(self.endpoint).rstrip("/")


class MirrorConfig(BaseModel):
    """Конфигурация для одного запуска обхода и публикации."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    seed_url: HttpUrl = Field(..., description="Стартовый URL обхода.")
    same_site_only: bool = Field(True, description="Переходить только по ссылкам того же хоста.")
    max_depth: int = Field(3, ge=0, description="Максимальная глубина обхода ссылок.")
    max_pages: int = Field(1000, ge=1, description="Жесткий лимит по числу страниц.")
    max_seconds: Optional[float] = Field(None, ge=0, description="Лимит времени обхода (секунд).")
    concurrency: int = Field(1, ge=1, description="Число параллельных воркеров.")
    timeout: float = Field(10.0, gt=0, description="Таймаут на один запрос (секунд).")
    user_agent: str = Field("SiteMirrorBot/1.0", min_length=1, description="Заголовок User-Agent.")
    retry_times: int = Field(3, ge=0, description="Число повторных попыток при временных ошибках.")
    backoff_base: float = Field(1.0, ge=0, description="База экспоненциальной задержки (секунд).")
    backoff_cap: float = Field(60.0, ge=0, description="Максимальная задержка между попытками.")
    respect_robots: bool = Field(True, description="Учитывать robots.txt.")

    index: Optional[IndexConfig] = Field(None, description="Настройки поискового индекса.")


_DEFAULT_CFG = Path("configs/default.yaml")


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ValueError(f"Неправильный YAML в {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise TypeError(f"Верхний уровень YAML должен быть mapping, получено {type(data).__name__}")
    return data


def _read_json(path: Path) -> dict[str, Any]:
    try:
        data = json.loads(path.read_text(encoding="utf-8")) or {}
    except json.JSONDecodeError as exc:
        raise ValueError(f"Неправильный JSON в {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise TypeError(f"Верхний уровень JSON должен быть mapping, получено {type(data).__name__}")
    return data


def load_config(path: Union[str, Path, None]) -> MirrorConfig:
    """
    Читает YAML или JSON и возвращает проверенный объект MirrorConfig.
    При отсутствии файла конфига бросает FileNotFoundError.
    """
    if path is None:
        if not _DEFAULT_CFG.exists():
            raise FileNotFoundError(errno.ENOENT, os.strerror(errno.ENOENT), str(_DEFAULT_CFG))
        path_obj = _DEFAULT_CFG
    else:
        path_obj = Path(path).expanduser().resolve()
        if not path_obj.is_file():
            raise FileNotFoundError(errno.ENOENT, os.strerror(errno.ENOENT), str(path_obj))

    suffix = path_obj.suffix.lower()
    if suffix in (".yaml", ".yml"):
        data = _read_yaml(path_obj)
    elif suffix == ".json":
        data = _read_json(path_obj)
    else:
        raise ValueError(f"Неподдерживаемый формат конфига: {suffix}")

    try:
        return MirrorConfig(**data)
    except ValidationError:
        raise

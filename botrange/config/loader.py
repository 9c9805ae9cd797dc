"""Configuration loading helpers for botrange."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable

import yaml
from pydantic import ValidationError

from ..errors import ConfigValidationError
from .models import EngineConfig, SourceDescriptor

CONFIG_EXTENSIONS = (".yaml", ".yml", ".json")
ENGINE_CONFIG_FILENAME = "engine.yaml"
SOURCES_FILENAME = "sources.yaml"
TEMPLATE_SOURCES = Path(__file__).resolve().parent / "templates" / SOURCES_FILENAME


def _read_file(path: Path) -> Any:
    text = path.read_text(encoding="utf-8")
    try:
        if path.suffix in (".yaml", ".yml"):
            return yaml.safe_load(text)
        return json.loads(text)
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        raise ConfigValidationError(f"Cannot parse {path}: {exc}") from exc


def _write_file(path: Path, payload: dict) -> None:
    with path.open("w", encoding="utf-8") as stream:
        if path.suffix in (".yaml", ".yml"):
            yaml.safe_dump(payload, stream, allow_unicode=True, sort_keys=False)
        else:
            json.dump(payload, stream, indent=2, ensure_ascii=False)


def _first_error_field(exc: ValidationError) -> str | None:
    errors = exc.errors()
    if not errors or not errors[0].get("loc"):
        return None
    return ".".join(str(part) for part in errors[0]["loc"])


@dataclass(slots=True)
class ConfigLocator:
    """Resolve important paths from project root."""

    project_root: Path | None = None
    config_dir: Path | None = None
    custom_dir: Path | None = None
    logs_dir: Path | None = None

    def __post_init__(self) -> None:
        env_root = os.environ.get("BOTRANGE_HOME")
        if env_root:
            root = Path(env_root).expanduser().resolve()
        else:
            root = (self.project_root or Path.cwd()).resolve()
        self.project_root = root
        self.config_dir = (root / "config").resolve()
        self.custom_dir = (root / "custom").resolve()
        self.logs_dir = (root / "logs").resolve()

    def ensure_directories(self) -> None:
        for directory in (self.config_dir, self.logs_dir):
            directory.mkdir(parents=True, exist_ok=True)

    def engine_config_path(self) -> Path:
        return self.config_dir / ENGINE_CONFIG_FILENAME

    def sources_path(self) -> Path:
        for suffix in CONFIG_EXTENSIONS:
            candidate = self.config_dir / f"sources{suffix}"
            if candidate.exists():
                return candidate
        return self.config_dir / SOURCES_FILENAME


class ConfigRepository:
    """Repository encapsulating config IO and schema validation."""

    def __init__(self, locator: ConfigLocator | None = None) -> None:
        self.locator = locator or ConfigLocator()
        self._engine_cache: EngineConfig | None = None

    # ------------------------------------------------------------------
    # Engine configuration
    # ------------------------------------------------------------------
    def load_engine_config(self) -> EngineConfig:
        if self._engine_cache is not None:
            return self._engine_cache
        path = self.locator.engine_config_path()
        if path.exists():
            payload = _read_file(path) or {}
            if not isinstance(payload, dict):
                raise ConfigValidationError(f"Configuration file must contain a mapping: {path}")
            try:
                config = EngineConfig.model_validate(payload)
            except ValidationError as exc:
                raise ConfigValidationError(
                    f"Invalid engine configuration {path}: {exc}",
                    field=_first_error_field(exc),
                ) from exc
        else:
            config = EngineConfig()
            self.save_engine_config(config)
        if not config.custom_dir.is_absolute():
            config = config.model_copy(
                update={"custom_dir": (self.locator.project_root / config.custom_dir).resolve()}
            )
        self._engine_cache = config
        return config

    def save_engine_config(self, config: EngineConfig) -> None:
        self.locator.ensure_directories()
        _write_file(self.locator.engine_config_path(), config.model_dump(mode="json"))
        self._engine_cache = config

    # ------------------------------------------------------------------
    # Source descriptors
    # ------------------------------------------------------------------
    def load_sources(self, path: Path | None = None) -> list[SourceDescriptor]:
        """Load and validate the full source list.

        Any invalid descriptor fails the whole load; a partial configuration
        is never returned.
        """

        path = path or self.locator.sources_path()
        if not path.exists():
            path = TEMPLATE_SOURCES
        payload = _read_file(path)
        if isinstance(payload, dict):
            payload = payload.get("sources")
        if not isinstance(payload, list):
            raise ConfigValidationError(f"Source list must be a list of mappings: {path}")
        return parse_sources(payload)

    def save_sources(self, sources: Iterable[SourceDescriptor], path: Path | None = None) -> Path:
        self.locator.ensure_directories()
        path = path or self.locator.sources_path()
        payload = {
            "sources": [
                source.model_dump(mode="json", by_alias=True, exclude_defaults=True)
                for source in sources
            ]
        }
        _write_file(path, payload)
        return path


def parse_sources(items: Iterable[Any]) -> list[SourceDescriptor]:
    descriptors: list[SourceDescriptor] = []
    seen: set[str] = set()
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise ConfigValidationError(f"Source #{index} must be a mapping", field="source")
        try:
            descriptor = SourceDescriptor.model_validate(item)
        except ValidationError as exc:
            label = item.get("name") or f"#{index}"
            raise ConfigValidationError(
                f"Invalid source {label}: {exc}", field=_first_error_field(exc)
            ) from exc
        if descriptor.id in seen:
            raise ConfigValidationError(f"Duplicate source id: {descriptor.id}", field="id")
        seen.add(descriptor.id)
        descriptors.append(descriptor)
    return descriptors


__all__ = ["ConfigLocator", "ConfigRepository", "CONFIG_EXTENSIONS", "parse_sources"]

from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import timedelta
from pathlib import Path
import os

import yaml

from charon_key.errors import ConfigError
from charon_key.infra.http.keys_client import (
    DEFAULT_BASE_URL,
    DEFAULT_RETRIES,
    DEFAULT_RETRY_BACKOFF_SECONDS,
    DEFAULT_TIMEOUT_SECONDS,
)
from charon_key.infra.logging.setup import mapLogLevel

ENV_PREFIX = "CHARON_KEY_"


@dataclass(frozen=True)
class Settings:
    # Mapping
    user_map: str | None = None

    # Cache
    cache_dir: str | None = None
    cache_ttl: int = 5  # minutes

    # Logging
    log_level: str = "info"
    log_file: str | None = None

    # Key-listing service
    keys_url: str = DEFAULT_BASE_URL
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    retries: int = DEFAULT_RETRIES
    retry_backoff_seconds: float = DEFAULT_RETRY_BACKOFF_SECONDS

    # Resolution
    max_workers: int = 4
    deadline_seconds: float = 20.0

    @property
    def cache_ttl_delta(self) -> timedelta:
        return timedelta(minutes=self.cache_ttl)


@dataclass(frozen=True)
class LoadedSettings:
    settings: Settings
    sources_used: list[str]


_INT_FIELDS = ("cache_ttl", "retries", "max_workers")
_FLOAT_FIELDS = ("timeout_seconds", "retry_backoff_seconds", "deadline_seconds")
_FIELD_NAMES = tuple(f.name for f in fields(Settings))


def _read_yaml_config(path: Path) -> dict:
    if not path.is_file():
        raise ConfigError(f"config file not found: {path}")
    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"failed to read config file {path}: {exc}") from exc
    if not isinstance(data, dict):
        return {}
    unknown = sorted(set(data) - set(_FIELD_NAMES))
    if unknown:
        raise ConfigError(f"unknown config keys in {path}: {', '.join(map(str, unknown))}")
    return data


def _env_get(name: str) -> str | None:
    v = os.getenv(ENV_PREFIX + name.upper())
    if v is None or v.strip() == "":
        return None
    return v.strip()


def _coerce(name: str, value):
    """Приводит значение слоя (строка из ENV/YAML/CLI) к типу поля Settings."""
    if value is None:
        return None
    try:
        if name in _INT_FIELDS:
            if isinstance(value, bool):
                raise ValueError(value)
            return int(value)
        if name in _FLOAT_FIELDS:
            if isinstance(value, bool):
                raise ValueError(value)
            return float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"invalid value for {name}: {value!r}") from exc
    return str(value)


def load_settings(
    config_path: str | None,
    cli_overrides: dict,
) -> LoadedSettings:
    """
    Priority: CLI > ENV > config > defaults
    """
    sources: list[str] = []
    defaults = Settings()

    # 1) config file
    cfg: dict = {}
    if config_path:
        cfg = _read_yaml_config(Path(config_path))
        if cfg:
            sources.append("config")

    # 2) env
    env = {name: _env_get(name) for name in _FIELD_NAMES}
    if any(v is not None for v in env.values()):
        sources.append("env")

    merged = {name: getattr(defaults, name) for name in _FIELD_NAMES}
    for name, value in cfg.items():
        if value is not None:
            merged[name] = _coerce(name, value)

    for name, value in env.items():
        if value is not None:
            merged[name] = _coerce(name, value)

    # 3) apply CLI overrides (only those explicitly passed)
    if any(v is not None for v in cli_overrides.values()):
        sources.append("cli")

    for k, v in cli_overrides.items():
        if v is None:
            continue
        if k not in merged:
            raise ConfigError(f"unknown setting: {k}")
        merged[k] = _coerce(k, v)

    return LoadedSettings(settings=Settings(**merged), sources_used=sources)


def validate_settings(settings: Settings) -> None:
    """
    Назначение:
        Проверка итоговых настроек до начала резолва.

    Ошибки/исключения:
        ConfigError с описанием первого нарушения.
    """
    if not settings.user_map:
        raise ConfigError("--user-map is required")
    if settings.cache_ttl < 1:
        raise ConfigError(f"cache-ttl must be at least 1 minute, got {settings.cache_ttl}")
    try:
        mapLogLevel(settings.log_level)
    except ValueError as exc:
        raise ConfigError(f"invalid log level: {settings.log_level!r} (valid: debug, info, warn, error)") from exc
    if not settings.keys_url.startswith(("https://", "http://")):
        raise ConfigError(f"keys-url must be an http(s) URL, got {settings.keys_url!r}")
    if settings.timeout_seconds <= 0:
        raise ConfigError("timeout-seconds must be > 0")
    if settings.retries < 0:
        raise ConfigError("retries must be >= 0")
    if settings.retry_backoff_seconds < 0:
        raise ConfigError("retry-backoff-seconds must be >= 0")
    if settings.max_workers < 1:
        raise ConfigError("max-workers must be >= 1")
    if settings.deadline_seconds <= 0:
        raise ConfigError("deadline-seconds must be > 0")

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import os

import yaml

ENV_PREFIX = "PLANSYNC_"


@dataclass(frozen=True)
class Settings:
    # API
    base_url: str | None = None
    api_token: str | None = None
    timeout_seconds: float = 20.0
    retries: int = 3
    retry_backoff_seconds: float = 0.5

    # TLS
    tls_skip_verify: bool = False
    ca_file: str | None = None

    # Concurrency
    max_concurrency: int = 8
    load_concurrency: int = 4

    # Paths / logging
    log_dir: str = "./logs"
    report_dir: str = "./reports"
    log_level: str = "INFO"
    report_items_limit: int = 200


@dataclass(frozen=True)
class LoadedSettings:
    settings: Settings
    sources_used: list[str]


_STR_FIELDS = ("base_url", "api_token", "ca_file", "log_dir", "report_dir", "log_level")
_INT_FIELDS = ("retries", "max_concurrency", "load_concurrency", "report_items_limit")
_FLOAT_FIELDS = ("timeout_seconds", "retry_backoff_seconds")
_BOOL_FIELDS = ("tls_skip_verify",)
ALL_FIELDS = _STR_FIELDS + _INT_FIELDS + _FLOAT_FIELDS + _BOOL_FIELDS


def _read_yaml_config(path: Path) -> dict:
    if not path.exists() or not path.is_file():
        return {}
    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError):
        return {}
    if not isinstance(data, dict):
        return {}
    return data


def _env_get(name: str) -> str | None:
    v = os.getenv(ENV_PREFIX + name.upper())
    if v is None or v.strip() == "":
        return None
    return v.strip()


def parse_bool(v: str | None) -> bool | None:
    if v is None:
        return None
    vv = v.lower()
    if vv in ("1", "true", "yes", "y"):
        return True
    if vv in ("0", "false", "no", "n"):
        return False
    raise ValueError(f"Invalid boolean env value: {v}")


def _parse_env(name: str, raw: str) -> object:
    if name in _BOOL_FIELDS:
        return parse_bool(raw)
    try:
        if name in _INT_FIELDS:
            return int(raw)
        if name in _FLOAT_FIELDS:
            return float(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid numeric env value for {ENV_PREFIX}{name.upper()}: {raw}") from exc
    return raw


def loadSettings(configPath: str | None, cliOverrides: dict) -> LoadedSettings:
    """
    Назначение:
        Собирает итоговые настройки запуска.

    Контракт:
        Приоритет: CLI > ENV (PLANSYNC_*) > YAML config > defaults.
        sources_used перечисляет слои, которые что-то задали.

    Ошибки:
        ValueError при невалидном bool/int/float в переменных окружения.
    """
    sources: list[str] = []
    defaults = Settings()

    # 1) config file
    cfg: dict = {}
    if configPath:
        cfg = _read_yaml_config(Path(configPath))
        if cfg:
            sources.append("config")

    merged = {name: cfg.get(name, getattr(defaults, name)) for name in ALL_FIELDS}

    # 2) env
    env = {name: _env_get(name) for name in ALL_FIELDS}
    if any(v is not None for v in env.values()):
        sources.append("env")
    for name, raw in env.items():
        if raw is not None:
            merged[name] = _parse_env(name, raw)

    # 3) CLI overrides (только явно переданные)
    if any(v is not None for v in cliOverrides.values()):
        sources.append("cli")
    for k, v in cliOverrides.items():
        if v is None:
            continue
        merged[k] = v

    settings = Settings(
        base_url=merged["base_url"],
        api_token=merged["api_token"],
        timeout_seconds=float(merged["timeout_seconds"]),
        retries=int(merged["retries"]),
        retry_backoff_seconds=float(merged["retry_backoff_seconds"]),
        tls_skip_verify=bool(merged["tls_skip_verify"]),
        ca_file=merged["ca_file"],
        max_concurrency=int(merged["max_concurrency"]),
        load_concurrency=int(merged["load_concurrency"]),
        log_dir=str(merged["log_dir"]),
        report_dir=str(merged["report_dir"]),
        log_level=str(merged["log_level"]),
        report_items_limit=int(merged["report_items_limit"]),
    )

    return LoadedSettings(settings=settings, sources_used=sources)

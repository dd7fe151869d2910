from __future__ import annotations

import json
import os
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

DEFAULT_CONFIG_PATH = Path("~/.config/ghinbox/config.json").expanduser()
DEFAULT_DB_PATH = Path("~/.ghinbox/ghinbox.sqlite").expanduser()
DEFAULT_API_BASE_URL = "https://api.github.com"

CONFIG_ENV_OVERRIDES = {
    "api_base_url": "GHINBOX_API_BASE_URL",
    "db_path": "GHINBOX_DB",
    "request_timeout_s": "GHINBOX_REQUEST_TIMEOUT_S",
    "per_page": "GHINBOX_PER_PAGE",
    "max_pages": "GHINBOX_MAX_PAGES",
    "detail_workers": "GHINBOX_DETAIL_WORKERS",
    "sync_interval_s": "GHINBOX_SYNC_INTERVAL_S",
    "unread_only": "GHINBOX_UNREAD_ONLY",
    "open_only": "GHINBOX_OPEN_ONLY",
    "default_repos": "GHINBOX_REPOS",
    "default_types": "GHINBOX_TYPES",
}

_INT_KEYS = {"per_page", "max_pages", "detail_workers", "sync_interval_s"}
_FLOAT_KEYS = {"request_timeout_s"}
_BOOL_KEYS = {"unread_only", "open_only"}
_LIST_KEYS = {"default_repos", "default_types"}


def get_config_path(path: Path | None = None) -> Path:
    candidate = path or Path(os.getenv("GHINBOX_CONFIG", DEFAULT_CONFIG_PATH))
    return candidate.expanduser()


def read_config_file(path: Path | None = None) -> dict[str, Any]:
    config_path = get_config_path(path)
    if not config_path.exists():
        return {}
    raw = config_path.read_text()
    if not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError("invalid config json") from exc
    if not isinstance(data, dict):
        raise ValueError("config must be an object")
    return data


def write_config_file(data: dict[str, Any], path: Path | None = None) -> Path:
    config_path = get_config_path(path)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(json.dumps(data, ensure_ascii=False, indent=2) + "\n")
    return config_path


def get_env_overrides() -> dict[str, str]:
    overrides: dict[str, str] = {}
    for key, env_var in CONFIG_ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value is not None:
            overrides[key] = value
    return overrides


@dataclass
class GhinboxConfig:
    api_base_url: str = DEFAULT_API_BASE_URL
    db_path: str = str(DEFAULT_DB_PATH)
    request_timeout_s: float = 10.0
    per_page: int = 50
    max_pages: int = 10
    # 1 keeps detail enrichment sequential.
    detail_workers: int = 4
    sync_interval_s: int = 120
    unread_only: bool = True
    open_only: bool = False
    default_repos: list[str] = field(default_factory=list)
    default_types: list[str] = field(default_factory=list)


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    if value.lower() in {"1", "true", "yes", "on"}:
        return True
    if value.lower() in {"0", "false", "off", "no"}:
        return False
    return default


def _parse_int(value: object, default: int, *, key: str) -> int:
    if value is None:
        return default
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        warnings.warn(f"Invalid int for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default


def _parse_float(value: object, default: float, *, key: str) -> float:
    if value is None:
        return default
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        warnings.warn(f"Invalid float for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default


def _coerce_bool(value: object, default: bool, *, key: str) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        return _parse_bool(value, default)
    warnings.warn(f"Invalid bool for {key}: {value!r}", RuntimeWarning, stacklevel=2)
    return default


def _coerce_str_list(value: object, *, key: str) -> list[str] | None:
    if value is None:
        return None
    if isinstance(value, list):
        items: list[str] = []
        for item in value:
            if isinstance(item, str) and item.strip():
                items.append(item.strip())
        return items
    if isinstance(value, str):
        return [p.strip() for p in value.split(",") if p.strip()]
    warnings.warn(f"Invalid list for {key}: {value!r}", RuntimeWarning, stacklevel=2)
    return None


def load_config(path: Path | None = None) -> GhinboxConfig:
    cfg = GhinboxConfig()
    config_path = get_config_path(path)
    if config_path.exists():
        try:
            data = json.loads(config_path.read_text())
        except json.JSONDecodeError:
            data = {}
        if isinstance(data, dict):
            cfg = _apply_dict(cfg, data)
    cfg = _apply_dict(cfg, get_env_overrides())
    return cfg


def _apply_dict(cfg: GhinboxConfig, data: dict[str, Any]) -> GhinboxConfig:
    for key, value in data.items():
        if not hasattr(cfg, key):
            continue
        if key in _INT_KEYS:
            setattr(cfg, key, _parse_int(value, getattr(cfg, key), key=key))
            continue
        if key in _FLOAT_KEYS:
            setattr(cfg, key, _parse_float(value, getattr(cfg, key), key=key))
            continue
        if key in _BOOL_KEYS:
            setattr(cfg, key, _coerce_bool(value, getattr(cfg, key), key=key))
            continue
        if key in _LIST_KEYS:
            parsed = _coerce_str_list(value, key=key)
            if parsed is not None:
                setattr(cfg, key, parsed)
            continue
        if value is None:
            continue
        setattr(cfg, key, str(value))
    if cfg.detail_workers < 1:
        cfg.detail_workers = 1
    return cfg

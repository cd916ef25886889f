from __future__ import annotations

import json
import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from tool_broker.schema import BrokerConfig, ProviderConfig

logger = logging.getLogger(__name__)

DEFAULT_PATH = "tool_broker.json"

DEFAULT_TOOLSETS: Dict[str, str] = {
    "personal_os": r"^(web_search|deep_research|create_task|update_task|get_tasks|calendar_|email_|alexa_)",
    "search": r"^(web_search|deep_research)",
    "github": r"^(create_issue|update_issue|get_issues|create_project|update_project)",
    "calendar": r"^calendar_",
    "email": r"^email_",
    "home": r"^alexa_",
}


def config_path() -> str:
    return os.getenv("TOOL_BROKER_CONFIG", DEFAULT_PATH)


def _read(path: str) -> Dict[str, Any]:
    p = Path(path)
    if not p.exists():
        return {}
    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except Exception as e:
        logger.warning(f"Ignoring unreadable config {path}: {e}")
        return {}
    return data if isinstance(data, dict) else {}


@lru_cache(maxsize=4)
def load_config(path: Optional[str] = None) -> Dict[str, Any]:
    return _read(path or config_path())


def load_config_uncached(path: Optional[str] = None) -> Dict[str, Any]:
    """
    Uncached config read. Use this when changes must take effect without restarting.
    """
    return _read(path or config_path())


def _get(cfg: Dict[str, Any], *path: str, default: Any = None) -> Any:
    cur: Any = cfg
    for k in path:
        if not isinstance(cur, dict) or k not in cur:
            return default
        cur = cur[k]
    return cur


def broker_config(cfg: Optional[Dict[str, Any]] = None) -> BrokerConfig:
    cfg = load_config() if cfg is None else cfg
    section = _get(cfg, "broker", default={})
    if not isinstance(section, dict):
        return BrokerConfig()
    try:
        return BrokerConfig.model_validate(section)
    except ValidationError as e:
        logger.warning(f"Invalid broker section, using defaults: {e}")
        return BrokerConfig()


def _expand_env(value: Any) -> Any:
    if isinstance(value, str):
        return os.path.expandvars(value)
    if isinstance(value, dict):
        return {k: _expand_env(v) for k, v in value.items()}
    return value


def provider_configs(cfg: Optional[Dict[str, Any]] = None) -> List[ProviderConfig]:
    """
    Provider entries from the "providers" list. Credentials in "auth" may
    reference environment variables as ${VAR}.
    """
    cfg = load_config() if cfg is None else cfg
    raw = _get(cfg, "providers", default=[])
    out: List[ProviderConfig] = []
    if not isinstance(raw, list):
        return out
    for item in raw:
        if not isinstance(item, dict):
            continue
        entry = dict(item)
        if isinstance(entry.get("auth"), dict):
            entry["auth"] = _expand_env(entry["auth"])
        try:
            out.append(ProviderConfig.model_validate(entry))
        except ValidationError as e:
            logger.warning(f"Skipping invalid provider entry {item.get('name', '?')}: {e}")
    return out


def toolsets(cfg: Optional[Dict[str, Any]] = None) -> Dict[str, str]:
    cfg = load_config() if cfg is None else cfg
    out = dict(DEFAULT_TOOLSETS)
    v = _get(cfg, "toolsets", default={})
    if isinstance(v, dict):
        out.update({str(k): str(p) for k, p in v.items() if p})
    return out


def log_level(cfg: Optional[Dict[str, Any]] = None) -> str:
    cfg = load_config() if cfg is None else cfg
    return str(_get(cfg, "logging", "level", default="INFO") or "INFO").upper()


def history_limit(cfg: Optional[Dict[str, Any]] = None) -> int:
    cfg = load_config() if cfg is None else cfg
    try:
        return int(_get(cfg, "logging", "history_limit", default=20))
    except Exception:
        return 20

from __future__ import annotations
import json, logging, os, pathlib
from typing import Any, Dict, Optional

log = logging.getLogger(__name__)

DEFAULT_PATH = pathlib.Path("config/appsettings.json")
ENV_SETTINGS = "TENANTREPORT_SETTINGS"

# $batch accepts at most 20 sub-requests per call
MAX_BATCH_SIZE = 20


class ReportConfigError(ValueError):
    """Invalid or missing report parameter. The only error reports let through."""


def _settings_path(path: Optional[str | os.PathLike] = None) -> pathlib.Path:
    if path:
        return pathlib.Path(path)
    env = os.environ.get(ENV_SETTINGS)
    if env:
        return pathlib.Path(env)
    return DEFAULT_PATH


def load_appsettings(path: Optional[str | os.PathLike] = None) -> dict:
    p = _settings_path(path)
    if not p.exists():
        return {}
    try:
        text = p.read_text(encoding="utf-8").strip()
        if not text:
            return {}
        data = json.loads(text)
    except (OSError, ValueError) as ex:
        # malformed JSON → fall back to defaults
        log.warning("Ignoring unreadable settings file %s: %s", p, ex)
        return {}
    return data if isinstance(data, dict) else {}


def _int(section: Dict[str, Any], key: str, default: int, *, minimum: int = 0, maximum: int | None = None) -> int:
    raw = section.get(key, default)
    try:
        val = int(raw)
    except (TypeError, ValueError):
        raise ReportConfigError(f"'{key}' must be an integer, got {raw!r}")
    if val < minimum or (maximum is not None and val > maximum):
        bounds = f">= {minimum}" if maximum is None else f"between {minimum} and {maximum}"
        raise ReportConfigError(f"'{key}' must be {bounds}, got {val}")
    return val


def get_http_config(path: Optional[str | os.PathLike] = None):
    cfg = load_appsettings(path).get("http", {})
    return {
        "timeout_seconds": _int(cfg, "timeout_seconds", 30, minimum=1),
        "max_retries": _int(cfg, "max_retries", 4),
        "max_concurrency": _int(cfg, "max_concurrency", 6, minimum=1),
    }


def get_batch_config(path: Optional[str | os.PathLike] = None):
    cfg = load_appsettings(path).get("batch", {})
    return {
        "chunk_size": _int(cfg, "chunk_size", MAX_BATCH_SIZE, minimum=1, maximum=MAX_BATCH_SIZE),
        "max_item_retries": _int(cfg, "max_item_retries", 2),
    }


def get_auth_methods_config(path: Optional[str | os.PathLike] = None):
    cfg = load_appsettings(path).get("auth_methods", {})
    return {
        "include_device_details": bool(cfg.get("include_device_details", False)),
    }


def get_activity_config(path: Optional[str | os.PathLike] = None):
    cfg = load_appsettings(path).get("activity", {})
    return {
        "days": _int(cfg, "days", 30, minimum=1),
        "include_realtime": bool(cfg.get("include_realtime", False)),
        "max_realtime_records": _int(cfg, "max_realtime_records", 5000, minimum=1),
        "app_ids_per_filter": _int(cfg, "app_ids_per_filter", 10, minimum=1),
        "audit_page_limit": _int(cfg, "audit_page_limit", 1, minimum=1),
    }

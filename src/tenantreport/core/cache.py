# src/tenantreport/core/cache.py
from __future__ import annotations
import json, os, sys, pathlib, tempfile
from typing import Any

APP_NAME = "PyEntraReport"
ENV_DATA_DIR = "TENANTREPORT_DATA_DIR"

def _base_dir() -> pathlib.Path:
    override = os.environ.get(ENV_DATA_DIR)
    if override:
        return pathlib.Path(override)
    if sys.platform.startswith("win"):
        root = os.environ.get("APPDATA") or os.path.expanduser("~\\AppData\\Roaming")
        return pathlib.Path(root) / APP_NAME
    elif sys.platform == "darwin":
        return pathlib.Path.home() / "Library" / "Application Support" / APP_NAME
    else:
        return pathlib.Path.home() / ".local" / "share" / APP_NAME

def cache_dir(tenant_id: str, bucket: str) -> pathlib.Path:
    p = _base_dir() / "data" / "cache" / tenant_id / bucket
    p.mkdir(parents=True, exist_ok=True); return p

def write_json_atomic(path: pathlib.Path, data: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=str(path.parent), prefix="._", suffix=".json")
    os.close(fd)
    # datetimes in report rows are written as ISO strings
    pathlib.Path(tmp).write_text(json.dumps(data, indent=2, default=_json_default), encoding="utf-8")
    os.replace(tmp, path)

def _json_default(o: Any):
    if hasattr(o, "isoformat"):
        return o.isoformat()
    if isinstance(o, (set, frozenset)):
        return sorted(o)
    raise TypeError(f"Object of type {type(o).__name__} is not JSON serializable")

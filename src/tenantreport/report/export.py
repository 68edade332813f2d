from __future__ import annotations
import logging, pathlib, time
from typing import Any, Dict, Iterable, List

from tenantreport.core.cache import cache_dir, write_json_atomic

log = logging.getLogger(__name__)

REPORTS_BUCKET = "Reports"


def report_path(tenant_id: str, name: str) -> pathlib.Path:
    return cache_dir(tenant_id, REPORTS_BUCKET) / f"{name}.json"


def export_rows(tenant_id: str, name: str, rows: Iterable[Dict[str, Any]]) -> pathlib.Path:
    """
    Write report rows as {"fetched_at", "count", "rows"}; renderers read this
    file and nothing else.
    """
    items: List[Dict[str, Any]] = list(rows)
    out = {
        "fetched_at": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
        "count": len(items),
        "rows": items,
    }
    p = report_path(tenant_id, name)
    write_json_atomic(p, out)
    log.info("wrote %d row(s) to %s", len(items), p)
    return p

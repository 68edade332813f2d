# src/tenantreport/batch/correlator.py
from __future__ import annotations
import logging
from typing import Any, Dict, List, Optional

from tenantreport.core.models import BatchOutcome

log = logging.getLogger(__name__)

EMPTY_RESPONSE_ERROR = "Empty or invalid batch response received"
MISSING_RESPONSE_ERROR = "No response returned for request id"


def _status(raw: Any) -> Optional[int]:
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


def _error_text(status: Optional[int], body: Any) -> str:
    if isinstance(body, dict):
        err = body.get("error") or {}
        if isinstance(err, dict):
            code = err.get("code")
            msg = err.get("message")
            if code or msg:
                return f"HTTP {status}: {code or 'error'} - {msg or ''}".rstrip(" -")
    return f"HTTP {status}"


def correlate(raw: Optional[Dict[str, Any]], id_map: Dict[str, Any], label: str) -> List[BatchOutcome]:
    """
    Map a $batch response back to request contexts.

    Exactly one outcome per id in id_map, plus one per unmappable response.
    Order follows the response; ids the service never answered come last.
    """
    responses = raw.get("responses") if isinstance(raw, dict) else None
    if not isinstance(responses, list) or not responses:
        log.warning("[%s] %s; marking %d request(s) failed", label, EMPTY_RESPONSE_ERROR, len(id_map))
        return [
            BatchOutcome(request_id=rid, context=ctx, success=False, status=None, error=EMPTY_RESPONSE_ERROR)
            for rid, ctx in id_map.items()
        ]

    outcomes: List[BatchOutcome] = []
    seen = set()
    for item in responses:
        if not isinstance(item, dict):
            log.warning("[%s] skipping malformed batch entry: %r", label, item)
            continue
        rid = str(item.get("id")) if item.get("id") is not None else None
        status = _status(item.get("status"))
        body = item.get("body")
        headers = item.get("headers") or {}

        if rid is None or rid not in id_map or rid in seen:
            log.warning("[%s] batch response id %r has no matching request", label, rid)
            outcomes.append(BatchOutcome(
                request_id=rid, context=None, success=False, status=None, body=body,
                error=f"Unmapped batch response id {rid!r} (HTTP {status})", headers=headers,
            ))
            continue

        seen.add(rid)
        ok = status is not None and 200 <= status < 300
        outcomes.append(BatchOutcome(
            request_id=rid,
            context=id_map[rid],
            success=ok,
            status=status,
            body=body,
            error=None if ok else _error_text(status, body),
            headers=headers,
        ))

    for rid, ctx in id_map.items():
        if rid not in seen:
            log.warning("[%s] no response for request id %s", label, rid)
            outcomes.append(BatchOutcome(request_id=rid, context=ctx, success=False, status=None, error=MISSING_RESPONSE_ERROR))

    return outcomes

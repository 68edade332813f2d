# src/tenantreport/batch/executor.py
from __future__ import annotations
import logging
from typing import Any, Dict, List, Optional

from tenantreport.core.graph_client import GraphClient
from tenantreport.core.models import BatchSubRequest
from tenantreport.http.errors import HttpError

log = logging.getLogger(__name__)


def execute_batch(graph: GraphClient, sub_requests: List[BatchSubRequest], label: str) -> Optional[Dict[str, Any]]:
    """
    Send one $batch call. Returns the raw composite response, or None when
    the call could not be made or the reply was not a JSON object.
    No retries here; the HTTP client already retried the outer POST.
    """
    if not sub_requests:
        return None

    payload = [r.as_json() for r in sub_requests]
    log.debug("[%s] POST $batch with %d sub-requests", label, len(payload))
    try:
        raw = graph.post_batch(payload)
    except HttpError as ex:
        log.error("[%s] batch request failed: %s", label, ex)
        return None
    except (TypeError, ValueError) as ex:
        log.error("[%s] batch request could not be serialized: %s", label, ex)
        return None

    if not isinstance(raw, dict):
        log.error("[%s] batch response is not an object (%s)", label, type(raw).__name__)
        return None
    return raw

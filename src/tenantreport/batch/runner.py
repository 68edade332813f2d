# src/tenantreport/batch/runner.py
from __future__ import annotations
import logging
from typing import Callable, List, Optional, Sequence

from tenantreport.batch.correlator import correlate
from tenantreport.batch.executor import execute_batch
from tenantreport.batch.planner import plan
from tenantreport.core.graph_client import GraphClient
from tenantreport.core.models import BatchOutcome
from tenantreport.http.throttle import (
    RETRY_STATUSES, compute_sleep_seconds, retry_after_from_headers, sleep_backoff
)

log = logging.getLogger(__name__)


def _run_round(graph, entities, request_builder, chunk_size, id_prefix, label, id_getter) -> List[BatchOutcome]:
    chunks = plan(entities, chunk_size, request_builder, id_prefix=id_prefix, id_getter=id_getter)
    outcomes: List[BatchOutcome] = []
    for chunk in chunks:
        if not chunk.sub_requests:
            continue
        chunk_label = f"{label} {chunk.index + 1}/{len(chunks)}"
        raw = execute_batch(graph, chunk.sub_requests, chunk_label)
        outcomes.extend(correlate(raw, chunk.id_map, chunk_label))
    return outcomes


def _retryable(o: BatchOutcome) -> bool:
    return o.context is not None and not o.success and o.status in RETRY_STATUSES


def run_batched(
    graph: GraphClient,
    entities: Sequence,
    request_builder: Callable,
    *,
    chunk_size: int,
    id_prefix: str,
    label: str,
    id_getter: Optional[Callable] = None,
    max_item_retries: int = 0,
) -> List[BatchOutcome]:
    """
    Plan, send and correlate every chunk, one call after another.

    Sub-requests throttled inside an otherwise good batch (429/5xx gateway
    statuses) are re-sent up to max_item_retries times; a retried outcome
    replaces the original in place. Transport failures (status None) are final.
    """
    outcomes = _run_round(graph, entities, request_builder, chunk_size, id_prefix, label, id_getter)

    for attempt in range(max_item_retries):
        pending = [i for i, o in enumerate(outcomes) if _retryable(o)]
        if not pending:
            break
        wait = max(
            compute_sleep_seconds(attempt, retry_after_from_headers(outcomes[i].headers))
            for i in pending
        )
        log.info("[%s] retrying %d throttled sub-request(s) in %.1fs (attempt %d/%d)",
                 label, len(pending), wait, attempt + 1, max_item_retries)
        sleep_backoff(wait)

        retried = _run_round(
            graph, [outcomes[i].context for i in pending], request_builder,
            chunk_size, f"{id_prefix}-r{attempt + 1}", f"{label} retry", id_getter,
        )
        by_context = {id(o.context): o for o in retried if o.context is not None}
        for i in pending:
            fresh = by_context.get(id(outcomes[i].context))
            if fresh is not None:
                outcomes[i] = fresh

    return outcomes

# src/tenantreport/batch/planner.py
from __future__ import annotations
from typing import Callable, List, Optional, Sequence, TypeVar

from tenantreport.config.loader import ReportConfigError
from tenantreport.core.models import BatchChunk, BatchSubRequest

T = TypeVar("T")


def plan(
    entities: Sequence[T],
    chunk_size: int,
    request_builder: Callable[[T], Optional[str]],
    *,
    id_prefix: str = "req",
    id_getter: Optional[Callable[[T], str]] = None,
) -> List[BatchChunk]:
    """
    Split entities into consecutive chunks of at most chunk_size and build
    one GET sub-request per entity. request_builder returns the relative URL,
    or something falsy to skip the entity. Ids are "<prefix>-<chunk>-<n>"
    unless id_getter supplies them; either way they are unique per chunk.
    """
    if chunk_size is None or int(chunk_size) < 1:
        raise ReportConfigError(f"chunk_size must be >= 1, got {chunk_size!r}")
    chunk_size = int(chunk_size)

    chunks: List[BatchChunk] = []
    for index, start in enumerate(range(0, len(entities), chunk_size)):
        subs: List[BatchSubRequest] = []
        id_map = {}
        counter = 0
        for entity in entities[start:start + chunk_size]:
            url = request_builder(entity)
            if not url:
                continue
            counter += 1
            rid = id_getter(entity) if id_getter else f"{id_prefix}-{index}-{counter}"
            subs.append(BatchSubRequest(id=rid, url=url))
            id_map[rid] = entity
        chunks.append(BatchChunk(index=index, sub_requests=subs, id_map=id_map))
    return chunks

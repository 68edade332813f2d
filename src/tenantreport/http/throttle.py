# src/tenantreport/http/throttle.py
from __future__ import annotations
import random
import time
import threading
from typing import Any, Mapping, Optional

# Statuses we retry, both for whole requests and for $batch sub-responses
RETRY_STATUSES = {429, 502, 503, 504}

# Graph never asks for more than a few minutes; anything larger is a bad header
_MAX_RETRY_AFTER = 300


def compute_sleep_seconds(attempt: int, retry_after_header: str | None) -> float:
    # Honor Retry-After (integer seconds)
    if retry_after_header and str(retry_after_header).strip().isdigit():
        return min(int(str(retry_after_header).strip()), _MAX_RETRY_AFTER)
    base = min(2 ** attempt, 8)  # 1,2,4,8 cap
    return base * (0.6 + 0.8 * random.random())  # jitter 60–140%


def retry_after_from_headers(headers: Optional[Mapping[str, Any]]) -> Optional[str]:
    """Case-insensitive Retry-After lookup (batch sub-responses lower-case it)."""
    for k, v in (headers or {}).items():
        if str(k).lower() == "retry-after":
            return str(v)
    return None


def sleep_backoff(seconds: float) -> None:
    if seconds > 0:
        time.sleep(seconds)


# Global concurrency gate
_MAX_CONCURRENCY = 6
_SEMAPHORE = threading.Semaphore(_MAX_CONCURRENCY)


class ConcurrencyGate:
    def __enter__(self):
        _SEMAPHORE.acquire()
        return self

    def __exit__(self, exc_type, exc, tb):
        _SEMAPHORE.release()


def set_max_concurrency(n: int):
    """Call once on startup (graph client init) to adjust gate size."""
    global _MAX_CONCURRENCY, _SEMAPHORE
    _MAX_CONCURRENCY = max(1, int(n))
    _SEMAPHORE = threading.Semaphore(_MAX_CONCURRENCY)

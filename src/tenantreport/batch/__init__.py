# src/tenantreport/batch/__init__.py
from __future__ import annotations
from .correlator import correlate
from .executor import execute_batch
from .planner import plan
from .runner import run_batched

__all__ = ["correlate", "execute_batch", "plan", "run_batched"]

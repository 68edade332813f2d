from __future__ import annotations
from typing import Any, Callable, Dict, List, Optional

import pytest


class FakeGraph:
    """
    Stand-in for GraphClient. Paged endpoints are keyed by path (query string
    ignored); values are item lists, exceptions to raise, or callables
    (url, params) -> items. $batch calls go through batch_handler.
    """
    def __init__(self):
        self.pages: Dict[str, Any] = {}
        self.get_calls: List[tuple] = []
        self.batch_calls: List[List[Dict[str, str]]] = []
        self.batch_handler: Optional[Callable[[List[Dict[str, str]]], Any]] = None

    def get_paged_values(self, path_or_url, *, params=None, page_limit=None):
        self.get_calls.append((path_or_url, params, page_limit))
        path = path_or_url.split("?")[0]
        result = self.pages.get(path, [])
        if isinstance(result, Exception):
            raise result
        if callable(result):
            result = result(path_or_url, params)
        return iter(list(result))

    def post_batch(self, requests):
        self.batch_calls.append([dict(r) for r in requests])
        if self.batch_handler is None:
            return {"responses": [{"id": r["id"], "status": 200, "body": {}} for r in requests]}
        return self.batch_handler(requests)


@pytest.fixture
def graph():
    return FakeGraph()


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    # defaults only, and report files under tmp
    monkeypatch.setenv("TENANTREPORT_SETTINGS", str(tmp_path / "no-such-settings.json"))
    monkeypatch.setenv("TENANTREPORT_DATA_DIR", str(tmp_path / "data"))


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    monkeypatch.setattr("tenantreport.batch.runner.sleep_backoff", lambda s: None)
    monkeypatch.setattr("tenantreport.http.client.sleep_backoff", lambda s: None)

# src/tenantreport/core/graph_client.py
from __future__ import annotations
import logging
from typing import Callable, Dict, Iterable, Any, List
from tenantreport.http.client import HttpClient
from tenantreport.config.loader import get_http_config
from tenantreport.http.throttle import set_max_concurrency

GRAPH_BASE = "https://graph.microsoft.com"
BATCH_PATH = "/v1.0/$batch"

log = logging.getLogger(__name__)


class GraphClient:
    """
    Tiny Graph wrapper. Token is provided lazily via token_provider().
    Paths carry their API version ("/v1.0/users", "/beta/reports/...").
    """
    def __init__(
        self,
        token_provider: Callable[[], str],
        timeout: float | None = None,
        max_retries: int | None = None,
        logger=None,
    ):
        http_cfg = get_http_config()
        to = float(timeout if timeout is not None else http_cfg["timeout_seconds"])
        mr = int(max_retries if max_retries is not None else http_cfg["max_retries"])
        set_max_concurrency(http_cfg["max_concurrency"])

        self._token_provider = token_provider
        self._http = HttpClient(base_url=GRAPH_BASE, timeout=to, max_retries=mr, logger=logger or log)

    def _auth_headers(self, extra: Dict[str, str] | None = None) -> Dict[str, str]:
        h = {"Authorization": f"Bearer {self._token_provider()}"}
        if extra:
            h.update(extra)
        return h

    def get_json(self, path_or_url: str, *, params: Dict[str, Any] | None = None) -> dict:
        return self._http.get_json(path_or_url, headers=self._auth_headers(), params=params)

    def get_paged_values(
        self,
        path_or_url: str,
        *,
        params: Dict[str, Any] | None = None,
        page_limit: int | None = None
    ) -> Iterable[dict]:
        """Yield the items of every page, following @odata.nextLink."""
        for page in self._http.get_paged(
            path_or_url, headers=self._auth_headers(), params=params, page_limit=page_limit
        ):
            for item in page.get("value", []):
                yield item

    def post_json(self, path_or_url: str, *, json: Any = None) -> dict:
        return self._http.post_json(path_or_url, headers=self._auth_headers(), json=json)

    def post_batch(self, requests: List[Dict[str, Any]]) -> dict:
        """POST one JSON batch: {"requests": [{"id","method","url"}, ...]}."""
        return self.post_json(BATCH_PATH, json={"requests": requests})

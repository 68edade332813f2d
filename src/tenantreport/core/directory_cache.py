# src/tenantreport/core/directory_cache.py
from __future__ import annotations
import logging
from typing import Dict, List, Optional

from tenantreport.core.graph_client import GraphClient
from tenantreport.http.errors import HttpError

log = logging.getLogger(__name__)


class DirectoryLookupCache:
    """
    Per-run lookup of applications and service principals.
    Built once per report run and passed to whoever needs it; loads lazily.
    """
    def __init__(self, graph: Optional[GraphClient]):
        self.graph = graph
        self._loaded = False
        self._app_by_object: Dict[str, str] = {}     # sp/app object id -> appId
        # appId keys below are lower-cased
        self._names: Dict[str, str] = {}             # appId -> displayName
        self._sp_ids: Dict[str, str] = {}            # appId -> service principal object id
        self._sp_app_ids: Dict[str, str] = {}        # appId -> appId as Graph returned it

    def _load(self) -> None:
        if self._loaded:
            return
        self._loaded = True
        if self.graph is None:
            return
        try:
            for sp in self.graph.get_paged_values("/v1.0/servicePrincipals?$select=id,appId,displayName&$top=999"):
                self._add(sp, is_sp=True)
        except HttpError as ex:
            log.warning("Service principal lookup unavailable: %s", ex)
        try:
            for app in self.graph.get_paged_values("/v1.0/applications?$select=id,appId,displayName&$top=999"):
                self._add(app, is_sp=False)
        except HttpError as ex:
            log.warning("Application lookup unavailable: %s", ex)
        log.debug("Directory cache: %d app ids, %d object ids", len(self._names), len(self._app_by_object))

    def _add(self, obj: dict, *, is_sp: bool) -> None:
        app_id = obj.get("appId")
        oid = obj.get("id")
        if not app_id:
            return
        if oid:
            self._app_by_object[oid.lower()] = app_id
            if is_sp:
                self._sp_ids.setdefault(app_id.lower(), oid)
                self._sp_app_ids.setdefault(app_id.lower(), app_id)
        name = obj.get("displayName")
        if name:
            self._names.setdefault(app_id.lower(), name)

    def app_id_for_object(self, object_id: Optional[str]) -> Optional[str]:
        if not object_id:
            return None
        self._load()
        return self._app_by_object.get(object_id.lower())

    def display_name_for_app(self, app_id: Optional[str]) -> Optional[str]:
        if not app_id:
            return None
        self._load()
        return self._names.get(app_id.lower())

    def service_principal_id_for_app(self, app_id: Optional[str]) -> Optional[str]:
        if not app_id:
            return None
        self._load()
        return self._sp_ids.get(app_id.lower())

    def remember(self, app_id: str, display_name: Optional[str]) -> None:
        """Record a name seen in report data so later steps can reuse it."""
        if app_id and display_name:
            self._names.setdefault(app_id.lower(), display_name)

    def all_app_ids(self) -> List[str]:
        self._load()
        return [self._sp_app_ids[k] for k in sorted(self._sp_app_ids)]

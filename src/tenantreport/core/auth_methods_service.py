# src/tenantreport/core/auth_methods_service.py
from __future__ import annotations
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from tenantreport.app import event_bus
from tenantreport.batch.runner import run_batched
from tenantreport.config.loader import get_auth_methods_config, get_batch_config
from tenantreport.core.auth_methods import (
    DISPLAY_COLUMNS, apply_method_flags, describe_method, method_type_for, registered_labels
)
from tenantreport.core.dates import days_since, now_utc, parse_graph_datetime
from tenantreport.core.graph_client import GraphClient
from tenantreport.core.models import AuthDetailRequestItem, UserAuthenticationRecord
from tenantreport.http.errors import ForbiddenError, HttpError

log = logging.getLogger(__name__)

SUMMARY_URL = "/users/{user_id}/authentication/methods"

USER_FIELDS = ["id", "displayName", "userPrincipalName", "accountEnabled", "userType"]
SIGNIN_FIELD = "signInActivity"

COLLECTING_SUMMARIES = "CollectingSummaries"
PLANNING_DETAILS = "PlanningDetails"
COLLECTING_DETAILS = "CollectingDetails"
FINALIZING = "Finalizing"
DONE = "Done"


def list_report_users(graph: GraphClient, user_ids: Optional[Sequence[str]] = None) -> List[Dict[str, Any]]:
    """
    Permissions: User.Read.All (+ AuditLog.Read.All for signInActivity).
    Falls back to a listing without sign-in dates when signInActivity is denied.
    user_ids may hold object ids or UPNs.
    """
    select = ",".join(USER_FIELDS + [SIGNIN_FIELD])
    try:
        users = list(graph.get_paged_values(f"/v1.0/users?$select={select}&$top=999"))
    except ForbiddenError:
        log.warning("signInActivity not readable (AuditLog.Read.All / Entra ID P1); listing users without sign-in dates")
        try:
            users = list(graph.get_paged_values(f"/v1.0/users?$select={','.join(USER_FIELDS)}&$top=999"))
        except HttpError as ex:
            log.error("User listing failed: %s", ex)
            return []
    except HttpError as ex:
        log.error("User listing failed: %s", ex)
        return []

    if user_ids:
        wanted = {str(u).lower() for u in user_ids}
        users = [
            u for u in users
            if (u.get("id") or "").lower() in wanted or (u.get("userPrincipalName") or "").lower() in wanted
        ]
    log.info("Auth-methods report: %d user(s) in scope", len(users))
    return users


class AuthMethodsAggregator:
    """
    Two batch rounds per run: one summary call per user, then one detail call
    per method instance that needs enrichment (shared across all users).
    One instance per report run; not reusable.
    """

    def __init__(
        self,
        graph: GraphClient,
        users: Sequence[Dict[str, Any]],
        *,
        include_device_details: bool = False,
        chunk_size: int = 20,
        max_item_retries: int = 0,
        now: Optional[datetime] = None,
    ):
        self.graph = graph
        self.users = list(users)
        self.include_device_details = include_device_details
        self.chunk_size = chunk_size
        self.max_item_retries = max_item_retries
        self.now = now or now_utc()

        self.state = COLLECTING_SUMMARIES
        # user id -> method list; None means the fetch failed (distinct from [])
        self.summaries: Dict[str, Optional[List[Dict[str, Any]]]] = {}
        self.summary_errors: Dict[str, str] = {}
        self.detail_items: List[AuthDetailRequestItem] = []
        self._detail_counter = 0

    # ---------- round 1 ----------
    def collect_summaries(self) -> None:
        for u in self.users:
            uid = u.get("id")
            if uid:
                self.summaries[uid] = None

        outcomes = run_batched(
            self.graph,
            self.users,
            lambda u: SUMMARY_URL.format(user_id=u["id"]) if u.get("id") else None,
            chunk_size=self.chunk_size,
            id_prefix="sum",
            label="auth-method summaries",
            max_item_retries=self.max_item_retries,
        )
        for o in outcomes:
            if o.context is None:
                continue
            uid = o.context["id"]
            if o.success:
                self.summaries[uid] = self._methods_from_body(uid, o.body)
                self.summary_errors.pop(uid, None)
            else:
                self.summaries[uid] = None
                self.summary_errors[uid] = o.error or f"HTTP {o.status}"

        failed = sum(1 for v in self.summaries.values() if v is None)
        log.info("Auth-method summaries: %d ok, %d failed", len(self.summaries) - failed, failed)
        self.state = PLANNING_DETAILS

    def _methods_from_body(self, uid: str, body: Any) -> List[Dict[str, Any]]:
        if not isinstance(body, dict):
            return []
        methods = [m for m in (body.get("value") or []) if isinstance(m, dict)]
        next_link = body.get("@odata.nextLink")
        if next_link:
            # rare: more methods than one page
            try:
                methods.extend(self.graph.get_paged_values(next_link))
            except HttpError as ex:
                log.warning("Methods for %s truncated, next page failed: %s", uid, ex)
        return methods

    # ---------- planning ----------
    def plan_details(self) -> List[AuthDetailRequestItem]:
        for uid, methods in self.summaries.items():
            if methods is None:
                continue
            for m in methods:
                odata_type = m.get("@odata.type") or ""
                mt = method_type_for(odata_type)
                if mt is None or not mt.needs_detail(self.include_device_details):
                    continue
                mid = m.get("id")
                if not mid:
                    log.debug("Method %s for %s has no id; no detail call", odata_type, uid)
                    continue
                self._detail_counter += 1
                self.detail_items.append(AuthDetailRequestItem(
                    user_id=uid,
                    method_id=mid,
                    request_id=f"detail-{self._detail_counter:08x}",
                    method_odata_type=odata_type,
                    batch_url=mt.detail_url(uid, mid),
                ))
        log.info("Auth-method details: %d detail request(s) planned", len(self.detail_items))
        self.state = COLLECTING_DETAILS
        return self.detail_items

    # ---------- round 2 ----------
    def collect_details(self) -> None:
        if self.detail_items:
            outcomes = run_batched(
                self.graph,
                self.detail_items,
                lambda it: it.batch_url,
                chunk_size=self.chunk_size,
                id_prefix="detail",
                id_getter=lambda it: it.request_id,
                label="auth-method details",
                max_item_retries=self.max_item_retries,
            )
            for o in outcomes:
                item = o.context
                if item is None:
                    continue
                item.processed = True
                item.detail_data = o.body if o.success and isinstance(o.body, dict) else None
                if not o.success:
                    log.debug("Detail %s for %s failed: %s", item.method_id, item.user_id, o.error)

        # every planned item was attempted, whatever came back
        for item in self.detail_items:
            item.processed = True
        self.state = FINALIZING

    # ---------- fold ----------
    def _details_index(self) -> Dict[Tuple[str, str], Optional[Dict[str, Any]]]:
        return {(it.user_id, it.method_id): it.detail_data for it in self.detail_items}

    def finalize(self) -> List[UserAuthenticationRecord]:
        details = self._details_index()
        records = [self._build_record(u, details) for u in self.users]
        self.state = DONE
        return records

    def _build_record(self, user: Dict[str, Any], details) -> UserAuthenticationRecord:
        uid = user.get("id") or ""
        activity = user.get(SIGNIN_FIELD) or {}
        rec = UserAuthenticationRecord(
            user_id=uid,
            user_principal_name=user.get("userPrincipalName") or "",
            display_name=user.get("displayName") or user.get("userPrincipalName") or "",
            account_enabled=user.get("accountEnabled"),
            user_type=user.get("userType"),
            last_sign_in=parse_graph_datetime(activity.get("lastSignInDateTime")),
            last_non_interactive_sign_in=parse_graph_datetime(activity.get("lastNonInteractiveSignInDateTime")),
            last_successful_sign_in=parse_graph_datetime(activity.get("lastSuccessfulSignInDateTime")),
        )
        rec.days_since_last_sign_in = days_since(rec.last_sign_in, self.now)
        rec.days_since_last_non_interactive_sign_in = days_since(rec.last_non_interactive_sign_in, self.now)

        if not uid:
            rec.fetch_error = "User has no id"
            return rec

        methods = self.summaries.get(uid)
        if methods is None:
            rec.fetch_error = self.summary_errors.get(uid, "Authentication methods not fetched")
            return rec

        rec.methods_fetch_succeeded = True
        rec.total_methods_count = len(methods)
        rec.method_types_registered = registered_labels(methods)
        apply_method_flags(rec)

        columns: Dict[str, List[str]] = {}
        for m in methods:
            mt = method_type_for(m.get("@odata.type"))
            if mt is None or mt.key not in DISPLAY_COLUMNS:
                continue
            text = describe_method(m, details.get((uid, m.get("id"))))
            if text:
                columns.setdefault(DISPLAY_COLUMNS[mt.key], []).append(text)
        for attr, values in columns.items():
            setattr(rec, attr, "; ".join(values))
        return rec

    def run(self) -> List[UserAuthenticationRecord]:
        self.collect_summaries()
        self.plan_details()
        self.collect_details()
        return self.finalize()


def build_auth_methods_report(
    graph: GraphClient,
    *,
    users: Optional[Sequence[Dict[str, Any]]] = None,
    user_ids: Optional[Sequence[str]] = None,
    include_device_details: Optional[bool] = None,
    chunk_size: Optional[int] = None,
    max_item_retries: Optional[int] = None,
    now: Optional[datetime] = None,
) -> List[UserAuthenticationRecord]:
    """
    Permissions: UserAuthenticationMethod.Read.All, User.Read.All.
    One record per user in scope; failed lookups are recorded, never dropped.
    """
    batch_cfg = get_batch_config()
    methods_cfg = get_auth_methods_config()
    if users is None:
        users = list_report_users(graph, user_ids)

    agg = AuthMethodsAggregator(
        graph,
        users,
        include_device_details=methods_cfg["include_device_details"] if include_device_details is None else include_device_details,
        chunk_size=batch_cfg["chunk_size"] if chunk_size is None else chunk_size,
        max_item_retries=batch_cfg["max_item_retries"] if max_item_retries is None else max_item_retries,
        now=now,
    )
    records = agg.run()
    event_bus.publish("report.authmethods.ready", {
        "users": len(records),
        "failed": sum(1 for r in records if not r.methods_fetch_succeeded),
        "detail_requests": len(agg.detail_items),
    })
    return records

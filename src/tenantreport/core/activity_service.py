# src/tenantreport/core/activity_service.py
from __future__ import annotations
import json
import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence

from tenantreport.app import event_bus
from tenantreport.config.loader import ReportConfigError, get_activity_config
from tenantreport.core.dates import (
    days_since, is_more_recent, iso, most_recent, now_utc, parse_graph_datetime
)
from tenantreport.core.directory_cache import DirectoryLookupCache
from tenantreport.core.graph_client import GraphClient
from tenantreport.core.models import (
    ActivityLevel, AggregatedActivity, ApplicationActivityRecord, AuditActivity, RealtimeActivity
)
from tenantreport.http.errors import ForbiddenError, HttpError

log = logging.getLogger(__name__)

SP_ACTIVITY_URL = "/beta/reports/servicePrincipalSignInActivities"
SIGNINS_URL = "/v1.0/auditLogs/signIns"
DIRECTORY_AUDITS_URL = "/v1.0/auditLogs/directoryAudits"

SOURCE_AGGREGATED = "Aggregated"
SOURCE_REALTIME = "Realtime"
SOURCE_AUDIT = "Audit"

# aggregated report field -> AggregatedActivity attribute
_AGGREGATED_FIELDS = (
    ("lastSignInActivity", "lastSignInDateTime", "last_sign_in"),
    ("lastSignInActivity", "lastSuccessfulSignInDateTime", "last_successful_sign_in"),
    ("delegatedClientSignInActivity", "lastSignInDateTime", "delegated_client"),
    ("delegatedResourceSignInActivity", "lastSignInDateTime", "delegated_resource"),
    ("applicationAuthenticationClientSignInActivity", "lastSignInDateTime", "application_client"),
    ("applicationAuthenticationResourceSignInActivity", "lastSignInDateTime", "application_resource"),
)

APP_MANAGEMENT_CATEGORIES = {"applicationmanagement"}
APP_ACTIVITY_KEYWORDS = (
    "application",
    "service principal",
    "consent to",
    "app role assignment",
    "oauth2permissiongrant",
    "delegated permission grant",
)
_APP_TARGET_TYPES = {"application", "serviceprincipal"}
_APP_ID_PROPERTIES = {"appid", "appprincipalid", "targetid.serviceprincipalnames"}


def realtime_filters(since: str, app_ids: Sequence[str], per_filter: int) -> List[str]:
    """
    One $filter per group of app ids; Graph rejects long OR chains, so the
    ids are split across filters rather than packed into one.
    """
    base = f"createdDateTime ge {since}"
    if not app_ids:
        return [base]
    out = []
    for i in range(0, len(app_ids), per_filter):
        clause = " or ".join(f"appId eq '{_odata_quote(a)}'" for a in app_ids[i:i + per_filter])
        out.append(f"{base} and ({clause})")
    return out


def _odata_quote(value: str) -> str:
    return value.replace("'", "''")


def _is_guid(value: str) -> bool:
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True


def is_app_management_event(entry: Dict[str, Any]) -> bool:
    if (entry.get("category") or "").lower() in APP_MANAGEMENT_CATEGORIES:
        return True
    name = (entry.get("activityDisplayName") or "").lower()
    return any(k in name for k in APP_ACTIVITY_KEYWORDS)


def _clean_property_value(raw: Any) -> List[str]:
    """modifiedProperties values are JSON-encoded strings or lists of them."""
    if raw is None:
        return []
    val = raw
    if isinstance(raw, str):
        try:
            val = json.loads(raw)
        except ValueError:
            val = raw
    if isinstance(val, list):
        return [str(v).strip() for v in val if v]
    return [str(val).strip()] if val else []


class ActivityAggregator:
    """
    Merge the aggregated sign-in report, real-time sign-in logs and directory
    audits into one record per app id. Each step contributes independently.
    """

    def __init__(
        self,
        graph: GraphClient,
        *,
        days: int,
        include_realtime: bool = False,
        specific_app_ids: Optional[Sequence[str]] = None,
        max_realtime_records: int = 5000,
        app_ids_per_filter: int = 10,
        audit_page_limit: int = 1,
        directory: Optional[DirectoryLookupCache] = None,
        now: Optional[datetime] = None,
    ):
        if days is None or int(days) < 1:
            raise ReportConfigError(f"days must be >= 1, got {days!r}")
        if max_realtime_records is None or int(max_realtime_records) < 1:
            raise ReportConfigError(f"max_realtime_records must be >= 1, got {max_realtime_records!r}")

        self.graph = graph
        self.days = int(days)
        self.include_realtime = include_realtime
        self.specific_app_ids = [a for a in (specific_app_ids or []) if a]
        self._wanted = {a.lower() for a in self.specific_app_ids}
        self.max_realtime_records = int(max_realtime_records)
        self.app_ids_per_filter = max(1, int(app_ids_per_filter))
        self.audit_page_limit = audit_page_limit
        self.directory = directory if directory is not None else DirectoryLookupCache(graph)
        self.now = now or now_utc()
        self.since = self.now - timedelta(days=self.days)

        self.records: Dict[str, ApplicationActivityRecord] = {}

    # ---------- helpers ----------
    def _in_scope(self, app_id: Optional[str]) -> bool:
        if not app_id:
            return False
        return not self._wanted or app_id.lower() in self._wanted

    def _record(self, app_id: str) -> ApplicationActivityRecord:
        key = app_id.lower()
        rec = self.records.get(key)
        if rec is None:
            rec = ApplicationActivityRecord(app_id=app_id)
            self.records[key] = rec
        return rec

    def _run_step(self, name: str, fn) -> None:
        try:
            fn()
        except ForbiddenError as ex:
            log.warning("%s source unavailable (missing permission?): %s", name, ex)
        except HttpError as ex:
            log.warning("%s source failed: %s", name, ex)
        except Exception:
            # keep whatever the other sources produced
            log.exception("%s step failed unexpectedly", name)

    # ---------- step 1 ----------
    def collect_aggregated(self) -> None:
        """Permissions: AuditLog.Read.All / Reports.Read.All (beta endpoint)."""
        seen = 0
        for item in self.graph.get_paged_values(SP_ACTIVITY_URL, params={"$top": 999}):
            app_id = item.get("appId")
            if not self._in_scope(app_id):
                continue
            seen += 1
            rec = self._record(app_id)
            agg = rec.aggregated or AggregatedActivity()
            rec.aggregated = agg
            for parent, field_name, attr in _AGGREGATED_FIELDS:
                raw = (item.get(parent) or {}).get(field_name)
                if raw is None:
                    continue
                ts = parse_graph_datetime(raw)
                if ts is None:
                    log.debug("Unparseable %s.%s for %s: %r", parent, field_name, app_id, raw)
                    continue
                if is_more_recent(ts, getattr(agg, attr)):
                    setattr(agg, attr, ts)
        log.info("Aggregated sign-in activity: %d app(s)", seen)

    # ---------- step 2 ----------
    def collect_realtime(self) -> None:
        """Permissions: AuditLog.Read.All."""
        processed = 0
        for flt in realtime_filters(iso(self.since), self.specific_app_ids, self.app_ids_per_filter):
            if processed >= self.max_realtime_records:
                break
            for s in self.graph.get_paged_values(SIGNINS_URL, params={"$filter": flt, "$top": 999}):
                if processed >= self.max_realtime_records:
                    log.info("Real-time sign-ins capped at %d record(s)", self.max_realtime_records)
                    break
                processed += 1
                self._merge_signin(s)
        log.info("Real-time sign-ins: %d record(s) processed", processed)

    def _merge_signin(self, s: Dict[str, Any]) -> None:
        app_id = s.get("appId")
        if not self._in_scope(app_id):
            return
        rec = self._record(app_id)
        self.directory.remember(app_id, s.get("appDisplayName"))
        rt = rec.realtime or RealtimeActivity()
        rec.realtime = rt

        user = s.get("userPrincipalName") or s.get("userId")
        ok = (s.get("status") or {}).get("errorCode", 0) == 0
        rt.sign_in_count += 1
        if not ok:
            rt.failure_count += 1
        if user:
            rt.users.add(user)

        # counted either way; only the timestamp fields are skipped
        ts = parse_graph_datetime(s.get("createdDateTime"))
        if ts is None:
            rt.unparseable_timestamps += 1
            log.debug("Skipping unparseable sign-in time %r for %s", s.get("createdDateTime"), app_id)
            return
        if is_more_recent(ts, rt.last_sign_in):
            rt.last_sign_in = ts
            rt.last_user = user
        if ok and is_more_recent(ts, rt.last_successful_sign_in):
            rt.last_successful_sign_in = ts

    # ---------- step 3 ----------
    def collect_audit(self) -> None:
        """Permissions: AuditLog.Read.All. Best-effort, one unfiltered page by default."""
        matched = 0
        for entry in self.graph.get_paged_values(
            DIRECTORY_AUDITS_URL, params={"$top": 999}, page_limit=self.audit_page_limit
        ):
            ts = parse_graph_datetime(entry.get("activityDateTime"))
            if ts is None or ts < self.since or not is_app_management_event(entry):
                continue
            for app_id in self._audit_app_ids(entry):
                if not self._in_scope(app_id):
                    continue
                matched += 1
                rec = self._record(app_id)
                au = rec.audit or AuditActivity()
                rec.audit = au
                au.event_count += 1
                if is_more_recent(ts, au.last_activity):
                    au.last_activity = ts
                    au.last_operation = entry.get("activityDisplayName")
                    au.last_initiated_by = self._initiator(entry)
        log.info("Directory audits: %d application event(s) in window", matched)

    def _audit_app_ids(self, entry: Dict[str, Any]) -> List[str]:
        found: List[str] = []
        for tr in entry.get("targetResources") or []:
            if (tr.get("type") or "").lower() not in _APP_TARGET_TYPES:
                continue
            app_id = None
            for prop in tr.get("modifiedProperties") or []:
                if (prop.get("displayName") or "").lower() in _APP_ID_PROPERTIES:
                    values = _clean_property_value(prop.get("newValue")) or _clean_property_value(prop.get("oldValue"))
                    # service principal names mix the appId with URIs
                    app_id = next((v for v in values if _is_guid(v)), None)
                    if app_id:
                        break
            if not app_id:
                app_id = self.directory.app_id_for_object(tr.get("id"))
            if app_id:
                self.directory.remember(app_id, tr.get("displayName"))
                if app_id.lower() not in {f.lower() for f in found}:
                    found.append(app_id)
        if not found:
            acting = ((entry.get("initiatedBy") or {}).get("app") or {}).get("appId")
            if acting:
                found.append(acting)
        return found

    @staticmethod
    def _initiator(entry: Dict[str, Any]) -> Optional[str]:
        by = entry.get("initiatedBy") or {}
        user = by.get("user") or {}
        app = by.get("app") or {}
        return user.get("userPrincipalName") or app.get("displayName") or app.get("appId")

    # ---------- step 4 ----------
    def seed_inactive_apps(self) -> None:
        ids: Iterable[str] = self.specific_app_ids or self.directory.all_app_ids()
        for app_id in ids:
            self._record(app_id)

    def finalize(self) -> Dict[str, ApplicationActivityRecord]:
        for rec in self.records.values():
            dims: Dict[str, datetime] = {}
            sources: List[str] = []
            summary: List[str] = []

            if rec.aggregated is not None:
                sources.append(SOURCE_AGGREGATED)
                agg_dims = rec.aggregated.timestamps()
                dims.update(agg_dims)
                summary.append(f"Aggregated report ({len(agg_dims)} dimension(s))")
            if rec.realtime is not None:
                sources.append(SOURCE_REALTIME)
                if rec.realtime.last_sign_in is not None:
                    dims["Real-time Sign-in"] = rec.realtime.last_sign_in
                if rec.realtime.last_successful_sign_in is not None:
                    dims["Real-time Successful Sign-in"] = rec.realtime.last_successful_sign_in
                summary.append(f"Sign-in logs ({rec.realtime.sign_in_count} sign-in(s), "
                               f"{rec.realtime.failure_count} failed, {len(rec.realtime.users)} user(s))")
            if rec.audit is not None:
                sources.append(SOURCE_AUDIT)
                if rec.audit.last_activity is not None:
                    dims["Audit"] = rec.audit.last_activity
                summary.append(f"Audit logs ({rec.audit.event_count} event(s))")

            rec.data_quality = "+".join(sources) or None
            rec.most_recent_activity = most_recent(*dims.values())
            days = days_since(rec.most_recent_activity, self.now)
            # clock skew can put a timestamp slightly in the future
            rec.days_since_last_activity = max(0, days) if days is not None else None
            rec.activity_level = ActivityLevel.from_days(rec.days_since_last_activity)
            rec.activity_types = list(dims.keys())
            rec.activity_sources_summary = "; ".join(summary) if summary else "No activity data"

            rec.display_name = rec.display_name or self.directory.display_name_for_app(rec.app_id)
            rec.service_principal_id = rec.service_principal_id or self.directory.service_principal_id_for_app(rec.app_id)
        return self.records

    def run(self, *, include_inactive_apps: bool = False) -> Dict[str, ApplicationActivityRecord]:
        self._run_step("Aggregated sign-in activity", self.collect_aggregated)
        if self.include_realtime:
            self._run_step("Real-time sign-in logs", self.collect_realtime)
        self._run_step("Directory audit logs", self.collect_audit)
        if include_inactive_apps:
            self._run_step("Inactive application seeding", self.seed_inactive_apps)
        return self.finalize()


def build_app_activity_report(
    graph: GraphClient,
    *,
    days: Optional[int] = None,
    include_realtime: Optional[bool] = None,
    specific_app_ids: Optional[Sequence[str]] = None,
    max_realtime_records: Optional[int] = None,
    include_inactive_apps: bool = False,
    directory: Optional[DirectoryLookupCache] = None,
    now: Optional[datetime] = None,
) -> Dict[str, ApplicationActivityRecord]:
    """
    Per-application activity keyed by lower-cased appId.
    Only ReportConfigError escapes; source failures just contribute nothing.
    """
    cfg = get_activity_config()
    agg = ActivityAggregator(
        graph,
        days=cfg["days"] if days is None else days,
        include_realtime=cfg["include_realtime"] if include_realtime is None else include_realtime,
        specific_app_ids=specific_app_ids,
        max_realtime_records=cfg["max_realtime_records"] if max_realtime_records is None else max_realtime_records,
        app_ids_per_filter=cfg["app_ids_per_filter"],
        audit_page_limit=cfg["audit_page_limit"],
        directory=directory,
        now=now,
    )
    records = agg.run(include_inactive_apps=include_inactive_apps)
    event_bus.publish("report.activity.ready", {
        "apps": len(records),
        "inactive": sum(1 for r in records.values() if r.activity_level in (ActivityLevel.INACTIVE, ActivityLevel.NO_ACTIVITY)),
    })
    return records

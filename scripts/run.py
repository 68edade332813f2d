# scripts/run.py
import argparse, logging, os, sys

from tenantreport.core.auth import AuthError, connect
from tenantreport.core.graph_client import GraphClient
from tenantreport.core.auth_methods_service import build_auth_methods_report
from tenantreport.core.activity_service import build_app_activity_report
from tenantreport.config.loader import ReportConfigError
from tenantreport.report.export import export_rows


def _args(argv=None):
    p = argparse.ArgumentParser(description="Entra ID batch reports")
    p.add_argument("report", choices=["authmethods", "activity"])
    p.add_argument("--tenant-id", default=os.environ.get("TENANTREPORT_TENANT_ID"))
    p.add_argument("--client-id", default=os.environ.get("TENANTREPORT_CLIENT_ID"))
    p.add_argument("--client-secret", default=os.environ.get("TENANTREPORT_CLIENT_SECRET"))
    p.add_argument("--user", action="append", dest="users", help="limit to user id/UPN (repeatable)")
    p.add_argument("--device-details", action="store_true", default=None)
    p.add_argument("--days", type=int)
    p.add_argument("--realtime", action="store_true", default=None)
    p.add_argument("--app-id", action="append", dest="app_ids")
    p.add_argument("--max-realtime", type=int)
    p.add_argument("--include-inactive", action="store_true")
    p.add_argument("--debug", action="store_true")
    return p.parse_args(argv)


def main(argv=None) -> int:
    a = _args(argv)
    logging.basicConfig(
        level=logging.DEBUG if a.debug else logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    try:
        session = connect({"tenant_id": a.tenant_id, "client_id": a.client_id, "client_secret": a.client_secret})
    except AuthError as ex:
        logging.error("%s (%s)", ex, ex.hint)
        return 2

    try:
        graph = GraphClient(session.token_provider)
        if a.report == "authmethods":
            records = build_auth_methods_report(graph, user_ids=a.users, include_device_details=a.device_details)
            export_rows(session.tenant_id, "auth_methods", [r.as_row() for r in records])
        else:
            records = build_app_activity_report(
                graph,
                days=a.days,
                include_realtime=a.realtime,
                specific_app_ids=a.app_ids,
                max_realtime_records=a.max_realtime,
                include_inactive_apps=a.include_inactive,
            )
            export_rows(session.tenant_id, "app_activity", [r.as_row() for r in records.values()])
    except ReportConfigError as ex:
        logging.error("Configuration error: %s", ex)
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())

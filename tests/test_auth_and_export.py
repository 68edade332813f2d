import json

import pytest

from tenantreport.core import auth as auth_module
from tenantreport.core.auth import (
    ConsentRequired, InvalidClientId, InvalidClientSecret, InvalidTenantId, connect
)
from tenantreport.core.models import ActivityLevel, ApplicationActivityRecord
from tenantreport.report.export import export_rows


class FakeMsalApp:
    result = {"access_token": "tok-123"}

    def __init__(self, client_id, client_credential, authority):
        self.authority = authority

    def acquire_token_for_client(self, scopes):
        return self.result


@pytest.fixture
def fake_msal(monkeypatch):
    monkeypatch.setattr(auth_module.msal, "ConfidentialClientApplication", FakeMsalApp)
    FakeMsalApp.result = {"access_token": "tok-123"}
    return FakeMsalApp


@pytest.mark.parametrize("creds, err", [
    ({"client_id": "c", "client_secret": "s"}, InvalidTenantId),
    ({"tenant_id": "t", "client_secret": "s"}, InvalidClientId),
    ({"tenant_id": "t", "client_id": "c", "client_secret": "  "}, InvalidClientSecret),
])
def test_missing_credentials_are_rejected(creds, err):
    with pytest.raises(err):
        connect(creds)


def test_connect_returns_token_provider(fake_msal):
    s = connect({"tenant_id": "contoso", "client_id": "client", "client_secret": "secret"})
    assert s.token_provider() == "tok-123"


def test_msal_errors_are_mapped(fake_msal):
    fake_msal.result = {"error": "invalid_grant", "error_description": "AADSTS65001: consent_required"}
    with pytest.raises(ConsentRequired):
        connect({"tenant_id": "t", "client_id": "c", "client_secret": "s"})


def test_export_writes_rows(tmp_path):
    rec = ApplicationActivityRecord(app_id="app-1", activity_level=ActivityLevel.LOW, days_since_last_activity=120)
    p = export_rows("tenant-1", "app_activity", [rec.as_row()])

    assert p.name == "app_activity.json"
    data = json.loads(p.read_text(encoding="utf-8"))
    assert data["count"] == 1
    assert data["rows"][0]["ActivityLevel"] == "Low"
    assert data["rows"][0]["DaysSinceLastActivity"] == 120
    assert str(tmp_path) in str(p)


def test_token_is_reacquired_near_expiry(fake_msal):
    fake_msal.result = {"access_token": "short-lived", "expires_in": 60}
    s = connect({"tenant_id": "t", "client_id": "c", "client_secret": "s"})
    fake_msal.result = {"access_token": "fresh", "expires_in": 3600}
    assert s.token_provider() == "fresh"
    fake_msal.result = {"access_token": "unused", "expires_in": 3600}
    assert s.token_provider() == "fresh"

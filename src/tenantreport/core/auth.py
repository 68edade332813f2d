from __future__ import annotations
import logging
import time
from typing import Any, Dict

import msal
import requests

log = logging.getLogger(__name__)

SCOPES = ["https://graph.microsoft.com/.default"]
# refresh when less than this many seconds remain
REFRESH_MARGIN = 300

class AuthError(Exception):
    code = "auth_error"; hint = "Unknown error."
    def __init__(self, message: str = "", *, hint: str | None = None):
        super().__init__(message or self.__class__.__name__)
        if hint: self.hint = hint

class InvalidTenantId(AuthError):
    code = "invalid_tenant_id"; hint = "Tenant ID invalid or unreachable."
class InvalidClientId(AuthError):
    code = "invalid_client_id"; hint = "Client ID invalid."
class InvalidClientSecret(AuthError):
    code = "invalid_client_secret"; hint = "Client Secret rejected."
class NetworkError(AuthError):
    code = "network_error"; hint = "Network or timeout issue."
class ConsentRequired(AuthError):
    code = "consent_required"; hint = "Admin consent required for Graph permissions (Reports.Read.All, AuditLog.Read.All, UserAuthenticationMethod.Read.All)."


def build_authority(tenant_id: str) -> str:
    return f"https://login.microsoftonline.com/{tenant_id}"


def _map_msal_error(desc: str) -> AuthError:
    d = desc or ""
    if "AADSTS7000215" in d:  # invalid client secret
        return InvalidClientSecret("Invalid client secret.")
    if "AADSTS700016" in d:  # invalid client id
        return InvalidClientId("Invalid client ID or app not found.")
    if "invalid_tenant" in d or "AADSTS90002" in d:
        return InvalidTenantId("Invalid tenant ID or tenant not found.")
    if "AADSTS65001" in d or "consent_required" in d:
        return ConsentRequired("Admin consent required.")
    return AuthError(d)


class TenantSession:
    """
    App-only credentials for one tenant. token_provider() hands GraphClient a
    token and silently re-acquires it shortly before it expires.
    """
    def __init__(self, tenant_id: str, client_id: str, client_secret: str):
        self.tenant_id = tenant_id
        self.client_id = client_id
        try:
            self._app = msal.ConfidentialClientApplication(
                client_id=client_id,
                client_credential=client_secret,
                authority=build_authority(tenant_id),
            )
        except ValueError as ex:
            # msal validates the authority eagerly
            raise InvalidTenantId(str(ex))
        self._token = ""
        self._expires_on = 0

    def _acquire(self) -> None:
        try:
            res: Dict[str, Any] = self._app.acquire_token_for_client(scopes=SCOPES)
        except requests.exceptions.RequestException as ex:
            raise NetworkError(str(ex))
        if "access_token" not in res:
            raise _map_msal_error(res.get("error_description", "Unknown error"))
        self._token = res["access_token"]
        self._expires_on = int(time.time()) + int(res.get("expires_in", 3600))
        log.debug("Acquired Graph token for tenant %s (expires in %ss)", self.tenant_id, res.get("expires_in", 3600))

    def token_provider(self) -> str:
        if not self._token or time.time() >= self._expires_on - REFRESH_MARGIN:
            self._acquire()
        return self._token


def connect(creds: dict) -> TenantSession:
    """App-only connect. creds: tenant_id, client_id, client_secret."""
    tenant_id = (creds.get("tenant_id") or "").strip()
    client_id = (creds.get("client_id") or "").strip()
    client_secret = (creds.get("client_secret") or "").strip()

    if not tenant_id: raise InvalidTenantId("Tenant ID required.")
    if not client_id: raise InvalidClientId("Client ID required.")
    if not client_secret: raise InvalidClientSecret("Client Secret required.")

    log.info("Tenant=%s, Client=%s..., acquiring app-only token", tenant_id, client_id[:6])
    session = TenantSession(tenant_id, client_id, client_secret)
    session.token_provider()  # fail fast on bad credentials
    return session

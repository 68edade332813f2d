from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from tenantreport.core.dates import iso


def _ts(dt: Optional[datetime]) -> Optional[str]:
    return iso(dt) if dt is not None else None


# ---------- batch plumbing ----------

@dataclass(frozen=True)
class BatchSubRequest:
    id: str
    url: str
    method: str = "GET"

    def as_json(self) -> Dict[str, str]:
        return {"id": self.id, "method": self.method, "url": self.url}


@dataclass
class BatchChunk:
    index: int
    sub_requests: List[BatchSubRequest]
    id_map: Dict[str, Any]  # request id -> caller context


@dataclass
class BatchOutcome:
    request_id: Optional[str]
    context: Any
    success: bool
    status: Optional[int] = None
    body: Any = None
    error: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)


# ---------- authentication methods ----------

@dataclass
class AuthDetailRequestItem:
    user_id: str
    method_id: str
    request_id: str
    method_odata_type: str
    batch_url: str
    processed: bool = False   # attempted, not necessarily succeeded
    detail_data: Optional[Dict[str, Any]] = None


@dataclass
class UserAuthenticationRecord:
    user_id: str
    user_principal_name: str
    display_name: str
    account_enabled: Optional[bool] = None
    user_type: Optional[str] = None

    last_sign_in: Optional[datetime] = None
    last_non_interactive_sign_in: Optional[datetime] = None
    last_successful_sign_in: Optional[datetime] = None
    days_since_last_sign_in: Optional[int] = None
    days_since_last_non_interactive_sign_in: Optional[int] = None

    methods_fetch_succeeded: bool = False
    fetch_error: Optional[str] = None

    # None until a summary was fetched; [] means "confirmed zero methods"
    method_types_registered: Optional[List[str]] = None
    total_methods_count: Optional[int] = None

    has_password: Optional[bool] = None
    has_microsoft_authenticator: Optional[bool] = None
    has_fido2: Optional[bool] = None
    has_phone: Optional[bool] = None
    has_email: Optional[bool] = None
    has_windows_hello: Optional[bool] = None
    has_software_oath: Optional[bool] = None
    has_hardware_oath: Optional[bool] = None
    has_temporary_access_pass: Optional[bool] = None
    has_platform_credential: Optional[bool] = None

    phone_numbers: str = ""
    email_addresses: str = ""
    authenticator_devices: str = ""
    fido2_keys: str = ""
    windows_hello_devices: str = ""

    default_mfa_method: Optional[str] = None
    is_mfa_capable: Optional[bool] = None
    is_passwordless_capable: Optional[bool] = None

    def as_row(self) -> Dict[str, Any]:
        """Report row consumed by the rendering/export layer."""
        return {
            "Id": self.user_id,
            "UserPrincipalName": self.user_principal_name,
            "DisplayName": self.display_name,
            "AccountEnabled": self.account_enabled,
            "UserType": self.user_type,
            "LastSignInDateTime": _ts(self.last_sign_in),
            "LastNonInteractiveSignInDateTime": _ts(self.last_non_interactive_sign_in),
            "LastSuccessfulSignInDateTime": _ts(self.last_successful_sign_in),
            "LastSignInDaysAgo": self.days_since_last_sign_in,
            "LastNonInteractiveSignInDaysAgo": self.days_since_last_non_interactive_sign_in,
            "MethodsFetchSucceeded": self.methods_fetch_succeeded,
            "FetchError": self.fetch_error,
            "MethodTypesRegistered": ", ".join(self.method_types_registered) if self.method_types_registered is not None else None,
            "TotalMethodsCount": self.total_methods_count,
            "HasPassword": self.has_password,
            "HasMicrosoftAuthenticator": self.has_microsoft_authenticator,
            "HasFido2": self.has_fido2,
            "HasPhone": self.has_phone,
            "HasEmail": self.has_email,
            "HasWindowsHello": self.has_windows_hello,
            "HasSoftwareOath": self.has_software_oath,
            "HasHardwareOath": self.has_hardware_oath,
            "HasTemporaryAccessPass": self.has_temporary_access_pass,
            "HasPlatformCredential": self.has_platform_credential,
            "PhoneNumbers": self.phone_numbers,
            "EmailAddresses": self.email_addresses,
            "AuthenticatorDevices": self.authenticator_devices,
            "Fido2Keys": self.fido2_keys,
            "WindowsHelloDevices": self.windows_hello_devices,
            "DefaultMfaMethod": self.default_mfa_method,
            "IsMfaCapable": self.is_mfa_capable,
            "IsPasswordlessCapable": self.is_passwordless_capable,
        }


# ---------- application activity ----------

class ActivityLevel(str, Enum):
    VERY_ACTIVE = "Very Active"
    ACTIVE = "Active"
    MODERATE = "Moderate"
    LOW = "Low"
    INACTIVE = "Inactive"
    NO_ACTIVITY = "No Activity"

    @classmethod
    def from_days(cls, days: Optional[int]) -> "ActivityLevel":
        if days is None:
            return cls.NO_ACTIVITY
        if days <= 7:
            return cls.VERY_ACTIVE
        if days <= 30:
            return cls.ACTIVE
        if days <= 90:
            return cls.MODERATE
        if days <= 180:
            return cls.LOW
        return cls.INACTIVE


@dataclass
class AggregatedActivity:
    last_sign_in: Optional[datetime] = None
    last_successful_sign_in: Optional[datetime] = None
    delegated_client: Optional[datetime] = None
    delegated_resource: Optional[datetime] = None
    application_client: Optional[datetime] = None
    application_resource: Optional[datetime] = None

    # (dimension label, attribute) in report order
    DIMENSIONS = (
        ("Sign-in", "last_sign_in"),
        ("Successful Sign-in", "last_successful_sign_in"),
        ("Delegated Client", "delegated_client"),
        ("Delegated Resource", "delegated_resource"),
        ("Application Client", "application_client"),
        ("Application Resource", "application_resource"),
    )

    def timestamps(self) -> Dict[str, datetime]:
        out = {}
        for label, attr in self.DIMENSIONS:
            v = getattr(self, attr)
            if v is not None:
                out[label] = v
        return out


@dataclass
class RealtimeActivity:
    last_sign_in: Optional[datetime] = None
    last_successful_sign_in: Optional[datetime] = None
    last_user: Optional[str] = None
    sign_in_count: int = 0
    failure_count: int = 0
    unparseable_timestamps: int = 0
    users: Set[str] = field(default_factory=set)


@dataclass
class AuditActivity:
    last_activity: Optional[datetime] = None
    last_operation: Optional[str] = None
    last_initiated_by: Optional[str] = None
    event_count: int = 0


@dataclass
class ApplicationActivityRecord:
    app_id: str
    display_name: Optional[str] = None
    service_principal_id: Optional[str] = None
    data_quality: Optional[str] = None

    aggregated: Optional[AggregatedActivity] = None
    realtime: Optional[RealtimeActivity] = None
    audit: Optional[AuditActivity] = None

    most_recent_activity: Optional[datetime] = None
    days_since_last_activity: Optional[int] = None
    activity_level: ActivityLevel = ActivityLevel.NO_ACTIVITY
    activity_types: List[str] = field(default_factory=list)
    activity_sources_summary: str = ""

    def as_row(self) -> Dict[str, Any]:
        agg = self.aggregated or AggregatedActivity()
        rt = self.realtime
        au = self.audit
        return {
            "AppId": self.app_id,
            "AppDisplayName": self.display_name,
            "ServicePrincipalId": self.service_principal_id,
            "DataQuality": self.data_quality,
            "LastSignIn": _ts(agg.last_sign_in),
            "LastSuccessfulSignIn": _ts(agg.last_successful_sign_in),
            "LastDelegatedClientSignIn": _ts(agg.delegated_client),
            "LastDelegatedResourceSignIn": _ts(agg.delegated_resource),
            "LastApplicationClientSignIn": _ts(agg.application_client),
            "LastApplicationResourceSignIn": _ts(agg.application_resource),
            "LastRealtimeSignIn": _ts(rt.last_sign_in) if rt else None,
            "LastRealtimeSuccessfulSignIn": _ts(rt.last_successful_sign_in) if rt else None,
            "LastRealtimeUser": rt.last_user if rt else None,
            "RealtimeSignInCount": rt.sign_in_count if rt else None,
            "RealtimeFailureCount": rt.failure_count if rt else None,
            "RealtimeUniqueUsers": len(rt.users) if rt else None,
            "LastAuditActivity": _ts(au.last_activity) if au else None,
            "LastAuditOperation": au.last_operation if au else None,
            "AuditEventCount": au.event_count if au else None,
            "MostRecentActivityDate": _ts(self.most_recent_activity),
            "DaysSinceLastActivity": self.days_since_last_activity,
            "ActivityLevel": self.activity_level.value,
            "ActivityTypes": ", ".join(self.activity_types),
            "ActivitySourcesSummary": self.activity_sources_summary,
        }

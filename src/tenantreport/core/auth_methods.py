# src/tenantreport/core/auth_methods.py
"""
Static knowledge about Graph authentication method types.

Adding a new method type is an edit to METHOD_TYPES; nothing else branches
on the @odata.type string.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from tenantreport.core.models import UserAuthenticationRecord

# When a per-method detail call is needed
NEVER = "never"
ALWAYS = "always"
DEVICE_DETAILS = "device_details"   # only when device enrichment was requested

_ODATA_PREFIX = "#microsoft.graph."


@dataclass(frozen=True)
class MethodType:
    key: str
    label: str
    detail: str = NEVER
    url_template: Optional[str] = None
    mfa_capable: bool = False

    def needs_detail(self, include_device_details: bool) -> bool:
        if self.url_template is None or self.detail == NEVER:
            return False
        if self.detail == ALWAYS:
            return True
        return bool(include_device_details)

    def detail_url(self, user_id: str, method_id: str) -> str:
        return self.url_template.format(user_id=user_id, method_id=method_id)


METHOD_TYPES: Dict[str, MethodType] = {
    _ODATA_PREFIX + "passwordAuthenticationMethod": MethodType(
        "password", "Password"),
    _ODATA_PREFIX + "microsoftAuthenticatorAuthenticationMethod": MethodType(
        "microsoft_authenticator", "Microsoft Authenticator", ALWAYS,
        "/users/{user_id}/authentication/microsoftAuthenticatorMethods/{method_id}?$expand=device",
        mfa_capable=True),
    _ODATA_PREFIX + "fido2AuthenticationMethod": MethodType(
        "fido2", "FIDO2 Security Key", DEVICE_DETAILS,
        "/users/{user_id}/authentication/fido2Methods/{method_id}",
        mfa_capable=True),
    _ODATA_PREFIX + "phoneAuthenticationMethod": MethodType(
        "phone", "Phone", mfa_capable=True),
    _ODATA_PREFIX + "windowsHelloForBusinessAuthenticationMethod": MethodType(
        "windows_hello", "Windows Hello for Business", DEVICE_DETAILS,
        "/users/{user_id}/authentication/windowsHelloForBusinessMethods/{method_id}?$expand=device",
        mfa_capable=True),
    _ODATA_PREFIX + "softwareOathAuthenticationMethod": MethodType(
        "software_oath", "Software OATH Token", mfa_capable=True),
    _ODATA_PREFIX + "hardwareOathAuthenticationMethod": MethodType(
        "hardware_oath", "Hardware OATH Token", mfa_capable=True),
    _ODATA_PREFIX + "platformCredentialAuthenticationMethod": MethodType(
        "platform_credential", "Platform Credential", DEVICE_DETAILS,
        "/users/{user_id}/authentication/platformCredentialMethods/{method_id}?$expand=device",
        mfa_capable=True),
    _ODATA_PREFIX + "emailAuthenticationMethod": MethodType(
        "email", "Email"),
    _ODATA_PREFIX + "temporaryAccessPassAuthenticationMethod": MethodType(
        "temporary_access_pass", "Temporary Access Pass"),
}

_BY_LABEL = {mt.label: mt for mt in METHOD_TYPES.values()}
_LABEL_ORDER = {mt.label: i for i, mt in enumerate(METHOD_TYPES.values())}

# Highest first
DEFAULT_MFA_PRIORITY = ("microsoft_authenticator", "fido2", "phone", "windows_hello", "software_oath")
NO_DEFAULT_MFA = "none"


def method_type_for(odata_type: Optional[str]) -> Optional[MethodType]:
    if not odata_type:
        return None
    mt = METHOD_TYPES.get(odata_type)
    if mt is not None:
        return mt
    low = odata_type.lower()
    for k, v in METHOD_TYPES.items():
        if k.lower() == low:
            return v
    return None


def label_for(odata_type: Optional[str]) -> str:
    """Human label; unknown types fall back to their trimmed type name."""
    mt = method_type_for(odata_type)
    if mt is not None:
        return mt.label
    name = (odata_type or "unknown").replace(_ODATA_PREFIX, "").lstrip("#")
    return name.replace("AuthenticationMethod", "") or "unknown"


def registered_labels(methods: Iterable[Dict[str, Any]]) -> List[str]:
    """Distinct method labels, known types in table order, unknown types after."""
    labels = {label_for(m.get("@odata.type")) for m in methods}
    return sorted(labels, key=lambda lb: (_LABEL_ORDER.get(lb, len(_LABEL_ORDER)), lb))


def apply_method_flags(record: UserAuthenticationRecord) -> None:
    """
    Derive every boolean and rollup from record.method_types_registered.
    Leaves them all None when the summary fetch failed.
    """
    labels = record.method_types_registered
    if labels is None:
        return
    keys = {_BY_LABEL[lb].key for lb in labels if lb in _BY_LABEL}

    record.has_password = "password" in keys
    record.has_microsoft_authenticator = "microsoft_authenticator" in keys
    record.has_fido2 = "fido2" in keys
    record.has_phone = "phone" in keys
    record.has_email = "email" in keys
    record.has_windows_hello = "windows_hello" in keys
    record.has_software_oath = "software_oath" in keys
    record.has_hardware_oath = "hardware_oath" in keys
    record.has_temporary_access_pass = "temporary_access_pass" in keys
    record.has_platform_credential = "platform_credential" in keys

    record.default_mfa_method = NO_DEFAULT_MFA
    for key in DEFAULT_MFA_PRIORITY:
        if key in keys:
            record.default_mfa_method = next(mt.label for mt in METHOD_TYPES.values() if mt.key == key)
            break

    record.is_mfa_capable = any(_BY_LABEL[lb].mfa_capable for lb in labels if lb in _BY_LABEL)
    record.is_passwordless_capable = (record.has_fido2 or record.has_windows_hello) and not record.has_password


# ---------- display strings ----------

def _device_name(detail: Optional[Dict[str, Any]]) -> Optional[str]:
    device = (detail or {}).get("device") or {}
    return device.get("displayName")


def describe_method(method: Dict[str, Any], detail: Optional[Dict[str, Any]] = None) -> Optional[str]:
    """One short human string per method instance, or None if nothing useful."""
    mt = method_type_for(method.get("@odata.type"))
    if mt is None:
        return None
    src = dict(method)
    if detail:
        src.update({k: v for k, v in detail.items() if v is not None})

    if mt.key == "phone":
        number = src.get("phoneNumber")
        if not number:
            return None
        return f"{src.get('phoneType') or 'phone'}: {number}"
    if mt.key == "email":
        return src.get("emailAddress")
    if mt.key == "microsoft_authenticator":
        name = _device_name(detail) or src.get("displayName") or "Unknown device"
        version = src.get("phoneAppVersion")
        return f"{name} ({version})" if version else name
    if mt.key == "fido2":
        name = src.get("displayName") or "Security key"
        model = src.get("model")
        return f"{name} [{model}]" if model else name
    if mt.key == "windows_hello":
        name = _device_name(detail) or src.get("displayName") or "Unknown device"
        strength = src.get("keyStrength")
        return f"{name} ({strength})" if strength else name
    return None


# record attribute per method key for the formatted columns
DISPLAY_COLUMNS = {
    "phone": "phone_numbers",
    "email": "email_addresses",
    "microsoft_authenticator": "authenticator_devices",
    "fido2": "fido2_keys",
    "windows_hello": "windows_hello_devices",
}

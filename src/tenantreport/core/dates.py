# src/tenantreport/core/dates.py
from __future__ import annotations
import re
from datetime import datetime, timezone
from typing import Any, Optional

# Tried in order after ISO-8601. Sign-in logs, audit logs and exported
# reports disagree on layout; keep every known variant here and nowhere else.
FALLBACK_FORMATS = (
    "%Y-%m-%dT%H:%M:%S.%fZ",
    "%Y-%m-%dT%H:%M:%SZ",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M:%S.%f",
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y %I:%M:%S %p",
    "%d/%m/%Y %H:%M:%S",
    "%m/%d/%Y",
    "%Y-%m-%d",
)

# Graph emits up to 7 fractional digits; datetime takes 6
_FRACTION = re.compile(r"(\.\d{6})\d+")


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _parse_iso(text: str) -> Optional[datetime]:
    t = _FRACTION.sub(r"\1", text)
    if t.endswith("Z") or t.endswith("z"):
        t = t[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(t)
    except ValueError:
        return None


def parse_graph_datetime(value: Any) -> Optional[datetime]:
    """
    Parse a provider timestamp into an aware UTC datetime.
    ISO-8601 first, then FALLBACK_FORMATS in order. Returns None when nothing
    matches; callers decide whether to skip the field.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return _as_utc(value)
    text = str(value).strip()
    if not text:
        return None

    dt = _parse_iso(text)
    if dt is None:
        for fmt in FALLBACK_FORMATS:
            try:
                dt = datetime.strptime(text, fmt)
                break
            except ValueError:
                continue
    if dt is None:
        return None
    return _as_utc(dt)


def days_since(dt: Optional[datetime], now: Optional[datetime] = None) -> Optional[int]:
    """Whole days between now and dt, rounded. None in, None out."""
    if dt is None:
        return None
    ref = _as_utc(now) if now is not None else now_utc()
    return int(round((ref - _as_utc(dt)).total_seconds() / 86400))


def is_more_recent(candidate: Optional[datetime], current: Optional[datetime]) -> bool:
    """Strictly newer. Equal timestamps keep the stored value."""
    if candidate is None:
        return False
    if current is None:
        return True
    return _as_utc(candidate) > _as_utc(current)


def most_recent(*values: Optional[datetime]) -> Optional[datetime]:
    present = [_as_utc(v) for v in values if v is not None]
    return max(present) if present else None

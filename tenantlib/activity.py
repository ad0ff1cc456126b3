"""
Sign-in activity and account status classification.
"""
from datetime import datetime, timezone
from typing import Any, Optional, Tuple

from .constants import (
    ACCOUNT_DISABLED,
    ACCOUNT_ENABLED,
    ACTIVITY_ACTIVE,
    ACTIVITY_INACTIVE,
    ACTIVITY_NEVER,
    DEFAULT_INACTIVE_DAYS,
    UNKNOWN,
)


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def parse_datetime(value: Any) -> Optional[datetime]:
    """
    Parse Graph timestamps into aware UTC datetimes.

    Accepts datetime objects (as returned by msgraph-sdk) and ISO strings
    like '2024-10-01T12:34:56Z'. Returns None if missing or unparseable.
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

    if not isinstance(value, str):
        return None

    s = value.strip()
    if not s:
        return None

    # fromisoformat() only accepts a trailing 'Z' from 3.11 onwards
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    # Graph emits 7 fractional digits; trim to microseconds
    if "." in s:
        head, _, tail = s.partition(".")
        digits = ""
        rest = ""
        for i, ch in enumerate(tail):
            if not ch.isdigit():
                rest = tail[i:]
                break
            digits += ch
        s = f"{head}.{digits[:6].ljust(6, '0')}{rest}"

    try:
        parsed = datetime.fromisoformat(s)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def last_access(
    interactive: Optional[datetime],
    non_interactive: Optional[datetime],
) -> Optional[datetime]:
    """Most recent of the interactive and non-interactive sign-ins."""
    candidates = [d for d in (interactive, non_interactive) if d is not None]
    return max(candidates) if candidates else None


def days_since(moment: Optional[datetime], now: Optional[datetime] = None) -> Optional[int]:
    """Whole days elapsed since ``moment``; None when there is no timestamp."""
    if moment is None:
        return None
    now = now or now_utc()
    return max((now - moment).days, 0)


def classify_activity(
    days: Optional[int],
    threshold_days: int = DEFAULT_INACTIVE_DAYS,
) -> Tuple[bool, str]:
    """
    Classify an account by days since last access.

    Returns:
        (inactive, status) - accounts with no sign-in at all are inactive
    """
    if days is None:
        return True, ACTIVITY_NEVER
    if days > threshold_days:
        return True, f"{ACTIVITY_INACTIVE} ({days} days)"
    return False, ACTIVITY_ACTIVE


def account_status(enabled: Optional[bool]) -> str:
    # Graph omits accountEnabled for some synced objects; treat as enabled
    return ACCOUNT_DISABLED if enabled is False else ACCOUNT_ENABLED


def format_datetime(value: Optional[datetime], default: str = UNKNOWN) -> str:
    if value is None:
        return default
    return value.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M")

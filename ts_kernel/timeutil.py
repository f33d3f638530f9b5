"""UTC time helpers shared by the ledger, heartbeats and signer."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def iso_utc(dt: Optional[datetime] = None) -> str:
    """ISO-8601 UTC with millisecond precision and a 'Z' suffix.

    Fixed-width, so lexicographic order equals chronological order. This is
    the format the ledger's timestamp check relies on.
    """
    dt = (dt or now_utc()).astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def parse_iso_utc(ts: Optional[str]) -> Optional[datetime]:
    """Parse an ISO timestamp into a timezone-aware UTC datetime.

    Returns None if parsing fails or input is empty.
    """
    if not ts:
        return None
    s = str(ts).strip()
    if not s:
        return None
    # Accept RFC 3339 'Z' suffix.
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)

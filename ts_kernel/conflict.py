"""Whole-project write acceptance based on last-modified timestamps.

Used when a full project document is pushed (e.g. LAN sync) rather than a
single artifact. Clock skew between peers is tolerated up to a window.
"""

from __future__ import annotations

from typing import Optional

from .timeutil import parse_iso_utc


DEFAULT_TOLERANCE_MS = 2000


def should_accept_write(
    existing_last_modified: Optional[str],
    incoming_last_modified: Optional[str],
    tolerance_ms: int = DEFAULT_TOLERANCE_MS,
) -> bool:
    """Accept unless the incoming write is older than existing minus tolerance.

    Missing or unparseable timestamps on either side are accepted; there is
    nothing to compare against.
    """
    existing = parse_iso_utc(existing_last_modified)
    incoming = parse_iso_utc(incoming_last_modified)
    if existing is None or incoming is None:
        return True
    delta_ms = (existing - incoming).total_seconds() * 1000.0
    return delta_ms <= tolerance_ms

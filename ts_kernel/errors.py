"""Stable error taxonomy for the Thingstead integrity kernel.

This module defines machine-readable error codes and a single exception type
used across the canonical encoder, the ledger and bundle verifiers, the
signature checker and the revision tracker.

Design goals:
- Stable `code` string suitable for programmatic handling.
- Optional `retryable` flag for callers that resubmit (agents).
- Structured `details` for debugging without parsing messages.

Integrity violations and revision conflicts are NOT raised; they are reported
as results. TSError is reserved for input that cannot be processed at all.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict


# Canonicalization / hashing
TS_E_CANON_NON_JSON = "TS_E_CANON_NON_JSON"
TS_E_CANON_DEPTH = "TS_E_CANON_DEPTH"
TS_E_CANON_NONFINITE = "TS_E_CANON_NONFINITE"
TS_E_CANON_KEY_TYPE = "TS_E_CANON_KEY_TYPE"
TS_E_CANON_INT_TOO_LARGE = "TS_E_CANON_INT_TOO_LARGE"

# Bundles
TS_E_BUNDLE_PARSE = "TS_E_BUNDLE_PARSE"
TS_E_BUNDLE_STRUCTURE = "TS_E_BUNDLE_STRUCTURE"

# Ledger construction
TS_E_LEDGER_TIMESTAMP = "TS_E_LEDGER_TIMESTAMP"

# Signatures
TS_E_SIG_MISSING = "TS_E_SIG_MISSING"
TS_E_SIG_ALGORITHM = "TS_E_SIG_ALGORITHM"
TS_E_SIG_MALFORMED = "TS_E_SIG_MALFORMED"

# Generic
TS_E_BAD_REQUEST = "TS_E_BAD_REQUEST"


@dataclass
class TSError(Exception):
    """Base kernel exception with stable error code."""

    code: str
    message: str
    retryable: bool = False
    details: Dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "code": self.code,
            "message": self.message,
            "retryable": bool(self.retryable),
        }
        if self.details:
            d["details"] = self.details
        return d

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


def ts_error(
    code: str,
    message: str,
    *,
    retryable: bool = False,
    **details: Any,
) -> TSError:
    return TSError(code=code, message=message, retryable=retryable, details=details)

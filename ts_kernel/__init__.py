"""Thingstead integrity kernel.

Verification primitives for exported project bundles and signed
deliverables, plus in-process coordination for concurrent agents:

- Canonical JSON encoding and SHA-256 stable hashes
- Hash-chained governance ledger (build and verify)
- Bundle integrity reports (structure, ledger, digest block, policy)
- ECDSA P-256 signed deliverables
- Optimistic revision tracking and agent heartbeats

Convenience imports
------------------
Common entry points are available at the package root and load lazily:

    from ts_kernel import verify_bundle, verify_signed_bundle, AgentCoordinator
"""

from __future__ import annotations

import re
from importlib import import_module
from pathlib import Path
from typing import Any


def _read_version_from_pyproject() -> str | None:
    """Best-effort version discovery for dev/test environments."""

    try:
        pyproject = Path(__file__).resolve().parents[1] / "pyproject.toml"
        txt = pyproject.read_text(encoding="utf-8")
        m = re.search(r"^version\s*=\s*\"([^\"]+)\"\s*$", txt, flags=re.MULTILINE)
        return m.group(1) if m else None
    except Exception:
        return None


__version__ = _read_version_from_pyproject() or "1.0.0"

__all__ = [
    "__version__",
    "TSError",
    "KernelConfig",
    "canonical_json_dumps",
    "stable_hash",
    "sha256_hex",
    "EcdsaP256KeyPair",
    "GENESIS_HASH",
    "LedgerEventType",
    "create_genesis_entry",
    "append_entry",
    "compute_entry_hash",
    "verify_ledger",
    "load_bundle",
    "export_bundle",
    "verify_bundle",
    "sign_bundle",
    "verify_signed_bundle",
    "RevisionTracker",
    "HeartbeatTracker",
    "should_accept_write",
    "AgentCoordinator",
]

# Lazy export map: name -> (module, attribute)
_LAZY_EXPORTS: dict[str, tuple[str, str]] = {
    "TSError": ("ts_kernel.errors", "TSError"),
    "KernelConfig": ("ts_kernel.config", "KernelConfig"),
    "canonical_json_dumps": ("ts_kernel.canonical", "canonical_json_dumps"),
    "stable_hash": ("ts_kernel.crypto", "stable_hash"),
    "sha256_hex": ("ts_kernel.crypto", "sha256_hex"),
    "EcdsaP256KeyPair": ("ts_kernel.crypto", "EcdsaP256KeyPair"),
    "GENESIS_HASH": ("ts_kernel.ledger", "GENESIS_HASH"),
    "LedgerEventType": ("ts_kernel.ledger", "LedgerEventType"),
    "create_genesis_entry": ("ts_kernel.ledger", "create_genesis_entry"),
    "append_entry": ("ts_kernel.ledger", "append_entry"),
    "compute_entry_hash": ("ts_kernel.ledger", "compute_entry_hash"),
    "verify_ledger": ("ts_kernel.ledger", "verify_ledger"),
    "load_bundle": ("ts_kernel.bundle", "load_bundle"),
    "export_bundle": ("ts_kernel.bundle", "export_bundle"),
    "verify_bundle": ("ts_kernel.bundle", "verify_bundle"),
    "sign_bundle": ("ts_kernel.dlc", "sign_bundle"),
    "verify_signed_bundle": ("ts_kernel.dlc", "verify_signed_bundle"),
    "RevisionTracker": ("ts_kernel.revisions", "RevisionTracker"),
    "HeartbeatTracker": ("ts_kernel.heartbeats", "HeartbeatTracker"),
    "should_accept_write": ("ts_kernel.conflict", "should_accept_write"),
    "AgentCoordinator": ("ts_kernel.coordination", "AgentCoordinator"),
}


def __getattr__(name: str) -> Any:
    if name in _LAZY_EXPORTS:
        module_name, attr = _LAZY_EXPORTS[name]
        module = import_module(module_name)
        value = getattr(module, attr)
        globals()[name] = value
        return value
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def __dir__() -> list[str]:
    return sorted(set(globals().keys()) | set(__all__))

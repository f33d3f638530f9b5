"""Prometheus metrics for the integrity kernel.

Metrics goals:
- low-cardinality labels (never project, artifact or agent ids)
- visibility into verification outcomes, signature outcomes and write
  contention between agents

Set TS_METRICS_ENABLED=0 to turn recording into a no-op. Counters live in the
default registry; the hosting service owns exposition (e.g.
`prometheus_client.start_http_server` or its own /metrics route).
"""
from __future__ import annotations

import os

from prometheus_client import Counter


def _env_bool(name: str, default: bool = True) -> bool:
    v = (os.getenv(name, "") or "").strip().lower()
    if not v:
        return default
    return v in ("1", "true", "yes", "on")


# ---------------------------
# Core metric objects
# ---------------------------
BUNDLE_VERIFICATIONS_TOTAL = Counter(
    "ts_bundle_verifications_total",
    "Total bundle verifications",
    ["outcome"],
)
SIGNATURE_VERIFICATIONS_TOTAL = Counter(
    "ts_signature_verifications_total",
    "Total signed-deliverable verifications",
    ["outcome"],
)
REVISION_ADVANCES_TOTAL = Counter(
    "ts_revision_advances_total",
    "Total compare-and-increment attempts on artifact revisions",
    ["outcome"],
)
HEARTBEATS_TOTAL = Counter(
    "ts_agent_heartbeats_total",
    "Total agent heartbeats recorded",
)


def _enabled() -> bool:
    return _env_bool("TS_METRICS_ENABLED", True)


def record_bundle_verification(ok: bool) -> None:
    if _enabled():
        BUNDLE_VERIFICATIONS_TOTAL.labels(outcome="valid" if ok else "invalid").inc()


def record_signature_verification(outcome: str) -> None:
    if _enabled():
        SIGNATURE_VERIFICATIONS_TOTAL.labels(outcome=str(outcome)).inc()


def record_revision_advance(ok: bool) -> None:
    if _enabled():
        REVISION_ADVANCES_TOTAL.labels(outcome="ok" if ok else "conflict").inc()


def record_heartbeat() -> None:
    if _enabled():
        HEARTBEATS_TOTAL.inc()

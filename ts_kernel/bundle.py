"""Export bundles: building them, and verifying them without trusting the exporter.

A bundle is a JSON document wrapping a project:

    {
      "schemaVersion": 1,
      "createdAt": "...",
      "sovereignty": {"format": "..."},          # optional
      "verification": {                          # optional
        "ledger":    {"hash": "<sha256 hex>"},
        "policy":    {"hash": "<sha256 hex>"},
        "audit_log": {"hash": "<sha256 hex>"}
      },
      "project": {...}
    }

The verification block is a snapshot claim made at export time. Verification
recomputes each digest from the project sections and compares. Absence of a
block is not a falsified claim, so a bundle without one is reported as
skipped, not failed.

`verify_bundle` produces the full report used by the CLI:
  1) Bundle Structure   (aborts the report on failure)
  2) Ledger Integrity   (see ts_kernel.ledger)
  3) Verification Block
  4) Policy             (informational)
  5) Governance Summary (informational)
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Union

from . import metrics
from .config import KernelConfig
from .crypto import stable_hash
from .errors import TSError, ts_error, TS_E_BUNDLE_PARSE, TS_E_BUNDLE_STRUCTURE
from .ledger import verify_ledger
from .schema import validate_bundle_structure
from .timeutil import iso_utc


logger = logging.getLogger("ts_kernel.bundle")

EXPORT_BUNDLE_SCHEMA_VERSION = 1
VERIFIED_SECTIONS = ("ledger", "policy", "audit_log")

SECTION_STRUCTURE = "Bundle Structure"
SECTION_LEDGER = "Ledger Integrity"
SECTION_VERIFICATION = "Verification Block"
SECTION_POLICY = "Policy"
SECTION_SUMMARY = "Governance Summary"

_SECTION_LABELS = {"ledger": "Ledger", "policy": "Policy", "audit_log": "Audit log"}


@dataclass
class VerifyMessage:
    ok: bool
    code: str
    detail: str
    skipped: bool = False

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"ok": self.ok, "code": self.code, "detail": self.detail}
        if self.skipped:
            d["skipped"] = True
        return d


def _short(h: Any) -> str:
    return f"{str(h)[:16]}..."


def _is_empty(section: Any) -> bool:
    if section is None:
        return True
    if isinstance(section, (list, tuple, dict, str)):
        return len(section) == 0
    return False


# ---------------------------------------------------------------------------
# Parsing / export
# ---------------------------------------------------------------------------

def _reject_constant(name: str) -> Any:
    raise ValueError(f"non-standard JSON constant: {name}")


def load_bundle(data: Union[str, bytes]) -> Any:
    """Parse bundle JSON text.

    NaN/Infinity literals are rejected; they are not JSON and could not be
    canonically encoded. Bytes are decoded as UTF-8 (UTF-16/32 are detected).

    Raises:
        TSError: TS_E_BUNDLE_PARSE if the text is not valid JSON,
            TS_E_BUNDLE_STRUCTURE if the top level is not an object.
    """
    try:
        obj = json.loads(data, parse_constant=_reject_constant)
    except (ValueError, UnicodeDecodeError) as e:
        raise ts_error(TS_E_BUNDLE_PARSE, f"failed to parse JSON: {e}") from e
    except RecursionError as e:
        raise ts_error(TS_E_BUNDLE_PARSE, "failed to parse JSON: nesting too deep") from e
    if not isinstance(obj, dict):
        raise ts_error(TS_E_BUNDLE_STRUCTURE, "bundle is not a JSON object", got=type(obj).__name__)
    return obj


def build_verification_block(project: Mapping[str, Any]) -> Dict[str, Dict[str, str]]:
    """Digest every non-empty verified section of a project."""
    block: Dict[str, Dict[str, str]] = {}
    for name in VERIFIED_SECTIONS:
        section = project.get(name)
        if _is_empty(section):
            continue
        block[name] = {"hash": stable_hash(section)}
    return block


def export_bundle(
    project: Mapping[str, Any],
    *,
    created_at: Optional[str] = None,
    app_version: Optional[str] = None,
    sovereignty_format: Optional[str] = None,
    include_verification: bool = True,
) -> Dict[str, Any]:
    """Wrap a project in an export bundle, optionally with a verification block."""
    if not isinstance(project, Mapping):
        raise ts_error(TS_E_BUNDLE_STRUCTURE, "project must be an object", got=type(project).__name__)

    bundle: Dict[str, Any] = {
        "schemaVersion": EXPORT_BUNDLE_SCHEMA_VERSION,
        "createdAt": created_at or iso_utc(),
    }
    if app_version:
        bundle["appVersion"] = app_version
    if sovereignty_format:
        bundle["sovereignty"] = {"format": sovereignty_format}
    if include_verification:
        bundle["verification"] = build_verification_block(project)
    bundle["project"] = dict(project)
    return bundle


# ---------------------------------------------------------------------------
# Verification block
# ---------------------------------------------------------------------------

@dataclass
class SectionDigestResult:
    section: str
    status: str  # "ok" | "mismatch" | "skipped_empty"
    recorded: str
    computed: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status != "mismatch"


@dataclass
class BlockVerification:
    valid: bool
    skipped: bool
    sections: Dict[str, SectionDigestResult] = field(default_factory=dict)
    messages: List[VerifyMessage] = field(default_factory=list)


def _section_ok_detail(name: str, section: Any) -> str:
    label = _SECTION_LABELS[name]
    if name == "policy" and isinstance(section, Mapping):
        return f"{label} hash matches (v{section.get('version')})"
    if isinstance(section, (list, tuple)):
        return f"{label} hash matches ({len(section)} entries)"
    return f"{label} hash matches"


def verify_verification_block(bundle: Mapping[str, Any]) -> BlockVerification:
    """Compare recorded section digests with digests recomputed from the project.

    Sections are independent: a mismatch in one does not stop the others.
    A present-but-empty section with a recorded digest is skipped
    (SKIPPED_EMPTY), never compared against the digest of "[]" or "{}".
    """
    verification = bundle.get("verification")
    if not verification:
        msg = VerifyMessage(True, "VERIFICATION_BLOCK_ABSENT", "No verification block in bundle", skipped=True)
        return BlockVerification(valid=True, skipped=True, messages=[msg])

    if not isinstance(verification, Mapping):
        msg = VerifyMessage(False, "VERIFICATION_BLOCK_MALFORMED", "Verification block is not an object")
        return BlockVerification(valid=False, skipped=False, messages=[msg])

    project = bundle.get("project")
    if not isinstance(project, Mapping):
        project = {}
    max_depth = KernelConfig.from_env().canon_max_depth
    result = BlockVerification(valid=True, skipped=False)

    for name in VERIFIED_SECTIONS:
        claim = verification.get(name)
        if not isinstance(claim, Mapping) or not claim.get("hash"):
            continue
        recorded = str(claim["hash"])
        label = _SECTION_LABELS[name]
        section = project.get(name)

        if _is_empty(section):
            result.sections[name] = SectionDigestResult(name, "skipped_empty", recorded)
            result.messages.append(
                VerifyMessage(True, f"{name.upper()}_HASH_SKIPPED_EMPTY",
                              f"{label} is empty; recorded hash not checked", skipped=True)
            )
            continue

        try:
            computed = stable_hash(section, max_depth=max_depth)
        except TSError as e:
            result.sections[name] = SectionDigestResult(name, "mismatch", recorded)
            result.messages.append(VerifyMessage(False, f"{name.upper()}_HASH_MISMATCH", f"{label} not hashable: {e}"))
            result.valid = False
            continue

        if computed != recorded:
            result.sections[name] = SectionDigestResult(name, "mismatch", recorded, computed)
            result.messages.append(
                VerifyMessage(
                    False,
                    f"{name.upper()}_HASH_MISMATCH",
                    f"{label} hash mismatch (bundle: {_short(recorded)}, computed: {_short(computed)})",
                )
            )
            result.valid = False
        else:
            result.sections[name] = SectionDigestResult(name, "ok", recorded, computed)
            result.messages.append(VerifyMessage(True, f"{name.upper()}_HASH_OK", _section_ok_detail(name, section)))

    return result


# ---------------------------------------------------------------------------
# Full report
# ---------------------------------------------------------------------------

@dataclass
class ReportSection:
    name: str
    messages: List[VerifyMessage] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(m.ok for m in self.messages)

    def add(self, ok: bool, code: str, detail: str, *, skipped: bool = False) -> None:
        self.messages.append(VerifyMessage(ok, code, detail, skipped=skipped))


@dataclass
class BundleReport:
    sections: List[ReportSection] = field(default_factory=list)
    overall: bool = True

    def section(self, name: str) -> Optional[ReportSection]:
        return next((s for s in self.sections if s.name == name), None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overall": self.overall,
            "sections": [
                {"name": s.name, "ok": s.ok, "checks": [m.to_dict() for m in s.messages]}
                for s in self.sections
            ],
        }


def _check_structure(bundle: Any) -> ReportSection:
    sec = ReportSection(SECTION_STRUCTURE)
    if not isinstance(bundle, Mapping):
        sec.add(False, "NOT_AN_OBJECT", "Not a valid JSON object")
        return sec

    sec.add(True, "SCHEMA_VERSION", f"schemaVersion {bundle.get('schemaVersion')}")
    sovereignty = bundle.get("sovereignty")
    if sovereignty:
        fmt = sovereignty.get("format") if isinstance(sovereignty, Mapping) else None
        sec.add(True, "SOVEREIGNTY_PRESENT", f"Sovereignty block present ({fmt})")
    if bundle.get("verification"):
        sec.add(True, "VERIFICATION_PRESENT", "Verification block present")

    project = bundle.get("project")
    if project is None:
        sec.add(False, "PROJECT_MISSING", "No project in bundle")
        return sec
    if isinstance(project, Mapping):
        label = project.get("name") or project.get("id") or "unnamed"
        sec.add(True, "PROJECT_PRESENT", f"Project present ({label})")

    ok_schema, schema_msgs = validate_bundle_structure(bundle)
    if not ok_schema:
        for m in schema_msgs:
            if not m.ok:
                sec.add(False, m.code, m.detail)
    return sec


def _check_ledger(project: Mapping[str, Any]) -> ReportSection:
    sec = ReportSection(SECTION_LEDGER)
    ledger = project.get("ledger") or []
    if not ledger:
        sec.add(True, "LEDGER_EMPTY", "No ledger entries", skipped=True)
        return sec

    result = verify_ledger(ledger)
    if result.valid:
        sec.add(True, "LEDGER_OK", f"{result.entries} entries, chain intact")
        return sec
    for entry_result, check in result.failures():
        sec.add(False, check.code, f"{check.detail} (entry {entry_result.sequence}: {entry_result.type})")
    return sec


def _describe_policy(project: Mapping[str, Any]) -> ReportSection:
    sec = ReportSection(SECTION_POLICY)
    policy = project.get("policy")
    if not policy or not isinstance(policy, Mapping):
        sec.add(True, "POLICY_ABSENT", "No policy object", skipped=True)
        return sec
    sec.add(True, "POLICY_PRESENT", f"Policy v{policy.get('version')} ({policy.get('name') or 'unnamed'})")
    waiver = policy.get("waiver")
    if isinstance(waiver, Mapping):
        sec.add(True, "INFO", f"Waiver min: {waiver.get('rationale_min_length')} chars")
    gate = policy.get("gate")
    if isinstance(gate, Mapping):
        sec.add(True, "INFO", f"Solo attestation min: {gate.get('solo_attestation_min_length')} chars")
        sec.add(True, "INFO", f"No-go continue: {gate.get('allow_no_go_continue')}")
    return sec


def _summarize_governance(project: Mapping[str, Any]) -> ReportSection:
    sec = ReportSection(SECTION_SUMMARY)
    plan = project.get("plan")
    plan_id = (plan.get("id") if isinstance(plan, Mapping) else None) or project.get("plan_id") or "unknown"
    phases = project.get("phases") or []
    total_artifacts = sum(len(p.get("artifacts") or []) for p in phases if isinstance(p, Mapping))

    sec.add(True, "INFO", f"Mode: {project.get('governance_mode') or 'unknown'}")
    sec.add(True, "INFO", f"Plan: {plan_id}")
    sec.add(True, "INFO", f"Owner: {project.get('project_owner') or 'unknown'}")
    sec.add(True, "INFO", f"Phases: {len(phases)}")
    sec.add(True, "INFO", f"Total artifacts: {total_artifacts}")
    return sec


def verify_bundle(bundle: Any) -> BundleReport:
    """Verify an export bundle and build the sectioned report.

    Structural problems end the report after the Bundle Structure section.
    Integrity problems are collected; every section still runs.
    """
    report = BundleReport()

    structure = _check_structure(bundle)
    report.sections.append(structure)
    if not structure.ok:
        report.overall = False
        logger.info("bundle rejected: structural errors")
        metrics.record_bundle_verification(False)
        return report

    project = bundle["project"]

    report.sections.append(_check_ledger(project))

    block = verify_verification_block(bundle)
    report.sections.append(ReportSection(SECTION_VERIFICATION, list(block.messages)))

    report.sections.append(_describe_policy(project))
    report.sections.append(_summarize_governance(project))

    report.overall = all(s.ok for s in report.sections)
    if not report.overall:
        failed = [s.name for s in report.sections if not s.ok]
        logger.info("bundle verification failed in sections: %s", ", ".join(failed))
    metrics.record_bundle_verification(report.overall)
    return report

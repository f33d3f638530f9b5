"""Append-only hash-chained governance ledger.

Every governance event is recorded as a ledger entry with:
- sequence: gapless, equal to the entry's zero-based index
- prev_hash: the previous entry's `hash` (GENESIS_HASH for the first entry)
- hash: SHA256 of the canonical JSON of
  {sequence, type, payload, timestamp, actor_id, prev_hash}

The ledger can be verified end-to-end by walking the chain. Verification is
read-only and reports every broken invariant, not just the first, so an
exported bundle gets a complete diagnostic in one pass.

All construction helpers are pure: they return new lists and never mutate
the ledger passed in.
"""

from __future__ import annotations

import logging
from collections.abc import Hashable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .config import KernelConfig
from .crypto import DIGEST_HEX_LEN, stable_hash
from .errors import TSError, ts_error, TS_E_BAD_REQUEST, TS_E_LEDGER_TIMESTAMP
from .timeutil import iso_utc


logger = logging.getLogger("ts_kernel.ledger")

GENESIS_HASH = "0" * DIGEST_HEX_LEN

HASHED_FIELDS = ("sequence", "type", "payload", "timestamp", "actor_id", "prev_hash")


class LedgerEventType(str, Enum):
    # Project lifecycle
    PROJECT_CREATED = "PROJECT_CREATED"
    PROJECT_IMPORTED = "PROJECT_IMPORTED"
    # Gate decisions
    GATE_DECIDED = "GATE_DECIDED"
    # Artifact events
    ARTIFACT_COMPLETED = "ARTIFACT_COMPLETED"
    PHASE_UNLOCKED = "PHASE_UNLOCKED"
    # Waivers
    WAIVER_APPLIED = "WAIVER_APPLIED"
    WAIVER_REMOVED = "WAIVER_REMOVED"
    # Policy
    POLICY_CHANGED = "POLICY_CHANGED"
    # Security
    OVERRIDE_ATTEMPTED = "OVERRIDE_ATTEMPTED"


@dataclass
class LedgerEntry:
    sequence: int
    type: str
    payload: Any
    timestamp: str
    actor_id: str
    prev_hash: str
    hash: str

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "LedgerEntry":
        missing = [k for k in HASHED_FIELDS + ("hash",) if k not in d]
        if missing:
            raise ts_error(TS_E_BAD_REQUEST, "ledger entry is missing fields", missing=missing)
        return cls(
            sequence=d["sequence"],
            type=d["type"],
            payload=d["payload"],
            timestamp=d["timestamp"],
            actor_id=d["actor_id"],
            prev_hash=d["prev_hash"],
            hash=d["hash"],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sequence": self.sequence,
            "type": self.type,
            "payload": self.payload,
            "timestamp": self.timestamp,
            "actor_id": self.actor_id,
            "prev_hash": self.prev_hash,
            "hash": self.hash,
        }

    def hashable(self) -> Dict[str, Any]:
        return hashable_projection(self.to_dict())


EntryLike = Union[Mapping[str, Any], LedgerEntry]


def hashable_projection(entry: Mapping[str, Any]) -> Dict[str, Any]:
    """The fields covered by an entry's hash.

    Absent fields are omitted (not encoded as null) so that entries written
    by a JavaScript exporter, which drops undefined keys, hash identically.
    """
    return {k: entry[k] for k in HASHED_FIELDS if k in entry}


def compute_entry_hash(entry: EntryLike, *, max_depth: Optional[int] = None) -> str:
    if isinstance(entry, LedgerEntry):
        return stable_hash(entry.hashable(), max_depth=max_depth)
    return stable_hash(hashable_projection(entry), max_depth=max_depth)


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------

def _type_tag(event_type: Union[str, LedgerEventType]) -> str:
    return event_type.value if isinstance(event_type, LedgerEventType) else str(event_type)


def create_genesis_entry(
    event_type: Union[str, LedgerEventType],
    payload: Any = None,
    actor_id: Optional[str] = None,
    timestamp: Optional[str] = None,
) -> Dict[str, Any]:
    """Create the first entry of a new ledger."""
    entry: Dict[str, Any] = {
        "sequence": 0,
        "type": _type_tag(event_type),
        "payload": payload if payload is not None else {},
        "timestamp": timestamp or iso_utc(),
        "actor_id": actor_id or "unknown",
        "prev_hash": GENESIS_HASH,
    }
    entry["hash"] = compute_entry_hash(entry)
    return entry


def append_entry(
    ledger: Optional[Sequence[Dict[str, Any]]],
    event_type: Union[str, LedgerEventType],
    payload: Any = None,
    actor_id: Optional[str] = None,
    timestamp: Optional[str] = None,
) -> Tuple[List[Dict[str, Any]], Dict[str, Any]]:
    """Append an event, returning (new_ledger, entry).

    Raises:
        TSError: if the timestamp precedes the last entry's timestamp.
    """
    entries = list(ledger or [])
    ts = timestamp or iso_utc()

    if not entries:
        entry = create_genesis_entry(event_type, payload, actor_id, ts)
        return [entry], entry

    prev = entries[-1]
    if ts < prev["timestamp"]:
        raise ts_error(
            TS_E_LEDGER_TIMESTAMP,
            f"new entry ({ts}) precedes previous entry ({prev['timestamp']})",
            timestamp=ts,
            previous=prev["timestamp"],
        )

    entry = {
        "sequence": prev["sequence"] + 1,
        "type": _type_tag(event_type),
        "payload": payload if payload is not None else {},
        "timestamp": ts,
        "actor_id": actor_id or "unknown",
        "prev_hash": prev["hash"],
    }
    entry["hash"] = compute_entry_hash(entry)
    entries.append(entry)
    return entries, entry


def find_duplicate_sequences(ledger: Optional[Sequence[Mapping[str, Any]]]) -> List[Any]:
    """Sequence numbers that appear more than once, in order of repetition.

    Values that cannot be sequence numbers (lists, objects) are ignored;
    verify_ledger reports them as SEQUENCE_MISMATCH.
    """
    seen = set()
    duplicates = []
    for entry in ledger or []:
        seq = entry.get("sequence") if isinstance(entry, Mapping) else None
        if not isinstance(seq, Hashable):
            continue
        if seq in seen:
            duplicates.append(seq)
        seen.add(seq)
    return duplicates


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LedgerCheck:
    ok: bool
    code: str
    detail: str


@dataclass
class EntryResult:
    sequence: int  # index in the ledger, not the entry's claimed sequence
    type: Any
    checks: List[LedgerCheck] = field(default_factory=list)

    @property
    def failures(self) -> List[LedgerCheck]:
        return [c for c in self.checks if not c.ok]


@dataclass
class LedgerVerification:
    valid: bool
    entries: int
    results: List[EntryResult] = field(default_factory=list)

    def failures(self) -> List[Tuple[EntryResult, LedgerCheck]]:
        return [(r, c) for r in self.results for c in r.failures]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "entries": self.entries,
            "results": [
                {
                    "sequence": r.sequence,
                    "type": r.type,
                    "checks": [{"ok": c.ok, "code": c.code, "detail": c.detail} for c in r.checks],
                }
                for r in self.results
            ],
        }


def _short(h: Any) -> str:
    return f"{str(h)[:16]}..."


def _sequence_matches(value: Any, index: int) -> bool:
    # 1.0 is the same JSON number as 1; true is not.
    return not isinstance(value, bool) and isinstance(value, (int, float)) and value == index


def _check_entry(entry: Mapping[str, Any], index: int, prev: Any, max_depth: int) -> List[LedgerCheck]:
    checks: List[LedgerCheck] = []

    seq = entry.get("sequence")
    if _sequence_matches(seq, index):
        checks.append(LedgerCheck(True, "SEQUENCE_OK", f"sequence {index}"))
    else:
        checks.append(LedgerCheck(False, "SEQUENCE_MISMATCH", f"expected sequence {index}, got {seq!r}"))

    prev_hash = entry.get("prev_hash")
    if index == 0:
        if prev_hash == GENESIS_HASH:
            checks.append(LedgerCheck(True, "GENESIS_OK", "genesis prev_hash"))
        else:
            checks.append(LedgerCheck(False, "GENESIS_MISMATCH", "genesis prev_hash is not zero hash"))
    else:
        expected_prev = prev.get("hash") if isinstance(prev, Mapping) else None
        if expected_prev is not None and prev_hash == expected_prev:
            checks.append(LedgerCheck(True, "CHAIN_OK", "prev_hash chain"))
        else:
            checks.append(LedgerCheck(False, "CHAIN_BROKEN", "prev_hash does not match previous entry's hash"))

    stored = entry.get("hash")
    try:
        recomputed = compute_entry_hash(entry, max_depth=max_depth)
    except TSError as e:
        checks.append(LedgerCheck(False, "HASH_UNCOMPUTABLE", str(e)))
    else:
        if stored == recomputed:
            checks.append(LedgerCheck(True, "HASH_OK", "self-hash"))
        else:
            checks.append(
                LedgerCheck(
                    False,
                    "HASH_MISMATCH",
                    f"hash mismatch (stored: {_short(stored)}, computed: {_short(recomputed)})",
                )
            )

    if index > 0:
        ts = entry.get("timestamp")
        prev_ts = prev.get("timestamp") if isinstance(prev, Mapping) else None
        if not isinstance(ts, str) or not isinstance(prev_ts, str):
            checks.append(LedgerCheck(False, "TIMESTAMP_INVALID", "timestamp is not a string"))
        elif ts < prev_ts:
            checks.append(LedgerCheck(False, "TIMESTAMP_REGRESSION", f"timestamp regression ({ts} < {prev_ts})"))
        else:
            checks.append(LedgerCheck(True, "TIMESTAMP_OK", "timestamp"))
    else:
        checks.append(LedgerCheck(True, "TIMESTAMP_OK", "timestamp"))

    return checks


def verify_ledger(ledger: Optional[Sequence[EntryLike]]) -> LedgerVerification:
    """Verify sequence numbering, chain links, self-hashes and timestamp order.

    Never raises on malformed entries; each problem becomes a failing check.
    """
    entries = [e.to_dict() if isinstance(e, LedgerEntry) else e for e in (ledger or [])]
    if not entries:
        return LedgerVerification(valid=True, entries=0, results=[])

    max_depth = KernelConfig.from_env().canon_max_depth
    valid = True
    results: List[EntryResult] = []
    for i, entry in enumerate(entries):
        prev = entries[i - 1] if i > 0 else None
        if not isinstance(entry, Mapping):
            checks = [LedgerCheck(False, "ENTRY_NOT_OBJECT", f"entry {i} is {type(entry).__name__}, not an object")]
            results.append(EntryResult(sequence=i, type=None, checks=checks))
            valid = False
            continue
        checks = _check_entry(entry, i, prev, max_depth)
        if any(not c.ok for c in checks):
            valid = False
        results.append(EntryResult(sequence=i, type=entry.get("type"), checks=checks))

    if not valid:
        logger.debug("ledger verification failed: %d entries, %d failing checks",
                     len(entries), sum(len(r.failures) for r in results))
    return LedgerVerification(valid=valid, entries=len(entries), results=results)

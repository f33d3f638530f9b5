import pytest

from ts_kernel.ledger import LedgerEventType, append_entry


@pytest.fixture
def ledger3():
    ledger, _ = append_entry([], LedgerEventType.PROJECT_CREATED, {"name": "Barn"}, "alice", "2026-01-01T00:00:00.000Z")
    ledger, _ = append_entry(ledger, LedgerEventType.ARTIFACT_COMPLETED, {"artifact": "a1"}, "bob", "2026-01-02T00:00:00.000Z")
    ledger, _ = append_entry(ledger, LedgerEventType.GATE_DECIDED, {"gate": "g1", "decision": "GO"}, "alice", "2026-01-03T00:00:00.000Z")
    return ledger


@pytest.fixture
def project(ledger3):
    return {
        "id": "p-1",
        "name": "Barn Raising",
        "governance_mode": "solo",
        "project_owner": "alice",
        "plan": {"id": "plan-small"},
        "phases": [
            {"id": "ph1", "artifacts": [{"id": "a1"}, {"id": "a2"}]},
            {"id": "ph2", "artifacts": [{"id": "a3"}]},
        ],
        "ledger": ledger3,
        "policy": {
            "version": 2,
            "name": "Default",
            "waiver": {"rationale_min_length": 40},
            "gate": {"solo_attestation_min_length": 20, "allow_no_go_continue": False},
        },
        "audit_log": [{"event": "opened", "at": "2026-01-01T00:00:00.000Z"}],
    }

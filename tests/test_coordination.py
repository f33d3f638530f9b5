from datetime import datetime, timedelta, timezone

import pytest
from prometheus_client import REGISTRY, generate_latest

from ts_kernel.bundle import export_bundle, verify_bundle
from ts_kernel.config import KernelConfig
from ts_kernel.conflict import should_accept_write
from ts_kernel.coordination import AgentCoordinator
from ts_kernel.heartbeats import HeartbeatTracker


class FakeClock:
    def __init__(self):
        self.now = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now


def _sample(name, labels=None):
    return REGISTRY.get_sample_value(name, labels or {}) or 0.0


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def coord(clock):
    return AgentCoordinator(heartbeats=HeartbeatTracker(clock=clock), config=KernelConfig(stale_agent_ms=1000))


def test_submit_write_records_heartbeat_and_advances(coord):
    out = coord.submit_write("p", "charter", "agent-1", 0)
    assert out.ok
    assert out.current_revision == 1
    assert out.heartbeat.agent_count == 1
    assert coord.get_revision("p", "charter") == 1
    assert "agent-1" in coord.get_heartbeats("p")


def test_losing_writer_still_counts_as_contact(coord):
    coord.submit_write("p", "charter", "agent-1", 0)
    out = coord.submit_write("p", "charter", "agent-2", 0)
    assert not out.ok
    assert out.current_revision == 1
    assert out.to_dict()["agentCount"] == 2
    assert set(coord.get_heartbeats("p")) == {"agent-1", "agent-2"}


def test_find_stale_agents_uses_configured_threshold(coord, clock):
    coord.record_heartbeat("p", "agent-1")
    clock.now += timedelta(milliseconds=1001)
    coord.record_heartbeat("p", "agent-2")
    assert coord.find_stale_agents("p") == ["agent-1"]
    assert coord.find_stale_agents("p", stale_threshold_ms=5000) == []


def test_reset_project(coord):
    coord.submit_write("p", "a", "agent-1", 0)
    coord.reset_project("p")
    assert coord.get_all_revisions("p") == {}
    assert coord.get_heartbeats("p") == {}


def test_metrics_count_advances_and_conflicts(coord, monkeypatch):
    monkeypatch.delenv("TS_METRICS_ENABLED", raising=False)
    ok_before = _sample("ts_revision_advances_total", {"outcome": "ok"})
    conflict_before = _sample("ts_revision_advances_total", {"outcome": "conflict"})
    beats_before = _sample("ts_agent_heartbeats_total")

    coord.submit_write("m", "a", "agent-1", 0)
    coord.submit_write("m", "a", "agent-2", 0)

    assert _sample("ts_revision_advances_total", {"outcome": "ok"}) == ok_before + 1
    assert _sample("ts_revision_advances_total", {"outcome": "conflict"}) == conflict_before + 1
    assert _sample("ts_agent_heartbeats_total") == beats_before + 2


def test_metrics_can_be_disabled(coord, monkeypatch):
    monkeypatch.setenv("TS_METRICS_ENABLED", "0")
    before = _sample("ts_revision_advances_total", {"outcome": "ok"})
    coord.increment_revision("d", "a", 0)
    assert _sample("ts_revision_advances_total", {"outcome": "ok"}) == before


def test_verification_counters_are_exposed_by_default_registry(project, monkeypatch):
    monkeypatch.delenv("TS_METRICS_ENABLED", raising=False)
    before = _sample("ts_bundle_verifications_total", {"outcome": "valid"})
    assert verify_bundle(export_bundle(project)).overall
    assert _sample("ts_bundle_verifications_total", {"outcome": "valid"}) == before + 1
    assert b"ts_bundle_verifications_total" in generate_latest(REGISTRY)


def test_should_accept_write_tolerance():
    existing = "2026-01-01T00:00:10.000Z"
    assert should_accept_write(existing, "2026-01-01T00:00:11.000Z")
    assert should_accept_write(existing, existing)
    assert should_accept_write(existing, "2026-01-01T00:00:08.000Z")
    assert not should_accept_write(existing, "2026-01-01T00:00:07.999Z")
    assert should_accept_write(existing, "2026-01-01T00:00:05.000Z", tolerance_ms=5000)


@pytest.mark.parametrize("existing,incoming", [(None, "2026-01-01T00:00:00Z"), ("2026-01-01T00:00:00Z", None), ("garbage", "2020-01-01T00:00:00Z"), ("", "")])
def test_should_accept_write_missing_or_unparseable(existing, incoming):
    assert should_accept_write(existing, incoming)


def test_accept_project_write_uses_config():
    coord = AgentCoordinator(config=KernelConfig(write_tolerance_ms=0))
    assert not coord.accept_project_write("2026-01-01T00:00:01.000Z", "2026-01-01T00:00:00.999Z")
    assert coord.accept_project_write("2026-01-01T00:00:01.000Z", "2026-01-01T00:00:01.000Z")

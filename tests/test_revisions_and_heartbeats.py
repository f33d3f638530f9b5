import threading
from datetime import datetime, timedelta, timezone

import pytest

from ts_kernel.errors import TSError, TS_E_BAD_REQUEST
from ts_kernel.heartbeats import HeartbeatTracker
from ts_kernel.revisions import RevisionTracker


class FakeClock:
    def __init__(self):
        self.now = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, ms):
        self.now += timedelta(milliseconds=ms)


def test_unseen_artifact_is_revision_zero():
    t = RevisionTracker()
    assert t.current_revision("p", "a") == 0
    assert t.all_revisions("p") == {}


def test_compare_and_increment():
    t = RevisionTracker()
    r1 = t.try_advance("p", "a", 0)
    assert r1.ok and r1.current_revision == 1

    stale = t.try_advance("p", "a", 0)
    assert not stale.ok
    assert stale.current_revision == 1
    assert t.current_revision("p", "a") == 1

    r2 = t.try_advance("p", "a", 1)
    assert r2.ok and r2.current_revision == 2
    assert r2.to_dict() == {"ok": True, "currentRevision": 2}


def test_revisions_are_scoped_per_project_and_artifact():
    t = RevisionTracker()
    t.try_advance("p1", "a", 0)
    t.try_advance("p1", "b", 0)
    t.try_advance("p1", "b", 1)
    t.try_advance("p2", "a", 0)
    assert t.all_revisions("p1") == {"a": 1, "b": 2}
    assert t.all_revisions("p2") == {"a": 1}


def test_all_revisions_returns_a_copy():
    t = RevisionTracker()
    t.try_advance("p", "a", 0)
    snap = t.all_revisions("p")
    snap["a"] = 99
    assert t.current_revision("p", "a") == 1


def test_reset_discards_project_state():
    t = RevisionTracker()
    t.try_advance("p", "a", 0)
    t.try_advance("q", "a", 0)
    t.reset("p")
    assert t.current_revision("p", "a") == 0
    assert t.current_revision("q", "a") == 1
    t.reset("never-seen")


@pytest.mark.parametrize("bad", [-1, 1.0, "0", None, True])
def test_invalid_expected_revision_is_bad_request(bad):
    t = RevisionTracker()
    with pytest.raises(TSError) as ei:
        t.try_advance("p", "a", bad)
    assert ei.value.code == TS_E_BAD_REQUEST
    assert t.all_revisions("p") == {}


def test_exactly_one_concurrent_writer_wins():
    t = RevisionTracker()
    n = 32
    barrier = threading.Barrier(n)
    results = []
    lock = threading.Lock()

    def worker():
        barrier.wait()
        r = t.try_advance("p", "a", 0)
        with lock:
            results.append(r)

    threads = [threading.Thread(target=worker) for _ in range(n)]
    for th in threads:
        th.start()
    for th in threads:
        th.join()

    assert sum(1 for r in results if r.ok) == 1
    assert all(r.current_revision == 1 for r in results)
    assert t.current_revision("p", "a") == 1


def test_concurrent_retry_loops_serialize():
    t = RevisionTracker()

    def worker():
        for _ in range(50):
            while True:
                rev = t.current_revision("p", "a")
                if t.try_advance("p", "a", rev).ok:
                    break

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for th in threads:
        th.start()
    for th in threads:
        th.join()
    assert t.current_revision("p", "a") == 400


def test_heartbeat_record_and_count():
    clock = FakeClock()
    hb = HeartbeatTracker(clock=clock)
    r1 = hb.record("p", "agent-1")
    assert r1.last_heartbeat == "2026-01-01T00:00:00.000Z"
    assert r1.agent_count == 1

    clock.advance(1500)
    r2 = hb.record("p", "agent-2")
    assert r2.agent_count == 2
    r3 = hb.record("p", "agent-1")
    assert r3.agent_count == 2
    assert hb.all_heartbeats("p") == {
        "agent-1": "2026-01-01T00:00:01.500Z",
        "agent-2": "2026-01-01T00:00:01.500Z",
    }
    assert r3.to_dict() == {"lastHeartbeat": "2026-01-01T00:00:01.500Z", "agentCount": 2}


def test_staleness_boundary_is_strict():
    clock = FakeClock()
    hb = HeartbeatTracker(clock=clock)
    hb.record("p", "agent-1")

    clock.advance(59999)
    assert hb.find_stale("p") == []
    clock.advance(1)
    # Exactly at the threshold: not stale.
    assert hb.find_stale("p") == []
    clock.advance(1)
    assert hb.find_stale("p") == ["agent-1"]


def test_find_stale_is_a_pure_query():
    clock = FakeClock()
    hb = HeartbeatTracker(clock=clock)
    hb.record("p", "old")
    clock.advance(5000)
    hb.record("p", "fresh")

    assert hb.find_stale("p", stale_threshold_ms=1000) == ["old"]
    assert set(hb.all_heartbeats("p")) == {"old", "fresh"}
    assert hb.find_stale("unknown-project") == []


def test_heartbeat_reset():
    hb = HeartbeatTracker(clock=FakeClock())
    hb.record("p", "a")
    hb.reset("p")
    assert hb.all_heartbeats("p") == {}

"""Per-agent liveness tracking.

Each contact from an agent overwrites its last-seen time for the project.
`find_stale` is a pure query: it reports agents whose last heartbeat is older
than a threshold and removes nothing.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from .timeutil import iso_utc, now_utc


DEFAULT_STALE_MS = 60000


@dataclass(frozen=True)
class HeartbeatRecord:
    last_heartbeat: str
    agent_count: int

    def to_dict(self) -> Dict[str, object]:
        return {"lastHeartbeat": self.last_heartbeat, "agentCount": self.agent_count}


class HeartbeatTracker:
    """Last-seen timestamps keyed by (project_id, agent_id)."""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._clock = clock or now_utc
        self._lock = threading.Lock()
        # project_id -> agent_id -> last heartbeat (aware UTC datetime)
        self._beats: Dict[str, Dict[str, datetime]] = {}

    def record(self, project_id: str, agent_id: str) -> HeartbeatRecord:
        """Store the current time for the agent; returns it with the project's agent count."""
        now = self._clock()
        with self._lock:
            agents = self._beats.setdefault(project_id, {})
            agents[agent_id] = now
            count = len(agents)
        return HeartbeatRecord(last_heartbeat=iso_utc(now), agent_count=count)

    def all_heartbeats(self, project_id: str) -> Dict[str, str]:
        with self._lock:
            agents = dict(self._beats.get(project_id, {}))
        return {agent_id: iso_utc(ts) for agent_id, ts in agents.items()}

    def find_stale(self, project_id: str, stale_threshold_ms: int = DEFAULT_STALE_MS) -> List[str]:
        """Agents whose last heartbeat is strictly older than the threshold."""
        threshold = timedelta(milliseconds=stale_threshold_ms)
        now = self._clock()
        with self._lock:
            agents = dict(self._beats.get(project_id, {}))
        return [agent_id for agent_id, ts in agents.items() if now - ts > threshold]

    def reset(self, project_id: str) -> None:
        with self._lock:
            self._beats.pop(project_id, None)

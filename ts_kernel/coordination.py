"""In-process coordination handle for concurrent agents.

`AgentCoordinator` is what a hosting service (HTTP, WebSocket, LAN sync)
wraps. It owns one RevisionTracker and one HeartbeatTracker; create one per
process and pass it to request handlers.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from . import metrics
from .config import KernelConfig
from .conflict import should_accept_write
from .heartbeats import HeartbeatRecord, HeartbeatTracker
from .revisions import AdvanceResult, RevisionTracker


logger = logging.getLogger("ts_kernel.coordination")


@dataclass(frozen=True)
class WriteOutcome:
    ok: bool
    current_revision: int
    heartbeat: HeartbeatRecord

    def to_dict(self) -> Dict[str, object]:
        return {
            "ok": self.ok,
            "currentRevision": self.current_revision,
            "lastHeartbeat": self.heartbeat.last_heartbeat,
            "agentCount": self.heartbeat.agent_count,
        }


class AgentCoordinator:
    def __init__(
        self,
        revisions: Optional[RevisionTracker] = None,
        heartbeats: Optional[HeartbeatTracker] = None,
        config: Optional[KernelConfig] = None,
    ) -> None:
        self.revisions = revisions or RevisionTracker()
        self.heartbeats = heartbeats or HeartbeatTracker()
        self.config = config or KernelConfig.from_env()

    # ---------------------------
    # Revisions
    # ---------------------------
    def increment_revision(self, project_id: str, artifact_id: str, expected_revision: int) -> AdvanceResult:
        result = self.revisions.try_advance(project_id, artifact_id, expected_revision)
        metrics.record_revision_advance(result.ok)
        if not result.ok:
            logger.info(
                "revision conflict project=%s artifact=%s expected=%s current=%s",
                project_id, artifact_id, expected_revision, result.current_revision,
            )
        return result

    def get_revision(self, project_id: str, artifact_id: str) -> int:
        return self.revisions.current_revision(project_id, artifact_id)

    def get_all_revisions(self, project_id: str) -> Dict[str, int]:
        return self.revisions.all_revisions(project_id)

    def reset_project(self, project_id: str) -> None:
        """Drop revision and heartbeat state for a project."""
        self.revisions.reset(project_id)
        self.heartbeats.reset(project_id)
        logger.debug("reset coordination state for project=%s", project_id)

    # ---------------------------
    # Heartbeats
    # ---------------------------
    def record_heartbeat(self, project_id: str, agent_id: str) -> HeartbeatRecord:
        record = self.heartbeats.record(project_id, agent_id)
        metrics.record_heartbeat()
        return record

    def get_heartbeats(self, project_id: str) -> Dict[str, str]:
        return self.heartbeats.all_heartbeats(project_id)

    def find_stale_agents(self, project_id: str, stale_threshold_ms: Optional[int] = None) -> List[str]:
        if stale_threshold_ms is None:
            stale_threshold_ms = self.config.stale_agent_ms
        stale = self.heartbeats.find_stale(project_id, stale_threshold_ms)
        if stale:
            logger.info("stale agents project=%s agents=%s", project_id, ",".join(sorted(stale)))
        return stale

    # ---------------------------
    # Writes
    # ---------------------------
    def submit_write(self, project_id: str, artifact_id: str, agent_id: str, expected_revision: int) -> WriteOutcome:
        """Record the agent's heartbeat, then attempt the revision advance.

        A write counts as contact even when it loses the race.
        """
        heartbeat = self.record_heartbeat(project_id, agent_id)
        result = self.increment_revision(project_id, artifact_id, expected_revision)
        return WriteOutcome(ok=result.ok, current_revision=result.current_revision, heartbeat=heartbeat)

    def accept_project_write(
        self,
        existing_last_modified: Optional[str],
        incoming_last_modified: Optional[str],
    ) -> bool:
        accepted = should_accept_write(
            existing_last_modified, incoming_last_modified, self.config.write_tolerance_ms
        )
        if not accepted:
            logger.info(
                "rejected stale project write existing=%s incoming=%s",
                existing_last_modified, incoming_last_modified,
            )
        return accepted

"""Per-artifact revision tracking for concurrent agent writes.

Optimistic locking: an agent submits the revision it last read along with
each write. The write is accepted only if that revision is still current, in
which case the revision is incremented. A stale write is rejected with the
actual current revision so the agent can re-read and resubmit.

State is in-memory and scoped to the owning process. Losing it on restart is
acceptable because artifact drafts written by agents are advisory and agents
resubmit. Callers own the tracker instance (see ts_kernel.coordination);
there is no module-level table.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Dict

from .errors import ts_error, TS_E_BAD_REQUEST


@dataclass(frozen=True)
class AdvanceResult:
    ok: bool
    current_revision: int

    def to_dict(self) -> Dict[str, object]:
        return {"ok": self.ok, "currentRevision": self.current_revision}


class RevisionTracker:
    """Compare-and-increment revision counters keyed by (project_id, artifact_id)."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        # project_id -> artifact_id -> revision
        self._revisions: Dict[str, Dict[str, int]] = {}

    def current_revision(self, project_id: str, artifact_id: str) -> int:
        """Current revision; 0 if the artifact was never written."""
        with self._lock:
            return self._revisions.get(project_id, {}).get(artifact_id, 0)

    def all_revisions(self, project_id: str) -> Dict[str, int]:
        # Return a copy to avoid external mutation.
        with self._lock:
            return dict(self._revisions.get(project_id, {}))

    def try_advance(self, project_id: str, artifact_id: str, expected_revision: int) -> AdvanceResult:
        """Increment the revision iff it still equals `expected_revision`.

        A mismatch is an expected outcome, returned as ok=False with the
        actual revision. Exactly one caller can win per expected value.

        Raises:
            TSError: if `expected_revision` is not a non-negative integer.
        """
        if isinstance(expected_revision, bool) or not isinstance(expected_revision, int) or expected_revision < 0:
            raise ts_error(
                TS_E_BAD_REQUEST,
                "expected_revision must be a non-negative integer",
                got=repr(expected_revision),
            )
        with self._lock:
            revisions = self._revisions.setdefault(project_id, {})
            current = revisions.get(artifact_id, 0)
            if current != expected_revision:
                return AdvanceResult(ok=False, current_revision=current)
            revisions[artifact_id] = current + 1
            return AdvanceResult(ok=True, current_revision=current + 1)

    def reset(self, project_id: str) -> None:
        """Discard all revisions for a project (e.g. on project reload)."""
        with self._lock:
            self._revisions.pop(project_id, None)

"""Environment-driven configuration for the integrity kernel.

Environment variables:
- TS_STALE_AGENT_MS: heartbeat age after which an agent is stale (default: 60000)
- TS_CANON_MAX_DEPTH: maximum nesting depth accepted by the canonical encoder (default: 128)
- TS_WRITE_TOLERANCE_MS: clock skew tolerated for whole-project writes (default: 2000)
- TS_LOG_LEVEL: logging level used by the CLI (default: WARNING)

Invalid values fall back to defaults rather than failing; none of these
settings can weaken an integrity check.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass


@dataclass(frozen=True)
class KernelConfig:
    stale_agent_ms: int = 60000
    canon_max_depth: int = 128
    write_tolerance_ms: int = 2000
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls) -> "KernelConfig":
        def _get_int(name: str, default: int) -> int:
            try:
                return int(os.getenv(name, str(default)).strip())
            except ValueError:
                return default

        stale = _get_int("TS_STALE_AGENT_MS", cls.stale_agent_ms)
        depth = _get_int("TS_CANON_MAX_DEPTH", cls.canon_max_depth)
        tolerance = _get_int("TS_WRITE_TOLERANCE_MS", cls.write_tolerance_ms)
        level = (os.getenv("TS_LOG_LEVEL", "") or cls.log_level).strip().upper()

        # Clamp
        if stale < 0:
            stale = cls.stale_agent_ms
        depth = max(1, min(depth, 512))
        if tolerance < 0:
            tolerance = cls.write_tolerance_ms
        if not isinstance(logging.getLevelName(level), int):
            level = cls.log_level

        return cls(
            stale_agent_ms=stale,
            canon_max_depth=depth,
            write_tolerance_ms=tolerance,
            log_level=level,
        )

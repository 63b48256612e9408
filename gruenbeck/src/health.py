"""
Liveness file for the collector daemon.

The daemon keeps a :class:`HealthState` in memory and rewrites it as JSON
after every change, so a Docker HEALTHCHECK or an external monitor can judge
the collector from the file alone:

- ``last_cycle_ok`` / ``consecutive_failures``: is the device reachable?
- ``watermark``: the last day boundary that was reported.
- ``spool_count`` / ``oldest_pending_ts``: is the upload side keeping up?

The file is replaced atomically, so readers never see a partial document.

CHANGELOG:
- 2026-10-19: HealthState dataclass, failure streak and backlog age (STORY-015)
- 2026-10-13: Track cycle outcome and watermark
- 2026-10-12: Initial creation (STORY-011)

TODO:
- None
"""

from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from pathlib import Path


def _now_iso() -> str:
    return datetime.now(tz=UTC).isoformat()


@dataclass(slots=True)
class HealthState:
    """Snapshot written to the health file."""

    last_poll_ts: str | None = None
    last_cycle_ok: bool | None = None
    consecutive_failures: int = 0
    watermark: int | None = None
    last_upload_ts: str | None = None
    spool_count: int = 0
    oldest_pending_ts: int | None = None


class HealthWriter:
    """Records daemon events into a :class:`HealthState` and persists it.

    Args:
        path: Filesystem path of the health JSON file.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self.state = HealthState()

    def record_cycle(self, ok: bool, watermark: int | None = None) -> None:
        """Record a poll cycle outcome; a known *watermark* replaces the old one."""
        self.state.last_poll_ts = _now_iso()
        self.state.last_cycle_ok = ok
        self.state.consecutive_failures = 0 if ok else self.state.consecutive_failures + 1
        if watermark is not None:
            self.state.watermark = watermark
        self._write()

    def record_upload(self) -> None:
        self.state.last_upload_ts = _now_iso()
        self._write()

    def record_spool(self, count: int, oldest_ts: int | None = None) -> None:
        """Record the spool depth and the timestamp of its oldest sample."""
        self.state.spool_count = count
        self.state.oldest_pending_ts = oldest_ts if count else None
        self._write()

    def _write(self) -> None:
        tmp = self.path.with_name(f".{self.path.name}.tmp")
        tmp.write_text(json.dumps(asdict(self.state)), encoding="utf-8")
        os.replace(tmp, self.path)

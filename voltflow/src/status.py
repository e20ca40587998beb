"""
Status file writer for the charging monitor.

Writes a JSON file that a dashboard can poll. It holds the tracker
snapshot (live metrics, telemetry history, current session, past sessions,
support flag), the latest insight text with its loading flag, and
``last_poll_ts``, the ISO timestamp of the most recent battery read.

The file is replaced atomically (write to a temporary sibling, then
rename) so readers never see a half-written document.

CHANGELOG:
- 2026-10-18: Initial creation

TODO:
- None
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from voltflow.src.insights import InsightState
    from voltflow.src.tracker import SessionTracker


class StatusWriter:
    """Writes the charging monitor status to a JSON file.

    Args:
        path: Filesystem path for the status JSON file. Accepts str or Path.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._last_poll_ts: str | None = None

    def record_poll(self) -> None:
        """Remember the time of the latest battery read."""
        self._last_poll_ts = datetime.now(tz=UTC).isoformat()

    def write(self, tracker: SessionTracker, insight: InsightState) -> None:
        """Write the status file from the tracker and insight state."""
        data = tracker.snapshot()
        data["insight"] = {"text": insight.text, "loading": insight.loading}
        data["last_poll_ts"] = self._last_poll_ts

        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        tmp.write_text(json.dumps(data))
        tmp.replace(self.path)

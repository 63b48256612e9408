"""
Watermark store and reconciliation for back-filled daily readings.

The device always reports the last fourteen days. To report each day exactly
once, the store persists the day boundary (23:00 local, epoch seconds) of the
most recent cycle that fetched and parsed successfully, and reconciliation
only lets through days whose boundary is strictly newer than that watermark.

The watermark is a single decimal integer in
``<state_dir>/gruenbeck/history.dat``. It is written before dispatch, so a
crash between write and dispatch under-reports a day but never duplicates one.
Writes go through a temp file and ``os.replace`` so a crash mid-write leaves
the previous watermark intact.

Operations:
- prepare(): Create the state directories and decide whether history is usable.
- load(): Read the stored watermark (0 when absent or corrupt).
- save(ts): Persist a new watermark.
- reconcile(batch, boundary, last): Pure selection of readings to dispatch.

CHANGELOG:
- 2026-10-19: Corrupt watermark reads as 0 so the next save repairs it (STORY-015)
- 2026-10-12: Initial creation (STORY-006)

TODO:
- None
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

from gruenbeck.src.errors import StorageError
from gruenbeck.src.models import PLUGIN_NAME, Reading, SampleBatch

logger = logging.getLogger(__name__)

DAY_S: int = 86400
"""Length of one day in seconds, as used for boundary arithmetic."""

HISTORY_FILENAME: str = "history.dat"

RUN_DIR_MODE: int = 0o755
HISTORY_DIR_MODE: int = 0o750


def reconcile(
    batch: SampleBatch,
    boundary: int,
    last_reported: int,
) -> list[tuple[Reading, int]]:
    """Select the readings that have not been reported yet.

    Reading ``i`` (0 = newest) belongs to ``boundary - i * DAY_S``. Only
    readings strictly newer than *last_reported* are returned, ordered oldest
    to newest.

    Args:
        batch: Readings from the current cycle, newest first.
        boundary: Day boundary of the current cycle in epoch seconds.
        last_reported: Stored watermark in epoch seconds (0 if none).

    Returns:
        List of ``(reading, timestamp)`` pairs to dispatch.
    """
    oldest = len(batch) - 1
    start = boundary - oldest * DAY_S
    selected: list[tuple[Reading, int]] = []
    for reading in reversed(batch.readings):
        ts = start + (oldest - reading.day_index) * DAY_S
        if ts > last_reported:
            selected.append((reading, ts))
    return selected


class HistoryStore:
    """File-backed watermark for the last dispatched day.

    Args:
        state_dir: Runtime state directory. The watermark lives in a
            ``gruenbeck`` subdirectory below it.
        enabled: Whether history mode is requested at all. :meth:`prepare`
            may still disable it when the directory is not usable.
    """

    def __init__(self, state_dir: str | Path, *, enabled: bool = True) -> None:
        self._run_dir = Path(state_dir)
        self.history_dir = self._run_dir / PLUGIN_NAME
        self.path = self.history_dir / HISTORY_FILENAME
        self.enabled = enabled

    def prepare(self) -> bool:
        """Create the state directories and check access.

        History is disabled (with a warning) if the directories cannot be
        created or are not readable and writable.

        Returns:
            Whether history mode is active afterwards.
        """
        if not self.enabled:
            return False
        try:
            self._run_dir.mkdir(mode=RUN_DIR_MODE, exist_ok=True)
            self.history_dir.mkdir(mode=HISTORY_DIR_MODE, exist_ok=True)
        except OSError as exc:
            logger.warning(
                "Cannot create history dir %s (%s), history will be disabled",
                self.history_dir,
                exc,
            )
            self.enabled = False
            return False

        if not os.access(self.history_dir, os.R_OK | os.W_OK):
            logger.warning(
                "History dir %s is not readable and writable, history will be disabled",
                self.history_dir,
            )
            self.enabled = False
        return self.enabled

    def load(self) -> int:
        """Return the stored watermark in epoch seconds.

        A missing or empty file reads as 0. So does a file that does not hold
        an integer; the next :meth:`save` overwrites it.

        Raises:
            StorageError: The file exists but cannot be read.
        """
        try:
            text = self.path.read_text(encoding="ascii", errors="replace")
        except FileNotFoundError:
            return 0
        except OSError as exc:
            raise StorageError(f"Cannot read watermark {self.path}: {exc}") from exc

        text = text.strip()
        if not text:
            return 0
        try:
            return int(text)
        except ValueError:
            logger.warning("Corrupt watermark %s (%r), treating it as 0", self.path, text[:32])
            return 0

    def save(self, ts: int) -> None:
        """Persist *ts* as the new watermark.

        Raises:
            StorageError: The file could not be written.
        """
        tmp_name: str | None = None
        try:
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{HISTORY_FILENAME}.", dir=self.history_dir
            )
            with os.fdopen(fd, "w", encoding="ascii") as fh:
                fh.write(str(int(ts)))
            os.replace(tmp_name, self.path)
            tmp_name = None
        except OSError as exc:
            raise StorageError(f"Cannot write watermark {self.path}: {exc}") from exc
        finally:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)

"""
Per-cycle orchestration: gate, fetch, parse, reconcile, dispatch.

A cycle is a no-op before 23:00 local time. From 23:00 on, every invocation
runs the full sequence; the watermark makes repeated runs within the hour
harmless. The day boundary of a cycle is today at 23:00:00 local time.

Failure policy:

- NetworkError / ParseError / DeviceError: the cycle fails, the watermark is
  not touched and nothing is dispatched.
- StorageError: logged as a warning; the cycle continues in single-value mode
  (latest day only, timestamped now). A corrupt watermark file is not an
  error: it reads as 0 and is overwritten by this cycle.
- The stored watermark never decreases.
- Dispatch is one spool transaction: all of a cycle's samples or none.

CHANGELOG:
- 2026-10-19: Keep the watermark monotonic across clock steps (STORY-015)
- 2026-10-12: Initial creation (STORY-012)

TODO:
- None
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from gruenbeck.src.errors import DeviceError, NetworkError, ParseError, StorageError
from gruenbeck.src.history import reconcile
from gruenbeck.src.models import GaugeSample, Reading
from gruenbeck.src.parser import parse_response

if TYPE_CHECKING:
    from gruenbeck.src.client import DeviceClient
    from gruenbeck.src.history import HistoryStore
    from gruenbeck.src.spool import Spool

logger = logging.getLogger(__name__)

BOUNDARY_HOUR: int = 23
"""Local hour from which a cycle is eligible; also the day boundary hour."""


def day_boundary(now: datetime) -> datetime | None:
    """Return today's 23:00:00 for *now*, or None if it has not been reached."""
    if now.hour < BOUNDARY_HOUR:
        return None
    return now.replace(hour=BOUNDARY_HOUR, minute=0, second=0, microsecond=0)


def _to_sample(reading: Reading, ts: int) -> GaugeSample:
    return GaugeSample(ts=datetime.fromtimestamp(ts, tz=UTC), value=reading.value)


class PollScheduler:
    """Runs one poll cycle per :meth:`run_cycle` call.

    Args:
        client: Opened device client.
        history: Prepared watermark store. History mode is active only while
            ``history.enabled`` is True.
        spool: Opened spool that receives the dispatched samples.
    """

    def __init__(
        self,
        *,
        client: DeviceClient,
        history: HistoryStore,
        spool: Spool,
    ) -> None:
        self._client = client
        self._history = history
        self._spool = spool
        self.watermark: int | None = None

    async def run_cycle(self, now: datetime | None = None) -> bool:
        """Execute one cycle.

        Args:
            now: Current local time; defaults to ``datetime.now().astimezone()``.

        Returns:
            True on success or when outside the eligible window, False when
            the fetch or parse failed.
        """
        if now is None:
            now = datetime.now().astimezone()

        boundary_dt = day_boundary(now)
        if boundary_dt is None:
            logger.debug("Before %02d:00, nothing to do", BOUNDARY_HOUR)
            return True
        boundary = int(boundary_dt.timestamp())

        use_history = self._history.enabled
        last_reported = 0
        if use_history:
            try:
                last_reported = self._history.load()
            except StorageError as exc:
                logger.warning("%s, reporting latest day only this cycle", exc)
                use_history = False
            else:
                self.watermark = last_reported
                logger.info("last timestamp = %d", last_reported)
                if boundary <= last_reported:
                    logger.warning("already updated, no data sent")

        try:
            raw = await self._client.fetch()
            logger.debug("response = %s", raw.decode("utf-8", errors="replace"))
            batch = parse_response(raw, use_history)
        except (NetworkError, ParseError, DeviceError) as exc:
            logger.error("Poll cycle failed: %s", exc)
            return False

        pending: list[tuple[Reading, int]]
        if use_history:
            # Never move the watermark backwards, even if the clock did.
            watermark = max(boundary, last_reported)
            try:
                self._history.save(watermark)
            except StorageError as exc:
                logger.warning("%s, reporting latest day only this cycle", exc)
                use_history = False
            else:
                self.watermark = watermark

        if use_history:
            pending = reconcile(batch, boundary, last_reported)
        else:
            pending = [(batch.newest, int(now.timestamp()))]

        samples = [_to_sample(reading, ts) for reading, ts in pending]
        await self._spool.enqueue_samples(samples)
        for reading, ts in pending:
            logger.info("send data, %d => %d", ts, reading.value)
        return True

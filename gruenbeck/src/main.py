"""
Collector daemon main loop for the Gruenbeck water-meter pipeline.

Runs two concurrent asyncio loops:
1. **Poll loop**: calls ``PollScheduler.run_cycle()`` every poll interval.
   After a failed cycle the next one is suspended for an exponentially
   growing interval, capped at one day; a successful cycle resets it.
2. **Upload loop**: calls ``uploader.upload_batch(spool)`` to flush spooled
   gauge samples to the ingest endpoint.

Both loops are resilient: an exception in one iteration is logged and does
not crash the loop or affect the other loop. SIGTERM/SIGINT set a shared
asyncio.Event; both loops finish their current iteration and one final
upload flush is attempted before the device connection and spool close.

CHANGELOG:
- 2026-10-13: Suspend polling after failed cycles, capped at one day
- 2026-10-12: Initial creation (STORY-013)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import contextlib
import hashlib
import json
import logging
import signal
import sys
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from gruenbeck.src.health import HealthWriter

if TYPE_CHECKING:
    from gruenbeck.src.scheduler import PollScheduler
    from gruenbeck.src.spool import Spool
    from gruenbeck.src.uploader import Uploader

logger = logging.getLogger(__name__)

MAX_SUSPEND_S: float = 86400.0
"""Longest wait after repeated failed cycles (one day)."""


# ---------------------------------------------------------------------------
# Structured JSON logging setup
# ---------------------------------------------------------------------------


def configure_logging(level: int = logging.INFO) -> None:
    """Configure structured JSON logging on the root logger (stderr)."""

    class _JsonFormatter(logging.Formatter):
        """Minimal JSON log formatter."""

        def format(self, record: logging.LogRecord) -> str:
            log_entry = {
                "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
                "level": record.levelname,
                "logger": record.name,
                "msg": record.getMessage(),
            }
            if record.exc_info and record.exc_info[1] is not None:
                log_entry["exception"] = self.formatException(record.exc_info)
            return json.dumps(log_entry)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(_JsonFormatter())
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)


def _masked_token(value: str | None) -> str:
    """Return a short non-reversible token fingerprint for diagnostics."""
    if not value:
        return "empty"
    digest = hashlib.sha256(value.encode("utf-8")).hexdigest()[:10]
    return f"len={len(value)} sha256={digest}"


def log_config_summary(settings: object) -> None:
    """Log the effective configuration at startup with the token masked.

    Args:
        settings: A GruenbeckSettings instance (or any object with the same attrs).
    """
    logger.info(
        "Collector starting with config: "
        "gruenbeck_host=%s, gruenbeck_retry=%s, history_enabled=%s, "
        "state_dir=%s, poll_interval_s=%s, request_timeout_s=%s, "
        "ingest_base_url=%s, batch_size=%s, upload_interval_s=%s, "
        "spool_path=%s, health_path=%s, ingest_token_masked=%s",
        settings.gruenbeck_host,  # type: ignore[union-attr]
        settings.gruenbeck_retry,  # type: ignore[union-attr]
        settings.history_enabled,  # type: ignore[union-attr]
        settings.state_dir,  # type: ignore[union-attr]
        settings.poll_interval_s,  # type: ignore[union-attr]
        settings.request_timeout_s,  # type: ignore[union-attr]
        settings.ingest_base_url,  # type: ignore[union-attr]
        settings.batch_size,  # type: ignore[union-attr]
        settings.upload_interval_s,  # type: ignore[union-attr]
        settings.spool_path,  # type: ignore[union-attr]
        settings.health_path,  # type: ignore[union-attr]
        _masked_token(settings.ingest_token),  # type: ignore[union-attr]
    )


def suspend_interval(poll_interval_s: float, consecutive_failures: int) -> float:
    """Seconds to wait before the next cycle.

    The plain poll interval after a success; after failures it doubles per
    consecutive failure, capped at MAX_SUSPEND_S.
    """
    if consecutive_failures <= 0:
        return poll_interval_s
    return min(poll_interval_s * (2 ** (consecutive_failures - 1)), MAX_SUSPEND_S)


# ---------------------------------------------------------------------------
# Single-iteration functions (easily testable)
# ---------------------------------------------------------------------------


async def _poll_once(
    *,
    scheduler: PollScheduler,
    spool: Spool,
    health: HealthWriter | None,
) -> bool:
    """Run one poll cycle, never raising.

    Returns:
        The cycle outcome; unexpected exceptions count as failure.
    """
    try:
        ok = await scheduler.run_cycle()
    except Exception:
        logger.error("Poll cycle error", exc_info=True)
        ok = False

    if health is not None:
        try:
            health.record_spool(await spool.count(), await spool.oldest_ts())
            health.record_cycle(ok, watermark=scheduler.watermark)
        except Exception:
            logger.warning("Failed to write health file", exc_info=True)

    return ok


async def _upload_once(
    *,
    uploader: Uploader,
    spool: Spool,
    health: HealthWriter | None = None,
) -> bool:
    """Run one upload attempt, never raising.

    Returns:
        True if a batch was uploaded, False otherwise.
    """
    try:
        result = await uploader.upload_batch(spool)
        if result:
            logger.info("Upload success")
            if health is not None:
                health.record_upload()
        else:
            logger.debug("Upload returned False (spool may be empty)")
        return result
    except Exception:
        logger.error("Upload cycle error", exc_info=True)
        return False


# ---------------------------------------------------------------------------
# Loop runners
# ---------------------------------------------------------------------------


async def _wait_or_shutdown(shutdown_event: asyncio.Event, timeout: float) -> None:
    with contextlib.suppress(TimeoutError):
        await asyncio.wait_for(shutdown_event.wait(), timeout=timeout)


async def _poll_loop(
    *,
    scheduler: PollScheduler,
    spool: Spool,
    poll_interval_s: float,
    shutdown_event: asyncio.Event,
    health: HealthWriter | None,
) -> None:
    """Run poll cycles until shutdown_event is set."""
    logger.info("Poll loop started (interval=%ss)", poll_interval_s)
    failures = 0
    while not shutdown_event.is_set():
        ok = await _poll_once(scheduler=scheduler, spool=spool, health=health)
        failures = 0 if ok else failures + 1
        delay = suspend_interval(poll_interval_s, failures)
        if failures:
            logger.warning(
                "Suspending polling for %.0fs (consecutive failures: %d)",
                delay,
                failures,
            )
        await _wait_or_shutdown(shutdown_event, delay)
    logger.info("Poll loop stopped")


async def _upload_loop(
    *,
    uploader: Uploader,
    spool: Spool,
    upload_interval_s: float,
    shutdown_event: asyncio.Event,
    health: HealthWriter | None = None,
) -> None:
    """Run upload attempts until shutdown_event is set.

    After a failed upload with samples pending, the wait stretches to the
    uploader's current backoff when that is longer than the interval.
    """
    logger.info("Upload loop started (interval=%ss)", upload_interval_s)
    while not shutdown_event.is_set():
        await _upload_once(uploader=uploader, spool=spool, health=health)
        await _wait_or_shutdown(
            shutdown_event, max(upload_interval_s, uploader.current_backoff)
        )
    logger.info("Upload loop stopped")


async def run_loops(
    *,
    scheduler: PollScheduler,
    spool: Spool,
    uploader: Uploader,
    poll_interval_s: float,
    upload_interval_s: float,
    shutdown_event: asyncio.Event,
    health: HealthWriter | None = None,
) -> None:
    """Run poll and upload loops concurrently, then flush once more."""
    logger.info("Starting concurrent poll and upload loops")

    await asyncio.gather(
        _poll_loop(
            scheduler=scheduler,
            spool=spool,
            poll_interval_s=poll_interval_s,
            shutdown_event=shutdown_event,
            health=health,
        ),
        _upload_loop(
            uploader=uploader,
            spool=spool,
            upload_interval_s=upload_interval_s,
            shutdown_event=shutdown_event,
            health=health,
        ),
    )

    logger.info("Attempting final upload flush before exit")
    await _upload_once(uploader=uploader, spool=spool, health=health)
    logger.info("Shutdown complete")


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


async def async_main() -> None:
    """Load config, build components, run loops until a shutdown signal."""
    configure_logging()

    from gruenbeck.src.client import DeviceClient
    from gruenbeck.src.config import GruenbeckSettings
    from gruenbeck.src.history import HistoryStore
    from gruenbeck.src.scheduler import PollScheduler
    from gruenbeck.src.spool import Spool
    from gruenbeck.src.uploader import Uploader

    settings = GruenbeckSettings()
    log_config_summary(settings)

    shutdown_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda: _handle_signal(shutdown_event))

    history = HistoryStore(settings.state_dir, enabled=settings.history_enabled)
    history_active = history.prepare()
    logger.info("History mode %s", "enabled" if history_active else "disabled")

    uploader = Uploader(
        ingest_base_url=settings.ingest_base_url,
        ingest_token=settings.ingest_token,
        batch_size=settings.batch_size,
    )
    health = HealthWriter(settings.health_path)

    async with (
        DeviceClient(
            host=settings.gruenbeck_host,
            retries=settings.gruenbeck_retry,
            history_enabled=history_active,
            timeout_s=settings.request_timeout_s,
        ) as client,
        Spool(settings.spool_path) as spool,
    ):
        logger.info("Device url = %s", client.url)
        scheduler = PollScheduler(client=client, history=history, spool=spool)
        await run_loops(
            scheduler=scheduler,
            spool=spool,
            uploader=uploader,
            poll_interval_s=settings.poll_interval_s,
            upload_interval_s=settings.upload_interval_s,
            shutdown_event=shutdown_event,
            health=health,
        )


def _handle_signal(shutdown_event: asyncio.Event) -> None:
    """Set the shutdown event on SIGTERM/SIGINT."""
    logger.info("Received shutdown signal, initiating graceful shutdown")
    shutdown_event.set()


def main() -> None:
    """Synchronous entrypoint for the collector daemon."""
    asyncio.run(async_main())


if __name__ == "__main__":
    main()

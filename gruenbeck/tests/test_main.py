"""
Unit tests for the collector daemon main loop module.

Tests verify:
- Poll loop runs scheduler.run_cycle() and survives its exceptions.
- Failed cycles suspend polling with a doubling interval capped at a day.
- Upload loop calls uploader.upload_batch(spool) and survives its errors.
- Shutdown event stops both loops and a final upload flush is attempted.
- Health file updated after each cycle.
- Startup logs a config summary without the ingest token.
- JSON log formatter output.

CHANGELOG:
- 2026-10-13: Cover suspension after failed cycles
- 2026-10-12: Initial creation -- TDD tests written first (STORY-013)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from gruenbeck.src.health import HealthWriter
from gruenbeck.src.main import (
    MAX_SUSPEND_S,
    _poll_loop,
    _poll_once,
    _upload_loop,
    _upload_once,
    configure_logging,
    log_config_summary,
    run_loops,
    suspend_interval,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_settings(**overrides: object) -> MagicMock:
    """Create a mock GruenbeckSettings with sensible defaults."""
    defaults = {
        "gruenbeck_host": "192.168.1.40",
        "gruenbeck_retry": 3,
        "history_enabled": True,
        "state_dir": "/var/run",
        "poll_interval_s": 60,
        "request_timeout_s": 10.0,
        "ingest_base_url": "https://metrics.example.com",
        "ingest_token": "secret-token-abc",
        "batch_size": 30,
        "upload_interval_s": 10,
        "spool_path": "/tmp/test-spool.db",
        "health_path": "/tmp/test-health.json",
    }
    defaults.update(overrides)
    settings = MagicMock()
    for key, value in defaults.items():
        setattr(settings, key, value)
    return settings


def _make_components() -> dict[str, AsyncMock]:
    """Create mock scheduler, spool and uploader with sensible defaults."""
    scheduler = AsyncMock()
    scheduler.run_cycle = AsyncMock(return_value=True)
    scheduler.watermark = 1792364400

    spool = AsyncMock()
    spool.count = AsyncMock(return_value=0)
    spool.oldest_ts = AsyncMock(return_value=None)

    uploader = AsyncMock()
    uploader.upload_batch = AsyncMock(return_value=True)
    uploader.current_backoff = 0.0

    return {"scheduler": scheduler, "spool": spool, "uploader": uploader}


# ---------------------------------------------------------------------------
# Poll iteration
# ---------------------------------------------------------------------------


class TestPollOnce:
    """Single poll iteration."""

    @pytest.mark.asyncio
    async def test_runs_cycle_and_returns_outcome(self) -> None:
        components = _make_components()

        ok = await _poll_once(
            scheduler=components["scheduler"], spool=components["spool"], health=None
        )

        assert ok is True
        components["scheduler"].run_cycle.assert_awaited_once_with()

    @pytest.mark.asyncio
    async def test_failed_cycle_returns_false(self) -> None:
        components = _make_components()
        components["scheduler"].run_cycle = AsyncMock(return_value=False)

        ok = await _poll_once(
            scheduler=components["scheduler"], spool=components["spool"], health=None
        )

        assert ok is False

    @pytest.mark.asyncio
    async def test_cycle_exception_does_not_crash(self) -> None:
        components = _make_components()
        components["scheduler"].run_cycle = AsyncMock(side_effect=RuntimeError("spool gone"))

        ok = await _poll_once(
            scheduler=components["scheduler"], spool=components["spool"], health=None
        )

        assert ok is False

    @pytest.mark.asyncio
    async def test_health_file_written_after_cycle(self, tmp_path: Path) -> None:
        components = _make_components()
        components["spool"].count = AsyncMock(return_value=5)
        components["spool"].oldest_ts = AsyncMock(return_value=1791241200)
        health_path = tmp_path / "health.json"

        await _poll_once(
            scheduler=components["scheduler"],
            spool=components["spool"],
            health=HealthWriter(health_path),
        )

        data = json.loads(health_path.read_text())
        assert data["spool_count"] == 5
        assert data["oldest_pending_ts"] == 1791241200
        assert data["last_cycle_ok"] is True
        assert data["watermark"] == 1792364400

    @pytest.mark.asyncio
    async def test_health_failure_does_not_crash(self) -> None:
        components = _make_components()
        health = MagicMock()
        health.record_cycle.side_effect = OSError("read-only")

        ok = await _poll_once(
            scheduler=components["scheduler"], spool=components["spool"], health=health
        )

        assert ok is True


# ---------------------------------------------------------------------------
# Suspension after failures
# ---------------------------------------------------------------------------


class TestSuspendInterval:
    """Doubling wait after consecutive failures, capped at one day."""

    def test_success_uses_poll_interval(self) -> None:
        assert suspend_interval(60, 0) == 60

    def test_doubles_per_failure(self) -> None:
        assert [suspend_interval(60, n) for n in (1, 2, 3, 4)] == [60, 120, 240, 480]

    def test_capped_at_one_day(self) -> None:
        assert suspend_interval(60, 30) == MAX_SUSPEND_S == 86400.0

    @pytest.mark.asyncio
    async def test_poll_loop_applies_suspension(self) -> None:
        components = _make_components()
        shutdown_event = asyncio.Event()
        outcomes = iter([False, False, True])

        async def cycle() -> bool:
            ok = next(outcomes)
            if ok:
                shutdown_event.set()
            return ok

        components["scheduler"].run_cycle = AsyncMock(side_effect=cycle)
        waits: list[float] = []

        async def fake_wait(event: asyncio.Event, timeout: float) -> None:
            waits.append(timeout)

        with patch("gruenbeck.src.main._wait_or_shutdown", side_effect=fake_wait):
            await _poll_loop(
                scheduler=components["scheduler"],
                spool=components["spool"],
                poll_interval_s=10,
                shutdown_event=shutdown_event,
                health=None,
            )

        assert waits == [10, 20, 10]


# ---------------------------------------------------------------------------
# Upload iteration
# ---------------------------------------------------------------------------


class TestUploadOnce:
    """Single upload iteration."""

    @pytest.mark.asyncio
    async def test_calls_upload_batch(self, tmp_path: Path) -> None:
        components = _make_components()
        health_path = tmp_path / "health.json"

        result = await _upload_once(
            uploader=components["uploader"],
            spool=components["spool"],
            health=HealthWriter(health_path),
        )

        assert result is True
        components["uploader"].upload_batch.assert_awaited_once_with(components["spool"])
        assert json.loads(health_path.read_text())["last_upload_ts"] is not None

    @pytest.mark.asyncio
    async def test_empty_spool_returns_false(self) -> None:
        components = _make_components()
        components["uploader"].upload_batch = AsyncMock(return_value=False)

        result = await _upload_once(uploader=components["uploader"], spool=components["spool"])

        assert result is False

    @pytest.mark.asyncio
    async def test_upload_exception_does_not_crash(self) -> None:
        components = _make_components()
        components["uploader"].upload_batch = AsyncMock(side_effect=RuntimeError("Network error"))

        result = await _upload_once(uploader=components["uploader"], spool=components["spool"])

        assert result is False

    @pytest.mark.asyncio
    async def test_upload_loop_waits_for_backoff(self) -> None:
        components = _make_components()
        components["uploader"].current_backoff = 40.0
        shutdown_event = asyncio.Event()
        waits: list[float] = []

        async def fake_wait(event: asyncio.Event, timeout: float) -> None:
            waits.append(timeout)
            shutdown_event.set()

        with patch("gruenbeck.src.main._wait_or_shutdown", side_effect=fake_wait):
            await _upload_loop(
                uploader=components["uploader"],
                spool=components["spool"],
                upload_interval_s=10,
                shutdown_event=shutdown_event,
            )

        assert waits == [40.0]


# ---------------------------------------------------------------------------
# Loops and shutdown
# ---------------------------------------------------------------------------


class TestLoops:
    """Loop iteration and graceful shutdown."""

    @pytest.mark.asyncio
    async def test_poll_loop_runs_multiple_times(self) -> None:
        components = _make_components()
        shutdown_event = asyncio.Event()
        call_count = 0

        async def counting_cycle() -> bool:
            nonlocal call_count
            call_count += 1
            if call_count >= 3:
                shutdown_event.set()
            return True

        components["scheduler"].run_cycle = AsyncMock(side_effect=counting_cycle)

        await asyncio.wait_for(
            _poll_loop(
                scheduler=components["scheduler"],
                spool=components["spool"],
                poll_interval_s=0.01,
                shutdown_event=shutdown_event,
                health=None,
            ),
            timeout=5.0,
        )

        assert call_count == 3

    @pytest.mark.asyncio
    async def test_shutdown_stops_loops_and_flushes(self) -> None:
        components = _make_components()
        shutdown_event = asyncio.Event()

        async def _trigger_shutdown() -> None:
            await asyncio.sleep(0.1)
            shutdown_event.set()

        task = asyncio.create_task(
            run_loops(
                scheduler=components["scheduler"],
                spool=components["spool"],
                uploader=components["uploader"],
                poll_interval_s=0.05,
                upload_interval_s=0.05,
                shutdown_event=shutdown_event,
                health=None,
            )
        )
        trigger = asyncio.create_task(_trigger_shutdown())

        await asyncio.wait_for(asyncio.gather(task, trigger), timeout=5.0)

        assert components["scheduler"].run_cycle.await_count >= 1
        # At least one loop upload plus the final flush.
        assert components["uploader"].upload_batch.await_count >= 2


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


class TestStartupLogging:
    """Startup config summary excludes the token."""

    def test_summary_contains_host_not_token(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.INFO, logger="gruenbeck.src.main"):
            log_config_summary(_make_settings())

        assert "192.168.1.40" in caplog.text
        assert "gruenbeck_retry=3" in caplog.text
        assert "secret-token-abc" not in caplog.text
        assert "sha256=" in caplog.text

    def test_summary_masks_empty_token(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.INFO, logger="gruenbeck.src.main"):
            log_config_summary(_make_settings(ingest_token=""))

        assert "ingest_token_masked=empty" in caplog.text


class TestConfigureLogging:
    """Root logger emits one JSON object per record."""

    def test_json_output(self, capsys: pytest.CaptureFixture[str]) -> None:
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            configure_logging()
            logging.getLogger("gruenbeck.test").warning("send data, %d => %d", 1, 2)
            line = capsys.readouterr().err.strip().splitlines()[-1]
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)

        entry = json.loads(line)
        assert entry["level"] == "WARNING"
        assert entry["logger"] == "gruenbeck.test"
        assert entry["msg"] == "send data, 1 => 2"
        assert "ts" in entry

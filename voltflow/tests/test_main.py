"""
Unit tests for the daemon main loop module.

Tests verify:
- A poll cycle applies the reading to the tracker and writes the status.
- Closing a session persists the history and spawns an insight task that
  only updates the insight state.
- A missing battery marks the tracker unsupported and reports it; an
  open session is closed, persisted and sent for an insight first.
- Poller, store and status errors never crash the cycle.
- run_loop stops on shutdown, awaits pending insights and flushes history.
- Startup logs a config summary without the API key.
- JSON log formatting and the --clear-history entrypoint.

CHANGELOG:
- 2026-10-18: Initial creation

TODO:
- None
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Iterator
from datetime import datetime, timedelta
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
from voltflow.src.insights import InsightState
from voltflow.src.main import (
    _masked_token,
    _poll_once,
    async_main,
    configure_logging,
    log_config_summary,
    parse_args,
    run_loop,
)
from voltflow.src.models import BatteryReading, Session
from voltflow.src.poller import BatteryUnavailableError
from voltflow.src.store import SessionStore
from voltflow.src.tracker import SessionTracker, TrackerState

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_components(*readings: object) -> dict[str, object]:
    """Mock poller (yielding *readings*), store, insight client and status."""
    poller = AsyncMock()
    poller.poll = AsyncMock(side_effect=list(readings))

    store = AsyncMock()
    store.save = AsyncMock()

    insight_client = MagicMock()
    insight_client.generate = AsyncMock(return_value="Charger looks healthy.")

    status = MagicMock()

    return {
        "poller": poller,
        "tracker": SessionTracker(),
        "store": store,
        "insight_client": insight_client,
        "status": status,
    }


async def _cycle(components: dict[str, object], state: InsightState, pending: set) -> bool:
    return await _poll_once(
        poller=components["poller"],
        tracker=components["tracker"],
        store=components["store"],
        insight_client=components["insight_client"],
        insight_state=state,
        pending=pending,
        status=components["status"],
    )


@pytest.fixture()
def _restore_root_logger() -> Iterator[None]:
    """Undo configure_logging() so later tests keep pytest's handlers."""
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


# ---------------------------------------------------------------------------
# Single poll cycle
# ---------------------------------------------------------------------------


class TestPollOnce:
    """One read-apply-persist cycle."""

    @pytest.mark.asyncio
    async def test_reading_applied_and_status_written(self) -> None:
        components = _make_components(BatteryReading(charging=True, level=0.40))
        state = InsightState()

        supported = await _cycle(components, state, set())

        assert supported is True
        tracker = components["tracker"]
        assert tracker.state is TrackerState.CHARGING
        assert tracker.session.start_level == 0.40
        components["status"].record_poll.assert_called_once()
        components["status"].write.assert_called_once_with(tracker, state)
        components["store"].save.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_session_close_persists_and_requests_insight(self) -> None:
        components = _make_components(
            BatteryReading(charging=True, level=0.40),
            BatteryReading(charging=False, level=0.40),
        )
        state = InsightState()
        pending: set[asyncio.Task[str]] = set()

        await _cycle(components, state, pending)
        await _cycle(components, state, pending)

        tracker = components["tracker"]
        components["store"].save.assert_awaited_once_with(tracker.past_sessions)
        assert len(pending) == 1

        await asyncio.gather(*pending)

        components["insight_client"].generate.assert_awaited_once()
        request = components["insight_client"].generate.await_args.args[0]
        assert request.avg_wattage == tracker.past_sessions[0].avg_wattage
        assert state.text == "Charger looks healthy."
        assert state.loading is False
        assert pending == set()

    @pytest.mark.asyncio
    async def test_insight_does_not_touch_sessions(self) -> None:
        components = _make_components(
            BatteryReading(charging=True, level=0.40),
            BatteryReading(charging=False, level=0.40),
        )
        components["insight_client"].generate = AsyncMock(return_value="x")
        state = InsightState()
        pending: set[asyncio.Task[str]] = set()
        await _cycle(components, state, pending)
        await _cycle(components, state, pending)
        tracker = components["tracker"]
        before = (tracker.session, tracker.past_sessions, tracker.history)

        await asyncio.gather(*pending)

        assert (tracker.session, tracker.past_sessions, tracker.history) == before

    @pytest.mark.asyncio
    async def test_store_failure_does_not_block_close(self) -> None:
        components = _make_components(
            BatteryReading(charging=True, level=0.40),
            BatteryReading(charging=False, level=0.41),
        )
        components["store"].save = AsyncMock(side_effect=OSError("disk full"))
        state = InsightState()
        pending: set[asyncio.Task[str]] = set()

        await _cycle(components, state, pending)
        await _cycle(components, state, pending)

        tracker = components["tracker"]
        assert tracker.state is TrackerState.IDLE
        assert len(tracker.past_sessions) == 1
        assert len(pending) == 1
        await asyncio.gather(*pending)

    @pytest.mark.asyncio
    async def test_battery_unavailable_marks_unsupported(self) -> None:
        components = _make_components(BatteryUnavailableError("no BAT0"))
        state = InsightState()

        supported = await _cycle(components, state, set())

        assert supported is False
        tracker = components["tracker"]
        assert tracker.state is TrackerState.UNSUPPORTED
        components["status"].write.assert_called_once_with(tracker, state)

    @pytest.mark.asyncio
    async def test_battery_lost_while_charging_closes_session(self) -> None:
        components = _make_components(
            BatteryReading(charging=True, level=0.40),
            BatteryUnavailableError("BAT0 removed"),
        )
        state = InsightState()
        pending: set[asyncio.Task[str]] = set()

        await _cycle(components, state, pending)
        supported = await _cycle(components, state, pending)

        assert supported is False
        tracker = components["tracker"]
        assert tracker.session is not None
        assert not tracker.session.is_open
        components["store"].save.assert_awaited_once_with(tracker.past_sessions)
        assert len(pending) == 1
        await asyncio.gather(*pending)
        assert state.text == "Charger looks healthy."

    @pytest.mark.asyncio
    async def test_poll_error_does_not_crash(self) -> None:
        components = _make_components(RuntimeError("sysfs exploded"))

        supported = await _cycle(components, InsightState(), set())

        assert supported is True
        assert components["tracker"].state is TrackerState.IDLE
        components["status"].write.assert_called_once()

    @pytest.mark.asyncio
    async def test_none_reading_skips_tracker(self) -> None:
        components = _make_components(None)

        await _cycle(components, InsightState(), set())

        assert components["tracker"].session is None

    @pytest.mark.asyncio
    async def test_status_write_error_does_not_crash(self) -> None:
        components = _make_components(BatteryReading(charging=True, level=0.40))
        components["status"].write = MagicMock(side_effect=OSError("read-only"))

        supported = await _cycle(components, InsightState(), set())

        assert supported is True


# ---------------------------------------------------------------------------
# Loop runner
# ---------------------------------------------------------------------------


class TestRunLoop:
    """run_loop polls until shutdown and flushes on exit."""

    @pytest.mark.asyncio
    async def test_stops_on_shutdown_and_flushes(self) -> None:
        shutdown_event = asyncio.Event()
        readings = [
            BatteryReading(charging=True, level=0.40),
            BatteryReading(charging=False, level=0.40),
        ]

        async def _poll() -> BatteryReading:
            reading = readings.pop(0)
            if not readings:
                shutdown_event.set()
            return reading

        components = _make_components()
        components["poller"].poll = AsyncMock(side_effect=_poll)
        state = InsightState()

        await asyncio.wait_for(
            run_loop(
                poller=components["poller"],
                tracker=components["tracker"],
                store=components["store"],
                insight_client=components["insight_client"],
                poll_interval_s=0.01,
                shutdown_event=shutdown_event,
                status=components["status"],
                insight_state=state,
            ),
            timeout=5,
        )

        assert components["poller"].poll.await_count == 2
        # Once on close, once as the final flush.
        assert components["store"].save.await_count == 2
        assert state.text == "Charger looks healthy."

    @pytest.mark.asyncio
    async def test_unsupported_idles_until_shutdown(self) -> None:
        shutdown_event = asyncio.Event()
        components = _make_components(BatteryUnavailableError("no BAT0"))
        asyncio.get_running_loop().call_later(0.05, shutdown_event.set)

        await asyncio.wait_for(
            run_loop(
                poller=components["poller"],
                tracker=components["tracker"],
                store=components["store"],
                insight_client=components["insight_client"],
                poll_interval_s=0.01,
                shutdown_event=shutdown_event,
            ),
            timeout=5,
        )

        assert components["poller"].poll.await_count == 1
        assert components["tracker"].state is TrackerState.UNSUPPORTED


# ---------------------------------------------------------------------------
# Startup helpers
# ---------------------------------------------------------------------------


class TestConfigSummary:
    """Startup logs config without secrets."""

    def test_api_key_not_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        settings = MagicMock()
        settings.insight_api_key = "super-secret-key"

        with caplog.at_level(logging.INFO, logger="voltflow.src.main"):
            log_config_summary(settings)

        assert "super-secret-key" not in caplog.text
        assert _masked_token("super-secret-key") in caplog.text

    def test_masked_token_empty(self) -> None:
        assert _masked_token("") == "empty"
        assert _masked_token(None) == "empty"


class TestLogging:
    """configure_logging emits one JSON object per record."""

    @pytest.mark.usefixtures("_restore_root_logger")
    def test_json_lines(self, capsys: pytest.CaptureFixture[str]) -> None:
        configure_logging()

        logging.getLogger("voltflow.test").info("hello %s", "world")

        line = capsys.readouterr().err.strip().splitlines()[-1]
        entry = json.loads(line)
        assert entry["msg"] == "hello world"
        assert entry["level"] == "INFO"
        assert entry["logger"] == "voltflow.test"


class TestEntrypoint:
    """Command-line handling."""

    def test_parse_args_defaults(self) -> None:
        args = parse_args([])

        assert args.clear_history is False
        assert args.debug is False

    @pytest.mark.asyncio
    @pytest.mark.usefixtures("_restore_root_logger")
    async def test_clear_history(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch, t0: datetime
    ) -> None:
        db_path = tmp_path / "sessions.db"
        monkeypatch.setenv("SESSIONS_PATH", str(db_path))
        session = Session(
            start_time=t0,
            end_time=t0 + timedelta(hours=1),
            start_level=0.1,
            end_level=0.9,
        )
        async with SessionStore(db_path) as store:
            await store.save([session])

        await async_main(["--clear-history"])

        async with SessionStore(db_path) as store:
            assert await store.load() == []

"""
Charging monitor daemon main loop.

Runs a single asyncio poll loop:

1. Read a ``(charging, level)`` snapshot from the battery poller.
2. Apply it to the :class:`~voltflow.src.tracker.SessionTracker`.
3. When a session closes, persist the session history and start a
   fire-and-forget insight request whose result only updates the insight
   state.
4. Rewrite the JSON status file for the dashboard.

The loop is resilient: an exception in one iteration is logged and does
not stop the loop. A missing battery puts the tracker into its terminal
unsupported state; the daemon then idles until shutdown so the status
file keeps reporting ``supported: false``. Graceful shutdown on
SIGTERM/SIGINT sets a shared asyncio.Event; pending insight requests are
awaited and the session history is flushed before exit.

Structured JSON logging is used for all events.

CHANGELOG:
- 2026-10-18: Initial creation
- 2026-10-18: Persist and request an insight for a session closed by a lost battery

TODO:
- None
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import hashlib
import json
import logging
import signal
import sys
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from voltflow.src.insights import InsightState, build_insight_request, request_insight
from voltflow.src.poller import BatteryUnavailableError

if TYPE_CHECKING:
    from voltflow.src.insights import InsightClient
    from voltflow.src.models import Session
    from voltflow.src.poller import BatteryPoller
    from voltflow.src.status import StatusWriter
    from voltflow.src.store import SessionStore
    from voltflow.src.tracker import SessionTracker

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Structured JSON logging setup
# ---------------------------------------------------------------------------


def configure_logging(level: int = logging.INFO) -> None:
    """Configure structured JSON logging for the daemon.

    Sets up the root logger with a JSON-formatted handler writing to stderr.
    """

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


# ---------------------------------------------------------------------------
# Startup config logging
# ---------------------------------------------------------------------------


def log_config_summary(settings: object) -> None:
    """Log a config summary at startup, excluding secrets.

    The insight API key is only logged as a fingerprint.

    Args:
        settings: A VoltflowSettings instance (or any object with the same attrs).
    """
    logger.info(
        "Charging monitor starting with config: "
        "battery=%s/%s, capacity_wh=%s, max_wattage=%s, "
        "history_limit=%s, session_history_limit=%s, poll_interval_s=%s, "
        "sessions_path=%s, status_path=%s, insight_base_url=%s, "
        "insight_model=%s, insight_key_masked=%s",
        settings.power_supply_root,  # type: ignore[attr-defined]
        settings.battery_name,  # type: ignore[attr-defined]
        settings.battery_capacity_wh,  # type: ignore[attr-defined]
        settings.max_wattage,  # type: ignore[attr-defined]
        settings.history_limit,  # type: ignore[attr-defined]
        settings.session_history_limit,  # type: ignore[attr-defined]
        settings.poll_interval_s,  # type: ignore[attr-defined]
        settings.sessions_path,  # type: ignore[attr-defined]
        settings.status_path,  # type: ignore[attr-defined]
        settings.insight_base_url,  # type: ignore[attr-defined]
        settings.insight_model,  # type: ignore[attr-defined]
        _masked_token(settings.insight_api_key),  # type: ignore[attr-defined]
    )


# ---------------------------------------------------------------------------
# Side-effect helpers
# ---------------------------------------------------------------------------


async def _persist_sessions(*, store: SessionStore, tracker: SessionTracker) -> None:
    """Write the session history; a storage failure never reaches the tracker."""
    try:
        await store.save(tracker.past_sessions)
    except Exception:
        logger.warning("Failed to persist session history", exc_info=True)


def _spawn_insight(
    *,
    client: InsightClient,
    state: InsightState,
    tracker: SessionTracker,
    closed: Session,
    pending: set[asyncio.Task[str]],
) -> asyncio.Task[str]:
    """Start an insight request for *closed* without waiting for it.

    The request snapshot is taken now, so samples recorded later do not
    leak into it. The task is held in *pending* until it finishes.
    """
    request = build_insight_request(tracker.history, closed)
    task = asyncio.create_task(request_insight(client, state, request))
    pending.add(task)
    task.add_done_callback(pending.discard)
    logger.info("Insight requested for session with %d points", len(request.points))
    return task


def _write_status(
    *,
    status: StatusWriter | None,
    tracker: SessionTracker,
    insight: InsightState,
) -> None:
    if status is None:
        return
    try:
        status.write(tracker, insight)
    except Exception:
        logger.warning("Failed to write status file", exc_info=True)


# ---------------------------------------------------------------------------
# Single-iteration function (easily testable)
# ---------------------------------------------------------------------------


async def _poll_once(
    *,
    poller: BatteryPoller,
    tracker: SessionTracker,
    store: SessionStore,
    insight_client: InsightClient,
    insight_state: InsightState,
    pending: set[asyncio.Task[str]],
    status: StatusWriter | None,
) -> bool:
    """Execute a single read-apply-persist cycle.

    Catches all exceptions so that the caller's loop is never broken. The
    status file is rewritten after every attempt (success or failure).

    Returns:
        False once the battery source is unavailable, True otherwise.
    """
    try:
        reading = await poller.poll()
    except BatteryUnavailableError:
        logger.error("Battery source unavailable", exc_info=True)
        closed = tracker.mark_unsupported()
        if closed is not None:
            await _persist_sessions(store=store, tracker=tracker)
            _spawn_insight(
                client=insight_client,
                state=insight_state,
                tracker=tracker,
                closed=closed,
                pending=pending,
            )
        _write_status(status=status, tracker=tracker, insight=insight_state)
        return False
    except Exception:
        logger.error("Poll cycle error", exc_info=True)
        reading = None

    if status is not None:
        status.record_poll()

    if reading is None:
        logger.warning("Poller returned None, skipping tracker update")
    else:
        try:
            result = tracker.apply_battery_event(
                reading.charging, reading.level, datetime.now(tz=UTC)
            )
            if result.session_closed is not None:
                await _persist_sessions(store=store, tracker=tracker)
                _spawn_insight(
                    client=insight_client,
                    state=insight_state,
                    tracker=tracker,
                    closed=result.session_closed,
                    pending=pending,
                )
        except Exception:
            logger.error("Tracker update error", exc_info=True)

    _write_status(status=status, tracker=tracker, insight=insight_state)
    return True


# ---------------------------------------------------------------------------
# Loop runner with graceful shutdown
# ---------------------------------------------------------------------------


async def run_loop(
    *,
    poller: BatteryPoller,
    tracker: SessionTracker,
    store: SessionStore,
    insight_client: InsightClient,
    poll_interval_s: float,
    shutdown_event: asyncio.Event,
    status: StatusWriter | None = None,
    insight_state: InsightState | None = None,
) -> None:
    """Run the poll loop until shutdown, then flush.

    Args:
        poller: The battery-status poller.
        tracker: The session tracker (past sessions already loaded).
        store: The open session store.
        insight_client: Client used when a session closes.
        poll_interval_s: Seconds between battery reads.
        shutdown_event: Event to signal graceful shutdown.
        status: StatusWriter instance, or None to skip status writes.
        insight_state: Shared insight state; a fresh one when None.
    """
    if insight_state is None:
        insight_state = InsightState()
    pending: set[asyncio.Task[str]] = set()

    logger.info("Poll loop started (interval=%ss)", poll_interval_s)
    while not shutdown_event.is_set():
        supported = await _poll_once(
            poller=poller,
            tracker=tracker,
            store=store,
            insight_client=insight_client,
            insight_state=insight_state,
            pending=pending,
            status=status,
        )
        if not supported:
            logger.warning("Charging estimation disabled, idling until shutdown")
            await shutdown_event.wait()
            break
        # Use wait with timeout so we can check shutdown between sleeps
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(shutdown_event.wait(), timeout=poll_interval_s)
    logger.info("Poll loop stopped")

    if pending:
        logger.info("Waiting for %d pending insight requests", len(pending))
        await asyncio.gather(*pending, return_exceptions=True)

    await _persist_sessions(store=store, tracker=tracker)
    _write_status(status=status, tracker=tracker, insight=insight_state)
    logger.info("Shutdown complete")


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    p = argparse.ArgumentParser(
        description="Estimate charging power from battery level and track sessions"
    )
    p.add_argument(
        "--clear-history", action="store_true", dest="clear_history",
        help="Delete the stored session history and exit",
    )
    p.add_argument(
        "--debug", action="store_true",
        help="Log per-sample details",
    )
    return p.parse_args(argv)


async def async_main(argv: list[str] | None = None) -> None:
    """Async entrypoint: load config, build components, run the loop.

    Sets up SIGTERM/SIGINT handlers to trigger graceful shutdown.
    """
    args = parse_args(argv)
    configure_logging(logging.DEBUG if args.debug else logging.INFO)

    from voltflow.src.config import VoltflowSettings
    from voltflow.src.insights import InsightClient
    from voltflow.src.poller import BatteryPoller
    from voltflow.src.status import StatusWriter
    from voltflow.src.store import SessionStore
    from voltflow.src.tracker import SessionTracker

    settings = VoltflowSettings()
    log_config_summary(settings)

    if args.clear_history:
        async with SessionStore(settings.sessions_path) as store:
            await store.clear()
        logger.info("Session history cleared")
        return

    shutdown_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: _handle_signal(shutdown_event),
        )

    poller = BatteryPoller(
        root=settings.power_supply_root,
        name=settings.battery_name,
    )
    tracker = SessionTracker(
        capacity_wh=settings.battery_capacity_wh,
        max_wattage=settings.max_wattage,
        history_limit=settings.history_limit,
        session_history_limit=settings.session_history_limit,
    )
    insight_client = InsightClient(
        base_url=settings.insight_base_url,
        api_key=settings.insight_api_key,
        model=settings.insight_model,
        timeout_s=settings.insight_timeout_s,
    )
    status = StatusWriter(settings.status_path)

    async with SessionStore(settings.sessions_path) as store:
        tracker.load_past_sessions(await store.load())
        await run_loop(
            poller=poller,
            tracker=tracker,
            store=store,
            insight_client=insight_client,
            poll_interval_s=settings.poll_interval_s,
            shutdown_event=shutdown_event,
            status=status,
        )


def _handle_signal(shutdown_event: asyncio.Event) -> None:
    """Handle SIGTERM/SIGINT by setting the shutdown event.

    Args:
        shutdown_event: The event to set for graceful shutdown.
    """
    logger.info("Received shutdown signal, initiating graceful shutdown")
    shutdown_event.set()


def main() -> None:
    """Synchronous entrypoint for the charging monitor daemon."""
    asyncio.run(async_main())


if __name__ == "__main__":
    main()

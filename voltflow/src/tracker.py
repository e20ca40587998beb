"""
Charging session state machine.

Consumes ``(charging, level)`` battery events and maintains:

- the current (or most recent) :class:`~voltflow.src.models.Session`,
- a rolling telemetry history (FIFO, default 50 samples),
- a list of closed sessions (most recent first, default 5),
- the live ``watts/volts/amps`` metrics.

States:
    IDLE -> CHARGING when the charging flag becomes true (session opens).
    CHARGING -> CHARGING on a level change (one telemetry sample, aggregates
    folded in).
    CHARGING -> IDLE when the charging flag becomes false (session closes).
    UNSUPPORTED is terminal: the battery source is unavailable and every
    later event is ignored. An open session is closed on the way in.

Each call to :meth:`SessionTracker.apply_battery_event` is one complete,
synchronous step and returns the effects the caller must propagate
(persist the history, start an insight request, refresh the display). The
tracker does no I/O.

Session averages use a two-term rolling mean: the first accepted sample
sets the average, every later sample moves it to ``(avg + value) / 2``.
This is more reactive than an arithmetic mean and is kept as-is because
stored session statistics depend on it.

CHANGELOG:
- 2026-10-18: Initial creation
- 2026-10-18: Close an open session when the battery source disappears

TODO:
- None
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from voltflow.src.estimator import (
    DEFAULT_MAX_WATTAGE,
    SECONDS_PER_HOUR,
    RandomSource,
    estimate_electrical_properties,
    estimate_wattage,
)
from voltflow.src.models import ChargingStatus, Metrics, Session, TelemetrySample

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_CAPACITY_WH: float = 19.25
"""Typical 5000 mAh phone battery at 3.85 V nominal."""

DEFAULT_HISTORY_LIMIT: int = 50
DEFAULT_SESSION_HISTORY_LIMIT: int = 5


class TrackerState(str, Enum):
    """Lifecycle state of the session tracker."""

    IDLE = "idle"
    CHARGING = "charging"
    UNSUPPORTED = "unsupported"


@dataclass(frozen=True, slots=True)
class TransitionResult:
    """Effects of a single battery event.

    Attributes:
        metrics: Live metrics after the event.
        new_sample: Telemetry sample appended by this event, if any.
        session_opened: Session opened by this event, if any.
        session_closed: Session closed by this event, if any. The caller
            persists the session history and requests an insight.
    """

    metrics: Metrics
    new_sample: TelemetrySample | None = None
    session_opened: Session | None = None
    session_closed: Session | None = None


@dataclass(frozen=True, slots=True)
class _SamplePoint:
    time: datetime
    level: float


class SessionTracker:
    """Owns the charging session lifecycle and derived telemetry.

    Args:
        capacity_wh: Nominal battery capacity used to turn level deltas
            into watts.
        max_wattage: Upper clamp for estimated wattage.
        history_limit: Maximum number of telemetry samples retained.
        session_history_limit: Maximum number of closed sessions retained.
        rng: Random source for the voltage jitter. ``None`` uses the
            :mod:`random` module.

    Raises:
        ValueError: If a capacity, clamp or limit is not positive.

    Usage::

        tracker = SessionTracker(capacity_wh=19.25)
        result = tracker.apply_battery_event(True, 0.40, now)
        if result.session_closed is not None:
            ...
    """

    def __init__(
        self,
        *,
        capacity_wh: float = DEFAULT_CAPACITY_WH,
        max_wattage: float = DEFAULT_MAX_WATTAGE,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        session_history_limit: int = DEFAULT_SESSION_HISTORY_LIMIT,
        rng: RandomSource | None = None,
    ) -> None:
        if capacity_wh <= 0:
            raise ValueError(f"capacity_wh must be > 0 (got {capacity_wh})")
        if max_wattage <= 0:
            raise ValueError(f"max_wattage must be > 0 (got {max_wattage})")
        if history_limit < 1 or session_history_limit < 1:
            raise ValueError("history limits must be >= 1")

        self._capacity_wh = capacity_wh
        self._max_wattage = max_wattage
        self._session_history_limit = session_history_limit
        self._rng = rng

        self._state = TrackerState.IDLE
        self._metrics = Metrics()
        self._history: deque[TelemetrySample] = deque(maxlen=history_limit)
        self._session: Session | None = None
        self._past_sessions: list[Session] = []
        self._last_point: _SamplePoint | None = None

    # ------------------------------------------------------------------
    # Read-only views for collaborators
    # ------------------------------------------------------------------

    @property
    def state(self) -> TrackerState:
        return self._state

    @property
    def supported(self) -> bool:
        return self._state is not TrackerState.UNSUPPORTED

    @property
    def metrics(self) -> Metrics:
        return self._metrics

    @property
    def history(self) -> tuple[TelemetrySample, ...]:
        """Telemetry samples, oldest first."""
        return tuple(self._history)

    @property
    def session(self) -> Session | None:
        """The open session, or the most recently closed one."""
        return self._session

    @property
    def past_sessions(self) -> tuple[Session, ...]:
        """Closed sessions, most recent first."""
        return tuple(self._past_sessions)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def apply_battery_event(
        self,
        charging: bool,
        level: float,
        now: datetime,
    ) -> TransitionResult:
        """Apply one battery snapshot and return the resulting effects.

        Duplicate snapshots are harmless: an unchanged level while charging
        produces no sample, and an unchanged charging flag produces no
        transition.

        Args:
            charging: Whether external power is connected.
            level: Battery level fraction (0-1).
            now: Time the snapshot was delivered.

        Returns:
            The effects of the event.

        Raises:
            ValueError: If *level* is outside ``[0, 1]``.
        """
        if not 0.0 <= level <= 1.0:
            raise ValueError(f"level must be within [0, 1] (got {level})")

        if self._state is TrackerState.UNSUPPORTED:
            return TransitionResult(metrics=self._metrics)

        if charging:
            opened = None
            if self._state is TrackerState.IDLE:
                opened = self._open_session(level, now)
            sample = self._on_charging_level(level, now)
            return TransitionResult(
                metrics=self._metrics,
                new_sample=sample,
                session_opened=opened,
            )

        closed = None
        if self._state is TrackerState.CHARGING:
            closed = self._close_session(level, now)
        self._metrics = Metrics()
        self._last_point = None
        return TransitionResult(metrics=self._metrics, session_closed=closed)

    def mark_unsupported(self) -> Session | None:
        """Enter the terminal unsupported state (no battery source).

        A session still open is closed at the last known level and time
        first, so no session stays open once the source is gone.

        Returns:
            The session closed by this call, if any. The caller persists
            the session history.
        """
        logger.warning("Battery status unavailable; charging estimation disabled")
        closed = None
        if self._state is TrackerState.CHARGING:
            assert self._session is not None, "CHARGING state without a session"
            last = self._last_point
            if last is None:
                last = _SamplePoint(
                    time=self._session.start_time, level=self._session.start_level
                )
            closed = self._close_session(last.level, last.time)
        self._state = TrackerState.UNSUPPORTED
        self._metrics = Metrics()
        self._last_point = None
        return closed

    # ------------------------------------------------------------------
    # Session history management
    # ------------------------------------------------------------------

    def load_past_sessions(self, sessions: Iterable[Session]) -> None:
        """Replace the closed-session history wholesale.

        Open sessions are dropped; the list is truncated to the history
        limit, keeping the first (most recent) entries.
        """
        closed = [s for s in sessions if not s.is_open]
        self._past_sessions = closed[: self._session_history_limit]
        logger.info("Loaded %d past sessions", len(self._past_sessions))

    def clear_past_sessions(self) -> None:
        self._past_sessions = []

    def snapshot(self) -> dict:
        """Return a JSON-compatible view of everything a display needs."""
        return {
            "state": self._state.value,
            "supported": self.supported,
            "metrics": self._metrics.model_dump(mode="json"),
            "history": [
                s.model_dump(mode="json", by_alias=True) for s in self._history
            ],
            "session": self._session.to_record() if self._session else None,
            "past_sessions": [s.to_record() for s in self._past_sessions],
        }

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _open_session(self, level: float, now: datetime) -> Session:
        self._session = Session(start_time=now, start_level=level)
        self._state = TrackerState.CHARGING
        self._last_point = None
        logger.info("Charging session opened at level=%.2f", level)
        return self._session

    def _close_session(self, level: float, now: datetime) -> Session:
        assert self._session is not None, "CHARGING state without a session"
        closed = self._session.model_copy(update={"end_time": now, "end_level": level})
        self._session = closed
        self._past_sessions.insert(0, closed)
        del self._past_sessions[self._session_history_limit :]
        self._state = TrackerState.IDLE
        logger.info(
            "Charging session closed: %.2f -> %.2f, avg=%.2fW, max=%.2fW",
            closed.start_level,
            level,
            closed.avg_wattage,
            closed.max_wattage,
        )
        return closed

    def _on_charging_level(self, level: float, now: datetime) -> TelemetrySample | None:
        """Estimate from the baseline when the level moved, then rebase."""
        last = self._last_point
        if last is not None and last.level == level:
            return None

        sample = None
        if last is not None:
            watts = estimate_wattage(
                last.level,
                last.time,
                level,
                now,
                self._capacity_wh,
                max_wattage=self._max_wattage,
            )
            if watts is None:
                logger.debug("Skipping sample with non-positive elapsed time")
            else:
                elapsed_hours = (now - last.time).total_seconds() / SECONDS_PER_HOUR
                sample = self._record_sample(watts, level, now, elapsed_hours)

        self._last_point = _SamplePoint(time=now, level=level)
        return sample

    def _record_sample(
        self,
        watts: float,
        level: float,
        now: datetime,
        elapsed_hours: float,
    ) -> TelemetrySample:
        estimate = estimate_electrical_properties(watts, rng=self._rng)
        self._metrics = Metrics(watts=watts, volts=estimate.volts, amps=estimate.amps)

        sample = TelemetrySample(
            timestamp=now,
            level=level * 100.0,
            wattage=watts,
            voltage=estimate.volts,
            amperage=estimate.amps,
            status=ChargingStatus.CHARGING,
        )
        self._history.append(sample)

        session = self._session
        assert session is not None, "sample recorded without an open session"
        self._session = session.model_copy(
            update={
                "max_wattage": max(session.max_wattage, watts),
                "max_amperage": max(session.max_amperage, estimate.amps),
                "avg_wattage": _rolling_mean(session.avg_wattage, watts),
                "avg_voltage": _rolling_mean(session.avg_voltage, estimate.volts),
                "total_energy_wh": session.total_energy_wh + watts * elapsed_hours,
            }
        )
        logger.debug(
            "Sample: level=%.1f%% watts=%.2f volts=%.2f amps=%.2f",
            sample.level,
            watts,
            estimate.volts,
            estimate.amps,
        )
        return sample


def _rolling_mean(current: float, value: float) -> float:
    # Zero means "no sample yet".
    if current == 0:
        return value
    return (current + value) / 2

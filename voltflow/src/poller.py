"""
Battery-status poller backed by the Linux power-supply class.

Reads ``capacity`` (integer percent) and ``status`` from
``/sys/class/power_supply/<name>/`` and returns a
:class:`~voltflow.src.models.BatteryReading`. The kernel reports the level
in 1% steps at irregular intervals, which is exactly the coarse input the
estimator is built for.

Designed to be robust:

- A missing power-supply directory raises :class:`BatteryUnavailableError`
  (terminal: there is no battery to watch).
- Transient read or parse errors are logged and return ``None``.
- Exponential backoff after consecutive transient failures (capped at
  MAX_BACKOFF_S).

File reads run in a worker thread so the event loop never blocks on sysfs.

CHANGELOG:
- 2026-10-18: Initial creation

TODO:
- None
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from voltflow.src.models import BatteryReading

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

BASE_BACKOFF_S: float = 1.0
"""Initial backoff delay in seconds after the first read failure."""

MAX_BACKOFF_S: float = 60.0
"""Maximum backoff delay in seconds (cap for exponential growth)."""

CHARGING_STATUSES: frozenset[str] = frozenset({"charging", "full"})
"""``status`` values that mean external power is connected."""


class BatteryUnavailableError(RuntimeError):
    """Raised when the configured power supply does not exist."""


# ---------------------------------------------------------------------------
# Stateless single-read function
# ---------------------------------------------------------------------------


def parse_battery_files(capacity_text: str, status_text: str) -> BatteryReading:
    """Convert raw ``capacity`` and ``status`` file contents to a reading.

    Capacity is clamped to 0-100 before conversion to a fraction; some
    firmware briefly reports values slightly above 100 while topping off.

    Raises:
        ValueError: If *capacity_text* is not an integer.
    """
    percent = min(max(int(capacity_text.strip()), 0), 100)
    charging = status_text.strip().lower() in CHARGING_STATUSES
    return BatteryReading(charging=charging, level=percent / 100.0)


def _read_files(battery_dir: Path) -> tuple[str, str]:
    capacity = (battery_dir / "capacity").read_text()
    status = (battery_dir / "status").read_text()
    return capacity, status


# ---------------------------------------------------------------------------
# Stateful poller with exponential backoff
# ---------------------------------------------------------------------------


class BatteryPoller:
    """Stateful power-supply poller with exponential backoff.

    Maintains a failure counter so that consecutive read failures cause an
    exponentially growing sleep before the next attempt. The backoff resets
    after any successful read.

    Args:
        root: Directory holding the power-supply entries.
        name: Power-supply name (e.g. ``BAT0``).
    """

    def __init__(
        self,
        *,
        root: str | Path = "/sys/class/power_supply",
        name: str = "BAT0",
    ) -> None:
        self._battery_dir = Path(root) / name
        self._consecutive_failures: int = 0

    @property
    def battery_dir(self) -> Path:
        return self._battery_dir

    def check_available(self) -> None:
        """Raise :class:`BatteryUnavailableError` if the battery is missing."""
        if not self._battery_dir.is_dir():
            raise BatteryUnavailableError(
                f"No power supply at {self._battery_dir}"
            )

    async def poll(self) -> BatteryReading | None:
        """Read one battery snapshot, with backoff on previous failures.

        Returns:
            The current reading, or ``None`` on a transient read error.

        Raises:
            BatteryUnavailableError: If the power-supply directory is gone.
        """
        if self._consecutive_failures > 0:
            delay = min(
                BASE_BACKOFF_S * (2 ** (self._consecutive_failures - 1)),
                MAX_BACKOFF_S,
            )
            logger.warning(
                "Backoff: sleeping %.1fs before retry (consecutive failures: %d)",
                delay,
                self._consecutive_failures,
            )
            await asyncio.sleep(delay)

        self.check_available()

        try:
            capacity_text, status_text = await asyncio.to_thread(
                _read_files, self._battery_dir
            )
            reading = parse_battery_files(capacity_text, status_text)
        except (OSError, ValueError):
            logger.warning(
                "Failed to read battery status from %s",
                self._battery_dir,
                exc_info=True,
            )
            self._consecutive_failures += 1
            return None

        self._consecutive_failures = 0
        return reading

"""
Pure charging-rate estimator.

Converts two ``(level, time)`` battery samples into an instantaneous power
estimate in watts, and splits a wattage into a plausible voltage and
current.

The voltage split is a heuristic lookup of common USB power-delivery
voltage tiers (5 V, 9 V, 12 V), not a measurement. A small uniform jitter
of up to +/-0.05 V is added while power flows so that a voltage trace does
not look stair-stepped. Callers that need deterministic output pass their
own random source.

These are pure functions: no I/O, no clock. Timestamps and the random
source are injected by the caller.

CHANGELOG:
- 2026-10-18: Initial creation
- 2026-10-18: Export SECONDS_PER_HOUR for the tracker's energy integration

TODO:
- None
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_MAX_WATTAGE: float = 120.0
"""Upper clamp for estimated power; generous bound for consumer fast charging."""

VOLTAGE_JITTER_V: float = 0.05
"""Half-width of the uniform jitter applied to the tier voltage."""

IDLE_VOLTAGE_V: float = 5.0

_VOLTAGE_TIERS: tuple[tuple[float, float], ...] = (
    (12.0, 5.0),
    (25.0, 9.0),
)
"""``(max_watts, volts)`` pairs checked in order; above the last bound is 12 V."""

_HIGH_VOLTAGE_V: float = 12.0

SECONDS_PER_HOUR: float = 3600.0


class RandomSource(Protocol):
    """Anything exposing ``uniform(a, b)`` like :class:`random.Random`."""

    def uniform(self, a: float, b: float) -> float: ...  # noqa: D102


@dataclass(frozen=True, slots=True)
class ElectricalEstimate:
    """Voltage and current derived from a wattage estimate."""

    volts: float
    amps: float


# ---------------------------------------------------------------------------
# Wattage
# ---------------------------------------------------------------------------


def estimate_wattage(
    prev_level: float,
    prev_time: datetime,
    curr_level: float,
    curr_time: datetime,
    capacity_wh: float,
    *,
    max_wattage: float = DEFAULT_MAX_WATTAGE,
) -> float | None:
    """Estimate charging power from two level samples.

    ``raw = (curr_level - prev_level) * capacity_wh / elapsed_hours``,
    clamped to ``[0, max_wattage]``. A falling level yields 0; a spike from
    a very short interval is capped at *max_wattage*.

    Args:
        prev_level: Earlier battery level fraction (0-1).
        prev_time: Time of the earlier sample.
        curr_level: Later battery level fraction (0-1).
        curr_time: Time of the later sample.
        capacity_wh: Nominal battery capacity in watt-hours.
        max_wattage: Upper clamp in watts.

    Returns:
        Clamped wattage, or ``None`` when the elapsed time is zero or
        negative (duplicate or out-of-order timestamps).
    """
    elapsed_hours = (curr_time - prev_time).total_seconds() / SECONDS_PER_HOUR
    if elapsed_hours <= 0:
        return None

    raw_watts = (curr_level - prev_level) * capacity_wh / elapsed_hours
    return min(max(raw_watts, 0.0), max_wattage)


# ---------------------------------------------------------------------------
# Voltage / amperage split
# ---------------------------------------------------------------------------


def tier_voltage(watts: float) -> float:
    """Return the nominal charging-profile voltage for *watts* (no jitter)."""
    if watts <= 0:
        return IDLE_VOLTAGE_V
    for upper, volts in _VOLTAGE_TIERS:
        if watts <= upper:
            return volts
    return _HIGH_VOLTAGE_V


def estimate_electrical_properties(
    watts: float,
    *,
    rng: RandomSource | None = None,
) -> ElectricalEstimate:
    """Split a wattage into a tier voltage and the matching current.

    Idle (``watts == 0``) returns exactly 5.0 V and 0 A. Otherwise the tier
    voltage gets a uniform jitter in ``[-0.05, +0.05]`` V and
    ``amps = watts / volts``.

    Args:
        watts: Clamped wattage from :func:`estimate_wattage`.
        rng: Random source for the jitter. Defaults to the module-level
            :mod:`random` generator.

    Returns:
        The estimated voltage and current.
    """
    volts = tier_voltage(watts)
    if watts <= 0:
        return ElectricalEstimate(volts=volts, amps=0.0)

    source = rng if rng is not None else random
    volts += source.uniform(-VOLTAGE_JITTER_V, VOLTAGE_JITTER_V)
    return ElectricalEstimate(volts=volts, amps=watts / volts)

"""
Pydantic models for charging telemetry and charging sessions.

Defines the records shared between the estimator, the session tracker and
the outbound collaborators (status file, session store, insight client).

Serialized field names use the camelCase names of the persisted session
format (``startTime``, ``avgWattage``, ...); Python attributes are
snake_case. Both names are accepted on input so stored history can be read
back with :meth:`Session.model_validate`.

CHANGELOG:
- 2026-10-18: Initial creation
- 2026-10-18: Serialize TelemetrySample.level as levelPercent

TODO:
- None
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class ChargingStatus(str, Enum):
    """Direction of energy flow recorded on a telemetry sample."""

    CHARGING = "charging"
    DISCHARGING = "discharging"


class TelemetrySample(BaseModel):
    """One derived electrical observation tied to a level change.

    Attributes:
        timestamp: Time the level change was observed.
        level: Battery level in percent (0-100), serialized as
            ``levelPercent``.
        wattage: Estimated charging power in watts.
        voltage: Estimated charging voltage in volts.
        amperage: Estimated charging current in amps.
        status: Charging direction at the time of the sample.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    timestamp: datetime
    level: float = Field(ge=0.0, le=100.0, alias="levelPercent")
    wattage: float = Field(ge=0.0)
    voltage: float = Field(gt=0.0)
    amperage: float = Field(ge=0.0)
    status: ChargingStatus = ChargingStatus.CHARGING


class Metrics(BaseModel):
    """Live derived metrics shown to the display collaborator."""

    model_config = ConfigDict(frozen=True)

    watts: float = 0.0
    volts: float = 0.0
    amps: float = 0.0


class Session(BaseModel):
    """One contiguous charging episode.

    The session is open while ``end_time`` is ``None``. Aggregates are
    folded in by the tracker on every accepted sample; the model itself is
    frozen, so updates produce a new instance via ``model_copy``.

    Attributes:
        start_time: Time charging started.
        end_time: Time charging stopped, ``None`` while open.
        start_level: Battery level fraction (0-1) at start.
        end_level: Battery level fraction (0-1) at close, ``None`` while open.
        avg_wattage: Two-term rolling mean of sample wattage.
        max_wattage: Highest sample wattage.
        avg_voltage: Two-term rolling mean of sample voltage.
        max_amperage: Highest sample amperage.
        total_energy_wh: Sum of ``wattage * elapsed_hours`` over accepted
            samples.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    start_time: datetime = Field(alias="startTime")
    end_time: datetime | None = Field(default=None, alias="endTime")
    start_level: float = Field(alias="startLevel", ge=0.0, le=1.0)
    end_level: float | None = Field(default=None, alias="endLevel", ge=0.0, le=1.0)
    avg_wattage: float = Field(default=0.0, alias="avgWattage", ge=0.0)
    max_wattage: float = Field(default=0.0, alias="maxWattage", ge=0.0)
    avg_voltage: float = Field(default=0.0, alias="avgVoltage", ge=0.0)
    max_amperage: float = Field(default=0.0, alias="maxAmperage", ge=0.0)
    total_energy_wh: float = Field(default=0.0, alias="totalEnergyWh", ge=0.0)

    @property
    def is_open(self) -> bool:
        """True while the charging episode is still in progress."""
        return self.end_time is None

    def net_gain(self, current_level: float) -> float:
        """Return the level fraction gained during the session.

        Uses ``end_level`` once the session is closed, otherwise
        *current_level*.
        """
        end = self.end_level if self.end_level is not None else current_level
        return end - self.start_level

    def to_record(self) -> dict:
        """Serialize to a plain JSON-compatible record with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)


class BatteryReading(BaseModel):
    """A single snapshot from the battery-status source.

    Attributes:
        charging: True while external power is connected.
        level: Battery level fraction (0-1).
    """

    model_config = ConfigDict(frozen=True)

    charging: bool
    level: float = Field(ge=0.0, le=1.0)

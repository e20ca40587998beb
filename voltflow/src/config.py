"""
Daemon configuration loaded from environment variables.

Uses Pydantic BaseSettings for automatic env var loading and validation.
All values come from environment variables or a ``.env`` file; every
field has a default so the daemon starts with no configuration at all.
Without ``INSIGHT_API_KEY`` insight requests are skipped and the fallback
text is reported instead.

CHANGELOG:
- 2026-10-18: Initial creation

TODO:
- None
"""

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings


class VoltflowSettings(BaseSettings):
    """Charging monitor configuration.

    Attributes:
        battery_name: Power-supply name under ``power_supply_root``
            (e.g. ``BAT0``).
        power_supply_root: Directory holding the kernel power-supply
            entries.
        battery_capacity_wh: Nominal battery capacity in watt-hours.
        max_wattage: Upper clamp for wattage estimates.
        history_limit: Telemetry samples kept in the rolling history.
        session_history_limit: Closed sessions kept in history and on disk.
        poll_interval_s: Seconds between battery reads (min 1).
        sessions_path: SQLite file holding the session history.
        status_path: JSON status file written for the dashboard.
        insight_base_url: Text-generation API base URL (must be HTTPS).
        insight_api_key: API key for the text-generation service.
        insight_model: Model name used for insight requests.
        insight_timeout_s: HTTP timeout for one insight request.
    """

    battery_name: str = "BAT0"
    power_supply_root: str = "/sys/class/power_supply"
    battery_capacity_wh: float = 19.25
    max_wattage: float = 120.0
    history_limit: int = 50
    session_history_limit: int = 5
    poll_interval_s: float = 5.0
    sessions_path: str = "/data/sessions.db"
    status_path: str = "/data/status.json"
    insight_base_url: str = "https://generativelanguage.googleapis.com"
    insight_api_key: str = ""
    insight_model: str = "gemini-3-flash-preview"
    insight_timeout_s: float = 30.0

    @field_validator("battery_capacity_wh", "max_wattage", "insight_timeout_s")
    @classmethod
    def must_be_positive(cls, v: float) -> float:
        """Reject zero or negative capacities, clamps and timeouts."""
        if v <= 0:
            raise ValueError("value must be > 0")
        return v

    @field_validator("history_limit", "session_history_limit")
    @classmethod
    def limit_must_be_valid(cls, v: int) -> int:
        """Validate history limits are between 1 and 10000."""
        if v < 1 or v > 10000:
            raise ValueError("history limits must be >= 1 and <= 10000")
        return v

    @field_validator("poll_interval_s")
    @classmethod
    def poll_interval_must_be_reasonable(cls, v: float) -> float:
        """Battery level changes slowly; polling faster than 1s gains nothing."""
        if v < 1:
            raise ValueError("POLL_INTERVAL_S must be >= 1")
        return v

    @field_validator("insight_base_url")
    @classmethod
    def insight_base_url_must_be_https(cls, v: str) -> str:
        """Validate that the insight API base URL uses HTTPS.

        The API key travels in a request header, so plain HTTP is rejected
        at startup.
        """
        if not v.lower().startswith("https://"):
            raise ValueError(
                f"INSIGHT_BASE_URL must use HTTPS (got: '{v[:20]}...')."
            )
        return v.rstrip("/")

    @model_validator(mode="after")
    def _battery_name_not_empty(self) -> "VoltflowSettings":
        """Reject an empty battery name, which would read the root directory."""
        if not self.battery_name.strip():
            raise ValueError("BATTERY_NAME must not be empty")
        return self

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}
